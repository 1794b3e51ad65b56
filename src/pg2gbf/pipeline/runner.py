"""
Pipeline orchestration: count -> export chunks -> merge -> convert.

Stages run strictly in sequence. A stage failure raises a PipelineError and
no later stage runs; there is no retry and no resume, a failed run is simply
started again from offset 0.
"""

import logging
import time
from pathlib import Path

from ..cleanup import remove_merged_file
from ..config.settings import ExportConfig
from ..domain.naming import GEOJSON_EXTENSION, base_path, merged_path
from ..types import PipelineResult
from ..utils import format_duration
from .convert import GeobufConverter
from .export import ChunkExporter
from .merge import ChunkMerger
from .source import PostgresSource

logger = logging.getLogger(__name__)


def _phase(title: str) -> None:
    logger.info("=" * 50)
    logger.info(title)
    logger.info("=" * 50)


def run_pipeline(source: PostgresSource, settings: ExportConfig) -> PipelineResult:
    """
    Export ``settings.table`` to a single Geobuf file.

    Args:
        source: Connected (or lazily connecting) source database
        settings: Table, chunking and output settings

    Returns:
        PipelineResult describing every stage

    Raises:
        PipelineError: From whichever stage failed first
    """
    start_time = time.time()
    table = settings.table
    base = base_path(settings.output_path, GEOJSON_EXTENSION)
    merged = merged_path(base, GEOJSON_EXTENSION)

    logger.info(f"Exporting table {table.name} (id: {table.id_column}, geometry: {table.geom_column})")
    logger.info(f"Chunk size: {settings.chunk_size:,}, strategy: {settings.strategy.value}, chunk format: {settings.chunk_format.value}")
    logger.info(f"Merged dataset: {merged}")

    _phase("ROW COUNT PHASE")
    row_count = source.count_rows(table)

    _phase("CHUNK EXPORT PHASE")
    exporter = ChunkExporter(
        source=source,
        table=table,
        chunk_size=settings.chunk_size,
        strategy=settings.strategy,
        chunk_format=settings.chunk_format,
        target_srid=settings.target_srid,
    )
    chunks = exporter.export(base, count=row_count)
    result = PipelineResult(row_count=row_count, chunk_paths=[chunk.path for chunk in chunks])

    _phase("MERGE PHASE")
    result.merge = ChunkMerger(merged).merge(chunks)

    _phase("CONVERSION PHASE")
    converter = GeobufConverter(precision=settings.geobuf_precision)
    result.conversion = converter.convert(merged)

    if not settings.keep_merged:
        remove_merged_file(merged)

    result.duration_s = time.time() - start_time
    _log_summary(result)
    return result


def _log_summary(result: PipelineResult) -> None:
    _phase("EXPORT COMPLETED SUCCESSFULLY")
    logger.info(f"Total execution time: {format_duration(result.duration_s)}")
    logger.info(f"Rows in table: {result.row_count:,}")
    logger.info(f"Chunks exported: {len(result.chunk_paths)}")
    if result.merge:
        logger.info(f"Features merged: {result.merge.feature_count:,}")
        if result.merge.feature_count != result.row_count:
            logger.warning(
                f"Merged feature count ({result.merge.feature_count:,}) differs from row count "
                f"({result.row_count:,}); was the table modified during the export?"
            )
    if result.conversion:
        logger.info(f"Output file: {result.conversion.path} ({result.conversion.size_bytes:,} bytes)")


def output_for(settings: ExportConfig) -> Path:
    """Final Geobuf path for ``settings`` without running anything."""
    base = base_path(settings.output_path, GEOJSON_EXTENSION)
    return GeobufConverter().output_path(merged_path(base, GEOJSON_EXTENSION))
