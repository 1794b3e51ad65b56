"""
ChunkExporter - Paged table export

Pages over the source table's identifier column and writes each page as a
standalone file named ``<base>_<offset>.<ext>``. Chunks are exported strictly
one after another; the first failure aborts the whole export and leaves the
chunks already written on disk.
"""

import json
import logging
import os
import subprocess
import time
from collections.abc import Sequence
from pathlib import Path
from typing import Optional

import geopandas as gpd
import pandas as pd
import psycopg
import pyogrio.errors
import shapely.errors

from ..config.settings import PostgresCredentials
from ..domain.enums import ChunkFormat, ExportStrategy
from ..domain.models import ChunkFile, ChunkSpec, TableDescriptor, plan_chunks
from ..types import ChunkExportError, PipelineError, QueryExecutionError
from ..utils import remove_file, timer
from .queries import (
    geobuf_chunk_statement,
    geojson_chunk_statement,
    ogr_chunk_query,
    projected_chunk_rows,
)
from .source import PostgresSource

logger = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE = 1_000_000
OGR2OGR = "ogr2ogr"

# raised by pyogrio while writing and by shapely while parsing geometries
GEOPANDAS_ERRORS = (
    pyogrio.errors.DataSourceError,
    pyogrio.errors.DataLayerError,
    shapely.errors.ShapelyError,
)


class ChunkExporter:
    """
    Sequential chunked exporter.

    Supports three strategies that produce equivalent GeoJSON chunk files:
        - SQL: FeatureCollection assembled by PostGIS (jsonb aggregation)
        - OGR: ogr2ogr runs the same bounded query and writes GeoJSON
        - GEOPANDAS: geopandas reads the bounded query and writes GeoJSON

    With the SQL strategy chunks can also be written as Geobuf, in which case
    the hex-encoded ST_AsGeobuf payload is decoded and stored as raw bytes.
    """

    def __init__(
        self,
        source: PostgresSource,
        table: TableDescriptor,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        strategy: ExportStrategy = ExportStrategy.SQL,
        chunk_format: ChunkFormat = ChunkFormat.GEOJSON,
        target_srid: int = 4326,
        credentials: Optional[PostgresCredentials] = None,
    ):
        """
        Initialize exporter.

        Args:
            source: Database access used for counting and SQL exports
            table: Table to export
            chunk_size: Rows per chunk
            strategy: How each chunk is materialized
            chunk_format: Chunk file format (Geobuf requires the SQL strategy)
            target_srid: SRID geometries are re-projected to
            credentials: Connection parameters for ogr2ogr (defaults to the source's)
        """
        if chunk_size < 1:
            raise ValueError(f"Chunk size must be positive, got {chunk_size}")
        if chunk_format.is_binary and strategy is not ExportStrategy.SQL:
            raise ValueError("Geobuf chunks can only be produced with the SQL strategy")

        self.source = source
        self.table = table
        self.chunk_size = chunk_size
        self.strategy = strategy
        self.chunk_format = chunk_format
        self.target_srid = target_srid
        self.credentials = credentials or source.credentials
        self._properties: Optional[list[str]] = None

    @property
    def extension(self) -> str:
        return self.chunk_format.extension

    @property
    def properties(self) -> list[str]:
        """Property columns, looked up once and reused for every chunk of the run."""
        if self._properties is None:
            self._properties = self.source.property_columns(self.table)
            logger.info(f"Exporting {len(self._properties)} property column(s): {', '.join(self._properties) or '-'}")
        return self._properties

    def plan(self, count: Optional[int] = None) -> list[ChunkSpec]:
        """Chunk specs for the table; counts rows when ``count`` is not given."""
        if count is None:
            count = self.source.count_rows(self.table)
        return plan_chunks(count, self.chunk_size)

    @timer
    def export(self, base: Path, count: Optional[int] = None) -> list[ChunkFile]:
        """
        Export every chunk of the table.

        Args:
            base: Base path; chunk files are written as ``<base>_<offset>.<ext>``
            count: Row count, if already known

        Returns:
            Chunk files in offset order

        Raises:
            RowCountError: If the table cannot be counted
            ChunkExportError: On the first chunk that fails
        """
        specs = self.plan(count)
        logger.info(
            f"Exporting {self.table.name} in {len(specs)} chunk(s) of {self.chunk_size:,} rows "
            f"({self.strategy.value}, {self.chunk_format.value})"
        )

        try:
            properties = self.properties
        except PipelineError as e:
            raise ChunkExportError(0, f"could not read columns of {self.table.name}: {e.detail}") from e

        chunks = []
        for index, spec in enumerate(specs, start=1):
            logger.info(f"Chunk {index}/{len(specs)}: offset {spec.offset:,}")
            chunks.append(self.export_chunk(spec, base, properties))
        return chunks

    def export_chunk(self, spec: ChunkSpec, base: Path, properties: Sequence[str]) -> ChunkFile:
        """Export a single chunk, replacing any stale file at its path."""
        path = spec.path(base, self.extension)
        remove_file(path)

        start = time.perf_counter()
        try:
            if self.strategy is ExportStrategy.SQL:
                self._export_sql(spec, path, properties)
            elif self.strategy is ExportStrategy.OGR:
                self._export_ogr(spec, path, properties)
            elif self.strategy is ExportStrategy.GEOPANDAS:
                self._export_geopandas(spec, path, properties)
            else:
                raise ValueError(f"Unsupported export strategy: {self.strategy}")
        except ChunkExportError:
            raise
        except PipelineError as e:
            raise ChunkExportError(spec.offset, e.detail) from e
        except (OSError, ValueError) as e:
            raise ChunkExportError(spec.offset, str(e)) from e

        if not path.exists():
            raise ChunkExportError(spec.offset, f"no file written at {path}")

        logger.info(f"Wrote {path} in {time.perf_counter() - start:.2f}s ({path.stat().st_size:,} bytes)")
        return ChunkFile(spec=spec, path=path)

    def _export_sql(self, spec: ChunkSpec, path: Path, properties: Sequence[str]) -> None:
        if self.chunk_format is ChunkFormat.GEOBUF:
            statement = geobuf_chunk_statement(self.table, spec, properties, self.target_srid)
            self.source.export_to_file(statement, path, decode_hex=True)
            return

        statement = geojson_chunk_statement(self.table, spec, properties, self.target_srid)
        self.source.export_to_file(statement, path)
        if not self._validate_geojson_file(path):
            raise ValueError(f"Generated GeoJSON chunk is invalid: {path}")

    def _export_ogr(self, spec: ChunkSpec, path: Path, properties: Sequence[str]) -> None:
        query = self.source.render(ogr_chunk_query(self.table, spec, properties))
        command = [
            OGR2OGR,
            "-t_srs", f"EPSG:{self.target_srid}",
            "-f", "GeoJSON",
            str(path),
            self.credentials.ogr_datasource(),
            "-sql", query,
        ]
        env = dict(os.environ)
        if self.credentials.password:
            env["PGPASSWORD"] = self.credentials.password
        logger.debug(f"Running {OGR2OGR} for offset {spec.offset}: {query}")

        try:
            result = subprocess.run(command, capture_output=True, text=True, env=env)
        except FileNotFoundError as e:
            raise ValueError(f"{OGR2OGR} not found on PATH; install GDAL or use the 'sql' strategy") from e

        if result.returncode != 0:
            stderr = result.stderr.strip()
            logger.error(f"{OGR2OGR} exited with status {result.returncode} for {path}")
            logger.error(f"Query: {query}")
            if stderr:
                logger.error(stderr)
            raise ValueError(f"{OGR2OGR} failed with status {result.returncode} writing {path}: {stderr}\nQuery: {query}")

    def _export_geopandas(self, spec: ChunkSpec, path: Path, properties: Sequence[str]) -> None:
        query = self.source.render(projected_chunk_rows(self.table, spec, properties, self.target_srid))
        logger.debug(f"Reading offset {spec.offset} with geopandas: {query}")

        try:
            gdf = gpd.read_postgis(
                query,
                self.source.connection,
                geom_col=self.table.geom_column,
                crs=f"EPSG:{self.target_srid}",
            )
        except (psycopg.Error, pd.errors.DatabaseError) as e:
            raise QueryExecutionError(query, str(e)) from e
        except GEOPANDAS_ERRORS as e:
            raise ChunkExportError(spec.offset, f"could not read geometries: {e}") from e

        if gdf.empty:
            # an empty frame has no schema to hand to the GeoJSON driver
            with open(path, "w", encoding="utf-8") as f:
                json.dump({"type": "FeatureCollection", "features": []}, f)
            return

        try:
            gdf.to_file(path, driver="GeoJSON")
        except GEOPANDAS_ERRORS as e:
            remove_file(path)
            raise ChunkExportError(spec.offset, f"could not write {path}: {e}") from e
        if not self._validate_geojson_file(path):
            raise ValueError(f"Generated GeoJSON chunk is invalid: {path}")

    def _validate_geojson_file(self, filepath: Path) -> bool:
        """Validate that an exported GeoJSON chunk is a FeatureCollection."""
        try:
            with open(filepath, encoding='utf-8') as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            logger.error(f"GeoJSON validation failed: {e}")
            return False

        if not isinstance(data, dict) or data.get("type") != "FeatureCollection":
            logger.error("Invalid GeoJSON: root must be a FeatureCollection")
            return False

        if not isinstance(data.get("features"), list):
            logger.error("Invalid GeoJSON: features must be an array")
            return False

        return True
