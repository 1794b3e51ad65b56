import logging
import sys
from pathlib import Path
from typing import Annotated, NoReturn, Optional

import typer

from . import __version__
from .cleanup import register_cleanup_handlers
from .config.settings import Config, ConfigurationError, ExportConfig
from .domain.enums import ChunkFormat, ExportStrategy
from .domain.models import plan_chunks
from .domain.naming import GEOJSON_EXTENSION, base_path, discover_chunks, merged_path
from .pipeline.convert import GeobufConverter
from .pipeline.merge import ChunkMerger
from .pipeline.runner import output_for, run_pipeline
from .pipeline.source import PostgresSource
from .types import PipelineError
from .utils import setup_logging

app = typer.Typer(help="Export a PostGIS table to Geobuf: count -> chunk export -> merge -> convert")


def load_settings(
    env_file: Optional[Path],
    require_database: bool = True,
    **overrides,
) -> tuple[Config, ExportConfig]:
    """
    Load configuration from the environment and apply CLI overrides.

    Options left as None keep the value from the environment (or its default).
    """
    try:
        config = Config(env_file=env_file, require_database=require_database)
        values = {k: v for k, v in overrides.items() if v is not None}
        if values:
            current = config.export
            config.export = ExportConfig(**{**current.__dict__, **values})
    except (ConfigurationError, ValueError) as e:
        typer.echo(f"ERROR: configuration: {e}", err=True)
        raise typer.Exit(1)
    return config, config.export


def fail(stage: str, error: Exception, verbose: bool = False) -> NoReturn:
    """Report a failed stage on stderr and exit with status 1."""
    logging.error("=" * 50)
    logging.error(f"{stage.upper()} FAILED")
    logging.error("=" * 50)
    logging.error(f"Error type: {type(error).__name__}")
    logging.error(f"Error message: {error}")
    if verbose:
        import traceback
        logging.error(f"Full traceback: {traceback.format_exc()}")
    typer.echo(f"ERROR: stage '{stage}' failed: {error}", err=True)
    raise typer.Exit(1)


EnvFileOption = Annotated[Optional[Path], typer.Option("--env-file", help="Explicit .env file to load")]
TableOption = Annotated[Optional[str], typer.Option("--table", "-t", help="Source table, optionally schema-qualified [env: TABLE_NAME]")]
VerboseOption = Annotated[bool, typer.Option("--verbose", "-v", help="Enable detailed logging output")]


@app.command("run")
def run_command(
    output_path: Annotated[Optional[str], typer.Argument(help="Merged GeoJSON path; the Geobuf file is written next to it [env: OUTPUT_PATH]")] = None,
    table: TableOption = None,
    id_column: Annotated[Optional[str], typer.Option("--id-column", help="Identifier column used for paging [env: ID_COLUMN]")] = None,
    geom_column: Annotated[Optional[str], typer.Option("--geom-column", help="Geometry column [env: GEOM_COLUMN]")] = None,
    chunk_size: Annotated[Optional[int], typer.Option("--chunk-size", "-s", help="Rows per chunk [env: CHUNK_SIZE]")] = None,
    strategy: Annotated[Optional[ExportStrategy], typer.Option("--strategy", help="Chunk export strategy [env: EXPORT_STRATEGY]")] = None,
    chunk_format: Annotated[Optional[ChunkFormat], typer.Option("--chunk-format", help="Chunk file format (geobuf needs --strategy sql) [env: CHUNK_FORMAT]")] = None,
    keep_merged: Annotated[Optional[bool], typer.Option("--keep-merged/--drop-merged", help="Keep the merged GeoJSON after conversion [env: KEEP_MERGED]")] = None,
    env_file: EnvFileOption = None,
    verbose: VerboseOption = False,
    log_to_file: Annotated[bool, typer.Option("--log-to-file", help="Create timestamped log files")] = False,
):
    """
    Export a table to a single Geobuf file.

    Examples:
        pg2gbf run --table parcels
        pg2gbf run out/parcels.geojson --table public.parcels --chunk-size 250000 --strategy sql
    """
    config, settings = load_settings(
        env_file,
        table_name=table,
        id_column=id_column,
        geom_column=geom_column,
        chunk_size=chunk_size,
        output_path=output_path,
        strategy=strategy,
        chunk_format=chunk_format,
        keep_merged=keep_merged,
    )

    setup_logging(verbose, settings.table_name, log_to_file)
    register_cleanup_handlers()

    logging.info(f"Original command: pg2gbf {' '.join(sys.argv[1:])}")
    logging.debug(f"Configuration: {config.get_security_summary()}")

    with PostgresSource(config.postgres) as source:
        try:
            result = run_pipeline(source, settings)
        except PipelineError as e:
            fail(e.stage, e, verbose)

    print(f"Exported to: {result.output_path}")


@app.command("count")
def count_command(
    table: TableOption = None,
    env_file: EnvFileOption = None,
    verbose: VerboseOption = False,
):
    """Print the number of rows in the source table."""
    config, settings = load_settings(env_file, table_name=table)
    setup_logging(verbose)

    with PostgresSource(config.postgres) as source:
        try:
            count = source.count_rows(settings.table)
        except PipelineError as e:
            fail(e.stage, e, verbose)

    typer.echo(str(count))


@app.command("plan")
def plan_command(
    table: TableOption = None,
    chunk_size: Annotated[Optional[int], typer.Option("--chunk-size", "-s", help="Rows per chunk [env: CHUNK_SIZE]")] = None,
    rows: Annotated[Optional[int], typer.Option("--rows", help="Plan for this row count instead of counting the table")] = None,
    env_file: EnvFileOption = None,
    verbose: VerboseOption = False,
):
    """
    Show the chunk files a run would produce.

    With --rows no database connection is made.
    """
    config, settings = load_settings(env_file, require_database=rows is None, table_name=table, chunk_size=chunk_size)
    setup_logging(verbose)

    if rows is None:
        with PostgresSource(config.postgres) as source:
            try:
                rows = source.count_rows(settings.table)
            except PipelineError as e:
                fail(e.stage, e, verbose)

    base = base_path(settings.output_path, GEOJSON_EXTENSION)
    try:
        specs = plan_chunks(rows, settings.chunk_size)
    except ValueError as e:
        typer.echo(f"ERROR: {e}", err=True)
        raise typer.Exit(1)

    for spec in specs:
        typer.echo(f"{spec.offset}\t{spec.size}\t{spec.path(base, settings.chunk_format.extension)}")
    typer.echo(f"{len(specs)} chunk(s) for {rows:,} rows -> {output_for(settings)}")


@app.command("merge")
def merge_command(
    output_path: Annotated[Path, typer.Argument(help="Merged GeoJSON path whose chunk files should be merged")],
    chunk_format: Annotated[ChunkFormat, typer.Option("--chunk-format", help="Format of the chunk files on disk")] = ChunkFormat.GEOJSON,
    verbose: VerboseOption = False,
):
    """Merge chunk files left on disk by an earlier run into OUTPUT_PATH."""
    setup_logging(verbose)
    base = base_path(output_path, GEOJSON_EXTENSION)
    chunks = discover_chunks(base, chunk_format.extension)
    if not chunks:
        typer.echo(f"ERROR: no chunk files matching {base.name}_<offset>.{chunk_format.extension}", err=True)
        raise typer.Exit(1)

    try:
        result = ChunkMerger(merged_path(base, GEOJSON_EXTENSION)).merge(chunks)
    except PipelineError as e:
        fail(e.stage, e, verbose)

    typer.echo(f"Merged {result.feature_count:,} features from {result.chunk_count} chunk(s) into {result.path}")


@app.command("convert")
def convert_command(
    geojson_path: Annotated[Path, typer.Argument(help="GeoJSON FeatureCollection to convert")],
    output: Annotated[Optional[Path], typer.Option("--output", "-o", help="Output path (defaults to <input>.gbf)")] = None,
    precision: Annotated[int, typer.Option("--precision", help="Coordinate precision in decimal digits")] = 6,
    verbose: VerboseOption = False,
):
    """Convert a GeoJSON file to Geobuf."""
    setup_logging(verbose)
    try:
        result = GeobufConverter(precision=precision).convert(geojson_path, output)
    except PipelineError as e:
        fail(e.stage, e, verbose)

    typer.echo(f"Converted {result.feature_count:,} features to {result.path}")


@app.command("inspect")
def inspect_command(
    gbf_path: Annotated[Path, typer.Argument(help="Geobuf file to decode")],
    verbose: VerboseOption = False,
):
    """Decode a Geobuf file and print its feature count and properties."""
    setup_logging(verbose)
    try:
        data = GeobufConverter.decode(gbf_path)
    except PipelineError as e:
        fail(e.stage, e, verbose)

    features = data.get("features") or []
    properties: dict[str, None] = {}
    for feature in features:
        for key in (feature.get("properties") or {}):
            properties.setdefault(key, None)

    typer.echo(f"Features: {len(features):,}")
    typer.echo(f"Properties: {', '.join(properties) or '-'}")


@app.command("version")
def version_command():
    """Print the package version."""
    typer.echo(f"pg2gbf {__version__}")


def main():
    app()


if __name__ == "__main__":
    main()
