"""
Table export pipeline components

Components run in sequence, handing data over as files:
- source: PostgresSource for statement execution and row counting
- export: ChunkExporter for paged per-chunk export (SQL, ogr2ogr or geopandas)
- merge: ChunkMerger for combining chunk files into one GeoJSON dataset
- convert: GeobufConverter for the final Geobuf encoding
- runner: run_pipeline wiring the stages together
"""

from .convert import GeobufConverter
from .export import ChunkExporter
from .merge import ChunkMerger
from .runner import run_pipeline
from .source import PostgresSource

__all__ = ["PostgresSource", "ChunkExporter", "ChunkMerger", "GeobufConverter", "run_pipeline"]
