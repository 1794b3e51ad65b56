"""
Domain Models and Types

This module contains the core domain models and enumerations used throughout the pipeline.

Models:
- TableDescriptor: Source table with identifier and geometry columns
- ChunkSpec: Offset/size pagination window
- ChunkFile: Chunk file written by the exporter

Enums:
- ExportStrategy: In-database SQL, ogr2ogr or geopandas chunk export
- ChunkFormat: GeoJSON or Geobuf chunk files
"""

from .enums import ChunkFormat, ExportStrategy
from .models import ChunkFile, ChunkSpec, TableDescriptor, plan_chunks

__all__ = [
    "TableDescriptor", "ChunkSpec", "ChunkFile", "plan_chunks",
    "ExportStrategy", "ChunkFormat"
]
