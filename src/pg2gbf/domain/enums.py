"""
Pipeline Enumerations

Core enums for type safety and clear interface definitions across the pipeline.
"""

from enum import Enum


class ExportStrategy(str, Enum):
    """How a single chunk is materialized from the database."""
    SQL = "sql"             # FeatureCollection built in PostGIS with jsonb aggregation
    OGR = "ogr"             # Delegated to ogr2ogr with the same bounded query
    GEOPANDAS = "geopandas" # Read with geopandas.read_postgis, written by GeoDataFrame.to_file


class ChunkFormat(str, Enum):
    """File format of the per-chunk intermediate files."""
    GEOJSON = "geojson"     # Text FeatureCollection, default
    GEOBUF = "geobuf"       # ST_AsGeobuf output, written as raw bytes

    @property
    def extension(self) -> str:
        return {ChunkFormat.GEOJSON: "geojson", ChunkFormat.GEOBUF: "gbf"}[self]

    @property
    def is_binary(self) -> bool:
        return self is ChunkFormat.GEOBUF
