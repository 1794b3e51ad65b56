"""pg2gbf - export large PostGIS tables to Geobuf in chunks."""

__version__ = "0.1.0"
