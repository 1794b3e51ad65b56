"""
File naming conventions shared by the exporter, merger and converter.

    <base>_<offset>.<ext>   chunk file
    <base>.<ext>            merged dataset
    <base>.gbf              Geobuf output
"""

import re
from pathlib import Path

GEOJSON_EXTENSION = "geojson"
GEOBUF_EXTENSION = "gbf"


def base_path(file_path: str | Path, extension: str = GEOJSON_EXTENSION) -> Path:
    """Strip a trailing ``.<extension>`` from ``file_path``."""
    path = Path(file_path)
    if path.suffix.lower() == f".{extension.lower()}":
        return path.with_suffix("")
    return path


def chunk_path(base: Path, offset: int, extension: str = GEOJSON_EXTENSION) -> Path:
    return base.with_name(f"{base.name}_{offset}.{extension}")


def merged_path(base: Path, extension: str = GEOJSON_EXTENSION) -> Path:
    return base.with_name(f"{base.name}.{extension}")


def converted_path(merged: Path, extension: str = GEOBUF_EXTENSION) -> Path:
    return merged.with_suffix(f".{extension}")


def chunk_offset(path: Path, base: Path, extension: str = GEOJSON_EXTENSION) -> int | None:
    """Return the offset encoded in a chunk file name, or None if it is not a chunk of ``base``."""
    pattern = rf"^{re.escape(base.name)}_(\d+)\.{re.escape(extension)}$"
    match = re.match(pattern, path.name)
    return int(match.group(1)) if match else None


def discover_chunks(base: Path, extension: str = GEOJSON_EXTENSION) -> list[Path]:
    """
    Find chunk files of ``base`` on disk, ordered by offset.

    Only used to recover chunks left behind by an earlier run; a normal run
    hands the exporter's list straight to the merger.
    """
    found = []
    for candidate in base.parent.glob(f"{base.name}_*.{extension}"):
        offset = chunk_offset(candidate, base, extension)
        if offset is not None:
            found.append((offset, candidate))
    return [path for _, path in sorted(found)]
