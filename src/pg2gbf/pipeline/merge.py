"""
ChunkMerger - Combine chunk files into one GeoJSON dataset

Reads the chunk files produced by the exporter, concatenates their features
into a single FeatureCollection and deletes the chunks once the merged file
has been written and validated. If anything goes wrong before that point the
chunk files are left untouched.
"""

import json
import logging
from collections.abc import Iterable, Iterator, Sequence
from pathlib import Path
from typing import Any

import geobuf
from google.protobuf.message import DecodeError

from ..cleanup import remove_chunk_files
from ..domain.models import ChunkFile
from ..domain.naming import GEOBUF_EXTENSION
from ..types import MergeError, MergeResult
from ..utils import remove_file, timer

logger = logging.getLogger(__name__)


def read_feature_collection(path: Path) -> dict[str, Any]:
    """
    Load a chunk file as a GeoJSON FeatureCollection dict.

    ``.gbf`` chunks are decoded from Geobuf; an empty binary chunk (a chunk
    window with no rows) is an empty collection.
    """
    if path.suffix.lower() == f".{GEOBUF_EXTENSION}":
        payload = path.read_bytes()
        if not payload:
            return {"type": "FeatureCollection", "features": []}
        try:
            data = geobuf.decode(payload)
        except DecodeError as e:
            raise ValueError(f"{path} is not valid Geobuf: {e}") from e
    else:
        with open(path, encoding="utf-8") as f:
            data = json.load(f)

    if not isinstance(data, dict) or data.get("type") != "FeatureCollection":
        raise ValueError(f"{path} is not a FeatureCollection")
    if data.get("features") is None:
        data["features"] = []
    if not isinstance(data["features"], list):
        raise ValueError(f"{path}: features must be an array")
    return data


def merge_schema(collections: Iterable[dict[str, Any]]) -> list[str]:
    """Union of property names across all features, in first-seen order."""
    seen: dict[str, None] = {}
    for collection in collections:
        for feature in collection["features"]:
            for key in (feature.get("properties") or {}):
                seen.setdefault(key, None)
    return list(seen)


class ChunkMerger:
    """
    Merges chunk files into ``merged_path``.

    Every feature's properties are re-keyed to the unified schema so all
    features share the same attribute order; attributes a chunk did not
    carry are written as null. Chunks are read twice (schema, then output)
    so only one chunk is held in memory while the merged file is written.
    """

    def __init__(self, merged_path: Path, delete_chunks: bool = True):
        self.merged_path = merged_path
        self.delete_chunks = delete_chunks

    @timer
    def merge(self, chunks: Sequence[ChunkFile | Path]) -> MergeResult:
        """
        Merge chunk files and remove them.

        Args:
            chunks: Chunk files in the order they should appear

        Returns:
            MergeResult with the merged feature count and schema

        Raises:
            MergeError: If a chunk cannot be read or the output cannot be written
        """
        paths = [chunk.path if isinstance(chunk, ChunkFile) else Path(chunk) for chunk in chunks]
        if not paths:
            raise MergeError(f"no chunk files to merge into {self.merged_path}")

        logger.info(f"Merging {len(paths)} chunk file(s) into {self.merged_path}")

        # first pass: schema and feature count, one chunk in memory at a time
        schema: dict[str, None] = {}
        expected = 0
        for path, collection in self._read_chunks(paths):
            logger.debug(f"Read {len(collection['features']):,} features from {path}")
            expected += len(collection["features"])
            for key in merge_schema([collection]):
                schema.setdefault(key, None)
        properties = list(schema)

        try:
            written = self._write(paths, properties)
        except MergeError:
            remove_file(self.merged_path)
            raise
        except (OSError, TypeError, ValueError) as e:
            remove_file(self.merged_path)
            raise MergeError(f"could not write {self.merged_path}: {e}") from e

        if not self._validate_geojson_file(self.merged_path, expected):
            remove_file(self.merged_path)
            raise MergeError(f"merged file {self.merged_path} failed validation; chunk files kept")

        logger.info(f"Merged {written:,} features with {len(properties)} properties into {self.merged_path}")

        undeleted: list[Path] = []
        if self.delete_chunks:
            undeleted = remove_chunk_files(paths)

        return MergeResult(
            path=self.merged_path,
            feature_count=written,
            chunk_count=len(paths),
            properties=tuple(properties),
            undeleted=tuple(undeleted),
        )

    def _read_chunks(self, paths: Sequence[Path]) -> Iterator[tuple[Path, dict[str, Any]]]:
        for path in paths:
            try:
                collection = read_feature_collection(path)
            except (OSError, ValueError) as e:
                raise MergeError(f"could not read chunk {path}: {e}") from e
            yield path, collection

    def _write(self, paths: Sequence[Path], properties: Sequence[str]) -> int:
        """Stream every chunk's features into the merged file, re-keyed to ``properties``."""
        written = 0
        self.merged_path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.merged_path, "w", encoding="utf-8") as f:
            f.write('{"type": "FeatureCollection", "features": [')
            for _, collection in self._read_chunks(paths):
                for feature in collection["features"]:
                    if written:
                        f.write(",")
                    json.dump(_unify(feature, properties), f, ensure_ascii=False)
                    written += 1
            f.write("]}")
        return written

    def _validate_geojson_file(self, filepath: Path, expected_features: int) -> bool:
        """Validate the merged file and its feature count."""
        try:
            data = read_feature_collection(filepath)
        except (OSError, ValueError) as e:
            logger.error(f"GeoJSON validation failed: {e}")
            return False

        if len(data["features"]) != expected_features:
            logger.error(f"Merged file has {len(data['features']):,} features, expected {expected_features:,}")
            return False
        return True


def _unify(feature: dict[str, Any], properties: Sequence[str]) -> dict[str, Any]:
    source = feature.get("properties") or {}
    unified = {
        "type": "Feature",
        "geometry": feature.get("geometry"),
        "properties": {key: source.get(key) for key in properties},
    }
    if "id" in feature:
        unified["id"] = feature["id"]
    return unified
