"""
GeobufConverter - Re-encode the merged GeoJSON as Geobuf

Geobuf is a protobuf encoding of GeoJSON; coordinates are stored as integers
scaled by 10**precision, so round trips are exact up to that precision.
"""

import json
import logging
from pathlib import Path
from typing import Any, Optional

import geobuf
from geobuf.encode import Encoder
from google.protobuf.message import DecodeError

from ..domain.naming import GEOBUF_EXTENSION, converted_path
from ..types import ConversionError, ConversionResult
from ..utils import timer

logger = logging.getLogger(__name__)


class NullPreservingEncoder(Encoder):
    """Geobuf encoder that writes null property values as JSON ``null``."""

    def encode_property(self, key, val, properties, values):
        super().encode_property(key, val, properties, values)
        if val is None:
            values[-1].json_value = b"null"


class GeobufConverter:
    """Converts a GeoJSON FeatureCollection file to a sibling ``.gbf`` file."""

    def __init__(self, precision: int = 6, dim: int = 2, extension: str = GEOBUF_EXTENSION):
        self.precision = precision
        self.dim = dim
        self.extension = extension

    def output_path(self, source: Path) -> Path:
        return converted_path(source, self.extension)

    @timer
    def convert(self, source: Path, output: Optional[Path] = None) -> ConversionResult:
        """
        Encode ``source`` as Geobuf.

        Args:
            source: Merged GeoJSON file
            output: Destination (defaults to ``source`` with the Geobuf extension)

        Returns:
            ConversionResult with output path, feature count and size

        Raises:
            ConversionError: If the input cannot be read or encoded
        """
        output = output or self.output_path(source)
        logger.info(f"Converting {source} to Geobuf ({output})")

        try:
            with open(source, encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            raise ConversionError(source, f"could not read GeoJSON: {e}") from e

        if not isinstance(data, dict) or data.get("type") != "FeatureCollection":
            raise ConversionError(source, "root must be a FeatureCollection")

        try:
            payload = NullPreservingEncoder().encode(data, self.precision, self.dim)
        except Exception as e:
            raise ConversionError(source, f"could not encode as Geobuf: {e}") from e

        try:
            output.write_bytes(payload)
        except OSError as e:
            raise ConversionError(output, f"could not write output: {e}") from e

        feature_count = len(data.get("features") or [])
        logger.info(f"Wrote {feature_count:,} features to {output} ({len(payload):,} bytes)")
        return ConversionResult(
            source=source,
            path=output,
            feature_count=feature_count,
            size_bytes=len(payload),
        )

    @staticmethod
    def decode(path: Path) -> dict[str, Any]:
        """Decode a Geobuf file back into a GeoJSON dict."""
        try:
            return geobuf.decode(path.read_bytes())
        except (OSError, ValueError, DecodeError) as e:
            raise ConversionError(path, f"could not decode Geobuf: {e}") from e

