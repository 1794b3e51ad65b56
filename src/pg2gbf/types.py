"""
Type definitions for the table export pipeline.

Result objects returned by each pipeline stage and the exception hierarchy
raised when a stage fails. Every failure is fatal to the run: stages raise,
the orchestrator propagates, and the CLI turns the error into exit status 1.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional


@dataclass(frozen=True)
class MergeResult:
    """Outcome of merging chunk files into a single GeoJSON dataset."""
    path: Path
    feature_count: int = 0
    chunk_count: int = 0
    properties: tuple[str, ...] = ()
    undeleted: tuple[Path, ...] = ()


@dataclass(frozen=True)
class ConversionResult:
    """Outcome of re-encoding the merged dataset as Geobuf."""
    source: Path
    path: Path
    feature_count: int = 0
    size_bytes: int = 0


@dataclass
class PipelineResult:
    """Summary of a complete run, used for the final log report."""
    row_count: int
    chunk_paths: list[Path] = field(default_factory=list)
    merge: Optional[MergeResult] = None
    conversion: Optional[ConversionResult] = None
    duration_s: float = 0.0

    @property
    def output_path(self) -> Optional[Path]:
        return self.conversion.path if self.conversion else None


# Pipeline exception hierarchy
class PipelineError(Exception):
    """Base exception for pipeline stage failures."""
    stage = "pipeline"

    def __init__(self, detail: str):
        self.detail = detail
        super().__init__(f"[{self.stage}] {detail}")


class QueryExecutionError(PipelineError):
    """A statement failed on the source database (connectivity, permission, engine error)."""
    stage = "query"

    def __init__(self, statement: str, message: str):
        self.statement = statement
        super().__init__(f"{message}\nStatement: {statement}")


class RowCountError(PipelineError):
    """The row count for the source table could not be determined."""
    stage = "count"


class ChunkExportError(PipelineError):
    """A chunk could not be exported; the run stops at this offset."""
    stage = "export"

    def __init__(self, offset: int, message: str):
        self.offset = offset
        super().__init__(f"chunk at offset {offset}: {message}")


class MergeError(PipelineError):
    """Chunk files could not be merged; chunk files are left on disk."""
    stage = "merge"


class ConversionError(PipelineError):
    """The merged dataset could not be re-encoded as Geobuf."""
    stage = "convert"

    def __init__(self, path: Path, message: str):
        self.path = path
        super().__init__(f"{path}: {message}")
