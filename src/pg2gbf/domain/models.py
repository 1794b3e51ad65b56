"""
Pipeline Domain Models

Pydantic models for type safety and validation across the pipeline.
These models describe the source table and the pagination windows used to
export it chunk by chunk.
"""

from pathlib import Path

from pydantic import BaseModel, Field, field_validator

from .naming import chunk_path


class TableDescriptor(BaseModel):
    """Source table with its identifier and geometry columns."""
    name: str = Field(..., description="Table name, optionally schema-qualified (schema.table)")
    id_column: str = Field(default="id", description="Totally ordered column used for pagination")
    geom_column: str = Field(default="geom", description="Geometry column in the source CRS")

    class Config:
        """Pydantic configuration."""
        frozen = True

    @field_validator("name", "id_column", "geom_column")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        if not value or not value.strip():
            raise ValueError("identifier cannot be empty")
        return value.strip()

    @property
    def name_parts(self) -> tuple[str, ...]:
        """Name split into schema and table parts for identifier quoting."""
        return tuple(self.name.split("."))


class ChunkSpec(BaseModel):
    """A single offset/size pagination window over the identifier ordering."""
    offset: int = Field(..., ge=0, description="Row offset, a multiple of size")
    size: int = Field(..., ge=1, description="Maximum rows in the chunk")

    class Config:
        """Pydantic configuration."""
        frozen = True

    def path(self, base: Path, extension: str) -> Path:
        return chunk_path(base, self.offset, extension)


class ChunkFile(BaseModel):
    """A chunk file written by the exporter."""
    spec: ChunkSpec
    path: Path

    class Config:
        """Pydantic configuration."""
        frozen = True


def plan_chunks(count: int, size: int) -> list[ChunkSpec]:
    """
    Build the chunk windows for a table with ``count`` rows.

    Offsets run 0, size, 2*size, ... while ``offset <= count``. When ``count``
    is an exact multiple of ``size`` this yields a final window starting at
    ``count`` that selects no rows; that trailing empty chunk is kept.

    Args:
        count: Total number of rows in the table
        size: Rows per chunk

    Returns:
        Chunk specs in strictly increasing offset order
    """
    if count < 0:
        raise ValueError(f"Row count must be non-negative, got {count}")
    if size < 1:
        raise ValueError(f"Chunk size must be positive, got {size}")
    return [ChunkSpec(offset=offset, size=size) for offset in range(0, count + 1, size)]
