"""Chunk models: chunker output and the stored, embedded chunk row."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field


def _utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)  # noqa: UP017


class ChunkType(str, Enum):  # noqa: UP042
    """Structural role of a chunk, assigned by the heuristic classifier."""

    HEADER = "header"
    LIST = "list"
    CONTACT = "contact"
    VISION = "vision"
    CONTENT = "content"


class ChunkLevel(str, Enum):  # noqa: UP042
    """Coarser product/formulation/ingredient granularity used by some deployments."""

    PRODUCT = "product_level"
    FORMULATION = "formulation_level"
    INGREDIENT = "ingredient_level"


# Section label and granularity per chunk type.
CHUNK_SECTIONS: dict[ChunkType, str] = {
    ChunkType.HEADER: "title",
    ChunkType.LIST: "initiatives",
    ChunkType.CONTACT: "contact",
    ChunkType.VISION: "vision",
    ChunkType.CONTENT: "description",
}

CHUNK_LEVELS: dict[ChunkType, ChunkLevel] = {
    ChunkType.HEADER: ChunkLevel.PRODUCT,
    ChunkType.LIST: ChunkLevel.FORMULATION,
    ChunkType.CONTACT: ChunkLevel.INGREDIENT,
    ChunkType.VISION: ChunkLevel.PRODUCT,
    ChunkType.CONTENT: ChunkLevel.PRODUCT,
}


class TextChunk(BaseModel):
    """One chunk emitted by :class:`~ragcore.services.chunker.TextChunker`.

    ``overlap_length`` is the number of leading characters of ``text`` that
    were copied from the previous chunk (including the joining blank line),
    so ``text[overlap_length:]`` is this chunk's own segment of the source.
    """

    model_config = ConfigDict(frozen=True)

    index: int = Field(ge=0)
    text: str
    chunk_type: ChunkType = ChunkType.CONTENT
    token_count: int = Field(default=0, ge=0)
    overlap_length: int = Field(default=0, ge=0)

    @property
    def own_text(self) -> str:
        return self.text[self.overlap_length:]


class DocumentChunk(BaseModel):
    """A stored unit of retrievable text derived from a document.

    ``content_hash`` is the global dedup key: the chunk store holds at most
    one row per fingerprint.
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: str(uuid4()))
    document_id: str
    chunk_index: int = Field(ge=0)
    chunk_text: str
    chunk_type: ChunkType = ChunkType.CONTENT
    token_count: int = Field(default=0, ge=0)
    confidence_score: float | None = Field(default=None, ge=0.0, le=1.0)
    embedding: list[float] = Field(default_factory=list)
    embedding_model: str = ""
    content_hash: str
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)
