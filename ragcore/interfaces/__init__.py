"""Abstract contracts implemented by the adapters under ``ragcore.providers``."""

from __future__ import annotations

from ragcore.interfaces.chunk_store import IChunkStore
from ragcore.interfaces.document_repository import IDocumentRepository
from ragcore.interfaces.embedding_provider import IEmbeddingProvider
from ragcore.interfaces.text_extractor import ITextExtractor

__all__ = [
    "IChunkStore",
    "IDocumentRepository",
    "IEmbeddingProvider",
    "ITextExtractor",
]
