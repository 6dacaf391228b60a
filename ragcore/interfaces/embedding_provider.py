"""Abstract base class for text-embedding service providers.

Defines the contract the core depends on for turning chunk text into
fixed-dimension vectors.  The core treats the provider as a black box:
failures are reported as :class:`~ragcore.utils.errors.EmbeddingError`
with a ``transient`` flag, and the pipeline decides whether to retry.
"""

from __future__ import annotations

from abc import ABC, abstractmethod


# Concrete implementations:
#   OpenAIEmbeddingProvider  - text-embedding-3-small (requires API key)
#   NomicEmbeddingProvider   - nomic-embed-text via Ollama (local)
# Located in: ragcore/providers/embedding/
class IEmbeddingProvider(ABC):
    """Contract for text-embedding services used by ingestion and retrieval.

    Embeddings are persisted by
    :class:`~ragcore.interfaces.chunk_store.IChunkStore` and compared
    against query embeddings at search time.
    """

    @abstractmethod
    async def embed(self, texts: list[str]) -> list[list[float]]:
        """Embed *texts*, returning one vector per input in input order.

        An empty list returns an empty list without contacting the backend.
        Per-request size limits are the provider's concern; callers may pass
        any number of texts.

        Raises
        ------
        ragcore.utils.errors.EmbeddingError
            ``transient=True`` for connection, timeout, rate-limit and 5xx
            failures; ``transient=False`` for anything a retry cannot fix
            (bad credentials, rejected input).
        """

    @abstractmethod
    async def embed_single(self, text: str) -> list[float]:
        """Generate an embedding vector for a single text string (e.g. a query)."""

    @abstractmethod
    def get_dimension(self) -> int:
        """Return the dimensionality of the embedding vectors.

        Constant for the lifetime of the provider and equal to the
        dimension the chunk store was configured with.  Example values:
        ``1536`` (OpenAI ``text-embedding-3-small``), ``768`` (Nomic).
        """

    @abstractmethod
    def get_provider_name(self) -> str:
        """Return a human-readable identifier, e.g. ``"openai-text-embedding-3-small"``."""

    @abstractmethod
    def is_available(self) -> bool:
        """Return ``True`` if the provider is configured (credentials present, etc.)."""
