"""Embedding provider implementations.

Two implementations of IEmbeddingProvider:
    1. OpenAIEmbeddingProvider : text-embedding-3-small (1536 dims).
       Requires an API key; also serves OpenAI-compatible hosts.
    2. NomicEmbeddingProvider  : nomic-embed-text via Ollama (768 dims).
       Free and local, but requires a running Ollama server.
"""

from ragcore.providers.embedding.nomic_embedding_provider import NomicEmbeddingProvider
from ragcore.providers.embedding.openai_embedding_provider import OpenAIEmbeddingProvider

__all__ = ["NomicEmbeddingProvider", "OpenAIEmbeddingProvider"]
