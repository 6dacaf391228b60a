"""Local embeddings through Ollama (``nomic-embed-text`` by default).

Ollama serves an OpenAI-compatible ``/v1/embeddings`` route, so this
adapter reuses :class:`OpenAIEmbeddingProvider` for requests, batching and
error mapping.  What differs is the endpoint, the smaller per-request batch,
and availability: the server must be up *and* have the model pulled.
"""

from __future__ import annotations

import httpx
import openai
import structlog

from ragcore.config.settings import Settings
from ragcore.providers.embedding.openai_embedding_provider import OpenAIEmbeddingProvider

logger = structlog.get_logger(logger_name=__name__)

# Output sizes of common Ollama embedding models, keyed without the ":tag".
_OLLAMA_MODEL_DIMENSIONS: dict[str, int] = {
    "nomic-embed-text": 768,
    "mxbai-embed-large": 1024,
    "all-minilm": 384,
    "snowflake-arctic-embed": 1024,
}


def _base_name(model: str) -> str:
    return model.split(":", 1)[0]


class NomicEmbeddingProvider(OpenAIEmbeddingProvider):
    """Embedding provider for a model served by a local Ollama instance.

    Unknown models report the deployment's ``embedding_dimension``; the
    pipeline rejects vectors that turn out to have a different length.
    """

    batch_limit = 512

    def __init__(self, settings: Settings) -> None:
        self._settings = settings
        self._base_url = settings.ollama_base_url.rstrip("/")
        # Ollama ignores the key, but the client refuses to start without one.
        self._api_key = "ollama"
        self._client = openai.AsyncOpenAI(base_url=f"{self._base_url}/v1", api_key=self._api_key)
        self._model = settings.ollama_embedding_model or "nomic-embed-text"
        self._dimension = _OLLAMA_MODEL_DIMENSIONS.get(
            _base_name(self._model), settings.embedding_dimension
        )
        self._provider_label = "nomic_embedding"

    def is_available(self) -> bool:
        """Return ``True`` if Ollama answers and lists the configured model."""
        if not self._base_url:
            return False
        try:
            response = httpx.get(f"{self._base_url}/api/tags", timeout=3.0)
            if response.status_code != 200:
                return False
            models = response.json().get("models", [])
        except (httpx.HTTPError, ValueError):
            return False

        wanted = _base_name(self._model)
        pulled = {_base_name(entry.get("name", "")) for entry in models}
        if wanted not in pulled:
            logger.warning("ollama_model_missing", model=self._model, pulled=sorted(pulled))
            return False
        return True
