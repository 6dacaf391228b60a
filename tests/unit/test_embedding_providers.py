"""Unit tests for the OpenAI and Nomic embedding provider adapters."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import openai
import pytest

from ragcore.config.settings import Settings
from ragcore.providers.embedding.nomic_embedding_provider import NomicEmbeddingProvider
from ragcore.providers.embedding.openai_embedding_provider import (
    OpenAIEmbeddingProvider,
    to_embedding_error,
)
from ragcore.utils.errors import EmbeddingError

_REQUEST = httpx.Request("POST", "https://api.example.test/v1/embeddings")


def _settings(**overrides) -> Settings:
    defaults = {
        "openai_api_key": "sk-test",
        "openai_base_url": "",
        "openai_embedding_model": "",
        "ollama_base_url": "http://localhost:11434",
        "ollama_embedding_model": "nomic-embed-text",
    }
    defaults.update(overrides)
    return Settings(**defaults)


def _response(*vectors: list[float]) -> MagicMock:
    response = MagicMock()
    response.data = [MagicMock(embedding=v) for v in vectors]
    response.usage = MagicMock(total_tokens=10)
    return response


def _status_error(cls: type[openai.APIStatusError], status: int) -> openai.APIStatusError:
    return cls(
        message=f"HTTP {status}",
        response=httpx.Response(status, request=_REQUEST),
        body=None,
    )


# ======================================================================
# Error mapping
# ======================================================================


class TestToEmbeddingError:
    @pytest.mark.parametrize(
        "exc",
        [
            openai.APIConnectionError(request=_REQUEST),
            openai.APITimeoutError(request=_REQUEST),
            _status_error(openai.RateLimitError, 429),
            _status_error(openai.InternalServerError, 500),
        ],
    )
    def test_transient_errors(self, exc: openai.APIError) -> None:
        error = to_embedding_error(exc, "openai_embedding", "openai_embedding")
        assert isinstance(error, EmbeddingError)
        assert error.transient is True
        assert error.provider_name == "openai_embedding"

    @pytest.mark.parametrize(
        "exc",
        [
            _status_error(openai.BadRequestError, 400),
            _status_error(openai.AuthenticationError, 401),
            openai.APIError(message="odd", request=_REQUEST, body=None),
        ],
    )
    def test_permanent_errors(self, exc: openai.APIError) -> None:
        assert to_embedding_error(exc, "x", "x").transient is False


# ======================================================================
# OpenAI Embedding Provider
# ======================================================================


class TestOpenAIEmbeddingProvider:
    @pytest.fixture()
    def settings(self) -> Settings:
        return _settings()

    def test_get_provider_name(self, settings: Settings) -> None:
        assert OpenAIEmbeddingProvider(settings).get_provider_name() == "openai_embedding"

    def test_compatible_host_label_and_model(self) -> None:
        provider = OpenAIEmbeddingProvider(
            _settings(
                openai_base_url="http://localhost:8080/v1",
                openai_embedding_model="BAAI/bge-small-en-v1.5",
            )
        )
        assert provider.get_provider_name() == "openai-compatible_embedding"
        assert provider.get_dimension() == 384

    def test_unknown_model_uses_configured_dimension(self) -> None:
        provider = OpenAIEmbeddingProvider(
            _settings(openai_embedding_model="custom-model", embedding_dimension=256)
        )
        assert provider.get_dimension() == 256

    def test_default_dimension(self, settings: Settings) -> None:
        assert OpenAIEmbeddingProvider(settings).get_dimension() == 1536

    def test_is_available(self, settings: Settings) -> None:
        assert OpenAIEmbeddingProvider(settings).is_available() is True
        assert OpenAIEmbeddingProvider(_settings(openai_api_key="")).is_available() is False

    @pytest.mark.asyncio
    async def test_embed_success(self, settings: Settings) -> None:
        mock_client = AsyncMock()
        mock_client.embeddings.create = AsyncMock(
            return_value=_response([0.1] * 1536, [0.2] * 1536)
        )

        with patch(
            "ragcore.providers.embedding.openai_embedding_provider.openai.AsyncOpenAI",
            return_value=mock_client,
        ):
            provider = OpenAIEmbeddingProvider(settings)
            result = await provider.embed(["hello", "world"])

        assert len(result) == 2
        assert result[1][0] == pytest.approx(0.2)
        kwargs = mock_client.embeddings.create.call_args.kwargs
        assert kwargs["model"] == "text-embedding-3-small"
        assert kwargs["input"] == ["hello", "world"]

    @pytest.mark.asyncio
    async def test_embed_empty_makes_no_call(self, settings: Settings) -> None:
        mock_client = AsyncMock()
        with patch(
            "ragcore.providers.embedding.openai_embedding_provider.openai.AsyncOpenAI",
            return_value=mock_client,
        ):
            provider = OpenAIEmbeddingProvider(settings)
            assert await provider.embed([]) == []
        mock_client.embeddings.create.assert_not_called()

    @pytest.mark.asyncio
    async def test_embed_batches_large_inputs(self, settings: Settings) -> None:
        calls: list[int] = []

        async def _create(input: list[str], model: str) -> MagicMock:
            calls.append(len(input))
            return _response(*([[0.0]] * len(input)))

        mock_client = AsyncMock()
        mock_client.embeddings.create = _create

        with patch(
            "ragcore.providers.embedding.openai_embedding_provider.openai.AsyncOpenAI",
            return_value=mock_client,
        ):
            provider = OpenAIEmbeddingProvider(settings)
            result = await provider.embed(["t"] * 2050)

        assert calls == [2048, 2]
        assert len(result) == 2050

    @pytest.mark.asyncio
    async def test_embed_single(self, settings: Settings) -> None:
        mock_client = AsyncMock()
        mock_client.embeddings.create = AsyncMock(return_value=_response([0.5] * 1536))

        with patch(
            "ragcore.providers.embedding.openai_embedding_provider.openai.AsyncOpenAI",
            return_value=mock_client,
        ):
            provider = OpenAIEmbeddingProvider(settings)
            result = await provider.embed_single("hello")

        assert len(result) == 1536

    @pytest.mark.asyncio
    async def test_embed_rate_limit_is_transient(self, settings: Settings) -> None:
        mock_client = AsyncMock()
        mock_client.embeddings.create = AsyncMock(
            side_effect=_status_error(openai.RateLimitError, 429)
        )

        with patch(
            "ragcore.providers.embedding.openai_embedding_provider.openai.AsyncOpenAI",
            return_value=mock_client,
        ):
            provider = OpenAIEmbeddingProvider(settings)
            with pytest.raises(EmbeddingError) as excinfo:
                await provider.embed(["test"])

        assert excinfo.value.transient is True


# ======================================================================
# Nomic Embedding Provider
# ======================================================================


class TestNomicEmbeddingProvider:
    @pytest.fixture()
    def settings(self) -> Settings:
        return _settings()

    def test_identity(self, settings: Settings) -> None:
        provider = NomicEmbeddingProvider(settings)
        assert provider.get_provider_name() == "nomic_embedding"
        assert provider.get_dimension() == 768

    @pytest.mark.parametrize(
        ("model", "expected"),
        [
            ("mxbai-embed-large", 1024),
            ("all-minilm:l6-v2", 384),
            ("custom-embedder", 8),
        ],
    )
    def test_dimension_follows_model(self, model: str, expected: int) -> None:
        settings = _settings(ollama_embedding_model=model, embedding_dimension=8)
        assert NomicEmbeddingProvider(settings).get_dimension() == expected

    @pytest.mark.asyncio
    async def test_embed_success(self, settings: Settings) -> None:
        mock_client = AsyncMock()
        mock_client.embeddings.create = AsyncMock(return_value=_response([0.3] * 768))

        with patch(
            "ragcore.providers.embedding.nomic_embedding_provider.openai.AsyncOpenAI",
            return_value=mock_client,
        ) as client_cls:
            provider = NomicEmbeddingProvider(settings)
            result = await provider.embed(["hello"])

        assert len(result[0]) == 768
        assert mock_client.embeddings.create.call_args.kwargs["model"] == "nomic-embed-text"
        assert client_cls.call_args.kwargs["base_url"] == "http://localhost:11434/v1"

    @pytest.mark.asyncio
    async def test_embed_uses_smaller_batches(self, settings: Settings) -> None:
        calls: list[int] = []

        async def _create(input, model):  # noqa: A002
            calls.append(len(input))
            return _response(*([[0.0] * 768] * len(input)))

        mock_client = AsyncMock()
        mock_client.embeddings.create = AsyncMock(side_effect=_create)

        with patch(
            "ragcore.providers.embedding.nomic_embedding_provider.openai.AsyncOpenAI",
            return_value=mock_client,
        ):
            provider = NomicEmbeddingProvider(settings)
            result = await provider.embed(["t"] * 513)

        assert calls == [512, 1]
        assert len(result) == 513

    @pytest.mark.asyncio
    async def test_embed_connection_error_is_transient(self, settings: Settings) -> None:
        mock_client = AsyncMock()
        mock_client.embeddings.create = AsyncMock(
            side_effect=openai.APIConnectionError(request=_REQUEST)
        )

        with patch(
            "ragcore.providers.embedding.nomic_embedding_provider.openai.AsyncOpenAI",
            return_value=mock_client,
        ):
            provider = NomicEmbeddingProvider(settings)
            with pytest.raises(EmbeddingError) as excinfo:
                await provider.embed(["hello"])

        assert excinfo.value.transient is True
        assert excinfo.value.provider_name == "nomic_embedding"

    def test_available_when_model_is_pulled(self, settings: Settings) -> None:
        response = MagicMock(status_code=200)
        response.json.return_value = {"models": [{"name": "nomic-embed-text:latest"}]}
        with patch(
            "ragcore.providers.embedding.nomic_embedding_provider.httpx.get",
            return_value=response,
        ) as get:
            assert NomicEmbeddingProvider(settings).is_available() is True
        assert get.call_args.args[0] == "http://localhost:11434/api/tags"

    def test_unavailable_when_model_missing(self, settings: Settings) -> None:
        response = MagicMock(status_code=200)
        response.json.return_value = {"models": [{"name": "llama3:8b"}]}
        with patch(
            "ragcore.providers.embedding.nomic_embedding_provider.httpx.get",
            return_value=response,
        ):
            assert NomicEmbeddingProvider(settings).is_available() is False

    def test_unavailable_on_error_status(self, settings: Settings) -> None:
        with patch(
            "ragcore.providers.embedding.nomic_embedding_provider.httpx.get",
            return_value=MagicMock(status_code=500),
        ):
            assert NomicEmbeddingProvider(settings).is_available() is False

    def test_unavailable_when_server_down(self, settings: Settings) -> None:
        with patch(
            "ragcore.providers.embedding.nomic_embedding_provider.httpx.get",
            side_effect=httpx.ConnectError("refused"),
        ):
            assert NomicEmbeddingProvider(settings).is_available() is False
