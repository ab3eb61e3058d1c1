"""OpenAI-compatible embedding provider adapter.

Wraps the ``openai`` async client to implement :class:`IEmbeddingProvider`.
Supports real OpenAI and OpenAI-compatible services (TogetherAI, Anyscale,
Fireworks) via custom ``base_url`` and model name settings.

OpenAI has no notion of task hints; the hint is accepted and ignored so
the same :class:`EmbeddingClient` can drive any provider.
"""

from __future__ import annotations

from typing import Any

import openai
import structlog

from knowledge_assistant.config.settings import Settings
from knowledge_assistant.interfaces.embedding_provider import IEmbeddingProvider
from knowledge_assistant.models.embedding import EmbeddingRequest
from knowledge_assistant.utils.errors import EmbeddingError

logger = structlog.get_logger(logger_name=__name__)

_DEFAULT_MODEL = "text-embedding-3-small"

# Models that accept the ``dimensions`` parameter (Matryoshka truncation).
_DIMENSION_AWARE_MODELS = frozenset({"text-embedding-3-small", "text-embedding-3-large"})


class OpenAIEmbeddingProvider(IEmbeddingProvider):
    """Embedding provider backed by an OpenAI-compatible embeddings API.

    Uses ``text-embedding-3-small`` by default.  When ``openai_base_url`` is
    configured the client points at that URL and uses
    ``openai_embedding_model`` if set.
    """

    def __init__(self, settings: Settings) -> None:
        self._settings = settings
        self._api_key = settings.openai_api_key

        client_kwargs: dict = {"api_key": self._api_key}
        if settings.openai_base_url:
            client_kwargs["base_url"] = settings.openai_base_url

        self._client = openai.AsyncOpenAI(**client_kwargs)
        self._model = settings.openai_embedding_model or _DEFAULT_MODEL
        self._provider_label = (
            "openai-compatible_embedding" if settings.openai_base_url else "openai_embedding"
        )

    # ------------------------------------------------------------------
    # IEmbeddingProvider implementation
    # ------------------------------------------------------------------

    async def embed(self, request: EmbeddingRequest) -> list[dict[str, Any]]:
        """Embed one text via ``embeddings.create``."""
        kwargs: dict[str, Any] = {"input": [request.content], "model": request.model}
        if request.model in _DIMENSION_AWARE_MODELS:
            kwargs["dimensions"] = request.dimensions

        try:
            response = await self._client.embeddings.create(**kwargs)
        except openai.APIError as exc:
            raise EmbeddingError(
                message=f"{self._provider_label} API error: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc

        logger.debug(
            "openai_embedding",
            model=request.model,
            provider=self._provider_label,
            task_hint=request.task_hint.value if request.task_hint else None,
            tokens=response.usage.total_tokens if response.usage else None,
        )
        return [{"embedding": getattr(item, "embedding", None)} for item in response.data or []]

    def get_default_model(self) -> str:
        return self._model

    def get_provider_name(self) -> str:
        return self._provider_label

    def is_available(self) -> bool:
        """Return ``True`` if an API key is configured."""
        return bool(self._api_key)
