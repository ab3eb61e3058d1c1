"""Nomic embedding provider adapter (local/free via Ollama).

Wraps the Ollama OpenAI-compatible endpoint to implement
:class:`IEmbeddingProvider` using ``nomic-embed-text`` (768 dimensions).
Runs locally with no API key required.

nomic-embed-text is trained with task prefixes, so the request's task hint
is translated into the matching prefix before the text is sent.
"""

from __future__ import annotations

from typing import Any

import httpx
import openai
import structlog

from knowledge_assistant.config.settings import Settings
from knowledge_assistant.interfaces.embedding_provider import IEmbeddingProvider
from knowledge_assistant.models.embedding import EmbeddingRequest, TaskHint
from knowledge_assistant.utils.errors import EmbeddingError

logger = structlog.get_logger(logger_name=__name__)

_NOMIC_MODEL = "nomic-embed-text"
_NOMIC_DIMENSION = 768

_TASK_PREFIXES: dict[TaskHint, str] = {
    TaskHint.RETRIEVAL_DOCUMENT: "search_document: ",
    TaskHint.RETRIEVAL_QUERY: "search_query: ",
    TaskHint.SEMANTIC_SIMILARITY: "search_query: ",
    TaskHint.CLASSIFICATION: "classification: ",
    TaskHint.CLUSTERING: "clustering: ",
}


def apply_task_prefix(text: str, task_hint: TaskHint | None) -> str:
    """Prepend the nomic task prefix for *task_hint* (no-op when ``None``)."""
    if task_hint is None:
        return text
    return f"{_TASK_PREFIXES[task_hint]}{text}"


class NomicEmbeddingProvider(IEmbeddingProvider):
    """Embedding provider backed by ``nomic-embed-text`` served via Ollama."""

    def __init__(self, settings: Settings) -> None:
        self._settings = settings
        self._base_url = settings.ollama_base_url.rstrip("/")
        self._client = openai.AsyncOpenAI(
            base_url=f"{self._base_url}/v1",
            api_key="ollama",  # Ollama ignores the key but the SDK requires one
        )

    # ------------------------------------------------------------------
    # IEmbeddingProvider implementation
    # ------------------------------------------------------------------

    async def embed(self, request: EmbeddingRequest) -> list[dict[str, Any]]:
        """Embed one text, prefixed according to its task hint."""
        if request.dimensions != _NOMIC_DIMENSION:
            logger.warning(
                "nomic_dimension_mismatch",
                requested=request.dimensions,
                native=_NOMIC_DIMENSION,
            )

        try:
            response = await self._client.embeddings.create(
                input=[apply_task_prefix(request.content, request.task_hint)],
                model=request.model,
            )
        except openai.APIError as exc:
            raise EmbeddingError(
                message=f"Nomic/Ollama embedding API error: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc

        logger.debug("nomic_embedding", model=request.model)
        return [{"embedding": getattr(item, "embedding", None)} for item in response.data or []]

    def get_default_model(self) -> str:
        return _NOMIC_MODEL

    def get_native_dimensions(self) -> int | None:
        return _NOMIC_DIMENSION

    def get_provider_name(self) -> str:
        return "nomic_embedding"

    def is_available(self) -> bool:
        """Return ``True`` if the Ollama server is reachable."""
        if not self._base_url:
            return False
        try:
            response = httpx.get(f"{self._base_url}/api/tags", timeout=3.0)
            return response.status_code == 200
        except (httpx.ConnectError, httpx.TimeoutException):
            return False
