"""Embedding client: validation, truncation, batching and task hints.

Sits between the pipelines and an :class:`IEmbeddingProvider`.  The
provider only knows how to embed one request; this client adds:

- input validation (``None`` and blank text are distinct errors),
- truncation of text beyond ``MAX_TOKEN_LIMIT * CHARS_PER_TOKEN`` characters,
- the requested output dimensionality and an optional task hint,
- a shape check on every provider response,
- batch windows: texts inside one window are embedded concurrently with
  ``asyncio.gather``; windows run one after another so a failure stops
  work before the next window is sent.

A batch either succeeds completely or raises the first failure; partial
results are never returned.
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Any

import structlog

from knowledge_assistant.models.embedding import EmbeddingRequest, TaskHint
from knowledge_assistant.models.knowledge import SUPPORTED_EMBEDDING_DIMENSIONS
from knowledge_assistant.utils.errors import (
    EmbeddingError,
    InvalidEmbeddingResponseError,
    ValidationError,
)

if TYPE_CHECKING:
    from knowledge_assistant.interfaces.embedding_provider import IEmbeddingProvider

logger = structlog.get_logger(logger_name=__name__)

MAX_TOKEN_LIMIT = 2048
CHARS_PER_TOKEN = 4
DEFAULT_BATCH_SIZE = 100
DEFAULT_DIMENSIONS = 3072


class EmbeddingClient:
    """Generates embeddings through an :class:`IEmbeddingProvider`.

    Parameters
    ----------
    provider:
        The embedding backend.
    model:
        Model identifier; defaults to the provider's default model.
    dimensions:
        Requested vector size.  Must be one of 768, 1536 or 3072.
    batch_size:
        Number of texts embedded concurrently per window.
    """

    def __init__(
        self,
        provider: IEmbeddingProvider,
        model: str | None = None,
        dimensions: int = DEFAULT_DIMENSIONS,
        batch_size: int = DEFAULT_BATCH_SIZE,
    ) -> None:
        if dimensions <= 0:
            raise ValidationError("Dimensions must be a positive number")
        if batch_size <= 0:
            raise ValidationError("Batch size must be a positive number")
        if dimensions not in SUPPORTED_EMBEDDING_DIMENSIONS:
            supported = ", ".join(str(d) for d in SUPPORTED_EMBEDDING_DIMENSIONS)
            raise ValidationError(f"Invalid dimensions. Supported dimensions: {supported}")

        self._provider = provider
        self._model = model or provider.get_default_model()
        self._dimensions = dimensions
        self._batch_size = batch_size
        self._max_chars = MAX_TOKEN_LIMIT * CHARS_PER_TOKEN

    # ------------------------------------------------------------------
    # Single text
    # ------------------------------------------------------------------

    async def embed(self, text: str | None, task_hint: TaskHint | None = None) -> list[float]:
        """Embed one text, optionally tagged with a task hint.

        Raises
        ------
        ValidationError
            If *text* is ``None`` or blank.
        InvalidEmbeddingResponseError
            If the provider's response has no usable vector.
        EmbeddingError
            If the provider call fails.
        """
        self._validate_text(text)
        return await self._embed_validated(text, task_hint)  # type: ignore[arg-type]

    async def embed_document(self, text: str | None) -> list[float]:
        return await self.embed(text, TaskHint.RETRIEVAL_DOCUMENT)

    async def embed_query(self, text: str | None) -> list[float]:
        return await self.embed(text, TaskHint.RETRIEVAL_QUERY)

    # ------------------------------------------------------------------
    # Batches
    # ------------------------------------------------------------------

    async def embed_batch(
        self, texts: list[str], task_hint: TaskHint | None = None
    ) -> list[list[float]]:
        """Embed *texts* in input order.

        Every text is validated before any provider call.  One provider
        call is issued per text; ``batch_size`` only controls how many run
        concurrently.
        """
        if not texts:
            return []
        for text in texts:
            self._validate_text(text)

        vectors: list[list[float]] = []
        for start in range(0, len(texts), self._batch_size):
            window = texts[start : start + self._batch_size]
            results = await asyncio.gather(
                *(self._embed_validated(t, task_hint) for t in window)
            )
            vectors.extend(results)
            logger.debug(
                "embedding_batch_window",
                window_start=start,
                window_size=len(window),
                total=len(texts),
            )
        logger.info(
            "embedding_batch_complete",
            count=len(vectors),
            model=self._model,
            task_hint=task_hint.value if task_hint else None,
        )
        return vectors

    async def embed_documents(self, texts: list[str]) -> list[list[float]]:
        return await self.embed_batch(texts, TaskHint.RETRIEVAL_DOCUMENT)

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    def get_embedding_dimension(self) -> int:
        return self._dimensions

    def get_config(self) -> dict[str, Any]:
        """Return the client configuration (never includes credentials)."""
        return {
            "model": self._model,
            "dimensions": self._dimensions,
            "batch_size": self._batch_size,
            "max_token_limit": MAX_TOKEN_LIMIT,
            "provider": self._provider.get_provider_name(),
        }

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    @staticmethod
    def _validate_text(text: str | None) -> None:
        if text is None:
            raise ValidationError("Text cannot be null or undefined")
        if not text.strip():
            raise ValidationError("Text cannot be empty")

    def _truncate(self, text: str) -> str:
        if len(text) <= self._max_chars:
            return text
        logger.warning(
            "embedding_input_truncated",
            original_chars=len(text),
            truncated_chars=self._max_chars,
            estimated_tokens=len(text) // CHARS_PER_TOKEN,
            max_tokens=MAX_TOKEN_LIMIT,
        )
        return text[: self._max_chars]

    async def _embed_validated(self, text: str, task_hint: TaskHint | None) -> list[float]:
        request = EmbeddingRequest(
            model=self._model,
            content=self._truncate(text),
            dimensions=self._dimensions,
            task_hint=task_hint,
        )
        try:
            response = await self._provider.embed(request)
        except EmbeddingError as exc:
            raise EmbeddingError(
                message=f"Failed to generate embedding: {exc.message}",
                provider_name=exc.provider_name or self._provider.get_provider_name(),
            ) from exc
        except Exception as exc:
            # Third-party providers may leak SDK or transport errors; callers
            # only ever see EmbeddingError with the stable prefix.
            raise EmbeddingError(
                message=f"Failed to generate embedding: {exc}",
                provider_name=self._provider.get_provider_name(),
            ) from exc
        return self._extract_vector(response)

    def _extract_vector(self, response: Any) -> list[float]:
        if not isinstance(response, list) or not response:
            raise InvalidEmbeddingResponseError(provider_name=self._provider.get_provider_name())
        first = response[0]
        vector = first.get("embedding") if isinstance(first, dict) else None
        if not isinstance(vector, list) or not vector:
            raise InvalidEmbeddingResponseError(provider_name=self._provider.get_provider_name())
        # Fragments are stored in a fixed-width vector column, so a provider
        # that ignores the requested size must fail here, not at insert time.
        if len(vector) != self._dimensions:
            raise InvalidEmbeddingResponseError(
                message=(
                    f"Invalid embedding response format: expected {self._dimensions} "
                    f"dimensions, got {len(vector)}"
                ),
                provider_name=self._provider.get_provider_name(),
            )
        return vector
