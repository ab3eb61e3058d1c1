"""Abstract base class for text-embedding service providers.

Defines the contract for converting one text into a dense vector.
Validation, truncation, batching and response-shape checks live in
:class:`~knowledge_assistant.services.embedding_client.EmbeddingClient`;
providers only translate an :class:`EmbeddingRequest` into a remote call.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from knowledge_assistant.models.embedding import EmbeddingRequest


# Concrete implementations: OpenAIEmbeddingProvider, NomicEmbeddingProvider
# Located in: knowledge_assistant/providers/embedding/
class IEmbeddingProvider(ABC):
    """Contract for services that produce vector embeddings from text."""

    @abstractmethod
    async def embed(self, request: EmbeddingRequest) -> list[dict[str, Any]]:
        """Embed ``request.content`` and return the provider's result items.

        Parameters
        ----------
        request:
            Model, content, requested dimensionality and optional task hint.

        Returns
        -------
        list[dict]
            Result items, each expected to carry an ``"embedding"`` key
            holding a list of floats.  The shape is checked by the caller;
            providers pass through what the remote service returned.

        Raises
        ------
        knowledge_assistant.utils.errors.EmbeddingError
            If the remote call fails.
        """

    @abstractmethod
    def get_default_model(self) -> str:
        """Return the model identifier used when the caller does not pick one."""

    @abstractmethod
    def get_provider_name(self) -> str:
        """Return a human-readable identifier, e.g. ``"openai_embedding"``."""

    @abstractmethod
    def is_available(self) -> bool:
        """Return ``True`` if the provider is configured and reachable."""

    def get_native_dimensions(self) -> int | None:
        """Return the fixed vector size this provider emits, if it has one.

        ``None`` means the provider honours ``EmbeddingRequest.dimensions``.
        """
        return None
