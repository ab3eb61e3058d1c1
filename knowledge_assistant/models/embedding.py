"""Embedding request models shared by the embedding client and providers."""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class TaskHint(str, Enum):  # noqa: UP042 - StrEnum requires Python 3.11+
    """Declared intent of an embedding call.

    Providers that support task-specific embeddings use the hint to bias
    the vector; documents and queries must use matching hints on both
    sides of a retrieval for the best precision.
    """

    RETRIEVAL_DOCUMENT = "RETRIEVAL_DOCUMENT"
    RETRIEVAL_QUERY = "RETRIEVAL_QUERY"
    SEMANTIC_SIMILARITY = "SEMANTIC_SIMILARITY"
    CLASSIFICATION = "CLASSIFICATION"
    CLUSTERING = "CLUSTERING"


class EmbeddingRequest(BaseModel):
    """A single-text embedding call as sent to an :class:`IEmbeddingProvider`."""

    model_config = ConfigDict(frozen=True)

    model: str = Field(description="Provider model identifier.")
    content: str = Field(description="Text to embed (already validated and truncated).")
    dimensions: int = Field(gt=0, description="Requested output dimensionality.")
    task_hint: TaskHint | None = None
