"""Knowledge-base data models: sources, chunks, fragments and ingestion results.

Defines Pydantic v2 models for the ingestion side of the RAG pipeline.
All models use frozen config; lifecycle changes on :class:`KnowledgeSource`
and :class:`Fragment` produce new instances instead of mutating in place.

How the pieces relate:

    1. A :class:`KnowledgeSource` is one titled document (PDF, Markdown,
       plain text, or a fetched web page) scoped to a ``sector_id``.
    2. :class:`TextChunk` objects are transient slices of the source text
       produced by the chunker; they are never persisted directly.
    3. Each chunk becomes a :class:`Fragment` once it has an embedding.
       Fragments point back at their source by id only.
    4. Retrieval returns :class:`ScoredFragment` objects ranked by
       cosine similarity.
"""

from __future__ import annotations

import math
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from knowledge_assistant.utils.errors import SourceStateError

MAX_TITLE_LENGTH = 255
MIN_FRAGMENT_LENGTH = 10
SUPPORTED_EMBEDDING_DIMENSIONS: tuple[int, ...] = (768, 1536, 3072)
STALE_AFTER_DAYS = 30


def _utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)  # noqa: UP017


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------
class SourceType(str, Enum):  # noqa: UP042 - StrEnum requires Python 3.11+
    """Closed set of document kinds the parser understands."""

    PDF = "PDF"
    MARKDOWN = "MARKDOWN"
    TEXT = "TEXT"
    URL = "URL"


class SourceStatus(str, Enum):  # noqa: UP042
    """Lifecycle of a knowledge source.

    PENDING → PROCESSING → COMPLETED | FAILED, with FAILED → PROCESSING
    for reprocessing and DELETED reachable from any state through a soft
    delete.
    """

    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    DELETED = "DELETED"


# ---------------------------------------------------------------------------
# KnowledgeSource: one ingested document.
# ---------------------------------------------------------------------------
class KnowledgeSource(BaseModel):
    """A titled unit of knowledge scoped to a sector.

    Immutable - the transition methods (:meth:`mark_as_processing`,
    :meth:`mark_as_completed`, :meth:`mark_as_failed`, :meth:`soft_delete`)
    return new instances and raise :class:`SourceStateError` on an illegal
    transition.  ``id`` is ``None`` until the repository assigns one.
    """

    model_config = ConfigDict(frozen=True)

    id: str | None = Field(default=None, description="Identifier assigned on first persistence.")
    title: str = Field(description="Human-readable document title.")
    sector_id: str = Field(description="Tenant scope the source belongs to.")
    source_type: SourceType = Field(description="Kind of document the content was parsed from.")
    content: str = Field(description="Normalized document text.")
    metadata: dict[str, Any] = Field(default_factory=dict)
    status: SourceStatus = SourceStatus.PENDING
    error_message: str | None = None
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)
    deleted_at: datetime | None = None

    @field_validator("title")
    @classmethod
    def _validate_title(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("Title cannot be empty")
        if len(value) > MAX_TITLE_LENGTH:
            raise ValueError(f"Title cannot exceed {MAX_TITLE_LENGTH} characters")
        return value

    @field_validator("sector_id")
    @classmethod
    def _validate_sector(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("SectorId cannot be empty")
        return value

    @field_validator("content")
    @classmethod
    def _validate_content(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("Content cannot be empty")
        return value

    # ------------------------------------------------------------------
    # Status transitions
    # ------------------------------------------------------------------

    def mark_as_processing(self) -> KnowledgeSource:
        """Start (or, after a failure, restart) processing."""
        self._ensure_not_deleted()
        if self.status not in (SourceStatus.PENDING, SourceStatus.FAILED):
            raise SourceStateError(
                f"Cannot start processing: source is {self.status.value}"
            )
        return self._touch(status=SourceStatus.PROCESSING)

    def mark_as_completed(self) -> KnowledgeSource:
        self._ensure_not_deleted()
        if self.status is not SourceStatus.PROCESSING:
            raise SourceStateError("Cannot mark as completed: source is not being processed")
        return self._touch(status=SourceStatus.COMPLETED, error_message=None)

    def mark_as_failed(self, error_message: str) -> KnowledgeSource:
        self._ensure_not_deleted()
        if self.status not in (SourceStatus.PENDING, SourceStatus.PROCESSING):
            raise SourceStateError(
                f"Cannot mark as failed: source is {self.status.value}"
            )
        return self._touch(status=SourceStatus.FAILED, error_message=error_message)

    def soft_delete(self) -> KnowledgeSource:
        self._ensure_not_deleted()
        now = _utcnow()
        return self.model_copy(
            update={"status": SourceStatus.DELETED, "deleted_at": now, "updated_at": now}
        )

    def with_id(self, source_id: str) -> KnowledgeSource:
        """Return a copy carrying the identifier assigned by persistence."""
        return self.model_copy(update={"id": source_id})

    def update_metadata(self, extra: dict[str, Any]) -> KnowledgeSource:
        self._ensure_not_deleted()
        return self._touch(metadata={**self.metadata, **extra})

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @property
    def is_deleted(self) -> bool:
        return self.status is SourceStatus.DELETED

    @property
    def content_size(self) -> int:
        """Size of the normalized content in UTF-8 bytes."""
        return len(self.content.encode("utf-8"))

    def belongs_to_sector(self, sector_id: str) -> bool:
        return self.sector_id == sector_id

    def is_stale(self, days: int = STALE_AFTER_DAYS) -> bool:
        """Return ``True`` if the source was last updated more than *days* ago."""
        return _utcnow() - self.updated_at > timedelta(days=days)

    def _ensure_not_deleted(self) -> None:
        if self.is_deleted:
            raise SourceStateError("Cannot modify deleted source")

    def _touch(self, **changes: Any) -> KnowledgeSource:
        return self.model_copy(update={**changes, "updated_at": _utcnow()})


# ---------------------------------------------------------------------------
# TextChunk: transient output of the chunker.
# ---------------------------------------------------------------------------
class TextChunk(BaseModel):
    """A contiguous slice of normalized text produced by the chunker.

    ``start_index``/``end_index`` are character offsets into the chunked
    text such that ``text[start_index:end_index]`` reproduces ``content``.
    """

    model_config = ConfigDict(frozen=True)

    content: str
    position: int = Field(ge=0, description="Zero-based emission order.")
    tokens: int = Field(ge=0, description="Estimated token count.")
    start_index: int = Field(ge=0)
    end_index: int = Field(ge=0)


# ---------------------------------------------------------------------------
# Fragment: the durable, embeddable unit of retrieval.
# ---------------------------------------------------------------------------
class Fragment(BaseModel):
    """A persisted chunk of a knowledge source with its embedding vector.

    Relates to its source by ``source_id`` only.  The embedding, when set,
    must have one of :data:`SUPPORTED_EMBEDDING_DIMENSIONS` entries.
    """

    model_config = ConfigDict(frozen=True)

    id: str | None = None
    source_id: str
    content: str
    embedding: list[float] | None = None
    position: int = Field(ge=0)
    token_count: int = Field(default=0, ge=0)
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=_utcnow)

    @field_validator("source_id")
    @classmethod
    def _validate_source_id(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("Source ID cannot be empty")
        return value

    @field_validator("content")
    @classmethod
    def _validate_content(cls, value: str) -> str:
        if len(value.strip()) < MIN_FRAGMENT_LENGTH:
            raise ValueError(
                f"Fragment content must be at least {MIN_FRAGMENT_LENGTH} characters"
            )
        return value

    @field_validator("embedding")
    @classmethod
    def _validate_embedding(cls, value: list[float] | None) -> list[float] | None:
        if value is not None and len(value) not in SUPPORTED_EMBEDDING_DIMENSIONS:
            supported = ", ".join(str(d) for d in SUPPORTED_EMBEDDING_DIMENSIONS)
            raise ValueError(
                f"Invalid embedding dimensions: {len(value)}. Supported dimensions: {supported}"
            )
        return value

    def estimate_token_count(self) -> int:
        return math.ceil(len(self.content) / 4)

    def contains_term(self, term: str) -> bool:
        return term.lower() in self.content.lower()

    def belongs_to_source(self, source_id: str) -> bool:
        return self.source_id == source_id

    def is_first_fragment(self) -> bool:
        return self.position == 0

    def is_before(self, other: Fragment) -> bool:
        return self.source_id == other.source_id and self.position < other.position

    def is_after(self, other: Fragment) -> bool:
        return self.source_id == other.source_id and self.position > other.position

    def update_embedding(self, embedding: list[float]) -> Fragment:
        # model_copy skips validation, so rebuild through model_validate.
        return Fragment.model_validate({**self.model_dump(), "embedding": embedding})

    def update_metadata(self, extra: dict[str, Any]) -> Fragment:
        return self.model_copy(update={"metadata": {**self.metadata, **extra}})


# ---------------------------------------------------------------------------
# ScoredFragment: a retrieval hit.
# ---------------------------------------------------------------------------
class ScoredFragment(BaseModel):
    """A fragment returned from a similarity search with its score.

    ``similarity`` is ``1 - cosine_distance``; it is usually within [0, 1]
    for normalized embeddings but is not clamped.
    """

    model_config = ConfigDict(frozen=True)

    fragment: Fragment
    similarity: float


# ---------------------------------------------------------------------------
# IngestionResult: summary of one ingestion run.
# ---------------------------------------------------------------------------
class IngestionResult(BaseModel):
    """Summary returned by the ingestion pipeline for one document."""

    model_config = ConfigDict(frozen=True)

    source_id: str = Field(description="Identifier assigned to the ingested source.")
    title: str
    fragment_count: int = Field(default=0, ge=0)
    content_size: int = Field(default=0, ge=0, description="Normalized content size in UTF-8 bytes.")
    status: SourceStatus = SourceStatus.COMPLETED
    total_tokens: int = Field(default=0, ge=0)
    ingestion_time: float = Field(default=0.0, ge=0.0, description="Wall-clock seconds.")
