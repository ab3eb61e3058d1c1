"""Abstract base class for the knowledge store.

Persists knowledge sources and their fragments and answers vector
similarity queries.  The reference implementation is PostgreSQL with the
pgvector extension, but anything that can order fragments by cosine
distance fits the contract.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from knowledge_assistant.models.knowledge import (
    Fragment,
    KnowledgeSource,
    ScoredFragment,
    SourceStatus,
)


# Concrete implementation: PostgresKnowledgeRepository
# Located in: knowledge_assistant/providers/persistence/
class IKnowledgeRepository(ABC):
    """Contract for knowledge-source and fragment persistence."""

    @abstractmethod
    async def initialize(self) -> None:
        """Open connections and create tables/indices if missing."""

    @abstractmethod
    async def close(self) -> None:
        """Release pooled connections."""

    # -- Sources -------------------------------------------------------

    @abstractmethod
    async def save_source(self, source: KnowledgeSource) -> KnowledgeSource:
        """Insert (when ``source.id`` is ``None``) or update a source.

        Returns the stored source; inserts come back with ``id`` assigned.
        """

    @abstractmethod
    async def find_source_by_id(self, source_id: str) -> KnowledgeSource | None:
        """Return the source with *source_id*, or ``None``."""

    @abstractmethod
    async def find_sources_by_sector(
        self, sector_id: str, include_deleted: bool = False
    ) -> list[KnowledgeSource]:
        """Return a sector's sources, newest first."""

    @abstractmethod
    async def find_sources_by_status(self, status: SourceStatus) -> list[KnowledgeSource]:
        """Return all sources currently in *status*."""

    @abstractmethod
    async def soft_delete_source(self, source_id: str) -> None:
        """Mark a source DELETED without removing its row."""

    @abstractmethod
    async def delete_source(self, source_id: str) -> None:
        """Remove a source row and (by cascade) its fragments."""

    @abstractmethod
    async def count_sources_by_sector(self, sector_id: str) -> int:
        """Count non-deleted sources in a sector."""

    # -- Fragments -----------------------------------------------------

    @abstractmethod
    async def save_fragments(self, fragments: list[Fragment]) -> list[Fragment]:
        """Persist *fragments* in one bulk operation, preserving order.

        Returns the stored fragments with ``id`` assigned.
        """

    @abstractmethod
    async def find_fragment_by_id(self, fragment_id: str) -> Fragment | None:
        """Return the fragment with *fragment_id*, or ``None``."""

    @abstractmethod
    async def find_fragments_by_source(self, source_id: str) -> list[Fragment]:
        """Return a source's fragments ordered by position."""

    @abstractmethod
    async def vector_search(
        self,
        embedding: list[float],
        sector_id: str,
        limit: int = 5,
        threshold: float = 0.7,
    ) -> list[ScoredFragment]:
        """Return fragments most similar to *embedding* within a sector.

        Similarity is ``1 - cosine_distance``.  Only fragments with a stored
        embedding and similarity >= *threshold* are returned, ordered by
        descending similarity and capped at *limit*.
        """

    @abstractmethod
    async def delete_fragments_by_source(self, source_id: str) -> int:
        """Delete a source's fragments; return the number removed."""

    @abstractmethod
    async def count_fragments_by_source(self, source_id: str) -> int:
        """Count a source's fragments."""
