"""Similarity search over stored fragments, scoped to one sector.

Wraps :meth:`IKnowledgeRepository.vector_search` and normalizes the
caller's parameters before the store sees them:

- ``limit`` is bounded to ``[1, MAX_RESULTS_LIMIT]``,
- ``min_similarity`` is clamped to ``[0, 1]``.

The store scopes the query to the sector and is expected to apply the
threshold, ordering and cap itself.  The retriever re-applies the
threshold, the ordering and the cap to whatever comes back so callers get
the same guarantees from any repository implementation.  Sector scoping
is left to the store: a ScoredFragment does not carry its sector.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog

from knowledge_assistant.models.knowledge import ScoredFragment
from knowledge_assistant.utils.errors import ValidationError

if TYPE_CHECKING:
    from knowledge_assistant.interfaces.knowledge_repository import IKnowledgeRepository

logger = structlog.get_logger(logger_name=__name__)

DEFAULT_MAX_RESULTS = 5
MAX_RESULTS_LIMIT = 10
DEFAULT_MIN_SIMILARITY = 0.7


def clamp_limit(limit: int) -> int:
    return max(1, min(int(limit), MAX_RESULTS_LIMIT))


def clamp_similarity(threshold: float) -> float:
    return max(0.0, min(float(threshold), 1.0))


class Retriever:
    """Finds the fragments most similar to a query vector.

    Parameters
    ----------
    repository:
        Knowledge store that performs the vector query.
    """

    def __init__(self, repository: IKnowledgeRepository) -> None:
        self._repository = repository

    async def search(
        self,
        query_vector: list[float],
        sector_id: str,
        limit: int = DEFAULT_MAX_RESULTS,
        min_similarity: float = DEFAULT_MIN_SIMILARITY,
    ) -> list[ScoredFragment]:
        """Return at most *limit* fragments with similarity >= *min_similarity*.

        Results are ordered by descending similarity.  An empty list means
        nothing in the sector cleared the threshold.

        Raises
        ------
        ValidationError
            If *query_vector* is empty or *sector_id* is blank.
        RetrievalError
            If the underlying store fails.
        """
        if not query_vector:
            raise ValidationError("Query vector cannot be empty")
        if not sector_id or not sector_id.strip():
            raise ValidationError("Sector ID is required")

        # Out-of-range values are clamped rather than rejected; the CLI and
        # callers pass user input straight through.
        effective_limit = clamp_limit(limit)
        threshold = clamp_similarity(min_similarity)

        hits = await self._repository.vector_search(
            query_vector, sector_id, limit=effective_limit, threshold=threshold
        )
        # No tie-breaker: equal similarities keep the order the store returned.
        results = sorted(
            (h for h in hits if h.similarity >= threshold),
            key=lambda h: h.similarity,
            reverse=True,
        )[:effective_limit]

        logger.info(
            "vector_search",
            sector_id=sector_id,
            limit=effective_limit,
            threshold=threshold,
            returned=len(hits),
            kept=len(results),
            top_similarity=round(results[0].similarity, 4) if results else None,
        )
        return results

    async def close(self) -> None:
        await self._repository.close()
