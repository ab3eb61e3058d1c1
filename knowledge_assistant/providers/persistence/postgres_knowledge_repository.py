"""PostgreSQL + pgvector knowledge repository.

Persists :class:`KnowledgeSource` rows and their :class:`Fragment` rows and
answers similarity queries with pgvector's cosine-distance operator
(``<=>``).  Uses ``asyncpg`` for async I/O with a connection pool; every
pooled connection registers the pgvector codec and a JSONB codec so
embeddings and metadata round-trip as Python lists and dicts.

Schema notes:
    - ``fragments.source_id`` cascades on delete, so hard-deleting a source
      removes its fragments.
    - The HNSW index is only created when the embedding column is at most
      2000 dimensions (pgvector's HNSW limit); larger vectors fall back to
      exact scans.
"""

from __future__ import annotations

import json
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

import asyncpg
import structlog
from pgvector.asyncpg import register_vector

from knowledge_assistant.interfaces.knowledge_repository import IKnowledgeRepository
from knowledge_assistant.models.knowledge import (
    Fragment,
    KnowledgeSource,
    ScoredFragment,
    SourceStatus,
    SourceType,
)
from knowledge_assistant.utils.errors import RetrievalError

logger = structlog.get_logger(logger_name=__name__)

_HNSW_MAX_DIMENSIONS = 2000

_CREATE_EXTENSION_SQL = "CREATE EXTENSION IF NOT EXISTS vector;"

_CREATE_SOURCES_SQL = """\
CREATE TABLE IF NOT EXISTS knowledge_sources (
    id            TEXT         PRIMARY KEY DEFAULT gen_random_uuid()::text,
    title         VARCHAR(255) NOT NULL,
    sector_id     TEXT         NOT NULL,
    source_type   VARCHAR(16)  NOT NULL,
    content       TEXT         NOT NULL,
    status        VARCHAR(16)  NOT NULL DEFAULT 'PENDING',
    metadata      JSONB        NOT NULL DEFAULT '{}'::jsonb,
    error_message TEXT,
    created_at    TIMESTAMPTZ  NOT NULL DEFAULT now(),
    updated_at    TIMESTAMPTZ  NOT NULL DEFAULT now(),
    deleted_at    TIMESTAMPTZ
);
"""

_CREATE_FRAGMENTS_SQL = """\
CREATE TABLE IF NOT EXISTS fragments (
    id          TEXT        PRIMARY KEY DEFAULT gen_random_uuid()::text,
    source_id   TEXT        NOT NULL REFERENCES knowledge_sources(id) ON DELETE CASCADE,
    content     TEXT        NOT NULL,
    embedding   vector({dimensions}),
    position    INTEGER     NOT NULL,
    token_count INTEGER     NOT NULL DEFAULT 0,
    metadata    JSONB       NOT NULL DEFAULT '{{}}'::jsonb,
    created_at  TIMESTAMPTZ NOT NULL DEFAULT now(),
    UNIQUE (source_id, position)
);
"""

_CREATE_INDICES_SQL = [
    "CREATE INDEX IF NOT EXISTS idx_sources_sector ON knowledge_sources(sector_id);",
    "CREATE INDEX IF NOT EXISTS idx_sources_status ON knowledge_sources(status);",
    "CREATE INDEX IF NOT EXISTS idx_fragments_source ON fragments(source_id);",
]

_CREATE_HNSW_INDEX_SQL = (
    "CREATE INDEX IF NOT EXISTS idx_fragments_embedding "
    "ON fragments USING hnsw (embedding vector_cosine_ops);"
)

_INSERT_SOURCE_SQL = """\
INSERT INTO knowledge_sources
    (title, sector_id, source_type, content, status, metadata,
     error_message, created_at, updated_at, deleted_at)
VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10)
RETURNING *;
"""

_UPDATE_SOURCE_SQL = """\
UPDATE knowledge_sources
SET title = $2, sector_id = $3, source_type = $4, content = $5, status = $6,
    metadata = $7, error_message = $8, updated_at = $9, deleted_at = $10
WHERE id = $1
RETURNING *;
"""

_INSERT_FRAGMENT_SQL = """\
INSERT INTO fragments
    (source_id, content, embedding, position, token_count, metadata, created_at)
VALUES ($1, $2, $3, $4, $5, $6, $7)
RETURNING *;
"""

_VECTOR_SEARCH_SQL = """\
SELECT f.*, (1 - (f.embedding <=> $1::vector)) AS similarity
FROM fragments f
INNER JOIN knowledge_sources ks ON f.source_id = ks.id
WHERE ks.sector_id = $2
  AND ks.deleted_at IS NULL
  AND f.embedding IS NOT NULL
  AND (1 - (f.embedding <=> $1::vector)) >= $3
ORDER BY similarity DESC
LIMIT $4;
"""


async def _init_connection(conn: asyncpg.Connection) -> None:
    """Register codecs on every new pooled connection."""
    await register_vector(conn)
    await conn.set_type_codec(
        "jsonb", encoder=json.dumps, decoder=json.loads, schema="pg_catalog"
    )


# ---------------------------------------------------------------------------
# Row mapping
# ---------------------------------------------------------------------------

def row_to_source(row: Any) -> KnowledgeSource:
    """Build a :class:`KnowledgeSource` from a ``knowledge_sources`` row."""
    return KnowledgeSource(
        id=str(row["id"]),
        title=row["title"],
        sector_id=row["sector_id"],
        source_type=SourceType(row["source_type"]),
        content=row["content"],
        metadata=dict(row["metadata"] or {}),
        status=SourceStatus(row["status"]),
        error_message=row["error_message"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
        deleted_at=row["deleted_at"],
    )


def row_to_fragment(row: Any) -> Fragment:
    """Build a :class:`Fragment` from a ``fragments`` row."""
    embedding = row["embedding"]
    return Fragment(
        id=str(row["id"]),
        source_id=str(row["source_id"]),
        content=row["content"],
        embedding=[float(v) for v in embedding] if embedding is not None else None,
        position=row["position"],
        token_count=row["token_count"],
        metadata=dict(row["metadata"] or {}),
        created_at=row["created_at"],
    )


def _affected_rows(status: str) -> int:
    """Parse asyncpg's command tag, e.g. ``"DELETE 3"`` -> 3."""
    try:
        return int(status.split()[-1])
    except (IndexError, ValueError):
        return 0


class PostgresKnowledgeRepository(IKnowledgeRepository):
    """Knowledge store backed by PostgreSQL with the pgvector extension.

    Parameters
    ----------
    dsn:
        PostgreSQL connection string.
    dimensions:
        Width of the ``fragments.embedding`` column.
    min_size, max_size:
        Connection pool bounds.
    pool:
        Pre-built pool (used by tests); when given, :meth:`initialize`
        skips pool creation.
    """

    def __init__(
        self,
        dsn: str,
        dimensions: int = 1536,
        min_size: int = 1,
        max_size: int = 10,
        pool: asyncpg.Pool | None = None,
    ) -> None:
        self._dsn = dsn
        self._dimensions = dimensions
        self._min_size = min_size
        self._max_size = max_size
        self._pool = pool

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def initialize(self) -> None:
        """Create the pgvector extension, the pool, tables and indices."""
        if self._pool is None:
            try:
                # The vector type must exist before register_vector runs in
                # the pool's init hook.
                conn = await asyncpg.connect(self._dsn)
                try:
                    await conn.execute(_CREATE_EXTENSION_SQL)
                finally:
                    await conn.close()
                self._pool = await asyncpg.create_pool(
                    self._dsn,
                    min_size=self._min_size,
                    max_size=self._max_size,
                    init=_init_connection,
                )
            except (asyncpg.PostgresError, OSError) as exc:
                raise RetrievalError(
                    message=f"Could not connect to PostgreSQL: {exc}",
                    provider_name=self.get_provider_name(),
                ) from exc

        async with self._connection() as conn:
            await conn.execute(_CREATE_SOURCES_SQL)
            await conn.execute(_CREATE_FRAGMENTS_SQL.format(dimensions=self._dimensions))
            for idx_sql in _CREATE_INDICES_SQL:
                await conn.execute(idx_sql)
            if self._dimensions <= _HNSW_MAX_DIMENSIONS:
                await conn.execute(_CREATE_HNSW_INDEX_SQL)
        logger.info("knowledge_store_initialized", dimensions=self._dimensions)

    async def close(self) -> None:
        if self._pool is not None:
            await self._pool.close()
            self._pool = None

    @asynccontextmanager
    async def _connection(self) -> AsyncIterator[asyncpg.Connection]:
        if self._pool is None:
            raise RetrievalError(
                message="Knowledge repository is not initialized",
                provider_name=self.get_provider_name(),
            )
        try:
            async with self._pool.acquire() as conn:
                yield conn
        except asyncpg.PostgresError as exc:
            raise RetrievalError(
                message=f"PostgreSQL error: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc

    # ------------------------------------------------------------------
    # Sources
    # ------------------------------------------------------------------

    async def save_source(self, source: KnowledgeSource) -> KnowledgeSource:
        values = (
            source.title,
            source.sector_id,
            source.source_type.value,
            source.content,
            source.status.value,
            source.metadata,
            source.error_message,
        )
        async with self._connection() as conn:
            if source.id is None:
                row = await conn.fetchrow(
                    _INSERT_SOURCE_SQL,
                    *values,
                    source.created_at,
                    source.updated_at,
                    source.deleted_at,
                )
            else:
                row = await conn.fetchrow(
                    _UPDATE_SOURCE_SQL,
                    source.id,
                    *values,
                    source.updated_at,
                    source.deleted_at,
                )
        if row is None:
            raise RetrievalError(
                message=f"Knowledge source not found: {source.id}",
                provider_name=self.get_provider_name(),
            )
        return row_to_source(row)

    async def find_source_by_id(self, source_id: str) -> KnowledgeSource | None:
        async with self._connection() as conn:
            row = await conn.fetchrow("SELECT * FROM knowledge_sources WHERE id = $1;", source_id)
        return row_to_source(row) if row is not None else None

    async def find_sources_by_sector(
        self, sector_id: str, include_deleted: bool = False
    ) -> list[KnowledgeSource]:
        async with self._connection() as conn:
            rows = await conn.fetch(
                "SELECT * FROM knowledge_sources "
                "WHERE sector_id = $1 AND ($2 OR deleted_at IS NULL) "
                "ORDER BY created_at DESC;",
                sector_id,
                include_deleted,
            )
        return [row_to_source(r) for r in rows]

    async def find_sources_by_status(self, status: SourceStatus) -> list[KnowledgeSource]:
        async with self._connection() as conn:
            rows = await conn.fetch(
                "SELECT * FROM knowledge_sources WHERE status = $1 ORDER BY created_at DESC;",
                status.value,
            )
        return [row_to_source(r) for r in rows]

    async def soft_delete_source(self, source_id: str) -> None:
        async with self._connection() as conn:
            await conn.execute(
                "UPDATE knowledge_sources "
                "SET status = $2, deleted_at = now(), updated_at = now() "
                "WHERE id = $1;",
                source_id,
                SourceStatus.DELETED.value,
            )
        logger.info("source_soft_deleted", source_id=source_id)

    async def delete_source(self, source_id: str) -> None:
        async with self._connection() as conn:
            await conn.execute("DELETE FROM knowledge_sources WHERE id = $1;", source_id)
        logger.info("source_deleted", source_id=source_id)

    async def count_sources_by_sector(self, sector_id: str) -> int:
        async with self._connection() as conn:
            count = await conn.fetchval(
                "SELECT COUNT(*) FROM knowledge_sources "
                "WHERE sector_id = $1 AND deleted_at IS NULL;",
                sector_id,
            )
        return int(count or 0)

    # ------------------------------------------------------------------
    # Fragments
    # ------------------------------------------------------------------

    async def save_fragments(self, fragments: list[Fragment]) -> list[Fragment]:
        if not fragments:
            return []
        saved: list[Fragment] = []
        async with self._connection() as conn:
            async with conn.transaction():
                for fragment in fragments:
                    row = await conn.fetchrow(
                        _INSERT_FRAGMENT_SQL,
                        fragment.source_id,
                        fragment.content,
                        fragment.embedding,
                        fragment.position,
                        fragment.token_count,
                        fragment.metadata,
                        fragment.created_at,
                    )
                    saved.append(row_to_fragment(row))
        logger.info(
            "fragments_saved",
            source_id=fragments[0].source_id,
            count=len(saved),
        )
        return saved

    async def find_fragment_by_id(self, fragment_id: str) -> Fragment | None:
        async with self._connection() as conn:
            row = await conn.fetchrow("SELECT * FROM fragments WHERE id = $1;", fragment_id)
        return row_to_fragment(row) if row is not None else None

    async def find_fragments_by_source(self, source_id: str) -> list[Fragment]:
        async with self._connection() as conn:
            rows = await conn.fetch(
                "SELECT * FROM fragments WHERE source_id = $1 ORDER BY position ASC;",
                source_id,
            )
        return [row_to_fragment(r) for r in rows]

    async def vector_search(
        self,
        embedding: list[float],
        sector_id: str,
        limit: int = 5,
        threshold: float = 0.7,
    ) -> list[ScoredFragment]:
        async with self._connection() as conn:
            rows = await conn.fetch(_VECTOR_SEARCH_SQL, embedding, sector_id, threshold, limit)
        results = [
            ScoredFragment(fragment=row_to_fragment(r), similarity=float(r["similarity"]))
            for r in rows
        ]
        logger.debug(
            "vector_search",
            sector_id=sector_id,
            limit=limit,
            threshold=threshold,
            hits=len(results),
        )
        return results

    async def delete_fragments_by_source(self, source_id: str) -> int:
        async with self._connection() as conn:
            status = await conn.execute("DELETE FROM fragments WHERE source_id = $1;", source_id)
        return _affected_rows(status)

    async def count_fragments_by_source(self, source_id: str) -> int:
        async with self._connection() as conn:
            count = await conn.fetchval(
                "SELECT COUNT(*) FROM fragments WHERE source_id = $1;", source_id
            )
        return int(count or 0)

    def get_provider_name(self) -> str:
        return "postgres"
