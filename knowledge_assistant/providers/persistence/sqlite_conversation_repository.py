"""SQLite-backed conversation repository.

Persists conversations and their messages to a local SQLite database at
``data/conversations.db``.  Uses ``aiosqlite`` for async I/O.

Messages are append-only: :meth:`save` upserts the conversation row and
inserts any messages not yet stored, keyed by message id.  A per-message
``seq`` column preserves insertion order independently of timestamps.
"""

from __future__ import annotations

import json
from datetime import datetime
from pathlib import Path
from typing import Any

import aiosqlite
import structlog

from knowledge_assistant.interfaces.conversation_repository import IConversationRepository
from knowledge_assistant.models.conversation import Conversation, Message, MessageRole

logger = structlog.get_logger(logger_name=__name__)

_DEFAULT_DB_PATH = Path("data/conversations.db")

_CREATE_CONVERSATIONS_SQL = """\
CREATE TABLE IF NOT EXISTS conversations (
    id          TEXT PRIMARY KEY,
    user_id     TEXT NOT NULL,
    sector_id   TEXT NOT NULL,
    created_at  TEXT NOT NULL,
    updated_at  TEXT NOT NULL,
    deleted_at  TEXT
);
"""

_CREATE_MESSAGES_SQL = """\
CREATE TABLE IF NOT EXISTS messages (
    id              TEXT    PRIMARY KEY,
    conversation_id TEXT    NOT NULL REFERENCES conversations(id) ON DELETE CASCADE,
    seq             INTEGER NOT NULL,
    role            TEXT    NOT NULL CHECK (role IN ('user', 'assistant', 'system')),
    content         TEXT    NOT NULL,
    metadata        TEXT    NOT NULL DEFAULT '{}',
    created_at      TEXT    NOT NULL
);
"""

_CREATE_INDICES_SQL = [
    "CREATE INDEX IF NOT EXISTS idx_conversations_user ON conversations(user_id);",
    "CREATE INDEX IF NOT EXISTS idx_conversations_sector ON conversations(sector_id);",
    "CREATE INDEX IF NOT EXISTS idx_messages_conversation ON messages(conversation_id, seq);",
]

_UPSERT_CONVERSATION_SQL = """\
INSERT INTO conversations (id, user_id, sector_id, created_at, updated_at)
VALUES (?, ?, ?, ?, ?)
ON CONFLICT(id)
DO UPDATE SET updated_at = excluded.updated_at;
"""

_INSERT_MESSAGE_SQL = """\
INSERT OR IGNORE INTO messages
    (id, conversation_id, seq, role, content, metadata, created_at)
VALUES (?, ?, ?, ?, ?, ?, ?);
"""

_SELECT_CONVERSATION_COLUMNS = "SELECT id, user_id, sector_id, created_at, updated_at FROM conversations"


def _row_to_message(row: Any) -> Message:
    return Message(
        id=row["id"],
        conversation_id=row["conversation_id"],
        role=MessageRole(row["role"]),
        content=row["content"],
        metadata=json.loads(row["metadata"]),
        created_at=datetime.fromisoformat(row["created_at"]),
    )


class SQLiteConversationRepository(IConversationRepository):
    """SQLite-backed conversation persistence."""

    def __init__(self, db_path: str | Path = _DEFAULT_DB_PATH) -> None:
        self._db_path = Path(db_path)

    async def initialize(self) -> None:
        """Create the conversation tables and indices if they don't exist."""
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        async with aiosqlite.connect(str(self._db_path)) as db:
            await db.execute(_CREATE_CONVERSATIONS_SQL)
            await db.execute(_CREATE_MESSAGES_SQL)
            for idx_sql in _CREATE_INDICES_SQL:
                await db.execute(idx_sql)
            await db.commit()
        logger.info("conversation_db_initialized", path=str(self._db_path))

    async def save(self, conversation: Conversation) -> Conversation:
        async with aiosqlite.connect(str(self._db_path)) as db:
            await db.execute(
                _UPSERT_CONVERSATION_SQL,
                (
                    conversation.id,
                    conversation.user_id,
                    conversation.sector_id,
                    conversation.created_at.isoformat(),
                    conversation.updated_at.isoformat(),
                ),
            )
            await db.executemany(
                _INSERT_MESSAGE_SQL,
                [
                    (
                        m.id,
                        conversation.id,
                        seq,
                        m.role.value,
                        m.content,
                        json.dumps(m.metadata),
                        m.created_at.isoformat(),
                    )
                    for seq, m in enumerate(conversation.messages)
                ],
            )
            await db.commit()
        logger.debug(
            "conversation_saved",
            conversation_id=conversation.id,
            messages=len(conversation.messages),
        )
        return conversation

    async def find_by_id(self, conversation_id: str) -> Conversation | None:
        async with aiosqlite.connect(str(self._db_path)) as db:
            db.row_factory = aiosqlite.Row
            cursor = await db.execute(
                f"{_SELECT_CONVERSATION_COLUMNS} WHERE id = ? AND deleted_at IS NULL;",
                (conversation_id,),
            )
            row = await cursor.fetchone()
            if row is None:
                return None
            return await self._hydrate(db, row)

    async def find_by_user_and_sector(
        self, user_id: str, sector_id: str
    ) -> Conversation | None:
        async with aiosqlite.connect(str(self._db_path)) as db:
            db.row_factory = aiosqlite.Row
            cursor = await db.execute(
                f"{_SELECT_CONVERSATION_COLUMNS} "
                "WHERE user_id = ? AND sector_id = ? AND deleted_at IS NULL "
                "ORDER BY updated_at DESC LIMIT 1;",
                (user_id, sector_id),
            )
            row = await cursor.fetchone()
            if row is None:
                return None
            return await self._hydrate(db, row)

    async def find_by_user_id(self, user_id: str) -> list[Conversation]:
        return await self._find_many("user_id", user_id)

    async def find_by_sector_id(self, sector_id: str) -> list[Conversation]:
        return await self._find_many("sector_id", sector_id)

    async def delete(self, conversation_id: str) -> None:
        async with aiosqlite.connect(str(self._db_path)) as db:
            await db.execute(
                "UPDATE conversations SET deleted_at = strftime('%Y-%m-%dT%H:%M:%fZ', 'now') "
                "WHERE id = ?;",
                (conversation_id,),
            )
            await db.commit()
        logger.info("conversation_deleted", conversation_id=conversation_id)

    async def count_by_user_id(self, user_id: str) -> int:
        async with aiosqlite.connect(str(self._db_path)) as db:
            cursor = await db.execute(
                "SELECT COUNT(*) FROM conversations WHERE user_id = ? AND deleted_at IS NULL;",
                (user_id,),
            )
            row = await cursor.fetchone()
        return int(row[0]) if row else 0

    def get_provider_name(self) -> str:
        return "sqlite_conversations"

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _find_many(self, column: str, value: str) -> list[Conversation]:
        # column is one of two internal literals, never caller input
        async with aiosqlite.connect(str(self._db_path)) as db:
            db.row_factory = aiosqlite.Row
            cursor = await db.execute(
                f"{_SELECT_CONVERSATION_COLUMNS} "
                f"WHERE {column} = ? AND deleted_at IS NULL ORDER BY updated_at DESC;",
                (value,),
            )
            rows = await cursor.fetchall()
            return [await self._hydrate(db, r) for r in rows]

    @staticmethod
    async def _hydrate(db: aiosqlite.Connection, row: Any) -> Conversation:
        cursor = await db.execute(
            "SELECT id, conversation_id, role, content, metadata, created_at "
            "FROM messages WHERE conversation_id = ? ORDER BY seq ASC;",
            (row["id"],),
        )
        message_rows = await cursor.fetchall()
        return Conversation(
            id=row["id"],
            user_id=row["user_id"],
            sector_id=row["sector_id"],
            messages=[_row_to_message(m) for m in message_rows],
            created_at=datetime.fromisoformat(row["created_at"]),
            updated_at=datetime.fromisoformat(row["updated_at"]),
        )
