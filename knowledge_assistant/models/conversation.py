"""Conversation models: role-tagged message history per user and sector.

Both models are frozen.  :meth:`Conversation.add_message` returns a new
conversation with the message appended, so message order is always
insertion order.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from knowledge_assistant.utils.errors import ValidationError

ACTIVE_WINDOW_HOURS = 24


def _utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)  # noqa: UP017


def _new_id() -> str:
    return str(uuid.uuid4())


class MessageRole(str, Enum):  # noqa: UP042 - StrEnum requires Python 3.11+
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


class Message(BaseModel):
    """A single entry in a conversation."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=_new_id)
    conversation_id: str
    role: MessageRole
    content: str
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=_utcnow)

    @field_validator("content")
    @classmethod
    def _validate_content(cls, value: str) -> str:
        # Stored trimmed: the text is replayed verbatim into retrieval queries.
        value = value.strip()
        if not value:
            raise ValueError("Message content cannot be empty")
        return value

    def format_for_prompt(self) -> str:
        """Render as ``"<Role>: <content>"``, e.g. ``"User: hello"``."""
        return f"{self.role.value.capitalize()}: {self.content}"

    def is_from_user(self) -> bool:
        return self.role is MessageRole.USER

    def is_from_assistant(self) -> bool:
        return self.role is MessageRole.ASSISTANT

    def with_metadata(self, extra: dict[str, Any]) -> Message:
        return self.model_copy(update={"metadata": {**self.metadata, **extra}})


class Conversation(BaseModel):
    """An ordered, append-only message history for one (user, sector) pair."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=_new_id)
    user_id: str
    sector_id: str
    messages: list[Message] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)

    @field_validator("user_id", "sector_id")
    @classmethod
    def _validate_scope(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("Conversation scope identifiers cannot be empty")
        return value

    def new_message(
        self,
        role: MessageRole,
        content: str,
        metadata: dict[str, Any] | None = None,
    ) -> Message:
        """Build a message bound to this conversation (does not append it)."""
        return Message(
            conversation_id=self.id,
            role=role,
            content=content,
            metadata=metadata or {},
        )

    def add_message(self, message: Message) -> Conversation:
        # Messages built for another conversation would corrupt its history
        # once both are persisted.
        if message.conversation_id != self.id:
            raise ValidationError("Message does not belong to this conversation")
        # updated_at drives "latest conversation for (user, sector)" lookups.
        return self.model_copy(
            update={"messages": [*self.messages, message], "updated_at": _utcnow()}
        )

    def get_last_messages(self, count: int) -> list[Message]:
        if count <= 0:
            return []
        return list(self.messages[-count:])

    def get_last_user_message(self) -> Message | None:
        return next((m for m in reversed(self.messages) if m.is_from_user()), None)

    def get_last_assistant_message(self) -> Message | None:
        return next((m for m in reversed(self.messages) if m.is_from_assistant()), None)

    def count_messages_by_role(self, role: MessageRole) -> int:
        return sum(1 for m in self.messages if m.role is role)

    def get_context_for_prompt(self, max_messages: int = 10) -> str:
        return "\n".join(m.format_for_prompt() for m in self.get_last_messages(max_messages))

    def is_active(self, hours: int = ACTIVE_WINDOW_HOURS) -> bool:
        """Return ``True`` if the conversation was updated within *hours*."""
        return _utcnow() - self.updated_at < timedelta(hours=hours)
