"""Abstract base class for conversation persistence."""

from __future__ import annotations

from abc import ABC, abstractmethod

from knowledge_assistant.models.conversation import Conversation


# Concrete implementation: SQLiteConversationRepository
# Located in: knowledge_assistant/providers/persistence/
class IConversationRepository(ABC):
    """Contract for storing conversations and their messages."""

    @abstractmethod
    async def initialize(self) -> None:
        """Create tables/indices if they don't exist."""

    @abstractmethod
    async def save(self, conversation: Conversation) -> Conversation:
        """Upsert a conversation together with all of its messages."""

    @abstractmethod
    async def find_by_id(self, conversation_id: str) -> Conversation | None:
        """Return a conversation with messages in insertion order, or ``None``."""

    @abstractmethod
    async def find_by_user_and_sector(
        self, user_id: str, sector_id: str
    ) -> Conversation | None:
        """Return the most recently updated conversation for the pair."""

    @abstractmethod
    async def find_by_user_id(self, user_id: str) -> list[Conversation]:
        """Return a user's conversations, most recently updated first."""

    @abstractmethod
    async def find_by_sector_id(self, sector_id: str) -> list[Conversation]:
        """Return a sector's conversations, most recently updated first."""

    @abstractmethod
    async def delete(self, conversation_id: str) -> None:
        """Soft-delete a conversation."""

    @abstractmethod
    async def count_by_user_id(self, user_id: str) -> int:
        """Count a user's non-deleted conversations."""
