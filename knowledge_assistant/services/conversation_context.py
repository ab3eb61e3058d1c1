"""Read-only view over a conversation's prior messages.

Used by the query pipeline to turn recent history into a contextual
retrieval query, so follow-ups like "what about part-time staff?" are
embedded together with what was being discussed.
"""

from __future__ import annotations

from collections.abc import Sequence

from knowledge_assistant.models.conversation import Message

DEFAULT_CONTEXT_LIMIT = 10


class ConversationContext:
    """Formats the most recent messages of a conversation for prompting."""

    def __init__(self, messages: Sequence[Message]) -> None:
        # Snapshot: the pipeline appends the new user turn to the conversation
        # after building the context, and that turn must not leak in here.
        self._messages = tuple(messages)

    @property
    def is_empty(self) -> bool:
        return not self._messages

    def __len__(self) -> int:
        return len(self._messages)

    def recent(self, limit: int = DEFAULT_CONTEXT_LIMIT) -> list[Message]:
        """Return the last *limit* messages in original order."""
        if limit <= 0:
            return []
        return list(self._messages[-limit:])

    def format(self, limit: int = DEFAULT_CONTEXT_LIMIT) -> str:
        """Render the last *limit* messages as ``"Role: content"`` lines."""
        return "\n".join(m.format_for_prompt() for m in self.recent(limit))

    def contextualize(self, query: str, limit: int = DEFAULT_CONTEXT_LIMIT) -> str:
        """Prefix *query* with recent history; the raw query when there is none.

        The result looks like::

            User: What is the vacation policy?
            Assistant: Employees get 20 days...
            User: And for part-time staff?
        """
        history = self.format(limit)
        # First turn of a conversation: embed the question alone so it matches
        # documents exactly as a standalone search would.
        if not history:
            return query
        return f"{history}\nUser: {query}"
