"""Domain models: re-exports all public model classes.

Submodules by concern:
    - knowledge.py    - sources, transient chunks, fragments, ingestion results
    - conversation.py - conversations and role-tagged messages
    - embedding.py    - embedding task hints and provider requests
    - query.py        - answers and cited sources
"""

from __future__ import annotations

from knowledge_assistant.models.conversation import Conversation, Message, MessageRole
from knowledge_assistant.models.embedding import EmbeddingRequest, TaskHint
from knowledge_assistant.models.knowledge import (
    SUPPORTED_EMBEDDING_DIMENSIONS,
    Fragment,
    IngestionResult,
    KnowledgeSource,
    ScoredFragment,
    SourceStatus,
    SourceType,
    TextChunk,
)
from knowledge_assistant.models.query import QueryResult, SourceReference

__all__ = [
    # knowledge
    "SUPPORTED_EMBEDDING_DIMENSIONS",
    "Fragment",
    "IngestionResult",
    "KnowledgeSource",
    "ScoredFragment",
    "SourceStatus",
    "SourceType",
    "TextChunk",
    # conversation
    "Conversation",
    "Message",
    "MessageRole",
    # embedding
    "EmbeddingRequest",
    "TaskHint",
    # query
    "QueryResult",
    "SourceReference",
]
