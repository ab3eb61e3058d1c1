"""Shared pytest fixtures for the knowledge assistant test suite."""

from __future__ import annotations

import math
import uuid
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

from knowledge_assistant.interfaces.conversation_repository import IConversationRepository
from knowledge_assistant.interfaces.document_parser import IDocumentParser, ParsedDocument
from knowledge_assistant.interfaces.embedding_provider import IEmbeddingProvider
from knowledge_assistant.interfaces.knowledge_repository import IKnowledgeRepository
from knowledge_assistant.interfaces.llm_provider import ILLMProvider
from knowledge_assistant.models.conversation import Conversation
from knowledge_assistant.models.knowledge import (
    Fragment,
    KnowledgeSource,
    ScoredFragment,
    SourceStatus,
    SourceType,
)

DIMS = 768


def unit_vector(index: int, dims: int = DIMS) -> list[float]:
    """One-hot vector; distinct indices are orthogonal (similarity 0)."""
    vec = [0.0] * dims
    vec[index % dims] = 1.0
    return vec


def blended_vector(primary: int, secondary: int, weight: float, dims: int = DIMS) -> list[float]:
    """Unit vector whose cosine similarity to ``unit_vector(primary)`` is ``weight``."""
    vec = [0.0] * dims
    vec[primary % dims] = weight
    vec[secondary % dims] = math.sqrt(max(0.0, 1.0 - weight * weight))
    return vec


def make_source(**overrides: Any) -> KnowledgeSource:
    defaults: dict[str, Any] = {
        "title": "Employee Handbook",
        "sector_id": "hr",
        "source_type": SourceType.TEXT,
        "content": "Employees receive twenty days of paid vacation per year.",
    }
    defaults.update(overrides)
    return KnowledgeSource(**defaults)


def make_fragment(**overrides: Any) -> Fragment:
    defaults: dict[str, Any] = {
        "id": "frag-1",
        "source_id": "src-1",
        "content": "Employees receive twenty days of paid vacation per year.",
        "embedding": unit_vector(0),
        "position": 0,
        "token_count": 12,
    }
    defaults.update(overrides)
    return Fragment(**defaults)


# ---------------------------------------------------------------------------
# In-memory repository fakes for integration tests
# ---------------------------------------------------------------------------


class InMemoryKnowledgeRepository(IKnowledgeRepository):
    """Knowledge store fake that computes cosine similarity in Python."""

    def __init__(self) -> None:
        self.sources: dict[str, KnowledgeSource] = {}
        self.fragments: dict[str, Fragment] = {}
        self.saved_statuses: list[SourceStatus] = []
        self.closed = False

    async def initialize(self) -> None:
        return None

    async def close(self) -> None:
        self.closed = True

    async def save_source(self, source: KnowledgeSource) -> KnowledgeSource:
        if source.id is None:
            source = source.with_id(str(uuid.uuid4()))
        self.sources[source.id] = source
        self.saved_statuses.append(source.status)
        return source

    async def find_source_by_id(self, source_id: str) -> KnowledgeSource | None:
        return self.sources.get(source_id)

    async def find_sources_by_sector(
        self, sector_id: str, include_deleted: bool = False
    ) -> list[KnowledgeSource]:
        return [
            s
            for s in self.sources.values()
            if s.sector_id == sector_id and (include_deleted or not s.is_deleted)
        ]

    async def find_sources_by_status(self, status: SourceStatus) -> list[KnowledgeSource]:
        return [s for s in self.sources.values() if s.status is status]

    async def soft_delete_source(self, source_id: str) -> None:
        self.sources[source_id] = self.sources[source_id].soft_delete()

    async def delete_source(self, source_id: str) -> None:
        self.sources.pop(source_id, None)
        await self.delete_fragments_by_source(source_id)

    async def count_sources_by_sector(self, sector_id: str) -> int:
        return len(await self.find_sources_by_sector(sector_id))

    async def save_fragments(self, fragments: list[Fragment]) -> list[Fragment]:
        stored = []
        for fragment in fragments:
            fragment = fragment.model_copy(update={"id": str(uuid.uuid4())})
            self.fragments[fragment.id] = fragment
            stored.append(fragment)
        return stored

    async def find_fragment_by_id(self, fragment_id: str) -> Fragment | None:
        return self.fragments.get(fragment_id)

    async def find_fragments_by_source(self, source_id: str) -> list[Fragment]:
        return sorted(
            (f for f in self.fragments.values() if f.source_id == source_id),
            key=lambda f: f.position,
        )

    async def vector_search(
        self,
        embedding: list[float],
        sector_id: str,
        limit: int = 5,
        threshold: float = 0.7,
    ) -> list[ScoredFragment]:
        hits = []
        for fragment in self.fragments.values():
            source = self.sources.get(fragment.source_id)
            if source is None or source.sector_id != sector_id or source.is_deleted:
                continue
            if fragment.embedding is None:
                continue
            similarity = _cosine(embedding, fragment.embedding)
            if similarity >= threshold:
                hits.append(ScoredFragment(fragment=fragment, similarity=similarity))
        hits.sort(key=lambda h: h.similarity, reverse=True)
        return hits[:limit]

    async def delete_fragments_by_source(self, source_id: str) -> int:
        doomed = [fid for fid, f in self.fragments.items() if f.source_id == source_id]
        for fid in doomed:
            del self.fragments[fid]
        return len(doomed)

    async def count_fragments_by_source(self, source_id: str) -> int:
        return len(await self.find_fragments_by_source(source_id))


class InMemoryConversationRepository(IConversationRepository):
    def __init__(self) -> None:
        self.conversations: dict[str, Conversation] = {}

    async def initialize(self) -> None:
        return None

    async def save(self, conversation: Conversation) -> Conversation:
        self.conversations[conversation.id] = conversation
        return conversation

    async def find_by_id(self, conversation_id: str) -> Conversation | None:
        return self.conversations.get(conversation_id)

    async def find_by_user_and_sector(self, user_id: str, sector_id: str) -> Conversation | None:
        matches = [
            c
            for c in self.conversations.values()
            if c.user_id == user_id and c.sector_id == sector_id
        ]
        return max(matches, key=lambda c: c.updated_at, default=None)

    async def find_by_user_id(self, user_id: str) -> list[Conversation]:
        return [c for c in self.conversations.values() if c.user_id == user_id]

    async def find_by_sector_id(self, sector_id: str) -> list[Conversation]:
        return [c for c in self.conversations.values() if c.sector_id == sector_id]

    async def delete(self, conversation_id: str) -> None:
        self.conversations.pop(conversation_id, None)

    async def count_by_user_id(self, user_id: str) -> int:
        return len(await self.find_by_user_id(user_id))


def _cosine(a: list[float], b: list[float]) -> float:
    dot = sum(x * y for x, y in zip(a, b))
    norm = math.sqrt(sum(x * x for x in a)) * math.sqrt(sum(y * y for y in b))
    return dot / norm if norm else 0.0


# ---------------------------------------------------------------------------
# Mock provider fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def mock_embedding_provider() -> IEmbeddingProvider:
    """Mock IEmbeddingProvider returning a fixed 768-dim vector per call."""
    mock = MagicMock(spec=IEmbeddingProvider)
    mock.get_provider_name.return_value = "mock-embedding"
    mock.get_default_model.return_value = "mock-embed-model"
    mock.get_native_dimensions.return_value = None
    mock.is_available.return_value = True
    mock.embed = AsyncMock(return_value=[{"embedding": unit_vector(0)}])
    return mock


@pytest.fixture
def mock_llm_provider() -> ILLMProvider:
    """Mock ILLMProvider; override ``complete.return_value`` per test."""
    mock = MagicMock(spec=ILLMProvider)
    mock.get_provider_name.return_value = "mock-llm"
    mock.get_model_name.return_value = "mock-model"
    mock.is_available.return_value = True
    mock.validate_credentials = AsyncMock(return_value=True)
    mock.complete = AsyncMock(return_value="Employees get twenty vacation days [1].")
    return mock


@pytest.fixture
def mock_parser() -> IDocumentParser:
    mock = MagicMock(spec=IDocumentParser)
    mock.supports.return_value = True
    mock.parse = AsyncMock(
        return_value=ParsedDocument(
            content="Employees receive twenty days of paid vacation per year.",
            metadata={"source_type": "TEXT", "original_size": 56},
        )
    )
    return mock


@pytest.fixture
def mock_knowledge_repository() -> IKnowledgeRepository:
    """Mock IKnowledgeRepository that assigns ids on save."""
    mock = MagicMock(spec=IKnowledgeRepository)

    async def _save_source(source: KnowledgeSource) -> KnowledgeSource:
        return source if source.id else source.with_id("src-1")

    async def _save_fragments(fragments: list[Fragment]) -> list[Fragment]:
        return [f.model_copy(update={"id": f"frag-{f.position}"}) for f in fragments]

    mock.save_source = AsyncMock(side_effect=_save_source)
    mock.save_fragments = AsyncMock(side_effect=_save_fragments)
    mock.vector_search = AsyncMock(return_value=[])
    mock.find_source_by_id = AsyncMock(return_value=None)
    mock.find_sources_by_sector = AsyncMock(return_value=[])
    mock.soft_delete_source = AsyncMock(return_value=None)
    mock.delete_fragments_by_source = AsyncMock(return_value=0)
    mock.close = AsyncMock(return_value=None)
    return mock


@pytest.fixture
def mock_conversation_repository() -> IConversationRepository:
    mock = MagicMock(spec=IConversationRepository)
    mock.find_by_id = AsyncMock(return_value=None)
    mock.find_by_user_and_sector = AsyncMock(return_value=None)
    mock.save = AsyncMock(side_effect=lambda conversation: conversation)
    return mock


@pytest.fixture
def knowledge_repository() -> InMemoryKnowledgeRepository:
    return InMemoryKnowledgeRepository()


@pytest.fixture
def conversation_repository() -> InMemoryConversationRepository:
    return InMemoryConversationRepository()
