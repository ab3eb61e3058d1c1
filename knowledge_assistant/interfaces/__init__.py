"""Public interface definitions for all external collaborators.

Every external service (embedding API, LLM, database, parser) is reached
only through the abstract base classes in this package.  Concrete adapters
live in ``knowledge_assistant/providers/`` and are wired in
``knowledge_assistant/main.py``; tests inject mocks built from the same
interfaces.

CONCRETE PROVIDER MAP:
    Interface                  →  Concrete implementations
    ─────────────────────────────────────────────────────────────────────
    IEmbeddingProvider         →  OpenAIEmbeddingProvider, NomicEmbeddingProvider
    ILLMProvider               →  AnthropicLLMProvider, OpenAILLMProvider,
                                  OllamaLLMProvider
    IKnowledgeRepository       →  PostgresKnowledgeRepository
    IConversationRepository    →  SQLiteConversationRepository
    IDocumentParser            →  DocumentParser
"""

from knowledge_assistant.interfaces.conversation_repository import IConversationRepository
from knowledge_assistant.interfaces.document_parser import IDocumentParser, ParsedDocument
from knowledge_assistant.interfaces.embedding_provider import IEmbeddingProvider
from knowledge_assistant.interfaces.knowledge_repository import IKnowledgeRepository
from knowledge_assistant.interfaces.llm_provider import ILLMProvider

__all__ = [
    "IConversationRepository",
    "IDocumentParser",
    "IEmbeddingProvider",
    "IKnowledgeRepository",
    "ILLMProvider",
    "ParsedDocument",
]
