"""Knowledge assistant composition root.

Wires providers, repositories and services together via dependency
injection.  Loads configuration from ``.env`` and ``config/config.yaml``
and exposes async factories that return ready-to-use pipelines:

- :func:`build_ingestion_pipeline` -- parser, chunker, embeddings, knowledge store
- :func:`build_query_pipeline` -- embeddings, retriever, LLM, conversation store

Both factories initialize the repositories they create (tables, indices
and the pgvector extension) before returning.
"""

from __future__ import annotations

from typing import Any

import structlog

from knowledge_assistant.config.loader import load_config
from knowledge_assistant.config.settings import Settings
from knowledge_assistant.interfaces.embedding_provider import IEmbeddingProvider
from knowledge_assistant.interfaces.llm_provider import ILLMProvider
from knowledge_assistant.providers.embedding.nomic_embedding_provider import (
    NomicEmbeddingProvider,
)
from knowledge_assistant.providers.embedding.openai_embedding_provider import (
    OpenAIEmbeddingProvider,
)
from knowledge_assistant.providers.llm.anthropic_provider import AnthropicLLMProvider
from knowledge_assistant.providers.llm.ollama_provider import OllamaLLMProvider
from knowledge_assistant.providers.llm.openai_provider import OpenAILLMProvider
from knowledge_assistant.providers.persistence.postgres_knowledge_repository import (
    PostgresKnowledgeRepository,
)
from knowledge_assistant.providers.persistence.sqlite_conversation_repository import (
    SQLiteConversationRepository,
)
from knowledge_assistant.services.embedding_client import EmbeddingClient
from knowledge_assistant.services.ingestion.chunker import TextChunker
from knowledge_assistant.services.ingestion.document_parser import DocumentParser
from knowledge_assistant.services.ingestion.ingestion_service import IngestionPipeline
from knowledge_assistant.services.query_service import QueryPipeline
from knowledge_assistant.services.retriever import Retriever
from knowledge_assistant.utils.errors import ConfigurationError
from knowledge_assistant.utils.logging import configure_logging, get_logger

_logger: structlog.BoundLogger = get_logger(__name__)


def setup_logging(app_settings: Settings) -> None:
    """Configure structlog from settings (JSON output in production)."""
    configure_logging(
        log_level=app_settings.log_level,
        json_output=(app_settings.app_env == "production"),
    )


# ---------------------------------------------------------------------------
# Provider selection
# ---------------------------------------------------------------------------


def _build_llm_provider(app_settings: Settings) -> ILLMProvider:
    """Select the first configured LLM provider.

    Priority order: Anthropic -> OpenAI -> Ollama (always configured).
    """
    if app_settings.anthropic_api_key:
        return AnthropicLLMProvider(settings=app_settings)
    if app_settings.openai_api_key:
        return OpenAILLMProvider(settings=app_settings)
    return OllamaLLMProvider(settings=app_settings)


def _build_embedding_provider(app_settings: Settings) -> IEmbeddingProvider:
    """Select the first available embedding provider.

    Priority: OpenAI/OpenAI-compatible (if API key set) ->
              Nomic/Ollama (if reachable).

    Raises
    ------
    ConfigurationError
        If neither provider is usable.
    """
    if app_settings.openai_api_key:
        provider: IEmbeddingProvider = OpenAIEmbeddingProvider(settings=app_settings)
        if provider.is_available():
            return provider

    provider = NomicEmbeddingProvider(settings=app_settings)
    if provider.is_available():
        return provider

    raise ConfigurationError(
        "No embedding provider available: set OPENAI_API_KEY or start Ollama "
        f"at {app_settings.ollama_base_url}"
    )


def _build_embedding_client(app_settings: Settings, config: dict[str, Any]) -> EmbeddingClient:
    embedding_cfg = config["embedding"]
    provider = _build_embedding_provider(app_settings)
    # The knowledge store column width follows the configured size, so a
    # fixed-size provider (nomic-embed-text) has to match it exactly.
    native = provider.get_native_dimensions()
    if native is not None and native != embedding_cfg["dimensions"]:
        raise ConfigurationError(
            f"{provider.get_provider_name()} produces {native}-dimension embeddings "
            f"but embedding.dimensions is {embedding_cfg['dimensions']}; "
            f"set EMBEDDING_DIMENSIONS={native}",
            provider_name=provider.get_provider_name(),
        )
    return EmbeddingClient(
        provider=provider,
        dimensions=embedding_cfg["dimensions"],
        batch_size=embedding_cfg["batch_size"],
    )


# ---------------------------------------------------------------------------
# Pipeline factories
# ---------------------------------------------------------------------------


async def build_knowledge_repository(
    config: dict[str, Any],
) -> PostgresKnowledgeRepository:
    storage = config["storage"]
    repository = PostgresKnowledgeRepository(
        dsn=storage["database_url"],
        dimensions=config["embedding"]["dimensions"],
        min_size=storage["pool_min_size"],
        max_size=storage["pool_max_size"],
    )
    await repository.initialize()
    return repository


async def build_ingestion_pipeline(
    custom_settings: Settings | None = None,
    config_path: str = "config/config.yaml",
) -> IngestionPipeline:
    """Assemble an :class:`IngestionPipeline` from settings and YAML config."""
    s = custom_settings or Settings()
    config = load_config(config_path, settings=s)
    chunking = config["chunking"]

    embedding_client = _build_embedding_client(s, config)
    repository = await build_knowledge_repository(config)

    _logger.info(
        "ingestion_pipeline_ready",
        embedding=embedding_client.get_config(),
        chunk_size=chunking["chunk_size"],
        overlap=chunking["overlap"],
    )
    return IngestionPipeline(
        parser=DocumentParser(),
        repository=repository,
        chunker=TextChunker(
            chunk_size=chunking["chunk_size"],
            overlap=chunking["overlap"],
            min_chunk_size=chunking["min_chunk_size"],
        ),
        embedding_client=embedding_client,
    )


async def build_query_pipeline(
    custom_settings: Settings | None = None,
    config_path: str = "config/config.yaml",
) -> QueryPipeline:
    """Assemble a :class:`QueryPipeline` from settings and YAML config."""
    s = custom_settings or Settings()
    config = load_config(config_path, settings=s)
    retrieval = config["retrieval"]
    generation = config["generation"]

    embedding_client = _build_embedding_client(s, config)
    llm = _build_llm_provider(s)
    repository = await build_knowledge_repository(config)
    conversations = SQLiteConversationRepository(config["storage"]["conversation_db_path"])
    await conversations.initialize()

    _logger.info(
        "query_pipeline_ready",
        llm=llm.get_provider_name(),
        model=llm.get_model_name(),
        embedding=embedding_client.get_config(),
        available_providers=config["llm"]["available_providers"],
    )
    return QueryPipeline(
        embedding_client=embedding_client,
        retriever=Retriever(repository),
        llm=llm,
        conversations=conversations,
        max_results=retrieval["max_results"],
        min_similarity=retrieval["min_similarity"],
        context_message_limit=retrieval["context_message_limit"],
        temperature=generation["temperature"],
        max_tokens=generation["max_tokens"],
    )
