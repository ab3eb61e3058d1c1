"""Unit tests for factory functions in knowledge_assistant/main.py.

Covers LLM and embedding provider selection and assembly of both
pipelines, with repositories and providers mocked so no database,
network or API keys are needed.
"""

from __future__ import annotations

from pathlib import Path
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from knowledge_assistant.config.settings import Settings
from knowledge_assistant.utils.errors import ConfigurationError

# ======================================================================
# Shared helpers
# ======================================================================


def _settings(**overrides) -> Settings:
    """Settings with every API key empty unless overridden."""
    defaults = {
        "openai_api_key": "",
        "openai_base_url": "",
        "openai_text_model": "",
        "openai_embedding_model": "",
        "anthropic_api_key": "",
        "ollama_base_url": "http://localhost:11434",
        "app_env": "test",
        "conversation_db_path": "unused.db",
    }
    defaults.update(overrides)
    return Settings(_env_file=None, **defaults)


def _mock_repository_class() -> MagicMock:
    repo_class = MagicMock()
    repo_class.return_value.initialize = AsyncMock()
    return repo_class


# ======================================================================
# _build_llm_provider
# ======================================================================


class TestBuildLLMProvider:
    """Provider priority: Anthropic -> OpenAI -> Ollama."""

    def test_anthropic_priority(self) -> None:
        from knowledge_assistant.main import _build_llm_provider
        from knowledge_assistant.providers.llm.anthropic_provider import AnthropicLLMProvider

        s = _settings(anthropic_api_key="test-anthropic-key", openai_api_key="sk-also-set")
        assert isinstance(_build_llm_provider(s), AnthropicLLMProvider)

    def test_openai_fallback(self) -> None:
        from knowledge_assistant.main import _build_llm_provider
        from knowledge_assistant.providers.llm.openai_provider import OpenAILLMProvider

        assert isinstance(_build_llm_provider(_settings(openai_api_key="sk-test")), OpenAILLMProvider)

    def test_ollama_default(self) -> None:
        from knowledge_assistant.main import _build_llm_provider
        from knowledge_assistant.providers.llm.ollama_provider import OllamaLLMProvider

        assert isinstance(_build_llm_provider(_settings()), OllamaLLMProvider)


# ======================================================================
# _build_embedding_provider
# ======================================================================


class TestBuildEmbeddingProvider:
    def test_openai_when_key_set(self) -> None:
        from knowledge_assistant.main import _build_embedding_provider
        from knowledge_assistant.providers.embedding.openai_embedding_provider import (
            OpenAIEmbeddingProvider,
        )

        provider = _build_embedding_provider(_settings(openai_api_key="sk-test"))
        assert isinstance(provider, OpenAIEmbeddingProvider)

    def test_nomic_when_ollama_reachable(self) -> None:
        from knowledge_assistant.main import _build_embedding_provider
        from knowledge_assistant.providers.embedding.nomic_embedding_provider import (
            NomicEmbeddingProvider,
        )

        with patch(
            "knowledge_assistant.providers.embedding.nomic_embedding_provider.httpx.get",
            return_value=MagicMock(status_code=200),
        ):
            provider = _build_embedding_provider(_settings())
        assert isinstance(provider, NomicEmbeddingProvider)

    def test_no_provider_available(self) -> None:
        from knowledge_assistant.main import _build_embedding_provider

        with patch(
            "knowledge_assistant.providers.embedding.nomic_embedding_provider.httpx.get",
            return_value=MagicMock(status_code=503),
        ):
            with pytest.raises(ConfigurationError, match="No embedding provider available"):
                _build_embedding_provider(_settings())


class TestBuildEmbeddingClient:
    """The configured size must match a fixed-size provider's output."""

    def test_nomic_rejects_mismatched_dimensions(self, tmp_path: Path) -> None:
        from knowledge_assistant.config.loader import load_config
        from knowledge_assistant.main import _build_embedding_client

        s = _settings(embedding_dimensions=1536)
        with patch(
            "knowledge_assistant.providers.embedding.nomic_embedding_provider.httpx.get",
            return_value=MagicMock(status_code=200),
        ):
            with pytest.raises(ConfigurationError, match="EMBEDDING_DIMENSIONS=768") as exc_info:
                _build_embedding_client(s, load_config(str(tmp_path / "missing.yaml"), settings=s))
        assert exc_info.value.provider_name == "nomic_embedding"

    def test_nomic_with_matching_dimensions(self, tmp_path: Path) -> None:
        from knowledge_assistant.config.loader import load_config
        from knowledge_assistant.main import _build_embedding_client

        s = _settings(embedding_dimensions=768)
        with patch(
            "knowledge_assistant.providers.embedding.nomic_embedding_provider.httpx.get",
            return_value=MagicMock(status_code=200),
        ):
            client = _build_embedding_client(s, load_config(str(tmp_path / "missing.yaml"), settings=s))
        assert client.get_embedding_dimension() == 768
        assert client.get_config()["provider"] == "nomic_embedding"

    def test_flexible_provider_uses_configured_dimensions(
        self, mock_embedding_provider, tmp_path: Path
    ) -> None:
        from knowledge_assistant.config.loader import load_config
        from knowledge_assistant.main import _build_embedding_client

        s = _settings(embedding_dimensions=3072)
        with patch(
            "knowledge_assistant.main._build_embedding_provider",
            return_value=mock_embedding_provider,
        ):
            client = _build_embedding_client(s, load_config(str(tmp_path / "missing.yaml"), settings=s))
        assert client.get_embedding_dimension() == 3072


# ======================================================================
# Pipeline factories
# ======================================================================


class TestBuildPipelines:
    @pytest.mark.asyncio
    async def test_build_ingestion_pipeline(
        self, mock_embedding_provider, tmp_path: Path
    ) -> None:
        from knowledge_assistant.main import build_ingestion_pipeline
        from knowledge_assistant.services.ingestion.ingestion_service import IngestionPipeline

        repo_class = _mock_repository_class()
        with (
            patch("knowledge_assistant.main.PostgresKnowledgeRepository", repo_class),
            patch(
                "knowledge_assistant.main._build_embedding_provider",
                return_value=mock_embedding_provider,
            ),
        ):
            pipeline = await build_ingestion_pipeline(
                _settings(embedding_dimensions=768),
                config_path=str(tmp_path / "missing.yaml"),
            )

        assert isinstance(pipeline, IngestionPipeline)
        repo_class.return_value.initialize.assert_awaited_once()
        assert repo_class.call_args.kwargs["dimensions"] == 768

    @pytest.mark.asyncio
    async def test_build_query_pipeline(self, mock_embedding_provider, tmp_path: Path) -> None:
        from knowledge_assistant.main import build_query_pipeline
        from knowledge_assistant.services.query_service import QueryPipeline

        repo_class = _mock_repository_class()
        conversations_class = _mock_repository_class()
        with (
            patch("knowledge_assistant.main.PostgresKnowledgeRepository", repo_class),
            patch("knowledge_assistant.main.SQLiteConversationRepository", conversations_class),
            patch(
                "knowledge_assistant.main._build_embedding_provider",
                return_value=mock_embedding_provider,
            ),
        ):
            pipeline = await build_query_pipeline(
                _settings(anthropic_api_key="test-key"),
                config_path=str(tmp_path / "missing.yaml"),
            )

        assert isinstance(pipeline, QueryPipeline)
        conversations_class.assert_called_once_with("unused.db")
        conversations_class.return_value.initialize.assert_awaited_once()
        repo_class.return_value.initialize.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_unsupported_dimensions_fail_fast(
        self, mock_embedding_provider, tmp_path: Path
    ) -> None:
        from knowledge_assistant.main import build_ingestion_pipeline
        from knowledge_assistant.utils.errors import ValidationError

        repo_class = _mock_repository_class()
        with (
            patch("knowledge_assistant.main.PostgresKnowledgeRepository", repo_class),
            patch(
                "knowledge_assistant.main._build_embedding_provider",
                return_value=mock_embedding_provider,
            ),
        ):
            with pytest.raises(ValidationError):
                await build_ingestion_pipeline(
                    _settings(embedding_dimensions=512),
                    config_path=str(tmp_path / "missing.yaml"),
                )
        repo_class.return_value.initialize.assert_not_called()
