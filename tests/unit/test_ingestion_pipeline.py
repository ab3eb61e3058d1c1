"""Unit tests for IngestionPipeline: validation, status lifecycle, files, URLs and deletes."""

from __future__ import annotations

from pathlib import Path
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from knowledge_assistant.models.knowledge import SourceStatus, SourceType
from knowledge_assistant.services.embedding_client import EmbeddingClient
from knowledge_assistant.services.ingestion.chunker import TextChunker
from knowledge_assistant.services.ingestion.ingestion_service import (
    IngestionPipeline,
    source_type_for_path,
)
from knowledge_assistant.utils.errors import (
    EmbeddingError,
    ParsingError,
    ProviderUnavailableError,
    RetrievalError,
    SourceStateError,
    ValidationError,
)
from tests.conftest import make_source


@pytest.fixture()
def pipeline(
    mock_parser, mock_knowledge_repository, mock_embedding_provider
) -> IngestionPipeline:
    return IngestionPipeline(
        parser=mock_parser,
        repository=mock_knowledge_repository,
        chunker=TextChunker(),
        embedding_client=EmbeddingClient(mock_embedding_provider, dimensions=768),
    )


def _saved_statuses(repository) -> list[SourceStatus]:
    return [c.args[0].status for c in repository.save_source.call_args_list]


# ======================================================================
# ingest()
# ======================================================================


class TestIngest:
    @pytest.mark.asyncio
    async def test_success(self, pipeline, mock_knowledge_repository) -> None:
        result = await pipeline.ingest("Employee Handbook", "hr", SourceType.TEXT, b"raw")

        assert result.source_id == "src-1"
        assert result.title == "Employee Handbook"
        assert result.fragment_count == 1
        assert result.status is SourceStatus.COMPLETED
        assert result.total_tokens > 0
        assert result.ingestion_time >= 0
        assert _saved_statuses(mock_knowledge_repository) == [
            SourceStatus.PROCESSING,
            SourceStatus.COMPLETED,
        ]

    @pytest.mark.asyncio
    async def test_fragments_carry_source_and_offsets(
        self, pipeline, mock_knowledge_repository
    ) -> None:
        await pipeline.ingest("Employee Handbook", "hr", SourceType.TEXT, b"raw")

        fragments = mock_knowledge_repository.save_fragments.call_args.args[0]
        assert len(fragments) == 1
        fragment = fragments[0]
        assert fragment.source_id == "src-1"
        assert fragment.position == 0
        assert len(fragment.embedding) == 768
        assert fragment.metadata["start_index"] == 0
        assert fragment.metadata["end_index"] == len(fragment.content)
        assert fragment.metadata["tokens"] == fragment.token_count

    @pytest.mark.asyncio
    async def test_string_source_type_accepted(self, pipeline, mock_parser) -> None:
        await pipeline.ingest("Handbook", "hr", "markdown", b"# raw")
        assert mock_parser.parse.call_args.args[1] is SourceType.MARKDOWN

    @pytest.mark.asyncio
    async def test_caller_metadata_wins(self, pipeline, mock_knowledge_repository) -> None:
        await pipeline.ingest(
            "Handbook", "hr", SourceType.TEXT, b"raw", metadata={"source_type": "custom", "team": "ops"}
        )
        saved = mock_knowledge_repository.save_source.call_args_list[0].args[0]
        assert saved.metadata["source_type"] == "custom"
        assert saved.metadata["team"] == "ops"
        assert saved.metadata["original_size"] == 56

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        ("title", "sector", "kind", "buffer", "message"),
        [
            ("", "hr", SourceType.TEXT, b"x", "Title cannot be empty"),
            ("  ", "hr", SourceType.TEXT, b"x", "Title cannot be empty"),
            ("T", "", SourceType.TEXT, b"x", "SectorId cannot be empty"),
            ("T", "hr", SourceType.TEXT, b"", "Buffer cannot be empty"),
            ("T", "hr", SourceType.TEXT, None, "Buffer cannot be empty"),
            ("T", "hr", None, b"x", "SourceType is required"),
            ("T", "hr", "DOCX", b"x", "SourceType is required"),
        ],
    )
    async def test_validation_happens_before_any_call(
        self, pipeline, mock_parser, mock_knowledge_repository, title, sector, kind, buffer, message
    ) -> None:
        with pytest.raises(ValidationError, match=message):
            await pipeline.ingest(title, sector, kind, buffer)
        mock_parser.parse.assert_not_called()
        mock_knowledge_repository.save_source.assert_not_called()

    @pytest.mark.asyncio
    async def test_overlong_title_rejected(self, pipeline, mock_knowledge_repository) -> None:
        with pytest.raises(ValidationError, match="Title cannot exceed 255 characters"):
            await pipeline.ingest("x" * 256, "hr", SourceType.TEXT, b"raw")
        mock_knowledge_repository.save_source.assert_not_called()

    @pytest.mark.asyncio
    async def test_parse_failure_persists_nothing(
        self, pipeline, mock_parser, mock_knowledge_repository
    ) -> None:
        mock_parser.parse.side_effect = ParsingError("Document is not valid UTF-8")
        with pytest.raises(ParsingError):
            await pipeline.ingest("Handbook", "hr", SourceType.TEXT, b"\xff")
        mock_knowledge_repository.save_source.assert_not_called()

    @pytest.mark.asyncio
    async def test_embedding_failure_marks_source_failed(
        self, pipeline, mock_embedding_provider, mock_knowledge_repository
    ) -> None:
        mock_embedding_provider.embed.side_effect = EmbeddingError("Rate limit")

        with pytest.raises(EmbeddingError):
            await pipeline.ingest("Handbook", "hr", SourceType.TEXT, b"raw")

        assert _saved_statuses(mock_knowledge_repository) == [
            SourceStatus.PROCESSING,
            SourceStatus.FAILED,
        ]
        failed = mock_knowledge_repository.save_source.call_args_list[-1].args[0]
        assert "Rate limit" in failed.error_message
        mock_knowledge_repository.save_fragments.assert_not_called()

    @pytest.mark.asyncio
    async def test_fragment_store_failure_marks_source_failed(
        self, pipeline, mock_knowledge_repository
    ) -> None:
        mock_knowledge_repository.save_fragments.side_effect = RetrievalError("disk full")

        with pytest.raises(RetrievalError):
            await pipeline.ingest("Handbook", "hr", SourceType.TEXT, b"raw")

        assert _saved_statuses(mock_knowledge_repository)[-1] is SourceStatus.FAILED

    @pytest.mark.asyncio
    async def test_original_error_survives_failed_bookkeeping(
        self, pipeline, mock_embedding_provider, mock_knowledge_repository
    ) -> None:
        mock_embedding_provider.embed.side_effect = EmbeddingError("Rate limit")

        async def _save_source(source):
            if source.status is SourceStatus.FAILED:
                raise RetrievalError("connection lost")
            return source.with_id("src-1")

        mock_knowledge_repository.save_source.side_effect = _save_source

        with pytest.raises(EmbeddingError, match="Rate limit"):
            await pipeline.ingest("Handbook", "hr", SourceType.TEXT, b"raw")


# ======================================================================
# ingest_file()
# ======================================================================


class TestIngestFile:
    def test_source_type_for_path(self) -> None:
        assert source_type_for_path(Path("guide.PDF")) is SourceType.PDF
        assert source_type_for_path(Path("notes.markdown")) is SourceType.MARKDOWN
        assert source_type_for_path(Path("page.htm")) is SourceType.URL
        with pytest.raises(ValidationError, match="Unsupported file type"):
            source_type_for_path(Path("sheet.xlsx"))

    @pytest.mark.asyncio
    async def test_reads_file_and_defaults_title(
        self, pipeline, mock_parser, mock_knowledge_repository, tmp_path: Path
    ) -> None:
        doc = tmp_path / "onboarding-guide.md"
        doc.write_bytes(b"# Welcome\n\nEmployees receive twenty days of paid vacation.")

        result = await pipeline.ingest_file(doc, sector_id="hr")

        assert result.title == "onboarding-guide"
        buffer, kind = mock_parser.parse.call_args.args
        assert buffer == doc.read_bytes()
        assert kind is SourceType.MARKDOWN
        saved = mock_knowledge_repository.save_source.call_args_list[0].args[0]
        assert saved.metadata["file_name"] == "onboarding-guide.md"

    @pytest.mark.asyncio
    async def test_explicit_title(self, pipeline, tmp_path: Path) -> None:
        doc = tmp_path / "a.txt"
        doc.write_text("Employees receive twenty days of paid vacation.")
        result = await pipeline.ingest_file(doc, sector_id="hr", title="Vacation Policy")
        assert result.title == "Vacation Policy"

    @pytest.mark.asyncio
    async def test_unsupported_suffix(self, pipeline, mock_parser, tmp_path: Path) -> None:
        doc = tmp_path / "budget.xlsx"
        doc.write_bytes(b"binary")
        with pytest.raises(ValidationError):
            await pipeline.ingest_file(doc, sector_id="hr")
        mock_parser.parse.assert_not_called()


# ======================================================================
# ingest_url()
# ======================================================================


_HTML = "<html><head><title>Benefits</title></head><body><p>Benefits overview.</p></body></html>"


def _http_client(response: MagicMock | None = None, error: Exception | None = None) -> AsyncMock:
    client = AsyncMock(spec=httpx.AsyncClient)
    if error is not None:
        client.get = AsyncMock(side_effect=error)
    else:
        client.get = AsyncMock(return_value=response)
    return client


def _ok_response(text: str = _HTML) -> MagicMock:
    response = MagicMock()
    response.text = text
    response.raise_for_status = MagicMock(return_value=None)
    return response


class TestIngestUrl:
    def _pipeline(self, http_client, mock_parser, repository, provider) -> IngestionPipeline:
        return IngestionPipeline(
            parser=mock_parser,
            repository=repository,
            chunker=TextChunker(),
            embedding_client=EmbeddingClient(provider, dimensions=768),
            http_client=http_client,
        )

    @pytest.mark.asyncio
    async def test_fetches_and_uses_page_title(
        self, mock_parser, mock_knowledge_repository, mock_embedding_provider
    ) -> None:
        client = _http_client(_ok_response())
        pipeline = self._pipeline(
            client, mock_parser, mock_knowledge_repository, mock_embedding_provider
        )

        with patch(
            "knowledge_assistant.services.ingestion.ingestion_service.trafilatura.extract_metadata",
            return_value=MagicMock(title="Benefits"),
        ):
            result = await pipeline.ingest_url("https://intranet.example.com/benefits", "hr")

        assert result.title == "Benefits"
        client.get.assert_awaited_once_with("https://intranet.example.com/benefits")
        buffer, kind = mock_parser.parse.call_args.args
        assert buffer == _HTML.encode("utf-8")
        assert kind is SourceType.URL
        saved = mock_knowledge_repository.save_source.call_args_list[0].args[0]
        assert saved.metadata["url"] == "https://intranet.example.com/benefits"
        client.aclose.assert_not_called()

    @pytest.mark.asyncio
    async def test_title_falls_back_to_url(
        self, mock_parser, mock_knowledge_repository, mock_embedding_provider
    ) -> None:
        pipeline = self._pipeline(
            _http_client(_ok_response()),
            mock_parser,
            mock_knowledge_repository,
            mock_embedding_provider,
        )
        with patch(
            "knowledge_assistant.services.ingestion.ingestion_service.trafilatura.extract_metadata",
            return_value=None,
        ):
            result = await pipeline.ingest_url("https://intranet.example.com/faq", "hr")
        assert result.title == "https://intranet.example.com/faq"

    @pytest.mark.asyncio
    async def test_http_status_error(
        self, mock_parser, mock_knowledge_repository, mock_embedding_provider
    ) -> None:
        response = MagicMock()
        response.raise_for_status = MagicMock(
            side_effect=httpx.HTTPStatusError(
                "Not Found", request=MagicMock(), response=MagicMock(status_code=404)
            )
        )
        pipeline = self._pipeline(
            _http_client(response), mock_parser, mock_knowledge_repository, mock_embedding_provider
        )
        with pytest.raises(ProviderUnavailableError, match="HTTP 404"):
            await pipeline.ingest_url("https://intranet.example.com/missing", "hr")
        mock_knowledge_repository.save_source.assert_not_called()

    @pytest.mark.asyncio
    async def test_connection_error(
        self, mock_parser, mock_knowledge_repository, mock_embedding_provider
    ) -> None:
        pipeline = self._pipeline(
            _http_client(error=httpx.ConnectError("refused")),
            mock_parser,
            mock_knowledge_repository,
            mock_embedding_provider,
        )
        with pytest.raises(ProviderUnavailableError) as exc_info:
            await pipeline.ingest_url("https://intranet.example.com", "hr")
        assert exc_info.value.provider_name == "url_fetcher"

    @pytest.mark.asyncio
    async def test_owned_client_is_closed(
        self, mock_parser, mock_knowledge_repository, mock_embedding_provider
    ) -> None:
        client = _http_client(_ok_response())
        pipeline = self._pipeline(
            None, mock_parser, mock_knowledge_repository, mock_embedding_provider
        )
        with patch(
            "knowledge_assistant.services.ingestion.ingestion_service.httpx.AsyncClient",
            return_value=client,
        ):
            await pipeline.ingest_url("https://intranet.example.com", "hr", title="Intranet")
        client.aclose.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_blank_url(self, pipeline) -> None:
        with pytest.raises(ValidationError, match="URL cannot be empty"):
            await pipeline.ingest_url("  ", "hr")


# ======================================================================
# delete_source() / list_sources()
# ======================================================================


class TestDeleteSource:
    @pytest.mark.asyncio
    async def test_soft_deletes_and_removes_fragments(
        self, pipeline, mock_knowledge_repository
    ) -> None:
        mock_knowledge_repository.find_source_by_id.return_value = make_source(id="src-1")
        mock_knowledge_repository.delete_fragments_by_source.return_value = 4

        removed = await pipeline.delete_source("src-1")

        assert removed == 4
        mock_knowledge_repository.soft_delete_source.assert_awaited_once_with("src-1")
        mock_knowledge_repository.delete_fragments_by_source.assert_awaited_once_with("src-1")

    @pytest.mark.asyncio
    async def test_unknown_source(self, pipeline) -> None:
        with pytest.raises(ValidationError, match="Knowledge source not found: nope"):
            await pipeline.delete_source("nope")

    @pytest.mark.asyncio
    async def test_already_deleted(self, pipeline, mock_knowledge_repository) -> None:
        mock_knowledge_repository.find_source_by_id.return_value = make_source(
            id="src-1"
        ).soft_delete()
        with pytest.raises(SourceStateError, match="Cannot modify deleted source"):
            await pipeline.delete_source("src-1")
        mock_knowledge_repository.soft_delete_source.assert_not_called()

    @pytest.mark.asyncio
    async def test_blank_id(self, pipeline) -> None:
        with pytest.raises(ValidationError, match="Source ID is required"):
            await pipeline.delete_source("")

    @pytest.mark.asyncio
    async def test_list_sources(self, pipeline, mock_knowledge_repository) -> None:
        mock_knowledge_repository.find_sources_by_sector.return_value = [make_source(id="a")]
        sources = await pipeline.list_sources("hr")
        assert [s.id for s in sources] == ["a"]
        mock_knowledge_repository.find_sources_by_sector.assert_awaited_once_with("hr")

    @pytest.mark.asyncio
    async def test_close_releases_repository(self, pipeline, mock_knowledge_repository) -> None:
        await pipeline.close()
        mock_knowledge_repository.close.assert_awaited_once()
