"""Orchestrator for the document ingestion pipeline.

Pipeline stages: **parse -> persist source -> chunk -> embed -> store**.

:class:`IngestionPipeline` coordinates five collaborators (document parser,
knowledge repository, chunker, embedding client and an optional HTTP
client for URLs) without any of them knowing about each other.  Every
``ingest_*`` entry point funnels into :meth:`IngestionPipeline.ingest`:

    1. IDocumentParser -- raw bytes to normalized text + metadata
    2. KnowledgeSource -- created PENDING, moved to PROCESSING and saved
       (the repository assigns the id here)
    3. TextChunker -- overlapping, token-bounded windows
    4. EmbeddingClient -- one RETRIEVAL_DOCUMENT vector per chunk
    5. IKnowledgeRepository -- fragments saved in bulk, source COMPLETED

Input is validated before any external call, so a rejected request leaves
nothing behind.  Once the PROCESSING source exists, any failure marks it
FAILED with the error text before the exception is re-raised.
"""

from __future__ import annotations

import asyncio
import time
from pathlib import Path
from typing import TYPE_CHECKING, Any

import httpx
import pydantic
import structlog
import trafilatura

from knowledge_assistant.models.knowledge import (
    Fragment,
    IngestionResult,
    KnowledgeSource,
    SourceType,
    TextChunk,
)
from knowledge_assistant.utils.errors import (
    KnowledgeAssistantError,
    ProviderUnavailableError,
    SourceStateError,
    ValidationError,
)

if TYPE_CHECKING:
    from knowledge_assistant.interfaces.document_parser import IDocumentParser
    from knowledge_assistant.interfaces.knowledge_repository import IKnowledgeRepository
    from knowledge_assistant.services.embedding_client import EmbeddingClient
    from knowledge_assistant.services.ingestion.chunker import TextChunker

logger = structlog.get_logger(logger_name=__name__)

_SUFFIX_TYPES: dict[str, SourceType] = {
    ".pdf": SourceType.PDF,
    ".md": SourceType.MARKDOWN,
    ".markdown": SourceType.MARKDOWN,
    ".txt": SourceType.TEXT,
    ".text": SourceType.TEXT,
    ".html": SourceType.URL,
    ".htm": SourceType.URL,
}

_FETCH_TIMEOUT = 30.0
_FETCH_HEADERS = {
    "User-Agent": "Mozilla/5.0 (compatible; knowledge-assistant/0.1)",
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
}


def source_type_for_path(path: Path) -> SourceType:
    """Infer the :class:`SourceType` of a local file from its suffix."""
    try:
        return _SUFFIX_TYPES[path.suffix.lower()]
    except KeyError:
        raise ValidationError(f"Unsupported file type: {path.suffix or path.name}") from None


def _coerce_source_type(source_type: SourceType | str | None) -> SourceType:
    if isinstance(source_type, SourceType):
        return source_type
    if not source_type:
        raise ValidationError("SourceType is required")
    try:
        return SourceType(str(source_type).upper())
    except ValueError:
        raise ValidationError("SourceType is required") from None


def _validation_message(exc: pydantic.ValidationError) -> str:
    # pydantic prefixes field-validator messages with "Value error, ".
    first = exc.errors()[0]
    return str(first.get("msg", exc)).removeprefix("Value error, ")


class IngestionPipeline:
    """Orchestrates ingestion: parse -> persist source -> chunk -> embed -> store.

    Parameters
    ----------
    parser:
        Turns raw document bytes into normalized text.
    repository:
        Persists sources and fragments.
    chunker:
        Splits normalized text into overlapping token windows.
    embedding_client:
        Generates document embeddings for each chunk.
    http_client:
        Optional client used by :meth:`ingest_url`; one is created per
        call when omitted.
    """

    def __init__(
        self,
        parser: IDocumentParser,
        repository: IKnowledgeRepository,
        chunker: TextChunker,
        embedding_client: EmbeddingClient,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._parser = parser
        self._repository = repository
        self._chunker = chunker
        self._embedding_client = embedding_client
        self._http_client = http_client

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def ingest(
        self,
        title: str,
        sector_id: str,
        source_type: SourceType | str | None,
        buffer: bytes | None,
        metadata: dict[str, Any] | None = None,
    ) -> IngestionResult:
        """Ingest one document buffer into the knowledge base.

        Returns
        -------
        IngestionResult
            Identifier, fragment count and timing for the stored source.

        Raises
        ------
        ValidationError
            On bad input; nothing is persisted.
        ParsingError, EmbeddingError, RetrievalError
            From the collaborators.  The source is left FAILED when the
            error happens after it was saved.
        """
        start = time.monotonic()

        if not title or not title.strip():
            raise ValidationError("Title cannot be empty")
        if not sector_id or not sector_id.strip():
            raise ValidationError("SectorId cannot be empty")
        if not buffer:
            raise ValidationError("Buffer cannot be empty")
        kind = _coerce_source_type(source_type)

        # Step 1: parse.
        parsed = await self._parser.parse(buffer, kind)

        # Step 2: build the PENDING source; caller metadata wins on conflicts.
        try:
            source = KnowledgeSource(
                title=title,
                sector_id=sector_id,
                source_type=kind,
                content=parsed.content,
                metadata={**parsed.metadata, **(metadata or {})},
            )
        except pydantic.ValidationError as exc:
            raise ValidationError(_validation_message(exc)) from exc

        # Step 3: mark PROCESSING and persist; the repository assigns the id.
        source = await self._repository.save_source(source.mark_as_processing())
        logger.info(
            "ingestion_started",
            source_id=source.id,
            title=source.title,
            sector_id=source.sector_id,
            source_type=kind.value,
            content_size=source.content_size,
        )

        try:
            result = await self._process(source, start)
        except Exception as exc:
            await self._record_failure(source, exc)
            raise
        return result

    async def ingest_file(
        self,
        path: str | Path,
        sector_id: str,
        title: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> IngestionResult:
        """Read a local file and ingest it, inferring the type from its suffix."""
        file_path = Path(path)
        kind = source_type_for_path(file_path)
        buffer = await asyncio.to_thread(file_path.read_bytes)
        return await self.ingest(
            title=title or file_path.stem,
            sector_id=sector_id,
            source_type=kind,
            buffer=buffer,
            metadata={"file_name": file_path.name, **(metadata or {})},
        )

    async def ingest_url(
        self,
        url: str,
        sector_id: str,
        title: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> IngestionResult:
        """Fetch a web page and ingest its readable text.

        The page title (via trafilatura metadata) is used when *title* is
        not supplied, falling back to the URL itself.
        """
        if not url or not url.strip():
            raise ValidationError("URL cannot be empty")

        html = await self._fetch(url)
        if not title:
            page_meta = trafilatura.extract_metadata(html)
            title = (page_meta.title if page_meta else None) or url

        return await self.ingest(
            title=title,
            sector_id=sector_id,
            source_type=SourceType.URL,
            buffer=html.encode("utf-8"),
            metadata={"url": url, **(metadata or {})},
        )

    async def delete_source(self, source_id: str) -> int:
        """Soft-delete a source and remove its fragments.

        Returns the number of fragments removed.

        Raises
        ------
        ValidationError
            If *source_id* is blank or unknown.
        SourceStateError
            If the source is already deleted.
        """
        if not source_id or not source_id.strip():
            raise ValidationError("Source ID is required")
        source = await self._repository.find_source_by_id(source_id)
        if source is None:
            raise ValidationError(f"Knowledge source not found: {source_id}")
        if source.is_deleted:
            raise SourceStateError("Cannot modify deleted source")

        await self._repository.soft_delete_source(source_id)
        removed = await self._repository.delete_fragments_by_source(source_id)
        logger.info("source_deleted", source_id=source_id, fragments_removed=removed)
        return removed

    async def list_sources(self, sector_id: str) -> list[KnowledgeSource]:
        """Return the non-deleted sources of a sector, newest first."""
        if not sector_id or not sector_id.strip():
            raise ValidationError("SectorId cannot be empty")
        return await self._repository.find_sources_by_sector(sector_id)

    async def close(self) -> None:
        await self._repository.close()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _process(self, source: KnowledgeSource, start: float) -> IngestionResult:
        assert source.id is not None

        # Step 4: chunk.
        chunks = self._chunker.chunk(source.content)

        # Step 5: embed every chunk as a retrieval document.
        vectors = await self._embedding_client.embed_documents([c.content for c in chunks])

        # Step 6-7: build fragments and store them in bulk.  The repository
        # writes them in one transaction, so a source never ends up with a
        # partial set of fragments.
        fragments = self._build_fragments(source.id, chunks, vectors)
        stored = await self._repository.save_fragments(fragments)

        # Step 8: complete.
        source = await self._repository.save_source(source.mark_as_completed())

        elapsed = time.monotonic() - start
        total_tokens = sum(c.tokens for c in chunks)
        logger.info(
            "ingestion_complete",
            source_id=source.id,
            title=source.title,
            fragments=len(stored),
            total_tokens=total_tokens,
            elapsed_s=round(elapsed, 2),
        )
        return IngestionResult(
            source_id=source.id,
            title=source.title,
            fragment_count=len(stored),
            content_size=source.content_size,
            status=source.status,
            total_tokens=total_tokens,
            ingestion_time=elapsed,
        )

    @staticmethod
    def _build_fragments(
        source_id: str, chunks: list[TextChunk], vectors: list[list[float]]
    ) -> list[Fragment]:
        try:
            return [
                Fragment(
                    source_id=source_id,
                    content=chunk.content,
                    embedding=vector,
                    position=chunk.position,
                    token_count=chunk.tokens,
                    metadata={
                        "start_index": chunk.start_index,
                        "end_index": chunk.end_index,
                        "tokens": chunk.tokens,
                    },
                )
                for chunk, vector in zip(chunks, vectors, strict=True)
            ]
        except pydantic.ValidationError as exc:
            raise ValidationError(_validation_message(exc)) from exc

    async def _record_failure(self, source: KnowledgeSource, exc: Exception) -> None:
        logger.error(
            "ingestion_failed",
            source_id=source.id,
            title=source.title,
            error=str(exc),
        )
        try:
            await self._repository.save_source(source.mark_as_failed(str(exc)))
        except KnowledgeAssistantError as save_exc:
            # The original error is re-raised by the caller.
            logger.error(
                "ingestion_failure_not_recorded",
                source_id=source.id,
                error=str(save_exc),
            )

    async def _fetch(self, url: str) -> str:
        client = self._http_client or httpx.AsyncClient(
            timeout=httpx.Timeout(_FETCH_TIMEOUT),
            headers=_FETCH_HEADERS,
            follow_redirects=True,
        )
        try:
            response = await client.get(url)
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise ProviderUnavailableError(
                message=f"HTTP {exc.response.status_code} for {url}",
                provider_name="url_fetcher",
            ) from exc
        except httpx.HTTPError as exc:
            raise ProviderUnavailableError(
                message=f"HTTP error fetching {url}: {exc}",
                provider_name="url_fetcher",
            ) from exc
        finally:
            if self._http_client is None:
                await client.aclose()

        logger.debug("url_fetched", url=url, length=len(response.text))
        return response.text
