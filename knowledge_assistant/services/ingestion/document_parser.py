"""Document parser: raw bytes → normalized text.

Handles the four :class:`SourceType` kinds:

- **PDF** -- text extracted page-by-page with PyMuPDF (``fitz``).
- **MARKDOWN** -- syntax stripped with regexes so embeddings capture
  content, not formatting.
- **TEXT** -- decoded as UTF-8.
- **URL** -- an already-fetched HTML payload; readable text extracted with
  trafilatura (the same engine used for fetching in
  :meth:`IngestionPipeline.ingest_url`).

All output is normalized by collapsing whitespace runs to a single space.
"""

from __future__ import annotations

import asyncio
import re
from collections.abc import Callable
from datetime import datetime, timezone

import fitz  # PyMuPDF -- the "fitz" import name is a PyMuPDF convention
import structlog
import trafilatura

from knowledge_assistant.interfaces.document_parser import IDocumentParser, ParsedDocument
from knowledge_assistant.models.knowledge import SourceType
from knowledge_assistant.utils.errors import ParsingError, ValidationError

logger = structlog.get_logger(logger_name=__name__)

_PDF_MAGIC = b"%PDF"

# Applied in order; fenced code and images must go before inline code/links.
_MARKDOWN_RULES: list[tuple[re.Pattern[str], str]] = [
    (re.compile(r"```[a-zA-Z0-9_-]*\n?([\s\S]*?)```"), r"\1"),
    (re.compile(r"!\[([^\]]*)\]\(([^)]+)\)"), r"\1"),
    (re.compile(r"\[([^\]]+)\]\(([^)]+)\)"), r"\1 (\2)"),
    (re.compile(r"^#{1,6}\s+", re.MULTILINE), ""),
    (re.compile(r"(\*\*|__)(.*?)\1"), r"\2"),
    (re.compile(r"(\*|_)(.*?)\1"), r"\2"),
    (re.compile(r"~~(.*?)~~"), r"\1"),
    (re.compile(r"`([^`]+)`"), r"\1"),
    (re.compile(r"^(\*{3,}|-{3,}|_{3,})$", re.MULTILINE), ""),
    (re.compile(r"^>\s+", re.MULTILINE), ""),
    (re.compile(r"^\s*[-*+]\s+", re.MULTILINE), ""),
    (re.compile(r"^\s*\d+\.\s+", re.MULTILINE), ""),
]

_WHITESPACE = re.compile(r"\s+")


def normalize_content(text: str) -> str:
    """Collapse every whitespace run to one space and trim."""
    return _WHITESPACE.sub(" ", text).strip()


def strip_markdown(text: str) -> str:
    """Remove Markdown syntax, keeping the readable text."""
    for pattern, replacement in _MARKDOWN_RULES:
        text = pattern.sub(replacement, text)
    return text


def is_pdf_buffer(buffer: bytes) -> bool:
    return buffer[:4] == _PDF_MAGIC


class DocumentParser(IDocumentParser):
    """Parses PDF, Markdown, plain-text and HTML buffers."""

    def __init__(self) -> None:
        self._handlers: dict[SourceType, Callable[[bytes], tuple[str, dict]]] = {
            SourceType.PDF: self._parse_pdf,
            SourceType.MARKDOWN: self._parse_markdown,
            SourceType.TEXT: self._parse_text,
            SourceType.URL: self._parse_html,
        }

    async def parse(self, buffer: bytes | None, source_type: SourceType) -> ParsedDocument:
        """Parse *buffer* and return normalized content plus metadata."""
        self._validate_buffer(buffer)
        handler = self._handlers.get(source_type) if isinstance(source_type, SourceType) else None
        if handler is None:
            raise ValidationError(f"Unsupported source type: {source_type}")

        # PyMuPDF and trafilatura are synchronous and CPU-bound.
        raw_text, extra = await asyncio.to_thread(handler, buffer)
        content = normalize_content(raw_text)
        if not content:
            raise ParsingError(
                message=f"No text could be extracted from {source_type.value} document",
                provider_name=self.get_provider_name(),
            )

        metadata = {
            "source_type": source_type.value,
            "parsed_at": datetime.now(tz=timezone.utc).isoformat(),  # noqa: UP017
            "original_size": len(buffer),
            **extra,
        }
        logger.debug(
            "document_parsed",
            source_type=source_type.value,
            original_size=len(buffer),
            content_length=len(content),
        )
        return ParsedDocument(content=content, metadata=metadata)

    def supports(self, source_type: SourceType) -> bool:
        return source_type in self._handlers

    def get_provider_name(self) -> str:
        return "document_parser"

    # ------------------------------------------------------------------
    # Format handlers
    # ------------------------------------------------------------------

    @staticmethod
    def _validate_buffer(buffer: bytes | None) -> None:
        if buffer is None:
            raise ValidationError("Buffer cannot be null or undefined")
        if len(buffer) == 0:
            raise ValidationError("Buffer cannot be empty")

    def _parse_pdf(self, buffer: bytes) -> tuple[str, dict]:
        if not is_pdf_buffer(buffer):
            raise ParsingError(
                message="Failed to parse PDF: missing %PDF header",
                provider_name=self.get_provider_name(),
            )
        try:
            with fitz.open(stream=buffer, filetype="pdf") as doc:
                pages = [page.get_text("text") for page in doc]
                title = (doc.metadata or {}).get("title") or None
        except Exception as exc:
            # PyMuPDF's error types vary across releases (FileDataError, mupdf.FzError*).
            raise ParsingError(
                message=f"Failed to parse PDF: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc

        extra: dict = {"pages": len(pages)}
        if title:
            extra["pdf_title"] = title
        return "\n\n".join(pages), extra

    def _parse_markdown(self, buffer: bytes) -> tuple[str, dict]:
        return strip_markdown(self._decode(buffer)), {}

    def _parse_text(self, buffer: bytes) -> tuple[str, dict]:
        return self._decode(buffer), {}

    def _parse_html(self, buffer: bytes) -> tuple[str, dict]:
        html = self._decode(buffer)
        text = trafilatura.extract(html, include_comments=False, include_tables=True)
        if not text:
            logger.warning("trafilatura_extraction_empty", html_length=len(html))
            return "", {}
        return text, {}

    def _decode(self, buffer: bytes) -> str:
        try:
            return buffer.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise ParsingError(
                message=f"Document is not valid UTF-8: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc
