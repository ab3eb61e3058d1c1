"""Abstract base class for document parsers.

A parser turns the raw bytes of an uploaded document into normalized text
plus parse metadata.  It is the first collaborator the ingestion pipeline
calls and must reject empty buffers and unknown source kinds.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

from knowledge_assistant.models.knowledge import SourceType


@dataclass(frozen=True)
class ParsedDocument:
    """Normalized text extracted from a document buffer.

    Attributes
    ----------
    content:
        Whitespace-normalized document text.
    metadata:
        Parser-supplied facts such as ``source_type``, ``parsed_at``,
        ``original_size`` and, for PDFs, ``pages``.
    """

    content: str
    metadata: dict[str, Any] = field(default_factory=dict)


class IDocumentParser(ABC):
    """Contract for converting document bytes into text."""

    @abstractmethod
    async def parse(self, buffer: bytes | None, source_type: SourceType) -> ParsedDocument:
        """Parse *buffer* according to *source_type*.

        Raises
        ------
        knowledge_assistant.utils.errors.ValidationError
            If the buffer is ``None``/empty or the source type is unsupported.
        knowledge_assistant.utils.errors.ParsingError
            If the document cannot be decoded.
        """

    @abstractmethod
    def supports(self, source_type: SourceType) -> bool:
        """Return ``True`` if this parser handles *source_type*."""
