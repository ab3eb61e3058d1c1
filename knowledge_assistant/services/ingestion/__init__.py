"""Document ingestion pipeline for the knowledge base.

Orchestrates **parse -> persist source -> chunk -> embed -> store**:

1. **Parse** (document_parser.py / DocumentParser) -- PDF, Markdown, plain
   text and HTML buffers become normalized text plus metadata.

2. **Chunk** (chunker.py / TextChunker) -- splits the text into ~500-token
   overlapping windows over whitespace-delimited words.

3. **Embed** (EmbeddingClient) -- one RETRIEVAL_DOCUMENT vector per chunk.

4. **Store** (IKnowledgeRepository) -- fragments are persisted in bulk and
   the source is marked COMPLETED.

IngestionPipeline coordinates the stages and exposes ``ingest``,
``ingest_file``, ``ingest_url`` and ``delete_source``.
"""

from knowledge_assistant.services.ingestion.chunker import TextChunker
from knowledge_assistant.services.ingestion.document_parser import DocumentParser
from knowledge_assistant.services.ingestion.ingestion_service import IngestionPipeline

__all__ = [
    "DocumentParser",
    "IngestionPipeline",
    "TextChunker",
]
