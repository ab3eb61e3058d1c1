"""Knowledge assistant: document ingestion and retrieval-augmented Q&A."""

__version__ = "0.1.0"
