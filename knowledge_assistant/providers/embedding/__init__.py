"""Embedding provider adapters (OpenAI-compatible, Nomic via Ollama)."""
