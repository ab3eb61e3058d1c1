"""LLM provider adapters (Anthropic, OpenAI-compatible, Ollama)."""
