"""Configuration module: exports Settings, load_config, and a module-level singleton."""

from knowledge_assistant.config.loader import load_config
from knowledge_assistant.config.settings import Settings

settings = Settings()

__all__ = ["Settings", "load_config", "settings"]
