"""YAML configuration loader with environment variable overrides.

Configuration is resolved in layers (later layers win):

    1. Defaults declared on :class:`Settings`
    2. ``config/config.yaml``   -- static defaults checked into the repo
    3. Environment / ``.env``   -- only the fields actually set there

The result is a plain nested dict grouped by pipeline stage (``chunking``,
``embedding``, ``retrieval``, ``generation``, ``storage``, ``logging``) that
the factories in :mod:`knowledge_assistant.main` read from.
"""

from pathlib import Path

import yaml

from knowledge_assistant.config.settings import Settings

# section -> {config key: Settings field}
_SECTION_FIELDS: dict[str, dict[str, str]] = {
    "chunking": {
        "chunk_size": "chunk_size",
        "overlap": "chunk_overlap",
        "min_chunk_size": "min_chunk_size",
    },
    "embedding": {
        "dimensions": "embedding_dimensions",
        "batch_size": "embedding_batch_size",
    },
    "retrieval": {
        "max_results": "rag_max_results",
        "min_similarity": "rag_min_similarity",
        "context_message_limit": "context_message_limit",
    },
    "generation": {
        "temperature": "generation_temperature",
        "max_tokens": "generation_max_tokens",
    },
    "storage": {
        "database_url": "database_url",
        "pool_min_size": "database_pool_min_size",
        "pool_max_size": "database_pool_max_size",
        "conversation_db_path": "conversation_db_path",
    },
    "logging": {
        "level": "log_level",
    },
}


def load_config(path: str = "config/config.yaml", settings: Settings | None = None) -> dict:
    """Load YAML config and merge with environment-based Settings.

    Args:
        path: Path to the YAML configuration file.  A missing file is not
              an error; Settings defaults are used instead.
        settings: Pre-built settings; a fresh :class:`Settings` is read
                  from the environment when omitted.

    Returns:
        Fully resolved configuration dictionary.
    """
    settings = settings or Settings()

    config = _settings_sections(settings, explicit_only=False)

    config_path = Path(path)
    if config_path.exists():
        with open(config_path) as f:
            yaml_config = yaml.safe_load(f) or {}
        _deep_merge(config, yaml_config)

    _deep_merge(config, _settings_sections(settings, explicit_only=True))
    config["llm"] = {"available_providers": settings.get_available_llm_providers()}
    return config


def _settings_sections(settings: Settings, explicit_only: bool) -> dict:
    """Project Settings fields onto the sectioned config layout.

    With ``explicit_only`` only fields supplied by the environment (or
    ``.env``) are emitted, so YAML values survive unless overridden.
    """
    explicit = settings.model_fields_set
    sections: dict = {}
    for section, fields in _SECTION_FIELDS.items():
        values = {
            key: getattr(settings, field)
            for key, field in fields.items()
            if not explicit_only or field in explicit
        }
        if values:
            sections[section] = values
    return sections


def _deep_merge(base: dict, overrides: dict) -> None:
    """Recursively merge overrides into base dict, mutating base in place."""
    for key, value in overrides.items():
        if key in base and isinstance(base[key], dict) and isinstance(value, dict):
            _deep_merge(base[key], value)
        else:
            base[key] = value
