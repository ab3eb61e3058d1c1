"""Command-line interface for the knowledge assistant.

- ``python -m knowledge_assistant.cli ingest file|url`` -- add documents to a sector
- ``python -m knowledge_assistant.cli ask`` -- ask a question against a sector
- ``python -m knowledge_assistant.cli sources`` -- list a sector's sources
- ``python -m knowledge_assistant.cli delete`` -- soft-delete a source

Heavy imports (providers, repositories) are deferred to the handlers so
``--help`` stays fast.
"""
