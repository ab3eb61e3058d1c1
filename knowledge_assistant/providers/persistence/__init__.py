"""Persistence adapters: PostgreSQL/pgvector knowledge store, SQLite conversations."""
