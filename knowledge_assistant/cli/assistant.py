"""Standalone CLI for ingesting documents and querying the knowledge base.

Usage::

    python -m knowledge_assistant.cli ingest file --path handbook.pdf --sector hr

    python -m knowledge_assistant.cli ingest url --url https://intranet/wiki/leave \\
        --sector hr --title "Leave policy"

    python -m knowledge_assistant.cli ask --user u-42 --sector hr \\
        "How many vacation days do I get?"

    python -m knowledge_assistant.cli sources --sector hr

    python -m knowledge_assistant.cli delete --source 1f0c... --yes

Configuration comes from the environment / ``.env`` and
``config/config.yaml`` (see :mod:`knowledge_assistant.config`).
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys

from knowledge_assistant.config.settings import Settings
from knowledge_assistant.utils.errors import KnowledgeAssistantError, ValidationError


def _parse_metadata(raw: str | None) -> dict | None:
    if not raw:
        return None
    try:
        metadata = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ValidationError(f"--metadata is not valid JSON: {exc}") from exc
    if not isinstance(metadata, dict):
        raise ValidationError("--metadata must be a JSON object")
    return metadata


# ======================================================================
# Command handlers
# ======================================================================


async def _handle_ingest(args: argparse.Namespace, app_settings: Settings) -> int:
    """Ingest a local file or a web page into a sector."""
    from knowledge_assistant.main import build_ingestion_pipeline

    metadata = _parse_metadata(args.metadata)
    pipeline = await build_ingestion_pipeline(app_settings, config_path=args.config)
    try:
        if args.source == "file":
            print(f"Ingesting file: {args.path}")
            result = await pipeline.ingest_file(
                args.path, sector_id=args.sector, title=args.title, metadata=metadata
            )
        else:
            print(f"Ingesting URL: {args.url}")
            result = await pipeline.ingest_url(
                args.url, sector_id=args.sector, title=args.title, metadata=metadata
            )
    finally:
        await pipeline.close()

    print("\nIngestion complete:")
    print(f"  Title:          {result.title}")
    print(f"  Fragments:      {result.fragment_count}")
    print(f"  Total tokens:   {result.total_tokens}")
    print(f"  Content size:   {result.content_size} bytes")
    print(f"  Time:           {result.ingestion_time:.2f}s")
    print(f"  Source ID:      {result.source_id}")
    return 0


async def _handle_ask(args: argparse.Namespace, app_settings: Settings) -> int:
    """Ask one question and print the answer with its sources."""
    from knowledge_assistant.main import build_query_pipeline

    pipeline = await build_query_pipeline(app_settings, config_path=args.config)
    try:
        result = await pipeline.query(
            user_id=args.user,
            sector_id=args.sector,
            query=args.question,
            conversation_id=args.conversation,
            max_results=args.max_results,
            min_similarity=args.min_similarity,
        )
    finally:
        await pipeline.close()

    if args.json:
        print(result.model_dump_json(indent=2))
        return 0

    print(result.response)
    if result.sources:
        print("\nSources:")
        for i, source in enumerate(result.sources, start=1):
            preview = source.content[:80].replace("\n", " ")
            print(f"  [{i}] ({source.similarity:.3f}) {preview}...")
    print(f"\nConversation: {result.conversation_id}")
    return 0


async def _handle_sources(args: argparse.Namespace, app_settings: Settings) -> int:
    """List the non-deleted sources of a sector."""
    from knowledge_assistant.config.loader import load_config
    from knowledge_assistant.main import build_knowledge_repository

    config = load_config(args.config, settings=app_settings)
    repository = await build_knowledge_repository(config)
    try:
        sources = await repository.find_sources_by_sector(args.sector)
    finally:
        await repository.close()

    if not sources:
        print(f"No sources in sector '{args.sector}'.")
        return 0

    print(f"Sources in sector '{args.sector}'")
    print("=" * 40)
    for source in sources:
        print(
            f"  {source.id}  {source.status.value:<10} "
            f"{source.source_type.value:<8} {source.title}"
        )
    return 0


async def _handle_delete(args: argparse.Namespace, app_settings: Settings) -> int:
    """Soft-delete a source and remove its fragments."""
    from knowledge_assistant.main import build_ingestion_pipeline

    if not args.yes:
        confirm = input(f"  Delete source {args.source}? [y/N] ").strip().lower()
        if confirm not in ("y", "yes"):
            print("  Aborted.")
            return 0

    pipeline = await build_ingestion_pipeline(app_settings, config_path=args.config)
    try:
        removed = await pipeline.delete_source(args.source)
    finally:
        await pipeline.close()

    print(f"Deleted source {args.source} ({removed} fragments removed).")
    return 0


_HANDLERS = {
    "ingest": _handle_ingest,
    "ask": _handle_ask,
    "sources": _handle_sources,
    "delete": _handle_delete,
}


# ======================================================================
# Argument parsing
# ======================================================================


def _build_parser() -> argparse.ArgumentParser:
    """Build the argparse parser for the assistant CLI."""
    parser = argparse.ArgumentParser(
        prog="python -m knowledge_assistant.cli",
        description="Ingest documentation and ask questions about it.",
    )
    parser.add_argument(
        "--config",
        default="config/config.yaml",
        help="Path to the YAML config file (default: config/config.yaml)",
    )
    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # -- ingest file|url --
    ingest_parser = subparsers.add_parser("ingest", help="Ingest a document into a sector")
    ingest_sub = ingest_parser.add_subparsers(dest="source", help="Document origin")

    file_parser = ingest_sub.add_parser("file", help="Ingest a local PDF/Markdown/text/HTML file")
    file_parser.add_argument("--path", required=True, help="Path to the file")

    url_parser = ingest_sub.add_parser("url", help="Fetch and ingest a web page")
    url_parser.add_argument("--url", required=True, help="Page URL")

    for sub in (file_parser, url_parser):
        sub.add_argument("--sector", required=True, help="Sector the document belongs to")
        sub.add_argument("--title", default=None, help="Title (defaults to file name / page title)")
        sub.add_argument("--metadata", default=None, help="Extra metadata as a JSON object")

    # -- ask --
    ask_parser = subparsers.add_parser("ask", help="Ask a question")
    ask_parser.add_argument("question", help="The question to ask")
    ask_parser.add_argument("--user", required=True, help="User identifier")
    ask_parser.add_argument("--sector", required=True, help="Sector to search")
    ask_parser.add_argument("--conversation", default=None, help="Continue a conversation by id")
    ask_parser.add_argument("--max-results", type=int, default=None, dest="max_results")
    ask_parser.add_argument("--min-similarity", type=float, default=None, dest="min_similarity")
    ask_parser.add_argument("--json", action="store_true", help="Print the raw result as JSON")

    # -- sources --
    sources_parser = subparsers.add_parser("sources", help="List a sector's sources")
    sources_parser.add_argument("--sector", required=True, help="Sector identifier")

    # -- delete --
    delete_parser = subparsers.add_parser("delete", help="Soft-delete a source")
    delete_parser.add_argument("--source", required=True, help="Source identifier")
    delete_parser.add_argument("--yes", action="store_true", help="Skip confirmation")

    return parser


# ======================================================================
# Entry point
# ======================================================================


def main(argv: list[str] | None = None) -> None:
    """CLI entry point: parse arguments, configure logging, dispatch."""
    parser = _build_parser()
    args = parser.parse_args(argv)

    if args.command is None or (args.command == "ingest" and args.source is None):
        parser.print_help()
        sys.exit(1)

    from knowledge_assistant.main import setup_logging

    app_settings = Settings()
    setup_logging(app_settings)

    try:
        exit_code = asyncio.run(_HANDLERS[args.command](args, app_settings))
    except KnowledgeAssistantError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        exit_code = 1

    sys.exit(exit_code)


if __name__ == "__main__":
    main()
