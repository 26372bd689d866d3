"""
Command-line interface for the knowledge base.

Usage:
    # Sync Markdown files into the store
    python -m vulnkb scan

    # Rebuild every chunk vector
    python -m vulnkb rebuild

    # Index coverage and categories
    python -m vulnkb status
    python -m vulnkb categories

    # Search, optionally scoped to a risk type
    python -m vulnkb search "union based sqli" --risk-type "SQL Injection" --top-k 3
"""

import argparse
import asyncio
import sys

from .config.container import Container, setup_container
from .config.settings import get_settings
from .errors import KnowledgeBaseError
from .observability.logging import get_logger, setup_logging
from .rag.formatting import format_risk_types, format_search_results, summarize_results
from .types import SearchRequest

logger = get_logger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="vulnkb", description="Security knowledge base CLI")
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    subparsers.add_parser("scan", help="Sync knowledge base files into the store")
    subparsers.add_parser("rebuild", help="Scan, then rebuild the whole index")
    subparsers.add_parser("bootstrap", help="Scan and index new or changed documents")
    subparsers.add_parser("status", help="Show index coverage")
    subparsers.add_parser("categories", help="List risk types")

    search_parser = subparsers.add_parser("search", help="Search the knowledge base")
    search_parser.add_argument("query", help="Query text")
    search_parser.add_argument("--risk-type", default=None, help="Restrict to one risk type")
    search_parser.add_argument("--top-k", type=int, default=None, help="Max results")
    search_parser.add_argument(
        "--threshold", type=float, default=None, help="Similarity threshold override"
    )
    search_parser.add_argument(
        "--summary", action="store_true", help="Print one line per result"
    )

    return parser


async def run_command(args: argparse.Namespace, container: Container) -> int:
    manager = container.get("manager")

    if args.command == "scan":
        changed = manager.scan()
        print(f"✓ Scanned knowledge base: {len(changed)} new or changed items")
        return 0

    if args.command == "status":
        status = manager.index_status()
        print(
            f"Items: {status['total_items']}  Indexed: {status['indexed_items']}  "
            f"Progress: {status['progress_percent']:.1f}%  "
            f"Complete: {'yes' if status['is_complete'] else 'no'}"
        )
        return 0

    if args.command == "categories":
        print(format_risk_types(manager.get_categories()))
        return 0

    await container.get_async("embedder")

    if args.command == "rebuild":
        manager.scan()
        progress = await container.get("indexer").rebuild_all()
        print(
            f"✓ Rebuilt index: {progress.processed_documents - progress.failed_documents}/"
            f"{progress.total_documents} documents, {progress.total_chunks} chunks"
        )
        for error in progress.errors:
            print(f"  ✗ {error}")
        return 0 if progress.failed_documents == 0 else 1

    if args.command == "bootstrap":
        progress = await container.get("knowledge_service").bootstrap()
        print(
            f"✓ Indexed {progress.processed_documents} documents "
            f"({progress.failed_documents} failed, {progress.total_chunks} chunks)"
        )
        return 0 if progress.failed_documents == 0 else 1

    if args.command == "search":
        request = SearchRequest(
            query=args.query,
            risk_type=args.risk_type,
            top_k=args.top_k,
            threshold=args.threshold,
        )
        results = await container.get("knowledge_service").search(request)
        if args.summary:
            print(summarize_results(results))
        else:
            print(format_search_results(request.query, results))
        return 0

    raise ValueError(f"unknown command: {args.command}")


async def _run(args: argparse.Namespace, container: Container) -> int:
    async with container.lifespan():
        return await run_command(args, container)


def main(argv: list[str] | None = None, container: Container | None = None) -> int:
    """CLI entry point; returns the process exit code."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    if container is None:
        settings = get_settings()
        setup_logging(settings.observability.log_level)
        container = setup_container(settings)

    try:
        return asyncio.run(_run(args, container))
    except KnowledgeBaseError as e:
        logger.error("Command failed", command=args.command, error=str(e))
        print(f"✗ {e}")
        return 1
    except ValueError as e:
        print(f"✗ {e}")
        return 1


def cli_main() -> None:
    try:
        sys.exit(main())
    except KeyboardInterrupt:
        sys.exit(130)


if __name__ == "__main__":
    cli_main()
