#!/usr/bin/env python3
"""FableForge Memory Jar: save memories and recall them for story generation.

Commands:
    add         Save a memory (and its embedding)
    recall      Show an owner's memories most similar to a query
    context     Print the narrative context block for a story theme
    list        List an owner's saved memories
    delete      Delete one memory, or every memory of an owner
    status      Show configuration and storage statistics

Examples:
    python main.py add --owner u1 --image https://img/1.jpg --month 6 --year 2024 \\
        --caption "First day at the beach"
    python main.py recall --owner u1 "a beach adventure" --min-similarity 0.1
    python main.py context --owner u1 --theme beach
    python main.py delete --owner u1 --memory <id>
    python main.py status

Environment:
    OPENAI_API_KEY: Hosted embeddings (lexical fallback when unset)
    See config.py for all configuration options
"""

import argparse
import asyncio
import json
import logging
import sys

from config import Config
from database import Database
from memory.context import month_name
from memory_jar import MemoryJar
from observability.logging import new_request_id, set_request_context, setup_logging
from observability.tracing import setup_tracing, tracing_enabled

logger = logging.getLogger(__name__)


def cmd_add(args: argparse.Namespace, config: Config) -> int:
    """Save a memory and wait for its embedding."""
    async def add() -> dict:
        jar = MemoryJar.from_config(config)
        try:
            memory = await jar.save_memory(
                owner_id=args.owner,
                image_url=args.image,
                month=args.month,
                year=args.year,
                caption=args.caption or "",
                tags=args.tag or (),
            )
            await jar.drain()
            return memory.model_dump(mode="json")
        finally:
            jar.close()

    print(json.dumps(asyncio.run(add()), indent=2))
    return 0


def cmd_recall(args: argparse.Namespace, config: Config) -> int:
    """Print memories similar to a query."""
    async def recall():
        jar = MemoryJar.from_config(config)
        try:
            return await jar.find_similar_memories(
                args.query,
                args.owner,
                limit=args.limit,
                min_similarity=args.min_similarity,
                year=args.year,
            )
        finally:
            jar.close()

    memories = asyncio.run(recall())
    if not memories:
        print("No similar memories found.")
        return 0

    for m in memories:
        print(f"{m.similarity:.3f}  {month_name(m.month)} {m.year}  {m.caption}")
        if m.image_url:
            print(f"       {m.image_url}")
    return 0


def cmd_context(args: argparse.Namespace, config: Config) -> int:
    """Print the narrative context block for a theme."""
    async def build() -> str:
        jar = MemoryJar.from_config(config)
        try:
            return await jar.build_narrative_context(args.owner, args.theme, year=args.year)
        finally:
            jar.close()

    context = asyncio.run(build())
    print(context or "(no memory context)")
    return 0


def cmd_list(args: argparse.Namespace, config: Config) -> int:
    """List an owner's memories."""
    with Database(config.db_path, dim=config.embedding_dim) as db:
        memories = db.list_memories(args.owner, year=args.year)

    if not memories:
        print(f"No memories for owner {args.owner}.")
        return 0

    for m in memories:
        print(f"{m.id}  {month_name(m.month)} {m.year}  {m.caption}")
    return 0


def cmd_delete(args: argparse.Namespace, config: Config) -> int:
    """Delete a memory or an owner's whole jar."""
    jar = MemoryJar.from_config(config)
    try:
        if args.all:
            deleted = jar.delete_account(args.owner)
            print(f"Deleted {deleted} memories for owner {args.owner}.")
            return 0
        if not jar.delete_memory(args.owner, args.memory):
            print(f"Memory {args.memory} not found.", file=sys.stderr)
            return 1
        print(f"Deleted memory {args.memory}.")
        return 0
    finally:
        jar.close()


def cmd_status(args: argparse.Namespace, config: Config) -> int:
    """Display configuration and storage statistics."""
    with Database(config.db_path, dim=config.embedding_dim) as db:
        db_stats = db.stats()

    status = {
        "config": {
            "embedding_provider": config.embedding_provider,
            "embedding_model": config.embedding_model,
            "embedding_dim": config.embedding_dim,
            "api_key_configured": bool(config.openai_api_key),
            "store_backend": config.store_backend,
            "recall_limit": config.recall_limit,
            "recall_min_similarity": config.recall_min_similarity,
            "enable_logfire": config.enable_logfire,
            "tracing_active": tracing_enabled(),
        },
        "database": {
            "path": str(config.db_path),
            "memories": db_stats["memories"],
            "owners": db_stats["owners"],
            "embedded": db_stats["embedded"],
        },
    }

    print(json.dumps(status, indent=2))
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="FableForge Memory Jar recall",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable debug logging",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # add command
    add_parser = subparsers.add_parser("add", help="Save a memory")
    add_parser.add_argument("--owner", required=True, help="Owner account id")
    add_parser.add_argument("--image", required=True, help="Photo URL")
    add_parser.add_argument("--month", type=int, required=True, choices=range(12), help="Month (0-11)")
    add_parser.add_argument("--year", type=int, required=True, help="Year")
    add_parser.add_argument("--caption", help="Caption (default: the monthly prompt)")
    add_parser.add_argument("--tag", action="append", help="Tag (repeatable)")

    # recall command
    recall_parser = subparsers.add_parser("recall", help="Find similar memories")
    recall_parser.add_argument("query", help="Free-text query")
    recall_parser.add_argument("--owner", required=True, help="Owner account id")
    recall_parser.add_argument("--limit", type=int, help="Max results (default: RECALL_LIMIT)")
    recall_parser.add_argument(
        "--min-similarity",
        type=float,
        help="Similarity threshold (default: RECALL_MIN_SIMILARITY)",
    )
    recall_parser.add_argument("--year", type=int, help="Only memories from this year")

    # context command
    context_parser = subparsers.add_parser("context", help="Build narrative context")
    context_parser.add_argument("--owner", required=True, help="Owner account id")
    context_parser.add_argument("--theme", required=True, help="Story theme")
    context_parser.add_argument("--year", type=int, help="Only memories from this year")

    # list command
    list_parser = subparsers.add_parser("list", help="List saved memories")
    list_parser.add_argument("--owner", required=True, help="Owner account id")
    list_parser.add_argument("--year", type=int, help="Only memories from this year")

    # delete command
    delete_parser = subparsers.add_parser("delete", help="Delete memories")
    delete_parser.add_argument("--owner", required=True, help="Owner account id")
    target = delete_parser.add_mutually_exclusive_group(required=True)
    target.add_argument("--memory", help="Memory id to delete")
    target.add_argument("--all", action="store_true", help="Delete every memory of the owner")

    # status command
    subparsers.add_parser("status", help="Show configuration and statistics")

    return parser


def main(argv: list[str] | None = None) -> int:
    """Main entry point.

    Returns:
        Exit code
    """
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        config = Config.load()
    except ValueError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 1

    error = config.validate()
    if error:
        print(f"Configuration error: {error}", file=sys.stderr)
        return 1

    setup_logging(config, verbose=args.verbose)
    setup_tracing(
        enabled=config.enable_logfire,
        service_name="fableforge",
        token=config.logfire_token,
    )
    set_request_context(new_request_id())

    commands = {
        "add": cmd_add,
        "recall": cmd_recall,
        "context": cmd_context,
        "list": cmd_list,
        "delete": cmd_delete,
        "status": cmd_status,
    }

    if args.command not in commands:
        parser.print_help()
        return 0

    try:
        return commands[args.command](args, config)
    except Exception as e:
        logger.error("Command failed | cmd=%s error=%s", args.command, e, exc_info=True)
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
