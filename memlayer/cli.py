"""
Console entry points.

Usage:
    memlayer-ask "What did I say about tea?"
    memlayer-ask --session work --model llama3.2 "Plan my week"
    memlayer-merge merged.db laptop.db desktop.db
    memlayer-sync /mnt/laptop/memory.db --local data/memory.db
    memlayer-serve --port 8080
"""

import argparse
import logging
import sys
from typing import List, Optional

import uvicorn
from pydantic import ValidationError

from memlayer.config.settings import Settings
from memlayer.errors import (
    AskFailed,
    BackendError,
    InvalidMergePath,
    InvalidRequest,
    MemoryLayerError,
)
from memlayer.generation.ollama_client import OllamaClient
from memlayer.memory.service import create_memory_service
from memlayer.ops.merge import merge_all, sync_merge

logger = logging.getLogger("memlayer.cli")

EXIT_INVALID = 2
EXIT_BACKEND = 3
EXIT_STORAGE = 4


def configure_logging(level: str = "info") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


def exit_code_for(error: MemoryLayerError) -> int:
    """Distinct exit status per failure class."""
    if isinstance(error, AskFailed):
        error = error.cause if isinstance(error.cause, MemoryLayerError) else error
    if isinstance(error, (InvalidRequest, InvalidMergePath)):
        return EXIT_INVALID
    if isinstance(error, BackendError):
        return EXIT_BACKEND
    return EXIT_STORAGE


def report(error: MemoryLayerError) -> int:
    print(f"{error.kind}: {error.message}", file=sys.stderr)
    return exit_code_for(error)


def load_settings() -> Optional[Settings]:
    try:
        return Settings()
    except ValidationError as e:
        print(f"invalid_config: {e}", file=sys.stderr)
        return None


def ask_main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Ask the assistant with memory-aware context")
    parser.add_argument("prompt", nargs="+", help="Prompt text")
    parser.add_argument("--model", type=str, default=None, help="Model name (default: configured)")
    parser.add_argument("--session", type=str, default=None, help="Session name (default: configured)")
    parser.add_argument("--system", type=str, default=None, help="System prompt override")
    args = parser.parse_args(argv)

    settings = load_settings()
    if settings is None:
        return EXIT_INVALID
    configure_logging(settings.log.level)

    try:
        service = create_memory_service(settings)
        try:
            answer = service.ask(
                " ".join(args.prompt),
                model=args.model,
                session=args.session,
                system=args.system,
            )
        finally:
            service.close()
    except MemoryLayerError as e:
        return report(e)

    print(answer)
    return 0


def merge_main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        description="Merge memory stores into a fresh destination store"
    )
    parser.add_argument("dest", type=str, help="Destination store (recreated)")
    parser.add_argument("sources", nargs="+", help="Source stores, merged in order (at least two)")
    parser.add_argument("--model", type=str, default=None, help="Model for summaries")
    args = parser.parse_args(argv)

    settings = load_settings()
    if settings is None:
        return EXIT_INVALID
    configure_logging(settings.log.level)

    try:
        dest = merge_all(
            args.dest,
            args.sources,
            OllamaClient.from_settings(settings),
            settings,
            model=args.model,
        )
    except MemoryLayerError as e:
        logger.error(f"Merge failed: {e}")
        return report(e)

    print(f"Merged into {dest}")
    return 0


def sync_main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Fold a remote store into the local store")
    parser.add_argument("remote", type=str, help="Remote store path")
    parser.add_argument("--local", type=str, default=None, help="Local store (default: configured store)")
    args = parser.parse_args(argv)

    settings = load_settings()
    if settings is None:
        return EXIT_INVALID
    configure_logging(settings.log.level)

    local = args.local or settings.store.path
    try:
        sync_merge(local, args.remote, node_id=settings.node.id)
    except MemoryLayerError as e:
        logger.error(f"Sync failed: {e}")
        return report(e)

    print(f"Synced {args.remote} into {local}")
    return 0


def serve_main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Launch the memlayer FastAPI server")
    parser.add_argument("--host", type=str, default="127.0.0.1", help="Host to bind to")
    parser.add_argument("--port", type=int, default=8000, help="Port to bind to")
    parser.add_argument("--reload", action="store_true", help="Enable auto-reload for development")
    args = parser.parse_args(argv)

    print(f"Starting memlayer API server on {args.host}:{args.port}")
    print(f"API documentation available at: http://{args.host}:{args.port}/docs")

    uvicorn.run(
        "memlayer.api.main:app",
        host=args.host,
        port=args.port,
        reload=args.reload,
    )
    return 0


if __name__ == "__main__":
    sys.exit(ask_main())
