"""
Command line entry point.

    python -m diychat serve [--host HOST] [--port PORT]
    python -m diychat chat "message" [--project ID] [--conversation ID]
                                     [--backend ID] [--model NAME] [--file PATH ...]
"""

import argparse
import asyncio
import sys
from typing import List, Optional

import uvicorn

from .config import Settings
from .crypto import KeyCipher
from .logging_config import setup_logging
from .orchestrator import ChatOrchestrator
from .printer import RichStreamPrinter, console
from .store import Store
from .tools import BUILTIN_TOOL_NAMES, build_registry
from .utils import load_file_artifact


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="diychat", description="Self-hosted multi-backend chat")
    sub = parser.add_subparsers(dest="command", required=True)

    serve = sub.add_parser("serve", help="Run the HTTP API")
    serve.add_argument("--host", default=None, help="Bind address (default: $HOST or 127.0.0.1)")
    serve.add_argument("--port", type=int, default=None, help="Port (default: $PORT or 3000)")

    chat = sub.add_parser("chat", help="Run one chat turn in the terminal")
    chat.add_argument("message", help="The user message")
    chat.add_argument("--project", help="Project id (default: first project)")
    chat.add_argument("--conversation", help="Continue this conversation")
    chat.add_argument("--backend", help="Backend id")
    chat.add_argument("--model", help="Model name")
    chat.add_argument("--file", action="append", default=[], help="Attach a file (repeatable)")
    return parser


async def run_chat(args: argparse.Namespace, settings: Settings) -> int:
    store = Store(settings.db_path, tool_names=BUILTIN_TOOL_NAMES)
    try:
        registry = build_registry(
            store,
            tavily_api_key=settings.tavily_api_key,
            searxng_base_url=settings.searxng_base_url,
        )
        orchestrator = ChatOrchestrator(store, registry, KeyCipher(settings.encryption_key))
        request = {
            "message": args.message,
            "conversationId": args.conversation,
            "projectId": args.project,
            "backendId": args.backend,
            "model": args.model,
            "files": [load_file_artifact(path) for path in args.file],
        }
        final = await RichStreamPrinter().print_stream(orchestrator.run_turn(request))
    finally:
        store.close()

    if final.get("type") == "done":
        console.print(f"[dim]conversation: {final['conversationId']}[/dim]")
        return 0
    return 1


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    settings = Settings.from_env()
    setup_logging(settings.log_level)

    if args.command == "serve":
        from .server import create_app

        uvicorn.run(
            create_app(settings),
            host=args.host or settings.host,
            port=args.port or settings.port,
            log_level=settings.log_level.lower(),
        )
        return 0

    try:
        return asyncio.run(run_chat(args, settings))
    except FileNotFoundError as e:
        console.print(f"[red]{e}[/red]")
        return 2


if __name__ == "__main__":
    sys.exit(main())
