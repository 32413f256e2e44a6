"""Command-line interface for lspbridge.

Runs one session against a real language server: start, initialize, open
a file, issue a single request, print the raw result, shut down.
"""

from __future__ import annotations

import argparse
import asyncio
from collections.abc import Sequence
from dataclasses import replace
from pathlib import Path
from typing import Any

from rich.console import Console

from lspbridge import __version__
from lspbridge.client.engine import LSPClient
from lspbridge.config import LoggingConfig, load_config
from lspbridge.config.schema import ServerConfig
from lspbridge.errors import LSPClientError
from lspbridge.logging import get_logger, setup_logging

console = Console()
err_console = Console(stderr=True)

_log = get_logger("cli")

POSITION_COMMANDS = ("hover", "completion", "definition")


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser."""
    parser = argparse.ArgumentParser(
        prog="lspbridge",
        description="Query a language server over stdio",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="count",
        default=None,
        help="Increase log verbosity (can be repeated)",
    )
    parser.add_argument(
        "--server",
        help="Language server executable (overrides config)",
    )
    parser.add_argument(
        "--server-arg",
        action="append",
        dest="server_args",
        help="Argument for the server; repeat for several (default: --stdio)",
    )
    parser.add_argument(
        "--workspace",
        type=Path,
        default=Path.cwd(),
        help="Workspace root (default: current directory)",
    )
    parser.add_argument(
        "--language-id",
        help="languageId for the opened file (default: config or file suffix)",
    )

    subparsers = parser.add_subparsers(dest="command", help="Request to issue")

    diagnostics_parser = subparsers.add_parser(
        "diagnostics",
        help="Pull diagnostics for a file",
    )
    diagnostics_parser.add_argument("file", type=Path)

    for name in POSITION_COMMANDS:
        sub = subparsers.add_parser(name, help=f"Request {name} at a position")
        sub.add_argument("file", type=Path)
        sub.add_argument("line", type=int, help="Zero-based line")
        sub.add_argument("character", type=int, help="Zero-based character")

    return parser


def _server_config(parsed: argparse.Namespace) -> tuple[ServerConfig, LoggingConfig]:
    workspace = str(parsed.workspace.resolve())
    config = load_config(workspace=workspace)

    server = config.server
    if parsed.server:
        server = replace(server, command=parsed.server)
    if parsed.server_args is not None:
        server = replace(server, args=list(parsed.server_args))
    server = replace(server, workspace_path=workspace)

    logging_config = config.logging
    if parsed.verbose is not None:
        logging_config = replace(logging_config, verbose=min(parsed.verbose + 1, 4))
    return server, logging_config


async def run_request(server: ServerConfig, parsed: argparse.Namespace) -> Any:
    """Open the file in a fresh session and issue the selected request."""
    path: Path = parsed.file.resolve()
    uri = path.as_uri()
    language_id = parsed.language_id or server.language_id or path.suffix.lstrip(".") or "plaintext"
    text = path.read_text(encoding="utf-8")

    async with LSPClient(server) as client:
        await client.open_document(uri, language_id, text)
        if parsed.command == "diagnostics":
            return await client.get_diagnostics(uri)
        if parsed.command == "hover":
            return await client.get_hover(uri, parsed.line, parsed.character)
        if parsed.command == "completion":
            return await client.get_completions(uri, parsed.line, parsed.character)
        return await client.get_definition(uri, parsed.line, parsed.character)


def run_cli(args: Sequence[str]) -> int:
    """Run the CLI with the given arguments."""
    parser = create_parser()
    parsed = parser.parse_args(args)

    if parsed.command is None:
        parser.print_help()
        return 1

    server, logging_config = _server_config(parsed)
    setup_logging(logging_config)

    if not server.command:
        err_console.print("[red]No language server configured; pass --server[/red]")
        return 2
    if not server.enabled:
        err_console.print("[yellow]Language server disabled in config (server.enabled: false)[/yellow]")
        return 2

    try:
        result = asyncio.run(run_request(server, parsed))
    except (LSPClientError, OSError, UnicodeDecodeError) as e:
        _log.debug("Request failed", exc_info=True)
        err_console.print(f"[red]Error:[/red] {e}")
        return 1

    console.print_json(data=result)
    return 0
