"""Buddy CLI — Typer + Rich terminal interface.

Commands: chat, parse, replay, serve, config.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from pathlib import Path

import typer
from rich.console import Console

from buddy import __version__
from buddy.cli_display import (
    StreamingReplyDisplay,
    render_record,
    render_reply,
    render_settings,
)
from buddy.client import ChatTransportError
from buddy.keys import get_key, load_keys_env
from buddy.schemas.messages import MARKER_SPECS, ChatMode, ParsedResponse
from buddy.session import ChatSession
from buddy.settings import load_settings
from buddy.stream.decoder import decode_stream
from buddy.stream.extractor import parse_response

# Load API keys from ~/.buddy/keys.env and .env on startup
load_keys_env()

console = Console()

app = typer.Typer(
    name="buddy",
    help="Streaming chat companion for wellness journaling.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)

_QUIT_WORDS = {"/quit", "/exit", "quit", "exit"}


# ── Version callback ───────────────────────────────────────────


def _version_callback(value: bool) -> None:
    if value:
        console.print(f"buddy {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(
        False, "--version", "-V",
        help="Show version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
    verbose: bool = typer.Option(
        False, "--verbose", "-v",
        help="Log decoder and client activity to stderr.",
    ),
) -> None:
    """Buddy — streaming chat companion for wellness journaling."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )


# ── Helpers ──────────────────────────────────────────────────────


def _load_settings():
    """Load settings, exit on error."""
    try:
        return load_settings()
    except (FileNotFoundError, ValueError) as e:
        console.print(f"[red]Error loading settings:[/red] {e}")
        raise typer.Exit(1) from None


def _resolve_kind(kind: str):
    spec = MARKER_SPECS.get(kind)
    if spec is None:
        console.print(f"[red]Unknown record kind:[/red] '{kind}'")
        console.print(f"[dim]Available: {', '.join(sorted(MARKER_SPECS))}[/dim]")
        raise typer.Exit(1)
    return spec


def _read_file(path: Path) -> bytes:
    try:
        return path.read_bytes()
    except OSError as e:
        console.print(f"[red]Cannot read {path}:[/red] {e}")
        raise typer.Exit(1) from None


def _print_parsed(parsed: ParsedResponse, as_json: bool) -> None:
    if as_json:
        console.print_json(parsed.model_dump_json())
        return
    render_reply(console, parsed)
    if parsed.structured_payload is not None:
        render_record(console, parsed.record_kind or "", parsed.structured_payload)


def _resolve_chip(text: str, chips: list[str]) -> str:
    """A bare chip number selects that chip."""
    if text.isdigit() and 1 <= int(text) <= len(chips):
        return chips[int(text) - 1]
    return text


# ── Commands ─────────────────────────────────────────────────────


@app.command()
def chat(
    mode: ChatMode = typer.Option(
        ChatMode.CHAT, "--mode", "-m", help="Conversation flow."
    ),
    url: str | None = typer.Option(
        None, "--url", help="Relay chat endpoint (default from settings)."
    ),
) -> None:
    """Chat with Buddy in the terminal. Type a chip number to pick it."""
    settings = _load_settings()
    chat_url = url or settings.client.chat_url
    session = ChatSession(
        mode=mode,
        url=chat_url,
        api_key=get_key(settings.client.api_key_env),
        record_sink=lambda kind, payload: render_record(console, kind, payload),
    )

    console.print(f"[dim]Talking to {chat_url} (/quit to leave)[/dim]")
    chips: list[str] = []

    while True:
        try:
            text = console.input("[bold]You:[/bold] ").strip()
        except (EOFError, KeyboardInterrupt):
            console.print()
            break
        if text.lower() in _QUIT_WORDS:
            break
        if not text:
            continue

        text = _resolve_chip(text, chips)
        try:
            with StreamingReplyDisplay(console) as display:
                parsed = asyncio.run(session.send(text, on_chunk=display.on_chunk))
        except ChatTransportError as e:
            console.print(f"[red]{e.message}[/red]")
            continue

        render_reply(console, parsed)
        chips = parsed.chips


@app.command()
def parse(
    path: Path = typer.Argument(..., help="File holding a complete assistant reply."),
    kind: str = typer.Option("entry", "--kind", "-k", help="Record kind: entry or intake."),
    as_json: bool = typer.Option(False, "--json", help="Print the result as JSON."),
) -> None:
    """Extract display text, chips, and any record from a captured reply."""
    spec = _resolve_kind(kind)
    text = _read_file(path).decode("utf-8", errors="replace")
    _print_parsed(parse_response(text, spec), as_json)


@app.command()
def replay(
    path: Path = typer.Argument(..., help="File holding a captured event-stream body."),
    kind: str = typer.Option("entry", "--kind", "-k", help="Record kind: entry or intake."),
    chunk_size: int = typer.Option(
        0, "--chunk-size", min=0,
        help="Feed the capture in chunks of this many bytes (0 = one chunk).",
    ),
    as_json: bool = typer.Option(False, "--json", help="Print the result as JSON."),
) -> None:
    """Decode a captured event stream, then parse the assembled reply."""
    spec = _resolve_kind(kind)
    raw = _read_file(path)

    async def chunks() -> AsyncIterator[bytes]:
        if chunk_size <= 0:
            yield raw
            return
        for start in range(0, len(raw), chunk_size):
            yield raw[start:start + chunk_size]

    parts: list[str] = []
    asyncio.run(decode_stream(chunks(), parts.append))
    _print_parsed(parse_response("".join(parts), spec), as_json)


@app.command()
def serve(
    host: str | None = typer.Option(None, "--host", help="Bind address."),
    port: int | None = typer.Option(None, "--port", help="Bind port."),
) -> None:
    """Run the chat relay."""
    import uvicorn

    from buddy.relay.app import create_app

    settings = _load_settings()
    uvicorn.run(
        create_app(settings),
        host=host or settings.relay.host,
        port=port or settings.relay.port,
    )


@app.command()
def config() -> None:
    """Show the effective settings."""
    render_settings(console, _load_settings())
