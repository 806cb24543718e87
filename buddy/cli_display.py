"""Rich display components for the Buddy CLI.

Renders streamed replies live, finished replies with their quick-reply
chips, extracted records, and the effective settings.
"""

from __future__ import annotations

import json
from typing import Any

from rich.console import Console
from rich.live import Live
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from buddy.schemas.messages import ParsedResponse
from buddy.schemas.settings import Settings
from buddy.schemas.streaming import StreamChunk
from buddy.stream.extractor import live_display_text

# ── Brand Colors ──────────────────────────────────────────────────

BRAND = {
    "buddy": "#ff9f6b",
    "chip": "#7fd1b9",
    "dim": "#8a8a8a",
    "red": "#ff4444",
}


def _reply_panel(text: str, title: str = "Buddy") -> Panel:
    return Panel(
        Text(text or "…"),
        title=f"[bold {BRAND['buddy']}]{title}[/]",
        title_align="left",
        border_style=BRAND["buddy"],
    )


class StreamingReplyDisplay:
    """Live panel that redraws as deltas arrive.

    Usage:
        with StreamingReplyDisplay(console) as display:
            await session.send(text, on_chunk=display.on_chunk)
    """

    def __init__(self, console: Console, title: str = "Buddy") -> None:
        self._console = console
        self._title = title
        self._live: Live | None = None

    def __enter__(self) -> StreamingReplyDisplay:
        self._live = Live(
            _reply_panel("", self._title),
            console=self._console,
            refresh_per_second=12,
            transient=True,
        )
        self._live.__enter__()
        return self

    def __exit__(self, *exc: object) -> None:
        if self._live is not None:
            self._live.__exit__(*exc)
            self._live = None

    def on_chunk(self, chunk: StreamChunk) -> None:
        if self._live is None or chunk.is_complete:
            return
        self._live.update(_reply_panel(live_display_text(chunk.accumulated), self._title))


def render_reply(console: Console, parsed: ParsedResponse, title: str = "Buddy") -> None:
    """Print a finished reply with its chips underneath."""
    console.print(_reply_panel(parsed.display_text, title))
    if parsed.chips:
        chips = Text("  ")
        for i, chip in enumerate(parsed.chips, 1):
            chips.append(f" {i}. {chip} ", style=f"bold {BRAND['chip']}")
            chips.append("  ")
        console.print(chips)


def render_record(console: Console, kind: str, payload: dict[str, Any]) -> None:
    """Print an extracted record as a two-column table."""
    table = Table(title=f"Saved {kind} record", show_header=False, show_lines=True)
    table.add_column("Field", style="bold")
    table.add_column("Value")

    for key, value in payload.items():
        if isinstance(value, (dict, list)):
            value = json.dumps(value, ensure_ascii=False)
        table.add_row(Text(key), Text(str(value)))

    console.print(table)


def render_settings(console: Console, settings: Settings) -> None:
    """Print the effective settings."""
    table = Table(title="Buddy Settings", show_header=False, show_lines=True)
    table.add_column("Setting", style="bold cyan")
    table.add_column("Value")

    table.add_row("Chat URL", settings.client.chat_url)
    table.add_row("Client Key Env", settings.client.api_key_env)
    table.add_row("Client Timeout", f"{settings.client.timeout:g}s")
    table.add_row("Gateway Model", settings.gateway.model)
    if settings.gateway.api_base:
        table.add_row("Gateway API Base", settings.gateway.api_base)
    table.add_row("Gateway Key Env", settings.gateway.api_key_env)
    table.add_row("Gateway Timeout", f"{settings.gateway.timeout}s")
    table.add_row("Gateway Retries", str(settings.gateway.max_retries))
    table.add_row("Relay Bind", f"{settings.relay.host}:{settings.relay.port}")

    console.print(table)
