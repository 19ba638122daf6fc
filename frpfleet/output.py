"""Helpers for formatting CLI output safely across terminals."""

from __future__ import annotations

import sys
import time

from rich.console import Console

from .store import ConfigEntry

NEVER = "never"
MISSING = "-"


def _encoding_supports(text: str, encoding: str | None) -> bool:
    if not encoding:
        return False
    try:
        text.encode(encoding)
    except (LookupError, UnicodeEncodeError):
        return False
    return True


def supports_unicode_output(console: Console | None = None) -> bool:
    sample = "✓✗"
    if console is not None and _encoding_supports(sample, console.encoding):
        return True
    return _encoding_supports(sample, sys.stdout.encoding)


def format_status_icon(passed: bool, console: Console | None = None) -> str:
    if supports_unicode_output(console):
        return "[green]✓[/green]" if passed else "[red]✗[/red]"
    return "[green]OK[/green]" if passed else "[red]X[/red]"


def format_optional(value: object) -> str:
    return MISSING if value is None else str(value)


def format_endpoint(entry: ConfigEntry) -> str:
    """Render the server endpoint of a client, or `-` when neither part is known."""
    if entry.server_address is None and entry.server_port is None:
        return MISSING
    return f"{format_optional(entry.server_address)}:{format_optional(entry.server_port)}"


def format_timestamp(value: float | None) -> str:
    if not value:
        return NEVER
    return time.strftime("%Y-%m-%d %H:%M:%S", time.localtime(value))
