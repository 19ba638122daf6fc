from __future__ import annotations

import io
import logging

import pytest
from rich.console import Console

from frpfleet import cli, output
from frpfleet.logging_utils import PACKAGE_LOGGER, configure_logging, resolve_log_level
from frpfleet.store import ConfigEntry


def test_format_status_icon_falls_back_to_ascii(monkeypatch):
    monkeypatch.setattr(output, "supports_unicode_output", lambda console=None: False)

    assert output.format_status_icon(True) == "[green]OK[/green]"
    assert output.format_status_icon(False) == "[red]X[/red]"


def test_encoding_supports():
    assert output._encoding_supports("✓", "ascii") is False
    assert output._encoding_supports("✓", "utf-8") is True
    assert output._encoding_supports("✓", None) is False
    assert output._encoding_supports("✓", "no-such-codec") is False


def test_format_endpoint_and_optional():
    client = ConfigEntry("/etc/frp/a.toml", "h", "client", server_address="10.0.0.1", server_port=7000)
    server = ConfigEntry("/etc/frp/frps.toml", "h", "server", bind_port=7000)

    assert output.format_endpoint(client) == "10.0.0.1:7000"
    assert output.format_endpoint(server) == "-"
    assert output.format_optional(None) == "-"
    assert output.format_optional(7000) == "7000"
    assert output.format_timestamp(None) == "never"


def test_resolve_log_level():
    assert resolve_log_level(None) == logging.WARNING
    assert resolve_log_level("info") == logging.INFO
    assert resolve_log_level("ERROR", verbose=True) == logging.DEBUG
    with pytest.raises(ValueError):
        resolve_log_level("chatty")


def test_configure_logging_replaces_handler():
    stream = io.StringIO()
    console = Console(file=stream, width=200)

    configure_logging(logging.INFO, console=console)
    logger = configure_logging(logging.INFO, console=console)

    handlers = [handler for handler in logger.handlers if getattr(handler, "_frpfleet_handler", False)]
    assert len(handlers) == 1
    logging.getLogger(f"{PACKAGE_LOGGER}.services.index_service").info("indexed 3 files")
    assert "indexed 3 files" in stream.getvalue()
    configure_logging(logging.WARNING)


def test_parse_boolean():
    assert cli._parse_boolean("Yes") is True
    assert cli._parse_boolean("off") is False
    with pytest.raises(ValueError):
        cli._parse_boolean("sometimes")


def test_styled_wraps_markup():
    assert cli._styled("hi", "red") == "[red]hi[/red]"
