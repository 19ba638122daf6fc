"""Logging setup for the command line entry point."""

from __future__ import annotations

import logging

from rich.console import Console
from rich.logging import RichHandler

PACKAGE_LOGGER = "frpfleet"
DEFAULT_LOG_LEVEL = "WARNING"
LOG_LEVELS: tuple[str, ...] = ("DEBUG", "INFO", "WARNING", "ERROR")


def resolve_log_level(value: str | None, *, verbose: bool = False) -> int:
    if verbose:
        return logging.DEBUG
    name = (value or DEFAULT_LOG_LEVEL).strip().upper()
    if name not in LOG_LEVELS:
        raise ValueError(f"Unsupported log level: {value}")
    return getattr(logging, name)


def configure_logging(level: int = logging.WARNING, *, console: Console | None = None) -> logging.Logger:
    """Route the package logger to stderr through rich; safe to call repeatedly."""

    logger = logging.getLogger(PACKAGE_LOGGER)
    for handler in list(logger.handlers):
        if getattr(handler, "_frpfleet_handler", False):
            logger.removeHandler(handler)
    handler = RichHandler(
        console=console or Console(stderr=True),
        show_time=False,
        show_path=False,
        markup=False,
        rich_tracebacks=False,
    )
    handler._frpfleet_handler = True  # type: ignore[attr-defined]
    handler.setFormatter(logging.Formatter("%(message)s"))
    logger.addHandler(handler)
    logger.setLevel(level)
    return logger
