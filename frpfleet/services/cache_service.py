"""Shared helpers for reading indexed metadata with a filesystem fallback."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Sequence

from .extract_service import KIND_CLIENT, KIND_SERVER, FieldExtractionError, extract_entry
from ..store import (
    ConfigEntry,
    IndexAggregate,
    IndexUnavailableError,
    aggregate,
    list_entries,
)
from ..text import Messages
from ..utils import collect_config_files

logger = logging.getLogger(__name__)


def scan_config_dir(
    root: Path,
    exclude_patterns: Sequence[str] | None = None,
) -> list[ConfigEntry]:
    """Parse every config under *root* without touching the index."""

    try:
        files = collect_config_files(root, exclude_patterns)
    except (FileNotFoundError, NotADirectoryError) as exc:
        logger.warning(Messages.WARNING_CONFIG_DIR_MISSING.format(reason=exc))
        return []
    entries: list[ConfigEntry] = []
    for path in files:
        try:
            entries.append(extract_entry(path))
        except FieldExtractionError as exc:
            logger.warning(Messages.WARNING_FILE_SKIPPED.format(path=exc.path, reason=exc.reason))
    return entries


def load_entries_safe(
    root: Path,
    kind: str | None = None,
    exclude_patterns: Sequence[str] | None = None,
) -> list[ConfigEntry]:
    """Load entries from the index, scanning *root* directly if it is unreadable."""

    try:
        return list_entries(kind)
    except IndexUnavailableError as exc:
        logger.warning(Messages.WARNING_INDEX_UNAVAILABLE.format(reason=exc))
    entries = scan_config_dir(root, exclude_patterns)
    if kind is None:
        return entries
    return [entry for entry in entries if entry.kind == kind]


def aggregate_entries(entries: Sequence[ConfigEntry]) -> IndexAggregate:
    return IndexAggregate(
        total=len(entries),
        servers=sum(1 for entry in entries if entry.kind == KIND_SERVER),
        clients=sum(1 for entry in entries if entry.kind == KIND_CLIENT),
        total_proxies=sum(entry.proxy_count for entry in entries),
    )


def aggregate_safe(
    root: Path,
    exclude_patterns: Sequence[str] | None = None,
) -> IndexAggregate:
    """Return index totals, computing them from a direct scan as a fallback."""

    try:
        return aggregate()
    except IndexUnavailableError as exc:
        logger.warning(Messages.WARNING_INDEX_UNAVAILABLE.format(reason=exc))
    return aggregate_entries(scan_config_dir(root, exclude_patterns))
