"""Key/value tags attached to indexed configs."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Sequence

from .. import store
from ..text import Messages

logger = logging.getLogger(__name__)


class UntaggedTargetError(LookupError):
    """Raised when tagging a config that is not in the index."""

    def __init__(self, path: str) -> None:
        super().__init__(Messages.ERROR_CONFIG_NOT_INDEXED.format(path=path))
        self.path = path


@dataclass(slots=True)
class TagCount:
    key: str
    value: str
    count: int


@dataclass(slots=True)
class BulkTagResult:
    tagged: list[str] = field(default_factory=list)
    failed: list[tuple[str, str]] = field(default_factory=list)


def _normalize_path(config_path: Path | str) -> str:
    return str(Path(config_path).expanduser().resolve())


def _validate_key(key: str) -> str:
    cleaned = (key or "").strip()
    if not cleaned or ":" in cleaned:
        raise ValueError(Messages.ERROR_TAG_KEY_INVALID.format(key=key))
    return cleaned


def _validate_value(value: str) -> str:
    cleaned = (value or "").strip()
    if not cleaned:
        raise ValueError(Messages.ERROR_TAG_VALUE_EMPTY)
    return cleaned


def _require_config_id(config_path: Path | str) -> tuple[str, int]:
    path = _normalize_path(config_path)
    config_id = store.entry_id(path)
    if config_id is None:
        raise UntaggedTargetError(path)
    return path, config_id


def add_tag(config_path: Path | str, key: str, value: str) -> None:
    """Set *key* to *value* on an indexed config, overwriting any prior value."""

    key = _validate_key(key)
    value = _validate_value(value)
    path, config_id = _require_config_id(config_path)
    store.upsert_tag(config_id, key, value)
    logger.debug("Tagged %s with %s:%s", path, key, value)


def remove_tag(config_path: Path | str, key: str) -> bool:
    key = _validate_key(key)
    _, config_id = _require_config_id(config_path)
    return store.delete_tag(config_id, key)


def list_tags(config_path: Path | str) -> dict[str, str]:
    _, config_id = _require_config_id(config_path)
    return {record.key: record.value for record in store.tags_for(config_id)}


def parse_tag_expr(expr: str) -> tuple[str, str | None]:
    """Split ``key`` or ``key:value`` into its parts."""

    raw = (expr or "").strip()
    key, sep, value = raw.partition(":")
    key = _validate_key(key)
    if not sep:
        return key, None
    return key, _validate_value(value)


def query_tags(expr: str) -> list[str]:
    """Return config paths whose tags match ``key`` (any value) or ``key:value``."""

    key, value = parse_tag_expr(expr)
    return store.paths_with_tag(key, value)


def list_all_tags() -> list[TagCount]:
    return [TagCount(key, value, count) for key, value, count in store.tag_counts()]


def bulk_tag(key: str, value: str, filters: Sequence[str]) -> BulkTagResult:
    """Tag every config selected by *filters* (combined with AND)."""

    from .filter_service import apply_filters  # local import avoids a cycle

    key = _validate_key(key)
    value = _validate_value(value)
    result = BulkTagResult()
    for entry in apply_filters(filters):
        try:
            add_tag(entry.file_path, key, value)
        except UntaggedTargetError as exc:
            # Entries from the filesystem fallback have no index row.
            result.failed.append((entry.file_path, str(exc)))
            continue
        result.tagged.append(entry.file_path)
    return result
