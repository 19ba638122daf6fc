"""Translate filter expressions into sets of indexed configs."""

from __future__ import annotations

import json
import logging
import os
import re
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Sequence

from .extract_service import SUPPORTED_KINDS
from .index_service import load_entries
from .lifecycle_service import STATE_INACTIVE, observe_service_states, service_name_for
from .tag_service import query_tags
from ..config import load_config
from ..store import ConfigEntry, IndexUnavailableError, ensure_data_dir
from ..text import Messages

logger = logging.getLogger(__name__)

PRESETS_FILENAME = "filter_presets.json"
IPV4_PATTERN = re.compile(r"^[0-9]{1,3}(\.[0-9]{1,3}){3}$")
PORT_PATTERN = re.compile(r"^[0-9]+$")


class FilterKind(str, Enum):
    ALL = "all"
    TYPE = "type"
    TAG = "tag"
    NAME = "name"
    IP = "ip"
    PORT = "port"
    STATUS = "status"


@dataclass(frozen=True, slots=True)
class FilterSpec:
    kind: FilterKind
    value: str = ""

    def __str__(self) -> str:
        if self.kind is FilterKind.ALL:
            return FilterKind.ALL.value
        return f"{self.kind.value}:{self.value}"


def detect_filter_kind(token: str) -> FilterKind:
    """Guess the filter kind of a bare token.

    First match wins: IPv4 literal, then a port number, then ``key:value`` tag,
    then a name substring. A purely numeric config name therefore needs an
    explicit ``name:`` prefix or kind.
    """

    text = token.strip()
    if IPV4_PATTERN.match(text):
        return FilterKind.IP
    if PORT_PATTERN.match(text) and 1 <= int(text) <= 65535:
        return FilterKind.PORT
    if ":" in text:
        return FilterKind.TAG
    return FilterKind.NAME


def _coerce_kind(kind: FilterKind | str) -> FilterKind:
    if isinstance(kind, FilterKind):
        return kind
    try:
        return FilterKind((kind or "").strip().lower())
    except ValueError as exc:
        allowed = ", ".join(item.value for item in FilterKind)
        raise ValueError(Messages.ERROR_FILTER_KIND_INVALID.format(value=kind, allowed=allowed)) from exc


def parse_filter(expr: str, kind: FilterKind | str | None = None) -> FilterSpec:
    """Parse *expr* into a :class:`FilterSpec`.

    An explicit *kind* wins. Otherwise a known ``kind:`` prefix is honoured and
    anything else goes through :func:`detect_filter_kind`.
    """

    text = (expr or "").strip()
    if kind is not None:
        spec = FilterSpec(_coerce_kind(kind), text)
    elif text.lower() == FilterKind.ALL.value:
        spec = FilterSpec(FilterKind.ALL)
    else:
        prefix, sep, rest = text.partition(":")
        if sep and prefix.lower() in {item.value for item in FilterKind}:
            spec = FilterSpec(FilterKind(prefix.lower()), rest.strip())
        else:
            spec = FilterSpec(detect_filter_kind(text), text)
    _validate_spec(spec)
    return spec


def _validate_spec(spec: FilterSpec) -> None:
    if spec.kind is FilterKind.ALL:
        return
    if not spec.value:
        raise ValueError(Messages.ERROR_FILTER_VALUE_EMPTY.format(kind=spec.kind.value))
    if spec.kind is FilterKind.TYPE and spec.value.lower() not in SUPPORTED_KINDS:
        raise ValueError(
            Messages.ERROR_KIND_INVALID.format(value=spec.value, allowed=", ".join(SUPPORTED_KINDS))
        )
    if spec.kind is FilterKind.PORT and not PORT_PATTERN.match(spec.value):
        raise ValueError(Messages.ERROR_FILTER_PORT_INVALID.format(value=spec.value))


def _tagged_paths(expr: str) -> set[str]:
    try:
        return set(query_tags(expr))
    except IndexUnavailableError as exc:
        logger.warning(Messages.WARNING_INDEX_UNAVAILABLE.format(reason=exc))
        return set()


def _apply_spec(spec: FilterSpec, pool: Sequence[ConfigEntry]) -> list[ConfigEntry]:
    kind = spec.kind
    value = spec.value
    if kind is FilterKind.ALL:
        return list(pool)
    if kind is FilterKind.TYPE:
        wanted = value.lower()
        return [entry for entry in pool if entry.kind == wanted]
    if kind is FilterKind.NAME:
        needle = value.lower()
        return [entry for entry in pool if needle in entry.name.lower()]
    if kind is FilterKind.IP:
        return [
            entry
            for entry in pool
            if value in (entry.server_address, entry.bind_address)
        ]
    if kind is FilterKind.PORT:
        port = int(value)
        return [entry for entry in pool if port in (entry.server_port, entry.bind_port)]
    if kind is FilterKind.TAG:
        paths = _tagged_paths(value)
        return [entry for entry in pool if entry.file_path in paths]
    # status
    prefix = load_config().service_prefix
    states = observe_service_states(prefix)
    wanted = value.lower()
    return [
        entry
        for entry in pool
        if states.get(service_name_for(entry.file_path, prefix), STATE_INACTIVE) == wanted
    ]


def select_configs(
    expr: str,
    kind: FilterKind | str | None = None,
    *,
    entries: Sequence[ConfigEntry] | None = None,
) -> list[ConfigEntry]:
    """Return the configs matching *expr*. No match is an empty list."""

    spec = parse_filter(expr, kind)
    pool = entries if entries is not None else load_entries()
    return _apply_spec(spec, pool)


def apply_filters(
    exprs: Sequence[str],
    *,
    entries: Sequence[ConfigEntry] | None = None,
) -> list[ConfigEntry]:
    """Intersect several filter expressions. No expressions selects everything."""

    specs = [parse_filter(expr) for expr in exprs]
    pool: list[ConfigEntry] = list(entries) if entries is not None else load_entries()
    for spec in specs:
        if not pool:
            break
        pool = _apply_spec(spec, pool)
    return pool


def presets_path() -> Path:
    return ensure_data_dir() / PRESETS_FILENAME


def _read_presets() -> dict[str, list[str]]:
    path = presets_path()
    if not path.exists():
        return {}
    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError:
        logger.warning(Messages.WARNING_PRESETS_CORRUPT.format(path=path))
        return {}
    presets = raw.get("presets") if isinstance(raw, dict) else None
    if not isinstance(presets, dict):
        return {}
    return {
        str(name): [str(item) for item in filters]
        for name, filters in presets.items()
        if isinstance(filters, list)
    }


def _write_presets(presets: dict[str, list[str]]) -> None:
    path = presets_path()
    tmp_path = path.with_suffix(".json.tmp")
    tmp_path.write_text(
        json.dumps({"presets": presets}, ensure_ascii=False, indent=2),
        encoding="utf-8",
    )
    os.replace(tmp_path, path)


def save_preset(name: str, filters: Sequence[str]) -> None:
    cleaned = (name or "").strip()
    if not cleaned:
        raise ValueError(Messages.ERROR_PRESET_NAME_EMPTY)
    if not filters:
        raise ValueError(Messages.ERROR_PRESET_FILTERS_EMPTY)
    for expr in filters:
        parse_filter(expr)
    presets = _read_presets()
    presets[cleaned] = list(filters)
    _write_presets(presets)


def load_preset(name: str) -> list[str]:
    presets = _read_presets()
    if name not in presets:
        raise ValueError(Messages.ERROR_PRESET_NOT_FOUND.format(name=name))
    return presets[name]


def list_presets() -> dict[str, list[str]]:
    return dict(sorted(_read_presets().items()))


def delete_preset(name: str) -> bool:
    presets = _read_presets()
    if presets.pop(name, None) is None:
        return False
    _write_presets(presets)
    return True
