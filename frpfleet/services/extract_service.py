"""Extract the indexed fields from FRP TOML config files."""

from __future__ import annotations

import hashlib
import logging
import time
import tomllib
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Mapping

from ..store import ConfigEntry

logger = logging.getLogger(__name__)

KIND_SERVER = "server"
KIND_CLIENT = "client"
SUPPORTED_KINDS: tuple[str, ...] = (KIND_SERVER, KIND_CLIENT)
SERVER_NAME_MARKER = "frps"


class FieldExtractionError(ValueError):
    """Raised when a config file cannot be read or parsed at all."""

    def __init__(self, path: Path | str, reason: str) -> None:
        super().__init__(f"{path}: {reason}")
        self.path = str(path)
        self.reason = reason


def _as_port(value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise TypeError(f"expected integer port, got {type(value).__name__}")
    if not 1 <= value <= 65535:
        raise ValueError(f"port out of range: {value}")
    return value


def _as_host(value: Any) -> str:
    if not isinstance(value, str) or not value.strip():
        raise TypeError("expected non-empty string")
    return value.strip()


def _hash_token(value: Any) -> str:
    if not isinstance(value, str):
        raise TypeError("expected string token")
    return hashlib.sha256(value.encode("utf-8")).hexdigest()


@dataclass(frozen=True)
class FieldSpec:
    key: str
    attr: str
    coerce: Callable[[Any], Any]
    clients_only: bool = False


# Allow-list of extracted keys. Anything else in the document is ignored.
FIELD_SCHEMA: tuple[FieldSpec, ...] = (
    FieldSpec("serverAddr", "server_address", _as_host, clients_only=True),
    FieldSpec("serverPort", "server_port", _as_port, clients_only=True),
    FieldSpec("bindAddr", "bind_address", _as_host),
    FieldSpec("bindPort", "bind_port", _as_port),
    FieldSpec("auth.token", "auth_token_hash", _hash_token),
)


def lookup(document: Mapping[str, Any], dotted_key: str) -> Any:
    """Return the value at *dotted_key* or None when any segment is missing."""

    current: Any = document
    for part in dotted_key.split("."):
        if not isinstance(current, Mapping) or part not in current:
            return None
        current = current[part]
    return current


def parse_document(text: str, *, source: Path | str = "<string>") -> dict[str, Any]:
    try:
        return tomllib.loads(text)
    except tomllib.TOMLDecodeError as exc:
        raise FieldExtractionError(source, f"invalid TOML ({exc})") from exc


def detect_kind(path: Path, document: Mapping[str, Any]) -> str:
    if SERVER_NAME_MARKER in path.name.lower():
        return KIND_SERVER
    if "bindPort" in document and "serverAddr" not in document:
        return KIND_SERVER
    return KIND_CLIENT


def count_proxies(document: Mapping[str, Any]) -> int:
    proxies = document.get("proxies")
    if not isinstance(proxies, list):
        return 0
    return sum(1 for item in proxies if isinstance(item, Mapping))


def content_hash(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def file_hash(path: Path) -> str:
    return content_hash(path.read_bytes())


def extract_entry(path: Path, *, indexed_at: float | None = None) -> ConfigEntry:
    """Read *path* and map it onto a :class:`ConfigEntry`.

    Fields with an unexpected type are left as None. The whole file is rejected
    only when it cannot be read or is not valid TOML.
    """

    path = Path(path)
    try:
        raw = path.read_bytes()
        mtime = path.stat().st_mtime
    except OSError as exc:
        raise FieldExtractionError(path, exc.strerror or str(exc)) from exc
    try:
        text = raw.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise FieldExtractionError(path, "not valid UTF-8") from exc
    document = parse_document(text, source=path)
    kind = detect_kind(path, document)

    entry = ConfigEntry(
        file_path=str(path.resolve()),
        content_hash=content_hash(raw),
        kind=kind,
        proxy_count=count_proxies(document),
        last_modified=mtime,
        last_indexed=indexed_at if indexed_at is not None else time.time(),
    )
    for spec in FIELD_SCHEMA:
        if spec.clients_only and kind != KIND_CLIENT:
            continue
        raw_value = lookup(document, spec.key)
        if raw_value is None:
            continue
        try:
            setattr(entry, spec.attr, spec.coerce(raw_value))
        except (TypeError, ValueError) as exc:
            logger.debug("Ignoring %s in %s: %s", spec.key, path, exc)
    return entry
