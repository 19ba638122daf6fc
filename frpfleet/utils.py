"""Utility helpers for filesystem access and path handling."""

from __future__ import annotations

import ipaddress
import re
from pathlib import Path
from typing import Sequence

CONFIG_SUFFIX = ".toml"
_DOMAIN_RE = re.compile(
    r"^(?=.{1,253}$)([A-Za-z0-9]([A-Za-z0-9-]{0,61}[A-Za-z0-9])?\.)+[A-Za-z]{2,63}$"
)


def resolve_directory(path: Path | str) -> Path:
    """Resolve and validate a user supplied directory path."""
    dir_path = Path(path).expanduser().resolve()
    if not dir_path.exists():
        raise FileNotFoundError(f"Directory does not exist: {dir_path}")
    if not dir_path.is_dir():
        raise NotADirectoryError(f"Path is not a directory: {dir_path}")
    return dir_path


def _exclude_spec(patterns: Sequence[str] | None):
    if not patterns:
        return None
    from pathspec.gitignore import GitIgnoreSpec

    cleaned = [pattern.strip() for pattern in patterns if pattern and pattern.strip()]
    if not cleaned:
        return None
    return GitIgnoreSpec.from_lines(cleaned)


def collect_config_files(
    root: Path | str,
    exclude_patterns: Sequence[str] | None = None,
) -> list[Path]:
    """Return the `*.toml` files directly under *root*, sorted by name.

    Hidden files are skipped. *exclude_patterns* use gitignore syntax and are
    matched against the file name.
    """

    directory = resolve_directory(root)
    spec = _exclude_spec(exclude_patterns)
    files: list[Path] = []
    for candidate in directory.iterdir():
        if candidate.name.startswith("."):
            continue
        if candidate.suffix.lower() != CONFIG_SUFFIX or not candidate.is_file():
            continue
        if spec is not None and spec.match_file(candidate.name):
            continue
        files.append(candidate.resolve())
    files.sort()
    return files


def format_path(path: Path | str, base: Path | None = None) -> str:
    """Return a user friendly representation of *path* relative to *base* when possible."""
    path = Path(path)
    if base:
        try:
            relative = path.relative_to(base)
            return f"./{relative.as_posix()}"
        except ValueError:
            return str(path)
    return str(path)


def is_ipv4(value: str) -> bool:
    try:
        ipaddress.IPv4Address(value)
    except ValueError:
        return False
    return True


def is_valid_host(value: str) -> bool:
    """Return True when *value* is an IPv4 literal or a domain name."""
    if not value:
        return False
    return is_ipv4(value) or value == "localhost" or bool(_DOMAIN_RE.match(value))


def is_valid_port(value: object) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and 1 <= value <= 65535
