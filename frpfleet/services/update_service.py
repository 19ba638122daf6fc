"""All-or-nothing field updates across many config files."""

from __future__ import annotations

import json
import logging
import os
import re
import tomllib
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Sequence

from .extract_service import (
    KIND_SERVER,
    FieldExtractionError,
    detect_kind,
    lookup,
)
from .filter_service import apply_filters
from .index_service import index_file
from ..store import ensure_data_dir
from ..text import Messages
from ..utils import is_valid_host, is_valid_port

logger = logging.getLogger(__name__)

BACKUP_DIRNAME = "backups"
BACKUP_KEEP = 10
MIN_SERVER_TOKEN_LENGTH = 8
_KEY_SEGMENT_RE = re.compile(r"^[A-Za-z0-9_-]+$")
_TABLE_RE = re.compile(r"^\s*\[\s*([^\[\]]+?)\s*\]\s*(#.*)?$")
_ARRAY_TABLE_RE = re.compile(r"^\s*\[\[")
_ASSIGN_RE = re.compile(r"^(\s*)([A-Za-z0-9_\-.\"' ]+?)\s*=")
_PROTECTED_ROOTS = {"proxies", "visitors"}


class BulkUpdateError(RuntimeError):
    """Raised when any staged edit is invalid; no file has been modified."""

    def __init__(self, errors: Sequence[tuple[str, str]]) -> None:
        self.errors = list(errors)
        detail = "; ".join(f"{path}: {reason}" for path, reason in self.errors)
        super().__init__(Messages.ERROR_BULK_UPDATE_ABORTED.format(detail=detail))


@dataclass(frozen=True, slots=True)
class FieldUpdate:
    field: str
    value: object
    filters: tuple[str, ...] = ()


@dataclass(slots=True)
class FieldChange:
    field: str
    old_value: Any
    new_value: str


@dataclass(slots=True)
class FileEdit:
    file_path: str
    original_text: str
    new_text: str
    changes: list[FieldChange] = field(default_factory=list)


@dataclass(slots=True)
class UpdateResult:
    edits: list[FileEdit] = field(default_factory=list)
    dry_run: bool = False
    backups: list[Path] = field(default_factory=list)

    @property
    def files_changed(self) -> int:
        return len(self.edits)


def validate_field_name(name: str) -> str:
    cleaned = (name or "").strip()
    parts = cleaned.split(".")
    if not cleaned or not all(_KEY_SEGMENT_RE.match(part) for part in parts):
        raise ValueError(Messages.ERROR_FIELD_INVALID.format(field=name))
    if parts[0] in _PROTECTED_ROOTS:
        raise ValueError(Messages.ERROR_FIELD_PROTECTED.format(field=name))
    return cleaned


def format_toml_value(raw: object) -> str:
    """Return a TOML literal for *raw*.

    Strings that already parse as a TOML value (``8000``, ``true``,
    ``"x"``) are used verbatim; anything else becomes a quoted string.
    """

    if isinstance(raw, bool):
        return "true" if raw else "false"
    if isinstance(raw, (int, float)):
        return repr(raw)
    text = str(raw).strip()
    try:
        tomllib.loads(f"value = {text}")
    except tomllib.TOMLDecodeError:
        return json.dumps(text)
    return text


def _normalize_key(raw_key: str) -> str:
    parts = [part.strip().strip("\"'") for part in raw_key.split(".")]
    return ".".join(parts)


def set_toml_value(text: str, dotted_key: str, literal: str) -> str:
    """Set *dotted_key* to *literal* in *text*, keeping the rest of the file intact."""

    parts = dotted_key.split(".")
    lines = text.splitlines(keepends=True)
    table: str | None = ""
    first_table_line: int | None = None
    parent_header_line: int | None = None
    parent = ".".join(parts[:-1])
    for index, line in enumerate(lines):
        if _ARRAY_TABLE_RE.match(line):
            table = None
            if first_table_line is None:
                first_table_line = index
            continue
        header = _TABLE_RE.match(line)
        if header:
            table = _normalize_key(header.group(1))
            if first_table_line is None:
                first_table_line = index
            if parent and table == parent and parent_header_line is None:
                parent_header_line = index
            continue
        if table is None:
            continue
        assign = _ASSIGN_RE.match(line)
        if not assign:
            continue
        key = _normalize_key(assign.group(2))
        full_key = f"{table}.{key}" if table else key
        if full_key == dotted_key:
            newline = "\n" if line.endswith("\n") else ""
            lines[index] = f"{assign.group(1)}{assign.group(2).rstrip()} = {literal}{newline}"
            return "".join(lines)

    if parent_header_line is not None:
        lines.insert(parent_header_line + 1, f"{parts[-1]} = {literal}\n")
        return "".join(lines)
    new_line = f"{dotted_key} = {literal}\n"
    if first_table_line is not None:
        lines.insert(first_table_line, new_line + "\n")
        return "".join(lines)
    if lines and not lines[-1].endswith("\n"):
        lines[-1] = lines[-1] + "\n"
    lines.append(new_line)
    return "".join(lines)


def validate_config_text(text: str, path: Path | str) -> list[str]:
    """Return a list of problems with *text*; empty when the config is acceptable."""

    try:
        document = tomllib.loads(text)
    except tomllib.TOMLDecodeError as exc:
        return [f"invalid TOML ({exc})"]
    errors: list[str] = []
    kind = detect_kind(Path(path), document)
    for key in ("serverPort", "bindPort"):
        value = lookup(document, key)
        if value is not None and not is_valid_port(value):
            errors.append(Messages.ERROR_VALIDATION_PORT.format(field=key))
    address = lookup(document, "serverAddr")
    if address is not None and (not isinstance(address, str) or not is_valid_host(address)):
        errors.append(Messages.ERROR_VALIDATION_ADDR.format(value=address))
    token = lookup(document, "auth.token")
    if token is not None:
        if not isinstance(token, str) or not token:
            errors.append(Messages.ERROR_VALIDATION_TOKEN_EMPTY)
        elif kind == KIND_SERVER and len(token) < MIN_SERVER_TOKEN_LENGTH:
            errors.append(Messages.ERROR_VALIDATION_TOKEN_SHORT.format(length=MIN_SERVER_TOKEN_LENGTH))
    return errors


def backup_dir() -> Path:
    path = ensure_data_dir() / BACKUP_DIRNAME
    path.mkdir(parents=True, exist_ok=True)
    return path


def create_backup(path: Path, *, directory: Path | None = None, keep: int = BACKUP_KEEP) -> Path:
    """Copy *path* into the backup dir and prune to the newest *keep* copies."""

    target_dir = directory or backup_dir()
    stamp = datetime.now().strftime("%Y%m%d-%H%M%S")
    candidate = target_dir / f"{path.name}.{stamp}.bak"
    counter = 1
    while candidate.exists():
        candidate = target_dir / f"{path.name}.{stamp}-{counter}.bak"
        counter += 1
    candidate.write_bytes(path.read_bytes())
    existing = sorted(target_dir.glob(f"{path.name}.*.bak"), key=_backup_order)
    for stale in existing[: max(len(existing) - keep, 0)]:
        stale.unlink()
    return candidate


def _backup_order(item: Path) -> tuple[int, int, str]:
    return (item.stat().st_mtime_ns, len(item.name), item.name)


def list_backups(path: Path | str | None = None, *, directory: Path | None = None) -> list[Path]:
    """Return saved backups newest first, only copies of *path* when given."""

    target_dir = directory or backup_dir()
    pattern = f"{Path(path).name}.*.bak" if path is not None else "*.bak"
    return sorted(target_dir.glob(pattern), key=_backup_order, reverse=True)


def resolve_backup(name: Path | str, *, directory: Path | None = None) -> Path:
    candidate = Path(name).expanduser()
    if not candidate.is_file():
        candidate = (directory or backup_dir()) / candidate.name
    if not candidate.is_file() or candidate.suffix != ".bak":
        raise FileNotFoundError(Messages.ERROR_BACKUP_NOT_FOUND.format(name=name))
    return candidate


def restore_backup(
    backup: Path | str, target: Path | str, *, directory: Path | None = None
) -> Path | None:
    """Write *backup* over *target* and reindex it.

    The current *target* is itself backed up first so a restore can be undone;
    that new backup is returned (``None`` when *target* did not exist).
    Raises ValueError without touching *target* when the backup does not validate.
    """

    source = resolve_backup(backup, directory=directory)
    destination = Path(target).expanduser().resolve()
    text = source.read_text(encoding="utf-8")
    problems = validate_config_text(text, destination)
    if problems:
        raise ValueError(
            Messages.ERROR_BACKUP_INVALID.format(name=source.name, reason="; ".join(problems))
        )
    saved = create_backup(destination, directory=directory) if destination.exists() else None
    _write_atomic(destination, text)
    index_file(destination)
    logger.info("Restored %s from %s", destination, source)
    return saved


def _write_atomic(path: Path, text: str) -> None:
    tmp_path = path.with_name(f".{path.name}.frpfleet.tmp")
    try:
        tmp_path.write_text(text, encoding="utf-8")
        os.replace(tmp_path, path)
    finally:
        if tmp_path.exists():
            tmp_path.unlink()


def stage_updates(updates: Sequence[FieldUpdate]) -> tuple[list[FileEdit], list[tuple[str, str]]]:
    """Compute every edit in memory and validate it. Nothing is written."""

    edits: dict[str, FileEdit] = {}
    errors: list[tuple[str, str]] = []
    for update in updates:
        name = validate_field_name(update.field)
        literal = format_toml_value(update.value)
        expected = tomllib.loads(f"value = {literal}")["value"]
        targets = apply_filters(update.filters)
        if not targets:
            logger.info(Messages.INFO_UPDATE_NO_MATCH.format(filters=", ".join(update.filters) or "all"))
            continue
        for entry in targets:
            edit = edits.get(entry.file_path)
            if edit is None:
                try:
                    original = Path(entry.file_path).read_text(encoding="utf-8")
                except (OSError, UnicodeDecodeError) as exc:
                    errors.append((entry.file_path, str(exc)))
                    continue
                edit = FileEdit(entry.file_path, original, original)
                edits[entry.file_path] = edit
            try:
                old_value = lookup(tomllib.loads(edit.new_text), name)
            except tomllib.TOMLDecodeError as exc:
                errors.append((entry.file_path, f"invalid TOML ({exc})"))
                continue
            edit.new_text = set_toml_value(edit.new_text, name, literal)
            edit.changes.append(FieldChange(name, old_value, literal))
            try:
                written = lookup(tomllib.loads(edit.new_text), name)
            except tomllib.TOMLDecodeError as exc:
                errors.append((entry.file_path, f"invalid TOML after edit ({exc})"))
                continue
            if written != expected:
                errors.append((entry.file_path, Messages.ERROR_FIELD_NOT_APPLIED.format(field=name)))

    failed = {path for path, _ in errors}
    for edit in edits.values():
        if edit.file_path in failed:
            continue
        for problem in validate_config_text(edit.new_text, edit.file_path):
            errors.append((edit.file_path, problem))
    staged = [edit for edit in edits.values() if edit.new_text != edit.original_text]
    return staged, errors


def commit_edits(edits: Sequence[FileEdit]) -> list[Path]:
    """Back up and write every edit; restore all originals if any write fails."""

    conflicts = []
    for edit in edits:
        try:
            current = Path(edit.file_path).read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            conflicts.append((edit.file_path, str(exc)))
            continue
        if current != edit.original_text:
            conflicts.append((edit.file_path, Messages.ERROR_FILE_CHANGED))
    if conflicts:
        raise BulkUpdateError(conflicts)

    backups = [create_backup(Path(edit.file_path)) for edit in edits]
    written: list[FileEdit] = []
    try:
        for edit in edits:
            _write_atomic(Path(edit.file_path), edit.new_text)
            written.append(edit)
    except OSError as exc:
        failed_path = edits[len(written)].file_path
        for done in reversed(written):
            _write_atomic(Path(done.file_path), done.original_text)
        logger.error("Rolled back %d file(s) after write failure", len(written))
        raise BulkUpdateError([(failed_path, str(exc))]) from exc
    return backups


def apply_updates(updates: Sequence[FieldUpdate], *, dry_run: bool = False) -> UpdateResult:
    edits, errors = stage_updates(updates)
    if errors:
        raise BulkUpdateError(errors)
    if dry_run or not edits:
        return UpdateResult(edits=edits, dry_run=dry_run)
    backups = commit_edits(edits)
    for edit in edits:
        try:
            index_file(edit.file_path)
        except FieldExtractionError as exc:
            logger.warning(Messages.WARNING_FILE_SKIPPED.format(path=exc.path, reason=exc.reason))
    logger.info("Updated %d file(s)", len(edits))
    return UpdateResult(edits=edits, dry_run=False, backups=backups)


def bulk_update_field(
    field_name: str,
    value: object,
    filters: Sequence[str] = (),
    *,
    dry_run: bool = False,
) -> UpdateResult:
    """Set *field_name* to *value* in every config selected by *filters*."""

    return apply_updates(
        [FieldUpdate(field_name, value, tuple(filters))],
        dry_run=dry_run,
    )


def load_updates_file(path: Path | str) -> list[FieldUpdate]:
    """Read ``{"updates": [{"field": ..., "value": ..., "filter": ...}]}``."""

    source = Path(path)
    try:
        raw = json.loads(source.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        raise ValueError(Messages.ERROR_UPDATES_FILE_INVALID.format(path=source, reason=exc)) from exc
    items = raw.get("updates") if isinstance(raw, dict) else None
    if not isinstance(items, list):
        raise ValueError(
            Messages.ERROR_UPDATES_FILE_INVALID.format(path=source, reason="missing 'updates' list")
        )
    updates: list[FieldUpdate] = []
    for item in items:
        if not isinstance(item, dict) or "field" not in item or "value" not in item:
            raise ValueError(
                Messages.ERROR_UPDATES_FILE_INVALID.format(
                    path=source, reason="each update needs 'field' and 'value'"
                )
            )
        filters = item.get("filter") or item.get("filters") or ()
        if isinstance(filters, str):
            filters = (filters,)
        if not filters:
            raise ValueError(
                Messages.ERROR_UPDATES_FILE_INVALID.format(
                    path=source,
                    reason=f"update of '{item['field']}' has no filter (use \"all\" for every config)",
                )
            )
        updates.append(FieldUpdate(str(item["field"]), item["value"], tuple(filters)))
    return updates


def bulk_update_from_file(path: Path | str, *, dry_run: bool = False) -> UpdateResult:
    return apply_updates(load_updates_file(path), dry_run=dry_run)
