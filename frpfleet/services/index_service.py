"""Logic helpers for the `frpfleet index` command."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Sequence

from filelock import FileLock, Timeout

from .cache_service import aggregate_safe, load_entries_safe
from .extract_service import SUPPORTED_KINDS, FieldExtractionError, extract_entry, file_hash
from ..config import load_config, resolve_frp_config_dir
from ..store import (
    ConfigEntry,
    IndexAggregate,
    IndexUnavailableError,
    clear_store,
    delete_missing_entries,
    ensure_data_dir,
    get_meta,
    index_db_path,
    list_entries,
    set_meta,
    upsert_entry,
)
from ..text import Messages
from ..utils import collect_config_files

logger = logging.getLogger(__name__)

META_LAST_SYNC = "last_sync"
META_LAST_REBUILD = "last_rebuild"
REBUILD_LOCK_FILENAME = "index.db.lock"
REBUILD_LOCK_TIMEOUT = 30.0


class IndexStatus(str, Enum):
    EMPTY = "empty"
    UP_TO_DATE = "up_to_date"
    STORED = "stored"


@dataclass(slots=True)
class IndexResult:
    status: IndexStatus
    db_path: Path | None = None
    files_indexed: int = 0
    files_removed: int = 0
    skipped: list[str] = field(default_factory=list)


@dataclass(slots=True)
class IndexVerification:
    missing: list[str] = field(default_factory=list)
    stale: list[str] = field(default_factory=list)
    unindexed: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not (self.missing or self.stale or self.unindexed)


def _resolve_scan_settings(
    config_dir: Path | str | None,
    exclude_patterns: Sequence[str] | None,
) -> tuple[Path, tuple[str, ...]]:
    cfg = load_config()
    root = Path(config_dir).expanduser() if config_dir is not None else resolve_frp_config_dir(
        cfg.config_dir
    )
    patterns = tuple(exclude_patterns) if exclude_patterns is not None else cfg.exclude_patterns
    return root, patterns


def rebuild_lock_path() -> Path:
    return ensure_data_dir() / REBUILD_LOCK_FILENAME


def index_file(path: Path | str) -> ConfigEntry:
    """Parse *path* and upsert its entry. Raises FieldExtractionError on bad files."""

    entry = extract_entry(Path(path))
    upsert_entry(entry)
    logger.debug("Indexed %s (%s)", entry.file_path, entry.kind)
    return entry


def _index_files(files: Sequence[Path]) -> tuple[int, list[str]]:
    indexed = 0
    skipped: list[str] = []
    for path in files:
        try:
            index_file(path)
        except FieldExtractionError as exc:
            logger.warning(Messages.WARNING_FILE_SKIPPED.format(path=exc.path, reason=exc.reason))
            skipped.append(f"{exc.path}: {exc.reason}")
            continue
        indexed += 1
    return indexed, skipped


def rebuild(
    config_dir: Path | str | None = None,
    *,
    exclude_patterns: Sequence[str] | None = None,
    lock_timeout: float = REBUILD_LOCK_TIMEOUT,
) -> IndexResult:
    """Repopulate the index from every config file currently on disk.

    Rows for files that are gone are deleted (their tags cascade). Surviving
    rows keep their ids, so tags stay attached. An unreadable database is
    discarded and recreated (its tags are lost). Concurrent rebuilds are
    serialized by a file lock next to the database.
    """

    root, patterns = _resolve_scan_settings(config_dir, exclude_patterns)
    files = collect_config_files(root, patterns)
    lock_path = rebuild_lock_path()
    lock = FileLock(str(lock_path), timeout=lock_timeout)
    try:
        with lock:
            return _rebuild_locked(files)
    except Timeout as exc:
        raise RuntimeError(
            Messages.ERROR_REBUILD_LOCKED.format(path=lock_path, timeout=lock_timeout)
        ) from exc


def _reset_unreadable_store() -> None:
    try:
        get_meta(META_LAST_SYNC)
    except IndexUnavailableError as exc:
        logger.warning(Messages.WARNING_INDEX_RESET.format(reason=exc))
        clear_store()


def _rebuild_locked(files: Sequence[Path]) -> IndexResult:
    started = time.time()
    _reset_unreadable_store()
    indexed, skipped = _index_files(files)
    # Unparseable files are still on disk, so their previous rows are kept.
    removed = delete_missing_entries(str(path) for path in files)
    stamp = repr(started)
    set_meta({META_LAST_REBUILD: stamp, META_LAST_SYNC: stamp})
    if removed:
        logger.info("Removed %d orphaned index entries", removed)
    return IndexResult(
        status=IndexStatus.STORED if indexed else IndexStatus.EMPTY,
        db_path=index_db_path(),
        files_indexed=indexed,
        files_removed=removed,
        skipped=skipped,
    )


def _last_sync_marker() -> float | None:
    value = get_meta(META_LAST_SYNC)
    if value is None:
        return None
    try:
        return float(value)
    except ValueError:
        return None


def incremental_sync(
    config_dir: Path | str | None = None,
    *,
    exclude_patterns: Sequence[str] | None = None,
) -> IndexResult:
    """Reindex files that are new or modified since the last sync marker."""

    root, patterns = _resolve_scan_settings(config_dir, exclude_patterns)
    started = time.time()
    marker = _last_sync_marker()
    known = {entry.file_path: entry for entry in list_entries()}
    changed: list[Path] = []
    for path in collect_config_files(root, patterns):
        entry = known.get(str(path))
        if entry is None:
            changed.append(path)
            continue
        try:
            mtime = path.stat().st_mtime
        except OSError:
            continue
        threshold = marker if marker is not None else entry.last_indexed
        if mtime > threshold:
            changed.append(path)
    indexed, skipped = _index_files(changed)
    set_meta({META_LAST_SYNC: repr(started)})
    if not changed:
        status = IndexStatus.UP_TO_DATE
    else:
        status = IndexStatus.STORED if indexed else IndexStatus.EMPTY
    return IndexResult(
        status=status,
        db_path=index_db_path(),
        files_indexed=indexed,
        skipped=skipped,
    )


def load_entries(
    kind: str | None = None,
    *,
    config_dir: Path | str | None = None,
) -> list[ConfigEntry]:
    root, patterns = _resolve_scan_settings(config_dir, None)
    return load_entries_safe(root, kind, patterns)


def query_by_type(kind: str, *, config_dir: Path | str | None = None) -> list[ConfigEntry]:
    normalized = (kind or "").strip().lower()
    if normalized not in SUPPORTED_KINDS:
        raise ValueError(
            Messages.ERROR_KIND_INVALID.format(value=kind, allowed=", ".join(SUPPORTED_KINDS))
        )
    return load_entries(normalized, config_dir=config_dir)


def query_aggregate(*, config_dir: Path | str | None = None) -> IndexAggregate:
    root, patterns = _resolve_scan_settings(config_dir, None)
    return aggregate_safe(root, patterns)


def verify_index(config_dir: Path | str | None = None) -> IndexVerification:
    """Compare the index with the files on disk without modifying either."""

    root, patterns = _resolve_scan_settings(config_dir, None)
    result = IndexVerification()
    indexed = list_entries()
    on_disk = {str(path) for path in collect_config_files(root, patterns)}
    for entry in indexed:
        path = Path(entry.file_path)
        if not path.exists():
            result.missing.append(entry.file_path)
            continue
        try:
            current = file_hash(path)
        except OSError:
            result.missing.append(entry.file_path)
            continue
        if current != entry.content_hash:
            result.stale.append(entry.file_path)
    known = {entry.file_path for entry in indexed}
    result.unindexed = sorted(on_disk - known)
    return result


def clear_index() -> bool:
    return clear_store()
