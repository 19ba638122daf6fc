"""Stale-while-revalidate cache of the fleet status summary."""

from __future__ import annotations

import json
import logging
import os
import re
import subprocess
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Mapping

from filelock import FileLock, Timeout

from .index_service import query_aggregate
from .lifecycle_service import (
    STATE_ACTIVE,
    STATE_FAILED,
    STATE_INACTIVE,
    count_states,
    observe_service_states,
)
from ..config import Config, load_config, resolve_status_ttl
from ..store import ensure_data_dir
from ..text import Messages

logger = logging.getLogger(__name__)

STATUS_CACHE_FILENAME = "status.cache.json"
VERSION_CACHE_FILENAME = "frp_version.json"
VERSION_CACHE_TTL = 3600.0
VERSION_UNKNOWN = "unknown"
VERSION_NOT_INSTALLED = "not installed"
FRP_BINARIES: tuple[str, ...] = ("frps", "frpc")
_VERSION_RE = re.compile(r"v?\d+\.\d+\.\d+")


@dataclass(slots=True)
class CacheSnapshot:
    payload: dict[str, object] = field(default_factory=dict)
    captured_at: float | None = None
    ttl: float = 0.0
    refreshing: bool = False

    @property
    def empty(self) -> bool:
        return self.captured_at is None

    def age(self, now: float) -> float | None:
        if self.captured_at is None:
            return None
        return max(now - self.captured_at, 0.0)

    def is_stale(self, now: float) -> bool:
        age = self.age(now)
        return age is None or age >= self.ttl


def _write_json_atomic(path: Path, data: Mapping[str, object]) -> None:
    tmp_path = path.with_name(f".{path.name}.{os.getpid()}.{threading.get_ident()}.tmp")
    try:
        tmp_path.write_text(json.dumps(data, ensure_ascii=False), encoding="utf-8")
        os.replace(tmp_path, path)
    finally:
        if tmp_path.exists():
            tmp_path.unlink()


class CacheManager:
    """Serve a persisted snapshot and refresh it in the background once stale.

    Reads never wait for a refresh, except on cold start when there is nothing
    to serve yet. A failed refresh leaves the previous snapshot and its
    timestamp in place.
    """

    def __init__(
        self,
        path: Path | str,
        compute: Callable[[], dict[str, object]],
        *,
        ttl: float,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.path = Path(path)
        self.ttl = float(ttl)
        self.last_error: str | None = None
        self._compute = compute
        self._clock = clock
        self._lock = threading.Lock()
        self._cold_lock = threading.Lock()
        self._payload: dict[str, object] = {}
        self._captured_at: float | None = None
        self._persisted = False
        self._refresh: Future[bool] | None = None
        self._executor: ThreadPoolExecutor | None = None

    @property
    def lock_path(self) -> Path:
        return self.path.with_name(f"{self.path.name}.lock")

    @property
    def refreshing(self) -> bool:
        with self._lock:
            return self._refresh is not None and not self._refresh.done()

    def get(self) -> CacheSnapshot:
        self._sync_from_disk()
        with self._lock:
            captured_at = self._captured_at
        if captured_at is None:
            return self._cold_start()
        if self._clock() - captured_at >= self.ttl:
            self._start_refresh()
        return self.peek()

    def peek(self) -> CacheSnapshot:
        """Return the in-memory snapshot without triggering any computation."""
        with self._lock:
            refreshing = self._refresh is not None and not self._refresh.done()
            return CacheSnapshot(
                payload=dict(self._payload),
                captured_at=self._captured_at,
                ttl=self.ttl,
                refreshing=refreshing,
            )

    def refresh_now(self) -> CacheSnapshot:
        """Recompute synchronously; errors propagate to the caller."""
        self._store(self._compute(), self._clock())
        return self.peek()

    def wait(self, timeout: float | None = None) -> None:
        with self._lock:
            future = self._refresh
        if future is not None:
            future.result(timeout=timeout)

    def invalidate(self) -> None:
        self.wait()
        with self._lock:
            self._payload = {}
            self._captured_at = None
            self._persisted = False
        if self.path.exists():
            self.path.unlink()

    def close(self) -> None:
        self.wait()
        if self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None

    def _cold_start(self) -> CacheSnapshot:
        with self._cold_lock:
            with self._lock:
                ready = self._captured_at is not None
            if not ready:
                logger.debug("No status snapshot; computing synchronously")
                self._store(self._compute(), self._clock())
        return self.peek()

    def _start_refresh(self) -> bool:
        with self._lock:
            if self._refresh is not None and not self._refresh.done():
                return False
            if self._executor is None:
                self._executor = ThreadPoolExecutor(
                    max_workers=1, thread_name_prefix="frpfleet-status"
                )
            self._refresh = self._executor.submit(self._run_refresh)
        return True

    def _run_refresh(self) -> bool:
        lock = FileLock(str(self.lock_path), timeout=0)
        try:
            lock.acquire()
        except Timeout:
            logger.debug("Status refresh already running in another process")
            return False
        try:
            try:
                payload = self._compute()
            except Exception as exc:
                self.last_error = str(exc) or type(exc).__name__
                logger.warning(Messages.WARNING_STATUS_REFRESH_FAILED.format(reason=self.last_error))
                return False
            self._store(payload, self._clock())
            self.last_error = None
            return True
        finally:
            lock.release()

    def _store(self, payload: dict[str, object], captured_at: float) -> None:
        with self._lock:
            self._payload = dict(payload)
            self._captured_at = captured_at
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            _write_json_atomic(
                self.path,
                {"payload": payload, "captured_at": captured_at, "ttl": self.ttl},
            )
        except OSError as exc:
            logger.warning(Messages.WARNING_STATUS_PERSIST_FAILED.format(path=self.path, reason=exc))
            return
        with self._lock:
            self._persisted = True

    def _sync_from_disk(self) -> None:
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            with self._lock:
                if self._persisted:
                    # Snapshot file was deleted; treat as a cold start.
                    self._payload = {}
                    self._captured_at = None
                    self._persisted = False
            return
        except (OSError, json.JSONDecodeError) as exc:
            logger.debug("Ignoring unreadable status cache %s: %s", self.path, exc)
            return
        payload = raw.get("payload") if isinstance(raw, dict) else None
        captured_at = raw.get("captured_at") if isinstance(raw, dict) else None
        if not isinstance(payload, dict) or not isinstance(captured_at, (int, float)):
            return
        with self._lock:
            if self._captured_at is None or captured_at > self._captured_at:
                self._payload = payload
                self._captured_at = float(captured_at)
            self._persisted = True


def _read_version_cache(path: Path, now: float, ttl: float) -> str | None:
    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError):
        return None
    version = raw.get("version") if isinstance(raw, dict) else None
    checked_at = raw.get("checked_at") if isinstance(raw, dict) else None
    if not isinstance(version, str) or not isinstance(checked_at, (int, float)):
        return None
    if now - checked_at >= ttl:
        return None
    return version


def detect_frp_version(frp_dir: Path | str) -> str:
    """Ask the installed frps/frpc binaries for their version."""

    base = Path(frp_dir).expanduser()
    found_binary = False
    for name in FRP_BINARIES:
        binary = base / name
        if not binary.is_file():
            continue
        found_binary = True
        try:
            completed = subprocess.run(
                [str(binary), "--version"],
                capture_output=True,
                text=True,
                timeout=5,
                check=False,
            )
        except (OSError, subprocess.TimeoutExpired) as exc:
            logger.debug("Cannot run %s: %s", binary, exc)
            continue
        match = _VERSION_RE.search(completed.stdout or completed.stderr or "")
        if match:
            return match.group(0)
    version_file = base / ".version"
    if version_file.is_file():
        match = _VERSION_RE.search(version_file.read_text(encoding="utf-8", errors="replace"))
        if match:
            return match.group(0)
        return VERSION_UNKNOWN
    return VERSION_UNKNOWN if found_binary else VERSION_NOT_INSTALLED


def get_frp_version(
    frp_dir: Path | str,
    *,
    ttl: float = VERSION_CACHE_TTL,
    clock: Callable[[], float] = time.time,
) -> str:
    """Return the FRP version, re-detecting it at most once per *ttl*."""

    path = ensure_data_dir() / VERSION_CACHE_FILENAME
    now = clock()
    cached = _read_version_cache(path, now, ttl)
    if cached is not None:
        return cached
    version = detect_frp_version(frp_dir)
    try:
        _write_json_atomic(path, {"version": version, "checked_at": now})
    except OSError as exc:
        logger.debug("Cannot cache frp version: %s", exc)
    return version


def compute_status(cfg: Config | None = None) -> dict[str, object]:
    """Build the status payload from the index and the observed services."""

    cfg = cfg or load_config()
    aggregate = query_aggregate()
    counts = count_states(observe_service_states(cfg.service_prefix))
    return {
        "frp_version": get_frp_version(cfg.frp_dir),
        "total_configs": aggregate.total,
        "servers": aggregate.servers,
        "clients": aggregate.clients,
        "total_proxies": aggregate.total_proxies,
        "active_services": counts[STATE_ACTIVE],
        "failed_services": counts[STATE_FAILED],
        "inactive_services": counts[STATE_INACTIVE],
    }


def status_cache_path() -> Path:
    return ensure_data_dir() / STATUS_CACHE_FILENAME


def build_status_cache(cfg: Config | None = None) -> CacheManager:
    cfg = cfg or load_config()
    return CacheManager(
        status_cache_path(),
        lambda: compute_status(cfg),
        ttl=resolve_status_ttl(cfg.status_ttl),
    )
