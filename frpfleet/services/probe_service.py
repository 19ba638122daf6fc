"""TCP reachability probes for client configs."""

from __future__ import annotations

import logging
import socket
import threading
import time
from dataclasses import dataclass
from typing import Any, Sequence

from .dispatch_service import BatchReport, ProgressCallback, dispatch
from .extract_service import KIND_CLIENT
from ..config import DEFAULT_PROBE_PARALLEL, DEFAULT_PROBE_TIMEOUT
from ..store import ConfigEntry
from ..utils import is_ipv4

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ProbeTarget:
    config_path: str
    host: str
    port: int

    def __str__(self) -> str:
        return f"{self.config_path} ({self.host}:{self.port})"


@dataclass(slots=True)
class ProbeSummary:
    report: BatchReport
    skipped: int = 0

    @property
    def reachable(self) -> int:
        return self.report.success_count

    @property
    def unreachable(self) -> int:
        return self.report.failure_count


def probe_targets(entries: Sequence[ConfigEntry]) -> tuple[list[ProbeTarget], int]:
    """Return probe targets for clients with an address and port, plus the skip count."""

    targets: list[ProbeTarget] = []
    skipped = 0
    for entry in entries:
        if entry.kind != KIND_CLIENT or not entry.server_address or not entry.server_port:
            skipped += 1
            continue
        targets.append(ProbeTarget(entry.file_path, entry.server_address, entry.server_port))
    return targets, skipped


def _resolve(host: str, port: int, timeout: float) -> list[str]:
    """Return the addresses of *host*, giving up after *timeout* seconds."""

    if is_ipv4(host):
        return [host]
    outcome: dict[str, Any] = {}
    done = threading.Event()

    def _lookup() -> None:
        try:
            outcome["infos"] = socket.getaddrinfo(host, port, type=socket.SOCK_STREAM)
        except OSError as exc:
            outcome["error"] = exc
        finally:
            done.set()

    # getaddrinfo cannot be interrupted; a lookup past the deadline finishes on its own thread.
    threading.Thread(target=_lookup, name=f"frpfleet-resolve-{host}", daemon=True).start()
    if not done.wait(timeout):
        raise TimeoutError(f"resolving {host} took longer than {timeout}s")
    if "error" in outcome:
        raise outcome["error"]
    addresses: list[str] = []
    for _family, _type, _proto, _canon, sockaddr in outcome["infos"]:
        if sockaddr[0] not in addresses:
            addresses.append(sockaddr[0])
    return addresses


def _connect_before(addresses: Sequence[str], port: int, deadline: float) -> None:
    last_error: OSError = OSError("no address to connect to")
    for address in addresses:
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            raise TimeoutError("deadline reached")
        try:
            with socket.create_connection((address, port), timeout=remaining):
                return
        except OSError as exc:
            last_error = exc
    raise last_error


def probe_endpoint(target: ProbeTarget, timeout: float = DEFAULT_PROBE_TIMEOUT) -> str:
    """Open and close a TCP connection; raise OSError/TimeoutError when unreachable.

    *timeout* bounds the whole attempt: name resolution plus every connect
    try across the resolved addresses.
    """

    deadline = time.monotonic() + timeout
    try:
        addresses = _resolve(target.host, target.port, timeout)
        _connect_before(addresses, target.port, deadline)
    except TimeoutError as exc:
        raise TimeoutError(f"unreachable: no answer within {timeout}s") from exc
    except OSError as exc:
        raise OSError(f"unreachable: {exc.strerror or exc}") from exc
    return "reachable"


def probe_configs(
    entries: Sequence[ConfigEntry],
    *,
    max_parallel: int = DEFAULT_PROBE_PARALLEL,
    timeout: float = DEFAULT_PROBE_TIMEOUT,
    on_progress: ProgressCallback | None = None,
    cancel_event: threading.Event | None = None,
) -> ProbeSummary:
    targets, skipped = probe_targets(entries)
    if skipped:
        logger.info("Skipping %d config(s) without a server address or port", skipped)

    def _probe(target: ProbeTarget) -> str:
        return probe_endpoint(target, timeout)

    report = dispatch(
        targets,
        _probe,
        max_parallel=max_parallel,
        item_id=str,
        on_progress=on_progress,
        cancel_event=cancel_event,
    )
    return ProbeSummary(report=report, skipped=skipped)
