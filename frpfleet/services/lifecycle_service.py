"""systemd lifecycle actions for the services backing each config."""

from __future__ import annotations

import logging
import shutil
import subprocess
import threading
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Sequence

from .dispatch_service import BatchReport, ProgressCallback, dispatch
from ..config import DEFAULT_ACTION_TIMEOUT, DEFAULT_MAX_PARALLEL, DEFAULT_SERVICE_PREFIX
from ..store import ConfigEntry

logger = logging.getLogger(__name__)

SYSTEMCTL = "systemctl"
STATE_ACTIVE = "active"
STATE_FAILED = "failed"
STATE_INACTIVE = "inactive"


class LifecycleAction(str, Enum):
    START = "start"
    STOP = "stop"
    RESTART = "restart"
    RELOAD = "reload"


@dataclass(slots=True)
class ServiceTarget:
    config_path: str
    service: str

    def __str__(self) -> str:
        return self.service


@dataclass(slots=True)
class LifecyclePlan:
    action: LifecycleAction
    targets: list[ServiceTarget] = field(default_factory=list)


def service_name_for(config_path: Path | str, prefix: str = DEFAULT_SERVICE_PREFIX) -> str:
    return f"{prefix}{Path(config_path).stem}"


def _systemctl_binary() -> str:
    return shutil.which(SYSTEMCTL) or SYSTEMCTL


def run_service_action(
    service: str,
    action: LifecycleAction | str,
    *,
    timeout: float | None = DEFAULT_ACTION_TIMEOUT,
) -> str:
    """Run ``systemctl <action> <service>``; raise RuntimeError on failure.

    ``subprocess.run`` kills the child when *timeout* expires.
    """

    verb = LifecycleAction(action).value
    try:
        completed = subprocess.run(
            [_systemctl_binary(), verb, service],
            capture_output=True,
            text=True,
            timeout=timeout,
            check=False,
        )
    except subprocess.TimeoutExpired as exc:
        raise TimeoutError(f"{SYSTEMCTL} {verb} exceeded {exc.timeout}s") from exc
    except FileNotFoundError as exc:
        raise RuntimeError(f"{SYSTEMCTL} not found") from exc
    if completed.returncode != 0:
        detail = (completed.stderr or completed.stdout or "").strip().splitlines()
        reason = detail[-1] if detail else f"exit status {completed.returncode}"
        raise RuntimeError(reason)
    return f"{verb} ok"


def plan_lifecycle(
    entries: Sequence[ConfigEntry],
    action: LifecycleAction | str,
    *,
    prefix: str = DEFAULT_SERVICE_PREFIX,
) -> LifecyclePlan:
    plan = LifecyclePlan(action=LifecycleAction(action))
    seen: set[str] = set()
    for entry in entries:
        service = service_name_for(entry.file_path, prefix)
        if service in seen:
            continue
        seen.add(service)
        plan.targets.append(ServiceTarget(config_path=entry.file_path, service=service))
    return plan


def bulk_service_action(
    entries: Sequence[ConfigEntry],
    action: LifecycleAction | str,
    *,
    prefix: str = DEFAULT_SERVICE_PREFIX,
    max_parallel: int = DEFAULT_MAX_PARALLEL,
    timeout: float | None = DEFAULT_ACTION_TIMEOUT,
    on_progress: ProgressCallback | None = None,
    cancel_event: threading.Event | None = None,
) -> BatchReport:
    """Apply *action* to the service of every entry through the dispatcher."""

    plan = plan_lifecycle(entries, action, prefix=prefix)

    def _run(target: ServiceTarget) -> str:
        return run_service_action(target.service, plan.action, timeout=timeout)

    logger.info("Running %s on %d service(s)", plan.action.value, len(plan.targets))
    return dispatch(
        plan.targets,
        _run,
        max_parallel=max_parallel,
        item_id=str,
        on_progress=on_progress,
        cancel_event=cancel_event,
    )


def _parse_list_units(output: str) -> dict[str, str]:
    states: dict[str, str] = {}
    for line in output.splitlines():
        parts = line.split()
        # Failed units may be prefixed with a bullet marker.
        if parts and not parts[0].endswith(".service") and len(parts) > 1:
            parts = parts[1:]
        if len(parts) < 3 or not parts[0].endswith(".service"):
            continue
        unit = parts[0][: -len(".service")]
        states[unit] = parts[2]
    return states


def observe_service_states(
    prefix: str = DEFAULT_SERVICE_PREFIX,
    *,
    timeout: float = 5.0,
) -> dict[str, str]:
    """Return ``{service: active_state}`` for units starting with *prefix*.

    Returns an empty mapping when systemd is not available.
    """

    command = [
        _systemctl_binary(),
        "list-units",
        "--type=service",
        "--all",
        "--plain",
        "--no-legend",
        "--no-pager",
        f"{prefix}*",
    ]
    try:
        completed = subprocess.run(
            command, capture_output=True, text=True, timeout=timeout, check=False
        )
    except (FileNotFoundError, subprocess.TimeoutExpired) as exc:
        logger.debug("Cannot observe service states: %s", exc)
        return {}
    if completed.returncode != 0:
        logger.debug("systemctl list-units failed: %s", completed.stderr.strip())
        return {}
    return {
        unit: state
        for unit, state in _parse_list_units(completed.stdout).items()
        if unit.startswith(prefix)
    }


def count_states(states: dict[str, str]) -> dict[str, int]:
    counts = {STATE_ACTIVE: 0, STATE_FAILED: 0, STATE_INACTIVE: 0}
    for state in states.values():
        if state in counts:
            counts[state] += 1
        else:
            counts[STATE_INACTIVE] += 1
    return counts
