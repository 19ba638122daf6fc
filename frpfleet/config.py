"""Global configuration management for frpfleet."""

from __future__ import annotations

import json
import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict

from .text import Messages

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_DIR = Path(os.path.expanduser("~")) / ".frpfleet"
CONFIG_DIR = DEFAULT_CONFIG_DIR
CONFIG_FILE = CONFIG_DIR / "config.json"
DEFAULT_FRP_CONFIG_DIR = "/etc/frp"
DEFAULT_FRP_DIR = "/opt/frp"
DEFAULT_SERVICE_PREFIX = "frp-"
DEFAULT_STATUS_TTL = 5.0
DEFAULT_MAX_PARALLEL = 10
DEFAULT_PROBE_PARALLEL = 20
DEFAULT_PROBE_TIMEOUT = 1.0
DEFAULT_ACTION_TIMEOUT = 30.0
ENV_FRP_CONFIG_DIR = "FRPFLEET_CONFIG_DIR"
ENV_STATUS_TTL = "FRPFLEET_STATUS_TTL"


@dataclass
class Config:
    config_dir: str = DEFAULT_FRP_CONFIG_DIR
    frp_dir: str = DEFAULT_FRP_DIR
    service_prefix: str = DEFAULT_SERVICE_PREFIX
    status_ttl: float = DEFAULT_STATUS_TTL
    max_parallel: int = DEFAULT_MAX_PARALLEL
    probe_parallel: int = DEFAULT_PROBE_PARALLEL
    probe_timeout: float = DEFAULT_PROBE_TIMEOUT
    action_timeout: float = DEFAULT_ACTION_TIMEOUT
    auto_sync: bool = True
    exclude_patterns: tuple[str, ...] = field(default_factory=tuple)


def load_config() -> Config:
    if not CONFIG_FILE.exists():
        return Config()
    try:
        raw = json.loads(CONFIG_FILE.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise ValueError(Messages.ERROR_CONFIG_JSON_INVALID) from exc
    if not isinstance(raw, Mapping):
        raise ValueError(Messages.ERROR_CONFIG_JSON_INVALID)
    config = Config()
    _apply_config_payload(config, raw)
    return config


def save_config(config: Config) -> None:
    CONFIG_DIR.mkdir(parents=True, exist_ok=True)
    data: Dict[str, Any] = {
        "config_dir": config.config_dir,
        "frp_dir": config.frp_dir,
        "service_prefix": config.service_prefix,
        "status_ttl": config.status_ttl,
        "max_parallel": config.max_parallel,
        "probe_parallel": config.probe_parallel,
        "probe_timeout": config.probe_timeout,
        "action_timeout": config.action_timeout,
        "auto_sync": bool(config.auto_sync),
    }
    if config.exclude_patterns:
        data["exclude_patterns"] = list(config.exclude_patterns)
    CONFIG_FILE.write_text(
        json.dumps(data, ensure_ascii=False, indent=2),
        encoding="utf-8",
    )


def _update(**changes: object) -> None:
    config = load_config()
    _apply_config_payload(config, changes)
    save_config(config)


def set_frp_config_dir(value: str) -> None:
    _update(config_dir=value)


def set_frp_dir(value: str) -> None:
    _update(frp_dir=value)


def set_service_prefix(value: str) -> None:
    _update(service_prefix=value)


def set_status_ttl(value: float) -> None:
    _update(status_ttl=value)


def set_max_parallel(value: int) -> None:
    _update(max_parallel=value)


def set_probe_parallel(value: int) -> None:
    _update(probe_parallel=value)


def set_probe_timeout(value: float) -> None:
    _update(probe_timeout=value)


def set_action_timeout(value: float) -> None:
    _update(action_timeout=value)


def set_auto_sync(value: bool) -> None:
    _update(auto_sync=value)


def add_exclude_patterns(values: tuple[str, ...] | list[str]) -> None:
    config = load_config()
    merged = list(config.exclude_patterns)
    for value in values:
        cleaned = value.strip()
        if cleaned and cleaned not in merged:
            merged.append(cleaned)
    config.exclude_patterns = tuple(merged)
    save_config(config)


def clear_exclude_patterns() -> None:
    config = load_config()
    config.exclude_patterns = ()
    save_config(config)


def resolve_frp_config_dir(configured: str | None) -> Path:
    """Return the directory holding the FRP TOML files (env wins over config)."""

    env_value = (os.getenv(ENV_FRP_CONFIG_DIR) or "").strip()
    chosen = env_value or (configured or DEFAULT_FRP_CONFIG_DIR)
    return Path(chosen).expanduser()


def resolve_status_ttl(configured: float | None) -> float:
    """Return the status cache TTL, letting the environment override config.

    Invalid environment values fall back to the configured TTL.
    """

    fallback = DEFAULT_STATUS_TTL if configured is None else float(configured)
    env_value = (os.getenv(ENV_STATUS_TTL) or "").strip()
    if not env_value:
        return fallback
    try:
        ttl = float(env_value)
    except ValueError:
        logger.warning(Messages.WARNING_STATUS_TTL_INVALID.format(value=env_value))
        return fallback
    if ttl < 0:
        logger.warning(Messages.WARNING_STATUS_TTL_INVALID.format(value=env_value))
        return fallback
    return ttl


def _apply_config_payload(config: Config, payload: Mapping[str, object]) -> None:
    if "config_dir" in payload:
        config.config_dir = _coerce_str(
            payload["config_dir"], "config_dir", DEFAULT_FRP_CONFIG_DIR
        )
    if "frp_dir" in payload:
        config.frp_dir = _coerce_str(payload["frp_dir"], "frp_dir", DEFAULT_FRP_DIR)
    if "service_prefix" in payload:
        config.service_prefix = _coerce_str(
            payload["service_prefix"], "service_prefix", DEFAULT_SERVICE_PREFIX
        )
    if "status_ttl" in payload:
        config.status_ttl = _coerce_float(
            payload["status_ttl"], "status_ttl", DEFAULT_STATUS_TTL, minimum=0.0
        )
    if "max_parallel" in payload:
        config.max_parallel = _coerce_int(
            payload["max_parallel"], "max_parallel", DEFAULT_MAX_PARALLEL
        )
    if "probe_parallel" in payload:
        config.probe_parallel = _coerce_int(
            payload["probe_parallel"], "probe_parallel", DEFAULT_PROBE_PARALLEL
        )
    if "probe_timeout" in payload:
        config.probe_timeout = _coerce_float(
            payload["probe_timeout"], "probe_timeout", DEFAULT_PROBE_TIMEOUT
        )
    if "action_timeout" in payload:
        config.action_timeout = _coerce_float(
            payload["action_timeout"], "action_timeout", DEFAULT_ACTION_TIMEOUT
        )
    if "auto_sync" in payload:
        config.auto_sync = _coerce_bool(payload["auto_sync"], "auto_sync")
    if "exclude_patterns" in payload:
        config.exclude_patterns = _coerce_patterns(payload["exclude_patterns"])


def _coerce_str(value: object, field: str, default: str) -> str:
    if value is None:
        return default
    if isinstance(value, str):
        cleaned = value.strip()
        return cleaned or default
    raise ValueError(Messages.ERROR_CONFIG_VALUE_INVALID.format(field=field))


def _coerce_int(value: object, field: str, default: int) -> int:
    if value is None:
        return default
    if isinstance(value, bool):
        raise ValueError(Messages.ERROR_CONFIG_VALUE_INVALID.format(field=field))
    if isinstance(value, float):
        if not value.is_integer():
            raise ValueError(Messages.ERROR_CONFIG_VALUE_INVALID.format(field=field))
        value = int(value)
    if isinstance(value, str):
        cleaned = value.strip()
        if not cleaned:
            return default
        try:
            value = int(cleaned)
        except ValueError as exc:
            raise ValueError(Messages.ERROR_CONFIG_VALUE_INVALID.format(field=field)) from exc
    if isinstance(value, int):
        if value <= 0:
            raise ValueError(Messages.ERROR_CONFIG_VALUE_INVALID.format(field=field))
        return value
    raise ValueError(Messages.ERROR_CONFIG_VALUE_INVALID.format(field=field))


def _coerce_float(
    value: object, field: str, default: float, *, minimum: float | None = None
) -> float:
    if value is None:
        return default
    if isinstance(value, bool):
        raise ValueError(Messages.ERROR_CONFIG_VALUE_INVALID.format(field=field))
    if isinstance(value, str):
        cleaned = value.strip()
        if not cleaned:
            return default
        try:
            value = float(cleaned)
        except ValueError as exc:
            raise ValueError(Messages.ERROR_CONFIG_VALUE_INVALID.format(field=field)) from exc
    if isinstance(value, (int, float)):
        number = float(value)
        if minimum is None and number <= 0:
            raise ValueError(Messages.ERROR_CONFIG_VALUE_INVALID.format(field=field))
        if minimum is not None and number < minimum:
            raise ValueError(Messages.ERROR_CONFIG_VALUE_INVALID.format(field=field))
        return number
    raise ValueError(Messages.ERROR_CONFIG_VALUE_INVALID.format(field=field))


def _coerce_bool(value: object, field: str) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, int) and value in (0, 1):
        return bool(value)
    if isinstance(value, str):
        cleaned = value.strip().lower()
        if cleaned in {"true", "1", "yes", "on"}:
            return True
        if cleaned in {"false", "0", "no", "off"}:
            return False
    raise ValueError(Messages.ERROR_CONFIG_VALUE_INVALID.format(field=field))


def _coerce_patterns(value: object) -> tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, str):
        value = [value]
    if not isinstance(value, (list, tuple)):
        raise ValueError(Messages.ERROR_CONFIG_VALUE_INVALID.format(field="exclude_patterns"))
    patterns: list[str] = []
    for item in value:
        if not isinstance(item, str):
            raise ValueError(
                Messages.ERROR_CONFIG_VALUE_INVALID.format(field="exclude_patterns")
            )
        cleaned = item.strip()
        if cleaned and cleaned not in patterns:
            patterns.append(cleaned)
    return tuple(patterns)
