"""Logic helpers for the `frpfleet config` command."""

from __future__ import annotations

from dataclasses import dataclass

from ..config import (
    Config,
    add_exclude_patterns,
    clear_exclude_patterns,
    load_config,
    set_action_timeout,
    set_auto_sync,
    set_frp_config_dir,
    set_frp_dir,
    set_max_parallel,
    set_probe_parallel,
    set_probe_timeout,
    set_service_prefix,
    set_status_ttl,
)


@dataclass(slots=True)
class ConfigUpdateResult:
    config_dir_set: bool = False
    frp_dir_set: bool = False
    service_prefix_set: bool = False
    status_ttl_set: bool = False
    max_parallel_set: bool = False
    probe_parallel_set: bool = False
    probe_timeout_set: bool = False
    action_timeout_set: bool = False
    auto_sync_set: bool = False
    excludes_added: bool = False
    excludes_cleared: bool = False

    @property
    def changed(self) -> bool:
        return any(
            (
                self.config_dir_set,
                self.frp_dir_set,
                self.service_prefix_set,
                self.status_ttl_set,
                self.max_parallel_set,
                self.probe_parallel_set,
                self.probe_timeout_set,
                self.action_timeout_set,
                self.auto_sync_set,
                self.excludes_added,
                self.excludes_cleared,
            )
        )


def apply_config_updates(
    *,
    config_dir: str | None = None,
    frp_dir: str | None = None,
    service_prefix: str | None = None,
    status_ttl: float | None = None,
    max_parallel: int | None = None,
    probe_parallel: int | None = None,
    probe_timeout: float | None = None,
    action_timeout: float | None = None,
    auto_sync: bool | None = None,
    add_excludes: list[str] | None = None,
    clear_excludes: bool = False,
) -> ConfigUpdateResult:
    """Apply config mutations and report which fields were updated."""

    result = ConfigUpdateResult()
    if config_dir is not None:
        set_frp_config_dir(config_dir)
        result.config_dir_set = True
    if frp_dir is not None:
        set_frp_dir(frp_dir)
        result.frp_dir_set = True
    if service_prefix is not None:
        set_service_prefix(service_prefix)
        result.service_prefix_set = True
    if status_ttl is not None:
        set_status_ttl(status_ttl)
        result.status_ttl_set = True
    if max_parallel is not None:
        set_max_parallel(max_parallel)
        result.max_parallel_set = True
    if probe_parallel is not None:
        set_probe_parallel(probe_parallel)
        result.probe_parallel_set = True
    if probe_timeout is not None:
        set_probe_timeout(probe_timeout)
        result.probe_timeout_set = True
    if action_timeout is not None:
        set_action_timeout(action_timeout)
        result.action_timeout_set = True
    if auto_sync is not None:
        set_auto_sync(auto_sync)
        result.auto_sync_set = True
    if clear_excludes:
        clear_exclude_patterns()
        result.excludes_cleared = True
    if add_excludes:
        add_exclude_patterns(add_excludes)
        result.excludes_added = True
    return result


def get_config_snapshot() -> Config:
    """Return the current configuration dataclass."""

    return load_config()
