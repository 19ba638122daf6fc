from __future__ import annotations

import subprocess
import threading

import pytest

from frpfleet.services import lifecycle_service
from frpfleet.services.lifecycle_service import LifecycleAction
from frpfleet.store import ConfigEntry


def _entry(name: str) -> ConfigEntry:
    return ConfigEntry(file_path=f"/etc/frp/{name}.toml", content_hash="h", kind="client")


class FakeSystemctl:
    def __init__(self, failing=(), stdout=""):
        self.failing = set(failing)
        self.stdout = stdout
        self.calls = []
        self._lock = threading.Lock()

    def __call__(self, command, **kwargs):
        with self._lock:
            self.calls.append(list(command))
        service = command[-1]
        if service in self.failing:
            return subprocess.CompletedProcess(command, 1, stdout="", stderr=f"Job for {service} failed.\n")
        return subprocess.CompletedProcess(command, 0, stdout=self.stdout, stderr="")


@pytest.fixture()
def fake_systemctl(monkeypatch):
    fake = FakeSystemctl()
    monkeypatch.setattr(lifecycle_service.subprocess, "run", fake)
    monkeypatch.setattr(lifecycle_service, "_systemctl_binary", lambda: "systemctl")
    return fake


def test_service_name_uses_prefix_and_stem():
    assert lifecycle_service.service_name_for("/etc/frp/office.toml") == "frp-office"
    assert lifecycle_service.service_name_for("/etc/frp/office.toml", "frpc@") == "frpc@office"


def test_run_service_action_success(fake_systemctl):
    message = lifecycle_service.run_service_action("frp-a", "restart")

    assert message == "restart ok"
    assert fake_systemctl.calls == [["systemctl", "restart", "frp-a"]]


def test_run_service_action_reports_stderr(fake_systemctl):
    fake_systemctl.failing.add("frp-a")

    with pytest.raises(RuntimeError, match="Job for frp-a failed"):
        lifecycle_service.run_service_action("frp-a", LifecycleAction.START)


def test_run_service_action_timeout(monkeypatch):
    def slow(command, **kwargs):
        raise subprocess.TimeoutExpired(command, kwargs["timeout"])

    monkeypatch.setattr(lifecycle_service.subprocess, "run", slow)

    with pytest.raises(TimeoutError):
        lifecycle_service.run_service_action("frp-a", "stop", timeout=0.5)


def test_run_service_action_rejects_unknown_verb(fake_systemctl):
    with pytest.raises(ValueError):
        lifecycle_service.run_service_action("frp-a", "enable")


def test_plan_deduplicates_services():
    plan = lifecycle_service.plan_lifecycle([_entry("a"), _entry("a"), _entry("b")], "reload")

    assert plan.action is LifecycleAction.RELOAD
    assert [target.service for target in plan.targets] == ["frp-a", "frp-b"]


def test_bulk_action_collects_failures(fake_systemctl):
    fake_systemctl.failing.update({"frp-c", "frp-e"})
    entries = [_entry(name) for name in "abcdef"]

    report = lifecycle_service.bulk_service_action(entries, "restart", max_parallel=3)

    assert report.total == 6
    assert report.success_count == 4
    assert sorted(result.item_id for result in report.failed_items) == ["frp-c", "frp-e"]
    assert all(call[1] == "restart" for call in fake_systemctl.calls)


def test_observe_service_states_parses_list_units(fake_systemctl):
    fake_systemctl.stdout = (
        "frp-a.service loaded active running FRP a\n"
        "● frp-b.service loaded failed failed FRP b\n"
        "frp-c.service loaded inactive dead FRP c\n"
        "other.service loaded active running Other\n"
    )

    states = lifecycle_service.observe_service_states("frp-")

    assert states == {"frp-a": "active", "frp-b": "failed", "frp-c": "inactive"}
    assert lifecycle_service.count_states(states) == {"active": 1, "failed": 1, "inactive": 1}


def test_observe_service_states_without_systemd(monkeypatch):
    def missing(command, **kwargs):
        raise FileNotFoundError(command[0])

    monkeypatch.setattr(lifecycle_service.subprocess, "run", missing)

    assert lifecycle_service.observe_service_states() == {}


def test_count_states_folds_unknown_into_inactive():
    counts = lifecycle_service.count_states({"a": "activating", "b": "active"})

    assert counts == {"active": 1, "failed": 0, "inactive": 1}
