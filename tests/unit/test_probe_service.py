from __future__ import annotations

import socket
import time

import pytest

from frpfleet.services import probe_service
from frpfleet.services.probe_service import ProbeTarget
from frpfleet.store import ConfigEntry


def _client(name: str, addr: str | None = "127.0.0.1", port: int | None = 7000) -> ConfigEntry:
    return ConfigEntry(
        file_path=f"/etc/frp/{name}.toml",
        content_hash="h",
        kind="client",
        server_address=addr,
        server_port=port,
    )


def test_probe_targets_skip_incomplete_and_servers():
    server = ConfigEntry(file_path="/etc/frp/frps.toml", content_hash="h", kind="server", bind_port=7000)
    entries = [_client("a"), _client("b", addr=None), _client("c", port=None), server]

    targets, skipped = probe_service.probe_targets(entries)

    assert [target.config_path for target in targets] == ["/etc/frp/a.toml"]
    assert skipped == 3


def test_probe_endpoint_reaches_listening_socket():
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as server:
        server.bind(("127.0.0.1", 0))
        server.listen(1)
        port = server.getsockname()[1]

        assert probe_service.probe_endpoint(ProbeTarget("x", "127.0.0.1", port), timeout=1.0) == "reachable"


def test_probe_endpoint_unreachable(monkeypatch):
    def refuse(address, timeout):
        raise ConnectionRefusedError(111, "Connection refused")

    monkeypatch.setattr(probe_service.socket, "create_connection", refuse)

    with pytest.raises(OSError, match="unreachable"):
        probe_service.probe_endpoint(ProbeTarget("x", "10.0.0.1", 7000))


def test_probe_endpoint_timeout(monkeypatch):
    def hang(address, timeout):
        raise socket.timeout("timed out")

    monkeypatch.setattr(probe_service.socket, "create_connection", hang)

    with pytest.raises(TimeoutError, match="no answer"):
        probe_service.probe_endpoint(ProbeTarget("x", "10.0.0.1", 7000), timeout=0.2)


def test_probe_endpoint_deadline_covers_name_resolution(monkeypatch):
    def slow_lookup(*_args, **_kwargs):
        time.sleep(2.0)
        return [(socket.AF_INET, socket.SOCK_STREAM, 6, "", ("10.0.0.9", 7000))]

    monkeypatch.setattr(probe_service.socket, "getaddrinfo", slow_lookup)

    started = time.monotonic()
    with pytest.raises(TimeoutError, match="no answer within 0.2s"):
        probe_service.probe_endpoint(ProbeTarget("x", "frp.example.com", 7000), timeout=0.2)

    assert time.monotonic() - started < 1.0


def test_probe_endpoint_deadline_is_shared_across_addresses(monkeypatch):
    attempts = []

    def lookup(host, port, type=0):
        return [
            (socket.AF_INET, socket.SOCK_STREAM, 6, "", (f"10.0.0.{idx}", port))
            for idx in range(1, 4)
        ]

    def hang(address, timeout):
        attempts.append((address[0], timeout))
        time.sleep(timeout)
        raise socket.timeout("timed out")

    monkeypatch.setattr(probe_service.socket, "getaddrinfo", lookup)
    monkeypatch.setattr(probe_service.socket, "create_connection", hang)

    started = time.monotonic()
    with pytest.raises(TimeoutError, match="no answer"):
        probe_service.probe_endpoint(ProbeTarget("x", "frp.example.com", 7000), timeout=0.3)

    assert time.monotonic() - started < 0.8
    assert attempts[0][0] == "10.0.0.1"
    assert all(timeout <= 0.3 for _, timeout in attempts)


def test_probe_endpoint_tries_next_address(monkeypatch):
    class _Conn:
        def __enter__(self):
            return self

        def __exit__(self, *exc):
            return False

    def lookup(host, port, type=0):
        return [
            (socket.AF_INET, socket.SOCK_STREAM, 6, "", ("10.0.0.1", port)),
            (socket.AF_INET, socket.SOCK_STREAM, 6, "", ("10.0.0.2", port)),
        ]

    def connect(address, timeout):
        if address[0] == "10.0.0.1":
            raise ConnectionRefusedError(111, "Connection refused")
        return _Conn()

    monkeypatch.setattr(probe_service.socket, "getaddrinfo", lookup)
    monkeypatch.setattr(probe_service.socket, "create_connection", connect)

    assert probe_service.probe_endpoint(ProbeTarget("x", "frp.example.com", 7000)) == "reachable"


def test_probe_configs_counts_reachability(monkeypatch):
    reachable_hosts = {"10.0.0.1", "10.0.0.2"}

    class _Conn:
        def __enter__(self):
            return self

        def __exit__(self, *exc):
            return False

    def fake_connect(address, timeout):
        if address[0] not in reachable_hosts:
            raise ConnectionRefusedError(111, "Connection refused")
        return _Conn()

    monkeypatch.setattr(probe_service.socket, "create_connection", fake_connect)
    entries = [
        _client("a", addr="10.0.0.1"),
        _client("b", addr="10.0.0.2"),
        _client("c", addr="10.0.0.3"),
        _client("d", addr=None),
    ]

    summary = probe_service.probe_configs(entries, max_parallel=2, timeout=0.5)

    assert summary.reachable == 2
    assert summary.unreachable == 1
    assert summary.skipped == 1
    assert summary.report.failed_items[0].item_id == "/etc/frp/c.toml (10.0.0.3:7000)"
