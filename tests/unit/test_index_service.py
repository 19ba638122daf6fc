from __future__ import annotations

import logging
import os
from pathlib import Path

import pytest
from filelock import FileLock

import frpfleet.store as store
from frpfleet import config as config_module
from frpfleet.services import index_service
from frpfleet.services.index_service import IndexStatus
from frpfleet.services.tag_service import add_tag, list_tags


@pytest.fixture()
def frp_dir(tmp_path, monkeypatch):
    monkeypatch.setattr(store, "DATA_DIR", tmp_path / "data")
    monkeypatch.setattr(config_module, "CONFIG_DIR", tmp_path / "config")
    monkeypatch.setattr(config_module, "CONFIG_FILE", tmp_path / "config" / "config.json")
    root = tmp_path / "frp"
    root.mkdir()
    monkeypatch.setenv(config_module.ENV_FRP_CONFIG_DIR, str(root))
    return root


def _write_client(root: Path, name: str, port: int = 7000, proxies: int = 1) -> Path:
    lines = ['serverAddr = "10.0.0.1"', f"serverPort = {port}", ""]
    for idx in range(proxies):
        lines += ["[[proxies]]", f'name = "p{idx}"', 'type = "tcp"', f"localPort = {22 + idx}", ""]
    path = root / name
    path.write_text("\n".join(lines), encoding="utf-8")
    return path


def _write_server(root: Path, name: str, port: int = 7000) -> Path:
    path = root / name
    path.write_text(f'bindAddr = "0.0.0.0"\nbindPort = {port}\n', encoding="utf-8")
    return path


def _bump_mtime(path: Path, seconds: float = 10.0) -> None:
    stat = path.stat()
    os.utime(path, (stat.st_atime + seconds, stat.st_mtime + seconds))


def test_rebuild_classifies_fleet(frp_dir):
    for idx in range(20):
        _write_server(frp_dir, f"frps-{idx:02d}.toml", port=7000 + idx)
    for idx in range(30):
        _write_client(frp_dir, f"frpc-{idx:02d}.toml", proxies=2)

    result = index_service.rebuild()

    assert result.status == IndexStatus.STORED
    assert result.files_indexed == 50
    servers = index_service.query_by_type("server")
    clients = index_service.query_by_type("client")
    assert len(servers) == 20
    assert len(clients) == 30
    assert all(entry.kind == "server" for entry in servers)
    totals = index_service.query_aggregate()
    assert (totals.total, totals.servers, totals.clients) == (50, 20, 30)
    assert totals.total_proxies == 60
    assert totals.last_sync is not None


def test_rebuild_is_idempotent_and_keeps_ids(frp_dir):
    first = _write_client(frp_dir, "a.toml")
    _write_client(frp_dir, "b.toml")
    index_service.rebuild()
    before = {entry.file_path: entry for entry in store.list_entries()}
    first_id = store.entry_id(str(first.resolve()))

    index_service.rebuild()

    after = {entry.file_path: entry for entry in store.list_entries()}
    assert before.keys() == after.keys()
    for path, entry in before.items():
        assert after[path].content_hash == entry.content_hash
        assert after[path].server_port == entry.server_port
    assert store.entry_id(str(first.resolve())) == first_id


def test_rebuild_drops_deleted_files_and_their_tags(frp_dir):
    keep = _write_client(frp_dir, "keep.toml")
    gone = _write_client(frp_dir, "gone.toml")
    index_service.rebuild()
    add_tag(keep, "env", "prod")
    add_tag(gone, "env", "prod")

    gone.unlink()
    result = index_service.rebuild()

    assert result.files_removed == 1
    assert [entry.name for entry in store.list_entries()] == ["keep.toml"]
    assert list_tags(keep) == {"env": "prod"}
    assert store.paths_with_tag("env", "prod") == [str(keep.resolve())]


def test_rebuild_skips_malformed_file_but_keeps_prior_row(frp_dir):
    good = _write_client(frp_dir, "good.toml")
    flaky = _write_client(frp_dir, "flaky.toml", port=7100)
    index_service.rebuild()

    flaky.write_text("serverAddr = [unterminated\n", encoding="utf-8")
    (frp_dir / "fresh-broken.toml").write_text("= nope\n", encoding="utf-8")
    result = index_service.rebuild()

    assert result.files_indexed == 1
    assert len(result.skipped) == 2
    paths = {entry.name for entry in store.list_entries()}
    assert paths == {"good.toml", "flaky.toml"}
    assert store.get_entry(str(flaky.resolve())).server_port == 7100
    assert store.get_entry(str(good.resolve())) is not None


def test_rebuild_respects_exclude_patterns(frp_dir):
    _write_client(frp_dir, "a.toml")
    _write_client(frp_dir, "a.disabled.toml")
    (frp_dir / ".hidden.toml").write_text('serverAddr = "x"\n', encoding="utf-8")
    (frp_dir / "notes.txt").write_text("ignored", encoding="utf-8")

    index_service.rebuild(exclude_patterns=["*.disabled.toml"])

    assert [entry.name for entry in store.list_entries()] == ["a.toml"]


def test_rebuild_empty_directory(frp_dir):
    result = index_service.rebuild()

    assert result.status == IndexStatus.EMPTY
    assert store.list_entries() == []


def test_rebuild_missing_directory_raises(frp_dir, tmp_path):
    with pytest.raises(FileNotFoundError):
        index_service.rebuild(tmp_path / "missing")


def test_rebuild_waits_for_lock(frp_dir):
    _write_client(frp_dir, "a.toml")
    holder = FileLock(str(index_service.rebuild_lock_path()))

    with holder:
        with pytest.raises(RuntimeError, match="Another rebuild"):
            index_service.rebuild(lock_timeout=0.05)

    assert index_service.rebuild().files_indexed == 1


def test_incremental_sync_picks_up_new_and_modified(frp_dir):
    first = _write_client(frp_dir, "a.toml", port=7000)
    index_service.rebuild()

    first.write_text('serverAddr = "10.0.0.1"\nserverPort = 7001\n', encoding="utf-8")
    _bump_mtime(first)
    _write_client(frp_dir, "b.toml")
    result = index_service.incremental_sync()

    assert result.status == IndexStatus.STORED
    assert result.files_indexed == 2
    assert store.get_entry(str(first.resolve())).server_port == 7001
    assert {entry.name for entry in store.list_entries()} == {"a.toml", "b.toml"}


def test_incremental_sync_never_deletes(frp_dir):
    first = _write_client(frp_dir, "a.toml")
    _write_client(frp_dir, "b.toml")
    index_service.rebuild()

    first.unlink()
    result = index_service.incremental_sync()

    assert result.status == IndexStatus.UP_TO_DATE
    assert {entry.name for entry in store.list_entries()} == {"a.toml", "b.toml"}


def test_incremental_sync_on_empty_index_indexes_everything(frp_dir):
    _write_client(frp_dir, "a.toml")
    _write_server(frp_dir, "frps.toml")

    result = index_service.incremental_sync()

    assert result.files_indexed == 2
    assert index_service.incremental_sync().status == IndexStatus.UP_TO_DATE


def test_query_by_type_rejects_unknown_kind(frp_dir):
    with pytest.raises(ValueError, match="Unknown config type"):
        index_service.query_by_type("router")


def test_query_by_type_accepts_mixed_case(frp_dir):
    _write_server(frp_dir, "frps.toml")
    index_service.rebuild()

    assert len(index_service.query_by_type("Server")) == 1


def test_corrupt_index_falls_back_to_scan(frp_dir, caplog):
    _write_client(frp_dir, "a.toml")
    _write_server(frp_dir, "frps.toml")
    data_dir = store.ensure_data_dir()
    (data_dir / store.DB_FILENAME).write_bytes(b"garbage" * 512)

    with caplog.at_level(logging.WARNING):
        clients = index_service.query_by_type("client")
        totals = index_service.query_aggregate()

    assert [entry.name for entry in clients] == ["a.toml"]
    assert (totals.total, totals.servers, totals.clients) == (2, 1, 1)
    assert any("Index unavailable" in record.getMessage() for record in caplog.records)


def test_rebuild_recreates_corrupt_index(frp_dir, caplog):
    _write_client(frp_dir, "a.toml")
    _write_server(frp_dir, "frps.toml")
    data_dir = store.ensure_data_dir()
    (data_dir / store.DB_FILENAME).write_bytes(b"garbage" * 512)

    with caplog.at_level(logging.WARNING):
        result = index_service.rebuild()

    assert result.status == IndexStatus.STORED
    assert result.files_indexed == 2
    assert any("Index unreadable" in record.getMessage() for record in caplog.records)
    assert [entry.name for entry in store.list_entries("client")] == ["a.toml"]
    assert index_service.incremental_sync().status == IndexStatus.UP_TO_DATE


def test_verify_index_reports_drift(frp_dir):
    stale = _write_client(frp_dir, "stale.toml")
    missing = _write_client(frp_dir, "missing.toml")
    _write_client(frp_dir, "ok.toml")
    index_service.rebuild()

    stale.write_text('serverAddr = "10.9.9.9"\n', encoding="utf-8")
    missing.unlink()
    new = _write_client(frp_dir, "new.toml")
    report = index_service.verify_index()

    assert report.ok is False
    assert report.stale == [str(stale.resolve())]
    assert report.missing == [str(missing.resolve())]
    assert report.unindexed == [str(new.resolve())]


def test_verify_index_clean(frp_dir):
    _write_client(frp_dir, "a.toml")
    index_service.rebuild()

    assert index_service.verify_index().ok is True


def test_index_file_upserts_single_entry(frp_dir):
    path = _write_server(frp_dir, "frps.toml", port=7500)

    entry = index_service.index_file(path)

    assert entry.kind == "server"
    assert store.get_entry(str(path.resolve())).bind_port == 7500


def test_clear_index_removes_database(frp_dir):
    _write_client(frp_dir, "a.toml")
    index_service.rebuild()

    assert index_service.clear_index() is True
    assert index_service.clear_index() is False
