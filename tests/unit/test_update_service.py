from __future__ import annotations

import json
import os
import tomllib
from pathlib import Path

import pytest

import frpfleet.store as store
from frpfleet import config as config_module
from frpfleet.services import update_service
from frpfleet.services.index_service import rebuild
from frpfleet.services.update_service import BulkUpdateError


@pytest.fixture()
def frp_dir(tmp_path, monkeypatch):
    monkeypatch.setattr(store, "DATA_DIR", tmp_path / "data")
    monkeypatch.setattr(config_module, "CONFIG_DIR", tmp_path / "config")
    monkeypatch.setattr(config_module, "CONFIG_FILE", tmp_path / "config" / "config.json")
    root = tmp_path / "frp"
    root.mkdir()
    monkeypatch.setenv(config_module.ENV_FRP_CONFIG_DIR, str(root))
    return root


CLIENT = """\
# office gateway
serverAddr = "10.0.0.1"
serverPort = 7000

[auth]
token = "client-token"

[[proxies]]
name = "ssh"
type = "tcp"
localPort = 22
"""


def _client(root: Path, name: str, text: str = CLIENT) -> Path:
    path = root / name
    path.write_text(text, encoding="utf-8")
    return path


def test_set_toml_value_replaces_top_level_key():
    updated = update_service.set_toml_value(CLIENT, "serverAddr", '"10.9.9.9"')

    assert tomllib.loads(updated)["serverAddr"] == "10.9.9.9"
    assert "# office gateway" in updated
    assert updated.count("serverAddr") == 1


def test_set_toml_value_replaces_key_in_table():
    updated = update_service.set_toml_value(CLIENT, "auth.token", '"rotated-token"')

    document = tomllib.loads(updated)
    assert document["auth"]["token"] == "rotated-token"
    assert document["proxies"][0]["name"] == "ssh"


def test_set_toml_value_inserts_missing_top_level_key_before_tables():
    updated = update_service.set_toml_value(CLIENT, "loginFailExit", "false")

    document = tomllib.loads(updated)
    assert document["loginFailExit"] is False
    assert "loginFailExit" not in document["auth"]


def test_set_toml_value_inserts_under_existing_table():
    updated = update_service.set_toml_value(CLIENT, "auth.method", '"token"')

    assert tomllib.loads(updated)["auth"] == {"token": "client-token", "method": "token"}


def test_set_toml_value_does_not_touch_array_tables():
    text = 'serverPort = 7000\n\n[[proxies]]\nname = "a"\nlocalPort = 22\n'

    updated = update_service.set_toml_value(text, "localPort", "2222")

    document = tomllib.loads(updated)
    assert document["localPort"] == 2222
    assert document["proxies"][0]["localPort"] == 22


def test_set_toml_value_handles_dotted_top_level_key():
    text = 'serverAddr = "10.0.0.1"\nauth.token = "old"\n'

    updated = update_service.set_toml_value(text, "auth.token", '"new-token"')

    assert tomllib.loads(updated)["auth"]["token"] == "new-token"


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("8000", "8000"),
        ("true", "true"),
        ('"quoted"', '"quoted"'),
        ("10.0.0.5", '"10.0.0.5"'),
        ("plain text", '"plain text"'),
        (True, "true"),
        (42, "42"),
    ],
)
def test_format_toml_value(raw, expected):
    assert update_service.format_toml_value(raw) == expected


def test_validate_field_name():
    assert update_service.validate_field_name("auth.token") == "auth.token"
    with pytest.raises(ValueError):
        update_service.validate_field_name("bad key")
    with pytest.raises(ValueError, match="proxy definitions"):
        update_service.validate_field_name("proxies.localPort")


def test_validate_config_text_flags_problems():
    errors = update_service.validate_config_text(
        'serverAddr = "not a host!"\nserverPort = 70000\n[auth]\ntoken = ""\n', "a.toml"
    )

    assert len(errors) == 3


def test_validate_config_text_short_server_token():
    errors = update_service.validate_config_text('bindPort = 7000\n[auth]\ntoken = "short"\n', "frps.toml")

    assert errors == [update_service.Messages.ERROR_VALIDATION_TOKEN_SHORT.format(length=8)]


def test_bulk_update_writes_all_files_and_reindexes(frp_dir):
    files = [_client(frp_dir, f"c{idx}.toml") for idx in range(3)]
    rebuild()

    result = update_service.bulk_update_field("serverAddr", "203.0.113.9", ["all"])

    assert result.files_changed == 3
    assert len(result.backups) == 3
    for path in files:
        text = path.read_text(encoding="utf-8")
        assert tomllib.loads(text)["serverAddr"] == "203.0.113.9"
        assert "# office gateway" in text
        assert store.get_entry(str(path.resolve())).server_address == "203.0.113.9"
    change = result.edits[0].changes[0]
    assert change.old_value == "10.0.0.1"
    assert change.new_value == '"203.0.113.9"'


def test_dry_run_leaves_files_untouched(frp_dir):
    path = _client(frp_dir, "a.toml")
    rebuild()
    before = path.read_bytes()

    result = update_service.bulk_update_field("serverPort", "7100", ["all"], dry_run=True)

    assert result.dry_run is True
    assert result.files_changed == 1
    assert result.backups == []
    assert path.read_bytes() == before
    assert not (store.DATA_DIR / update_service.BACKUP_DIRNAME).exists()


def test_invalid_value_rolls_back_everything(frp_dir):
    files = [_client(frp_dir, f"c{idx}.toml") for idx in range(3)]
    rebuild()
    originals = [path.read_bytes() for path in files]

    with pytest.raises(BulkUpdateError) as exc:
        update_service.bulk_update_field("auth.token", "", ["all"])

    assert len(exc.value.errors) == 3
    assert [path.read_bytes() for path in files] == originals


def test_validation_failure_in_one_file_aborts_all(frp_dir):
    good = _client(frp_dir, "good.toml")
    bad = _client(frp_dir, "frps-bad.toml", 'bindPort = 7000\n[auth]\ntoken = "long-enough-token"\n')
    rebuild()
    originals = {good: good.read_bytes(), bad: bad.read_bytes()}

    with pytest.raises(BulkUpdateError) as exc:
        update_service.bulk_update_field("auth.token", "tiny", ["all"])

    assert [path for path, _ in exc.value.errors] == [str(bad.resolve())]
    assert {path: path.read_bytes() for path in originals} == originals


def test_write_failure_restores_written_files(frp_dir, monkeypatch):
    files = [_client(frp_dir, f"c{idx}.toml") for idx in range(3)]
    rebuild()
    originals = [path.read_bytes() for path in files]
    real_write = update_service._write_atomic
    writes = []

    def flaky_write(path, text):
        writes.append(path)
        if len(writes) == 2:
            raise OSError("disk full")
        real_write(path, text)

    monkeypatch.setattr(update_service, "_write_atomic", flaky_write)

    with pytest.raises(BulkUpdateError, match="disk full"):
        update_service.bulk_update_field("serverPort", "7100", ["all"])

    assert [path.read_bytes() for path in files] == originals


def test_concurrent_change_is_detected(frp_dir):
    path = _client(frp_dir, "a.toml")
    rebuild()
    edits, errors = update_service.stage_updates(
        [update_service.FieldUpdate("serverPort", "7100", ("all",))]
    )
    assert errors == []
    path.write_text(CLIENT.replace("7000", "7001"), encoding="utf-8")

    with pytest.raises(BulkUpdateError, match="changed on disk"):
        update_service.commit_edits(edits)


def test_no_matches_is_empty_result(frp_dir):
    _client(frp_dir, "a.toml")
    rebuild()

    result = update_service.bulk_update_field("serverPort", "7100", ["name:nothing-like-this"])

    assert result.files_changed == 0


def test_unchanged_value_produces_no_edit(frp_dir):
    _client(frp_dir, "a.toml")
    rebuild()

    result = update_service.bulk_update_field("serverPort", "7000", ["all"])

    assert result.files_changed == 0
    assert result.backups == []


def test_backups_keep_newest_ten(tmp_path):
    source = tmp_path / "a.toml"
    source.write_text("serverPort = 7000\n", encoding="utf-8")
    backups = tmp_path / "backups"
    backups.mkdir()

    created = []
    for idx in range(12):
        path = update_service.create_backup(source, directory=backups)
        os.utime(path, ns=(idx * 1_000_000_000, idx * 1_000_000_000))
        created.append(path)

    remaining = sorted(backups.glob("a.toml.*.bak"))
    assert len(remaining) == 10
    assert created[0] not in remaining
    assert created[-1] in remaining


def test_list_backups_newest_first(tmp_path):
    backups = tmp_path / "backups"
    backups.mkdir()
    source = tmp_path / "a.toml"
    other = tmp_path / "b.toml"
    source.write_text("serverPort = 7000\n", encoding="utf-8")
    other.write_text("serverPort = 7100\n", encoding="utf-8")
    older = update_service.create_backup(source, directory=backups)
    newer = update_service.create_backup(source, directory=backups)
    foreign = update_service.create_backup(other, directory=backups)
    os.utime(older, ns=(1_000_000_000, 1_000_000_000))
    os.utime(newer, ns=(2_000_000_000, 2_000_000_000))
    os.utime(foreign, ns=(3_000_000_000, 3_000_000_000))

    assert update_service.list_backups(source, directory=backups) == [newer, older]
    assert update_service.list_backups(directory=backups) == [foreign, newer, older]


def test_restore_backup_undoes_bulk_update(frp_dir):
    office = _client(frp_dir, "office.toml")
    rebuild()
    result = update_service.bulk_update_field("serverAddr", "203.0.113.9", ["name:office"])
    [saved] = result.backups

    previous = update_service.restore_backup(saved.name, office)

    assert office.read_text(encoding="utf-8") == CLIENT
    assert store.get_entry(str(office.resolve())).server_address == "10.0.0.1"
    assert previous is not None
    assert "203.0.113.9" in previous.read_text(encoding="utf-8")
    assert update_service.list_backups(office)[0] == previous


def test_restore_backup_rejects_invalid_copy(frp_dir):
    office = _client(frp_dir, "office.toml")
    rebuild()
    broken = update_service.backup_dir() / "office.toml.20260101-000000.bak"
    broken.write_text("serverPort = 99999\n", encoding="utf-8")

    with pytest.raises(ValueError, match="not a valid config"):
        update_service.restore_backup(broken, office)

    assert office.read_text(encoding="utf-8") == CLIENT
    assert update_service.list_backups(office) == [broken]


def test_restore_backup_unknown_name(frp_dir):
    with pytest.raises(FileNotFoundError, match="No backup named"):
        update_service.restore_backup("missing.toml.bak", frp_dir / "office.toml")


def test_bulk_update_from_file_applies_together(frp_dir, tmp_path):
    office = _client(frp_dir, "office.toml")
    home = _client(frp_dir, "home.toml")
    rebuild()
    updates = tmp_path / "updates.json"
    updates.write_text(
        json.dumps(
            {
                "updates": [
                    {"field": "serverPort", "value": 7443, "filter": "name:office"},
                    {"field": "serverAddr", "value": "198.51.100.4", "filters": ["all"]},
                ]
            }
        ),
        encoding="utf-8",
    )

    result = update_service.bulk_update_from_file(updates)

    assert result.files_changed == 2
    office_doc = tomllib.loads(office.read_text(encoding="utf-8"))
    home_doc = tomllib.loads(home.read_text(encoding="utf-8"))
    assert office_doc["serverPort"] == 7443
    assert home_doc["serverPort"] == 7000
    assert office_doc["serverAddr"] == home_doc["serverAddr"] == "198.51.100.4"


def test_load_updates_file_rejects_bad_payload(tmp_path):
    path = tmp_path / "updates.json"
    path.write_text(json.dumps({"updates": [{"field": "serverPort"}]}), encoding="utf-8")

    with pytest.raises(ValueError, match="'field' and 'value'"):
        update_service.load_updates_file(path)


def test_load_updates_file_requires_filter(frp_dir, tmp_path):
    office = _client(frp_dir, "office.toml")
    rebuild()
    path = tmp_path / "updates.json"
    path.write_text(
        json.dumps({"updates": [{"field": "serverPort", "value": 7443}]}),
        encoding="utf-8",
    )
    before = office.read_text(encoding="utf-8")

    with pytest.raises(ValueError, match="has no filter"):
        update_service.bulk_update_from_file(path)

    assert office.read_text(encoding="utf-8") == before


def test_load_updates_file_accepts_explicit_all(tmp_path):
    path = tmp_path / "updates.json"
    path.write_text(
        json.dumps({"updates": [{"field": "serverPort", "value": 7443, "filter": "all"}]}),
        encoding="utf-8",
    )

    [update] = update_service.load_updates_file(path)

    assert update.filters == ("all",)
