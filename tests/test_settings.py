"""Settings file, encrypted secrets and the admin CLI commands."""

import json

import pytest

import lawcal_config
from lawcal.settings import SettingsManager


@pytest.fixture
def manager(tmp_path):
    return SettingsManager(config_dir=tmp_path / "cfg")


def test_plain_settings_persist(manager, tmp_path):
    manager.set("database_path", "/srv/calendar.db")
    reloaded = SettingsManager(config_dir=tmp_path / "cfg")
    assert reloaded.get("database_path") == "/srv/calendar.db"
    reloaded.delete("database_path")
    assert reloaded.get("database_path") is None


def test_lists_are_stored_as_json_strings(manager):
    manager.set_list("mru_court_name", ["Family Court", "District Court"])
    assert isinstance(manager.get("mru_court_name"), str)
    assert manager.get_list("mru_court_name") == ["Family Court", "District Court"]

    manager.set("mru_reviewer", "{not json")
    assert manager.get_list("mru_reviewer") == []
    manager.set("mru_lawyers", json.dumps({"a": 1}))
    assert manager.get_list("mru_lawyers") == []
    assert manager.get_list("missing") == []


def test_secrets_are_encrypted_on_disk(manager):
    manager.set_secret("admin_password", "hunter2")
    assert manager.get_secret("admin_password") == "hunter2"
    assert b"hunter2" not in manager.paths.secrets_file.read_bytes()

    manager.delete_secret("admin_password")
    assert manager.get_secret("admin_password") is None


def test_wrong_passphrase_cannot_read_secrets(manager):
    manager.set_secret("admin_password", "hunter2")
    with pytest.raises(RuntimeError):
        manager.get_secret("admin_password", passphrase="other-key")


@pytest.mark.parametrize(
    "raw,expected",
    [
        ("sqlite:////var/lib/calendar.db", "/var/lib/calendar.db"),
        ("sqlite:///calendar.db", "calendar.db"),
        ("  /tmp/calendar.db ", "/tmp/calendar.db"),
        ("", ""),
    ],
)
def test_database_path_from(raw, expected):
    assert lawcal_config.database_path_from(raw) == expected


@pytest.fixture
def restore_config():
    saved = (lawcal_config.DATABASE, lawcal_config.ADMIN_PASSWORD)
    yield
    lawcal_config.DATABASE, lawcal_config.ADMIN_PASSWORD = saved


def test_cli_sets_admin_password(flask_app, restore_config):
    runner = flask_app.test_cli_runner()
    result = runner.invoke(args=["set-admin-password"], input="n3w-pass\nn3w-pass\n")
    assert result.exit_code == 0, result.output
    assert "Admin password updated." in result.output
    assert lawcal_config.ADMIN_PASSWORD == "n3w-pass"
    assert flask_app.config["ADMIN_PASSWORD"] == "n3w-pass"

    client = flask_app.test_client()
    assert client.post("/api/auth/login", json={"password": "n3w-pass"}).status_code == 200


def test_cli_sets_database(flask_app, restore_config, tmp_path):
    target = tmp_path / "moved" / "calendar.db"
    runner = flask_app.test_cli_runner()
    result = runner.invoke(args=["set-database", f"sqlite:///{target}"])
    assert result.exit_code == 0, result.output
    assert lawcal_config.DATABASE == str(target)
    assert flask_app.config["DATABASE"] == str(target)
    assert target.exists()
