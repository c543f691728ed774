"""Shared fixtures: every test gets its own SQLite file and settings directory."""

import os
import tempfile

# Settings are loaded at import time; keep them out of the real config dir.
os.environ["XDG_CONFIG_HOME"] = tempfile.mkdtemp(prefix="lawcal-test-")
os.environ["LAWCAL_SECRET_KEY"] = "test-secret-key"

import pytest

from app import app as flask_app_instance
from lawcal.settings import SettingsManager

ADMIN_PASSWORD = "s3cret-pass"


@pytest.fixture
def flask_app(tmp_path):
    saved = dict(flask_app_instance.config)
    flask_app_instance.config.update(
        TESTING=True,
        DATABASE=str(tmp_path / "calendar.db"),
        ADMIN_PASSWORD=ADMIN_PASSWORD,
        SESSION_COOKIE_SECURE=False,
        MRU_BACKEND=SettingsManager(config_dir=tmp_path / "settings"),
    )
    yield flask_app_instance
    flask_app_instance.config.clear()
    flask_app_instance.config.update(saved)


@pytest.fixture
def app_ctx(flask_app):
    with flask_app.app_context():
        yield flask_app


@pytest.fixture
def client(flask_app):
    return flask_app.test_client()


@pytest.fixture
def admin_client(client):
    resp = client.post("/api/auth/login", json={"password": ADMIN_PASSWORD})
    assert resp.status_code == 200
    return client
