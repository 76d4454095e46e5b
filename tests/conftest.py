import pytest
from fastapi.testclient import TestClient

from tasknest.config import get_settings

from .helpers import login_headers, register


@pytest.fixture()
def client(tmp_path, monkeypatch):
    monkeypatch.setenv("TASKNEST_DATABASE_PATH", str(tmp_path / "tasknest.db"))
    monkeypatch.setenv("TASKNEST_SECRET_KEY", "test-secret")
    get_settings.cache_clear()

    from tasknest.main import app

    with TestClient(app) as c:
        yield c

    get_settings.cache_clear()


@pytest.fixture()
def auth_headers(client):
    assert register(client).status_code == 201
    return login_headers(client)
