from fastapi.testclient import TestClient

from examguard.api import create_app
from examguard.database.relational_adapter import RelationalAdapter


def test_root_lists_endpoints():
    with TestClient(create_app(adapter=RelationalAdapter(database_url=None))) as client:
        response = client.get("/")

    assert response.status_code == 200
    assert "/health" in response.json()["endpoints"]


def test_health_with_sqlite_backend():
    adapter = RelationalAdapter(database_url="sqlite+aiosqlite://")

    with TestClient(create_app(adapter=adapter)) as client:
        response = client.get("/health")

    body = response.json()
    assert response.status_code == 200
    assert body["status"] == "healthy"
    assert body["backend"] == "relational"


def test_status_reports_unconfigured_backend():
    with TestClient(create_app(adapter=RelationalAdapter(database_url=None))) as client:
        status = client.get("/database/status").json()
        health = client.get("/health").json()

    assert status["backend"] == "relational"
    assert status["available"] is False
    assert status["details"]["database_url"] == "not configured"
    assert health["status"] == "unavailable"


def test_schema_unavailable_returns_503():
    with TestClient(create_app(adapter=RelationalAdapter(database_url=None))) as client:
        response = client.get("/database/schema")

    assert response.status_code == 503


def test_main_serves_app_with_uvicorn(monkeypatch):
    import uvicorn

    from examguard import api

    calls = []
    monkeypatch.setattr(uvicorn, "run", lambda app, **kwargs: calls.append((app, kwargs)))

    api.main(port=8100)

    assert calls == [(api.app, {"host": "0.0.0.0", "port": 8100, "log_level": "info"})]
