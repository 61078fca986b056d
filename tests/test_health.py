import pytest
from fastapi.testclient import TestClient

from access_core.core import health
from access_core.core.settings import settings
from access_core.main import app

client = TestClient(app)


def _ok():
    async def _check():
        return {"status": "ok"}

    return _check


def test_live_is_always_ok() -> None:
    resp = client.get("/api/v1/health/live")
    assert resp.status_code == 200
    assert resp.json()["status"] == "ok"


def test_ready_when_dependencies_are_up(monkeypatch) -> None:
    monkeypatch.setattr(health, "_check_db", _ok())
    monkeypatch.setattr(health, "_check_redis", _ok())

    resp = client.get("/api/v1/health/ready")

    assert resp.status_code == 200
    body = resp.json()
    assert body["status"] == "ok"
    assert body["ready"] is True
    assert body["checks"]["scheduler"] == {"status": "ok", "enabled": False}


def test_ready_degraded_when_database_is_down(monkeypatch) -> None:
    async def _db_down():
        return {"status": "error", "error": "connection refused"}

    monkeypatch.setattr(health, "_check_db", _db_down)
    monkeypatch.setattr(health, "_check_redis", _ok())

    resp = client.get("/api/v1/health/ready")

    assert resp.status_code == 503
    body = resp.json()
    assert body["status"] == "degraded"
    assert body["checks"]["database"]["status"] == "error"


def test_stopped_scheduler_is_not_ready(monkeypatch) -> None:
    monkeypatch.setattr(settings, "scheduler_enabled", True)
    assert health._check_scheduler()["status"] == "error"


@pytest.mark.parametrize(
    ("statuses", "expected"),
    [
        ({"a": "ok", "b": "ok"}, ("ok", True)),
        ({"a": "ok", "b": "error"}, ("degraded", False)),
    ],
)
def test_overall_status(statuses, expected) -> None:
    checks = {name: {"status": value} for name, value in statuses.items()}
    assert health._overall_status(checks) == expected
