from datetime import datetime

from fastapi.testclient import TestClient

from memrelay.app.api.app import create_app
from memrelay.app.sessions.service import SessionStore


class _ExplodingBackend:
    async def fetch_recent(self, session_id: str, limit: int):
        raise AssertionError("health must not read sessions")

    async def insert(self, turn):
        raise AssertionError("health must not write sessions")


def test_health_returns_ok_with_timestamp(app_config) -> None:
    app = create_app(app_config, session_store=SessionStore(_ExplodingBackend()))

    with TestClient(app) as client:
        response = client.get("/health")

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "ok"
    assert datetime.fromisoformat(body["timestamp"].replace("Z", "+00:00"))


def test_main_module_exposes_app() -> None:
    from main import app

    with TestClient(app) as client:
        response = client.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "ok"
