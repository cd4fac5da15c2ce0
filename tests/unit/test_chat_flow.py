from __future__ import annotations

import json
from dataclasses import replace

import httpx
import pytest
from fastapi.testclient import TestClient

from memrelay.app.api.app import create_app
from memrelay.app.llm.contracts import PromptRequiredError
from memrelay.app.llm.providers import (
    DISABLED_RESPONSE,
    MOCK_RESPONSE,
    MockLLMClient,
    OllamaLLMClient,
)
from memrelay.app.sessions.contracts import AppendAck, Turn
from memrelay.app.sessions.memory_store import InMemorySessionBackend
from memrelay.app.sessions.service import SessionStore


class _CountingBackend(InMemorySessionBackend):
    def __init__(self, *, fail_reads: bool = False, fail_writes: bool = False) -> None:
        super().__init__()
        self._fail_reads = fail_reads
        self._fail_writes = fail_writes
        self.inserted: list[Turn] = []

    async def fetch_recent(self, session_id: str, limit: int) -> list[Turn]:
        if self._fail_reads:
            raise ConnectionError("pool exhausted")
        return await super().fetch_recent(session_id, limit)

    async def insert(self, turn: Turn) -> AppendAck:
        self.inserted.append(turn)
        if self._fail_writes:
            raise ConnectionError("insert rejected by db-host:5432")
        return await super().insert(turn)


def _ollama_app(app_config, backend, handler) -> TestClient:
    llm_client = OllamaLLMClient(
        base_url="http://ollama.test",
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
    )
    app = create_app(
        replace(app_config, llm_mode="prod"),
        session_store=SessionStore(backend),
        llm_client=llm_client,
    )
    return TestClient(app)


def test_chat_with_memory_returns_contract_fields(app_config) -> None:
    backend = _CountingBackend()
    app = create_app(app_config, session_store=SessionStore(backend))

    with TestClient(app) as client:
        response = client.post(
            "/chat-with-memory",
            json={"message": "Hello", "sessionId": "unit-test-session"},
        )

    assert response.status_code == 200
    assert response.json() == {
        "response": MOCK_RESPONSE,
        "sessionId": "unit-test-session",
        "model": "default-model",
        "contextUsed": False,
        "evalCount": 0,
        "llmDisabled": False,
    }
    assert [(turn.role, turn.model_used) for turn in backend.inserted] == [
        ("user", "default-model"),
        ("assistant", "default-model"),
    ]


def test_chat_alias_and_default_session(app_config) -> None:
    llm = MockLLMClient()
    app = create_app(app_config, llm_client=llm)

    with TestClient(app) as client:
        first = client.post("/chat", json={"message": "Hi"})
        second = client.post("/chat-with-memory", json={"message": "Again"})

    assert first.status_code == 200
    assert first.json()["sessionId"] == "default"
    assert second.json()["contextUsed"] is True
    assert llm.calls[1]["prompt"] == f"user: Hi\nassistant: {MOCK_RESPONSE}\nuser: Again"


def test_live_backend_receives_prompt_and_zero_options(app_config) -> None:
    captured: list[dict[str, object]] = []

    def handler(request: httpx.Request) -> httpx.Response:
        captured.append(json.loads(request.content))
        return httpx.Response(
            200, json={"response": "Привет! Чем могу помочь?", "eval_count": 128}
        )

    backend = _CountingBackend()
    with _ollama_app(app_config, backend, handler) as client:
        response = client.post(
            "/chat-with-memory",
            json={
                "message": "Расскажи мне что-нибудь",
                "sessionId": "s-zero",
                "model": "test-model",
                "options": {"temperature": 0, "top_p": 0},
            },
        )

    assert response.status_code == 200
    assert response.json()["evalCount"] == 128
    assert response.json()["model"] == "test-model"
    assert captured == [
        {
            "model": "test-model",
            "prompt": "user: Расскажи мне что-нибудь",
            "stream": False,
            "options": {"temperature": 0, "top_p": 0},
        }
    ]
    assert backend.inserted[1].tokens_used == 128


def test_generation_failure_returns_500_without_writes(app_config) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(503, text="upstream overloaded: secret-host:11434")

    backend = _CountingBackend()
    with _ollama_app(app_config, backend, handler) as client:
        response = client.post("/chat-with-memory", json={"message": "Hello"})

    assert response.status_code == 500
    assert response.json() == {"error": "Language model generation failed"}
    assert backend.inserted == []


def test_history_failure_still_answers(app_config) -> None:
    backend = _CountingBackend(fail_reads=True)
    app = create_app(app_config, session_store=SessionStore(backend))

    with TestClient(app) as client:
        response = client.post(
            "/chat-with-memory", json={"message": "Hello", "sessionId": "s-1"}
        )

    assert response.status_code == 200
    assert response.json()["contextUsed"] is False
    assert len(backend.inserted) == 2


def test_persistence_failure_returns_500(app_config) -> None:
    backend = _CountingBackend(fail_writes=True)
    app = create_app(app_config, session_store=SessionStore(backend))

    with TestClient(app) as client:
        response = client.post(
            "/chat-with-memory", json={"message": "Hello", "sessionId": "s-1"}
        )

    assert response.status_code == 500
    assert response.json() == {"error": "Failed to save conversation turn"}
    assert [turn.role for turn in backend.inserted] == ["user"]


def test_disabled_llm_reports_placeholder(app_config) -> None:
    app = create_app(replace(app_config, llm_enabled=False, llm_mode="prod"))

    with TestClient(app) as client:
        response = client.post("/chat-with-memory", json={"message": "Hello"})

    assert response.status_code == 200
    assert response.json()["llmDisabled"] is True
    assert response.json()["response"] == DISABLED_RESPONSE
    assert response.json()["evalCount"] is None


@pytest.mark.parametrize(
    "payload",
    [
        {},
        {"message": ""},
        {"sessionId": "s-1"},
        {"message": 5},
        {"message": "Hello", "options": "hot"},
    ],
)
def test_invalid_requests_return_400(app_config, payload: dict[str, object]) -> None:
    backend = _CountingBackend()
    app = create_app(app_config, session_store=SessionStore(backend))

    with TestClient(app) as client:
        response = client.post("/chat-with-memory", json=payload)

    assert response.status_code == 400
    assert isinstance(response.json()["error"], str)
    assert backend.inserted == []


def test_malformed_json_returns_400(app_config) -> None:
    app = create_app(app_config)

    with TestClient(app) as client:
        response = client.post(
            "/chat-with-memory",
            content=b"{not json",
            headers={"Content-Type": "application/json"},
        )

    assert response.status_code == 400
    assert "error" in response.json()


def test_unclassified_failures_hide_internal_details(app_config) -> None:
    class _BrokenClient(MockLLMClient):
        async def generate(self, prompt, *, model, options=None, context=None):
            raise PromptRequiredError()

    app = create_app(app_config, llm_client=_BrokenClient())

    with TestClient(app, raise_server_exceptions=False) as client:
        response = client.post("/chat-with-memory", json={"message": "Hello"})

    assert response.status_code == 500
    assert response.json() == {"error": "Internal server error"}


def test_app_state_exposes_collaborators(app_config) -> None:
    store = SessionStore(InMemorySessionBackend())
    app = create_app(app_config, session_store=store)

    assert app.state.session_store is store
    assert isinstance(app.state.llm_client, MockLLMClient)
