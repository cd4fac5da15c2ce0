from __future__ import annotations

import pytest

from memrelay.app.sessions.memory_store import InMemorySessionBackend
from memrelay.app.sessions.service import SessionStore
from memrelay.core.config import AppConfig


@pytest.fixture
def app_config() -> AppConfig:
    return AppConfig(
        app_name="memrelay-test",
        app_version="0.0.0",
        environment="test",
        log_level="INFO",
        llm_enabled=True,
        llm_mode="mock",
        llm_base_url="http://llm.example",
        llm_default_model="default-model",
        llm_timeout_seconds=5.0,
        history_limit=10,
        default_session_id="default",
        session_store_backend="memory",
        supabase_url=None,
        supabase_key=None,
        sessions_table="ai_sessions",
        persist_failure_policy="propagate",
        serialize_session_requests=False,
    )


@pytest.fixture
def memory_backend() -> InMemorySessionBackend:
    return InMemorySessionBackend()


@pytest.fixture
def session_store(memory_backend: InMemorySessionBackend) -> SessionStore:
    return SessionStore(memory_backend)
