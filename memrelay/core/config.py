from __future__ import annotations

import os
from dataclasses import dataclass

PERSIST_FAILURE_POLICIES = {"propagate", "log"}
SESSION_STORE_BACKENDS = {"supabase", "memory", "disabled"}


@dataclass(frozen=True)
class AppConfig:
    app_name: str
    app_version: str
    environment: str
    log_level: str
    llm_enabled: bool
    llm_mode: str
    llm_base_url: str
    llm_default_model: str
    llm_timeout_seconds: float
    history_limit: int
    default_session_id: str
    session_store_backend: str
    supabase_url: str | None
    supabase_key: str | None
    sessions_table: str
    persist_failure_policy: str
    serialize_session_requests: bool


def _read_optional_env(name: str) -> str | None:
    value = os.getenv(name)
    if not value:
        return None
    stripped = value.strip()
    return stripped if stripped else None


def _read_str_env(name: str, default: str) -> str:
    return _read_optional_env(name) or default


def _read_bool_env(name: str, default: bool) -> bool:
    value = _read_optional_env(name)
    if value is None:
        return default
    normalized = value.lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    return default


def _read_int_env(name: str, default: int) -> int:
    value = _read_optional_env(name)
    if value is None:
        return default
    try:
        parsed = int(value)
    except ValueError:
        return default
    return parsed if parsed > 0 else default


def _read_float_env(name: str, default: float) -> float:
    value = _read_optional_env(name)
    if value is None:
        return default
    try:
        parsed = float(value)
    except ValueError:
        return default
    return parsed if parsed > 0 else default


def _read_choice_env(name: str, default: str, choices: set[str]) -> str:
    value = _read_optional_env(name)
    if value is None:
        return default
    normalized = value.lower()
    return normalized if normalized in choices else default


def load_app_config() -> AppConfig:
    supabase_url = _read_optional_env("SUPABASE_URL")
    supabase_key = _read_optional_env("SUPABASE_KEY")
    default_backend = "supabase" if supabase_url and supabase_key else "memory"
    return AppConfig(
        app_name=_read_str_env("APP_NAME", "memrelay"),
        app_version=_read_str_env("APP_VERSION", "0.1.0"),
        environment=_read_str_env("APP_ENV", "development"),
        log_level=_read_str_env("LOG_LEVEL", "INFO").upper(),
        llm_enabled=_read_bool_env("LLM_ENABLED", default=True),
        llm_mode=_read_str_env("LLM_MODE", "prod").lower(),
        llm_base_url=_read_str_env(
            "LLM_BASE_URL", "http://host.docker.internal:11434"
        ),
        llm_default_model=_read_str_env("LLM_DEFAULT_MODEL", "deepseek-r1:70b"),
        llm_timeout_seconds=_read_float_env("LLM_TIMEOUT_SECONDS", default=120.0),
        history_limit=_read_int_env("CHAT_HISTORY_LIMIT", default=10),
        default_session_id=_read_str_env("DEFAULT_SESSION_ID", "default"),
        session_store_backend=_read_choice_env(
            "SESSION_STORE_BACKEND", default_backend, SESSION_STORE_BACKENDS
        ),
        supabase_url=supabase_url,
        supabase_key=supabase_key,
        sessions_table=_read_str_env("SESSIONS_TABLE", "ai_sessions"),
        persist_failure_policy=_read_choice_env(
            "PERSIST_FAILURE_POLICY", "propagate", PERSIST_FAILURE_POLICIES
        ),
        serialize_session_requests=_read_bool_env(
            "SERIALIZE_SESSION_REQUESTS", default=False
        ),
    )
