from __future__ import annotations

import logging

from memrelay.app.sessions.contracts import (
    TURN_ROLES,
    AppendAck,
    SessionBackend,
    SessionHistory,
    SessionWriteError,
    Turn,
)
from memrelay.app.sessions.memory_store import (
    DisabledSessionBackend,
    InMemorySessionBackend,
)
from memrelay.core.config import AppConfig

LOGGER = logging.getLogger(__name__)


class SessionStore:
    """Read and append turns with asymmetric failure handling.

    Reads never raise: a backend fault is logged and surfaces as an empty,
    degraded history. Writes raise ``SessionWriteError`` so a lost turn is
    never silent.
    """

    def __init__(self, backend: SessionBackend) -> None:
        self._backend = backend

    @property
    def backend(self) -> SessionBackend:
        return self._backend

    async def read_recent(self, session_id: str, limit: int) -> SessionHistory:
        if limit <= 0:
            return SessionHistory(session_id=session_id, turns=())
        try:
            newest_first = await self._backend.fetch_recent(session_id, limit)
        except Exception as exc:  # noqa: BLE001
            LOGGER.warning(
                "Session history read failed; continuing without context",
                extra={"session_id": session_id},
                exc_info=exc,
            )
            return SessionHistory(session_id=session_id, turns=(), degraded=True)
        chronological = tuple(reversed(newest_first[:limit]))
        return SessionHistory(session_id=session_id, turns=chronological)

    async def append(
        self,
        session_id: str,
        role: str,
        text: str,
        model_used: str | None,
        tokens_used: int | None = None,
    ) -> AppendAck:
        if role not in TURN_ROLES:
            raise ValueError(f"Unsupported turn role: {role!r}")
        turn = Turn(
            session_id=session_id,
            role=role,
            text=text,
            model_used=model_used,
            tokens_used=tokens_used,
        )
        try:
            return await self._backend.insert(turn)
        except Exception as exc:
            raise SessionWriteError(session_id, role, exc) from exc


def build_session_store(config: AppConfig) -> SessionStore:
    backend = config.session_store_backend
    if backend == "disabled":
        return SessionStore(DisabledSessionBackend())
    if backend == "supabase":
        if config.supabase_url and config.supabase_key:
            from memrelay.app.sessions.supabase_store import SupabaseSessionBackend

            return SessionStore(
                SupabaseSessionBackend(
                    supabase_url=config.supabase_url,
                    supabase_key=config.supabase_key,
                    table_name=config.sessions_table,
                )
            )
        LOGGER.warning(
            "Supabase session store requested without SUPABASE_URL/SUPABASE_KEY; "
            "falling back to in-memory store"
        )
    return SessionStore(InMemorySessionBackend())
