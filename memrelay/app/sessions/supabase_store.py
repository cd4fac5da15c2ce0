from __future__ import annotations

import asyncio
from datetime import datetime
from typing import Any

from supabase import Client, create_client

from memrelay.app.sessions.contracts import AppendAck, Turn

SESSION_COLUMNS = "id, session_id, role, message_text, model_used, tokens_used, created_at"


class SupabaseSessionBackend:
    """Turn table on Postgres, reached through the Supabase REST client.

    The client is built once and shared by every request; it keeps its own
    HTTP connection pool. Its calls block, so they run on a worker thread.
    """

    def __init__(self, supabase_url: str, supabase_key: str, table_name: str) -> None:
        self._table_name = table_name
        self._client: Client = create_client(supabase_url, supabase_key)

    async def fetch_recent(self, session_id: str, limit: int) -> list[Turn]:
        return await asyncio.to_thread(self._fetch_recent_sync, session_id, limit)

    async def insert(self, turn: Turn) -> AppendAck:
        return await asyncio.to_thread(self._insert_sync, turn)

    def _fetch_recent_sync(self, session_id: str, limit: int) -> list[Turn]:
        response = (
            self._client.table(self._table_name)
            .select(SESSION_COLUMNS)
            .eq("session_id", session_id)
            .order("created_at", desc=True)
            .order("id", desc=True)
            .limit(limit)
            .execute()
        )
        rows = response.data
        if not isinstance(rows, list):
            return []
        return [_row_to_turn(row) for row in rows if isinstance(row, dict)]

    def _insert_sync(self, turn: Turn) -> AppendAck:
        response = (
            self._client.table(self._table_name)
            .insert(
                {
                    "session_id": turn.session_id,
                    "role": turn.role,
                    "message_text": turn.text,
                    "model_used": turn.model_used,
                    "tokens_used": turn.tokens_used,
                }
            )
            .execute()
        )
        rows = response.data
        row = rows[0] if isinstance(rows, list) and rows else None
        if not isinstance(row, dict):
            return AppendAck(session_id=turn.session_id, role=turn.role)
        return AppendAck(
            session_id=turn.session_id,
            role=turn.role,
            turn_id=row.get("id"),
            created_at=_parse_timestamp(row.get("created_at")),
        )


def _row_to_turn(row: dict[str, Any]) -> Turn:
    text = row.get("message_text")
    tokens_used = row.get("tokens_used")
    model_used = row.get("model_used")
    return Turn(
        session_id=str(row.get("session_id") or ""),
        role=str(row.get("role") or ""),
        text=text if isinstance(text, str) else "",
        model_used=model_used if isinstance(model_used, str) else None,
        tokens_used=tokens_used if isinstance(tokens_used, int) else None,
        created_at=_parse_timestamp(row.get("created_at")),
    )


def _parse_timestamp(value: object) -> datetime | None:
    if not isinstance(value, str) or not value.strip():
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
