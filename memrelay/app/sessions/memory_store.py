from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone

from memrelay.app.sessions.contracts import AppendAck, Turn


@dataclass
class InMemorySessionBackend:
    """Process-local turn table with auto-increment ids.

    ``created_at`` is strictly increasing even when the wall clock does not
    advance between two inserts, so ordering by it is always total.
    """

    rows: list[tuple[int, Turn]] = field(default_factory=list)
    _next_id: int = 1
    _last_created_at: datetime | None = None

    async def fetch_recent(self, session_id: str, limit: int) -> list[Turn]:
        matching = [turn for _, turn in self.rows if turn.session_id == session_id]
        matching.sort(key=lambda turn: turn.created_at, reverse=True)
        return matching[:limit]

    async def insert(self, turn: Turn) -> AppendAck:
        created_at = self._next_timestamp()
        turn_id = self._next_id
        self._next_id += 1
        self.rows.append((turn_id, replace(turn, created_at=created_at)))
        return AppendAck(
            session_id=turn.session_id,
            role=turn.role,
            turn_id=turn_id,
            created_at=created_at,
        )

    def clear(self) -> None:
        self.rows.clear()
        self._next_id = 1
        self._last_created_at = None

    def _next_timestamp(self) -> datetime:
        now = datetime.now(timezone.utc)
        if self._last_created_at is not None and now <= self._last_created_at:
            now = self._last_created_at + timedelta(microseconds=1)
        self._last_created_at = now
        return now


class DisabledSessionBackend:
    async def fetch_recent(self, session_id: str, limit: int) -> list[Turn]:
        _ = session_id
        _ = limit
        return []

    async def insert(self, turn: Turn) -> AppendAck:
        return AppendAck(session_id=turn.session_id, role=turn.role)
