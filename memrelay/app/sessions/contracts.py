from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Protocol

ROLE_USER = "user"
ROLE_ASSISTANT = "assistant"
TURN_ROLES = (ROLE_USER, ROLE_ASSISTANT)


@dataclass(frozen=True)
class Turn:
    session_id: str
    role: str
    text: str
    model_used: str | None = None
    tokens_used: int | None = None
    created_at: datetime | None = None


@dataclass(frozen=True)
class SessionHistory:
    """Chronological turns for one session.

    A failed read is represented as an empty history with ``degraded`` set;
    callers treat it exactly like a session with no prior turns.
    """

    session_id: str
    turns: tuple[Turn, ...]
    degraded: bool = False

    @property
    def is_empty(self) -> bool:
        return not self.turns


@dataclass(frozen=True)
class AppendAck:
    session_id: str
    role: str
    turn_id: int | str | None = None
    created_at: datetime | None = None


class SessionWriteError(RuntimeError):
    def __init__(self, session_id: str, role: str, cause: Exception) -> None:
        super().__init__(
            f"Failed to persist {role} turn for session {session_id!r}: "
            f"{cause.__class__.__name__}"
        )
        self.session_id = session_id
        self.role = role
        self.cause = cause


class SessionBackend(Protocol):
    """Raw storage for turns. Backends raise on failure; they never soften."""

    async def fetch_recent(self, session_id: str, limit: int) -> list[Turn]:
        """Return up to ``limit`` turns, newest first."""
        ...

    async def insert(self, turn: Turn) -> AppendAck: ...
