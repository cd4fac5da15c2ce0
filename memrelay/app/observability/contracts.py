from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class StageTrace:
    stage: str
    latency_ms: int
    status: str
    error_class: str | None = None


@dataclass(frozen=True)
class ChatTrace:
    trace_id: str
    session_id: str
    model: str | None
    status: str
    context_used: bool
    history_degraded: bool
    latency_ms: int
    stages: tuple[StageTrace, ...]
