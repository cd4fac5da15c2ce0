from __future__ import annotations

import json
import logging
import time
from uuid import uuid4

from memrelay.app.observability.contracts import ChatTrace, StageTrace

CHAT_EVENT_PREFIX = "chat_event"


def new_trace_id() -> str:
    return f"trace-{uuid4().hex[:10]}"


def stage_trace(
    stage: str,
    started_at: float,
    *,
    status: str = "ok",
    error_class: str | None = None,
) -> StageTrace:
    elapsed_ms = int((time.perf_counter() - started_at) * 1000)
    return StageTrace(
        stage=stage,
        latency_ms=max(elapsed_ms, 0),
        status=status,
        error_class=error_class,
    )


def emit_chat_telemetry(
    trace: ChatTrace,
    logger: logging.Logger | None = None,
) -> None:
    active_logger = logger or logging.getLogger(__name__)
    base = {
        "trace_id": trace.trace_id,
        "session_id": trace.session_id,
        "model": trace.model,
    }
    for stage in trace.stages:
        payload = {
            **base,
            "stage": stage.stage,
            "status": stage.status,
            "latency_ms": stage.latency_ms,
        }
        if stage.error_class:
            payload["error_class"] = stage.error_class
        active_logger.info("%s %s", CHAT_EVENT_PREFIX, json.dumps(payload, sort_keys=True))

    summary = {
        **base,
        "stage": "completed",
        "status": trace.status,
        "context_used": trace.context_used,
        "history_degraded": trace.history_degraded,
        "latency_ms": trace.latency_ms,
    }
    active_logger.info("%s %s", CHAT_EVENT_PREFIX, json.dumps(summary, sort_keys=True))
