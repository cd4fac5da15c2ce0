from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator, Mapping
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any

from memrelay.app.chat.contracts import (
    ChatGenerationError,
    ChatPersistenceError,
    ChatReply,
    ChatStage,
    ChatValidationError,
)
from memrelay.app.llm.contracts import LLMClient, PromptRequiredError
from memrelay.app.observability.contracts import ChatTrace, StageTrace
from memrelay.app.observability.service import (
    emit_chat_telemetry,
    new_trace_id,
    stage_trace,
)
from memrelay.app.prompt.service import assemble_prompt
from memrelay.app.sessions.contracts import (
    ROLE_ASSISTANT,
    ROLE_USER,
    SessionHistory,
    SessionWriteError,
)
from memrelay.app.sessions.service import SessionStore
from memrelay.core.config import AppConfig

LOGGER = logging.getLogger(__name__)

POLICY_PROPAGATE = "propagate"
POLICY_LOG = "log"


@dataclass(frozen=True)
class ChatRequest:
    message: str
    session_id: str
    model: str
    options: dict[str, Any]


class SessionLocks:
    """Keyed asyncio locks, dropped once nobody holds or awaits them."""

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}
        self._holders: dict[str, int] = {}

    def __len__(self) -> int:
        return len(self._locks)

    @asynccontextmanager
    async def hold(self, session_id: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(session_id, asyncio.Lock())
        self._holders[session_id] = self._holders.get(session_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            remaining = self._holders[session_id] - 1
            if remaining:
                self._holders[session_id] = remaining
            else:
                self._holders.pop(session_id, None)
                self._locks.pop(session_id, None)


class ChatOrchestrator:
    """Runs one chat request: read history, prompt, generate, persist, reply.

    Nothing is written until generation succeeds, and the user turn is always
    written before the assistant turn. Both writes follow the same failure
    policy: ``propagate`` fails the request, ``log`` records the fault and
    still replies.
    """

    def __init__(
        self,
        *,
        session_store: SessionStore,
        llm_client: LLMClient,
        default_model: str,
        history_limit: int = 10,
        default_session_id: str = "default",
        persist_failure_policy: str = POLICY_PROPAGATE,
        serialize_session_requests: bool = False,
        telemetry_logger: logging.Logger | None = None,
    ) -> None:
        if persist_failure_policy not in {POLICY_PROPAGATE, POLICY_LOG}:
            raise ValueError(
                f"Unsupported persist failure policy: {persist_failure_policy!r}"
            )
        self._session_store = session_store
        self._llm_client = llm_client
        self._default_model = default_model
        self._history_limit = history_limit
        self._default_session_id = default_session_id
        self._persist_failure_policy = persist_failure_policy
        self._session_locks = SessionLocks() if serialize_session_requests else None
        self._telemetry_logger = telemetry_logger

    @classmethod
    def from_config(
        cls,
        config: AppConfig,
        *,
        session_store: SessionStore,
        llm_client: LLMClient,
    ) -> ChatOrchestrator:
        return cls(
            session_store=session_store,
            llm_client=llm_client,
            default_model=config.llm_default_model,
            history_limit=config.history_limit,
            default_session_id=config.default_session_id,
            persist_failure_policy=config.persist_failure_policy,
            serialize_session_requests=config.serialize_session_requests,
        )

    async def handle(
        self,
        *,
        message: object,
        session_id: object = None,
        model: object = None,
        options: object = None,
    ) -> ChatReply:
        request = self.validate(
            message=message, session_id=session_id, model=model, options=options
        )
        if self._session_locks is None:
            return await self._run(request)
        async with self._session_locks.hold(request.session_id):
            return await self._run(request)

    def validate(
        self,
        *,
        message: object,
        session_id: object = None,
        model: object = None,
        options: object = None,
    ) -> ChatRequest:
        if not isinstance(message, str) or not message.strip():
            raise ChatValidationError("Message is required")

        if session_id is None:
            resolved_session_id = self._default_session_id
        elif isinstance(session_id, str):
            resolved_session_id = session_id.strip() or self._default_session_id
        else:
            raise ChatValidationError("sessionId must be a string")

        if model is None:
            resolved_model = self._default_model
        elif isinstance(model, str):
            resolved_model = model.strip() or self._default_model
        else:
            raise ChatValidationError("model must be a string")

        if options is None:
            resolved_options: dict[str, Any] = {}
        elif isinstance(options, Mapping):
            resolved_options = dict(options)
        else:
            raise ChatValidationError("options must be an object")

        return ChatRequest(
            message=message,
            session_id=resolved_session_id,
            model=resolved_model,
            options=resolved_options,
        )

    async def _run(self, request: ChatRequest) -> ChatReply:
        started = time.perf_counter()
        stages: list[StageTrace] = []
        stage = ChatStage.READING_HISTORY
        stage_started = started
        history = SessionHistory(session_id=request.session_id, turns=())
        resolved_model = request.model
        status = "ok"
        try:
            history = await self._session_store.read_recent(
                request.session_id, self._history_limit
            )
            stages.append(
                stage_trace(
                    stage.value,
                    stage_started,
                    status="degraded" if history.degraded else "ok",
                )
            )

            stage, stage_started = ChatStage.ASSEMBLING, time.perf_counter()
            prompt = assemble_prompt(history.turns, request.message)
            stages.append(stage_trace(stage.value, stage_started))

            stage, stage_started = ChatStage.GENERATING, time.perf_counter()
            try:
                completion = await self._llm_client.generate(
                    prompt, model=request.model, options=request.options
                )
            except PromptRequiredError:
                raise
            except Exception as exc:
                LOGGER.exception(
                    "Language model generation failed",
                    extra={"session_id": request.session_id, "model": request.model},
                )
                raise ChatGenerationError() from exc
            stages.append(stage_trace(stage.value, stage_started))
            resolved_model = completion.model

            stage, stage_started = ChatStage.PERSISTING_USER, time.perf_counter()
            saved = await self._persist_turn(
                stage,
                session_id=request.session_id,
                role=ROLE_USER,
                text=request.message,
                model_used=resolved_model,
                tokens_used=None,
            )
            stages.append(
                stage_trace(stage.value, stage_started, status=_write_status(saved))
            )

            stage, stage_started = ChatStage.PERSISTING_ASSISTANT, time.perf_counter()
            saved = await self._persist_turn(
                stage,
                session_id=request.session_id,
                role=ROLE_ASSISTANT,
                text=completion.response,
                model_used=resolved_model,
                tokens_used=completion.eval_count,
            )
            stages.append(
                stage_trace(stage.value, stage_started, status=_write_status(saved))
            )

            return ChatReply(
                response=completion.response,
                session_id=request.session_id,
                model=resolved_model,
                context_used=not history.is_empty,
                eval_count=completion.eval_count,
                llm_disabled=completion.disabled,
            )
        except asyncio.CancelledError:
            status = "cancelled"
            stages.append(
                stage_trace(
                    stage.value,
                    stage_started,
                    status="cancelled",
                    error_class="CancelledError",
                )
            )
            raise
        except Exception as exc:
            status = ChatStage.ERRORED.value
            stages.append(
                stage_trace(
                    stage.value,
                    stage_started,
                    status="error",
                    error_class=exc.__class__.__name__,
                )
            )
            raise
        finally:
            emit_chat_telemetry(
                ChatTrace(
                    trace_id=new_trace_id(),
                    session_id=request.session_id,
                    model=resolved_model,
                    status=status,
                    context_used=not history.is_empty,
                    history_degraded=history.degraded,
                    latency_ms=max(int((time.perf_counter() - started) * 1000), 0),
                    stages=tuple(stages),
                ),
                logger=self._telemetry_logger,
            )

    async def _persist_turn(
        self,
        stage: ChatStage,
        *,
        session_id: str,
        role: str,
        text: str,
        model_used: str,
        tokens_used: int | None,
    ) -> bool:
        try:
            await self._session_store.append(
                session_id, role, text, model_used, tokens_used
            )
        except SessionWriteError as exc:
            if self._persist_failure_policy == POLICY_LOG:
                LOGGER.error(
                    "Failed to persist turn; replying anyway",
                    extra={"session_id": session_id, "role": role},
                    exc_info=exc,
                )
                return False
            LOGGER.error(
                "Failed to persist turn",
                extra={"session_id": session_id, "role": role},
                exc_info=exc,
            )
            raise ChatPersistenceError(stage) from exc
        return True


def _write_status(saved: bool) -> str:
    return "ok" if saved else "error_logged"
