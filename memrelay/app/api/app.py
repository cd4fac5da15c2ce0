from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from memrelay.app.chat.contracts import ChatError, ChatValidationError
from memrelay.app.chat.service import ChatOrchestrator
from memrelay.app.llm.contracts import LLMClient
from memrelay.app.llm.providers import build_llm_client
from memrelay.app.sessions.service import SessionStore, build_session_store
from memrelay.core.config import AppConfig, load_app_config

LOGGER = logging.getLogger(__name__)


class ChatWithMemoryRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    message: str | None = None
    session_id: str | None = Field(default=None, alias="sessionId")
    model: str | None = None
    options: dict[str, Any] | None = None


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def create_app(
    config: AppConfig | None = None,
    *,
    session_store: SessionStore | None = None,
    llm_client: LLMClient | None = None,
) -> FastAPI:
    config = config or load_app_config()
    active_session_store = session_store or build_session_store(config)
    active_llm_client = llm_client or build_llm_client(config)
    orchestrator = ChatOrchestrator.from_config(
        config,
        session_store=active_session_store,
        llm_client=active_llm_client,
    )

    @asynccontextmanager
    async def lifespan(_app: FastAPI):
        try:
            yield
        finally:
            await active_llm_client.aclose()

    app = FastAPI(title=config.app_name, version=config.app_version, lifespan=lifespan)
    app.state.config = config
    app.state.session_store = active_session_store
    app.state.llm_client = active_llm_client
    app.state.orchestrator = orchestrator

    @app.exception_handler(ChatError)
    async def handle_chat_error(request: Request, exc: ChatError) -> JSONResponse:
        if isinstance(exc, ChatValidationError):
            LOGGER.info(
                "Rejected chat request",
                extra={"path": request.url.path, "reason": exc.public_message},
            )
        return JSONResponse(
            status_code=exc.status_code, content={"error": exc.public_message}
        )

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation_error(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        fields = sorted(
            {
                ".".join(
                    part
                    for part in issue.get("loc", ())
                    if isinstance(part, str) and part != "body"
                )
                for issue in exc.errors()
            }
            - {""}
        )
        message = "Invalid request body"
        if fields:
            message = f"{message}: {', '.join(fields)}"
        LOGGER.info(
            "Rejected malformed request",
            extra={"path": request.url.path, "fields": fields},
        )
        return JSONResponse(status_code=400, content={"error": message})

    @app.exception_handler(Exception)
    async def handle_unexpected_exception(
        request: Request, exc: Exception
    ) -> JSONResponse:
        LOGGER.error(
            "Unhandled error while serving request",
            extra={"path": request.url.path},
            exc_info=exc,
        )
        return JSONResponse(status_code=500, content={"error": "Internal server error"})

    @app.get("/health")
    async def health() -> dict[str, str]:
        return {"status": "ok", "timestamp": now_iso()}

    @app.post("/chat-with-memory")
    @app.post("/chat")
    async def chat_with_memory(payload: ChatWithMemoryRequest) -> JSONResponse:
        reply = await orchestrator.handle(
            message=payload.message,
            session_id=payload.session_id,
            model=payload.model,
            options=payload.options,
        )
        return JSONResponse(content=reply.to_payload())

    return app
