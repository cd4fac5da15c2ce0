from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class ChatStage(str, Enum):
    VALIDATING = "validating"
    READING_HISTORY = "reading_history"
    ASSEMBLING = "assembling"
    GENERATING = "generating"
    PERSISTING_USER = "persisting_user"
    PERSISTING_ASSISTANT = "persisting_assistant"
    RESPONDING = "responding"
    ERRORED = "errored"


@dataclass(frozen=True)
class ChatReply:
    response: str
    session_id: str
    model: str
    context_used: bool
    eval_count: int | None
    llm_disabled: bool

    def to_payload(self) -> dict[str, object]:
        return {
            "response": self.response,
            "sessionId": self.session_id,
            "model": self.model,
            "contextUsed": self.context_used,
            "evalCount": self.eval_count,
            "llmDisabled": self.llm_disabled,
        }


class ChatError(Exception):
    """Base for failures the HTTP layer may show to a caller.

    ``public_message`` is the only text that reaches the client.
    """

    status_code = 500

    def __init__(self, public_message: str, *, stage: ChatStage) -> None:
        super().__init__(public_message)
        self.public_message = public_message
        self.stage = stage


class ChatValidationError(ChatError):
    status_code = 400

    def __init__(self, public_message: str) -> None:
        super().__init__(public_message, stage=ChatStage.VALIDATING)


class ChatGenerationError(ChatError):
    def __init__(self) -> None:
        super().__init__(
            "Language model generation failed", stage=ChatStage.GENERATING
        )


class ChatPersistenceError(ChatError):
    def __init__(self, stage: ChatStage) -> None:
        super().__init__("Failed to save conversation turn", stage=stage)
