from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any, Protocol

MODE_DISABLED = "disabled"
MODE_MOCK = "mock"
MODE_LIVE = "live"


@dataclass(frozen=True)
class Completion:
    response: str
    eval_count: int | None
    model: str
    disabled: bool = False
    mode: str = MODE_LIVE


class PromptRequiredError(ValueError):
    def __init__(self) -> None:
        super().__init__("Prompt is required")


class GenerationError(RuntimeError):
    pass


class LLMClient(Protocol):
    async def generate(
        self,
        prompt: str,
        *,
        model: str,
        options: Mapping[str, Any] | None = None,
        context: Sequence[int] | None = None,
    ) -> Completion: ...

    async def aclose(self) -> None: ...
