from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from typing import Any

import httpx

from memrelay.app.llm.contracts import (
    MODE_DISABLED,
    MODE_LIVE,
    MODE_MOCK,
    Completion,
    GenerationError,
    PromptRequiredError,
)
from memrelay.core.config import AppConfig

LOGGER = logging.getLogger(__name__)

DEFAULT_GENERATION_OPTIONS: dict[str, Any] = {"temperature": 0.3, "top_p": 0.9}
DISABLED_RESPONSE = "LLM service is disabled"
MOCK_RESPONSE = "Mocked LLM response"
GENERATE_PATH = "/api/generate"


def merge_generation_options(options: Mapping[str, Any] | None) -> dict[str, Any]:
    """Overlay caller options on the defaults.

    A key counts as supplied when it is present with a non-None value, so an
    explicit ``0`` replaces the default rather than falling back to it. An
    explicit ``None`` (JSON ``null``) is treated as absent: the default is
    sent, not the null.
    """
    merged = dict(DEFAULT_GENERATION_OPTIONS)
    for key, value in (options or {}).items():
        if value is not None:
            merged[key] = value
    return merged


def _require_prompt(prompt: str) -> None:
    if not isinstance(prompt, str) or not prompt:
        raise PromptRequiredError()


class BaseLLMClient:
    async def generate(
        self,
        prompt: str,
        *,
        model: str,
        options: Mapping[str, Any] | None = None,
        context: Sequence[int] | None = None,
    ) -> Completion:
        raise NotImplementedError

    async def aclose(self) -> None:
        return None


class DisabledLLMClient(BaseLLMClient):
    async def generate(
        self,
        prompt: str,
        *,
        model: str,
        options: Mapping[str, Any] | None = None,
        context: Sequence[int] | None = None,
    ) -> Completion:
        _require_prompt(prompt)
        return Completion(
            response=DISABLED_RESPONSE,
            eval_count=None,
            model=model,
            disabled=True,
            mode=MODE_DISABLED,
        )


class MockLLMClient(BaseLLMClient):
    def __init__(self) -> None:
        self.calls: list[dict[str, Any]] = []

    async def generate(
        self,
        prompt: str,
        *,
        model: str,
        options: Mapping[str, Any] | None = None,
        context: Sequence[int] | None = None,
    ) -> Completion:
        _require_prompt(prompt)
        self.calls.append(
            {
                "prompt": prompt,
                "model": model,
                "options": merge_generation_options(options),
            }
        )
        return Completion(
            response=MOCK_RESPONSE,
            eval_count=0,
            model=model,
            disabled=False,
            mode=MODE_MOCK,
        )


class OllamaLLMClient(BaseLLMClient):
    def __init__(
        self,
        *,
        base_url: str,
        timeout_seconds: float = 120.0,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._endpoint = f"{base_url.rstrip('/')}{GENERATE_PATH}"
        self._client = http_client or httpx.AsyncClient(timeout=timeout_seconds)

    @property
    def endpoint(self) -> str:
        return self._endpoint

    async def generate(
        self,
        prompt: str,
        *,
        model: str,
        options: Mapping[str, Any] | None = None,
        context: Sequence[int] | None = None,
    ) -> Completion:
        _require_prompt(prompt)
        payload: dict[str, Any] = {
            "model": model,
            "prompt": prompt,
            "stream": False,
            "options": merge_generation_options(options),
        }
        if context is not None:
            payload["context"] = list(context)

        try:
            response = await self._client.post(self._endpoint, json=payload)
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPStatusError as exc:
            raise GenerationError(
                f"LLM backend returned HTTP {exc.response.status_code}"
            ) from exc
        except httpx.HTTPError as exc:
            raise GenerationError(
                f"LLM backend request failed ({exc.__class__.__name__})"
            ) from exc
        except ValueError as exc:
            raise GenerationError("LLM backend returned non-JSON body") from exc

        return _completion_from_payload(data, requested_model=model)

    async def aclose(self) -> None:
        await self._client.aclose()


def _completion_from_payload(data: object, *, requested_model: str) -> Completion:
    if not isinstance(data, dict):
        raise GenerationError("LLM backend returned a malformed body")
    text = data.get("response")
    if not isinstance(text, str):
        raise GenerationError("LLM backend response is missing completion text")
    eval_count = data.get("eval_count")
    if isinstance(eval_count, bool) or not isinstance(eval_count, int):
        eval_count = None
    reported_model = data.get("model")
    if not isinstance(reported_model, str) or not reported_model.strip():
        reported_model = requested_model
    return Completion(
        response=text,
        eval_count=eval_count,
        model=reported_model,
        disabled=False,
        mode=MODE_LIVE,
    )


def build_llm_client(config: AppConfig) -> BaseLLMClient:
    if not config.llm_enabled:
        return DisabledLLMClient()
    if config.llm_mode == MODE_MOCK:
        return MockLLMClient()
    if config.llm_mode not in {"prod", MODE_LIVE}:
        LOGGER.warning(
            "Unknown LLM mode; using live backend",
            extra={"llm_mode": config.llm_mode},
        )
    return OllamaLLMClient(
        base_url=config.llm_base_url,
        timeout_seconds=config.llm_timeout_seconds,
    )
