from __future__ import annotations

import asyncio

import httpx
from dotenv import load_dotenv

from memrelay.app.llm.providers import OllamaLLMClient
from memrelay.core.config import AppConfig, load_app_config

SMOKE_PROMPT = "Smoke test prompt"


def _print_result(name: str, ok: bool, detail: str) -> bool:
    status = "OK" if ok else "FAIL"
    print(f"[{status}] {name}: {detail}")
    return ok


def _verify_sessions_table(config: AppConfig) -> bool:
    if config.session_store_backend != "supabase":
        return _print_result(
            "session store",
            True,
            f"backend={config.session_store_backend}, nothing to verify",
        )
    if not config.supabase_url or not config.supabase_key:
        return _print_result(
            "session store",
            False,
            "SUPABASE_URL and SUPABASE_KEY must both be set",
        )

    from supabase import create_client

    try:
        client = create_client(config.supabase_url, config.supabase_key)
        client.table(config.sessions_table).select("id").limit(1).execute()
    except Exception as exc:  # noqa: BLE001
        return _print_result("session store", False, f"query failed: {exc}")
    return _print_result(
        "session store", True, f"table {config.sessions_table} is readable"
    )


async def _list_models(base_url: str) -> list[str]:
    async with httpx.AsyncClient(timeout=10.0) as client:
        response = await client.get(f"{base_url.rstrip('/')}/api/tags")
    response.raise_for_status()
    payload = response.json()
    models = payload.get("models") if isinstance(payload, dict) else None
    if not isinstance(models, list):
        return []
    return [
        str(item["name"])
        for item in models
        if isinstance(item, dict) and item.get("name")
    ]


async def _verify_llm(config: AppConfig) -> bool:
    if not config.llm_enabled or config.llm_mode == "mock":
        return _print_result(
            "llm backend",
            True,
            f"enabled={config.llm_enabled}, mode={config.llm_mode}; no network check",
        )

    try:
        models = await _list_models(config.llm_base_url)
    except Exception as exc:  # noqa: BLE001
        return _print_result("llm backend", False, f"connection failed: {exc}")
    _print_result("llm backend", True, f"available models: {models}")

    if not models:
        print("No models available for the generation smoke test.")
        return True

    client = OllamaLLMClient(
        base_url=config.llm_base_url, timeout_seconds=config.llm_timeout_seconds
    )
    try:
        completion = await client.generate(
            SMOKE_PROMPT,
            model=models[0],
            options={"temperature": 0, "top_p": 0},
        )
    except Exception as exc:  # noqa: BLE001
        return _print_result(
            "zero temperature/top_p generation", False, f"{models[0]}: {exc}"
        )
    finally:
        await client.aclose()
    return _print_result(
        "zero temperature/top_p generation",
        True,
        f"{completion.model}: {completion.response[:100]!r}",
    )


def main() -> int:
    load_dotenv()
    config = load_app_config()
    print("memrelay connectivity verification")
    print("-" * 36)

    checks = [
        _verify_sessions_table(config),
        asyncio.run(_verify_llm(config)),
    ]

    if all(checks):
        print("All checks passed.")
        return 0

    print("One or more checks failed. Update .env and rerun.")
    return 1


if __name__ == "__main__":
    raise SystemExit(main())
