"""OpenAI-compatible LLM client (OpenRouter by default) used for extraction and JSON re-prompts."""
from __future__ import annotations

import time
from typing import Any

from attendry.config import settings
from attendry.services.logger import log_llm_call


def get_client() -> Any:
    from openai import AsyncOpenAI

    base_url = settings.openrouter_base_url.strip() or "https://openrouter.ai/api/v1"
    return AsyncOpenAI(api_key=settings.openrouter_api_key, base_url=base_url)


def get_model() -> str:
    return settings.extraction_model


_client: Any | None = None


def client() -> Any:
    """Get or create the LLM client."""
    global _client
    if _client is None:
        _client = get_client()
    return _client


def is_configured() -> bool:
    return bool(settings.openrouter_api_key)


async def complete(
    prompt: str,
    system: str,
    *,
    model: str | None = None,
    max_tokens: int | None = None,
    caller: str = "extraction",
) -> str:
    """Single-turn chat completion returning the message text ("" when the model returns none)."""
    model = model or get_model()
    started = time.perf_counter()
    try:
        response = await client().chat.completions.create(
            model=model,
            messages=[
                {"role": "system", "content": system},
                {"role": "user", "content": prompt},
            ],
            max_tokens=max_tokens or settings.extraction_max_tokens,
            temperature=0,
        )
    except Exception as exc:
        log_llm_call(
            model=model,
            caller=caller,
            duration_ms=int((time.perf_counter() - started) * 1000),
            status="error",
            error=f"{type(exc).__name__}: {exc}",
        )
        raise

    usage = getattr(response, "usage", None)
    log_llm_call(
        model=model,
        caller=caller,
        input_tokens=getattr(usage, "prompt_tokens", 0) or 0,
        output_tokens=getattr(usage, "completion_tokens", 0) or 0,
        duration_ms=int((time.perf_counter() - started) * 1000),
    )
    choices = getattr(response, "choices", None) or []
    if not choices:
        return ""
    return getattr(choices[0].message, "content", None) or ""
