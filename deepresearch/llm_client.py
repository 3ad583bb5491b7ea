"""OpenRouter text-generation client used by every delegated research step."""
from __future__ import annotations

import time
from typing import Any, Protocol

from deepresearch.config import settings
from deepresearch.services import logger as log_service


class TextGenerator(Protocol):
    async def generate(self, prompt: str, *, max_tokens: int = 1000, caller: str = "research") -> str: ...


def get_model() -> str:
    """Get the active OpenRouter model id."""
    if settings.openrouter_model:
        return settings.openrouter_model
    return settings.default_model


def get_fast_model() -> str:
    return settings.fast_model or get_model()


class OpenRouterTextGenerator:
    """``generate(prompt) -> text`` over the OpenAI-compatible chat API."""

    def __init__(self, openai_client: Any, *, model: str | None = None):
        self._client = openai_client
        self.model = model or get_model()

    async def generate(self, prompt: str, *, max_tokens: int = 1000, caller: str = "research") -> str:
        t0 = time.monotonic()
        try:
            response = await self._client.chat.completions.create(
                model=self.model,
                messages=[{"role": "user", "content": prompt}],
                max_tokens=max_tokens,
                temperature=settings.llm_temperature,
            )
        except Exception as e:
            log_service.log_llm_call(
                model=self.model,
                caller=caller,
                duration_ms=int((time.monotonic() - t0) * 1000),
                status="error",
                error=str(e),
            )
            raise

        usage = getattr(response, "usage", None)
        log_service.log_llm_call(
            model=self.model,
            caller=caller,
            input_tokens=getattr(usage, "prompt_tokens", 0) or 0,
            output_tokens=getattr(usage, "completion_tokens", 0) or 0,
            duration_ms=int((time.monotonic() - t0) * 1000),
        )

        choices = getattr(response, "choices", None) or []
        if not choices:
            return ""
        return getattr(choices[0].message, "content", None) or ""


def get_client() -> Any:
    """Get an OpenRouter client via the OpenAI-compatible SDK."""
    from openai import AsyncOpenAI

    base_url = settings.openrouter_base_url.strip() or "https://openrouter.ai/api/v1"
    return AsyncOpenAI(
        api_key=settings.openrouter_api_key,
        base_url=base_url,
        timeout=settings.llm_timeout_seconds,
    )


_client: Any | None = None


def client() -> Any:
    """Get or create the shared SDK client."""
    global _client
    if _client is None:
        _client = get_client()
    return _client


def text_generator(*, fast: bool = False) -> OpenRouterTextGenerator:
    return OpenRouterTextGenerator(client(), model=get_fast_model() if fast else get_model())
