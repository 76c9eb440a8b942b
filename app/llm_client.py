"""OpenRouter-backed text completion over one shared client."""
from __future__ import annotations

import time
from typing import Any

from app.config import Settings, settings as default_settings
from app.research_core.models.errors import CompletionError
from app.services import logger as log_service


class OpenRouterCompletion:
    """TextCompletion over the OpenAI-compatible OpenRouter API."""

    def __init__(self, openai_client: Any, *, model: str, caller: str = "search"):
        self._client = openai_client
        self.model = model
        self.caller = caller

    @staticmethod
    def _temperature_for_model(model: str, requested: float) -> float:
        # Some OpenAI GPT-5-compatible gateways reject temperature=0.
        lowered = (model or "").lower()
        if "gpt-5" in lowered:
            return 1
        return requested

    async def complete(self, prompt: str, *, temperature: float = 0.0, max_tokens: int = 1024) -> str:
        t0 = time.monotonic()
        try:
            response = await self._client.chat.completions.create(
                model=self.model,
                messages=[{"role": "user", "content": prompt}],
                max_tokens=max_tokens,
                temperature=self._temperature_for_model(self.model, temperature),
            )
        except Exception as exc:
            log_service.log_llm_call(
                model=self.model,
                caller=self.caller,
                duration_ms=int((time.monotonic() - t0) * 1000),
                status="error",
                error=str(exc),
            )
            raise CompletionError(f"Completion failed: {exc}") from exc

        usage = getattr(response, "usage", None)
        log_service.log_llm_call(
            model=self.model,
            caller=self.caller,
            input_tokens=getattr(usage, "prompt_tokens", 0) or 0,
            output_tokens=getattr(usage, "completion_tokens", 0) or 0,
            duration_ms=int((time.monotonic() - t0) * 1000),
        )
        choices = getattr(response, "choices", None) or []
        if not choices:
            return ""
        content = getattr(choices[0].message, "content", None)
        return content if isinstance(content, str) else ""


def get_model(config: Settings | None = None) -> str:
    """Get the active OpenRouter model id."""
    config = config or default_settings
    if config.openrouter_model:
        return config.openrouter_model
    return config.default_model


def get_client(config: Settings | None = None) -> Any:
    """Create an OpenAI-compatible client pointed at OpenRouter."""
    from openai import AsyncOpenAI

    config = config or default_settings
    base_url = config.openrouter_base_url.strip() or "https://openrouter.ai/api/v1"
    return AsyncOpenAI(
        api_key=config.openrouter_api_key,
        base_url=base_url,
        timeout=config.completion_timeout_seconds,
    )


# Global client (lazy initialization). Requests share its connection pool.
_client: Any | None = None


def client(config: Settings | None = None) -> Any:
    """Get the shared client, creating it on first use."""
    global _client
    if _client is None:
        _client = get_client(config)
    return _client


async def close_client() -> None:
    """Close the shared client's connection pool."""
    global _client
    if _client is not None:
        current, _client = _client, None
        await current.close()


def build_completion(config: Settings | None = None, *, model: str | None = None) -> OpenRouterCompletion:
    """Build a TextCompletion for one request; only the model varies per request."""
    return OpenRouterCompletion(client(config), model=model or get_model(config))
