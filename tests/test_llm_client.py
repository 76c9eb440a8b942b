from __future__ import annotations

from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from app.config import Settings
from app import llm_client
from app.llm_client import OpenRouterCompletion, build_completion, close_client, get_model
from app.research_core.models.errors import CompletionError


def _client(content="hello", error=None):
    client = MagicMock()
    if error is not None:
        client.chat.completions.create = AsyncMock(side_effect=error)
    else:
        client.chat.completions.create = AsyncMock(
            return_value=SimpleNamespace(
                choices=[SimpleNamespace(message=SimpleNamespace(content=content))],
                usage=SimpleNamespace(prompt_tokens=12, completion_tokens=3),
            )
        )
    return client


@pytest.mark.asyncio
async def test_complete_returns_message_content():
    client = _client("[\"a\"]")
    completion = OpenRouterCompletion(client, model="openai/gpt-4o-mini")

    text = await completion.complete("prompt", temperature=0.2, max_tokens=50)

    assert text == "[\"a\"]"
    kwargs = client.chat.completions.create.call_args.kwargs
    assert kwargs["messages"] == [{"role": "user", "content": "prompt"}]
    assert kwargs["temperature"] == 0.2
    assert kwargs["max_tokens"] == 50


@pytest.mark.asyncio
async def test_complete_forces_temperature_for_gpt5_models():
    client = _client()
    await OpenRouterCompletion(client, model="openai/gpt-5-mini").complete("prompt", temperature=0)

    assert client.chat.completions.create.call_args.kwargs["temperature"] == 1


@pytest.mark.asyncio
async def test_complete_wraps_errors():
    completion = OpenRouterCompletion(_client(error=RuntimeError("401")), model="m")

    with pytest.raises(CompletionError):
        await completion.complete("prompt")


@pytest.mark.asyncio
async def test_complete_returns_empty_string_without_choices():
    client = MagicMock()
    client.chat.completions.create = AsyncMock(return_value=SimpleNamespace(choices=[], usage=None))

    assert await OpenRouterCompletion(client, model="m").complete("prompt") == ""


def test_get_model_prefers_explicit_override():
    assert get_model(Settings(openrouter_model="anthropic/claude-3.5-haiku")) == "anthropic/claude-3.5-haiku"
    assert get_model(Settings(openrouter_model="", default_model="openai/gpt-4o-mini")) == "openai/gpt-4o-mini"


def test_build_completion_shares_one_client(monkeypatch):
    monkeypatch.setattr(llm_client, "_client", None)
    config = Settings(openrouter_api_key="key", openrouter_base_url="https://gateway.example/v1")
    with patch("openai.AsyncOpenAI") as mock_client:
        first = build_completion(config)
        second = build_completion(config, model="other/model")

    assert mock_client.call_count == 1
    assert mock_client.call_args.kwargs["base_url"] == "https://gateway.example/v1"
    assert first._client is second._client
    assert first.model == get_model(config)
    assert second.model == "other/model"


@pytest.mark.asyncio
async def test_close_client_releases_shared_client(monkeypatch):
    shared = MagicMock()
    shared.close = AsyncMock()
    monkeypatch.setattr(llm_client, "_client", shared)

    await close_client()
    await close_client()

    shared.close.assert_awaited_once()
    assert llm_client._client is None
