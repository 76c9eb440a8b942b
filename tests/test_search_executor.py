from __future__ import annotations

from unittest.mock import AsyncMock

import pytest

from app.models.results import ProviderResponse, WebResult
from app.research_core.models.interfaces import SearchFilters
from app.services.search_executor import run_variant_searches


def _provider(responses: dict[str, object]) -> AsyncMock:
    provider = AsyncMock()

    async def search(query, filters):
        result = responses[query]
        if isinstance(result, Exception):
            raise result
        return result

    provider.search.side_effect = search
    return provider


@pytest.mark.asyncio
async def test_results_keep_variant_order():
    provider = _provider({
        "a": ProviderResponse(web=[WebResult(url="https://a.example")]),
        "b": ProviderResponse(web=[WebResult(url="https://b.example")]),
    })
    responses = await run_variant_searches(provider, ["a", "b"], SearchFilters())

    assert [r.web[0].url for r in responses] == ["https://a.example", "https://b.example"]
    assert provider.search.await_count == 2


@pytest.mark.asyncio
async def test_failed_variant_becomes_empty_response():
    provider = _provider({
        "a": ProviderResponse(web=[WebResult(url="https://a.example")]),
        "b": RuntimeError("rate limited"),
    })
    responses = await run_variant_searches(provider, ["a", "b"], SearchFilters())

    assert len(responses) == 2
    assert responses[1].total() == 0


@pytest.mark.asyncio
async def test_fail_fast_raises_after_all_variants_settle():
    provider = _provider({
        "a": RuntimeError("rate limited"),
        "b": ProviderResponse(),
    })
    with pytest.raises(RuntimeError, match="rate limited"):
        await run_variant_searches(provider, ["a", "b"], SearchFilters(), fail_fast=True)

    assert provider.search.await_count == 2


@pytest.mark.asyncio
async def test_filters_are_passed_to_every_call():
    provider = _provider({"a": ProviderResponse(), "b": ProviderResponse()})
    filters = SearchFilters(num_results=10, types=["web", "news"], tbs="qdr:w")
    await run_variant_searches(provider, ["a", "b"], filters)

    assert all(call.args[1] is filters for call in provider.search.await_args_list)
