from __future__ import annotations

import asyncio
from typing import Sequence

from loguru import logger

from app.models.results import ProviderResponse
from app.research_core.models.interfaces import SearchFilters, SearchProvider


async def run_variant_searches(
    provider: SearchProvider,
    variants: Sequence[str],
    filters: SearchFilters,
    *,
    fail_fast: bool = False,
) -> list[ProviderResponse]:
    """Search every variant concurrently and wait for all of them to settle.

    Results keep variant order. A failed variant contributes an empty
    response unless ``fail_fast`` is set, in which case the first failure
    (in variant order) is raised after all calls have settled.
    """
    raw_results = await asyncio.gather(
        *(provider.search(variant, filters) for variant in variants),
        return_exceptions=True,
    )

    responses: list[ProviderResponse] = []
    for variant, item in zip(variants, raw_results):
        if isinstance(item, BaseException):
            if fail_fast or not isinstance(item, Exception):
                raise item
            logger.warning(f"Search failed for variant {variant!r}: {item}")
            responses.append(ProviderResponse())
            continue
        responses.append(item)
    return responses
