from __future__ import annotations

from loguru import logger

from app.config import Settings
from app.models.results import ProviderResponse
from app.research_core.models.errors import SearchProviderError
from app.research_core.models.interfaces import SearchFilters
from app.tools import brave_search, tavily_search

# Google-style ``tbs`` time filters mapped to provider time ranges.
TIME_RANGE_BY_TBS = {
    "qdr:h": "day",
    "qdr:d": "day",
    "qdr:w": "week",
    "qdr:m": "month",
    "qdr:y": "year",
}


def time_range_for(tbs: str | None) -> str | None:
    if not tbs:
        return None
    return TIME_RANGE_BY_TBS.get(tbs.strip().lower())


class BraveSearchProvider:
    name = "brave"

    def __init__(self, api_key: str, *, timeout: float = 30.0):
        self.api_key = api_key
        self.timeout = timeout

    async def search(self, query: str, filters: SearchFilters) -> ProviderResponse:
        return await brave_search.search(
            query,
            filters,
            api_key=self.api_key,
            time_range=time_range_for(filters.tbs),
            timeout=self.timeout,
        )


class TavilySearchProvider:
    name = "tavily"

    def __init__(self, api_key: str):
        self.api_key = api_key

    async def search(self, query: str, filters: SearchFilters) -> ProviderResponse:
        return await tavily_search.search(
            query,
            filters,
            api_key=self.api_key,
            time_range=time_range_for(filters.tbs),
        )


class FallbackSearchProvider:
    """Use the primary provider; fall back on error or on zero results."""

    def __init__(self, primary, fallback):
        self.primary = primary
        self.fallback = fallback

    async def search(self, query: str, filters: SearchFilters) -> ProviderResponse:
        try:
            response = await self.primary.search(query, filters)
            if response.total():
                return response
            reason = f"{self.primary.name} returned zero results"
        except Exception as e:
            reason = str(e)
        logger.info(f"Search falling back to {self.fallback.name} for {query!r}: {reason}")
        return await self.fallback.search(query, filters)


def build_search_provider(config: Settings):
    provider = config.search_provider.lower().strip()

    if provider == "tavily":
        return TavilySearchProvider(config.tavily_api_key)

    if provider == "brave":
        brave = BraveSearchProvider(config.brave_api_key, timeout=config.search_timeout_seconds)
        if config.search_fallback_to_tavily and config.tavily_api_key:
            return FallbackSearchProvider(brave, TavilySearchProvider(config.tavily_api_key))
        return brave

    raise SearchProviderError(f"Unsupported SEARCH_PROVIDER: {config.search_provider}")
