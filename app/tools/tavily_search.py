from __future__ import annotations

from typing import Any

from tavily import AsyncTavilyClient

from app.models.results import ImageResult, NewsResult, ProviderResponse, WebResult
from app.research_core.models.interfaces import SearchFilters

MAX_RESULTS = 20


async def search(
    query: str,
    filters: SearchFilters,
    *,
    api_key: str,
    search_depth: str = "basic",
    time_range: str | None = None,
) -> ProviderResponse:
    """Execute Tavily searches for the requested result types."""
    if not api_key:
        raise RuntimeError("TAVILY_API_KEY is not configured")

    client = AsyncTavilyClient(api_key=api_key)
    max_results = max(1, min(filters.num_results, MAX_RESULTS))
    response = ProviderResponse()

    if "web" in filters.types or "images" in filters.types:
        kwargs: dict[str, Any] = {
            "query": query,
            "search_depth": search_depth,
            "max_results": max_results,
            "topic": "general",
            "include_images": "images" in filters.types,
        }
        if time_range:
            kwargs["time_range"] = time_range
        payload = await client.search(**kwargs)
        if "web" in filters.types:
            response.web = [
                WebResult(
                    url=r.get("url", ""),
                    title=r.get("title", "") or "",
                    description=r.get("content", "") or "",
                    position=idx + 1,
                )
                for idx, r in enumerate(payload.get("results", []))
            ]
        if "images" in filters.types:
            response.images = [
                ImageResult(url=image_url, image_url=image_url, position=idx + 1)
                for idx, image_url in enumerate(_image_urls(payload.get("images", [])))
            ]

    if "news" in filters.types:
        kwargs = {
            "query": query,
            "search_depth": search_depth,
            "max_results": max_results,
            "topic": "news",
        }
        if time_range:
            kwargs["time_range"] = time_range
        payload = await client.search(**kwargs)
        response.news = [
            NewsResult(
                url=r.get("url", ""),
                title=r.get("title", "") or "",
                description=r.get("content", "") or "",
                position=idx + 1,
                date=r.get("published_date"),
            )
            for idx, r in enumerate(payload.get("results", []))
        ]
    return response


def _image_urls(images: list[Any]) -> list[str]:
    urls: list[str] = []
    for image in images or []:
        if isinstance(image, str):
            urls.append(image)
        elif isinstance(image, dict) and image.get("url"):
            urls.append(str(image["url"]))
    return urls
