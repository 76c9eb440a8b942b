from __future__ import annotations

from typing import Any

import httpx

from app.models.results import ImageResult, NewsResult, ProviderResponse, WebResult
from app.research_core.models.interfaces import SearchFilters

BRAVE_WEB_URL = "https://api.search.brave.com/res/v1/web/search"
BRAVE_NEWS_URL = "https://api.search.brave.com/res/v1/news/search"
BRAVE_IMAGES_URL = "https://api.search.brave.com/res/v1/images/search"

FRESHNESS_MAP = {
    "day": "pd",
    "week": "pw",
    "month": "pm",
    "year": "py",
}

MAX_COUNT = {"web": 20, "news": 50, "images": 100}


def _params(query: str, filters: SearchFilters, kind: str, time_range: str | None) -> dict[str, Any]:
    params: dict[str, Any] = {
        "q": query,
        "count": max(1, min(filters.num_results, MAX_COUNT[kind])),
    }
    if filters.country:
        params["country"] = filters.country.upper()
    if filters.lang:
        params["search_lang"] = filters.lang.lower()
    if time_range and time_range in FRESHNESS_MAP and kind != "images":
        params["freshness"] = FRESHNESS_MAP[time_range]
    return params


async def _get(client: httpx.AsyncClient, url: str, params: dict[str, Any], api_key: str) -> dict[str, Any]:
    response = await client.get(
        url,
        params=params,
        headers={
            "Accept": "application/json",
            "X-Subscription-Token": api_key,
        },
    )
    response.raise_for_status()
    payload = response.json()
    return payload if isinstance(payload, dict) else {}


def map_web_results(raw_results: list[dict[str, Any]]) -> list[WebResult]:
    mapped: list[WebResult] = []
    for idx, item in enumerate(raw_results):
        snippets = item.get("extra_snippets", []) or []
        description = (item.get("description", "") or "").strip() or " ".join(snippets).strip()
        mapped.append(
            WebResult(
                url=item.get("url", ""),
                title=item.get("title", "") or "",
                description=description,
                position=idx + 1,
            )
        )
    return mapped


def map_news_results(raw_results: list[dict[str, Any]]) -> list[NewsResult]:
    mapped: list[NewsResult] = []
    for idx, item in enumerate(raw_results):
        thumbnail = item.get("thumbnail") or {}
        mapped.append(
            NewsResult(
                url=item.get("url", ""),
                title=item.get("title", "") or "",
                description=(item.get("description", "") or "").strip(),
                position=idx + 1,
                date=item.get("age") or item.get("page_age"),
                image_url=thumbnail.get("src") if isinstance(thumbnail, dict) else None,
            )
        )
    return mapped


def map_image_results(raw_results: list[dict[str, Any]]) -> list[ImageResult]:
    mapped: list[ImageResult] = []
    for idx, item in enumerate(raw_results):
        properties = item.get("properties") or {}
        mapped.append(
            ImageResult(
                url=item.get("url", ""),
                title=item.get("title", "") or "",
                position=idx + 1,
                image_url=properties.get("url"),
                image_width=properties.get("width"),
                image_height=properties.get("height"),
            )
        )
    return mapped


async def search(
    query: str,
    filters: SearchFilters,
    *,
    api_key: str,
    time_range: str | None = None,
    timeout: float = 30.0,
) -> ProviderResponse:
    """Execute Brave searches for each requested result type and normalize them."""
    if not api_key:
        raise RuntimeError("BRAVE_API_KEY is not configured")

    response = ProviderResponse()
    async with httpx.AsyncClient(timeout=timeout) as client:
        if "web" in filters.types:
            payload = await _get(client, BRAVE_WEB_URL, _params(query, filters, "web", time_range), api_key)
            response.web = list(map_web_results(payload.get("web", {}).get("results", [])))
        if "news" in filters.types:
            payload = await _get(client, BRAVE_NEWS_URL, _params(query, filters, "news", time_range), api_key)
            response.news = list(map_news_results(payload.get("results", [])))
        if "images" in filters.types:
            payload = await _get(client, BRAVE_IMAGES_URL, _params(query, filters, "images", time_range), api_key)
            response.images = list(map_image_results(payload.get("results", [])))
    return response
