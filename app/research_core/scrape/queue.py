"""In-process fetch-job queue.

Stands in for an external scrape worker pool: each submitted job runs as an
asyncio task, ``wait`` enforces the caller's timeout, ``remove`` forgets the
job and cancels it if it is still running. Finished jobs nobody removes are
evicted once ``job_retention_seconds`` have passed.
"""

from __future__ import annotations

import asyncio
import re
import time
from typing import Awaitable, Callable
from uuid import uuid4

import httpx
import trafilatura
from bs4 import BeautifulSoup
from loguru import logger

from app.research_core.models.errors import ScrapeJobTimeoutError
from app.research_core.models.interfaces import CostTracking, Document, FetchProvider, FetchSpec

Fetcher = Callable[[FetchSpec], Awaitable[Document]]

USER_AGENT = "AgenticSearchBot/1.0 (+https://example.local)"
BLOCK_TAGS = ["h1", "h2", "h3", "h4", "h5", "h6", "p", "li", "pre", "blockquote", "td"]


def _normalize_text(text: str) -> str:
    text = text.replace("\xa0", " ")
    text = re.sub(r"\r\n?", "\n", text)
    text = re.sub(r"[ \t]+", " ", text)
    text = re.sub(r"\n{3,}", "\n\n", text)
    return text.strip()


def html_to_markdown(raw_html: str) -> tuple[str, dict[str, str]]:
    """Reduce HTML to paragraph blocks separated by blank lines.

    Returns the text and page metadata (title, description).
    """
    soup = BeautifulSoup(raw_html, "html.parser")
    for tag in soup(["script", "style", "noscript", "template", "svg"]):
        tag.decompose()

    metadata: dict[str, str] = {}
    if soup.title and soup.title.string:
        metadata["title"] = soup.title.string.strip()
    description = soup.find("meta", attrs={"name": "description"})
    if description and description.get("content"):
        metadata["description"] = str(description["content"]).strip()

    blocks: list[str] = []
    for element in soup.find_all(BLOCK_TAGS):
        if element.find_parent(BLOCK_TAGS):
            continue
        text = " ".join(element.get_text(" ").split())
        if not text:
            continue
        if element.name == "li":
            text = f"- {text}"
        elif element.name[1:].isdigit():
            text = "#" * int(element.name[1:]) + " " + text
        blocks.append(text)

    if not blocks:
        return _normalize_text(soup.get_text("\n")), metadata
    return "\n\n".join(blocks), metadata


def extract_main_text(raw_html: str) -> str:
    """Main article text via trafilatura, one paragraph per block.

    Returns an empty string when trafilatura finds no main content.
    """
    extracted = trafilatura.extract(raw_html, output_format="txt", include_comments=False)
    if not isinstance(extracted, str):
        return ""
    lines = (" ".join(line.split()) for line in extracted.splitlines())
    return "\n\n".join(line for line in lines if line)


def render_html(raw_html: str, *, only_main_content: bool = True) -> tuple[str, dict[str, str]]:
    """Page text and metadata.

    With ``only_main_content`` the trafilatura extraction is used and the
    block walker is the fallback; otherwise the whole page is walked.
    """
    markdown, metadata = html_to_markdown(raw_html)
    if only_main_content:
        main_text = extract_main_text(raw_html)
        if main_text:
            markdown = main_text
    return markdown, metadata


class InProcessScrapeQueue:
    """Fetch-job queue backed by asyncio tasks."""

    def __init__(
        self,
        *,
        provider: FetchProvider = "auto",
        firecrawl_base_url: str = "",
        firecrawl_api_key: str = "",
        max_page_chars: int = 120000,
        job_retention_seconds: float = 600.0,
        fetcher: Fetcher | None = None,
    ):
        self.provider = provider
        self.firecrawl_base_url = firecrawl_base_url.strip()
        self.firecrawl_api_key = firecrawl_api_key.strip()
        self.max_page_chars = max(int(max_page_chars), 1000)
        self.job_retention_seconds = max(float(job_retention_seconds), 0.0)
        self._fetcher = fetcher
        self._jobs: dict[str, asyncio.Task[Document]] = {}
        self._finished_at: dict[str, float] = {}
        self._awaited: set[str] = set()

    async def submit(self, spec: FetchSpec) -> str:
        self._prune()
        job_id = str(uuid4())
        fetcher = self._fetcher or self._fetch_default
        task = asyncio.create_task(fetcher(spec), name=f"scrape:{job_id}")
        task.add_done_callback(lambda done, job_id=job_id: self._on_done(job_id, done))
        self._jobs[job_id] = task
        return job_id

    async def wait(self, job_id: str, timeout: float) -> tuple[Document, CostTracking]:
        task = self._jobs.get(job_id)
        if task is None:
            raise KeyError(f"Unknown scrape job: {job_id}")
        self._awaited.add(job_id)
        try:
            document = await asyncio.wait_for(asyncio.shield(task), timeout=timeout)
        except asyncio.TimeoutError:
            raise ScrapeJobTimeoutError(
                f"Scrape job {job_id} timed out after {timeout:.1f}s"
            ) from None
        return document, CostTracking()

    async def remove(self, job_id: str) -> None:
        task = self._forget(job_id)
        if task is not None and not task.done():
            task.cancel()

    @property
    def active_jobs(self) -> int:
        self._prune()
        return len(self._jobs)

    def _on_done(self, job_id: str, task: asyncio.Task[Document]) -> None:
        if job_id in self._jobs:
            self._finished_at[job_id] = time.monotonic()
        if task.cancelled():
            return
        # Retrieving the exception keeps asyncio from reporting it at shutdown.
        exc = task.exception()
        if exc is not None and job_id not in self._awaited:
            logger.warning(f"Scrape job {job_id} failed before anyone waited on it: {exc}")

    def _forget(self, job_id: str) -> asyncio.Task[Document] | None:
        self._finished_at.pop(job_id, None)
        self._awaited.discard(job_id)
        return self._jobs.pop(job_id, None)

    def _prune(self) -> None:
        cutoff = time.monotonic() - self.job_retention_seconds
        expired = [job_id for job_id, finished in self._finished_at.items() if finished <= cutoff]
        for job_id in expired:
            self._forget(job_id)
        if expired:
            logger.debug(f"Evicted {len(expired)} finished scrape jobs")

    async def _fetch_default(self, spec: FetchSpec) -> Document:
        attempts: list[Fetcher] = []
        if self.provider in {"firecrawl", "auto"} and self.firecrawl_base_url:
            attempts.append(self._fetch_with_firecrawl)
        if self.provider in {"http", "auto"}:
            attempts.append(self._fetch_with_httpx)

        last_error: Exception | None = None
        for fetch_fn in attempts:
            try:
                return await fetch_fn(spec)
            except Exception as exc:
                last_error = exc
                continue
        raise RuntimeError(f"No scrape provider succeeded for {spec.url}: {last_error}")

    async def _fetch_with_httpx(self, spec: FetchSpec) -> Document:
        timeout_seconds = max(spec.timeout_ms / 1000.0, 1.0)
        async with httpx.AsyncClient(timeout=timeout_seconds, follow_redirects=True) as client:
            response = await client.get(spec.url, headers={"User-Agent": USER_AGENT})
            response.raise_for_status()

        content_type = response.headers.get("content-type", "").lower()
        if "html" in content_type or not content_type:
            only_main_content = bool(spec.scrape_options.get("onlyMainContent", True))
            markdown, page_meta = render_html(response.text, only_main_content=only_main_content)
        elif content_type.startswith("text/"):
            markdown, page_meta = _normalize_text(response.text), {}
        else:
            raise RuntimeError(f"Unsupported content type {content_type!r} for {spec.url}")

        return Document(
            url=spec.url,
            markdown=markdown[: self.max_page_chars],
            metadata={
                **page_meta,
                "status_code": int(response.status_code),
                "source_url": str(response.url),
            },
        )

    async def _fetch_with_firecrawl(self, spec: FetchSpec) -> Document:
        endpoint = self.firecrawl_base_url.rstrip("/") + "/v1/scrape"
        headers = {"Content-Type": "application/json"}
        if self.firecrawl_api_key:
            headers["Authorization"] = f"Bearer {self.firecrawl_api_key}"

        payload = {
            **spec.scrape_options,
            "url": spec.url,
            "formats": ["markdown"],
            "timeout": spec.timeout_ms,
        }
        if spec.max_age_ms is not None:
            payload["maxAge"] = spec.max_age_ms

        timeout_seconds = max(spec.timeout_ms / 1000.0, 1.0)
        async with httpx.AsyncClient(timeout=timeout_seconds, follow_redirects=True) as client:
            response = await client.post(endpoint, json=payload, headers=headers)
            response.raise_for_status()
            data = response.json()

        body = data.get("data", data) if isinstance(data, dict) else {}
        markdown = str(body.get("markdown") or "") if isinstance(body, dict) else ""
        if not markdown:
            raise RuntimeError("Firecrawl response missing markdown content")

        raw_meta = body.get("metadata") if isinstance(body.get("metadata"), dict) else {}
        metadata = {
            "status_code": int(raw_meta.get("statusCode") or response.status_code),
            "source_url": str(raw_meta.get("sourceURL") or raw_meta.get("url") or spec.url),
        }
        for key in ("title", "description"):
            if raw_meta.get(key):
                metadata[key] = str(raw_meta[key])
        return Document(url=spec.url, markdown=markdown[: self.max_page_chars], metadata=metadata)
