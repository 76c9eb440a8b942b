from __future__ import annotations

import asyncio
from dataclasses import dataclass, field, replace
from typing import Any

from loguru import logger

from app.models.results import RESULT_KINDS, FusedResultSet, ResultKind, SearchResultItem
from app.research_core.models.interfaces import (
    CostTracking,
    Document,
    FetchSpec,
    ScrapeJobHandle,
    ScrapeQueue,
    TeamContext,
)


@dataclass(slots=True)
class DispatchOptions:
    team: TeamContext = field(default_factory=TeamContext)
    origin: str = "api"
    timeout_ms: int = 60000
    scrape_options: dict[str, Any] = field(default_factory=dict)
    max_age_ms: int | None = None


@dataclass(slots=True)
class ScrapeOutcome:
    kind: ResultKind
    item: SearchResultItem
    document: Document
    cost_tracking: CostTracking
    success: bool


@dataclass(slots=True)
class SyncDispatchResult:
    results: FusedResultSet
    outcomes: list[ScrapeOutcome] = field(default_factory=list)


@dataclass(slots=True)
class AsyncDispatchResult:
    results: FusedResultSet
    handles: list[ScrapeJobHandle] = field(default_factory=list)


def fetch_spec_for(kind: ResultKind, item: SearchResultItem, options: DispatchOptions) -> FetchSpec:
    return FetchSpec(
        url=item.url,
        title=item.title or "",
        # Image hits have no meaningful snippet to carry into the fetch.
        description="" if kind == "images" else item.description or "",
        team_id=options.team.team_id,
        origin=options.origin,
        timeout_ms=options.timeout_ms,
        scrape_options=dict(options.scrape_options),
        max_age_ms=options.max_age_ms,
    )


def enrich_item(item: SearchResultItem, document: Document) -> SearchResultItem:
    """Overlay fetched content on the search hit.

    Search fields are kept; document fields replace them only where the
    document actually has a value.
    """
    updates: dict[str, Any] = {}
    for name in ("title", "description", "markdown"):
        value = getattr(document, name)
        if value:
            updates[name] = value
    return replace(item, **updates, metadata={**item.metadata, **document.metadata})


def error_document(item: SearchResultItem, message: str) -> Document:
    return Document(
        url=item.url,
        metadata={"status_code": 500, "error": message, "proxy_used": "basic"},
    )


class ScrapeDispatcher:
    """Fan fetch jobs out to the queue and fold the results back in."""

    def __init__(self, queue: ScrapeQueue):
        self.queue = queue

    async def dispatch_sync(self, results: FusedResultSet, options: DispatchOptions) -> SyncDispatchResult:
        targets = list(results.iter_items())
        logger.info(f"Starting sync search scraping for {len(targets)} results")
        outcomes = await asyncio.gather(
            *(self._scrape_one(kind, item, options) for kind, item in targets)
        )

        enriched: dict[ResultKind, list[SearchResultItem]] = {kind: [] for kind in RESULT_KINDS}
        for outcome in outcomes:
            enriched[outcome.kind].append(outcome.item)
        return SyncDispatchResult(
            results=FusedResultSet(web=enriched["web"], images=enriched["images"], news=enriched["news"]),
            outcomes=list(outcomes),
        )

    async def dispatch_async(self, results: FusedResultSet, options: DispatchOptions) -> AsyncDispatchResult:
        targets = list(results.iter_items())
        logger.info(f"Starting async search scraping for {len(targets)} results")
        submitted = await asyncio.gather(
            *(self._submit(kind, item, options) for kind, item in targets)
        )

        handles = [handle for handle, _item in submitted if handle is not None]
        enriched: dict[ResultKind, list[SearchResultItem]] = {kind: [] for kind in RESULT_KINDS}
        for (kind, _original), (_handle, item) in zip(targets, submitted):
            enriched[kind].append(item)
        return AsyncDispatchResult(
            results=FusedResultSet(web=enriched["web"], images=enriched["images"], news=enriched["news"]),
            handles=handles,
        )

    async def _submit(
        self,
        kind: ResultKind,
        item: SearchResultItem,
        options: DispatchOptions,
    ) -> tuple[ScrapeJobHandle | None, SearchResultItem]:
        try:
            job_id = await self.queue.submit(fetch_spec_for(kind, item, options))
        except Exception as exc:
            message = str(exc) or exc.__class__.__name__
            logger.error(f"Failed to submit scrape job for {item.url}: {message}")
            return None, enrich_item(item, error_document(item, message))
        logger.info(f"Adding scrape job {job_id} for {item.url} (team={options.team.team_id})")
        return ScrapeJobHandle(job_id=job_id, url=item.url, kind=kind), item

    async def _scrape_one(
        self,
        kind: ResultKind,
        item: SearchResultItem,
        options: DispatchOptions,
    ) -> ScrapeOutcome:
        job_id: str | None = None
        try:
            job_id = await self.queue.submit(fetch_spec_for(kind, item, options))
            logger.info(f"Adding scrape job {job_id} for {item.url} (team={options.team.team_id})")
            document, cost_tracking = await self.queue.wait(job_id, options.timeout_ms / 1000.0)
            logger.info(f"Scrape job completed {job_id} for {item.url}")
            return ScrapeOutcome(
                kind=kind,
                item=enrich_item(item, document),
                document=document,
                cost_tracking=cost_tracking,
                success=document.error is None,
            )
        except Exception as exc:
            message = str(exc) or exc.__class__.__name__
            logger.error(f"Error scraping search result {item.url}: {message}")
            document = error_document(item, message)
            return ScrapeOutcome(
                kind=kind,
                item=enrich_item(item, document),
                document=document,
                cost_tracking=CostTracking(),
                success=False,
            )
        finally:
            if job_id is not None:
                try:
                    await self.queue.remove(job_id)
                except Exception as exc:
                    logger.warning(f"Failed to remove scrape job {job_id}: {exc}")
