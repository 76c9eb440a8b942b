from __future__ import annotations

import json

from fastapi import Header, HTTPException

from app.agents.orchestrator import LoopOptions, SearchOrchestrator
from app.config import Settings, settings
from app.llm_client import build_completion
from app.research_core.billing import FlatRateBilling
from app.research_core.models.interfaces import TeamContext, TeamFlags
from app.research_core.policy.blocklist import DomainBlocklist
from app.research_core.scrape.queue import InProcessScrapeQueue
from app.services.background import BackgroundTasks
from app.services.request_log import LoggingRequestLogger
from app.tools.search_provider import build_search_provider

# Shared across requests: async fetch jobs and billing tasks outlive the request.
background_tasks = BackgroundTasks()
_scrape_queue: InProcessScrapeQueue | None = None


def get_scrape_queue(config: Settings = settings) -> InProcessScrapeQueue:
    global _scrape_queue
    if _scrape_queue is None:
        _scrape_queue = InProcessScrapeQueue(
            provider=config.scrape_provider,
            firecrawl_base_url=config.firecrawl_base_url,
            firecrawl_api_key=config.firecrawl_api_key,
            max_page_chars=config.scrape_max_page_chars,
            job_retention_seconds=config.scrape_job_retention_seconds,
        )
    return _scrape_queue


def build_orchestrator(
    config: Settings = settings,
    *,
    model: str | None = None,
    background: BackgroundTasks | None = None,
) -> SearchOrchestrator:
    """Wire the orchestrator with the configured collaborators."""
    return SearchOrchestrator(
        completion=build_completion(config, model=model),
        search_provider=build_search_provider(config),
        scrape_queue=get_scrape_queue(config),
        blocklist=DomainBlocklist(config.blocked_domain_list),
        billing=FlatRateBilling(config.credits_per_result),
        request_logger=LoggingRequestLogger(),
        background=background or background_tasks,
        options=LoopOptions.from_settings(config),
    )


def get_orchestrator() -> SearchOrchestrator:
    return build_orchestrator(settings)


def parse_team_flags(raw: str | None) -> TeamFlags:
    if not raw:
        return TeamFlags()
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise HTTPException(status_code=400, detail=f"Invalid X-Team-Flags header: {exc.msg}") from None
    if not isinstance(payload, dict):
        raise HTTPException(status_code=400, detail="Invalid X-Team-Flags header: expected a JSON object")

    unblocked = payload.get("unblocked_domains") or payload.get("unblockedDomains") or []
    if isinstance(unblocked, str):
        unblocked = [unblocked]
    return TeamFlags(
        force_zdr=bool(payload.get("force_zdr") or payload.get("forceZDR")),
        unblocked_domains=[str(domain).strip().lower() for domain in unblocked if str(domain).strip()],
    )


def get_team_context(
    x_team_id: str | None = Header(default=None),
    x_team_flags: str | None = Header(default=None),
) -> TeamContext:
    team_id = (x_team_id or "").strip() or "anonymous"
    return TeamContext(team_id=team_id, flags=parse_team_flags(x_team_flags))
