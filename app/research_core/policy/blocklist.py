from __future__ import annotations

from dataclasses import replace
from typing import Iterable

from loguru import logger

from app.models.results import RESULT_KINDS, FusedResultSet
from app.research_core.models.interfaces import BlocklistPolicy, TeamFlags
from app.tools import web_utils

DEFAULT_BLOCKED_DOMAINS: tuple[str, ...] = (
    "facebook.com",
    "instagram.com",
    "linkedin.com",
    "x.com",
    "twitter.com",
    "tiktok.com",
    "snapchat.com",
    "pinterest.com",
    "whatsapp.com",
    "threads.net",
)


class DomainBlocklist:
    """Host-based blocklist; a team's unblocked domains take precedence."""

    def __init__(self, extra_domains: Iterable[str] = ()):
        domains = [*DEFAULT_BLOCKED_DOMAINS, *extra_domains]
        self.domains = tuple(dict.fromkeys(d.lower().strip() for d in domains if d.strip()))

    def is_blocked(self, url: str, flags: TeamFlags | None) -> bool:
        host = web_utils.extract_host(url)
        if not host:
            return False
        if flags is not None and any(
            web_utils.host_matches(host, domain) for domain in flags.unblocked_domains
        ):
            return False
        return any(web_utils.host_matches(host, domain) for domain in self.domains)


def limit_results(results: FusedResultSet, limit: int) -> FusedResultSet:
    """Truncate every category to ``limit`` items, preserving order."""
    limited = results
    for kind in RESULT_KINDS:
        limited = limited.with_kind(kind, results.by_kind(kind)[: max(limit, 0)])
    return limited


def filter_blocked(
    results: FusedResultSet,
    policy: BlocklistPolicy,
    flags: TeamFlags | None,
) -> tuple[FusedResultSet, list[str]]:
    """Drop blocked URLs. Returns the kept results and the skipped URLs."""
    kept = results
    skipped: list[str] = []
    for kind in RESULT_KINDS:
        allowed = []
        for item in results.by_kind(kind):
            if policy.is_blocked(item.url, flags):
                logger.info(f"Skipping blocked URL: {item.url}")
                skipped.append(item.url)
                continue
            allowed.append(item)
        # Keep positions dense after removals.
        renumbered = [replace(item, position=position) for position, item in enumerate(allowed, start=1)]
        kept = kept.with_kind(kind, renumbered)
    return kept, skipped
