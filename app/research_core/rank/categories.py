from __future__ import annotations

import re
from dataclasses import replace
from typing import Iterable, Sequence

from app.models.results import FusedResultSet, ResultKind, SearchResultItem

UNLABELED = "unlabeled"

CATEGORY_DOMAINS: dict[str, tuple[str, ...]] = {
    "github": ("github.com",),
    "research": (
        "arxiv.org",
        "scholar.google.com",
        "pubmed.ncbi.nlm.nih.gov",
        "researchgate.net",
        "nature.com",
        "science.org",
        "ieee.org",
        "acm.org",
        "springer.com",
        "sciencedirect.com",
        "semanticscholar.org",
        "biorxiv.org",
        "medrxiv.org",
        "ssrn.com",
        "jstor.org",
        "nih.gov",
    ),
}

# Categories whose membership is decided by the URL path, not the host.
CATEGORY_PATH_PATTERNS: dict[str, str] = {
    "pdf": r"\.pdf(?:$|[?#])",
}

CategoryRule = tuple[re.Pattern[str], str]

LABELED_KINDS: tuple[ResultKind, ...] = ("web", "news")


def build_category_map(categories: Iterable[str]) -> list[CategoryRule]:
    """Build ordered ``(pattern, category)`` rules for the requested categories."""
    rules: list[CategoryRule] = []
    seen: set[str] = set()
    for category in categories:
        name = category.strip().lower()
        if not name or name in seen:
            continue
        seen.add(name)
        for domain in CATEGORY_DOMAINS.get(name, ()):
            host_pattern = re.compile(
                rf"^https?://(?:[^/]+\.)?{re.escape(domain)}(?::\d+)?(?:[/?#]|$)",
                re.IGNORECASE,
            )
            rules.append((host_pattern, name))
        path_pattern = CATEGORY_PATH_PATTERNS.get(name)
        if path_pattern:
            rules.append((re.compile(path_pattern, re.IGNORECASE), name))
    return rules


def label_url(url: str, rules: Sequence[CategoryRule]) -> str:
    """Return the category of the first matching rule, else ``"unlabeled"``."""
    for pattern, category in rules:
        if pattern.search(url):
            return category
    return UNLABELED


def label_results(results: FusedResultSet, rules: Sequence[CategoryRule]) -> FusedResultSet:
    labeled = results
    for kind in LABELED_KINDS:
        items: list[SearchResultItem] = [
            replace(item, category=label_url(item.url, rules)) for item in results.by_kind(kind)
        ]
        labeled = labeled.with_kind(kind, items)
    return labeled
