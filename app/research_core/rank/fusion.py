"""Rank fusion across query variants.

Reciprocal rank fusion (RRF) sums ``1 / (k + rank)`` for every list a URL
appears in. On top of that a snippet-similarity boost (SSF) adds
``beta * sum(jaccard(snippet, q) for q in queries)`` using the snippet of the
URL's best-ranked occurrence. The output is deterministic: equal scores are
ordered by URL.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, replace
from typing import Sequence

from app.models.results import RESULT_KINDS, FusedResultSet, ProviderResponse, SearchResultItem

_NON_ALNUM = re.compile(r"[^a-z0-9\s]+")


def _tokens(text: str) -> set[str]:
    cleaned = _NON_ALNUM.sub(" ", text.lower())
    return {token for token in cleaned.split() if len(token) >= 3}


def text_similarity(a: str, b: str) -> float:
    """Token-set Jaccard similarity; tokens shorter than 3 chars are ignored."""
    left = _tokens(a or "")
    right = _tokens(b or "")
    if not left or not right:
        return 0.0
    inter = len(left & right)
    union = len(left) + len(right) - inter
    return inter / union if union else 0.0


def similarity_sum(text: str | None, queries: Sequence[str]) -> float:
    if not text or not text.strip():
        return 0.0
    return sum(text_similarity(text, query) for query in queries)


@dataclass(slots=True)
class _Accumulator:
    base: float
    best_item: SearchResultItem
    best_rank: int
    best_list_index: int
    score: float = 0.0


def rrf_merge(
    lists: Sequence[Sequence[SearchResultItem] | None],
    expanded_queries: Sequence[str],
    k: int = 60,
    beta: float = 0.1,
) -> list[SearchResultItem]:
    """Merge per-variant ranked lists into one deduplicated ranked list.

    Never drops a URL present in any input list; items without a URL are
    ignored. Returned items are copies with ``position`` set to 1..N.
    """
    by_url: dict[str, _Accumulator] = {}

    for list_index, items in enumerate(lists):
        for idx, item in enumerate(items or []):
            if not item.url:
                continue
            rank = item.position if item.position is not None else idx + 1
            contribution = 1.0 / (k + rank)
            acc = by_url.get(item.url)
            if acc is None:
                by_url[item.url] = _Accumulator(
                    base=contribution,
                    best_item=item,
                    best_rank=rank,
                    best_list_index=list_index,
                )
                continue
            acc.base += contribution
            # Lists are visited in variant order, so on equal rank the
            # earlier variant already holds the slot.
            if rank < acc.best_rank:
                acc.best_item = item
                acc.best_rank = rank
                acc.best_list_index = list_index

    for acc in by_url.values():
        acc.score = acc.base + beta * similarity_sum(acc.best_item.match_text(), expanded_queries)

    ranked = sorted(by_url.items(), key=lambda entry: (-entry[1].score, entry[0]))
    return [
        replace(acc.best_item, position=position)
        for position, (_url, acc) in enumerate(ranked, start=1)
    ]


def fuse_responses(
    responses: Sequence[ProviderResponse],
    expanded_queries: Sequence[str],
    *,
    k: int = 60,
    beta: float = 0.1,
) -> FusedResultSet:
    """Apply ``rrf_merge`` to every result category independently."""
    fused = FusedResultSet()
    for kind in RESULT_KINDS:
        merged = rrf_merge(
            [response.by_kind(kind) for response in responses],
            expanded_queries,
            k=k,
            beta=beta,
        )
        fused = fused.with_kind(kind, merged)
    return fused


def rerank_by_similarity(
    items: Sequence[SearchResultItem],
    queries: Sequence[str],
) -> list[SearchResultItem]:
    """Order items by snippet-to-query similarity only.

    Stable: equal scores keep their incoming order. Positions are renumbered.
    """
    scored = [
        (similarity_sum(item.match_text(), queries), idx, item)
        for idx, item in enumerate(items)
    ]
    scored.sort(key=lambda entry: (-entry[0], entry[1]))
    return [
        replace(item, position=position)
        for position, (_score, _idx, item) in enumerate(scored, start=1)
    ]
