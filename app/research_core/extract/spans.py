from __future__ import annotations

import re
from typing import Sequence

from app.models.results import SearchResultItem
from app.tools.web_utils import normalize_whitespace

MAX_SPAN_CHARS = 550
SPAN_ELLIPSIS = "..."

_LINKED_IMAGE = re.compile(r"\[!\[[\s\S]*?\]\([\s\S]*?\)\]\([\s\S]*?\)")
_IMAGE = re.compile(r"!\[[\s\S]*?\]\([\s\S]*?\)")
_FIGURE = re.compile(r"<figure\b[\s\S]*?</figure>|<img\b[^>]*>", re.IGNORECASE)
_INLINE_SPACE = re.compile(r"[\t ]+")
_LINE_BREAK = re.compile(r"[ \t]*\n[ \t]*")
_BLOCK_BREAK = re.compile(r"\n\s*\n")
_LIST_ITEM = re.compile(r"^\s*[-*•]|^\s*\d+\.")
_QUERY_SPLIT = re.compile(r"[^a-z0-9]+")

EvidenceBundle = list[tuple[str, list[str]]]


def _query_tokens(query: str) -> list[str]:
    return list(dict.fromkeys(t for t in _QUERY_SPLIT.split(query.lower()) if len(t) >= 3))


def _paragraphs(markdown: str) -> list[str]:
    cleaned = _LINKED_IMAGE.sub("", markdown)
    cleaned = _IMAGE.sub("", cleaned)
    cleaned = _FIGURE.sub("", cleaned)
    cleaned = _INLINE_SPACE.sub(" ", cleaned)
    cleaned = _LINE_BREAK.sub("\n", cleaned)
    blocks = [normalize_whitespace(block) for block in _BLOCK_BREAK.split(cleaned)]
    return [block for block in blocks if block and not _LIST_ITEM.search(block)]


def score_block(block: str, tokens: Sequence[str]) -> float:
    lowered = block.lower()
    score = float(sum(1 for token in tokens if token in lowered))
    return score + min(len(block) / 400, 1) * 0.25


def extract_top_spans(markdown: str | None, query: str, max_spans: int = 3) -> list[str]:
    """Pick the paragraphs of ``markdown`` most relevant to ``query``.

    Ties keep document order. Spans longer than 550 characters are cut and
    end with ``...``.
    """
    if not markdown or not markdown.strip():
        return []
    tokens = _query_tokens(query)
    blocks = _paragraphs(markdown)
    ranked = sorted(
        enumerate(blocks),
        key=lambda entry: (-score_block(entry[1], tokens), entry[0]),
    )[: max(1, max_spans)]
    return [
        block if len(block) <= MAX_SPAN_CHARS
        else block[: MAX_SPAN_CHARS - len(SPAN_ELLIPSIS)] + SPAN_ELLIPSIS
        for _idx, block in ranked
    ]


def build_evidence(
    items: Sequence[SearchResultItem],
    query: str,
    *,
    max_spans: int = 3,
) -> EvidenceBundle:
    """Map fetched web items to their top spans.

    Only items that were fetched successfully (markdown present, no error)
    contribute.
    """
    evidence: EvidenceBundle = []
    for item in items:
        if item.fetch_error or not item.markdown:
            continue
        spans = extract_top_spans(item.markdown, query, max_spans)
        if spans:
            evidence.append((item.url, spans))
    return evidence
