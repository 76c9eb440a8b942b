from __future__ import annotations

import json
import re
from typing import Any, Callable, Sequence

from loguru import logger

from app.research_core.models.interfaces import TextCompletion
from app.services.prompt_store import render_prompt
from app.tools.web_utils import normalize_whitespace

_LEADING_FENCE = re.compile(r"^```[a-zA-Z]*\s*")
_TRAILING_FENCE = re.compile(r"\s*```$")
_ITEM_SPLIT = re.compile(r"\n|,")
_BULLET = re.compile(r"^\s*(?:[-*•]+|\d+[.)])\s*")


def _as_string_list(value: Any) -> list[str] | None:
    if not isinstance(value, list):
        return None
    return [str(entry) for entry in value if entry is not None]


class VariantListParser:
    """Turn free-form completion text into a list of strings.

    Stages run in order and the first one that succeeds wins:
    ``parse_literal`` (a JSON array), ``parse_fenced`` (a JSON array inside a
    code fence) and ``parse_lines`` (newline/comma separated entries with
    bullets and numbering stripped).
    """

    @staticmethod
    def strip_fence(text: str) -> str:
        cleaned = _LEADING_FENCE.sub("", text.strip(), count=1)
        return _TRAILING_FENCE.sub("", cleaned, count=1).strip()

    def parse_literal(self, text: str) -> list[str] | None:
        try:
            return _as_string_list(json.loads(text))
        except (ValueError, TypeError, RecursionError):
            return None

    def parse_fenced(self, text: str) -> list[str] | None:
        stripped = self.strip_fence(text)
        if stripped == text.strip():
            return None
        return self.parse_literal(stripped)

    def parse_lines(self, text: str) -> list[str] | None:
        entries = []
        for raw in _ITEM_SPLIT.split(self.strip_fence(text)):
            entry = _BULLET.sub("", raw).strip().strip("[]").strip().strip("\"'").strip()
            if entry:
                entries.append(entry)
        return entries or None

    @property
    def stages(self) -> list[Callable[[str], list[str] | None]]:
        return [self.parse_literal, self.parse_fenced, self.parse_lines]

    def parse(self, text: str) -> list[str] | None:
        if not text or not text.strip():
            return None
        for stage in self.stages:
            result = stage(text)
            if result is not None:
                return result
        return None


def merge_variants(original: str, candidates: Sequence[str], max_variants: int) -> list[str]:
    """Original first, then unique (case-insensitive) candidates up to the cap."""
    variants = [original]
    seen = {original.lower()}
    for candidate in candidates:
        if len(variants) >= max(max_variants, 1):
            break
        query = normalize_whitespace(candidate)
        key = query.lower()
        if not query or key in seen:
            continue
        seen.add(key)
        variants.append(query)
    return variants


class QueryExpander:
    """Generate query variants through the completion backend. Never raises."""

    def __init__(self, completion: TextCompletion, *, parser: VariantListParser | None = None):
        self.completion = completion
        self.parser = parser or VariantListParser()

    def build_prompt(self, query: str, gap_hint: str | None, max_alternatives: int) -> str:
        gap_hint_line = (
            render_prompt("query_expansion.gap_hint_line", gap_hint=gap_hint) if gap_hint else ""
        )
        return render_prompt(
            "query_expansion.user",
            max_alternatives=max_alternatives,
            query=query,
            gap_hint_line=gap_hint_line,
        )

    async def expand(
        self,
        query: str,
        gap_hint: str | None = None,
        max_variants: int = 5,
    ) -> list[str]:
        original = normalize_whitespace(query)
        if max_variants <= 1:
            return [original]

        try:
            prompt = self.build_prompt(original, gap_hint, max_variants - 1)
            text = await self.completion.complete(prompt, temperature=0.2, max_tokens=400)
        except Exception as exc:
            logger.warning(f"Query expansion failed, using original query only: {exc}")
            return [original]

        try:
            candidates = self.parser.parse(text or "")
        except Exception as exc:
            logger.warning(f"Query expansion reply could not be parsed: {exc}")
            return [original]
        if not candidates:
            logger.info("Query expansion reply could not be parsed, using original query only")
            return [original]
        return merge_variants(original, candidates, max_variants)
