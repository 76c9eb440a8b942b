from __future__ import annotations

from dataclasses import dataclass, field, fields, replace
from typing import Any, ClassVar, Iterator, Literal


ResultKind = Literal["web", "images", "news"]
RESULT_KINDS: tuple[ResultKind, ...] = ("web", "images", "news")


@dataclass(slots=True)
class SearchResultItem:
    """One ranked search hit. Identity is the URL."""

    kind: ClassVar[ResultKind] = "web"

    url: str
    title: str = ""
    description: str = ""
    position: int | None = None
    category: str | None = None
    markdown: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def match_text(self) -> str:
        """Text used for query similarity: the snippet, else the title."""
        if self.description and self.description.strip():
            return self.description
        return self.title or ""

    @property
    def fetch_error(self) -> str | None:
        error = self.metadata.get("error")
        return str(error) if error else None

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {}
        for item_field in fields(self):
            value = getattr(self, item_field.name)
            if value is None or (item_field.name == "metadata" and not value):
                continue
            payload[item_field.name] = value
        return payload


@dataclass(slots=True)
class WebResult(SearchResultItem):
    kind: ClassVar[ResultKind] = "web"


@dataclass(slots=True)
class NewsResult(SearchResultItem):
    kind: ClassVar[ResultKind] = "news"

    date: str | None = None
    image_url: str | None = None


@dataclass(slots=True)
class ImageResult(SearchResultItem):
    kind: ClassVar[ResultKind] = "images"

    image_url: str | None = None
    image_width: int | None = None
    image_height: int | None = None


@dataclass(slots=True)
class ResultSet:
    """Per-category ordered result lists (web, images, news)."""

    web: list[SearchResultItem] = field(default_factory=list)
    images: list[SearchResultItem] = field(default_factory=list)
    news: list[SearchResultItem] = field(default_factory=list)

    def by_kind(self, kind: ResultKind) -> list[SearchResultItem]:
        return getattr(self, kind)

    def with_kind(self, kind: ResultKind, items: list[SearchResultItem]) -> "ResultSet":
        return replace(self, **{kind: items})

    def iter_items(self) -> Iterator[tuple[ResultKind, SearchResultItem]]:
        for kind in RESULT_KINDS:
            for item in self.by_kind(kind):
                yield kind, item

    def total(self) -> int:
        return len(self.web) + len(self.images) + len(self.news)

    def to_dict(self) -> dict[str, list[dict[str, Any]]]:
        payload: dict[str, list[dict[str, Any]]] = {}
        for kind in RESULT_KINDS:
            items = self.by_kind(kind)
            if items:
                payload[kind] = [item.to_dict() for item in items]
        return payload


# Raw provider output and fused output share one shape.
ProviderResponse = ResultSet
FusedResultSet = ResultSet


@dataclass(slots=True)
class EvaluationVerdict:
    answered: bool = False
    confidence: float = 0.0
    missing_facts: list[str] = field(default_factory=list)

    @classmethod
    def neutral(cls) -> "EvaluationVerdict":
        return cls(answered=False, confidence=0.0, missing_facts=[])

    def to_dict(self) -> dict[str, Any]:
        return {
            "answered": self.answered,
            "confidence": self.confidence,
            "missing_facts": list(self.missing_facts),
        }


@dataclass(slots=True)
class IterationState:
    index: int = 0
    gap_hint: str | None = None
    converged: bool = False
