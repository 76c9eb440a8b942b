from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal, Protocol

from app.models.results import EvaluationVerdict, ProviderResponse, ResultKind


FetchProvider = Literal["firecrawl", "http", "auto"]


@dataclass(slots=True)
class TeamFlags:
    force_zdr: bool = False
    unblocked_domains: list[str] = field(default_factory=list)


@dataclass(slots=True)
class TeamContext:
    team_id: str = "anonymous"
    flags: TeamFlags = field(default_factory=TeamFlags)


@dataclass(slots=True)
class SearchFilters:
    num_results: int = 10
    types: list[ResultKind] = field(default_factory=lambda: ["web"])
    tbs: str | None = None
    filter: str | None = None
    lang: str | None = None
    country: str | None = None
    location: str | None = None


@dataclass(slots=True)
class FetchSpec:
    url: str
    title: str = ""
    description: str = ""
    team_id: str = "anonymous"
    origin: str = "api"
    timeout_ms: int = 60000
    scrape_options: dict[str, Any] = field(default_factory=dict)
    max_age_ms: int | None = None


@dataclass(slots=True)
class Document:
    url: str
    title: str | None = None
    description: str | None = None
    markdown: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def error(self) -> str | None:
        error = self.metadata.get("error")
        return str(error) if error else None


@dataclass(slots=True)
class CostTracking:
    calls: list[dict[str, Any]] = field(default_factory=list)
    total_cost: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {"calls": list(self.calls), "total_cost": self.total_cost}


@dataclass(slots=True)
class ScrapeJobHandle:
    job_id: str
    url: str
    kind: ResultKind


@dataclass(slots=True)
class RequestSummary:
    request_id: str
    team_id: str
    query: str
    success: bool
    num_docs: int
    credits_billed: int
    time_taken: float
    origin: str = "api"
    integration: str | None = None
    async_scraping: bool = False
    iterations: int = 0
    docs: list[dict[str, Any]] = field(default_factory=list)


class TextCompletion(Protocol):
    async def complete(self, prompt: str, *, temperature: float = 0.0, max_tokens: int = 1024) -> str:
        ...


class SearchProvider(Protocol):
    async def search(self, query: str, filters: SearchFilters) -> ProviderResponse:
        ...


class BlocklistPolicy(Protocol):
    def is_blocked(self, url: str, flags: TeamFlags | None) -> bool:
        ...


class ScrapeQueue(Protocol):
    async def submit(self, spec: FetchSpec) -> str:
        ...

    async def wait(self, job_id: str, timeout: float) -> tuple[Document, CostTracking]:
        ...

    async def remove(self, job_id: str) -> None:
        ...


class BillingService(Protocol):
    def credits_for(
        self,
        options: dict[str, Any],
        context: TeamContext,
        document: Document,
        cost_tracking: CostTracking,
        flags: TeamFlags | None,
    ) -> int:
        ...

    async def bill_team(self, team_id: str, credits: int) -> None:
        ...


class RequestLogger(Protocol):
    async def record(self, summary: RequestSummary) -> None:
        ...


class AnswerJudge(Protocol):
    async def evaluate(self, query: str, evidence: list[tuple[str, list[str]]]) -> EvaluationVerdict:
        ...
