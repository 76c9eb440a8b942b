from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from typing import Any
from uuid import uuid4

from loguru import logger

from app.agents.query_expander import QueryExpander
from app.config import Settings
from app.models.results import EvaluationVerdict, FusedResultSet, IterationState, RESULT_KINDS
from app.models.schemas import SearchRequest, SearchResponse
from app.research_core.evaluate.service import AnswerEvaluator
from app.research_core.extract.spans import build_evidence
from app.research_core.models.errors import SearchTimeoutError
from app.research_core.models.interfaces import (
    AnswerJudge,
    BillingService,
    BlocklistPolicy,
    RequestLogger,
    RequestSummary,
    ScrapeJobHandle,
    ScrapeQueue,
    SearchFilters,
    SearchProvider,
    TeamContext,
    TextCompletion,
)
from app.research_core.policy.blocklist import filter_blocked, limit_results
from app.research_core.rank.categories import build_category_map, label_results
from app.research_core.rank.fusion import fuse_responses, rerank_by_similarity
from app.research_core.scrape.dispatcher import DispatchOptions, ScrapeDispatcher, ScrapeOutcome
from app.services import logger as log_service
from app.services.background import BackgroundTasks
from app.services.search_executor import run_variant_searches


@dataclass(slots=True)
class LoopOptions:
    """Per-request loop configuration."""

    max_iterations: int = 2
    convergence_threshold: float = 0.6
    max_query_variants: int = 5
    rrf_k: int = 60
    rrf_beta: float = 0.1
    max_evidence_spans: int = 3
    gap_hint_max_facts: int = 5
    enrichment_enabled: bool = True
    variant_failure_fatal: bool = False
    results_buffer_factor: int = 2
    request_deadline_seconds: float | None = None
    deadline_slack_seconds: float = 30.0
    scrape_max_age_ms: int | None = None

    @classmethod
    def from_settings(cls, config: Settings) -> "LoopOptions":
        deadline = float(config.request_deadline_seconds)
        return cls(
            max_iterations=max(int(config.max_iterations), 1),
            convergence_threshold=float(config.convergence_threshold),
            max_query_variants=max(int(config.max_query_variants), 1),
            rrf_k=int(config.rrf_k),
            rrf_beta=float(config.rrf_beta),
            max_evidence_spans=max(int(config.max_evidence_spans), 1),
            gap_hint_max_facts=max(int(config.gap_hint_max_facts), 1),
            enrichment_enabled=bool(config.enrichment_enabled),
            variant_failure_fatal=bool(config.search_variant_failure_fatal),
            results_buffer_factor=max(int(config.search_results_buffer_factor), 1),
            request_deadline_seconds=deadline if deadline > 0 else None,
            deadline_slack_seconds=max(float(config.deadline_slack_seconds), 0.0),
            scrape_max_age_ms=int(config.scrape_max_age_ms),
        )


@dataclass(slots=True)
class IterationResult:
    results: FusedResultSet
    expanded_queries: list[str]
    credits: int = 0
    verdict: EvaluationVerdict | None = None
    handles: list[ScrapeJobHandle] | None = None


@dataclass(slots=True)
class LoopProgress:
    """Iterations completed so far. Outlives a cancelled loop."""

    state: IterationState = field(default_factory=IterationState)
    last: IterationResult | None = None
    completed: int = 0


@dataclass(slots=True)
class SearchOutcome:
    request_id: str
    data: FusedResultSet
    credits_used: int
    iterations: int
    expanded_queries: list[str] = field(default_factory=list)
    verdict: EvaluationVerdict | None = None
    scrape_ids: dict[str, list[str]] | None = None

    def to_response(self) -> SearchResponse:
        return SearchResponse(
            success=True,
            data=self.data.to_dict(),
            credits_used=self.credits_used,
            scrape_ids=self.scrape_ids,
        )


class SearchOrchestrator:
    """Drives the iterative retrieval loop for one search request.

    Each iteration runs, in order: expand the query, search every variant
    concurrently, fuse the ranked lists, label, limit, drop blocked URLs,
    fetch page content, extract evidence spans and evaluate whether they
    answer the query. The loop stops when the evaluation converges
    (answered with enough confidence) or after ``max_iterations``. When
    content enrichment is off, or jobs are dispatched asynchronously, there
    is nothing to evaluate and the loop stops after one iteration.

    The response is the result set of the last completed iteration, with
    the web results re-ranked once by snippet similarity. Credits are those
    of that result set. When the request deadline fires mid-loop the last
    completed iteration is returned; only a deadline hit before any
    iteration completes raises ``SearchTimeoutError``.
    """

    def __init__(
        self,
        *,
        completion: TextCompletion,
        search_provider: SearchProvider,
        scrape_queue: ScrapeQueue,
        blocklist: BlocklistPolicy,
        billing: BillingService,
        request_logger: RequestLogger,
        background: BackgroundTasks | None = None,
        options: LoopOptions | None = None,
        expander: QueryExpander | None = None,
        evaluator: AnswerJudge | None = None,
    ):
        self.search_provider = search_provider
        self.blocklist = blocklist
        self.billing = billing
        self.request_logger = request_logger
        self.background = background or BackgroundTasks()
        self.options = options or LoopOptions()
        self.expander = expander or QueryExpander(completion)
        self.evaluator = evaluator or AnswerEvaluator(completion)
        self.dispatcher = ScrapeDispatcher(scrape_queue)

    async def run(self, request: SearchRequest, team: TeamContext | None = None) -> SearchOutcome:
        team = team or TeamContext()
        request_id = str(uuid4())
        started = time.monotonic()
        deadline = self._deadline_for(request)
        progress = LoopProgress()
        status = "success"
        logger.info(f"Searching for results: request={request_id} query={request.query!r}")

        try:
            if deadline:
                await asyncio.wait_for(self._iterate(request, team, request_id, progress), timeout=deadline)
            else:
                await self._iterate(request, team, request_id, progress)
        except asyncio.TimeoutError:
            if progress.last is None:
                self._record(request, team, request_id, None, time.monotonic() - started, status="timeout")
                raise SearchTimeoutError(
                    f"Search request exceeded its deadline of {deadline:.0f}s"
                ) from None
            logger.warning(
                f"Search request {request_id} reached its {deadline:.0f}s deadline, "
                f"returning iteration {progress.completed} of {self.options.max_iterations}"
            )
            status = "partial"
        except Exception:
            logger.exception(f"Unhandled error in search request {request_id}")
            self._record(request, team, request_id, None, time.monotonic() - started, status="error")
            raise

        outcome = self._finish(request_id, progress)
        elapsed = time.monotonic() - started
        if not request.async_scraping and outcome.credits_used > 0:
            # Async jobs bill themselves when they complete.
            self.background.spawn(
                self.billing.bill_team(team.team_id, outcome.credits_used),
                name=f"bill:{request_id}",
            )
        self._record(request, team, request_id, outcome, elapsed, status=status)
        return outcome

    def _deadline_for(self, request: SearchRequest) -> float | None:
        deadline = self.options.request_deadline_seconds
        if not deadline:
            return None
        # Leave room for at least one iteration whose fetches run to their own timeout.
        return max(deadline, request.timeout / 1000.0 + self.options.deadline_slack_seconds)

    async def _iterate(
        self,
        request: SearchRequest,
        team: TeamContext,
        request_id: str,
        progress: LoopProgress,
    ) -> None:
        rules = build_category_map(request.categories)
        filters = SearchFilters(
            num_results=request.limit * self.options.results_buffer_factor,
            types=request.source_types,
            tbs=request.tbs,
            filter=request.filter,
            lang=request.lang,
            country=request.country,
            location=request.location,
        )
        dispatch_options = DispatchOptions(
            team=team,
            origin=request.origin,
            timeout_ms=request.timeout,
            scrape_options=request.scrape_options.model_dump(by_alias=True, exclude_none=True),
            max_age_ms=self.options.scrape_max_age_ms,
        )

        state = progress.state
        while True:
            result = await self._run_iteration(request, team, state, rules, filters, dispatch_options, request_id)
            progress.last = result
            progress.completed = state.index + 1
            if result.verdict is None:
                break

            state.converged = (
                result.verdict.answered
                and result.verdict.confidence >= self.options.convergence_threshold
            )
            state.gap_hint = None if state.converged else self._gap_hint(result.verdict)
            logger.info(
                f"Agent iteration evaluation: iteration={state.index} "
                f"answered={result.verdict.answered} confidence={result.verdict.confidence:.2f} "
                f"converged={state.converged} has_gap_hint={bool(state.gap_hint)}"
            )
            if state.converged or state.index + 1 >= self.options.max_iterations:
                break
            state.index += 1

    def _finish(self, request_id: str, progress: LoopProgress) -> SearchOutcome:
        """Outcome of the last completed iteration, billed for that result set only."""
        result = progress.last
        log_service.log_search_step(
            request_id, progress.completed - 1, "stop", {"converged": progress.state.converged}
        )
        final = result.results.with_kind(
            "web", rerank_by_similarity(result.results.web, result.expanded_queries)
        )
        return SearchOutcome(
            request_id=request_id,
            data=final,
            credits_used=result.credits,
            iterations=progress.completed,
            expanded_queries=result.expanded_queries,
            verdict=result.verdict,
            scrape_ids=self._scrape_ids(final, result.handles) if result.handles is not None else None,
        )

    async def _run_iteration(
        self,
        request: SearchRequest,
        team: TeamContext,
        state: IterationState,
        rules,
        filters: SearchFilters,
        dispatch_options: DispatchOptions,
        request_id: str,
    ) -> IterationResult:
        def step(name: str, **data: Any) -> None:
            log_service.log_search_step(request_id, state.index, name, data or None)

        step("expanding", gap_hint=state.gap_hint)
        queries = await self.expander.expand(
            request.query, state.gap_hint, self.options.max_query_variants
        )

        step("searching", variants=len(queries))
        responses = await run_variant_searches(
            self.search_provider,
            queries,
            filters,
            fail_fast=self.options.variant_failure_fatal,
        )

        step("fusing")
        fused = fuse_responses(responses, queries, k=self.options.rrf_k, beta=self.options.rrf_beta)

        step("labeling", rules=len(rules))
        labeled = label_results(fused, rules)

        step("limiting", limit=request.limit)
        limited = limit_results(labeled, request.limit)

        step("filtering")
        filtered, skipped = filter_blocked(limited, self.blocklist, team.flags)
        if skipped:
            step("filtered", skipped=len(skipped))

        if not self.options.enrichment_enabled:
            # Without fetching, every returned result is billed.
            return IterationResult(results=filtered, expanded_queries=queries, credits=filtered.total())

        step("dispatching", items=filtered.total(), async_scraping=request.async_scraping)
        if request.async_scraping:
            dispatched = await self.dispatcher.dispatch_async(filtered, dispatch_options)
            return IterationResult(
                results=dispatched.results,
                expanded_queries=queries,
                credits=len(dispatched.handles),
                handles=dispatched.handles,
            )

        synced = await self.dispatcher.dispatch_sync(filtered, dispatch_options)
        credits = self._count_credits(synced.outcomes, request, team)

        step("extracting")
        evidence = build_evidence(
            synced.results.web, request.query, max_spans=self.options.max_evidence_spans
        )

        step("evaluating", sources=len(evidence))
        verdict = await self.evaluator.evaluate(request.query, evidence)
        return IterationResult(
            results=synced.results,
            expanded_queries=queries,
            credits=credits,
            verdict=verdict,
        )

    def _gap_hint(self, verdict: EvaluationVerdict) -> str | None:
        facts = [fact for fact in verdict.missing_facts if fact][: self.options.gap_hint_max_facts]
        return "; ".join(facts) or None

    def _count_credits(self, outcomes: list[ScrapeOutcome], request: SearchRequest, team: TeamContext) -> int:
        produced = [outcome for outcome in outcomes if outcome.success]
        options = request.scrape_options.model_dump(by_alias=True, exclude_none=True)
        try:
            return sum(
                self.billing.credits_for(options, team, o.document, o.cost_tracking, team.flags)
                for o in produced
            )
        except Exception as exc:
            logger.error(f"Error calculating credits for billing: {exc}")
            return len(produced)

    @staticmethod
    def _scrape_ids(results: FusedResultSet, handles: list[ScrapeJobHandle]) -> dict[str, list[str]]:
        by_item = {(handle.kind, handle.url): handle.job_id for handle in handles}
        grouped: dict[str, list[str]] = {}
        for kind in RESULT_KINDS:
            ids = [by_item[(kind, item.url)] for item in results.by_kind(kind) if (kind, item.url) in by_item]
            if ids:
                grouped[kind] = ids
        return grouped

    def _record(
        self,
        request: SearchRequest,
        team: TeamContext,
        request_id: str,
        outcome: SearchOutcome | None,
        elapsed: float,
        status: str = "success",
    ) -> None:
        log_service.log_request_metrics(
            request_id,
            elapsed,
            iterations=outcome.iterations if outcome else 0,
            credits_used=outcome.credits_used if outcome else 0,
            num_results=outcome.data.total() if outcome else 0,
            async_scraping=request.async_scraping,
            status=status,
        )
        summary = RequestSummary(
            request_id=request_id,
            team_id=team.team_id,
            query=request.query,
            success=outcome is not None,
            num_docs=outcome.data.total() if outcome else 0,
            credits_billed=outcome.credits_used if outcome else 0,
            time_taken=round(elapsed, 3),
            origin=request.origin,
            integration=request.integration,
            async_scraping=request.async_scraping,
            iterations=outcome.iterations if outcome else 0,
            docs=[outcome.data.to_dict()] if outcome else [],
        )
        self.background.spawn(self.request_logger.record(summary), name=f"log:{request_id}")
