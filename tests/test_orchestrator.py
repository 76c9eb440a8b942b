from __future__ import annotations

import asyncio

import pytest

from app.agents.orchestrator import LoopOptions, SearchOrchestrator
from app.config import Settings
from app.models.results import ProviderResponse, ResultSet, WebResult
from app.models.schemas import SearchRequest
from app.research_core.models.errors import SearchTimeoutError
from app.research_core.models.interfaces import CostTracking, Document, FetchSpec, ScrapeJobHandle, TeamContext
from app.research_core.policy.blocklist import DomainBlocklist
from app.research_core.scrape.queue import InProcessScrapeQueue
from app.services.background import BackgroundTasks

NOT_ANSWERED = '{"answered": false, "confidence": 0.3, "missing_facts": ["release year", "author"]}'
ANSWERED = '{"answered": true, "confidence": 0.9, "missing_facts": []}'


class ScriptedCompletion:
    def __init__(self, variants: str = "[]", verdicts=()):
        self.variants = variants
        self.verdicts = list(verdicts)
        self.expansion_prompts: list[str] = []
        self.evaluation_prompts: list[str] = []

    async def complete(self, prompt, *, temperature=0.0, max_tokens=1024):
        if prompt.startswith("You improve a web search query"):
            self.expansion_prompts.append(prompt)
            return self.variants
        self.evaluation_prompts.append(prompt)
        return self.verdicts.pop(0) if self.verdicts else NOT_ANSWERED


class StaticProvider:
    def __init__(self, urls, *, delay: float = 0.0):
        self.urls = urls
        self.delay = delay
        self.queries: list[str] = []

    async def search(self, query, filters):
        self.queries.append(query)
        if self.delay:
            await asyncio.sleep(self.delay)
        return ProviderResponse(
            web=[
                WebResult(url=url, title=f"title {idx}", description=desc, position=idx)
                for idx, (url, desc) in enumerate(self.urls, start=1)
            ]
        )


class FakeQueue:
    def __init__(self):
        self.submitted: list[FetchSpec] = []
        self.removed: list[str] = []
        self._specs: dict[str, FetchSpec] = {}

    async def submit(self, spec):
        job_id = f"job-{len(self.submitted) + 1}"
        self.submitted.append(spec)
        self._specs[job_id] = spec
        return job_id

    async def wait(self, job_id, timeout):
        url = self._specs[job_id].url
        return Document(url=url, markdown=f"Release notes for the library at {url}."), CostTracking()

    async def remove(self, job_id):
        self.removed.append(job_id)


class RecordingBilling:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.billed: list[tuple[str, int]] = []

    def credits_for(self, options, context, document, cost_tracking, flags):
        if self.fail:
            raise RuntimeError("pricing table missing")
        return 2

    async def bill_team(self, team_id, credits):
        self.billed.append((team_id, credits))


class RecordingLogger:
    def __init__(self):
        self.summaries = []

    async def record(self, summary):
        self.summaries.append(summary)


RESULTS = [
    ("https://docs.example/release", "library release notes and changelog"),
    ("https://blog.example/post", "a blog post about gardening"),
    ("https://wiki.example/page", "library history"),
]


def _orchestrator(completion, provider=None, *, billing=None, blocklist=None, queue=None, **option_overrides):
    options = LoopOptions(**{"max_iterations": 2, "convergence_threshold": 0.6, **option_overrides})
    background = BackgroundTasks()
    orchestrator = SearchOrchestrator(
        completion=completion,
        search_provider=provider or StaticProvider(RESULTS),
        scrape_queue=queue or FakeQueue(),
        blocklist=blocklist or DomainBlocklist(),
        billing=billing or RecordingBilling(),
        request_logger=RecordingLogger(),
        background=background,
        options=options,
    )
    return orchestrator, background


@pytest.mark.asyncio
async def test_converged_first_iteration_stops_the_loop():
    completion = ScriptedCompletion(variants='["library release date"]', verdicts=[ANSWERED])
    orchestrator, background = _orchestrator(completion)

    outcome = await orchestrator.run(SearchRequest(query="library release", limit=3), TeamContext(team_id="t1"))
    await background.drain()

    assert outcome.iterations == 1
    assert outcome.verdict.answered is True
    assert outcome.expanded_queries == ["library release", "library release date"]
    assert len(completion.expansion_prompts) == 1
    assert outcome.credits_used == 6
    assert orchestrator.billing.billed == [("t1", 6)]
    assert all(item.markdown for item in outcome.data.web)


@pytest.mark.asyncio
async def test_unanswered_runs_max_iterations_with_gap_hint():
    completion = ScriptedCompletion(verdicts=[NOT_ANSWERED, NOT_ANSWERED, NOT_ANSWERED])
    orchestrator, background = _orchestrator(completion)

    outcome = await orchestrator.run(SearchRequest(query="library release", limit=3))
    await background.drain()

    assert outcome.iterations == 2
    assert len(completion.expansion_prompts) == 2
    assert len(completion.evaluation_prompts) == 2
    assert "Missing facts to target" not in completion.expansion_prompts[0]
    assert "Missing facts to target: release year; author" in completion.expansion_prompts[1]
    assert outcome.credits_used == 6
    assert orchestrator.billing.billed == [("anonymous", 6)]


@pytest.mark.asyncio
async def test_gap_hint_keeps_first_five_missing_facts():
    verdict = '{"answered": false, "confidence": 0.1, "missing_facts": ["a1", "b2", "c3", "d4", "e5", "f6"]}'
    completion = ScriptedCompletion(verdicts=[verdict])
    orchestrator, _ = _orchestrator(completion)

    await orchestrator.run(SearchRequest(query="q", limit=1))

    assert "Missing facts to target: a1; b2; c3; d4; e5\n" in completion.expansion_prompts[1]


@pytest.mark.asyncio
async def test_low_confidence_answer_does_not_converge():
    completion = ScriptedCompletion(verdicts=['{"answered": true, "confidence": 0.5, "missing_facts": []}'])
    orchestrator, _ = _orchestrator(completion)

    outcome = await orchestrator.run(SearchRequest(query="q", limit=1))

    assert outcome.iterations == 2


@pytest.mark.asyncio
async def test_all_results_blocked_yields_empty_data_and_no_credits():
    provider = StaticProvider([("https://www.facebook.com/a", "x"), ("https://twitter.com/b", "y")])
    completion = ScriptedCompletion(verdicts=[ANSWERED])
    orchestrator, background = _orchestrator(completion, provider)

    outcome = await orchestrator.run(SearchRequest(query="q", limit=5))
    await background.drain()

    assert outcome.data.total() == 0
    assert outcome.credits_used == 0
    assert orchestrator.billing.billed == []


@pytest.mark.asyncio
async def test_enrichment_disabled_bills_result_count_without_fetching():
    completion = ScriptedCompletion()
    orchestrator, background = _orchestrator(completion, enrichment_enabled=False)

    outcome = await orchestrator.run(SearchRequest(query="q", limit=2))
    await background.drain()

    assert outcome.iterations == 1
    assert outcome.credits_used == 2
    assert outcome.verdict is None
    assert completion.evaluation_prompts == []
    assert orchestrator.dispatcher.queue.submitted == []


@pytest.mark.asyncio
async def test_async_scraping_returns_job_ids_and_skips_billing():
    completion = ScriptedCompletion()
    orchestrator, background = _orchestrator(completion)

    outcome = await orchestrator.run(SearchRequest(query="q", limit=3, async_scraping=True))
    await background.drain()

    assert outcome.iterations == 1
    assert outcome.credits_used == 3
    assert sorted(outcome.scrape_ids["web"]) == ["job-1", "job-2", "job-3"]
    assert orchestrator.billing.billed == []
    assert orchestrator.dispatcher.queue.removed == []


@pytest.mark.asyncio
async def test_credit_calculation_failure_falls_back_to_item_count():
    completion = ScriptedCompletion(verdicts=[ANSWERED])
    orchestrator, _ = _orchestrator(completion, billing=RecordingBilling(fail=True))

    outcome = await orchestrator.run(SearchRequest(query="q", limit=3))

    assert outcome.credits_used == 3


@pytest.mark.asyncio
async def test_final_web_results_are_reranked_by_similarity():
    provider = StaticProvider([
        ("https://a.example", "nothing to see"),
        ("https://b.example", "nothing either"),
        ("https://c.example", "gardening tips for spring"),
    ])
    completion = ScriptedCompletion(verdicts=[ANSWERED])
    orchestrator, _ = _orchestrator(completion, provider, rrf_beta=0.0)

    outcome = await orchestrator.run(SearchRequest(query="gardening tips", limit=3))

    assert [item.url for item in outcome.data.web] == ["https://c.example", "https://a.example", "https://b.example"]
    assert [item.position for item in outcome.data.web] == [1, 2, 3]


@pytest.mark.asyncio
async def test_provider_is_asked_for_a_buffer_of_results():
    seen = []

    class RecordingProvider(StaticProvider):
        async def search(self, query, filters):
            seen.append(filters.num_results)
            return await super().search(query, filters)

    completion = ScriptedCompletion(verdicts=[ANSWERED])
    orchestrator, _ = _orchestrator(completion, RecordingProvider(RESULTS))

    await orchestrator.run(SearchRequest(query="q", limit=4))

    assert seen == [8]


@pytest.mark.asyncio
async def test_deadline_before_first_iteration_raises_search_timeout():
    completion = ScriptedCompletion()
    orchestrator, background = _orchestrator(
        completion,
        StaticProvider(RESULTS, delay=5),
        request_deadline_seconds=0.05,
        deadline_slack_seconds=0.0,
    )

    with pytest.raises(SearchTimeoutError):
        await orchestrator.run(SearchRequest(query="q", limit=1, timeout=1000))
    await background.drain()

    summary = orchestrator.request_logger.summaries[0]
    assert summary.success is False


@pytest.mark.asyncio
async def test_deadline_mid_loop_returns_last_completed_iteration():
    async def hanging_fetcher(spec):
        await asyncio.sleep(30)
        return Document(url=spec.url)

    completion = ScriptedCompletion(verdicts=[NOT_ANSWERED, NOT_ANSWERED])
    orchestrator, background = _orchestrator(
        completion,
        queue=InProcessScrapeQueue(fetcher=hanging_fetcher),
        request_deadline_seconds=1.5,
        deadline_slack_seconds=0.0,
    )

    outcome = await orchestrator.run(SearchRequest(query="library release", limit=2, timeout=1000))
    await background.drain()

    assert outcome.iterations == 1
    assert len(outcome.data.web) == 2
    assert all("timed out" in item.metadata["error"] for item in outcome.data.web)
    assert outcome.credits_used == 0
    assert len(completion.expansion_prompts) == 2
    summary = orchestrator.request_logger.summaries[0]
    assert summary.success is True
    assert summary.iterations == 1


def test_deadline_leaves_room_for_one_fetch_timeout():
    orchestrator, _ = _orchestrator(ScriptedCompletion(), request_deadline_seconds=10.0)

    assert orchestrator._deadline_for(SearchRequest(query="q", timeout=60000)) == pytest.approx(90.0)
    assert orchestrator._deadline_for(SearchRequest(query="q", timeout=1000)) == pytest.approx(31.0)

    orchestrator.options.request_deadline_seconds = None
    assert orchestrator._deadline_for(SearchRequest(query="q")) is None


@pytest.mark.asyncio
async def test_blocked_results_are_neither_fetched_nor_billed():
    provider = StaticProvider([
        ("https://www.facebook.com/library", "library release on social media"),
        ("https://docs.example/release", "library release notes"),
        ("https://wiki.example/page", "library history"),
    ])
    completion = ScriptedCompletion(verdicts=[ANSWERED])
    orchestrator, background = _orchestrator(completion, provider)

    outcome = await orchestrator.run(SearchRequest(query="library release", limit=5), TeamContext(team_id="t2"))
    await background.drain()

    fetched = [spec.url for spec in orchestrator.dispatcher.queue.submitted]
    assert sorted(fetched) == ["https://docs.example/release", "https://wiki.example/page"]
    assert "https://www.facebook.com/library" not in [item.url for item in outcome.data.web]
    assert outcome.credits_used == 4
    assert orchestrator.billing.billed == [("t2", 4)]


@pytest.mark.asyncio
async def test_request_summary_is_recorded():
    completion = ScriptedCompletion(verdicts=[ANSWERED])
    orchestrator, background = _orchestrator(completion)

    outcome = await orchestrator.run(
        SearchRequest(query="q", limit=2, origin="cli", integration="zapier"), TeamContext(team_id="t9")
    )
    await background.drain()

    summary = orchestrator.request_logger.summaries[0]
    assert (summary.team_id, summary.origin, summary.integration) == ("t9", "cli", "zapier")
    assert summary.success is True
    assert summary.num_docs == 2
    assert summary.credits_billed == outcome.credits_used
    assert summary.iterations == 1


def test_scrape_ids_follow_final_result_order():
    results = ResultSet(web=[WebResult(url="https://b.example"), WebResult(url="https://a.example")])
    handles = [
        ScrapeJobHandle(job_id="job-1", url="https://a.example", kind="web"),
        ScrapeJobHandle(job_id="job-2", url="https://b.example", kind="web"),
    ]

    assert SearchOrchestrator._scrape_ids(results, handles) == {"web": ["job-2", "job-1"]}


def test_loop_options_from_settings():
    options = LoopOptions.from_settings(
        Settings(max_iterations=0, request_deadline_seconds=0, enrichment_enabled=False)
    )

    assert options.max_iterations == 1
    assert options.request_deadline_seconds is None
    assert options.enrichment_enabled is False
    assert options.deadline_slack_seconds == 30.0
