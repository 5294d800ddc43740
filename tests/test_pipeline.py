from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock

import pytest

from attendry.agents.event_extractor import ExtractionOutcome, ExtractionStatus
from attendry.agents.orchestrator import EventPipeline, PipelineStage
from attendry.agents.reranker import RelevanceReranker
from attendry.models.events import EventDTO
from attendry.models.search import OrchestrationResult, Provider, SearchRequest
from attendry.services.reliability import ReliabilityManager

REQUEST = SearchRequest(base_query="legal conference", country="DE")


def event(title: str, url: str, speakers=None) -> EventDTO:
    return EventDTO(title=title, starts_at="2025-11-15", url=url, speakers=speakers or [])


class FakeSearch:
    def __init__(self, items):
        self.items = list(items)

    async def execute_search(self, request, profile=None):
        return OrchestrationResult(
            items=list(self.items),
            provider_used=Provider.WEB_SEARCH,
            providers_tried=[Provider.WEB_SEARCH],
            query="(legal conference)",
        )


class FakeExtractor:
    def __init__(self, outcomes: dict[str, ExtractionOutcome | Exception], delays: dict[str, float] | None = None):
        self.outcomes = outcomes
        self.delays = delays or {}
        self.calls: list[str] = []

    async def extract(self, url, request=None):
        self.calls.append(url)
        await asyncio.sleep(self.delays.get(url, 0))
        outcome = self.outcomes.get(url, ExtractionOutcome(url=url))
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


def make_pipeline(urls, extractor, **kwargs) -> EventPipeline:
    reranker = RelevanceReranker(ReliabilityManager(), api_key="")
    kwargs.setdefault("min_non_aggregator_urls", 1)
    kwargs.setdefault("max_backstop_aggregators", 0)
    return EventPipeline(FakeSearch(urls), reranker, extractor, **kwargs)


@pytest.mark.asyncio
async def test_no_urls_short_circuits_to_done():
    extractor = FakeExtractor({})
    result = await make_pipeline([], extractor).run(REQUEST)

    assert result.stage == PipelineStage.DONE
    assert result.stages_visited == [PipelineStage.DISCOVERED, PipelineStage.DONE]
    assert result.events == []
    assert result.metrics.urls_discovered == 0
    assert result.metrics.urls_extracted == 0
    assert extractor.calls == []
    assert result.orchestration is not None


@pytest.mark.asyncio
async def test_full_run_visits_every_stage_and_collects_metrics():
    urls = ["https://summit.de/", "https://10times.com/legal", "https://forum.de/", "https://broken.de/"]
    shared = event("Legal Summit", "https://summit.de/")
    extractor = FakeExtractor(
        {
            "https://summit.de/": ExtractionOutcome(
                url="https://summit.de/",
                status=ExtractionStatus.OK,
                events=[
                    event(
                        "Legal Summit",
                        "https://summit.de/",
                        speakers=[{"name": "Reserve Seat"}, {"name": "Dr. Sarah Johnson", "org": "ACME"}],
                    )
                ],
            ),
            "https://forum.de/": ExtractionOutcome(
                url="https://forum.de/", status=ExtractionStatus.OK, events=[shared, event("Legal Forum", "https://forum.de/")]
            ),
            "https://broken.de/": ExtractionOutcome(url="https://broken.de/", status=ExtractionStatus.INVALID_JSON),
        }
    )

    result = await make_pipeline(urls, extractor).run(REQUEST)

    assert result.stages_visited == [
        PipelineStage.DISCOVERED,
        PipelineStage.PRE_FILTERED,
        PipelineStage.RERANKED,
        PipelineStage.EXTRACTED,
        PipelineStage.SPEAKER_FILTERED,
        PipelineStage.DONE,
    ]
    assert "https://10times.com/legal" not in extractor.calls
    assert [e.title for e in result.events] == ["Legal Summit", "Legal Forum"]
    assert [s.name for s in result.events[0].speakers] == ["Dr. Sarah Johnson"]

    metrics = result.metrics
    assert metrics.urls_discovered == 4
    assert metrics.aggregator_dropped == 1
    assert metrics.backstop_kept == 0
    assert metrics.rerank_applied is False
    assert metrics.urls_extracted == 3
    assert metrics.invalid_json_dropped == 1
    assert metrics.events_extracted == 2
    assert metrics.non_persons_filtered == 1
    assert set(metrics.stage_ms) == {stage.value for stage in result.stages_visited}


@pytest.mark.asyncio
async def test_parallel_extraction_keeps_rank_order():
    urls = [f"https://site{i}.de/" for i in range(4)]
    outcomes = {
        url: ExtractionOutcome(url=url, status=ExtractionStatus.OK, events=[event(f"Event number {i}", url)])
        for i, url in enumerate(urls)
    }
    delays = {urls[0]: 0.03, urls[1]: 0.0, urls[2]: 0.02, urls[3]: 0.01}

    result = await make_pipeline(urls, FakeExtractor(outcomes, delays), max_parallel_extract=4).run(REQUEST)

    assert [e.url for e in result.events] == urls


@pytest.mark.asyncio
async def test_extraction_cap_and_crash_do_not_abort_run():
    urls = [f"https://site{i}.de/" for i in range(5)]
    extractor = FakeExtractor(
        {
            urls[0]: RuntimeError("boom"),
            urls[1]: ExtractionOutcome(url=urls[1], status=ExtractionStatus.OK, events=[event("Kept Event", urls[1])]),
        }
    )

    result = await make_pipeline(urls, extractor, max_extractions=2).run(REQUEST)

    assert extractor.calls == urls[:2]
    assert [e.title for e in result.events] == ["Kept Event"]
    assert result.metrics.extraction_failed == 1
    assert result.stage == PipelineStage.DONE


@pytest.mark.asyncio
async def test_persist_upserts_cleaned_events():
    url = "https://summit.de/"
    extractor = FakeExtractor(
        {url: ExtractionOutcome(url=url, status=ExtractionStatus.OK, events=[event("Legal Summit", url)])}
    )
    store = AsyncMock()
    store.configured = True
    store.upsert_events.return_value = 1

    result = await make_pipeline([url], extractor, store=store).run(REQUEST, persist=True)

    store.upsert_events.assert_awaited_once()
    assert store.upsert_events.await_args.kwargs["search_request"] is REQUEST
    assert result.metrics.events_persisted == 1


@pytest.mark.asyncio
async def test_persist_failure_keeps_results():
    url = "https://summit.de/"
    extractor = FakeExtractor(
        {url: ExtractionOutcome(url=url, status=ExtractionStatus.OK, events=[event("Legal Summit", url)])}
    )
    store = AsyncMock()
    store.configured = True
    store.upsert_events.side_effect = RuntimeError("db down")

    result = await make_pipeline([url], extractor, store=store).run(REQUEST, persist=True)

    assert len(result.events) == 1
    assert result.metrics.events_persisted == 0
