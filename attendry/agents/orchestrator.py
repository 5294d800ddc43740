"""Event discovery pipeline coordinator.

Stages run strictly in order:

    DISCOVERED -> PRE_FILTERED -> RERANKED -> EXTRACTED -> SPEAKER_FILTERED -> DONE

Only an empty discovery stage ends the run early (straight to DONE with zero
metrics). Rerank failures degrade to pass-through and per-URL extraction
failures drop that URL's events; neither aborts the run.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any

from loguru import logger

from attendry.agents.event_extractor import EventExtractor, ExtractionOutcome, ExtractionStatus
from attendry.agents.reranker import RelevanceReranker, RerankParams
from attendry.agents.speaker_filter import filter_event_speakers
from attendry.agents.url_selector import pre_filter
from attendry.config import settings
from attendry.models.events import EventDTO, event_dedupe_key
from attendry.models.search import OrchestrationResult, Provider, SearchRequest, UserProfile
from attendry.services.logger import log_stage
from attendry.services.query_cache import QueryCache
from attendry.services.reliability import ReliabilityManager
from attendry.services.search_orchestrator import SearchOrchestrator
from attendry.services.supabase import EventStore
from attendry.tools.cse_search import SearchEngineClient
from attendry.tools.database_search import DatabaseSearchClient
from attendry.tools.firecrawl_search import WebSearchClient
from attendry.tools.page_fetcher import PageFetcher


class PipelineStage(str, Enum):
    DISCOVERED = "discovered"
    PRE_FILTERED = "pre_filtered"
    RERANKED = "reranked"
    EXTRACTED = "extracted"
    SPEAKER_FILTERED = "speaker_filtered"
    DONE = "done"


STAGE_ORDER = (
    PipelineStage.DISCOVERED,
    PipelineStage.PRE_FILTERED,
    PipelineStage.RERANKED,
    PipelineStage.EXTRACTED,
    PipelineStage.SPEAKER_FILTERED,
    PipelineStage.DONE,
)


@dataclass(slots=True)
class PipelineMetrics:
    urls_discovered: int = 0
    aggregator_dropped: int = 0
    backstop_kept: int = 0
    rerank_applied: bool = False
    rerank_skipped_reason: str | None = None
    urls_extracted: int = 0
    invalid_json_dropped: int = 0
    extraction_failed: int = 0
    schema_dropped: int = 0
    events_extracted: int = 0
    non_persons_filtered: int = 0
    events_persisted: int = 0
    stage_ms: dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(slots=True)
class PipelineResult:
    events: list[EventDTO] = field(default_factory=list)
    metrics: PipelineMetrics = field(default_factory=PipelineMetrics)
    stage: PipelineStage = PipelineStage.DISCOVERED
    orchestration: OrchestrationResult | None = None
    stages_visited: list[PipelineStage] = field(default_factory=list)


class _StageTracker:
    def __init__(self, result: PipelineResult):
        self._result = result
        self._started = time.perf_counter()

    def advance(self, stage: PipelineStage, **data: Any) -> None:
        expected = STAGE_ORDER[len(self._result.stages_visited)]
        if stage != expected:
            raise RuntimeError(f"Pipeline stage {stage.value} out of order (expected {expected.value})")
        elapsed = int((time.perf_counter() - self._started) * 1000)
        self._result.stage = stage
        self._result.stages_visited.append(stage)
        self._result.metrics.stage_ms[stage.value] = elapsed
        log_stage(stage.value, "completed", duration_ms=elapsed, data=data or None)
        self._started = time.perf_counter()

    def short_circuit(self) -> None:
        """Jump straight to DONE after an empty discovery stage."""
        self._result.stage = PipelineStage.DONE
        self._result.stages_visited.append(PipelineStage.DONE)
        log_stage(PipelineStage.DONE.value, "short_circuit", data={"reason": "no urls discovered"})


class EventPipeline:
    def __init__(
        self,
        search: SearchOrchestrator,
        reranker: RelevanceReranker,
        extractor: EventExtractor,
        *,
        store: EventStore | None = None,
        max_extractions: int | None = None,
        max_parallel_extract: int | None = None,
        min_non_aggregator_urls: int | None = None,
        max_backstop_aggregators: int | None = None,
    ):
        self._search = search
        self._reranker = reranker
        self._extractor = extractor
        self._store = store
        self._max_extractions = max_extractions or settings.pipeline_max_extractions
        self._max_parallel = max(1, max_parallel_extract or settings.pipeline_max_parallel_extract)
        self._min_non_agg = min_non_aggregator_urls
        self._max_backstop = max_backstop_aggregators

    async def run(
        self,
        request: SearchRequest,
        *,
        profile: UserProfile | None = None,
        persist: bool = False,
    ) -> PipelineResult:
        orchestration = await self._search.execute_search(request, profile)
        result = await self.process_urls(orchestration.items, request, persist=persist)
        result.orchestration = orchestration
        return result

    async def process_urls(
        self,
        urls: list[str],
        request: SearchRequest,
        *,
        persist: bool = False,
    ) -> PipelineResult:
        result = PipelineResult()
        metrics = result.metrics
        tracker = _StageTracker(result)

        metrics.urls_discovered = len(urls)
        tracker.advance(PipelineStage.DISCOVERED, urls=len(urls))
        if not urls:
            logger.info("No URLs discovered; pipeline finished with no results")
            tracker.short_circuit()
            return result

        filtered = pre_filter(
            urls,
            min_non_aggregator_urls=self._min_non_agg,
            max_backstop_aggregators=self._max_backstop,
        )
        metrics.aggregator_dropped = filtered.aggregator_dropped
        metrics.backstop_kept = filtered.backstop_kept
        tracker.advance(PipelineStage.PRE_FILTERED, kept=len(filtered.urls))

        reranked = await self._reranker.rerank(
            filtered.urls,
            RerankParams(
                country=request.country,
                date_from=request.date_from,
                date_to=request.date_to,
                industry=request.industry,
            ),
        )
        metrics.rerank_applied = reranked.metrics.rerank_applied
        metrics.rerank_skipped_reason = reranked.metrics.skipped_reason
        tracker.advance(PipelineStage.RERANKED, applied=metrics.rerank_applied, urls=len(reranked.urls))

        selected = reranked.urls[: self._max_extractions]
        outcomes = await self._extract_in_rank_order(selected, request)
        events: list[EventDTO] = []
        seen: set[str] = set()
        for outcome in outcomes:
            metrics.urls_extracted += 1
            metrics.schema_dropped += outcome.schema_dropped
            if outcome.status == ExtractionStatus.INVALID_JSON:
                metrics.invalid_json_dropped += 1
            elif outcome.status in (
                ExtractionStatus.LLM_ERROR,
                ExtractionStatus.NO_CONTENT,
                ExtractionStatus.NOT_CONFIGURED,
            ):
                metrics.extraction_failed += 1
            for event in outcome.events:
                key = event_dedupe_key(event)
                if key not in seen:
                    seen.add(key)
                    events.append(event)
        metrics.events_extracted = len(events)
        tracker.advance(PipelineStage.EXTRACTED, events=len(events))

        cleaned: list[EventDTO] = []
        for event in events:
            filtered_event, removed = filter_event_speakers(event)
            metrics.non_persons_filtered += removed
            cleaned.append(filtered_event)
        result.events = cleaned
        tracker.advance(PipelineStage.SPEAKER_FILTERED, non_persons_filtered=metrics.non_persons_filtered)

        if persist and cleaned and self._store is not None and self._store.configured:
            try:
                metrics.events_persisted = await self._store.upsert_events(cleaned, search_request=request)
            except Exception as exc:
                logger.error(f"Persisting {len(cleaned)} events failed: {type(exc).__name__}: {exc}")

        tracker.advance(PipelineStage.DONE, events=len(cleaned))
        return result

    async def _extract_in_rank_order(self, urls: list[str], request: SearchRequest) -> list[ExtractionOutcome]:
        """Extract sequentially, or with bounded concurrency; output always follows ``urls`` order."""
        if self._max_parallel <= 1:
            outcomes: list[ExtractionOutcome] = []
            for url in urls:
                outcomes.append(await self._extract_one(url, request))
            return outcomes

        semaphore = asyncio.Semaphore(self._max_parallel)

        async def bounded(url: str) -> ExtractionOutcome:
            async with semaphore:
                return await self._extract_one(url, request)

        return list(await asyncio.gather(*(bounded(url) for url in urls)))

    async def _extract_one(self, url: str, request: SearchRequest) -> ExtractionOutcome:
        try:
            return await self._extractor.extract(url, request)
        except Exception as exc:
            logger.error(f"Extraction crashed for {url}: {type(exc).__name__}: {exc}")
            return ExtractionOutcome(url=url, status=ExtractionStatus.LLM_ERROR)


def build_pipeline(
    *,
    reliability: ReliabilityManager | None = None,
    store: EventStore | None = None,
    cache: QueryCache | None = None,
) -> EventPipeline:
    """Wire the production pipeline from settings."""
    reliability = reliability or ReliabilityManager()
    store = store or EventStore(reliability)
    if cache is None and settings.query_cache_enabled:
        cache = QueryCache()

    search = SearchOrchestrator(
        {
            Provider.WEB_SEARCH: WebSearchClient(reliability),
            Provider.SEARCH_ENGINE: SearchEngineClient(reliability),
            Provider.DATABASE: DatabaseSearchClient(store),
        },
        cache=cache,
    )
    extractor = EventExtractor(reliability, PageFetcher(reliability))
    return EventPipeline(search, RelevanceReranker(reliability), extractor, store=store)
