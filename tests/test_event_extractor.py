from __future__ import annotations

import json
from datetime import date
from unittest.mock import patch

import pytest

from attendry.agents.event_extractor import EventExtractor, ExtractionStatus
from attendry.models.search import SearchRequest
from attendry.services.reliability import ReliabilityManager
from attendry.tools.page_fetcher import PageContent

URL = "https://privacy-summit.de/2025"
REQUEST = SearchRequest(
    base_query="privacy conference",
    country="DE",
    date_from=date(2025, 11, 1),
    date_to=date(2025, 11, 30),
)


async def _no_sleep(_: float) -> None:
    return None


class FakeFetcher:
    def __init__(self, content: str | None = "# Privacy Summit\n\n15 November 2025, Berlin"):
        self.content = content
        self.calls: list[str] = []

    async def fetch(self, url: str):
        self.calls.append(url)
        if self.content is None:
            return None
        return PageContent(url=url, content=self.content, method="firecrawl")


class ScriptedLLM:
    """Returns queued replies in order; exceptions in the queue are raised."""

    def __init__(self, *replies):
        self.replies = list(replies)
        self.prompts: list[str] = []

    async def __call__(self, prompt: str, system: str) -> str:
        self.prompts.append(prompt)
        reply = self.replies.pop(0) if self.replies else "[]"
        if isinstance(reply, Exception):
            raise reply
        return reply


def make_extractor(llm, fetcher=None) -> EventExtractor:
    return EventExtractor(
        ReliabilityManager(sleep=_no_sleep),
        fetcher or FakeFetcher(),
        generate=llm,
        timeout=5.0,
        reprompt_timeout=1.0,
    )


@pytest.mark.asyncio
async def test_valid_output_yields_events_with_source_url_default():
    llm = ScriptedLLM(json.dumps([{"title": "Privacy Summit 2025", "starts_at": "2025-11-15", "city": "Berlin"}]))

    outcome = await make_extractor(llm).extract(URL, REQUEST)

    assert outcome.status == ExtractionStatus.OK
    assert [e.url for e in outcome.events] == [URL]
    assert not outcome.repaired and not outcome.reprompted
    assert "Target country: DE" in llm.prompts[0]
    assert "2025-11-01 to 2025-11-30" in llm.prompts[0]


@pytest.mark.asyncio
async def test_unparseable_output_is_reprompted():
    llm = ScriptedLLM(
        "I could not find JSON, sorry",
        json.dumps([{"title": "Privacy Summit 2025", "starts_at": "2025-11-15", "url": URL}]),
    )

    outcome = await make_extractor(llm).extract(URL, REQUEST)

    assert outcome.status == ExtractionStatus.OK
    assert outcome.reprompted
    assert len(llm.prompts) == 2


@pytest.mark.asyncio
async def test_invalid_json_after_reprompt_is_reported():
    llm = ScriptedLLM("no json here", "still no json")

    outcome = await make_extractor(llm).extract(URL, REQUEST)

    assert outcome.status == ExtractionStatus.INVALID_JSON
    assert outcome.events == []


@pytest.mark.asyncio
async def test_empty_array_is_empty_not_invalid():
    outcome = await make_extractor(ScriptedLLM("[]")).extract(URL, REQUEST)
    assert outcome.status == ExtractionStatus.EMPTY


@pytest.mark.asyncio
async def test_schema_invalid_items_are_dropped_and_counted():
    llm = ScriptedLLM(
        json.dumps(
            [
                {"title": "Privacy Summit 2025", "starts_at": "2025-11-15", "url": URL},
                {"title": "No", "starts_at": "2025-11-15", "url": URL},
            ]
        )
    )
    outcome = await make_extractor(llm).extract(URL, REQUEST)
    assert len(outcome.events) == 1
    assert outcome.schema_dropped == 1


@pytest.mark.asyncio
async def test_llm_failure_is_reported_after_retries():
    llm = ScriptedLLM(RuntimeError("a"), RuntimeError("b"), RuntimeError("c"))

    outcome = await make_extractor(llm).extract(URL, REQUEST)

    assert outcome.status == ExtractionStatus.LLM_ERROR
    assert len(llm.prompts) == 3


@pytest.mark.asyncio
async def test_missing_page_content():
    llm = ScriptedLLM()
    outcome = await make_extractor(llm, FakeFetcher(content=None)).extract(URL, REQUEST)
    assert outcome.status == ExtractionStatus.NO_CONTENT
    assert llm.prompts == []


@pytest.mark.asyncio
async def test_not_configured_without_llm():
    fetcher = FakeFetcher()
    extractor = EventExtractor(ReliabilityManager(), fetcher)
    with patch("attendry.agents.event_extractor.llm_client.is_configured", return_value=False):
        outcome = await extractor.extract(URL, REQUEST)
    assert outcome.status == ExtractionStatus.NOT_CONFIGURED
    assert fetcher.calls == []


@pytest.mark.asyncio
async def test_events_are_deduplicated_across_chunks():
    event = {"title": "Privacy Summit 2025", "starts_at": "2025-11-15", "url": URL}
    content = "\n\n".join(["# Privacy Summit"] + ["Details. " * 200] * 3)
    llm = ScriptedLLM(json.dumps([event]), json.dumps([event]), json.dumps([event]))
    extractor = make_extractor(llm, FakeFetcher(content=content))

    with patch("attendry.agents.event_extractor.create_smart_chunks", return_value=["a", "b", "c"]):
        outcome = await extractor.extract(URL, REQUEST)

    assert outcome.chunks == 3
    assert len(outcome.events) == 1
