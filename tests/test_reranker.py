from __future__ import annotations

import json
from datetime import date

import httpx
import pytest

from attendry.agents.reranker import (
    RelevanceReranker,
    RerankCandidate,
    RerankParams,
    apply_bonuses,
    build_rerank_instruction,
    compute_bonus,
    parse_rerank_scores,
)
from attendry.errors import SchemaValidationError
from attendry.services.reliability import ReliabilityManager


async def _no_sleep(_: float) -> None:
    return None


def make_reranker(handler, **kwargs) -> RelevanceReranker:
    kwargs.setdefault("api_key", "voyage-key")
    return RelevanceReranker(
        ReliabilityManager(sleep=_no_sleep),
        base_url="https://voyage.test/v1",
        model="rerank-2",
        transport=httpx.MockTransport(handler),
        **kwargs,
    )


def test_equal_scores_sort_by_bonus_then_keep_order():
    candidates = [
        RerankCandidate(url="a", original_score=0.5, bonus=0.0),
        RerankCandidate(url="b", original_score=0.5, bonus=0.05),
        RerankCandidate(url="c", original_score=0.5, bonus=0.0),
        RerankCandidate(url="d", original_score=0.9, bonus=0.0),
    ]
    assert [c.url for c in apply_bonuses(candidates)] == ["d", "b", "a", "c"]


def test_compute_bonus_country_tld_and_conference_path():
    assert compute_bonus("https://event.de/", "DE", country_tld_bonus=0.08, conference_path_bonus=0.05) == pytest.approx(0.08)
    assert compute_bonus("https://event.com/agenda", "DE", country_tld_bonus=0.08, conference_path_bonus=0.05) == pytest.approx(0.05)
    assert compute_bonus("https://event.fr/speakers", "FR", country_tld_bonus=0.08, conference_path_bonus=0.05) == pytest.approx(0.13)
    assert compute_bonus("https://event.de/", "FR", country_tld_bonus=0.08, conference_path_bonus=0.05) == 0.0
    assert compute_bonus("https://event.de/", None, country_tld_bonus=0.08, conference_path_bonus=0.05) == 0.0


def test_instruction_includes_country_dates_and_industry():
    instruction = build_rerank_instruction(
        RerankParams(country="FR", date_from=date(2025, 11, 1), date_to=date(2025, 11, 30), industry="legal")
    )
    assert "France (FR)" in instruction
    assert "2025-11-01" in instruction and "2025-11-30" in instruction
    assert "legal industry" in instruction
    assert "Germany" not in instruction


def test_parse_rerank_scores_shapes():
    payload = {"data": [{"index": 1, "relevance_score": 0.2}, {"index": 0, "relevance_score": 0.9}, {"index": 9, "relevance_score": 1.0}]}
    assert parse_rerank_scores(payload, 2) == [(0, 0.9), (1, 0.2)]
    assert parse_rerank_scores({"results": []}, 2) == []
    with pytest.raises(SchemaValidationError):
        parse_rerank_scores({"oops": True}, 2)
    with pytest.raises(SchemaValidationError):
        parse_rerank_scores({"data": [{"index": "x"}]}, 2)


@pytest.mark.asyncio
async def test_rerank_orders_by_score_plus_bonus():
    urls = ["https://agg.com/x", "https://summit.de/", "https://other.com/"]

    def handler(request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        assert request.url == "https://voyage.test/v1/rerank"
        assert body["documents"] == urls
        assert body["model"] == "rerank-2"
        assert "Germany (DE)" in body["query"]
        return httpx.Response(
            200,
            json={
                "data": [
                    {"index": 2, "relevance_score": 0.60},
                    {"index": 1, "relevance_score": 0.55},
                    {"index": 0, "relevance_score": 0.10},
                ]
            },
        )

    result = await make_reranker(handler).rerank(urls, RerankParams(country="DE"))

    # summit.de gains the country TLD bonus and overtakes other.com
    assert result.urls == ["https://summit.de/", "https://other.com/", "https://agg.com/x"]
    assert result.metrics.rerank_applied
    assert result.metrics.bonus_hits == 1


@pytest.mark.asyncio
async def test_timeout_passes_input_through_unchanged():
    urls = [f"https://site{i}.com/" for i in range(15)]

    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("timed out", request=request)

    result = await make_reranker(handler, top_k=5).rerank(urls, RerankParams(country="DE"))

    assert result.urls == urls
    assert not result.metrics.rerank_applied
    assert "RequestTimeoutError" in result.metrics.skipped_reason


@pytest.mark.asyncio
async def test_missing_key_passes_through():
    def handler(request: httpx.Request) -> httpx.Response:
        raise AssertionError("no request expected")

    urls = ["https://a.de/", "https://b.de/"]
    result = await make_reranker(handler, api_key="").rerank(urls)
    assert result.urls == urls
    assert result.metrics.skipped_reason == "not_configured"


@pytest.mark.asyncio
async def test_empty_input_returns_empty_result():
    def handler(request: httpx.Request) -> httpx.Response:
        raise AssertionError("no request expected")

    result = await make_reranker(handler).rerank([])
    assert result.urls == []
    assert not result.metrics.rerank_applied
