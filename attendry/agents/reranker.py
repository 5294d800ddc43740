"""Relevance reranking of candidate URLs via the Voyage rerank API plus tie-break bonuses."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from typing import Any

import httpx
from loguru import logger

from attendry.config import settings
from attendry.errors import SchemaValidationError, ServiceError
from attendry.services.prompt_store import render_prompt
from attendry.services.reliability import ReliabilityManager
from attendry.tools.country import get_country_context
from attendry.tools.web_utils import extract_domain, url_path

CONFERENCE_PATH_KEYWORDS = (
    "programm",
    "programme",
    "program",
    "agenda",
    "schedule",
    "zeitplan",
    "referenten",
    "speakers",
    "sprecher",
    "faculty",
    "presenters",
    "keynote",
    "sessions",
    "workshops",
    "conference",
    "konferenz",
    "kongress",
    "summit",
)


@dataclass(frozen=True)
class RerankParams:
    country: str | None = None
    date_from: date | None = None
    date_to: date | None = None
    industry: str | None = None


@dataclass(slots=True)
class RerankCandidate:
    url: str
    original_score: float
    bonus: float = 0.0

    @property
    def score(self) -> float:
        return self.original_score + self.bonus


@dataclass(slots=True)
class RerankMetrics:
    rerank_applied: bool = False
    items_in: int = 0
    items_out: int = 0
    avg_score: float = 0.0
    bonus_hits: int = 0
    skipped_reason: str | None = None


@dataclass(slots=True)
class RerankResult:
    urls: list[str] = field(default_factory=list)
    metrics: RerankMetrics = field(default_factory=RerankMetrics)
    candidates: list[RerankCandidate] = field(default_factory=list)


def build_rerank_instruction(params: RerankParams) -> str:
    """Natural-language ranking instruction; a soft signal, the API never drops documents."""
    hard: list[str] = []
    ctx = get_country_context(params.country)
    if ctx is not None:
        name = ctx.country_names[0] if ctx.country_names else ctx.iso2
        hard.append(f"- The event must take place in {name} ({ctx.iso2}). Strongly deprioritize events in other countries.")
    if params.date_from and params.date_to:
        hard.append(
            f"- The event must take place between {params.date_from.isoformat()} and "
            f"{params.date_to.isoformat()} (ISO dates). Deprioritize events outside this window."
        )
    elif params.date_from:
        hard.append(f"- The event must take place on or after {params.date_from.isoformat()}.")
    elif params.date_to:
        hard.append(f"- The event must take place on or before {params.date_to.isoformat()}.")
    if params.industry:
        hard.append(f"- The event must be relevant to the {params.industry} industry. Deprioritize unrelated industries.")
    hard.append("- Exclude blog posts, news recaps, job listings, generic index pages and 404/'page not found' pages.")

    soft = [
        "- Prefer official organizer or conference websites over aggregators and ticketing platforms.",
        "- Prefer pages with clear program/agenda or speakers/faculty sections.",
    ]
    return render_prompt("rerank.instruction", hard_rules="\n".join(hard), soft_boosts="\n".join(soft))


def compute_bonus(
    url: str,
    country: str | None,
    *,
    country_tld_bonus: float | None = None,
    conference_path_bonus: float | None = None,
) -> float:
    tld_bonus = settings.rerank_country_tld_bonus if country_tld_bonus is None else country_tld_bonus
    path_bonus = settings.rerank_conference_path_bonus if conference_path_bonus is None else conference_path_bonus

    bonus = 0.0
    ctx = get_country_context(country)
    if ctx is not None and extract_domain(url).endswith(ctx.tld):
        bonus += tld_bonus
    path = url_path(url)
    if any(keyword in path for keyword in CONFERENCE_PATH_KEYWORDS):
        bonus += path_bonus
    return bonus


def apply_bonuses(candidates: list[RerankCandidate]) -> list[RerankCandidate]:
    """Stable sort by ``score`` descending; ties keep their incoming relevance order."""
    return sorted(candidates, key=lambda c: -c.score)


def parse_rerank_scores(payload: Any, doc_count: int) -> list[tuple[int, float]]:
    """Return ``(index, relevance_score)`` pairs, ordered as the API ranked them."""
    if not isinstance(payload, dict):
        raise SchemaValidationError("rerank payload is not an object", service="voyage")
    rows = payload.get("data")
    if rows is None:
        rows = payload.get("results")
    if not isinstance(rows, list):
        raise SchemaValidationError("rerank payload has no result list", service="voyage")
    scored: list[tuple[int, float]] = []
    for row in rows:
        if not isinstance(row, dict):
            continue
        index = row.get("index")
        score = row.get("relevance_score")
        if isinstance(index, int) and 0 <= index < doc_count and isinstance(score, (int, float)):
            scored.append((index, float(score)))
    if rows and not scored:
        raise SchemaValidationError("rerank payload had no usable scores", service="voyage")
    scored.sort(key=lambda pair: -pair[1])
    return scored


class RelevanceReranker:
    service = "voyage"

    def __init__(
        self,
        reliability: ReliabilityManager,
        *,
        api_key: str | None = None,
        base_url: str | None = None,
        model: str | None = None,
        max_input_docs: int | None = None,
        top_k: int | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._reliability = reliability
        self._api_key = settings.voyage_api_key if api_key is None else api_key
        self._base_url = (base_url or settings.voyage_base_url).rstrip("/")
        self._model = model or settings.rerank_model
        self.max_input_docs = max_input_docs or settings.rerank_max_input_docs
        self.top_k = top_k or settings.rerank_top_k
        self._timeout = timeout or settings.rerank_timeout_s
        self._transport = transport

    async def _request(self, instruction: str, documents: list[str]) -> Any:
        async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
            response = await client.post(
                f"{self._base_url}/rerank",
                json={
                    "query": instruction,
                    "documents": documents,
                    "model": self._model,
                    "top_k": min(self.top_k, len(documents)),
                    "return_documents": False,
                },
                headers={"Authorization": f"Bearer {self._api_key}", "Content-Type": "application/json"},
            )
            response.raise_for_status()
            return response.json()

    def _passthrough(self, urls: list[str], reason: str) -> RerankResult:
        logger.warning(f"Rerank skipped ({reason}); keeping original order")
        return RerankResult(
            urls=list(urls),
            metrics=RerankMetrics(
                rerank_applied=False,
                items_in=len(urls),
                items_out=len(urls),
                skipped_reason=reason,
            ),
        )

    async def rerank(self, urls: list[str], params: RerankParams | None = None) -> RerankResult:
        params = params or RerankParams()
        if not urls:
            return RerankResult()
        if not self._api_key:
            return self._passthrough(urls, "not_configured")

        documents = urls[: self.max_input_docs]
        instruction = build_rerank_instruction(params)
        try:
            result = await self._reliability.execute_with_retry(
                self.service, "rerank", lambda: self._request(instruction, documents)
            )
            scored = parse_rerank_scores(result.data, len(documents))
        except ServiceError as exc:
            return self._passthrough(urls, f"{type(exc).__name__}: {exc}")
        if not scored:
            return self._passthrough(urls, "empty_response")

        candidates = [
            RerankCandidate(url=documents[index], original_score=score, bonus=compute_bonus(documents[index], params.country))
            for index, score in scored
        ]
        ordered = apply_bonuses(candidates)
        metrics = RerankMetrics(
            rerank_applied=True,
            items_in=len(documents),
            items_out=len(ordered),
            avg_score=(sum(c.score for c in ordered) / len(ordered)) if ordered else 0.0,
            bonus_hits=sum(1 for c in ordered if c.bonus > 0),
        )
        logger.info(
            f"Rerank applied: {metrics.items_in} in, {metrics.items_out} out, "
            f"avg score {metrics.avg_score:.3f}, {metrics.bonus_hits} bonus hits"
        )
        return RerankResult(urls=[c.url for c in ordered], metrics=metrics, candidates=ordered)
