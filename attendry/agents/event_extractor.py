"""Per-URL event extraction: fetch page, prompt the LLM per chunk, parse with repair."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum

from loguru import logger

from attendry import llm_client
from attendry.config import settings
from attendry.errors import ServiceError
from attendry.models.events import EventDTO, event_dedupe_key
from attendry.models.search import SearchRequest
from attendry.services.prompt_store import render_prompt
from attendry.services.reliability import ReliabilityManager
from attendry.tools.json_repair import EVENT_SCHEMA_HINT, Generate, parse_with_repair, reprompt_for_valid_json
from attendry.tools.page_fetcher import PageFetcher, create_smart_chunks


class ExtractionStatus(str, Enum):
    OK = "ok"
    EMPTY = "empty"  # parsed fine, page describes no valid event
    NO_CONTENT = "no_content"
    INVALID_JSON = "invalid_json"
    LLM_ERROR = "llm_error"
    NOT_CONFIGURED = "not_configured"


@dataclass(slots=True)
class ExtractionOutcome:
    url: str
    events: list[EventDTO] = field(default_factory=list)
    status: ExtractionStatus = ExtractionStatus.EMPTY
    chunks: int = 0
    repaired: bool = False
    reprompted: bool = False
    schema_dropped: int = 0


def _date_window(request: SearchRequest | None) -> str:
    if request is None or (request.date_from is None and request.date_to is None):
        return "any"
    start = request.date_from.isoformat() if request.date_from else "open"
    end = request.date_to.isoformat() if request.date_to else "open"
    return f"{start} to {end}"


class EventExtractor:
    service = "llm"

    def __init__(
        self,
        reliability: ReliabilityManager,
        fetcher: PageFetcher,
        *,
        generate: Generate | None = None,
        timeout: float | None = None,
        reprompt_timeout: float | None = None,
    ):
        self._reliability = reliability
        self._fetcher = fetcher
        self._generate = generate
        self._timeout = timeout or settings.extraction_timeout_s
        self._reprompt_timeout = reprompt_timeout or settings.reprompt_timeout_s

    @property
    def configured(self) -> bool:
        return self._generate is not None or llm_client.is_configured()

    async def _default_generate(self, prompt: str, system: str) -> str:
        return await llm_client.complete(prompt, system)

    @property
    def generate(self) -> Generate:
        return self._generate or self._default_generate

    async def _call_llm(self, prompt: str, system: str) -> str:
        config = replace(self._reliability.config_for(self.service), timeout=self._timeout)
        result = await self._reliability.execute_with_retry(
            self.service, "extract_events", lambda: self.generate(prompt, system), config=config
        )
        return result.data

    async def extract(self, url: str, request: SearchRequest | None = None) -> ExtractionOutcome:
        """Never raises; failures are reported through ``ExtractionOutcome.status``."""
        outcome = ExtractionOutcome(url=url)
        if not self.configured:
            outcome.status = ExtractionStatus.NOT_CONFIGURED
            return outcome

        page = await self._fetcher.fetch(url)
        if page is None or not page.content:
            outcome.status = ExtractionStatus.NO_CONTENT
            return outcome

        chunks = create_smart_chunks(page.content)
        outcome.chunks = len(chunks)
        system = render_prompt("extraction.system_prompt")
        country = request.country if request and request.country else "any"

        parsed_any = False
        llm_failures = 0
        seen: set[str] = set()
        for index, chunk in enumerate(chunks):
            prompt = render_prompt(
                "extraction.user_prompt",
                url=url,
                country=country,
                date_window=_date_window(request),
                schema=EVENT_SCHEMA_HINT,
                content=chunk,
            )
            try:
                raw = await self._call_llm(prompt, system)
            except ServiceError as exc:
                llm_failures += 1
                logger.warning(f"Extraction LLM call failed for {url} chunk {index + 1}: {type(exc).__name__}")
                continue

            result = parse_with_repair(raw, default_url=url)
            if not result.parsed:
                logger.info(f"Unparseable extraction output for {url} chunk {index + 1}; re-prompting")
                outcome.reprompted = True
                reprompted = await reprompt_for_valid_json(
                    raw, self.generate, timeout=self._reprompt_timeout, default_url=url
                )
                if reprompted is None:
                    continue
                result = reprompted

            parsed_any = True
            outcome.repaired = outcome.repaired or result.repaired
            outcome.schema_dropped += result.dropped
            for event in result.data:
                key = event_dedupe_key(event)
                if key not in seen:
                    seen.add(key)
                    outcome.events.append(event)

        if outcome.events:
            outcome.status = ExtractionStatus.OK
        elif parsed_any:
            outcome.status = ExtractionStatus.EMPTY
        elif chunks and llm_failures == len(chunks):
            outcome.status = ExtractionStatus.LLM_ERROR
        else:
            outcome.status = ExtractionStatus.INVALID_JSON
        logger.info(f"Extracted {len(outcome.events)} event(s) from {url} ({outcome.status.value})")
        return outcome
