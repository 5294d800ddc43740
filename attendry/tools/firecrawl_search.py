"""Web-search provider client (Firecrawl search API)."""

from __future__ import annotations

from datetime import date
from typing import Any

import httpx
from loguru import logger

from attendry.config import settings
from attendry.errors import ServiceError
from attendry.models.search import Provider, ProviderResult, SearchContext
from attendry.services.reliability import ReliabilityManager, RetryConfig
from attendry.tools.web_utils import is_valid_url

MAX_LIMIT = 20

# Each timeout attempt is a single call; the attempt loop below is the retry policy.
_SINGLE_ATTEMPT = RetryConfig(max_retries=0)


def build_tbs(date_from: date | None, date_to: date | None) -> str | None:
    """Custom date range in Google ``tbs`` syntax, as Firecrawl expects."""
    if date_from and date_to:
        return f"cdr:1,cd_min:{date_from:%m/%d/%Y},cd_max:{date_to:%m/%d/%Y}"
    return None


def build_payload(query: str, context: SearchContext) -> dict[str, Any]:
    # Geo "location" filters are left out on purpose: they correlate with timeouts.
    payload: dict[str, Any] = {
        "query": query,
        "limit": max(1, min(context.max_results, MAX_LIMIT)),
        "scrapeOptions": {"formats": ["markdown"], "onlyMainContent": True},
    }
    tbs = build_tbs(context.date_from, context.date_to)
    if tbs:
        payload["tbs"] = tbs
    return payload


def parse_result_urls(payload: Any) -> list[str]:
    """Accept both ``{"data": {"web": [...]}}`` (v2) and ``{"data": [...]}`` (v1)."""
    if not isinstance(payload, dict):
        return []
    data = payload.get("data")
    if isinstance(data, dict):
        rows = data.get("web") or []
    elif isinstance(data, list):
        rows = data
    else:
        rows = []
    urls: list[str] = []
    for row in rows:
        if not isinstance(row, dict):
            continue
        url = row.get("url") or (row.get("metadata") or {}).get("sourceURL") or ""
        if is_valid_url(url):
            urls.append(url)
    return urls


class WebSearchClient:
    provider = Provider.WEB_SEARCH
    service = "firecrawl"

    def __init__(
        self,
        reliability: ReliabilityManager,
        *,
        api_key: str | None = None,
        base_url: str | None = None,
        timeouts: list[float] | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._reliability = reliability
        self._api_key = settings.firecrawl_api_key if api_key is None else api_key
        self._base_url = (base_url or settings.firecrawl_base_url).rstrip("/")
        self._timeouts = timeouts or settings.firecrawl_timeout_list
        self._transport = transport

    async def _request(self, payload: dict[str, Any], timeout: float) -> Any:
        async with httpx.AsyncClient(timeout=timeout, transport=self._transport) as client:
            response = await client.post(
                f"{self._base_url}/v2/search",
                json=payload,
                headers={
                    "Authorization": f"Bearer {self._api_key}",
                    "Content-Type": "application/json",
                },
            )
            response.raise_for_status()
            return response.json()

    async def search(self, query: str, context: SearchContext) -> ProviderResult:
        if not self._api_key:
            logger.warning("Web-search client not configured (FIRECRAWL_API_KEY missing)")
            return ProviderResult(provider=self.provider, debug={"error": "not_configured"})

        payload = build_payload(query, context)
        errors: list[str] = []
        for attempt, timeout in enumerate(self._timeouts, start=1):
            try:
                result = await self._reliability.execute_with_retry(
                    self.service,
                    "search",
                    lambda: self._request(payload, timeout),
                    config=_SINGLE_ATTEMPT,
                )
            except ServiceError as exc:
                errors.append(f"{type(exc).__name__}: {exc}")
                logger.warning(
                    f"Web-search attempt {attempt}/{len(self._timeouts)} failed "
                    f"(timeout={timeout}s): {type(exc).__name__}"
                )
                if not exc.retryable:
                    break
                continue

            urls = parse_result_urls(result.data)
            logger.debug(f"Web-search returned {len(urls)} urls on attempt {attempt}")
            return ProviderResult.from_urls(self.provider, urls, attempts=attempt, timeout=timeout)

        return ProviderResult(provider=self.provider, debug={"error": errors[-1] if errors else "failed", "errors": errors})
