"""Search-engine provider client (Google Custom Search JSON API)."""

from __future__ import annotations

from typing import Any

import httpx
from loguru import logger

from attendry.config import settings
from attendry.errors import ServiceError, UpstreamClientError
from attendry.models.search import Provider, ProviderResult, SearchContext
from attendry.services.reliability import ReliabilityManager
from attendry.tools.web_utils import is_valid_url

CSE_URL = "https://www.googleapis.com/customsearch/v1"
MAX_QUERY_CHARS = 256
MAX_NUM = 10

# Parameters the API is known to reject in some combinations.
OPTIONAL_GEO_PARAMS = ("gl", "cr", "lr")


def truncate_query(query: str, limit: int = MAX_QUERY_CHARS) -> str:
    query = " ".join(query.split())
    if len(query) <= limit:
        return query
    cut = query[:limit]
    # Avoid cutting a term in half when a word boundary is close.
    space = cut.rfind(" ")
    if space >= limit * 0.75:
        cut = cut[:space]
    return cut.rstrip()


def build_params(query: str, context: SearchContext, api_key: str, cx: str) -> dict[str, Any]:
    params: dict[str, Any] = {
        "q": truncate_query(query),
        "key": api_key,
        "cx": cx,
        "num": min(MAX_NUM, max(1, context.max_results)),
        "safe": "off",
    }
    if context.country:
        country = context.country.upper()
        params["gl"] = country.lower()
        params["cr"] = f"country{country}"
    if context.locale:
        lang = context.locale.split("-")[0].lower()
        params["hl"] = lang
        params["lr"] = f"lang_{lang}"
    return params


def strip_geo_params(params: dict[str, Any]) -> dict[str, Any]:
    stripped = {k: v for k, v in params.items() if k not in OPTIONAL_GEO_PARAMS and k != "hl"}
    return stripped


class SearchEngineClient:
    provider = Provider.SEARCH_ENGINE
    service = "cse"

    def __init__(
        self,
        reliability: ReliabilityManager,
        *,
        api_key: str | None = None,
        cx: str | None = None,
        timeout: float = 15.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._reliability = reliability
        self._api_key = settings.google_cse_key if api_key is None else api_key
        self._cx = settings.google_cse_cx if cx is None else cx
        self._timeout = timeout
        self._transport = transport

    async def _request(self, params: dict[str, Any]) -> dict[str, Any]:
        async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
            response = await client.get(CSE_URL, params=params)
            response.raise_for_status()
            return response.json()

    async def _call(self, params: dict[str, Any], operation: str) -> dict[str, Any]:
        result = await self._reliability.execute_with_retry(
            self.service, operation, lambda: self._request(params)
        )
        return result.data

    async def search(self, query: str, context: SearchContext) -> ProviderResult:
        """Never raises: failures come back as an empty result with ``debug['error']``."""
        if not self._api_key or not self._cx:
            logger.warning("Search-engine client not configured (GOOGLE_CSE_KEY/GOOGLE_CSE_CX missing)")
            return ProviderResult(provider=self.provider, debug={"error": "not_configured"})

        params = build_params(query, context, self._api_key, self._cx)
        fallback_used = False
        try:
            try:
                payload = await self._call(params, "search")
            except UpstreamClientError as exc:
                stripped = strip_geo_params(params)
                if exc.status_code != 400 or stripped == params:
                    raise
                logger.info("Search-engine rejected locale/country params (400); retrying without them")
                fallback_used = True
                payload = await self._call(stripped, "search_without_geo")
        except ServiceError as exc:
            logger.warning(f"Search-engine search failed: {type(exc).__name__}: {exc}")
            return ProviderResult(
                provider=self.provider,
                debug={"error": str(exc), "error_type": type(exc).__name__, "fallback_used": fallback_used},
            )

        raw_items = payload.get("items") if isinstance(payload, dict) else None
        raw_items = raw_items if isinstance(raw_items, list) else []
        urls = [
            item.get("link", "")
            for item in raw_items
            if isinstance(item, dict) and is_valid_url(item.get("link", ""))
        ]
        logger.debug(f"Search-engine returned {len(urls)} urls for query={params['q'][:80]!r}")
        return ProviderResult.from_urls(
            self.provider,
            urls,
            raw_count=len(raw_items),
            fallback_used=fallback_used,
        )
