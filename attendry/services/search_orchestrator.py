"""Multi-provider URL discovery with ordered fallback and additive merge."""

from __future__ import annotations

import time
from typing import Protocol

from loguru import logger

from attendry.config import settings
from attendry.models.search import (
    PROVIDER_ALIASES,
    OrchestrationResult,
    Provider,
    ProviderResult,
    SearchContext,
    SearchRequest,
    UserProfile,
)
from attendry.services.logger import log_event
from attendry.services.query_cache import QueryCache, cache_key
from attendry.tools.country import get_country_context
from attendry.tools.query_builder import build_query
from attendry.tools.web_utils import is_valid_url, normalize_url_key

DEFAULT_PROVIDER_ORDER = (Provider.WEB_SEARCH, Provider.SEARCH_ENGINE)


class SearchProviderClient(Protocol):
    provider: Provider

    async def search(self, query: str, context: SearchContext) -> ProviderResult: ...


def parse_provider_order(raw: list[str] | str | None) -> list[Provider]:
    """Resolve a configured provider list; unknown names are skipped."""
    if raw is None:
        return list(DEFAULT_PROVIDER_ORDER)
    names = raw.split(",") if isinstance(raw, str) else raw
    order: list[Provider] = []
    for name in names:
        key = name.strip().lower()
        if not key:
            continue
        provider = PROVIDER_ALIASES.get(key)
        if provider is None:
            logger.warning(f"Ignoring unknown search provider '{name}'")
            continue
        if provider not in order:
            order.append(provider)
    return order or list(DEFAULT_PROVIDER_ORDER)


def merge_items(merged: list[str], seen: set[str], items: list[str] | tuple[str, ...]) -> int:
    """Append unseen valid URLs in order; return how many were added."""
    added = 0
    for url in items:
        if not is_valid_url(url):
            continue
        key = normalize_url_key(url)
        if key in seen:
            continue
        seen.add(key)
        merged.append(url.strip())
        added += 1
    return added


class SearchOrchestrator:
    def __init__(
        self,
        providers: dict[Provider, SearchProviderClient],
        *,
        order: list[Provider] | None = None,
        merge_mode: str | None = None,
        sufficient_results: int | None = None,
        cache: QueryCache | None = None,
        max_results: int | None = None,
    ):
        self._providers = providers
        self._order = order or parse_provider_order(settings.search_provider_list)
        self._merge_mode = (merge_mode or settings.search_merge_mode).lower()
        self._sufficient = settings.search_sufficient_results if sufficient_results is None else sufficient_results
        self._cache = cache
        self._max_results = max_results or settings.search_max_results

    @property
    def order(self) -> list[Provider]:
        return list(self._order)

    def build_effective_query(self, request: SearchRequest, profile: UserProfile | None = None) -> str:
        return build_query(
            request.base_query,
            request.user_text,
            get_country_context(request.country),
            exclude_terms=request.exclude_terms,
            profile=profile,
        )

    def _cache_key(self, query: str, request: SearchRequest) -> str:
        return cache_key(
            query,
            country=request.country,
            locale=request.locale,
            date_from=request.date_from,
            date_to=request.date_to,
            providers=[p.value for p in self._order],
            merge_mode=self._merge_mode,
        )

    async def execute_search(
        self,
        request: SearchRequest,
        profile: UserProfile | None = None,
    ) -> OrchestrationResult:
        query = self.build_effective_query(request, profile)

        key = self._cache_key(query, request) if self._cache is not None else None
        if key is not None:
            cached = await self._cache.get(key)
            if cached is not None:
                logger.info(f"Search cache hit ({len(cached.items)} urls)")
                return OrchestrationResult(
                    items=list(cached.items),
                    provider_used=cached.provider_used,
                    providers_tried=list(cached.providers_tried),
                    query=query,
                    cached=True,
                    debug=dict(cached.debug),
                )

        country_ctx = get_country_context(request.country)
        context = SearchContext(
            country=country_ctx.iso2 if country_ctx else None,
            locale=request.locale or (country_ctx.locale if country_ctx else None),
            date_from=request.date_from,
            date_to=request.date_to,
            max_results=self._max_results,
        )

        merged: list[str] = []
        seen: set[str] = set()
        provider_used: Provider | None = None
        providers_tried: list[Provider] = []
        debug: dict[str, dict] = {}

        for provider in self._order:
            client = self._providers.get(provider)
            if client is None:
                continue
            providers_tried.append(provider)
            started = time.perf_counter()
            try:
                result = await client.search(query, context)
            except Exception as exc:
                logger.warning(f"Provider {provider.value} raised {type(exc).__name__}: {exc}; treating as empty")
                result = ProviderResult(provider=provider, debug={"error": str(exc)})
            elapsed_ms = int((time.perf_counter() - started) * 1000)

            added = merge_items(merged, seen, result.items)
            debug[provider.value] = {"returned": len(result.items), "added": added, "ms": elapsed_ms, **result.debug}
            logger.info(f"Provider {provider.value}: {len(result.items)} urls ({added} new) in {elapsed_ms}ms")

            if added and provider_used is None:
                provider_used = provider

            if provider_used is not None:
                if self._merge_mode == "first":
                    break
                if self._sufficient and len(merged) >= self._sufficient:
                    break

        outcome = OrchestrationResult(
            items=merged,
            provider_used=provider_used if merged else None,
            providers_tried=providers_tried,
            query=query,
            debug=debug,
        )
        log_event(
            "search_orchestrated",
            "Discovery finished",
            items=len(outcome.items),
            provider_used=outcome.provider_used.value if outcome.provider_used else None,
            providers_tried=[p.value for p in providers_tried],
        )

        if key is not None and outcome.items:
            await self._cache.set(
                key,
                OrchestrationResult(
                    items=list(outcome.items),
                    provider_used=outcome.provider_used,
                    providers_tried=list(providers_tried),
                    query=query,
                    debug=dict(debug),
                ),
            )
        return outcome
