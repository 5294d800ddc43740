"""Database provider: previously collected events from the persisted event store."""

from __future__ import annotations

from loguru import logger

from attendry.models.search import Provider, ProviderResult, SearchContext
from attendry.services.supabase import EventStore
from attendry.tools.web_utils import is_valid_url


class DatabaseSearchClient:
    provider = Provider.DATABASE

    def __init__(self, store: EventStore, *, limit: int = 20):
        self._store = store
        self._limit = limit

    async def search(self, query: str, context: SearchContext) -> ProviderResult:
        if not self._store.configured:
            return ProviderResult(provider=self.provider, debug={"error": "not_configured"})
        try:
            rows = await self._store.search_events(
                query, country=context.country, limit=min(self._limit, context.max_results)
            )
        except Exception as exc:
            logger.warning(f"Database search failed: {type(exc).__name__}: {exc}")
            return ProviderResult(provider=self.provider, debug={"error": str(exc)})
        urls = [row.get("source_url", "") for row in rows if isinstance(row, dict)]
        return ProviderResult.from_urls(self.provider, [u for u in urls if is_valid_url(u)], raw_count=len(rows))
