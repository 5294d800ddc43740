"""Persisted event store and profile reads backed by Supabase."""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import Any, Callable

from supabase import Client, create_client

from attendry.config import settings
from attendry.models.events import EventDTO
from attendry.models.search import SearchRequest, UserProfile
from attendry.services.logger import log_db_operation
from attendry.services.reliability import ReliabilityManager
from attendry.tools.web_utils import extract_domain


def get_client() -> Client:
    return create_client(settings.supabase_url, settings.supabase_anon_key)


def event_to_row(event: EventDTO, request: SearchRequest | None = None) -> dict[str, Any]:
    row: dict[str, Any] = {
        "title": event.title,
        "starts_at": event.starts_at,
        "ends_at": event.ends_at,
        "city": event.city,
        "country": event.country,
        "venue": event.venue,
        "organizer": event.organizer,
        "source_url": event.url,
        "source_domain": extract_domain(event.url),
        "topics": list(event.topics),
        "speakers": [s.model_dump(exclude_none=True) for s in event.speakers],
        "extraction_method": "run",
        "collected_at": datetime.now(timezone.utc).isoformat(),
    }
    if request is not None:
        row["industry"] = request.industry
        row["search_terms"] = [t for t in (request.base_query, request.user_text) if t]
        row["collection_metadata"] = {
            "country": request.country,
            "from": request.date_from.isoformat() if request.date_from else None,
            "to": request.date_to.isoformat() if request.date_to else None,
        }
    return row


class EventStore:
    """Thin adapter over the ``collected_events`` and ``profiles`` tables.

    The supabase client is synchronous, so every query runs in a worker thread.
    """

    def __init__(
        self,
        reliability: ReliabilityManager | None = None,
        *,
        client_factory: Callable[[], Client] | None = None,
        events_table: str | None = None,
        profiles_table: str | None = None,
    ):
        self._reliability = reliability
        self._client_factory = client_factory
        self._client: Client | None = None
        self.events_table = events_table or settings.events_table
        self.profiles_table = profiles_table or settings.profiles_table

    @property
    def configured(self) -> bool:
        return self._client_factory is not None or bool(settings.supabase_url and settings.supabase_anon_key)

    def client(self) -> Client:
        if self._client is None:
            self._client = (self._client_factory or get_client)()
        return self._client

    async def _run(self, operation: str, fn: Callable[[], Any]) -> Any:
        async def call():
            return await asyncio.to_thread(fn)

        if self._reliability is None:
            return await call()
        result = await self._reliability.execute_with_retry("supabase", operation, call)
        return result.data

    async def upsert_events(
        self,
        events: list[EventDTO],
        *,
        search_request: SearchRequest | None = None,
    ) -> int:
        """Upsert keyed on ``source_url``; the latest write wins."""
        if not events:
            return 0
        rows: dict[str, dict[str, Any]] = {}
        for event in events:
            rows[event.url] = event_to_row(event, search_request)
        payload = list(rows.values())

        def do_upsert():
            return (
                self.client()
                .table(self.events_table)
                .upsert(payload, on_conflict="source_url", ignore_duplicates=False)
                .execute()
            )

        try:
            await self._run("upsert_events", do_upsert)
        except Exception as exc:
            log_db_operation("upsert", self.events_table, "failed", error=str(exc))
            raise
        log_db_operation("upsert", self.events_table, "success", details=f"{len(payload)} rows")
        return len(payload)

    async def search_events(self, query: str, *, country: str | None = None, limit: int = 20) -> list[dict[str, Any]]:
        terms = [t for t in query.replace("(", " ").replace(")", " ").replace('"', " ").split() if len(t) > 3]
        keyword = terms[0] if terms else ""

        def do_search():
            builder = self.client().table(self.events_table).select("source_url,title,starts_at,country")
            if country:
                builder = builder.eq("country", country.upper())
            if keyword:
                builder = builder.ilike("title", f"%{keyword}%")
            return builder.order("collected_at", desc=True).limit(limit).execute()

        result = await self._run("search_events", do_search)
        return result.data or []

    async def get_profile(self, user_id: str) -> UserProfile | None:
        def do_get():
            return (
                self.client()
                .table(self.profiles_table)
                .select("industry_terms,icp_terms,competitors")
                .eq("user_id", user_id)
                .limit(1)
                .execute()
            )

        result = await self._run("get_profile", do_get)
        if not result.data:
            return None
        row = result.data[0]
        return UserProfile(
            industry_terms=row.get("industry_terms") or [],
            icp_terms=row.get("icp_terms") or [],
            competitors=row.get("competitors") or [],
        )
