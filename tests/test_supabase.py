from __future__ import annotations

from datetime import date
from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest

from attendry.models.events import EventDTO
from attendry.models.search import SearchRequest
from attendry.services.supabase import EventStore, event_to_row


def fake_client(result_data=None) -> MagicMock:
    client = MagicMock()
    result = SimpleNamespace(data=result_data if result_data is not None else [])
    table = client.table.return_value
    table.upsert.return_value.execute.return_value = result
    table.select.return_value.eq.return_value.ilike.return_value.order.return_value.limit.return_value.execute.return_value = result
    table.select.return_value.eq.return_value.limit.return_value.execute.return_value = result
    return client


def test_event_to_row_maps_fields():
    event = EventDTO(
        title="Legal Summit",
        starts_at="2025-11-15",
        url="https://www.summit.de/2025",
        country="DE",
        speakers=[{"name": "Dr. Sarah Johnson", "org": "ACME"}],
    )
    request = SearchRequest(base_query="legal conference", user_text="privacy", country="DE", date_from=date(2025, 11, 1))

    row = event_to_row(event, request)

    assert row["source_url"] == "https://www.summit.de/2025"
    assert row["source_domain"] == "summit.de"
    assert row["speakers"] == [{"name": "Dr. Sarah Johnson", "org": "ACME"}]
    assert row["search_terms"] == ["legal conference", "privacy"]
    assert row["collection_metadata"] == {"country": "DE", "from": "2025-11-01", "to": None}


@pytest.mark.asyncio
async def test_upsert_dedupes_by_url_with_latest_winning():
    client = fake_client()
    store = EventStore(client_factory=lambda: client)
    first = EventDTO(title="Legal Summit", starts_at="2025-11-15", url="https://summit.de/")
    second = EventDTO(title="Legal Summit 2025", starts_at="2025-11-15", url="https://summit.de/")

    written = await store.upsert_events([first, second])

    assert written == 1
    rows = client.table.return_value.upsert.call_args.args[0]
    assert [r["title"] for r in rows] == ["Legal Summit 2025"]
    assert client.table.return_value.upsert.call_args.kwargs == {"on_conflict": "source_url", "ignore_duplicates": False}
    client.table.assert_called_with("collected_events")


@pytest.mark.asyncio
async def test_upsert_nothing_skips_client():
    factory = MagicMock()
    assert await EventStore(client_factory=factory).upsert_events([]) == 0
    factory.assert_not_called()


@pytest.mark.asyncio
async def test_search_events_filters_by_country_and_keyword():
    client = fake_client([{"source_url": "https://summit.de/"}])
    store = EventStore(client_factory=lambda: client)

    rows = await store.search_events('(legal conference) ("in Germany")', country="de", limit=5)

    assert rows == [{"source_url": "https://summit.de/"}]
    select = client.table.return_value.select.return_value
    select.eq.assert_called_once_with("country", "DE")
    select.eq.return_value.ilike.assert_called_once_with("title", "%legal%")


@pytest.mark.asyncio
async def test_get_profile_returns_model_or_none():
    client = fake_client([{"industry_terms": ["legal"], "icp_terms": None, "competitors": ["acme"]}])
    profile = await EventStore(client_factory=lambda: client).get_profile("u1")
    assert profile.industry_terms == ["legal"]
    assert profile.icp_terms == []
    assert profile.competitors == ["acme"]

    empty = await EventStore(client_factory=lambda: fake_client([])).get_profile("u2")
    assert empty is None
