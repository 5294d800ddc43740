from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest

from attendry.models.search import Provider, SearchContext
from attendry.tools.database_search import DatabaseSearchClient
from attendry.tools.web_utils import extract_domain, is_valid_url, normalize_url_key


def test_url_helpers():
    assert is_valid_url("https://summit.de/2025")
    assert not is_valid_url("summit.de")
    assert not is_valid_url("https://summit.de/a b")
    assert not is_valid_url("mailto:x@summit.de")
    assert extract_domain("https://WWW.Summit.de/x") == "summit.de"
    assert normalize_url_key("https://Summit.de/X/#speakers") == "https://summit.de/x"


@pytest.mark.asyncio
async def test_database_search_returns_stored_urls():
    store = MagicMock()
    store.configured = True
    store.search_events = AsyncMock(
        return_value=[{"source_url": "https://summit.de/"}, {"source_url": "not a url"}, {"title": "no url"}]
    )

    result = await DatabaseSearchClient(store, limit=50).search("(legal conference)", SearchContext(country="DE", max_results=10))

    assert result.provider == Provider.DATABASE
    assert result.items == ("https://summit.de/",)
    store.search_events.assert_awaited_once_with("(legal conference)", country="DE", limit=10)


@pytest.mark.asyncio
async def test_database_search_failure_is_empty():
    store = MagicMock()
    store.configured = True
    store.search_events = AsyncMock(side_effect=RuntimeError("db down"))

    result = await DatabaseSearchClient(store).search("q", SearchContext())
    assert result.items == ()
    assert result.debug["error"] == "db down"


@pytest.mark.asyncio
async def test_database_search_not_configured():
    store = MagicMock()
    store.configured = False
    result = await DatabaseSearchClient(store).search("q", SearchContext())
    assert result.debug == {"error": "not_configured"}
