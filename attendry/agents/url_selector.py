"""Aggregator pre-filter: drop event-listing sites before rerank and extraction."""

from __future__ import annotations

import re
from dataclasses import dataclass, field

from loguru import logger

from attendry.config import settings
from attendry.tools.web_utils import extract_domain, url_path

# Directory/listing sites and vendor pages that describe many events, not one.
AGGREGATOR_DOMAINS = (
    "vendelux.com",
    "linkedin.com",
    "internationalconferencealerts.com",
    "10times.com",
    "allevents.in",
    "eventbrite.com",
    "eventbrite.de",
    "eventbrite.co.uk",
    "meetup.com",
    "conference-service.com",
    "conference2go.com",
    "eventora.com",
    "eventsworld.com",
    "globalriskcommunity.com",
    "cvent.com",
    "conferencealert.com",
    "conferenceseries.com",
    "waset.org",
    "learn.microsoft.com",
    "consumerfinancialserviceslawmonitor.com",
    "opentext.com",
    "casepoint.com",
    "relativity.com",
)

# A bare listing index (e.g. https://site.com/events/) rather than one event page.
LISTING_PATH = re.compile(
    r"^/(?:[a-z]{2}(?:-[a-z]{2})?/)?"
    r"(?:events?|conferences?|calendar|event-calendar|veranstaltungen|termine|kalender|evenements|agenda-des-evenements)"
    r"/?$"
)


def is_aggregator_url(url: str, domains: tuple[str, ...] = AGGREGATOR_DOMAINS) -> bool:
    domain = extract_domain(url)
    if not domain:
        return False
    for agg in domains:
        if domain == agg or domain.endswith("." + agg):
            return True
    return bool(LISTING_PATH.match(url_path(url)))


@dataclass(slots=True)
class PreFilterResult:
    urls: list[str] = field(default_factory=list)
    aggregator_dropped: int = 0
    backstop_kept: int = 0


def pre_filter(
    urls: list[str],
    *,
    min_non_aggregator_urls: int | None = None,
    max_backstop_aggregators: int | None = None,
) -> PreFilterResult:
    """Keep all non-aggregators; backfill a few aggregators only when too few remain."""
    min_non_agg = (
        settings.prefilter_min_non_aggregator_urls if min_non_aggregator_urls is None else min_non_aggregator_urls
    )
    cap = settings.prefilter_max_backstop_aggregators if max_backstop_aggregators is None else max_backstop_aggregators

    non_aggregators: list[str] = []
    aggregators: list[str] = []
    for url in urls:
        (aggregators if is_aggregator_url(url) else non_aggregators).append(url)

    backstop: list[str] = []
    if len(non_aggregators) < min_non_agg and aggregators:
        backstop = aggregators[: max(0, cap)]

    result = PreFilterResult(
        urls=non_aggregators + backstop,
        aggregator_dropped=len(aggregators) - len(backstop),
        backstop_kept=len(backstop),
    )
    logger.info(
        f"Pre-filter: {len(non_aggregators)} non-aggregators, {len(aggregators)} aggregators, "
        f"backstop kept {result.backstop_kept}"
    )
    return result
