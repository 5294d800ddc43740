"""Attendry - Event Discovery

Simple CLI for running one discovery pass.
"""

import argparse
import asyncio
import sys
from datetime import date

from attendry.agents.orchestrator import build_pipeline
from attendry.models.search import SearchRequest
from attendry.tools.country import to_iso2


async def run_discovery(
    query: str,
    country: str,
    user_text: str | None = None,
    date_from: date | None = None,
    date_to: date | None = None,
    persist: bool = False,
) -> int:
    """Run the pipeline and print events. Returns the process exit code."""
    print(f"Event query: {query} ({country})")
    print("-" * 50)

    pipeline = build_pipeline()
    request = SearchRequest(
        base_query=query,
        user_text=user_text,
        country=country,
        date_from=date_from,
        date_to=date_to,
    )
    result = await pipeline.run(request, persist=persist)

    metrics = result.metrics
    orchestration = result.orchestration
    if orchestration is not None:
        provider = orchestration.provider_used.value if orchestration.provider_used else "none"
        print(f"\n[*] Discovered {metrics.urls_discovered} URLs (provider: {provider}, cached: {orchestration.cached})")
    print(f"  [+] Aggregators dropped: {metrics.aggregator_dropped}, backstop kept: {metrics.backstop_kept}")
    print(f"  [+] Rerank applied: {metrics.rerank_applied}")
    print(f"  [+] Extracted from {metrics.urls_extracted} URLs, invalid JSON: {metrics.invalid_json_dropped}")
    print(f"  [+] Non-person speakers filtered: {metrics.non_persons_filtered}")

    print(f"\n{'='*50}")
    print(f"EVENTS ({len(result.events)}):")
    print(f"{'='*50}")
    for event in result.events:
        where = ", ".join(p for p in (event.city, event.country) if p)
        print(f"\n- {event.title}")
        print(f"  {event.starts_at or 'date unknown'}{f' | {where}' if where else ''}")
        print(f"  {event.url}")
        for speaker in event.speakers:
            extra = ", ".join(p for p in (speaker.role, speaker.org) if p)
            print(f"    * {speaker.name}{f' ({extra})' if extra else ''}")
    return 0


def main():
    parser = argparse.ArgumentParser(description="Attendry Event Discovery")
    parser.add_argument("--query", "-q", required=True, help="Base query, e.g. 'legal conference'")
    parser.add_argument("--country", "-c", required=True, help="Country as ISO2 code or name")
    parser.add_argument("--user-text", "-u", help="Extra free-text terms")
    parser.add_argument("--from", dest="date_from", type=date.fromisoformat, help="Start date (YYYY-MM-DD)")
    parser.add_argument("--to", dest="date_to", type=date.fromisoformat, help="End date (YYYY-MM-DD)")
    parser.add_argument("--persist", action="store_true", help="Upsert extracted events into the event store")

    args = parser.parse_args()

    country = to_iso2(args.country)
    if country is None:
        parser.error("country (ISO2) required")

    sys.exit(
        asyncio.run(
            run_discovery(
                args.query,
                country,
                user_text=args.user_text,
                date_from=args.date_from,
                date_to=args.date_to,
                persist=args.persist,
            )
        )
    )


if __name__ == "__main__":
    main()
