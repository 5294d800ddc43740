from __future__ import annotations

from functools import lru_cache

from attendry.agents.orchestrator import EventPipeline, build_pipeline
from attendry.services.reliability import ReliabilityManager
from attendry.services.supabase import EventStore


@lru_cache(maxsize=1)
def get_reliability() -> ReliabilityManager:
    """Process-wide retry budget and circuit breakers, shared by the store and the pipeline."""
    return ReliabilityManager()


@lru_cache(maxsize=1)
def get_pipeline() -> EventPipeline:
    """One pipeline per process so breakers, retry budget and cache are shared across requests."""
    return build_pipeline(reliability=get_reliability(), store=get_store())


@lru_cache(maxsize=1)
def get_store() -> EventStore:
    return EventStore(get_reliability())
