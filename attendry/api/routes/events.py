from __future__ import annotations

import time

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from loguru import logger

from attendry.agents.orchestrator import EventPipeline, PipelineResult
from attendry.api.deps import get_pipeline, get_store
from attendry.models.schemas import ErrorResponse, EventsRunRequest, EventsRunResponse
from attendry.models.search import SearchRequest, UserProfile
from attendry.services.supabase import EventStore
from attendry.tools.country import to_iso2

router = APIRouter(prefix="/api/events", tags=["events"])


def _telemetry(result: PipelineResult, runtime_ms: int) -> dict:
    orchestration = result.orchestration
    return {
        **result.metrics.to_dict(),
        "stage": result.stage.value,
        "runtime_ms": runtime_ms,
        "provider_used": orchestration.provider_used.value if orchestration and orchestration.provider_used else None,
        "providers_tried": [p.value for p in orchestration.providers_tried] if orchestration else [],
        "query": orchestration.query if orchestration else None,
        "cached": orchestration.cached if orchestration else False,
    }


async def _load_profile(store: EventStore, user_id: str | None) -> UserProfile | None:
    if not user_id or not store.configured:
        return None
    try:
        return await store.get_profile(user_id)
    except Exception as exc:
        logger.warning(f"Profile lookup failed for {user_id}: {type(exc).__name__}: {exc}")
        return None


@router.post(
    "/run",
    response_model=EventsRunResponse,
    responses={400: {"model": ErrorResponse}, 500: {"model": ErrorResponse}},
)
async def run_events(
    request: EventsRunRequest,
    pipeline: EventPipeline = Depends(get_pipeline),
    store: EventStore = Depends(get_store),
):
    """Discover, rank and extract events for one country and date window."""
    country = to_iso2(request.country)
    if country is None:
        return JSONResponse(status_code=400, content={"error": "country (ISO2) required"})

    search_request = SearchRequest(
        base_query=request.base_query,
        user_text=request.user_text,
        country=country,
        locale=request.locale,
        date_from=request.date_from,
        date_to=request.date_to,
        industry=request.industry,
        exclude_terms=request.exclude_terms,
    )
    started = time.perf_counter()
    try:
        profile = await _load_profile(store, request.user_id)
        result = await pipeline.run(search_request, profile=profile, persist=request.persist)
    except Exception as exc:
        logger.exception(f"Event run failed: {type(exc).__name__}: {exc}")
        return JSONResponse(
            status_code=500,
            content={"error": str(exc) or type(exc).__name__, "debug": {"type": type(exc).__name__}},
        )

    runtime_ms = int((time.perf_counter() - started) * 1000)
    return EventsRunResponse(events=result.events, telemetry=_telemetry(result, runtime_ms))
