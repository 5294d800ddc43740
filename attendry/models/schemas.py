from __future__ import annotations

from datetime import date
from typing import Any

from pydantic import BaseModel, Field

from attendry.models.events import EventDTO


# --- Requests ---


class EventsRunRequest(BaseModel):
    user_text: str | None = None
    country: str | None = None
    date_from: date | None = None
    date_to: date | None = None
    locale: str | None = None
    base_query: str = "conference"
    industry: str | None = None
    exclude_terms: str | None = None
    user_id: str | None = None
    persist: bool = False


# --- Responses ---


class EventsRunResponse(BaseModel):
    events: list[EventDTO]
    telemetry: dict[str, Any] = Field(default_factory=dict)


class ErrorResponse(BaseModel):
    error: str
    debug: dict[str, Any] | None = None
