from __future__ import annotations

import re
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from attendry.tools.web_utils import is_valid_url

DATE_PREFIX = re.compile(r"^\d{4}-\d{2}-\d{2}")


def _blank_to_none(value):
    if isinstance(value, str) and not value.strip():
        return None
    return value


class SpeakerDTO(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")

    name: str = Field(min_length=3)
    role: Optional[str] = None
    org: Optional[str] = None
    url: Optional[str] = None

    @field_validator("name", mode="before")
    @classmethod
    def _strip_name(cls, value):
        return value.strip() if isinstance(value, str) else value

    @field_validator("role", "org", "url", mode="before")
    @classmethod
    def _blank_optional(cls, value):
        return _blank_to_none(value)

    @field_validator("url")
    @classmethod
    def _check_url(cls, value: Optional[str]) -> Optional[str]:
        if value is not None and not is_valid_url(value):
            raise ValueError("speaker url must be an absolute http(s) URL")
        return value


class EventDTO(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")

    title: str = Field(min_length=3)
    starts_at: str
    ends_at: Optional[str] = None
    tz: Optional[str] = None
    city: Optional[str] = None
    country: Optional[str] = Field(default=None, min_length=2, max_length=2)
    venue: Optional[str] = None
    organizer: Optional[str] = None
    url: str
    topics: list[str] = Field(default_factory=list)
    speakers: list[SpeakerDTO] = Field(default_factory=list)

    @field_validator("title", mode="before")
    @classmethod
    def _strip_title(cls, value):
        return value.strip() if isinstance(value, str) else value

    @field_validator("ends_at", "tz", "city", "country", "venue", "organizer", mode="before")
    @classmethod
    def _blank_optional(cls, value):
        return _blank_to_none(value)

    @field_validator("starts_at")
    @classmethod
    def _check_starts_at(cls, value: str) -> str:
        if not DATE_PREFIX.match(value):
            raise ValueError("starts_at must begin with YYYY-MM-DD")
        return value

    @field_validator("ends_at")
    @classmethod
    def _check_ends_at(cls, value: Optional[str]) -> Optional[str]:
        if value is not None and not DATE_PREFIX.match(value):
            raise ValueError("ends_at must begin with YYYY-MM-DD")
        return value

    @field_validator("url")
    @classmethod
    def _check_url(cls, value: str) -> str:
        if not is_valid_url(value):
            raise ValueError("url must be an absolute http(s) URL")
        return value

    @field_validator("topics", mode="before")
    @classmethod
    def _none_topics(cls, value):
        return [] if value is None else value

    @field_validator("speakers", mode="before")
    @classmethod
    def _none_speakers(cls, value):
        return [] if value is None else value


def event_dedupe_key(event: EventDTO) -> str:
    return f"{event.url.lower().rstrip('/')}|{event.title.strip().lower()}"
