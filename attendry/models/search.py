from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


class Provider(str, Enum):
    WEB_SEARCH = "web-search"
    SEARCH_ENGINE = "search-engine"
    DATABASE = "database"


PROVIDER_ALIASES: dict[str, Provider] = {
    "web-search": Provider.WEB_SEARCH,
    "web_search": Provider.WEB_SEARCH,
    "firecrawl": Provider.WEB_SEARCH,
    "search-engine": Provider.SEARCH_ENGINE,
    "search_engine": Provider.SEARCH_ENGINE,
    "cse": Provider.SEARCH_ENGINE,
    "google_cse": Provider.SEARCH_ENGINE,
    "database": Provider.DATABASE,
    "db": Provider.DATABASE,
}


class SearchRequest(BaseModel):
    model_config = ConfigDict(frozen=True)

    base_query: str
    user_text: str | None = None
    country: str | None = None
    locale: str | None = None
    date_from: date | None = None
    date_to: date | None = None
    industry: str | None = None
    exclude_terms: str | None = None

    @field_validator("country")
    @classmethod
    def _upper_country(cls, value: str | None) -> str | None:
        if value is None:
            return None
        value = value.strip().upper()
        return value or None


@dataclass(frozen=True)
class CountryContext:
    iso2: str
    locale: str
    tld: str
    in_phrase: str
    country_names: tuple[str, ...] = ()
    cities: tuple[str, ...] = ()


@dataclass(frozen=True)
class SearchContext:
    """Per-call parameters handed to every provider client."""

    country: str | None = None
    locale: str | None = None
    date_from: date | None = None
    date_to: date | None = None
    max_results: int = 20


@dataclass(frozen=True)
class ProviderResult:
    provider: Provider
    items: tuple[str, ...] = ()
    debug: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_urls(cls, provider: Provider, urls: list[str], **debug: Any) -> "ProviderResult":
        seen: set[str] = set()
        unique: list[str] = []
        for url in urls:
            if url and url not in seen:
                seen.add(url)
                unique.append(url)
        return cls(provider=provider, items=tuple(unique), debug=dict(debug))


@dataclass(slots=True)
class OrchestrationResult:
    items: list[str] = field(default_factory=list)
    provider_used: Provider | None = None
    providers_tried: list[Provider] = field(default_factory=list)
    query: str = ""
    cached: bool = False
    debug: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not self.items:
            self.provider_used = None


class UserProfile(BaseModel):
    industry_terms: list[str] = Field(default_factory=list)
    icp_terms: list[str] = Field(default_factory=list)
    competitors: list[str] = Field(default_factory=list)
