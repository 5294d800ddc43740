"""Country context used by the query builder, provider clients and reranker."""

from __future__ import annotations

import re

from attendry.models.search import CountryContext

COUNTRY_ALIASES: dict[str, str] = {
    "GERMANY": "DE",
    "DEUTSCHLAND": "DE",
    "FRANCE": "FR",
    "FRANKREICH": "FR",
    "NETHERLANDS": "NL",
    "NIEDERLANDE": "NL",
    "HOLLAND": "NL",
    "UK": "GB",
    "UNITEDKINGDOM": "GB",
    "GREATBRITAIN": "GB",
    "ENGLAND": "GB",
    "SPAIN": "ES",
    "ESPANA": "ES",
    "ITALY": "IT",
    "ITALIA": "IT",
}

COUNTRIES: dict[str, CountryContext] = {
    "DE": CountryContext(
        iso2="DE",
        locale="de",
        tld=".de",
        in_phrase='"in Germany" OR "in Deutschland"',
        country_names=("Germany", "Deutschland"),
        cities=("Berlin", "München", "Frankfurt", "Hamburg", "Köln", "Stuttgart", "Düsseldorf", "Leipzig"),
    ),
    "FR": CountryContext(
        iso2="FR",
        locale="fr",
        tld=".fr",
        in_phrase='"in France" OR "en France"',
        country_names=("France", "Frankreich"),
        cities=("Paris", "Lyon", "Marseille", "Lille", "Toulouse", "Bordeaux", "Nantes", "Strasbourg"),
    ),
    "NL": CountryContext(
        iso2="NL",
        locale="nl",
        tld=".nl",
        in_phrase='"in Netherlands" OR "in Nederland"',
        country_names=("Netherlands", "Nederland", "Holland"),
        cities=("Amsterdam", "Rotterdam", "Utrecht", "Eindhoven", "The Hague"),
    ),
    "GB": CountryContext(
        iso2="GB",
        locale="en",
        tld=".uk",
        in_phrase='"in United Kingdom" OR "in UK" OR "in England"',
        country_names=("United Kingdom", "UK", "Great Britain"),
        cities=("London", "Manchester", "Birmingham", "Glasgow", "Edinburgh", "Leeds", "Bristol"),
    ),
    "ES": CountryContext(
        iso2="ES",
        locale="es",
        tld=".es",
        in_phrase='"in Spain" OR "en España"',
        country_names=("Spain", "España"),
        cities=("Madrid", "Barcelona", "Valencia", "Sevilla", "Bilbao", "Malaga"),
    ),
    "IT": CountryContext(
        iso2="IT",
        locale="it",
        tld=".it",
        in_phrase='"in Italy" OR "in Italia"',
        country_names=("Italy", "Italia"),
        cities=("Roma", "Milano", "Torino", "Napoli", "Bologna", "Firenze"),
    ),
}


def to_iso2(raw: str | None) -> str | None:
    """Normalize a country code or name to ISO2; None when it cannot be one."""
    if not raw or not raw.strip():
        return None
    upper = raw.strip().upper()
    if len(upper) == 2 and upper.isalpha():
        return upper
    key = re.sub(r"[^A-Z]", "", upper.replace("Ñ", "N"))
    return COUNTRY_ALIASES.get(key)


def is_valid_iso2(raw: object) -> bool:
    return isinstance(raw, str) and to_iso2(raw) is not None


def get_country_context(raw: str | None) -> CountryContext | None:
    iso2 = to_iso2(raw)
    if iso2 is None:
        return None
    known = COUNTRIES.get(iso2)
    if known is not None:
        return known
    # Unknown but well-formed codes still carry a TLD signal.
    return CountryContext(
        iso2=iso2,
        locale="en",
        tld=f".{iso2.lower()}",
        in_phrase="",
        country_names=(iso2,),
    )
