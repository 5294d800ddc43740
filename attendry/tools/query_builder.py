from __future__ import annotations

import re
from typing import Iterable

from attendry.errors import QueryBuildError
from attendry.models.search import CountryContext, UserProfile

_WS = re.compile(r"\s+")


def _normalize(text: str | None) -> str:
    return _WS.sub(" ", text or "").strip()


def _group(text: str) -> str:
    if text.startswith("(") and text.endswith(")") and _balanced(text[1:-1]):
        return text
    return f"({text})"


def _balanced(text: str) -> bool:
    depth = 0
    for ch in text:
        if ch == "(":
            depth += 1
        elif ch == ")":
            depth -= 1
            if depth < 0:
                return False
    return depth == 0


def _quote_term(term: str) -> str:
    if " " in term and not (term.startswith('"') and term.endswith('"')):
        return f'"{term}"'
    return term


def _or_group(terms: Iterable[str]) -> str:
    cleaned: list[str] = []
    seen: set[str] = set()
    for term in terms:
        term = _normalize(term)
        if term and term.lower() not in seen:
            seen.add(term.lower())
            cleaned.append(_quote_term(term))
    return f"({' OR '.join(cleaned)})" if cleaned else ""


def parse_exclude_terms(raw: str | Iterable[str] | None) -> list[str]:
    if raw is None:
        return []
    if isinstance(raw, str):
        # Comma separated lists allow multi-word terms, otherwise split on whitespace.
        parts = raw.split(",") if "," in raw else raw.split()
    else:
        parts = list(raw)
    terms: list[str] = []
    seen: set[str] = set()
    for part in parts:
        term = _normalize(part).lstrip("-").strip()
        if term and term.lower() not in seen:
            seen.add(term.lower())
            terms.append(term)
    return terms


def build_query(
    base: str,
    user_text: str | None = None,
    country_context: CountryContext | None = None,
    *,
    exclude_terms: str | Iterable[str] | None = None,
    profile: UserProfile | None = None,
) -> str:
    """Build one effective search-engine query.

    ``base`` and ``user_text`` are combined as juxtaposed groups, which search
    engines evaluate as AND. Country signal is taken only from
    ``country_context``.
    """
    base_norm = _normalize(base)
    if not base_norm:
        raise QueryBuildError("base query must not be empty")

    parts = [_group(base_norm)]

    user_norm = _normalize(user_text)
    if user_norm and user_norm.lower() != base_norm.lower():
        parts.append(_group(user_norm))

    if profile is not None and profile.industry_terms:
        industry = _or_group(profile.industry_terms)
        if industry:
            parts.append(industry)

    if country_context is not None and country_context.in_phrase:
        parts.append(_group(country_context.in_phrase))

    for term in parse_exclude_terms(exclude_terms):
        parts.append(f"-{_quote_term(term)}")

    return " ".join(parts)
