"""Parse LLM extraction output into validated events, repairing near-JSON on the way.

LLMs wrap JSON in prose, markdown fences and comments, and leave trailing
commas or bare keys. Repairs here run on a string-aware scanner so that
values such as ``"https://x.com"`` are never touched.
"""

from __future__ import annotations

import asyncio
import json
import re
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable

from loguru import logger
from pydantic import ValidationError

from attendry.models.events import EventDTO
from attendry.services.prompt_store import render_prompt

EVENT_SCHEMA_HINT = """[
  {
    "title": "string, at least 3 characters",
    "starts_at": "YYYY-MM-DD",
    "ends_at": "YYYY-MM-DD (optional)",
    "tz": "IANA timezone (optional)",
    "city": "string (optional)",
    "country": "2-letter ISO code (optional)",
    "venue": "string (optional)",
    "organizer": "string (optional)",
    "url": "absolute http(s) URL",
    "topics": ["string"],
    "speakers": [{"name": "string, at least 3 characters", "role": "string (optional)", "org": "string (optional)", "url": "absolute URL (optional)"}]
  }
]"""

REPROMPT_MAX_CHARS = 2000

_FENCE = re.compile(r"```(?:json|JSON)?\s*\n?(.*?)```", re.DOTALL)
_IDENT_START = re.compile(r"[A-Za-z_$]")
_IDENT_CHAR = re.compile(r"[A-Za-z0-9_$\-]")
_CLOSERS = {"{": "}", "[": "]"}

Generate = Callable[[str, str], Awaitable[str]]


@dataclass(slots=True)
class ParseResult:
    ok: bool
    data: list[EventDTO] = field(default_factory=list)
    repaired: bool = False
    error: str | None = None
    parsed: bool = False  # JSON decoded, regardless of how many items validated
    dropped: int = 0  # items that failed schema validation


def _is_valid_json(text: str) -> bool:
    try:
        json.loads(text)
    except (ValueError, TypeError):
        return False
    return True


def _balanced_end(text: str, start: int) -> int | None:
    """Index just past the closer matching ``text[start]``, ignoring brackets inside strings."""
    stack: list[str] = []
    quote: str | None = None
    escaped = False
    for i in range(start, len(text)):
        ch = text[i]
        if quote:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == quote:
                quote = None
            continue
        if ch in ('"', "'"):
            quote = ch
        elif ch in _CLOSERS:
            stack.append(_CLOSERS[ch])
        elif ch in ("}", "]"):
            if not stack or stack[-1] != ch:
                return None
            stack.pop()
            if not stack:
                return i + 1
    return None


def json_span_candidates(text: str) -> list[str]:
    """Balanced top-level ``{...}``/``[...]`` spans, longest first.

    Spans nested inside an earlier balanced span are not candidates of their
    own. Ties keep their order of appearance.
    """
    spans: list[str] = []
    i = 0
    n = len(text)
    while i < n:
        if text[i] in _CLOSERS:
            end = _balanced_end(text, i)
            if end is not None:
                spans.append(text[i:end])
                i = end
                continue
        i += 1
    return sorted(spans, key=len, reverse=True)


def extract_json_span(text: str) -> str | None:
    """Return the largest top-level JSON span in ``text``.

    Prefers the longest balanced span that decodes, then the longest balanced
    one. When nothing balances, falls back to the leftmost opener through the
    last matching closer so that repair has something to work on.
    """
    candidates = json_span_candidates(text)
    for span in candidates:
        if _is_valid_json(span):
            return span
    if candidates:
        return candidates[0]

    starts = [i for i in (text.find("{"), text.find("[")) if i != -1]
    if not starts:
        return None
    start = min(starts)
    end = text.rfind(_CLOSERS[text[start]])
    if end <= start:
        return text[start:]
    return text[start : end + 1]


def _skip_insignificant(text: str, i: int) -> int:
    """Index of the next character that is not whitespace or a comment."""
    n = len(text)
    while i < n:
        if text[i].isspace():
            i += 1
        elif text.startswith("//", i):
            nl = text.find("\n", i)
            i = n if nl == -1 else nl + 1
        elif text.startswith("/*", i):
            end = text.find("*/", i + 2)
            i = n if end == -1 else end + 2
        else:
            break
    return i


def _repair_tokens(text: str) -> str:
    out: list[str] = []
    last_sig = ""
    i = 0
    n = len(text)
    while i < n:
        ch = text[i]

        if ch == '"' or ch == "'":
            # Copy a string literal, normalizing single quotes and raw newlines.
            quote = ch
            out.append('"')
            i += 1
            while i < n:
                c = text[i]
                if c == "\\" and i + 1 < n:
                    nxt = text[i + 1]
                    if quote == "'" and nxt == "'":
                        out.append("'")
                    else:
                        out.append(c + nxt)
                    i += 2
                    continue
                if c == quote:
                    i += 1
                    break
                if c == '"':
                    out.append('\\"')
                elif c == "\n":
                    out.append("\\n")
                elif c == "\r":
                    pass
                elif c == "\t":
                    out.append("\\t")
                else:
                    out.append(c)
                i += 1
            out.append('"')
            last_sig = '"'
            continue

        if text.startswith("//", i) or text.startswith("/*", i):
            i = _skip_insignificant(text, i)
            continue

        if ch == ",":
            nxt = _skip_insignificant(text, i + 1)
            if nxt >= n or text[nxt] in "}]":
                i += 1
                continue
            out.append(ch)
            last_sig = ch
            i += 1
            continue

        if last_sig in ("{", ",") and _IDENT_START.match(ch):
            j = i + 1
            while j < n and _IDENT_CHAR.match(text[j]):
                j += 1
            after = _skip_insignificant(text, j)
            if after < n and text[after] == ":":
                out.append(f'"{text[i:j]}"')
                last_sig = '"'
                i = j
                continue
            out.append(text[i:j])
            last_sig = text[j - 1]
            i = j
            continue

        out.append(ch)
        if not ch.isspace():
            last_sig = ch
        i += 1
    return "".join(out)


def try_repair_json(text: str) -> str:
    """Apply mechanical repairs; valid JSON is returned unchanged (trimmed)."""
    candidate = (text or "").strip()
    if _is_valid_json(candidate):
        return candidate

    fence = _FENCE.search(candidate)
    if fence:
        candidate = fence.group(1).strip()
        if _is_valid_json(candidate):
            return candidate

    candidates = json_span_candidates(candidate)
    span = candidates[0] if candidates else extract_json_span(candidate)
    if span is not None:
        candidate = span

    return _repair_tokens(candidate).strip()


def validate_events(payload: Any, default_url: str | None = None) -> tuple[list[EventDTO], list[str]]:
    """Validate each item independently; invalid items are dropped, never partially kept."""
    if isinstance(payload, dict) and "title" not in payload and isinstance(payload.get("events"), list):
        payload = payload["events"]
    items = payload if isinstance(payload, list) else [payload]
    valid: list[EventDTO] = []
    errors: list[str] = []
    for index, item in enumerate(items):
        if not isinstance(item, dict):
            errors.append(f"item {index}: not an object")
            continue
        if default_url and not str(item.get("url") or "").strip():
            item = {**item, "url": default_url}
        try:
            valid.append(EventDTO.model_validate(item))
        except ValidationError as exc:
            fields = ", ".join(".".join(str(p) for p in err["loc"]) for err in exc.errors())
            errors.append(f"item {index}: invalid {fields}")
    for message in errors:
        logger.debug(f"Dropped extracted event {message}")
    return valid, errors


def safe_parse_events(text: str, default_url: str | None = None) -> ParseResult:
    """Decode the largest JSON span that yields schema-valid events.

    Candidate spans are tried longest first; a decodable span with no valid
    items gives way to the next one. When none has valid items, the result
    of the largest decodable span is returned.
    """
    text = text or ""
    candidates = json_span_candidates(text)
    if not candidates:
        fallback = extract_json_span(text)
        if fallback is None:
            return ParseResult(ok=False, error="no JSON object or array found")
        candidates = [fallback]

    first_parsed: ParseResult | None = None
    decode_error: str | None = None
    for span in candidates:
        try:
            payload = json.loads(span)
        except ValueError as exc:
            decode_error = decode_error or f"invalid JSON: {exc}"
            continue
        valid, errors = validate_events(payload, default_url)
        result = ParseResult(
            ok=bool(valid),
            data=valid,
            parsed=True,
            dropped=len(errors),
            error=None if valid else "no schema-valid events",
        )
        if valid:
            return result
        first_parsed = first_parsed or result

    if first_parsed is not None:
        return first_parsed
    return ParseResult(ok=False, error=decode_error)


def parse_with_repair(text: str, default_url: str | None = None) -> ParseResult:
    first = safe_parse_events(text, default_url)
    if first.ok:
        return first

    repaired_text = try_repair_json(text or "")
    second = safe_parse_events(repaired_text, default_url)
    second.repaired = True
    if second.ok:
        return second
    if first.parsed:
        return first
    if not second.parsed:
        second.error = f"unrepairable JSON: {second.error}"
        logger.debug(f"JSON repair failed: {second.error}")
    return second


async def reprompt_for_valid_json(
    invalid_text: str,
    generate: Generate,
    *,
    timeout: float = 6.0,
    default_url: str | None = None,
) -> ParseResult | None:
    """Last resort: ask the model to re-emit valid JSON. None when that fails too."""
    prompt = render_prompt(
        "repair.user_prompt",
        schema=EVENT_SCHEMA_HINT,
        invalid_text=(invalid_text or "")[:REPROMPT_MAX_CHARS],
    )
    system = render_prompt("repair.system_prompt")
    try:
        raw = await asyncio.wait_for(generate(prompt, system), timeout=timeout)
    except asyncio.TimeoutError:
        logger.warning(f"JSON re-prompt timed out after {timeout}s")
        return None
    except Exception as exc:
        logger.warning(f"JSON re-prompt failed: {type(exc).__name__}: {exc}")
        return None

    result = parse_with_repair(raw or "", default_url)
    if not result.parsed:
        logger.warning("JSON re-prompt returned unparseable output")
        return None
    return result
