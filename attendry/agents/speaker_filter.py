"""Person-only speaker filtering.

Extraction regularly lists session titles, buttons and organisations as
speakers. Downstream outreach treats every surviving entry as a contactable
human, so this filter prefers dropping a real person over keeping a
non-person.
"""

from __future__ import annotations

import re
from typing import Any, Iterable

from loguru import logger
from pydantic import ValidationError

from attendry.models.events import EventDTO, SpeakerDTO

HONORIFICS = re.compile(
    r"\b(Dr\.?|Prof\.?|RA|LL\.M\.|LLM|MBA|PhD|Ph\.D\.|M\.Sc\.|B\.Sc\.)(?!\w)",
    re.IGNORECASE,
)

NON_PERSON_TERMS = re.compile(
    r"\b(Summit|Forum|Panel|Track|Keynote|Workshop|Session|Privacy|Compliance|Risk|Week|Faculty|Operations|"
    r"Practices?|User|National|Symposium|Lawyers?|Conference|Konferenz|Tagung|Seminar|Day|Resource|Center|"
    r"Centre|Library|Portal|Hub|Network|Instructor|Trainer|Teacher|Committee|Board|Team|Group|Department|"
    r"Association|Institute|Foundation|Council|Society|Partner|Discovery|eDiscovery|Litigation|Investigation|"
    r"Audit|Governance|Regulation|Technology|Management|Solution|Service|Program|Project|Strategy|Initiative|"
    r"Speakers?|Referenten|Agenda|Moderation|Moderator(?:in)?|Rechtsanw(?:alt|ältin|älte)|TBA|TBD)\b",
    re.IGNORECASE,
)

ACTION_VERBS = re.compile(
    r"^(Negotiating|Managing|Implementing|Understanding|Navigating|Leading|Building|Developing|Creating|"
    r"Exploring|Establishing|Designing|Conducting|Planning|Organizing|Facilitating|Moderating|Presenting|"
    r"Discussing|Analyzing|Reviewing|Examining|Assessing|Evaluating)\b",
    re.IGNORECASE,
)

ORG_SUFFIX = re.compile(
    r"\b(GmbH & Co\.? KG|GmbH|AG|SE|KG|UG|Inc\.?|LLC|LLP|PLC|S\.?A\.?|S\.?p\.?A\.?|e\.V\.|Corp\.?|Ltd\.?|Limited)(?!\w)",
    re.IGNORECASE,
)

UI_ELEMENTS = re.compile(
    r"\b(Reserve|Register|Book|Ticket|Sign\s*Up|Learn\s*More|Read\s*More|View\s*More|Click\s*Here|Download|"
    r"Subscribe|Join|Enroll|Contact|Submit|Apply|Now|Today|Share|Save)\b",
    re.IGNORECASE,
)

# 2-4 capitalized tokens, hyphens and nobiliary particles allowed.
NAME_PATTERN = re.compile(
    r"^(?:[A-ZÄÖÜ][a-zäöüßéèáàíóúñç\-']+)"
    r"(?:\s+(?:von|van|de|da|di|del|der|den|la|le|zu|zur))?"
    r"(?:\s+[A-ZÄÖÜ][a-zäöüßéèáàíóúñç\-']+){1,3}$"
)

GIVEN_NAMES = (
    # German
    "Anna", "Anne", "Anja", "Andrea", "Benjamin", "Bernd", "Christian", "Christina",
    "Christoph", "Claudia", "Daniel", "David", "Denis", "Dirk", "Elena", "Elisabeth",
    "Felix", "Frank", "Hannah", "Hans", "Heike", "Hendrik", "Jan", "Jana", "Jens",
    "Jonas", "Julia", "Jürgen", "Kai", "Katja", "Klaus", "Lena", "Lisa", "Lukas",
    "Manfred", "Maria", "Marion", "Markus", "Martin", "Matthias", "Michael", "Monika",
    "Nicole", "Nina", "Oliver", "Patrick", "Paul", "Peter", "Petra", "Ralf", "Robert",
    "Sabine", "Sandra", "Sarah", "Sebastian", "Silke", "Stefan", "Stefanie", "Susanne",
    "Sven", "Thomas", "Thorsten", "Tobias", "Udo", "Ulrich", "Ulrike", "Uwe", "Werner",
    "Wolfgang",
    # English
    "Alexander", "Alexandra", "Alice", "Andrew", "Angela", "Anthony", "Barbara", "Brian",
    "Carol", "Charles", "Christopher", "Daniela", "Deborah", "Donald", "Dorothy", "Edward",
    "Elizabeth", "Emily", "Emma", "Eric", "George", "Helen", "James", "Jason", "Jennifer",
    "Jessica", "John", "Jonathan", "Joseph", "Joshua", "Karen", "Kathy", "Kenneth", "Kevin",
    "Laura", "Linda", "Margaret", "Mark", "Mary", "Matthew", "Melissa", "Michelle", "Nancy",
    "Patricia", "Rachel", "Rebecca", "Richard", "Ronald", "Ruth", "Samantha", "Scott",
    "Sharon", "Sophia", "Stephen", "Steven", "Susan", "Timothy", "William",
)
GIVEN_NAME_PATTERN = re.compile(r"\b(" + "|".join(GIVEN_NAMES) + r")\b", re.IGNORECASE)


def is_likely_person(name: str, role: str | None = None, org: str | None = None) -> tuple[bool, list[str]]:
    """Classify a speaker name; returns ``(ok, reasons)``.

    Hard rejections return immediately with a single reason. Honorifics and
    degrees are stripped first; what remains needs at least two name tokens
    and either a person-name shape or a known given name.
    """
    n = (name or "").strip()
    if len(n) < 4:
        return False, ["empty_or_short"]
    if UI_ELEMENTS.search(n):
        return False, ["ui_element"]
    if ACTION_VERBS.search(n):
        return False, ["action_verb_phrase"]
    if NON_PERSON_TERMS.search(n):
        return False, ["non_person_keyword"]
    if ORG_SUFFIX.search(n):
        return False, ["org_suffix_in_name"]

    bare = " ".join(HONORIFICS.sub(" ", n).replace(",", " ").split())
    words = [w for w in bare.split() if any(ch.isalpha() for ch in w)]
    if not words:
        return False, ["honorific_only"]
    if len(words) > 4 or len(n) > 50:
        return False, ["name_too_long"]
    if len(words) < 2:
        return False, ["single_word_name"]

    reasons: list[str] = []
    name_like = bool(NAME_PATTERN.match(" ".join(words)))
    if not name_like:
        reasons.append("fails_name_shape")

    has_given = bool(GIVEN_NAME_PATTERN.search(bare))
    if name_like and not has_given:
        reasons.append("no_common_given_name")

    if org and ORG_SUFFIX.search(org):
        reasons.append("org_field_has_org_suffix")

    return name_like or has_given, reasons or ["passed"]


def _as_mapping(raw: Any) -> dict[str, Any] | None:
    if isinstance(raw, SpeakerDTO):
        return raw.model_dump()
    if isinstance(raw, dict):
        return raw
    if isinstance(raw, str):
        return {"name": raw}
    return None


def filter_speakers(raw: Iterable[Any]) -> list[SpeakerDTO]:
    """Keep likely persons, de-duplicated case-insensitively by name, in input order."""
    seen: set[str] = set()
    kept: list[SpeakerDTO] = []
    for item in raw or []:
        data = _as_mapping(item)
        if data is None:
            continue
        name = str(data.get("name") or "").strip()
        key = name.lower()
        if not key or key in seen:
            continue

        ok, reasons = is_likely_person(name, data.get("role"), data.get("org"))
        if not ok:
            logger.debug(f"Filtered non-person speaker {name!r} ({', '.join(reasons)})")
            continue
        try:
            speaker = item if isinstance(item, SpeakerDTO) else SpeakerDTO.model_validate({**data, "name": name})
        except ValidationError as exc:
            logger.debug(f"Dropped speaker {name!r}: {exc.error_count()} validation error(s)")
            continue
        seen.add(key)
        kept.append(speaker)
    return kept


def filter_event_speakers(event: EventDTO) -> tuple[EventDTO, int]:
    """Return the event with person-only speakers and how many entries were removed."""
    if not event.speakers:
        return event, 0
    kept = filter_speakers(event.speakers)
    removed = len(event.speakers) - len(kept)
    if removed == 0:
        return event, 0
    return event.model_copy(update={"speakers": kept}), removed
