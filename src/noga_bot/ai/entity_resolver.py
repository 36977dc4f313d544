"""Resolve natural-language device references to Home Assistant entity ids.

Resolution works against the administrator's device mappings (nickname,
location). Hebrew attaches articles and prepositions to the word they modify
("המנורה", "בסלון"), so references are also compared with one such prefix
letter stripped from each word.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Sequence

from noga_bot.errors import EntityNotFound
from noga_bot.storage.models import DeviceMapping

_ENTITY_ID = re.compile(r"[a-z0-9_\-.:]+")
_HEBREW_PREFIXES = "הובלמשכ"

_OFF_PATTERN = re.compile(r"כבה|תכבה|סגור|כבי|להכבות|לכבות|תיכבה|turn off|switch off|\boff\b", re.IGNORECASE)
_ON_PATTERN = re.compile(r"דל|תדליק|פתח|דליקי|להדליק|תדליקי|פתיחה|turn on|switch on|\bon\b", re.IGNORECASE)


@dataclass(frozen=True)
class Resolution:
    entity_id: str
    action: str  # "turn_on" | "turn_off" | "toggle"


def looks_like_entity_id(reference: str) -> bool:
    """True for canonical ids such as ``light.living_room``."""
    return "." in reference and bool(_ENTITY_ID.fullmatch(reference))


def detect_action(text: str) -> str:
    lowered = text.lower()
    if _OFF_PATTERN.search(lowered):
        return "turn_off"
    if _ON_PATTERN.search(lowered):
        return "turn_on"
    return "toggle"


def _strip_prefixes(text: str) -> str:
    words = []
    for word in text.split():
        if len(word) > 2 and word[0] in _HEBREW_PREFIXES:
            word = word[1:]
        words.append(word)
    return " ".join(words)


def _variants(text: str) -> list[str]:
    lowered = " ".join(text.lower().split())
    stripped = _strip_prefixes(lowered)
    return [lowered] if stripped == lowered else [lowered, stripped]


def _exact_matches(reference: str, mappings: Sequence[DeviceMapping]) -> list[DeviceMapping]:
    variants = _variants(reference)
    matches = []
    for mapping in mappings:
        nickname = mapping.nickname.lower()
        entity_id = mapping.entity_id.lower()
        if any(nickname in v or v in nickname or v in entity_id for v in variants):
            matches.append(mapping)
    return matches


def _word_matches(reference: str, mappings: Sequence[DeviceMapping]) -> list[DeviceMapping]:
    words = [w for w in _variants(reference)[-1].split() if len(w) >= 2]
    if not words:
        return []
    return [
        m
        for m in mappings
        if all(w in m.nickname.lower() or w in m.entity_id.lower() for w in words)
    ]


def _mentioned_locations(reference: str, mappings: Sequence[DeviceMapping]) -> set[str]:
    lowered = reference.lower()
    return {m.location for m in mappings if m.location and m.location.lower() in lowered}


def resolve(reference: str, mappings: Sequence[DeviceMapping]) -> str:
    """Return the entity id for *reference*, raising ``EntityNotFound``."""
    reference = reference.strip()
    if looks_like_entity_id(reference):
        return reference
    if not reference:
        raise EntityNotFound(reference)

    candidates = _exact_matches(reference, mappings) or _word_matches(reference, mappings)
    if not candidates:
        raise EntityNotFound(reference)

    locations = _mentioned_locations(reference, mappings)
    if locations:
        in_location = [c for c in candidates if c.location in locations]
        if in_location:
            candidates = in_location

    # The longest nickname is the most specific phrase.
    best = max(candidates, key=lambda m: len(m.nickname))
    return best.entity_id


def find_action_and_entity(text: str, mappings: Sequence[DeviceMapping]) -> Resolution | None:
    """Resolve the device and the on/off/toggle action from a whole sentence."""
    if not text or not mappings:
        return None
    try:
        entity_id = resolve(text, mappings)
    except EntityNotFound:
        return None
    return Resolution(entity_id=entity_id, action=detect_action(text))
