from __future__ import annotations

"""Input validators shared by the store and the command line."""

from typing import Tuple

CARD_STATUSES = ("draft", "active", "archived", "deleted")
CARD_TYPES = ("word", "pattern", "complex_prompt")
NOTE_STATES = ("unprocessed", "deferred", "deleted")
SOURCE_TYPES = ("manual", "api", "browser_extension", "ifttt", "zapier", "n8n")
CEFR_LEVELS = ("A1", "A2", "B1", "B2", "C1", "C2")

# Allowed card lifecycle moves; deleted is terminal
STATUS_TRANSITIONS: dict[str, frozenset[str]] = {
    "draft": frozenset({"active", "deleted"}),
    "active": frozenset({"archived", "deleted"}),
    "archived": frozenset({"active", "deleted"}),
    "deleted": frozenset(),
}

# Inbox notes leave the inbox by deletion or by being processed into cards
NOTE_TRANSITIONS: dict[str, frozenset[str]] = {
    "unprocessed": frozenset({"deferred", "deleted"}),
    "deferred": frozenset({"unprocessed", "deleted"}),
    "deleted": frozenset(),
}


def validate_int_in_range(text: str, lo: int, hi: int) -> Tuple[bool, str | None]:
    try:
        v = int(str(text).strip())
    except ValueError:
        return False, f"Invalid value. Expected an integer between {lo} and {hi}."
    if not (lo <= v <= hi):
        return False, f"Invalid value. Expected an integer between {lo} and {hi}."
    return True, None


def validate_pile_size_limit(value: int | str) -> Tuple[bool, str | None]:
    return validate_int_in_range(str(value), 1, 1000)


def validate_card_status(status: str) -> Tuple[bool, str | None]:
    if status not in CARD_STATUSES:
        return False, f"Invalid status {status!r}. Expected one of {', '.join(CARD_STATUSES)}."
    return True, None


def validate_card_type(card_type: str) -> Tuple[bool, str | None]:
    if card_type not in CARD_TYPES:
        return False, f"Invalid card type {card_type!r}. Expected one of {', '.join(CARD_TYPES)}."
    return True, None


def validate_status_transition(current: str, new: str) -> Tuple[bool, str | None]:
    ok, err = validate_card_status(new)
    if not ok:
        return ok, err
    if current == new:
        return True, None
    if new not in STATUS_TRANSITIONS.get(current, frozenset()):
        return False, f"Cannot move card from {current} to {new}."
    return True, None


def validate_key(text: str, name: str) -> Tuple[bool, str | None]:
    s = (text or "").strip()
    if not s:
        return False, f"{name} must not be empty."
    if len(s) > 200:
        return False, f"{name} is too long (max 200 characters)."
    return True, None


def validate_source_type(source_type: str) -> Tuple[bool, str | None]:
    if source_type not in SOURCE_TYPES:
        return False, f"Invalid source type {source_type!r}. Expected one of {', '.join(SOURCE_TYPES)}."
    return True, None


def validate_cefr_level(level: str) -> Tuple[bool, str | None]:
    if level not in CEFR_LEVELS:
        return False, f"Invalid CEFR level {level!r}. Expected one of {', '.join(CEFR_LEVELS)}."
    return True, None


def validate_note_transition(current: str, new: str) -> Tuple[bool, str | None]:
    if new not in NOTE_STATES:
        return False, f"Invalid note state {new!r}. Expected one of {', '.join(NOTE_STATES)}."
    if new not in NOTE_TRANSITIONS.get(current, frozenset()):
        return False, f"Cannot move note from {current} to {new}."
    return True, None
