from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timezone
from typing import Mapping, Optional, Sequence

from cardsched.config import DRAW_PILE_PREFIX
from cardsched.errors import InvalidTransitionError, ValidationError
from cardsched.models import Card, DrawPile, DrillContextEntry

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def pile_provenance(group_id: str) -> str:
    return f"{DRAW_PILE_PREFIX}{group_id}"


def is_snooze_expired(entry: DrillContextEntry, now: datetime) -> bool:
    return entry.state == "snoozed" and (entry.state_until is None or entry.state_until <= now)


def is_drawable(entry: Optional[DrillContextEntry], now: datetime) -> bool:
    """A card can be drawn if it has no entry or its snooze has run out.

    Active entries are already in context; dismissed entries only come
    back through an explicit add.
    """
    if entry is None:
        return True
    return is_snooze_expired(entry, now)


def _usage_key(card: Card, entries: Mapping[str, DrillContextEntry]) -> tuple[int, datetime, str]:
    e = entries.get(card.card_id)
    if e is None:
        return (0, _EPOCH, card.card_id)
    return (e.usage_count, e.last_used or _EPOCH, card.card_id)


def active_count(group_cards: Sequence[Card], entries: Mapping[str, DrillContextEntry]) -> int:
    """Number of group cards whose context entry is active."""
    n = 0
    for c in group_cards:
        e = entries.get(c.card_id)
        if e is not None and e.state == "active":
            n += 1
    return n


def has_room(pile: DrawPile, group_cards: Sequence[Card], entries: Mapping[str, DrillContextEntry]) -> bool:
    return active_count(group_cards, entries) < pile.pile_size_limit


def draw(
    pile: DrawPile,
    group_cards: Sequence[Card],
    entries: Mapping[str, DrillContextEntry],
    now: datetime,
) -> list[DrillContextEntry]:
    """Pull group cards into active drill context up to the pile size limit.

    `entries` maps card_id to the existing context entry of each group card.
    Returns only the entries that were created or re-activated; nothing is
    drawn when the pile is disabled or already full.
    """
    if not pile.enabled:
        return []
    slots = pile.pile_size_limit - active_count(group_cards, entries)
    if slots <= 0:
        return []

    candidates = [
        c for c in group_cards if c.status == "active" and is_drawable(entries.get(c.card_id), now)
    ]
    candidates.sort(key=lambda c: _usage_key(c, entries))

    drawn: list[DrillContextEntry] = []
    for card in candidates[:slots]:
        existing = entries.get(card.card_id)
        if existing is None:
            existing = DrillContextEntry(card.user_id, card.language_id, card.card_id)
        drawn.append(
            replace(
                existing,
                state="active",
                added_from=pile_provenance(pile.group_id),
                added_at=now,
                state_until=None,
            )
        )
    return drawn


def snooze(entry: DrillContextEntry, until: datetime, now: datetime) -> DrillContextEntry:
    """Move an active (or already snoozed) entry to snoozed until `until`."""
    if entry.state == "dismissed":
        raise InvalidTransitionError(f"Card {entry.card_id} is dismissed and cannot be snoozed")
    if until <= now:
        raise ValidationError("Snooze expiry must be in the future")
    entry.state = "snoozed"
    entry.state_until = until
    return entry


def unsnooze(entry: DrillContextEntry) -> DrillContextEntry:
    """Return a snoozed entry to active. Pile limits are checked by the caller."""
    if entry.state != "snoozed":
        raise InvalidTransitionError(f"Card {entry.card_id} is {entry.state}, not snoozed")
    entry.state = "active"
    entry.state_until = None
    return entry


def dismiss(entry: DrillContextEntry) -> DrillContextEntry:
    """Dismiss an entry. Dismissing twice is a no-op."""
    entry.state = "dismissed"
    entry.state_until = None
    return entry


def add_to_context(
    entry: Optional[DrillContextEntry],
    card: Card,
    added_from: str,
    now: datetime,
) -> DrillContextEntry:
    """Explicitly add a card to drill context with the given provenance.

    This is the only way a dismissed entry becomes active again. The call
    itself is the explicit provenance: a dismissed entry is re-activated
    even when `added_from` equals the provenance it had before, so
    re-adding "manual" after a manual add works. Draws never reach here.
    """
    if not added_from or not added_from.strip():
        raise ValidationError("added_from is required to add a card to drill context")
    if entry is not None and entry.state == "active":
        return entry
    if entry is None:
        entry = DrillContextEntry(card.user_id, card.language_id, card.card_id)
    entry.state = "active"
    entry.added_from = added_from.strip()
    entry.added_at = now
    entry.state_until = None
    return entry


def mark_used(entry: DrillContextEntry, now: datetime) -> DrillContextEntry:
    if entry.state != "active":
        raise InvalidTransitionError(f"Card {entry.card_id} is {entry.state}; only active cards can be used")
    entry.usage_count += 1
    entry.last_used = now
    return entry
