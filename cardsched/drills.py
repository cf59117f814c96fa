"""
Translation-drill context against the store.

The drill context is the working set of cards presented for translation
practice. Cards enter it from a group's draw pile or by an explicit add,
and leave it by snoozing (time-boxed) or dismissing.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from cardsched import rotation
from cardsched.config import DEFAULT_PILE_SIZE_LIMIT, DEFAULT_SNOOZE_HOURS, MANUAL_PROVENANCE
from cardsched.db import (
    bump_drill_stats,
    get_db,
    get_enabled_draw_piles,
    load_card,
    load_card_group_ids,
    load_cards_in_group,
    load_draw_pile,
    load_entry,
    load_group,
    load_group_entries,
    parse_ts,
    store_entry,
    transaction,
    utcnow,
)
from cardsched.errors import InvalidTransitionError, NotFoundError
from cardsched.models import DrawPile, DrillContextEntry

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ContextItem:
    card_id: str
    content: str
    meaning: Optional[str]
    added_from: Optional[str]
    added_at: Optional[datetime]
    usage_count: int
    last_used: Optional[datetime]


async def draw_from_pile(
    user_id: str,
    language_id: str,
    group_id: str,
    now: datetime | None = None,
) -> list[DrillContextEntry]:
    """Fill the drill context from a group's draw pile.

    Returns the entries drawn by this call. A disabled or full pile draws
    nothing; expired snoozes of the group are eligible again.
    """
    now = now or utcnow()
    async with transaction() as db:
        if await load_group(db, user_id, language_id, group_id) is None:
            raise NotFoundError(f"Group {group_id} not found")
        pile = await _load_pile(db, user_id, language_id, group_id)
        cards = await load_cards_in_group(db, user_id, language_id, group_id)
        entries = await load_group_entries(db, user_id, language_id, group_id)
        drawn = rotation.draw(pile, cards, entries, now)
        for e in drawn:
            await store_entry(db, e)
        if drawn:
            await bump_drill_stats(db, user_id, language_id, now.date().isoformat(), cards_drawn=len(drawn))
    logger.info(f"Drew {len(drawn)} card(s) from pile {group_id} (limit {pile.pile_size_limit})")
    return drawn


async def draw_all(user_id: str, language_id: str, now: datetime | None = None) -> list[DrillContextEntry]:
    """Draw from every enabled pile of a user and language."""
    now = now or utcnow()
    drawn: list[DrillContextEntry] = []
    for pile in await get_enabled_draw_piles(user_id, language_id):
        drawn.extend(await draw_from_pile(user_id, language_id, pile.group_id, now))
    return drawn


async def _require_entry(db, user_id: str, language_id: str, card_id: str) -> DrillContextEntry:
    entry = await load_entry(db, user_id, language_id, card_id)
    if entry is None:
        raise NotFoundError(f"Card {card_id} is not in drill context")
    return entry


async def snooze_card(
    user_id: str,
    language_id: str,
    card_id: str,
    until: datetime | None = None,
    now: datetime | None = None,
) -> DrillContextEntry:
    now = now or utcnow()
    until = until or now + timedelta(hours=DEFAULT_SNOOZE_HOURS)
    async with transaction() as db:
        entry = rotation.snooze(await _require_entry(db, user_id, language_id, card_id), until, now)
        await store_entry(db, entry)
        await bump_drill_stats(db, user_id, language_id, now.date().isoformat(), cards_snoozed=1)
    logger.info(f"Snoozed {card_id} until {until.isoformat()}")
    return entry


async def _load_pile(db, user_id: str, language_id: str, group_id: str) -> DrawPile:
    pile = await load_draw_pile(db, user_id, language_id, group_id)
    if pile is None:
        pile = DrawPile(user_id, language_id, group_id, pile_size_limit=DEFAULT_PILE_SIZE_LIMIT)
    return pile


async def unsnooze_card(user_id: str, language_id: str, card_id: str) -> DrillContextEntry:
    """Return a snoozed card to active context.

    Fails with InvalidTransitionError when any group of the card already has
    `pile_size_limit` active cards, since the slot may have been refilled
    while the card was snoozed.
    """
    async with transaction() as db:
        entry = await _require_entry(db, user_id, language_id, card_id)
        if entry.state == "snoozed":
            for group_id in await load_card_group_ids(db, user_id, language_id, card_id):
                pile = await _load_pile(db, user_id, language_id, group_id)
                cards = await load_cards_in_group(db, user_id, language_id, group_id)
                entries = await load_group_entries(db, user_id, language_id, group_id)
                if not rotation.has_room(pile, cards, entries):
                    raise InvalidTransitionError(
                        f"Draw pile {group_id} is full ({pile.pile_size_limit} active); cannot unsnooze {card_id}"
                    )
        entry = rotation.unsnooze(entry)
        await store_entry(db, entry)
    logger.info(f"Unsnoozed {card_id}")
    return entry


async def dismiss_card(
    user_id: str, language_id: str, card_id: str, now: datetime | None = None
) -> DrillContextEntry:
    now = now or utcnow()
    async with transaction() as db:
        entry = await _require_entry(db, user_id, language_id, card_id)
        was = entry.state
        entry = rotation.dismiss(entry)
        await store_entry(db, entry)
        if was != "dismissed":
            await bump_drill_stats(db, user_id, language_id, now.date().isoformat(), cards_dismissed=1)
    logger.info(f"Dismissed {card_id} (was {was})")
    return entry


async def add_card(
    user_id: str,
    language_id: str,
    card_id: str,
    added_from: str = MANUAL_PROVENANCE,
    now: datetime | None = None,
) -> DrillContextEntry:
    """Put a card into active drill context with explicit provenance."""
    now = now or utcnow()
    async with transaction() as db:
        card = await load_card(db, user_id, language_id, card_id)
        if card is None:
            raise NotFoundError(f"Card {card_id} not found for {user_id}/{language_id}")
        existing = await load_entry(db, user_id, language_id, card_id)
        entry = rotation.add_to_context(existing, card, added_from, now)
        await store_entry(db, entry)
    logger.info(f"Added {card_id} to drill context from {entry.added_from}")
    return entry


async def use_card(
    user_id: str, language_id: str, card_id: str, now: datetime | None = None
) -> DrillContextEntry:
    """Record that a context card was used in a translated sentence."""
    now = now or utcnow()
    async with transaction() as db:
        entry = rotation.mark_used(await _require_entry(db, user_id, language_id, card_id), now)
        await store_entry(db, entry)
        await bump_drill_stats(db, user_id, language_id, now.date().isoformat(), sentences_translated=1)
    return entry


async def get_entry(user_id: str, language_id: str, card_id: str) -> Optional[DrillContextEntry]:
    async with get_db() as db:
        return await load_entry(db, user_id, language_id, card_id)


async def active_context(user_id: str, language_id: str) -> list[ContextItem]:
    """Cards currently in active drill context, least recently used first."""
    async with get_db() as db:
        cur = await db.execute(
            """
            SELECT c.card_id, c.content, c.meaning, tc.added_from, tc.added_at, tc.usage_count, tc.last_used
            FROM cards c
            JOIN translation_drill_context tc ON tc.user_id=c.user_id AND tc.language_id=c.language_id AND tc.card_id=c.card_id
            WHERE c.user_id=? AND c.language_id=? AND c.status='active' AND tc.state='active'
            ORDER BY tc.last_used IS NOT NULL, tc.last_used ASC, c.card_id ASC
            """,
            (user_id, language_id),
        )
        rows = await cur.fetchall()
    return [
        ContextItem(
            card_id=str(r[0]),
            content=str(r[1]),
            meaning=r[2],
            added_from=r[3],
            added_at=parse_ts(r[4]),
            usage_count=int(r[5]),
            last_used=parse_ts(r[6]),
        )
        for r in rows
    ]
