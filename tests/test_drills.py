from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from cardsched import db, drills
from cardsched.errors import InvalidTransitionError, NotFoundError
from cardsched.models import Card, Group

NOW = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)


async def make_group(n: int, limit: int, group_id: str = "g1") -> None:
    await db.create_group(Group("u1", "nl", group_id, group_id.upper()))
    for i in range(1, n + 1):
        card_id = f"{group_id}c{i}"
        await db.create_card(Card("u1", "nl", card_id, f"word {i}"))
        await db.add_card_to_group("u1", "nl", card_id, group_id)
    await db.configure_draw_pile("u1", "nl", group_id, pile_size_limit=limit)


async def active_ids() -> list[str]:
    return [it.card_id for it in await drills.active_context("u1", "nl")]


@pytest.mark.asyncio
async def test_draw_never_exceeds_limit(store):
    await make_group(5, limit=2)
    drawn = await drills.draw_from_pile("u1", "nl", "g1", now=NOW)
    assert [e.card_id for e in drawn] == ["g1c1", "g1c2"]
    assert await drills.draw_from_pile("u1", "nl", "g1", now=NOW) == []
    assert await active_ids() == ["g1c1", "g1c2"]

    stats = await db.get_drill_stats("u1", "nl", NOW.date().isoformat())
    assert stats["cards_drawn"] == 2


@pytest.mark.asyncio
async def test_dismissed_card_leaves_context_for_good(store):
    await make_group(4, limit=2)
    await drills.draw_from_pile("u1", "nl", "g1", now=NOW)
    await drills.dismiss_card("u1", "nl", "g1c1", now=NOW)
    assert await active_ids() == ["g1c2"]

    drawn = await drills.draw_from_pile("u1", "nl", "g1", now=NOW)
    assert [e.card_id for e in drawn] == ["g1c3"]
    assert "g1c1" not in await active_ids()

    entry = await drills.add_card("u1", "nl", "g1c1", added_from="manual", now=NOW)
    assert entry.state == "active" and entry.added_from == "manual"
    assert "g1c1" in await active_ids()


@pytest.mark.asyncio
async def test_snooze_expiry_makes_card_drawable(store):
    await make_group(1, limit=1)
    await drills.draw_from_pile("u1", "nl", "g1", now=NOW)
    await drills.snooze_card("u1", "nl", "g1c1", until=NOW + timedelta(hours=1), now=NOW)
    assert await active_ids() == []

    assert await drills.draw_from_pile("u1", "nl", "g1", now=NOW + timedelta(minutes=30)) == []
    drawn = await drills.draw_from_pile("u1", "nl", "g1", now=NOW + timedelta(hours=2))
    assert [e.card_id for e in drawn] == ["g1c1"]
    assert await active_ids() == ["g1c1"]


@pytest.mark.asyncio
async def test_snooze_default_length_and_unsnooze(store):
    await make_group(1, limit=1)
    await drills.draw_from_pile("u1", "nl", "g1", now=NOW)
    entry = await drills.snooze_card("u1", "nl", "g1c1", now=NOW)
    assert entry.state == "snoozed"
    assert entry.state_until is not None and entry.state_until > NOW

    stored = await drills.get_entry("u1", "nl", "g1c1")
    assert stored is not None and stored.state_until == entry.state_until

    await drills.unsnooze_card("u1", "nl", "g1c1")
    assert await active_ids() == ["g1c1"]


@pytest.mark.asyncio
async def test_unsnooze_refused_when_pile_refilled(store):
    await make_group(2, limit=1)
    await drills.draw_from_pile("u1", "nl", "g1", now=NOW)
    await drills.snooze_card("u1", "nl", "g1c1", now=NOW)
    drawn = await drills.draw_from_pile("u1", "nl", "g1", now=NOW)
    assert [e.card_id for e in drawn] == ["g1c2"]

    with pytest.raises(InvalidTransitionError):
        await drills.unsnooze_card("u1", "nl", "g1c1")
    assert await active_ids() == ["g1c2"]
    stored = await drills.get_entry("u1", "nl", "g1c1")
    assert stored is not None and stored.state == "snoozed"

    await drills.dismiss_card("u1", "nl", "g1c2", now=NOW)
    await drills.unsnooze_card("u1", "nl", "g1c1")
    assert await active_ids() == ["g1c1"]


@pytest.mark.asyncio
async def test_use_card_rotates_context(store):
    await make_group(2, limit=2)
    await drills.draw_from_pile("u1", "nl", "g1", now=NOW)
    entry = await drills.use_card("u1", "nl", "g1c1", now=NOW)
    assert entry.usage_count == 1 and entry.last_used == NOW
    # least recently used first
    assert await active_ids() == ["g1c2", "g1c1"]

    await drills.dismiss_card("u1", "nl", "g1c2", now=NOW)
    with pytest.raises(InvalidTransitionError):
        await drills.use_card("u1", "nl", "g1c2", now=NOW)
    stats = await db.get_drill_stats("u1", "nl", NOW.date().isoformat())
    assert stats["sentences_translated"] == 1
    assert stats["cards_dismissed"] == 1


@pytest.mark.asyncio
async def test_disabled_pile_and_draw_all(store):
    await make_group(3, limit=2, group_id="g1")
    await make_group(3, limit=1, group_id="g2")
    await db.configure_draw_pile("u1", "nl", "g1", enabled=False)
    drawn = await drills.draw_all("u1", "nl", now=NOW)
    assert [e.card_id for e in drawn] == ["g2c1"]


@pytest.mark.asyncio
async def test_archived_card_hidden_from_context(store):
    await make_group(2, limit=2)
    await drills.draw_from_pile("u1", "nl", "g1", now=NOW)
    await db.update_card_status("u1", "nl", "g1c1", "archived")
    assert await active_ids() == ["g1c2"]


@pytest.mark.asyncio
async def test_missing_group_or_entry(store):
    with pytest.raises(NotFoundError):
        await drills.draw_from_pile("u1", "nl", "nope", now=NOW)
    await db.create_card(Card("u1", "nl", "c1", "huis"))
    with pytest.raises(NotFoundError):
        await drills.snooze_card("u1", "nl", "c1", now=NOW)
    with pytest.raises(NotFoundError):
        await drills.add_card("u1", "nl", "c9", now=NOW)
