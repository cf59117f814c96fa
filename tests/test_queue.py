from __future__ import annotations

import pytest

from cardsched import db
from cardsched.models import Card
from cardsched.queue import DueItem, build_review_queue, due_cards


def item(card_id: str, next_due: int) -> DueItem:
    return DueItem(card_id, card_id.upper(), None, next_due, 1)


def test_build_review_queue_most_overdue_first():
    due = [item("b", 300), item("a", 100), item("c", 200)]
    assert [it.card_id for it in build_review_queue(due, limit=10)] == ["a", "c", "b"]


def test_build_review_queue_caps_without_dropping_order():
    due = [item(f"c{i}", 1000 - i) for i in range(10)]
    out = build_review_queue(due, limit=3)
    assert [it.card_id for it in out] == ["c9", "c8", "c7"]
    assert build_review_queue(due, limit=0) == []


@pytest.mark.asyncio
async def test_due_cards_limit(store):
    for i in range(5):
        await db.create_card(Card("u1", "nl", f"c{i}", f"w{i}"))
    await db.create_card(Card("u2", "nl", "x", "other user"))
    rows = await due_cards("u1", "nl", 10, limit=2)
    assert [r.card_id for r in rows] == ["c0", "c1"]
    assert len(await due_cards("u1", "nl", 10)) == 5
