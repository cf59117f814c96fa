from __future__ import annotations

import pytest

from cardsched import db
from cardsched.errors import ConflictError, InvalidTransitionError, NotFoundError, ValidationError
from cardsched.models import Card, Group


@pytest.mark.asyncio
async def test_create_and_get_card(store):
    await db.create_card(Card("u1", "nl", "c1", "huis", meaning="house", examples=["het huis is groot"]))
    card = await db.get_card("u1", "nl", "c1")
    assert card is not None
    assert card.content == "huis"
    assert card.examples == ["het huis is groot"]
    assert card.status == "active"
    assert await db.get_card("u1", "de", "c1") is None


@pytest.mark.asyncio
async def test_duplicate_card_conflicts(store):
    await db.create_card(Card("u1", "nl", "c1", "huis"))
    with pytest.raises(ConflictError):
        await db.create_card(Card("u1", "nl", "c1", "boom"))


@pytest.mark.asyncio
async def test_create_card_validates(store):
    with pytest.raises(ValidationError):
        await db.create_card(Card("u1", "nl", "c1", "   "))
    with pytest.raises(ValidationError):
        await db.create_card(Card("u1", "nl", "c1", "huis", card_type="sentence"))  # type: ignore[arg-type]


@pytest.mark.asyncio
async def test_update_card_fields(store):
    await db.create_card(Card("u1", "nl", "c1", "huis"))
    card = await db.update_card("u1", "nl", "c1", meaning="house", examples=["een huis"])
    assert card.meaning == "house"
    assert card.examples == ["een huis"]
    with pytest.raises(ValidationError):
        await db.update_card("u1", "nl", "c1", status="deleted")
    with pytest.raises(NotFoundError):
        await db.update_card("u1", "nl", "missing", meaning="x")


@pytest.mark.asyncio
async def test_card_lifecycle(store):
    await db.create_card(Card("u1", "nl", "c1", "huis", status="draft"))
    assert [c.card_id for c in await db.get_cards_by_status("u1", "nl", "draft")] == ["c1"]

    card = await db.update_card_status("u1", "nl", "c1", "active")
    assert card.status == "active"
    assert [c.card_id for c in await db.get_active_cards("u1", "nl")] == ["c1"]

    await db.update_card_status("u1", "nl", "c1", "archived")
    await db.update_card_status("u1", "nl", "c1", "deleted")
    with pytest.raises(InvalidTransitionError):
        await db.update_card_status("u1", "nl", "c1", "active")
    with pytest.raises(ValidationError):
        await db.update_card_status("u1", "nl", "c1", "frozen")
    with pytest.raises(NotFoundError):
        await db.update_card_status("u1", "nl", "nope", "active")


@pytest.mark.asyncio
async def test_draft_cannot_be_archived(store):
    await db.create_card(Card("u1", "nl", "c1", "huis", status="draft"))
    with pytest.raises(InvalidTransitionError):
        await db.update_card_status("u1", "nl", "c1", "archived")
    card = await db.get_card("u1", "nl", "c1")
    assert card is not None and card.status == "draft"


@pytest.mark.asyncio
async def test_groups_and_membership(store):
    await db.create_group(Group("u1", "nl", "g2", "Kitchen"))
    await db.create_group(Group("u1", "nl", "g1", "Animals"))
    with pytest.raises(ConflictError):
        await db.create_group(Group("u1", "nl", "g1", "Other"))
    assert [g.group_name for g in await db.get_groups("u1", "nl")] == ["Animals", "Kitchen"]

    await db.create_card(Card("u1", "nl", "c1", "kat"))
    await db.create_card(Card("u1", "nl", "c2", "hond", status="draft"))
    await db.add_card_to_group("u1", "nl", "c1", "g1")
    await db.add_card_to_group("u1", "nl", "c2", "g1")
    await db.add_card_to_group("u1", "nl", "c1", "g2")
    with pytest.raises(ConflictError):
        await db.add_card_to_group("u1", "nl", "c1", "g1")
    with pytest.raises(NotFoundError):
        await db.add_card_to_group("u1", "nl", "c9", "g1")

    # drafts are not part of a group's card list
    assert [c.card_id for c in await db.get_cards_in_group("u1", "nl", "g1")] == ["c1"]
    assert [g.group_id for g in await db.get_card_groups("u1", "nl", "c1")] == ["g1", "g2"]

    await db.remove_card_from_group("u1", "nl", "c1", "g2")
    assert [g.group_id for g in await db.get_card_groups("u1", "nl", "c1")] == ["g1"]

    group = await db.update_group("u1", "nl", "g1", description="Dieren")
    assert group.description == "Dieren"
    with pytest.raises(NotFoundError):
        await db.update_group("u1", "nl", "gx", description="x")


@pytest.mark.asyncio
async def test_draw_pile_settings(store):
    await db.create_group(Group("u1", "nl", "g1", "Animals"))
    pile = await db.get_draw_pile("u1", "nl", "g1")
    assert pile.enabled and pile.pile_size_limit == 10

    pile = await db.configure_draw_pile("u1", "nl", "g1", pile_size_limit="4", draw_pile_name="zoo")
    assert pile.pile_size_limit == 4
    pile = await db.configure_draw_pile("u1", "nl", "g1", enabled=False)
    assert not pile.enabled and pile.pile_size_limit == 4 and pile.draw_pile_name == "zoo"
    assert await db.get_enabled_draw_piles("u1", "nl") == []

    with pytest.raises(ValidationError):
        await db.configure_draw_pile("u1", "nl", "g1", pile_size_limit=0)
    with pytest.raises(NotFoundError):
        await db.get_draw_pile("u1", "nl", "missing")


@pytest.mark.asyncio
async def test_card_mnemonics_and_instructions(store):
    await db.create_card(
        Card("u1", "nl", "c1", "huis", mnemonics=["sounds like 'house'"], llm_instructions="Use in the past tense")
    )
    card = await db.get_card("u1", "nl", "c1")
    assert card is not None
    assert card.mnemonics == ["sounds like 'house'"]
    assert card.llm_instructions == "Use in the past tense"

    card = await db.update_card("u1", "nl", "c1", mnemonics=[], llm_instructions=None)
    assert card.mnemonics == [] and card.llm_instructions is None
