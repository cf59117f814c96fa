"""
Review scheduling against the store.

Each grading is one read-modify-write transaction: load the card and its
review state, apply the grade, write the state back and count the rating
in the day's review stats.
"""
from __future__ import annotations

import logging
import time
from datetime import datetime, timezone
from typing import Optional

from cardsched.db import (
    bump_review_stats,
    get_db,
    load_card,
    load_review_state,
    store_review_state,
    transaction,
)
from cardsched.errors import NotFoundError
from cardsched.models import ReviewState
from cardsched.srs import grade

logger = logging.getLogger(__name__)


def epoch_now() -> int:
    return int(time.time())


def stats_day(now: int) -> str:
    return datetime.fromtimestamp(now, tz=timezone.utc).date().isoformat()


async def grade_card(
    user_id: str,
    language_id: str,
    card_id: str,
    quality: str,
    now: Optional[int] = None,
) -> ReviewState:
    """Grade a card and persist its next review state.

    Raises NotFoundError for an unknown card. Callers that replay grading
    events must deduplicate them; every call advances the schedule.
    """
    now = epoch_now() if now is None else now
    async with transaction() as db:
        card = await load_card(db, user_id, language_id, card_id)
        if card is None:
            raise NotFoundError(f"Card {card_id} not found for {user_id}/{language_id}")
        state = await load_review_state(db, user_id, language_id, card_id)
        if state is None:
            state = ReviewState(user_id, language_id, card_id)
        result = grade(state, quality, now)
        await store_review_state(db, result.state)
        await bump_review_stats(
            db,
            user_id,
            language_id,
            stats_day(now),
            cards_reviewed=1,
            **{f"cards_rated_{quality}": 1},
        )
    logger.info(
        f"Graded {card_id} as {quality}: interval={result.state.interval_days}d "
        f"ease={result.state.ease_factor:.2f} reviews={result.state.review_count}"
    )
    if result.lapsed:
        logger.debug(f"Card {card_id} lapsed ({result.state.lapses} total)")
    return result.state


async def get_review_state(user_id: str, language_id: str, card_id: str) -> ReviewState:
    async with get_db() as db:
        if await load_card(db, user_id, language_id, card_id) is None:
            raise NotFoundError(f"Card {card_id} not found for {user_id}/{language_id}")
        state = await load_review_state(db, user_id, language_id, card_id)
    return state or ReviewState(user_id, language_id, card_id)


async def ensure_review_state(user_id: str, language_id: str, card_id: str) -> ReviewState:
    """Create the default review row for a card if it has none."""
    async with transaction() as db:
        if await load_card(db, user_id, language_id, card_id) is None:
            raise NotFoundError(f"Card {card_id} not found for {user_id}/{language_id}")
        state = await load_review_state(db, user_id, language_id, card_id)
        if state is None:
            state = ReviewState(user_id, language_id, card_id)
            await store_review_state(db, state)
    return state
