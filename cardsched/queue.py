from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Sequence

from cardsched.config import REVIEW_LIMIT_PER_DAY
from cardsched.db import get_db


@dataclass(frozen=True)
class DueItem:
    card_id: str
    content: str
    meaning: Optional[str]
    next_due: int
    interval_days: int


def build_review_queue(due: Sequence[DueItem], limit: int = REVIEW_LIMIT_PER_DAY) -> list[DueItem]:
    """Return today's review queue: most overdue first, capped at `limit`.

    Cards beyond the cap stay due; they are not rescheduled.
    """
    ordered = sorted(due, key=lambda it: (it.next_due, it.card_id))
    return ordered[: max(0, limit)]


async def due_cards(
    user_id: str,
    language_id: str,
    now: int,
    limit: Optional[int] = None,
) -> list[DueItem]:
    """Active cards whose next review is at or before `now`, oldest due first."""
    sql = """
        SELECT c.card_id, c.content, c.meaning, s.next_due, s.interval_days
        FROM cards c
        JOIN card_review_srs s ON s.user_id=c.user_id AND s.language_id=c.language_id AND s.card_id=c.card_id
        WHERE c.user_id=? AND c.language_id=? AND c.status='active' AND s.next_due<=?
        ORDER BY s.next_due ASC, c.card_id ASC
    """
    params: tuple = (user_id, language_id, now)
    if limit is not None:
        sql += " LIMIT ?"
        params = params + (max(0, limit),)
    async with get_db() as db:
        cur = await db.execute(sql, params)
        rows = await cur.fetchall()
    return [
        DueItem(
            card_id=str(r[0]),
            content=str(r[1]),
            meaning=r[2],
            next_due=int(r[3]),
            interval_days=int(r[4]),
        )
        for r in rows
    ]


async def count_due(user_id: str, language_id: str, now: int) -> int:
    async with get_db() as db:
        cur = await db.execute(
            """
            SELECT COUNT(*) FROM cards c
            JOIN card_review_srs s ON s.user_id=c.user_id AND s.language_id=c.language_id AND s.card_id=c.card_id
            WHERE c.user_id=? AND c.language_id=? AND c.status='active' AND s.next_due<=?
            """,
            (user_id, language_id, now),
        )
        row = await cur.fetchone()
    return int(row[0] or 0)
