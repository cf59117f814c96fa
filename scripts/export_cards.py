#!/usr/bin/env python3
"""Export a user's cards for one language from SQLite to CSV.

The output uses the same header as scripts/seed_cards.py.

Usage:
    python scripts/export_cards.py data/export_cards.csv --user u1 --language nl
"""
from __future__ import annotations

import argparse
import asyncio
import csv
import json
from pathlib import Path

from cardsched.db import get_db, init_db

HEADER = [
    "card_id",
    "content",
    "meaning",
    "examples",
    "status",
    "card_type",
    "groups",
]


async def export_rows(user_id: str, language_id: str) -> list[tuple[str, ...]]:
    async with get_db() as db:
        cur = await db.execute(
            """
            SELECT c.card_id, c.content, c.meaning, c.examples_json, c.status, c.card_type,
                   GROUP_CONCAT(cg.group_id, char(31))
            FROM cards c
            LEFT JOIN card_groups cg ON cg.user_id=c.user_id AND cg.language_id=c.language_id AND cg.card_id=c.card_id
            WHERE c.user_id=? AND c.language_id=?
            GROUP BY c.card_id
            ORDER BY c.card_id
            """,
            (user_id, language_id),
        )
        rows = await cur.fetchall()
    out = []
    for card_id, content, meaning, examples_json, status, card_type, groups in rows:
        group_ids = sorted(g for g in (groups or "").split("\x1f") if g)
        out.append(
            (
                card_id,
                content,
                meaning or "",
                json.dumps(json.loads(examples_json or "[]"), ensure_ascii=False, separators=(",", ":")),
                status,
                card_type,
                json.dumps(group_ids, ensure_ascii=False, separators=(",", ":")),
            )
        )
    return out


async def main() -> None:
    parser = argparse.ArgumentParser()
    parser.add_argument("csv_path", type=Path, help="Output CSV path")
    parser.add_argument("--user", required=True)
    parser.add_argument("--language", required=True)
    args = parser.parse_args()

    await init_db()
    rows_out = await export_rows(args.user, args.language)
    with args.csv_path.open("w", encoding="utf-8", newline="") as f:
        writer = csv.writer(f, quoting=csv.QUOTE_MINIMAL)
        writer.writerow(HEADER)
        writer.writerows(rows_out)
    print(f"Exported {len(rows_out)} cards to {args.csv_path}")


if __name__ == "__main__":
    asyncio.run(main())
