#!/usr/bin/env python3
"""Seed the SQLite database with cards from a CSV file.

CSV schema (header required):
card_id,content,meaning,examples,status,card_type,groups

`examples` and `groups` are JSON arrays of strings. Groups that do not
exist yet are created with their id as name.

Usage:
    python scripts/seed_cards.py data/seed_cards.csv --user u1 --language nl
"""
from __future__ import annotations

import argparse
import asyncio
import csv
import json
from pathlib import Path
from typing import Any, Iterable

from cardsched.db import add_card_to_group, create_card, create_group, get_group, init_db
from cardsched.errors import ConflictError
from cardsched.models import Card, Group
from cardsched.validators import validate_card_status, validate_card_type

REQUIRED_HEADER = [
    "card_id",
    "content",
    "meaning",
    "examples",
    "status",
    "card_type",
    "groups",
]


async def main() -> None:
    parser = argparse.ArgumentParser()
    parser.add_argument("csv_path", type=Path, help="Path to seed CSV file")
    parser.add_argument("--user", required=True)
    parser.add_argument("--language", required=True)
    args = parser.parse_args()

    await init_db()
    rows: list[dict[str, Any]] = list(parse_seed_csv(args.csv_path))
    created = skipped = 0
    for r in rows:
        try:
            await create_card(
                Card(
                    args.user,
                    args.language,
                    r["card_id"],
                    r["content"],
                    status=r["status"],
                    card_type=r["card_type"],
                    meaning=r["meaning"],
                    examples=r["examples"],
                )
            )
            created += 1
        except ConflictError:
            skipped += 1
            continue
        for gid in r["groups"]:
            if await get_group(args.user, args.language, gid) is None:
                await create_group(Group(args.user, args.language, gid, gid))
            await add_card_to_group(args.user, args.language, r["card_id"], gid)
    print(f"Imported {created} cards into the database ({skipped} already present).")


def parse_seed_csv(path: Path) -> Iterable[dict[str, Any]]:
    """Yield validated card dicts from the seed CSV.

    Validates header order, JSON arrays in `examples`/`groups`, status and
    card type. Duplicate card_ids in the file are ignored.
    """
    seen: set[str] = set()
    with path.open("r", encoding="utf-8", newline="") as f:
        reader = csv.DictReader(f)
        header = reader.fieldnames or []
        if header != REQUIRED_HEADER:
            raise SystemExit(f"Invalid header. Expected {REQUIRED_HEADER}, got {header}")
        for i, row in enumerate(reader, start=2):
            card_id = (row.get("card_id") or "").strip()
            content = (row.get("content") or "").strip()
            if not card_id or not content:
                raise SystemExit(f"Row {i}: empty card_id or content")
            try:
                ex = json.loads(row.get("examples") or "[]")
                if not (isinstance(ex, list) and all(isinstance(x, str) for x in ex)):
                    raise ValueError
            except ValueError:
                raise SystemExit(f"Row {i}: invalid examples JSON array: {row.get('examples')}")
            try:
                groups = json.loads(row.get("groups") or "[]")
                if not (isinstance(groups, list) and all(isinstance(x, str) and x.strip() for x in groups)):
                    raise ValueError
            except ValueError:
                raise SystemExit(f"Row {i}: invalid groups JSON array")
            status = (row.get("status") or "active").strip()
            ok, err = validate_card_status(status)
            if not ok:
                raise SystemExit(f"Row {i}: {err}")
            card_type = (row.get("card_type") or "word").strip()
            ok, err = validate_card_type(card_type)
            if not ok:
                raise SystemExit(f"Row {i}: {err}")
            if card_id in seen:
                continue
            seen.add(card_id)
            yield {
                "card_id": card_id,
                "content": content,
                "meaning": (row.get("meaning") or "").strip() or None,
                "examples": ex,
                "status": status,
                "card_type": card_type,
                "groups": [g.strip() for g in groups],
            }


if __name__ == "__main__":
    asyncio.run(main())
