from __future__ import annotations

import contextlib
import json
import logging
import sqlite3
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Iterable, Optional

import aiosqlite

from cardsched.config import DB_PATH, DEFAULT_PILE_SIZE_LIMIT, INITIAL_EASE, INITIAL_INTERVAL_DAYS
from cardsched.errors import ConflictError, InvalidTransitionError, NotFoundError, ValidationError
from cardsched.models import Card, DrawPile, DrillContextEntry, Group, InboxNote, ReviewState, StudyLanguage
from cardsched.validators import (
    NOTE_STATES,
    validate_card_status,
    validate_card_type,
    validate_cefr_level,
    validate_key,
    validate_note_transition,
    validate_pile_size_limit,
    validate_source_type,
    validate_status_transition,
)

logger = logging.getLogger(__name__)

CARD_UPDATABLE = ("content", "meaning", "examples", "mnemonics", "llm_instructions", "card_type")
STUDY_LANGUAGE_UPDATABLE = ("language_name", "is_active", "cefr_level", "settings")
GROUP_UPDATABLE = ("group_name", "description")
REVIEW_STAT_COLUMNS = (
    "cards_reviewed",
    "cards_rated_again",
    "cards_rated_hard",
    "cards_rated_medium",
    "cards_rated_easy",
)
DRILL_STAT_COLUMNS = (
    "cards_drawn",
    "cards_snoozed",
    "cards_dismissed",
    "sentences_translated",
)
CARD_ENTRY_STAT_COLUMNS = (
    "notes_captured",
    "notes_processed",
    "notes_deferred",
    "notes_deleted",
    "draft_cards_created",
    "cards_promoted_to_active",
    "groups_created",
)


@contextlib.asynccontextmanager
async def get_db() -> AsyncIterator[aiosqlite.Connection]:
    db = await aiosqlite.connect(DB_PATH.as_posix())
    db.row_factory = aiosqlite.Row
    try:
        yield db
    finally:
        await db.close()


@contextlib.asynccontextmanager
async def transaction() -> AsyncIterator[aiosqlite.Connection]:
    """Connection with a write lock held for one read-modify-write sequence."""
    async with get_db() as db:
        await db.execute("BEGIN IMMEDIATE")
        try:
            yield db
        except BaseException:
            await db.rollback()
            raise
        else:
            await db.commit()


async def init_db() -> None:
    async with get_db() as db:
        await db.executescript(
            """
            PRAGMA journal_mode=WAL;

            CREATE TABLE IF NOT EXISTS cards (
                user_id TEXT NOT NULL,
                language_id TEXT NOT NULL,
                card_id TEXT NOT NULL,
                content TEXT NOT NULL,
                status TEXT NOT NULL DEFAULT 'active'
                    CHECK(status IN ('draft','active','archived','deleted')),
                card_type TEXT NOT NULL DEFAULT 'word'
                    CHECK(card_type IN ('word','pattern','complex_prompt')),
                meaning TEXT,
                examples_json TEXT NOT NULL DEFAULT '[]',
                mnemonics_json TEXT NOT NULL DEFAULT '[]',
                llm_instructions TEXT,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL,
                PRIMARY KEY (user_id, language_id, card_id)
            );
            CREATE INDEX IF NOT EXISTS idx_cards_status_updated ON cards(user_id, language_id, status, updated_at);

            CREATE TABLE IF NOT EXISTS groups (
                user_id TEXT NOT NULL,
                language_id TEXT NOT NULL,
                group_id TEXT NOT NULL,
                group_name TEXT NOT NULL,
                description TEXT,
                created_at TEXT NOT NULL,
                PRIMARY KEY (user_id, language_id, group_id)
            );

            CREATE TABLE IF NOT EXISTS card_groups (
                user_id TEXT NOT NULL,
                language_id TEXT NOT NULL,
                card_id TEXT NOT NULL,
                group_id TEXT NOT NULL,
                assigned_at TEXT NOT NULL,
                PRIMARY KEY (user_id, language_id, card_id, group_id)
            );
            CREATE INDEX IF NOT EXISTS idx_card_groups_by_group ON card_groups(user_id, language_id, group_id);

            CREATE TABLE IF NOT EXISTS card_review_srs (
                user_id TEXT NOT NULL,
                language_id TEXT NOT NULL,
                card_id TEXT NOT NULL,
                next_due INTEGER NOT NULL DEFAULT 0,
                interval_days INTEGER NOT NULL DEFAULT 1,
                ease_factor REAL NOT NULL DEFAULT 2.5,
                review_count INTEGER NOT NULL DEFAULT 0,
                lapses INTEGER NOT NULL DEFAULT 0,
                last_reviewed INTEGER,
                PRIMARY KEY (user_id, language_id, card_id)
            );
            CREATE INDEX IF NOT EXISTS idx_card_review_srs_due ON card_review_srs(user_id, language_id, next_due);

            CREATE TABLE IF NOT EXISTS translation_drill_draw_piles (
                user_id TEXT NOT NULL,
                language_id TEXT NOT NULL,
                group_id TEXT NOT NULL,
                enabled INTEGER NOT NULL DEFAULT 1,
                draw_pile_name TEXT,
                pile_size_limit INTEGER NOT NULL DEFAULT 10,
                created_at TEXT NOT NULL,
                PRIMARY KEY (user_id, language_id, group_id)
            );

            CREATE TABLE IF NOT EXISTS translation_drill_context (
                user_id TEXT NOT NULL,
                language_id TEXT NOT NULL,
                card_id TEXT NOT NULL,
                state TEXT NOT NULL DEFAULT 'active'
                    CHECK(state IN ('active','snoozed','dismissed')),
                added_from TEXT,
                added_at TEXT,
                last_used TEXT,
                usage_count INTEGER NOT NULL DEFAULT 0,
                state_until TEXT,
                PRIMARY KEY (user_id, language_id, card_id)
            );
            CREATE INDEX IF NOT EXISTS idx_translation_context_state ON translation_drill_context(user_id, language_id, state);

            CREATE TABLE IF NOT EXISTS card_review_daily_stats (
                user_id TEXT NOT NULL,
                language_id TEXT NOT NULL,
                date TEXT NOT NULL,
                cards_reviewed INTEGER NOT NULL DEFAULT 0,
                cards_rated_again INTEGER NOT NULL DEFAULT 0,
                cards_rated_hard INTEGER NOT NULL DEFAULT 0,
                cards_rated_medium INTEGER NOT NULL DEFAULT 0,
                cards_rated_easy INTEGER NOT NULL DEFAULT 0,
                PRIMARY KEY (user_id, language_id, date)
            );

            CREATE TABLE IF NOT EXISTS translation_drill_daily_stats (
                user_id TEXT NOT NULL,
                language_id TEXT NOT NULL,
                date TEXT NOT NULL,
                cards_drawn INTEGER NOT NULL DEFAULT 0,
                cards_snoozed INTEGER NOT NULL DEFAULT 0,
                cards_dismissed INTEGER NOT NULL DEFAULT 0,
                sentences_translated INTEGER NOT NULL DEFAULT 0,
                PRIMARY KEY (user_id, language_id, date)
            );

            CREATE TABLE IF NOT EXISTS study_languages (
                user_id TEXT NOT NULL,
                language_id TEXT NOT NULL,
                language_name TEXT NOT NULL,
                is_active INTEGER NOT NULL DEFAULT 1,
                cefr_level TEXT NOT NULL DEFAULT 'A1'
                    CHECK(cefr_level IN ('A1','A2','B1','B2','C1','C2')),
                settings_json TEXT,
                created_at TEXT NOT NULL,
                PRIMARY KEY (user_id, language_id)
            );

            CREATE TABLE IF NOT EXISTS inbox_notes (
                user_id TEXT NOT NULL,
                language_id TEXT NOT NULL,
                note_id TEXT NOT NULL,
                content TEXT NOT NULL,
                state TEXT NOT NULL DEFAULT 'unprocessed'
                    CHECK(state IN ('unprocessed','deferred','deleted')),
                source_type TEXT NOT NULL DEFAULT 'manual',
                source_metadata_json TEXT,
                created_at TEXT NOT NULL,
                PRIMARY KEY (user_id, language_id, note_id)
            );
            CREATE INDEX IF NOT EXISTS idx_inbox_state ON inbox_notes(user_id, language_id, state, created_at);

            CREATE TABLE IF NOT EXISTS note_card_links (
                user_id TEXT NOT NULL,
                language_id TEXT NOT NULL,
                note_id TEXT NOT NULL,
                card_id TEXT NOT NULL,
                created_at TEXT NOT NULL,
                PRIMARY KEY (user_id, language_id, note_id, card_id)
            );
            CREATE INDEX IF NOT EXISTS idx_note_card_links_card ON note_card_links(user_id, language_id, card_id);

            CREATE TABLE IF NOT EXISTS card_entry_daily_stats (
                user_id TEXT NOT NULL,
                language_id TEXT NOT NULL,
                date TEXT NOT NULL,
                notes_captured INTEGER NOT NULL DEFAULT 0,
                notes_processed INTEGER NOT NULL DEFAULT 0,
                notes_deferred INTEGER NOT NULL DEFAULT 0,
                notes_deleted INTEGER NOT NULL DEFAULT 0,
                draft_cards_created INTEGER NOT NULL DEFAULT 0,
                cards_promoted_to_active INTEGER NOT NULL DEFAULT 0,
                groups_created INTEGER NOT NULL DEFAULT 0,
                PRIMARY KEY (user_id, language_id, date)
            );
            """
        )
        await db.commit()


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _ts(d: Optional[datetime]) -> Optional[str]:
    return d.isoformat() if d is not None else None


def parse_ts(s: Optional[str]) -> Optional[datetime]:
    if not s:
        return None
    d = datetime.fromisoformat(s)
    if d.tzinfo is None:
        d = d.replace(tzinfo=timezone.utc)
    return d


def _card_from_row(row: aiosqlite.Row) -> Card:
    return Card(
        user_id=row["user_id"],
        language_id=row["language_id"],
        card_id=row["card_id"],
        content=row["content"],
        status=row["status"],
        card_type=row["card_type"],
        meaning=row["meaning"],
        examples=json.loads(row["examples_json"] or "[]"),
        mnemonics=json.loads(row["mnemonics_json"] or "[]"),
        llm_instructions=row["llm_instructions"],
        created_at=parse_ts(row["created_at"]),
        updated_at=parse_ts(row["updated_at"]),
    )


def _group_from_row(row: aiosqlite.Row) -> Group:
    return Group(
        user_id=row["user_id"],
        language_id=row["language_id"],
        group_id=row["group_id"],
        group_name=row["group_name"],
        description=row["description"],
        created_at=parse_ts(row["created_at"]),
    )


def _review_from_row(row: aiosqlite.Row) -> ReviewState:
    return ReviewState(
        user_id=row["user_id"],
        language_id=row["language_id"],
        card_id=row["card_id"],
        next_due=int(row["next_due"]),
        interval_days=int(row["interval_days"]),
        ease_factor=float(row["ease_factor"]),
        review_count=int(row["review_count"]),
        lapses=int(row["lapses"]),
        last_reviewed=row["last_reviewed"],
    )


def _entry_from_row(row: aiosqlite.Row) -> DrillContextEntry:
    return DrillContextEntry(
        user_id=row["user_id"],
        language_id=row["language_id"],
        card_id=row["card_id"],
        state=row["state"],
        added_from=row["added_from"],
        added_at=parse_ts(row["added_at"]),
        usage_count=int(row["usage_count"]),
        last_used=parse_ts(row["last_used"]),
        state_until=parse_ts(row["state_until"]),
    )


def _pile_from_row(row: aiosqlite.Row) -> DrawPile:
    return DrawPile(
        user_id=row["user_id"],
        language_id=row["language_id"],
        group_id=row["group_id"],
        enabled=bool(row["enabled"]),
        draw_pile_name=row["draw_pile_name"],
        pile_size_limit=int(row["pile_size_limit"]),
        created_at=parse_ts(row["created_at"]),
    )


def _check(result: tuple[bool, str | None]) -> None:
    ok, err = result
    if not ok:
        raise ValidationError(err or "Invalid value")


# === Connection-level helpers (used inside transactions) ===


async def load_card(db: aiosqlite.Connection, user_id: str, language_id: str, card_id: str) -> Optional[Card]:
    cur = await db.execute(
        "SELECT * FROM cards WHERE user_id=? AND language_id=? AND card_id=?",
        (user_id, language_id, card_id),
    )
    row = await cur.fetchone()
    return _card_from_row(row) if row else None


async def load_group(db: aiosqlite.Connection, user_id: str, language_id: str, group_id: str) -> Optional[Group]:
    cur = await db.execute(
        "SELECT * FROM groups WHERE user_id=? AND language_id=? AND group_id=?",
        (user_id, language_id, group_id),
    )
    row = await cur.fetchone()
    return _group_from_row(row) if row else None


async def load_review_state(
    db: aiosqlite.Connection, user_id: str, language_id: str, card_id: str
) -> Optional[ReviewState]:
    cur = await db.execute(
        "SELECT * FROM card_review_srs WHERE user_id=? AND language_id=? AND card_id=?",
        (user_id, language_id, card_id),
    )
    row = await cur.fetchone()
    return _review_from_row(row) if row else None


async def store_review_state(db: aiosqlite.Connection, s: ReviewState) -> None:
    await db.execute(
        """
        INSERT INTO card_review_srs(user_id, language_id, card_id, next_due, interval_days, ease_factor, review_count, lapses, last_reviewed)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
        ON CONFLICT(user_id, language_id, card_id) DO UPDATE SET
            next_due=excluded.next_due,
            interval_days=excluded.interval_days,
            ease_factor=excluded.ease_factor,
            review_count=excluded.review_count,
            lapses=excluded.lapses,
            last_reviewed=excluded.last_reviewed
        """,
        (
            s.user_id,
            s.language_id,
            s.card_id,
            s.next_due,
            s.interval_days,
            s.ease_factor,
            s.review_count,
            s.lapses,
            s.last_reviewed,
        ),
    )


async def load_entry(
    db: aiosqlite.Connection, user_id: str, language_id: str, card_id: str
) -> Optional[DrillContextEntry]:
    cur = await db.execute(
        "SELECT * FROM translation_drill_context WHERE user_id=? AND language_id=? AND card_id=?",
        (user_id, language_id, card_id),
    )
    row = await cur.fetchone()
    return _entry_from_row(row) if row else None


async def load_group_entries(
    db: aiosqlite.Connection, user_id: str, language_id: str, group_id: str
) -> dict[str, DrillContextEntry]:
    """Context entries of every card in a group, keyed by card_id."""
    cur = await db.execute(
        """
        SELECT tc.* FROM translation_drill_context tc
        JOIN card_groups cg ON cg.user_id=tc.user_id AND cg.language_id=tc.language_id AND cg.card_id=tc.card_id
        WHERE cg.user_id=? AND cg.language_id=? AND cg.group_id=?
        """,
        (user_id, language_id, group_id),
    )
    return {row["card_id"]: _entry_from_row(row) for row in await cur.fetchall()}


async def store_entry(db: aiosqlite.Connection, e: DrillContextEntry) -> None:
    await db.execute(
        """
        INSERT INTO translation_drill_context(user_id, language_id, card_id, state, added_from, added_at, last_used, usage_count, state_until)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
        ON CONFLICT(user_id, language_id, card_id) DO UPDATE SET
            state=excluded.state,
            added_from=excluded.added_from,
            added_at=excluded.added_at,
            last_used=excluded.last_used,
            usage_count=excluded.usage_count,
            state_until=excluded.state_until
        """,
        (
            e.user_id,
            e.language_id,
            e.card_id,
            e.state,
            e.added_from,
            _ts(e.added_at),
            _ts(e.last_used),
            e.usage_count,
            _ts(e.state_until),
        ),
    )


async def load_draw_pile(
    db: aiosqlite.Connection, user_id: str, language_id: str, group_id: str
) -> Optional[DrawPile]:
    cur = await db.execute(
        "SELECT * FROM translation_drill_draw_piles WHERE user_id=? AND language_id=? AND group_id=?",
        (user_id, language_id, group_id),
    )
    row = await cur.fetchone()
    return _pile_from_row(row) if row else None


async def load_cards_in_group(
    db: aiosqlite.Connection, user_id: str, language_id: str, group_id: str
) -> list[Card]:
    cur = await db.execute(
        """
        SELECT c.* FROM cards c
        JOIN card_groups cg ON cg.user_id=c.user_id AND cg.language_id=c.language_id AND cg.card_id=c.card_id
        WHERE cg.user_id=? AND cg.language_id=? AND cg.group_id=? AND c.status='active'
        ORDER BY c.updated_at DESC
        """,
        (user_id, language_id, group_id),
    )
    return [_card_from_row(r) for r in await cur.fetchall()]


async def load_card_group_ids(db: aiosqlite.Connection, user_id: str, language_id: str, card_id: str) -> list[str]:
    cur = await db.execute(
        "SELECT group_id FROM card_groups WHERE user_id=? AND language_id=? AND card_id=? ORDER BY group_id",
        (user_id, language_id, card_id),
    )
    return [str(r[0]) for r in await cur.fetchall()]


async def _bump(
    db: aiosqlite.Connection,
    table: str,
    allowed: Iterable[str],
    user_id: str,
    language_id: str,
    day: str,
    deltas: dict[str, int],
) -> None:
    deltas = {k: v for k, v in deltas.items() if v}
    if not deltas:
        return
    unknown = set(deltas) - set(allowed)
    if unknown:
        raise ValueError(f"Unknown stat columns: {sorted(unknown)}")
    cols = list(deltas.keys())
    updates = ", ".join(f"{c}={c}+excluded.{c}" for c in cols)
    await db.execute(
        f"INSERT INTO {table}(user_id, language_id, date, {', '.join(cols)}) "
        f"VALUES (?, ?, ?, {', '.join('?' for _ in cols)}) "
        f"ON CONFLICT(user_id, language_id, date) DO UPDATE SET {updates}",
        (user_id, language_id, day, *deltas.values()),
    )


async def bump_review_stats(
    db: aiosqlite.Connection, user_id: str, language_id: str, day: str, **deltas: int
) -> None:
    await _bump(db, "card_review_daily_stats", REVIEW_STAT_COLUMNS, user_id, language_id, day, deltas)


async def bump_drill_stats(
    db: aiosqlite.Connection, user_id: str, language_id: str, day: str, **deltas: int
) -> None:
    await _bump(db, "translation_drill_daily_stats", DRILL_STAT_COLUMNS, user_id, language_id, day, deltas)


async def bump_card_entry_stats(
    db: aiosqlite.Connection, user_id: str, language_id: str, day: str, **deltas: int
) -> None:
    await _bump(db, "card_entry_daily_stats", CARD_ENTRY_STAT_COLUMNS, user_id, language_id, day, deltas)


def _json_list(items: list[str]) -> str:
    return json.dumps(items, ensure_ascii=False, separators=(",", ":"))


# === Cards ===


def _validate_new_card(card: Card) -> None:
    _check(validate_key(card.card_id, "card_id"))
    _check(validate_card_status(card.status))
    _check(validate_card_type(card.card_type))
    if not card.content.strip():
        raise ValidationError("Card content must not be empty.")


async def insert_card(db: aiosqlite.Connection, card: Card, now: datetime) -> Card:
    """Insert a validated card inside an open transaction.

    Active cards get their review row straight away; drafts are counted in
    the day's card entry stats.
    """
    card.created_at = now
    card.updated_at = now
    try:
        await db.execute(
            """
            INSERT INTO cards(user_id, language_id, card_id, content, status, card_type, meaning,
                              examples_json, mnemonics_json, llm_instructions, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                card.user_id,
                card.language_id,
                card.card_id,
                card.content,
                card.status,
                card.card_type,
                card.meaning,
                _json_list(card.examples),
                _json_list(card.mnemonics),
                card.llm_instructions,
                _ts(now),
                _ts(now),
            ),
        )
    except sqlite3.IntegrityError as exc:
        raise ConflictError(f"Card {card.card_id} already exists") from exc
    if card.status == "active":
        await _ensure_review_row(db, card.user_id, card.language_id, card.card_id)
    elif card.status == "draft":
        await bump_card_entry_stats(db, card.user_id, card.language_id, now.date().isoformat(), draft_cards_created=1)
    return card


async def create_card(card: Card, now: datetime | None = None) -> Card:
    _validate_new_card(card)
    now = now or utcnow()
    async with transaction() as db:
        await insert_card(db, card, now)
    logger.info(f"Created card {card.user_id}/{card.language_id}/{card.card_id} ({card.status})")
    return card


async def get_card(user_id: str, language_id: str, card_id: str) -> Optional[Card]:
    async with get_db() as db:
        return await load_card(db, user_id, language_id, card_id)


async def get_cards_by_status(user_id: str, language_id: str, status: str) -> list[Card]:
    _check(validate_card_status(status))
    async with get_db() as db:
        cur = await db.execute(
            "SELECT * FROM cards WHERE user_id=? AND language_id=? AND status=? ORDER BY updated_at DESC",
            (user_id, language_id, status),
        )
        return [_card_from_row(r) for r in await cur.fetchall()]


async def get_active_cards(user_id: str, language_id: str) -> list[Card]:
    return await get_cards_by_status(user_id, language_id, "active")


async def update_card(
    user_id: str, language_id: str, card_id: str, now: datetime | None = None, **updates: Any
) -> Card:
    unknown = set(updates) - set(CARD_UPDATABLE)
    if unknown:
        raise ValidationError(f"Cannot update card fields: {', '.join(sorted(unknown))}")
    if "card_type" in updates:
        _check(validate_card_type(updates["card_type"]))
    for key in ("examples", "mnemonics"):
        if key in updates:
            updates[f"{key}_json"] = _json_list(updates.pop(key))
    now = now or utcnow()
    updates["updated_at"] = _ts(now)
    cols = ", ".join(f"{k}=?" for k in updates.keys())
    async with transaction() as db:
        cur = await db.execute(
            f"UPDATE cards SET {cols} WHERE user_id=? AND language_id=? AND card_id=?",
            (*updates.values(), user_id, language_id, card_id),
        )
        if cur.rowcount == 0:
            raise NotFoundError(f"Card {card_id} not found")
        card = await load_card(db, user_id, language_id, card_id)
    if card is None:
        raise NotFoundError(f"Card {card_id} not found")
    return card


async def update_card_status(
    user_id: str, language_id: str, card_id: str, status: str, now: datetime | None = None
) -> Card:
    """Move a card through its lifecycle (draft -> active -> archived/deleted)."""
    now = now or utcnow()
    async with transaction() as db:
        card = await load_card(db, user_id, language_id, card_id)
        if card is None:
            raise NotFoundError(f"Card {card_id} not found")
        ok, err = validate_status_transition(card.status, status)
        if not ok:
            if validate_card_status(status)[0]:
                raise InvalidTransitionError(err)
            raise ValidationError(err)
        await db.execute(
            "UPDATE cards SET status=?, updated_at=? WHERE user_id=? AND language_id=? AND card_id=?",
            (status, _ts(now), user_id, language_id, card_id),
        )
        if status == "active":
            await _ensure_review_row(db, user_id, language_id, card_id)
            if card.status == "draft":
                await bump_card_entry_stats(
                    db, user_id, language_id, now.date().isoformat(), cards_promoted_to_active=1
                )
    logger.info(f"Card {card_id} status {card.status} -> {status}")
    card.status = status  # type: ignore[assignment]
    card.updated_at = now
    return card


async def _ensure_review_row(db: aiosqlite.Connection, user_id: str, language_id: str, card_id: str) -> None:
    await db.execute(
        "INSERT OR IGNORE INTO card_review_srs(user_id, language_id, card_id, next_due, interval_days, ease_factor) "
        "VALUES (?, ?, ?, 0, ?, ?)",
        (user_id, language_id, card_id, INITIAL_INTERVAL_DAYS, INITIAL_EASE),
    )


# === Groups ===


async def create_group(group: Group, now: datetime | None = None) -> Group:
    _check(validate_key(group.group_id, "group_id"))
    _check(validate_key(group.group_name, "group_name"))
    group.created_at = now or utcnow()
    async with transaction() as db:
        try:
            await db.execute(
                "INSERT INTO groups(user_id, language_id, group_id, group_name, description, created_at) VALUES (?, ?, ?, ?, ?, ?)",
                (
                    group.user_id,
                    group.language_id,
                    group.group_id,
                    group.group_name,
                    group.description,
                    _ts(group.created_at),
                ),
            )
        except sqlite3.IntegrityError as exc:
            raise ConflictError(f"Group {group.group_id} already exists") from exc
        await bump_card_entry_stats(db, group.user_id, group.language_id, group.created_at.date().isoformat(), groups_created=1)
    logger.info(f"Created group {group.user_id}/{group.language_id}/{group.group_id}")
    return group


async def get_group(user_id: str, language_id: str, group_id: str) -> Optional[Group]:
    async with get_db() as db:
        return await load_group(db, user_id, language_id, group_id)


async def get_groups(user_id: str, language_id: str) -> list[Group]:
    async with get_db() as db:
        cur = await db.execute(
            "SELECT * FROM groups WHERE user_id=? AND language_id=? ORDER BY group_name",
            (user_id, language_id),
        )
        return [_group_from_row(r) for r in await cur.fetchall()]


async def update_group(user_id: str, language_id: str, group_id: str, **updates: Any) -> Group:
    unknown = set(updates) - set(GROUP_UPDATABLE)
    if unknown or not updates:
        raise ValidationError(f"Cannot update group fields: {', '.join(sorted(unknown)) or '(none)'}")
    cols = ", ".join(f"{k}=?" for k in updates.keys())
    async with transaction() as db:
        cur = await db.execute(
            f"UPDATE groups SET {cols} WHERE user_id=? AND language_id=? AND group_id=?",
            (*updates.values(), user_id, language_id, group_id),
        )
        if cur.rowcount == 0:
            raise NotFoundError(f"Group {group_id} not found")
        group = await load_group(db, user_id, language_id, group_id)
    if group is None:
        raise NotFoundError(f"Group {group_id} not found")
    return group


async def add_card_to_group(
    user_id: str, language_id: str, card_id: str, group_id: str, now: datetime | None = None
) -> None:
    async with transaction() as db:
        if await load_card(db, user_id, language_id, card_id) is None:
            raise NotFoundError(f"Card {card_id} not found")
        if await load_group(db, user_id, language_id, group_id) is None:
            raise NotFoundError(f"Group {group_id} not found")
        try:
            await db.execute(
                "INSERT INTO card_groups(user_id, language_id, card_id, group_id, assigned_at) VALUES (?, ?, ?, ?, ?)",
                (user_id, language_id, card_id, group_id, _ts(now or utcnow())),
            )
        except sqlite3.IntegrityError as exc:
            raise ConflictError(f"Card {card_id} is already in group {group_id}") from exc


async def remove_card_from_group(user_id: str, language_id: str, card_id: str, group_id: str) -> None:
    async with transaction() as db:
        await db.execute(
            "DELETE FROM card_groups WHERE user_id=? AND language_id=? AND card_id=? AND group_id=?",
            (user_id, language_id, card_id, group_id),
        )


async def get_cards_in_group(user_id: str, language_id: str, group_id: str) -> list[Card]:
    """Active cards of a group, most recently updated first."""
    async with get_db() as db:
        return await load_cards_in_group(db, user_id, language_id, group_id)


async def get_card_groups(user_id: str, language_id: str, card_id: str) -> list[Group]:
    async with get_db() as db:
        cur = await db.execute(
            """
            SELECT g.* FROM groups g
            JOIN card_groups cg ON cg.user_id=g.user_id AND cg.language_id=g.language_id AND cg.group_id=g.group_id
            WHERE cg.user_id=? AND cg.language_id=? AND cg.card_id=?
            ORDER BY g.group_name
            """,
            (user_id, language_id, card_id),
        )
        return [_group_from_row(r) for r in await cur.fetchall()]


# === Draw piles ===


async def get_draw_pile(user_id: str, language_id: str, group_id: str) -> DrawPile:
    """Stored pile settings for a group, or the defaults if none are stored."""
    async with get_db() as db:
        if await load_group(db, user_id, language_id, group_id) is None:
            raise NotFoundError(f"Group {group_id} not found")
        pile = await load_draw_pile(db, user_id, language_id, group_id)
    return pile or DrawPile(user_id, language_id, group_id, pile_size_limit=DEFAULT_PILE_SIZE_LIMIT)


async def configure_draw_pile(
    user_id: str,
    language_id: str,
    group_id: str,
    enabled: bool | None = None,
    pile_size_limit: int | str | None = None,
    draw_pile_name: str | None = None,
    now: datetime | None = None,
) -> DrawPile:
    if pile_size_limit is not None:
        _check(validate_pile_size_limit(pile_size_limit))
    async with transaction() as db:
        if await load_group(db, user_id, language_id, group_id) is None:
            raise NotFoundError(f"Group {group_id} not found")
        pile = await load_draw_pile(db, user_id, language_id, group_id)
        if pile is None:
            pile = DrawPile(
                user_id,
                language_id,
                group_id,
                pile_size_limit=DEFAULT_PILE_SIZE_LIMIT,
                created_at=now or utcnow(),
            )
        if enabled is not None:
            pile.enabled = enabled
        if pile_size_limit is not None:
            pile.pile_size_limit = int(pile_size_limit)
        if draw_pile_name is not None:
            pile.draw_pile_name = draw_pile_name
        await db.execute(
            """
            INSERT INTO translation_drill_draw_piles(user_id, language_id, group_id, enabled, draw_pile_name, pile_size_limit, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(user_id, language_id, group_id) DO UPDATE SET
                enabled=excluded.enabled,
                draw_pile_name=excluded.draw_pile_name,
                pile_size_limit=excluded.pile_size_limit
            """,
            (
                user_id,
                language_id,
                group_id,
                1 if pile.enabled else 0,
                pile.draw_pile_name,
                pile.pile_size_limit,
                _ts(pile.created_at),
            ),
        )
    logger.info(
        f"Draw pile {group_id}: enabled={pile.enabled} limit={pile.pile_size_limit}"
    )
    return pile


async def get_enabled_draw_piles(user_id: str, language_id: str) -> list[DrawPile]:
    async with get_db() as db:
        cur = await db.execute(
            "SELECT * FROM translation_drill_draw_piles WHERE user_id=? AND language_id=? AND enabled=1 ORDER BY group_id",
            (user_id, language_id),
        )
        return [_pile_from_row(r) for r in await cur.fetchall()]


# === Daily stats ===


async def get_review_stats(user_id: str, language_id: str, day: str) -> dict[str, int]:
    async with get_db() as db:
        cur = await db.execute(
            f"SELECT {', '.join(REVIEW_STAT_COLUMNS)} FROM card_review_daily_stats WHERE user_id=? AND language_id=? AND date=?",
            (user_id, language_id, day),
        )
        row = await cur.fetchone()
    return {c: int(row[c]) if row else 0 for c in REVIEW_STAT_COLUMNS}


async def get_drill_stats(user_id: str, language_id: str, day: str) -> dict[str, int]:
    async with get_db() as db:
        cur = await db.execute(
            f"SELECT {', '.join(DRILL_STAT_COLUMNS)} FROM translation_drill_daily_stats WHERE user_id=? AND language_id=? AND date=?",
            (user_id, language_id, day),
        )
        row = await cur.fetchone()
    return {c: int(row[c]) if row else 0 for c in DRILL_STAT_COLUMNS}


async def get_card_entry_stats(user_id: str, language_id: str, day: str) -> dict[str, int]:
    async with get_db() as db:
        cur = await db.execute(
            f"SELECT {', '.join(CARD_ENTRY_STAT_COLUMNS)} FROM card_entry_daily_stats WHERE user_id=? AND language_id=? AND date=?",
            (user_id, language_id, day),
        )
        row = await cur.fetchone()
    return {c: int(row[c]) if row else 0 for c in CARD_ENTRY_STAT_COLUMNS}


# === Study languages ===


def _language_from_row(row: aiosqlite.Row) -> StudyLanguage:
    return StudyLanguage(
        user_id=row["user_id"],
        language_id=row["language_id"],
        language_name=row["language_name"],
        is_active=bool(row["is_active"]),
        cefr_level=row["cefr_level"],
        settings=json.loads(row["settings_json"]) if row["settings_json"] else None,
        created_at=parse_ts(row["created_at"]),
    )


async def add_study_language(lang: StudyLanguage, now: datetime | None = None) -> StudyLanguage:
    _check(validate_key(lang.language_id, "language_id"))
    _check(validate_key(lang.language_name, "language_name"))
    _check(validate_cefr_level(lang.cefr_level))
    lang.created_at = now or utcnow()
    async with transaction() as db:
        try:
            await db.execute(
                """
                INSERT INTO study_languages(user_id, language_id, language_name, is_active, cefr_level, settings_json, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    lang.user_id,
                    lang.language_id,
                    lang.language_name,
                    1 if lang.is_active else 0,
                    lang.cefr_level,
                    json.dumps(lang.settings) if lang.settings is not None else None,
                    _ts(lang.created_at),
                ),
            )
        except sqlite3.IntegrityError as exc:
            raise ConflictError(f"Language {lang.language_id} is already studied by {lang.user_id}") from exc
    logger.info(f"User {lang.user_id} studies {lang.language_id} ({lang.cefr_level})")
    return lang


async def get_user_languages(user_id: str, active_only: bool = False) -> list[StudyLanguage]:
    sql = "SELECT * FROM study_languages WHERE user_id=?"
    if active_only:
        sql += " AND is_active=1"
    async with get_db() as db:
        cur = await db.execute(sql + " ORDER BY created_at, language_id", (user_id,))
        return [_language_from_row(r) for r in await cur.fetchall()]


async def update_study_language(user_id: str, language_id: str, **updates: Any) -> StudyLanguage:
    unknown = set(updates) - set(STUDY_LANGUAGE_UPDATABLE)
    if unknown or not updates:
        raise ValidationError(f"Cannot update language fields: {', '.join(sorted(unknown)) or '(none)'}")
    if "cefr_level" in updates:
        _check(validate_cefr_level(updates["cefr_level"]))
    if "is_active" in updates:
        updates["is_active"] = 1 if updates["is_active"] else 0
    if "settings" in updates:
        settings = updates.pop("settings")
        updates["settings_json"] = json.dumps(settings) if settings is not None else None
    cols = ", ".join(f"{k}=?" for k in updates.keys())
    async with transaction() as db:
        cur = await db.execute(
            f"UPDATE study_languages SET {cols} WHERE user_id=? AND language_id=?",
            (*updates.values(), user_id, language_id),
        )
        if cur.rowcount == 0:
            raise NotFoundError(f"Language {language_id} not found for {user_id}")
        cur = await db.execute(
            "SELECT * FROM study_languages WHERE user_id=? AND language_id=?", (user_id, language_id)
        )
        row = await cur.fetchone()
    if row is None:
        raise NotFoundError(f"Language {language_id} not found for {user_id}")
    return _language_from_row(row)


# === Inbox notes ===


def _note_from_row(row: aiosqlite.Row) -> InboxNote:
    return InboxNote(
        user_id=row["user_id"],
        language_id=row["language_id"],
        note_id=row["note_id"],
        content=row["content"],
        state=row["state"],
        source_type=row["source_type"],
        source_metadata=json.loads(row["source_metadata_json"]) if row["source_metadata_json"] else None,
        created_at=parse_ts(row["created_at"]),
    )


async def load_note(db: aiosqlite.Connection, user_id: str, language_id: str, note_id: str) -> Optional[InboxNote]:
    cur = await db.execute(
        "SELECT * FROM inbox_notes WHERE user_id=? AND language_id=? AND note_id=?",
        (user_id, language_id, note_id),
    )
    row = await cur.fetchone()
    return _note_from_row(row) if row else None


async def _require_note(db: aiosqlite.Connection, user_id: str, language_id: str, note_id: str) -> InboxNote:
    note = await load_note(db, user_id, language_id, note_id)
    if note is None:
        raise NotFoundError(f"Note {note_id} not found")
    return note


async def capture_note(note: InboxNote, now: datetime | None = None) -> InboxNote:
    """Put raw text into the inbox as an unprocessed note."""
    _check(validate_key(note.note_id, "note_id"))
    _check(validate_source_type(note.source_type))
    if not note.content.strip():
        raise ValidationError("Note content must not be empty.")
    note.state = "unprocessed"
    note.created_at = now or utcnow()
    async with transaction() as db:
        try:
            await db.execute(
                """
                INSERT INTO inbox_notes(user_id, language_id, note_id, content, state, source_type, source_metadata_json, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    note.user_id,
                    note.language_id,
                    note.note_id,
                    note.content,
                    note.state,
                    note.source_type,
                    json.dumps(note.source_metadata) if note.source_metadata is not None else None,
                    _ts(note.created_at),
                ),
            )
        except sqlite3.IntegrityError as exc:
            raise ConflictError(f"Note {note.note_id} already exists") from exc
        await bump_card_entry_stats(db, note.user_id, note.language_id, note.created_at.date().isoformat(), notes_captured=1)
    logger.info(f"Captured note {note.note_id} from {note.source_type}")
    return note


async def get_note(user_id: str, language_id: str, note_id: str) -> Optional[InboxNote]:
    async with get_db() as db:
        return await load_note(db, user_id, language_id, note_id)


async def get_inbox(user_id: str, language_id: str, include_deferred: bool = True) -> list[InboxNote]:
    """Notes still waiting for processing, oldest first."""
    states = ("unprocessed", "deferred") if include_deferred else ("unprocessed",)
    async with get_db() as db:
        cur = await db.execute(
            f"SELECT * FROM inbox_notes WHERE user_id=? AND language_id=? AND state IN ({', '.join('?' for _ in states)}) "
            "ORDER BY created_at, note_id",
            (user_id, language_id, *states),
        )
        return [_note_from_row(r) for r in await cur.fetchall()]


async def set_note_state(
    user_id: str, language_id: str, note_id: str, state: str, now: datetime | None = None
) -> InboxNote:
    """Defer, restore or delete a note."""
    now = now or utcnow()
    async with transaction() as db:
        note = await _require_note(db, user_id, language_id, note_id)
        ok, err = validate_note_transition(note.state, state)
        if not ok:
            if state in NOTE_STATES:
                raise InvalidTransitionError(err)
            raise ValidationError(err)
        await db.execute(
            "UPDATE inbox_notes SET state=? WHERE user_id=? AND language_id=? AND note_id=?",
            (state, user_id, language_id, note_id),
        )
        if state in ("deferred", "deleted"):
            await bump_card_entry_stats(db, user_id, language_id, now.date().isoformat(), **{f"notes_{state}": 1})
    logger.info(f"Note {note_id} {note.state} -> {state}")
    note.state = state  # type: ignore[assignment]
    return note


async def _link(db: aiosqlite.Connection, user_id: str, language_id: str, note_id: str, card_id: str, now: datetime) -> None:
    try:
        await db.execute(
            "INSERT INTO note_card_links(user_id, language_id, note_id, card_id, created_at) VALUES (?, ?, ?, ?, ?)",
            (user_id, language_id, note_id, card_id, _ts(now)),
        )
    except sqlite3.IntegrityError as exc:
        raise ConflictError(f"Note {note_id} is already linked to card {card_id}") from exc


async def process_note(
    user_id: str, language_id: str, note_id: str, cards: list[Card], now: datetime | None = None
) -> list[Card]:
    """Turn an inbox note into cards.

    New cards are stored as drafts unless given another status, linked to
    the note, and the note leaves the inbox (state deleted, counted as
    processed). All of it happens in one transaction.
    """
    if not cards:
        raise ValidationError("Processing a note needs at least one card.")
    for card in cards:
        if (card.user_id, card.language_id) != (user_id, language_id):
            raise ValidationError(f"Card {card.card_id} belongs to another user or language")
        _validate_new_card(card)
    now = now or utcnow()
    async with transaction() as db:
        note = await _require_note(db, user_id, language_id, note_id)
        if note.state == "deleted":
            raise InvalidTransitionError(f"Note {note_id} is already out of the inbox")
        for card in cards:
            await insert_card(db, card, now)
            await _link(db, user_id, language_id, note_id, card.card_id, now)
        await db.execute(
            "UPDATE inbox_notes SET state='deleted' WHERE user_id=? AND language_id=? AND note_id=?",
            (user_id, language_id, note_id),
        )
        await bump_card_entry_stats(db, user_id, language_id, now.date().isoformat(), notes_processed=1)
    logger.info(f"Processed note {note_id} into {len(cards)} card(s)")
    return cards


async def link_note_to_card(
    user_id: str, language_id: str, note_id: str, card_id: str, now: datetime | None = None
) -> None:
    async with transaction() as db:
        await _require_note(db, user_id, language_id, note_id)
        if await load_card(db, user_id, language_id, card_id) is None:
            raise NotFoundError(f"Card {card_id} not found")
        await _link(db, user_id, language_id, note_id, card_id, now or utcnow())


async def get_note_cards(user_id: str, language_id: str, note_id: str) -> list[Card]:
    async with get_db() as db:
        cur = await db.execute(
            """
            SELECT c.* FROM cards c
            JOIN note_card_links l ON l.user_id=c.user_id AND l.language_id=c.language_id AND l.card_id=c.card_id
            WHERE l.user_id=? AND l.language_id=? AND l.note_id=?
            ORDER BY c.card_id
            """,
            (user_id, language_id, note_id),
        )
        return [_card_from_row(r) for r in await cur.fetchall()]


async def get_card_notes(user_id: str, language_id: str, card_id: str) -> list[InboxNote]:
    async with get_db() as db:
        cur = await db.execute(
            """
            SELECT n.* FROM inbox_notes n
            JOIN note_card_links l ON l.user_id=n.user_id AND l.language_id=n.language_id AND l.note_id=n.note_id
            WHERE l.user_id=? AND l.language_id=? AND l.card_id=?
            ORDER BY n.created_at, n.note_id
            """,
            (user_id, language_id, card_id),
        )
        return [_note_from_row(r) for r in await cur.fetchall()]
