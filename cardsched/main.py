from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from contextlib import suppress
from datetime import datetime, timedelta, timezone
from typing import Sequence

from cardsched import db, drills, review
from cardsched.config import DEFAULT_LANGUAGE_ID, DEFAULT_USER_ID, LOG_LEVEL, MANUAL_PROVENANCE, REVIEW_LIMIT_PER_DAY
from cardsched.errors import CardschedError, ValidationError
from cardsched.formatters import (
    format_context,
    format_due_list,
    format_entry,
    format_inbox,
    format_languages,
    format_review_state,
    format_stats,
)
from cardsched.models import Card, Group, InboxNote, StudyLanguage
from cardsched.queue import build_review_queue, count_due, due_cards
from cardsched.srs import QUALITIES
from cardsched.validators import CARD_STATUSES, CARD_TYPES, CEFR_LEVELS, SOURCE_TYPES, validate_int_in_range

logger = logging.getLogger(__name__)

NOTE_COMMANDS = {"defer": "deferred", "restore": "unprocessed", "drop-note": "deleted"}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="cardsched", description="Spaced-repetition reviews and translation drills")
    parser.add_argument("--user", default=DEFAULT_USER_ID, help="User id (env CARDSCHED_USER)")
    parser.add_argument("--language", default=DEFAULT_LANGUAGE_ID, help="Language id (env CARDSCHED_LANGUAGE)")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("init-db", help="Create tables")

    p = sub.add_parser("add-card", help="Create a card")
    p.add_argument("card_id")
    p.add_argument("content")
    p.add_argument("--meaning")
    p.add_argument("--example", action="append", default=[], dest="examples")
    p.add_argument("--status", choices=CARD_STATUSES, default="active")
    p.add_argument("--type", choices=CARD_TYPES, default="word", dest="card_type")
    p.add_argument("--mnemonic", action="append", default=[], dest="mnemonics")
    p.add_argument("--instructions", dest="llm_instructions", help="Extra instructions for sentence generation")

    p = sub.add_parser("add-group", help="Create a group")
    p.add_argument("group_id")
    p.add_argument("group_name")
    p.add_argument("--description")

    p = sub.add_parser("assign", help="Add a card to a group")
    p.add_argument("card_id")
    p.add_argument("group_id")

    p = sub.add_parser("set-status", help="Move a card through its lifecycle")
    p.add_argument("card_id")
    p.add_argument("status", choices=CARD_STATUSES)

    p = sub.add_parser("due", help="List cards due for review")
    p.add_argument("--limit", type=int, default=REVIEW_LIMIT_PER_DAY)

    p = sub.add_parser("grade", help="Grade a card review")
    p.add_argument("card_id")
    p.add_argument("quality", choices=QUALITIES)

    p = sub.add_parser("pile", help="Show or configure a group's draw pile")
    p.add_argument("group_id")
    p.add_argument("--limit", dest="pile_size_limit")
    p.add_argument("--name", dest="draw_pile_name")
    toggle = p.add_mutually_exclusive_group()
    toggle.add_argument("--enable", action="store_const", const=True, dest="enabled")
    toggle.add_argument("--disable", action="store_const", const=False, dest="enabled")

    p = sub.add_parser("draw", help="Draw cards into drill context")
    p.add_argument("group_id", nargs="?", help="Group to draw from; all enabled piles if omitted")

    sub.add_parser("context", help="List active drill context")

    p = sub.add_parser("snooze", help="Snooze a drill card")
    p.add_argument("card_id")
    p.add_argument("--hours", help="Snooze length in hours")

    p = sub.add_parser("unsnooze", help="Return a snoozed card to active context")
    p.add_argument("card_id")

    p = sub.add_parser("dismiss", help="Dismiss a drill card")
    p.add_argument("card_id")

    p = sub.add_parser("readd", help="Add a card to drill context explicitly")
    p.add_argument("card_id")
    p.add_argument("--from", dest="added_from", default=MANUAL_PROVENANCE)

    p = sub.add_parser("use", help="Record a card used in a translated sentence")
    p.add_argument("card_id")

    p = sub.add_parser("capture", help="Capture a note into the inbox")
    p.add_argument("note_id")
    p.add_argument("content")
    p.add_argument("--source", choices=SOURCE_TYPES, default="manual", dest="source_type")

    sub.add_parser("inbox", help="List notes waiting to be processed")

    for name, help_text in (
        ("defer", "Defer an inbox note"),
        ("restore", "Move a deferred note back to unprocessed"),
        ("drop-note", "Delete an inbox note"),
    ):
        p = sub.add_parser(name, help=help_text)
        p.add_argument("note_id")

    p = sub.add_parser("process", help="Turn an inbox note into a card")
    p.add_argument("note_id")
    p.add_argument("card_id")
    p.add_argument("content")
    p.add_argument("--meaning")
    p.add_argument("--status", choices=CARD_STATUSES, default="draft")
    p.add_argument("--type", choices=CARD_TYPES, default="word", dest="card_type")

    sub.add_parser("languages", help="List the user's study languages")

    p = sub.add_parser("add-language", help="Start studying --language")
    p.add_argument("language_name")
    p.add_argument("--level", choices=CEFR_LEVELS, default="A1", dest="cefr_level")

    p = sub.add_parser("stats", help="Show daily stats")
    p.add_argument("--date", help="YYYY-MM-DD, defaults to today (UTC)")
    return parser


def _require_scope(args: argparse.Namespace) -> None:
    if not args.user or not args.language:
        raise ValidationError("--user and --language are required (or set CARDSCHED_USER / CARDSCHED_LANGUAGE)")


async def run(args: argparse.Namespace) -> str:
    await db.init_db()
    if args.command == "init-db":
        return f"Database ready at {db.DB_PATH}"
    _require_scope(args)
    u, lang = args.user, args.language

    if args.command == "add-card":
        card = await db.create_card(
            Card(u, lang, args.card_id, args.content, status=args.status, card_type=args.card_type,
                 meaning=args.meaning, examples=args.examples, mnemonics=args.mnemonics,
                 llm_instructions=args.llm_instructions)
        )
        return f"Created card {card.card_id} ({card.status})"
    if args.command == "add-group":
        group = await db.create_group(Group(u, lang, args.group_id, args.group_name, args.description))
        return f"Created group {group.group_id}"
    if args.command == "assign":
        await db.add_card_to_group(u, lang, args.card_id, args.group_id)
        return f"Added {args.card_id} to {args.group_id}"
    if args.command == "set-status":
        card = await db.update_card_status(u, lang, args.card_id, args.status)
        return f"{card.card_id} is now {card.status}"
    if args.command == "due":
        now = review.epoch_now()
        items = build_review_queue(await due_cards(u, lang, now), limit=args.limit)
        return format_due_list(items, total=await count_due(u, lang, now))
    if args.command == "grade":
        return format_review_state(await review.grade_card(u, lang, args.card_id, args.quality))
    if args.command == "pile":
        if args.pile_size_limit is None and args.enabled is None and args.draw_pile_name is None:
            pile = await db.get_draw_pile(u, lang, args.group_id)
        else:
            pile = await db.configure_draw_pile(
                u, lang, args.group_id,
                enabled=args.enabled,
                pile_size_limit=args.pile_size_limit,
                draw_pile_name=args.draw_pile_name,
            )
        state = "enabled" if pile.enabled else "disabled"
        return f"Pile {pile.group_id} ({pile.draw_pile_name or '-'}): {state}, limit {pile.pile_size_limit}"
    if args.command == "draw":
        if args.group_id:
            drawn = await drills.draw_from_pile(u, lang, args.group_id)
        else:
            drawn = await drills.draw_all(u, lang)
        if not drawn:
            return "Nothing drawn."
        return "\n".join([f"Drew {len(drawn)} card(s):"] + [f"- {format_entry(e)}" for e in drawn])
    if args.command == "context":
        return format_context(await drills.active_context(u, lang))
    if args.command == "snooze":
        until = None
        if args.hours is not None:
            ok, err = validate_int_in_range(args.hours, 1, 24 * 365)
            if not ok:
                raise ValidationError(err)
            until = datetime.now(timezone.utc) + timedelta(hours=int(args.hours))
        return format_entry(await drills.snooze_card(u, lang, args.card_id, until=until))
    if args.command == "unsnooze":
        return format_entry(await drills.unsnooze_card(u, lang, args.card_id))
    if args.command == "dismiss":
        return format_entry(await drills.dismiss_card(u, lang, args.card_id))
    if args.command == "readd":
        return format_entry(await drills.add_card(u, lang, args.card_id, added_from=args.added_from))
    if args.command == "use":
        return format_entry(await drills.use_card(u, lang, args.card_id))
    if args.command == "capture":
        note = await db.capture_note(InboxNote(u, lang, args.note_id, args.content, source_type=args.source_type))
        return f"Captured note {note.note_id}"
    if args.command == "inbox":
        return format_inbox(await db.get_inbox(u, lang))
    if args.command in NOTE_COMMANDS:
        note = await db.set_note_state(u, lang, args.note_id, NOTE_COMMANDS[args.command])
        return f"Note {note.note_id} is now {note.state}"
    if args.command == "process":
        cards = await db.process_note(
            u, lang, args.note_id,
            [Card(u, lang, args.card_id, args.content, status=args.status, card_type=args.card_type, meaning=args.meaning)],
        )
        return f"Note {args.note_id} processed into {', '.join(c.card_id for c in cards)}"
    if args.command == "languages":
        return format_languages(await db.get_user_languages(u))
    if args.command == "add-language":
        added = await db.add_study_language(StudyLanguage(u, lang, args.language_name, cefr_level=args.cefr_level))
        return f"Studying {added.language_name} ({added.language_id}, {added.cefr_level})"
    if args.command == "stats":
        day = args.date or datetime.now(timezone.utc).date().isoformat()
        return format_stats(
            day,
            await db.get_review_stats(u, lang, day),
            await db.get_drill_stats(u, lang, day),
            await db.get_card_entry_stats(u, lang, day),
        )
    raise ValidationError(f"Unknown command {args.command}")


def main(argv: Sequence[str] | None = None) -> int:
    logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    args = build_parser().parse_args(argv)
    try:
        print(asyncio.run(run(args)))
    except CardschedError as exc:
        logger.debug("Command failed", exc_info=exc)
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    with suppress(KeyboardInterrupt):
        sys.exit(main())
