from __future__ import annotations

from datetime import datetime, timezone
from typing import Sequence

from cardsched.drills import ContextItem
from cardsched.models import DrillContextEntry, InboxNote, ReviewState, StudyLanguage
from cardsched.queue import DueItem


def format_epoch(ts: int | None) -> str:
    if not ts:
        return "now"
    return datetime.fromtimestamp(ts, tz=timezone.utc).strftime("%Y-%m-%d %H:%M UTC")


def format_when(d: datetime | None) -> str:
    return d.astimezone(timezone.utc).strftime("%Y-%m-%d %H:%M UTC") if d else "-"


def format_review_state(s: ReviewState) -> str:
    return (
        f"{s.card_id}: next due {format_epoch(s.next_due)}, "
        f"interval {s.interval_days}d, ease {s.ease_factor:.2f}, "
        f"reviews {s.review_count}, lapses {s.lapses}"
    )


def format_due_list(items: Sequence[DueItem], total: int | None = None) -> str:
    """One line per due card; header shows how many are due overall."""
    if not items:
        return "Nothing due 🎉"
    total = len(items) if total is None else total
    lines = [f"Due: {len(items)} of {total}"]
    for it in items:
        meaning = f" - {it.meaning}" if it.meaning else ""
        lines.append(f"- {it.card_id}: {it.content}{meaning} (due {format_epoch(it.next_due)}, {it.interval_days}d)")
    return "\n".join(lines)


def format_entry(e: DrillContextEntry) -> str:
    parts = [f"{e.card_id}: {e.state}"]
    if e.state == "snoozed":
        parts.append(f"until {format_when(e.state_until)}")
    if e.added_from:
        parts.append(f"from {e.added_from}")
    parts.append(f"used {e.usage_count}x")
    return ", ".join(parts)


def format_context(items: Sequence[ContextItem]) -> str:
    if not items:
        return "Drill context is empty."
    lines = [f"Drill context: {len(items)} card(s)"]
    for it in items:
        meaning = f" - {it.meaning}" if it.meaning else ""
        lines.append(
            f"- {it.card_id}: {it.content}{meaning} [{it.added_from or 'manual'}] "
            f"used {it.usage_count}x, last {format_when(it.last_used)}"
        )
    return "\n".join(lines)


def format_stats(
    day: str,
    review: dict[str, int],
    drill: dict[str, int],
    entry: dict[str, int] | None = None,
) -> str:
    reviewed = review.get("cards_reviewed", 0)
    failed = review.get("cards_rated_again", 0)
    retention = ((reviewed - failed) / reviewed) if reviewed else 0.0
    text = (
        f"Stats for {day}\n"
        f"Reviews: {reviewed} (again {failed}, hard {review.get('cards_rated_hard', 0)}, "
        f"medium {review.get('cards_rated_medium', 0)}, easy {review.get('cards_rated_easy', 0)}), "
        f"retention {retention:.0%}\n"
        f"Drills: drawn {drill.get('cards_drawn', 0)}, snoozed {drill.get('cards_snoozed', 0)}, "
        f"dismissed {drill.get('cards_dismissed', 0)}, sentences {drill.get('sentences_translated', 0)}"
    )
    if entry:
        text += (
            f"\nInbox: captured {entry.get('notes_captured', 0)}, processed {entry.get('notes_processed', 0)}, "
            f"deferred {entry.get('notes_deferred', 0)}, deleted {entry.get('notes_deleted', 0)}; "
            f"drafts {entry.get('draft_cards_created', 0)}, promoted {entry.get('cards_promoted_to_active', 0)}, "
            f"groups {entry.get('groups_created', 0)}"
        )
    return text


def format_inbox(notes: Sequence[InboxNote]) -> str:
    if not notes:
        return "Inbox is empty."
    lines = [f"Inbox: {len(notes)} note(s)"]
    for n in notes:
        flag = " (deferred)" if n.state == "deferred" else ""
        lines.append(f"- {n.note_id}{flag}: {n.content} [{n.source_type}, {format_when(n.created_at)}]")
    return "\n".join(lines)


def format_languages(langs: Sequence[StudyLanguage]) -> str:
    if not langs:
        return "No study languages."
    return "\n".join(
        f"- {lang.language_id}: {lang.language_name} {lang.cefr_level}{'' if lang.is_active else ' (inactive)'}"
        for lang in langs
    )
