from __future__ import annotations

from dataclasses import dataclass

from cardsched.config import (
    EASE_DELTAS,
    EASY_BONUS,
    HARD_MULTIPLIER,
    INITIAL_INTERVAL_DAYS,
    MAX_INTERVAL_DAYS,
    MIN_EASE,
    SECONDS_PER_DAY,
)
from cardsched.errors import ValidationError
from cardsched.models import Quality, ReviewState

QUALITIES: tuple[str, ...] = ("again", "hard", "medium", "easy")


def next_due_for_interval(interval_days: int, now: int) -> int:
    """Return the epoch second at which a card with this interval is due."""
    return now + interval_days * SECONDS_PER_DAY


def adjust_ease(ease: float, quality: Quality) -> float:
    return max(MIN_EASE, round(ease + EASE_DELTAS[quality], 2))


def next_interval(interval_days: int, ease: float, quality: Quality) -> int:
    """Interval growth for a card that has been graded before.

    again resets to the initial interval, hard grows by a fixed multiplier,
    medium by the ease factor and easy by the ease factor plus a bonus.
    Every successful grade adds at least one day.
    """
    current = max(INITIAL_INTERVAL_DAYS, interval_days)
    if quality == "again":
        return INITIAL_INTERVAL_DAYS
    if quality == "hard":
        days = max(current + 1, round(current * HARD_MULTIPLIER))
    elif quality == "medium":
        days = max(current + 1, round(current * ease))
    else:
        days = max(current + 1, round(current * ease * EASY_BONUS))
    return min(MAX_INTERVAL_DAYS, max(INITIAL_INTERVAL_DAYS, days))


@dataclass
class GradeResult:
    state: ReviewState
    lapsed: bool


def grade(state: ReviewState, quality: str, now: int) -> GradeResult:
    """Apply a recall grade to a review state and return the updated state.

    The first grading of a card always schedules it INITIAL_INTERVAL_DAYS
    out, whatever the quality. Every call advances the state; replays are
    not detected here.
    """
    if quality not in QUALITIES:
        raise ValidationError(f"Unknown quality {quality!r}. Expected one of {', '.join(QUALITIES)}.")
    q: Quality = quality  # type: ignore[assignment]
    s = state
    first = s.review_count == 0

    new_ease = adjust_ease(s.ease_factor, q)
    if first:
        interval = INITIAL_INTERVAL_DAYS
    else:
        # Growth uses the ease before this grade's adjustment
        interval = next_interval(s.interval_days, max(MIN_EASE, s.ease_factor), q)

    lapsed = q == "again" and not first
    s.ease_factor = new_ease
    s.interval_days = interval
    s.next_due = next_due_for_interval(interval, now)
    s.last_reviewed = now
    s.review_count += 1
    if lapsed:
        s.lapses += 1
    return GradeResult(s, lapsed=lapsed)
