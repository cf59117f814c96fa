from __future__ import annotations

import pytest

from cardsched.config import MAX_INTERVAL_DAYS, MIN_EASE, SECONDS_PER_DAY
from cardsched.errors import ValidationError
from cardsched.models import ReviewState
from cardsched.srs import QUALITIES, grade, next_due_for_interval

NOW = 1_700_000_000


def make_state(interval: int = 1, ease: float = 2.5, reviews: int = 0) -> ReviewState:
    return ReviewState(
        user_id="u1",
        language_id="nl",
        card_id="c1",
        interval_days=interval,
        ease_factor=ease,
        review_count=reviews,
    )


def test_next_due_for_interval():
    assert next_due_for_interval(3, NOW) == NOW + 3 * SECONDS_PER_DAY


@pytest.mark.parametrize("quality", QUALITIES)
def test_first_grading_always_one_day(quality):
    s = make_state(interval=20)
    res = grade(s, quality, NOW)
    assert s.interval_days == 1
    assert s.next_due == NOW + SECONDS_PER_DAY
    assert s.review_count == 1
    assert s.last_reviewed == NOW
    assert res.lapsed is False
    assert s.lapses == 0


def test_first_grading_still_adjusts_ease():
    s = make_state()
    grade(s, "easy", NOW)
    assert s.ease_factor == pytest.approx(2.65)


def test_medium_multiplies_by_ease():
    s = make_state(interval=4, reviews=2)
    grade(s, "medium", NOW)
    assert s.interval_days == 10
    assert s.ease_factor == pytest.approx(2.5)
    assert s.next_due == NOW + 10 * SECONDS_PER_DAY


def test_easy_applies_bonus():
    s = make_state(interval=4, reviews=2)
    grade(s, "easy", NOW)
    assert s.interval_days == 13


def test_hard_grows_slowly_and_lowers_ease():
    s = make_state(interval=10, reviews=3)
    grade(s, "hard", NOW)
    assert s.interval_days == 12
    assert s.ease_factor == pytest.approx(2.35)


@pytest.mark.parametrize("start,expected", [(1, [2, 3, 4, 5, 6]), (2, [3, 4, 5, 6, 7])])
def test_repeated_hard_keeps_growing(start, expected):
    s = make_state(interval=start, reviews=3)
    intervals = []
    for _ in range(5):
        grade(s, "hard", NOW)
        intervals.append(s.interval_days)
    assert intervals == expected


def test_medium_grows_at_least_one_day():
    s = make_state(interval=1, ease=1.3, reviews=1)
    grade(s, "medium", NOW)
    assert s.interval_days == 2


def test_again_resets_and_counts_lapse():
    s = make_state(interval=30, reviews=5)
    res = grade(s, "again", NOW)
    assert res.lapsed is True
    assert s.interval_days == 1
    assert s.lapses == 1
    assert s.ease_factor == pytest.approx(2.3)
    assert s.review_count == 6


def test_interval_is_capped():
    s = make_state(interval=3000, reviews=10)
    grade(s, "easy", NOW)
    assert s.interval_days == MAX_INTERVAL_DAYS


def test_ease_never_below_minimum():
    s = make_state(ease=1.35, reviews=1)
    for _ in range(10):
        grade(s, "again", NOW)
        assert s.ease_factor >= MIN_EASE
    assert s.ease_factor == pytest.approx(MIN_EASE)

    low = make_state(ease=1.0, reviews=4)
    grade(low, "medium", NOW)
    assert low.ease_factor >= MIN_EASE


def test_every_call_advances_state():
    s = make_state()
    grade(s, "medium", NOW)
    grade(s, "medium", NOW)
    assert s.review_count == 2


def test_unknown_quality_rejected():
    s = make_state()
    with pytest.raises(ValidationError):
        grade(s, "perfect", NOW)
    assert s.review_count == 0
