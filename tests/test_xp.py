from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest

from app.domain.errors import InvalidArgumentError
from app.domain.state_machine import Difficulty
from app.domain.xp import compute_xp, parse_difficulty, real_duration_days

STARTED = datetime(2026, 3, 2, 9, 0, tzinfo=UTC)


@pytest.mark.parametrize(
    ("xp_base", "estimate", "difficulty", "elapsed", "expected"),
    [
        (100, 3, Difficulty.HARD, timedelta(days=2), 180),
        (100, 3, Difficulty.HARD, timedelta(days=4), 135),
        (100, 3, Difficulty.MEDIUM, timedelta(days=3), 120),
        (100, 1, Difficulty.EASY, timedelta(days=2), 72),
        (45, 5, Difficulty.EASY, timedelta(hours=6), 43),
    ],
)
def test_compute_xp_examples(
    xp_base: int,
    estimate: int,
    difficulty: Difficulty,
    elapsed: timedelta,
    expected: int,
) -> None:
    assert compute_xp(xp_base, estimate, difficulty, STARTED, STARTED + elapsed) == expected


def test_partial_day_counts_as_a_full_day() -> None:
    assert real_duration_days(STARTED, STARTED + timedelta(days=3)) == 3
    assert real_duration_days(STARTED, STARTED + timedelta(days=3, seconds=1)) == 4
    # One second over the estimate is already late.
    assert compute_xp(100, 3, Difficulty.MEDIUM, STARTED, STARTED + timedelta(days=3, seconds=1)) == 90


def test_same_instant_is_on_time() -> None:
    assert real_duration_days(STARTED, STARTED) == 0
    assert compute_xp(10, 1, "medium", STARTED, STARTED) == 12


def test_difficulty_strings_are_case_insensitive() -> None:
    assert parse_difficulty("HARD") is Difficulty.HARD
    assert parse_difficulty(" Easy ") is Difficulty.EASY
    assert compute_xp(100, 3, "Hard", STARTED, STARTED + timedelta(days=1)) == 180


def test_unknown_difficulty_is_rejected() -> None:
    with pytest.raises(InvalidArgumentError):
        compute_xp(100, 3, "legendary", STARTED, STARTED + timedelta(days=1))


def test_end_before_start_is_rejected() -> None:
    with pytest.raises(InvalidArgumentError):
        compute_xp(100, 3, Difficulty.MEDIUM, STARTED, STARTED - timedelta(minutes=1))


@pytest.mark.parametrize(("xp_base", "estimate"), [(-1, 3), (100, 0)])
def test_invalid_template_values_are_rejected(xp_base: int, estimate: int) -> None:
    with pytest.raises(InvalidArgumentError):
        compute_xp(xp_base, estimate, Difficulty.MEDIUM, STARTED, STARTED + timedelta(days=1))


def test_naive_datetimes_are_treated_as_utc() -> None:
    naive_start = STARTED.replace(tzinfo=None)
    assert compute_xp(100, 3, Difficulty.MEDIUM, naive_start, STARTED + timedelta(days=1)) == 120
