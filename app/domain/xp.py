from __future__ import annotations

import math
from datetime import UTC, datetime

from app.domain.errors import InvalidArgumentError
from app.domain.state_machine import Difficulty

SECONDS_PER_DAY = 24 * 60 * 60

DIFFICULTY_MULTIPLIERS: dict[Difficulty, float] = {
    Difficulty.EASY: 0.8,
    Difficulty.MEDIUM: 1.0,
    Difficulty.HARD: 1.5,
}
ON_TIME_MULTIPLIER = 1.2
LATE_MULTIPLIER = 0.9


def ensure_utc(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC)


def parse_difficulty(value: Difficulty | str) -> Difficulty:
    if isinstance(value, Difficulty):
        return value
    try:
        return Difficulty(str(value).strip().lower())
    except ValueError as exc:
        raise InvalidArgumentError(
            f"invalid difficulty level {value!r}; choose from: easy, medium, hard"
        ) from exc


def real_duration_days(started_at: datetime, ended_at: datetime) -> int:
    start = ensure_utc(started_at)
    end = ensure_utc(ended_at)
    if end < start:
        raise InvalidArgumentError("task end date precedes its start date")
    return math.ceil((end - start).total_seconds() / SECONDS_PER_DAY)


def compute_xp(
    xp_base: int,
    estimated_duration_days: int,
    difficulty: Difficulty | str,
    started_at: datetime,
    ended_at: datetime,
) -> int:
    """Return the XP awarded for resolving a task.

    Difficulty scales the base (easy 0.8, medium 1.0, hard 1.5). Finishing
    within the estimate multiplies by 1.2, finishing late by 0.9. The result
    is rounded half-up to an integer.
    """
    if xp_base < 0:
        raise InvalidArgumentError("xp base must not be negative")
    if estimated_duration_days <= 0:
        raise InvalidArgumentError("estimated duration must be at least one day")
    difficulty_multiplier = DIFFICULTY_MULTIPLIERS[parse_difficulty(difficulty)]
    duration_days = real_duration_days(started_at, ended_at)
    duration_multiplier = ON_TIME_MULTIPLIER if duration_days <= estimated_duration_days else LATE_MULTIPLIER
    return math.floor(xp_base * difficulty_multiplier * duration_multiplier + 0.5)
