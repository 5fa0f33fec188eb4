"""
Fixed-interval review scheduler.

Outcomes: 'known' (7 days, easy), 'later' (1 day, medium), 'hard' (10 minutes, hard)

There is no ease factor and no interval growth: the next date depends only on
the moment of review and the outcome picked.
"""

from datetime import datetime, timedelta

from store.errors import InvalidOutcome
from store.models import EASY, HARD as HARD_DIFFICULTY, MEDIUM

# Outcome constants
KNOWN = 'known'
LATER = 'later'
HARD = 'hard'

OUTCOMES = (KNOWN, LATER, HARD)

INTERVALS = {
    KNOWN: timedelta(days=7),
    LATER: timedelta(days=1),
    HARD: timedelta(minutes=10),
}

DIFFICULTY_FOR = {
    KNOWN: EASY,
    LATER: MEDIUM,
    HARD: HARD_DIFFICULTY,
}


def check_outcome(outcome: str) -> str:
    if outcome not in INTERVALS:
        raise InvalidOutcome(outcome)
    return outcome


def schedule(now: datetime, outcome: str) -> tuple[datetime, str]:
    """
    Map a review outcome at `now` to (next_review_date, difficulty).

    Raises InvalidOutcome for anything but known / later / hard.
    """
    check_outcome(outcome)
    return now + INTERVALS[outcome], DIFFICULTY_FOR[outcome]


def format_interval(delta: timedelta) -> str:
    """Short label for a scheduling interval: 10m, 1d, 7d, 2mo, 1.5y."""
    minutes = max(1, round(delta.total_seconds() / 60))
    if minutes < 60:
        return f"{minutes}m"
    if minutes < 24 * 60:
        return f"{round(minutes / 60)}h"

    days = round(minutes / (24 * 60))
    if days < 30:
        return f"{days}d"
    elif days < 365:
        return f"{round(days / 30)}mo"
    return f"{round(days / 365, 1)}y"


def next_interval_label(outcome: str) -> str:
    """Human-readable label for what happens if the user picks this outcome."""
    return format_interval(INTERVALS[check_outcome(outcome)])
