"""Streak & Multiplier Engine.

Two streaks are tracked per student: the daily activity streak (any
qualifying activity on consecutive days) and the duel win streak (wins on
distinct days, reset by a loss). Multipliers always read the streak as it
stood before the event being scored.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import date, timedelta
from typing import Optional


def multiplier_for(streak: int) -> float:
    if streak >= 7:
        return 2.0
    if streak >= 3:
        return 1.5
    return 1.0


@dataclass(frozen=True)
class StreakState:
    count: int = 0
    last_date: Optional[date] = None

    @classmethod
    def from_row(cls, count: int, last_date: str) -> "StreakState":
        return cls(count or 0, date.fromisoformat(last_date) if last_date else None)

    def last_date_iso(self) -> str:
        return self.last_date.isoformat() if self.last_date else ""


def record_daily_activity(state: StreakState, on: date) -> StreakState:
    """Same day: unchanged. Next day: +1. After a gap (or first ever): 1."""
    if state.last_date is not None and on <= state.last_date:
        return state
    if state.last_date is not None and on - state.last_date == timedelta(days=1):
        return StreakState(state.count + 1, on)
    return StreakState(1, on)


def record_win(state: StreakState, on: date) -> StreakState:
    """A win on a day strictly after the last counted win extends the streak."""
    if state.last_date is not None and on <= state.last_date:
        return state
    return StreakState(state.count + 1, on)


def record_loss(state: StreakState) -> StreakState:
    return replace(state, count=0)


@dataclass(frozen=True)
class DuelAward:
    xp: int
    multiplier: float
    streak_before: int
    streak_after: StreakState


def score_duel(
    state: StreakState,
    base_xp: int,
    won: bool,
    on: date,
    loss_floor: int = 10,
) -> DuelAward:
    """Score one side of a duel.

    A win pays ``base_xp`` times the multiplier for the pre-event streak. A
    loss pays the flat floor regardless of streak and resets it.
    """
    if won:
        mult = multiplier_for(state.count)
        return DuelAward(round(base_xp * mult), mult, state.count, record_win(state, on))
    return DuelAward(loss_floor, 1.0, state.count, record_loss(state))


def score_tie(state: StreakState, loss_floor: int = 10) -> DuelAward:
    return DuelAward(loss_floor, 1.0, state.count, state)


def habit_streak(log_dates: set[date], today: date, limit: int = 365) -> int:
    """Consecutive days with at least one habit, ending today or yesterday."""
    if today in log_dates:
        cursor = today
    elif today - timedelta(days=1) in log_dates:
        cursor = today - timedelta(days=1)
    else:
        return 0
    streak = 0
    while cursor in log_dates and streak < limit:
        streak += 1
        cursor -= timedelta(days=1)
    return streak
