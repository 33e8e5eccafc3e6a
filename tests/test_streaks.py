"""Tests for streaks.py: daily/duel streaks and pre-event multipliers."""

from __future__ import annotations

from datetime import date, timedelta

import pytest

from streaks import (
    StreakState,
    habit_streak,
    multiplier_for,
    record_daily_activity,
    record_loss,
    record_win,
    score_duel,
    score_tie,
)

DAY = date(2026, 3, 10)


class TestMultiplier:
    @pytest.mark.parametrize("streak,mult", [(0, 1.0), (2, 1.0), (3, 1.5), (6, 1.5), (7, 2.0), (30, 2.0)])
    def test_thresholds(self, streak, mult):
        assert multiplier_for(streak) == mult


class TestDailyStreak:
    def test_first_activity(self):
        assert record_daily_activity(StreakState(), DAY) == StreakState(1, DAY)

    def test_same_day_unchanged(self):
        state = StreakState(4, DAY)
        assert record_daily_activity(state, DAY) is state

    def test_next_day_increments(self):
        state = record_daily_activity(StreakState(4, DAY), DAY + timedelta(days=1))
        assert state.count == 5

    def test_gap_restarts(self):
        state = record_daily_activity(StreakState(4, DAY), DAY + timedelta(days=3))
        assert state == StreakState(1, DAY + timedelta(days=3))

    def test_earlier_date_ignored(self):
        state = StreakState(4, DAY)
        assert record_daily_activity(state, DAY - timedelta(days=1)) is state

    def test_row_round_trip(self):
        state = StreakState.from_row(3, "2026-03-10")
        assert state.last_date == DAY
        assert state.last_date_iso() == "2026-03-10"
        assert StreakState.from_row(0, "").last_date is None


class TestDuelScoring:
    def test_streak_three_pays_one_and_a_half(self):
        award = score_duel(StreakState(3, DAY - timedelta(days=1)), 50, won=True, on=DAY)
        assert award.xp == 75
        assert award.multiplier == 1.5
        assert award.streak_after.count == 4

    def test_streak_seven_pays_double(self):
        award = score_duel(StreakState(7, DAY - timedelta(days=1)), 50, won=True, on=DAY)
        assert award.xp == 100

    def test_multiplier_uses_pre_event_streak(self):
        # Streak 2 becomes 3 with this win, but the win is paid at 1.0.
        award = score_duel(StreakState(2, DAY - timedelta(days=1)), 50, won=True, on=DAY)
        assert award.xp == 50
        assert award.streak_after.count == 3

    def test_loss_pays_floor_and_resets(self):
        award = score_duel(StreakState(9, DAY - timedelta(days=1)), 50, won=False, on=DAY)
        assert award.xp == 10
        assert award.multiplier == 1.0
        assert award.streak_after.count == 0

    def test_second_win_same_day_does_not_extend(self):
        state = record_win(StreakState(2, DAY), DAY)
        assert state.count == 2

    def test_tie_keeps_streak(self):
        award = score_tie(StreakState(5, DAY), loss_floor=10)
        assert award.xp == 10
        assert award.streak_after.count == 5

    def test_record_loss(self):
        assert record_loss(StreakState(5, DAY)).count == 0


class TestHabitStreak:
    def test_consecutive_days_ending_today(self):
        dates = {DAY - timedelta(days=i) for i in range(4)}
        assert habit_streak(dates, DAY) == 4

    def test_ending_yesterday_still_counts(self):
        dates = {DAY - timedelta(days=i) for i in range(1, 3)}
        assert habit_streak(dates, DAY) == 2

    def test_broken(self):
        assert habit_streak({DAY - timedelta(days=2)}, DAY) == 0
        assert habit_streak(set(), DAY) == 0
