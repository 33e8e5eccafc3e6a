"""Tests for scoring.py: PTS/XP normalization, club settings, and tiers."""

from __future__ import annotations

import pytest

from outcomes import ValidationError
from scoring import (
    ClubSettings,
    attendance_streak_bonus,
    avatar_tier,
    class_pts,
    class_xp,
    normalize_for_club,
    normalize_grading,
    performance_rating,
)


class TestNormalizeGrading:
    def test_four_skills_mixed(self):
        result = normalize_grading([2, 2, 2, 1])
        assert result.pts == 7
        assert result.xp == 88
        assert result.graded_skills == 4

    def test_all_green_is_100_regardless_of_skill_count(self):
        assert normalize_grading([2, 2, 2, 2]).xp == 100
        assert normalize_grading([2, 2, 2, 2, 2, 2]).xp == 100

    def test_unset_scores_are_ignored(self):
        result = normalize_grading([2, None, 1, None])
        assert result.pts == 3
        assert result.xp == 75
        assert result.graded_skills == 2

    def test_no_valid_scores(self):
        result = normalize_grading([None, None])
        assert result.pts == 0
        assert result.xp == 0
        assert normalize_grading([]).xp == 0

    def test_out_of_range_score_rejected(self):
        with pytest.raises(ValidationError):
            normalize_grading([2, 3])

    def test_non_integer_score_rejected(self):
        with pytest.raises(ValidationError):
            normalize_grading([2, "2"])
        with pytest.raises(ValidationError):
            normalize_grading([True, 2])

    def test_bonus_ignored_when_disabled(self):
        result = normalize_grading([2, 1], coach_bonus=2, homework=2)
        assert result.xp == 75
        assert result.session_pts == 3

    def test_bonus_adds_max_to_denominator(self):
        # (4 + 2 + 0) / (4 + 2 + 2)
        result = normalize_grading(
            [2, 2], coach_bonus=2, homework=0,
            coach_bonus_enabled=True, homework_enabled=True,
        )
        assert result.xp == 75

    def test_perfect_session_with_bonuses_is_100(self):
        result = normalize_grading(
            [2, 2, 2, 2], coach_bonus=2, homework=2,
            coach_bonus_enabled=True, homework_enabled=True,
        )
        assert result.xp == 100

    def test_oversized_bonus_is_capped_for_global_xp(self):
        result = normalize_grading(
            [2, 2, 2, 2], coach_bonus=5, homework=0, coach_bonus_enabled=True,
        )
        assert result.xp == 100
        # Club-local XP and belt PTS keep the raw bonus.
        assert result.session_pts == 13
        assert result.local_xp == 100

    def test_local_xp_uses_raw_bonus(self):
        result = normalize_grading([1, 1], coach_bonus=3, coach_bonus_enabled=True)
        # global: (2 + 2) / (4 + 2); local: (2 + 3) / (4 + 3)
        assert result.xp == 67
        assert result.local_xp == 71

    def test_negative_bonus_rejected(self):
        with pytest.raises(ValidationError):
            normalize_grading([2], coach_bonus=-1, coach_bonus_enabled=True)

    def test_class_helpers(self):
        assert class_pts([2, 1, None, 0]) == 3
        assert class_xp([2, 1, None, 0]) == 50
        assert class_xp([]) == 0


class TestClubSettings:
    def test_defaults_from_empty_json(self):
        settings = ClubSettings.from_json("{}")
        assert len(settings.skills) == 4
        assert settings.points_per_stripe == 64
        assert settings.pts_for_belt(0) == 256
        assert settings.weeks_closed() == 0

    def test_round_trip_preserves_belt_points(self):
        settings = ClubSettings(belt_points={2: 80}, holiday_schedule="school_holidays")
        again = ClubSettings.from_json(settings.to_json())
        assert again.points_per_stripe_for(2) == 80
        assert again.points_per_stripe_for(1) == 64
        assert again.weeks_closed() == 8

    def test_custom_holiday_weeks_clamped(self):
        assert ClubSettings(holiday_schedule="custom", custom_holiday_weeks=60).weeks_closed() == 52
        assert ClubSettings(holiday_schedule="custom", custom_holiday_weeks=-3).weeks_closed() == 0

    def test_normalize_for_club_reads_flags(self):
        settings = ClubSettings(homework_enabled=True)
        result = normalize_for_club([2, 2], settings, coach_bonus=2, homework=1)
        # coach bonus disabled for this club: (4 + 1) / (4 + 2)
        assert result.xp == 83


class TestRatingsAndTiers:
    @pytest.mark.parametrize("streak,bonus", [(0, 0), (2, 0), (3, 5), (5, 10), (12, 15)])
    def test_attendance_streak_bonus(self, streak, bonus):
        assert attendance_streak_bonus(streak) == bonus

    def test_performance_rating(self):
        assert performance_rating(95) == "excellent"
        assert performance_rating(80) == "good"
        assert performance_rating(50) == "average"
        assert performance_rating(10) == "needs_improvement"

    def test_avatar_tier_progress(self):
        tier = avatar_tier(175)
        assert tier["tier"] == "Rising Challenger"
        assert tier["next_tier"] == "Guardian"
        assert tier["xp_to_next"] == 75
        assert tier["progress_pct"] == 50

    def test_avatar_tier_top(self):
        tier = avatar_tier(5000)
        assert tier["tier"] == "World Champion"
        assert tier["next_tier"] is None
        assert tier["progress_pct"] == 100
