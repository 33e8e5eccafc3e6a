"""Belt/Promotion Projector: forecasts when a student reaches the final belt.

Pure functions over PTS totals and club settings. The confidence score is a
bounded heuristic, not a statistical interval.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Any, Optional

from scoring import MAX_SKILL_SCORE, ClubSettings

# Typical students score ~85% of the maximum per skill.
EXPECTED_PERFORMANCE = 0.85
HOMEWORK_PTS_PER_CLASS = 1.0
COACH_BONUS_PTS_PER_CLASS = 0.5

MIN_WEEKLY_ATTENDANCE = 1
MAX_WEEKLY_ATTENDANCE = 6
DEFAULT_WEEKLY_ATTENDANCE = 2

CONFIDENCE_FLOOR = 50
CONFIDENCE_CEILING = 90


@dataclass(frozen=True)
class BeltProjection:
    percent_complete: int
    pts_needed_total: int
    pts_earned_total: int
    pts_remaining: int
    weeks_needed: int
    estimated_date: Optional[date]
    confidence_score: int
    weekly_attendance: float
    target_belt: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "percent_complete": self.percent_complete,
            "pts_needed_total": self.pts_needed_total,
            "pts_earned_total": self.pts_earned_total,
            "pts_remaining": self.pts_remaining,
            "weeks_needed": self.weeks_needed,
            "estimated_date": self.estimated_date.isoformat() if self.estimated_date else None,
            "confidence_score": self.confidence_score,
            "weekly_attendance": self.weekly_attendance,
            "target_belt": self.target_belt,
        }


def pts_velocity_per_class(settings: ClubSettings) -> float:
    velocity = max(1, len(settings.skills)) * MAX_SKILL_SCORE * EXPECTED_PERFORMANCE
    if settings.homework_enabled:
        velocity += HOMEWORK_PTS_PER_CLASS
    if settings.coach_bonus_enabled:
        velocity += COACH_BONUS_PTS_PER_CLASS
    return velocity


def banked_pts_for(settings: ClubSettings, belt_index: int) -> int:
    """PTS of all belts below ``belt_index`` under the club's current settings."""
    return sum(settings.pts_for_belt(i) for i in range(belt_index))


def personalized_attendance(attendance_count: int, join_date: Optional[date], today: date) -> float:
    """Average classes per week since joining, clamped to 1-6 (default 2)."""
    if not join_date or attendance_count <= 0:
        return DEFAULT_WEEKLY_ATTENDANCE
    weeks = max(1, (today - join_date).days / 7)
    rate = round(attendance_count / weeks)
    return max(MIN_WEEKLY_ATTENDANCE, min(MAX_WEEKLY_ATTENDANCE, rate))


def confidence_score(weeks_needed: int, has_holiday_calendar: bool) -> int:
    """Heuristic: start at 80, +10 with a configured holiday calendar,
    -5 per full year of forecast horizon, bounded to 50-90."""
    score = 80
    if has_holiday_calendar:
        score += 10
    score -= 5 * (weeks_needed // 52)
    return max(CONFIDENCE_FLOOR, min(CONFIDENCE_CEILING, score))


def project_promotion(
    settings: ClubSettings,
    belt_index: int,
    current_pts: int,
    weekly_attendance: float,
    today: date,
    banked_pts: Optional[int] = None,
) -> BeltProjection:
    """Forecast progress to the final belt.

    ``banked_pts`` is the PTS recorded at each past promotion; when omitted
    it is derived from the current settings.
    """
    if not settings.belts:
        raise ValueError("Club has no belts configured.")
    target_index = len(settings.belts) - 1
    belt_index = max(0, min(belt_index, target_index))
    if banked_pts is None:
        banked_pts = banked_pts_for(settings, belt_index)

    needed = sum(settings.pts_for_belt(i) for i in range(target_index))
    earned = banked_pts + max(0, current_pts)
    remaining = max(0, needed - earned)

    if needed <= 0 or remaining == 0:
        return BeltProjection(
            percent_complete=100,
            pts_needed_total=needed,
            pts_earned_total=earned,
            pts_remaining=0,
            weeks_needed=0,
            estimated_date=today,
            confidence_score=CONFIDENCE_CEILING,
            weekly_attendance=weekly_attendance,
            target_belt=settings.belts[target_index],
        )

    percent = max(0, min(100, round(100 * earned / needed)))
    attendance = max(MIN_WEEKLY_ATTENDANCE, min(MAX_WEEKLY_ATTENDANCE, weekly_attendance))
    open_fraction = (52 - settings.weeks_closed()) / 52
    weekly_pts = attendance * pts_velocity_per_class(settings) * open_fraction

    if weekly_pts <= 0:
        return BeltProjection(
            percent_complete=percent,
            pts_needed_total=needed,
            pts_earned_total=earned,
            pts_remaining=remaining,
            weeks_needed=0,
            estimated_date=None,
            confidence_score=CONFIDENCE_FLOOR,
            weekly_attendance=attendance,
            target_belt=settings.belts[target_index],
        )

    weeks = math.ceil(remaining / weekly_pts)
    return BeltProjection(
        percent_complete=percent,
        pts_needed_total=needed,
        pts_earned_total=earned,
        pts_remaining=remaining,
        weeks_needed=weeks,
        estimated_date=today + timedelta(weeks=weeks),
        confidence_score=confidence_score(weeks, settings.holiday_schedule != "none"),
        weekly_attendance=attendance,
        target_belt=settings.belts[target_index],
    )
