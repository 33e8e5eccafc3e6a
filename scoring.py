"""Score Normalizer: per-skill grading scores to PTS and 0-100 XP.

PTS is the raw sum used for belt progress; XP is normalized against the
maximum attainable for that session so clubs grading 4 skills and clubs
grading 6 skills produce comparable numbers.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any, Iterable, Optional

from outcomes import ValidationError


class SkillScore(IntEnum):
    RED = 0
    YELLOW = 1
    GREEN = 2


MAX_SKILL_SCORE = int(SkillScore.GREEN)
MAX_BONUS = 2
MAX_HOMEWORK = 2

HOLIDAY_PRESETS = {
    "none": 0,
    "minimal": 2,
    "school_holidays": 8,
    "extended": 12,
}

DEFAULT_BELTS = (
    "White", "Yellow", "Orange", "Green", "Blue", "Purple", "Red", "Brown", "Black",
)


@dataclass(frozen=True)
class ClubSettings:
    """Club-configured grading and progression settings.

    Parsed from the clubs.settings JSON column; every field has a default so
    a club with an empty settings object still grades correctly.
    """

    skills: tuple[str, ...] = ("Technique", "Effort", "Focus", "Discipline")
    coach_bonus_enabled: bool = False
    homework_enabled: bool = False
    belts: tuple[str, ...] = DEFAULT_BELTS
    points_per_stripe: int = 64
    stripes_per_belt: int = 4
    belt_points: dict[int, int] = field(default_factory=dict)  # belt index -> PTS per stripe
    holiday_schedule: str = "none"
    custom_holiday_weeks: int = 4
    custom_challenges: dict[str, int] = field(default_factory=dict)  # challenge id -> XP

    @classmethod
    def from_json(cls, raw: str | dict[str, Any] | None) -> "ClubSettings":
        data = raw if isinstance(raw, dict) else json.loads(raw or "{}")
        return cls(
            skills=tuple(data.get("skills", cls.skills)),
            coach_bonus_enabled=bool(data.get("coach_bonus_enabled", False)),
            homework_enabled=bool(data.get("homework_enabled", False)),
            belts=tuple(data.get("belts", DEFAULT_BELTS)),
            points_per_stripe=int(data.get("points_per_stripe", 64)),
            stripes_per_belt=int(data.get("stripes_per_belt", 4)),
            belt_points={int(k): int(v) for k, v in data.get("belt_points", {}).items()},
            holiday_schedule=data.get("holiday_schedule", "none"),
            custom_holiday_weeks=int(data.get("custom_holiday_weeks", 4)),
            custom_challenges={str(k): int(v) for k, v in data.get("custom_challenges", {}).items()},
        )

    def to_json(self) -> str:
        return json.dumps({
            "skills": list(self.skills),
            "coach_bonus_enabled": self.coach_bonus_enabled,
            "homework_enabled": self.homework_enabled,
            "belts": list(self.belts),
            "points_per_stripe": self.points_per_stripe,
            "stripes_per_belt": self.stripes_per_belt,
            "belt_points": {str(k): v for k, v in self.belt_points.items()},
            "holiday_schedule": self.holiday_schedule,
            "custom_holiday_weeks": self.custom_holiday_weeks,
            "custom_challenges": self.custom_challenges,
        })

    def points_per_stripe_for(self, belt_index: int) -> int:
        return self.belt_points.get(belt_index, self.points_per_stripe)

    def pts_for_belt(self, belt_index: int) -> int:
        """PTS needed to complete belt ``belt_index`` and move to the next one."""
        return self.stripes_per_belt * self.points_per_stripe_for(belt_index)

    def weeks_closed(self) -> int:
        if self.holiday_schedule == "custom":
            return max(0, min(52, self.custom_holiday_weeks))
        return HOLIDAY_PRESETS.get(self.holiday_schedule, 0)


@dataclass(frozen=True)
class GradingResult:
    pts: int
    xp: int
    local_xp: int = 0
    session_pts: int = 0
    graded_skills: int = 0

    def to_dict(self) -> dict[str, int]:
        return {
            "pts": self.pts,
            "xp": self.xp,
            "local_xp": self.local_xp,
            "session_pts": self.session_pts,
            "graded_skills": self.graded_skills,
        }


def _set_scores(scores: Iterable[Optional[int]]) -> list[int]:
    valid = []
    for raw in scores:
        if raw is None:
            continue
        if isinstance(raw, bool) or not isinstance(raw, int):
            raise ValidationError(f"Score {raw!r} is not an integer.", code="malformed_score")
        if raw not in (SkillScore.RED, SkillScore.YELLOW, SkillScore.GREEN):
            raise ValidationError(f"Score {raw} is outside 0-2.", code="malformed_score")
        valid.append(int(raw))
    return valid


def _bonus_value(value: Optional[int], name: str) -> int:
    if value is None:
        return 0
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise ValidationError(f"{name} must be a non-negative integer.", code="malformed_bonus")
    return value


def class_pts(scores: Iterable[Optional[int]]) -> int:
    return sum(_set_scores(scores))


def class_xp(scores: Iterable[Optional[int]]) -> int:
    valid = _set_scores(scores)
    if not valid:
        return 0
    return round(100 * sum(valid) / (len(valid) * MAX_SKILL_SCORE))


def normalize_grading(
    scores: Iterable[Optional[int]],
    coach_bonus: Optional[int] = None,
    homework: Optional[int] = None,
    *,
    coach_bonus_enabled: bool = False,
    homework_enabled: bool = False,
) -> GradingResult:
    """Normalize one class session.

    ``xp`` uses bonus and homework clamped to 2 each, with the maximum added
    to the denominator for every enabled feature, so a perfect session is
    always exactly 100. ``local_xp`` is the club-local variant with the raw
    values; ``session_pts`` is what the session adds to belt progress.
    """
    valid = _set_scores(scores)
    bonus = _bonus_value(coach_bonus, "coach_bonus") if coach_bonus_enabled else 0
    hw = _bonus_value(homework, "homework") if homework_enabled else 0

    if not valid:
        return GradingResult(pts=0, xp=0)

    pts = sum(valid)
    possible = len(valid) * MAX_SKILL_SCORE

    capped_bonus = min(bonus, MAX_BONUS)
    capped_hw = min(hw, MAX_HOMEWORK)
    global_possible = possible
    if coach_bonus_enabled:
        global_possible += MAX_BONUS
    if homework_enabled:
        global_possible += MAX_HOMEWORK
    xp = round(100 * (pts + capped_bonus + capped_hw) / global_possible)

    local_possible = possible + bonus + hw
    local_xp = round(100 * (pts + bonus + hw) / local_possible)

    return GradingResult(
        pts=pts,
        xp=xp,
        local_xp=local_xp,
        session_pts=pts + bonus + hw,
        graded_skills=len(valid),
    )


def normalize_for_club(
    scores: Iterable[Optional[int]],
    settings: ClubSettings,
    coach_bonus: Optional[int] = None,
    homework: Optional[int] = None,
) -> GradingResult:
    return normalize_grading(
        scores,
        coach_bonus,
        homework,
        coach_bonus_enabled=settings.coach_bonus_enabled,
        homework_enabled=settings.homework_enabled,
    )


def attendance_streak_bonus(streak: int) -> int:
    if streak >= 10:
        return 15
    if streak >= 5:
        return 10
    if streak >= 3:
        return 5
    return 0


def performance_rating(xp: int) -> str:
    if xp >= 90:
        return "excellent"
    if xp >= 75:
        return "good"
    if xp >= 50:
        return "average"
    return "needs_improvement"


AVATAR_TIERS = (
    (0, "Initiate"),
    (100, "Rising Challenger"),
    (250, "Guardian"),
    (500, "Legendary Dragon"),
    (1000, "World Champion"),
)


def avatar_tier(lifetime_xp: int) -> dict[str, Any]:
    """Named tier for a lifetime XP total plus progress toward the next one."""
    index = 0
    for i, (threshold, _) in enumerate(AVATAR_TIERS):
        if lifetime_xp >= threshold:
            index = i
    threshold, name = AVATAR_TIERS[index]
    if index + 1 < len(AVATAR_TIERS):
        next_threshold, next_name = AVATAR_TIERS[index + 1]
        progress = round(100 * (lifetime_xp - threshold) / (next_threshold - threshold))
    else:
        next_threshold, next_name, progress = None, None, 100
    return {
        "tier": name,
        "level": index + 1,
        "next_tier": next_name,
        "xp_to_next": (next_threshold - lifetime_xp) if next_threshold is not None else 0,
        "progress_pct": progress,
    }
