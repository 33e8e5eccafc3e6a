"""Challenge Tier Catalog: the closed table of XP values a challenge may award.

Clients name a tier or a catalog challenge; they never send an XP number.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from outcomes import TierNotAllowed, ValidationError


class ChallengeTier(str, Enum):
    EASY = "EASY"
    MEDIUM = "MEDIUM"
    HARD = "HARD"
    EPIC = "EPIC"


@dataclass(frozen=True)
class TierDefinition:
    tier: ChallengeTier
    xp: int
    weekly_only: bool = False


TIER_TABLE: dict[ChallengeTier, TierDefinition] = {
    ChallengeTier.EASY: TierDefinition(ChallengeTier.EASY, 15),
    ChallengeTier.MEDIUM: TierDefinition(ChallengeTier.MEDIUM, 30),
    ChallengeTier.HARD: TierDefinition(ChallengeTier.HARD, 60),
    ChallengeTier.EPIC: TierDefinition(ChallengeTier.EPIC, 100, weekly_only=True),
}


def parse_tier(value: object) -> ChallengeTier:
    if isinstance(value, ChallengeTier):
        return value
    try:
        return ChallengeTier(str(value).upper())
    except ValueError:
        raise ValidationError(f"Unknown challenge tier {value!r}.", code="unknown_tier") from None


def xp_for(tier: ChallengeTier | str) -> int:
    return TIER_TABLE[parse_tier(tier)].xp


def is_valid_tier(tier: ChallengeTier | str, is_weekly_context: bool) -> bool:
    try:
        definition = TIER_TABLE[parse_tier(tier)]
    except ValidationError:
        return False
    return is_weekly_context or not definition.weekly_only


def require_tier(tier: ChallengeTier | str, is_weekly_context: bool) -> TierDefinition:
    """Return the tier definition or raise; a disallowed tier is never downgraded."""
    definition = TIER_TABLE[parse_tier(tier)]
    if definition.weekly_only and not is_weekly_context:
        raise TierNotAllowed(f"{definition.tier.value} challenges are weekly-only.")
    return definition


def resolve_challenge_xp(
    tier: Optional[ChallengeTier | str],
    custom_challenge_id: Optional[str],
    club_custom_challenges: dict[str, int],
    is_weekly_context: bool,
) -> int:
    """XP for a submission: a tier value, or a club-configured one-off challenge."""
    if tier is not None and custom_challenge_id:
        raise ValidationError("Give a tier or a custom challenge, not both.", code="ambiguous_xp")
    if tier is not None:
        return require_tier(tier, is_weekly_context).xp
    if custom_challenge_id:
        if custom_challenge_id not in club_custom_challenges:
            raise ValidationError(
                f"Custom challenge {custom_challenge_id!r} is not configured for this club.",
                code="unknown_custom_challenge",
            )
        return club_custom_challenges[custom_challenge_id]
    raise ValidationError("A tier or custom challenge is required.", code="missing_tier")


# ── Challenge catalogs ─────────────────────────────────────


@dataclass(frozen=True)
class ArenaChallenge:
    id: str
    name: str
    category: str
    tier: ChallengeTier = ChallengeTier.EASY


ARENA_CHALLENGES: dict[str, ArenaChallenge] = {
    c.id: c for c in (
        ArenaChallenge("pushup_master", "Push-up Master", "Power", ChallengeTier.MEDIUM),
        ArenaChallenge("squat_challenge", "Squat Challenge", "Power"),
        ArenaChallenge("burpee_blast", "Burpee Blast", "Power", ChallengeTier.HARD),
        ArenaChallenge("abs_of_steel", "Abs of Steel", "Power", ChallengeTier.MEDIUM),
        ArenaChallenge("100_kicks", "100 Kicks", "Technique", ChallengeTier.HARD),
        ArenaChallenge("speed_punches", "Speed Punches", "Technique"),
        ArenaChallenge("horse_stance", "Horse Stance", "Technique", ChallengeTier.MEDIUM),
        ArenaChallenge("jump_rope", "Jump Rope", "Technique"),
        ArenaChallenge("plank_hold", "Plank Hold", "Flexibility", ChallengeTier.MEDIUM),
        ArenaChallenge("touch_toes", "Touch Your Toes", "Flexibility"),
        ArenaChallenge("wall_sit", "Wall Sit", "Flexibility", ChallengeTier.MEDIUM),
        ArenaChallenge("one_leg_balance", "One-Leg Balance", "Flexibility"),
        ArenaChallenge("family_form_practice", "Family Form Practice", "Family"),
        ArenaChallenge("family_stretch", "Family Stretch", "Family"),
        ArenaChallenge("family_kicks", "Family Kicks", "Family"),
    )
}


FAMILY_CHALLENGES: dict[str, int] = {
    "family_pushups": 100,
    "family_plank": 120,
    "family_squat_hold": 100,
    "family_statue": 80,
    "family_kicks": 90,
    "family_balance": 80,
    "family_situps": 90,
    "family_reaction": 85,
    "family_mirror": 75,
    "family_dance": 70,
    "family_stretch": 60,
    "family_breathing": 50,
}


def family_xp(challenge_id: str, won: bool, loss_ratio: float = 0.5) -> int:
    """Family challenges pay full XP on a win and a share of it on a loss."""
    if challenge_id not in FAMILY_CHALLENGES:
        raise ValidationError(f"Unknown family challenge {challenge_id!r}.", code="unknown_challenge")
    base = FAMILY_CHALLENGES[challenge_id]
    return base if won else round(base * loss_ratio)


class ScoreType(str, Enum):
    REPS = "REPS"
    TIME = "TIME"
    DISTANCE = "DISTANCE"
    COUNT = "COUNT"
    SETS = "SETS"


@dataclass(frozen=True)
class GauntletChallenge:
    id: str
    name: str
    day_of_week: str
    score_type: ScoreType
    sort_order: str  # "DESC": higher is better, "ASC": lower is better
    tier: ChallengeTier = ChallengeTier.HARD

    def is_better(self, new: float, best: float) -> bool:
        return new < best if self.sort_order == "ASC" else new > best


GAUNTLET_CHALLENGES: dict[str, GauntletChallenge] = {
    c.id: c for c in (
        GauntletChallenge("monday_pushups", "Push-up Gauntlet", "Monday", ScoreType.REPS, "DESC"),
        GauntletChallenge("tuesday_plank", "Plank Endurance", "Tuesday", ScoreType.TIME, "DESC"),
        GauntletChallenge("wednesday_shuttle", "Shuttle Run", "Wednesday", ScoreType.TIME, "ASC"),
        GauntletChallenge("thursday_kicks", "Kick Count", "Thursday", ScoreType.COUNT, "DESC"),
        GauntletChallenge("friday_broad_jump", "Broad Jump", "Friday", ScoreType.DISTANCE, "DESC"),
        GauntletChallenge("saturday_circuit", "Circuit Sets", "Saturday", ScoreType.SETS, "DESC",
                          ChallengeTier.EPIC),
        GauntletChallenge("sunday_sprint", "Sprint Finish", "Sunday", ScoreType.TIME, "ASC",
                          ChallengeTier.EPIC),
    )
}
