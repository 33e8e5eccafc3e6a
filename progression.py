"""Progression operations: the engine's public entry points.

Each function validates input against server-side catalogs and club
settings, runs one transaction through the gatekeeper / ledger, and
returns a discriminated outcome carrying the authoritative XP total.
Blueprints are thin wrappers over these.
"""

from __future__ import annotations

import logging
import random
import sqlite3
from datetime import date
from typing import Any, Optional

from flask import current_app

import notifications
from audit import log_event
from challenge_tiers import (
    ARENA_CHALLENGES,
    GAUNTLET_CHALLENGES,
    family_xp,
    require_tier,
    resolve_challenge_xp,
)
from database import get_db, now_iso, write_retry
from db_stores import ClubStoreDB, GradingLogDB, PersonalBestStoreDB, PetStoreDB, StudentStoreDB, SubmissionStoreDB
from gatekeeper import ProofType, SubmissionGate, parse_proof_type, verify_submission
from habits import HabitTracker
from leaderboard import LeaderboardStoreDB
from ledger import XPLedger
from outcomes import (
    AlreadyCompleted,
    Awarded,
    Outcome,
    PendingVerification,
    PersistenceConflict,
    Rejected,
    ValidationError,
)
from pet_economy import draw
from projection import personalized_attendance, project_promotion
from scoring import (
    attendance_streak_bonus,
    avatar_tier,
    normalize_for_club,
    performance_rating,
)
from streaks import StreakState, multiplier_for, score_duel, score_tie

logger = logging.getLogger(__name__)


def _cfg(name: str) -> Any:
    return current_app.config[name]


def _student_and_settings(student_id: int):
    student = StudentStoreDB(student_id)
    row = student.active_row()
    return student, row, ClubStoreDB(row["club_id"]).settings()


# ── Grading ────────────────────────────────────────────────────────


@write_retry
def sync_grading(
    student_id: int,
    scores: list[Optional[int]],
    coach_bonus: Optional[int] = None,
    homework: Optional[int] = None,
    session_date: Optional[date] = None,
    graded_by: Optional[int] = None,
) -> dict[str, Any]:
    """Persist a class grading and apply its PTS and XP."""
    student, row, settings = _student_and_settings(student_id)
    if len(scores) > len(settings.skills):
        raise ValidationError(
            f"Club grades {len(settings.skills)} skills, got {len(scores)} scores.",
            code="too_many_scores",
        )
    result = normalize_for_club(scores, settings, coach_bonus, homework)
    session_date = session_date or date.today()

    db = get_db()
    try:
        record_id = GradingLogDB(student_id).add(
            row["club_id"], list(scores), coach_bonus, homework, result, session_date, graded_by,
        )
        student.add_session(result)
        streak = student.touch_activity(session_date)
        total = XPLedger(student_id).credit(result.xp, "grading", str(record_id))
        db.commit()
    except Exception:
        db.rollback()
        raise

    current_pts = student.row()["current_pts"]
    pps = settings.points_per_stripe_for(row["belt_index"])
    return {
        "status": "awarded",
        "grading_id": record_id,
        **result.to_dict(),
        "performance": performance_rating(result.xp),
        "new_total_xp": total,
        "current_pts": current_pts,
        "stripes_earned": (current_pts // pps) - (row["current_pts"] // pps) if pps else 0,
        "current_streak": streak.count,
        "attendance_streak_bonus": attendance_streak_bonus(streak.count),
    }


def promote(student_id: int, actor_id: Optional[int] = None) -> dict[str, Any]:
    student, row, settings = _student_and_settings(student_id)
    result = student.promote(settings)
    logger.info(
        "Promoted student=%s %s -> %s", student_id, result["from_belt"], result["to_belt"],
        extra={"student_id": student_id, "club_id": row["club_id"]},
    )
    log_event("belt_promotion", actor_id, f"student={student_id} {result['from_belt']}->{result['to_belt']}")
    notifications.notify_promotion(row["parent_email"], row["name"], result["to_belt"])
    return result


# ── Challenges ─────────────────────────────────────────────────────


def _video_gate(student_row, proof: ProofType, premium: Optional[bool], base_xp: int) -> tuple[int, Optional[str]]:
    """XP at stake for the proof type, or a rejection reason."""
    if proof != ProofType.VIDEO:
        return base_xp, None
    is_premium = bool(student_row["premium"]) if premium is None else premium
    if not is_premium:
        return 0, "premium_required"
    return base_xp * _cfg("VIDEO_XP_MULTIPLIER"), None


def _after_pending(outcome: Outcome, student_row, challenge_id: str) -> None:
    if isinstance(outcome, PendingVerification):
        notifications.notify_video_pending(
            ClubStoreDB(student_row["club_id"]).coach_emails(),
            student_row["name"], challenge_id, outcome.pending_xp,
        )


def submit_challenge(
    student_id: int,
    challenge_id: str,
    tier: Optional[str] = None,
    proof_type: str = "trust",
    score: Optional[float] = None,
    *,
    video_url: str = "",
    premium: Optional[bool] = None,
    on: Optional[date] = None,
) -> Outcome:
    """Daily Arena challenge: catalog challenge with a declared tier, or a club custom challenge."""
    _, row, settings = _student_and_settings(student_id)
    on = on or date.today()
    proof = parse_proof_type(proof_type)

    if challenge_id in settings.custom_challenges and tier is None:
        base_xp = resolve_challenge_xp(None, challenge_id, settings.custom_challenges, False)
        tier_name = "CUSTOM"
    elif challenge_id in ARENA_CHALLENGES:
        definition = require_tier(tier or ARENA_CHALLENGES[challenge_id].tier, is_weekly_context=False)
        base_xp, tier_name = definition.xp, definition.tier.value
    else:
        raise ValidationError(f"Unknown challenge {challenge_id!r}.", code="unknown_challenge")

    gate = SubmissionGate(student_id)
    xp, rejection = _video_gate(row, proof, premium, base_xp)
    if rejection:
        return gate.existing("arena", challenge_id, on) or Rejected(
            reason=rejection, new_total_xp=gate.ledger.total(),
        )

    outcome = gate.submit(
        "arena", challenge_id, xp,
        on=on, proof_type=proof, tier=tier_name, score=score, video_url=video_url,
    )
    _after_pending(outcome, row, challenge_id)
    return outcome


def _record_gauntlet_best(student_id: int, challenge_id: str, score: float) -> bool:
    challenge = GAUNTLET_CHALLENGES[challenge_id]
    return PersonalBestStoreDB(student_id).record(
        challenge_id, float(score), higher_is_better=challenge.sort_order == "DESC",
    )


def _apply_verified_best(row) -> dict[str, Any]:
    if row["challenge_kind"] != "gauntlet" or row["score"] is None:
        return {}
    improved = _record_gauntlet_best(row["student_id"], row["challenge_id"], row["score"])
    return {"personal_best": improved}


def submit_gauntlet(
    student_id: int,
    challenge_id: str,
    score: float,
    proof_type: str = "trust",
    *,
    video_url: str = "",
    premium: Optional[bool] = None,
    on: Optional[date] = None,
) -> Outcome:
    """Weekly Gauntlet drill; also tracks the personal best for the drill."""
    challenge = GAUNTLET_CHALLENGES.get(challenge_id)
    if challenge is None:
        raise ValidationError(f"Unknown gauntlet challenge {challenge_id!r}.", code="unknown_challenge")
    if isinstance(score, bool) or not isinstance(score, (int, float)) or score < 0:
        raise ValidationError("Gauntlet score must be a non-negative number.", code="malformed_score")

    _, row, _ = _student_and_settings(student_id)
    on = on or date.today()
    proof = parse_proof_type(proof_type)
    definition = require_tier(challenge.tier, is_weekly_context=True)

    gate = SubmissionGate(student_id)
    xp, rejection = _video_gate(row, proof, premium, definition.xp)
    if rejection:
        return gate.existing("gauntlet", challenge_id, on) or Rejected(
            reason=rejection, new_total_xp=gate.ledger.total(),
        )

    best = {}

    def _record_best(db):
        best["improved"] = _record_gauntlet_best(student_id, challenge_id, score)

    # An unverified video score must not become the personal best; it is
    # applied when the coach approves the submission.
    outcome = gate.submit(
        "gauntlet", challenge_id, xp,
        on=on, proof_type=proof, tier=definition.tier.value, score=float(score),
        video_url=video_url, after_insert=None if proof == ProofType.VIDEO else _record_best,
    )
    if isinstance(outcome, Awarded):
        outcome.details["personal_best"] = best.get("improved", False)
    _after_pending(outcome, row, challenge_id)
    return outcome


def submit_family_challenge(student_id: int, challenge_id: str, won: bool,
                            on: Optional[date] = None) -> Outcome:
    xp = family_xp(challenge_id, won, _cfg("FAMILY_LOSS_RATIO"))
    outcome = SubmissionGate(student_id).submit(
        "family", challenge_id, xp, on=on or date.today(), outcome="win" if won else "loss",
    )
    if isinstance(outcome, Awarded):
        outcome.details["won"] = won
    return outcome


MYSTERY_SLOT = "daily"


def submit_mystery(student_id: int, challenge_id: str, correct: bool,
                   on: Optional[date] = None) -> Outcome:
    """One mystery challenge per day across all mystery challenges."""
    if not challenge_id:
        raise ValidationError("challenge_id is required.", code="missing_challenge")
    xp = _cfg("MYSTERY_DEFAULT_XP") if correct else 0
    outcome = SubmissionGate(student_id).submit(
        "mystery", MYSTERY_SLOT, xp,
        on=on or date.today(), challenge_ref=challenge_id,
        outcome="correct" if correct else "incorrect",
    )
    if isinstance(outcome, Awarded):
        outcome.details["correct"] = correct
    return outcome


def verify_video_submission(submission_id: int, approve: bool, coach_id: Optional[int] = None,
                            coach_club_id: Optional[int] = None) -> Outcome:
    row = SubmissionStoreDB().get(submission_id)
    if row is None:
        raise ValidationError(f"Submission {submission_id} not found.", code="submission_not_found")
    if coach_club_id is not None and StudentStoreDB(row["student_id"]).club_id != coach_club_id:
        raise ValidationError(f"Submission {submission_id} not found.", code="submission_not_found")
    outcome = verify_submission(submission_id, approve, coach_id, after_approve=_apply_verified_best)
    if not isinstance(outcome, AlreadyCompleted):
        log_event("video_" + ("verified" if approve else "rejected"), coach_id, f"submission={submission_id}")
    return outcome


# ── Duels ──────────────────────────────────────────────────────────


@write_retry
def record_duel(
    match_id: str,
    challenger_id: int,
    opponent_id: int,
    winner_id: Optional[int],
    tier: str = "MEDIUM",
    on: Optional[date] = None,
) -> Outcome:
    """Score a finished duel for both students. ``winner_id`` None is a tie.

    The winner earns the tier XP times their pre-duel streak multiplier;
    the other side gets the participation floor and a streak reset.
    """
    if not match_id:
        raise ValidationError("match_id is required.", code="missing_match_id")
    if challenger_id == opponent_id:
        raise ValidationError("A student cannot duel themselves.", code="self_duel")
    if winner_id not in (None, challenger_id, opponent_id):
        raise ValidationError("Winner must be one of the two duelists.", code="invalid_winner")
    base_xp = require_tier(tier, is_weekly_context=False).xp
    on = on or date.today()
    floor = _cfg("DUEL_LOSS_XP")

    rows = {sid: StudentStoreDB(sid).active_row() for sid in (challenger_id, opponent_id)}
    if rows[challenger_id]["club_id"] != rows[opponent_id]["club_id"]:
        raise ValidationError("Duelists must belong to the same club.", code="cross_club_duel")

    db = get_db()
    try:
        cur = db.execute(
            "INSERT INTO duels (match_id, challenger_id, opponent_id, winner_id, tier, "
            "challenger_xp, opponent_xp, created_at) VALUES (?, ?, ?, ?, ?, 0, 0, ?)",
            (match_id, challenger_id, opponent_id, winner_id, tier.upper(), now_iso()),
        )
    except sqlite3.IntegrityError:
        db.rollback()
        prior = db.execute("SELECT * FROM duels WHERE match_id = ?", (match_id,)).fetchone()
        if prior is None:
            raise PersistenceConflict(f"Duel {match_id} conflicted but no prior record was found.")
        return AlreadyCompleted(
            previous_xp=prior["challenger_xp"],
            new_total_xp=XPLedger(challenger_id).total(),
            previous_status="COMPLETED",
        )

    totals = {}
    try:
        # The INSERT holds SQLite's write lock, so streaks read from here on
        # cannot be overwritten by a concurrent duel before this one commits.
        awards = {}
        for sid in (challenger_id, opponent_id):
            r = StudentStoreDB(sid).row()
            state = StreakState.from_row(r["duel_streak"], r["duel_last_win_date"])
            if winner_id is None:
                awards[sid] = score_tie(state, floor)
            else:
                awards[sid] = score_duel(state, base_xp, sid == winner_id, on, floor)

        db.execute(
            "UPDATE duels SET challenger_xp = ?, opponent_xp = ? WHERE id = ?",
            (awards[challenger_id].xp, awards[opponent_id].xp, cur.lastrowid),
        )
        for sid, award in awards.items():
            after = award.streak_after
            db.execute(
                "UPDATE students SET duel_streak = ?, duel_last_win_date = ? WHERE id = ?",
                (after.count, after.last_date_iso(), sid),
            )
            StudentStoreDB(sid).touch_activity(on)
            totals[sid] = XPLedger(sid).credit(award.xp, "duel", match_id)
        db.commit()
    except Exception:
        db.rollback()
        raise

    mine, theirs = awards[challenger_id], awards[opponent_id]
    return Awarded(
        xp_awarded=mine.xp,
        new_total_xp=totals[challenger_id],
        details={
            "match_id": match_id,
            "result": "tie" if winner_id is None else ("win" if winner_id == challenger_id else "loss"),
            "multiplier": mine.multiplier,
            "duel_streak": mine.streak_after.count,
            "opponent": {
                "student_id": opponent_id,
                "xp_awarded": theirs.xp,
                "new_total_xp": totals[opponent_id],
                "duel_streak": theirs.streak_after.count,
            },
        },
    )


# ── Habits ─────────────────────────────────────────────────────────


def _habit_tracker(student_id: int) -> HabitTracker:
    return HabitTracker(student_id, _cfg("HABIT_XP"), _cfg("DAILY_HABIT_XP_CAP"))


def check_habit(student_id: int, habit_id: str, on: Optional[date] = None) -> Outcome:
    return _habit_tracker(student_id).check(habit_id, on or date.today())


def habit_status(student_id: int, on: Optional[date] = None) -> dict[str, Any]:
    StudentStoreDB(student_id).active_row()
    return _habit_tracker(student_id).status(on or date.today())


# ── Read models ────────────────────────────────────────────────────


def get_leaderboard(club_id: int, period: str = "monthly", today: Optional[date] = None) -> list[dict]:
    ClubStoreDB(club_id)._row()
    entries = LeaderboardStoreDB(club_id).get(period, today, ttl=_cfg("LEADERBOARD_CACHE_TTL"))
    return [e.to_dict() for e in entries]


def get_belt_projection(student_id: int, weekly_attendance: Optional[float] = None,
                        today: Optional[date] = None) -> dict[str, Any]:
    _, row, settings = _student_and_settings(student_id)
    today = today or date.today()
    if weekly_attendance is None:
        join = date.fromisoformat(row["join_date"]) if row["join_date"] else None
        weekly_attendance = personalized_attendance(row["attendance_count"], join, today)
    elif weekly_attendance <= 0:
        raise ValidationError("Weekly attendance must be positive.", code="invalid_attendance")
    projection = project_promotion(
        settings, row["belt_index"], row["current_pts"], weekly_attendance, today,
        banked_pts=row["banked_pts"],
    )
    return projection.to_dict()


def progression_snapshot(student_id: int, today: Optional[date] = None) -> dict[str, Any]:
    """Everything a client needs to rehydrate its local progression state."""
    student, row, settings = _student_and_settings(student_id)
    today = today or date.today()
    pending = SubmissionStoreDB().pending_xp(student_id)
    return {
        "student": student.to_dict(settings),
        "avatar": avatar_tier(row["total_xp"]),
        "duel_multiplier": multiplier_for(row["duel_streak"]),
        "pending_xp": pending,
        "habits": _habit_tracker(student_id).status(today),
        "pet": PetStoreDB(student_id).state(),
        "reconcile_interval_seconds": _cfg("RECONCILE_INTERVAL_SECONDS"),
    }


# ── Pet economy ────────────────────────────────────────────────────


@write_retry
def spin_lottery(student_id: int, rng: Optional[random.Random] = None) -> dict[str, Any]:
    """Debit SPIN_COST and add one weighted-random item, atomically."""
    StudentStoreDB(student_id).active_row()
    cost = _cfg("SPIN_COST")
    ledger = XPLedger(student_id)
    pet = PetStoreDB(student_id)
    db = get_db()
    try:
        item = draw(rng=rng)
        balance = ledger.debit(cost, "lottery", item.name)
        pet.add_item(item)
        db.commit()
    except Exception:
        db.rollback()
        raise
    logger.info("Lottery spin student=%s item=%s", student_id, item.name, extra={"student_id": student_id})
    return {
        "item": item.to_dict(),
        "spin_cost": cost,
        "new_xp_balance": balance,
        "new_total_xp": ledger.total(),
        "inventory": pet.inventory(),
    }


def feed_pet(student_id: int, item_name: str) -> dict[str, Any]:
    StudentStoreDB(student_id).active_row()
    pet = PetStoreDB(student_id)
    result = pet.feed(item_name)
    return {"pet": pet.state(), "inventory": pet.inventory(), **result}


# ── Admin ──────────────────────────────────────────────────────────


def correct_xp(student_id: int, delta: int, reason: str, actor_id: Optional[int] = None) -> dict[str, Any]:
    if isinstance(delta, bool) or not isinstance(delta, int) or delta == 0:
        raise ValidationError("delta must be a non-zero integer.", code="invalid_delta")
    total = XPLedger(student_id).correct(delta, reason)
    log_event("xp_correction", actor_id, f"student={student_id} delta={delta} reason={reason}")
    return {"status": "corrected", "new_total_xp": total}
