"""Arena, Gauntlet, family, mystery, and duel submission routes, plus the
coach video-review queue."""

from __future__ import annotations

from flask import Blueprint, jsonify, request
from flask_login import current_user, login_required

import progression
from challenge_tiers import ARENA_CHALLENGES, FAMILY_CHALLENGES, GAUNTLET_CHALLENGES, TIER_TABLE
from db_stores import SubmissionStoreDB
from extensions import limiter
from helpers import (
    coach_required,
    json_body,
    outcome_response,
    require_student_access,
    resolve_student_id,
)
from outcomes import ValidationError

bp = Blueprint("challenges", __name__)

SUBMIT_LIMIT = "30 per minute"


def _required(data: dict, key: str):
    value = data.get(key)
    if value in (None, ""):
        raise ValidationError(f"{key} is required.", code=f"missing_{key}")
    return value


@bp.route("/api/challenges/catalog")
@login_required
def api_catalog():
    return jsonify({
        "tiers": [
            {"tier": d.tier.value, "xp": d.xp, "weekly_only": d.weekly_only}
            for d in TIER_TABLE.values()
        ],
        "arena": [
            {"id": c.id, "name": c.name, "category": c.category, "tier": c.tier.value}
            for c in ARENA_CHALLENGES.values()
        ],
        "gauntlet": [
            {
                "id": c.id, "name": c.name, "day_of_week": c.day_of_week,
                "score_type": c.score_type.value, "sort_order": c.sort_order, "tier": c.tier.value,
            }
            for c in GAUNTLET_CHALLENGES.values()
        ],
        "family": [{"id": cid, "xp": xp} for cid, xp in FAMILY_CHALLENGES.items()],
    })


@bp.route("/api/challenges/arena", methods=["POST"])
@login_required
@limiter.limit(SUBMIT_LIMIT)
def api_submit_arena():
    data = json_body()
    outcome = progression.submit_challenge(
        resolve_student_id(data),
        _required(data, "challenge_id"),
        tier=data.get("tier"),
        proof_type=data.get("proof_type", "trust"),
        score=data.get("score"),
        video_url=data.get("video_url", ""),
    )
    return outcome_response(outcome)


@bp.route("/api/challenges/gauntlet", methods=["POST"])
@login_required
@limiter.limit(SUBMIT_LIMIT)
def api_submit_gauntlet():
    data = json_body()
    outcome = progression.submit_gauntlet(
        resolve_student_id(data),
        _required(data, "challenge_id"),
        _required(data, "score"),
        proof_type=data.get("proof_type", "trust"),
        video_url=data.get("video_url", ""),
    )
    return outcome_response(outcome)


@bp.route("/api/challenges/family", methods=["POST"])
@login_required
@limiter.limit(SUBMIT_LIMIT)
def api_submit_family():
    data = json_body()
    outcome = progression.submit_family_challenge(
        resolve_student_id(data),
        _required(data, "challenge_id"),
        bool(data.get("won", False)),
    )
    return outcome_response(outcome)


@bp.route("/api/challenges/mystery", methods=["POST"])
@login_required
@limiter.limit(SUBMIT_LIMIT)
def api_submit_mystery():
    data = json_body()
    outcome = progression.submit_mystery(
        resolve_student_id(data),
        _required(data, "challenge_id"),
        bool(data.get("correct", False)),
    )
    return outcome_response(outcome)


@bp.route("/api/duels", methods=["POST"])
@coach_required
def api_record_duel():
    """Duel results are entered by the coach refereeing the match."""
    data = json_body()
    challenger_id = int(_required(data, "challenger_id"))
    opponent_id = int(_required(data, "opponent_id"))
    require_student_access(challenger_id)
    require_student_access(opponent_id)
    winner = data.get("winner_id")
    outcome = progression.record_duel(
        str(_required(data, "match_id")),
        challenger_id,
        opponent_id,
        int(winner) if winner is not None else None,
        tier=data.get("tier", "MEDIUM"),
    )
    return outcome_response(outcome)


@bp.route("/api/submissions/pending")
@coach_required
def api_pending_submissions():
    return jsonify({"submissions": SubmissionStoreDB().pending_for_club(current_user.club_id)})


@bp.route("/api/submissions/<int:submission_id>/verify", methods=["POST"])
@coach_required
def api_verify_submission(submission_id: int):
    data = json_body()
    decision = str(_required(data, "decision")).lower()
    if decision not in ("verified", "rejected"):
        raise ValidationError("decision must be 'verified' or 'rejected'.", code="invalid_decision")
    outcome = progression.verify_video_submission(
        submission_id,
        approve=decision == "verified",
        coach_id=current_user.id,
        coach_club_id=None if current_user.is_admin else current_user.club_id,
    )
    return outcome_response(outcome)


@bp.route("/api/students/<int:student_id>/challenges/history")
@login_required
def api_challenge_history(student_id: int):
    require_student_access(student_id)
    limit = min(request.args.get("limit", 50, type=int), 200)
    return jsonify({"history": SubmissionStoreDB().history(student_id, limit)})
