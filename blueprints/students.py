"""Student progression read models, reconciliation pull, and admin XP correction."""

from __future__ import annotations

from flask import Blueprint, jsonify, request
from flask_login import current_user, login_required

import progression
from helpers import admin_required, json_body, require_student_access
from ledger import XPLedger
from outcomes import ValidationError

bp = Blueprint("students", __name__)


@bp.route("/api/students/<int:student_id>/progress")
@login_required
def api_progress(student_id: int):
    require_student_access(student_id)
    return jsonify(progression.progression_snapshot(student_id))


@bp.route("/api/students/<int:student_id>/xp")
@login_required
def api_xp(student_id: int):
    """Authoritative totals for the client's periodic reconciliation pull."""
    require_student_access(student_id)
    ledger = XPLedger(student_id)
    return jsonify({
        "student_id": student_id,
        "new_total_xp": ledger.total(),
        "xp_balance": ledger.balance(),
    })


@bp.route("/api/students/<int:student_id>/xp/history")
@login_required
def api_xp_history(student_id: int):
    require_student_access(student_id)
    limit = min(request.args.get("limit", 50, type=int), 200)
    return jsonify({"transactions": XPLedger(student_id).history(limit)})


@bp.route("/api/students/<int:student_id>/projection")
@login_required
def api_projection(student_id: int):
    require_student_access(student_id)
    attendance = request.args.get("attendance", type=float)
    return jsonify(progression.get_belt_projection(student_id, attendance))


@bp.route("/api/students/<int:student_id>/xp/correct", methods=["POST"])
@admin_required
def api_correct_xp(student_id: int):
    data = json_body()
    delta = data.get("delta")
    if not isinstance(delta, int):
        raise ValidationError("delta must be an integer.", code="invalid_delta")
    return jsonify(progression.correct_xp(student_id, delta, str(data.get("reason", "")), current_user.id))
