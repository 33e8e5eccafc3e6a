"""Class grading, normalization preview, and belt promotion routes."""

from __future__ import annotations

from flask import Blueprint, jsonify
from flask_login import current_user, login_required

import progression
from helpers import coach_required, json_body, parse_date_arg, require_student_access
from scoring import normalize_grading

bp = Blueprint("grading", __name__)


@bp.route("/api/grading/normalize", methods=["POST"])
@login_required
def api_normalize():
    """Preview PTS/XP for a score set without persisting anything."""
    data = json_body()
    result = normalize_grading(
        data.get("scores", []),
        data.get("coach_bonus"),
        data.get("homework"),
        coach_bonus_enabled=bool(data.get("coach_bonus_enabled", False)),
        homework_enabled=bool(data.get("homework_enabled", False)),
    )
    return jsonify(result.to_dict())


@bp.route("/api/students/<int:student_id>/grading", methods=["POST"])
@coach_required
def api_sync_grading(student_id: int):
    require_student_access(student_id)
    data = json_body()
    result = progression.sync_grading(
        student_id,
        data.get("scores", []),
        coach_bonus=data.get("coach_bonus"),
        homework=data.get("homework"),
        session_date=parse_date_arg(data.get("session_date")),
        graded_by=current_user.id,
    )
    return jsonify(result)


@bp.route("/api/students/<int:student_id>/promote", methods=["POST"])
@coach_required
def api_promote(student_id: int):
    require_student_access(student_id)
    return jsonify(progression.promote(student_id, actor_id=current_user.id))
