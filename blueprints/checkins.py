"""Habit check-in routes."""

from __future__ import annotations

from flask import Blueprint, jsonify
from flask_login import login_required

import progression
from extensions import limiter
from helpers import json_body, outcome_response, resolve_student_id

bp = Blueprint("checkins", __name__)


@bp.route("/api/habits/check", methods=["POST"])
@login_required
@limiter.limit("60 per minute")
def api_check_habit():
    # The server's calendar day is the period; clients cannot pick a date.
    data = json_body()
    outcome = progression.check_habit(resolve_student_id(data), data.get("habit_id", ""))
    return outcome_response(outcome)


@bp.route("/api/habits/status")
@login_required
def api_habit_status():
    return jsonify(progression.habit_status(resolve_student_id()))
