"""Club leaderboard routes."""

from __future__ import annotations

from flask import Blueprint, abort, jsonify, request
from flask_login import current_user, login_required

import progression

bp = Blueprint("rankings", __name__)


@bp.route("/api/clubs/<int:club_id>/leaderboard")
@login_required
def api_leaderboard(club_id: int):
    if not current_user.is_admin and current_user.club_id != club_id:
        abort(403)
    period = request.args.get("period", "monthly")
    return jsonify({
        "club_id": club_id,
        "period": period,
        "entries": progression.get_leaderboard(club_id, period),
    })
