"""
Caller identity: Flask-Login wired to an upstream identity header.

Authentication happens in front of this service (gateway / main app); each
request carries the caller's users.id in IDENTITY_HEADER. This module only
resolves that id to a role-bearing User.
"""

from __future__ import annotations

from flask import Blueprint, current_app, jsonify, request
from flask_login import LoginManager, UserMixin, current_user, login_required

from database import get_db

ROLES = ("student", "parent", "coach", "admin")

auth_bp = Blueprint("auth", __name__)
login_manager = LoginManager()


class User(UserMixin):
    """Wraps a DB user row for Flask-Login."""

    def __init__(self, id: int, name: str, role: str = "student",
                 club_id: int | None = None, student_id: int | None = None):
        self.id = id
        self.name = name
        self.role = role
        self.club_id = club_id
        self.student_id = student_id

    @property
    def is_coach(self) -> bool:
        return self.role in ("coach", "admin")

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "role": self.role,
            "club_id": self.club_id,
            "student_id": self.student_id,
        }

    @staticmethod
    def get(user_id: int):
        db = get_db()
        row = db.execute(
            "SELECT id, name, role, club_id, student_id FROM users WHERE id = ?", (user_id,)
        ).fetchone()
        if row and row["role"] in ROLES:
            return User(row["id"], row["name"], row["role"], row["club_id"], row["student_id"])
        return None


@login_manager.user_loader
def load_user(user_id):
    return User.get(int(user_id))


@login_manager.request_loader
def load_user_from_request(req):
    raw = req.headers.get(current_app.config.get("IDENTITY_HEADER", "X-Dojo-User"), "")
    if not raw.isdigit():
        return None
    return User.get(int(raw))


@login_manager.unauthorized_handler
def unauthorized():
    return jsonify({"error": "Authentication required", "code": "unauthenticated"}), 401


@auth_bp.route("/api/me")
@login_required
def me():
    return jsonify(current_user.to_dict())
