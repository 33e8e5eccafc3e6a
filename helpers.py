"""
Shared helpers used across blueprints.

Role decorators, student-scope resolution, and request parsing.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import date
from functools import wraps
from typing import Any

from flask import abort, jsonify, request
from flask_login import current_user

from auth import login_manager
from db_stores import StudentStoreDB
from outcomes import ValidationError


def coach_required(f: Callable) -> Callable:
    """Decorator that requires user to have coach or admin role."""
    @wraps(f)
    def decorated(*args: Any, **kwargs: Any) -> Any:
        if not current_user.is_authenticated:
            return login_manager.unauthorized()
        if not getattr(current_user, "is_coach", False):
            abort(403)
        return f(*args, **kwargs)
    return decorated


def admin_required(f: Callable) -> Callable:
    @wraps(f)
    def decorated(*args: Any, **kwargs: Any) -> Any:
        if not current_user.is_authenticated:
            return login_manager.unauthorized()
        if not getattr(current_user, "is_admin", False):
            abort(403)
        return f(*args, **kwargs)
    return decorated


def json_body() -> dict[str, Any]:
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationError("Expected a JSON object body.", code="invalid_body")
    return data


def can_access_student(student_id: int) -> bool:
    """Students see themselves, parents their linked child, coaches their club."""
    if current_user.is_admin:
        return True
    if current_user.role in ("student", "parent"):
        return current_user.student_id == student_id
    if current_user.is_coach:
        return StudentStoreDB.exists(student_id) and StudentStoreDB(student_id).club_id == current_user.club_id
    return False


def resolve_student_id(data: dict[str, Any] | None = None) -> int:
    """The student an action applies to: the caller's own, or an explicit one
    a parent/coach is allowed to act for."""
    requested = (data or {}).get("student_id", request.args.get("student_id"))
    if requested is None:
        if current_user.student_id is None:
            raise ValidationError("student_id is required.", code="missing_student")
        return current_user.student_id
    try:
        student_id = int(requested)
    except (TypeError, ValueError):
        raise ValidationError("student_id must be an integer.", code="invalid_student") from None
    if not can_access_student(student_id):
        abort(403)
    return student_id


def require_student_access(student_id: int) -> None:
    if not can_access_student(student_id):
        abort(403)


def parse_date_arg(value: str | None) -> date | None:
    if not value:
        return None
    try:
        return date.fromisoformat(value)
    except ValueError:
        raise ValidationError(f"Invalid date {value!r}.", code="invalid_date") from None


def outcome_response(outcome):
    """Serialize a progression outcome. Business outcomes are always 200."""
    return jsonify(outcome.to_dict())
