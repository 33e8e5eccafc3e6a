"""
Audit logging: records coach and admin actions that move XP or belts.

Events are written to both the audit_log table and structured logging.
"""

from __future__ import annotations

import logging
import sqlite3

from flask import has_request_context, request

from database import get_db, now_iso

logger = logging.getLogger(__name__)


def log_event(action: str, user_id: int | None = None, detail: str = "") -> None:
    """Insert an audit log entry and emit a structured log line."""
    ip = (request.remote_addr or "") if has_request_context() else ""
    ua = request.headers.get("User-Agent", "") if has_request_context() else ""

    try:
        db = get_db()
        db.execute(
            "INSERT INTO audit_log (user_id, action, detail, ip_address, user_agent, created_at) "
            "VALUES (?, ?, ?, ?, ?, ?)",
            (user_id, action, detail, ip, ua, now_iso()),
        )
        db.commit()
    except sqlite3.Error as e:
        logger.warning("audit write failed for %s: %s", action, e)

    logger.info("audit: %s user_id=%s detail=%s ip=%s", action, user_id, detail, ip)


def recent_events(limit: int = 50) -> list[dict]:
    db = get_db()
    rows = db.execute(
        "SELECT id, user_id, action, detail, created_at FROM audit_log ORDER BY id DESC LIMIT ?",
        (limit,),
    ).fetchall()
    return [dict(r) for r in rows]
