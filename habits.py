"""Daily XP Cap Enforcer for habit check-ins.

A check is recorded once per (student, habit, day). XP is awarded only
while the day's running total in daily_activity is below the cap; past it
the check is still recorded, with zero XP.
"""

from __future__ import annotations

import logging
import re
import sqlite3
from datetime import date, timedelta

from database import get_db, now_iso, write_retry
from db_stores import StudentStoreDB
from ledger import XPLedger
from outcomes import AlreadyCompleted, Awarded, Outcome, PersistenceConflict, ValidationError
from streaks import habit_streak

logger = logging.getLogger(__name__)

HABIT_ID_RE = re.compile(r"^[a-z0-9][a-z0-9_\-]{0,63}$")


def validate_habit_id(habit_id: str) -> str:
    habit_id = (habit_id or "").strip().lower()
    if not HABIT_ID_RE.match(habit_id):
        raise ValidationError(f"Invalid habit id {habit_id!r}.", code="invalid_habit")
    return habit_id


class HabitTracker:
    def __init__(self, student_id: int, habit_xp: int = 10, daily_cap: int = 60):
        self.student_id = student_id
        self.habit_xp = habit_xp
        self.daily_cap = daily_cap
        self.ledger = XPLedger(student_id)

    def daily_total(self, on: date) -> int:
        db = get_db()
        row = db.execute(
            "SELECT habit_xp FROM daily_activity WHERE student_id = ? AND activity_date = ?",
            (self.student_id, on.isoformat()),
        ).fetchone()
        return row["habit_xp"] if row else 0

    def _cap_details(self, daily_total: int) -> dict:
        return {
            "daily_total": daily_total,
            "daily_cap": self.daily_cap,
            "at_cap": daily_total >= self.daily_cap,
        }

    @write_retry
    def check(self, habit_id: str, on: date) -> Outcome:
        habit_id = validate_habit_id(habit_id)
        student = StudentStoreDB(self.student_id)
        student.active_row()
        day = on.isoformat()

        db = get_db()
        try:
            cur = db.execute(
                "INSERT INTO habit_logs (student_id, habit_id, log_date, xp_awarded, created_at) "
                "VALUES (?, ?, ?, 0, ?)",
                (self.student_id, habit_id, day, now_iso()),
            )
        except sqlite3.IntegrityError:
            db.rollback()
            return self._already_completed(habit_id, day)

        try:
            log_id = cur.lastrowid
            # The habit_logs INSERT holds SQLite's write lock, so this
            # read and the UPDATE below cannot interleave with another writer.
            db.execute(
                "INSERT OR IGNORE INTO daily_activity (student_id, activity_date) VALUES (?, ?)",
                (self.student_id, day),
            )
            running = self.daily_total(on)
            award = max(0, min(self.habit_xp, self.daily_cap - running))
            if award:
                db.execute(
                    "UPDATE daily_activity SET habit_xp = habit_xp + ? "
                    "WHERE student_id = ? AND activity_date = ? AND habit_xp + ? <= ?",
                    (award, self.student_id, day, award, self.daily_cap),
                )
                db.execute("UPDATE habit_logs SET xp_awarded = ? WHERE id = ?", (award, log_id))
            student.touch_activity(on)
            total = self.ledger.credit(award, f"habit:{habit_id}", str(log_id))
            db.commit()
        except Exception:
            db.rollback()
            raise

        new_running = running + award
        if not award:
            logger.info(
                "Habit %s recorded at cap student=%s (%d/%d)",
                habit_id, self.student_id, new_running, self.daily_cap,
                extra={"student_id": self.student_id},
            )
        return Awarded(
            xp_awarded=award,
            new_total_xp=total,
            submission_id=log_id,
            details=self._cap_details(new_running),
        )

    def _already_completed(self, habit_id: str, day: str) -> AlreadyCompleted:
        db = get_db()
        row = db.execute(
            "SELECT id, xp_awarded FROM habit_logs WHERE student_id = ? AND habit_id = ? AND log_date = ?",
            (self.student_id, habit_id, day),
        ).fetchone()
        if row is None:
            raise PersistenceConflict("Habit check conflicted but no prior record was found.")
        return AlreadyCompleted(
            previous_xp=row["xp_awarded"],
            new_total_xp=self.ledger.total(),
            submission_id=row["id"],
            previous_status="COMPLETED",
            details=self._cap_details(self.daily_total(date.fromisoformat(day))),
        )

    def status(self, on: date) -> dict:
        db = get_db()
        rows = db.execute(
            "SELECT habit_id, xp_awarded FROM habit_logs WHERE student_id = ? AND log_date = ? "
            "ORDER BY id",
            (self.student_id, on.isoformat()),
        ).fetchall()
        since = (on - timedelta(days=366)).isoformat()
        dates = db.execute(
            "SELECT DISTINCT log_date FROM habit_logs WHERE student_id = ? AND log_date >= ?",
            (self.student_id, since),
        ).fetchall()
        daily_total = self.daily_total(on)
        return {
            "date": on.isoformat(),
            "completed_habits": [r["habit_id"] for r in rows],
            "habit_xp": {r["habit_id"]: r["xp_awarded"] for r in rows},
            **self._cap_details(daily_total),
            "total_xp": self.ledger.total(),
            "habit_streak": habit_streak({date.fromisoformat(r["log_date"]) for r in dates}, on),
        }
