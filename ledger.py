"""Server-side XP ledger: the single authoritative XP total per student.

Every change is a single relative UPDATE (never read-modify-write) plus a
journal row in xp_transactions. ``credit``/``debit`` join the caller's
transaction; ``award``/``spend``/``correct`` are standalone transactions.
"""

from __future__ import annotations

import logging

from database import get_db, now_iso, write_retry
from leaderboard import invalidate as invalidate_leaderboard
from outcomes import InsufficientBalance, StudentNotFound, ValidationError

logger = logging.getLogger(__name__)

EARN = "EARN"
SPEND = "SPEND"
CORRECTION = "CORRECTION"


class XPLedger:
    def __init__(self, student_id: int):
        self.student_id = student_id

    def _row(self):
        db = get_db()
        row = db.execute(
            "SELECT id, club_id, total_xp, xp_spent, archived FROM students WHERE id = ?",
            (self.student_id,),
        ).fetchone()
        if row is None or row["archived"]:
            raise StudentNotFound(f"Student {self.student_id} not found.")
        return row

    def total(self) -> int:
        """Lifetime XP (never decreases through normal play)."""
        return self._row()["total_xp"]

    def balance(self) -> int:
        """Spendable XP: lifetime earned minus spent."""
        row = self._row()
        return row["total_xp"] - row["xp_spent"]

    def _journal(self, amount: int, tx_type: str, source: str, reference: str) -> dict:
        db = get_db()
        row = self._row()
        balance = row["total_xp"] - row["xp_spent"]
        db.execute(
            "INSERT INTO xp_transactions "
            "(student_id, amount, type, source, reference, balance_after, created_at) "
            "VALUES (?, ?, ?, ?, ?, ?, ?)",
            (self.student_id, amount, tx_type, source, reference, balance, now_iso()),
        )
        invalidate_leaderboard(row["club_id"])
        return {"total_xp": row["total_xp"], "balance": balance}

    # --- In-transaction primitives (caller commits) ---

    def credit(self, amount: int, source: str, reference: str = "") -> int:
        """Add earned XP; returns the new lifetime total."""
        if amount < 0:
            raise ValidationError("Credit amount must be non-negative.", code="negative_amount")
        row = self._row()
        if amount == 0:
            return row["total_xp"]
        get_db().execute(
            "UPDATE students SET total_xp = total_xp + ? WHERE id = ?",
            (amount, self.student_id),
        )
        state = self._journal(amount, EARN, source, reference)
        logger.info(
            "XP +%d student=%s source=%s total=%d",
            amount, self.student_id, source, state["total_xp"],
            extra={"student_id": self.student_id},
        )
        return state["total_xp"]

    def debit(self, amount: int, source: str, reference: str = "") -> int:
        """Spend XP atomically with the balance check; returns the new balance."""
        if amount <= 0:
            raise ValidationError("Debit amount must be positive.", code="non_positive_amount")
        self._row()
        cur = get_db().execute(
            "UPDATE students SET xp_spent = xp_spent + ? "
            "WHERE id = ? AND total_xp - xp_spent >= ?",
            (amount, self.student_id, amount),
        )
        if cur.rowcount == 0:
            raise InsufficientBalance(balance=self.balance(), required=amount)
        state = self._journal(-amount, SPEND, source, reference)
        logger.info(
            "XP -%d student=%s source=%s balance=%d",
            amount, self.student_id, source, state["balance"],
            extra={"student_id": self.student_id},
        )
        return state["balance"]

    # --- Standalone operations ---

    @write_retry
    def award(self, amount: int, source: str, reference: str = "") -> int:
        db = get_db()
        try:
            total = self.credit(amount, source, reference)
            db.commit()
        except Exception:
            db.rollback()
            raise
        return total

    @write_retry
    def spend(self, amount: int, source: str, reference: str = "") -> int:
        db = get_db()
        try:
            balance = self.debit(amount, source, reference)
            db.commit()
        except Exception:
            db.rollback()
            raise
        return balance

    @write_retry
    def correct(self, delta: int, reason: str) -> int:
        """Admin correction, the only path that may lower lifetime XP.

        Lifetime XP is floored at what the student has already spent.
        """
        if not reason.strip():
            raise ValidationError("A correction needs a reason.", code="missing_reason")
        db = get_db()
        try:
            before = self._row()["total_xp"]
            db.execute(
                "UPDATE students SET total_xp = MAX(xp_spent, total_xp + ?) WHERE id = ?",
                (delta, self.student_id),
            )
            applied = self._row()["total_xp"] - before
            state = self._journal(applied, CORRECTION, "admin", reason)
            db.commit()
        except Exception:
            db.rollback()
            raise
        logger.warning(
            "XP correction %+d (requested %+d) student=%s reason=%s",
            applied, delta, self.student_id, reason,
            extra={"student_id": self.student_id},
        )
        return state["total_xp"]

    def history(self, limit: int = 50) -> list[dict]:
        db = get_db()
        rows = db.execute(
            "SELECT id, amount, type, source, reference, balance_after, created_at "
            "FROM xp_transactions WHERE student_id = ? "
            "ORDER BY id DESC LIMIT ?",
            (self.student_id, limit),
        ).fetchall()
        return [dict(r) for r in rows]
