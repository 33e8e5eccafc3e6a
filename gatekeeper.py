"""Submission Gatekeeper: one award per (student, challenge, period).

The UNIQUE(student_id, challenge_kind, challenge_id, period_key) constraint
on challenge_submissions is the correctness mechanism: a duplicate INSERT
fails, and the caller gets the earlier row back as ``AlreadyCompleted``.
Video proof is recorded as PENDING with the XP withheld until a coach
verifies or rejects it, which can happen at most once.
"""

from __future__ import annotations

import logging
import sqlite3
from datetime import date
from enum import Enum
from typing import Optional

from database import get_db, now_iso, write_retry
from db_stores import StudentStoreDB, SubmissionStoreDB
from ledger import XPLedger
from outcomes import (
    AlreadyCompleted,
    Awarded,
    Outcome,
    PendingVerification,
    PersistenceConflict,
    Rejected,
    ValidationError,
)

logger = logging.getLogger(__name__)


class SubmissionStatus(str, Enum):
    COMPLETED = "COMPLETED"
    PENDING = "PENDING"
    VERIFIED = "VERIFIED"
    REJECTED = "REJECTED"


class ProofType(str, Enum):
    TRUST = "trust"
    VIDEO = "video"


PERIOD_BY_KIND = {
    "arena": "daily",
    "family": "daily",
    "mystery": "daily",
    "gauntlet": "weekly",
}


def period_key(kind: str, on: date) -> str:
    """Calendar day for daily kinds, ISO week (e.g. 2026-W07) for weekly ones."""
    try:
        period = PERIOD_BY_KIND[kind]
    except KeyError:
        raise ValidationError(f"Unknown challenge kind {kind!r}.", code="unknown_kind") from None
    if period == "weekly":
        year, week, _ = on.isocalendar()
        return f"{year}-W{week:02d}"
    return on.isoformat()


def parse_proof_type(value: object) -> ProofType:
    try:
        return ProofType(str(value or "trust").lower())
    except ValueError:
        raise ValidationError(f"Unknown proof type {value!r}.", code="unknown_proof_type") from None


def _awarded_xp(row) -> int:
    if row["status"] == SubmissionStatus.PENDING.value:
        return row["pending_xp"]
    return row["xp_awarded"]


class SubmissionGate:
    """Per-student submission entry point."""

    def __init__(self, student_id: int):
        self.student_id = student_id
        self.ledger = XPLedger(student_id)

    def _already_completed(self, kind: str, challenge_id: str, key: str) -> AlreadyCompleted:
        row = SubmissionStoreDB().find(self.student_id, kind, challenge_id, key)
        if row is None:
            raise PersistenceConflict("Submission conflicted but no prior record was found.")
        logger.info(
            "Duplicate %s submission student=%s challenge=%s period=%s",
            kind, self.student_id, challenge_id, key,
            extra={"student_id": self.student_id},
        )
        return AlreadyCompleted(
            previous_xp=_awarded_xp(row),
            new_total_xp=self.ledger.total(),
            submission_id=row["id"],
            previous_status=row["status"],
        )

    def existing(self, kind: str, challenge_id: str, on: date) -> Optional[AlreadyCompleted]:
        """Read-only pre-check; the INSERT in submit() stays the authority."""
        key = period_key(kind, on)
        if SubmissionStoreDB().find(self.student_id, kind, challenge_id, key) is None:
            return None
        return self._already_completed(kind, challenge_id, key)

    @write_retry
    def submit(
        self,
        kind: str,
        challenge_id: str,
        xp: int,
        *,
        on: date,
        proof_type: ProofType = ProofType.TRUST,
        tier: str = "",
        score: Optional[float] = None,
        outcome: str = "",
        challenge_ref: str = "",
        video_url: str = "",
        after_insert=None,
    ) -> Outcome:
        """Record a submission and award (or withhold) its XP in one transaction.

        ``after_insert(db)`` runs inside the transaction once the slot is
        claimed, for side records such as personal bests.
        """
        if xp < 0:
            raise ValidationError("XP must be non-negative.", code="negative_xp")
        key = period_key(kind, on)
        is_video = proof_type == ProofType.VIDEO
        status = SubmissionStatus.PENDING if is_video else SubmissionStatus.COMPLETED

        student = StudentStoreDB(self.student_id)
        student.active_row()

        db = get_db()
        try:
            cur = db.execute(
                "INSERT INTO challenge_submissions (student_id, challenge_kind, challenge_id, "
                "challenge_ref, period_key, tier, proof_type, score, outcome, status, "
                "xp_awarded, pending_xp, video_url, created_at) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (self.student_id, kind, challenge_id, challenge_ref, key, tier,
                 proof_type.value, score, outcome, status.value,
                 0 if is_video else xp, xp if is_video else 0, video_url, now_iso()),
            )
        except sqlite3.IntegrityError:
            db.rollback()
            return self._already_completed(kind, challenge_id, key)

        try:
            submission_id = cur.lastrowid
            student.touch_activity(on)
            if after_insert is not None:
                after_insert(db)
            if is_video:
                total = self.ledger.total()
            else:
                total = self.ledger.credit(xp, f"{kind}:{challenge_id}", str(submission_id))
            db.commit()
        except Exception:
            db.rollback()
            raise

        if is_video:
            logger.info(
                "Video submission %s pending (%d XP) student=%s",
                submission_id, xp, self.student_id,
                extra={"student_id": self.student_id},
            )
            return PendingVerification(submission_id=submission_id, pending_xp=xp, new_total_xp=total)
        return Awarded(xp_awarded=xp, new_total_xp=total, submission_id=submission_id)


@write_retry
def verify_submission(submission_id: int, approve: bool, coach_id: Optional[int] = None,
                      after_approve=None) -> Outcome:
    """Coach decision on a PENDING video submission.

    The conditional UPDATE only matches a PENDING row, so the transition
    (and the XP credit) happens at most once even under concurrent calls.
    ``after_approve(row)`` runs inside the same transaction on approval only
    and may return extra details for the ``Awarded`` result.
    """
    store = SubmissionStoreDB()
    row = store.get(submission_id)
    if row is None:
        raise ValidationError(f"Submission {submission_id} not found.", code="submission_not_found")

    new_status = SubmissionStatus.VERIFIED if approve else SubmissionStatus.REJECTED
    ledger = XPLedger(row["student_id"])
    db = get_db()
    try:
        cur = db.execute(
            "UPDATE challenge_submissions SET status = ?, xp_awarded = ?, "
            "verified_by = ?, verified_at = ? WHERE id = ? AND status = ?",
            (new_status.value, row["pending_xp"] if approve else 0,
             coach_id, now_iso(), submission_id, SubmissionStatus.PENDING.value),
        )
        if cur.rowcount == 0:
            db.rollback()
            current = store.get(submission_id)
            return AlreadyCompleted(
                previous_xp=current["xp_awarded"],
                new_total_xp=ledger.total(),
                submission_id=submission_id,
                previous_status=current["status"],
            )
        details = {}
        if approve:
            total = ledger.credit(
                row["pending_xp"],
                f"{row['challenge_kind']}:{row['challenge_id']}:verified",
                str(submission_id),
            )
            if after_approve is not None:
                details = after_approve(row) or {}
        else:
            total = ledger.total()
        db.commit()
    except Exception:
        db.rollback()
        raise

    logger.info(
        "Submission %s %s by coach=%s",
        submission_id, new_status.value.lower(), coach_id,
        extra={"student_id": row["student_id"]},
    )
    if approve:
        return Awarded(xp_awarded=row["pending_xp"], new_total_xp=total, submission_id=submission_id,
                       details=details)
    return Rejected(reason="rejected_by_coach", new_total_xp=total, submission_id=submission_id)
