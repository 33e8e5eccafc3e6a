"""Result and error types shared by every XP-mutating operation.

Expected business outcomes (awarded, already done, pending, rejected) are
returned as values. Only validation problems, an empty wallet, and
persistence failures are raised.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, ClassVar


# ── Errors ─────────────────────────────────────────────────


class ProgressionError(Exception):
    """Base class for errors surfaced to API callers."""

    http_status: ClassVar[int] = 400
    code: str = "error"

    def __init__(self, message: str = "", code: str | None = None):
        super().__init__(message or self.code)
        if code:
            self.code = code
        self.message = message or self.code

    def to_dict(self) -> dict[str, Any]:
        return {"error": self.message, "code": self.code}


class ValidationError(ProgressionError):
    """Bad input: unknown tier, malformed score, missing student, etc."""

    code = "validation_error"


class TierNotAllowed(ValidationError):
    code = "tier_not_allowed"


class StudentNotFound(ValidationError):
    http_status = 404
    code = "student_not_found"


class InsufficientBalance(ProgressionError):
    http_status = 402
    code = "insufficient_balance"

    def __init__(self, balance: int, required: int):
        super().__init__(f"Need {required} XP, have {balance}.")
        self.balance = balance
        self.required = required

    def to_dict(self) -> dict[str, Any]:
        return {**super().to_dict(), "balance": self.balance, "required": self.required}


class PersistenceConflict(ProgressionError):
    """A unique-constraint race that could not be resolved to an existing row."""

    http_status = 409
    code = "persistence_conflict"

    def to_dict(self) -> dict[str, Any]:
        return {**super().to_dict(), "retryable": True}


# ── Outcomes ───────────────────────────────────────────────


@dataclass
class Outcome:
    status: ClassVar[str] = ""

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["status"] = self.status
        return data


@dataclass
class Awarded(Outcome):
    status: ClassVar[str] = "awarded"

    xp_awarded: int
    new_total_xp: int
    submission_id: int | None = None
    details: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data.update(data.pop("details"))
        return data


@dataclass
class AlreadyCompleted(Outcome):
    """Not a failure: the slot was used earlier; carries the earlier result."""

    status: ClassVar[str] = "already_completed"

    previous_xp: int
    new_total_xp: int
    submission_id: int | None = None
    previous_status: str = ""
    details: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data.update(data.pop("details"))
        return data


@dataclass
class PendingVerification(Outcome):
    status: ClassVar[str] = "pending_verification"

    submission_id: int
    pending_xp: int
    new_total_xp: int


@dataclass
class Rejected(Outcome):
    status: ClassVar[str] = "rejected"

    reason: str
    new_total_xp: int
    submission_id: int | None = None
    xp_awarded: int = 0
