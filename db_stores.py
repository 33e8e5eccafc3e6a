"""
DB-backed store classes for the dojo progression engine.

Each store wraps one aggregate (club, student, grading log, submissions,
pet) and reads/writes SQLite through get_db(). Methods that only make sense
as part of a larger transaction take no commit; the rest commit immediately.
"""

from __future__ import annotations

import json
import logging
from datetime import date, datetime, timedelta
from typing import Optional

from database import get_db, now_iso
from outcomes import StudentNotFound, ValidationError
from pet_economy import ITEMS_BY_NAME, WheelItem, advance_stage, next_stage
from scoring import ClubSettings, GradingResult
from streaks import StreakState, record_daily_activity

logger = logging.getLogger(__name__)


# ── Clubs ────────────────────────────────────────────────────────────


class ClubStoreDB:
    def __init__(self, club_id: int):
        self.club_id = club_id

    def _row(self):
        db = get_db()
        row = db.execute("SELECT * FROM clubs WHERE id = ?", (self.club_id,)).fetchone()
        if row is None:
            raise ValidationError(f"Club {self.club_id} not found.", code="club_not_found")
        return row

    @property
    def name(self) -> str:
        return self._row()["name"]

    @property
    def coach_email(self) -> str:
        return self._row()["coach_email"]

    def settings(self) -> ClubSettings:
        return ClubSettings.from_json(self._row()["settings"])

    def save_settings(self, settings: ClubSettings) -> None:
        self._row()
        db = get_db()
        db.execute("UPDATE clubs SET settings = ? WHERE id = ?", (settings.to_json(), self.club_id))
        db.commit()

    @staticmethod
    def create(name: str, settings: Optional[ClubSettings] = None, coach_email: str = "") -> "ClubStoreDB":
        db = get_db()
        cur = db.execute(
            "INSERT INTO clubs (name, settings, coach_email, created_at) VALUES (?, ?, ?, ?)",
            (name, (settings or ClubSettings()).to_json(), coach_email, now_iso()),
        )
        db.commit()
        return ClubStoreDB(cur.lastrowid)

    def coach_emails(self) -> list[str]:
        db = get_db()
        rows = db.execute(
            "SELECT email FROM users WHERE club_id = ? AND role IN ('coach', 'admin') AND email != ''",
            (self.club_id,),
        ).fetchall()
        emails = [r["email"] for r in rows]
        if self.coach_email and self.coach_email not in emails:
            emails.append(self.coach_email)
        return emails

    def roster(self, include_archived: bool = False) -> list[dict]:
        db = get_db()
        sql = "SELECT id, name, belt_index, total_xp, current_pts, archived FROM students WHERE club_id = ?"
        if not include_archived:
            sql += " AND archived = 0"
        rows = db.execute(sql + " ORDER BY name", (self.club_id,)).fetchall()
        return [dict(r) for r in rows]


# ── Students ─────────────────────────────────────────────────────────


class StudentStoreDB:
    """A student's progression aggregate: belt, PTS, streaks, attendance."""

    def __init__(self, student_id: int):
        self.student_id = student_id

    def row(self):
        db = get_db()
        row = db.execute("SELECT * FROM students WHERE id = ?", (self.student_id,)).fetchone()
        if row is None:
            raise StudentNotFound(f"Student {self.student_id} not found.")
        return row

    def active_row(self):
        row = self.row()
        if row["archived"]:
            raise StudentNotFound(f"Student {self.student_id} is archived.")
        return row

    @staticmethod
    def exists(student_id: int) -> bool:
        db = get_db()
        return db.execute("SELECT 1 FROM students WHERE id = ?", (student_id,)).fetchone() is not None

    @staticmethod
    def create(club_id: int, name: str, belt_index: int = 0, premium: bool = False,
               parent_email: str = "", join_date: Optional[date] = None) -> "StudentStoreDB":
        ClubStoreDB(club_id)._row()
        db = get_db()
        cur = db.execute(
            "INSERT INTO students (club_id, name, belt_index, premium, parent_email, join_date) "
            "VALUES (?, ?, ?, ?, ?, ?)",
            (club_id, name, belt_index, int(premium), parent_email,
             (join_date or date.today()).isoformat()),
        )
        db.commit()
        return StudentStoreDB(cur.lastrowid)

    @property
    def club_id(self) -> int:
        return self.row()["club_id"]

    @property
    def is_premium(self) -> bool:
        return bool(self.row()["premium"])

    def set_premium(self, premium: bool) -> None:
        self.row()
        db = get_db()
        db.execute("UPDATE students SET premium = ? WHERE id = ?", (int(premium), self.student_id))
        db.commit()

    def archive(self) -> None:
        self.row()
        db = get_db()
        db.execute("UPDATE students SET archived = 1 WHERE id = ?", (self.student_id,))
        db.commit()

    def daily_streak(self) -> StreakState:
        r = self.row()
        return StreakState.from_row(r["current_streak"], r["last_activity_date"])

    def touch_activity(self, on: date) -> StreakState:
        """Advance the daily streak for activity on ``on`` (caller commits).

        Compare-and-set on last_activity_date so two concurrent writers
        cannot both advance the same day.
        """
        r = self.active_row()
        state = StreakState.from_row(r["current_streak"], r["last_activity_date"])
        new_state = record_daily_activity(state, on)
        if new_state != state:
            db = get_db()
            db.execute(
                "UPDATE students SET current_streak = ?, last_activity_date = ? "
                "WHERE id = ? AND last_activity_date = ?",
                (new_state.count, new_state.last_date_iso(), self.student_id, r["last_activity_date"]),
            )
        return new_state

    def add_session(self, result: GradingResult) -> None:
        """Apply a graded session's PTS and attendance (caller commits)."""
        self.active_row()
        db = get_db()
        db.execute(
            "UPDATE students SET current_pts = current_pts + ?, "
            "attendance_count = attendance_count + 1 WHERE id = ?",
            (result.session_pts, self.student_id),
        )

    def promote(self, settings: ClubSettings) -> dict:
        """Move to the next belt; banks the completed belt's PTS and zeroes current PTS."""
        r = self.active_row()
        belt_index = r["belt_index"]
        if belt_index >= len(settings.belts) - 1:
            raise ValidationError("Student already holds the final belt.", code="final_belt")
        banked = settings.pts_for_belt(belt_index)
        db = get_db()
        cur = db.execute(
            "UPDATE students SET belt_index = belt_index + 1, "
            "banked_pts = banked_pts + ?, current_pts = 0 "
            "WHERE id = ? AND belt_index = ?",
            (banked, self.student_id, belt_index),
        )
        if cur.rowcount == 0:
            db.rollback()
            raise ValidationError("Belt changed concurrently; reload and retry.", code="stale_belt")
        db.commit()
        return {
            "from_belt": settings.belts[belt_index],
            "to_belt": settings.belts[belt_index + 1],
            "belt_index": belt_index + 1,
            "banked_pts": r["banked_pts"] + banked,
        }

    def to_dict(self, settings: Optional[ClubSettings] = None) -> dict:
        r = self.row()
        data = {
            "id": r["id"],
            "club_id": r["club_id"],
            "name": r["name"],
            "belt_index": r["belt_index"],
            "total_xp": r["total_xp"],
            "xp_balance": r["total_xp"] - r["xp_spent"],
            "current_pts": r["current_pts"],
            "banked_pts": r["banked_pts"],
            "current_streak": r["current_streak"],
            "last_activity_date": r["last_activity_date"],
            "duel_streak": r["duel_streak"],
            "attendance_count": r["attendance_count"],
            "premium": bool(r["premium"]),
            "join_date": r["join_date"],
            "archived": bool(r["archived"]),
        }
        if settings is not None:
            idx = min(r["belt_index"], len(settings.belts) - 1)
            pps = settings.points_per_stripe_for(idx)
            data["belt"] = settings.belts[idx]
            data["stripes"] = min(settings.stripes_per_belt, r["current_pts"] // pps) if pps else 0
            data["pts_for_next_belt"] = settings.pts_for_belt(idx)
        return data


# ── Grading log ──────────────────────────────────────────────────────


class GradingLogDB:
    def __init__(self, student_id: int):
        self.student_id = student_id

    def add(self, club_id: int, scores: list, coach_bonus: Optional[int], homework: Optional[int],
            result: GradingResult, session_date: date, graded_by: Optional[int]) -> int:
        """Insert an immutable grading record (caller commits)."""
        db = get_db()
        cur = db.execute(
            "INSERT INTO grading_records (student_id, club_id, scores, coach_bonus, homework, "
            "pts, session_pts, xp, local_xp, session_date, graded_by, created_at) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (self.student_id, club_id, json.dumps(scores), coach_bonus, homework,
             result.pts, result.session_pts, result.xp, result.local_xp,
             session_date.isoformat(), graded_by, now_iso()),
        )
        return cur.lastrowid

    def recent(self, n: int = 10) -> list[dict]:
        db = get_db()
        rows = db.execute(
            "SELECT id, scores, coach_bonus, homework, pts, session_pts, xp, local_xp, session_date "
            "FROM grading_records WHERE student_id = ? ORDER BY session_date DESC, id DESC LIMIT ?",
            (self.student_id, n),
        ).fetchall()
        return [{**dict(r), "scores": json.loads(r["scores"])} for r in rows]


# ── Challenge submissions ────────────────────────────────────────────


class SubmissionStoreDB:
    def get(self, submission_id: int):
        db = get_db()
        return db.execute(
            "SELECT * FROM challenge_submissions WHERE id = ?", (submission_id,)
        ).fetchone()

    def find(self, student_id: int, kind: str, challenge_id: str, period_key: str):
        db = get_db()
        return db.execute(
            "SELECT * FROM challenge_submissions "
            "WHERE student_id = ? AND challenge_kind = ? AND challenge_id = ? AND period_key = ?",
            (student_id, kind, challenge_id, period_key),
        ).fetchone()

    def history(self, student_id: int, limit: int = 50) -> list[dict]:
        db = get_db()
        rows = db.execute(
            "SELECT id, challenge_kind, challenge_id, challenge_ref, period_key, tier, proof_type, "
            "score, outcome, status, xp_awarded, pending_xp, created_at "
            "FROM challenge_submissions WHERE student_id = ? ORDER BY id DESC LIMIT ?",
            (student_id, limit),
        ).fetchall()
        return [dict(r) for r in rows]

    def pending_xp(self, student_id: int) -> int:
        db = get_db()
        row = db.execute(
            "SELECT COALESCE(SUM(pending_xp), 0) AS xp FROM challenge_submissions "
            "WHERE student_id = ? AND status = 'PENDING'",
            (student_id,),
        ).fetchone()
        return row["xp"]

    def pending_for_club(self, club_id: int) -> list[dict]:
        db = get_db()
        rows = db.execute(
            "SELECT cs.id, cs.student_id, s.name AS student_name, cs.challenge_kind, "
            "cs.challenge_id, cs.tier, cs.pending_xp, cs.video_url, cs.created_at "
            "FROM challenge_submissions cs JOIN students s ON s.id = cs.student_id "
            "WHERE s.club_id = ? AND cs.status = 'PENDING' ORDER BY cs.created_at",
            (club_id,),
        ).fetchall()
        return [dict(r) for r in rows]

    def stale_pending(self, older_than_hours: int) -> dict[int, int]:
        """Count of pending video submissions older than the threshold, per club."""
        cutoff = (datetime.now() - timedelta(hours=older_than_hours)).isoformat(timespec="seconds")
        db = get_db()
        rows = db.execute(
            "SELECT s.club_id, COUNT(*) AS n FROM challenge_submissions cs "
            "JOIN students s ON s.id = cs.student_id "
            "WHERE cs.status = 'PENDING' AND cs.created_at < ? GROUP BY s.club_id",
            (cutoff,),
        ).fetchall()
        return {r["club_id"]: r["n"] for r in rows}


class PersonalBestStoreDB:
    def __init__(self, student_id: int):
        self.student_id = student_id

    def record(self, challenge_id: str, score: float, higher_is_better: bool) -> bool:
        """Upsert the personal best (caller commits). Returns True if it improved."""
        db = get_db()
        before = db.execute(
            "SELECT best_score FROM gauntlet_personal_bests WHERE student_id = ? AND challenge_id = ?",
            (self.student_id, challenge_id),
        ).fetchone()
        comparison = ">" if higher_is_better else "<"
        db.execute(
            "INSERT INTO gauntlet_personal_bests (student_id, challenge_id, best_score, achieved_at) "
            "VALUES (?, ?, ?, ?) "
            "ON CONFLICT(student_id, challenge_id) DO UPDATE SET "
            "best_score = excluded.best_score, achieved_at = excluded.achieved_at "
            f"WHERE excluded.best_score {comparison} gauntlet_personal_bests.best_score",
            (self.student_id, challenge_id, score, now_iso()),
        )
        if before is None:
            return True
        return score > before["best_score"] if higher_is_better else score < before["best_score"]

    def all(self) -> dict[str, float]:
        db = get_db()
        rows = db.execute(
            "SELECT challenge_id, best_score FROM gauntlet_personal_bests WHERE student_id = ?",
            (self.student_id,),
        ).fetchall()
        return {r["challenge_id"]: r["best_score"] for r in rows}


# ── Virtual pet ──────────────────────────────────────────────────────


class PetStoreDB:
    def __init__(self, student_id: int):
        self.student_id = student_id

    def _ensure(self) -> None:
        db = get_db()
        db.execute(
            "INSERT OR IGNORE INTO pet_state (student_id, updated_at) VALUES (?, ?)",
            (self.student_id, now_iso()),
        )

    def state(self) -> dict:
        self._ensure()
        db = get_db()
        row = db.execute("SELECT * FROM pet_state WHERE student_id = ?", (self.student_id,)).fetchone()
        upcoming = next_stage(row["stage"])
        return {
            "name": row["name"],
            "stage": row["stage"],
            "evolution_points": row["evolution_points"],
            "next_stage": upcoming[0] if upcoming else None,
            "points_to_next_stage": max(0, upcoming[1] - row["evolution_points"]) if upcoming else 0,
        }

    def inventory(self) -> list[dict]:
        db = get_db()
        rows = db.execute(
            "SELECT item_name, item_type, rarity, evolution_points, quantity FROM pet_inventory "
            "WHERE student_id = ? AND quantity > 0 ORDER BY item_name",
            (self.student_id,),
        ).fetchall()
        return [
            {
                "name": r["item_name"],
                "type": r["item_type"],
                "rarity": r["rarity"],
                "evolution_points": r["evolution_points"],
                "quantity": r["quantity"],
            }
            for r in rows
        ]

    def add_item(self, item: WheelItem) -> None:
        """Add one drawn item to the inventory (caller commits)."""
        db = get_db()
        db.execute(
            "INSERT INTO pet_inventory (student_id, item_name, item_type, rarity, evolution_points, quantity) "
            "VALUES (?, ?, ?, ?, ?, 1) "
            "ON CONFLICT(student_id, item_name) DO UPDATE SET quantity = quantity + 1",
            (self.student_id, item.name, item.type, item.rarity, item.evolution_points),
        )

    def feed(self, item_name: str) -> dict:
        """Consume one food item and convert it into evolution points."""
        item = ITEMS_BY_NAME.get(item_name)
        if item is None:
            raise ValidationError(f"Unknown item {item_name!r}.", code="unknown_item")
        if not item.is_food:
            raise ValidationError(f"{item_name} is not food.", code="not_food")

        self._ensure()
        db = get_db()
        cur = db.execute(
            "UPDATE pet_inventory SET quantity = quantity - 1 "
            "WHERE student_id = ? AND item_name = ? AND quantity >= 1",
            (self.student_id, item_name),
        )
        if cur.rowcount == 0:
            db.rollback()
            raise ValidationError(f"No {item_name} in inventory.", code="item_not_owned")

        row = db.execute(
            "SELECT stage, evolution_points FROM pet_state WHERE student_id = ?", (self.student_id,)
        ).fetchone()
        points = row["evolution_points"] + item.evolution_points
        stage = advance_stage(row["stage"], points)
        db.execute(
            "UPDATE pet_state SET evolution_points = ?, stage = ?, updated_at = ? WHERE student_id = ?",
            (points, stage, now_iso(), self.student_id),
        )
        db.commit()
        if stage != row["stage"]:
            logger.info("Pet evolved %s -> %s student=%s", row["stage"], stage, self.student_id)
        return {"evolved": stage != row["stage"], "previous_stage": row["stage"]}
