"""Tests for progression.py: the engine's public operations end to end."""

from __future__ import annotations

import random
import sqlite3
from datetime import date
from unittest.mock import patch

import pytest

import progression
from audit import recent_events
from database import get_db
from db_stores import ClubStoreDB, PersonalBestStoreDB, PetStoreDB, StudentStoreDB
from ledger import XPLedger
from outcomes import (
    AlreadyCompleted,
    Awarded,
    InsufficientBalance,
    PendingVerification,
    Rejected,
    StudentNotFound,
    TierNotAllowed,
    ValidationError,
)
from scoring import ClubSettings

DAY = date(2026, 3, 10)


class TestSyncGrading:
    def test_scores_apply_pts_and_xp(self, app):
        with app.app_context():
            result = progression.sync_grading(1, [2, 2, 2, 1], session_date=DAY, graded_by=3)
            assert result["status"] == "awarded"
            assert result["pts"] == 7
            assert result["xp"] == 88
            assert result["new_total_xp"] == 88
            assert result["current_pts"] == 7
            assert result["current_streak"] == 1
            assert result["performance"] == "good"

    def test_bonus_goes_to_belt_pts_uncapped(self, app):
        with app.app_context():
            ClubStoreDB(1).save_settings(ClubSettings(coach_bonus_enabled=True))
            result = progression.sync_grading(1, [2, 2, 2, 2], coach_bonus=4, session_date=DAY)
            assert result["xp"] == 100
            assert result["current_pts"] == 12

    def test_stripe_earned(self, app):
        with app.app_context():
            get_db().execute("UPDATE students SET current_pts = 60 WHERE id = 1")
            get_db().commit()
            result = progression.sync_grading(1, [2, 2, 2, 2], session_date=DAY)
            assert result["stripes_earned"] == 1

    def test_more_scores_than_skills(self, app):
        with app.app_context():
            with pytest.raises(ValidationError):
                progression.sync_grading(1, [2, 2, 2, 2, 2])

    def test_malformed_score_persists_nothing(self, app):
        with app.app_context():
            with pytest.raises(ValidationError):
                progression.sync_grading(1, [2, 5, 2, 2])
            assert XPLedger(1).total() == 0
            assert StudentStoreDB(1).row()["attendance_count"] == 0

    def test_archived_student(self, app):
        with app.app_context():
            StudentStoreDB(2).archive()
            with pytest.raises(StudentNotFound):
                progression.sync_grading(2, [2, 2])

    def test_promote_is_audited(self, app):
        with app.app_context():
            result = progression.promote(1, actor_id=3)
            assert result["to_belt"] == "Yellow"
            assert recent_events()[0]["action"] == "belt_promotion"

    def test_promote_logs_club(self, app, caplog):
        with app.app_context():
            with caplog.at_level("INFO", logger="progression"):
                progression.promote(1, actor_id=3)
            record = next(r for r in caplog.records if r.getMessage().startswith("Promoted"))
            assert record.club_id == 1
            assert record.student_id == 1


class TestArenaChallenges:
    def test_catalog_default_tier(self, app):
        with app.app_context():
            outcome = progression.submit_challenge(1, "pushup_master", on=DAY)
            assert isinstance(outcome, Awarded)
            assert outcome.xp_awarded == 30

    def test_declared_tier(self, app):
        with app.app_context():
            assert progression.submit_challenge(1, "jump_rope", "HARD", on=DAY).xp_awarded == 60

    def test_epic_outside_weekly_context(self, app):
        with app.app_context():
            with pytest.raises(TierNotAllowed):
                progression.submit_challenge(1, "jump_rope", "EPIC", on=DAY)
            assert XPLedger(1).total() == 0

    def test_unknown_challenge(self, app):
        with app.app_context():
            with pytest.raises(ValidationError):
                progression.submit_challenge(1, "juggling", "EASY", on=DAY)

    def test_club_custom_challenge(self, app):
        with app.app_context():
            ClubStoreDB(1).save_settings(ClubSettings(custom_challenges={"kata_week": 45}))
            outcome = progression.submit_challenge(1, "kata_week", on=DAY)
            assert outcome.xp_awarded == 45

    def test_duplicate_same_day(self, app):
        with app.app_context():
            progression.submit_challenge(1, "pushup_master", on=DAY)
            outcome = progression.submit_challenge(1, "pushup_master", on=DAY)
            assert isinstance(outcome, AlreadyCompleted)
            assert outcome.new_total_xp == 30

    def test_video_requires_premium(self, app):
        with app.app_context():
            outcome = progression.submit_challenge(1, "pushup_master", proof_type="video", on=DAY)
            assert isinstance(outcome, Rejected)
            assert outcome.reason == "premium_required"
            # No slot was used; a trust submission still works.
            assert isinstance(progression.submit_challenge(1, "pushup_master", on=DAY), Awarded)

    def test_video_pays_double_after_verification(self, app):
        with app.app_context():
            pending = progression.submit_challenge(
                3, "pushup_master", proof_type="video", video_url="https://v.example/1", on=DAY,
            )
            assert isinstance(pending, PendingVerification)
            assert pending.pending_xp == 60
            outcome = progression.verify_video_submission(pending.submission_id, True, 3, coach_club_id=1)
            assert isinstance(outcome, Awarded)
            assert outcome.new_total_xp == 60
            assert recent_events()[0]["action"] == "video_verified"

    def test_coach_from_other_club_cannot_verify(self, app):
        with app.app_context():
            pending = progression.submit_challenge(3, "pushup_master", proof_type="video", on=DAY)
            with pytest.raises(ValidationError):
                progression.verify_video_submission(pending.submission_id, True, 5, coach_club_id=2)


class TestGauntletFamilyMystery:
    def test_gauntlet_tracks_personal_best(self, app):
        with app.app_context():
            outcome = progression.submit_gauntlet(1, "monday_pushups", 40, on=DAY)
            assert outcome.xp_awarded == 60
            assert outcome.details["personal_best"] is True

    def test_rejected_gauntlet_video_keeps_personal_best(self, app):
        with app.app_context():
            pending = progression.submit_gauntlet(3, "monday_pushups", 99, "video", on=DAY)
            assert isinstance(pending, PendingVerification)
            assert PersonalBestStoreDB(3).all() == {}
            rejected = progression.verify_video_submission(pending.submission_id, approve=False, coach_id=3)
            assert isinstance(rejected, Rejected)
            assert PersonalBestStoreDB(3).all() == {}

    def test_verified_gauntlet_video_sets_personal_best(self, app):
        with app.app_context():
            pending = progression.submit_gauntlet(3, "monday_pushups", 42, "video", on=DAY)
            verified = progression.verify_video_submission(pending.submission_id, approve=True, coach_id=3)
            assert verified.xp_awarded == 120
            assert verified.details["personal_best"] is True
            assert PersonalBestStoreDB(3).all() == {"monday_pushups": 42}

    def test_gauntlet_epic_allowed_weekly(self, app):
        with app.app_context():
            assert progression.submit_gauntlet(1, "saturday_circuit", 5, on=DAY).xp_awarded == 100

    def test_gauntlet_once_per_week(self, app):
        with app.app_context():
            progression.submit_gauntlet(1, "monday_pushups", 40, on=date(2026, 3, 9))
            again = progression.submit_gauntlet(1, "monday_pushups", 50, on=date(2026, 3, 13))
            assert isinstance(again, AlreadyCompleted)

    @pytest.mark.parametrize("score", ["40", -1, None, True])
    def test_gauntlet_malformed_score(self, app, score):
        with app.app_context():
            with pytest.raises(ValidationError):
                progression.submit_gauntlet(1, "monday_pushups", score, on=DAY)

    def test_family_win_and_loss(self, app):
        with app.app_context():
            assert progression.submit_family_challenge(1, "family_plank", True, on=DAY).xp_awarded == 120
            assert progression.submit_family_challenge(2, "family_plank", False, on=DAY).xp_awarded == 60

    def test_one_mystery_per_day(self, app):
        with app.app_context():
            first = progression.submit_mystery(1, "riddle_12", True, on=DAY)
            second = progression.submit_mystery(1, "riddle_13", True, on=DAY)
            assert first.xp_awarded == 50
            assert isinstance(second, AlreadyCompleted)

    def test_wrong_mystery_answer_uses_the_day(self, app):
        with app.app_context():
            outcome = progression.submit_mystery(1, "riddle_12", False, on=DAY)
            assert outcome.xp_awarded == 0
            assert outcome.details["correct"] is False
            assert isinstance(progression.submit_mystery(1, "riddle_12", True, on=DAY), AlreadyCompleted)


class TestDuels:
    def test_win_and_loss(self, app):
        with app.app_context():
            outcome = progression.record_duel("m1", 1, 2, winner_id=1, tier="MEDIUM", on=DAY)
            assert outcome.xp_awarded == 30
            assert outcome.details["result"] == "win"
            assert outcome.details["opponent"]["xp_awarded"] == 10
            assert XPLedger(2).total() == 10

    def test_streak_multiplier_on_win(self, app):
        with app.app_context():
            get_db().execute(
                "UPDATE students SET duel_streak = 3, duel_last_win_date = '2026-03-09' WHERE id = 1"
            )
            get_db().commit()
            outcome = progression.record_duel("m2", 1, 2, winner_id=1, tier="MEDIUM", on=DAY)
            assert outcome.xp_awarded == 45
            assert outcome.details["multiplier"] == 1.5
            assert outcome.details["duel_streak"] == 4

    def test_loss_resets_streak(self, app):
        with app.app_context():
            get_db().execute("UPDATE students SET duel_streak = 8 WHERE id = 1")
            get_db().commit()
            outcome = progression.record_duel("m3", 1, 2, winner_id=2, on=DAY)
            assert outcome.xp_awarded == 10
            assert outcome.details["duel_streak"] == 0

    def test_streak_read_inside_write_transaction(self, app):
        """A loss committed by another connection after validation must not be overwritten."""
        with app.app_context():
            get_db().execute(
                "UPDATE students SET duel_streak = 3, duel_last_win_date = '2026-03-09' WHERE id = 1"
            )
            get_db().commit()

            original = StudentStoreDB.active_row
            reset = {"done": False}

            def active_row_then_concurrent_loss(self):
                row = original(self)
                if not reset["done"]:
                    reset["done"] = True
                    other = sqlite3.connect(app.config["DATABASE"])
                    other.execute("UPDATE students SET duel_streak = 0, duel_last_win_date = '' WHERE id = 1")
                    other.commit()
                    other.close()
                return row

            with patch.object(StudentStoreDB, "active_row", active_row_then_concurrent_loss):
                outcome = progression.record_duel("m8", 1, 2, winner_id=1, tier="MEDIUM", on=DAY)
            assert outcome.xp_awarded == 30
            assert outcome.details["multiplier"] == 1.0
            assert outcome.details["duel_streak"] == 1
            duel = get_db().execute("SELECT challenger_xp, opponent_xp FROM duels WHERE match_id = 'm8'").fetchone()
            assert (duel["challenger_xp"], duel["opponent_xp"]) == (30, 10)

    def test_tie(self, app):
        with app.app_context():
            outcome = progression.record_duel("m4", 1, 2, winner_id=None, on=DAY)
            assert outcome.details["result"] == "tie"
            assert outcome.xp_awarded == 10

    def test_match_recorded_once(self, app):
        with app.app_context():
            progression.record_duel("m5", 1, 2, winner_id=1, on=DAY)
            again = progression.record_duel("m5", 1, 2, winner_id=1, on=DAY)
            assert isinstance(again, AlreadyCompleted)
            assert XPLedger(1).total() == 30

    @pytest.mark.parametrize("args", [
        ("m6", 1, 1, 1),
        ("m6", 1, 2, 3),
        ("m6", 1, 4, 1),
        ("", 1, 2, 1),
    ])
    def test_invalid_duels(self, app, args):
        with app.app_context():
            with pytest.raises(ValidationError):
                progression.record_duel(*args, on=DAY)

    def test_epic_duel_not_allowed(self, app):
        with app.app_context():
            with pytest.raises(TierNotAllowed):
                progression.record_duel("m7", 1, 2, winner_id=1, tier="EPIC", on=DAY)


class TestReadModels:
    def test_leaderboard(self, app):
        with app.app_context():
            progression.submit_challenge(2, "pushup_master", on=date.today())
            board = progression.get_leaderboard(1, "alltime")
            assert board == [{"student_id": 2, "name": "Ben", "display_xp": 30, "rank": 1}]

    def test_leaderboard_unknown_club(self, app):
        with app.app_context():
            with pytest.raises(ValidationError):
                progression.get_leaderboard(99)

    def test_projection_uses_personal_attendance(self, app):
        with app.app_context():
            get_db().execute("UPDATE students SET attendance_count = 40, join_date = '2026-01-01' WHERE id = 1")
            get_db().commit()
            projection = progression.get_belt_projection(1, today=date(2026, 3, 12))
            assert projection["weekly_attendance"] == 4

    def test_projection_rejects_non_positive_attendance(self, app):
        with app.app_context():
            with pytest.raises(ValidationError):
                progression.get_belt_projection(1, 0)

    def test_snapshot(self, app):
        with app.app_context():
            progression.check_habit(1, "stretch", on=DAY)
            snapshot = progression.progression_snapshot(1, today=DAY)
            assert snapshot["student"]["total_xp"] == 10
            assert snapshot["student"]["belt"] == "White"
            assert snapshot["habits"]["daily_total"] == 10
            assert snapshot["avatar"]["tier"] == "Initiate"
            assert snapshot["pet"]["stage"] == "egg"
            assert snapshot["pending_xp"] == 0
            assert snapshot["reconcile_interval_seconds"] == 20


class TestPetEconomy:
    def test_spin_requires_balance(self, app, give_xp):
        give_xp(1, 150)
        with app.app_context():
            with pytest.raises(InsufficientBalance):
                progression.spin_lottery(1, random.Random(3))
            assert PetStoreDB(1).inventory() == []
            assert XPLedger(1).balance() == 150

    def test_spin_debits_balance_not_lifetime(self, app, give_xp):
        give_xp(1, 250)
        with app.app_context():
            result = progression.spin_lottery(1, random.Random(3))
            assert result["new_xp_balance"] == 50
            assert result["new_total_xp"] == 250
            assert result["inventory"][0]["quantity"] == 1
            assert result["inventory"][0]["name"] == result["item"]["name"]

    def test_feed_pet(self, app):
        from pet_economy import ITEMS_BY_NAME
        with app.app_context():
            PetStoreDB(1).add_item(ITEMS_BY_NAME["Ramen"])
            get_db().commit()
            fed = progression.feed_pet(1, "Ramen")
            assert fed["pet"]["evolution_points"] == 25
            assert fed["evolved"] is False
            assert fed["inventory"] == []
            # Feeding never touches XP.
            assert XPLedger(1).total() == 0


class TestCorrections:
    def test_correct_xp(self, app, give_xp):
        give_xp(1, 100)
        with app.app_context():
            assert progression.correct_xp(1, -30, "double grading", actor_id=4) == {
                "status": "corrected", "new_total_xp": 70,
            }
            assert recent_events()[0]["action"] == "xp_correction"

    @pytest.mark.parametrize("delta", [0, 1.5, True])
    def test_invalid_delta(self, app, delta):
        with app.app_context():
            with pytest.raises(ValidationError):
                progression.correct_xp(1, delta, "reason")
