"""Tests for database migrations, write retries, audit log, logging, config, and scheduler."""

from __future__ import annotations

import json
import logging
import sqlite3
from unittest.mock import MagicMock, patch

import pytest
from freezegun import freeze_time


class TestDatabase:
    def test_all_migrations_applied(self, app):
        from database import MIGRATIONS, get_db
        with app.app_context():
            versions = {r["version"] for r in get_db().execute("SELECT version FROM schema_version")}
            assert versions == {1} | {v for v, _ in MIGRATIONS}

    def test_migrations_are_idempotent(self, app):
        from database import init_db, run_migrations, get_db
        with app.app_context():
            init_db()
            run_migrations()
            count = get_db().execute("SELECT COUNT(*) AS n FROM schema_version").fetchone()["n"]
            assert count == 4

    def test_spent_cannot_exceed_lifetime(self, app):
        from database import get_db
        with app.app_context():
            with pytest.raises(sqlite3.IntegrityError):
                get_db().execute("UPDATE students SET xp_spent = 10 WHERE id = 1")

    def test_write_retry_gives_up_after_three_attempts(self, app):
        from database import write_retry
        calls = {"n": 0}

        @write_retry
        def always_locked():
            calls["n"] += 1
            raise sqlite3.OperationalError("database is locked")

        with app.app_context():
            with pytest.raises(sqlite3.OperationalError):
                always_locked()
        assert calls["n"] == 3

    def test_write_retry_ignores_other_errors(self, app):
        from database import write_retry
        calls = {"n": 0}

        @write_retry
        def broken():
            calls["n"] += 1
            raise sqlite3.OperationalError("no such table: nope")

        with app.app_context():
            with pytest.raises(sqlite3.OperationalError):
                broken()
        assert calls["n"] == 1


class TestAudit:
    def test_log_event_outside_request(self, app):
        from audit import log_event, recent_events
        with app.app_context():
            log_event("xp_correction", 4, "student=1 delta=-5")
            event = recent_events()[0]
            assert event["action"] == "xp_correction"
            assert event["user_id"] == 4

    def test_log_event_records_request_metadata(self, app):
        from audit import log_event
        from database import get_db
        with app.test_request_context(headers={"User-Agent": "pytest"}):
            log_event("belt_promotion", 3)
            row = get_db().execute("SELECT user_agent FROM audit_log").fetchone()
            assert row["user_agent"] == "pytest"


class TestLogging:
    def test_json_formatter_includes_extra_fields(self):
        from logging_config import JSONFormatter
        record = logging.LogRecord("ledger", logging.INFO, __file__, 1, "XP +%d", (10,), None)
        record.student_id = 7
        entry = json.loads(JSONFormatter().format(record))
        assert entry["message"] == "XP +10"
        assert entry["student_id"] == 7
        assert entry["level"] == "INFO"

    def test_request_id_header(self, student_client):
        response = student_client.get("/api/me")
        assert len(response.headers["X-Request-ID"]) == 12


class TestConfig:
    def test_production_requires_secret(self):
        from config import ProductionConfig
        with patch.object(ProductionConfig, "SECRET_KEY", "dev-key-change-in-production"):
            with pytest.raises(RuntimeError):
                ProductionConfig.validate()

    def test_testing_config_selected(self, app):
        assert app.config["TESTING"] is True
        assert app.config["SPIN_COST"] == 200
        assert app.config["DAILY_HABIT_XP_CAP"] == 60


class TestScheduler:
    def test_jobs_registered(self, app):
        from scheduler import init_scheduler
        with patch("scheduler.BackgroundScheduler") as scheduler_cls:
            scheduler = init_scheduler(app)
        job_ids = {c.kwargs["id"] for c in scheduler.add_job.call_args_list}
        assert job_ids == {"stale_review_digest", "cache_cleanup"}
        scheduler_cls.return_value.start.assert_called_once()

    def test_stale_review_digest(self, app):
        from datetime import date
        from gatekeeper import ProofType, SubmissionGate
        from scheduler import send_stale_review_digest
        with app.app_context():
            with freeze_time("2026-03-01 09:00:00"):
                SubmissionGate(3).submit("arena", "burpee_blast", 120, on=date(2026, 3, 1),
                                         proof_type=ProofType.VIDEO)
        with freeze_time("2026-03-05 09:00:00"):
            with patch("notifications.send_email") as send:
                assert send_stale_review_digest(app) == 1
        recipients = {c.args[0] for c in send.call_args_list}
        assert recipients == {"coach@example.com", "admin@example.com", "sensei@example.com"}

    def test_cache_cleanup_job(self, app):
        from cache_backend import get_cache
        from scheduler import cleanup_cache
        get_cache().set("old", 1, ttl=0)
        with freeze_time("2030-01-01"):
            assert cleanup_cache() >= 1
