"""
SQLite database layer for the dojo progression engine.

Uses raw sqlite3 with WAL mode and parameterized queries.
A schema_version table handles migrations.

Every uniqueness rule the engine depends on (one award per challenge per
period, one habit check per day, one personal best per challenge) is a
UNIQUE constraint here, so concurrent duplicates fail at INSERT time.
"""

from __future__ import annotations

import fcntl
import logging
import sqlite3
from datetime import datetime
from pathlib import Path

from flask import current_app, g
from tenacity import (
    retry,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

logger = logging.getLogger(__name__)

DEFAULT_DB_PATH = str(Path(__file__).parent / "dojo_progress.db")


SCHEMA = """
-- Migration tracking
CREATE TABLE IF NOT EXISTS schema_version (
    version INTEGER NOT NULL,
    applied_at TEXT NOT NULL
);

-- Clubs (scoring configuration lives in settings as JSON)
CREATE TABLE IF NOT EXISTS clubs (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL,
    settings TEXT NOT NULL DEFAULT '{}',
    coach_email TEXT NOT NULL DEFAULT '',
    created_at TEXT NOT NULL DEFAULT ''
);

-- Caller identities (provisioned upstream)
CREATE TABLE IF NOT EXISTS users (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL,
    email TEXT NOT NULL DEFAULT '',
    role TEXT NOT NULL DEFAULT 'student',
    club_id INTEGER REFERENCES clubs(id),
    student_id INTEGER,
    created_at TEXT NOT NULL DEFAULT ''
);

-- Students: lifetime XP ledger head + current-belt PTS
CREATE TABLE IF NOT EXISTS students (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    club_id INTEGER NOT NULL REFERENCES clubs(id),
    name TEXT NOT NULL,
    belt_index INTEGER NOT NULL DEFAULT 0,
    total_xp INTEGER NOT NULL DEFAULT 0,
    xp_spent INTEGER NOT NULL DEFAULT 0,
    current_pts INTEGER NOT NULL DEFAULT 0,
    banked_pts INTEGER NOT NULL DEFAULT 0,
    current_streak INTEGER NOT NULL DEFAULT 0,
    last_activity_date TEXT NOT NULL DEFAULT '',
    attendance_count INTEGER NOT NULL DEFAULT 0,
    premium INTEGER NOT NULL DEFAULT 0,
    parent_email TEXT NOT NULL DEFAULT '',
    join_date TEXT NOT NULL DEFAULT '',
    archived INTEGER NOT NULL DEFAULT 0,
    CHECK (total_xp >= 0),
    CHECK (xp_spent <= total_xp)
);
CREATE INDEX IF NOT EXISTS idx_students_club ON students(club_id, archived);

-- Immutable per-class grading records
CREATE TABLE IF NOT EXISTS grading_records (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    student_id INTEGER NOT NULL REFERENCES students(id),
    club_id INTEGER NOT NULL REFERENCES clubs(id),
    scores TEXT NOT NULL DEFAULT '[]',
    coach_bonus INTEGER,
    homework INTEGER,
    pts INTEGER NOT NULL DEFAULT 0,
    session_pts INTEGER NOT NULL DEFAULT 0,
    xp INTEGER NOT NULL DEFAULT 0,
    local_xp INTEGER NOT NULL DEFAULT 0,
    session_date TEXT NOT NULL,
    graded_by INTEGER,
    created_at TEXT NOT NULL DEFAULT ''
);
CREATE INDEX IF NOT EXISTS idx_grading_student ON grading_records(student_id, session_date);

-- XP ledger journal
CREATE TABLE IF NOT EXISTS xp_transactions (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    student_id INTEGER NOT NULL REFERENCES students(id),
    amount INTEGER NOT NULL,
    type TEXT NOT NULL,
    source TEXT NOT NULL DEFAULT '',
    reference TEXT NOT NULL DEFAULT '',
    balance_after INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_xp_tx_student ON xp_transactions(student_id, created_at);

-- Challenge submissions (arena, gauntlet, family, mystery)
CREATE TABLE IF NOT EXISTS challenge_submissions (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    student_id INTEGER NOT NULL REFERENCES students(id),
    challenge_kind TEXT NOT NULL,
    challenge_id TEXT NOT NULL,
    challenge_ref TEXT NOT NULL DEFAULT '',
    period_key TEXT NOT NULL,
    tier TEXT NOT NULL DEFAULT '',
    proof_type TEXT NOT NULL DEFAULT 'trust',
    score REAL,
    outcome TEXT NOT NULL DEFAULT '',
    status TEXT NOT NULL,
    xp_awarded INTEGER NOT NULL DEFAULT 0,
    pending_xp INTEGER NOT NULL DEFAULT 0,
    video_url TEXT NOT NULL DEFAULT '',
    verified_by INTEGER,
    verified_at TEXT NOT NULL DEFAULT '',
    created_at TEXT NOT NULL,
    UNIQUE(student_id, challenge_kind, challenge_id, period_key)
);
CREATE INDEX IF NOT EXISTS idx_submissions_status ON challenge_submissions(status, created_at);

-- Habit check-ins
CREATE TABLE IF NOT EXISTS habit_logs (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    student_id INTEGER NOT NULL REFERENCES students(id),
    habit_id TEXT NOT NULL,
    log_date TEXT NOT NULL,
    xp_awarded INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL,
    UNIQUE(student_id, habit_id, log_date)
);

-- Per-day running total of capped XP
CREATE TABLE IF NOT EXISTS daily_activity (
    student_id INTEGER NOT NULL REFERENCES students(id),
    activity_date TEXT NOT NULL,
    habit_xp INTEGER NOT NULL DEFAULT 0,
    PRIMARY KEY (student_id, activity_date)
);

-- Audit log
CREATE TABLE IF NOT EXISTS audit_log (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id INTEGER,
    action TEXT NOT NULL,
    detail TEXT NOT NULL DEFAULT '',
    ip_address TEXT NOT NULL DEFAULT '',
    user_agent TEXT NOT NULL DEFAULT '',
    created_at TEXT NOT NULL
);
"""


MIGRATIONS: list[tuple[int, str]] = [
    # Version 1 = base schema.
    # -----------------------------------------------------------
    # Migration 2: Virtual pet economy
    (2, """
        CREATE TABLE IF NOT EXISTS pet_state (
            student_id INTEGER PRIMARY KEY REFERENCES students(id),
            name TEXT NOT NULL DEFAULT '',
            stage TEXT NOT NULL DEFAULT 'egg',
            evolution_points INTEGER NOT NULL DEFAULT 0,
            updated_at TEXT NOT NULL DEFAULT ''
        );

        CREATE TABLE IF NOT EXISTS pet_inventory (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            student_id INTEGER NOT NULL REFERENCES students(id),
            item_name TEXT NOT NULL,
            item_type TEXT NOT NULL,
            rarity TEXT NOT NULL,
            evolution_points INTEGER NOT NULL DEFAULT 0,
            quantity INTEGER NOT NULL DEFAULT 0,
            CHECK (quantity >= 0),
            UNIQUE(student_id, item_name)
        );
    """),
    # Migration 3: Gauntlet personal bests
    (3, """
        CREATE TABLE IF NOT EXISTS gauntlet_personal_bests (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            student_id INTEGER NOT NULL REFERENCES students(id),
            challenge_id TEXT NOT NULL,
            best_score REAL NOT NULL,
            achieved_at TEXT NOT NULL,
            UNIQUE(student_id, challenge_id)
        );
    """),
    # Migration 4: Duels (PvP) with per-student win streaks
    (4, """
        ALTER TABLE students ADD COLUMN duel_streak INTEGER NOT NULL DEFAULT 0;
        ALTER TABLE students ADD COLUMN duel_last_win_date TEXT NOT NULL DEFAULT '';

        CREATE TABLE IF NOT EXISTS duels (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            match_id TEXT NOT NULL UNIQUE,
            challenger_id INTEGER NOT NULL REFERENCES students(id),
            opponent_id INTEGER NOT NULL REFERENCES students(id),
            winner_id INTEGER,
            tier TEXT NOT NULL,
            challenger_xp INTEGER NOT NULL DEFAULT 0,
            opponent_xp INTEGER NOT NULL DEFAULT 0,
            created_at TEXT NOT NULL
        );
    """),
]


def get_db():
    """Return a DB connection from Flask g, creating if needed."""
    if "db" not in g:
        db_url = current_app.config.get("DATABASE", DEFAULT_DB_PATH)
        g.db = sqlite3.connect(db_url, timeout=5)
        g.db.row_factory = sqlite3.Row
        g.db.execute("PRAGMA journal_mode=WAL")
        g.db.execute("PRAGMA foreign_keys=ON")
    return g.db


def close_db(e=None) -> None:
    """Teardown handler: close DB connection."""
    db = g.pop("db", None)
    if db is not None:
        db.close()


def init_db() -> None:
    """Execute schema DDL to create all tables."""
    db = get_db()
    db.executescript(SCHEMA)
    db.execute(
        "INSERT INTO schema_version (version, applied_at) "
        "SELECT 1, ? WHERE NOT EXISTS (SELECT 1 FROM schema_version WHERE version = 1)",
        (datetime.now().isoformat(),),
    )
    db.commit()


def run_migrations() -> None:
    """Apply any unapplied versioned migrations.

    Uses file-based locking to prevent race conditions when multiple
    Gunicorn workers start simultaneously.
    """
    db_url = current_app.config.get("DATABASE", DEFAULT_DB_PATH)
    lock_file = None

    if db_url != ":memory:":
        lock_path = Path(db_url).with_suffix(".migration.lock")
        try:
            lock_file = open(lock_path, "w")
            fcntl.flock(lock_file, fcntl.LOCK_EX)
        except OSError:
            lock_file = None

    try:
        db = get_db()
        applied = {
            row["version"]
            for row in db.execute("SELECT version FROM schema_version").fetchall()
        }
        for version, sql in MIGRATIONS:
            if version not in applied:
                try:
                    db.executescript(sql)
                except sqlite3.OperationalError as e:
                    err_msg = str(e).lower()
                    if "duplicate column" not in err_msg and "already exists" not in err_msg:
                        raise
                db.execute(
                    "INSERT INTO schema_version (version, applied_at) VALUES (?, ?)",
                    (version, datetime.now().isoformat()),
                )
                db.commit()
                logger.info("Applied migration %d", version)
    finally:
        if lock_file:
            fcntl.flock(lock_file, fcntl.LOCK_UN)
            lock_file.close()


def init_app(app) -> None:
    """Register teardown and auto-init on first request."""
    app.teardown_appcontext(close_db)

    @app.before_request
    def _ensure_db():
        if not getattr(app, "_db_initialized", False):
            init_db()
            run_migrations()
            app._db_initialized = True


# ── Write retries ────────────────────────────────────────────────────


def _is_locked(exc: BaseException) -> bool:
    """SQLite reports writer contention as OperationalError('database is locked')."""
    return isinstance(exc, sqlite3.OperationalError) and "locked" in str(exc).lower()


def _rollback_before_retry(retry_state) -> None:
    logger.warning(
        "Database busy in %s (attempt %d), retrying",
        retry_state.fn.__name__ if retry_state.fn else "?",
        retry_state.attempt_number,
    )
    get_db().rollback()


write_retry = retry(
    retry=retry_if_exception(_is_locked),
    wait=wait_exponential(multiplier=0.05, min=0.05, max=1),
    stop=stop_after_attempt(3),
    before_sleep=_rollback_before_retry,
    reraise=True,
)
"""Decorator for top-level write operations: each call is one transaction,
rolled back and replayed when SQLite reports the database as locked."""


def now_iso() -> str:
    return datetime.now().isoformat(timespec="seconds")
