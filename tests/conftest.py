"""
Test fixtures for Dojo Progress.

Provides app, client, role-specific clients, and db fixtures with
file-based SQLite. Callers are identified by the X-Dojo-User header.
"""

from __future__ import annotations

import fnmatch

import pytest

import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent))

STUDENT_USER = 1
PARENT_USER = 2
COACH_USER = 3
ADMIN_USER = 4
OTHER_COACH_USER = 5


@pytest.fixture
def app(tmp_path):
    """Create app with file-based SQLite and a seeded club for testing."""
    from app import create_app

    db_file = str(tmp_path / "test.db")
    app = create_app({
        "TESTING": True,
        "DATABASE": db_file,
        "SECRET_KEY": "test-secret-key",
        "EMAIL_BACKEND": "log",
        "SLACK_WEBHOOK_URL": "",
        "REDIS_URL": "",
    })

    with app.app_context():
        from database import init_db, run_migrations, get_db

        init_db()
        run_migrations()

        db = get_db()
        db.execute(
            "INSERT INTO clubs (id, name, settings, coach_email, created_at) "
            "VALUES (1, 'Dragon Dojo', '{}', 'sensei@example.com', '2026-01-01')"
        )
        db.execute(
            "INSERT INTO clubs (id, name, settings, coach_email, created_at) "
            "VALUES (2, 'Tiger Gym', '{}', '', '2026-01-01')"
        )
        db.execute(
            "INSERT INTO students (id, club_id, name, parent_email, join_date) "
            "VALUES (1, 1, 'Aiko', 'parent@example.com', '2026-01-05')"
        )
        db.execute("INSERT INTO students (id, club_id, name, join_date) VALUES (2, 1, 'Ben', '2026-01-05')")
        db.execute(
            "INSERT INTO students (id, club_id, name, premium, join_date) "
            "VALUES (3, 1, 'Chen', 1, '2026-01-05')"
        )
        db.execute("INSERT INTO students (id, club_id, name, join_date) VALUES (4, 2, 'Dara', '2026-01-05')")
        users = [
            (STUDENT_USER, "Aiko", "aiko@example.com", "student", 1, 1),
            (PARENT_USER, "Aiko's Parent", "parent@example.com", "parent", 1, 1),
            (COACH_USER, "Coach Kim", "coach@example.com", "coach", 1, None),
            (ADMIN_USER, "Admin", "admin@example.com", "admin", 1, None),
            (OTHER_COACH_USER, "Coach Lee", "lee@example.com", "coach", 2, None),
        ]
        db.executemany(
            "INSERT INTO users (id, name, email, role, club_id, student_id, created_at) "
            "VALUES (?, ?, ?, ?, ?, ?, '2026-01-01')",
            users,
        )
        db.commit()

    yield app


def _client_as(app, user_id: int):
    client = app.test_client()
    client.environ_base["HTTP_X_DOJO_USER"] = str(user_id)
    return client


@pytest.fixture
def client(app):
    """Unauthenticated test client."""
    return app.test_client()


@pytest.fixture
def student_client(app):
    """Test client acting as student user 1 (student 1, Aiko)."""
    return _client_as(app, STUDENT_USER)


@pytest.fixture
def parent_client(app):
    return _client_as(app, PARENT_USER)


@pytest.fixture
def coach_client(app):
    """Test client acting as the coach of club 1."""
    return _client_as(app, COACH_USER)


@pytest.fixture
def admin_client(app):
    return _client_as(app, ADMIN_USER)


@pytest.fixture
def other_coach_client(app):
    """Coach of club 2, who must not see club 1's students."""
    return _client_as(app, OTHER_COACH_USER)


@pytest.fixture
def db(app):
    """Direct database access for store tests."""
    with app.app_context():
        from database import get_db
        yield get_db()


class _FakeRedis:
    """Dict-backed stand-in exposing the redis-py calls RedisCache makes."""

    def __init__(self):
        self.store: dict[str, bytes] = {}

    def get(self, key):
        return self.store.get(key)

    def setex(self, key, ttl, value):
        self.store[key] = value.encode() if isinstance(value, str) else value

    def delete(self, *keys):
        for key in keys:
            self.store.pop(key, None)

    def scan_iter(self, match="*"):
        return [k for k in list(self.store) if fnmatch.fnmatch(k, match)]


@pytest.fixture
def fake_redis():
    return _FakeRedis()


@pytest.fixture
def give_xp(app):
    """Credit XP directly through the ledger, for tests that need a balance."""
    def _give(student_id: int, amount: int) -> int:
        from ledger import XPLedger
        with app.app_context():
            return XPLedger(student_id).award(amount, "test")
    return _give
