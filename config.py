"""
Application configuration: environment-aware settings.

All environment variables are documented here. See .env.example for a template.
"""

from __future__ import annotations

import os
import warnings
from pathlib import Path

from dotenv import load_dotenv

BASE_DIR = Path(__file__).parent

load_dotenv(BASE_DIR / ".env")


def _int_env(name: str, default: int) -> int:
    return int(os.environ.get(name, str(default)))


class BaseConfig:
    # Core Flask
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-key-change-in-production")
    DATABASE = os.environ.get("DATABASE", str(BASE_DIR / "dojo_progress.db"))

    # Logging
    LOG_FORMAT = os.environ.get("LOG_FORMAT", "text")  # "json" or "text"
    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Caller identity is resolved upstream; this header carries the users.id
    IDENTITY_HEADER = os.environ.get("IDENTITY_HEADER", "X-Dojo-User")

    # Progression economy
    HABIT_XP = _int_env("HABIT_XP", 10)
    DAILY_HABIT_XP_CAP = _int_env("DAILY_HABIT_XP_CAP", 60)
    SPIN_COST = _int_env("SPIN_COST", 200)
    DUEL_LOSS_XP = _int_env("DUEL_LOSS_XP", 10)
    VIDEO_XP_MULTIPLIER = _int_env("VIDEO_XP_MULTIPLIER", 2)
    MYSTERY_DEFAULT_XP = _int_env("MYSTERY_DEFAULT_XP", 50)
    FAMILY_LOSS_RATIO = float(os.environ.get("FAMILY_LOSS_RATIO", "0.5"))
    LEADERBOARD_CACHE_TTL = _int_env("LEADERBOARD_CACHE_TTL", 30)
    RECONCILE_INTERVAL_SECONDS = _int_env("RECONCILE_INTERVAL_SECONDS", 20)
    STALE_VIDEO_HOURS = _int_env("STALE_VIDEO_HOURS", 48)

    # Email
    EMAIL_BACKEND = os.environ.get("EMAIL_BACKEND", "log")  # "log" or "smtp"
    MAIL_SERVER = os.environ.get("MAIL_SERVER", "localhost")
    MAIL_PORT = _int_env("MAIL_PORT", 587)
    MAIL_USERNAME = os.environ.get("MAIL_USERNAME", "")
    MAIL_PASSWORD = os.environ.get("MAIL_PASSWORD", "")
    MAIL_FROM = os.environ.get("MAIL_FROM", "noreply@example.com")

    # Slack (coach channel)
    SLACK_WEBHOOK_URL = os.environ.get("SLACK_WEBHOOK_URL", "")

    # Redis (cache + task queue); empty means in-memory / synchronous
    REDIS_URL = os.environ.get("REDIS_URL", "")

    # Rate limiting (defaults to in-memory; set REDIS_URL for Redis-backed)
    RATELIMIT_STORAGE_URI = os.environ.get("REDIS_URL", "") or "memory://"


class DevelopmentConfig(BaseConfig):
    DEBUG = True
    LOG_FORMAT = os.environ.get("LOG_FORMAT", "text")


class ProductionConfig(BaseConfig):
    DEBUG = False
    LOG_FORMAT = os.environ.get("LOG_FORMAT", "json")

    @classmethod
    def validate(cls):
        """Fail fast on missing or insecure configuration in production."""
        errors: list[str] = []

        if cls.SECRET_KEY in ("dev-key-change-in-production", ""):
            errors.append("SECRET_KEY must be set to a secure value in production.")

        if cls.DAILY_HABIT_XP_CAP < cls.HABIT_XP:
            errors.append("DAILY_HABIT_XP_CAP must be at least HABIT_XP.")

        if not cls.REDIS_URL:
            warnings.warn("REDIS_URL is not set; leaderboard cache and notifications run in-process.")

        if errors:
            raise RuntimeError(
                "Production configuration errors:\n" + "\n".join(f"  - {e}" for e in errors)
            )


class TestingConfig(BaseConfig):
    TESTING = True


config_by_name = {
    "development": DevelopmentConfig,
    "production": ProductionConfig,
    "testing": TestingConfig,
}
