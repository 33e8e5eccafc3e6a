"""
Dojo Progress: Flask Web Application

Gamified progression and anti-cheat engine for martial-arts clubs: class
grading, belt projection, daily challenges, duels, habits, leaderboards,
and the virtual dojo pet economy.
"""

from __future__ import annotations

import os
from typing import Any

from apscheduler.schedulers.base import SchedulerAlreadyRunningError
from flask import Flask, Response

import database
from auth import auth_bp, login_manager
from blueprints import register_blueprints
from config import config_by_name
from extensions import limiter


def create_app(test_config: dict[str, Any] | None = None) -> Flask:
    app = Flask(__name__)

    # Load config
    env = "testing" if test_config and test_config.get("TESTING") else os.environ.get("FLASK_ENV", "development")
    cfg = config_by_name.get(env, config_by_name["development"])
    app.config.from_object(cfg)
    if test_config is not None:
        app.config.update(test_config)
    elif hasattr(cfg, "validate"):
        cfg.validate()

    app.secret_key = app.config["SECRET_KEY"]

    # Cache backend (Redis or in-memory fallback)
    from cache_backend import init_cache
    init_cache(app)

    # Background task processing (RQ or synchronous fallback)
    from tasks import init_tasks
    init_tasks(app)

    # Structured logging
    from logging_config import init_logging
    init_logging(app)

    # Register database teardown
    database.init_app(app)

    # Rate limiter (disabled in testing)
    limiter.init_app(app)
    if app.config.get("TESTING"):
        limiter.enabled = False

    # Register auth blueprint and login manager
    app.register_blueprint(auth_bp)
    login_manager.init_app(app)

    # Register all application blueprints
    register_blueprints(app)

    # Security headers
    @app.after_request
    def set_security_headers(response: Response) -> Response:
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        response.headers["Cache-Control"] = "no-store"
        if not app.debug:
            response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"
        return response

    # Scheduled jobs (stale video digest, cache cleanup)
    if not app.config.get("TESTING") and app.config.get("SCHEDULER_ENABLED", True):
        try:
            from scheduler import init_scheduler
            init_scheduler(app)
        except SchedulerAlreadyRunningError:
            app.logger.warning("Scheduler already running; skipping second start.")

    return app


if __name__ == "__main__":
    create_app().run(debug=True, port=5001)
