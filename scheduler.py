"""
Centralized Scheduler: Registers all periodic background jobs.

Jobs:
  - Stale video review digest to coaches (daily, 7 AM)
  - TTL cache cleanup (every 1 hour)
"""

from __future__ import annotations

import logging

from apscheduler.schedulers.background import BackgroundScheduler

logger = logging.getLogger(__name__)


def send_stale_review_digest(app) -> int:
    """Email each club's coaches about video submissions still waiting for
    review after STALE_VIDEO_HOURS. Returns the number of clubs notified."""
    from db_stores import ClubStoreDB, SubmissionStoreDB
    from notifications import notify_stale_reviews

    hours = app.config["STALE_VIDEO_HOURS"]
    with app.app_context():
        stale = SubmissionStoreDB().stale_pending(hours)
        for club_id, count in stale.items():
            club = ClubStoreDB(club_id)
            notify_stale_reviews(club.coach_emails(), club.name, count, hours)
        if stale:
            logger.info("Stale review digest sent to %d clubs", len(stale))
        return len(stale)


def cleanup_cache() -> int:
    from cache_backend import get_cache
    return get_cache().cleanup()


def init_scheduler(app):
    """Start a background scheduler for all periodic jobs and return it."""
    scheduler = BackgroundScheduler(daemon=True)

    # 1. Stale video review digest, cron at 7 AM
    scheduler.add_job(
        func=send_stale_review_digest,
        args=[app],
        trigger="cron",
        hour=7,
        id="stale_review_digest",
        replace_existing=True,
    )

    # 2. TTL cache cleanup, every 1 hour
    scheduler.add_job(
        func=cleanup_cache,
        trigger="interval",
        hours=1,
        id="cache_cleanup",
        replace_existing=True,
    )

    scheduler.start()
    app.logger.info("Centralized scheduler started (stale reviews, cache cleanup)")
    return scheduler
