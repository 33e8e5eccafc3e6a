"""Leaderboard Aggregator: monthly and all-time club rankings.

Rankings are derived on demand from the ledger and cached briefly; XP
writes invalidate the club's cached boards.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from datetime import date
from typing import Iterable

from cache_backend import get_cache
from database import get_db
from outcomes import ValidationError

logger = logging.getLogger(__name__)

PERIODS = ("monthly", "alltime")


@dataclass(frozen=True)
class LeaderboardEntry:
    student_id: int
    name: str
    display_xp: int
    rank: int

    def to_dict(self) -> dict:
        return asdict(self)


def rank_entries(rows: Iterable[tuple[int, str, int]]) -> list[LeaderboardEntry]:
    """Sort descending by XP and assign competition ranks.

    Zero-XP rows are dropped. Equal XP keeps input order and shares a rank,
    so rank is always 1 + the number of strictly higher entries.
    """
    ordered = sorted((r for r in rows if r[2] > 0), key=lambda r: r[2], reverse=True)
    entries: list[LeaderboardEntry] = []
    for position, (student_id, name, xp) in enumerate(ordered):
        if entries and entries[-1].display_xp == xp:
            rank = entries[-1].rank
        else:
            rank = position + 1
        entries.append(LeaderboardEntry(student_id, name, xp, rank))
    return entries


def _cache_key(club_id: int, period: str, today: date) -> str:
    suffix = today.strftime("%Y-%m") if period == "monthly" else "all"
    return f"leaderboard:{club_id}:{period}:{suffix}"


def invalidate(club_id: int, today: date | None = None) -> None:
    today = today or date.today()
    cache = get_cache()
    for period in PERIODS:
        cache.delete(_cache_key(club_id, period, today))


class LeaderboardStoreDB:
    """Reads ranking inputs for one club."""

    def __init__(self, club_id: int):
        self.club_id = club_id

    def monthly_rows(self, today: date) -> list[tuple[int, str, int]]:
        since = today.replace(day=1).isoformat()
        db = get_db()
        rows = db.execute(
            "SELECT s.id, s.name, COALESCE(SUM(t.amount), 0) AS xp "
            "FROM students s "
            "LEFT JOIN xp_transactions t ON t.student_id = s.id "
            "  AND t.type = 'EARN' AND t.created_at >= ? "
            "WHERE s.club_id = ? AND s.archived = 0 "
            "GROUP BY s.id ORDER BY s.id",
            (since, self.club_id),
        ).fetchall()
        return [(r["id"], r["name"], r["xp"]) for r in rows]

    def alltime_rows(self) -> list[tuple[int, str, int]]:
        db = get_db()
        rows = db.execute(
            "SELECT id, name, total_xp FROM students "
            "WHERE club_id = ? AND archived = 0 ORDER BY id",
            (self.club_id,),
        ).fetchall()
        return [(r["id"], r["name"], r["total_xp"]) for r in rows]

    def get(self, period: str, today: date | None = None, ttl: int = 30) -> list[LeaderboardEntry]:
        if period not in PERIODS:
            raise ValidationError(f"Unknown leaderboard period {period!r}.", code="unknown_period")
        today = today or date.today()
        cache = get_cache()
        key = _cache_key(self.club_id, period, today)
        cached = cache.get(key)
        if cached is not None:
            return [LeaderboardEntry(**e) for e in cached]

        rows = self.monthly_rows(today) if period == "monthly" else self.alltime_rows()
        entries = rank_entries(rows)
        cache.set(key, [e.to_dict() for e in entries], ttl=ttl)
        logger.debug(
            "Leaderboard %s computed for club %s (%d entries)", period, self.club_id, len(entries),
            extra={"club_id": self.club_id},
        )
        return entries
