"""Client-side optimistic ledger with server reconciliation.

One ``OptimisticLedger`` tracks one mutable quantity (the XP balance, or the
daily habit counter). Local deltas apply immediately; any authoritative
total from the server replaces the local value outright, and a failed
mutation is rolled back exactly once.
"""

from __future__ import annotations

import itertools
import logging
from dataclasses import dataclass, field
from typing import Any, Optional

logger = logging.getLogger(__name__)


@dataclass
class PendingMutation:
    id: int
    delta: int
    key: str = ""
    # False once a server total has replaced the local value: the delta is
    # no longer part of ``value`` and must not be subtracted on rollback.
    in_value: bool = True


@dataclass
class OptimisticLedger:
    value: int = 0
    pull_interval: float = 20.0
    last_pull_at: Optional[float] = None
    pending: dict[int, PendingMutation] = field(default_factory=dict)
    # Keys the server has confirmed for the current period (advisory only).
    completed_keys: set[str] = field(default_factory=set)
    _ids: Any = field(default_factory=lambda: itertools.count(1), repr=False)

    def is_locally_completed(self, key: str) -> bool:
        return key in self.completed_keys or any(m.key == key for m in self.pending.values())

    def apply(self, delta: int, key: str = "") -> Optional[int]:
        """Apply an optimistic delta; returns its mutation id.

        Returns None when ``key`` is already pending or confirmed, in which
        case nothing changes locally. The server still decides.
        """
        if key and self.is_locally_completed(key):
            return None
        mutation = PendingMutation(next(self._ids), delta, key)
        self.pending[mutation.id] = mutation
        self.value += delta
        return mutation.id

    def confirm(self, mutation_id: int, authoritative_total: int) -> None:
        """Replace (never add to) the local value with the server total."""
        mutation = self.pending.pop(mutation_id, None)
        if mutation is not None and mutation.key:
            self.completed_keys.add(mutation.key)
        self._replace(authoritative_total)

    def _replace(self, authoritative_total: int) -> None:
        self.value = authoritative_total
        for other in self.pending.values():
            other.in_value = False

    def rollback(self, mutation_id: int) -> bool:
        """Undo one optimistic delta. A second rollback of the same id is a no-op."""
        mutation = self.pending.pop(mutation_id, None)
        if mutation is None:
            return False
        if mutation.in_value:
            self.value -= mutation.delta
        logger.debug("Rolled back mutation %d (delta=%d)", mutation_id, mutation.delta)
        return True

    def settle(self, mutation_id: int, result: dict[str, Any]) -> None:
        """Reconcile a mutation against a server response body."""
        status = result.get("status")
        total = result.get("new_total_xp")
        if status in ("awarded", "already_completed", "pending_verification") and total is not None:
            self.confirm(mutation_id, int(total))
        elif status == "already_completed":
            mutation = self.pending.get(mutation_id)
            if mutation is not None and mutation.key:
                self.completed_keys.add(mutation.key)
            self.rollback(mutation_id)
        else:
            self.rollback(mutation_id)
            if total is not None:
                self._replace(int(total))

    def due_for_pull(self, now: float) -> bool:
        return self.last_pull_at is None or now - self.last_pull_at >= self.pull_interval

    def pull(self, authoritative_total: int, now: float) -> None:
        """Periodic safety-net fetch: server value wins and pending deltas are dropped."""
        self.pending.clear()
        self.value = authoritative_total
        self.last_pull_at = now

    def reset_period(self) -> None:
        self.completed_keys.clear()
