"""Tests for reconciler.py: optimistic apply, replace-not-merge, single rollback."""

from __future__ import annotations

from reconciler import OptimisticLedger


class TestOptimisticLedger:
    def test_apply_is_immediate(self):
        ledger = OptimisticLedger(value=100)
        ledger.apply(30, key="arena:pushup_master")
        assert ledger.value == 130

    def test_confirm_replaces_not_adds(self):
        ledger = OptimisticLedger(value=100)
        mid = ledger.apply(30)
        ledger.confirm(mid, 145)
        assert ledger.value == 145
        assert not ledger.pending

    def test_rollback_only_once(self):
        ledger = OptimisticLedger(value=100)
        mid = ledger.apply(30)
        assert ledger.rollback(mid) is True
        assert ledger.rollback(mid) is False
        assert ledger.value == 100

    def test_duplicate_key_not_applied_twice(self):
        ledger = OptimisticLedger(value=0)
        assert ledger.apply(15, key="arena:jump_rope") is not None
        assert ledger.apply(15, key="arena:jump_rope") is None
        assert ledger.value == 15

    def test_settle_awarded(self):
        ledger = OptimisticLedger(value=100)
        mid = ledger.apply(30, key="k")
        ledger.settle(mid, {"status": "awarded", "new_total_xp": 130})
        assert ledger.value == 130
        assert ledger.is_locally_completed("k")

    def test_settle_already_completed_uses_server_total(self):
        ledger = OptimisticLedger(value=100)
        mid = ledger.apply(30, key="k")
        ledger.settle(mid, {"status": "already_completed", "new_total_xp": 100})
        assert ledger.value == 100
        assert ledger.is_locally_completed("k")

    def test_settle_error_rolls_back(self):
        ledger = OptimisticLedger(value=100)
        mid = ledger.apply(30, key="k")
        ledger.settle(mid, {"error": "boom", "code": "persistence_conflict"})
        assert ledger.value == 100
        assert not ledger.is_locally_completed("k")

    def test_settle_rejected_takes_server_total(self):
        ledger = OptimisticLedger(value=100)
        mid = ledger.apply(60)
        ledger.settle(mid, {"status": "rejected", "new_total_xp": 90})
        assert ledger.value == 90

    def test_pull_drops_pending(self):
        ledger = OptimisticLedger(value=100, pull_interval=20)
        ledger.apply(30)
        assert ledger.due_for_pull(now=0)
        ledger.pull(250, now=0)
        assert ledger.value == 250
        assert not ledger.pending
        assert not ledger.due_for_pull(now=10)
        assert ledger.due_for_pull(now=20)

    def test_reset_period(self):
        ledger = OptimisticLedger()
        mid = ledger.apply(10, key="habit:stretch")
        ledger.confirm(mid, 10)
        ledger.reset_period()
        assert not ledger.is_locally_completed("habit:stretch")

    def test_rollback_after_replace_does_not_subtract_again(self):
        ledger = OptimisticLedger(value=100)
        a = ledger.apply(10, key="a")
        b = ledger.apply(10, key="b")
        ledger.confirm(a, 110)
        ledger.settle(b, {"status": "error"})
        assert ledger.value == 110
        assert not ledger.pending

    def test_rollback_of_mutation_applied_after_replace(self):
        ledger = OptimisticLedger(value=100)
        a = ledger.apply(10)
        ledger.confirm(a, 110)
        b = ledger.apply(20)
        assert ledger.value == 130
        ledger.rollback(b)
        assert ledger.value == 110
