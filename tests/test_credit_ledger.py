"""Tests for CreditLedger: reserve / finalize / refund, idempotency by request id, stale sweep."""
from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import pytest

from stefna.models.ledger_entry import LEDGER_COMPLETED, LEDGER_REFUNDED, LEDGER_RESERVED, LedgerEntry
from stefna.services.credits.service import CreditLedger
from stefna.services.errors import InsufficientCredits, ValidationError


class TestReserve:
    def test_reserve_deducts_and_records_entry(self, db):
        ledger = CreditLedger(db, starter_credits=10)

        reservation = ledger.reserve("user-1", 2, "presets:run-1:1", "presets_generation")

        assert reservation.replayed is False
        assert reservation.status == LEDGER_RESERVED
        assert ledger.get_balance("user-1") == 8
        entry = ledger.get_entry("user-1", "presets:run-1:1")
        assert entry.status == LEDGER_RESERVED
        assert entry.amount == 2
        assert entry.action == "presets_generation"

    def test_new_user_balance_is_starter_credits(self, db):
        ledger = CreditLedger(db, starter_credits=30)
        assert ledger.get_balance("nobody") == 30

    def test_insufficient_credits_leaves_balance_untouched(self, db):
        ledger = CreditLedger(db, starter_credits=1)

        with pytest.raises(InsufficientCredits) as exc_info:
            ledger.reserve("user-1", 2, "req-1", "presets_generation")

        assert exc_info.value.detail == {"balance": 1, "required": 2, "shortfall": 1}
        assert ledger.get_balance("user-1") == 1
        assert ledger.get_entry("user-1", "req-1") is None

    def test_same_request_id_is_replayed_not_recharged(self, db):
        ledger = CreditLedger(db, starter_credits=10)
        first = ledger.reserve("user-1", 2, "req-1", "presets_generation")

        second = ledger.reserve("user-1", 2, "req-1", "presets_generation")

        assert second.replayed is True
        assert second.entry_id == first.entry_id
        assert ledger.get_balance("user-1") == 8
        assert db.query(LedgerEntry).count() == 1

    def test_completed_request_id_replays_completed(self, db):
        ledger = CreditLedger(db, starter_credits=10)
        ledger.reserve("user-1", 2, "req-1", "presets_generation")
        ledger.finalize("user-1", "req-1", success=True)

        again = ledger.reserve("user-1", 2, "req-1", "presets_generation")

        assert again.replayed is True
        assert again.status == LEDGER_COMPLETED
        assert ledger.get_balance("user-1") == 8

    def test_refunded_request_id_is_single_use(self, db):
        ledger = CreditLedger(db, starter_credits=10)
        ledger.reserve("user-1", 2, "req-1", "presets_generation")
        ledger.finalize("user-1", "req-1", success=False)

        with pytest.raises(ValidationError):
            ledger.reserve("user-1", 2, "req-1", "presets_generation")
        assert ledger.get_balance("user-1") == 10

    def test_concurrent_duplicate_rolls_back_second_decrement(self, db):
        ledger = CreditLedger(db, starter_credits=10)
        ledger.reserve("user-1", 2, "req-1", "presets_generation")

        real_get_entry = CreditLedger.get_entry
        calls = {"n": 0}

        def stale_get_entry(self, user_id, request_id):
            # First lookup misses, as if the other request had not committed yet
            calls["n"] += 1
            if calls["n"] == 1:
                return None
            return real_get_entry(self, user_id, request_id)

        with patch.object(CreditLedger, "get_entry", stale_get_entry):
            replay = ledger.reserve("user-1", 2, "req-1", "presets_generation")

        assert replay.replayed is True
        assert ledger.get_balance("user-1") == 8
        assert db.query(LedgerEntry).count() == 1

    def test_rejects_non_positive_amount(self, db):
        ledger = CreditLedger(db, starter_credits=10)
        with pytest.raises(ValidationError):
            ledger.reserve("user-1", 0, "req-1", "presets_generation")

    def test_separate_users_have_separate_balances(self, db):
        ledger = CreditLedger(db, starter_credits=10)
        ledger.reserve("user-1", 4, "req-1", "presets_generation")
        ledger.reserve("user-2", 2, "req-1", "presets_generation")

        assert ledger.get_balance("user-1") == 6
        assert ledger.get_balance("user-2") == 8


class TestFinalize:
    def test_success_keeps_charge(self, db):
        ledger = CreditLedger(db, starter_credits=10)
        ledger.reserve("user-1", 2, "req-1", "presets_generation")

        assert ledger.finalize("user-1", "req-1", success=True) is True

        assert ledger.get_balance("user-1") == 8
        assert ledger.get_entry("user-1", "req-1").status == LEDGER_COMPLETED

    def test_failure_refunds(self, db):
        ledger = CreditLedger(db, starter_credits=10)
        ledger.reserve("user-1", 2, "req-1", "presets_generation")

        assert ledger.finalize("user-1", "req-1", success=False, meta={"refund_reason": "cascade_exhausted"}) is True

        assert ledger.get_balance("user-1") == 10
        entry = ledger.get_entry("user-1", "req-1")
        assert entry.status == LEDGER_REFUNDED
        assert entry.meta["refund_reason"] == "cascade_exhausted"
        assert entry.finalized_at is not None

    def test_finalize_is_idempotent(self, db):
        ledger = CreditLedger(db, starter_credits=10)
        ledger.reserve("user-1", 2, "req-1", "presets_generation")
        ledger.finalize("user-1", "req-1", success=False)

        assert ledger.finalize("user-1", "req-1", success=False) is False
        assert ledger.finalize("user-1", "req-1", success=True) is False
        assert ledger.get_balance("user-1") == 10

    def test_finalize_unknown_request_is_noop(self, db):
        ledger = CreditLedger(db, starter_credits=10)
        assert ledger.finalize("user-1", "missing", success=True) is False


class TestStaleReservationSweep:
    def test_refunds_only_old_reservations(self, db):
        ledger = CreditLedger(db, starter_credits=10)
        ledger.reserve("user-1", 2, "old", "presets_generation")
        ledger.reserve("user-1", 2, "fresh", "presets_generation")
        old = ledger.get_entry("user-1", "old")
        old.created_at = datetime.now(timezone.utc) - timedelta(hours=2)
        db.commit()

        refunded = ledger.sweep_stale_reservations(max_age_seconds=1800)

        assert refunded == 1
        assert ledger.get_entry("user-1", "old").status == LEDGER_REFUNDED
        assert ledger.get_entry("user-1", "fresh").status == LEDGER_RESERVED
        assert ledger.get_balance("user-1") == 8

    def test_completed_entries_are_not_touched(self, db):
        ledger = CreditLedger(db, starter_credits=10)
        ledger.reserve("user-1", 2, "done", "presets_generation")
        ledger.finalize("user-1", "done", success=True)
        entry = ledger.get_entry("user-1", "done")
        entry.created_at = datetime.now(timezone.utc) - timedelta(hours=2)
        db.commit()

        assert ledger.sweep_stale_reservations(max_age_seconds=60) == 0
        assert ledger.get_balance("user-1") == 8
