# Overview: Pytest coverage for stock ledger movements, adjustments, transfers and snapshot reconciliation.

"""
Stock Ledger Tests

Covers the ledger/snapshot contract:
1. Snapshot == newest resulting_stock == SUM(signed_quantity)
2. Depleting movements never take on-hand below zero and leave no trace when rejected
3. Ledger rows cannot be updated or deleted
4. Transfers write both legs or neither
"""

import inspect

import pytest
from sqlalchemy import func, update

from branchledger.extensions import db
from branchledger.models import StockLedgerEntry, StockSnapshot, MovementType
from branchledger.services import ledger_service
from branchledger.validation import (
    ValidationError,
    NotFoundError,
    InsufficientStockError,
    LedgerImmutableError,
)


def _entries(branch_id, product_id):
    return (
        db.session.query(StockLedgerEntry)
        .filter_by(branch_id=branch_id, product_id=product_id)
        .order_by(StockLedgerEntry.id.asc())
        .all()
    )


def _ledger_sum(branch_id, product_id):
    return db.session.query(
        func.coalesce(func.sum(StockLedgerEntry.signed_quantity), 0)
    ).filter_by(branch_id=branch_id, product_id=product_id).scalar()


class TestMovementType:
    def test_signs(self):
        assert MovementType.STOCK_IN.sign == 1
        assert MovementType.PURCHASE.sign == 1
        assert MovementType.TRANSFER_IN.sign == 1
        assert MovementType.STOCK_OUT.sign == -1
        assert MovementType.BILLING.sign == -1
        assert MovementType.TRANSFER_OUT.sign == -1
        assert MovementType.ADJUSTMENT.sign == 0

    def test_entry_rejects_bad_arithmetic(self):
        with pytest.raises(ValueError):
            StockLedgerEntry(
                tenant_id=1, branch_id=1, product_id=1,
                movement_type=MovementType.STOCK_IN,
                signed_quantity=5, previous_stock=0, resulting_stock=4,
            )

    def test_entry_rejects_unknown_type(self):
        with pytest.raises(ValueError):
            StockLedgerEntry(
                tenant_id=1, branch_id=1, product_id=1,
                movement_type="teleport",
                signed_quantity=1, previous_stock=0, resulting_stock=1,
            )


class TestRecordMovement:
    def test_initial_stock_in(self, db_session, branch_a, product_a):
        """Stock-in from zero creates the snapshot and one entry."""
        entry = ledger_service.record_movement(
            branch_id=branch_a.id,
            product_id=product_a.id,
            movement_type="stock_in",
            quantity=10,
            reason="initial",
            actor_id="user-1",
        )

        assert ledger_service.get_quantity(branch_a.id, product_a.id) == 10
        entries = _entries(branch_a.id, product_a.id)
        assert len(entries) == 1
        assert entries[0].id == entry.id
        assert entries[0].signed_quantity == 10
        assert entries[0].previous_stock == 0
        assert entries[0].resulting_stock == 10
        assert entries[0].movement_type == "stock_in"
        assert entries[0].actor_id == "user-1"

    def test_snapshot_matches_ledger_after_mixed_movements(self, db_session, branch_a, product_a):
        for movement_type, qty in (("stock_in", 10), ("stock_out", 4), ("purchase", 6), ("stock_out", 2)):
            ledger_service.record_movement(
                branch_id=branch_a.id,
                product_id=product_a.id,
                movement_type=movement_type,
                quantity=qty,
            )

        entries = _entries(branch_a.id, product_a.id)
        snapshot = ledger_service.get_quantity(branch_a.id, product_a.id)
        assert snapshot == 10
        assert entries[-1].resulting_stock == snapshot
        assert _ledger_sum(branch_a.id, product_a.id) == snapshot
        for prev, nxt in zip(entries, entries[1:]):
            assert nxt.previous_stock == prev.resulting_stock

    def test_insufficient_stock_leaves_no_trace(self, db_session, branch_a, product_a):
        ledger_service.record_movement(
            branch_id=branch_a.id, product_id=product_a.id, movement_type="stock_in", quantity=3,
        )

        with pytest.raises(InsufficientStockError) as exc_info:
            ledger_service.record_movement(
                branch_id=branch_a.id, product_id=product_a.id, movement_type="stock_out", quantity=5,
            )

        assert exc_info.value.details["available"] == 3
        assert exc_info.value.details["requested"] == 5
        assert ledger_service.get_quantity(branch_a.id, product_a.id) == 3
        assert len(_entries(branch_a.id, product_a.id)) == 1

    def test_stock_out_from_nothing_rejected(self, db_session, branch_a, product_a):
        with pytest.raises(InsufficientStockError):
            ledger_service.record_movement(
                branch_id=branch_a.id, product_id=product_a.id, movement_type="stock_out", quantity=1,
            )
        assert _entries(branch_a.id, product_a.id) == []

    @pytest.mark.parametrize("quantity", [0, -3, 1.5, "2.0", True])
    def test_invalid_quantity(self, db_session, branch_a, product_a, quantity):
        with pytest.raises(ValidationError):
            ledger_service.record_movement(
                branch_id=branch_a.id, product_id=product_a.id, movement_type="stock_in", quantity=quantity,
            )

    def test_unknown_movement_type(self, db_session, branch_a, product_a):
        with pytest.raises(ValidationError):
            ledger_service.record_movement(
                branch_id=branch_a.id, product_id=product_a.id, movement_type="gift", quantity=1,
            )

    def test_adjustment_must_go_through_adjust_stock(self, db_session, branch_a, product_a):
        with pytest.raises(ValidationError):
            ledger_service.record_movement(
                branch_id=branch_a.id, product_id=product_a.id, movement_type="adjustment", quantity=1,
            )

    def test_serial_product_rejected(self, db_session, branch_a, serial_product_a):
        with pytest.raises(ValidationError):
            ledger_service.record_movement(
                branch_id=branch_a.id, product_id=serial_product_a.id, movement_type="stock_in", quantity=1,
            )

    def test_unknown_branch(self, db_session, product_a):
        with pytest.raises(NotFoundError):
            ledger_service.record_movement(
                branch_id=99999, product_id=product_a.id, movement_type="stock_in", quantity=1,
            )

    def test_foreign_tenant_product_not_found(self, db_session, branch_a, product_b):
        with pytest.raises(NotFoundError):
            ledger_service.record_movement(
                branch_id=branch_a.id, product_id=product_b.id, movement_type="stock_in", quantity=1,
            )


class TestProductActivation:
    def test_stock_in_reactivates(self, db_session, branch_a, product_a):
        product_a.is_active = False
        db_session.commit()

        ledger_service.record_movement(
            branch_id=branch_a.id, product_id=product_a.id, movement_type="stock_in", quantity=5,
        )

        db_session.refresh(product_a)
        assert product_a.is_active is True
        rows = ledger_service.get_current_stock(branch_id=branch_a.id)
        assert [(p.id, q) for p, q in rows] == [(product_a.id, 5)]

    def test_stock_out_to_zero_deactivates(self, db_session, branch_a, product_a):
        ledger_service.record_movement(
            branch_id=branch_a.id, product_id=product_a.id, movement_type="stock_in", quantity=2,
        )
        ledger_service.record_movement(
            branch_id=branch_a.id, product_id=product_a.id, movement_type="stock_out", quantity=1,
        )
        db_session.refresh(product_a)
        assert product_a.is_active is True

        ledger_service.record_movement(
            branch_id=branch_a.id, product_id=product_a.id, movement_type="stock_out", quantity=1,
        )
        db_session.refresh(product_a)
        assert product_a.is_active is False

    def test_rejected_movement_keeps_flag(self, db_session, branch_a, product_a):
        product_a.is_active = False
        db_session.commit()

        with pytest.raises(InsufficientStockError):
            ledger_service.record_movement(
                branch_id=branch_a.id, product_id=product_a.id, movement_type="stock_out", quantity=1,
            )
        db_session.refresh(product_a)
        assert product_a.is_active is False

    def test_record_movement_always_commits(self):
        assert "commit" not in inspect.signature(ledger_service.record_movement).parameters


class TestLedgerImmutability:
    def test_update_rejected(self, db_session, branch_a, product_a):
        entry = ledger_service.record_movement(
            branch_id=branch_a.id, product_id=product_a.id, movement_type="stock_in", quantity=1,
        )
        entry.reason = "rewritten"
        with pytest.raises(LedgerImmutableError):
            db_session.flush()
        db_session.rollback()

        assert db_session.get(StockLedgerEntry, entry.id).reason is None

    def test_delete_rejected(self, db_session, branch_a, product_a):
        entry = ledger_service.record_movement(
            branch_id=branch_a.id, product_id=product_a.id, movement_type="stock_in", quantity=1,
        )
        db_session.delete(entry)
        with pytest.raises(LedgerImmutableError):
            db_session.flush()
        db_session.rollback()

        assert db_session.query(StockLedgerEntry).count() == 1


class TestAdjustStock:
    def test_adjust_down_records_delta(self, db_session, branch_a, product_a):
        ledger_service.record_movement(
            branch_id=branch_a.id, product_id=product_a.id, movement_type="stock_in", quantity=10,
        )
        entry = ledger_service.adjust_stock(
            branch_id=branch_a.id, product_id=product_a.id, target_quantity=7, reason="Physical count",
        )

        assert entry.movement_type == "adjustment"
        assert entry.signed_quantity == -3
        assert entry.previous_stock == 10
        assert entry.resulting_stock == 7
        assert ledger_service.get_quantity(branch_a.id, product_a.id) == 7

    def test_adjust_from_zero(self, db_session, branch_a, product_a):
        entry = ledger_service.adjust_stock(
            branch_id=branch_a.id, product_id=product_a.id, target_quantity=4, reason="Opening count",
        )
        assert entry.signed_quantity == 4
        assert ledger_service.get_quantity(branch_a.id, product_a.id) == 4

    def test_zero_delta_still_recorded(self, db_session, branch_a, product_a):
        ledger_service.adjust_stock(
            branch_id=branch_a.id, product_id=product_a.id, target_quantity=5, reason="count",
        )
        entry = ledger_service.adjust_stock(
            branch_id=branch_a.id, product_id=product_a.id, target_quantity=5, reason="recount",
        )
        assert entry.signed_quantity == 0
        assert len(_entries(branch_a.id, product_a.id)) == 2

    def test_negative_target_rejected(self, db_session, branch_a, product_a):
        with pytest.raises(ValidationError):
            ledger_service.adjust_stock(
                branch_id=branch_a.id, product_id=product_a.id, target_quantity=-1, reason="oops",
            )
        assert _entries(branch_a.id, product_a.id) == []

    def test_reason_required(self, db_session, branch_a, product_a):
        with pytest.raises(ValidationError):
            ledger_service.adjust_stock(
                branch_id=branch_a.id, product_id=product_a.id, target_quantity=1, reason="  ",
            )


class TestTransferStock:
    def test_transfer_moves_both_legs(self, db_session, branch_a, branch_a2, product_a):
        ledger_service.record_movement(
            branch_id=branch_a.id, product_id=product_a.id, movement_type="stock_in", quantity=10,
        )

        out_entry, in_entry = ledger_service.transfer_stock(
            from_branch_id=branch_a.id,
            to_branch_id=branch_a2.id,
            product_id=product_a.id,
            quantity=4,
            actor_id="user-1",
        )

        assert out_entry.movement_type == "transfer_out"
        assert in_entry.movement_type == "transfer_in"
        assert out_entry.reference_id == in_entry.reference_id
        assert out_entry.reference_id.startswith("TRF-")
        assert ledger_service.get_quantity(branch_a.id, product_a.id) == 6
        assert ledger_service.get_quantity(branch_a2.id, product_a.id) == 4

    def test_failed_destination_leg_rolls_back_source(
        self, db_session, branch_a, branch_a2, product_a, monkeypatch
    ):
        ledger_service.record_movement(
            branch_id=branch_a.id, product_id=product_a.id, movement_type="stock_in", quantity=10,
        )
        real_inner = ledger_service._record_movement_inner

        def failing_inner(**kwargs):
            if kwargs["movement_type"] is MovementType.TRANSFER_IN:
                raise RuntimeError("destination unavailable")
            return real_inner(**kwargs)

        monkeypatch.setattr(ledger_service, "_record_movement_inner", failing_inner)

        with pytest.raises(RuntimeError):
            ledger_service.transfer_stock(
                from_branch_id=branch_a.id,
                to_branch_id=branch_a2.id,
                product_id=product_a.id,
                quantity=4,
            )

        assert ledger_service.get_quantity(branch_a.id, product_a.id) == 10
        assert ledger_service.get_quantity(branch_a2.id, product_a.id) == 0
        assert len(_entries(branch_a.id, product_a.id)) == 1
        assert _entries(branch_a2.id, product_a.id) == []

    def test_insufficient_source_stock(self, db_session, branch_a, branch_a2, product_a):
        ledger_service.record_movement(
            branch_id=branch_a.id, product_id=product_a.id, movement_type="stock_in", quantity=2,
        )
        with pytest.raises(InsufficientStockError):
            ledger_service.transfer_stock(
                from_branch_id=branch_a.id, to_branch_id=branch_a2.id, product_id=product_a.id, quantity=3,
            )
        assert _entries(branch_a2.id, product_a.id) == []

    def test_same_branch_rejected(self, db_session, branch_a, product_a):
        with pytest.raises(ValidationError):
            ledger_service.transfer_stock(
                from_branch_id=branch_a.id, to_branch_id=branch_a.id, product_id=product_a.id, quantity=1,
            )

    def test_cross_tenant_rejected(self, db_session, branch_a, branch_b, product_a):
        ledger_service.record_movement(
            branch_id=branch_a.id, product_id=product_a.id, movement_type="stock_in", quantity=5,
        )
        with pytest.raises(ValidationError):
            ledger_service.transfer_stock(
                from_branch_id=branch_a.id, to_branch_id=branch_b.id, product_id=product_a.id, quantity=1,
            )
        assert ledger_service.get_quantity(branch_a.id, product_a.id) == 5


class TestReads:
    def test_get_ledger_newest_first(self, db_session, branch_a, product_a):
        for qty in (5, 3, 2):
            ledger_service.record_movement(
                branch_id=branch_a.id, product_id=product_a.id, movement_type="stock_in", quantity=qty,
            )

        entries = ledger_service.get_ledger(branch_id=branch_a.id, product_id=product_a.id)
        assert [e.signed_quantity for e in entries] == [2, 3, 5]

        limited = ledger_service.get_ledger(branch_id=branch_a.id, product_id=product_a.id, limit=1)
        assert len(limited) == 1
        assert limited[0].resulting_stock == 10

    def test_get_ledger_empty(self, db_session, branch_a, product_a):
        assert ledger_service.get_ledger(branch_id=branch_a.id, product_id=product_a.id) == []

    def test_get_ledger_limit_is_capped(self, app, db_session, branch_a, product_a):
        for qty in (1, 2, 3):
            ledger_service.record_movement(
                branch_id=branch_a.id, product_id=product_a.id, movement_type="stock_in", quantity=qty,
            )
        app.config["LEDGER_PAGE_LIMIT"] = 2
        try:
            entries = ledger_service.get_ledger(branch_id=branch_a.id, product_id=product_a.id, limit=500)
        finally:
            app.config["LEDGER_PAGE_LIMIT"] = 200

        assert [e.signed_quantity for e in entries] == [3, 2]

    @pytest.mark.parametrize("limit", [0, -1, "abc"])
    def test_get_ledger_bad_limit(self, db_session, branch_a, product_a, limit):
        with pytest.raises(ValidationError):
            ledger_service.get_ledger(branch_id=branch_a.id, product_id=product_a.id, limit=limit)

    def test_current_stock_lists_positive_active_only(
        self, db_session, branch_a, product_a, serial_product_a
    ):
        ledger_service.record_movement(
            branch_id=branch_a.id, product_id=product_a.id, movement_type="stock_in", quantity=3,
        )
        rows = ledger_service.get_current_stock(branch_id=branch_a.id)
        assert [(p.id, q) for p, q in rows] == [(product_a.id, 3)]

        ledger_service.record_movement(
            branch_id=branch_a.id, product_id=product_a.id, movement_type="stock_out", quantity=3,
        )
        assert ledger_service.get_current_stock(branch_id=branch_a.id) == []


class TestVerifySnapshots:
    def test_clean_ledger_has_no_mismatches(self, db_session, branch_a, branch_a2, product_a):
        ledger_service.record_movement(
            branch_id=branch_a.id, product_id=product_a.id, movement_type="stock_in", quantity=8,
        )
        ledger_service.transfer_stock(
            from_branch_id=branch_a.id, to_branch_id=branch_a2.id, product_id=product_a.id, quantity=3,
        )
        assert ledger_service.verify_snapshots() == []

    def test_detects_out_of_band_write(self, db_session, branch_a, product_a):
        ledger_service.record_movement(
            branch_id=branch_a.id, product_id=product_a.id, movement_type="stock_in", quantity=8,
        )
        db_session.execute(
            update(StockSnapshot)
            .where(StockSnapshot.branch_id == branch_a.id)
            .values(quantity=99)
        )
        db_session.commit()

        mismatches = ledger_service.verify_snapshots(branch_id=branch_a.id)
        assert len(mismatches) == 1
        assert mismatches[0]["snapshot"] == 99
        assert mismatches[0]["ledger_sum"] == 8
        assert mismatches[0]["newest_resulting"] == 8
