"""Tests for the append-only stock ledger.

Every test checks the ledger invariant where it writes: a lot's quantity
equals the sum of its signed movements.
"""

from __future__ import annotations

from datetime import date, timedelta
from uuid import uuid4

import pytest
from sqlalchemy import select, update

from custodia.db.models import AuditLogRecord, MovementType, ProductLot
from custodia.services.allocation import LotAllocation
from custodia.services.errors import InsufficientStockError, NotFoundError, ValidationError
from tests.factories import create_product, receive_stock

ACTOR = "warehouse-1"


def allocation_for(lot: ProductLot, quantity: int) -> LotAllocation:
    """Single-lot allocation plan."""
    return LotAllocation(
        lot_id=lot.lot_id,
        product_id=lot.product_id,
        lot_number=lot.lot_number,
        quantity=quantity,
        expiry_date=lot.expiry_date,
    )


async def assert_consistent(ledger, lot: ProductLot) -> None:
    verification = await ledger.verify_lot(lot.lot_id)
    assert verification.consistent, verification


class TestRecordEntry:
    """Tests for StockLedgerService.record_entry()."""

    async def test_entry_creates_lot_and_movement(self, session, ledger):
        """A new lot number creates the lot with one ENTRY movement."""
        product = await create_product(session)

        movement = await ledger.record_entry(
            product_id=product.product_id,
            quantity=50,
            actor_id=ACTOR,
            lot_number="L-01",
            expiry_date=date(2027, 1, 31),
        )
        await session.commit()

        lot = await session.get(ProductLot, movement.lot_id)
        assert lot.quantity == 50
        assert lot.lot_number == "L-01"
        assert movement.movement_type == MovementType.ENTRY
        assert movement.quantity == 50
        assert movement.reason == "Stock entry"
        await assert_consistent(ledger, lot)

    async def test_entry_tops_up_existing_lot(self, session, ledger):
        """The same lot number adds to the existing lot."""
        product = await create_product(session)
        lot = await receive_stock(session, product, 10, lot_number="L-02")

        await ledger.record_entry(
            product_id=product.product_id,
            quantity=5,
            actor_id=ACTOR,
            lot_number="L-02",
            expiry_date=date(2027, 6, 1),
        )
        await session.commit()

        assert lot.quantity == 15
        assert lot.expiry_date == date(2027, 6, 1)
        verification = await ledger.verify_lot(lot.lot_id)
        assert verification.consistent
        assert verification.movement_count == 2

    async def test_generated_lot_number(self, session, ledger):
        """Entries without a lot number get a generated LOT- number."""
        product = await create_product(session)

        movement = await ledger.record_entry(
            product_id=product.product_id, quantity=3, actor_id=ACTOR
        )

        lot = await session.get(ProductLot, movement.lot_id)
        assert lot.lot_number.startswith("LOT-")

    async def test_perishable_requires_expiry(self, session, ledger):
        """Perishable products need both lot number and expiry date."""
        product = await create_product(session, is_perishable=True)

        with pytest.raises(ValidationError) as exc_info:
            await ledger.record_entry(
                product_id=product.product_id,
                quantity=3,
                actor_id=ACTOR,
                lot_number="L-03",
            )

        assert exc_info.value.field == "expiry_date"

    async def test_non_positive_quantity_rejected(self, session, ledger):
        """Entries must add units."""
        product = await create_product(session)

        with pytest.raises(ValidationError):
            await ledger.record_entry(product_id=product.product_id, quantity=0, actor_id=ACTOR)

    async def test_unknown_product(self, ledger):
        """Entries against a missing product fail."""
        with pytest.raises(NotFoundError):
            await ledger.record_entry(product_id=uuid4(), quantity=1, actor_id=ACTOR)

    async def test_entry_is_audited(self, session, ledger):
        """Each entry appends an audit record for the lot."""
        product = await create_product(session)
        lot = await receive_stock(session, product, 4)

        result = await session.execute(
            select(AuditLogRecord).where(AuditLogRecord.entity_id == str(lot.lot_id))
        )
        records = result.scalars().all()
        assert len(records) == 1
        assert records[0].new_values == {"lot_number": lot.lot_number, "quantity": 4}


class TestRecordExit:
    """Tests for StockLedgerService.record_exit()."""

    async def test_exit_decrements_lot(self, session, ledger):
        """An exit stores a negative movement and lowers the lot."""
        product = await create_product(session)
        lot = await receive_stock(session, product, 10)

        movements = await ledger.record_exit(
            [allocation_for(lot, 4)], reason="Delivery ENT-1", actor_id=ACTOR, reference="d-1"
        )
        await session.commit()

        assert lot.quantity == 6
        assert [(m.movement_type, m.quantity, m.reference) for m in movements] == [
            (MovementType.EXIT, -4, "d-1")
        ]
        await assert_consistent(ledger, lot)

    async def test_exit_beyond_lot_quantity(self, session, ledger):
        """A plan that no longer fits the lot is refused."""
        product = await create_product(session)
        lot = await receive_stock(session, product, 3)

        with pytest.raises(InsufficientStockError):
            await ledger.record_exit([allocation_for(lot, 5)], reason="x", actor_id=ACTOR)


class TestRecordAdjustment:
    """Tests for StockLedgerService.record_adjustment()."""

    async def test_signed_adjustments(self, session, ledger):
        """Adjustments move the lot in either direction."""
        product = await create_product(session)
        lot = await receive_stock(session, product, 10)

        await ledger.record_adjustment(
            lot_id=lot.lot_id, delta=-3, reason="Damaged", actor_id=ACTOR
        )
        await ledger.record_adjustment(lot_id=lot.lot_id, delta=1, reason="Recount", actor_id=ACTOR)
        await session.commit()

        assert lot.quantity == 8
        await assert_consistent(ledger, lot)

    async def test_adjustment_cannot_go_negative(self, session, ledger):
        """A lot never drops below zero."""
        product = await create_product(session)
        lot = await receive_stock(session, product, 2)

        with pytest.raises(ValidationError) as exc_info:
            await ledger.record_adjustment(
                lot_id=lot.lot_id, delta=-3, reason="Loss", actor_id=ACTOR
            )

        assert exc_info.value.detail["quantity"] == 2

    @pytest.mark.parametrize(("delta", "reason"), [(0, "Recount"), (2, "  ")])
    async def test_invalid_adjustments(self, session, ledger, delta, reason):
        """Zero deltas and blank reasons are rejected."""
        product = await create_product(session)
        lot = await receive_stock(session, product, 2)

        with pytest.raises(ValidationError):
            await ledger.record_adjustment(
                lot_id=lot.lot_id, delta=delta, reason=reason, actor_id=ACTOR
            )


class TestRecordReturn:
    """Tests for StockLedgerService.record_return()."""

    async def test_return_into_original_lot(self, session, ledger):
        """Returned units go back into the given lot."""
        product = await create_product(session)
        lot = await receive_stock(session, product, 5)

        movement = await ledger.record_return(
            product_id=product.product_id, quantity=2, actor_id=ACTOR, lot_id=lot.lot_id
        )
        await session.commit()

        assert movement.lot_id == lot.lot_id
        assert lot.quantity == 7
        await assert_consistent(ledger, lot)

    async def test_return_into_new_lot(self, session, ledger):
        """Without a lot, a RET- lot is created."""
        product = await create_product(session)

        movement = await ledger.record_return(
            product_id=product.product_id, quantity=2, actor_id=ACTOR
        )

        lot = await session.get(ProductLot, movement.lot_id)
        assert lot.lot_number.startswith("RET-")
        assert lot.quantity == 2
        assert movement.movement_type == MovementType.RETURN

    async def test_return_to_foreign_lot(self, session, ledger):
        """The lot must belong to the returned product."""
        product = await create_product(session)
        other = await create_product(session)
        lot = await receive_stock(session, other, 5)

        with pytest.raises(ValidationError):
            await ledger.record_return(
                product_id=product.product_id, quantity=1, actor_id=ACTOR, lot_id=lot.lot_id
            )


class TestReverseExits:
    """Tests for StockLedgerService.reverse_exits()."""

    async def test_reverse_restores_each_lot(self, session, ledger):
        """Every exit under the reference is returned to its lot."""
        product = await create_product(session)
        lot_a = await receive_stock(session, product, 10)
        lot_b = await receive_stock(session, product, 10)
        await ledger.record_exit(
            [allocation_for(lot_a, 10), allocation_for(lot_b, 3)],
            reason="Delivery",
            actor_id=ACTOR,
            reference="d-2",
        )

        reversals = await ledger.reverse_exits("d-2", reason="Cancelled", actor_id=ACTOR)
        await session.commit()

        assert sorted(m.quantity for m in reversals) == [3, 10]
        assert all(m.movement_type == MovementType.RETURN for m in reversals)
        assert (lot_a.quantity, lot_b.quantity) == (10, 10)
        await assert_consistent(ledger, lot_a)
        await assert_consistent(ledger, lot_b)

    async def test_reverse_is_idempotent(self, session, ledger):
        """A second reversal finds nothing outstanding."""
        product = await create_product(session)
        lot = await receive_stock(session, product, 10)
        await ledger.record_exit(
            [allocation_for(lot, 6)], reason="Delivery", actor_id=ACTOR, reference="d-3"
        )
        await ledger.reverse_exits("d-3", reason="Cancelled", actor_id=ACTOR)

        again = await ledger.reverse_exits("d-3", reason="Cancelled", actor_id=ACTOR)

        assert again == []
        assert lot.quantity == 10

    async def test_other_references_untouched(self, session, ledger):
        """Only movements carrying the reference are compensated."""
        product = await create_product(session)
        lot = await receive_stock(session, product, 10)
        await ledger.record_exit(
            [allocation_for(lot, 2)], reason="Delivery", actor_id=ACTOR, reference="d-4"
        )
        await ledger.record_exit(
            [allocation_for(lot, 3)], reason="Delivery", actor_id=ACTOR, reference="d-5"
        )

        await ledger.reverse_exits("d-4", reason="Cancelled", actor_id=ACTOR)

        assert lot.quantity == 7


class TestReads:
    """Tests for the ledger read helpers."""

    async def test_verify_detects_divergence(self, session, ledger):
        """A lot edited outside the ledger no longer matches its movements."""
        product = await create_product(session)
        lot = await receive_stock(session, product, 10)

        await session.execute(
            update(ProductLot).where(ProductLot.lot_id == lot.lot_id).values(quantity=99)
        )

        verification = await ledger.verify_lot(lot.lot_id)
        assert not verification.consistent
        assert (verification.quantity, verification.ledger_sum) == (99, 10)

    async def test_lot_balance(self, session, ledger):
        """lot_balance sums the signed movements."""
        product = await create_product(session)
        lot = await receive_stock(session, product, 10)
        await ledger.record_adjustment(lot_id=lot.lot_id, delta=-4, reason="Loss", actor_id=ACTOR)

        assert await ledger.lot_balance(lot.lot_id) == 6

    async def test_product_stock(self, session, ledger):
        """Product stock lists lots with units left."""
        product = await create_product(session)
        await receive_stock(session, product, 4)
        empty = await receive_stock(session, product, 2)
        await ledger.record_adjustment(
            lot_id=empty.lot_id, delta=-2, reason="Loss", actor_id=ACTOR
        )

        stock = await ledger.product_stock(product.product_id)

        assert stock.total == 4
        assert len(stock.lots) == 1

    async def test_stock_by_product_defaults_to_zero(self, session, ledger):
        """Products without lots report zero."""
        stocked = await create_product(session)
        bare = await create_product(session)
        await receive_stock(session, stocked, 6)

        totals = await ledger.stock_by_product([stocked.product_id, bare.product_id])

        assert totals == {stocked.product_id: 6, bare.product_id: 0}

    async def test_expiring_lots_window(self, session, ledger):
        """Only lots expiring inside the window are reported."""
        product = await create_product(session)
        today = date(2026, 10, 19)
        soon = await receive_stock(session, product, 3, expiry_date=today + timedelta(days=10))
        await receive_stock(session, product, 3, expiry_date=today + timedelta(days=90))
        await receive_stock(session, product, 3)

        lots = await ledger.expiring_lots(30, today=today)

        assert [lot.lot_id for lot in lots] == [soon.lot_id]

    async def test_expiring_lots_invalid_window(self, ledger):
        """The window must be positive."""
        with pytest.raises(ValidationError):
            await ledger.expiring_lots(0)

    async def test_low_stock_products(self, session, ledger):
        """Products below their minimum are listed, including unstocked ones."""
        low = await create_product(session, code="A-LOW", min_stock=10)
        await receive_stock(session, low, 4)
        empty = await create_product(session, code="B-EMPTY", min_stock=5)
        fine = await create_product(session, code="C-FINE", min_stock=2)
        await receive_stock(session, fine, 8)
        await create_product(session, code="D-NOMIN")

        items = await ledger.low_stock_products()

        assert [(i.product.product_id, i.current_stock) for i in items] == [
            (low.product_id, 4),
            (empty.product_id, 0),
        ]


class TestStockByCategory:
    """Tests for StockLedgerService.stock_by_category()."""

    async def test_groups_active_products(self, session, ledger):
        """Products and units are totalled per category, uncategorized last."""
        rice = await create_product(session, category="Food")
        beans = await create_product(session, category="Food")
        soap = await create_product(session, category="Hygiene")
        await create_product(session)
        await receive_stock(session, rice, 10)
        await receive_stock(session, beans, 4)
        await receive_stock(session, soap, 7)

        report = await ledger.stock_by_category()

        assert [(c.category, c.product_count, c.total_stock) for c in report] == [
            ("Food", 2, 14),
            ("Hygiene", 1, 7),
            (None, 1, 0),
        ]

    async def test_inactive_products_and_lots_excluded(self, session, ledger):
        """Inactive products are not counted and inactive lots hold no stock."""
        tents = await create_product(session, category="Shelter")
        retired = await create_product(session, category="Shelter")
        retired.is_active = False
        await session.commit()
        await receive_stock(session, tents, 3)
        old_lot = await receive_stock(session, tents, 5)
        await session.execute(
            update(ProductLot).where(ProductLot.lot_id == old_lot.lot_id).values(is_active=False)
        )
        await session.commit()

        report = await ledger.stock_by_category()

        assert [(c.category, c.product_count, c.total_stock) for c in report] == [
            ("Shelter", 1, 3)
        ]
