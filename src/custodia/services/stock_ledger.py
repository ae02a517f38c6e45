"""Append-only stock ledger.

The ledger is the only writer of ProductLot.quantity. Every change to a lot
is paired with an immutable StockMovement carrying the signed delta, so for
every lot at all times:

    lot.quantity == sum(movement.quantity for movement in lot's movements)

All methods run inside the caller's transaction and never commit.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import UTC, date, datetime, timedelta
from typing import TYPE_CHECKING, Any

from sqlalchemy import func, select

from custodia.db.models.base import AuditAction, MovementType
from custodia.db.models.inventory import Product, ProductLot, StockMovement
from custodia.services.audit_log import AuditLogService
from custodia.services.errors import InsufficientStockError, NotFoundError, ValidationError

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence
    from uuid import UUID

    from sqlalchemy.ext.asyncio import AsyncSession

    from custodia.core.config import InventorySettings
    from custodia.services.allocation import LotAllocation

logger = logging.getLogger(__name__)

DEFAULT_ENTRY_REASON = "Stock entry"
DEFAULT_RETURN_REASON = "Return"


@dataclass(frozen=True, slots=True)
class LotVerification:
    """Comparison between a lot's stored quantity and its ledger."""

    lot_id: UUID
    quantity: int
    ledger_sum: int
    movement_count: int

    @property
    def consistent(self) -> bool:
        return self.quantity == self.ledger_sum


@dataclass(frozen=True, slots=True)
class ProductStock:
    """Current stock of a product across its active lots."""

    product_id: UUID
    total: int
    lots: list[ProductLot]


@dataclass(frozen=True, slots=True)
class LowStockProduct:
    """Product whose stock fell below its configured minimum."""

    product: Product
    current_stock: int


@dataclass(frozen=True, slots=True)
class CategoryStock:
    """Active products and units in stock for one category."""

    category: str | None
    product_count: int
    total_stock: int


def _generated_lot_number(prefix: str) -> str:
    millis = int(datetime.now(UTC).timestamp() * 1000)
    return f"{prefix}-{millis}-{uuid.uuid4().hex[:4].upper()}"


def _lot_values(lot: ProductLot) -> dict[str, Any]:
    return {"lot_number": lot.lot_number, "quantity": lot.quantity}


class StockLedgerService:
    """Sole writer of lot quantities and stock movements.

    Example:
        ledger = StockLedgerService(session, settings.inventory)
        movement = await ledger.record_entry(
            product_id=product.product_id,
            quantity=50,
            actor_id="warehouse-1",
            lot_number="L-2026-01",
            expiry_date=date(2027, 1, 31),
        )
        await session.commit()
    """

    def __init__(
        self,
        session: AsyncSession,
        inventory_settings: InventorySettings | None = None,
    ) -> None:
        """Initialize the ledger.

        Args:
            session: SQLAlchemy async session for database operations.
            inventory_settings: Inventory settings; loaded from the
                environment when omitted.
        """
        if inventory_settings is None:
            from custodia.core.settings import get_settings

            inventory_settings = get_settings().inventory
        self._session = session
        self._settings = inventory_settings
        self._audit = AuditLogService(session)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def record_entry(
        self,
        *,
        product_id: UUID,
        quantity: int,
        actor_id: str,
        lot_number: str | None = None,
        expiry_date: date | None = None,
        reason: str | None = None,
        reference: str | None = None,
    ) -> StockMovement:
        """Receive goods into a lot, creating the lot when it does not exist.

        An existing lot with the same number is topped up; its expiry date is
        only filled in when it had none.

        Raises:
            ValidationError: On a non-positive quantity, or a perishable
                product without lot number and expiry date.
            NotFoundError: If the product does not exist.
        """
        if quantity <= 0:
            raise ValidationError("Entry quantity must be greater than zero", field="quantity")

        product = await self._get_product(product_id)
        if (
            self._settings.require_expiry_for_perishables
            and product.is_perishable
            and (not lot_number or expiry_date is None)
        ):
            raise ValidationError(
                "Perishable products require a lot number and an expiry date",
                field="expiry_date",
            )

        lot_number = lot_number or _generated_lot_number("LOT")
        lot = await self._find_lot_by_number(product_id, lot_number)
        old_values: dict[str, Any] | None = None
        if lot is None:
            lot = ProductLot(
                product_id=product_id,
                lot_number=lot_number,
                quantity=quantity,
                expiry_date=expiry_date,
            )
            self._session.add(lot)
        else:
            old_values = _lot_values(lot)
            lot.quantity += quantity
            lot.updated_at = datetime.now(UTC)
            if lot.expiry_date is None and expiry_date is not None:
                lot.expiry_date = expiry_date
        await self._session.flush()

        movement = await self._add_movement(
            lot=lot,
            movement_type=MovementType.ENTRY,
            quantity=quantity,
            reason=reason or DEFAULT_ENTRY_REASON,
            reference=reference,
            actor_id=actor_id,
        )
        await self._audit.append(
            entity="product_lot",
            entity_id=str(lot.lot_id),
            action=AuditAction.ENTRY,
            actor_id=actor_id,
            old_values=old_values,
            new_values=_lot_values(lot),
        )
        logger.info(
            "Stock entry recorded",
            extra={
                "product_id": str(product_id),
                "lot_id": str(lot.lot_id),
                "quantity": quantity,
                "actor_id": actor_id,
            },
        )
        return movement

    async def record_exit(
        self,
        allocations: Iterable[LotAllocation],
        *,
        reason: str,
        actor_id: str,
        reference: str | None = None,
    ) -> list[StockMovement]:
        """Draw stock according to an allocation plan.

        Lots are re-read with a row lock; a lot that no longer holds the
        planned units aborts the whole operation.

        Raises:
            InsufficientStockError: If a lot cannot cover its planned units.
            NotFoundError: If a planned lot does not exist.
        """
        movements: list[StockMovement] = []
        for allocation in allocations:
            if allocation.quantity <= 0:
                raise ValidationError("Allocation quantity must be greater than zero")
            lot = await self._get_lot(allocation.lot_id, lock=True)
            if lot.quantity < allocation.quantity:
                raise InsufficientStockError(lot.product_id, allocation.quantity, lot.quantity)

            old_values = _lot_values(lot)
            lot.quantity -= allocation.quantity
            lot.updated_at = datetime.now(UTC)
            movements.append(
                await self._add_movement(
                    lot=lot,
                    movement_type=MovementType.EXIT,
                    quantity=-allocation.quantity,
                    reason=reason,
                    reference=reference,
                    actor_id=actor_id,
                )
            )
            await self._audit.append(
                entity="product_lot",
                entity_id=str(lot.lot_id),
                action=AuditAction.UPDATE,
                actor_id=actor_id,
                old_values=old_values,
                new_values={**_lot_values(lot), "reference": reference},
            )
        return movements

    async def record_adjustment(
        self,
        *,
        lot_id: UUID,
        delta: int,
        reason: str,
        actor_id: str,
    ) -> StockMovement:
        """Apply a signed manual correction to a lot.

        Raises:
            ValidationError: On a zero delta, a missing reason, or a result
                below zero.
            NotFoundError: If the lot does not exist.
        """
        if delta == 0:
            raise ValidationError("Adjustment must be non-zero", field="delta")
        if not reason or not reason.strip():
            raise ValidationError("Adjustment reason is required", field="reason")

        lot = await self._get_lot(lot_id, lock=True)
        if lot.quantity + delta < 0:
            raise ValidationError(
                "Adjustment would result in negative stock",
                field="delta",
                detail={"quantity": lot.quantity, "delta": delta},
            )

        old_values = _lot_values(lot)
        lot.quantity += delta
        lot.updated_at = datetime.now(UTC)
        movement = await self._add_movement(
            lot=lot,
            movement_type=MovementType.ADJUSTMENT,
            quantity=delta,
            reason=reason,
            reference=None,
            actor_id=actor_id,
        )
        await self._audit.append(
            entity="product_lot",
            entity_id=str(lot.lot_id),
            action=AuditAction.ADJUSTMENT,
            actor_id=actor_id,
            old_values=old_values,
            new_values=_lot_values(lot),
        )
        return movement

    async def record_return(
        self,
        *,
        product_id: UUID,
        quantity: int,
        actor_id: str,
        lot_id: UUID | None = None,
        reason: str | None = None,
        reference: str | None = None,
    ) -> StockMovement:
        """Return goods into their original lot, or into a new RET- lot.

        Raises:
            ValidationError: On a non-positive quantity or a lot that belongs
                to another product.
            NotFoundError: If the product or lot does not exist.
        """
        if quantity <= 0:
            raise ValidationError("Return quantity must be greater than zero", field="quantity")
        await self._get_product(product_id)

        old_values: dict[str, Any] | None = None
        if lot_id is not None:
            lot = await self._get_lot(lot_id, lock=True)
            if lot.product_id != product_id:
                raise ValidationError("Lot does not belong to the product", field="lot_id")
            old_values = _lot_values(lot)
            lot.quantity += quantity
            lot.updated_at = datetime.now(UTC)
        else:
            lot = ProductLot(
                product_id=product_id,
                lot_number=_generated_lot_number("RET"),
                quantity=quantity,
            )
            self._session.add(lot)
        await self._session.flush()

        movement = await self._add_movement(
            lot=lot,
            movement_type=MovementType.RETURN,
            quantity=quantity,
            reason=reason or DEFAULT_RETURN_REASON,
            reference=reference,
            actor_id=actor_id,
        )
        await self._audit.append(
            entity="product_lot",
            entity_id=str(lot.lot_id),
            action=AuditAction.RETURN,
            actor_id=actor_id,
            old_values=old_values,
            new_values=_lot_values(lot),
        )
        return movement

    async def reverse_exits(
        self,
        reference: str,
        *,
        reason: str,
        actor_id: str,
    ) -> list[StockMovement]:
        """Compensate every outstanding EXIT carrying ``reference``.

        For each lot the net of EXIT and RETURN movements under the reference
        is brought back to zero with a RETURN into the same lot, so calling
        this twice never returns stock twice.
        """
        result = await self._session.execute(
            select(StockMovement)
            .where(
                StockMovement.reference == reference,
                StockMovement.movement_type.in_([MovementType.EXIT, MovementType.RETURN]),
            )
            .order_by(StockMovement.created_at, StockMovement.movement_id)
        )
        net_by_lot: dict[UUID, int] = {}
        for movement in result.scalars().all():
            net_by_lot[movement.lot_id] = net_by_lot.get(movement.lot_id, 0) + movement.quantity

        reversals: list[StockMovement] = []
        for lot_id, net in net_by_lot.items():
            if net >= 0:
                continue
            lot = await self._get_lot(lot_id, lock=True)
            old_values = _lot_values(lot)
            lot.quantity += -net
            lot.updated_at = datetime.now(UTC)
            reversals.append(
                await self._add_movement(
                    lot=lot,
                    movement_type=MovementType.RETURN,
                    quantity=-net,
                    reason=reason,
                    reference=reference,
                    actor_id=actor_id,
                )
            )
            await self._audit.append(
                entity="product_lot",
                entity_id=str(lot.lot_id),
                action=AuditAction.RETURN,
                actor_id=actor_id,
                old_values=old_values,
                new_values={**_lot_values(lot), "reference": reference},
            )

        logger.info(
            "Reversed stock exits",
            extra={"reference": reference, "lots": len(reversals)},
        )
        return reversals

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def lot_balance(self, lot_id: UUID) -> int:
        """Sum of the signed movements of a lot."""
        result = await self._session.execute(
            select(func.coalesce(func.sum(StockMovement.quantity), 0)).where(
                StockMovement.lot_id == lot_id
            )
        )
        return int(result.scalar_one())

    async def verify_lot(self, lot_id: UUID) -> LotVerification:
        """Compare a lot's stored quantity with its ledger."""
        lot = await self._get_lot(lot_id)
        result = await self._session.execute(
            select(
                func.coalesce(func.sum(StockMovement.quantity), 0),
                func.count(StockMovement.movement_id),
            ).where(StockMovement.lot_id == lot_id)
        )
        ledger_sum, movement_count = result.one()
        verification = LotVerification(
            lot_id=lot_id,
            quantity=lot.quantity,
            ledger_sum=int(ledger_sum),
            movement_count=int(movement_count),
        )
        if not verification.consistent:
            logger.error(
                "Lot quantity diverges from ledger",
                extra={
                    "lot_id": str(lot_id),
                    "quantity": lot.quantity,
                    "ledger_sum": verification.ledger_sum,
                },
            )
        return verification

    async def product_stock(self, product_id: UUID) -> ProductStock:
        """Current stock of a product across active lots with units left."""
        await self._get_product(product_id)
        result = await self._session.execute(
            select(ProductLot)
            .where(
                ProductLot.product_id == product_id,
                ProductLot.is_active.is_(True),
                ProductLot.quantity > 0,
            )
            .order_by(ProductLot.expiry_date.asc(), ProductLot.entry_date.asc())
        )
        lots = list(result.scalars().all())
        return ProductStock(
            product_id=product_id,
            total=sum(lot.quantity for lot in lots),
            lots=lots,
        )

    async def stock_by_product(self, product_ids: Sequence[UUID]) -> dict[UUID, int]:
        """Active stock totals for several products (missing ones map to 0)."""
        if not product_ids:
            return {}
        result = await self._session.execute(
            select(ProductLot.product_id, func.coalesce(func.sum(ProductLot.quantity), 0))
            .where(
                ProductLot.product_id.in_(list(product_ids)),
                ProductLot.is_active.is_(True),
            )
            .group_by(ProductLot.product_id)
        )
        totals = {product_id: 0 for product_id in product_ids}
        for product_id, total in result.all():
            totals[product_id] = int(total)
        return totals

    async def expiring_lots(
        self,
        days_ahead: int | None = None,
        *,
        today: date | None = None,
    ) -> list[ProductLot]:
        """Lots with stock whose expiry falls within the look-ahead window.

        Args:
            days_ahead: Window length; defaults to the configured window.
            today: Reference date (defaults to the current UTC date).
        """
        days = days_ahead if days_ahead is not None else self._settings.expiring_window_days
        if days <= 0:
            raise ValidationError("days_ahead must be greater than zero", field="days_ahead")
        start = today or datetime.now(UTC).date()
        end = start + timedelta(days=days)

        result = await self._session.execute(
            select(ProductLot)
            .where(
                ProductLot.is_active.is_(True),
                ProductLot.quantity > 0,
                ProductLot.expiry_date.is_not(None),
                ProductLot.expiry_date >= start,
                ProductLot.expiry_date <= end,
            )
            .order_by(ProductLot.expiry_date.asc())
        )
        return list(result.scalars().all())

    async def low_stock_products(self) -> list[LowStockProduct]:
        """Active products with a minimum configured and stock below it."""
        stock = (
            select(
                ProductLot.product_id.label("product_id"),
                func.sum(ProductLot.quantity).label("total"),
            )
            .where(ProductLot.is_active.is_(True))
            .group_by(ProductLot.product_id)
            .subquery()
        )
        current = func.coalesce(stock.c.total, 0)
        result = await self._session.execute(
            select(Product, current)
            .outerjoin(stock, stock.c.product_id == Product.product_id)
            .where(
                Product.is_active.is_(True),
                Product.min_stock > 0,
                current < Product.min_stock,
            )
            .order_by(Product.code)
        )
        return [
            LowStockProduct(product=product, current_stock=int(total))
            for product, total in result.all()
        ]

    async def stock_by_category(self) -> list[CategoryStock]:
        """Active product count and stock per category, uncategorized last."""
        stock = (
            select(
                ProductLot.product_id.label("product_id"),
                func.sum(ProductLot.quantity).label("total"),
            )
            .where(ProductLot.is_active.is_(True))
            .group_by(ProductLot.product_id)
            .subquery()
        )
        result = await self._session.execute(
            select(
                Product.category,
                func.count(Product.product_id),
                func.coalesce(func.sum(stock.c.total), 0),
            )
            .outerjoin(stock, stock.c.product_id == Product.product_id)
            .where(Product.is_active.is_(True))
            .group_by(Product.category)
            .order_by(Product.category.is_(None), Product.category)
        )
        return [
            CategoryStock(category=category, product_count=int(count), total_stock=int(total))
            for category, count, total in result.all()
        ]

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _add_movement(
        self,
        *,
        lot: ProductLot,
        movement_type: MovementType,
        quantity: int,
        reason: str,
        reference: str | None,
        actor_id: str,
    ) -> StockMovement:
        movement = StockMovement(
            product_id=lot.product_id,
            lot_id=lot.lot_id,
            movement_type=movement_type,
            quantity=quantity,
            reason=reason,
            reference=reference,
            actor_id=actor_id,
        )
        self._session.add(movement)
        await self._session.flush()
        return movement

    async def _get_product(self, product_id: UUID) -> Product:
        result = await self._session.execute(
            select(Product).where(Product.product_id == product_id)
        )
        product = result.scalar_one_or_none()
        if product is None:
            raise NotFoundError("product", product_id)
        return product

    async def _get_lot(self, lot_id: UUID, *, lock: bool = False) -> ProductLot:
        query = select(ProductLot).where(ProductLot.lot_id == lot_id)
        if lock:
            query = query.with_for_update()
        result = await self._session.execute(query)
        lot = result.scalar_one_or_none()
        if lot is None:
            raise NotFoundError("product_lot", lot_id)
        return lot

    async def _find_lot_by_number(self, product_id: UUID, lot_number: str) -> ProductLot | None:
        result = await self._session.execute(
            select(ProductLot)
            .where(ProductLot.product_id == product_id, ProductLot.lot_number == lot_number)
            .with_for_update()
        )
        return result.scalar_one_or_none()
