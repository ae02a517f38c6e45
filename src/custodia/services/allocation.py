"""FEFO (first-expired-first-out) lot allocation and kit expansion.

The planner functions are pure: they take lot snapshots and return a plan.
LotAllocator reads the candidate lots from the database (locking them when
the plan is about to be persisted) and hands them to the planner, so the
read that produced a plan and the stock decrement share one transaction.

FEFO order key: expiry date ascending with undated lots last, then entry
date ascending, then lot id as a stable tie-breaker.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import UTC, date, datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy import case, select

from custodia.db.models.inventory import ProductLot
from custodia.services.errors import InsufficientStockError, ValidationError

if TYPE_CHECKING:
    from collections.abc import Iterable
    from uuid import UUID

    from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class LotSnapshot:
    """Point-in-time view of a lot used for planning."""

    lot_id: UUID
    product_id: UUID
    lot_number: str
    quantity: int
    expiry_date: date | None
    entry_date: datetime
    is_active: bool = True

    @classmethod
    def from_lot(cls, lot: ProductLot) -> LotSnapshot:
        """Build a snapshot from an ORM lot row."""
        return cls(
            lot_id=lot.lot_id,
            product_id=lot.product_id,
            lot_number=lot.lot_number,
            quantity=lot.quantity,
            expiry_date=lot.expiry_date,
            entry_date=lot.entry_date,
            is_active=lot.is_active,
        )


@dataclass(frozen=True, slots=True)
class LotAllocation:
    """Units to draw from a single lot."""

    lot_id: UUID
    product_id: UUID
    lot_number: str
    quantity: int
    expiry_date: date | None

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-friendly dictionary."""
        return {
            "lot_id": str(self.lot_id),
            "product_id": str(self.product_id),
            "lot_number": self.lot_number,
            "quantity": self.quantity,
            "expiry_date": self.expiry_date.isoformat() if self.expiry_date else None,
        }


@dataclass(frozen=True, slots=True)
class ProductDemand:
    """Units of one product needed by a line item (kit lines are expanded)."""

    product_id: UUID
    quantity: int
    kit_id: UUID | None = None


@dataclass(frozen=True, slots=True)
class AllocationPreview:
    """Read-only FEFO plan for a product."""

    product_id: UUID
    requested: int
    available: int
    feasible: bool
    allocations: list[LotAllocation] = field(default_factory=list)

    @property
    def shortfall(self) -> int:
        return max(self.requested - self.available, 0)


@dataclass(frozen=True, slots=True)
class ComponentAvailability:
    """Stock sufficiency of one kit component."""

    product_id: UUID
    per_kit: int
    required: int
    available: int

    @property
    def sufficient(self) -> bool:
        return self.available >= self.required


@dataclass(frozen=True, slots=True)
class KitAvailability:
    """How many kits can be assembled from current stock."""

    kit_id: UUID
    quantity: int
    can_deliver: bool
    max_available: int
    components: list[ComponentAvailability]


def _naive_utc(value: datetime) -> datetime:
    # Rows read back from SQLite lose their tzinfo; compare everything as naive UTC
    if value.tzinfo is not None:
        return value.astimezone(UTC).replace(tzinfo=None)
    return value


def fefo_sort_key(lot: LotSnapshot) -> tuple[bool, date, datetime, str]:
    """Sort key implementing FEFO with undated lots last."""
    return (
        lot.expiry_date is None,
        lot.expiry_date or date.max,
        _naive_utc(lot.entry_date),
        str(lot.lot_id),
    )


def plan_fefo_allocation(
    product_id: UUID,
    quantity_needed: int,
    lots: Iterable[LotSnapshot],
) -> list[LotAllocation]:
    """Plan a FEFO allocation without touching storage.

    Only active lots of ``product_id`` with positive quantity are eligible.
    Lots are consumed greedily in FEFO order, producing one allocation per
    lot touched.

    Args:
        product_id: Product to allocate.
        quantity_needed: Units required (must be positive).
        lots: Candidate lot snapshots, in any order.

    Returns:
        Allocations ordered by FEFO key whose quantities sum to
        ``quantity_needed``.

    Raises:
        ValidationError: If quantity_needed is not positive.
        InsufficientStockError: If eligible lots hold fewer units than needed.
    """
    if quantity_needed <= 0:
        raise ValidationError("Quantity must be greater than zero", field="quantity")

    candidates = sorted(
        (
            lot
            for lot in lots
            if lot.product_id == product_id and lot.is_active and lot.quantity > 0
        ),
        key=fefo_sort_key,
    )
    available = sum(lot.quantity for lot in candidates)
    if available < quantity_needed:
        raise InsufficientStockError(product_id, quantity_needed, available)

    remaining = quantity_needed
    allocations: list[LotAllocation] = []
    for lot in candidates:
        if remaining == 0:
            break
        take = min(lot.quantity, remaining)
        allocations.append(
            LotAllocation(
                lot_id=lot.lot_id,
                product_id=lot.product_id,
                lot_number=lot.lot_number,
                quantity=take,
                expiry_date=lot.expiry_date,
            )
        )
        remaining -= take

    return allocations


def expand_kit(
    kit_id: UUID,
    components: Iterable[tuple[UUID, int]],
    kit_quantity: int,
) -> list[ProductDemand]:
    """Map a kit line onto the component products it consumes.

    Args:
        kit_id: Kit being expanded.
        components: (product_id, units per kit) pairs.
        kit_quantity: Number of kits on the line.

    Returns:
        One ProductDemand per component.

    Raises:
        ValidationError: If the kit has no components or a bad quantity.
    """
    if kit_quantity <= 0:
        raise ValidationError("Kit quantity must be greater than zero", field="quantity")

    demands = [
        ProductDemand(product_id=product_id, quantity=per_kit * kit_quantity, kit_id=kit_id)
        for product_id, per_kit in components
    ]
    if not demands:
        raise ValidationError(f"Kit {kit_id} has no components", field="kit_id")
    if any(d.quantity <= 0 for d in demands):
        raise ValidationError(f"Kit {kit_id} has a non-positive component quantity")
    return demands


def aggregate_demand(demands: Iterable[ProductDemand]) -> dict[UUID, int]:
    """Sum demanded units per product, preserving first-seen order."""
    totals: dict[UUID, int] = {}
    for demand in demands:
        totals[demand.product_id] = totals.get(demand.product_id, 0) + demand.quantity
    return totals


def compute_kit_availability(
    kit_id: UUID,
    components: Iterable[tuple[UUID, int]],
    stock_by_product: dict[UUID, int],
    quantity: int = 1,
) -> KitAvailability:
    """Compute whether ``quantity`` kits can be assembled from stock.

    max_available is the number of complete kits the scarcest component
    allows.
    """
    details = [
        ComponentAvailability(
            product_id=product_id,
            per_kit=per_kit,
            required=per_kit * quantity,
            available=stock_by_product.get(product_id, 0),
        )
        for product_id, per_kit in components
    ]
    max_available = min((d.available // d.per_kit for d in details), default=0)
    return KitAvailability(
        kit_id=kit_id,
        quantity=quantity,
        can_deliver=bool(details) and all(d.sufficient for d in details),
        max_available=max_available,
        components=details,
    )


class LotAllocator:
    """Database-backed FEFO allocator.

    Example:
        allocator = LotAllocator(session)
        plan = await allocator.allocate(product_id, 15)
        # persist plan with StockLedgerService.record_exit in the same transaction
    """

    def __init__(self, session: AsyncSession) -> None:
        """Initialize the allocator.

        Args:
            session: SQLAlchemy async session for database operations.
        """
        self._session = session

    async def load_lots(self, product_id: UUID, *, lock: bool = False) -> list[LotSnapshot]:
        """Load eligible lots for a product in FEFO order.

        Args:
            product_id: Product whose lots to read.
            lock: Take row locks (SELECT ... FOR UPDATE) on the lots.

        Returns:
            Snapshots of active lots with positive quantity.
        """
        # CASE WHEN expiry_date IS NULL THEN 1 ELSE 0 END puts undated lots last
        nulls_last = case((ProductLot.expiry_date.is_(None), 1), else_=0)
        query = (
            select(ProductLot)
            .where(
                ProductLot.product_id == product_id,
                ProductLot.is_active.is_(True),
                ProductLot.quantity > 0,
            )
            .order_by(
                nulls_last.asc(),
                ProductLot.expiry_date.asc(),
                ProductLot.entry_date.asc(),
                ProductLot.lot_id.asc(),
            )
        )
        if lock:
            query = query.with_for_update()

        result = await self._session.execute(query)
        return [LotSnapshot.from_lot(lot) for lot in result.scalars().all()]

    async def available_quantity(self, product_id: UUID, *, lock: bool = False) -> int:
        """Total units across eligible lots of a product."""
        lots = await self.load_lots(product_id, lock=lock)
        return sum(lot.quantity for lot in lots)

    async def allocate(self, product_id: UUID, quantity_needed: int) -> list[LotAllocation]:
        """Plan an allocation over locked lots.

        The caller must persist the plan in the same transaction.

        Raises:
            ValidationError: If quantity_needed is not positive.
            InsufficientStockError: If stock cannot satisfy the request.
        """
        lots = await self.load_lots(product_id, lock=True)
        allocations = plan_fefo_allocation(product_id, quantity_needed, lots)
        logger.debug(
            "FEFO plan computed",
            extra={
                "product_id": str(product_id),
                "quantity": quantity_needed,
                "lots": [str(a.lot_id) for a in allocations],
            },
        )
        return allocations

    async def preview(self, product_id: UUID, quantity_needed: int) -> AllocationPreview:
        """Compute a FEFO plan without locking or raising on shortfall."""
        lots = await self.load_lots(product_id)
        available = sum(lot.quantity for lot in lots)
        try:
            allocations = plan_fefo_allocation(product_id, quantity_needed, lots)
        except InsufficientStockError:
            return AllocationPreview(
                product_id=product_id,
                requested=quantity_needed,
                available=available,
                feasible=False,
            )
        return AllocationPreview(
            product_id=product_id,
            requested=quantity_needed,
            available=available,
            feasible=True,
            allocations=allocations,
        )
