"""Read-only projections over deliveries and the stock ledger."""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import UTC, datetime, time
from typing import TYPE_CHECKING, Generic, TypeVar

from sqlalchemy import func, select

from custodia.db.models.base import DeliveryStatus
from custodia.db.models.deliveries import Delivery, DeliveryHistory
from custodia.db.models.inventory import Kit, StockMovement
from custodia.db.models.returns import DeliveryReturn, DeliveryReturnItem
from custodia.services.allocation import KitAvailability, compute_kit_availability
from custodia.services.errors import NotFoundError, ValidationError
from custodia.services.history import HistoryRecorder
from custodia.services.stock_ledger import StockLedgerService

if TYPE_CHECKING:
    from datetime import date
    from uuid import UUID

    from sqlalchemy import Select
    from sqlalchemy.ext.asyncio import AsyncSession

    from custodia.db.models.base import MovementType

T = TypeVar("T")

MAX_PAGE_SIZE = 100


@dataclass(frozen=True, slots=True)
class Page(Generic[T]):
    """One page of a listing."""

    items: list[T]
    total: int
    page: int
    limit: int

    @property
    def pages(self) -> int:
        return math.ceil(self.total / self.limit) if self.limit else 0


@dataclass(frozen=True, slots=True)
class DeliveryDetail:
    """Delivery with its line items, allocations and timeline."""

    delivery: Delivery
    history: list[DeliveryHistory]


@dataclass(frozen=True, slots=True)
class ReturnReasonStats:
    """Returns and returned units recorded for one reason."""

    reason: str
    returns: int
    units: int


def _check_paging(page: int, limit: int) -> None:
    if page < 1:
        raise ValidationError("page must be at least 1", field="page")
    if not 1 <= limit <= MAX_PAGE_SIZE:
        raise ValidationError(f"limit must be between 1 and {MAX_PAGE_SIZE}", field="limit")


def _day_start(value: date) -> datetime:
    return datetime.combine(value, time.min, tzinfo=UTC)


def _day_end(value: date) -> datetime:
    return datetime.combine(value, time.max, tzinfo=UTC)


async def _paginate(
    session: AsyncSession, query: Select, page: int, limit: int
) -> tuple[list, int]:
    count_result = await session.execute(select(func.count()).select_from(query.subquery()))
    total = int(count_result.scalar_one())
    result = await session.execute(query.offset((page - 1) * limit).limit(limit))
    return list(result.scalars().all()), total


class DeliveryProjections:
    """Queries backing the delivery read endpoints."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session
        self._history = HistoryRecorder(session)

    async def detail(self, delivery_id: UUID) -> DeliveryDetail:
        """Delivery with line items, allocations and ordered history.

        Raises:
            NotFoundError: If the delivery does not exist.
        """
        result = await self._session.execute(
            select(Delivery)
            .where(Delivery.delivery_id == delivery_id)
            .execution_options(populate_existing=True)
        )
        delivery = result.scalar_one_or_none()
        if delivery is None:
            raise NotFoundError("delivery", delivery_id)
        return DeliveryDetail(
            delivery=delivery,
            history=await self._history.timeline(delivery_id),
        )

    async def history(self, delivery_id: UUID) -> list[DeliveryHistory]:
        """Ordered timeline of a delivery."""
        exists = await self._session.execute(
            select(Delivery.delivery_id).where(Delivery.delivery_id == delivery_id)
        )
        if exists.scalar_one_or_none() is None:
            raise NotFoundError("delivery", delivery_id)
        return await self._history.timeline(delivery_id)

    async def list_deliveries(
        self,
        *,
        request_id: UUID | None = None,
        status: DeliveryStatus | None = None,
        start_date: date | None = None,
        end_date: date | None = None,
        page: int = 1,
        limit: int = 20,
    ) -> Page[Delivery]:
        """List deliveries newest first."""
        _check_paging(page, limit)
        query = select(Delivery)
        if request_id is not None:
            query = query.where(Delivery.request_id == request_id)
        if status is not None:
            query = query.where(Delivery.status == status)
        if start_date is not None:
            query = query.where(Delivery.created_at >= _day_start(start_date))
        if end_date is not None:
            query = query.where(Delivery.created_at <= _day_end(end_date))
        query = query.order_by(Delivery.created_at.desc(), Delivery.code.desc())

        items, total = await _paginate(self._session, query, page, limit)
        return Page(items=items, total=total, page=page, limit=limit)

    async def status_summary(self) -> dict[str, int]:
        """Count of deliveries per status (every status present)."""
        result = await self._session.execute(
            select(Delivery.status, func.count(Delivery.delivery_id)).group_by(Delivery.status)
        )
        summary = {status.value: 0 for status in DeliveryStatus}
        for status, count in result.all():
            summary[status.value] = int(count)
        summary["total"] = sum(summary.values())
        return summary


class InventoryProjections:
    """Queries backing the inventory read endpoints."""

    def __init__(self, session: AsyncSession, ledger: StockLedgerService) -> None:
        self._session = session
        self._ledger = ledger

    async def list_movements(
        self,
        *,
        product_id: UUID | None = None,
        lot_id: UUID | None = None,
        movement_type: MovementType | None = None,
        reference: str | None = None,
        start_date: date | None = None,
        end_date: date | None = None,
        page: int = 1,
        limit: int = 50,
    ) -> Page[StockMovement]:
        """List stock movements newest first."""
        _check_paging(page, limit)
        query = select(StockMovement)
        if product_id is not None:
            query = query.where(StockMovement.product_id == product_id)
        if lot_id is not None:
            query = query.where(StockMovement.lot_id == lot_id)
        if movement_type is not None:
            query = query.where(StockMovement.movement_type == movement_type)
        if reference is not None:
            query = query.where(StockMovement.reference == reference)
        if start_date is not None:
            query = query.where(StockMovement.created_at >= _day_start(start_date))
        if end_date is not None:
            query = query.where(StockMovement.created_at <= _day_end(end_date))
        query = query.order_by(StockMovement.created_at.desc(), StockMovement.movement_id)

        items, total = await _paginate(self._session, query, page, limit)
        return Page(items=items, total=total, page=page, limit=limit)

    async def kit_availability(self, kit_id: UUID, quantity: int = 1) -> KitAvailability:
        """How many of a kit current stock can assemble.

        Raises:
            NotFoundError: If the kit does not exist.
            ValidationError: If quantity is not positive.
        """
        if quantity <= 0:
            raise ValidationError("quantity must be greater than zero", field="quantity")
        result = await self._session.execute(select(Kit).where(Kit.kit_id == kit_id))
        kit = result.scalar_one_or_none()
        if kit is None:
            raise NotFoundError("kit", kit_id)

        components = [(c.product_id, c.quantity) for c in kit.components]
        stock = await self._ledger.stock_by_product([product_id for product_id, _ in components])
        return compute_kit_availability(kit.kit_id, components, stock, quantity)


class ReturnProjections:
    """Queries backing the return read endpoints."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get(self, return_id: UUID) -> DeliveryReturn:
        """A return with its items.

        Raises:
            NotFoundError: If the return does not exist.
        """
        result = await self._session.execute(
            select(DeliveryReturn).where(DeliveryReturn.return_id == return_id)
        )
        record = result.scalar_one_or_none()
        if record is None:
            raise NotFoundError("delivery_return", return_id)
        return record

    async def list_returns(
        self,
        *,
        delivery_id: UUID | None = None,
        reason: str | None = None,
        start_date: date | None = None,
        end_date: date | None = None,
        page: int = 1,
        limit: int = 50,
    ) -> Page[DeliveryReturn]:
        """List returns newest first."""
        _check_paging(page, limit)
        query = select(DeliveryReturn)
        if delivery_id is not None:
            query = query.where(DeliveryReturn.delivery_id == delivery_id)
        if reason is not None:
            query = query.where(DeliveryReturn.reason == reason)
        if start_date is not None:
            query = query.where(DeliveryReturn.created_at >= _day_start(start_date))
        if end_date is not None:
            query = query.where(DeliveryReturn.created_at <= _day_end(end_date))
        query = query.order_by(DeliveryReturn.created_at.desc(), DeliveryReturn.return_id)

        items, total = await _paginate(self._session, query, page, limit)
        return Page(items=items, total=total, page=page, limit=limit)

    async def stats_by_reason(self) -> list[ReturnReasonStats]:
        """Return count and units per reason, most frequent first."""
        returns = func.count(func.distinct(DeliveryReturn.return_id))
        result = await self._session.execute(
            select(DeliveryReturn.reason, returns, func.sum(DeliveryReturnItem.quantity))
            .join(DeliveryReturnItem, DeliveryReturnItem.return_id == DeliveryReturn.return_id)
            .group_by(DeliveryReturn.reason)
            .order_by(returns.desc(), DeliveryReturn.reason)
        )
        return [
            ReturnReasonStats(reason=reason, returns=int(count), units=int(units))
            for reason, count, units in result.all()
        ]
