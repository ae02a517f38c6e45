"""Returns of delivered goods.

A return is always tied to a DELIVERED delivery and is checked against the
lots that delivery drew at READY time:

- every returned product must have been drawn by the delivery;
- a returned lot must be one the delivery drew for that product;
- across all returns of the delivery, returned units never exceed drawn
  units, per product and per named lot.

Only GOOD units go back into stock, through the stock ledger, with the
delivery id as the movement reference. DAMAGED and EXPIRED units are
recorded on the return and never touch a lot.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from sqlalchemy import func, select

from custodia.db.models.base import AuditAction, DeliveryStatus, ReturnCondition
from custodia.db.models.deliveries import Delivery, DeliveryAllocation, DeliveryLineItem
from custodia.db.models.returns import DeliveryReturn, DeliveryReturnItem
from custodia.services.audit_log import AuditLogService
from custodia.services.errors import InvalidTransitionError, NotFoundError, ValidationError
from custodia.services.stock_ledger import StockLedgerService

if TYPE_CHECKING:
    from collections.abc import Sequence
    from uuid import UUID

    from sqlalchemy.ext.asyncio import AsyncSession

    from custodia.core.config import InventorySettings

logger = logging.getLogger(__name__)

RETURN_STEP = "return"


@dataclass(frozen=True, slots=True)
class ReturnItemInput:
    """One product handed back, as reported by the warehouse."""

    product_id: UUID
    quantity: int
    condition: ReturnCondition = ReturnCondition.GOOD
    lot_id: UUID | None = None


@dataclass(slots=True)
class _Drawn:
    """Units drawn by a delivery and already returned, keyed by product and lot."""

    by_product: dict[UUID, int]
    by_lot: dict[tuple[UUID, UUID], int]


class DeliveryReturnService:
    """Records returns against delivered deliveries.

    Example:
        service = DeliveryReturnService(session, settings.inventory)
        record = await service.record(
            delivery_id=delivery.delivery_id,
            reason="Wrong size",
            items=[ReturnItemInput(product_id=product.product_id, quantity=2)],
            actor_id="warehouse-1",
        )
        await session.commit()
    """

    def __init__(
        self,
        session: AsyncSession,
        inventory_settings: InventorySettings | None = None,
    ) -> None:
        self._session = session
        self._ledger = StockLedgerService(session, inventory_settings)
        self._audit = AuditLogService(session)

    async def record(
        self,
        *,
        delivery_id: UUID,
        reason: str,
        items: Sequence[ReturnItemInput],
        actor_id: str,
        notes: str | None = None,
    ) -> DeliveryReturn:
        """Record a return and put its GOOD units back into stock.

        Runs inside the caller's transaction and never commits.

        Raises:
            ValidationError: On a missing reason or actor, no items, a
                non-positive quantity, or an item the delivery did not draw.
            NotFoundError: If the delivery does not exist.
            InvalidTransitionError: If the delivery is not DELIVERED.
        """
        if not actor_id or not actor_id.strip():
            raise ValidationError("actor_id is required", field="actor_id")
        if not reason or not reason.strip():
            raise ValidationError("Return reason is required", field="reason")
        if not items:
            raise ValidationError("At least one returned item is required", field="items")
        for item in items:
            if item.quantity <= 0:
                raise ValidationError(
                    "Returned quantity must be greater than zero", field="quantity"
                )

        delivery = await self._get_delivery(delivery_id)
        if delivery.status != DeliveryStatus.DELIVERED:
            raise InvalidTransitionError(delivery.status, RETURN_STEP)

        drawn = await self._drawn(delivery_id)
        returned = await self._returned(delivery_id)
        self._check_against_drawn(items, drawn, returned)

        reason = reason.strip()
        record = DeliveryReturn(
            delivery_id=delivery_id,
            reason=reason,
            notes=notes,
            processed_by=actor_id,
            items=[],
        )
        self._session.add(record)
        for position, item in enumerate(items):
            movement_id = None
            if item.condition == ReturnCondition.GOOD:
                movement = await self._ledger.record_return(
                    product_id=item.product_id,
                    quantity=item.quantity,
                    actor_id=actor_id,
                    lot_id=item.lot_id,
                    reason=f"Return: {reason}",
                    reference=str(delivery_id),
                )
                movement_id = movement.movement_id
            record.items.append(
                DeliveryReturnItem(
                    product_id=item.product_id,
                    lot_id=item.lot_id,
                    position=position,
                    quantity=item.quantity,
                    condition=item.condition,
                    movement_id=movement_id,
                )
            )
        await self._session.flush()

        await self._audit.append(
            entity="delivery_return",
            entity_id=str(record.return_id),
            action=AuditAction.CREATE,
            actor_id=actor_id,
            new_values={
                "delivery_id": str(delivery_id),
                "reason": reason,
                "items": [
                    {
                        "product_id": str(item.product_id),
                        "lot_id": str(item.lot_id) if item.lot_id else None,
                        "quantity": item.quantity,
                        "condition": item.condition.value,
                    }
                    for item in record.items
                ],
            },
        )
        logger.info(
            "Delivery return recorded",
            extra={
                "return_id": str(record.return_id),
                "delivery_id": str(delivery_id),
                "reason": reason,
                "items": len(record.items),
                "actor_id": actor_id,
            },
        )
        return record

    @staticmethod
    def _check_against_drawn(
        items: Sequence[ReturnItemInput], drawn: _Drawn, returned: _Drawn
    ) -> None:
        by_product = dict(returned.by_product)
        by_lot = dict(returned.by_lot)
        for item in items:
            product_drawn = drawn.by_product.get(item.product_id)
            if product_drawn is None:
                raise ValidationError(
                    f"Product {item.product_id} was not part of the delivery",
                    field="items",
                    detail={"product_id": str(item.product_id)},
                )
            by_product[item.product_id] = by_product.get(item.product_id, 0) + item.quantity
            if by_product[item.product_id] > product_drawn:
                raise ValidationError(
                    f"Returned quantity for product {item.product_id} exceeds delivered quantity",
                    field="quantity",
                    detail={
                        "product_id": str(item.product_id),
                        "delivered": product_drawn,
                        "returned": by_product[item.product_id],
                    },
                )

            if item.lot_id is None:
                continue
            key = (item.product_id, item.lot_id)
            lot_drawn = drawn.by_lot.get(key)
            if lot_drawn is None:
                raise ValidationError(
                    f"Lot {item.lot_id} was not drawn for product {item.product_id}",
                    field="lot_id",
                    detail={"product_id": str(item.product_id), "lot_id": str(item.lot_id)},
                )
            by_lot[key] = by_lot.get(key, 0) + item.quantity
            if by_lot[key] > lot_drawn:
                raise ValidationError(
                    f"Returned quantity for lot {item.lot_id} exceeds quantity drawn",
                    field="quantity",
                    detail={
                        "lot_id": str(item.lot_id),
                        "drawn": lot_drawn,
                        "returned": by_lot[key],
                    },
                )

    async def _get_delivery(self, delivery_id: UUID) -> Delivery:
        result = await self._session.execute(
            select(Delivery)
            .where(Delivery.delivery_id == delivery_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        delivery = result.scalar_one_or_none()
        if delivery is None:
            raise NotFoundError("delivery", delivery_id)
        return delivery

    async def _drawn(self, delivery_id: UUID) -> _Drawn:
        result = await self._session.execute(
            select(
                DeliveryAllocation.product_id,
                DeliveryAllocation.lot_id,
                func.sum(DeliveryAllocation.quantity),
            )
            .join(
                DeliveryLineItem,
                DeliveryLineItem.line_item_id == DeliveryAllocation.line_item_id,
            )
            .where(DeliveryLineItem.delivery_id == delivery_id)
            .group_by(DeliveryAllocation.product_id, DeliveryAllocation.lot_id)
        )
        return _summarize(result.all())

    async def _returned(self, delivery_id: UUID) -> _Drawn:
        result = await self._session.execute(
            select(
                DeliveryReturnItem.product_id,
                DeliveryReturnItem.lot_id,
                func.sum(DeliveryReturnItem.quantity),
            )
            .join(DeliveryReturn, DeliveryReturn.return_id == DeliveryReturnItem.return_id)
            .where(DeliveryReturn.delivery_id == delivery_id)
            .group_by(DeliveryReturnItem.product_id, DeliveryReturnItem.lot_id)
        )
        return _summarize(result.all())


def _summarize(rows: Sequence[tuple[UUID, UUID | None, int]]) -> _Drawn:
    summary = _Drawn(by_product={}, by_lot={})
    for product_id, lot_id, quantity in rows:
        summary.by_product[product_id] = summary.by_product.get(product_id, 0) + int(quantity)
        if lot_id is not None:
            key = (product_id, lot_id)
            summary.by_lot[key] = summary.by_lot.get(key, 0) + int(quantity)
    return summary
