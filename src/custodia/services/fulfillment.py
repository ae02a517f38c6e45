"""Request fulfillment tracking.

When a delivery reaches DELIVERED, the delivered quantity of each of its
line items is credited to the matching line of the owning request, and the
request status is recomputed:

    every line delivered >= requested  -> DELIVERED
    otherwise                          -> PARTIALLY_DELIVERED

The write happens in the same transaction as the delivery transition.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from sqlalchemy import select

from custodia.db.models.base import RequestStatus
from custodia.db.models.requests import AidRequest
from custodia.services.errors import NotFoundError, ValidationError

if TYPE_CHECKING:
    from collections.abc import Iterable
    from uuid import UUID

    from sqlalchemy.ext.asyncio import AsyncSession

    from custodia.db.models.deliveries import Delivery
    from custodia.db.models.requests import RequestLine

logger = logging.getLogger(__name__)

# (kind, id) where kind is "product" or "kit"
LineKey = tuple[str, "UUID"]


@dataclass(frozen=True, slots=True)
class FulfillmentResult:
    """Outcome of crediting a delivery to its request."""

    request_id: UUID
    previous_status: RequestStatus
    new_status: RequestStatus
    credited: dict[str, int] = field(default_factory=dict)


def line_key(product_id: UUID | None, kit_id: UUID | None) -> LineKey:
    """Key identifying the item a request or delivery line refers to."""
    if (product_id is None) == (kit_id is None):
        raise ValidationError("A line must reference exactly one of product or kit")
    if product_id is not None:
        return ("product", product_id)
    return ("kit", kit_id)


def compute_request_status(lines: Iterable[RequestLine]) -> RequestStatus:
    """Derive the request status from its lines' delivered quantities."""
    if all(line.quantity_delivered >= line.quantity_requested for line in lines):
        return RequestStatus.DELIVERED
    return RequestStatus.PARTIALLY_DELIVERED


def remaining_quantities(request: AidRequest) -> dict[LineKey, int]:
    """Units still owed per request line (never negative)."""
    remaining: dict[LineKey, int] = {}
    for line in request.lines:
        key = line_key(line.product_id, line.kit_id)
        owed = max(line.quantity_requested - line.quantity_delivered, 0)
        remaining[key] = remaining.get(key, 0) + owed
    return remaining


def credit_lines(lines: list[RequestLine], quantity: int) -> None:
    """Spread delivered units over request lines for the same item.

    Lines are filled in order up to their requested quantity; anything left
    over lands on the last line.
    """
    for line in lines[:-1]:
        take = min(quantity, max(line.quantity_requested - line.quantity_delivered, 0))
        line.quantity_delivered += take
        quantity -= take
    lines[-1].quantity_delivered += quantity


class RequestFulfillmentTracker:
    """Credits delivered quantities to requests and recomputes their status."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize the tracker.

        Args:
            session: SQLAlchemy async session for database operations.
        """
        self._session = session

    async def get_request(self, request_id: UUID, *, lock: bool = False) -> AidRequest:
        """Load a request with its lines.

        Raises:
            NotFoundError: If the request does not exist.
        """
        query = (
            select(AidRequest)
            .where(AidRequest.request_id == request_id)
            .execution_options(populate_existing=True)
        )
        if lock:
            query = query.with_for_update()
        result = await self._session.execute(query)
        request = result.scalar_one_or_none()
        if request is None:
            raise NotFoundError("request", request_id)
        return request

    async def apply_delivery(self, delivery: Delivery) -> FulfillmentResult:
        """Credit a delivered delivery's effective quantities to its request.

        Raises:
            NotFoundError: If the owning request does not exist.
            ValidationError: If a delivery line has no matching request line.
        """
        request = await self.get_request(delivery.request_id, lock=True)
        lines_by_key: dict[LineKey, list[RequestLine]] = {}
        for line in sorted(request.lines, key=lambda line: line.position):
            lines_by_key.setdefault(line_key(line.product_id, line.kit_id), []).append(line)

        credited: dict[str, int] = {}
        for item in delivery.line_items:
            quantity = item.effective_quantity
            if quantity == 0:
                continue
            key = line_key(item.product_id, item.kit_id)
            lines = lines_by_key.get(key)
            if not lines:
                raise ValidationError(
                    f"Request has no line for {key[0]} {key[1]}",
                    field="line_items",
                )
            credit_lines(lines, quantity)
            label = f"{key[0]}:{key[1]}"
            credited[label] = credited.get(label, 0) + quantity

        previous_status = request.status
        request.status = compute_request_status(request.lines)
        await self._session.flush()

        logger.info(
            "Request fulfillment updated",
            extra={
                "request_id": str(request.request_id),
                "delivery_id": str(delivery.delivery_id),
                "previous_status": previous_status.value,
                "new_status": request.status.value,
            },
        )
        return FulfillmentResult(
            request_id=request.request_id,
            previous_status=previous_status,
            new_status=request.status,
            credited=credited,
        )
