"""Delivery history recorder.

Appends one immutable record per workflow transition. Records are never
updated or deleted; ordered by sequence they form the canonical timeline
of a delivery.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from sqlalchemy import func, select

from custodia.db.models.deliveries import DeliveryHistory
from custodia.services.workflow import is_valid_edge

if TYPE_CHECKING:
    from collections.abc import Sequence
    from uuid import UUID

    from sqlalchemy.ext.asyncio import AsyncSession

    from custodia.db.models.base import DeliveryStatus


def is_valid_path(records: Sequence[DeliveryHistory]) -> bool:
    """Check that a timeline walks the workflow graph without gaps.

    The first record must be the creation edge, every later record must
    start where the previous one ended, and every edge must exist in the
    transition table.
    """
    if not records:
        return False
    previous: DeliveryStatus | None = None
    for index, record in enumerate(records):
        if index == 0 and record.from_status is not None:
            return False
        if index > 0 and record.from_status != previous:
            return False
        if not is_valid_edge(record.from_status, record.to_status):
            return False
        previous = record.to_status
    return True


class HistoryRecorder:
    """Append-only writer and reader of DeliveryHistory."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize the recorder.

        Args:
            session: SQLAlchemy async session for database operations.
        """
        self._session = session

    async def record(
        self,
        *,
        delivery_id: UUID,
        from_status: DeliveryStatus | None,
        to_status: DeliveryStatus,
        actor_id: str,
        notes: str | None = None,
    ) -> DeliveryHistory:
        """Append a transition record in the caller's transaction.

        The delivery row is already locked by the workflow, so the next
        sequence number cannot be taken concurrently.
        """
        result = await self._session.execute(
            select(func.coalesce(func.max(DeliveryHistory.sequence), 0)).where(
                DeliveryHistory.delivery_id == delivery_id
            )
        )
        sequence = int(result.scalar_one()) + 1

        entry = DeliveryHistory(
            delivery_id=delivery_id,
            sequence=sequence,
            from_status=from_status,
            to_status=to_status,
            actor_id=actor_id,
            notes=notes,
        )
        self._session.add(entry)
        await self._session.flush()
        return entry

    async def timeline(self, delivery_id: UUID) -> list[DeliveryHistory]:
        """Return a delivery's history ordered by sequence."""
        result = await self._session.execute(
            select(DeliveryHistory)
            .where(DeliveryHistory.delivery_id == delivery_id)
            .order_by(DeliveryHistory.sequence)
        )
        return list(result.scalars().all())
