"""Return models: goods handed back after a delivery.

A DeliveryReturn groups the items returned for one reason. Each item names
a product (and optionally the lot) that the delivery drew. GOOD items carry
the RETURN movement that put them back into stock.
"""

from __future__ import annotations

import uuid  # noqa: TC003 - required at runtime for SQLAlchemy type resolution

from sqlalchemy import CheckConstraint, ForeignKey, Index, Integer, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from custodia.db.models.base import (
    ActorRef,
    Base,
    ReturnCondition,
    TimestampTZ,
    UUIDPrimaryKey,
    enum_type,
)


class DeliveryReturn(Base):
    """Goods returned against a delivered delivery."""

    __tablename__ = "delivery_returns"

    return_id: Mapped[UUIDPrimaryKey]
    created_at: Mapped[TimestampTZ]

    delivery_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("deliveries.delivery_id", ondelete="RESTRICT"),
        nullable=False,
    )
    reason: Mapped[str] = mapped_column(String(255), nullable=False)
    notes: Mapped[str | None] = mapped_column(String(2000), nullable=True)
    processed_by: Mapped[ActorRef]

    items: Mapped[list[DeliveryReturnItem]] = relationship(
        "DeliveryReturnItem",
        back_populates="delivery_return",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="DeliveryReturnItem.position",
    )

    __table_args__ = (
        Index("ix_delivery_returns_delivery_id", "delivery_id"),
        Index("ix_delivery_returns_reason", "reason"),
        Index("ix_delivery_returns_created_at", "created_at"),
    )


class DeliveryReturnItem(Base):
    """Units of one product returned, with their condition."""

    __tablename__ = "delivery_return_items"

    return_item_id: Mapped[UUIDPrimaryKey]

    return_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("delivery_returns.return_id", ondelete="CASCADE"),
        nullable=False,
    )
    product_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("products.product_id", ondelete="RESTRICT"),
        nullable=False,
    )
    # Lot the units were drawn from, when the warehouse can tell
    lot_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("product_lots.lot_id", ondelete="RESTRICT"),
        nullable=True,
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    condition: Mapped[ReturnCondition] = mapped_column(
        enum_type(ReturnCondition, "return_condition"),
        nullable=False,
    )
    # Set for GOOD items only
    movement_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("stock_movements.movement_id", ondelete="RESTRICT"),
        nullable=True,
    )

    delivery_return: Mapped[DeliveryReturn] = relationship(
        "DeliveryReturn", back_populates="items"
    )

    __table_args__ = (
        CheckConstraint("quantity > 0", name="quantity_positive"),
        Index("ix_delivery_return_items_return_id", "return_id"),
    )
