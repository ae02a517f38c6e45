"""Delivery models: deliveries, line items, lot allocations and history.

A Delivery moves through the workflow states in DeliveryStatus. Actor
columns are written once by the step that owns them and never overwritten.
"""

from __future__ import annotations

import uuid  # noqa: TC003 - required at runtime for SQLAlchemy type resolution

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from custodia.db.models.base import (
    ActorRef,
    Base,
    DeliveryStatus,
    OptionalActorRef,
    OptionalTimestampTZ,
    TimestampTZ,
    UUIDPrimaryKey,
    enum_type,
)


class Delivery(Base):
    """A single handoff of aid against an approved request."""

    __tablename__ = "deliveries"

    delivery_id: Mapped[UUIDPrimaryKey]
    created_at: Mapped[TimestampTZ]
    updated_at: Mapped[TimestampTZ]

    # Human-readable code, e.g. ENT-2026-7Q2K9D
    code: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)

    request_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("aid_requests.request_id", ondelete="RESTRICT"),
        nullable=False,
    )

    status: Mapped[DeliveryStatus] = mapped_column(
        enum_type(DeliveryStatus, "delivery_status"),
        nullable=False,
        default=DeliveryStatus.PENDING_AUTHORIZATION,
    )

    # Optimistic lock counter; concurrent transitions on one delivery conflict
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    notes: Mapped[str | None] = mapped_column(String(2000), nullable=True)
    is_partial: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    # Creation
    created_by: Mapped[ActorRef]

    # Authorization
    authorized_by: Mapped[OptionalActorRef]
    authorized_at: Mapped[OptionalTimestampTZ]
    authorization_notes: Mapped[str | None] = mapped_column(String(2000), nullable=True)
    is_partial_authorization: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False
    )

    # Warehouse reception
    warehouse_received_by: Mapped[OptionalActorRef]
    warehouse_received_at: Mapped[OptionalTimestampTZ]
    warehouse_notes: Mapped[str | None] = mapped_column(String(2000), nullable=True)

    # Preparation
    prepared_by: Mapped[OptionalActorRef]
    prepared_at: Mapped[OptionalTimestampTZ]
    preparation_notes: Mapped[str | None] = mapped_column(String(2000), nullable=True)

    # Ready (lots drawn)
    ready_by: Mapped[OptionalActorRef]
    ready_at: Mapped[OptionalTimestampTZ]

    # Handoff
    delivered_by: Mapped[OptionalActorRef]
    delivered_at: Mapped[OptionalTimestampTZ]
    receiver_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    receiver_document: Mapped[str | None] = mapped_column(String(100), nullable=True)
    receiver_signature: Mapped[str | None] = mapped_column(String(10000), nullable=True)
    reception_notes: Mapped[str | None] = mapped_column(String(2000), nullable=True)

    # Cancellation
    cancelled_by: Mapped[OptionalActorRef]
    cancelled_at: Mapped[OptionalTimestampTZ]
    cancellation_reason: Mapped[str | None] = mapped_column(String(2000), nullable=True)

    line_items: Mapped[list[DeliveryLineItem]] = relationship(
        "DeliveryLineItem",
        back_populates="delivery",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="DeliveryLineItem.position",
    )

    __mapper_args__ = {"version_id_col": version}  # noqa: RUF012

    __table_args__ = (
        Index("ix_deliveries_request_id", "request_id"),
        Index("ix_deliveries_status", "status"),
        Index("ix_deliveries_created_at", "created_at"),
    )


class DeliveryLineItem(Base):
    """Quantity of exactly one product or kit within a delivery.

    authorized_quantity is set when the authorizer approves less than the
    requested quantity; it then replaces quantity for allocation and
    fulfillment.
    """

    __tablename__ = "delivery_line_items"

    line_item_id: Mapped[UUIDPrimaryKey]

    delivery_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("deliveries.delivery_id", ondelete="CASCADE"),
        nullable=False,
    )
    product_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("products.product_id", ondelete="RESTRICT"),
        nullable=True,
    )
    kit_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("kits.kit_id", ondelete="RESTRICT"),
        nullable=True,
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    authorized_quantity: Mapped[int | None] = mapped_column(Integer, nullable=True)

    delivery: Mapped[Delivery] = relationship("Delivery", back_populates="line_items")
    allocations: Mapped[list[DeliveryAllocation]] = relationship(
        "DeliveryAllocation",
        back_populates="line_item",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    @property
    def effective_quantity(self) -> int:
        """Quantity that is allocated and delivered for this line."""
        if self.authorized_quantity is not None:
            return self.authorized_quantity
        return self.quantity

    __table_args__ = (
        CheckConstraint(
            "(product_id IS NULL) <> (kit_id IS NULL)",
            name="exactly_one_item",
        ),
        CheckConstraint("quantity > 0", name="quantity_positive"),
        CheckConstraint(
            "authorized_quantity IS NULL OR "
            "(authorized_quantity >= 0 AND authorized_quantity <= quantity)",
            name="authorized_quantity_range",
        ),
        Index("ix_delivery_line_items_delivery_id", "delivery_id"),
    )


class DeliveryAllocation(Base):
    """Units of a product drawn from one lot for a line item at READY time."""

    __tablename__ = "delivery_allocations"

    allocation_id: Mapped[UUIDPrimaryKey]
    created_at: Mapped[TimestampTZ]

    line_item_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("delivery_line_items.line_item_id", ondelete="CASCADE"),
        nullable=False,
    )
    product_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("products.product_id", ondelete="RESTRICT"),
        nullable=False,
    )
    lot_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("product_lots.lot_id", ondelete="RESTRICT"),
        nullable=False,
    )
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)

    line_item: Mapped[DeliveryLineItem] = relationship(
        "DeliveryLineItem", back_populates="allocations"
    )

    __table_args__ = (
        CheckConstraint("quantity > 0", name="quantity_positive"),
        Index("ix_delivery_allocations_line_item_id", "line_item_id"),
        Index("ix_delivery_allocations_lot_id", "lot_id"),
    )


class DeliveryHistory(Base):
    """Append-only record of one workflow transition.

    from_status is NULL for the creation record. sequence is contiguous per
    delivery starting at 1.
    """

    __tablename__ = "delivery_history"

    history_id: Mapped[UUIDPrimaryKey]
    created_at: Mapped[TimestampTZ]

    delivery_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("deliveries.delivery_id", ondelete="RESTRICT"),
        nullable=False,
    )
    sequence: Mapped[int] = mapped_column(Integer, nullable=False)
    from_status: Mapped[DeliveryStatus | None] = mapped_column(
        enum_type(DeliveryStatus, "delivery_status"),
        nullable=True,
    )
    to_status: Mapped[DeliveryStatus] = mapped_column(
        enum_type(DeliveryStatus, "delivery_status"),
        nullable=False,
    )
    actor_id: Mapped[ActorRef]
    notes: Mapped[str | None] = mapped_column(String(2000), nullable=True)

    __table_args__ = (
        UniqueConstraint("delivery_id", "sequence", name="uq_delivery_history_delivery_sequence"),
        Index("ix_delivery_history_delivery_id", "delivery_id"),
    )
