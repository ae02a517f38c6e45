"""Aid request models.

Requests are owned by the request CRUD collaborator. This package reads
their status and per-line quantities and writes delivered quantities and
the derived status when a delivery reaches DELIVERED.
"""

from __future__ import annotations

import uuid  # noqa: TC003 - required at runtime for SQLAlchemy type resolution

from sqlalchemy import CheckConstraint, ForeignKey, Index, Integer, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from custodia.db.models.base import (
    Base,
    OptionalActorRef,
    RequestStatus,
    TimestampTZ,
    UUIDPrimaryKey,
    enum_type,
)


class AidRequest(Base):
    """Beneficiary request for products and/or kits."""

    __tablename__ = "aid_requests"

    request_id: Mapped[UUIDPrimaryKey]
    created_at: Mapped[TimestampTZ]
    updated_at: Mapped[TimestampTZ]

    code: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)
    beneficiary_id: Mapped[uuid.UUID | None] = mapped_column(Uuid(as_uuid=True), nullable=True)
    status: Mapped[RequestStatus] = mapped_column(
        enum_type(RequestStatus, "request_status"),
        nullable=False,
        default=RequestStatus.REGISTERED,
    )
    created_by: Mapped[OptionalActorRef]
    notes: Mapped[str | None] = mapped_column(String(2000), nullable=True)

    lines: Mapped[list[RequestLine]] = relationship(
        "RequestLine",
        back_populates="request",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="RequestLine.position",
    )

    __table_args__ = (Index("ix_aid_requests_status", "status"),)


class RequestLine(Base):
    """Requested vs. delivered quantity of exactly one product or kit."""

    __tablename__ = "request_lines"

    request_line_id: Mapped[UUIDPrimaryKey]

    request_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("aid_requests.request_id", ondelete="CASCADE"),
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
    quantity_requested: Mapped[int] = mapped_column(Integer, nullable=False)
    quantity_delivered: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    request: Mapped[AidRequest] = relationship("AidRequest", back_populates="lines")

    __table_args__ = (
        CheckConstraint(
            "(product_id IS NULL) <> (kit_id IS NULL)",
            name="exactly_one_item",
        ),
        CheckConstraint("quantity_requested > 0", name="quantity_requested_positive"),
        CheckConstraint("quantity_delivered >= 0", name="quantity_delivered_non_negative"),
        Index("ix_request_lines_request_id", "request_id"),
    )
