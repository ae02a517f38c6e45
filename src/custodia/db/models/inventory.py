"""Inventory models: products, kits, lots and the stock movement ledger.

Product and kit rows belong to the catalog collaborator and are read here.
Lot quantities are written only through the stock ledger service, and every
change is mirrored by an immutable StockMovement row.
"""

from __future__ import annotations

import uuid  # noqa: TC003 - required at runtime for SQLAlchemy type resolution
from datetime import date  # noqa: TC003 - required at runtime for SQLAlchemy type resolution

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
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
    MovementType,
    TimestampTZ,
    UUIDPrimaryKey,
    enum_type,
)


class Product(Base):
    """Catalog product (read-mostly).

    min_stock drives the low-stock report; is_perishable makes lot number
    and expiry date mandatory on stock entry.
    category groups products in the stock-by-category report.
    """

    __tablename__ = "products"

    product_id: Mapped[UUIDPrimaryKey]
    created_at: Mapped[TimestampTZ]

    code: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    unit: Mapped[str] = mapped_column(String(50), nullable=False, default="unit")
    category: Mapped[str | None] = mapped_column(String(100), nullable=True)
    min_stock: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_perishable: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    __table_args__ = (Index("ix_products_category", "category"),)


class Kit(Base):
    """Catalog kit: a fixed bundle of component products."""

    __tablename__ = "kits"

    kit_id: Mapped[UUIDPrimaryKey]
    created_at: Mapped[TimestampTZ]

    code: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    components: Mapped[list[KitComponent]] = relationship(
        "KitComponent",
        back_populates="kit",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="KitComponent.product_id",
    )


class KitComponent(Base):
    """Quantity of one product contained in a single kit."""

    __tablename__ = "kit_components"

    kit_component_id: Mapped[UUIDPrimaryKey]

    kit_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("kits.kit_id", ondelete="CASCADE"),
        nullable=False,
    )
    product_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("products.product_id", ondelete="RESTRICT"),
        nullable=False,
    )
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)

    kit: Mapped[Kit] = relationship("Kit", back_populates="components")

    __table_args__ = (
        UniqueConstraint("kit_id", "product_id", name="uq_kit_components_kit_product"),
        CheckConstraint("quantity > 0", name="quantity_positive"),
    )


class ProductLot(Base):
    """A tracked batch of a product.

    quantity must always equal the sum of the lot's stock movements.
    The version column serializes concurrent decrements of the same lot.
    """

    __tablename__ = "product_lots"

    lot_id: Mapped[UUIDPrimaryKey]
    created_at: Mapped[TimestampTZ]
    updated_at: Mapped[TimestampTZ]

    product_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("products.product_id", ondelete="RESTRICT"),
        nullable=False,
    )
    lot_number: Mapped[str] = mapped_column(String(100), nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    expiry_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    entry_date: Mapped[TimestampTZ]
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    # Optimistic lock counter, bumped on every UPDATE
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}  # noqa: RUF012

    __table_args__ = (
        UniqueConstraint("product_id", "lot_number", name="uq_product_lots_product_lot_number"),
        CheckConstraint("quantity >= 0", name="quantity_non_negative"),
        Index("ix_product_lots_product_fefo", "product_id", "expiry_date", "entry_date"),
    )


class StockMovement(Base):
    """Immutable stock ledger entry.

    quantity is signed: ENTRY and RETURN are positive, EXIT is negative,
    ADJUSTMENT carries either sign. reference holds the delivery id for
    movements caused by the delivery workflow.
    """

    __tablename__ = "stock_movements"

    movement_id: Mapped[UUIDPrimaryKey]
    created_at: Mapped[TimestampTZ]

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
    movement_type: Mapped[MovementType] = mapped_column(
        enum_type(MovementType, "movement_type"),
        nullable=False,
    )
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    reason: Mapped[str] = mapped_column(String(500), nullable=False)
    reference: Mapped[str | None] = mapped_column(String(255), nullable=True)
    actor_id: Mapped[ActorRef]

    __table_args__ = (
        CheckConstraint("quantity <> 0", name="quantity_non_zero"),
        Index("ix_stock_movements_lot_id", "lot_id"),
        Index("ix_stock_movements_product_created", "product_id", "created_at"),
        Index("ix_stock_movements_reference", "reference"),
        Index("ix_stock_movements_type", "movement_type"),
    )
