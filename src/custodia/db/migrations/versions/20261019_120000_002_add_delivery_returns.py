"""Add delivery returns and product categories.

Revision ID: 002
Revises: 001
Create Date: 2026-10-19 12:00:00.000000+00:00

Adds:
- products.category for the stock-by-category report
- delivery_returns, delivery_return_items (goods handed back after delivery)
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# Revision identifiers, used by Alembic.
revision: str = "002"
down_revision: str | None = "001"
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    """Apply migration: Add delivery returns and product categories."""
    op.add_column("products", sa.Column("category", sa.String(100), nullable=True))
    op.create_index("ix_products_category", "products", ["category"])

    return_condition = postgresql.ENUM(
        "good", "damaged", "expired", name="return_condition", create_type=False
    )
    return_condition.create(op.get_bind(), checkfirst=True)

    op.create_table(
        "delivery_returns",
        sa.Column("return_id", sa.Uuid(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("delivery_id", sa.Uuid(), nullable=False),
        sa.Column("reason", sa.String(255), nullable=False),
        sa.Column("notes", sa.String(2000), nullable=True),
        sa.Column("processed_by", sa.String(255), nullable=False),
        sa.PrimaryKeyConstraint("return_id", name="pk_delivery_returns"),
        sa.ForeignKeyConstraint(
            ["delivery_id"],
            ["deliveries.delivery_id"],
            name="fk_delivery_returns_delivery_id_deliveries",
            ondelete="RESTRICT",
        ),
    )
    op.create_index("ix_delivery_returns_delivery_id", "delivery_returns", ["delivery_id"])
    op.create_index("ix_delivery_returns_reason", "delivery_returns", ["reason"])
    op.create_index("ix_delivery_returns_created_at", "delivery_returns", ["created_at"])

    op.create_table(
        "delivery_return_items",
        sa.Column("return_item_id", sa.Uuid(), nullable=False),
        sa.Column("return_id", sa.Uuid(), nullable=False),
        sa.Column("product_id", sa.Uuid(), nullable=False),
        sa.Column("lot_id", sa.Uuid(), nullable=True),
        sa.Column("position", sa.Integer(), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("condition", return_condition, nullable=False),
        sa.Column("movement_id", sa.Uuid(), nullable=True),
        sa.PrimaryKeyConstraint("return_item_id", name="pk_delivery_return_items"),
        sa.ForeignKeyConstraint(
            ["return_id"],
            ["delivery_returns.return_id"],
            name="fk_delivery_return_items_return_id_delivery_returns",
            ondelete="CASCADE",
        ),
        sa.ForeignKeyConstraint(
            ["product_id"],
            ["products.product_id"],
            name="fk_delivery_return_items_product_id_products",
            ondelete="RESTRICT",
        ),
        sa.ForeignKeyConstraint(
            ["lot_id"],
            ["product_lots.lot_id"],
            name="fk_delivery_return_items_lot_id_product_lots",
            ondelete="RESTRICT",
        ),
        sa.ForeignKeyConstraint(
            ["movement_id"],
            ["stock_movements.movement_id"],
            name="fk_delivery_return_items_movement_id_stock_movements",
            ondelete="RESTRICT",
        ),
        sa.CheckConstraint("quantity > 0", name="ck_delivery_return_items_quantity_positive"),
    )
    op.create_index(
        "ix_delivery_return_items_return_id", "delivery_return_items", ["return_id"]
    )


def downgrade() -> None:
    """Revert migration: Drop delivery returns and product categories."""
    op.drop_table("delivery_return_items")
    op.drop_table("delivery_returns")
    postgresql.ENUM(name="return_condition").drop(op.get_bind(), checkfirst=True)

    op.drop_index("ix_products_category", table_name="products")
    op.drop_column("products", "category")
