"""Initial schema with all core tables.

Revision ID: 001
Revises: None
Create Date: 2026-10-19 00:00:00.000000+00:00

Creates all tables for Custodia:
- products, kits, kit_components (catalogue)
- product_lots, stock_movements (stock ledger)
- aid_requests, request_lines (requests)
- deliveries, delivery_line_items, delivery_allocations, delivery_history
- audit_log_records (hash-chained audit trail)
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# Revision identifiers, used by Alembic.
revision: str = "001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    """Apply migration: Initial schema with all core tables."""
    # Create enum types first
    delivery_status = postgresql.ENUM(
        "pending_authorization",
        "authorized",
        "received_warehouse",
        "in_preparation",
        "ready",
        "delivered",
        "cancelled",
        name="delivery_status",
        create_type=False,
    )
    delivery_status.create(op.get_bind(), checkfirst=True)

    request_status = postgresql.ENUM(
        "registered",
        "in_review",
        "approved",
        "rejected",
        "delivered",
        "partially_delivered",
        "cancelled",
        name="request_status",
        create_type=False,
    )
    request_status.create(op.get_bind(), checkfirst=True)

    movement_type = postgresql.ENUM(
        "entry", "exit", "adjustment", "return", name="movement_type", create_type=False
    )
    movement_type.create(op.get_bind(), checkfirst=True)

    audit_action = postgresql.ENUM(
        "create",
        "update",
        "status_change",
        "cancel",
        "deliver",
        "entry",
        "adjustment",
        "return",
        name="audit_action",
        create_type=False,
    )
    audit_action.create(op.get_bind(), checkfirst=True)

    # -------------------------------------------------------------------------
    # Catalogue
    # -------------------------------------------------------------------------
    op.create_table(
        "products",
        sa.Column("product_id", sa.Uuid(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("code", sa.String(50), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("unit", sa.String(50), nullable=False),
        sa.Column("min_stock", sa.Integer(), nullable=False),
        sa.Column("is_perishable", sa.Boolean(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.PrimaryKeyConstraint("product_id", name="pk_products"),
        sa.UniqueConstraint("code", name="uq_products_code"),
    )

    op.create_table(
        "kits",
        sa.Column("kit_id", sa.Uuid(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("code", sa.String(50), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.PrimaryKeyConstraint("kit_id", name="pk_kits"),
        sa.UniqueConstraint("code", name="uq_kits_code"),
    )

    op.create_table(
        "kit_components",
        sa.Column("kit_component_id", sa.Uuid(), nullable=False),
        sa.Column("kit_id", sa.Uuid(), nullable=False),
        sa.Column("product_id", sa.Uuid(), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.PrimaryKeyConstraint("kit_component_id", name="pk_kit_components"),
        sa.ForeignKeyConstraint(
            ["kit_id"],
            ["kits.kit_id"],
            name="fk_kit_components_kit_id_kits",
            ondelete="CASCADE",
        ),
        sa.ForeignKeyConstraint(
            ["product_id"],
            ["products.product_id"],
            name="fk_kit_components_product_id_products",
            ondelete="RESTRICT",
        ),
        sa.UniqueConstraint("kit_id", "product_id", name="uq_kit_components_kit_product"),
        sa.CheckConstraint("quantity > 0", name="ck_kit_components_quantity_positive"),
    )

    # -------------------------------------------------------------------------
    # Stock ledger
    # -------------------------------------------------------------------------
    op.create_table(
        "product_lots",
        sa.Column("lot_id", sa.Uuid(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("product_id", sa.Uuid(), nullable=False),
        sa.Column("lot_number", sa.String(100), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("expiry_date", sa.Date(), nullable=True),
        sa.Column("entry_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.PrimaryKeyConstraint("lot_id", name="pk_product_lots"),
        sa.ForeignKeyConstraint(
            ["product_id"],
            ["products.product_id"],
            name="fk_product_lots_product_id_products",
            ondelete="RESTRICT",
        ),
        sa.UniqueConstraint(
            "product_id", "lot_number", name="uq_product_lots_product_lot_number"
        ),
        sa.CheckConstraint("quantity >= 0", name="ck_product_lots_quantity_non_negative"),
    )
    op.create_index(
        "ix_product_lots_product_fefo",
        "product_lots",
        ["product_id", "expiry_date", "entry_date"],
    )

    op.create_table(
        "stock_movements",
        sa.Column("movement_id", sa.Uuid(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("product_id", sa.Uuid(), nullable=False),
        sa.Column("lot_id", sa.Uuid(), nullable=False),
        sa.Column("movement_type", movement_type, nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("reason", sa.String(500), nullable=False),
        sa.Column("reference", sa.String(255), nullable=True),
        sa.Column("actor_id", sa.String(255), nullable=False),
        sa.PrimaryKeyConstraint("movement_id", name="pk_stock_movements"),
        sa.ForeignKeyConstraint(
            ["product_id"],
            ["products.product_id"],
            name="fk_stock_movements_product_id_products",
            ondelete="RESTRICT",
        ),
        sa.ForeignKeyConstraint(
            ["lot_id"],
            ["product_lots.lot_id"],
            name="fk_stock_movements_lot_id_product_lots",
            ondelete="RESTRICT",
        ),
        sa.CheckConstraint("quantity <> 0", name="ck_stock_movements_quantity_non_zero"),
    )
    op.create_index("ix_stock_movements_lot_id", "stock_movements", ["lot_id"])
    op.create_index(
        "ix_stock_movements_product_created", "stock_movements", ["product_id", "created_at"]
    )
    op.create_index("ix_stock_movements_reference", "stock_movements", ["reference"])
    op.create_index("ix_stock_movements_type", "stock_movements", ["movement_type"])

    # -------------------------------------------------------------------------
    # Requests
    # -------------------------------------------------------------------------
    op.create_table(
        "aid_requests",
        sa.Column("request_id", sa.Uuid(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("code", sa.String(50), nullable=False),
        sa.Column("beneficiary_id", sa.Uuid(), nullable=True),
        sa.Column("status", request_status, nullable=False),
        sa.Column("created_by", sa.String(255), nullable=True),
        sa.Column("notes", sa.String(2000), nullable=True),
        sa.PrimaryKeyConstraint("request_id", name="pk_aid_requests"),
        sa.UniqueConstraint("code", name="uq_aid_requests_code"),
    )
    op.create_index("ix_aid_requests_status", "aid_requests", ["status"])

    op.create_table(
        "request_lines",
        sa.Column("request_line_id", sa.Uuid(), nullable=False),
        sa.Column("request_id", sa.Uuid(), nullable=False),
        sa.Column("product_id", sa.Uuid(), nullable=True),
        sa.Column("kit_id", sa.Uuid(), nullable=True),
        sa.Column("position", sa.Integer(), nullable=False),
        sa.Column("quantity_requested", sa.Integer(), nullable=False),
        sa.Column("quantity_delivered", sa.Integer(), nullable=False),
        sa.PrimaryKeyConstraint("request_line_id", name="pk_request_lines"),
        sa.ForeignKeyConstraint(
            ["request_id"],
            ["aid_requests.request_id"],
            name="fk_request_lines_request_id_aid_requests",
            ondelete="CASCADE",
        ),
        sa.ForeignKeyConstraint(
            ["product_id"],
            ["products.product_id"],
            name="fk_request_lines_product_id_products",
            ondelete="RESTRICT",
        ),
        sa.ForeignKeyConstraint(
            ["kit_id"],
            ["kits.kit_id"],
            name="fk_request_lines_kit_id_kits",
            ondelete="RESTRICT",
        ),
        sa.CheckConstraint(
            "(product_id IS NULL) <> (kit_id IS NULL)",
            name="ck_request_lines_exactly_one_item",
        ),
        sa.CheckConstraint(
            "quantity_requested > 0", name="ck_request_lines_quantity_requested_positive"
        ),
        sa.CheckConstraint(
            "quantity_delivered >= 0", name="ck_request_lines_quantity_delivered_non_negative"
        ),
    )
    op.create_index("ix_request_lines_request_id", "request_lines", ["request_id"])

    # -------------------------------------------------------------------------
    # Deliveries
    # -------------------------------------------------------------------------
    op.create_table(
        "deliveries",
        sa.Column("delivery_id", sa.Uuid(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("code", sa.String(50), nullable=False),
        sa.Column("request_id", sa.Uuid(), nullable=False),
        sa.Column("status", delivery_status, nullable=False),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.Column("notes", sa.String(2000), nullable=True),
        sa.Column("is_partial", sa.Boolean(), nullable=False),
        sa.Column("created_by", sa.String(255), nullable=False),
        sa.Column("authorized_by", sa.String(255), nullable=True),
        sa.Column("authorized_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("authorization_notes", sa.String(2000), nullable=True),
        sa.Column("is_partial_authorization", sa.Boolean(), nullable=False),
        sa.Column("warehouse_received_by", sa.String(255), nullable=True),
        sa.Column("warehouse_received_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("warehouse_notes", sa.String(2000), nullable=True),
        sa.Column("prepared_by", sa.String(255), nullable=True),
        sa.Column("prepared_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("preparation_notes", sa.String(2000), nullable=True),
        sa.Column("ready_by", sa.String(255), nullable=True),
        sa.Column("ready_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("delivered_by", sa.String(255), nullable=True),
        sa.Column("delivered_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("receiver_name", sa.String(255), nullable=True),
        sa.Column("receiver_document", sa.String(100), nullable=True),
        sa.Column("receiver_signature", sa.String(10000), nullable=True),
        sa.Column("reception_notes", sa.String(2000), nullable=True),
        sa.Column("cancelled_by", sa.String(255), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancellation_reason", sa.String(2000), nullable=True),
        sa.PrimaryKeyConstraint("delivery_id", name="pk_deliveries"),
        sa.ForeignKeyConstraint(
            ["request_id"],
            ["aid_requests.request_id"],
            name="fk_deliveries_request_id_aid_requests",
            ondelete="RESTRICT",
        ),
        sa.UniqueConstraint("code", name="uq_deliveries_code"),
    )
    op.create_index("ix_deliveries_request_id", "deliveries", ["request_id"])
    op.create_index("ix_deliveries_status", "deliveries", ["status"])
    op.create_index("ix_deliveries_created_at", "deliveries", ["created_at"])

    op.create_table(
        "delivery_line_items",
        sa.Column("line_item_id", sa.Uuid(), nullable=False),
        sa.Column("delivery_id", sa.Uuid(), nullable=False),
        sa.Column("product_id", sa.Uuid(), nullable=True),
        sa.Column("kit_id", sa.Uuid(), nullable=True),
        sa.Column("position", sa.Integer(), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("authorized_quantity", sa.Integer(), nullable=True),
        sa.PrimaryKeyConstraint("line_item_id", name="pk_delivery_line_items"),
        sa.ForeignKeyConstraint(
            ["delivery_id"],
            ["deliveries.delivery_id"],
            name="fk_delivery_line_items_delivery_id_deliveries",
            ondelete="CASCADE",
        ),
        sa.ForeignKeyConstraint(
            ["product_id"],
            ["products.product_id"],
            name="fk_delivery_line_items_product_id_products",
            ondelete="RESTRICT",
        ),
        sa.ForeignKeyConstraint(
            ["kit_id"],
            ["kits.kit_id"],
            name="fk_delivery_line_items_kit_id_kits",
            ondelete="RESTRICT",
        ),
        sa.CheckConstraint(
            "(product_id IS NULL) <> (kit_id IS NULL)",
            name="ck_delivery_line_items_exactly_one_item",
        ),
        sa.CheckConstraint("quantity > 0", name="ck_delivery_line_items_quantity_positive"),
        sa.CheckConstraint(
            "authorized_quantity IS NULL OR "
            "(authorized_quantity >= 0 AND authorized_quantity <= quantity)",
            name="ck_delivery_line_items_authorized_quantity_range",
        ),
    )
    op.create_index(
        "ix_delivery_line_items_delivery_id", "delivery_line_items", ["delivery_id"]
    )

    op.create_table(
        "delivery_allocations",
        sa.Column("allocation_id", sa.Uuid(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("line_item_id", sa.Uuid(), nullable=False),
        sa.Column("product_id", sa.Uuid(), nullable=False),
        sa.Column("lot_id", sa.Uuid(), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.PrimaryKeyConstraint("allocation_id", name="pk_delivery_allocations"),
        sa.ForeignKeyConstraint(
            ["line_item_id"],
            ["delivery_line_items.line_item_id"],
            name="fk_delivery_allocations_line_item_id_delivery_line_items",
            ondelete="CASCADE",
        ),
        sa.ForeignKeyConstraint(
            ["product_id"],
            ["products.product_id"],
            name="fk_delivery_allocations_product_id_products",
            ondelete="RESTRICT",
        ),
        sa.ForeignKeyConstraint(
            ["lot_id"],
            ["product_lots.lot_id"],
            name="fk_delivery_allocations_lot_id_product_lots",
            ondelete="RESTRICT",
        ),
        sa.CheckConstraint("quantity > 0", name="ck_delivery_allocations_quantity_positive"),
    )
    op.create_index(
        "ix_delivery_allocations_line_item_id", "delivery_allocations", ["line_item_id"]
    )
    op.create_index("ix_delivery_allocations_lot_id", "delivery_allocations", ["lot_id"])

    op.create_table(
        "delivery_history",
        sa.Column("history_id", sa.Uuid(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("delivery_id", sa.Uuid(), nullable=False),
        sa.Column("sequence", sa.Integer(), nullable=False),
        sa.Column("from_status", delivery_status, nullable=True),
        sa.Column("to_status", delivery_status, nullable=False),
        sa.Column("actor_id", sa.String(255), nullable=False),
        sa.Column("notes", sa.String(2000), nullable=True),
        sa.PrimaryKeyConstraint("history_id", name="pk_delivery_history"),
        sa.ForeignKeyConstraint(
            ["delivery_id"],
            ["deliveries.delivery_id"],
            name="fk_delivery_history_delivery_id_deliveries",
            ondelete="RESTRICT",
        ),
        sa.UniqueConstraint(
            "delivery_id", "sequence", name="uq_delivery_history_delivery_sequence"
        ),
    )
    op.create_index("ix_delivery_history_delivery_id", "delivery_history", ["delivery_id"])

    # -------------------------------------------------------------------------
    # Audit
    # -------------------------------------------------------------------------
    op.create_table(
        "audit_log_records",
        sa.Column("record_id", sa.Uuid(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("seq_no", sa.BigInteger(), nullable=False),
        sa.Column("record_hash", sa.String(64), nullable=False),
        sa.Column("prev_record_hash", sa.String(64), nullable=True),
        sa.Column("entity", sa.String(50), nullable=False),
        sa.Column("entity_id", sa.String(255), nullable=False),
        sa.Column("action", audit_action, nullable=False),
        sa.Column("actor_id", sa.String(255), nullable=False),
        sa.Column("old_values", sa.JSON(), nullable=True),
        sa.Column("new_values", sa.JSON(), nullable=True),
        sa.PrimaryKeyConstraint("record_id", name="pk_audit_log_records"),
        sa.UniqueConstraint("seq_no", name="uq_audit_log_records_seq_no"),
    )
    op.create_index(
        "ix_audit_log_records_entity", "audit_log_records", ["entity", "entity_id"]
    )
    op.create_index("ix_audit_log_records_actor_id", "audit_log_records", ["actor_id"])
    op.create_index("ix_audit_log_records_created_at", "audit_log_records", ["created_at"])


def downgrade() -> None:
    """Revert migration: Drop all core tables."""
    op.drop_table("audit_log_records")
    op.drop_table("delivery_history")
    op.drop_table("delivery_allocations")
    op.drop_table("delivery_line_items")
    op.drop_table("deliveries")
    op.drop_table("request_lines")
    op.drop_table("aid_requests")
    op.drop_table("stock_movements")
    op.drop_table("product_lots")
    op.drop_table("kit_components")
    op.drop_table("kits")
    op.drop_table("products")

    bind = op.get_bind()
    for enum_name in ("audit_action", "movement_type", "request_status", "delivery_status"):
        postgresql.ENUM(name=enum_name).drop(bind, checkfirst=True)
