"""Base model definitions, mixins, and common types.

This module provides:
- SQLAlchemy declarative base with naming conventions
- Portable column type annotations (PostgreSQL and SQLite)
- Enum types used across multiple models
"""

import enum
import uuid
from datetime import UTC, datetime
from typing import Annotated

from sqlalchemy import DateTime, Enum, MetaData, String, Uuid
from sqlalchemy.orm import DeclarativeBase, mapped_column, registry

# Naming convention for constraints ensures consistent migration generation.
# See: https://alembic.sqlalchemy.org/en/latest/naming.html
NAMING_CONVENTION = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}

# Shared metadata with naming convention
metadata = MetaData(naming_convention=NAMING_CONVENTION)

# Custom type registry for reusable type annotations
type_registry = registry()


def utcnow() -> datetime:
    """Current time as a timezone-aware UTC datetime."""
    return datetime.now(UTC)


# Common type annotations for columns.
# Defaults are generated client-side so freshly flushed rows never need a
# refresh round-trip inside an async session.
UUIDPrimaryKey = Annotated[
    uuid.UUID,
    mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4),
]

# Timestamp with timezone, defaults to now
TimestampTZ = Annotated[
    datetime,
    mapped_column(DateTime(timezone=True), default=utcnow, nullable=False),
]

# Optional timestamp with timezone
OptionalTimestampTZ = Annotated[
    datetime | None,
    mapped_column(DateTime(timezone=True), nullable=True),
]

# Actor identifiers come from the auth collaborator as opaque strings
ActorRef = Annotated[str, mapped_column(String(255))]
OptionalActorRef = Annotated[str | None, mapped_column(String(255), nullable=True)]


class Base(DeclarativeBase):
    """Declarative base for all Custodia models.

    All models inherit from this base, which provides:
    - Consistent metadata with naming conventions
    - Type annotation support via mapped_column
    """

    metadata = metadata
    registry = type_registry


def enum_type(enum_cls: type[enum.Enum], name: str) -> Enum:
    """Build a named SQL enum that persists member values, not names.

    Native enum types are used on PostgreSQL; other backends rely on
    bind-time validation.
    """
    return Enum(
        enum_cls,
        name=name,
        create_constraint=False,
        values_callable=lambda members: [member.value for member in members],
        validate_strings=True,
    )


# =============================================================================
# Common Enums
# =============================================================================


class DeliveryStatus(enum.Enum):
    """Delivery workflow states.

    States:
        PENDING_AUTHORIZATION: Created, waiting for an authorizer
        AUTHORIZED: Approved for dispatch (possibly with partial quantities)
        RECEIVED_WAREHOUSE: Warehouse acknowledged the authorized order
        IN_PREPARATION: Items being picked
        READY: Lots allocated and stock drawn, awaiting handoff
        DELIVERED: Handed to the beneficiary (terminal)
        CANCELLED: Withdrawn before handoff (terminal)
    """

    PENDING_AUTHORIZATION = "pending_authorization"
    AUTHORIZED = "authorized"
    RECEIVED_WAREHOUSE = "received_warehouse"
    IN_PREPARATION = "in_preparation"
    READY = "ready"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


class RequestStatus(enum.Enum):
    """Aid request states.

    Only APPROVED and PARTIALLY_DELIVERED requests accept new deliveries.
    DELIVERED and PARTIALLY_DELIVERED are derived from delivered quantities.
    """

    REGISTERED = "registered"
    IN_REVIEW = "in_review"
    APPROVED = "approved"
    REJECTED = "rejected"
    DELIVERED = "delivered"
    PARTIALLY_DELIVERED = "partially_delivered"
    CANCELLED = "cancelled"


class MovementType(enum.Enum):
    """Stock ledger movement types.

    Values:
        ENTRY: Goods received into a lot (positive)
        EXIT: Goods drawn for a delivery (negative)
        ADJUSTMENT: Manual correction (either sign)
        RETURN: Goods returned to a lot (positive)
    """

    ENTRY = "entry"
    EXIT = "exit"
    ADJUSTMENT = "adjustment"
    RETURN = "return"


class ReturnCondition(enum.Enum):
    """State of goods handed back after a delivery.

    Only GOOD units go back into stock; the others are recorded for the
    return report and stay out of inventory.
    """

    GOOD = "good"
    DAMAGED = "damaged"
    EXPIRED = "expired"


class AuditAction(enum.Enum):
    """Actions recorded in the audit log."""

    CREATE = "create"
    UPDATE = "update"
    STATUS_CHANGE = "status_change"
    CANCEL = "cancel"
    DELIVER = "deliver"
    ENTRY = "entry"
    ADJUSTMENT = "adjustment"
    RETURN = "return"
