"""SQLAlchemy ORM models for Custodia.

This package contains all database models organized by domain:
- base: Common metadata, column types and enums
- inventory: Products, kits, lots and stock movements
- requests: Aid requests and their lines
- deliveries: Deliveries, line items, lot allocations and history
- returns: Goods returned against delivered deliveries
- audit: Hash-chained audit log records
"""

from custodia.db.models.audit import AuditLogRecord
from custodia.db.models.base import (
    AuditAction,
    Base,
    DeliveryStatus,
    MovementType,
    RequestStatus,
    ReturnCondition,
    metadata,
)
from custodia.db.models.deliveries import (
    Delivery,
    DeliveryAllocation,
    DeliveryHistory,
    DeliveryLineItem,
)
from custodia.db.models.inventory import Kit, KitComponent, Product, ProductLot, StockMovement
from custodia.db.models.requests import AidRequest, RequestLine
from custodia.db.models.returns import DeliveryReturn, DeliveryReturnItem

__all__ = [
    "AidRequest",
    "AuditAction",
    "AuditLogRecord",
    "Base",
    "Delivery",
    "DeliveryAllocation",
    "DeliveryHistory",
    "DeliveryLineItem",
    "DeliveryReturn",
    "DeliveryReturnItem",
    "DeliveryStatus",
    "Kit",
    "KitComponent",
    "MovementType",
    "Product",
    "ProductLot",
    "RequestLine",
    "RequestStatus",
    "ReturnCondition",
    "StockMovement",
    "metadata",
]
