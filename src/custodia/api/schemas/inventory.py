"""Pydantic schemas for inventory API endpoints."""

from __future__ import annotations

# NOTE: date, datetime and UUID must remain at runtime for Pydantic validation
from datetime import date, datetime  # noqa: TC003
from uuid import UUID  # noqa: TC003

from pydantic import BaseModel, ConfigDict, Field

from custodia.db.models.base import MovementType

# -----------------------------------------------------------------------------
# Requests
# -----------------------------------------------------------------------------


class StockEntryRequest(BaseModel):
    """Goods received into the warehouse."""

    product_id: UUID = Field(..., description="Product received")
    quantity: int = Field(..., description="Units received")
    lot_number: str | None = Field(
        None, max_length=100, description="Supplier lot number (generated when omitted)"
    )
    expiry_date: date | None = Field(None, description="Lot expiry date")
    reason: str | None = Field(None, max_length=500, description="Movement reason")
    reference: str | None = Field(None, max_length=255, description="External reference")

    model_config = ConfigDict(extra="forbid")


class StockAdjustmentRequest(BaseModel):
    """Signed manual correction of a lot."""

    lot_id: UUID = Field(..., description="Lot to correct")
    delta: int = Field(..., description="Signed change in units")
    reason: str = Field(..., max_length=500, description="Why the correction is needed")

    model_config = ConfigDict(extra="forbid")


class StockReturnRequest(BaseModel):
    """Units coming back into stock."""

    product_id: UUID = Field(..., description="Product returned")
    quantity: int = Field(..., description="Units returned")
    lot_id: UUID | None = Field(None, description="Original lot (new lot when omitted)")
    reason: str | None = Field(None, max_length=500, description="Movement reason")
    reference: str | None = Field(None, max_length=255, description="External reference")

    model_config = ConfigDict(extra="forbid")


# -----------------------------------------------------------------------------
# Responses
# -----------------------------------------------------------------------------


class MovementResponse(BaseModel):
    """One ledger movement."""

    movement_id: UUID
    product_id: UUID
    lot_id: UUID
    movement_type: MovementType
    quantity: int = Field(..., description="Signed change in units")
    reason: str
    reference: str | None = None
    actor_id: str
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class MovementListResponse(BaseModel):
    """Paginated list of movements."""

    items: list[MovementResponse]
    total: int
    page: int
    limit: int
    pages: int


class LotResponse(BaseModel):
    """Inventory lot."""

    lot_id: UUID
    product_id: UUID
    lot_number: str
    quantity: int
    expiry_date: date | None = None
    entry_date: datetime
    is_active: bool

    model_config = ConfigDict(from_attributes=True)


class ProductStockResponse(BaseModel):
    """Current stock of a product."""

    product_id: UUID
    total: int
    lots: list[LotResponse]


class ExpiringLotsResponse(BaseModel):
    """Lots expiring within a window."""

    days_ahead: int
    items: list[LotResponse]


class LowStockItem(BaseModel):
    """Product under its minimum stock."""

    product_id: UUID
    code: str
    name: str
    min_stock: int
    current_stock: int


class LotAllocationResponse(BaseModel):
    """Units a FEFO plan would draw from one lot."""

    lot_id: UUID
    lot_number: str
    quantity: int
    expiry_date: date | None = None

    model_config = ConfigDict(from_attributes=True)


class AllocationPreviewResponse(BaseModel):
    """Read-only FEFO plan."""

    product_id: UUID
    requested: int
    available: int
    feasible: bool
    shortfall: int
    allocations: list[LotAllocationResponse]

    model_config = ConfigDict(from_attributes=True)


class ComponentAvailabilityResponse(BaseModel):
    """Stock sufficiency of one kit component."""

    product_id: UUID
    per_kit: int
    required: int
    available: int
    sufficient: bool

    model_config = ConfigDict(from_attributes=True)


class KitAvailabilityResponse(BaseModel):
    """How many kits current stock can assemble."""

    kit_id: UUID
    quantity: int
    can_deliver: bool
    max_available: int
    components: list[ComponentAvailabilityResponse]

    model_config = ConfigDict(from_attributes=True)


class LotVerificationResponse(BaseModel):
    """Lot quantity compared with its ledger."""

    lot_id: UUID
    quantity: int
    ledger_sum: int
    movement_count: int
    consistent: bool

    model_config = ConfigDict(from_attributes=True)


class CategoryStockResponse(BaseModel):
    """Active products and units in stock for one category."""

    category: str | None = Field(None, description="Category name; null for uncategorized")
    product_count: int
    total_stock: int

    model_config = ConfigDict(from_attributes=True)
