"""Pydantic schemas for return API endpoints."""

from __future__ import annotations

# NOTE: datetime and UUID must remain at runtime for Pydantic validation
from datetime import datetime  # noqa: TC003
from uuid import UUID  # noqa: TC003

from pydantic import BaseModel, ConfigDict, Field

from custodia.db.models.base import ReturnCondition

# -----------------------------------------------------------------------------
# Requests
# -----------------------------------------------------------------------------


class ReturnItemRequest(BaseModel):
    """One product handed back."""

    product_id: UUID = Field(..., description="Product returned")
    quantity: int = Field(..., description="Units returned")
    condition: ReturnCondition = Field(
        ReturnCondition.GOOD, description="Only good units go back into stock"
    )
    lot_id: UUID | None = Field(None, description="Lot the units were drawn from")

    model_config = ConfigDict(extra="forbid")


class CreateReturnRequest(BaseModel):
    """Goods handed back after a delivery."""

    delivery_id: UUID = Field(..., description="Delivered delivery the goods came from")
    reason: str = Field(..., max_length=255, description="Why the goods came back")
    items: list[ReturnItemRequest] = Field(..., description="Returned products")
    notes: str | None = Field(None, max_length=2000, description="Free-form notes")

    model_config = ConfigDict(extra="forbid")


# -----------------------------------------------------------------------------
# Responses
# -----------------------------------------------------------------------------


class ReturnItemResponse(BaseModel):
    """One returned product."""

    return_item_id: UUID
    product_id: UUID
    lot_id: UUID | None = None
    quantity: int
    condition: ReturnCondition
    movement_id: UUID | None = Field(None, description="RETURN movement for good units")

    model_config = ConfigDict(from_attributes=True)


class ReturnResponse(BaseModel):
    """Recorded return."""

    return_id: UUID
    delivery_id: UUID
    reason: str
    notes: str | None = None
    processed_by: str
    created_at: datetime
    items: list[ReturnItemResponse]

    model_config = ConfigDict(from_attributes=True)


class ReturnListResponse(BaseModel):
    """Paginated list of returns."""

    items: list[ReturnResponse]
    total: int
    page: int
    limit: int
    pages: int


class ReturnReasonStatsResponse(BaseModel):
    """Returns recorded for one reason."""

    reason: str
    returns: int
    units: int

    model_config = ConfigDict(from_attributes=True)
