"""Pydantic schemas for delivery API endpoints.

Request schemas only check shape; business rules (quantities against the
request, receiver identity, segregation) are enforced by the workflow
service so every rule violation uses the same error envelope.
"""

from __future__ import annotations

# NOTE: datetime and UUID must remain at runtime for Pydantic validation
from datetime import datetime  # noqa: TC003
from uuid import UUID  # noqa: TC003

from pydantic import BaseModel, ConfigDict, Field

from custodia.db.models.base import DeliveryStatus

# -----------------------------------------------------------------------------
# Requests
# -----------------------------------------------------------------------------


class LineItemInput(BaseModel):
    """One product or kit line of a new delivery."""

    product_id: UUID | None = Field(None, description="Product to deliver")
    kit_id: UUID | None = Field(None, description="Kit to deliver")
    quantity: int = Field(..., description="Units (or kits) to deliver")

    model_config = ConfigDict(extra="forbid")


class CreateDeliveryRequest(BaseModel):
    """Request schema for creating a delivery against an approved request."""

    request_id: UUID = Field(..., description="Aid request being fulfilled")
    lines: list[LineItemInput] = Field(..., description="Line items to deliver")
    notes: str | None = Field(None, max_length=2000, description="Free-text notes")
    is_partial: bool = Field(False, description="Delivery covers part of the request")

    model_config = ConfigDict(extra="forbid")


class StepRequest(BaseModel):
    """Notes attached to a workflow step."""

    notes: str | None = Field(None, max_length=2000, description="Free-text notes")

    model_config = ConfigDict(extra="forbid")


class AuthorizeRequest(StepRequest):
    """Authorization with optional partial quantities."""

    authorized_quantities: dict[UUID, int] | None = Field(
        None,
        description="Approved quantity per line_item_id (0 <= qty <= line quantity)",
    )


class DeliverRequest(StepRequest):
    """Receiver identity captured at handoff."""

    receiver_name: str = Field(..., max_length=255, description="Receiver full name")
    receiver_document: str = Field(..., max_length=100, description="Receiver ID document")
    receiver_signature: str | None = Field(
        None, max_length=10000, description="Encoded receiver signature"
    )


class CancelRequest(BaseModel):
    """Cancellation of an open delivery."""

    reason: str = Field(..., max_length=2000, description="Why the delivery is cancelled")

    model_config = ConfigDict(extra="forbid")


# -----------------------------------------------------------------------------
# Responses
# -----------------------------------------------------------------------------


class AllocationResponse(BaseModel):
    """Units drawn from one lot for a line item."""

    allocation_id: UUID
    product_id: UUID
    lot_id: UUID
    quantity: int

    model_config = ConfigDict(from_attributes=True)


class LineItemResponse(BaseModel):
    """Delivery line item with its lot allocations."""

    line_item_id: UUID
    product_id: UUID | None
    kit_id: UUID | None
    quantity: int
    authorized_quantity: int | None
    effective_quantity: int
    allocations: list[AllocationResponse] = Field(default_factory=list)

    model_config = ConfigDict(from_attributes=True)


class DeliveryResponse(BaseModel):
    """Response schema for delivery details."""

    delivery_id: UUID = Field(..., description="Unique delivery identifier")
    code: str = Field(..., description="Human-readable delivery code")
    request_id: UUID = Field(..., description="Aid request being fulfilled")
    status: DeliveryStatus = Field(..., description="Current workflow status")
    notes: str | None = None
    is_partial: bool
    is_partial_authorization: bool
    created_by: str
    created_at: datetime
    updated_at: datetime
    authorized_by: str | None = None
    authorized_at: datetime | None = None
    warehouse_received_by: str | None = None
    warehouse_received_at: datetime | None = None
    prepared_by: str | None = None
    prepared_at: datetime | None = None
    ready_by: str | None = None
    ready_at: datetime | None = None
    delivered_by: str | None = None
    delivered_at: datetime | None = None
    receiver_name: str | None = None
    receiver_document: str | None = None
    cancelled_by: str | None = None
    cancelled_at: datetime | None = None
    cancellation_reason: str | None = None
    line_items: list[LineItemResponse] = Field(default_factory=list)

    model_config = ConfigDict(from_attributes=True)


class DeliverySummary(BaseModel):
    """Delivery row in a listing."""

    delivery_id: UUID
    code: str
    request_id: UUID
    status: DeliveryStatus
    created_by: str
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class DeliveryListResponse(BaseModel):
    """Paginated list of deliveries."""

    items: list[DeliverySummary]
    total: int = Field(..., description="Total matching deliveries")
    page: int
    limit: int
    pages: int


class HistoryEntryResponse(BaseModel):
    """One transition of a delivery timeline."""

    sequence: int
    from_status: DeliveryStatus | None
    to_status: DeliveryStatus
    actor_id: str
    notes: str | None = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class DeliveryDetailResponse(DeliveryResponse):
    """Delivery with its ordered history."""

    history: list[HistoryEntryResponse] = Field(default_factory=list)


class TransitionResponse(BaseModel):
    """Outcome of a successful workflow step."""

    step: str
    previous_status: DeliveryStatus | None
    new_status: DeliveryStatus
    target_roles: list[str] = Field(default_factory=list)
    delivery: DeliveryResponse
