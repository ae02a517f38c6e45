"""Delivery API router.

Drives deliveries through the workflow and exposes the delivery read
projections. Mutating endpoints require the gateway actor headers; the
actor is checked for segregation of duties by the workflow service.
"""

from __future__ import annotations

import logging
from datetime import date  # noqa: TC003
from typing import Annotated
from uuid import UUID  # noqa: TC003

from fastapi import APIRouter, Body, Query, status

from custodia.api.dependencies import DbSession, WorkflowService
from custodia.api.middleware.auth import CurrentActor  # noqa: TC001
from custodia.api.middleware.errors import APIError
from custodia.api.schemas.deliveries import (
    AuthorizeRequest,
    CancelRequest,
    CreateDeliveryRequest,
    DeliverRequest,
    DeliveryDetailResponse,
    DeliveryListResponse,
    DeliveryResponse,
    DeliverySummary,
    HistoryEntryResponse,
    StepRequest,
    TransitionResponse,
)
from custodia.db.models.base import DeliveryStatus
from custodia.services.lifecycle import LineItemInput, ReceiverIdentity, TransitionResult
from custodia.services.projections import DeliveryProjections

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/deliveries",
    tags=["deliveries"],
    responses={
        401: {"description": "Actor identity required"},
        403: {"description": "Segregation of duties violated"},
        409: {"description": "Invalid transition, stock shortfall or concurrent update"},
    },
)


def _raise_for_result(result: TransitionResult) -> None:
    if not result.success:
        raise APIError.from_custody_error(result.error)


def _transition_response(result: TransitionResult) -> TransitionResponse:
    _raise_for_result(result)
    return TransitionResponse(
        step=result.step.value,
        previous_status=result.previous_status,
        new_status=result.new_status,
        target_roles=list(result.event.target_roles) if result.event else [],
        delivery=DeliveryResponse.model_validate(result.delivery),
    )


# -----------------------------------------------------------------------------
# Creation and reads
# -----------------------------------------------------------------------------


@router.post(
    "",
    response_model=DeliveryResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create a delivery",
    description="Creates a delivery in PENDING_AUTHORIZATION against an approved request.",
)
async def create_delivery(
    request: CreateDeliveryRequest,
    actor: CurrentActor,
    workflow: WorkflowService,
) -> DeliveryResponse:
    """Create a delivery for the remaining quantities of a request."""
    result = await workflow.create(
        request_id=request.request_id,
        actor_id=actor.actor_id,
        lines=[
            LineItemInput(
                product_id=line.product_id,
                kit_id=line.kit_id,
                quantity=line.quantity,
            )
            for line in request.lines
        ],
        notes=request.notes,
        is_partial=request.is_partial,
    )
    _raise_for_result(result)
    return DeliveryResponse.model_validate(result.delivery)


@router.get(
    "",
    response_model=DeliveryListResponse,
    summary="List deliveries",
)
async def list_deliveries(
    db: DbSession,
    request_id: Annotated[UUID | None, Query(description="Filter by request")] = None,
    delivery_status: Annotated[
        DeliveryStatus | None, Query(alias="status", description="Filter by status")
    ] = None,
    start_date: Annotated[date | None, Query(description="Created on or after")] = None,
    end_date: Annotated[date | None, Query(description="Created on or before")] = None,
    page: Annotated[int, Query(ge=1, description="Page number")] = 1,
    limit: Annotated[int, Query(ge=1, le=100, description="Page size")] = 20,
) -> DeliveryListResponse:
    """List deliveries newest first."""
    result = await DeliveryProjections(db).list_deliveries(
        request_id=request_id,
        status=delivery_status,
        start_date=start_date,
        end_date=end_date,
        page=page,
        limit=limit,
    )
    return DeliveryListResponse(
        items=[DeliverySummary.model_validate(d) for d in result.items],
        total=result.total,
        page=result.page,
        limit=result.limit,
        pages=result.pages,
    )


@router.get(
    "/stats/summary",
    response_model=dict[str, int],
    summary="Delivery counts per status",
)
async def delivery_summary(db: DbSession) -> dict[str, int]:
    """Count deliveries per status."""
    return await DeliveryProjections(db).status_summary()


@router.get(
    "/{delivery_id}",
    response_model=DeliveryDetailResponse,
    summary="Get delivery details",
)
async def get_delivery(delivery_id: UUID, db: DbSession) -> DeliveryDetailResponse:
    """Delivery with line items, allocations and history."""
    detail = await DeliveryProjections(db).detail(delivery_id)
    base = DeliveryResponse.model_validate(detail.delivery)
    return DeliveryDetailResponse(
        **base.model_dump(),
        history=[HistoryEntryResponse.model_validate(h) for h in detail.history],
    )


@router.get(
    "/{delivery_id}/history",
    response_model=list[HistoryEntryResponse],
    summary="Get delivery timeline",
)
async def get_delivery_history(delivery_id: UUID, db: DbSession) -> list[HistoryEntryResponse]:
    """Ordered transitions of a delivery."""
    records = await DeliveryProjections(db).history(delivery_id)
    return [HistoryEntryResponse.model_validate(record) for record in records]


# -----------------------------------------------------------------------------
# Workflow steps
# -----------------------------------------------------------------------------


@router.post(
    "/{delivery_id}/authorize",
    response_model=TransitionResponse,
    summary="Authorize a delivery",
)
async def authorize_delivery(
    delivery_id: UUID,
    actor: CurrentActor,
    workflow: WorkflowService,
    request: Annotated[AuthorizeRequest | None, Body()] = None,
) -> TransitionResponse:
    """Authorize a pending delivery, optionally for partial quantities."""
    request = request or AuthorizeRequest()
    result = await workflow.authorize(
        delivery_id,
        actor_id=actor.actor_id,
        notes=request.notes,
        authorized_quantities=request.authorized_quantities,
    )
    return _transition_response(result)


@router.post(
    "/{delivery_id}/receive-warehouse",
    response_model=TransitionResponse,
    summary="Acknowledge receipt in the warehouse",
)
async def receive_warehouse(
    delivery_id: UUID,
    actor: CurrentActor,
    workflow: WorkflowService,
    request: Annotated[StepRequest | None, Body()] = None,
) -> TransitionResponse:
    """Record the warehouse taking charge of an authorized delivery."""
    notes = request.notes if request else None
    result = await workflow.receive_warehouse(delivery_id, actor_id=actor.actor_id, notes=notes)
    return _transition_response(result)


@router.post(
    "/{delivery_id}/prepare",
    response_model=TransitionResponse,
    summary="Start preparing a delivery",
)
async def prepare_delivery(
    delivery_id: UUID,
    actor: CurrentActor,
    workflow: WorkflowService,
    request: Annotated[StepRequest | None, Body()] = None,
) -> TransitionResponse:
    """Move a received delivery into preparation."""
    notes = request.notes if request else None
    result = await workflow.prepare(delivery_id, actor_id=actor.actor_id, notes=notes)
    return _transition_response(result)


@router.post(
    "/{delivery_id}/ready",
    response_model=TransitionResponse,
    summary="Allocate stock and mark ready",
)
async def mark_ready(
    delivery_id: UUID,
    actor: CurrentActor,
    workflow: WorkflowService,
    request: Annotated[StepRequest | None, Body()] = None,
) -> TransitionResponse:
    """Draw stock by FEFO for every line and mark the delivery ready."""
    notes = request.notes if request else None
    result = await workflow.mark_ready(delivery_id, actor_id=actor.actor_id, notes=notes)
    return _transition_response(result)


@router.post(
    "/{delivery_id}/deliver",
    response_model=TransitionResponse,
    summary="Hand the delivery to its receiver",
)
async def deliver(
    delivery_id: UUID,
    request: DeliverRequest,
    actor: CurrentActor,
    workflow: WorkflowService,
) -> TransitionResponse:
    """Record the handoff and credit the request."""
    result = await workflow.deliver(
        delivery_id,
        actor_id=actor.actor_id,
        receiver=ReceiverIdentity(
            name=request.receiver_name,
            document=request.receiver_document,
            signature=request.receiver_signature,
        ),
        notes=request.notes,
    )
    return _transition_response(result)


@router.post(
    "/{delivery_id}/cancel",
    response_model=TransitionResponse,
    summary="Cancel a delivery",
)
async def cancel_delivery(
    delivery_id: UUID,
    request: CancelRequest,
    actor: CurrentActor,
    workflow: WorkflowService,
) -> TransitionResponse:
    """Cancel an open delivery, returning any drawn stock."""
    result = await workflow.cancel(delivery_id, actor_id=actor.actor_id, reason=request.reason)
    return _transition_response(result)
