"""Returns API router.

Goods handed back after a delivery are recorded against that delivery and
checked against the lots it drew. Good units go back into stock in the
same transaction.
"""

from __future__ import annotations

from datetime import date  # noqa: TC003
from typing import Annotated
from uuid import UUID  # noqa: TC003

from fastapi import APIRouter, Query, status

from custodia.api.dependencies import DbSession, ReturnService
from custodia.api.middleware.auth import CurrentActor  # noqa: TC001
from custodia.api.schemas.returns import (
    CreateReturnRequest,
    ReturnListResponse,
    ReturnReasonStatsResponse,
    ReturnResponse,
)
from custodia.api.transactions import write_transaction
from custodia.services.projections import ReturnProjections
from custodia.services.returns import ReturnItemInput

router = APIRouter(
    prefix="/returns",
    tags=["returns"],
    responses={401: {"description": "Actor identity required"}},
)


@router.post(
    "",
    response_model=ReturnResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Record a return",
    responses={409: {"description": "Delivery not delivered"}},
)
async def create_return(
    request: CreateReturnRequest,
    actor: CurrentActor,
    db: DbSession,
    service: ReturnService,
) -> ReturnResponse:
    """Record goods handed back after a delivery."""
    async with write_transaction(db):
        record = await service.record(
            delivery_id=request.delivery_id,
            reason=request.reason,
            notes=request.notes,
            actor_id=actor.actor_id,
            items=[
                ReturnItemInput(
                    product_id=item.product_id,
                    quantity=item.quantity,
                    condition=item.condition,
                    lot_id=item.lot_id,
                )
                for item in request.items
            ],
        )
    return ReturnResponse.model_validate(record)


@router.get(
    "",
    response_model=ReturnListResponse,
    summary="List returns",
)
async def list_returns(
    db: DbSession,
    delivery_id: Annotated[UUID | None, Query(description="Filter by delivery")] = None,
    reason: Annotated[str | None, Query(description="Filter by reason")] = None,
    start_date: Annotated[date | None, Query(description="On or after")] = None,
    end_date: Annotated[date | None, Query(description="On or before")] = None,
    page: Annotated[int, Query(ge=1)] = 1,
    limit: Annotated[int, Query(ge=1, le=100)] = 50,
) -> ReturnListResponse:
    """List returns newest first."""
    result = await ReturnProjections(db).list_returns(
        delivery_id=delivery_id,
        reason=reason,
        start_date=start_date,
        end_date=end_date,
        page=page,
        limit=limit,
    )
    return ReturnListResponse(
        items=[ReturnResponse.model_validate(r) for r in result.items],
        total=result.total,
        page=result.page,
        limit=result.limit,
        pages=result.pages,
    )


@router.get(
    "/stats/by-reason",
    response_model=list[ReturnReasonStatsResponse],
    summary="Returns per reason",
)
async def stats_by_reason(db: DbSession) -> list[ReturnReasonStatsResponse]:
    """Return count and returned units per reason."""
    return [
        ReturnReasonStatsResponse.model_validate(stats)
        for stats in await ReturnProjections(db).stats_by_reason()
    ]


@router.get(
    "/{return_id}",
    response_model=ReturnResponse,
    summary="Get a return",
)
async def get_return(return_id: UUID, db: DbSession) -> ReturnResponse:
    """A return with its items."""
    return ReturnResponse.model_validate(await ReturnProjections(db).get(return_id))
