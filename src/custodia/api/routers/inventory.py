"""Inventory API router.

Stock writes go through the stock ledger, one transaction per request.
Reads expose lot stock, stock per category, the movement ledger, FEFO
previews and kit availability.
"""

from __future__ import annotations

import logging
from datetime import date  # noqa: TC003
from typing import Annotated
from uuid import UUID  # noqa: TC003

from fastapi import APIRouter, Query, status

from custodia.api.dependencies import AppSettings, DbSession, StockLedger
from custodia.api.middleware.auth import CurrentActor  # noqa: TC001
from custodia.api.schemas.inventory import (
    AllocationPreviewResponse,
    CategoryStockResponse,
    ExpiringLotsResponse,
    KitAvailabilityResponse,
    LotResponse,
    LotVerificationResponse,
    LowStockItem,
    MovementListResponse,
    MovementResponse,
    ProductStockResponse,
    StockAdjustmentRequest,
    StockEntryRequest,
    StockReturnRequest,
)
from custodia.api.transactions import write_transaction
from custodia.db.models.base import MovementType
from custodia.services.allocation import LotAllocator
from custodia.services.projections import InventoryProjections

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/inventory",
    tags=["inventory"],
    responses={401: {"description": "Actor identity required"}},
)


# -----------------------------------------------------------------------------
# Ledger writes
# -----------------------------------------------------------------------------


@router.post(
    "/entry",
    response_model=MovementResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Receive stock",
)
async def record_entry(
    request: StockEntryRequest,
    actor: CurrentActor,
    db: DbSession,
    ledger: StockLedger,
) -> MovementResponse:
    """Receive goods into a new or existing lot."""
    async with write_transaction(db):
        movement = await ledger.record_entry(
            product_id=request.product_id,
            quantity=request.quantity,
            actor_id=actor.actor_id,
            lot_number=request.lot_number,
            expiry_date=request.expiry_date,
            reason=request.reason,
            reference=request.reference,
        )
    return MovementResponse.model_validate(movement)


@router.post(
    "/adjustment",
    response_model=MovementResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Adjust a lot",
)
async def record_adjustment(
    request: StockAdjustmentRequest,
    actor: CurrentActor,
    db: DbSession,
    ledger: StockLedger,
) -> MovementResponse:
    """Apply a signed correction to a lot."""
    async with write_transaction(db):
        movement = await ledger.record_adjustment(
            lot_id=request.lot_id,
            delta=request.delta,
            reason=request.reason,
            actor_id=actor.actor_id,
        )
    return MovementResponse.model_validate(movement)


@router.post(
    "/returns",
    response_model=MovementResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Return stock",
)
async def record_return(
    request: StockReturnRequest,
    actor: CurrentActor,
    db: DbSession,
    ledger: StockLedger,
) -> MovementResponse:
    """Return goods into their original lot or a new return lot."""
    async with write_transaction(db):
        movement = await ledger.record_return(
            product_id=request.product_id,
            quantity=request.quantity,
            actor_id=actor.actor_id,
            lot_id=request.lot_id,
            reason=request.reason,
            reference=request.reference,
        )
    return MovementResponse.model_validate(movement)


# -----------------------------------------------------------------------------
# Reads
# -----------------------------------------------------------------------------


@router.get(
    "/movements",
    response_model=MovementListResponse,
    summary="List stock movements",
)
async def list_movements(
    db: DbSession,
    ledger: StockLedger,
    product_id: Annotated[UUID | None, Query(description="Filter by product")] = None,
    lot_id: Annotated[UUID | None, Query(description="Filter by lot")] = None,
    movement_type: Annotated[
        MovementType | None, Query(alias="type", description="Filter by movement type")
    ] = None,
    reference: Annotated[str | None, Query(description="Filter by reference")] = None,
    start_date: Annotated[date | None, Query(description="On or after")] = None,
    end_date: Annotated[date | None, Query(description="On or before")] = None,
    page: Annotated[int, Query(ge=1)] = 1,
    limit: Annotated[int, Query(ge=1, le=100)] = 50,
) -> MovementListResponse:
    """List ledger movements newest first."""
    result = await InventoryProjections(db, ledger).list_movements(
        product_id=product_id,
        lot_id=lot_id,
        movement_type=movement_type,
        reference=reference,
        start_date=start_date,
        end_date=end_date,
        page=page,
        limit=limit,
    )
    return MovementListResponse(
        items=[MovementResponse.model_validate(m) for m in result.items],
        total=result.total,
        page=result.page,
        limit=result.limit,
        pages=result.pages,
    )


@router.get(
    "/expiring",
    response_model=ExpiringLotsResponse,
    summary="Lots close to expiry",
)
async def expiring_lots(
    ledger: StockLedger,
    settings: AppSettings,
    days_ahead: Annotated[int | None, Query(ge=1, le=3650, description="Window in days")] = None,
) -> ExpiringLotsResponse:
    """Lots with stock expiring within the window."""
    days = days_ahead or settings.inventory.expiring_window_days
    lots = await ledger.expiring_lots(days)
    return ExpiringLotsResponse(
        days_ahead=days,
        items=[LotResponse.model_validate(lot) for lot in lots],
    )


@router.get(
    "/low-stock",
    response_model=list[LowStockItem],
    summary="Products under minimum stock",
)
async def low_stock(ledger: StockLedger) -> list[LowStockItem]:
    """Active products whose stock fell under their minimum."""
    return [
        LowStockItem(
            product_id=item.product.product_id,
            code=item.product.code,
            name=item.product.name,
            min_stock=item.product.min_stock,
            current_stock=item.current_stock,
        )
        for item in await ledger.low_stock_products()
    ]


@router.get(
    "/stock/by-category",
    response_model=list[CategoryStockResponse],
    summary="Stock per product category",
)
async def stock_by_category(ledger: StockLedger) -> list[CategoryStockResponse]:
    """Active product count and units in stock for every category."""
    return [
        CategoryStockResponse.model_validate(item) for item in await ledger.stock_by_category()
    ]


@router.get(
    "/products/{product_id}/stock",
    response_model=ProductStockResponse,
    summary="Current stock of a product",
)
async def product_stock(product_id: UUID, ledger: StockLedger) -> ProductStockResponse:
    """Stock per lot of a product."""
    stock = await ledger.product_stock(product_id)
    return ProductStockResponse(
        product_id=stock.product_id,
        total=stock.total,
        lots=[LotResponse.model_validate(lot) for lot in stock.lots],
    )


@router.get(
    "/products/{product_id}/allocation-preview",
    response_model=AllocationPreviewResponse,
    summary="Preview a FEFO allocation",
)
async def allocation_preview(
    product_id: UUID,
    db: DbSession,
    quantity: Annotated[int, Query(ge=1, description="Units to allocate")],
) -> AllocationPreviewResponse:
    """Which lots a FEFO draw of ``quantity`` units would use."""
    preview = await LotAllocator(db).preview(product_id, quantity)
    return AllocationPreviewResponse.model_validate(preview)


@router.get(
    "/kits/{kit_id}/availability",
    response_model=KitAvailabilityResponse,
    summary="Kit availability",
)
async def kit_availability(
    kit_id: UUID,
    db: DbSession,
    ledger: StockLedger,
    quantity: Annotated[int, Query(ge=1, description="Kits wanted")] = 1,
) -> KitAvailabilityResponse:
    """Whether current stock can assemble ``quantity`` kits."""
    availability = await InventoryProjections(db, ledger).kit_availability(kit_id, quantity)
    return KitAvailabilityResponse.model_validate(availability)


@router.get(
    "/lots/{lot_id}/verify",
    response_model=LotVerificationResponse,
    summary="Verify a lot against its ledger",
)
async def verify_lot(lot_id: UUID, ledger: StockLedger) -> LotVerificationResponse:
    """Compare a lot's quantity with the sum of its movements."""
    verification = await ledger.verify_lot(lot_id)
    return LotVerificationResponse.model_validate(verification)
