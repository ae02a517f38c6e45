"""Test data factories for Custodia.

This module provides factory functions that persist consistent, valid test
rows. Stock is always received through the stock ledger so every lot starts
with a matching ENTRY movement.
"""

from __future__ import annotations

from datetime import date
from uuid import uuid4

from sqlalchemy.ext.asyncio import AsyncSession

from custodia.core.config import InventorySettings
from custodia.db.models import (
    AidRequest,
    Delivery,
    Kit,
    KitComponent,
    Product,
    ProductLot,
    RequestLine,
    RequestStatus,
)
from custodia.services.lifecycle import DeliveryWorkflowService, LineItemInput, ReceiverIdentity
from custodia.services.stock_ledger import StockLedgerService

WAREHOUSE_INTAKE = "warehouse-intake"


def _suffix() -> str:
    return uuid4().hex[:8].upper()


async def create_product(
    session: AsyncSession,
    *,
    code: str | None = None,
    name: str = "Rice 5kg",
    min_stock: int = 0,
    is_perishable: bool = False,
    category: str | None = None,
) -> Product:
    """Persist a product.

    Args:
        session: Session to write with (committed on return).
        code: Product code. Auto-generated if None.
        name: Display name.
        min_stock: Low-stock threshold (0 disables the alert).
        is_perishable: Whether lots need an expiry date.
        category: Category for the stock-by-category report.

    Returns:
        The committed product.
    """
    product = Product(
        code=code or f"P-{_suffix()}",
        name=name,
        min_stock=min_stock,
        is_perishable=is_perishable,
        category=category,
    )
    session.add(product)
    await session.commit()
    return product


async def create_kit(
    session: AsyncSession,
    components: list[tuple[Product, int]],
    *,
    code: str | None = None,
    name: str = "Family kit",
) -> Kit:
    """Persist a kit made of ``(product, units per kit)`` components."""
    kit = Kit(
        code=code or f"K-{_suffix()}",
        name=name,
        components=[
            KitComponent(product_id=product.product_id, quantity=quantity)
            for product, quantity in components
        ],
    )
    session.add(kit)
    await session.commit()
    return kit


async def receive_stock(
    session: AsyncSession,
    product: Product,
    quantity: int,
    *,
    lot_number: str | None = None,
    expiry_date: date | None = None,
) -> ProductLot:
    """Receive stock through the ledger and return the lot."""
    ledger = StockLedgerService(session, InventorySettings())
    movement = await ledger.record_entry(
        product_id=product.product_id,
        quantity=quantity,
        actor_id=WAREHOUSE_INTAKE,
        lot_number=lot_number or f"L-{_suffix()}",
        expiry_date=expiry_date,
    )
    await session.commit()
    lot = await session.get(ProductLot, movement.lot_id)
    assert lot is not None
    return lot


async def create_request(
    session: AsyncSession,
    lines: list[tuple[Product | Kit, int]],
    *,
    status: RequestStatus = RequestStatus.APPROVED,
    created_by: str = "intake-officer",
) -> AidRequest:
    """Persist an aid request with one line per ``(item, quantity)``."""
    request = AidRequest(
        code=f"SOL-{_suffix()}",
        status=status,
        created_by=created_by,
        lines=[
            RequestLine(
                product_id=item.product_id if isinstance(item, Product) else None,
                kit_id=item.kit_id if isinstance(item, Kit) else None,
                position=position,
                quantity_requested=quantity,
            )
            for position, (item, quantity) in enumerate(lines)
        ],
    )
    session.add(request)
    await session.commit()
    return request


# Distinct actors for every step, so no segregation rule is broken by default
CREATOR = "coordinator-1"
AUTHORIZER = "authorizer-1"
WAREHOUSE = "warehouse-1"
PREPARER = "preparer-1"
DISPATCHER = "dispatcher-1"

RECEIVER = ReceiverIdentity(name="Ana Souza", document="123.456.789-00")


async def create_delivery(
    workflow: DeliveryWorkflowService,
    request: AidRequest,
    lines: list[tuple[Product | Kit, int]],
    *,
    actor_id: str = CREATOR,
) -> Delivery:
    """Create a delivery through the workflow and return it.

    Fails the calling test when the workflow rejects the creation.
    """
    result = await workflow.create(
        request_id=request.request_id,
        actor_id=actor_id,
        lines=[
            LineItemInput(
                quantity=quantity,
                product_id=item.product_id if isinstance(item, Product) else None,
                kit_id=item.kit_id if isinstance(item, Kit) else None,
            )
            for item, quantity in lines
        ],
    )
    assert result.success, result.error
    return result.delivery


async def advance_to_ready(workflow: DeliveryWorkflowService, delivery: Delivery) -> Delivery:
    """Walk a pending delivery through authorize, receive, prepare and mark_ready."""
    delivery_id = delivery.delivery_id
    steps = (
        (workflow.authorize, AUTHORIZER),
        (workflow.receive_warehouse, WAREHOUSE),
        (workflow.prepare, PREPARER),
        (workflow.mark_ready, PREPARER),
    )
    for step, actor_id in steps:
        result = await step(delivery_id, actor_id=actor_id)
        assert result.success, result.error
    return result.delivery
