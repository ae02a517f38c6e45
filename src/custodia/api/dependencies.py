"""FastAPI dependencies shared by the routers."""

from __future__ import annotations

from collections.abc import AsyncIterator
from typing import Annotated

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from custodia.core.config import Settings
from custodia.services.lifecycle import DeliveryWorkflowService
from custodia.services.returns import DeliveryReturnService
from custodia.services.stock_ledger import StockLedgerService


async def get_db_session() -> AsyncIterator[AsyncSession]:
    """Get database session.

    Uses the application's async session factory.
    """
    from custodia.db import get_async_session

    async with get_async_session() as session:
        yield session


DbSession = Annotated[AsyncSession, Depends(get_db_session)]


def get_app_settings(request: Request) -> Settings:
    """Settings the application was created with."""
    return request.app.state.settings


AppSettings = Annotated[Settings, Depends(get_app_settings)]


def get_workflow_service(
    request: Request, db: DbSession, settings: AppSettings
) -> DeliveryWorkflowService:
    """Workflow service bound to the request session and app publisher."""
    return DeliveryWorkflowService(
        db,
        settings=settings,
        publisher=request.app.state.publisher,
    )


def get_stock_ledger(db: DbSession, settings: AppSettings) -> StockLedgerService:
    """Stock ledger bound to the request session."""
    return StockLedgerService(db, settings.inventory)


def get_return_service(db: DbSession, settings: AppSettings) -> DeliveryReturnService:
    """Return service bound to the request session."""
    return DeliveryReturnService(db, settings.inventory)


WorkflowService = Annotated[DeliveryWorkflowService, Depends(get_workflow_service)]
StockLedger = Annotated[StockLedgerService, Depends(get_stock_ledger)]
ReturnService = Annotated[DeliveryReturnService, Depends(get_return_service)]
