"""Custodia API routers.

- deliveries: delivery workflow steps and delivery reads
- inventory: stock ledger writes and inventory reads
- returns: goods handed back after delivery
"""

from custodia.api.routers.deliveries import router as deliveries_router
from custodia.api.routers.inventory import router as inventory_router
from custodia.api.routers.returns import router as returns_router

__all__ = [
    "deliveries_router",
    "inventory_router",
    "returns_router",
]
