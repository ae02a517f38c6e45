"""Custodia - chain-of-custody core for humanitarian aid deliveries.

Coordinates the handoff of aid kits and products from a warehouse to
beneficiaries: a segregation-of-duties delivery workflow, a FEFO lot
allocator and an append-only stock ledger that reconstructs current stock.
"""

__version__ = "0.1.0"
__all__ = ["__version__"]
