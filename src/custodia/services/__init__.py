"""Domain services for the custody core.

Services own every write and hold the business rules; the HTTP layer only
translates requests into service calls.
"""

from custodia.services.allocation import LotAllocator, expand_kit, plan_fefo_allocation
from custodia.services.audit_log import AuditLogService
from custodia.services.errors import (
    ConflictError,
    CustodyError,
    InsufficientStockError,
    InvalidTransitionError,
    NotFoundError,
    SegregationViolationError,
    TransientPersistenceError,
    ValidationError,
)
from custodia.services.fulfillment import RequestFulfillmentTracker
from custodia.services.history import HistoryRecorder
from custodia.services.lifecycle import (
    DeliveryWorkflowService,
    LineItemInput,
    ReceiverIdentity,
    TransitionResult,
)
from custodia.services.projections import (
    DeliveryProjections,
    InventoryProjections,
    ReturnProjections,
)
from custodia.services.returns import DeliveryReturnService, ReturnItemInput
from custodia.services.segregation import check_segregation
from custodia.services.stock_ledger import StockLedgerService
from custodia.services.workflow import TRANSITION_TABLE, WorkflowStep

__all__ = [
    "TRANSITION_TABLE",
    "AuditLogService",
    "ConflictError",
    "CustodyError",
    "DeliveryProjections",
    "DeliveryReturnService",
    "DeliveryWorkflowService",
    "HistoryRecorder",
    "InsufficientStockError",
    "InvalidTransitionError",
    "InventoryProjections",
    "LineItemInput",
    "LotAllocator",
    "NotFoundError",
    "ReceiverIdentity",
    "RequestFulfillmentTracker",
    "ReturnItemInput",
    "ReturnProjections",
    "SegregationViolationError",
    "StockLedgerService",
    "TransientPersistenceError",
    "TransitionResult",
    "ValidationError",
    "WorkflowStep",
    "check_segregation",
    "expand_kit",
    "plan_fefo_allocation",
]
