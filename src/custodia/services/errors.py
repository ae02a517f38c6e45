"""Error taxonomy for the custody core.

Services raise these exceptions; the workflow recovers them at its public
operation boundary and returns them inside a tagged TransitionResult. The
HTTP layer maps each ``code`` to a status code.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from uuid import UUID

    from custodia.db.models.base import DeliveryStatus
    from custodia.services.segregation import SegregationViolation


class CustodyError(Exception):
    """Base class for all domain errors.

    Attributes:
        code: Machine-readable error code.
        message: Human-readable description.
        detail: Structured context for the caller.
        retryable: Whether retrying from a fresh read may succeed.
    """

    code = "custody_error"
    retryable = False

    def __init__(self, message: str, detail: dict[str, Any] | None = None) -> None:
        self.message = message
        self.detail = detail or {}
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        """Serialize for error envelopes and logs."""
        return {
            "error": self.code,
            "message": self.message,
            "detail": self.detail,
            "retryable": self.retryable,
        }


class ValidationError(CustodyError):
    """Malformed or inadmissible input; no state change happened."""

    code = "validation_error"

    def __init__(
        self, message: str, field: str | None = None, detail: dict[str, Any] | None = None
    ) -> None:
        self.field = field
        merged = dict(detail or {})
        if field is not None:
            merged.setdefault("field", field)
        super().__init__(message, merged)


class NotFoundError(CustodyError):
    """Referenced entity does not exist."""

    code = "not_found"

    def __init__(self, entity: str, identifier: UUID | str) -> None:
        self.entity = entity
        self.identifier = str(identifier)
        super().__init__(
            f"{entity} not found: {identifier}",
            {"entity": entity, "id": str(identifier)},
        )


class InvalidTransitionError(CustodyError):
    """Transition not allowed from the delivery's current status."""

    code = "invalid_transition"

    def __init__(
        self,
        current_status: DeliveryStatus,
        attempted: str,
        target_status: DeliveryStatus | None = None,
    ) -> None:
        self.current_status = current_status
        self.attempted = attempted
        self.target_status = target_status
        super().__init__(
            f"Cannot {attempted} a delivery in status {current_status.value}",
            {
                "current_status": current_status.value,
                "attempted": attempted,
                "target_status": target_status.value if target_status else None,
            },
        )


class SegregationViolationError(CustodyError):
    """One or more segregation-of-duties rules were broken."""

    code = "segregation_violation"

    def __init__(self, violations: list[SegregationViolation]) -> None:
        self.violations = list(violations)
        message = "; ".join(v.message for v in self.violations)
        super().__init__(
            message,
            {"violations": [{"rule": v.rule, "message": v.message} for v in self.violations]},
        )


class InsufficientStockError(CustodyError):
    """FEFO allocation could not satisfy the requested quantity."""

    code = "insufficient_stock"

    def __init__(self, product_id: UUID, requested: int, available: int) -> None:
        self.product_id = product_id
        self.requested = requested
        self.available = available
        super().__init__(
            f"Insufficient stock for product {product_id}: "
            f"requested {requested}, available {available}",
            {
                "product_id": str(product_id),
                "requested": requested,
                "available": available,
                "shortfall": self.shortfall,
            },
        )

    @property
    def shortfall(self) -> int:
        """Units missing to satisfy the request."""
        return self.requested - self.available


class ConflictError(CustodyError):
    """A concurrent transaction won the race for a delivery or a lot."""

    code = "conflict"
    retryable = True


class TransientPersistenceError(CustodyError):
    """The database failed underneath the operation; everything was rolled back."""

    code = "persistence_unavailable"
    retryable = True
