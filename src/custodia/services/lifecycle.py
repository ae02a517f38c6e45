"""Delivery workflow state machine service.

This module implements the delivery workflow with:
- One central transition table (custodia.services.workflow)
- Segregation-of-duties checks before every sensitive step
- FEFO stock draw on mark_ready and exact reversal on cancel
- Request fulfillment on deliver
- One history record and one audit record per transition
- One database transaction per public operation

Every public operation returns a TransitionResult. Domain errors and
persistence failures are recovered at this boundary: the transaction is
rolled back and the error is returned in the result, never swallowed.
"""

from __future__ import annotations

import logging
import secrets
import string
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any, ClassVar

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm.exc import StaleDataError

from custodia.db.models.base import AuditAction, DeliveryStatus, RequestStatus
from custodia.db.models.deliveries import Delivery, DeliveryAllocation, DeliveryLineItem
from custodia.db.models.inventory import Kit
from custodia.services.allocation import (
    LotAllocator,
    ProductDemand,
    aggregate_demand,
    expand_kit,
)
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
from custodia.services.fulfillment import (
    RequestFulfillmentTracker,
    line_key,
    remaining_quantities,
)
from custodia.services.history import HistoryRecorder
from custodia.services.notifications import TransitionEvent, build_publisher
from custodia.services.segregation import check_segregation
from custodia.services.stock_ledger import StockLedgerService
from custodia.services.workflow import (
    TERMINAL_STATUSES,
    TRANSITION_TABLE,
    WorkflowStep,
    step_allowed,
)

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Sequence
    from uuid import UUID

    from sqlalchemy.ext.asyncio import AsyncSession

    from custodia.core.config import Settings
    from custodia.services.notifications import EventPublisher

logger = logging.getLogger(__name__)

# Requests in these states accept new deliveries
DELIVERABLE_REQUEST_STATUSES = frozenset(
    {RequestStatus.APPROVED, RequestStatus.PARTIALLY_DELIVERED}
)

CODE_ALPHABET = string.ascii_uppercase + string.digits
CODE_RANDOM_LENGTH = 6
CODE_MAX_ATTEMPTS = 5


@dataclass(frozen=True, slots=True)
class LineItemInput:
    """Requested quantity of exactly one product or kit."""

    quantity: int
    product_id: UUID | None = None
    kit_id: UUID | None = None


@dataclass(frozen=True, slots=True)
class ReceiverIdentity:
    """Identity of the person receiving the aid at handoff."""

    name: str
    document: str
    signature: str | None = None


@dataclass(frozen=True, slots=True)
class TransitionResult:
    """Tagged result of a workflow operation.

    Attributes:
        success: Whether the operation committed.
        step: Workflow step attempted.
        delivery_id: Delivery affected (None if creation failed).
        previous_status: Status before the step (None for creation or when
            the delivery could not be read).
        new_status: Status after the step (unchanged on failure).
        error: Domain error when the step failed.
        event: Transition event published after commit.
        delivery: The delivery row after a successful step.
    """

    success: bool
    step: WorkflowStep
    delivery_id: UUID | None
    previous_status: DeliveryStatus | None
    new_status: DeliveryStatus | None
    error: CustodyError | None = None
    event: TransitionEvent | None = None
    delivery: Delivery | None = None

    @property
    def error_code(self) -> str | None:
        return self.error.code if self.error is not None else None


@dataclass
class _Progress:
    """Mutable scratchpad filled while a step runs."""

    delivery_id: UUID | None = None
    previous_status: DeliveryStatus | None = None


def _audit_values(delivery: Delivery) -> dict[str, Any]:
    return {
        "status": delivery.status.value,
        "created_by": delivery.created_by,
        "authorized_by": delivery.authorized_by,
        "warehouse_received_by": delivery.warehouse_received_by,
        "prepared_by": delivery.prepared_by,
        "delivered_by": delivery.delivered_by,
        "cancelled_by": delivery.cancelled_by,
    }


class DeliveryWorkflowService:
    """Service driving deliveries through the workflow.

    Example:
        service = DeliveryWorkflowService(session)
        result = await service.authorize(delivery_id, actor_id="auth-7")
        if not result.success:
            print(result.error_code, result.error.detail)
    """

    # Actor, timestamp and notes columns written by each step (set once)
    STEP_FIELDS: ClassVar[dict[WorkflowStep, tuple[str, str, str | None]]] = {
        WorkflowStep.AUTHORIZE: ("authorized_by", "authorized_at", "authorization_notes"),
        WorkflowStep.RECEIVE_WAREHOUSE: (
            "warehouse_received_by",
            "warehouse_received_at",
            "warehouse_notes",
        ),
        WorkflowStep.PREPARE: ("prepared_by", "prepared_at", "preparation_notes"),
        WorkflowStep.MARK_READY: ("ready_by", "ready_at", None),
        WorkflowStep.DELIVER: ("delivered_by", "delivered_at", "reception_notes"),
        WorkflowStep.CANCEL: ("cancelled_by", "cancelled_at", None),
    }

    AUDIT_ACTIONS: ClassVar[dict[WorkflowStep, AuditAction]] = {
        WorkflowStep.CREATE: AuditAction.CREATE,
        WorkflowStep.DELIVER: AuditAction.DELIVER,
        WorkflowStep.CANCEL: AuditAction.CANCEL,
    }

    def __init__(
        self,
        session: AsyncSession,
        *,
        settings: Settings | None = None,
        publisher: EventPublisher | None = None,
    ) -> None:
        """Initialize the workflow service.

        Args:
            session: SQLAlchemy async session; the service commits or rolls
                back once per public operation.
            settings: Application settings (loaded from the environment when
                omitted).
            publisher: Transition event publisher; built from notification
                settings when omitted.
        """
        if settings is None:
            from custodia.core.settings import get_settings

            settings = get_settings()

        self._session = session
        self._code_prefix = settings.inventory.delivery_code_prefix
        if publisher is None and settings.notifications.enabled:
            publisher = build_publisher(settings.notifications)
        self._publisher = publisher

        self._allocator = LotAllocator(session)
        self._ledger = StockLedgerService(session, settings.inventory)
        self._fulfillment = RequestFulfillmentTracker(session)
        self._history = HistoryRecorder(session)
        self._audit = AuditLogService(session)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_delivery(self, delivery_id: UUID, *, lock: bool = False) -> Delivery:
        """Get a delivery by ID with its line items, re-read from the database.

        Args:
            delivery_id: UUID of the delivery.
            lock: Take a row lock (SELECT ... FOR UPDATE).

        Raises:
            NotFoundError: If the delivery does not exist.
        """
        query = (
            select(Delivery)
            .where(Delivery.delivery_id == delivery_id)
            .execution_options(populate_existing=True)
        )
        if lock:
            query = query.with_for_update()
        result = await self._session.execute(query)
        delivery = result.scalar_one_or_none()

        if delivery is None:
            raise NotFoundError("delivery", delivery_id)

        return delivery

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    async def create(
        self,
        *,
        request_id: UUID | None,
        actor_id: str,
        lines: Sequence[LineItemInput],
        notes: str | None = None,
        is_partial: bool = False,
    ) -> TransitionResult:
        """Create a delivery in PENDING_AUTHORIZATION against a request.

        The request must be APPROVED or PARTIALLY_DELIVERED, have no other
        open delivery, and still owe at least the quantity of every line.
        """

        async def body(progress: _Progress) -> Delivery:
            self._require_actor(actor_id)
            if request_id is None:
                raise ValidationError("request_id is required", field="request_id")
            if not lines:
                raise ValidationError("At least one line item is required", field="lines")

            totals: dict[tuple[str, UUID], int] = {}
            for line in lines:
                if line.quantity <= 0:
                    raise ValidationError(
                        "Line quantity must be greater than zero", field="quantity"
                    )
                key = line_key(line.product_id, line.kit_id)
                totals[key] = totals.get(key, 0) + line.quantity

            request = await self._fulfillment.get_request(request_id, lock=True)
            if request.status not in DELIVERABLE_REQUEST_STATUSES:
                raise ValidationError(
                    f"Request in status {request.status.value} cannot receive deliveries",
                    field="request_id",
                    detail={"request_status": request.status.value},
                )

            open_delivery = await self._find_open_delivery(request_id)
            if open_delivery is not None:
                raise ValidationError(
                    "Request already has an open delivery",
                    field="request_id",
                    detail={"open_delivery_id": str(open_delivery.delivery_id)},
                )

            remaining = remaining_quantities(request)
            for (kind, item_id), total in totals.items():
                owed = remaining.get((kind, item_id))
                if owed is None:
                    raise ValidationError(
                        f"{kind} {item_id} is not part of the request", field="lines"
                    )
                if total > owed:
                    raise ValidationError(
                        f"Quantity for {kind} {item_id} exceeds remaining requested quantity",
                        field="lines",
                        detail={"item_id": str(item_id), "requested": total, "remaining": owed},
                    )

            delivery = Delivery(
                code=await self._generate_code(),
                request_id=request_id,
                status=TRANSITION_TABLE[WorkflowStep.CREATE].to_status,
                created_by=actor_id,
                notes=notes,
                is_partial=is_partial,
                line_items=[
                    DeliveryLineItem(
                        product_id=line.product_id,
                        kit_id=line.kit_id,
                        quantity=line.quantity,
                        position=position,
                        allocations=[],
                    )
                    for position, line in enumerate(lines)
                ],
            )
            self._session.add(delivery)
            await self._session.flush()
            progress.delivery_id = delivery.delivery_id

            await self._history.record(
                delivery_id=delivery.delivery_id,
                from_status=None,
                to_status=delivery.status,
                actor_id=actor_id,
                notes=notes,
            )
            await self._audit.append(
                entity="delivery",
                entity_id=str(delivery.delivery_id),
                action=AuditAction.CREATE,
                actor_id=actor_id,
                old_values=None,
                new_values={
                    **_audit_values(delivery),
                    "code": delivery.code,
                    "request_id": str(request_id),
                    "lines": [
                        {
                            "product_id": str(item.product_id) if item.product_id else None,
                            "kit_id": str(item.kit_id) if item.kit_id else None,
                            "quantity": item.quantity,
                        }
                        for item in delivery.line_items
                    ],
                },
            )
            return delivery

        return await self._guarded(WorkflowStep.CREATE, None, actor_id, body)

    async def authorize(
        self,
        delivery_id: UUID,
        *,
        actor_id: str,
        notes: str | None = None,
        authorized_quantities: dict[UUID, int] | None = None,
    ) -> TransitionResult:
        """Authorize a pending delivery, optionally for partial quantities.

        authorized_quantities maps line_item_id to the approved quantity
        (0 <= qty <= line quantity). Approved quantities replace the line
        quantities for allocation and fulfillment.
        """

        async def apply(delivery: Delivery) -> None:
            if authorized_quantities:
                self._apply_partial_authorization(delivery, authorized_quantities)

        return await self._transition(
            WorkflowStep.AUTHORIZE, delivery_id, actor_id, notes=notes, apply=apply
        )

    async def receive_warehouse(
        self,
        delivery_id: UUID,
        *,
        actor_id: str,
        notes: str | None = None,
    ) -> TransitionResult:
        """Record the warehouse acknowledging an authorized delivery."""
        return await self._transition(
            WorkflowStep.RECEIVE_WAREHOUSE, delivery_id, actor_id, notes=notes
        )

    async def prepare(
        self,
        delivery_id: UUID,
        *,
        actor_id: str,
        notes: str | None = None,
    ) -> TransitionResult:
        """Start picking a delivery received by the warehouse."""
        return await self._transition(WorkflowStep.PREPARE, delivery_id, actor_id, notes=notes)

    async def mark_ready(
        self,
        delivery_id: UUID,
        *,
        actor_id: str,
        notes: str | None = None,
    ) -> TransitionResult:
        """Draw stock for every line by FEFO and mark the delivery READY.

        Kit lines are expanded to their component products and the whole
        delivery's demand is checked before any lot is touched. Any failure
        rolls back every movement and allocation of the step.
        """

        async def apply(delivery: Delivery) -> None:
            await self._draw_stock(delivery, actor_id)

        return await self._transition(
            WorkflowStep.MARK_READY, delivery_id, actor_id, notes=notes, apply=apply
        )

    async def deliver(
        self,
        delivery_id: UUID,
        *,
        actor_id: str,
        receiver: ReceiverIdentity | None,
        notes: str | None = None,
    ) -> TransitionResult:
        """Hand a READY delivery to its receiver and credit the request."""

        def validate() -> None:
            if receiver is None or not receiver.name or not receiver.name.strip():
                raise ValidationError("Receiver name is required", field="receiver_name")
            if not receiver.document or not receiver.document.strip():
                raise ValidationError(
                    "Receiver document is required", field="receiver_document"
                )

        async def apply(delivery: Delivery) -> None:
            delivery.receiver_name = receiver.name.strip()
            delivery.receiver_document = receiver.document.strip()
            delivery.receiver_signature = receiver.signature
            outcome = await self._fulfillment.apply_delivery(delivery)
            await self._audit.append(
                entity="aid_request",
                entity_id=str(outcome.request_id),
                action=AuditAction.STATUS_CHANGE,
                actor_id=actor_id,
                old_values={"status": outcome.previous_status.value},
                new_values={"status": outcome.new_status.value, "credited": outcome.credited},
            )

        return await self._transition(
            WorkflowStep.DELIVER,
            delivery_id,
            actor_id,
            notes=notes,
            apply=apply,
            validate=validate,
        )

    async def cancel(
        self,
        delivery_id: UUID,
        *,
        actor_id: str,
        reason: str,
    ) -> TransitionResult:
        """Cancel a delivery that has not been delivered.

        A READY delivery gets every EXIT movement compensated by a RETURN
        into the same lot.
        """

        def validate() -> None:
            if not reason or not reason.strip():
                raise ValidationError("Cancellation reason is required", field="reason")

        async def apply(delivery: Delivery) -> None:
            if delivery.status == DeliveryStatus.READY:
                await self._ledger.reverse_exits(
                    str(delivery.delivery_id),
                    reason=f"Delivery {delivery.code} cancelled",
                    actor_id=actor_id,
                )
            delivery.cancellation_reason = reason.strip()

        return await self._transition(
            WorkflowStep.CANCEL,
            delivery_id,
            actor_id,
            notes=reason,
            apply=apply,
            validate=validate,
        )

    # ------------------------------------------------------------------
    # Transition machinery
    # ------------------------------------------------------------------

    async def _transition(
        self,
        step: WorkflowStep,
        delivery_id: UUID,
        actor_id: str,
        *,
        notes: str | None,
        apply: Callable[[Delivery], Awaitable[None]] | None = None,
        validate: Callable[[], None] | None = None,
    ) -> TransitionResult:
        rule = TRANSITION_TABLE[step]

        async def body(progress: _Progress) -> Delivery:
            self._require_actor(actor_id)
            if validate is not None:
                validate()

            delivery = await self.get_delivery(delivery_id, lock=True)
            progress.previous_status = delivery.status

            if not step_allowed(step, delivery.status):
                raise InvalidTransitionError(delivery.status, step.value, rule.to_status)

            check = check_segregation(delivery, actor_id, step)
            if not check.ok:
                raise SegregationViolationError(check.violations)

            old_values = _audit_values(delivery)
            if apply is not None:
                await apply(delivery)

            now = datetime.now(UTC)
            self._stamp_step(delivery, step, actor_id, notes, now)
            delivery.status = rule.to_status
            delivery.updated_at = now

            await self._history.record(
                delivery_id=delivery.delivery_id,
                from_status=progress.previous_status,
                to_status=rule.to_status,
                actor_id=actor_id,
                notes=notes,
            )
            await self._audit.append(
                entity="delivery",
                entity_id=str(delivery.delivery_id),
                action=self.AUDIT_ACTIONS.get(step, AuditAction.STATUS_CHANGE),
                actor_id=actor_id,
                old_values=old_values,
                new_values=_audit_values(delivery),
            )
            await self._session.flush()
            return delivery

        return await self._guarded(step, delivery_id, actor_id, body)

    async def _guarded(
        self,
        step: WorkflowStep,
        delivery_id: UUID | None,
        actor_id: str,
        body: Callable[[_Progress], Awaitable[Delivery]],
    ) -> TransitionResult:
        """Run ``body`` as one transaction and convert failures to results."""
        progress = _Progress(delivery_id=delivery_id)
        try:
            delivery = await body(progress)
            event = TransitionEvent(
                delivery_id=delivery.delivery_id,
                delivery_code=delivery.code,
                step=step,
                from_status=progress.previous_status,
                to_status=delivery.status,
                actor_id=actor_id,
            )
            await self._session.commit()
        except CustodyError as exc:
            await self._session.rollback()
            return self._failure(step, progress, actor_id, exc)
        except StaleDataError as exc:
            await self._session.rollback()
            error = ConflictError(
                "Delivery or lot was modified concurrently; retry from a fresh read",
                {"cause": type(exc).__name__},
            )
            return self._failure(step, progress, actor_id, error)
        except IntegrityError as exc:
            await self._session.rollback()
            error = ConflictError(
                "Concurrent update violated a stock or uniqueness constraint",
                {"cause": type(exc).__name__},
            )
            return self._failure(step, progress, actor_id, error)
        except SQLAlchemyError as exc:
            await self._session.rollback()
            logger.exception(
                "Persistence failure during workflow step",
                extra={"step": step.value, "delivery_id": str(progress.delivery_id)},
            )
            error = TransientPersistenceError(
                "Persistence failure; the operation was rolled back",
                {"cause": type(exc).__name__},
            )
            return self._failure(step, progress, actor_id, error)

        logger.info(
            "Workflow transition committed",
            extra={
                "delivery_id": str(delivery.delivery_id),
                "step": step.value,
                "from_status": progress.previous_status.value
                if progress.previous_status
                else None,
                "to_status": delivery.status.value,
                "actor_id": actor_id,
            },
        )
        if self._publisher is not None:
            await self._publisher.publish(event)

        return TransitionResult(
            success=True,
            step=step,
            delivery_id=delivery.delivery_id,
            previous_status=progress.previous_status,
            new_status=delivery.status,
            event=event,
            delivery=delivery,
        )

    def _failure(
        self,
        step: WorkflowStep,
        progress: _Progress,
        actor_id: str,
        error: CustodyError,
    ) -> TransitionResult:
        logger.warning(
            "Workflow step rejected",
            extra={
                "delivery_id": str(progress.delivery_id) if progress.delivery_id else None,
                "step": step.value,
                "actor_id": actor_id,
                "error": error.code,
                "detail": error.detail,
            },
        )
        return TransitionResult(
            success=False,
            step=step,
            delivery_id=progress.delivery_id,
            previous_status=progress.previous_status,
            new_status=progress.previous_status,
            error=error,
        )

    def _stamp_step(
        self,
        delivery: Delivery,
        step: WorkflowStep,
        actor_id: str,
        notes: str | None,
        now: datetime,
    ) -> None:
        fields = self.STEP_FIELDS.get(step)
        if fields is None:
            return
        actor_field, timestamp_field, notes_field = fields
        if getattr(delivery, actor_field) is not None:
            # Actor columns are write-once
            raise InvalidTransitionError(delivery.status, step.value)
        setattr(delivery, actor_field, actor_id)
        setattr(delivery, timestamp_field, now)
        if notes_field is not None:
            setattr(delivery, notes_field, notes)

    @staticmethod
    def _require_actor(actor_id: str) -> None:
        if not actor_id or not actor_id.strip():
            raise ValidationError("actor_id is required", field="actor_id")

    # ------------------------------------------------------------------
    # Step helpers
    # ------------------------------------------------------------------

    def _apply_partial_authorization(
        self,
        delivery: Delivery,
        authorized_quantities: dict[UUID, int],
    ) -> None:
        items = {item.line_item_id: item for item in delivery.line_items}
        unknown = [str(line_id) for line_id in authorized_quantities if line_id not in items]
        if unknown:
            raise ValidationError(
                "Authorized quantities reference unknown line items",
                field="authorized_quantities",
                detail={"line_item_ids": unknown},
            )

        for line_id, quantity in authorized_quantities.items():
            item = items[line_id]
            if quantity < 0 or quantity > item.quantity:
                raise ValidationError(
                    "Authorized quantity must be between 0 and the line quantity",
                    field="authorized_quantities",
                    detail={"line_item_id": str(line_id), "quantity": item.quantity},
                )

        approved = [
            authorized_quantities.get(line_id, item.quantity) for line_id, item in items.items()
        ]
        if not any(approved):
            raise ValidationError(
                "At least one line must be authorized with a positive quantity",
                field="authorized_quantities",
            )

        for line_id, quantity in authorized_quantities.items():
            items[line_id].authorized_quantity = quantity
        delivery.is_partial_authorization = any(
            item.effective_quantity < item.quantity for item in items.values()
        )

    async def _draw_stock(self, delivery: Delivery, actor_id: str) -> None:
        planned: list[tuple[DeliveryLineItem, ProductDemand, str]] = []
        for item in delivery.line_items:
            quantity = item.effective_quantity
            if quantity == 0:
                continue
            if item.kit_id is not None:
                kit = await self._get_kit(item.kit_id)
                demands = expand_kit(
                    kit.kit_id,
                    [(component.product_id, component.quantity) for component in kit.components],
                    quantity,
                )
                reason = f"Delivery {delivery.code} - Kit {kit.code}"
            else:
                demands = [ProductDemand(product_id=item.product_id, quantity=quantity)]
                reason = f"Delivery {delivery.code}"
            planned.extend((item, demand, reason) for demand in demands)

        if not planned:
            raise ValidationError("Delivery has no quantity to allocate", field="line_items")

        # Check the whole delivery before any lot is written
        for product_id, total in aggregate_demand(demand for _, demand, _ in planned).items():
            available = await self._allocator.available_quantity(product_id, lock=True)
            if available < total:
                raise InsufficientStockError(product_id, total, available)

        reference = str(delivery.delivery_id)
        for item, demand, reason in planned:
            allocations = await self._allocator.allocate(demand.product_id, demand.quantity)
            await self._ledger.record_exit(
                allocations,
                reason=reason,
                actor_id=actor_id,
                reference=reference,
            )
            for allocation in allocations:
                item.allocations.append(
                    DeliveryAllocation(
                        product_id=allocation.product_id,
                        lot_id=allocation.lot_id,
                        quantity=allocation.quantity,
                    )
                )
        await self._session.flush()

    async def _get_kit(self, kit_id: UUID) -> Kit:
        result = await self._session.execute(select(Kit).where(Kit.kit_id == kit_id))
        kit = result.scalar_one_or_none()
        if kit is None:
            raise NotFoundError("kit", kit_id)
        return kit

    async def _find_open_delivery(self, request_id: UUID) -> Delivery | None:
        result = await self._session.execute(
            select(Delivery)
            .where(
                Delivery.request_id == request_id,
                Delivery.status.not_in(list(TERMINAL_STATUSES)),
            )
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def _generate_code(self) -> str:
        """Generate a unique delivery code like ENT-2026-7Q2K9D."""
        year = datetime.now(UTC).year
        for _ in range(CODE_MAX_ATTEMPTS):
            suffix = "".join(secrets.choice(CODE_ALPHABET) for _ in range(CODE_RANDOM_LENGTH))
            code = f"{self._code_prefix}-{year}-{suffix}"
            result = await self._session.execute(
                select(Delivery.delivery_id).where(Delivery.code == code)
            )
            if result.scalar_one_or_none() is None:
                return code
        raise ConflictError("Could not allocate a unique delivery code")
