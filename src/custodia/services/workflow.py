"""Central transition table for the delivery workflow.

Every step of the workflow is declared once here. The workflow service,
the segregation guard and the history validator all consult this table
instead of re-deriving the allowed edges.

    pending_authorization -> authorized -> received_warehouse
        -> in_preparation -> ready -> delivered
    any non-terminal status -> cancelled
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from custodia.db.models.base import DeliveryStatus


class WorkflowStep(str, Enum):
    """Commands accepted by the delivery workflow."""

    CREATE = "create"
    AUTHORIZE = "authorize"
    RECEIVE_WAREHOUSE = "receive_warehouse"
    PREPARE = "prepare"
    MARK_READY = "mark_ready"
    DELIVER = "deliver"
    CANCEL = "cancel"


@dataclass(frozen=True, slots=True)
class StepRule:
    """Allowed source statuses and the resulting status of one step.

    Attributes:
        from_statuses: Statuses the step may start from (empty for create).
        to_status: Status after the step succeeds.
    """

    from_statuses: frozenset[DeliveryStatus]
    to_status: DeliveryStatus


TERMINAL_STATUSES: frozenset[DeliveryStatus] = frozenset(
    {DeliveryStatus.DELIVERED, DeliveryStatus.CANCELLED}
)

TRANSITION_TABLE: dict[WorkflowStep, StepRule] = {
    WorkflowStep.CREATE: StepRule(frozenset(), DeliveryStatus.PENDING_AUTHORIZATION),
    WorkflowStep.AUTHORIZE: StepRule(
        frozenset({DeliveryStatus.PENDING_AUTHORIZATION}), DeliveryStatus.AUTHORIZED
    ),
    WorkflowStep.RECEIVE_WAREHOUSE: StepRule(
        frozenset({DeliveryStatus.AUTHORIZED}), DeliveryStatus.RECEIVED_WAREHOUSE
    ),
    WorkflowStep.PREPARE: StepRule(
        frozenset({DeliveryStatus.RECEIVED_WAREHOUSE}), DeliveryStatus.IN_PREPARATION
    ),
    WorkflowStep.MARK_READY: StepRule(
        frozenset({DeliveryStatus.IN_PREPARATION}), DeliveryStatus.READY
    ),
    WorkflowStep.DELIVER: StepRule(frozenset({DeliveryStatus.READY}), DeliveryStatus.DELIVERED),
    WorkflowStep.CANCEL: StepRule(
        frozenset(set(DeliveryStatus) - TERMINAL_STATUSES), DeliveryStatus.CANCELLED
    ),
}


def is_terminal_status(status: DeliveryStatus) -> bool:
    """Check whether no step can leave the given status."""
    return status in TERMINAL_STATUSES


def step_allowed(step: WorkflowStep, current: DeliveryStatus) -> bool:
    """Check whether a step may run from the current status."""
    return current in TRANSITION_TABLE[step].from_statuses


def is_valid_edge(from_status: DeliveryStatus | None, to_status: DeliveryStatus) -> bool:
    """Check whether a (from, to) pair is an edge of the workflow graph.

    A ``None`` source denotes creation.
    """
    if from_status is None:
        return to_status == TRANSITION_TABLE[WorkflowStep.CREATE].to_status
    return any(
        from_status in rule.from_statuses and rule.to_status == to_status
        for rule in TRANSITION_TABLE.values()
    )
