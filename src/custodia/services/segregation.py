"""Segregation-of-duties guard.

A pure predicate evaluated before every sensitive workflow step. All rules
that apply to the attempted step are evaluated, so the caller can report
every broken rule at once.

    authorize          actor != created_by
    receive_warehouse  actor != authorized_by
    prepare            actor != authorized_by
    deliver            actor != authorized_by and actor != prepared_by
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from custodia.services.workflow import WorkflowStep


@dataclass(frozen=True, slots=True)
class SegregationRule:
    """One actor-separation constraint.

    Attributes:
        rule: Stable rule code.
        step: Workflow step the rule applies to.
        recorded_field: Delivery attribute holding the conflicting actor.
        message: Human-readable description of the violation.
    """

    rule: str
    step: WorkflowStep
    recorded_field: str
    message: str


@dataclass(frozen=True, slots=True)
class SegregationViolation:
    """A broken rule for a specific actor."""

    rule: str
    message: str
    actor_id: str


@dataclass(frozen=True, slots=True)
class SegregationCheck:
    """Outcome of a segregation check."""

    ok: bool
    violations: list[SegregationViolation] = field(default_factory=list)


SEGREGATION_RULES: tuple[SegregationRule, ...] = (
    SegregationRule(
        rule="authorizer_not_creator",
        step=WorkflowStep.AUTHORIZE,
        recorded_field="created_by",
        message="authorizer cannot equal creator",
    ),
    SegregationRule(
        rule="warehouse_not_authorizer",
        step=WorkflowStep.RECEIVE_WAREHOUSE,
        recorded_field="authorized_by",
        message="warehouse receiver cannot equal authorizer",
    ),
    SegregationRule(
        rule="preparer_not_authorizer",
        step=WorkflowStep.PREPARE,
        recorded_field="authorized_by",
        message="preparer cannot equal authorizer",
    ),
    SegregationRule(
        rule="deliverer_not_authorizer",
        step=WorkflowStep.DELIVER,
        recorded_field="authorized_by",
        message="deliverer cannot equal authorizer",
    ),
    SegregationRule(
        rule="deliverer_not_preparer",
        step=WorkflowStep.DELIVER,
        recorded_field="prepared_by",
        message="deliverer cannot equal preparer",
    ),
)


def rules_for_step(step: WorkflowStep) -> list[SegregationRule]:
    """Return the rules that apply to a workflow step."""
    return [rule for rule in SEGREGATION_RULES if rule.step == step]


def check_segregation(delivery: Any, actor_id: str, step: WorkflowStep) -> SegregationCheck:
    """Evaluate every rule of ``step`` for ``actor_id`` against ``delivery``.

    The delivery only needs the recorded actor attributes (created_by,
    authorized_by, prepared_by), so ORM rows and plain snapshots both work.
    A rule whose recorded actor is still unset cannot be violated.

    Args:
        delivery: Object exposing the recorded actor attributes.
        actor_id: Actor attempting the step.
        step: Workflow step being attempted.

    Returns:
        SegregationCheck with ok=False and the full violation list when any
        rule is broken.
    """
    violations = [
        SegregationViolation(rule=rule.rule, message=rule.message, actor_id=actor_id)
        for rule in rules_for_step(step)
        if getattr(delivery, rule.recorded_field, None) is not None
        and getattr(delivery, rule.recorded_field) == actor_id
    ]
    return SegregationCheck(ok=not violations, violations=violations)
