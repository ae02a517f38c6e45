"""Tests for the central delivery transition table.

Test Categories:
1. Allowed steps per status
2. Terminal statuses
3. Workflow graph edges used by history validation
"""

import pytest

from custodia.db.models.base import DeliveryStatus
from custodia.services.workflow import (
    TERMINAL_STATUSES,
    TRANSITION_TABLE,
    WorkflowStep,
    is_terminal_status,
    is_valid_edge,
    step_allowed,
)

HAPPY_PATH = [
    (WorkflowStep.AUTHORIZE, DeliveryStatus.PENDING_AUTHORIZATION, DeliveryStatus.AUTHORIZED),
    (
        WorkflowStep.RECEIVE_WAREHOUSE,
        DeliveryStatus.AUTHORIZED,
        DeliveryStatus.RECEIVED_WAREHOUSE,
    ),
    (WorkflowStep.PREPARE, DeliveryStatus.RECEIVED_WAREHOUSE, DeliveryStatus.IN_PREPARATION),
    (WorkflowStep.MARK_READY, DeliveryStatus.IN_PREPARATION, DeliveryStatus.READY),
    (WorkflowStep.DELIVER, DeliveryStatus.READY, DeliveryStatus.DELIVERED),
]


class TestTransitionTable:
    """Tests for the declared steps."""

    def test_every_step_is_declared(self):
        """Every workflow step has exactly one rule."""
        assert set(TRANSITION_TABLE) == set(WorkflowStep)

    def test_create_targets_pending_authorization(self):
        """Creation has no source status and starts pending authorization."""
        rule = TRANSITION_TABLE[WorkflowStep.CREATE]
        assert rule.from_statuses == frozenset()
        assert rule.to_status == DeliveryStatus.PENDING_AUTHORIZATION

    @pytest.mark.parametrize(("step", "source", "target"), HAPPY_PATH)
    def test_happy_path_steps(self, step, source, target):
        """Each forward step leaves exactly one status."""
        rule = TRANSITION_TABLE[step]
        assert rule.from_statuses == frozenset({source})
        assert rule.to_status == target

    def test_cancel_allowed_from_every_open_status(self):
        """Cancel starts from any status that is not terminal."""
        for status in DeliveryStatus:
            assert step_allowed(WorkflowStep.CANCEL, status) is (status not in TERMINAL_STATUSES)


class TestStepAllowed:
    """Tests for step_allowed()."""

    def test_cannot_skip_preparation(self):
        """A received delivery cannot jump to ready."""
        assert not step_allowed(WorkflowStep.MARK_READY, DeliveryStatus.RECEIVED_WAREHOUSE)

    def test_cannot_deliver_before_ready(self):
        """Only READY deliveries can be handed over."""
        for status in DeliveryStatus:
            assert step_allowed(WorkflowStep.DELIVER, status) is (status == DeliveryStatus.READY)

    def test_no_step_leaves_terminal_status(self):
        """DELIVERED and CANCELLED accept no further step."""
        for status in TERMINAL_STATUSES:
            assert is_terminal_status(status)
            assert not any(step_allowed(step, status) for step in WorkflowStep)


class TestValidEdges:
    """Tests for is_valid_edge()."""

    def test_creation_edge(self):
        """None -> PENDING_AUTHORIZATION is the only creation edge."""
        assert is_valid_edge(None, DeliveryStatus.PENDING_AUTHORIZATION)
        assert not is_valid_edge(None, DeliveryStatus.AUTHORIZED)

    @pytest.mark.parametrize(("step", "source", "target"), HAPPY_PATH)
    def test_forward_edges(self, step, source, target):
        """Every forward step is an edge."""
        assert is_valid_edge(source, target)

    def test_backward_edge_rejected(self):
        """The graph has no backward edges."""
        assert not is_valid_edge(DeliveryStatus.READY, DeliveryStatus.IN_PREPARATION)

    def test_cancel_edges(self):
        """Open statuses reach CANCELLED; terminal ones do not."""
        assert is_valid_edge(DeliveryStatus.READY, DeliveryStatus.CANCELLED)
        assert not is_valid_edge(DeliveryStatus.DELIVERED, DeliveryStatus.CANCELLED)
