"""Tests for delivery history recording and path validation."""

from __future__ import annotations

from types import SimpleNamespace

from custodia.db.models import DeliveryStatus
from custodia.services.history import HistoryRecorder, is_valid_path
from tests.factories import (
    AUTHORIZER,
    DISPATCHER,
    create_delivery,
    create_product,
    create_request,
)

PENDING = DeliveryStatus.PENDING_AUTHORIZATION
AUTHORIZED = DeliveryStatus.AUTHORIZED


def record(from_status, to_status) -> SimpleNamespace:
    return SimpleNamespace(from_status=from_status, to_status=to_status)


class TestIsValidPath:
    """Tests for is_valid_path()."""

    def test_creation_then_authorization(self):
        """A timeline starting at creation and following edges is valid."""
        assert is_valid_path([record(None, PENDING), record(PENDING, AUTHORIZED)])

    def test_empty_timeline(self):
        """A delivery always has at least its creation record."""
        assert not is_valid_path([])

    def test_must_start_with_creation(self):
        """The first record has no source status."""
        assert not is_valid_path([record(PENDING, AUTHORIZED)])

    def test_gap_detected(self):
        """Each record starts where the previous one ended."""
        records = [
            record(None, PENDING),
            record(DeliveryStatus.RECEIVED_WAREHOUSE, DeliveryStatus.IN_PREPARATION),
        ]

        assert not is_valid_path(records)

    def test_unknown_edge_detected(self):
        """Edges missing from the transition table are rejected."""
        assert not is_valid_path([record(None, PENDING), record(PENDING, DeliveryStatus.READY)])

    def test_cancellation_edge(self):
        """Open statuses may end in cancellation."""
        records = [
            record(None, PENDING),
            record(PENDING, AUTHORIZED),
            record(AUTHORIZED, DeliveryStatus.CANCELLED),
        ]

        assert is_valid_path(records)


class TestHistoryRecorder:
    """Tests for HistoryRecorder against the database."""

    async def test_sequence_numbers_are_contiguous(self, session, workflow):
        """Each transition takes the next sequence number."""
        product = await create_product(session)
        request = await create_request(session, [(product, 5)])
        delivery = await create_delivery(workflow, request, [(product, 5)])
        await workflow.authorize(delivery.delivery_id, actor_id=AUTHORIZER, notes="ok")
        await workflow.cancel(delivery.delivery_id, actor_id=DISPATCHER, reason="Stock spoiled")

        timeline = await HistoryRecorder(session).timeline(delivery.delivery_id)

        assert [(h.sequence, h.actor_id) for h in timeline] == [
            (1, "coordinator-1"),
            (2, AUTHORIZER),
            (3, DISPATCHER),
        ]
        assert [h.notes for h in timeline[1:]] == ["ok", "Stock spoiled"]
        assert is_valid_path(timeline)

    async def test_failed_step_records_nothing(self, session, workflow):
        """Rejected steps leave the timeline unchanged."""
        product = await create_product(session)
        request = await create_request(session, [(product, 5)])
        delivery = await create_delivery(workflow, request, [(product, 5)])
        delivery_id = delivery.delivery_id

        await workflow.prepare(delivery_id, actor_id=AUTHORIZER)

        timeline = await HistoryRecorder(session).timeline(delivery_id)
        assert len(timeline) == 1
