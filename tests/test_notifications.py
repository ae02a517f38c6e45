"""Tests for outbound transition events.

Tests cover:
- Event construction and target roles
- Webhook delivery with HMAC signatures
- Failure reporting without raising
- Publisher selection from settings
"""

import hashlib
import hmac
import json
from uuid import uuid4

import httpx
import pytest

from custodia.core.config import NotificationSettings
from custodia.db.models import DeliveryStatus
from custodia.services.notifications import (
    SIGNATURE_HEADER,
    LoggingPublisher,
    RecordingPublisher,
    TransitionEvent,
    WebhookPublisher,
    build_publisher,
)
from custodia.services.workflow import WorkflowStep

WEBHOOK_URL = "https://notify.example.org/events"


@pytest.fixture
def event() -> TransitionEvent:
    """A mark_ready transition event."""
    return TransitionEvent(
        delivery_id=uuid4(),
        delivery_code="ENT-2026-ABC123",
        step=WorkflowStep.MARK_READY,
        from_status=DeliveryStatus.IN_PREPARATION,
        to_status=DeliveryStatus.READY,
        actor_id="preparer-1",
    )


def make_publisher(handler, secret: str | None = None) -> WebhookPublisher:
    """Webhook publisher whose HTTP calls go to ``handler``."""
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return WebhookPublisher(WEBHOOK_URL, secret=secret, client=client)


class TestTransitionEvent:
    """Tests for TransitionEvent."""

    def test_target_roles_per_step(self, event):
        """mark_ready notifies dispatchers."""
        assert event.target_roles == ("dispatcher",)

    def test_steps_without_audience(self, event):
        """Warehouse reception and preparation notify nobody."""
        for step in (WorkflowStep.RECEIVE_WAREHOUSE, WorkflowStep.PREPARE):
            silent = TransitionEvent(
                delivery_id=event.delivery_id,
                delivery_code=event.delivery_code,
                step=step,
                from_status=None,
                to_status=DeliveryStatus.AUTHORIZED,
                actor_id="x",
            )
            assert silent.target_roles == ()

    def test_to_dict(self, event):
        """The serialized event carries statuses as values."""
        data = event.to_dict()

        assert data["step"] == "mark_ready"
        assert data["from_status"] == "in_preparation"
        assert data["to_status"] == "ready"
        assert data["target_roles"] == ["dispatcher"]


class TestWebhookPublisher:
    """Tests for WebhookPublisher."""

    async def test_posts_signed_event(self, event):
        """The body is signed with HMAC-SHA256 of the shared secret."""
        captured: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            captured.append(request)
            return httpx.Response(202)

        publisher = make_publisher(handler, secret="s3cret")
        result = await publisher.publish(event)
        await publisher.close()

        assert result.success
        assert result.channel == "webhook"
        request = captured[0]
        assert str(request.url) == WEBHOOK_URL
        assert request.headers["X-Delivery-ID"] == str(event.delivery_id)
        expected = hmac.new(b"s3cret", request.content, hashlib.sha256).hexdigest()
        assert request.headers[SIGNATURE_HEADER] == expected
        assert json.loads(request.content)["delivery_code"] == "ENT-2026-ABC123"

    async def test_unsigned_without_secret(self, event):
        """No secret means no signature header."""
        captured: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            captured.append(request)
            return httpx.Response(200)

        publisher = make_publisher(handler)
        await publisher.publish(event)

        assert SIGNATURE_HEADER not in captured[0].headers

    async def test_error_status_reported(self, event):
        """Non-2xx responses are reported, not raised."""
        publisher = make_publisher(lambda request: httpx.Response(500))

        result = await publisher.publish(event)

        assert not result.success
        assert result.error == "Webhook returned status 500"

    async def test_connection_error_reported(self, event):
        """Transport failures are reported, not raised."""

        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        publisher = make_publisher(handler)
        result = await publisher.publish(event)

        assert not result.success
        assert "connection refused" in result.error

    def test_signature_requires_secret(self):
        """Signing without a secret is a programming error."""
        with pytest.raises(RuntimeError):
            WebhookPublisher(WEBHOOK_URL).compute_signature("{}")


class TestPublishers:
    """Tests for in-process publishers and publisher selection."""

    async def test_recording_publisher_keeps_events(self, event):
        """Recorded events are kept in order."""
        publisher = RecordingPublisher()

        result = await publisher.publish(event)

        assert result.success
        assert publisher.events == [event]

    async def test_logging_publisher(self, event, caplog):
        """The logging publisher writes the event to the log."""
        with caplog.at_level("INFO", logger="custodia.services.notifications"):
            result = await LoggingPublisher().publish(event)

        assert result.channel == "log"
        assert "Delivery transition event" in caplog.text

    def test_build_webhook_publisher(self):
        """A configured webhook URL selects the webhook publisher."""
        settings = NotificationSettings(webhook_url=WEBHOOK_URL, webhook_secret="k")

        assert isinstance(build_publisher(settings), WebhookPublisher)

    def test_build_logging_publisher(self):
        """Without a webhook, events are only logged."""
        assert isinstance(build_publisher(NotificationSettings()), LoggingPublisher)

    def test_disabled_notifications_only_log(self):
        """Disabled notifications never reach the webhook."""
        settings = NotificationSettings(enabled=False, webhook_url=WEBHOOK_URL)

        assert isinstance(build_publisher(settings), LoggingPublisher)
