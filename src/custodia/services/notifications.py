"""Outbound transition events for the notification collaborator.

After a workflow transition commits, a TransitionEvent is handed to a
publisher. The collaborator uses ``target_roles`` to decide who to notify:

    create      -> authorizer, admin
    authorize   -> warehouse
    mark_ready  -> dispatcher
    deliver     -> admin
    cancel      -> admin

Publishing never affects the committed transition; failures are logged and
reported in the PublishResult.
"""

from __future__ import annotations

import hashlib
import hmac
import json
import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any, Protocol

import httpx

from custodia.services.workflow import WorkflowStep

if TYPE_CHECKING:
    from uuid import UUID

    from custodia.core.config import NotificationSettings
    from custodia.db.models.base import DeliveryStatus

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "X-Signature-SHA256"

TARGET_ROLES: dict[WorkflowStep, tuple[str, ...]] = {
    WorkflowStep.CREATE: ("authorizer", "admin"),
    WorkflowStep.AUTHORIZE: ("warehouse",),
    WorkflowStep.RECEIVE_WAREHOUSE: (),
    WorkflowStep.PREPARE: (),
    WorkflowStep.MARK_READY: ("dispatcher",),
    WorkflowStep.DELIVER: ("admin",),
    WorkflowStep.CANCEL: ("admin",),
}


@dataclass(frozen=True, slots=True)
class TransitionEvent:
    """Event emitted for every committed workflow transition."""

    delivery_id: UUID
    delivery_code: str
    step: WorkflowStep
    from_status: DeliveryStatus | None
    to_status: DeliveryStatus
    actor_id: str
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    @property
    def target_roles(self) -> tuple[str, ...]:
        return TARGET_ROLES.get(self.step, ())

    def to_dict(self) -> dict[str, Any]:
        """Convert event to dictionary for serialization."""
        return {
            "delivery_id": str(self.delivery_id),
            "delivery_code": self.delivery_code,
            "step": self.step.value,
            "from_status": self.from_status.value if self.from_status else None,
            "to_status": self.to_status.value,
            "actor_id": self.actor_id,
            "timestamp": self.timestamp.isoformat(),
            "target_roles": list(self.target_roles),
        }


@dataclass(frozen=True, slots=True)
class PublishResult:
    """Outcome of publishing one event."""

    success: bool
    channel: str
    error: str | None = None


class EventPublisher(Protocol):
    """Anything that can deliver transition events."""

    async def publish(self, event: TransitionEvent) -> PublishResult: ...


class LoggingPublisher:
    """Publisher that only writes events to the application log."""

    async def publish(self, event: TransitionEvent) -> PublishResult:
        logger.info(
            "Delivery transition event",
            extra={"event": event.to_dict()},
        )
        return PublishResult(success=True, channel="log")


class RecordingPublisher:
    """Publisher that keeps events in memory (tests and local tooling)."""

    def __init__(self) -> None:
        self.events: list[TransitionEvent] = []

    async def publish(self, event: TransitionEvent) -> PublishResult:
        self.events.append(event)
        return PublishResult(success=True, channel="memory")


class WebhookPublisher:
    """POSTs transition events as JSON to the notification collaborator.

    When a secret is configured the body is signed with HMAC-SHA256 in the
    X-Signature-SHA256 header.
    """

    def __init__(
        self,
        url: str,
        *,
        secret: str | None = None,
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._url = url
        self._secret = secret
        self._timeout = timeout
        self._client = client

    async def _get_http_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._timeout)
        return self._client

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    def compute_signature(self, payload: str) -> str:
        """Compute the HMAC-SHA256 signature for a payload."""
        if not self._secret:
            msg = "Webhook secret not configured"
            raise RuntimeError(msg)
        return hmac.new(
            self._secret.encode("utf-8"),
            payload.encode("utf-8"),
            hashlib.sha256,
        ).hexdigest()

    async def publish(self, event: TransitionEvent) -> PublishResult:
        payload = json.dumps(event.to_dict(), sort_keys=True)
        headers = {
            "Content-Type": "application/json",
            "X-Delivery-ID": str(event.delivery_id),
        }
        if self._secret:
            headers[SIGNATURE_HEADER] = self.compute_signature(payload)

        try:
            client = await self._get_http_client()
            response = await client.post(self._url, content=payload, headers=headers)
        except httpx.RequestError as e:
            error = f"Webhook request failed: {e}"
            logger.error(
                "Transition event delivery failed: delivery_id=%s, error=%s",
                event.delivery_id,
                error,
            )
            return PublishResult(success=False, channel="webhook", error=error)

        if 200 <= response.status_code < 300:
            logger.info(
                "Transition event delivered: delivery_id=%s, status=%d",
                event.delivery_id,
                response.status_code,
            )
            return PublishResult(success=True, channel="webhook")

        error = f"Webhook returned status {response.status_code}"
        logger.error(
            "Transition event delivery failed: delivery_id=%s, error=%s",
            event.delivery_id,
            error,
        )
        return PublishResult(success=False, channel="webhook", error=error)


def build_publisher(settings: NotificationSettings) -> EventPublisher:
    """Choose a publisher from notification settings."""
    if settings.enabled and settings.webhook_url:
        secret = settings.webhook_secret.get_secret_value() if settings.webhook_secret else None
        return WebhookPublisher(
            settings.webhook_url,
            secret=secret,
            timeout=settings.timeout,
        )
    return LoggingPublisher()
