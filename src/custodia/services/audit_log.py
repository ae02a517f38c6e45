"""Hash-chained audit trail of custody mutations.

Workflow steps and ledger writes append one record per mutation:
{entity, entity_id, action, actor_id, old_values, new_values}. Records form
a single chain ordered by ``seq_no``; each stores the SHA-256 of its own
canonical content including the previous record's hash.

A deleted record shows up as a sequence gap and a chain break, an edited
record as a hash mismatch.
"""

from __future__ import annotations

import hashlib
import json
import logging
import uuid
from collections.abc import Iterator
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy import select

from custodia.db.models.audit import AuditLogRecord
from custodia.db.models.base import AuditAction

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)

HASHED_FIELDS = (
    "seq_no",
    "entity",
    "entity_id",
    "action",
    "actor_id",
    "old_values",
    "new_values",
    "prev_record_hash",
    "created_at",
)


@dataclass(frozen=True, slots=True)
class AuditEvent:
    """An appended audit record, as forwarded to the audit collaborator."""

    entity: str
    entity_id: str
    action: AuditAction
    actor_id: str
    old_values: dict[str, Any] | None
    new_values: dict[str, Any] | None
    seq_no: int
    record_hash: str
    created_at: datetime

    @classmethod
    def from_record(cls, record: AuditLogRecord) -> AuditEvent:
        return cls(
            entity=record.entity,
            entity_id=record.entity_id,
            action=record.action,
            actor_id=record.actor_id,
            old_values=record.old_values,
            new_values=record.new_values,
            seq_no=record.seq_no,
            record_hash=record.record_hash,
            created_at=record.created_at,
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-friendly dictionary."""
        return {
            "entity": self.entity,
            "entity_id": self.entity_id,
            "action": self.action.value,
            "actor_id": self.actor_id,
            "old_values": self.old_values,
            "new_values": self.new_values,
            "seq_no": self.seq_no,
            "record_hash": self.record_hash,
            "created_at": self.created_at.isoformat(),
        }


@dataclass(frozen=True, slots=True)
class ChainVerificationResult:
    """Outcome of walking (part of) the audit chain."""

    valid: bool
    checked_records: int
    first_seq_no: int | None = None
    last_seq_no: int | None = None
    errors: list[str] = field(default_factory=list)


def _json_safe(values: dict[str, Any] | None) -> dict[str, Any] | None:
    # UUIDs, dates and enums are stored (and hashed) as strings
    if values is None:
        return None
    return json.loads(json.dumps(values, sort_keys=True, default=str))


def _utc_naive_iso(value: datetime) -> str:
    # SQLite returns naive datetimes; hash the UTC wall clock either way
    if value.tzinfo is not None:
        value = value.astimezone(UTC).replace(tzinfo=None)
    return value.isoformat(timespec="microseconds")


def compute_record_hash(record: AuditLogRecord) -> str:
    """SHA-256 hex digest of a record's canonical JSON form."""
    payload: dict[str, Any] = {name: getattr(record, name) for name in HASHED_FIELDS}
    payload["action"] = record.action.value
    payload["created_at"] = _utc_naive_iso(record.created_at)
    encoded = json.dumps(payload, sort_keys=True, separators=(",", ":")).encode("utf-8")
    return hashlib.sha256(encoded).hexdigest()


def _chain_errors(records: list[AuditLogRecord]) -> Iterator[str]:
    previous: AuditLogRecord | None = None
    for record in records:
        if previous is None:
            if record.seq_no == 1 and record.prev_record_hash is not None:
                yield "First record (seq_no=1) must not reference a previous record"
        else:
            if record.seq_no != previous.seq_no + 1:
                yield (
                    f"Sequence gap detected: expected {previous.seq_no + 1}, "
                    f"found {record.seq_no}"
                )
            if record.prev_record_hash != previous.record_hash:
                yield (
                    f"Chain break at seq_no={record.seq_no}: "
                    f"prev_record_hash={record.prev_record_hash}, "
                    f"expected {previous.record_hash}"
                )

        computed = compute_record_hash(record)
        if computed != record.record_hash:
            yield (
                f"Hash mismatch at seq_no={record.seq_no}: "
                f"stored={record.record_hash}, computed={computed}"
            )
        previous = record


class AuditLogService:
    """Appends to and verifies the audit chain.

    Appends run inside the caller's transaction, so an audit record exists
    exactly when the mutation it describes was committed.

    Example:
        audit = AuditLogService(session)
        await audit.append(
            entity="delivery",
            entity_id=str(delivery.delivery_id),
            action=AuditAction.STATUS_CHANGE,
            actor_id="dispatcher-7",
            old_values={"status": "ready"},
            new_values={"status": "delivered"},
        )
    """

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def append(
        self,
        *,
        entity: str,
        entity_id: str,
        action: AuditAction,
        actor_id: str,
        old_values: dict[str, Any] | None = None,
        new_values: dict[str, Any] | None = None,
    ) -> AuditEvent:
        """Append one record at the head of the chain.

        Args:
            entity: Entity type (delivery, product_lot, aid_request).
            entity_id: Identifier of the affected entity.
            action: Action performed.
            actor_id: Actor performing the action.
            old_values: Relevant values before the mutation.
            new_values: Relevant values after the mutation.
        """
        head = await self._lock_head()
        record = AuditLogRecord(
            record_id=uuid.uuid4(),
            created_at=datetime.now(UTC),
            seq_no=head.seq_no + 1 if head else 1,
            prev_record_hash=head.record_hash if head else None,
            entity=entity,
            entity_id=entity_id,
            action=action,
            actor_id=actor_id,
            old_values=_json_safe(old_values),
            new_values=_json_safe(new_values),
        )
        record.record_hash = compute_record_hash(record)
        self._session.add(record)
        await self._session.flush()
        return AuditEvent.from_record(record)

    async def verify_chain(
        self,
        *,
        start_seq: int | None = None,
        end_seq: int | None = None,
    ) -> ChainVerificationResult:
        """Recompute hashes and links over ``start_seq..end_seq`` (inclusive)."""
        query = select(AuditLogRecord).order_by(AuditLogRecord.seq_no)
        if start_seq is not None:
            query = query.where(AuditLogRecord.seq_no >= start_seq)
        if end_seq is not None:
            query = query.where(AuditLogRecord.seq_no <= end_seq)
        records = list((await self._session.execute(query)).scalars().all())

        if not records:
            return ChainVerificationResult(valid=True, checked_records=0)

        errors = list(_chain_errors(records))
        if errors:
            logger.error(
                "Audit chain verification failed",
                extra={"error_count": len(errors), "first_error": errors[0]},
            )
        return ChainVerificationResult(
            valid=not errors,
            checked_records=len(records),
            first_seq_no=records[0].seq_no,
            last_seq_no=records[-1].seq_no,
            errors=errors,
        )

    async def get_records(
        self,
        *,
        entity: str | None = None,
        entity_id: str | None = None,
        actor_id: str | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> list[AuditLogRecord]:
        """Audit records oldest first, optionally filtered."""
        query = select(AuditLogRecord)
        for column, value in (
            (AuditLogRecord.entity, entity),
            (AuditLogRecord.entity_id, entity_id),
            (AuditLogRecord.actor_id, actor_id),
        ):
            if value is not None:
                query = query.where(column == value)
        query = query.order_by(AuditLogRecord.seq_no).limit(limit).offset(offset)
        return list((await self._session.execute(query)).scalars().all())

    async def _lock_head(self) -> AuditLogRecord | None:
        # Writers queue on the latest record; the unique seq_no index catches the rest
        result = await self._session.execute(
            select(AuditLogRecord)
            .order_by(AuditLogRecord.seq_no.desc())
            .limit(1)
            .with_for_update()
        )
        return result.scalar_one_or_none()
