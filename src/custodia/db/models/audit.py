"""Audit log model.

Every mutation performed by the workflow and the stock ledger is forwarded
as {entity, entity_id, action, actor_id, old_values, new_values} and stored
in a hash chain so tampering with past records is detectable.
"""

from __future__ import annotations

from typing import Any

from sqlalchemy import JSON, BigInteger, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from custodia.db.models.base import (
    ActorRef,
    AuditAction,
    Base,
    TimestampTZ,
    UUIDPrimaryKey,
    enum_type,
)


class AuditLogRecord(Base):
    """Tamper-evident audit log entry.

    Each record is chained to the previous via prev_record_hash,
    creating an immutable, verifiable audit trail.
    """

    __tablename__ = "audit_log_records"

    record_id: Mapped[UUIDPrimaryKey]
    created_at: Mapped[TimestampTZ]

    # Global sequence number (monotonically increasing, gaps indicate deletion)
    seq_no: Mapped[int] = mapped_column(BigInteger, nullable=False, unique=True)

    # Hash of this record's canonical content
    record_hash: Mapped[str] = mapped_column(String(64), nullable=False)

    # Hash of the previous record; NULL only for seq_no 1
    prev_record_hash: Mapped[str | None] = mapped_column(String(64), nullable=True)

    entity: Mapped[str] = mapped_column(String(50), nullable=False)
    entity_id: Mapped[str] = mapped_column(String(255), nullable=False)
    action: Mapped[AuditAction] = mapped_column(
        enum_type(AuditAction, "audit_action"),
        nullable=False,
    )
    actor_id: Mapped[ActorRef]
    old_values: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    new_values: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)

    __table_args__ = (
        Index("ix_audit_log_records_entity", "entity", "entity_id"),
        Index("ix_audit_log_records_actor_id", "actor_id"),
        Index("ix_audit_log_records_created_at", "created_at"),
    )
