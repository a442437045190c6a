"""
Module: lot_kernel.models.audit_event
Responsibility: ORM persistence for the hash-chained audit trail.
Architecture position: Kernel > Models.  May import from db/ only.

Invariants enforced:
    AU1 -- Append-only: audit events are never updated or deleted
           (db/immutability.py).
    AU2 -- hash = H(entity_type | entity_id | action | payload_hash | prev_hash).
    AU3 -- seq is allocated from a locked counter row, never max+1.

Failure modes:
    - IntegrityError on duplicate seq (concurrent allocation bug).

Audit relevance:
    This table IS the audit trail for lot receipts, transfers, alert
    decisions, FIFO rule changes and reconciliation sessions.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from uuid import UUID

from sqlalchemy import JSON, BigInteger, DateTime, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from lot_kernel.db.base import Base, UUIDString


class AuditAction(str, Enum):
    """Types of auditable actions."""

    LOT_RECEIVED = "LOT_RECEIVED"
    LOTS_EXPIRED = "LOTS_EXPIRED"
    TRANSFER_RECORDED = "TRANSFER_RECORDED"
    ALERT_STATUS_CHANGED = "ALERT_STATUS_CHANGED"
    FIFO_CONFIGURATION_CHANGED = "FIFO_CONFIGURATION_CHANGED"
    EXPIRATION_PARAMETER_CHANGED = "EXPIRATION_PARAMETER_CHANGED"
    RECONCILIATION_STARTED = "RECONCILIATION_STARTED"
    RECONCILIATION_COMPLETED = "RECONCILIATION_COMPLETED"
    RECONCILIATION_CANCELLED = "RECONCILIATION_CANCELLED"


class AuditEvent(Base):
    """
    Audit event with hash chain for tamper evidence.

    Contract:
        AuditEvent rows are append-only, never updated or deleted.

    Guarantees:
        - seq is globally unique and monotonically increasing.
        - prev_hash is None only for the genesis event.

    Non-goals:
        - This model does NOT enforce hash correctness at INSERT time;
          that is the responsibility of AuditorService.
    """

    __tablename__ = "audit_events"

    __table_args__ = (
        Index("idx_audit_entity", "entity_type", "entity_id"),
        Index("idx_audit_action", "action"),
        Index("idx_audit_occurred", "occurred_at"),
    )

    seq: Mapped[int] = mapped_column(BigInteger, nullable=False, unique=True)

    # "Lot", "ReconciliationSession", "ExpirationAlert", "FIFOConfiguration", ...
    entity_type: Mapped[str] = mapped_column(String(50), nullable=False)

    entity_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    action: Mapped[AuditAction] = mapped_column(String(50), nullable=False)

    actor_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    occurred_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    payload: Mapped[dict | None] = mapped_column(JSON, nullable=True)

    payload_hash: Mapped[str] = mapped_column(String(64), nullable=False)

    prev_hash: Mapped[str | None] = mapped_column(String(64), nullable=True)

    hash: Mapped[str] = mapped_column(String(64), nullable=False)

    def __repr__(self) -> str:
        return f"<AuditEvent #{self.seq} {self.action} on {self.entity_type}:{self.entity_id}>"

    @property
    def is_genesis(self) -> bool:
        return self.prev_hash is None
