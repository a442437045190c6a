"""
Module: lot_kernel.models.reconciliation
Responsibility: ORM persistence for reconciliation sessions and their
    per-lot count lines.
Architecture position: Kernel > Models.  May import from db/ only.

Invariants enforced:
    S1 -- status follows in_progress -> completed | cancelled; terminal
          sessions are frozen (db/immutability.py).
    S2 -- theoretical_quantity on a line is captured when the session starts
          and never changes (the snapshot).
    S3 -- One line per (session, lot).
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from sqlalchemy import ForeignKey, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from lot_kernel.db.base import TimestampedBase, UUIDString


class SessionStatus(str, Enum):
    """Reconciliation session state."""

    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (SessionStatus.COMPLETED, SessionStatus.CANCELLED)


TERMINAL_SESSION_STATUSES = frozenset(
    {SessionStatus.COMPLETED.value, SessionStatus.CANCELLED.value}
)


class ReconciliationSession(TimestampedBase):
    """
    A bounded unit of work comparing theoretical and physical stock.

    Contract:
        Counts are only accepted while ``in_progress``.  Completion writes
        the adjustment movements, the audit record and the status flip in
        one transaction.
    """

    __tablename__ = "reconciliation_sessions"

    __table_args__ = (
        Index("idx_recon_session_tenant_status", "tenant_id", "status"),
    )

    tenant_id: Mapped[str] = mapped_column(String(100), nullable=False)

    status: Mapped[SessionStatus] = mapped_column(
        String(20),
        nullable=False,
        default=SessionStatus.IN_PROGRESS.value,
    )

    started_at: Mapped[datetime] = mapped_column(nullable=False)

    completed_at: Mapped[datetime | None] = mapped_column(nullable=True)

    cancelled_at: Mapped[datetime | None] = mapped_column(nullable=True)

    lots_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    discrepancies_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    responsible_agent_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    # Free-form label for the counted area (shelf, storage room, product family)
    scope_label: Mapped[str | None] = mapped_column(String(200), nullable=True)

    notes: Mapped[str | None] = mapped_column(String(4000), nullable=True)

    # Session deletes cascade to lines; both are blocked by the immutability guards.
    lines: Mapped[list[ReconciliationLine]] = relationship(
        back_populates="session",
        cascade="all, delete-orphan",
        order_by="ReconciliationLine.position",
    )

    def __repr__(self) -> str:
        return f"<ReconciliationSession {self.id} {self.status}>"


class ReconciliationLine(TimestampedBase):
    """One lot inside a session: frozen theoretical quantity plus the count."""

    __tablename__ = "reconciliation_lines"

    __table_args__ = (
        UniqueConstraint("session_id", "lot_id", name="uq_recon_line_session_lot"),
    )

    session_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("reconciliation_sessions.id"),
        nullable=False,
    )

    lot_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("lots.id"),
        nullable=False,
    )

    product_id: Mapped[str] = mapped_column(String(100), nullable=False)

    position: Mapped[int] = mapped_column(Integer, nullable=False)

    theoretical_quantity: Mapped[Decimal] = mapped_column(nullable=False)

    physical_quantity: Mapped[Decimal | None] = mapped_column(nullable=True)

    unit_value: Mapped[Decimal | None] = mapped_column(nullable=True)

    counted_at: Mapped[datetime | None] = mapped_column(nullable=True)

    counted_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    session: Mapped[ReconciliationSession] = relationship(back_populates="lines")
