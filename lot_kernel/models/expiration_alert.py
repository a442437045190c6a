"""
Module: lot_kernel.models.expiration_alert
Responsibility: ORM persistence for expiration alerts produced by the
    on-demand sweep.
Architecture position: Kernel > Models.  May import from db/ only.

Invariants enforced:
    A1 -- Status moves active -> treated | ignored (operator) or
          active -> resolved (sweep, once the lot is sold out or leaves the
          alert horizon).  Closed alerts are frozen (db/immutability.py).
    A2 -- lot_remaining_snapshot / lot_expiration_snapshot record the lot
          state the alert was computed from, so a later sweep can tell
          whether the lot materially changed.
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

from sqlalchemy import JSON, ForeignKey, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from lot_kernel.db.base import TimestampedBase, UUIDString


class AlertStatus(str, Enum):
    """Operator-facing alert status."""

    ACTIVE = "active"
    TREATED = "treated"
    IGNORED = "ignored"
    # Closed by the sweep, never by an operator
    RESOLVED = "resolved"


class ExpirationAlert(TimestampedBase):
    """
    Derived, stateful expiration risk record for one lot.

    Contract:
        At most one ``active`` alert exists per lot; the sweep refreshes it
        in place.  Operator actions close it.
    """

    __tablename__ = "expiration_alerts"

    __table_args__ = (
        Index("idx_alert_tenant_status", "tenant_id", "status"),
        Index("idx_alert_lot_status", "lot_id", "status"),
    )

    tenant_id: Mapped[str] = mapped_column(String(100), nullable=False)

    lot_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("lots.id"),
        nullable=False,
    )

    product_id: Mapped[str] = mapped_column(String(100), nullable=False)

    # expired / critical / near_expiry
    alert_type: Mapped[str] = mapped_column(String(20), nullable=False)

    # critique / eleve / moyen / faible
    urgency_level: Mapped[str] = mapped_column(String(20), nullable=False)

    # Signed: negative means already expired
    days_remaining: Mapped[int] = mapped_column(Integer, nullable=False)

    concerned_quantity: Mapped[Decimal] = mapped_column(nullable=False)

    estimated_loss: Mapped[Decimal] = mapped_column(nullable=False)

    status: Mapped[AlertStatus] = mapped_column(
        String(20),
        nullable=False,
        default=AlertStatus.ACTIVE.value,
    )

    recommended_action: Mapped[str] = mapped_column(String(100), nullable=False)

    recommended_actions: Mapped[list[Any]] = mapped_column(JSON, nullable=False)

    notes: Mapped[str | None] = mapped_column(String(4000), nullable=True)

    generated_at: Mapped[datetime] = mapped_column(nullable=False)

    closed_at: Mapped[datetime | None] = mapped_column(nullable=True)

    closed_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    lot_remaining_snapshot: Mapped[Decimal] = mapped_column(nullable=False)

    lot_expiration_snapshot: Mapped[date] = mapped_column(nullable=False)

    def __repr__(self) -> str:
        return f"<ExpirationAlert {self.urgency_level} lot={self.lot_id} {self.status}>"
