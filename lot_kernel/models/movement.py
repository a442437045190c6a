"""
Module: lot_kernel.models.movement
Responsibility: ORM persistence for the append-only movement ledger.  Each row
    is one signed quantity change against exactly one lot.
Architecture position: Kernel > Models.  May import from db/ only.

Invariants enforced:
    M1 -- Append-only: movements are never updated or deleted
          (db/immutability.py).  Corrections are compensating movements.
    M2 -- signed_quantity != 0 (CHECK constraint).
    M3 -- ledger_seq is allocated from a locked counter row and gives a total
          order that breaks occurred_at ties.
    M4 -- Transfer legs share one reference_id (reference_type = "transfer").

Failure modes:
    - IntegrityError on zero quantity or duplicate ledger_seq.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    CheckConstraint,
    ForeignKey,
    Index,
    String,
)
from sqlalchemy.orm import Mapped, mapped_column

from lot_kernel.db.base import Base, UUIDString


class MovementType(str, Enum):
    """Kinds of quantity change a lot can receive."""

    ENTRY = "entry"
    EXIT = "exit"
    ADJUSTMENT = "adjustment"
    TRANSFER = "transfer"
    RETURN = "return"
    DESTRUCTION = "destruction"


class ReferenceType(str, Enum):
    """Well-known provenance kinds for ``reference_type``."""

    RECEIPT = "receipt"
    SALE = "sale"
    TRANSFER = "transfer"
    RECONCILIATION = "reconciliation"
    MANUAL = "manual"


class LotMovement(Base):
    """
    Immutable ledger row.

    Contract:
        Written only by MovementLedger (and LotStore for the opening entry)
        in the same transaction that updates the lot's cached remaining
        quantity.

    Guarantees:
        - ``details`` (column ``metadata``) carries free-form provenance such
          as theoretical/physical quantities and session_id.
        - ``is_opening`` marks the movement that created the lot's stock.
    """

    __tablename__ = "lot_movements"

    __table_args__ = (
        CheckConstraint("signed_quantity <> 0", name="ck_movement_nonzero"),
        Index("idx_movement_lot_seq", "lot_id", "ledger_seq"),
        Index("idx_movement_product", "tenant_id", "product_id", "occurred_at"),
        Index("idx_movement_reference", "reference_type", "reference_id"),
    )

    tenant_id: Mapped[str] = mapped_column(String(100), nullable=False)

    lot_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("lots.id"),
        nullable=False,
    )

    # Denormalized for product-level queries
    product_id: Mapped[str] = mapped_column(String(100), nullable=False)

    movement_type: Mapped[MovementType] = mapped_column(String(20), nullable=False)

    signed_quantity: Mapped[Decimal] = mapped_column(nullable=False)

    occurred_at: Mapped[datetime] = mapped_column(nullable=False)

    ledger_seq: Mapped[int] = mapped_column(BigInteger, nullable=False, unique=True)

    acting_agent_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    reference_type: Mapped[str | None] = mapped_column(String(30), nullable=True)

    reference_id: Mapped[str | None] = mapped_column(String(100), nullable=True)

    details: Mapped[dict[str, Any] | None] = mapped_column("metadata", JSON, nullable=True)

    is_opening: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    def __repr__(self) -> str:
        return (
            f"<LotMovement #{self.ledger_seq} {self.movement_type} "
            f"{self.signed_quantity} lot={self.lot_id}>"
        )
