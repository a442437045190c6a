"""
Module: lot_kernel.models.lot
Responsibility: ORM persistence for received lots.  Each lot is one batch of
    one product received together, carrying its own quantity and expiration.
Architecture position: Kernel > Models.  May import from db/ only.
    MUST NOT import from services/, selectors/, domain/, or outer layers.

Invariants enforced:
    L1 -- 0 <= remaining_quantity <= initial_quantity (CHECK constraints plus
          the Movement Ledger bounds check).
    L2 -- initial_quantity, product_id, lot_number and tenant_id never change
          after creation (db/immutability.py).
    L3 -- remaining_quantity is a projection of the movement ledger; it is
          only written inside MovementLedger's write scope.
    L4 -- lot_number is unique per (tenant_id, product_id).

Failure modes:
    - IntegrityError on duplicate (tenant_id, product_id, lot_number).
    - StaleDataError when a concurrent writer bumped ``version`` first
      (surfaced by the ledger as OptimisticLockError).
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from enum import Enum

from sqlalchemy import CheckConstraint, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from lot_kernel.db.base import TimestampedBase


class LotStatus(str, Enum):
    """Lifecycle status of a lot."""

    ACTIVE = "active"
    EXPIRED = "expired"
    DEPLETED = "depleted"


class Lot(TimestampedBase):
    """
    Persistent lot record.

    Contract:
        Created by LotStore.receive_lot together with its opening movement.
        Afterwards only the Movement Ledger may change remaining_quantity
        and status.

    Guarantees:
        - remaining_quantity == sum of signed_quantity over all of the lot's
          movements (opening movement included).
        - ``version`` increments on every update (optimistic locking).

    Non-goals:
        - Expiry is not flipped by a background job; reads evaluate it
          lazily and LotStore.expire_lots() persists it on demand.
    """

    __tablename__ = "lots"

    __table_args__ = (
        UniqueConstraint(
            "tenant_id", "product_id", "lot_number",
            name="uq_lot_tenant_product_number",
        ),
        CheckConstraint("initial_quantity >= 0", name="ck_lot_initial_nonneg"),
        CheckConstraint("remaining_quantity >= 0", name="ck_lot_remaining_nonneg"),
        CheckConstraint(
            "remaining_quantity <= initial_quantity",
            name="ck_lot_remaining_le_initial",
        ),
        Index("idx_lot_tenant_product", "tenant_id", "product_id"),
        Index("idx_lot_product_reception", "product_id", "reception_date"),
        Index("idx_lot_expiration", "tenant_id", "expiration_date"),
    )

    tenant_id: Mapped[str] = mapped_column(String(100), nullable=False)

    # Catalog product identifier
    product_id: Mapped[str] = mapped_column(String(100), nullable=False)

    lot_number: Mapped[str] = mapped_column(String(100), nullable=False)

    initial_quantity: Mapped[Decimal] = mapped_column(nullable=False)

    # Cached projection of the movement ledger
    remaining_quantity: Mapped[Decimal] = mapped_column(nullable=False)

    manufacture_date: Mapped[date | None] = mapped_column(nullable=True)

    reception_date: Mapped[date] = mapped_column(nullable=False)

    expiration_date: Mapped[date | None] = mapped_column(nullable=True)

    unit_purchase_price: Mapped[Decimal | None] = mapped_column(nullable=True)

    unit_sale_price: Mapped[Decimal | None] = mapped_column(nullable=True)

    storage_location: Mapped[str | None] = mapped_column(String(200), nullable=True)

    supplier_id: Mapped[str | None] = mapped_column(String(100), nullable=True)

    status: Mapped[LotStatus] = mapped_column(
        String(20),
        nullable=False,
        default=LotStatus.ACTIVE.value,
    )

    received_at: Mapped[datetime] = mapped_column(nullable=False)

    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    def __repr__(self) -> str:
        return (
            f"<Lot {self.lot_number} product={self.product_id} "
            f"remaining={self.remaining_quantity}/{self.initial_quantity}>"
        )

    def is_expired_on(self, today: date) -> bool:
        """True when the expiration date lies strictly before ``today``."""
        return self.expiration_date is not None and self.expiration_date < today
