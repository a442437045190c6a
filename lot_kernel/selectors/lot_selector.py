"""
Module: lot_kernel.selectors.lot_selector
Responsibility: Read-side queries over lots: single lookup, per-product
    listing with status filters, and expiry sweeps.
Architecture position: Kernel > Selectors.

Invariants enforced:
    - Expiry is evaluated lazily: a lot whose expiration_date is before
      "today" is exposed as ``expired`` even if the stored status still
      says ``active``.  Nothing is written.
    - ``depleted`` takes precedence over ``expired``.
"""

from __future__ import annotations

from datetime import date, timedelta
from uuid import UUID

from sqlalchemy import select

from lot_kernel.db.types import as_quantity
from lot_kernel.domain.constants import DEFAULT_TENANT_ID
from lot_kernel.domain.dtos import LotView
from lot_kernel.exceptions import LotNotFoundError
from lot_kernel.models.lot import Lot, LotStatus
from lot_kernel.selectors.base import BaseSelector


def effective_status(lot: Lot, today: date) -> LotStatus:
    """Status as exposed to callers on ``today``."""
    if as_quantity(lot.remaining_quantity) == 0:
        return LotStatus.DEPLETED
    if lot.status == LotStatus.EXPIRED.value or lot.is_expired_on(today):
        return LotStatus.EXPIRED
    return LotStatus.ACTIVE


def _optional_quantity(value):
    return None if value is None else as_quantity(value)


def lot_to_view(lot: Lot, today: date) -> LotView:
    return LotView(
        id=lot.id,
        tenant_id=lot.tenant_id,
        product_id=lot.product_id,
        lot_number=lot.lot_number,
        initial_quantity=as_quantity(lot.initial_quantity),
        remaining_quantity=as_quantity(lot.remaining_quantity),
        reception_date=lot.reception_date,
        status=effective_status(lot, today).value,
        manufacture_date=lot.manufacture_date,
        expiration_date=lot.expiration_date,
        unit_purchase_price=_optional_quantity(lot.unit_purchase_price),
        unit_sale_price=_optional_quantity(lot.unit_sale_price),
        storage_location=lot.storage_location,
        supplier_id=lot.supplier_id,
        received_at=lot.received_at,
    )


class LotSelector(BaseSelector):
    """Read-only lot queries returning LotView DTOs."""

    def get_row(self, lot_id: UUID) -> Lot:
        lot = self.session.get(Lot, lot_id)
        if lot is None:
            raise LotNotFoundError(str(lot_id))
        return lot

    def get_lot(self, lot_id: UUID) -> LotView:
        """
        Fetch one lot.

        Raises:
            LotNotFoundError: If no lot has this id.
        """
        return lot_to_view(self.get_row(lot_id), self.clock.today())

    def list_lots_for_product(
        self,
        product_id: str,
        *,
        include_expired: bool = False,
        include_depleted: bool = False,
        tenant_id: str = DEFAULT_TENANT_ID,
    ) -> list[LotView]:
        """
        All lots of a product ordered by reception date then lot number.

        Expired and depleted lots (by effective status) are filtered out
        unless explicitly requested.
        """
        rows = self.session.execute(
            select(Lot)
            .where(Lot.tenant_id == tenant_id, Lot.product_id == product_id)
            .order_by(Lot.reception_date, Lot.lot_number, Lot.id)
        ).scalars().all()

        today = self.clock.today()
        views = []
        for row in rows:
            view = lot_to_view(row, today)
            if view.status == LotStatus.EXPIRED.value and not include_expired:
                continue
            if view.status == LotStatus.DEPLETED.value and not include_depleted:
                continue
            views.append(view)
        return views

    def lots_in_stock(self, tenant_id: str = DEFAULT_TENANT_ID) -> list[LotView]:
        """Every lot with remaining quantity > 0, any product."""
        rows = self.session.execute(
            select(Lot)
            .where(Lot.tenant_id == tenant_id, Lot.remaining_quantity > 0)
            .order_by(Lot.product_id, Lot.reception_date, Lot.lot_number, Lot.id)
        ).scalars().all()
        today = self.clock.today()
        return [lot_to_view(row, today) for row in rows]

    def lots_expiring_within(
        self,
        horizon_days: int,
        tenant_id: str = DEFAULT_TENANT_ID,
    ) -> list[Lot]:
        """
        Rows with stock and an expiration date no later than today + horizon
        (already expired lots included).
        """
        limit = self.clock.today() + timedelta(days=horizon_days)
        return list(
            self.session.execute(
                select(Lot)
                .where(
                    Lot.tenant_id == tenant_id,
                    Lot.remaining_quantity > 0,
                    Lot.expiration_date.is_not(None),
                    Lot.expiration_date <= limit,
                )
                .order_by(Lot.expiration_date, Lot.lot_number, Lot.id)
            ).scalars().all()
        )

    def lot_number_taken(self, tenant_id: str, product_id: str, lot_number: str) -> bool:
        return self.session.execute(
            select(Lot.id).where(
                Lot.tenant_id == tenant_id,
                Lot.product_id == product_id,
                Lot.lot_number == lot_number,
            )
        ).first() is not None

    def product_ids(self, tenant_id: str = DEFAULT_TENANT_ID) -> list[str]:
        return list(
            self.session.execute(
                select(Lot.product_id)
                .where(Lot.tenant_id == tenant_id)
                .distinct()
                .order_by(Lot.product_id)
            ).scalars().all()
        )
