"""
LotStore -- owns lot records and their receipt.

Responsibility:
    Creates lots on receipt together with their opening ``entry`` movement,
    serves lot lookups, and persists the ``expired`` status that queries
    otherwise evaluate lazily.

Architecture position:
    Kernel > Services -- imperative shell.  Delegates every quantity write
    to MovementLedger and every read to LotSelector.

Invariants enforced:
    - A lot and its opening movement are written together or not at all.
    - initial_quantity > 0 on receipt; remaining starts equal to initial.
    - lot_number is unique per (tenant, product).

Failure modes:
    - InvalidQuantityError: initial quantity <= 0.
    - DuplicateLotNumberError: lot number already used for the product.
    - LotNotFoundError: lookup of an unknown lot.

Audit relevance:
    Each receipt writes a LOT_RECEIVED audit event; each expiry sweep that
    changes at least one lot writes LOTS_EXPIRED.
"""

from datetime import date
from decimal import Decimal
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from lot_kernel.db.types import as_quantity
from lot_kernel.domain.clock import Clock
from lot_kernel.domain.constants import DEFAULT_TENANT_ID, SYSTEM_ACTOR_ID
from lot_kernel.domain.dtos import LotView
from lot_kernel.exceptions import DuplicateLotNumberError, InvalidQuantityError
from lot_kernel.logging_config import get_logger
from lot_kernel.models.lot import Lot, LotStatus
from lot_kernel.models.movement import MovementType, ReferenceType
from lot_kernel.selectors.lot_selector import LotSelector, effective_status, lot_to_view
from lot_kernel.services.auditor_service import AuditorService
from lot_kernel.services.base import BaseService
from lot_kernel.services.movement_ledger import MovementLedger

logger = get_logger("services.lot_store")


def _optional_price(value) -> Decimal | None:
    if value is None:
        return None
    price = as_quantity(value)
    if price < 0:
        raise InvalidQuantityError(str(price), "prices cannot be negative")
    return price


class LotStore(BaseService):
    """
    Lot receipt and lookup.

    Contract:
        ``receive_lot`` flushes a Lot, its opening movement and an audit
        event inside one savepoint; the caller commits.

    Non-goals:
        - Does NOT change quantities after receipt (MovementLedger does).
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        super().__init__(session, clock)
        self._selector = LotSelector(session, self.clock)
        self._ledger = MovementLedger(session, self.clock)
        self._auditor = AuditorService(session, self.clock)

    def receive_lot(
        self,
        product_id: str,
        initial_quantity: Decimal | int | str,
        reception_date: date,
        *,
        lot_number: str | None = None,
        expiration_date: date | None = None,
        manufacture_date: date | None = None,
        unit_purchase_price: Decimal | int | str | None = None,
        unit_sale_price: Decimal | int | str | None = None,
        storage_location: str | None = None,
        supplier_id: str | None = None,
        tenant_id: str = DEFAULT_TENANT_ID,
        actor_id: UUID = SYSTEM_ACTOR_ID,
    ) -> LotView:
        """
        Receive a new lot.

        Raises:
            InvalidQuantityError: If initial_quantity <= 0 or a price is negative.
            DuplicateLotNumberError: If lot_number is taken for this product.
        """
        quantity = as_quantity(initial_quantity)
        if quantity <= 0:
            logger.warning(
                "lot_receipt_rejected",
                extra={"product_id": product_id, "initial_quantity": str(quantity)},
            )
            raise InvalidQuantityError(str(quantity), "initial quantity must be positive")
        purchase_price = _optional_price(unit_purchase_price)
        sale_price = _optional_price(unit_sale_price)

        number = lot_number or f"L{reception_date:%Y%m%d}-{uuid4().hex[:8].upper()}"
        if self._selector.lot_number_taken(tenant_id, product_id, number):
            raise DuplicateLotNumberError(tenant_id, product_id, number)

        lot = Lot(
            tenant_id=tenant_id,
            product_id=product_id,
            lot_number=number,
            initial_quantity=quantity,
            remaining_quantity=quantity,
            manufacture_date=manufacture_date,
            reception_date=reception_date,
            expiration_date=expiration_date,
            unit_purchase_price=purchase_price,
            unit_sale_price=sale_price,
            storage_location=storage_location,
            supplier_id=supplier_id,
            status=LotStatus.ACTIVE.value,
            received_at=self.clock.now(),
        )

        try:
            with self.session.begin_nested():
                self.session.add(lot)
                self.session.flush()
                self._ledger.record_opening(
                    lot,
                    MovementType.ENTRY,
                    actor_id=actor_id,
                    reference_type=ReferenceType.RECEIPT.value,
                    reference_id=number,
                    metadata={"supplier_id": supplier_id} if supplier_id else None,
                )
                self._auditor.record_lot_received(
                    lot_id=lot.id,
                    tenant_id=tenant_id,
                    product_id=product_id,
                    lot_number=number,
                    initial_quantity=quantity,
                    reception_date=reception_date,
                    expiration_date=expiration_date,
                    actor_id=actor_id,
                )
        except IntegrityError as exc:
            # Lost a race with a concurrent receipt of the same number.
            raise DuplicateLotNumberError(tenant_id, product_id, number) from exc

        logger.info(
            "lot_received",
            extra={
                "lot_id": str(lot.id),
                "product_id": product_id,
                "lot_number": number,
                "initial_quantity": str(quantity),
                "expiration_date": str(expiration_date) if expiration_date else None,
            },
        )
        return lot_to_view(lot, self.clock.today())

    def get_lot(self, lot_id: UUID) -> LotView:
        return self._selector.get_lot(lot_id)

    def list_lots_for_product(
        self,
        product_id: str,
        *,
        include_expired: bool = False,
        include_depleted: bool = False,
        tenant_id: str = DEFAULT_TENANT_ID,
    ) -> list[LotView]:
        return self._selector.list_lots_for_product(
            product_id,
            include_expired=include_expired,
            include_depleted=include_depleted,
            tenant_id=tenant_id,
        )

    def effective_status(self, lot_id: UUID) -> LotStatus:
        return effective_status(self._selector.get_row(lot_id), self.clock.today())

    def expire_lots(
        self,
        today: date | None = None,
        tenant_id: str = DEFAULT_TENANT_ID,
        actor_id: UUID = SYSTEM_ACTOR_ID,
    ) -> list[UUID]:
        """
        Persist ``expired`` on active lots with stock whose expiration date
        is before ``today``.  Returns the ids changed, in id order.
        """
        as_of = today or self.clock.today()
        rows = self.session.execute(
            select(Lot)
            .where(
                Lot.tenant_id == tenant_id,
                Lot.status == LotStatus.ACTIVE.value,
                Lot.remaining_quantity > 0,
                Lot.expiration_date.is_not(None),
                Lot.expiration_date < as_of,
            )
            .order_by(Lot.id)
            .with_for_update()
        ).scalars().all()

        if not rows:
            return []

        for row in rows:
            row.status = LotStatus.EXPIRED.value
        self.session.flush()

        expired_ids = [row.id for row in rows]
        self._auditor.record_lots_expired(tenant_id, expired_ids, as_of, actor_id)
        logger.info(
            "lots_expired",
            extra={"tenant_id": tenant_id, "as_of": str(as_of), "count": len(expired_ids)},
        )
        return expired_ids
