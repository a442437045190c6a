"""
Module: lot_services.stock_service
Responsibility:
    Operator-facing entry point for receipts, movements, transfers and the
    expiry sweep.  Owns the transaction boundary around the flush-only
    kernel services (LotStore, MovementLedger) and exposes the read side
    (lots, movement history, summaries, invariant checks).

Architecture position:
    Services -- orchestration only.  Contains no quantity arithmetic of its
    own beyond converting detail units through the catalog ratio.

    Dependency direction (strict):
        stock_service.py  -->  lot_kernel.services  (LotStore, MovementLedger)
        stock_service.py  -->  lot_kernel.selectors (LotSelector, MovementSelector)
        stock_service.py  -X-> lot_config           (callers pass values in)

Invariants enforced:
    - Each mutating method commits or rolls back as one unit (see
      OrchestratorBase); a rejected movement leaves no row behind.
    - remaining_quantity is never written here; the ledger writes it.

Failure modes:
    - Every kernel error (InvalidQuantityError, QuantityOutOfBoundsError,
      LotNotFoundError, InvalidTransferError, ...) propagates after rollback.

Audit relevance:
    Receipts, transfers and expiry sweeps write hash-chained audit events
    through the kernel services.
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy.orm import Session

from lot_kernel.db.types import as_quantity
from lot_kernel.domain.clock import Clock
from lot_kernel.domain.constants import DEFAULT_TENANT_ID, SYSTEM_ACTOR_ID
from lot_kernel.domain.dtos import (
    InvariantCheck,
    LotView,
    MovementCheck,
    MovementSummary,
    MovementView,
    TimeRange,
)
from lot_kernel.exceptions import InvalidQuantityError
from lot_kernel.logging_config import LogContext, get_logger
from lot_kernel.models.lot import LotStatus
from lot_kernel.models.movement import MovementType, ReferenceType
from lot_kernel.selectors.lot_selector import LotSelector
from lot_kernel.selectors.movement_selector import MovementSelector, MovementStream
from lot_kernel.services.lot_store import LotStore
from lot_kernel.services.movement_ledger import MovementLedger, TransferResult
from lot_services.base import OrchestratorBase
from lot_services.integration import CatalogService, product_info

logger = get_logger("services.stock")


class StockService(OrchestratorBase):
    """
    Lot receipts and ledger movements with commit-or-rollback semantics.

    Contract:
        Callers supply a live Session.  With ``auto_commit=True`` every
        mutating method commits on success and rolls back on failure.

    Guarantees:
        - Returned values are frozen DTOs, never ORM rows.
        - ``verify_invariants`` recomputes every lot's ledger sum.

    Non-goals:
        - FIFO selection (FIFOService) and alerting (ExpirationService).
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        *,
        catalog: CatalogService | None = None,
        auto_commit: bool = True,
    ):
        super().__init__(session, clock, auto_commit=auto_commit)
        self._catalog = catalog
        self._store = LotStore(session, self._clock)
        self._ledger = MovementLedger(session, self._clock)
        self._lots = LotSelector(session, self._clock)
        self._movements = MovementSelector(session, self._clock)

    # =========================================================================
    # Writes
    # =========================================================================

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
        Receive a lot and its opening entry movement.

        Raises:
            InvalidQuantityError: initial_quantity <= 0 or a negative price.
            DuplicateLotNumberError: lot_number already used for the product.
        """
        with LogContext.bind(tenant_id=tenant_id, actor_id=str(actor_id)):
            with self._unit_of_work("receive_lot", product_id=product_id):
                return self._store.receive_lot(
                    product_id,
                    initial_quantity,
                    reception_date,
                    lot_number=lot_number,
                    expiration_date=expiration_date,
                    manufacture_date=manufacture_date,
                    unit_purchase_price=unit_purchase_price,
                    unit_sale_price=unit_sale_price,
                    storage_location=storage_location,
                    supplier_id=supplier_id,
                    tenant_id=tenant_id,
                    actor_id=actor_id,
                )

    def apply_movement(
        self,
        lot_id: UUID,
        movement_type: MovementType | str,
        signed_quantity: Decimal | int | str,
        *,
        reference_type: str | None = None,
        reference_id: str | None = None,
        metadata: dict[str, Any] | None = None,
        actor_id: UUID = SYSTEM_ACTOR_ID,
        occurred_at: datetime | None = None,
    ) -> MovementView:
        """
        Append one movement to a lot.

        Raises:
            QuantityOutOfBoundsError: The result would leave [0, initial].
            InvalidQuantityError: Zero quantity or wrong sign for the type.
            InvalidMovementTypeError: Unknown type, or ``transfer``.
            LotNotFoundError: Unknown lot.
        """
        with LogContext.bind(lot_id=str(lot_id), actor_id=str(actor_id)):
            with self._unit_of_work("apply_movement", lot_id=str(lot_id)):
                return self._ledger.apply_movement(
                    lot_id,
                    movement_type,
                    signed_quantity,
                    reference_type=reference_type,
                    reference_id=reference_id,
                    metadata=metadata,
                    actor_id=actor_id,
                    occurred_at=occurred_at,
                )

    def record_sale(
        self,
        lot_id: UUID,
        quantity: Decimal | int | str,
        *,
        detail_units: bool = False,
        reference_id: str | None = None,
        actor_id: UUID = SYSTEM_ACTOR_ID,
    ) -> MovementView:
        """
        Record a sale as an ``exit`` movement referenced as a sale.

        With ``detail_units=True`` the quantity counts detail units and is
        divided by the product's detail breakdown ratio from the catalog,
        so selling 2 tablets of an 8-tablet box removes 0.25 box.
        """
        sold = as_quantity(quantity)
        if sold <= 0:
            raise InvalidQuantityError(str(sold), "sale quantity must be positive")
        if detail_units:
            lot = self._lots.get_lot(lot_id)
            ratio = product_info(self._catalog, lot.product_id).detail_breakdown_ratio
            stock_quantity = as_quantity(sold / ratio)
        else:
            stock_quantity = sold
        return self.apply_movement(
            lot_id,
            MovementType.EXIT,
            -stock_quantity,
            reference_type=ReferenceType.SALE.value,
            reference_id=reference_id,
            metadata={"detail_units": str(sold)} if detail_units else None,
            actor_id=actor_id,
        )

    def transfer_movement(
        self,
        from_lot_id: UUID,
        to_lot_id: UUID | None,
        quantity: Decimal | int | str,
        reference_id: str | None = None,
        *,
        to_location: str | None = None,
        to_lot_number: str | None = None,
        actor_id: UUID = SYSTEM_ACTOR_ID,
    ) -> TransferResult:
        """
        Move stock between two lots, or split it into a new lot at
        ``to_location`` when ``to_lot_id`` is None.  Both legs commit
        together or not at all.
        """
        with LogContext.bind(lot_id=str(from_lot_id), actor_id=str(actor_id)):
            with self._unit_of_work(
                "transfer_movement",
                from_lot_id=str(from_lot_id),
                to_lot_id=str(to_lot_id) if to_lot_id else None,
            ):
                return self._ledger.transfer_movement(
                    from_lot_id,
                    to_lot_id,
                    quantity,
                    reference_id,
                    to_location=to_location,
                    to_lot_number=to_lot_number,
                    actor_id=actor_id,
                )

    def expire_lots(
        self,
        today: date | None = None,
        *,
        tenant_id: str = DEFAULT_TENANT_ID,
        actor_id: UUID = SYSTEM_ACTOR_ID,
    ) -> list[UUID]:
        """Persist ``expired`` on active lots past their expiration date."""
        with LogContext.bind(tenant_id=tenant_id, actor_id=str(actor_id)):
            with self._unit_of_work("expire_lots", tenant_id=tenant_id):
                return self._store.expire_lots(today, tenant_id=tenant_id, actor_id=actor_id)

    # =========================================================================
    # Reads
    # =========================================================================

    def get_lot(self, lot_id: UUID) -> LotView:
        return self._store.get_lot(lot_id)

    def effective_status(self, lot_id: UUID) -> LotStatus:
        return self._store.effective_status(lot_id)

    def list_lots_for_product(
        self,
        product_id: str,
        *,
        include_expired: bool = False,
        include_depleted: bool = False,
        tenant_id: str = DEFAULT_TENANT_ID,
    ) -> list[LotView]:
        return self._store.list_lots_for_product(
            product_id,
            include_expired=include_expired,
            include_depleted=include_depleted,
            tenant_id=tenant_id,
        )

    def list_movements(self, lot_id: UUID, time_range: TimeRange | None = None) -> MovementStream:
        """Restartable, occurred_at-ordered movement history of one lot."""
        return self._movements.list_movements(lot_id, time_range)

    def list_product_movements(
        self,
        product_id: str,
        time_range: TimeRange | None = None,
        *,
        tenant_id: str = DEFAULT_TENANT_ID,
    ) -> MovementStream:
        return self._movements.list_product_movements(product_id, time_range, tenant_id=tenant_id)

    def preview_movement(
        self,
        lot_id: UUID,
        movement_type: MovementType | str,
        signed_quantity: Decimal | int | str,
    ) -> MovementCheck:
        return self._ledger.preview_movement(lot_id, movement_type, signed_quantity)

    def movement_summary(
        self,
        *,
        lot_id: UUID | None = None,
        product_id: str | None = None,
        time_range: TimeRange | None = None,
        tenant_id: str = DEFAULT_TENANT_ID,
    ) -> MovementSummary:
        return self._movements.movement_summary(
            lot_id=lot_id,
            product_id=product_id,
            time_range=time_range,
            tenant_id=tenant_id,
        )

    def average_daily_consumption(
        self,
        product_id: str,
        lookback_days: int,
        *,
        tenant_id: str = DEFAULT_TENANT_ID,
    ) -> Decimal:
        return self._movements.average_daily_consumption(
            product_id, lookback_days, tenant_id=tenant_id
        )

    def verify_invariants(self, tenant_id: str = DEFAULT_TENANT_ID) -> list[InvariantCheck]:
        """
        Recompute the ledger sum of every lot of the tenant.

        Returns only the lots whose cached remaining quantity disagrees with
        the ledger or leaves [0, initial]; an empty list means all hold.
        """
        broken = [check for check in self._movements.verify_all(tenant_id) if not check.holds]
        for check in broken:
            logger.error(
                "lot_invariant_broken",
                extra={
                    "lot_id": str(check.lot_id),
                    "cached_remaining": str(check.cached_remaining),
                    "ledger_sum": str(check.ledger_sum),
                    "initial_quantity": str(check.initial_quantity),
                },
            )
        return broken
