"""
MovementLedger -- append-only quantity log, sole writer of remaining_quantity.

Responsibility:
    Validates and appends signed movements against lots and keeps each lot's
    cached ``remaining_quantity`` equal to the sum of its movements.  Paired
    transfers (two legs sharing one reference) are written all-or-nothing.

Architecture position:
    Kernel > Services -- imperative shell.  Called by LotStore (opening
    entry), the reconciliation workflow (adjustments) and the lot_services
    orchestrator.  Read-side listings are delegated to MovementSelector.

Invariants enforced:
    - 0 <= remaining_quantity <= initial_quantity after every movement; a
      violating movement is rejected before anything is written.
    - remaining_quantity == sum(signed_quantity) over the lot's movements,
      the opening movement included.
    - Movements are never updated or deleted (db/immutability.py).
    - Lot rows are locked (SELECT ... FOR UPDATE) before the movement
      sequence counter; lots are locked in ascending id order.

Failure modes:
    - LotNotFoundError: unknown lot.
    - InvalidQuantityError: zero quantity or sign not allowed for the type.
    - InvalidMovementTypeError: unknown type, or ``transfer`` through
      ``apply_movement``.
    - QuantityOutOfBoundsError: the result would leave [0, initial].
    - InvalidTransferError: same-lot or cross-product transfer, or a split
      without a destination location.
    - OptimisticLockError: the lot row changed underneath a flush.

Audit relevance:
    Every accepted movement is logged as ``movement_applied`` and every
    rejection as ``movement_rejected``.  Transfers also write a
    TRANSFER_RECORDED audit event.
"""

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from lot_kernel.db.immutability import ledger_write_scope
from lot_kernel.db.types import as_quantity
from lot_kernel.domain.clock import Clock
from lot_kernel.domain.constants import SYSTEM_ACTOR_ID
from lot_kernel.domain.dtos import LotView, MovementCheck, MovementView, TimeRange
from lot_kernel.exceptions import (
    DuplicateLotNumberError,
    InvalidMovementTypeError,
    InvalidQuantityError,
    InvalidTransferError,
    LotNotFoundError,
    OptimisticLockError,
    QuantityOutOfBoundsError,
)
from lot_kernel.logging_config import get_logger
from lot_kernel.models.lot import Lot, LotStatus
from lot_kernel.models.movement import LotMovement, MovementType, ReferenceType
from lot_kernel.selectors.lot_selector import LotSelector, lot_to_view
from lot_kernel.selectors.movement_selector import (
    MovementSelector,
    MovementStream,
    movement_to_view,
)
from lot_kernel.services.auditor_service import AuditorService
from lot_kernel.services.base import BaseService
from lot_kernel.services.sequence_service import SequenceService

logger = get_logger("services.movement_ledger")

_POSITIVE_TYPES = frozenset({MovementType.ENTRY, MovementType.RETURN})
_NEGATIVE_TYPES = frozenset({MovementType.EXIT, MovementType.DESTRUCTION})


@dataclass(frozen=True)
class TransferResult:
    """Both legs of a transfer plus the destination lot as it stands afterwards."""

    reference_id: str
    out_movement: MovementView
    in_movement: MovementView
    source_lot: LotView
    destination_lot: LotView
    created_lot: bool


def _coerce_type(movement_type: MovementType | str) -> MovementType:
    try:
        return MovementType(movement_type)
    except ValueError:
        raise InvalidMovementTypeError(str(movement_type), "unknown movement type") from None


def _sign_violation(kind: MovementType, delta: Decimal) -> str | None:
    """Reason the sign of ``delta`` is not allowed for ``kind``, or None."""
    if delta == 0:
        return "movement quantity must be non-zero"
    if kind in _POSITIVE_TYPES and delta < 0:
        return f"{kind.value} movements must increase the lot"
    if kind in _NEGATIVE_TYPES and delta > 0:
        return f"{kind.value} movements must decrease the lot"
    return None


def _status_after(lot: Lot, new_remaining: Decimal, today: date) -> str:
    if new_remaining == 0:
        return LotStatus.DEPLETED.value
    if lot.status == LotStatus.EXPIRED.value or lot.is_expired_on(today):
        return LotStatus.EXPIRED.value
    return LotStatus.ACTIVE.value


class MovementLedger(BaseService):
    """
    Writes movements and the lot quantity projection.

    Contract:
        ``apply_movement`` and ``transfer_movement`` either append every
        row they describe and update the affected lots, or raise and leave
        the session as it was.

    Guarantees:
        - Concurrent movements against one lot serialize on the lot row.
        - ``ledger_seq`` is strictly increasing across all movements.

    Non-goals:
        - Does NOT commit; the caller owns the transaction.
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        super().__init__(session, clock)
        self._sequence = SequenceService(session)
        self._auditor = AuditorService(session, self.clock)
        self._lots = LotSelector(session, self.clock)
        self._movements = MovementSelector(session, self.clock)

    # ------------------------------------------------------------------
    # Row access
    # ------------------------------------------------------------------

    def _lock_lot(self, lot_id: UUID) -> Lot:
        lot = self.session.execute(
            select(Lot)
            .where(Lot.id == lot_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if lot is None:
            raise LotNotFoundError(str(lot_id))
        return lot

    def _lock_lots(self, lot_ids: list[UUID]) -> dict[UUID, Lot]:
        """Lock several lots in ascending id order."""
        return {lot_id: self._lock_lot(lot_id) for lot_id in sorted(set(lot_ids), key=str)}

    def lock_lots(self, lot_ids: list[UUID]) -> dict[UUID, Lot]:
        """
        Lock lots ahead of a batch of movements.

        Callers writing several movements in one transaction (reconciliation
        completion) take every lot lock up front so lock order stays
        ascending by id.
        """
        return self._lock_lots(lot_ids)

    def _append(
        self,
        lot: Lot,
        kind: MovementType,
        delta: Decimal,
        *,
        actor_id: UUID | None,
        reference_type: str | None,
        reference_id: str | None,
        metadata: dict[str, Any] | None,
        occurred_at: datetime | None,
        is_opening: bool = False,
    ) -> LotMovement:
        """
        Insert one movement and move the projection.  The lot must already be
        locked (or freshly inserted) and the bounds already checked.
        """
        new_remaining = as_quantity(lot.remaining_quantity) + delta
        seq = self._sequence.next_value(SequenceService.LOT_MOVEMENT)
        movement = LotMovement(
            tenant_id=lot.tenant_id,
            lot_id=lot.id,
            product_id=lot.product_id,
            movement_type=kind.value,
            signed_quantity=delta,
            occurred_at=occurred_at or self.clock.now(),
            ledger_seq=seq,
            acting_agent_id=actor_id,
            reference_type=reference_type,
            reference_id=reference_id,
            details=metadata or {},
            is_opening=is_opening,
        )
        self.session.add(movement)
        if not is_opening:
            lot.remaining_quantity = new_remaining
            lot.status = _status_after(lot, new_remaining, self.clock.today())
        try:
            with ledger_write_scope():
                self.session.flush()
        except StaleDataError as exc:
            logger.warning(
                "movement_optimistic_lock_conflict",
                extra={"lot_id": str(lot.id)},
            )
            raise OptimisticLockError("Lot", str(lot.id)) from exc

        logger.info(
            "movement_applied",
            extra={
                "lot_id": str(lot.id),
                "product_id": lot.product_id,
                "movement_type": kind.value,
                "signed_quantity": str(delta),
                "remaining_quantity": str(as_quantity(lot.remaining_quantity)),
                "ledger_seq": seq,
                "reference_type": reference_type,
                "reference_id": reference_id,
            },
        )
        return movement

    def _reject_out_of_bounds(self, lot: Lot, delta: Decimal) -> None:
        remaining = as_quantity(lot.remaining_quantity)
        initial = as_quantity(lot.initial_quantity)
        resulting = remaining + delta
        if Decimal(0) <= resulting <= initial:
            return
        logger.warning(
            "movement_rejected",
            extra={
                "lot_id": str(lot.id),
                "requested_delta": str(delta),
                "remaining_quantity": str(remaining),
                "initial_quantity": str(initial),
            },
        )
        raise QuantityOutOfBoundsError(
            lot_id=str(lot.id),
            remaining_quantity=str(remaining),
            requested_delta=str(delta),
            initial_quantity=str(initial),
        )

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def record_opening(
        self,
        lot: Lot,
        kind: MovementType,
        *,
        actor_id: UUID | None,
        reference_type: str | None,
        reference_id: str | None,
        metadata: dict[str, Any] | None = None,
        occurred_at: datetime | None = None,
    ) -> LotMovement:
        """
        Write the movement that opens a freshly inserted lot.

        Its quantity is the lot's initial quantity, which the lot row already
        carries as remaining_quantity.
        """
        return self._append(
            lot,
            kind,
            as_quantity(lot.initial_quantity),
            actor_id=actor_id,
            reference_type=reference_type,
            reference_id=reference_id,
            metadata=metadata,
            occurred_at=occurred_at,
            is_opening=True,
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
        actor_id: UUID | None = SYSTEM_ACTOR_ID,
        occurred_at: datetime | None = None,
    ) -> MovementView:
        """
        Append one movement to a lot.

        ``entry`` and ``return`` must be positive, ``exit`` and
        ``destruction`` negative, ``adjustment`` either sign.  ``transfer``
        is only written through ``transfer_movement``.

        Raises:
            InvalidMovementTypeError, InvalidQuantityError,
            LotNotFoundError, QuantityOutOfBoundsError, OptimisticLockError.
        """
        kind = _coerce_type(movement_type)
        if kind is MovementType.TRANSFER:
            raise InvalidMovementTypeError(kind.value, "transfers must go through transfer_movement")
        delta = as_quantity(signed_quantity)
        reason = _sign_violation(kind, delta)
        if reason is not None:
            raise InvalidQuantityError(str(delta), reason)

        lot = self._lock_lot(lot_id)
        self._reject_out_of_bounds(lot, delta)
        movement = self._append(
            lot,
            kind,
            delta,
            actor_id=actor_id,
            reference_type=reference_type,
            reference_id=reference_id,
            metadata=metadata,
            occurred_at=occurred_at,
        )
        return movement_to_view(movement)

    def transfer_movement(
        self,
        from_lot_id: UUID,
        to_lot_id: UUID | None,
        quantity: Decimal | int | str,
        reference_id: str | None = None,
        *,
        to_location: str | None = None,
        to_lot_number: str | None = None,
        actor_id: UUID | None = SYSTEM_ACTOR_ID,
    ) -> TransferResult:
        """
        Move ``quantity`` from one lot to another as two ``transfer`` legs
        sharing ``reference_id``.

        With ``to_lot_id=None`` a new lot is split off at ``to_location``:
        same product, dates, prices and supplier as the source, initial
        quantity equal to ``quantity``, opened by the incoming leg.

        Both bounds are checked before anything is written and both legs
        are flushed inside one savepoint.
        """
        amount = as_quantity(quantity)
        if amount <= 0:
            raise InvalidQuantityError(str(amount), "transfer quantity must be positive")
        if to_lot_id is not None and to_lot_id == from_lot_id:
            raise InvalidTransferError(str(from_lot_id), "source and destination are the same lot")
        if to_lot_id is None and not to_location:
            raise InvalidTransferError(
                str(from_lot_id), "a split transfer needs a destination location"
            )
        reference = reference_id or str(uuid4())

        if to_lot_id is None:
            source = self._lock_lot(from_lot_id)
            destination = None
        else:
            locked = self._lock_lots([from_lot_id, to_lot_id])
            source, destination = locked[from_lot_id], locked[to_lot_id]
            if destination.product_id != source.product_id:
                raise InvalidTransferError(
                    str(from_lot_id),
                    f"destination lot holds product {destination.product_id}, "
                    f"source holds {source.product_id}",
                )
            if destination.tenant_id != source.tenant_id:
                raise InvalidTransferError(str(from_lot_id), "lots belong to different tenants")

        self._reject_out_of_bounds(source, -amount)
        if destination is not None:
            self._reject_out_of_bounds(destination, amount)

        created = destination is None
        destination_id = uuid4() if created else destination.id

        with self.session.begin_nested():
            out_leg = self._append(
                source,
                MovementType.TRANSFER,
                -amount,
                actor_id=actor_id,
                reference_type=ReferenceType.TRANSFER.value,
                reference_id=reference,
                metadata={"leg": "out", "counterpart_lot_id": str(destination_id)},
                occurred_at=None,
            )
            if created:
                destination = self._split_lot(
                    source,
                    destination_id,
                    amount,
                    to_location,
                    to_lot_number or f"{source.lot_number}-S{out_leg.ledger_seq}",
                )
            in_leg = self._append(
                destination,
                MovementType.TRANSFER,
                amount,
                actor_id=actor_id,
                reference_type=ReferenceType.TRANSFER.value,
                reference_id=reference,
                metadata={"leg": "in", "counterpart_lot_id": str(source.id)},
                occurred_at=None,
                is_opening=created,
            )
            self._auditor.record_transfer(
                from_lot_id=source.id,
                to_lot_id=destination.id,
                quantity=amount,
                reference_id=reference,
                created_lot=created,
                actor_id=actor_id or SYSTEM_ACTOR_ID,
            )

        logger.info(
            "transfer_recorded",
            extra={
                "from_lot_id": str(source.id),
                "to_lot_id": str(destination.id),
                "quantity": str(amount),
                "reference_id": reference,
                "created_lot": created,
            },
        )

        today = self.clock.today()
        return TransferResult(
            reference_id=reference,
            out_movement=movement_to_view(out_leg),
            in_movement=movement_to_view(in_leg),
            source_lot=lot_to_view(source, today),
            destination_lot=lot_to_view(destination, today),
            created_lot=created,
        )

    def _split_lot(
        self,
        source: Lot,
        lot_id: UUID,
        amount: Decimal,
        location: str,
        lot_number: str,
    ) -> Lot:
        if self._lots.lot_number_taken(source.tenant_id, source.product_id, lot_number):
            raise DuplicateLotNumberError(source.tenant_id, source.product_id, lot_number)
        lot = Lot(
            id=lot_id,
            tenant_id=source.tenant_id,
            product_id=source.product_id,
            lot_number=lot_number,
            initial_quantity=amount,
            remaining_quantity=amount,
            manufacture_date=source.manufacture_date,
            reception_date=source.reception_date,
            expiration_date=source.expiration_date,
            unit_purchase_price=source.unit_purchase_price,
            unit_sale_price=source.unit_sale_price,
            storage_location=location,
            supplier_id=source.supplier_id,
            status=_status_after(source, amount, self.clock.today()),
            received_at=self.clock.now(),
        )
        self.session.add(lot)
        self.session.flush()
        return lot

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def preview_movement(
        self,
        lot_id: UUID,
        movement_type: MovementType | str,
        signed_quantity: Decimal | int | str,
    ) -> MovementCheck:
        """Validate a movement without writing it."""
        kind = _coerce_type(movement_type)
        lot = self._lots.get_row(lot_id)
        available = as_quantity(lot.remaining_quantity)
        delta = as_quantity(signed_quantity)
        resulting = available + delta

        reason = _sign_violation(kind, delta)
        if reason is None and kind is MovementType.TRANSFER:
            reason = "transfers must go through transfer_movement"
        if reason is None and resulting < 0:
            reason = f"insufficient quantity: {available} available"
        if reason is None and resulting > as_quantity(lot.initial_quantity):
            reason = f"would exceed the initial quantity {as_quantity(lot.initial_quantity)}"

        return MovementCheck(
            is_valid=reason is None,
            available_quantity=available,
            resulting_quantity=resulting,
            message=reason,
        )

    def list_movements(self, lot_id: UUID, time_range: TimeRange | None = None) -> MovementStream:
        return self._movements.list_movements(lot_id, time_range)
