"""
Module: lot_services.reconciliation_service
Responsibility:
    The reconciliation workflow: start a session with a frozen snapshot of
    theoretical quantities, record physical counts, derive discrepancies,
    and either complete the session (one adjustment movement per
    discrepancy) or cancel it.

Architecture position:
    Services -- orchestration over the Movement Ledger and the pure
    ``lot_engines.reconciliation`` functions.

    Dependency direction (strict):
        reconciliation_service.py  -->  lot_engines.reconciliation
        reconciliation_service.py  -->  lot_kernel.services.movement_ledger
        reconciliation_service.py  -X-> lot_config

State machine:
    in_progress --complete--> completed   (terminal)
    in_progress --cancel----> cancelled   (terminal)

Invariants enforced:
    - The theoretical quantity of each line is captured at start and never
      changes.  Movements recorded while counting are tolerated: a
      discrepancy is computed against the snapshot and applied to the
      lot's live remaining quantity.
    - Completion writes N adjustment movements, one audit event and the
      status flip in one transaction; a failure leaves none of them.
    - Completion with zero discrepancies is refused.
    - A count never exceeds the lot's initial quantity, so a surplus
      adjustment fits within [0, initial] unless the lot moved since the
      snapshot.
    - Cancelling touches no lot and no movement.

Failure modes:
    - SessionNotFoundError: unknown session.
    - InvalidTransitionError: count / complete / cancel on a closed session.
    - LotNotInSessionError: count for a lot outside the snapshot.
    - InvalidQuantityError: negative physical count, or a count above the
      lot's initial quantity (the excess is received as a new lot instead).
    - EmptyReconciliationError: completion without discrepancies.
    - QuantityOutOfBoundsError: an adjustment would leave [0, initial]
      because of drift since the snapshot; the whole completion rolls back.

Audit relevance:
    RECONCILIATION_STARTED, RECONCILIATION_COMPLETED (fixed payload shape,
    see AuditorService) and RECONCILIATION_CANCELLED.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from lot_engines.reconciliation import (
    CANCELLED,
    COMPLETED,
    CountLine,
    Discrepancy,
    ReconciliationSummary,
    can_transition,
    compute_discrepancies,
    summarize,
)
from lot_kernel.db.types import as_quantity
from lot_kernel.domain.clock import Clock
from lot_kernel.domain.constants import DEFAULT_TENANT_ID, SYSTEM_ACTOR_ID
from lot_kernel.domain.dtos import LotView, MovementView
from lot_kernel.exceptions import (
    EmptyReconciliationError,
    InvalidQuantityError,
    InvalidTransitionError,
    LotNotInSessionError,
    SessionNotFoundError,
)
from lot_kernel.logging_config import LogContext, get_logger
from lot_kernel.models.movement import MovementType, ReferenceType
from lot_kernel.models.reconciliation import (
    ReconciliationLine,
    ReconciliationSession,
    SessionStatus,
)
from lot_kernel.selectors.lot_selector import LotSelector
from lot_kernel.services.auditor_service import AuditorService
from lot_kernel.services.movement_ledger import MovementLedger
from lot_services.base import OrchestratorBase
from lot_services.integration import IdentityService

logger = get_logger("services.reconciliation")


@dataclass(frozen=True)
class SessionView:
    id: UUID
    tenant_id: str
    status: str
    started_at: datetime
    lots_count: int
    discrepancies_count: int
    responsible_agent_id: UUID
    completed_at: datetime | None = None
    cancelled_at: datetime | None = None
    scope_label: str | None = None
    notes: str | None = None

    @property
    def is_terminal(self) -> bool:
        return SessionStatus(self.status).is_terminal


def session_to_view(row: ReconciliationSession) -> SessionView:
    return SessionView(
        id=row.id,
        tenant_id=row.tenant_id,
        status=row.status,
        started_at=row.started_at,
        lots_count=row.lots_count,
        discrepancies_count=row.discrepancies_count,
        responsible_agent_id=row.responsible_agent_id,
        completed_at=row.completed_at,
        cancelled_at=row.cancelled_at,
        scope_label=row.scope_label,
        notes=row.notes,
    )


def line_to_count(row: ReconciliationLine) -> CountLine:
    return CountLine(
        lot_id=row.lot_id,
        product_id=row.product_id,
        theoretical_quantity=as_quantity(row.theoretical_quantity),
        physical_quantity=None if row.physical_quantity is None else as_quantity(row.physical_quantity),
        unit_value=None if row.unit_value is None else as_quantity(row.unit_value),
    )


@dataclass(frozen=True)
class CompletedSession:
    """A completed session with the adjustments it wrote."""

    session: SessionView
    discrepancies: tuple[Discrepancy, ...]
    movements: tuple[MovementView, ...]


class ReconciliationService(OrchestratorBase):
    """
    Persisted reconciliation sessions with server-enforced transitions.

    Contract:
        Every mutating method owns its transaction.  ``compute_discrepancies``
        and ``reconciliation_summary`` are pure reads: calling them twice
        without a new count returns identical results.

    Non-goals:
        - Does NOT re-snapshot a session; start a new one instead.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        *,
        identity: IdentityService | None = None,
        auto_commit: bool = True,
    ):
        super().__init__(session, clock, auto_commit=auto_commit)
        self._identity = identity
        self._lots = LotSelector(session, self._clock)
        self._ledger = MovementLedger(session, self._clock)
        self._auditor = AuditorService(session, self._clock)

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def start_session(
        self,
        *,
        lot_ids: Sequence[UUID] | None = None,
        product_ids: Sequence[str] | None = None,
        scope_label: str | None = None,
        notes: str | None = None,
        tenant_id: str = DEFAULT_TENANT_ID,
        agent_id: UUID = SYSTEM_ACTOR_ID,
    ) -> SessionView:
        """
        Open a session over explicit lots, the in-stock lots of some
        products, or (neither given) every in-stock lot of the tenant.

        The current remaining quantity of each lot becomes its frozen
        theoretical quantity.

        Raises:
            LotNotFoundError: An explicit lot id does not exist.
        """
        with LogContext.bind(tenant_id=tenant_id, actor_id=str(agent_id)):
            with self._unit_of_work("start_reconciliation", tenant_id=tenant_id):
                lots = self._scope_lots(tenant_id, lot_ids, product_ids)
                row = ReconciliationSession(
                    tenant_id=tenant_id,
                    status=SessionStatus.IN_PROGRESS.value,
                    started_at=self._clock.now(),
                    lots_count=len(lots),
                    discrepancies_count=0,
                    responsible_agent_id=agent_id,
                    scope_label=scope_label,
                    notes=notes,
                )
                self._session.add(row)
                for position, lot in enumerate(lots):
                    self._session.add(
                        ReconciliationLine(
                            session=row,
                            lot_id=lot.id,
                            product_id=lot.product_id,
                            position=position,
                            theoretical_quantity=lot.remaining_quantity,
                            unit_value=lot.unit_purchase_price,
                        )
                    )
                self._session.flush()
                self._auditor.record_reconciliation_started(row.id, tenant_id, len(lots), agent_id)

        logger.info(
            "reconciliation_started",
            extra={"session_id": str(row.id), "tenant_id": tenant_id, "lots_count": len(lots)},
        )
        return session_to_view(row)

    def _scope_lots(
        self,
        tenant_id: str,
        lot_ids: Sequence[UUID] | None,
        product_ids: Sequence[str] | None,
    ) -> list[LotView]:
        if lot_ids is not None:
            unique = sorted(set(lot_ids), key=str)
            return [
                lot for lot in (self._lots.get_lot(lot_id) for lot_id in unique)
                if lot.tenant_id == tenant_id
            ]
        in_stock = self._lots.lots_in_stock(tenant_id)
        if product_ids is not None:
            wanted = set(product_ids)
            return [lot for lot in in_stock if lot.product_id in wanted]
        return in_stock

    def record_physical_count(
        self,
        session_id: UUID,
        lot_id: UUID,
        physical_quantity: Decimal | int | str,
        *,
        agent_id: UUID = SYSTEM_ACTOR_ID,
    ) -> CountLine:
        """
        Store the count of one lot; a later count of the same lot replaces it.

        Raises:
            InvalidQuantityError: Negative count, or more than the lot's
                initial quantity.
            InvalidTransitionError: The session is closed.
            LotNotInSessionError: The lot is not in the snapshot.
        """
        counted = as_quantity(physical_quantity)
        if counted < 0:
            raise InvalidQuantityError(str(counted), "physical count cannot be negative")

        with LogContext.bind(session_id=str(session_id), lot_id=str(lot_id)):
            with self._unit_of_work("record_physical_count", session_id=str(session_id)):
                row = self._lock_session(session_id)
                self._require_in_progress(row, SessionStatus.IN_PROGRESS.value)
                line = self._session.execute(
                    select(ReconciliationLine).where(
                        ReconciliationLine.session_id == row.id,
                        ReconciliationLine.lot_id == lot_id,
                    )
                ).scalar_one_or_none()
                if line is None:
                    raise LotNotInSessionError(str(session_id), str(lot_id))
                initial = as_quantity(self._lots.get_row(lot_id).initial_quantity)
                if counted > initial:
                    logger.warning(
                        "physical_count_rejected",
                        extra={
                            "session_id": str(session_id),
                            "lot_id": str(lot_id),
                            "physical_quantity": str(counted),
                            "initial_quantity": str(initial),
                        },
                    )
                    raise InvalidQuantityError(
                        str(counted),
                        f"count exceeds the lot's initial quantity {initial}; "
                        "receive the excess as a new lot",
                    )
                line.physical_quantity = counted
                line.counted_at = self._clock.now()
                line.counted_by_id = agent_id
                self._session.flush()

        logger.info(
            "physical_count_recorded",
            extra={
                "session_id": str(session_id),
                "lot_id": str(lot_id),
                "theoretical_quantity": str(as_quantity(line.theoretical_quantity)),
                "physical_quantity": str(counted),
            },
        )
        return line_to_count(line)

    def complete_session(
        self,
        session_id: UUID,
        *,
        agent_id: UUID = SYSTEM_ACTOR_ID,
    ) -> CompletedSession:
        """
        Apply every discrepancy as an ``adjustment`` movement and close the
        session, all in one transaction.

        Each movement carries reference_type ``reconciliation``,
        reference_id the session id, and metadata with the theoretical and
        physical quantities.
        """
        with LogContext.bind(session_id=str(session_id), actor_id=str(agent_id)):
            with self._unit_of_work("complete_reconciliation", session_id=str(session_id)):
                row = self._lock_session(session_id)
                self._require_in_progress(row, COMPLETED)

                lines = [line_to_count(line) for line in self._lines(row.id)]
                discrepancies = compute_discrepancies(lines)
                if not discrepancies:
                    raise EmptyReconciliationError(str(session_id))

                self._ledger.lock_lots([d.lot_id for d in discrepancies])
                movements = tuple(
                    self._ledger.apply_movement(
                        d.lot_id,
                        MovementType.ADJUSTMENT,
                        d.delta,
                        reference_type=ReferenceType.RECONCILIATION.value,
                        reference_id=str(row.id),
                        metadata={
                            "session_id": str(row.id),
                            "theoretical_quantity": str(d.theoretical_quantity),
                            "physical_quantity": str(d.physical_quantity),
                            "discrepancy_status": d.status.value,
                        },
                        actor_id=agent_id,
                    )
                    for d in discrepancies
                )

                completed_at = self._clock.now()
                row.status = SessionStatus.COMPLETED.value
                row.completed_at = completed_at
                row.discrepancies_count = len(discrepancies)
                self._session.flush()
                self._auditor.record_reconciliation_completed(
                    session_id=row.id,
                    discrepancies_count=len(discrepancies),
                    total_lots=len(lines),
                    completed_at=completed_at,
                    actor_id=agent_id,
                    agent_name=self._identity.display_name(agent_id) if self._identity else None,
                )

        logger.info(
            "reconciliation_completed",
            extra={
                "session_id": str(session_id),
                "discrepancies_count": len(discrepancies),
                "total_lots": len(lines),
            },
        )
        return CompletedSession(
            session=session_to_view(row),
            discrepancies=discrepancies,
            movements=movements,
        )

    def cancel_session(
        self,
        session_id: UUID,
        *,
        agent_id: UUID = SYSTEM_ACTOR_ID,
    ) -> SessionView:
        """Discard the counts and close the session.  No lot is touched."""
        with LogContext.bind(session_id=str(session_id), actor_id=str(agent_id)):
            with self._unit_of_work("cancel_reconciliation", session_id=str(session_id)):
                row = self._lock_session(session_id)
                self._require_in_progress(row, CANCELLED)

                discarded = 0
                for line in self._lines(row.id):
                    if line.physical_quantity is not None:
                        discarded += 1
                    line.physical_quantity = None
                    line.counted_at = None
                    line.counted_by_id = None
                row.status = SessionStatus.CANCELLED.value
                row.cancelled_at = self._clock.now()
                self._session.flush()
                self._auditor.record_reconciliation_cancelled(row.id, discarded, agent_id)

        logger.info(
            "reconciliation_cancelled",
            extra={"session_id": str(session_id), "discarded_counts": discarded},
        )
        return session_to_view(row)

    # =========================================================================
    # Reads
    # =========================================================================

    def get_session(self, session_id: UUID) -> SessionView:
        return session_to_view(self._get(session_id))

    def list_sessions(
        self,
        tenant_id: str = DEFAULT_TENANT_ID,
        *,
        status: SessionStatus | str | None = None,
    ) -> list[SessionView]:
        stmt = select(ReconciliationSession).where(ReconciliationSession.tenant_id == tenant_id)
        if status is not None:
            stmt = stmt.where(ReconciliationSession.status == SessionStatus(status).value)
        rows = self._session.execute(
            stmt.order_by(ReconciliationSession.started_at, ReconciliationSession.id)
        ).scalars().all()
        return [session_to_view(r) for r in rows]

    def session_lines(self, session_id: UUID) -> list[CountLine]:
        return [line_to_count(line) for line in self._lines(self._get(session_id).id)]

    def compute_discrepancies(self, session_id: UUID) -> tuple[Discrepancy, ...]:
        """Discrepancies of the counted lots against the snapshot, in line order."""
        return compute_discrepancies(self.session_lines(session_id))

    def reconciliation_summary(self, session_id: UUID) -> ReconciliationSummary:
        return summarize(self.session_lines(session_id))

    # =========================================================================
    # Helpers
    # =========================================================================

    def _get(self, session_id: UUID) -> ReconciliationSession:
        row = self._session.get(ReconciliationSession, session_id)
        if row is None:
            raise SessionNotFoundError(str(session_id))
        return row

    def _lock_session(self, session_id: UUID) -> ReconciliationSession:
        row = self._session.execute(
            select(ReconciliationSession)
            .where(ReconciliationSession.id == session_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if row is None:
            raise SessionNotFoundError(str(session_id))
        return row

    def _lines(self, session_id: UUID) -> list[ReconciliationLine]:
        return list(
            self._session.execute(
                select(ReconciliationLine)
                .where(ReconciliationLine.session_id == session_id)
                .order_by(ReconciliationLine.position)
            ).scalars().all()
        )

    def _require_in_progress(self, row: ReconciliationSession, target: str) -> None:
        current = row.status
        if current == SessionStatus.IN_PROGRESS.value and (
            target == SessionStatus.IN_PROGRESS.value or can_transition(current, target)
        ):
            return
        logger.warning(
            "reconciliation_transition_rejected",
            extra={"session_id": str(row.id), "from_status": current, "to_status": target},
        )
        raise InvalidTransitionError("ReconciliationSession", str(row.id), current, target)
