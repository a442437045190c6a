"""
Module: lot_kernel.selectors.movement_selector
Responsibility: Read-side queries over the movement ledger: ordered and
    restartable movement listings, per-type summaries, consumption rates and
    invariant verification.
Architecture position: Kernel > Selectors.

Invariants enforced:
    - Listings are ordered by (occurred_at, ledger_seq) ascending.
    - A MovementStream re-executes its query on every iteration; it is not a
      live cursor and holds no state between iterations.
"""

from __future__ import annotations

from collections.abc import Iterator
from datetime import date, datetime, time, timedelta, timezone
from decimal import Decimal
from uuid import UUID

from sqlalchemy import Select, func, select
from sqlalchemy.orm import Session

from lot_kernel.db.types import as_quantity
from lot_kernel.domain.constants import DEFAULT_TENANT_ID
from lot_kernel.domain.dtos import (
    InvariantCheck,
    MovementSummary,
    MovementTrend,
    MovementView,
    TimeRange,
)
from lot_kernel.exceptions import LotNotFoundError
from lot_kernel.models.lot import Lot
from lot_kernel.models.movement import LotMovement, MovementType
from lot_kernel.selectors.base import BaseSelector


def movement_to_view(row: LotMovement) -> MovementView:
    return MovementView(
        id=row.id,
        lot_id=row.lot_id,
        product_id=row.product_id,
        movement_type=row.movement_type,
        signed_quantity=as_quantity(row.signed_quantity),
        occurred_at=row.occurred_at,
        ledger_seq=row.ledger_seq,
        acting_agent_id=row.acting_agent_id,
        reference_type=row.reference_type,
        reference_id=row.reference_id,
        metadata=dict(row.details or {}),
        is_opening=row.is_opening,
    )


class MovementStream:
    """
    Lazy, restartable sequence of movements.

    Each ``iter()`` runs the query again and yields rows in batches, so a
    second pass sees movements committed after the first one.
    """

    _BATCH_SIZE = 500

    def __init__(self, session: Session, statement: Select):
        self._session = session
        self._statement = statement

    def __iter__(self) -> Iterator[MovementView]:
        result = self._session.execute(
            self._statement.execution_options(yield_per=self._BATCH_SIZE)
        )
        for row in result.scalars():
            yield movement_to_view(row)

    def to_list(self) -> list[MovementView]:
        return list(self)


def _summarize(views: list[MovementView]) -> MovementSummary:
    totals = {t: Decimal(0) for t in MovementType}
    counts = {t: 0 for t in MovementType}
    net = Decimal(0)
    for view in views:
        kind = MovementType(view.movement_type)
        totals[kind] += abs(view.signed_quantity)
        counts[kind] += 1
        if not view.is_opening:
            net += view.signed_quantity

    if net > 0:
        trend = MovementTrend.INCREASING
    elif net < 0:
        trend = MovementTrend.DECREASING
    else:
        trend = MovementTrend.STABLE

    return MovementSummary(
        total_entries=totals[MovementType.ENTRY],
        total_exits=totals[MovementType.EXIT],
        total_destructions=totals[MovementType.DESTRUCTION],
        total_returns=totals[MovementType.RETURN],
        adjustments_count=counts[MovementType.ADJUSTMENT],
        transfers_count=counts[MovementType.TRANSFER],
        returns_count=counts[MovementType.RETURN],
        destructions_count=counts[MovementType.DESTRUCTION],
        net_movement=net,
        trend=trend,
        movement_count=len(views),
    )


class MovementSelector(BaseSelector):
    """Read-only movement queries."""

    def _ordered(self) -> Select:
        return select(LotMovement).order_by(LotMovement.occurred_at, LotMovement.ledger_seq)

    def list_movements(self, lot_id: UUID, time_range: TimeRange | None = None) -> MovementStream:
        """
        Movements of one lot, oldest first.

        Raises:
            LotNotFoundError: If the lot does not exist (checked eagerly).
        """
        if self.session.get(Lot, lot_id) is None:
            raise LotNotFoundError(str(lot_id))
        stmt = self._ordered().where(LotMovement.lot_id == lot_id)
        if time_range is not None:
            if time_range.start is not None:
                stmt = stmt.where(LotMovement.occurred_at >= time_range.start)
            if time_range.end is not None:
                stmt = stmt.where(LotMovement.occurred_at < time_range.end)
        return MovementStream(self.session, stmt)

    def list_product_movements(
        self,
        product_id: str,
        time_range: TimeRange | None = None,
        tenant_id: str = DEFAULT_TENANT_ID,
    ) -> MovementStream:
        stmt = self._ordered().where(
            LotMovement.tenant_id == tenant_id,
            LotMovement.product_id == product_id,
        )
        if time_range is not None:
            if time_range.start is not None:
                stmt = stmt.where(LotMovement.occurred_at >= time_range.start)
            if time_range.end is not None:
                stmt = stmt.where(LotMovement.occurred_at < time_range.end)
        return MovementStream(self.session, stmt)

    def list_by_reference(self, reference_type: str, reference_id: str) -> list[MovementView]:
        return MovementStream(
            self.session,
            self._ordered().where(
                LotMovement.reference_type == reference_type,
                LotMovement.reference_id == reference_id,
            ),
        ).to_list()

    def movement_summary(
        self,
        *,
        lot_id: UUID | None = None,
        product_id: str | None = None,
        time_range: TimeRange | None = None,
        tenant_id: str = DEFAULT_TENANT_ID,
    ) -> MovementSummary:
        """Per-type totals for one lot or one product."""
        if (lot_id is None) == (product_id is None):
            raise ValueError("movement_summary needs exactly one of lot_id or product_id")
        if lot_id is not None:
            stream = self.list_movements(lot_id, time_range)
        else:
            stream = self.list_product_movements(product_id, time_range, tenant_id)
        return _summarize(stream.to_list())

    def average_daily_consumption(
        self,
        product_id: str,
        lookback_days: int,
        today: date | None = None,
        tenant_id: str = DEFAULT_TENANT_ID,
    ) -> Decimal:
        """
        Mean daily exit volume over the ``lookback_days`` days ending today
        (today included).  Zero when there were no exits.
        """
        if lookback_days <= 0:
            raise ValueError(f"lookback_days must be positive, got {lookback_days}")
        end_day = today or self.clock.today()
        start_day = end_day - timedelta(days=lookback_days - 1)
        window = TimeRange(
            start=datetime.combine(start_day, time.min, tzinfo=timezone.utc),
            end=datetime.combine(end_day + timedelta(days=1), time.min, tzinfo=timezone.utc),
        )
        exits = [
            m for m in self.list_product_movements(product_id, window, tenant_id)
            if m.movement_type == MovementType.EXIT.value
        ]
        volume = sum((-m.signed_quantity for m in exits), Decimal(0))
        return volume / Decimal(lookback_days)

    def ledger_sum(self, lot_id: UUID) -> Decimal:
        total = self.session.execute(
            select(func.coalesce(func.sum(LotMovement.signed_quantity), 0))
            .where(LotMovement.lot_id == lot_id)
        ).scalar_one()
        return as_quantity(total)

    def verify_lot_invariant(self, lot_id: UUID) -> InvariantCheck:
        lot = self.session.get(Lot, lot_id)
        if lot is None:
            raise LotNotFoundError(str(lot_id))
        return InvariantCheck(
            lot_id=lot.id,
            cached_remaining=as_quantity(lot.remaining_quantity),
            ledger_sum=self.ledger_sum(lot.id),
            initial_quantity=as_quantity(lot.initial_quantity),
        )

    def verify_all(self, tenant_id: str = DEFAULT_TENANT_ID) -> list[InvariantCheck]:
        """Invariant check for every lot of the tenant."""
        lot_ids = self.session.execute(
            select(Lot.id).where(Lot.tenant_id == tenant_id).order_by(Lot.id)
        ).scalars().all()
        return [self.verify_lot_invariant(lot_id) for lot_id in lot_ids]
