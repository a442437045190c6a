"""
Module: lot_engines.reconciliation
Responsibility:
    Discrepancy derivation for physical inventory counts and the session
    state machine's transition table.

Architecture position:
    Engines -- pure calculation layer, zero I/O.

Invariants enforced:
    - Discrepancies are computed against the theoretical snapshot carried by
      each count line, never against live lot state.
    - Uncounted lines and lines with a zero delta produce no discrepancy.
    - ``missing`` wins over ``deficit`` when nothing was found.
    - Output order follows input order, so two calls on the same lines are
      equal.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from uuid import UUID

from lot_engines.tracer import traced_engine
from lot_kernel.logging_config import get_logger

logger = get_logger("engines.reconciliation")


class DiscrepancyStatus(str, Enum):
    SURPLUS = "surplus"
    DEFICIT = "deficit"
    MISSING = "missing"


IN_PROGRESS = "in_progress"
COMPLETED = "completed"
CANCELLED = "cancelled"

ALLOWED_TRANSITIONS: dict[str, frozenset[str]] = {
    IN_PROGRESS: frozenset({COMPLETED, CANCELLED}),
    COMPLETED: frozenset(),
    CANCELLED: frozenset(),
}


def can_transition(from_status: str, to_status: str) -> bool:
    return to_status in ALLOWED_TRANSITIONS.get(from_status, frozenset())


@dataclass(frozen=True, slots=True)
class CountLine:
    """One lot in a session: frozen theoretical quantity plus its latest count."""

    lot_id: UUID
    product_id: str
    theoretical_quantity: Decimal
    physical_quantity: Decimal | None
    unit_value: Decimal | None = None

    @property
    def is_counted(self) -> bool:
        return self.physical_quantity is not None


@dataclass(frozen=True, slots=True)
class Discrepancy:
    lot_id: UUID
    product_id: str
    theoretical_quantity: Decimal
    physical_quantity: Decimal
    delta: Decimal
    status: DiscrepancyStatus
    value_delta: Decimal


def classify_discrepancy(theoretical: Decimal, physical: Decimal) -> DiscrepancyStatus | None:
    delta = physical - theoretical
    if delta == 0:
        return None
    if physical == 0 and theoretical > 0:
        return DiscrepancyStatus.MISSING
    if delta > 0:
        return DiscrepancyStatus.SURPLUS
    return DiscrepancyStatus.DEFICIT


@traced_engine("reconciliation_discrepancies", "1.0")
def compute_discrepancies(lines: Sequence[CountLine]) -> tuple[Discrepancy, ...]:
    """Discrepancies of the counted lines, in line order."""
    result = []
    for line in lines:
        if not line.is_counted:
            continue
        status = classify_discrepancy(line.theoretical_quantity, line.physical_quantity)
        if status is None:
            continue
        delta = line.physical_quantity - line.theoretical_quantity
        result.append(
            Discrepancy(
                lot_id=line.lot_id,
                product_id=line.product_id,
                theoretical_quantity=line.theoretical_quantity,
                physical_quantity=line.physical_quantity,
                delta=delta,
                status=status,
                value_delta=delta * (line.unit_value or Decimal(0)),
            )
        )
    return tuple(result)


@dataclass(frozen=True)
class ReconciliationSummary:
    """
    Progress and quality of a count.

    ``precision_rate`` is the share (0-100) of counted lots whose count
    matched the snapshot exactly; 100 when nothing is counted yet.
    """

    total_lots: int
    counted_lots: int
    uncounted_lots: int
    discrepancies_count: int
    surplus_count: int
    deficit_count: int
    missing_count: int
    precision_rate: Decimal
    discrepancy_value: Decimal


def summarize(lines: Sequence[CountLine]) -> ReconciliationSummary:
    discrepancies = compute_discrepancies(lines)
    counted = sum(1 for line in lines if line.is_counted)
    by_status = {status: 0 for status in DiscrepancyStatus}
    for item in discrepancies:
        by_status[item.status] += 1

    if counted:
        precision = Decimal(counted - len(discrepancies)) / Decimal(counted) * 100
    else:
        precision = Decimal(100)

    summary = ReconciliationSummary(
        total_lots=len(lines),
        counted_lots=counted,
        uncounted_lots=len(lines) - counted,
        discrepancies_count=len(discrepancies),
        surplus_count=by_status[DiscrepancyStatus.SURPLUS],
        deficit_count=by_status[DiscrepancyStatus.DEFICIT],
        missing_count=by_status[DiscrepancyStatus.MISSING],
        precision_rate=precision,
        discrepancy_value=sum((d.value_delta for d in discrepancies), Decimal(0)),
    )
    logger.debug(
        "reconciliation_summarized",
        extra={
            "total_lots": summary.total_lots,
            "counted_lots": summary.counted_lots,
            "discrepancies_count": summary.discrepancies_count,
        },
    )
    return summary
