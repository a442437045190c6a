"""
Module: lot_engines.fifo
Responsibility:
    FIFO rule precedence and depletion ordering.  Decides which configured
    rule governs a product and in which order its lots should be sold.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import lot_kernel.domain.

Invariants enforced:
    - Purity: "today" is always a parameter.
    - Determinism: every ordering ends on (lot_number, id) so two calls with
      the same inputs return the same sequence.
    - Rule precedence is strict: product scope > family scope > global.

Failure modes:
    - ValueError when tolerance_days is negative.

Usage:
    from lot_engines.fifo import order_lots, select_next_lot

    next_lot = select_next_lot(
        lots, today=date(2024, 3, 1), tolerance_days=7,
        ignore_expired_lots=True, price_priority=False,
    )
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from uuid import UUID

from lot_kernel.domain.dtos import LotView
from lot_engines.tracer import traced_engine

# ---------------------------------------------------------------------------
# Configuration scope and fully resolved rule
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ProductScope:
    product_id: str

    level = 0

    @property
    def label(self) -> str:
        return f"product:{self.product_id}"


@dataclass(frozen=True)
class FamilyScope:
    family_id: str

    level = 1

    @property
    def label(self) -> str:
        return f"family:{self.family_id}"


@dataclass(frozen=True)
class GlobalScope:
    level = 2

    @property
    def label(self) -> str:
        return "global"


ConfigScope = ProductScope | FamilyScope | GlobalScope


def scope_from_ids(product_id: str | None, family_id: str | None) -> ConfigScope:
    """Build a scope from the two nullable columns; both set is a caller error."""
    if product_id is not None and family_id is not None:
        raise ValueError("a configuration targets a product or a family, not both")
    if product_id is not None:
        return ProductScope(product_id)
    if family_id is not None:
        return FamilyScope(family_id)
    return GlobalScope()


@dataclass(frozen=True)
class FIFORule:
    """
    One FIFO configuration with every default already applied.

    Contract:
        Frozen value object; business logic never looks up optional fields.
    Guarantees:
        - tolerance_days >= 0 and alert_threshold_days >= 0.
    """

    scope: ConfigScope
    priority: int = 1
    tolerance_days: int = 7
    alert_threshold_days: int = 30
    ignore_expired_lots: bool = True
    price_priority: bool = False
    auto_action: bool = False
    is_active: bool = True
    creation_seq: int = 0
    config_id: UUID | None = None

    def __post_init__(self) -> None:
        if self.tolerance_days < 0:
            raise ValueError(f"tolerance_days cannot be negative: {self.tolerance_days}")
        if self.alert_threshold_days < 0:
            raise ValueError(
                f"alert_threshold_days cannot be negative: {self.alert_threshold_days}"
            )

    def applies_to(self, product_id: str, family_id: str | None) -> bool:
        if isinstance(self.scope, ProductScope):
            return self.scope.product_id == product_id
        if isinstance(self.scope, FamilyScope):
            return family_id is not None and self.scope.family_id == family_id
        return True


def _precedence_key(rule: FIFORule) -> tuple:
    # Lowest key wins: narrowest scope, highest priority, latest creation.
    return (rule.scope.level, -rule.priority, -rule.creation_seq, str(rule.config_id))


@traced_engine("fifo_resolve", "1.0", fingerprint_fields=("product_id", "family_id"))
def resolve_rule(
    rules: Sequence[FIFORule],
    *,
    product_id: str,
    family_id: str | None,
) -> FIFORule | None:
    """
    Pick the single rule governing a product, or None when nothing applies.

    Inactive rules never apply.  Within a scope level the numerically
    highest priority wins; equal priorities go to the most recently
    created rule.
    """
    applicable = [r for r in rules if r.is_active and r.applies_to(product_id, family_id)]
    if not applicable:
        return None
    return min(applicable, key=_precedence_key)


# ---------------------------------------------------------------------------
# Lot ordering
# ---------------------------------------------------------------------------


def is_eligible(lot: LotView, today: date, ignore_expired_lots: bool) -> bool:
    """Stock on hand, and not past its expiration when expired lots are skipped."""
    if lot.remaining_quantity <= 0:
        return False
    if ignore_expired_lots and lot.expiration_date is not None and lot.expiration_date < today:
        return False
    return True


def _primary_key(lot: LotView, price_priority: bool) -> tuple:
    stable = (lot.lot_number, str(lot.id))
    if price_priority:
        price = lot.unit_purchase_price
        return (price is None, price or Decimal(0), lot.reception_date, *stable)
    return (lot.reception_date, *stable)


def _tie_break_key(lot: LotView) -> tuple:
    return (
        lot.expiration_date is None,
        lot.expiration_date or date.max,
        lot.remaining_quantity,
        lot.reception_date,
        lot.lot_number,
        str(lot.id),
    )


def _in_group(anchor: LotView, lot: LotView, tolerance_days: int, price_priority: bool) -> bool:
    if price_priority and lot.unit_purchase_price != anchor.unit_purchase_price:
        return False
    return abs((lot.reception_date - anchor.reception_date).days) <= tolerance_days


@traced_engine(
    "fifo_order", "1.0",
    fingerprint_fields=("today", "tolerance_days", "ignore_expired_lots", "price_priority"),
)
def order_lots(
    lots: Sequence[LotView],
    *,
    today: date,
    tolerance_days: int,
    ignore_expired_lots: bool,
    price_priority: bool,
) -> list[LotView]:
    """
    Eligible lots in depletion order.

    Candidates are sorted by reception date (by purchase price first when
    ``price_priority`` is set).  The earliest remaining candidate anchors a
    tied group holding every candidate received within ``tolerance_days``
    of it (same price too in price mode); a tied group is emitted by
    earliest expiration, then smallest remaining quantity.  The next group
    is anchored on the earliest candidate left over.
    """
    if tolerance_days < 0:
        raise ValueError(f"tolerance_days cannot be negative: {tolerance_days}")

    pending = sorted(
        (lot for lot in lots if is_eligible(lot, today, ignore_expired_lots)),
        key=lambda lot: _primary_key(lot, price_priority),
    )
    ordered: list[LotView] = []
    while pending:
        anchor = pending[0]
        group = [lot for lot in pending if _in_group(anchor, lot, tolerance_days, price_priority)]
        ordered.extend(sorted(group, key=_tie_break_key))
        grouped = {lot.id for lot in group}
        pending = [lot for lot in pending if lot.id not in grouped]
    return ordered


def select_next_lot(
    lots: Sequence[LotView],
    *,
    today: date,
    tolerance_days: int,
    ignore_expired_lots: bool,
    price_priority: bool,
) -> LotView | None:
    ordered = order_lots(
        lots,
        today=today,
        tolerance_days=tolerance_days,
        ignore_expired_lots=ignore_expired_lots,
        price_priority=price_priority,
    )
    return ordered[0] if ordered else None


@dataclass(frozen=True)
class FIFOComplianceResult:
    """
    Advisory verdict on selling a given lot.

    ``deviation_days`` is the reception-date distance between the sold lot
    and the expected one (positive when a newer lot is sold first).
    """

    compliant: bool
    sold_lot_id: UUID
    expected_lot_id: UUID | None
    deviation_days: int
    message: str


def check_compliance(sold: LotView, expected: LotView | None) -> FIFOComplianceResult:
    """Compare a lot about to be sold with the FIFO-expected lot.  Never blocks."""
    if expected is None:
        return FIFOComplianceResult(
            compliant=True,
            sold_lot_id=sold.id,
            expected_lot_id=None,
            deviation_days=0,
            message="No eligible lot to compare against",
        )
    if expected.id == sold.id:
        return FIFOComplianceResult(
            compliant=True,
            sold_lot_id=sold.id,
            expected_lot_id=expected.id,
            deviation_days=0,
            message="Lot follows FIFO order",
        )
    deviation = (sold.reception_date - expected.reception_date).days
    return FIFOComplianceResult(
        compliant=False,
        sold_lot_id=sold.id,
        expected_lot_id=expected.id,
        deviation_days=deviation,
        message=(
            f"FIFO suggests lot {expected.lot_number} before {sold.lot_number} "
            f"({deviation:+d} days of reception difference)"
        ),
    )
