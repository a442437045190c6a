"""
Module: lot_engines.optimization
Responsibility:
    Rule-driven optimisation suggestions over a snapshot of lots: promotions
    for lots nearing expiration, FIFO corrections, stock rebalancing or
    reorders for nearly empty lots, promotions for slow movers.

Architecture position:
    Engines -- pure calculation layer, zero I/O.

Invariants enforced:
    - Suggestions never mutate anything; applying one is a separate
      operator action.
    - Each active rule contributes independently; inactive rules contribute
      nothing.
    - Output is sorted by suggestion priority (high first), then rule
      priority, then lot number.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

from lot_kernel.domain.dtos import LotView
from lot_engines.analytics import RotationClass, classify_rotation, rotation_rate
from lot_engines.tracer import traced_engine

EXPIRATION_OPTIMIZATION = "expiration_optimization"
FIFO_COMPLIANCE = "fifo_compliance"
STOCK_BALANCING = "stock_balancing"
VALUE_OPTIMIZATION = "value_optimization"


class SuggestionType(str, Enum):
    PROMOTION = "promotion"
    REORDER = "reorder"
    TRANSFER = "transfer"
    ADJUSTMENT = "adjustment"


class SuggestionPriority(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


_PRIORITY_RANK = {
    SuggestionPriority.HIGH: 0,
    SuggestionPriority.MEDIUM: 1,
    SuggestionPriority.LOW: 2,
}


@dataclass(frozen=True)
class OptimizationRule:
    """A named rule with its activation flag, ordering priority and parameters."""

    name: str
    is_active: bool = True
    priority: int = 1
    parameters: Mapping[str, Any] = field(default_factory=dict)

    def param(self, key: str, default: Any) -> Any:
        return self.parameters.get(key, default)


@dataclass(frozen=True)
class Suggestion:
    lot_id: UUID
    product_id: str
    lot_number: str
    suggestion_type: SuggestionType
    priority: SuggestionPriority
    rule_name: str
    rule_priority: int
    expected_benefit: Decimal
    message: str
    details: Mapping[str, Any] = field(default_factory=dict)


def _remaining_ratio(lot: LotView) -> Decimal:
    if lot.initial_quantity <= 0:
        return Decimal(0)
    return lot.remaining_quantity / lot.initial_quantity * 100


def _unit_value(lot: LotView) -> Decimal:
    return lot.unit_sale_price or lot.unit_purchase_price or Decimal(0)


def _expiration_rule(rule: OptimizationRule, lots: Sequence[LotView], today: date) -> list[Suggestion]:
    high_days = int(rule.param("high_days", 7))
    medium_days = int(rule.param("medium_days", 15))
    low_days = int(rule.param("low_days", 30))
    discounts = rule.param("discounts", {"high": 20, "medium": 15, "low": 10})

    suggestions = []
    for lot in lots:
        days = lot.days_to_expiration(today)
        if lot.remaining_quantity <= 0 or days is None or days < 0 or days > low_days:
            continue
        if days <= high_days:
            priority = SuggestionPriority.HIGH
        elif days <= medium_days:
            priority = SuggestionPriority.MEDIUM
        else:
            priority = SuggestionPriority.LOW
        discount = Decimal(str(discounts[priority.value]))
        suggestions.append(
            Suggestion(
                lot_id=lot.id,
                product_id=lot.product_id,
                lot_number=lot.lot_number,
                suggestion_type=SuggestionType.PROMOTION,
                priority=priority,
                rule_name=rule.name,
                rule_priority=rule.priority,
                expected_benefit=lot.remaining_quantity * _unit_value(lot),
                message=f"Promote lot {lot.lot_number}: {days} days to expiration, {discount}% discount",
                details={"days_remaining": days, "discount_percent": discount},
            )
        )
    return suggestions


def _fifo_rule(
    rule: OptimizationRule,
    lots: Sequence[LotView],
    fifo_expected: Mapping[str, UUID | None],
) -> list[Suggestion]:
    by_id = {lot.id: lot for lot in lots}
    suggestions = []
    for product_id in sorted(fifo_expected):
        expected_id = fifo_expected[product_id]
        expected = by_id.get(expected_id) if expected_id is not None else None
        in_stock = [c for c in lots if c.product_id == product_id and c.remaining_quantity > 0]
        if expected is None or not in_stock:
            continue
        oldest = min(in_stock, key=lambda c: (c.reception_date, c.lot_number, str(c.id)))
        if oldest.id == expected.id:
            continue
        suggestions.append(
            Suggestion(
                lot_id=expected.id,
                product_id=product_id,
                lot_number=expected.lot_number,
                suggestion_type=SuggestionType.ADJUSTMENT,
                priority=SuggestionPriority.MEDIUM,
                rule_name=rule.name,
                rule_priority=rule.priority,
                expected_benefit=expected.remaining_quantity * (expected.unit_purchase_price or Decimal(0)),
                message=(
                    f"Sell lot {expected.lot_number} before {oldest.lot_number}: "
                    "the FIFO rule places it first"
                ),
                details={"oldest_lot_id": str(oldest.id)},
            )
        )
    return suggestions


def _balancing_rule(rule: OptimizationRule, lots: Sequence[LotView]) -> list[Suggestion]:
    low_pct = Decimal(str(rule.param("low_stock_percent", 10)))
    sibling_pct = Decimal(str(rule.param("sibling_min_percent", 50)))

    suggestions = []
    for lot in lots:
        if lot.remaining_quantity <= 0 or _remaining_ratio(lot) > low_pct:
            continue
        siblings = [
            other for other in lots
            if other.product_id == lot.product_id
            and other.id != lot.id
            and other.storage_location != lot.storage_location
            and _remaining_ratio(other) > sibling_pct
        ]
        if siblings:
            source = max(siblings, key=lambda s: (s.remaining_quantity, s.lot_number))
            quantity = min(
                source.remaining_quantity - source.initial_quantity * sibling_pct / 100,
                lot.initial_quantity - lot.remaining_quantity,
            )
            suggestions.append(
                Suggestion(
                    lot_id=lot.id,
                    product_id=lot.product_id,
                    lot_number=lot.lot_number,
                    suggestion_type=SuggestionType.TRANSFER,
                    priority=SuggestionPriority.MEDIUM,
                    rule_name=rule.name,
                    rule_priority=rule.priority,
                    expected_benefit=quantity * _unit_value(lot),
                    message=(
                        f"Transfer {quantity} from lot {source.lot_number} "
                        f"({source.storage_location}) to {lot.storage_location}"
                    ),
                    details={"source_lot_id": str(source.id), "quantity": quantity},
                )
            )
        else:
            suggestions.append(
                Suggestion(
                    lot_id=lot.id,
                    product_id=lot.product_id,
                    lot_number=lot.lot_number,
                    suggestion_type=SuggestionType.REORDER,
                    priority=SuggestionPriority.HIGH,
                    rule_name=rule.name,
                    rule_priority=rule.priority,
                    expected_benefit=Decimal(0),
                    message=f"Reorder product {lot.product_id}: lot {lot.lot_number} is nearly empty",
                    details={"suggested_quantity": lot.initial_quantity},
                )
            )
    return suggestions


def _value_rule(rule: OptimizationRule, lots: Sequence[LotView], today: date) -> list[Suggestion]:
    min_days = int(rule.param("min_days_in_stock", 30))
    discount = Decimal(str(rule.param("discount_percent", 5)))
    suggestions = []
    for lot in lots:
        days = lot.days_in_stock(today)
        if lot.remaining_quantity <= 0 or days < min_days:
            continue
        rate = rotation_rate(lot.initial_quantity, lot.remaining_quantity, days)
        if classify_rotation(rate) is not RotationClass.SLOW:
            continue
        suggestions.append(
            Suggestion(
                lot_id=lot.id,
                product_id=lot.product_id,
                lot_number=lot.lot_number,
                suggestion_type=SuggestionType.PROMOTION,
                priority=SuggestionPriority.LOW,
                rule_name=rule.name,
                rule_priority=rule.priority,
                expected_benefit=lot.remaining_quantity * _unit_value(lot) * discount / 100,
                message=f"Slow mover: lot {lot.lot_number} rotates {rate:.2f} times a year",
                details={"rotation_rate": rate, "discount_percent": discount},
            )
        )
    return suggestions


@traced_engine("optimization", "1.0", fingerprint_fields=("today",))
def suggest_optimizations(
    lots: Sequence[LotView],
    rules: Sequence[OptimizationRule],
    *,
    today: date,
    fifo_expected: Mapping[str, UUID | None] | None = None,
) -> list[Suggestion]:
    """
    Run every active rule over the lots.

    ``fifo_expected`` maps product id to the lot the FIFO resolver would
    sell next; the FIFO compliance rule is skipped without it.
    """
    suggestions: list[Suggestion] = []
    for rule in rules:
        if not rule.is_active:
            continue
        if rule.name == EXPIRATION_OPTIMIZATION:
            suggestions.extend(_expiration_rule(rule, lots, today))
        elif rule.name == FIFO_COMPLIANCE:
            suggestions.extend(_fifo_rule(rule, lots, fifo_expected or {}))
        elif rule.name == STOCK_BALANCING:
            suggestions.extend(_balancing_rule(rule, lots))
        elif rule.name == VALUE_OPTIMIZATION:
            suggestions.extend(_value_rule(rule, lots, today))
        else:
            raise ValueError(f"Unknown optimization rule: {rule.name}")

    return sorted(
        suggestions,
        key=lambda s: (_PRIORITY_RANK[s.priority], s.rule_priority, s.lot_number, str(s.lot_id)),
    )
