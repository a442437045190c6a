"""
Module: lot_engines.analytics
Responsibility:
    Derived lot metrics shared by every consumer: usage percentage,
    rotation rate and class, performance score, sale priority, stockout
    prediction, carrying cost.

Architecture position:
    Engines -- pure calculation layer, zero I/O.

Invariants enforced:
    - Purity: "today" is always a parameter.
    - Decimal arithmetic throughout; divisions by zero are guarded and
      documented per function.
"""

from __future__ import annotations

import math
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import date, timedelta
from decimal import Decimal
from enum import Enum

_DAYS_PER_YEAR = Decimal(365)
_HUNDRED = Decimal(100)


# ---------------------------------------------------------------------------
# Usage
# ---------------------------------------------------------------------------


class UsageStatus(str, Enum):
    NORMAL = "normal"
    WARNING = "warning"
    CRITICAL = "critical"


def usage_percentage(initial_quantity: Decimal, remaining_quantity: Decimal) -> Decimal:
    """Consumed share of the lot, 0-100; 0 for an empty initial quantity."""
    if initial_quantity <= 0:
        return Decimal(0)
    return (initial_quantity - remaining_quantity) / initial_quantity * _HUNDRED


def usage_status(percentage: Decimal) -> UsageStatus:
    if percentage >= 90:
        return UsageStatus.CRITICAL
    if percentage >= 70:
        return UsageStatus.WARNING
    return UsageStatus.NORMAL


# ---------------------------------------------------------------------------
# Rotation and performance
# ---------------------------------------------------------------------------


class RotationClass(str, Enum):
    FAST = "fast"
    MEDIUM = "medium"
    SLOW = "slow"


def rotation_rate(
    initial_quantity: Decimal,
    remaining_quantity: Decimal,
    days_in_stock: int,
) -> Decimal:
    """
    Annualised turnover: consumed share x 365 / days in stock.

    Lots received today count as one day in stock.
    """
    if initial_quantity <= 0:
        return Decimal(0)
    consumed_share = (initial_quantity - remaining_quantity) / initial_quantity
    return consumed_share * _DAYS_PER_YEAR / Decimal(max(days_in_stock, 1))


def classify_rotation(
    rate: Decimal,
    fast_threshold: Decimal = Decimal(12),
    medium_threshold: Decimal = Decimal(6),
) -> RotationClass:
    if rate >= fast_threshold:
        return RotationClass.FAST
    if rate >= medium_threshold:
        return RotationClass.MEDIUM
    return RotationClass.SLOW


class PerformanceClass(str, Enum):
    EXCELLENT = "excellent"
    GOOD = "good"
    AVERAGE = "average"
    POOR = "poor"


@dataclass(frozen=True)
class LotPerformance:
    score: Decimal
    classification: PerformanceClass
    rotation_rate: Decimal
    usage_percentage: Decimal


def lot_performance(
    initial_quantity: Decimal,
    remaining_quantity: Decimal,
    days_in_stock: int,
    target_rotation: Decimal = Decimal(6),
) -> LotPerformance:
    """score = usage% x 0.3 + min(rotation / target, 1) x 70, on a 0-100 scale."""
    usage = usage_percentage(initial_quantity, remaining_quantity)
    rate = rotation_rate(initial_quantity, remaining_quantity, days_in_stock)
    rotation_component = min(rate / target_rotation, Decimal(1)) if target_rotation > 0 else Decimal(1)
    score = usage * Decimal("0.3") + rotation_component * 70

    if score >= 80:
        classification = PerformanceClass.EXCELLENT
    elif score >= 60:
        classification = PerformanceClass.GOOD
    elif score >= 40:
        classification = PerformanceClass.AVERAGE
    else:
        classification = PerformanceClass.POOR

    return LotPerformance(
        score=score,
        classification=classification,
        rotation_rate=rate,
        usage_percentage=usage,
    )


# ---------------------------------------------------------------------------
# Sale priority
# ---------------------------------------------------------------------------


class PriorityLabel(str, Enum):
    NORMAL = "normal"
    WARNING = "warning"
    CRITICAL = "critical"


@dataclass(frozen=True)
class SalePriority:
    score: int
    label: PriorityLabel
    expiration_factor: int
    fifo_factor: int
    coverage_factor: int


def _expiration_factor(days_remaining: int | None) -> int:
    if days_remaining is None:
        return 5
    if days_remaining <= 0:
        return 40
    if days_remaining <= 7:
        return 35
    if days_remaining <= 30:
        return 25
    if days_remaining <= 90:
        return 15
    return 5


def _coverage_factor(
    days_remaining: int | None,
    remaining_quantity: Decimal,
    daily_consumption: Decimal,
) -> int:
    if days_remaining is None:
        return 10
    if daily_consumption > 0:
        sellout = remaining_quantity / daily_consumption
    else:
        sellout = Decimal("Infinity")
    if days_remaining > 0 and sellout > days_remaining:
        return 30
    if sellout > Decimal(days_remaining) * Decimal("0.8"):
        return 20
    return 10


def sale_priority_score(
    days_remaining: int | None,
    remaining_quantity: Decimal,
    daily_consumption: Decimal,
    fifo_position: int,
) -> SalePriority:
    """
    Composite 0-100 priority: expiration factor (0-40), FIFO position factor
    (30 for the first lot, 5 less per position) and coverage factor (30 when
    stock outlasts the expiration, 20 when it nearly does, else 10).
    """
    expiration = _expiration_factor(days_remaining)
    fifo = max(0, 30 - 5 * fifo_position)
    coverage = _coverage_factor(days_remaining, remaining_quantity, daily_consumption)
    score = min(expiration + fifo + coverage, 100)

    if score >= 80:
        label = PriorityLabel.CRITICAL
    elif score >= 60:
        label = PriorityLabel.WARNING
    else:
        label = PriorityLabel.NORMAL

    return SalePriority(
        score=score,
        label=label,
        expiration_factor=expiration,
        fifo_factor=fifo,
        coverage_factor=coverage,
    )


# ---------------------------------------------------------------------------
# Stock projections and value
# ---------------------------------------------------------------------------


def predicted_stockout_date(
    remaining_quantity: Decimal,
    daily_consumption: Decimal,
    today: date,
    variation_coefficient: Decimal = Decimal(0),
) -> date | None:
    """
    today + floor(remaining / (daily x (1 + variation))), or None when
    nothing is consumed.
    """
    if daily_consumption <= 0:
        return None
    effective_rate = daily_consumption * (1 + variation_coefficient)
    if effective_rate <= 0:
        return None
    days = math.floor(remaining_quantity / effective_rate)
    return today + timedelta(days=days)


def carrying_cost(stock_value: Decimal, annual_rate: Decimal, days_in_stock: int) -> Decimal:
    """Holding cost: value x annual rate (fraction, 0.15 = 15 %) x days / 365."""
    return stock_value * annual_rate * Decimal(days_in_stock) / _DAYS_PER_YEAR


def stock_value(quantity: Decimal, unit_cost: Decimal | None) -> Decimal:
    if unit_cost is None:
        return Decimal(0)
    return quantity * unit_cost


def average_stay_days(reception_dates: Sequence[date], today: date) -> Decimal:
    """Mean days in stock; 0 for no lots."""
    if not reception_dates:
        return Decimal(0)
    total = sum(max((today - received).days, 0) for received in reception_dates)
    return Decimal(total) / Decimal(len(reception_dates))


def fifo_deviation_days(selected_reception: date, oldest_reception: date, tolerance_days: int) -> int:
    """Days by which a selection overshoots the oldest lot beyond the tolerance window."""
    return max(0, (selected_reception - oldest_reception).days - tolerance_days)
