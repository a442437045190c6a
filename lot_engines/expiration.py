"""
Module: lot_engines.expiration
Responsibility:
    Expiration risk classification: urgency level from day thresholds,
    estimated loss from the consumption rate, the action set recommended
    for each urgency, and the change test that decides whether a closed
    alert may be raised again.

Architecture position:
    Engines -- pure calculation layer, zero I/O.

Invariants enforced:
    - Threshold boundaries are inclusive: a lot with exactly
      ``critical_days`` left is critique, exactly ``alert_days`` is eleve,
      exactly ``warning_days`` is moyen.
    - Already expired lots (negative days) are always critique.
    - Lots without an expiration date are faible with no loss.

Failure modes:
    - ValueError when thresholds are not ordered
      critical_days <= alert_days <= warning_days.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from datetime import date
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Protocol
from uuid import UUID

from lot_kernel.domain.dtos import LotView
from lot_engines.tracer import traced_engine

_CENTS = Decimal("0.01")


class UrgencyLevel(str, Enum):
    """Discrete expiration risk, most urgent first."""

    CRITIQUE = "critique"
    ELEVE = "eleve"
    MOYEN = "moyen"
    FAIBLE = "faible"

    @property
    def rank(self) -> int:
        return _URGENCY_RANK[self]


_URGENCY_RANK = {
    UrgencyLevel.CRITIQUE: 0,
    UrgencyLevel.ELEVE: 1,
    UrgencyLevel.MOYEN: 2,
    UrgencyLevel.FAIBLE: 3,
}


class AlertType(str, Enum):
    EXPIRED = "expired"
    CRITICAL = "critical"
    NEAR_EXPIRY = "near_expiry"


RECOMMENDED_ACTIONS: dict[UrgencyLevel, tuple[str, ...]] = {
    UrgencyLevel.CRITIQUE: (
        "immediate_discount",
        "fifo_override_review",
        "supplier_return_request",
    ),
    UrgencyLevel.ELEVE: ("priority_sale", "promotion", "reduce_reorders"),
    UrgencyLevel.MOYEN: ("enhanced_monitoring", "preventive_promotion"),
    UrgencyLevel.FAIBLE: ("monitor",),
}


@dataclass(frozen=True)
class AlertThresholds:
    """Day thresholds (seuil critique / alerte / avertissement)."""

    critical_days: int = 7
    alert_days: int = 30
    warning_days: int = 60

    def __post_init__(self) -> None:
        if self.critical_days < 0:
            raise ValueError(f"critical_days cannot be negative: {self.critical_days}")
        if not self.critical_days <= self.alert_days <= self.warning_days:
            raise ValueError(
                "thresholds must satisfy critical_days <= alert_days <= warning_days, got "
                f"{self.critical_days}/{self.alert_days}/{self.warning_days}"
            )


def resolve_thresholds(*candidates: AlertThresholds | None) -> AlertThresholds:
    """First non-None candidate (most specific first); defaults if all are None."""
    for candidate in candidates:
        if candidate is not None:
            return candidate
    return AlertThresholds()


def classify_urgency(days_remaining: int | None, thresholds: AlertThresholds) -> UrgencyLevel:
    if days_remaining is None:
        return UrgencyLevel.FAIBLE
    if days_remaining <= thresholds.critical_days:
        return UrgencyLevel.CRITIQUE
    if days_remaining <= thresholds.alert_days:
        return UrgencyLevel.ELEVE
    if days_remaining <= thresholds.warning_days:
        return UrgencyLevel.MOYEN
    return UrgencyLevel.FAIBLE


def alert_type_for(days_remaining: int | None, urgency: UrgencyLevel) -> AlertType:
    if days_remaining is not None and days_remaining < 0:
        return AlertType.EXPIRED
    if urgency is UrgencyLevel.CRITIQUE:
        return AlertType.CRITICAL
    return AlertType.NEAR_EXPIRY


def sellout_days(remaining_quantity: Decimal, average_daily_consumption: Decimal) -> Decimal | None:
    """Days needed to sell the remaining stock; None when nothing sells."""
    if average_daily_consumption <= 0:
        return None
    return remaining_quantity / average_daily_consumption


@dataclass(frozen=True)
class RiskAssessment:
    """
    Expiration risk of one lot on one day.

    Contract:
        Pure output of ``assess_risk``; ``recommended_actions`` is the fixed
        action set of ``urgency_level``.
    """

    lot_id: UUID
    product_id: str
    urgency_level: UrgencyLevel
    alert_type: AlertType
    days_remaining: int | None
    concerned_quantity: Decimal
    estimated_loss: Decimal
    recommended_actions: tuple[str, ...] = field(default_factory=tuple)
    sellout_days: Decimal | None = None

    @property
    def recommended_action(self) -> str:
        return self.recommended_actions[0]


@traced_engine("expiration_risk", "1.0", fingerprint_fields=("today", "average_daily_consumption"))
def assess_risk(
    lot: LotView,
    *,
    today: date,
    average_daily_consumption: Decimal,
    unit_value: Decimal | None,
    thresholds: AlertThresholds,
) -> RiskAssessment:
    """
    Classify one lot.

    ``estimated_loss`` is remaining x unit value when the lot is expired
    (days <= 0) or cannot sell through before expiring at the given daily
    consumption (a rate <= 0 never sells through); otherwise 0.
    ``unit_value`` falls back to the lot's purchase price, then 0.
    """
    days = lot.days_to_expiration(today)
    urgency = classify_urgency(days, thresholds)
    remaining = lot.remaining_quantity
    value = unit_value if unit_value is not None else (lot.unit_purchase_price or Decimal(0))
    sellout = sellout_days(remaining, average_daily_consumption)

    at_risk = False
    if days is not None and remaining > 0:
        if days <= 0:
            at_risk = True
        elif sellout is None or sellout > days:
            at_risk = True

    loss = (remaining * value).quantize(_CENTS, rounding=ROUND_HALF_UP) if at_risk else Decimal("0.00")

    return RiskAssessment(
        lot_id=lot.id,
        product_id=lot.product_id,
        urgency_level=urgency,
        alert_type=alert_type_for(days, urgency),
        days_remaining=days,
        concerned_quantity=remaining,
        estimated_loss=loss,
        recommended_actions=RECOMMENDED_ACTIONS[urgency],
        sellout_days=sellout,
    )


def materially_changed(
    snapshot_remaining: Decimal | None,
    snapshot_expiration: date | None,
    remaining_quantity: Decimal,
    expiration_date: date | None,
) -> bool:
    """True when the lot differs from what a previous alert was raised on."""
    if snapshot_remaining is None or snapshot_remaining != remaining_quantity:
        return True
    return snapshot_expiration != expiration_date


# ---------------------------------------------------------------------------
# Statistics over stored alerts
# ---------------------------------------------------------------------------


class _AlertLike(Protocol):
    urgency_level: str
    concerned_quantity: Decimal
    estimated_loss: Decimal


@dataclass(frozen=True)
class AlertStatistics:
    total: int
    count_by_urgency: dict[str, int]
    quantity_by_urgency: dict[str, Decimal]
    total_estimated_loss: Decimal


def summarize_alerts(alerts: Iterable[_AlertLike]) -> AlertStatistics:
    counts = {level.value: 0 for level in UrgencyLevel}
    quantities = {level.value: Decimal(0) for level in UrgencyLevel}
    loss = Decimal(0)
    total = 0
    for alert in alerts:
        total += 1
        counts[alert.urgency_level] += 1
        quantities[alert.urgency_level] += alert.concerned_quantity
        loss += alert.estimated_loss
    return AlertStatistics(
        total=total,
        count_by_urgency=counts,
        quantity_by_urgency=quantities,
        total_estimated_loss=loss,
    )


def sort_by_urgency(assessments: Sequence[RiskAssessment]) -> list[RiskAssessment]:
    """Most urgent first, then fewest days left."""
    return sorted(
        assessments,
        key=lambda a: (
            a.urgency_level.rank,
            a.days_remaining if a.days_remaining is not None else 10**9,
            str(a.lot_id),
        ),
    )
