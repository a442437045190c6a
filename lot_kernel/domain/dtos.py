"""
Read DTOs returned by the lot kernel's stores and selectors.

Every query operation hands back these frozen value objects rather than ORM
rows, so presentation layers and pure engines never hold a live session
object.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID


@dataclass(frozen=True, slots=True)
class LotView:
    """Snapshot of one lot with its effective (lazily evaluated) status."""

    id: UUID
    tenant_id: str
    product_id: str
    lot_number: str
    initial_quantity: Decimal
    remaining_quantity: Decimal
    reception_date: date
    status: str
    manufacture_date: date | None = None
    expiration_date: date | None = None
    unit_purchase_price: Decimal | None = None
    unit_sale_price: Decimal | None = None
    storage_location: str | None = None
    supplier_id: str | None = None
    received_at: datetime | None = None

    @property
    def usage_percentage(self) -> Decimal:
        """Share of the initial quantity already consumed, 0-100."""
        if self.initial_quantity == 0:
            return Decimal(0)
        return (self.initial_quantity - self.remaining_quantity) / self.initial_quantity * 100

    def days_to_expiration(self, today: date) -> int | None:
        if self.expiration_date is None:
            return None
        return (self.expiration_date - today).days

    def days_in_stock(self, today: date) -> int:
        return max((today - self.reception_date).days, 0)


@dataclass(frozen=True, slots=True)
class MovementView:
    """One ledger row."""

    id: UUID
    lot_id: UUID
    product_id: str
    movement_type: str
    signed_quantity: Decimal
    occurred_at: datetime
    ledger_seq: int
    acting_agent_id: UUID | None = None
    reference_type: str | None = None
    reference_id: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    is_opening: bool = False


@dataclass(frozen=True, slots=True)
class TimeRange:
    """Half-open interval [start, end) over ``occurred_at``; either bound may be open."""

    start: datetime | None = None
    end: datetime | None = None

    def __post_init__(self) -> None:
        if self.start is not None and self.end is not None and self.end < self.start:
            raise ValueError(f"TimeRange end {self.end} precedes start {self.start}")


@dataclass(frozen=True, slots=True)
class MovementCheck:
    """Result of a read-only movement validation (no ledger effect)."""

    is_valid: bool
    available_quantity: Decimal
    resulting_quantity: Decimal
    message: str | None = None


class MovementTrend(str, Enum):
    INCREASING = "increasing"
    DECREASING = "decreasing"
    STABLE = "stable"


@dataclass(frozen=True, slots=True)
class MovementSummary:
    """
    Per-type aggregates over a lot's (or a product's) movements.

    Quantities are absolute volumes; counts are numbers of movements.
    ``net_movement`` excludes opening movements so it reflects activity
    after receipt.
    """

    total_entries: Decimal
    total_exits: Decimal
    total_destructions: Decimal
    total_returns: Decimal
    adjustments_count: int
    transfers_count: int
    returns_count: int
    destructions_count: int
    net_movement: Decimal
    trend: MovementTrend
    movement_count: int


@dataclass(frozen=True, slots=True)
class InvariantCheck:
    """Comparison between a lot's cached remaining quantity and its ledger sum."""

    lot_id: UUID
    cached_remaining: Decimal
    ledger_sum: Decimal
    initial_quantity: Decimal

    @property
    def holds(self) -> bool:
        return (
            self.cached_remaining == self.ledger_sum
            and Decimal(0) <= self.cached_remaining <= self.initial_quantity
        )
