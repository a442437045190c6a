"""
Module: lot_services.optimization_service
Responsibility:
    Read-only analytics and optimisation advice over a tenant's lots: per
    lot metrics (usage, rotation, performance, sale priority, stockout,
    carrying cost), per product metrics, and rule-driven suggestions.

Architecture position:
    Services -- orchestration.  Every formula lives in
    ``lot_engines.analytics`` and ``lot_engines.optimization``; the rule
    set and analytics bands come from the tenant configuration.

Invariants enforced:
    - Nothing here writes: no unit of work is opened and no suggestion is
      applied.  Applying one is a separate operator action.

Failure modes:
    - LotNotFoundError for an unknown lot.
    - Products without any FIFO configuration are left out of the FIFO
      compliance rule instead of failing the whole run.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy.orm import Session

from lot_config import LotEngineConfig
from lot_engines.analytics import (
    LotPerformance,
    RotationClass,
    SalePriority,
    UsageStatus,
    average_stay_days,
    carrying_cost,
    classify_rotation,
    fifo_deviation_days,
    lot_performance,
    predicted_stockout_date,
    rotation_rate,
    sale_priority_score,
    stock_value,
    usage_percentage,
    usage_status,
)
from lot_engines.optimization import OptimizationRule, Suggestion, suggest_optimizations
from lot_kernel.domain.clock import Clock
from lot_kernel.domain.constants import DEFAULT_TENANT_ID
from lot_kernel.domain.dtos import LotView
from lot_kernel.exceptions import NoConfigurationError
from lot_kernel.logging_config import get_logger
from lot_kernel.selectors.lot_selector import LotSelector
from lot_kernel.selectors.movement_selector import MovementSelector
from lot_services.base import OrchestratorBase
from lot_services.fifo_service import FIFOService
from lot_services.integration import CatalogService

logger = get_logger("services.optimization")


@dataclass(frozen=True)
class LotAnalytics:
    lot_id: UUID
    product_id: str
    usage_percentage: Decimal
    usage_status: UsageStatus
    rotation_rate: Decimal
    rotation_class: RotationClass
    performance: LotPerformance
    sale_priority: SalePriority
    fifo_position: int | None
    days_in_stock: int
    days_to_expiration: int | None
    stock_value: Decimal
    carrying_cost: Decimal
    predicted_stockout_date: date | None


@dataclass(frozen=True)
class ProductAnalytics:
    product_id: str
    lots_in_stock: int
    total_remaining: Decimal
    stock_value: Decimal
    average_stay_days: Decimal
    average_daily_consumption: Decimal
    predicted_stockout_date: date | None
    next_lot_id: UUID | None
    fifo_deviation_days: int


class OptimizationService(OrchestratorBase):
    """
    Analytics advisor.

    Contract:
        Pure reads over lots and movements; results are frozen dataclasses.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        *,
        catalog: CatalogService | None = None,
        config: LotEngineConfig | None = None,
    ):
        super().__init__(session, clock, config=config)
        self._lots = LotSelector(session, self._clock)
        self._movements = MovementSelector(session, self._clock)
        self._fifo = FIFOService(session, self._clock, catalog=catalog, config=config)

    def rules_for(self, tenant_id: str = DEFAULT_TENANT_ID) -> list[OptimizationRule]:
        return [
            OptimizationRule(
                name=rule.name,
                is_active=rule.is_active,
                priority=rule.priority,
                parameters=rule.parameters,
            )
            for rule in self._tenant_config(tenant_id).optimization_rules
        ]

    def _fifo_order(self, product_id: str, tenant_id: str) -> list[LotView] | None:
        try:
            return self._fifo.fifo_order(product_id, tenant_id=tenant_id)
        except NoConfigurationError:
            return None

    def _consumption(self, product_id: str, tenant_id: str) -> Decimal:
        lookback = self._tenant_config(tenant_id).analytics.consumption_lookback_days
        return self._movements.average_daily_consumption(
            product_id, lookback, tenant_id=tenant_id
        )

    # =========================================================================
    # Suggestions
    # =========================================================================

    def suggest_optimizations(
        self,
        tenant_id: str = DEFAULT_TENANT_ID,
        *,
        product_ids: Sequence[str] | None = None,
        rules: Sequence[OptimizationRule] | None = None,
    ) -> list[Suggestion]:
        """
        Run the tenant's active rules (or ``rules``) over its in-stock lots.
        """
        lots = self._lots.lots_in_stock(tenant_id)
        if product_ids is not None:
            wanted = set(product_ids)
            lots = [lot for lot in lots if lot.product_id in wanted]

        fifo_expected: dict[str, UUID | None] = {}
        for product_id in sorted({lot.product_id for lot in lots}):
            ordered = self._fifo_order(product_id, tenant_id)
            if ordered is None:
                logger.warning(
                    "fifo_rule_skipped_product",
                    extra={"tenant_id": tenant_id, "product_id": product_id},
                )
                continue
            fifo_expected[product_id] = ordered[0].id if ordered else None

        active_rules = list(rules) if rules is not None else self.rules_for(tenant_id)
        suggestions = suggest_optimizations(
            lots,
            active_rules,
            today=self._clock.today(),
            fifo_expected=fifo_expected,
        )
        logger.info(
            "optimizations_suggested",
            extra={
                "tenant_id": tenant_id,
                "lot_count": len(lots),
                "rule_count": sum(1 for r in active_rules if r.is_active),
                "suggestion_count": len(suggestions),
            },
        )
        return suggestions

    # =========================================================================
    # Analytics
    # =========================================================================

    def lot_analytics(self, lot_id: UUID) -> LotAnalytics:
        lot = self._lots.get_lot(lot_id)
        analytics = self._tenant_config(lot.tenant_id).analytics
        today = self._clock.today()
        days_in_stock = lot.days_in_stock(today)
        days_left = lot.days_to_expiration(today)

        ordered = self._fifo_order(lot.product_id, lot.tenant_id) or []
        position = next((i for i, other in enumerate(ordered) if other.id == lot.id), None)
        daily = self._consumption(lot.product_id, lot.tenant_id)
        rate = rotation_rate(lot.initial_quantity, lot.remaining_quantity, days_in_stock)
        usage = usage_percentage(lot.initial_quantity, lot.remaining_quantity)
        value = stock_value(lot.remaining_quantity, lot.unit_purchase_price)

        return LotAnalytics(
            lot_id=lot.id,
            product_id=lot.product_id,
            usage_percentage=usage,
            usage_status=usage_status(usage),
            rotation_rate=rate,
            rotation_class=classify_rotation(
                rate, analytics.fast_rotation, analytics.medium_rotation
            ),
            performance=lot_performance(
                lot.initial_quantity,
                lot.remaining_quantity,
                days_in_stock,
                analytics.target_rotation,
            ),
            # Lots outside the FIFO order (expired, ignored) rank last.
            sale_priority=sale_priority_score(
                days_left,
                lot.remaining_quantity,
                daily,
                position if position is not None else len(ordered),
            ),
            fifo_position=position,
            days_in_stock=days_in_stock,
            days_to_expiration=days_left,
            stock_value=value,
            carrying_cost=carrying_cost(value, analytics.carrying_cost_rate, days_in_stock),
            predicted_stockout_date=predicted_stockout_date(
                lot.remaining_quantity, daily, today, analytics.stockout_variation
            ),
        )

    def product_analytics(
        self,
        product_id: str,
        *,
        tenant_id: str = DEFAULT_TENANT_ID,
    ) -> ProductAnalytics:
        lots = self._lots.list_lots_for_product(
            product_id, include_expired=True, tenant_id=tenant_id
        )
        analytics = self._tenant_config(tenant_id).analytics
        today = self._clock.today()
        daily = self._consumption(product_id, tenant_id)
        total = sum((lot.remaining_quantity for lot in lots), Decimal(0))

        ordered = self._fifo_order(product_id, tenant_id) or []
        next_lot = ordered[0] if ordered else None
        deviation = 0
        if next_lot is not None:
            oldest = min(ordered, key=lambda lot: lot.reception_date)
            rule = self._fifo.resolve_config(product_id, tenant_id=tenant_id)
            deviation = fifo_deviation_days(
                next_lot.reception_date, oldest.reception_date, rule.tolerance_days
            )

        return ProductAnalytics(
            product_id=product_id,
            lots_in_stock=len(lots),
            total_remaining=total,
            stock_value=sum(
                (stock_value(lot.remaining_quantity, lot.unit_purchase_price) for lot in lots),
                Decimal(0),
            ),
            average_stay_days=average_stay_days([lot.reception_date for lot in lots], today),
            average_daily_consumption=daily,
            predicted_stockout_date=predicted_stockout_date(
                total, daily, today, analytics.stockout_variation
            ),
            next_lot_id=next_lot.id if next_lot else None,
            fifo_deviation_days=deviation,
        )
