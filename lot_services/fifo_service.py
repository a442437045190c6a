"""
Module: lot_services.fifo_service
Responsibility:
    FIFO configuration management and the FIFO resolver: which rule governs
    a product, which lot should be sold next, and whether a given sale
    follows that order.

Architecture position:
    Services -- orchestration.  Rule precedence and lot ordering are pure
    functions in ``lot_engines.fifo``; this module loads rows, converts them
    to ``FIFORule`` values once, and calls the engine.

Invariants enforced:
    - Precedence product > family > global; highest priority wins within a
      level, then the most recently created configuration.
    - A configuration targets at most one of product / family.
    - FIFO compliance is advisory: ``check_fifo_compliance`` never blocks
      or writes anything.

Failure modes:
    - NoConfigurationError: nothing applies, not even a global rule.
    - InvalidConfigurationScopeError: both product and family given.
    - ConfigurationNotFoundError: update/deactivate of an unknown id.
    - ValueError: negative tolerance / alert threshold, unknown field.

Audit relevance:
    Creation, update and deactivation of a configuration each write a
    FIFO_CONFIGURATION_CHANGED audit event.
"""

from __future__ import annotations

from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from lot_config import FIFODefaultsDef, LotEngineConfig
from lot_engines.fifo import (
    ConfigScope,
    FamilyScope,
    FIFOComplianceResult,
    FIFORule,
    GlobalScope,
    ProductScope,
    check_compliance,
    order_lots,
    resolve_rule,
    scope_from_ids,
)
from lot_kernel.domain.clock import Clock
from lot_kernel.domain.constants import DEFAULT_TENANT_ID, SYSTEM_ACTOR_ID
from lot_kernel.domain.dtos import LotView
from lot_kernel.exceptions import (
    ConfigurationNotFoundError,
    InvalidConfigurationScopeError,
    NoConfigurationError,
)
from lot_kernel.logging_config import LogContext, get_logger
from lot_kernel.models.fifo_configuration import FIFOConfiguration
from lot_kernel.selectors.lot_selector import LotSelector
from lot_kernel.services.auditor_service import AuditorService
from lot_kernel.services.sequence_service import SequenceService
from lot_services.base import OrchestratorBase
from lot_services.integration import CatalogService, product_info

logger = get_logger("services.fifo")

UPDATABLE_FIELDS = frozenset({
    "priority",
    "tolerance_days",
    "alert_threshold_days",
    "ignore_expired_lots",
    "price_priority",
    "auto_action",
    "is_active",
})


def scope_for(product_id: str | None, family_id: str | None) -> ConfigScope:
    """Scope of a product id / family id pair, as the typed error on misuse."""
    try:
        return scope_from_ids(product_id, family_id)
    except ValueError:
        raise InvalidConfigurationScopeError(product_id, family_id) from None


def rule_from_row(row: FIFOConfiguration) -> FIFORule:
    return FIFORule(
        scope=scope_from_ids(row.product_id, row.family_id),
        priority=row.priority,
        tolerance_days=row.tolerance_days,
        alert_threshold_days=row.alert_threshold_days,
        ignore_expired_lots=row.ignore_expired_lots,
        price_priority=row.price_priority,
        auto_action=row.auto_action,
        is_active=row.is_active,
        creation_seq=row.creation_seq,
        config_id=row.id,
    )


def _rule_values(rule: FIFORule) -> dict[str, Any]:
    return {
        "scope": rule.scope.label,
        "priority": rule.priority,
        "tolerance_days": rule.tolerance_days,
        "alert_threshold_days": rule.alert_threshold_days,
        "ignore_expired_lots": rule.ignore_expired_lots,
        "price_priority": rule.price_priority,
        "auto_action": rule.auto_action,
        "is_active": rule.is_active,
    }


class FIFOService(OrchestratorBase):
    """
    FIFO configuration CRUD and next-lot resolution.

    Contract:
        Mutating methods own their transaction (see OrchestratorBase).
        Reads are side-effect free: repeated ``next_lot_to_sell`` calls
        without an intervening write return the same lot.

    Non-goals:
        - Does NOT reserve or sell the chosen lot; the caller records the
          exit through StockService.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        *,
        catalog: CatalogService | None = None,
        config: LotEngineConfig | None = None,
        auto_commit: bool = True,
    ):
        super().__init__(session, clock, config=config, auto_commit=auto_commit)
        self._catalog = catalog
        self._lots = LotSelector(session, self._clock)
        self._auditor = AuditorService(session, self._clock)
        self._sequence = SequenceService(session)

    # =========================================================================
    # Configuration management
    # =========================================================================

    def create_configuration(
        self,
        scope: ConfigScope | None = None,
        *,
        priority: int = 1,
        tolerance_days: int = 7,
        alert_threshold_days: int = 30,
        ignore_expired_lots: bool = True,
        price_priority: bool = False,
        auto_action: bool = False,
        tenant_id: str = DEFAULT_TENANT_ID,
        actor_id: UUID = SYSTEM_ACTOR_ID,
    ) -> FIFORule:
        """
        Create an active configuration for ``scope`` (global when None).

        Raises:
            ValueError: If tolerance_days or alert_threshold_days is negative.
        """
        target = scope or GlobalScope()
        # Validates the values before anything is written.
        FIFORule(
            scope=target,
            priority=priority,
            tolerance_days=tolerance_days,
            alert_threshold_days=alert_threshold_days,
        )
        with LogContext.bind(tenant_id=tenant_id, actor_id=str(actor_id)):
            with self._unit_of_work("create_fifo_configuration", scope=target.label):
                row = FIFOConfiguration(
                    tenant_id=tenant_id,
                    product_id=target.product_id if isinstance(target, ProductScope) else None,
                    family_id=target.family_id if isinstance(target, FamilyScope) else None,
                    is_active=True,
                    priority=priority,
                    tolerance_days=tolerance_days,
                    alert_threshold_days=alert_threshold_days,
                    ignore_expired_lots=ignore_expired_lots,
                    price_priority=price_priority,
                    auto_action=auto_action,
                    creation_seq=self._sequence.next_value(SequenceService.FIFO_CONFIGURATION),
                )
                self._session.add(row)
                self._session.flush()
                rule = rule_from_row(row)
                self._auditor.record_fifo_configuration_changed(
                    row.id, "created", _rule_values(rule), actor_id
                )

        logger.info(
            "fifo_configuration_created",
            extra={
                "config_id": str(rule.config_id),
                "scope": target.label,
                "priority": priority,
                "tolerance_days": tolerance_days,
            },
        )
        return rule

    def update_configuration(
        self,
        config_id: UUID,
        *,
        actor_id: UUID = SYSTEM_ACTOR_ID,
        **changes: Any,
    ) -> FIFORule:
        """
        Change the rule values of a configuration.  The scope is fixed.

        Raises:
            ConfigurationNotFoundError: Unknown id.
            ValueError: Unknown field or invalid value.
        """
        unknown = set(changes) - UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Cannot update FIFO configuration fields: {sorted(unknown)}")

        with LogContext.bind(actor_id=str(actor_id)):
            with self._unit_of_work("update_fifo_configuration", config_id=str(config_id)):
                row = self._get_row(config_id)
                for key, value in changes.items():
                    setattr(row, key, value)
                rule = rule_from_row(row)
                self._session.flush()
                self._auditor.record_fifo_configuration_changed(
                    row.id, "updated", _rule_values(rule), actor_id
                )

        logger.info(
            "fifo_configuration_updated",
            extra={"config_id": str(config_id), "fields": sorted(changes)},
        )
        return rule

    def deactivate_configuration(
        self,
        config_id: UUID,
        *,
        actor_id: UUID = SYSTEM_ACTOR_ID,
    ) -> FIFORule:
        with LogContext.bind(actor_id=str(actor_id)):
            with self._unit_of_work("deactivate_fifo_configuration", config_id=str(config_id)):
                row = self._get_row(config_id)
                row.is_active = False
                self._session.flush()
                rule = rule_from_row(row)
                self._auditor.record_fifo_configuration_changed(
                    row.id, "deactivated", _rule_values(rule), actor_id
                )

        logger.info("fifo_configuration_deactivated", extra={"config_id": str(config_id)})
        return rule

    def ensure_global_default(
        self,
        tenant_id: str = DEFAULT_TENANT_ID,
        *,
        actor_id: UUID = SYSTEM_ACTOR_ID,
    ) -> FIFORule:
        """
        The tenant's active global rule, created from ``fifo_defaults`` of
        the tenant configuration when none exists yet.
        """
        existing = [
            rule for rule in self.list_configurations(tenant_id)
            if isinstance(rule.scope, GlobalScope)
        ]
        if existing:
            return resolve_rule(existing, product_id="", family_id=None)

        defaults: FIFODefaultsDef = self._tenant_config(tenant_id).fifo_defaults
        return self.create_configuration(
            GlobalScope(),
            priority=defaults.priority,
            tolerance_days=defaults.tolerance_days,
            alert_threshold_days=defaults.alert_threshold_days,
            ignore_expired_lots=defaults.ignore_expired_lots,
            price_priority=defaults.price_priority,
            auto_action=defaults.auto_action,
            tenant_id=tenant_id,
            actor_id=actor_id,
        )

    def list_configurations(
        self,
        tenant_id: str = DEFAULT_TENANT_ID,
        *,
        include_inactive: bool = False,
    ) -> list[FIFORule]:
        """Configurations of the tenant in creation order."""
        stmt = select(FIFOConfiguration).where(FIFOConfiguration.tenant_id == tenant_id)
        if not include_inactive:
            stmt = stmt.where(FIFOConfiguration.is_active.is_(True))
        rows = self._session.execute(stmt.order_by(FIFOConfiguration.creation_seq)).scalars().all()
        return [rule_from_row(row) for row in rows]

    def _get_row(self, config_id: UUID) -> FIFOConfiguration:
        row = self._session.get(FIFOConfiguration, config_id)
        if row is None:
            raise ConfigurationNotFoundError(str(config_id))
        return row

    # =========================================================================
    # Resolution
    # =========================================================================

    def resolve_config(
        self,
        product_id: str,
        family_id: str | None = None,
        *,
        tenant_id: str = DEFAULT_TENANT_ID,
    ) -> FIFORule:
        """
        The single configuration governing ``product_id``.

        ``family_id`` defaults to the catalog's family of the product.

        Raises:
            NoConfigurationError: If nothing applies, not even a global rule.
        """
        family = family_id if family_id is not None else product_info(
            self._catalog, product_id
        ).family_id
        rule = resolve_rule(
            self.list_configurations(tenant_id),
            product_id=product_id,
            family_id=family,
        )
        if rule is None:
            logger.warning(
                "fifo_configuration_missing",
                extra={"tenant_id": tenant_id, "product_id": product_id, "family_id": family},
            )
            raise NoConfigurationError(tenant_id, product_id, family)
        return rule

    def fifo_order(
        self,
        product_id: str,
        *,
        tenant_id: str = DEFAULT_TENANT_ID,
    ) -> list[LotView]:
        """Eligible lots of the product in the order they should be sold."""
        rule = self.resolve_config(product_id, tenant_id=tenant_id)
        lots = self._lots.list_lots_for_product(
            product_id, include_expired=True, tenant_id=tenant_id
        )
        return order_lots(
            lots,
            today=self._clock.today(),
            tolerance_days=rule.tolerance_days,
            ignore_expired_lots=rule.ignore_expired_lots,
            price_priority=rule.price_priority,
        )

    def next_lot_to_sell(
        self,
        product_id: str,
        *,
        tenant_id: str = DEFAULT_TENANT_ID,
    ) -> LotView | None:
        """First lot of ``fifo_order``, or None when nothing is eligible."""
        ordered = self.fifo_order(product_id, tenant_id=tenant_id)
        selected = ordered[0] if ordered else None
        logger.info(
            "fifo_next_lot_selected",
            extra={
                "tenant_id": tenant_id,
                "product_id": product_id,
                "lot_id": str(selected.id) if selected else None,
                "candidate_count": len(ordered),
            },
        )
        return selected

    def check_fifo_compliance(
        self,
        product_id: str,
        lot_id: UUID,
        *,
        tenant_id: str = DEFAULT_TENANT_ID,
    ) -> FIFOComplianceResult:
        """
        Compare the lot about to be sold with the FIFO-expected lot.

        Advisory only: a deviation is reported and logged, never refused.

        Raises:
            LotNotFoundError: Unknown lot.
            ValueError: The lot holds another product.
        """
        sold = self._lots.get_lot(lot_id)
        if sold.product_id != product_id:
            raise ValueError(f"Lot {lot_id} holds product {sold.product_id}, not {product_id}")
        expected = self.next_lot_to_sell(product_id, tenant_id=tenant_id)
        result = check_compliance(sold, expected)
        if not result.compliant:
            logger.warning(
                "fifo_deviation_detected",
                extra={
                    "product_id": product_id,
                    "sold_lot_id": str(result.sold_lot_id),
                    "expected_lot_id": str(result.expected_lot_id),
                    "deviation_days": result.deviation_days,
                },
            )
        return result
