"""
Module: lot_services.expiration_service
Responsibility:
    Expiration risk for lots: threshold resolution (product and family
    parameters over tenant configuration), single-lot risk assessment, the
    idempotent alert sweep, operator alert status changes and alert
    statistics.

Architecture position:
    Services -- orchestration.  Classification, loss estimation and the
    "materially changed" test are pure functions in
    ``lot_engines.expiration``.

Invariants enforced:
    - At most one ``active`` alert per lot: the sweep refreshes it in place.
    - A treated or ignored alert is not raised again for the same lot
      unless the lot's remaining quantity or expiration date changed since.
    - Operators move alerts from ``active`` to ``treated`` or ``ignored``.
      The sweep moves an alert to ``resolved`` once its lot is sold out or
      expires beyond the horizon.  Closed alerts are frozen.
    - After a sweep, every active alert describes a lot with stock inside
      the horizon, so alert statistics never count a sold-out lot.

Failure modes:
    - AlertNotFoundError / LotNotFoundError for unknown ids.
    - InvalidTransitionError when the alert is not ``active`` or the
      target status is not ``treated`` or ``ignored`` (unknown names included).
    - InvalidConfigurationScopeError / ValueError on bad parameters.

Audit relevance:
    Every status change writes ALERT_STATUS_CHANGED; every threshold
    parameter change writes EXPIRATION_PARAMETER_CHANGED.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from lot_config import LotEngineConfig
from lot_engines.expiration import (
    AlertStatistics,
    AlertThresholds,
    RiskAssessment,
    UrgencyLevel,
    assess_risk,
    materially_changed,
    resolve_thresholds,
    summarize_alerts,
)
from lot_kernel.db.types import as_quantity
from lot_kernel.domain.clock import Clock
from lot_kernel.domain.constants import DEFAULT_TENANT_ID, SYSTEM_ACTOR_ID
from lot_kernel.exceptions import (
    AlertNotFoundError,
    ConfigurationNotFoundError,
    InvalidConfigurationScopeError,
    InvalidTransitionError,
)
from lot_kernel.logging_config import LogContext, get_logger
from lot_kernel.models.expiration_alert import AlertStatus, ExpirationAlert
from lot_kernel.models.fifo_configuration import ExpirationParameter
from lot_kernel.models.lot import Lot
from lot_kernel.selectors.lot_selector import LotSelector, lot_to_view
from lot_kernel.selectors.movement_selector import MovementSelector
from lot_kernel.services.auditor_service import AuditorService
from lot_services.base import OrchestratorBase
from lot_services.integration import CatalogService, product_info

logger = get_logger("services.expiration")

_CLOSING_STATUSES = frozenset({AlertStatus.TREATED.value, AlertStatus.IGNORED.value})


@dataclass(frozen=True)
class AlertView:
    """Read snapshot of one expiration alert."""

    id: UUID
    tenant_id: str
    lot_id: UUID
    product_id: str
    alert_type: str
    urgency_level: str
    days_remaining: int
    concerned_quantity: Decimal
    estimated_loss: Decimal
    status: str
    recommended_action: str
    recommended_actions: tuple[str, ...]
    generated_at: datetime
    notes: str | None = None
    closed_at: datetime | None = None
    closed_by_id: UUID | None = None


def alert_to_view(row: ExpirationAlert) -> AlertView:
    return AlertView(
        id=row.id,
        tenant_id=row.tenant_id,
        lot_id=row.lot_id,
        product_id=row.product_id,
        alert_type=row.alert_type,
        urgency_level=row.urgency_level,
        days_remaining=row.days_remaining,
        concerned_quantity=as_quantity(row.concerned_quantity),
        estimated_loss=as_quantity(row.estimated_loss),
        status=row.status,
        recommended_action=row.recommended_action,
        recommended_actions=tuple(row.recommended_actions),
        generated_at=row.generated_at,
        notes=row.notes,
        closed_at=row.closed_at,
        closed_by_id=row.closed_by_id,
    )


@dataclass(frozen=True)
class SweepResult:
    """Outcome of one ``generate_alerts`` run."""

    alerts: tuple[AlertView, ...]
    created: int
    refreshed: int
    skipped: int
    resolved: int = 0


class ExpirationService(OrchestratorBase):
    """
    Expiration thresholds, risk assessment and alerts.

    Contract:
        ``generate_alerts`` may be run any number of times; with unchanged
        lots it refreshes the same active alerts and creates nothing new.

    Non-goals:
        - No scheduler: the sweep runs when a caller asks for it.
        - Does NOT discount or return stock; recommended actions are advice.
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
        self._movements = MovementSelector(session, self._clock)
        self._auditor = AuditorService(session, self._clock)

    # =========================================================================
    # Threshold parameters
    # =========================================================================

    def set_expiration_parameter(
        self,
        *,
        product_id: str | None = None,
        family_id: str | None = None,
        critical_days: int,
        alert_days: int,
        warning_days: int,
        tenant_id: str = DEFAULT_TENANT_ID,
        actor_id: UUID = SYSTEM_ACTOR_ID,
    ) -> UUID:
        """
        Create or replace the active thresholds of one product or family.

        Raises:
            InvalidConfigurationScopeError: Not exactly one of product/family.
            ValueError: Thresholds not ordered critical <= alert <= warning.
        """
        if (product_id is None) == (family_id is None):
            raise InvalidConfigurationScopeError(product_id, family_id)
        AlertThresholds(critical_days, alert_days, warning_days)

        with LogContext.bind(tenant_id=tenant_id, actor_id=str(actor_id)):
            with self._unit_of_work(
                "set_expiration_parameter", product_id=product_id, family_id=family_id
            ):
                row = self._session.execute(
                    select(ExpirationParameter).where(
                        ExpirationParameter.tenant_id == tenant_id,
                        ExpirationParameter.product_id == product_id
                        if product_id is not None
                        else ExpirationParameter.product_id.is_(None),
                        ExpirationParameter.family_id == family_id
                        if family_id is not None
                        else ExpirationParameter.family_id.is_(None),
                        ExpirationParameter.is_active.is_(True),
                    )
                ).scalar_one_or_none()
                if row is None:
                    row = ExpirationParameter(
                        tenant_id=tenant_id,
                        product_id=product_id,
                        family_id=family_id,
                        is_active=True,
                    )
                    self._session.add(row)
                row.critical_days = critical_days
                row.alert_days = alert_days
                row.warning_days = warning_days
                self._session.flush()
                self._auditor.record_expiration_parameter_changed(
                    row.id,
                    {
                        "tenant_id": tenant_id,
                        "product_id": product_id,
                        "family_id": family_id,
                        "critical_days": critical_days,
                        "alert_days": alert_days,
                        "warning_days": warning_days,
                        "is_active": True,
                    },
                    actor_id,
                )

        logger.info(
            "expiration_parameter_set",
            extra={
                "parameter_id": str(row.id),
                "product_id": product_id,
                "family_id": family_id,
                "critical_days": critical_days,
                "alert_days": alert_days,
                "warning_days": warning_days,
            },
        )
        return row.id

    def deactivate_expiration_parameter(
        self,
        parameter_id: UUID,
        *,
        actor_id: UUID = SYSTEM_ACTOR_ID,
    ) -> None:
        with self._unit_of_work("deactivate_expiration_parameter", parameter_id=str(parameter_id)):
            row = self._session.get(ExpirationParameter, parameter_id)
            if row is None:
                raise ConfigurationNotFoundError(str(parameter_id))
            row.is_active = False
            self._session.flush()
            self._auditor.record_expiration_parameter_changed(
                row.id, {"is_active": False}, actor_id
            )

    def _parameter(self, tenant_id: str, column, value: str | None) -> AlertThresholds | None:
        if value is None:
            return None
        row = self._session.execute(
            select(ExpirationParameter).where(
                ExpirationParameter.tenant_id == tenant_id,
                column == value,
                ExpirationParameter.is_active.is_(True),
            )
        ).scalars().first()
        if row is None:
            return None
        return AlertThresholds(row.critical_days, row.alert_days, row.warning_days)

    def thresholds_for(
        self,
        product_id: str,
        family_id: str | None = None,
        *,
        tenant_id: str = DEFAULT_TENANT_ID,
    ) -> AlertThresholds:
        """Product parameter, else family parameter, else tenant configuration."""
        family = family_id if family_id is not None else product_info(
            self._catalog, product_id
        ).family_id
        tenant = self._tenant_config(tenant_id).alert_thresholds
        return resolve_thresholds(
            self._parameter(tenant_id, ExpirationParameter.product_id, product_id),
            self._parameter(tenant_id, ExpirationParameter.family_id, family),
            AlertThresholds(tenant.critical_days, tenant.alert_days, tenant.warning_days),
        )

    # =========================================================================
    # Risk
    # =========================================================================

    def _consumption(self, product_id: str, tenant_id: str, today: date) -> Decimal:
        lookback = self._tenant_config(tenant_id).analytics.consumption_lookback_days
        return self._movements.average_daily_consumption(
            product_id, lookback, today=today, tenant_id=tenant_id
        )

    def assess_risk(
        self,
        lot_id: UUID,
        *,
        average_daily_consumption: Decimal | None = None,
        unit_value: Decimal | None = None,
    ) -> RiskAssessment:
        """
        Risk of one lot today.

        Consumption defaults to the product's mean daily exits over the
        configured lookback window; unit value to the purchase price.
        """
        row = self._lots.get_row(lot_id)
        today = self._clock.today()
        consumption = (
            average_daily_consumption
            if average_daily_consumption is not None
            else self._consumption(row.product_id, row.tenant_id, today)
        )
        return assess_risk(
            lot_to_view(row, today),
            today=today,
            average_daily_consumption=consumption,
            unit_value=unit_value,
            thresholds=self.thresholds_for(row.product_id, tenant_id=row.tenant_id),
        )

    # =========================================================================
    # Alerts
    # =========================================================================

    def generate_alerts(
        self,
        tenant_id: str = DEFAULT_TENANT_ID,
    ) -> SweepResult:
        """
        Sweep lots with stock expiring within the configured horizon.

        Per lot: refresh its active alert, or create one unless the last
        alert an operator closed was raised on the same remaining quantity
        and expiration date.  Active alerts of lots the sweep no longer
        covers (sold out, or expiring beyond the horizon) are resolved.
        """
        horizon = self._tenant_config(tenant_id).alert_thresholds.horizon_days
        today = self._clock.today()
        now = self._clock.now()
        touched: list[ExpirationAlert] = []
        created = refreshed = skipped = resolved = 0

        with LogContext.bind(tenant_id=tenant_id):
            with self._unit_of_work("generate_alerts", tenant_id=tenant_id):
                consumption: dict[str, Decimal] = {}
                in_scope = self._lots.lots_expiring_within(horizon, tenant_id=tenant_id)
                resolved = self._resolve_out_of_scope(
                    tenant_id, {lot.id for lot in in_scope}, now
                )
                for lot in in_scope:
                    if lot.product_id not in consumption:
                        consumption[lot.product_id] = self._consumption(
                            lot.product_id, tenant_id, today
                        )
                    view = lot_to_view(lot, today)
                    assessment = assess_risk(
                        view,
                        today=today,
                        average_daily_consumption=consumption[lot.product_id],
                        unit_value=None,
                        thresholds=self.thresholds_for(lot.product_id, tenant_id=tenant_id),
                    )

                    active, last_closed = self._alerts_of(lot.id)
                    if active is not None:
                        self._fill(active, lot, assessment, now)
                        touched.append(active)
                        refreshed += 1
                        continue
                    if last_closed is not None and not materially_changed(
                        as_quantity(last_closed.lot_remaining_snapshot),
                        last_closed.lot_expiration_snapshot,
                        view.remaining_quantity,
                        view.expiration_date,
                    ):
                        skipped += 1
                        continue

                    alert = ExpirationAlert(
                        tenant_id=tenant_id,
                        lot_id=lot.id,
                        product_id=lot.product_id,
                        status=AlertStatus.ACTIVE.value,
                    )
                    self._fill(alert, lot, assessment, now)
                    self._session.add(alert)
                    touched.append(alert)
                    created += 1
                self._session.flush()

        views = sorted(
            (alert_to_view(a) for a in touched),
            key=lambda v: (UrgencyLevel(v.urgency_level).rank, v.days_remaining, str(v.lot_id)),
        )
        logger.info(
            "expiration_alerts_generated",
            extra={
                "tenant_id": tenant_id,
                "horizon_days": horizon,
                "alerts_created": created,
                "alerts_refreshed": refreshed,
                "alerts_skipped": skipped,
                "alerts_resolved": resolved,
            },
        )
        return SweepResult(
            alerts=tuple(views),
            created=created,
            refreshed=refreshed,
            skipped=skipped,
            resolved=resolved,
        )

    def _resolve_out_of_scope(self, tenant_id: str, in_scope: set[UUID], now: datetime) -> int:
        """Close the active alerts of lots outside the sweep; returns how many."""
        stale = [
            alert
            for alert in self._session.execute(
                select(ExpirationAlert).where(
                    ExpirationAlert.tenant_id == tenant_id,
                    ExpirationAlert.status == AlertStatus.ACTIVE.value,
                )
            ).scalars().all()
            if alert.lot_id not in in_scope
        ]
        for alert in stale:
            lot = self._lots.get_row(alert.lot_id)
            remaining = as_quantity(lot.remaining_quantity)
            reason = "lot sold out" if remaining <= 0 else "expiration beyond alert horizon"
            alert.status = AlertStatus.RESOLVED.value
            alert.concerned_quantity = remaining
            alert.estimated_loss = Decimal(0)
            alert.lot_remaining_snapshot = remaining
            alert.lot_expiration_snapshot = lot.expiration_date
            alert.notes = reason
            alert.closed_at = now
            alert.closed_by_id = SYSTEM_ACTOR_ID
            self._session.flush()
            self._auditor.record_alert_status_changed(
                alert.id, alert.lot_id, AlertStatus.ACTIVE.value,
                AlertStatus.RESOLVED.value, reason, SYSTEM_ACTOR_ID,
            )
            logger.info(
                "expiration_alert_resolved",
                extra={"alert_id": str(alert.id), "lot_id": str(alert.lot_id), "reason": reason},
            )
        return len(stale)

    def _alerts_of(self, lot_id: UUID) -> tuple[ExpirationAlert | None, ExpirationAlert | None]:
        """The lot's active alert and its most recently closed one."""
        rows = self._session.execute(
            select(ExpirationAlert)
            .where(ExpirationAlert.lot_id == lot_id)
            .order_by(ExpirationAlert.generated_at.desc())
        ).scalars().all()
        active = next((r for r in rows if r.status == AlertStatus.ACTIVE.value), None)
        closed = next((r for r in rows if r.status in _CLOSING_STATUSES), None)
        return active, closed

    @staticmethod
    def _fill(alert: ExpirationAlert, lot: Lot, assessment: RiskAssessment, now: datetime) -> None:
        alert.alert_type = assessment.alert_type.value
        alert.urgency_level = assessment.urgency_level.value
        alert.days_remaining = assessment.days_remaining
        alert.concerned_quantity = assessment.concerned_quantity
        alert.estimated_loss = assessment.estimated_loss
        alert.recommended_action = assessment.recommended_action
        alert.recommended_actions = list(assessment.recommended_actions)
        alert.generated_at = now
        alert.lot_remaining_snapshot = as_quantity(lot.remaining_quantity)
        alert.lot_expiration_snapshot = lot.expiration_date

    def update_alert_status(
        self,
        alert_id: UUID,
        new_status: AlertStatus | str,
        notes: str | None = None,
        *,
        agent_id: UUID = SYSTEM_ACTOR_ID,
    ) -> AlertView:
        """
        Close an active alert as treated or ignored.

        Raises:
            AlertNotFoundError: Unknown alert.
            InvalidTransitionError: The alert is not active, or
                ``new_status`` is not treated / ignored.
        """
        # Unknown names fall through to the transition check below.
        target = new_status.value if isinstance(new_status, AlertStatus) else str(new_status)
        with LogContext.bind(actor_id=str(agent_id)):
            with self._unit_of_work("update_alert_status", alert_id=str(alert_id)):
                alert = self._session.execute(
                    select(ExpirationAlert)
                    .where(ExpirationAlert.id == alert_id)
                    .with_for_update()
                    .execution_options(populate_existing=True)
                ).scalar_one_or_none()
                if alert is None:
                    raise AlertNotFoundError(str(alert_id))
                current = alert.status
                if current != AlertStatus.ACTIVE.value or target not in _CLOSING_STATUSES:
                    logger.warning(
                        "alert_transition_rejected",
                        extra={"alert_id": str(alert_id), "from_status": current, "to_status": target},
                    )
                    raise InvalidTransitionError("ExpirationAlert", str(alert_id), current, target)

                alert.status = target
                alert.notes = notes
                alert.closed_at = self._clock.now()
                alert.closed_by_id = agent_id
                self._session.flush()
                self._auditor.record_alert_status_changed(
                    alert.id, alert.lot_id, current, target, notes, agent_id
                )

        logger.info(
            "alert_status_changed",
            extra={"alert_id": str(alert_id), "from_status": current, "to_status": target},
        )
        return alert_to_view(alert)

    def get_alert(self, alert_id: UUID) -> AlertView:
        row = self._session.get(ExpirationAlert, alert_id)
        if row is None:
            raise AlertNotFoundError(str(alert_id))
        return alert_to_view(row)

    def list_alerts(
        self,
        tenant_id: str = DEFAULT_TENANT_ID,
        *,
        status: AlertStatus | str | None = AlertStatus.ACTIVE,
        urgency: UrgencyLevel | str | None = None,
    ) -> list[AlertView]:
        """Alerts of the tenant, most urgent first; ``status=None`` lists all."""
        stmt = select(ExpirationAlert).where(ExpirationAlert.tenant_id == tenant_id)
        if status is not None:
            stmt = stmt.where(ExpirationAlert.status == AlertStatus(status).value)
        if urgency is not None:
            stmt = stmt.where(ExpirationAlert.urgency_level == UrgencyLevel(urgency).value)
        views = [alert_to_view(row) for row in self._session.execute(stmt).scalars().all()]
        return sorted(
            views,
            key=lambda v: (UrgencyLevel(v.urgency_level).rank, v.days_remaining, str(v.id)),
        )

    def alert_statistics(self, tenant_id: str = DEFAULT_TENANT_ID) -> AlertStatistics:
        """Counts, quantities and estimated loss of active alerts per urgency."""
        return summarize_alerts(self.list_alerts(tenant_id))
