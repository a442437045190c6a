"""
Tests for ExpirationService: thresholds, risk, the alert sweep and alert status.
"""

from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest

from lot_engines.expiration import AlertThresholds, UrgencyLevel
from lot_kernel.exceptions import (
    AlertNotFoundError,
    ConfigurationNotFoundError,
    ImmutabilityViolationError,
    InvalidConfigurationScopeError,
    InvalidTransitionError,
)
from lot_kernel.models.audit_event import AuditAction
from lot_kernel.models.expiration_alert import AlertStatus, ExpirationAlert


@pytest.fixture
def near_lot(make_lot):
    """Expires in ten days: eleve under the default 7/30/60 thresholds."""
    return make_lot("PARA-500", 20, expiration_date=date(2024, 3, 11), unit_purchase_price="2.50")


class TestThresholds:

    def test_tenant_configuration_by_default(self, expiration_service):
        assert expiration_service.thresholds_for("AMOX-1G") == AlertThresholds(7, 30, 60)

    def test_product_over_family_over_tenant(self, expiration_service):
        expiration_service.set_expiration_parameter(
            family_id="ANALGESIC", critical_days=3, alert_days=10, warning_days=20
        )
        expiration_service.set_expiration_parameter(
            product_id="PARA-500", critical_days=1, alert_days=2, warning_days=3
        )
        assert expiration_service.thresholds_for("PARA-500") == AlertThresholds(1, 2, 3)
        assert expiration_service.thresholds_for("IBU-400") == AlertThresholds(3, 10, 20)
        assert expiration_service.thresholds_for("AMOX-1G") == AlertThresholds(7, 30, 60)

    def test_setting_again_replaces(self, expiration_service):
        first = expiration_service.set_expiration_parameter(
            product_id="PARA-500", critical_days=1, alert_days=2, warning_days=3
        )
        second = expiration_service.set_expiration_parameter(
            product_id="PARA-500", critical_days=2, alert_days=4, warning_days=6
        )
        assert first == second
        assert expiration_service.thresholds_for("PARA-500") == AlertThresholds(2, 4, 6)

    def test_deactivated_parameter_no_longer_applies(self, expiration_service):
        parameter_id = expiration_service.set_expiration_parameter(
            product_id="PARA-500", critical_days=1, alert_days=2, warning_days=3
        )
        expiration_service.deactivate_expiration_parameter(parameter_id)
        assert expiration_service.thresholds_for("PARA-500") == AlertThresholds(7, 30, 60)

    def test_deactivate_unknown(self, expiration_service):
        with pytest.raises(ConfigurationNotFoundError):
            expiration_service.deactivate_expiration_parameter(uuid4())

    @pytest.mark.parametrize("product_id, family_id", [(None, None), ("PARA-500", "ANALGESIC")])
    def test_scope_must_be_exactly_one(self, expiration_service, product_id, family_id):
        with pytest.raises(InvalidConfigurationScopeError):
            expiration_service.set_expiration_parameter(
                product_id=product_id, family_id=family_id,
                critical_days=1, alert_days=2, warning_days=3,
            )

    def test_unordered_thresholds_rejected(self, expiration_service):
        with pytest.raises(ValueError):
            expiration_service.set_expiration_parameter(
                product_id="PARA-500", critical_days=30, alert_days=7, warning_days=60
            )

    def test_parameter_changes_are_audited(self, expiration_service, auditor_service):
        parameter_id = expiration_service.set_expiration_parameter(
            product_id="PARA-500", critical_days=1, alert_days=2, warning_days=3
        )
        trace = auditor_service.get_trace("ExpirationParameter", parameter_id)
        assert trace.last_action == AuditAction.EXPIRATION_PARAMETER_CHANGED

    def test_tenant_override(self, expiration_service):
        assert expiration_service.thresholds_for("AMOX-1G", tenant_id="pharmacie-centrale") == AlertThresholds(10, 45, 90)


class TestAssessRisk:

    def test_ten_days_is_eleve(self, expiration_service, near_lot):
        risk = expiration_service.assess_risk(near_lot.id)
        assert risk.urgency_level is UrgencyLevel.ELEVE
        assert risk.days_remaining == 10
        # Nothing sells, so the whole lot is at risk.
        assert risk.estimated_loss == Decimal("50.00")

    def test_consumption_from_history(self, expiration_service, stock_service, near_lot):
        # 15 sold today over a 30-day window is 0.5/day: 5 left need 10 days.
        stock_service.apply_movement(near_lot.id, "exit", -15)
        risk = expiration_service.assess_risk(near_lot.id)
        assert risk.sellout_days == Decimal(10)
        assert risk.estimated_loss == Decimal("0.00")

    def test_explicit_consumption_and_value(self, expiration_service, near_lot):
        risk = expiration_service.assess_risk(
            near_lot.id, average_daily_consumption=Decimal(1), unit_value=Decimal(4)
        )
        assert risk.estimated_loss == Decimal("80.00")

    @pytest.mark.parametrize(
        "expiration, urgency",
        [
            (date(2024, 3, 8), UrgencyLevel.CRITIQUE),
            (date(2024, 3, 31), UrgencyLevel.ELEVE),
            (date(2024, 4, 30), UrgencyLevel.MOYEN),
            (date(2024, 5, 1), UrgencyLevel.FAIBLE),
        ],
    )
    def test_threshold_boundaries(self, expiration_service, make_lot, expiration, urgency):
        lot = make_lot("AMOX-1G", 5, expiration_date=expiration)
        assert expiration_service.assess_risk(lot.id).urgency_level is urgency


class TestAlertSweep:

    def test_creates_alert(self, expiration_service, near_lot):
        result = expiration_service.generate_alerts()
        assert result.created == 1
        (alert,) = result.alerts
        assert alert.lot_id == near_lot.id
        assert alert.urgency_level == UrgencyLevel.ELEVE.value
        assert alert.alert_type == "near_expiry"
        assert alert.status == AlertStatus.ACTIVE.value
        assert alert.recommended_action == "priority_sale"
        assert alert.recommended_actions == ("priority_sale", "promotion", "reduce_reorders")
        assert alert.concerned_quantity == Decimal(20)

    def test_beyond_horizon_and_undated_lots_ignored(self, expiration_service, make_lot):
        make_lot("PARA-500", 10, expiration_date=date(2024, 6, 15))
        make_lot("PARA-500", 10)
        assert expiration_service.generate_alerts().alerts == ()

    def test_expired_lot_alerted(self, expiration_service, make_lot):
        make_lot("PARA-500", 10, expiration_date=date(2024, 2, 20))
        (alert,) = expiration_service.generate_alerts().alerts
        assert alert.alert_type == "expired"
        assert alert.urgency_level == UrgencyLevel.CRITIQUE.value
        assert alert.days_remaining == -10

    def test_depleted_lot_ignored(self, expiration_service, stock_service, near_lot):
        stock_service.apply_movement(near_lot.id, "exit", -20)
        assert expiration_service.generate_alerts().alerts == ()

    def test_rerun_refreshes_in_place(self, expiration_service, stock_service, near_lot):
        first = expiration_service.generate_alerts()
        stock_service.apply_movement(near_lot.id, "exit", -5)
        second = expiration_service.generate_alerts()

        assert second.created == 0
        assert second.refreshed == 1
        assert second.alerts[0].id == first.alerts[0].id
        assert second.alerts[0].concerned_quantity == Decimal(15)
        assert len(expiration_service.list_alerts(status=None)) == 1

    def test_refresh_follows_the_clock(self, expiration_service, deterministic_clock, near_lot):
        expiration_service.generate_alerts()
        deterministic_clock.advance_days(5)
        (alert,) = expiration_service.generate_alerts().alerts
        assert alert.days_remaining == 5
        assert alert.urgency_level == UrgencyLevel.CRITIQUE.value

    def test_closed_alert_not_raised_again_for_unchanged_lot(self, expiration_service, near_lot):
        (alert,) = expiration_service.generate_alerts().alerts
        expiration_service.update_alert_status(alert.id, AlertStatus.TREATED, "discounted")

        result = expiration_service.generate_alerts()
        assert result.created == 0
        assert result.skipped == 1
        assert expiration_service.list_alerts() == []

    def test_closed_alert_raised_again_after_change(self, expiration_service, stock_service, near_lot):
        (alert,) = expiration_service.generate_alerts().alerts
        expiration_service.update_alert_status(alert.id, "ignored")
        stock_service.apply_movement(near_lot.id, "exit", -1)

        result = expiration_service.generate_alerts()
        assert result.created == 1
        assert result.alerts[0].id != alert.id

    def test_at_most_one_active_alert_per_lot(self, expiration_service, near_lot):
        for _ in range(3):
            expiration_service.generate_alerts()
        assert len(expiration_service.list_alerts()) == 1

    def test_thresholds_from_product_parameter(self, expiration_service, near_lot):
        expiration_service.set_expiration_parameter(
            product_id="PARA-500", critical_days=10, alert_days=20, warning_days=30
        )
        (alert,) = expiration_service.generate_alerts().alerts
        assert alert.urgency_level == UrgencyLevel.CRITIQUE.value


class TestAlertStatus:

    def test_treat(self, expiration_service, near_lot, test_actor_id, auditor_service):
        (alert,) = expiration_service.generate_alerts().alerts
        closed = expiration_service.update_alert_status(
            alert.id, "treated", "moved to promo shelf", agent_id=test_actor_id
        )
        assert closed.status == AlertStatus.TREATED.value
        assert closed.notes == "moved to promo shelf"
        assert closed.closed_by_id == test_actor_id
        assert closed.closed_at is not None

        trace = auditor_service.get_trace("ExpirationAlert", alert.id)
        assert trace.last_action == AuditAction.ALERT_STATUS_CHANGED
        assert trace.entries[-1].payload["to_status"] == "treated"

    def test_closed_alert_cannot_change(self, expiration_service, near_lot):
        (alert,) = expiration_service.generate_alerts().alerts
        expiration_service.update_alert_status(alert.id, "treated")
        with pytest.raises(InvalidTransitionError):
            expiration_service.update_alert_status(alert.id, "ignored")
        assert expiration_service.get_alert(alert.id).status == AlertStatus.TREATED.value

    def test_cannot_reactivate(self, expiration_service, near_lot):
        (alert,) = expiration_service.generate_alerts().alerts
        with pytest.raises(InvalidTransitionError):
            expiration_service.update_alert_status(alert.id, "active")

    def test_unknown_alert(self, expiration_service):
        with pytest.raises(AlertNotFoundError):
            expiration_service.update_alert_status(uuid4(), "treated")
        with pytest.raises(AlertNotFoundError):
            expiration_service.get_alert(uuid4())

    def test_closed_alert_row_is_frozen(self, session, expiration_service, near_lot):
        (alert,) = expiration_service.generate_alerts().alerts
        expiration_service.update_alert_status(alert.id, "treated")
        row = session.get(ExpirationAlert, alert.id)
        row.notes = "rewritten"
        with pytest.raises(ImmutabilityViolationError):
            session.flush()
        session.rollback()


class TestListingAndStatistics:

    def test_list_sorted_and_filtered(self, expiration_service, make_lot):
        make_lot("PARA-500", 10, expiration_date=date(2024, 4, 15), unit_purchase_price="1")
        make_lot("PARA-500", 10, expiration_date=date(2024, 3, 4), unit_purchase_price="1")
        make_lot("IBU-400", 10, expiration_date=date(2024, 3, 20), unit_purchase_price="1")
        expiration_service.generate_alerts()

        alerts = expiration_service.list_alerts()
        assert [a.urgency_level for a in alerts] == ["critique", "eleve", "moyen"]
        assert [a.product_id for a in expiration_service.list_alerts(urgency="eleve")] == ["IBU-400"]

    def test_statistics(self, expiration_service, make_lot):
        make_lot("PARA-500", 10, expiration_date=date(2024, 3, 4), unit_purchase_price="1")
        make_lot("PARA-500", 4, expiration_date=date(2024, 3, 5), unit_purchase_price="2")
        make_lot("IBU-400", 6, expiration_date=date(2024, 3, 20), unit_purchase_price="1")
        expiration_service.generate_alerts()

        stats = expiration_service.alert_statistics()
        assert stats.total == 3
        assert stats.count_by_urgency["critique"] == 2
        assert stats.count_by_urgency["eleve"] == 1
        assert stats.quantity_by_urgency["critique"] == Decimal(14)
        assert stats.total_estimated_loss == Decimal("24.00")


class TestSweepLogging:

    def test_sweep_logs_its_counts(self, expiration_service, near_lot, captured_logs):
        result = expiration_service.generate_alerts()
        assert result.created == 1

        (record,) = [r for r in captured_logs() if r["message"] == "expiration_alerts_generated"]
        assert record["alerts_created"] == 1
        assert record["alerts_refreshed"] == 0
        assert record["alerts_resolved"] == 0


class TestAlertResolution:

    def test_sold_out_lot_alert_resolved(
        self, expiration_service, stock_service, near_lot, auditor_service
    ):
        (alert,) = expiration_service.generate_alerts().alerts
        stock_service.apply_movement(near_lot.id, "exit", -20)

        result = expiration_service.generate_alerts()
        assert result.resolved == 1
        assert result.alerts == ()
        assert expiration_service.list_alerts() == []

        resolved = expiration_service.get_alert(alert.id)
        assert resolved.status == AlertStatus.RESOLVED.value
        assert resolved.concerned_quantity == Decimal(0)
        assert resolved.notes == "lot sold out"
        assert resolved.closed_at is not None

        trace = auditor_service.get_trace("ExpirationAlert", alert.id)
        assert trace.entries[-1].payload["to_status"] == "resolved"

    def test_statistics_drop_sold_out_lot(self, expiration_service, stock_service, near_lot):
        expiration_service.generate_alerts()
        stock_service.apply_movement(near_lot.id, "exit", -20)
        expiration_service.generate_alerts()

        stats = expiration_service.alert_statistics()
        assert stats.total == 0
        assert stats.total_estimated_loss == Decimal(0)

    def test_resolution_runs_once(self, expiration_service, stock_service, near_lot):
        expiration_service.generate_alerts()
        stock_service.apply_movement(near_lot.id, "exit", -20)
        expiration_service.generate_alerts()
        assert expiration_service.generate_alerts().resolved == 0

    def test_resolved_alert_cannot_change(self, expiration_service, stock_service, near_lot):
        (alert,) = expiration_service.generate_alerts().alerts
        stock_service.apply_movement(near_lot.id, "exit", -20)
        expiration_service.generate_alerts()
        with pytest.raises(InvalidTransitionError):
            expiration_service.update_alert_status(alert.id, "treated")

    def test_operator_cannot_resolve(self, expiration_service, near_lot):
        (alert,) = expiration_service.generate_alerts().alerts
        with pytest.raises(InvalidTransitionError):
            expiration_service.update_alert_status(alert.id, AlertStatus.RESOLVED)
        assert expiration_service.get_alert(alert.id).status == AlertStatus.ACTIVE.value


class TestUnknownStatus:

    def test_unknown_status_name_rejected(self, expiration_service, near_lot):
        (alert,) = expiration_service.generate_alerts().alerts
        with pytest.raises(InvalidTransitionError):
            expiration_service.update_alert_status(alert.id, "bogus")
        assert expiration_service.get_alert(alert.id).status == AlertStatus.ACTIVE.value

    def test_unknown_alert_checked_first(self, expiration_service):
        with pytest.raises(AlertNotFoundError):
            expiration_service.update_alert_status(uuid4(), "bogus")
