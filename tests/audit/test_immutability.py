"""
ORM-level immutability enforcement.

Movements and audit events are append-only, lot identity is frozen and a
lot's remaining quantity only moves through the ledger.
"""

from decimal import Decimal

import pytest
from sqlalchemy import select

from lot_kernel.exceptions import ImmutabilityViolationError
from lot_kernel.models.audit_event import AuditEvent
from lot_kernel.models.lot import Lot
from lot_kernel.models.movement import LotMovement
from lot_kernel.models.reconciliation import ReconciliationLine, ReconciliationSession


@pytest.fixture
def lot_row(make_lot, session):
    view = make_lot("PARA-500", 10)
    return session.get(Lot, view.id)


def _opening(session, lot_id) -> LotMovement:
    return session.execute(
        select(LotMovement).where(LotMovement.lot_id == lot_id)
    ).scalar_one()


class TestMovementImmutability:

    def test_update_blocked(self, session, lot_row):
        movement = _opening(session, lot_row.id)
        movement.signed_quantity = Decimal(999)
        with pytest.raises(ImmutabilityViolationError) as exc_info:
            session.flush()
        assert exc_info.value.entity_type == "LotMovement"
        session.rollback()

    def test_delete_blocked(self, session, lot_row):
        session.delete(_opening(session, lot_row.id))
        with pytest.raises(ImmutabilityViolationError):
            session.flush()
        session.rollback()


class TestAuditEventImmutability:

    def test_update_blocked(self, session, lot_row):
        event = session.execute(select(AuditEvent).order_by(AuditEvent.seq.desc())).scalars().first()
        event.payload = {"tampered": True}
        with pytest.raises(ImmutabilityViolationError):
            session.flush()
        session.rollback()

    def test_delete_blocked(self, session, lot_row):
        event = session.execute(select(AuditEvent)).scalars().first()
        session.delete(event)
        with pytest.raises(ImmutabilityViolationError):
            session.flush()
        session.rollback()


class TestLotImmutability:

    @pytest.mark.parametrize(
        "field, value",
        [
            ("initial_quantity", Decimal(500)),
            ("product_id", "IBU-400"),
            ("lot_number", "RENAMED"),
            ("tenant_id", "other"),
        ],
    )
    def test_identity_fields_frozen(self, session, lot_row, field, value):
        setattr(lot_row, field, value)
        with pytest.raises(ImmutabilityViolationError) as exc_info:
            session.flush()
        assert field in str(exc_info.value)
        session.rollback()

    def test_remaining_only_through_ledger(self, session, lot_row):
        lot_row.remaining_quantity = Decimal(3)
        with pytest.raises(ImmutabilityViolationError):
            session.flush()
        session.rollback()

    def test_delete_blocked(self, session, lot_row):
        session.delete(lot_row)
        with pytest.raises(ImmutabilityViolationError):
            session.flush()
        session.rollback()

    def test_descriptive_fields_editable(self, session, lot_row):
        lot_row.storage_location = "SHELF-Z"
        session.flush()
        assert session.get(Lot, lot_row.id).storage_location == "SHELF-Z"


class TestViolationLogging:

    def test_violation_is_logged(self, session, lot_row, captured_logs):
        lot_row.remaining_quantity = Decimal(3)
        with pytest.raises(ImmutabilityViolationError):
            session.flush()
        session.rollback()

        blocked = [r for r in captured_logs() if r["message"] == "immutability_violation_blocked"]
        assert blocked[-1]["entity_type"] == "Lot"
        assert blocked[-1]["field"] == "remaining_quantity"


class TestReconciliationImmutability:

    @pytest.fixture
    def completed(self, make_lot, reconciliation_service, session):
        lot = make_lot("PARA-500", 10)
        started = reconciliation_service.start_session(lot_ids=[lot.id])
        reconciliation_service.record_physical_count(started.id, lot.id, 8)
        reconciliation_service.complete_session(started.id)
        return session.get(ReconciliationSession, started.id)

    def test_closed_session_frozen(self, session, completed):
        completed.notes = "rewritten"
        with pytest.raises(ImmutabilityViolationError) as exc_info:
            session.flush()
        assert exc_info.value.entity_type == "ReconciliationSession"
        session.rollback()

    def test_closed_session_counts_frozen(self, session, completed):
        line = session.execute(
            select(ReconciliationLine).where(ReconciliationLine.session_id == completed.id)
        ).scalar_one()
        line.physical_quantity = Decimal(10)
        with pytest.raises(ImmutabilityViolationError):
            session.flush()
        session.rollback()

    def test_snapshot_frozen_while_open(self, session, make_lot, reconciliation_service):
        lot = make_lot("PARA-500", 10)
        started = reconciliation_service.start_session(lot_ids=[lot.id])
        line = session.execute(
            select(ReconciliationLine).where(ReconciliationLine.session_id == started.id)
        ).scalar_one()
        line.theoretical_quantity = Decimal(3)
        with pytest.raises(ImmutabilityViolationError):
            session.flush()
        session.rollback()

    def test_session_delete_blocked(self, session, completed):
        session.delete(completed)
        with pytest.raises(ImmutabilityViolationError):
            session.flush()
        session.rollback()

    def test_session_delete_raises_guard_error_not_integrity_error(
        self, session, completed, captured_logs
    ):
        session.delete(completed)
        with pytest.raises(ImmutabilityViolationError):
            session.flush()
        session.rollback()
        blocked = [r for r in captured_logs() if r["message"] == "immutability_violation_blocked"]
        assert blocked[-1]["operation"] == "DELETE"
        assert blocked[-1]["entity_type"] in {"ReconciliationLine", "ReconciliationSession"}

    def test_open_session_delete_blocked(self, session, make_lot, reconciliation_service):
        lot = make_lot("PARA-500", 10)
        started = reconciliation_service.start_session(lot_ids=[lot.id])
        session.delete(session.get(ReconciliationSession, started.id))
        with pytest.raises(ImmutabilityViolationError):
            session.flush()
        session.rollback()

    def test_removing_line_from_session_blocked(self, session, completed):
        completed.lines.clear()
        with pytest.raises(ImmutabilityViolationError):
            session.flush()
        session.rollback()
