"""
Audit chain validation tests.

Verifies:
- Every lot lifecycle fact leaves a hash-chained audit event
- The chain validates end to end
- Tampering with a stored hash or payload is detected
"""

from datetime import date

import pytest
from sqlalchemy import select, text

from lot_kernel.exceptions import AuditChainBrokenError
from lot_kernel.models.audit_event import AuditAction, AuditEvent


@pytest.fixture
def audited_history(make_lot, stock_service):
    """A receipt, a transfer and an expiry sweep: four audit events."""
    first = make_lot("PARA-500", 20)
    second = make_lot("PARA-500", 20, expiration_date=date(2024, 2, 1))
    stock_service.transfer_movement(first.id, None, 5, to_location="SHELF-B")
    stock_service.expire_lots()
    return first, second


def _events(session) -> list[AuditEvent]:
    return list(session.execute(select(AuditEvent).order_by(AuditEvent.seq)).scalars())


class TestChainStructure:

    def test_events_are_linked(self, session, audited_history):
        events = _events(session)
        assert [e.action for e in events] == [
            AuditAction.LOT_RECEIVED,
            AuditAction.LOT_RECEIVED,
            AuditAction.TRANSFER_RECORDED,
            AuditAction.LOTS_EXPIRED,
        ]
        assert events[0].prev_hash is None
        for previous, current in zip(events, events[1:]):
            assert current.prev_hash == previous.hash
            assert current.seq > previous.seq

    def test_chain_validates(self, auditor_service, audited_history):
        assert auditor_service.validate_chain() is True

    def test_empty_chain_is_valid(self, auditor_service):
        assert auditor_service.validate_chain() is True

    def test_trace_for_lot(self, auditor_service, audited_history):
        first, _ = audited_history
        trace = auditor_service.get_trace("Lot", first.id)
        assert not trace.is_empty
        assert [e.action for e in trace.entries] == [
            AuditAction.LOT_RECEIVED,
            AuditAction.TRANSFER_RECORDED,
        ]


class TestTamperDetection:

    def _tamper(self, session, statement: str, seq: int) -> None:
        # Raw SQL skips the ORM immutability listeners.
        session.execute(text(statement), {"seq": seq})
        session.expire_all()

    def test_modified_hash_detected(self, session, auditor_service, audited_history):
        target = _events(session)[1]
        self._tamper(
            session,
            "UPDATE audit_events SET hash = '" + "0" * 64 + "' WHERE seq = :seq",
            target.seq,
        )
        with pytest.raises(AuditChainBrokenError):
            auditor_service.validate_chain()

    def test_modified_payload_detected(self, session, auditor_service, audited_history):
        target = _events(session)[0]
        self._tamper(
            session,
            "UPDATE audit_events SET payload = '{\"lot_number\": \"FORGED\"}' WHERE seq = :seq",
            target.seq,
        )
        with pytest.raises(AuditChainBrokenError) as exc_info:
            auditor_service.validate_chain()
        assert exc_info.value.audit_event_id == str(target.id)

    def test_broken_link_detected(self, session, auditor_service, audited_history):
        target = _events(session)[2]
        self._tamper(
            session,
            "UPDATE audit_events SET prev_hash = '" + "f" * 64 + "' WHERE seq = :seq",
            target.seq,
        )
        with pytest.raises(AuditChainBrokenError):
            auditor_service.validate_chain()
