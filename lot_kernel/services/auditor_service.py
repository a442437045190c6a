"""
AuditorService -- tamper-evident audit trail and hash chain maintenance.

Responsibility:
    Creates immutable, hash-chained audit events for every operator-visible
    state change: lot receipts, transfers, alert decisions, FIFO rule and
    expiration parameter changes, reconciliation lifecycle.  Provides chain
    validation for tamper detection and trace queries for forensic review.

Architecture position:
    Kernel > Services -- imperative shell, called by LotStore, MovementLedger
    and the lot_services orchestrators.

Invariants enforced:
    - Sequence monotonicity via SequenceService (never raw SQL max+1).
    - Chain integrity: ``hash = H(entity_type | entity_id | action |
      payload_hash | prev_hash)``.
    - Append-only: audit events are never modified or deleted (ORM
      listeners on the AuditEvent model).

Failure modes:
    - AuditChainBrokenError: Recomputed hash does not match stored hash,
      or prev_hash does not match the predecessor's hash.

Audit relevance:
    This IS the audit service.  Every audit event flows through
    ``_create_audit_event()``.
"""

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from lot_kernel.domain.clock import Clock, SystemClock
from lot_kernel.exceptions import AuditChainBrokenError
from lot_kernel.logging_config import get_logger
from lot_kernel.models.audit_event import AuditAction, AuditEvent
from lot_kernel.services.sequence_service import SequenceService
from lot_kernel.utils.hashing import hash_audit_event, hash_payload, to_json_safe

logger = get_logger("services.auditor")


@dataclass(frozen=True)
class AuditTraceEntry:
    """A single entry in an audit trace."""

    seq: int
    action: str
    occurred_at: datetime
    actor_id: UUID
    payload: dict[str, Any]
    hash: str


@dataclass(frozen=True)
class AuditTrace:
    """
    Complete audit trace for an entity.

    Contains all audit events in chronological order.
    """

    entity_type: str
    entity_id: UUID
    entries: tuple[AuditTraceEntry, ...]

    @property
    def is_empty(self) -> bool:
        return len(self.entries) == 0

    @property
    def first_action(self) -> str | None:
        return self.entries[0].action if self.entries else None

    @property
    def last_action(self) -> str | None:
        return self.entries[-1].action if self.entries else None


class AuditorService:
    """
    Service for creating and validating tamper-evident audit events.

    Contract:
        Accepts domain-specific recording requests (lot received, transfer
        recorded, reconciliation completed, ...) and creates append-only
        ``AuditEvent`` rows with cryptographic hash chain linkage.

    Guarantees:
        - Every audit event's ``hash`` is a deterministic function of
          ``(entity_type, entity_id, action, payload_hash, prev_hash)``.
        - The stored payload is exactly what was hashed (JSON-safe form).

    Non-goals:
        - Does NOT call ``session.commit()`` -- caller controls boundaries.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._sequence_service = SequenceService(session)

    def _get_last_hash(self) -> str | None:
        """Get the hash of the most recent audit event."""
        last_event = self._session.execute(
            select(AuditEvent)
            .order_by(AuditEvent.seq.desc())
            .limit(1)
        ).scalar_one_or_none()

        return last_event.hash if last_event else None

    def _create_audit_event(
        self,
        entity_type: str,
        entity_id: UUID,
        action: AuditAction,
        actor_id: UUID,
        payload: dict[str, Any] | None = None,
    ) -> AuditEvent:
        """
        Create a new audit event with hash chain linkage.

        The sequence counter row is locked before the previous hash is read,
        so concurrent writers append to the chain one at a time.

        Postconditions:
            - A new ``AuditEvent`` row is flushed to the session.
            - ``event.hash == H(entity_type, entity_id, action,
              payload_hash, prev_hash)``.
        """
        seq = self._sequence_service.next_value(SequenceService.AUDIT_EVENT)

        prev_hash = self._get_last_hash()

        payload_data = to_json_safe(payload or {})
        computed_payload_hash = hash_payload(payload_data)

        event_hash = hash_audit_event(
            entity_type=entity_type,
            entity_id=str(entity_id),
            action=action.value,
            payload_hash=computed_payload_hash,
            prev_hash=prev_hash,
        )

        audit_event = AuditEvent(
            seq=seq,
            entity_type=entity_type,
            entity_id=entity_id,
            action=action.value,
            actor_id=actor_id,
            occurred_at=self._clock.now(),
            payload=payload_data,
            payload_hash=computed_payload_hash,
            prev_hash=prev_hash,
            hash=event_hash,
        )

        self._session.add(audit_event)
        self._session.flush()

        logger.info(
            "audit_event_created",
            extra={
                "entity_type": entity_type,
                "entity_id": str(entity_id),
                "action": action.value,
                "seq": seq,
            },
        )

        return audit_event

    # Lot lifecycle

    def record_lot_received(
        self,
        lot_id: UUID,
        tenant_id: str,
        product_id: str,
        lot_number: str,
        initial_quantity: Decimal,
        reception_date: date,
        expiration_date: date | None,
        actor_id: UUID,
    ) -> AuditEvent:
        return self._create_audit_event(
            entity_type="Lot",
            entity_id=lot_id,
            action=AuditAction.LOT_RECEIVED,
            actor_id=actor_id,
            payload={
                "tenant_id": tenant_id,
                "product_id": product_id,
                "lot_number": lot_number,
                "initial_quantity": initial_quantity,
                "reception_date": reception_date,
                "expiration_date": expiration_date,
            },
        )

    def record_lots_expired(
        self,
        tenant_id: str,
        lot_ids: list[UUID],
        as_of: date,
        actor_id: UUID,
    ) -> AuditEvent:
        """Record a batch expiry; the entity is the acting agent's sweep."""
        return self._create_audit_event(
            entity_type="LotExpirySweep",
            entity_id=actor_id,
            action=AuditAction.LOTS_EXPIRED,
            actor_id=actor_id,
            payload={
                "tenant_id": tenant_id,
                "as_of": as_of,
                "lot_ids": sorted(str(lot_id) for lot_id in lot_ids),
            },
        )

    def record_transfer(
        self,
        from_lot_id: UUID,
        to_lot_id: UUID,
        quantity: Decimal,
        reference_id: str,
        created_lot: bool,
        actor_id: UUID,
    ) -> AuditEvent:
        return self._create_audit_event(
            entity_type="Lot",
            entity_id=from_lot_id,
            action=AuditAction.TRANSFER_RECORDED,
            actor_id=actor_id,
            payload={
                "from_lot_id": from_lot_id,
                "to_lot_id": to_lot_id,
                "quantity": quantity,
                "reference_id": reference_id,
                "created_lot": created_lot,
            },
        )

    # Alerts and configuration

    def record_alert_status_changed(
        self,
        alert_id: UUID,
        lot_id: UUID,
        from_status: str,
        to_status: str,
        notes: str | None,
        actor_id: UUID,
    ) -> AuditEvent:
        return self._create_audit_event(
            entity_type="ExpirationAlert",
            entity_id=alert_id,
            action=AuditAction.ALERT_STATUS_CHANGED,
            actor_id=actor_id,
            payload={
                "lot_id": lot_id,
                "from_status": from_status,
                "to_status": to_status,
                "notes": notes,
            },
        )

    def record_fifo_configuration_changed(
        self,
        config_id: UUID,
        change: str,
        values: dict[str, Any],
        actor_id: UUID,
    ) -> AuditEvent:
        """``change`` is one of created / updated / deactivated."""
        return self._create_audit_event(
            entity_type="FIFOConfiguration",
            entity_id=config_id,
            action=AuditAction.FIFO_CONFIGURATION_CHANGED,
            actor_id=actor_id,
            payload={"change": change, **values},
        )

    def record_expiration_parameter_changed(
        self,
        parameter_id: UUID,
        values: dict[str, Any],
        actor_id: UUID,
    ) -> AuditEvent:
        return self._create_audit_event(
            entity_type="ExpirationParameter",
            entity_id=parameter_id,
            action=AuditAction.EXPIRATION_PARAMETER_CHANGED,
            actor_id=actor_id,
            payload=values,
        )

    # Reconciliation lifecycle

    def record_reconciliation_started(
        self,
        session_id: UUID,
        tenant_id: str,
        lots_count: int,
        actor_id: UUID,
    ) -> AuditEvent:
        return self._create_audit_event(
            entity_type="ReconciliationSession",
            entity_id=session_id,
            action=AuditAction.RECONCILIATION_STARTED,
            actor_id=actor_id,
            payload={
                "session_id": session_id,
                "tenant_id": tenant_id,
                "lots_count": lots_count,
            },
        )

    def record_reconciliation_completed(
        self,
        session_id: UUID,
        discrepancies_count: int,
        total_lots: int,
        completed_at: datetime,
        actor_id: UUID,
        agent_name: str | None = None,
    ) -> AuditEvent:
        """
        Record a completed reconciliation.

        The payload shape is fixed: action, session_id, discrepancies_count,
        total_lots, completed_at, agent_id, plus agent_name when known.
        """
        payload: dict[str, Any] = {
            "action": AuditAction.RECONCILIATION_COMPLETED.value,
            "session_id": session_id,
            "discrepancies_count": discrepancies_count,
            "total_lots": total_lots,
            "completed_at": completed_at,
            "agent_id": actor_id,
        }
        if agent_name is not None:
            payload["agent_name"] = agent_name
        return self._create_audit_event(
            entity_type="ReconciliationSession",
            entity_id=session_id,
            action=AuditAction.RECONCILIATION_COMPLETED,
            actor_id=actor_id,
            payload=payload,
        )

    def record_reconciliation_cancelled(
        self,
        session_id: UUID,
        discarded_counts: int,
        actor_id: UUID,
    ) -> AuditEvent:
        return self._create_audit_event(
            entity_type="ReconciliationSession",
            entity_id=session_id,
            action=AuditAction.RECONCILIATION_CANCELLED,
            actor_id=actor_id,
            payload={
                "session_id": session_id,
                "discarded_counts": discarded_counts,
            },
        )

    # Chain validation

    def validate_chain(self) -> bool:
        """
        Validate the entire audit chain.

        Raises:
            AuditChainBrokenError: If chain validation fails at any point.
        """
        events = self._session.execute(
            select(AuditEvent).order_by(AuditEvent.seq)
        ).scalars().all()

        if not events:
            return True

        if events[0].prev_hash is not None:
            logger.critical("audit_chain_broken", extra={"seq": events[0].seq})
            raise AuditChainBrokenError(
                str(events[0].id),
                "None",
                events[0].prev_hash,
            )

        for i, event in enumerate(events):
            action_value = (
                event.action.value if isinstance(event.action, AuditAction) else event.action
            )

            # The payload itself must still match its stored hash.
            if hash_payload(event.payload or {}) != event.payload_hash:
                logger.critical("audit_chain_broken", extra={"seq": event.seq})
                raise AuditChainBrokenError(
                    str(event.id),
                    event.payload_hash,
                    hash_payload(event.payload or {}),
                )

            expected_hash = hash_audit_event(
                entity_type=event.entity_type,
                entity_id=str(event.entity_id),
                action=action_value,
                payload_hash=event.payload_hash,
                prev_hash=event.prev_hash,
            )

            if event.hash != expected_hash:
                logger.critical("audit_chain_broken", extra={"seq": event.seq})
                raise AuditChainBrokenError(
                    str(event.id),
                    expected_hash,
                    event.hash,
                )

            if i > 0:
                expected_prev = events[i - 1].hash
                if event.prev_hash != expected_prev:
                    logger.critical("audit_chain_broken", extra={"seq": event.seq})
                    raise AuditChainBrokenError(
                        str(event.id),
                        expected_prev,
                        event.prev_hash or "None",
                    )

        logger.info(
            "audit_chain_valid",
            extra={"event_count": len(events)},
        )
        return True

    # Trace and query methods

    def get_trace(
        self,
        entity_type: str,
        entity_id: UUID,
    ) -> AuditTrace:
        """Get the complete audit trace for an entity, oldest first."""
        events = self._session.execute(
            select(AuditEvent)
            .where(
                AuditEvent.entity_type == entity_type,
                AuditEvent.entity_id == entity_id,
            )
            .order_by(AuditEvent.seq)
        ).scalars().all()

        entries = tuple(
            AuditTraceEntry(
                seq=event.seq,
                action=event.action,
                occurred_at=event.occurred_at,
                actor_id=event.actor_id,
                payload=event.payload or {},
                hash=event.hash,
            )
            for event in events
        )

        return AuditTrace(
            entity_type=entity_type,
            entity_id=entity_id,
            entries=entries,
        )

    def get_recent_events(self, limit: int = 100) -> list[AuditEvent]:
        """Most recent audit events first."""
        result = self._session.execute(
            select(AuditEvent)
            .order_by(AuditEvent.seq.desc())
            .limit(limit)
        )
        return list(result.scalars().all())
