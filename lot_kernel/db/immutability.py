"""
ORM-Level Immutability Enforcement.

===============================================================================
WHY THIS EXISTS
===============================================================================

The movement ledger is the source of truth for every lot's quantity.  If a
movement could be edited, or if a lot's cached remaining quantity could be
written by any code path other than the ledger, the invariant

    remaining_quantity == sum(signed_quantity of the lot's movements)

would silently stop holding.  This module intercepts such writes before the
SQL reaches the database:

    session.flush()
         |
         v
    [before_update event] --> _check_*_immutability() --> ImmutabilityViolationError
         |
         v
    [before_delete event] --> _check_*_delete() --------> ImmutabilityViolationError
         |
         v
    SQL sent to database (only if checks pass)

===============================================================================
PROTECTED ENTITIES
===============================================================================

Entity                 | Rule
-----------------------|------------------------------------------------------
LotMovement            | ALWAYS immutable, never deleted
AuditEvent             | ALWAYS immutable, never deleted
Lot                    | tenant/product/lot_number/initial_quantity frozen;
                       | remaining_quantity only inside ledger_write_scope();
                       | never deleted
ReconciliationSession  | frozen once completed or cancelled; never deleted
ReconciliationLine     | theoretical_quantity frozen; whole line frozen once
                       | the parent session is terminal; never deleted
ExpirationAlert        | frozen once treated, ignored or resolved; never deleted

===============================================================================
USAGE
===============================================================================

    from lot_kernel.db.immutability import register_immutability_listeners
    register_immutability_listeners()  # once at startup

To temporarily disable (TESTS ONLY):

    unregister_immutability_listeners()
"""

from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar

from sqlalchemy import event, inspect
from sqlalchemy.orm.attributes import get_history

from lot_kernel.exceptions import ImmutabilityViolationError
from lot_kernel.logging_config import get_logger

logger = get_logger("db.immutability")

_TIMESTAMP_FIELDS = frozenset({"updated_at"})

LOT_FROZEN_FIELDS = frozenset({"tenant_id", "product_id", "lot_number", "initial_quantity"})

_ledger_write_active: ContextVar[bool] = ContextVar("ledger_write_active", default=False)


@contextmanager
def ledger_write_scope() -> Iterator[None]:
    """Mark the enclosed block as the Movement Ledger writing lot quantities.

    The ledger must flush inside the scope; a flush triggered later (for
    example by autoflush on an unrelated query) is treated as an outside write.
    """
    token = _ledger_write_active.set(True)
    try:
        yield
    finally:
        _ledger_write_active.reset(token)


def in_ledger_write_scope() -> bool:
    return _ledger_write_active.get()


def _block(entity_type: str, target, operation: str, reason: str, field: str | None = None):
    extra = {
        "entity_type": entity_type,
        "entity_id": str(target.id),
        "operation": operation,
    }
    if field is not None:
        extra["field"] = field
    logger.error("immutability_violation_blocked", extra=extra)
    raise ImmutabilityViolationError(
        entity_type=entity_type,
        entity_id=str(target.id),
        reason=reason,
    )


def _changed_fields(target) -> list[str]:
    insp = inspect(target)
    return [
        attr.key
        for attr in insp.attrs
        if attr.key not in _TIMESTAMP_FIELDS and attr.history.has_changes()
    ]


def _previous_value(target, key: str):
    """Value the attribute had before the pending change (or current if unchanged)."""
    hist = get_history(target, key)
    if hist.deleted:
        return hist.deleted[0]
    return getattr(target, key)


# =============================================================================
# Append-only records
# =============================================================================


def _check_movement_immutability(mapper, connection, target):
    _block("LotMovement", target, "UPDATE", "Ledger movements are append-only")


def _check_movement_delete(mapper, connection, target):
    _block("LotMovement", target, "DELETE", "Ledger movements cannot be deleted")


def _check_audit_event_immutability(mapper, connection, target):
    _block("AuditEvent", target, "UPDATE", "Audit events are immutable and cannot be modified")


def _check_audit_event_delete(mapper, connection, target):
    _block("AuditEvent", target, "DELETE", "Audit events cannot be deleted")


# =============================================================================
# Lot
# =============================================================================


def _check_lot_immutability(mapper, connection, target):
    """
    Lot identity fields never change; remaining_quantity only changes when
    the Movement Ledger writes it.
    """
    for key in _changed_fields(target):
        if key in LOT_FROZEN_FIELDS:
            _block("Lot", target, "UPDATE", f"Cannot modify field '{key}' on a lot", key)
        if key == "remaining_quantity" and not in_ledger_write_scope():
            _block(
                "Lot",
                target,
                "UPDATE",
                "remaining_quantity can only be changed by a ledger movement",
                key,
            )


def _check_lot_delete(mapper, connection, target):
    _block("Lot", target, "DELETE", "Lots cannot be deleted; deplete them with movements")


# =============================================================================
# Reconciliation
# =============================================================================


def _session_was_terminal(session_row) -> bool:
    from lot_kernel.models.reconciliation import TERMINAL_SESSION_STATUSES

    previous = _previous_value(session_row, "status")
    value = previous.value if hasattr(previous, "value") else previous
    return value in TERMINAL_SESSION_STATUSES


def _check_reconciliation_session_immutability(mapper, connection, target):
    """
    Block any change to a session that was already completed or cancelled.

    The transition in_progress -> terminal itself is allowed: the check
    looks at the status value held before this flush.
    """
    if not _session_was_terminal(target):
        return
    changed = _changed_fields(target)
    if changed:
        _block(
            "ReconciliationSession",
            target,
            "UPDATE",
            f"Cannot modify field '{changed[0]}' on a closed reconciliation session",
            changed[0],
        )


def _check_reconciliation_session_delete(mapper, connection, target):
    _block(
        "ReconciliationSession", target, "DELETE",
        "Reconciliation sessions cannot be deleted",
    )


def _check_reconciliation_line_immutability(mapper, connection, target):
    changed = _changed_fields(target)
    if "theoretical_quantity" in changed:
        _block(
            "ReconciliationLine", target, "UPDATE",
            "The theoretical snapshot of a reconciliation line is frozen",
            "theoretical_quantity",
        )
    parent = target.session
    if changed and parent is not None and _session_was_terminal(parent):
        _block(
            "ReconciliationLine", target, "UPDATE",
            "Counts of a closed reconciliation session are frozen",
            changed[0],
        )


def _check_reconciliation_line_delete(mapper, connection, target):
    _block(
        "ReconciliationLine", target, "DELETE",
        "Reconciliation lines cannot be deleted",
    )


# =============================================================================
# Expiration alerts
# =============================================================================


def _check_expiration_alert_immutability(mapper, connection, target):
    previous = _previous_value(target, "status")
    value = previous.value if hasattr(previous, "value") else previous
    if value == "active":
        return
    changed = _changed_fields(target)
    if changed:
        _block(
            "ExpirationAlert", target, "UPDATE",
            f"Cannot modify field '{changed[0]}' on a {value} alert",
            changed[0],
        )


def _check_expiration_alert_delete(mapper, connection, target):
    _block("ExpirationAlert", target, "DELETE", "Expiration alerts cannot be deleted")


# =============================================================================
# Registration
# =============================================================================


def _listener_table():
    from lot_kernel.models.audit_event import AuditEvent
    from lot_kernel.models.expiration_alert import ExpirationAlert
    from lot_kernel.models.lot import Lot
    from lot_kernel.models.movement import LotMovement
    from lot_kernel.models.reconciliation import ReconciliationLine, ReconciliationSession

    return (
        (LotMovement, "before_update", _check_movement_immutability),
        (LotMovement, "before_delete", _check_movement_delete),
        (AuditEvent, "before_update", _check_audit_event_immutability),
        (AuditEvent, "before_delete", _check_audit_event_delete),
        (Lot, "before_update", _check_lot_immutability),
        (Lot, "before_delete", _check_lot_delete),
        (ReconciliationSession, "before_update", _check_reconciliation_session_immutability),
        (ReconciliationSession, "before_delete", _check_reconciliation_session_delete),
        (ReconciliationLine, "before_update", _check_reconciliation_line_immutability),
        (ReconciliationLine, "before_delete", _check_reconciliation_line_delete),
        (ExpirationAlert, "before_update", _check_expiration_alert_immutability),
        (ExpirationAlert, "before_delete", _check_expiration_alert_delete),
    )


def register_immutability_listeners():
    """
    Register all immutability enforcement event listeners.

    Call this after all models are imported but before any database
    operations begin.  Registering twice is a no-op.
    """
    for target, event_name, listener_fn in _listener_table():
        if not event.contains(target, event_name, listener_fn):
            event.listen(target, event_name, listener_fn)


def _safe_remove_listener(target, event_name, listener_fn):
    """Remove an event listener, ignoring it if not registered."""
    if event.contains(target, event_name, listener_fn):
        event.remove(target, event_name, listener_fn)


def unregister_immutability_listeners():
    """
    Remove immutability enforcement event listeners.

    WARNING: Only use this in tests that need to violate the rules on purpose.
    """
    for target, event_name, listener_fn in _listener_table():
        _safe_remove_listener(target, event_name, listener_fn)
