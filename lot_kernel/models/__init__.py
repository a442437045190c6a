"""ORM models for the lot kernel."""

from lot_kernel.models.audit_event import AuditAction, AuditEvent
from lot_kernel.models.expiration_alert import AlertStatus, ExpirationAlert
from lot_kernel.models.fifo_configuration import ExpirationParameter, FIFOConfiguration
from lot_kernel.models.lot import Lot, LotStatus
from lot_kernel.models.movement import LotMovement, MovementType, ReferenceType
from lot_kernel.models.reconciliation import (
    TERMINAL_SESSION_STATUSES,
    ReconciliationLine,
    ReconciliationSession,
    SessionStatus,
)

__all__ = [
    "AlertStatus",
    "AuditAction",
    "AuditEvent",
    "ExpirationAlert",
    "ExpirationParameter",
    "FIFOConfiguration",
    "Lot",
    "LotMovement",
    "LotStatus",
    "MovementType",
    "ReconciliationLine",
    "ReconciliationSession",
    "ReferenceType",
    "SessionStatus",
    "TERMINAL_SESSION_STATUSES",
    "import_all_models",
]


def import_all_models() -> None:
    """Import every module that declares tables so Base.metadata is complete."""
    import lot_kernel.models.audit_event  # noqa: F401
    import lot_kernel.models.expiration_alert  # noqa: F401
    import lot_kernel.models.fifo_configuration  # noqa: F401
    import lot_kernel.models.lot  # noqa: F401
    import lot_kernel.models.movement  # noqa: F401
    import lot_kernel.models.reconciliation  # noqa: F401
    import lot_kernel.services.sequence_service  # noqa: F401
