"""
BaseService -- abstract base for kernel services that write.

Responsibility:
    Provides the common constructor contract for every writing service in
    the kernel.  Services receive a SQLAlchemy ``Session`` and a ``Clock``
    and use ``session.flush()`` -- never ``session.commit()``.

Architecture position:
    Kernel > Services -- imperative shell infrastructure.

Invariants enforced:
    Transaction boundaries: services flush within the caller's transaction
    and never commit or roll back the outer transaction themselves.  They
    may open SAVEPOINTs (``begin_nested``) to make a multi-row write
    all-or-nothing.  The caller (an orchestrator in lot_services, or a
    test harness) owns commit/rollback.
"""

from abc import ABC

from sqlalchemy.orm import Session

from lot_kernel.domain.clock import Clock, SystemClock


class BaseService(ABC):
    """
    Abstract base class for writing kernel services.

    Contract:
        Accepts a SQLAlchemy ``Session`` from the caller and uses
        ``session.flush()`` to persist changes within the active
        transaction.

    Non-goals:
        - Does NOT manage the outer transaction lifecycle.
        - Does NOT provide query-only methods -- those live in
          ``lot_kernel/selectors/``.
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        self.session = session
        self.clock = clock or SystemClock()
