"""
OrchestratorBase -- transaction ownership for lot_services orchestrators.

Responsibility:
    Gives every orchestrator the same commit boundary.  Kernel services
    flush; orchestrators decide whether the work is committed.

Architecture position:
    Services -- stateful orchestration over lot_kernel and lot_engines.

Invariants enforced:
    - With ``auto_commit=True`` (default) each public mutating method
      commits on success and rolls the session back on any exception
      before re-raising it.
    - With ``auto_commit=False`` the method runs inside a SAVEPOINT and
      only flushes; a failure rolls back to the savepoint, leaving the
      caller's earlier work in the session intact.  The caller commits.

Failure modes:
    - Every exception raised inside a unit of work propagates unchanged.
"""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

from sqlalchemy.orm import Session

from lot_config import LotEngineConfig, get_active_config
from lot_kernel.domain.clock import Clock, SystemClock
from lot_kernel.logging_config import get_logger

logger = get_logger("services.unit_of_work")


class OrchestratorBase:
    """
    Shared constructor and unit-of-work helper.

    A ``config`` passed in is used for its own tenant; other tenants load
    theirs through ``get_active_config`` on first use.

    Contract:
        Subclasses wrap each mutating public method body in
        ``with self._unit_of_work("operation_name", ...)``.  Read methods
        do not open a unit of work.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        *,
        config: LotEngineConfig | None = None,
        auto_commit: bool = True,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._auto_commit = auto_commit
        self._configs: dict[str, LotEngineConfig] = {}
        if config is not None:
            self._configs[config.tenant_id] = config

    @property
    def session(self) -> Session:
        return self._session

    @property
    def clock(self) -> Clock:
        return self._clock

    def _tenant_config(self, tenant_id: str) -> LotEngineConfig:
        """Configuration injected for ``tenant_id``, else the active set (cached)."""
        config = self._configs.get(tenant_id)
        if config is None:
            config = get_active_config(tenant_id)
            self._configs[tenant_id] = config
        return config

    @contextmanager
    def _unit_of_work(self, operation: str, **fields: Any) -> Iterator[None]:
        if not self._auto_commit:
            with self._session.begin_nested():
                yield
            return

        try:
            yield
            self._session.commit()
        except Exception as exc:
            self._session.rollback()
            logger.warning(
                "operation_rolled_back",
                extra={
                    "operation": operation,
                    "exc_type": type(exc).__name__,
                    "exc_code": getattr(exc, "code", None),
                    **fields,
                },
            )
            raise
