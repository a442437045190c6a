"""
lot_services -- Package init and public API.

Responsibility:
    Stateful orchestration services that compose the pure engines
    (lot_engines/) with database sessions, the tenant configuration and
    the external catalog / identity collaborators.  This is the only layer
    that owns commit boundaries.

Architecture position:
    Services -- stateful orchestration over engines + kernel.

    Dependency direction (enforced by tests/architecture/test_layer_boundaries.py):
        lot_services/ -> lot_engines/  (allowed)
        lot_services/ -> lot_kernel/   (allowed)
        lot_services/ -> lot_config/   (allowed)
        lot_engines/  -> lot_services/ (FORBIDDEN)
        lot_kernel/   -> lot_services/ (FORBIDDEN)

Invariants enforced:
    - Each mutating public method is one unit of work (see
      ``lot_services.base.OrchestratorBase``).

Failure modes:
    - ImportError at startup if a service's dependency graph is broken.
"""

from lot_kernel.logging_config import get_logger

logger = get_logger("services")

from lot_services.base import OrchestratorBase
from lot_services.expiration_service import AlertView, ExpirationService, SweepResult
from lot_services.fifo_service import FIFOService
from lot_services.integration import (
    CatalogService,
    IdentityService,
    InMemoryCatalog,
    InMemoryIdentity,
    ProductInfo,
)
from lot_services.optimization_service import (
    LotAnalytics,
    OptimizationService,
    ProductAnalytics,
)
from lot_services.reconciliation_service import (
    CompletedSession,
    ReconciliationService,
    SessionView,
)
from lot_services.stock_service import StockService

__all__ = [
    "AlertView",
    "CatalogService",
    "CompletedSession",
    "ExpirationService",
    "FIFOService",
    "IdentityService",
    "InMemoryCatalog",
    "InMemoryIdentity",
    "LotAnalytics",
    "OptimizationService",
    "OrchestratorBase",
    "ProductAnalytics",
    "ProductInfo",
    "ReconciliationService",
    "SessionView",
    "StockService",
    "SweepResult",
]
