"""
Module: lot_engines
Responsibility:
    Package entrypoint that re-exports the public symbols of the pure
    calculation engines.  This is the canonical import surface for
    lot_services.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import lot_kernel.domain and lot_kernel.logging_config.
    MUST NOT import lot_services or lot_config.

Invariants enforced:
    - Purity: engines never read the clock; "today" is a parameter.
    - Decimal-only quantity and money arithmetic.
    - Determinism: identical inputs give identical outputs.

Audit relevance:
    Traced engine entrypoints emit LOT_ENGINE_TRACE records with an input
    fingerprint (see ``lot_engines.tracer``).
"""

from lot_engines.analytics import (
    LotPerformance,
    PerformanceClass,
    PriorityLabel,
    RotationClass,
    SalePriority,
    UsageStatus,
    average_stay_days,
    carrying_cost,
    classify_rotation,
    fifo_deviation_days,
    lot_performance,
    predicted_stockout_date,
    rotation_rate,
    sale_priority_score,
    stock_value,
    usage_percentage,
    usage_status,
)
from lot_engines.expiration import (
    AlertStatistics,
    AlertThresholds,
    AlertType,
    RECOMMENDED_ACTIONS,
    RiskAssessment,
    UrgencyLevel,
    assess_risk,
    classify_urgency,
    materially_changed,
    resolve_thresholds,
    summarize_alerts,
)
from lot_engines.fifo import (
    ConfigScope,
    FamilyScope,
    FIFOComplianceResult,
    FIFORule,
    GlobalScope,
    ProductScope,
    check_compliance,
    order_lots,
    resolve_rule,
    scope_from_ids,
    select_next_lot,
)
from lot_engines.optimization import (
    OptimizationRule,
    Suggestion,
    SuggestionPriority,
    SuggestionType,
    suggest_optimizations,
)
from lot_engines.reconciliation import (
    CountLine,
    Discrepancy,
    DiscrepancyStatus,
    ReconciliationSummary,
    compute_discrepancies,
    summarize,
)

__all__ = [
    # analytics
    "LotPerformance",
    "PerformanceClass",
    "PriorityLabel",
    "RotationClass",
    "SalePriority",
    "UsageStatus",
    "average_stay_days",
    "carrying_cost",
    "classify_rotation",
    "fifo_deviation_days",
    "lot_performance",
    "predicted_stockout_date",
    "rotation_rate",
    "sale_priority_score",
    "stock_value",
    "usage_percentage",
    "usage_status",
    # expiration
    "AlertStatistics",
    "AlertThresholds",
    "AlertType",
    "RECOMMENDED_ACTIONS",
    "RiskAssessment",
    "UrgencyLevel",
    "assess_risk",
    "classify_urgency",
    "materially_changed",
    "resolve_thresholds",
    "summarize_alerts",
    # fifo
    "ConfigScope",
    "FamilyScope",
    "FIFOComplianceResult",
    "FIFORule",
    "GlobalScope",
    "ProductScope",
    "check_compliance",
    "order_lots",
    "resolve_rule",
    "scope_from_ids",
    "select_next_lot",
    # optimization
    "OptimizationRule",
    "Suggestion",
    "SuggestionPriority",
    "SuggestionType",
    "suggest_optimizations",
    # reconciliation
    "CountLine",
    "Discrepancy",
    "DiscrepancyStatus",
    "ReconciliationSummary",
    "compute_discrepancies",
    "summarize",
]
