"""
LotEngineConfig schema.

Typed, frozen form of a tenant's engine configuration.  YAML documents are
parsed into these types by the loader; nothing downstream reads YAML or
environment variables.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any

# ---------------------------------------------------------------------------
# Expiration alerting
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class AlertThresholdsDef:
    """Day thresholds: seuil critique / alerte / avertissement, plus the sweep horizon."""

    critical_days: int = 7
    alert_days: int = 30
    warning_days: int = 60
    horizon_days: int = 90


# ---------------------------------------------------------------------------
# FIFO
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class FIFODefaultsDef:
    """Values of the global FIFO rule provisioned for a tenant."""

    priority: int = 1
    tolerance_days: int = 7
    alert_threshold_days: int = 30
    ignore_expired_lots: bool = True
    price_priority: bool = False
    auto_action: bool = False


# ---------------------------------------------------------------------------
# Analytics
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class AnalyticsDef:
    fast_rotation: Decimal = Decimal(12)
    medium_rotation: Decimal = Decimal(6)
    target_rotation: Decimal = Decimal(6)
    carrying_cost_rate: Decimal = Decimal("0.15")
    consumption_lookback_days: int = 30
    stockout_variation: Decimal = Decimal(0)


# ---------------------------------------------------------------------------
# Optimization rules
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class OptimizationRuleDef:
    name: str
    is_active: bool = True
    priority: int = 1
    parameters: dict[str, Any] = field(default_factory=dict)


# ---------------------------------------------------------------------------
# Root
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class LotEngineConfig:
    """
    Fully resolved configuration for one tenant.

    ``checksum`` is the SHA-256 of the merged source document, so a run can
    be tied to the exact configuration that governed it.
    """

    config_id: str
    version: int
    tenant_id: str
    alert_thresholds: AlertThresholdsDef
    fifo_defaults: FIFODefaultsDef
    analytics: AnalyticsDef
    optimization_rules: tuple[OptimizationRuleDef, ...]
    database_url: str | None = None
    checksum: str = ""

    def rule(self, name: str) -> OptimizationRuleDef | None:
        for rule in self.optimization_rules:
            if rule.name == name:
                return rule
        return None
