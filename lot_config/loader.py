"""
Configuration Loader (``lot_config.loader``).

Responsibility
--------------
Loads a YAML configuration set, merges a tenant's overrides over the
defaults and parses the result into typed ``lot_config.schema``
dataclasses.  The runtime entry point is ``lot_config.get_active_config()``;
services never call the loader directly.

Invariants enforced
-------------------
* Every parsed object is a frozen dataclass from ``schema.py``.
* Required sections missing from the document raise ``KeyError``;
  inconsistent values raise ``ValueError``.
* ``compute_checksum`` is deterministic for identical documents.
* ``LOT_LEDGER_DATABASE_URL`` is read here and nowhere else.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Missing required keys  -> ``KeyError`` propagates.
"""

from __future__ import annotations

import copy
import hashlib
import json
import os
from decimal import Decimal
from pathlib import Path
from typing import Any

import yaml

from lot_config.schema import (
    AlertThresholdsDef,
    AnalyticsDef,
    FIFODefaultsDef,
    LotEngineConfig,
    OptimizationRuleDef,
)

DATABASE_URL_ENV = "LOT_LEDGER_DATABASE_URL"


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
    """
    with open(path) as f:
        return yaml.safe_load(f) or {}


def compute_checksum(data: dict[str, Any]) -> str:
    """SHA-256 of the canonical JSON serialization of ``data``."""
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()


def deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Recursively merge ``override`` into a copy of ``base``; lists are replaced."""
    merged = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = deep_merge(merged[key], value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


def _decimal(value: Any) -> Decimal:
    if isinstance(value, bool):
        raise ValueError(f"Expected a number, got {value!r}")
    return Decimal(str(value))


def parse_alert_thresholds(data: dict[str, Any]) -> AlertThresholdsDef:
    thresholds = AlertThresholdsDef(
        critical_days=int(data["critical_days"]),
        alert_days=int(data["alert_days"]),
        warning_days=int(data["warning_days"]),
        horizon_days=int(data.get("horizon_days", 90)),
    )
    if not 0 <= thresholds.critical_days <= thresholds.alert_days <= thresholds.warning_days:
        raise ValueError(
            "alert_thresholds must satisfy 0 <= critical_days <= alert_days <= warning_days"
        )
    if thresholds.horizon_days < thresholds.warning_days:
        raise ValueError("alert_thresholds.horizon_days must be >= warning_days")
    return thresholds


def parse_fifo_defaults(data: dict[str, Any]) -> FIFODefaultsDef:
    defaults = FIFODefaultsDef(
        priority=int(data.get("priority", 1)),
        tolerance_days=int(data["tolerance_days"]),
        alert_threshold_days=int(data["alert_threshold_days"]),
        ignore_expired_lots=bool(data.get("ignore_expired_lots", True)),
        price_priority=bool(data.get("price_priority", False)),
        auto_action=bool(data.get("auto_action", False)),
    )
    if defaults.tolerance_days < 0:
        raise ValueError("fifo_defaults.tolerance_days cannot be negative")
    return defaults


def parse_analytics(data: dict[str, Any]) -> AnalyticsDef:
    analytics = AnalyticsDef(
        fast_rotation=_decimal(data["fast_rotation"]),
        medium_rotation=_decimal(data["medium_rotation"]),
        target_rotation=_decimal(data.get("target_rotation", 6)),
        carrying_cost_rate=_decimal(data.get("carrying_cost_rate", "0.15")),
        consumption_lookback_days=int(data.get("consumption_lookback_days", 30)),
        stockout_variation=_decimal(data.get("stockout_variation", 0)),
    )
    if analytics.medium_rotation > analytics.fast_rotation:
        raise ValueError("analytics.medium_rotation cannot exceed fast_rotation")
    if analytics.consumption_lookback_days <= 0:
        raise ValueError("analytics.consumption_lookback_days must be positive")
    return analytics


def parse_optimization_rule(data: dict[str, Any]) -> OptimizationRuleDef:
    return OptimizationRuleDef(
        name=data["name"],
        is_active=bool(data.get("is_active", True)),
        priority=int(data.get("priority", 1)),
        parameters=dict(data.get("parameters") or {}),
    )


def parse_config(
    document: dict[str, Any],
    tenant_id: str,
    environ: dict[str, str] | None = None,
) -> LotEngineConfig:
    """
    Build the configuration of ``tenant_id`` from a whole document.

    The tenant's section under ``tenants:`` (if any) is merged over the
    top-level values before parsing.
    """
    env = os.environ if environ is None else environ
    base = {k: v for k, v in document.items() if k != "tenants"}
    override = (document.get("tenants") or {}).get(tenant_id) or {}
    merged = deep_merge(base, override)

    rules = tuple(parse_optimization_rule(r) for r in merged.get("optimization_rules") or ())
    names = [r.name for r in rules]
    if len(names) != len(set(names)):
        raise ValueError(f"Duplicate optimization rule names: {names}")

    return LotEngineConfig(
        config_id=merged["config_id"],
        version=int(merged["version"]),
        tenant_id=tenant_id,
        alert_thresholds=parse_alert_thresholds(merged["alert_thresholds"]),
        fifo_defaults=parse_fifo_defaults(merged["fifo_defaults"]),
        analytics=parse_analytics(merged["analytics"]),
        optimization_rules=rules,
        database_url=env.get(DATABASE_URL_ENV) or merged.get("database_url"),
        checksum=compute_checksum(merged),
    )


def load_config_file(
    path: Path,
    tenant_id: str,
    environ: dict[str, str] | None = None,
) -> LotEngineConfig:
    return parse_config(load_yaml_file(path), tenant_id, environ)
