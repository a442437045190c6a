"""
lot_config -- single public entrypoint for lot engine configuration.

Responsibility:
    Provides the only way to obtain configuration at runtime through
    ``get_active_config()``.  No other component reads configuration files
    or environment variables directly.

Architecture position:
    Configuration -- YAML-driven tenant settings.  Sits beside the kernel
    and below ``lot_services``.  The kernel MUST NEVER import from
    ``lot_config``.

Invariants enforced:
    - Single entrypoint: all runtime config flows through ``get_active_config()``.
    - Deterministic: the same YAML and tenant always give the same checksum.

Failure modes:
    - ``FileNotFoundError`` -- the configuration set does not exist.
    - ``KeyError`` / ``ValueError`` -- missing or inconsistent values.

Audit relevance:
    Every successful ``get_active_config()`` call emits a
    ``LOT_CONFIG_TRACE`` log entry with the config id, version, tenant and
    checksum.
"""

from __future__ import annotations

import logging
from pathlib import Path

from lot_config.loader import compute_checksum, load_config_file
from lot_config.schema import (
    AlertThresholdsDef,
    AnalyticsDef,
    FIFODefaultsDef,
    LotEngineConfig,
    OptimizationRuleDef,
)

_logger = logging.getLogger("lot_kernel.config")

_DEFAULT_CONFIG_DIR = Path(__file__).parent / "sets"
_DEFAULT_SET = "default.yaml"

DEFAULT_TENANT = "default"


def get_active_config(
    tenant_id: str | None = None,
    config_dir: Path | None = None,
) -> LotEngineConfig:
    """The only public configuration entrypoint.

    Args:
        tenant_id: Tenant whose overrides apply.  Defaults to "default".
        config_dir: Directory holding ``default.yaml``.  Defaults to
            lot_config/sets/.

    Raises:
        FileNotFoundError: If the configuration set is missing.
        KeyError: If a required section is missing.
        ValueError: If values are inconsistent.
    """
    sets_dir = config_dir or _DEFAULT_CONFIG_DIR
    path = sets_dir / _DEFAULT_SET
    if not path.is_file():
        raise FileNotFoundError(f"Configuration set not found: {path}")

    config = load_config_file(path, tenant_id or DEFAULT_TENANT)

    _logger.info(
        "LOT_CONFIG_TRACE",
        extra={
            "trace_type": "LOT_CONFIG_TRACE",
            "config_set_id": config.config_id,
            "config_set_version": config.version,
            "tenant_id": config.tenant_id,
            "checksum": config.checksum,
            "optimization_rule_count": len(config.optimization_rules),
        },
    )
    return config


__all__ = [
    "AlertThresholdsDef",
    "AnalyticsDef",
    "FIFODefaultsDef",
    "LotEngineConfig",
    "OptimizationRuleDef",
    "compute_checksum",
    "get_active_config",
]
