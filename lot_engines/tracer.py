"""
lot_engines.tracer -- Engine invocation tracer emitting LOT_ENGINE_TRACE.

Responsibility:
    ``@traced_engine`` wraps a pure engine call and logs one record per
    invocation: engine name and version, a fingerprint of the keyword
    inputs that steer the result (today, tolerance, thresholds...), the
    number of lots or lines the call worked on, and its duration.

Architecture position:
    Engines -- infrastructure support for the pure calculation layer.
    Emits a log record only; engines stay free of I/O.

Invariants enforced:
    - Two calls with equal steering inputs have equal fingerprints
      (dates, Decimals and UUIDs are rendered canonically, dict keys sorted).
    - The decorator never mutates inputs and never alters the result.

Usage:
    from lot_engines.tracer import traced_engine

    @traced_engine("fifo_order", "1.0", fingerprint_fields=("today", "tolerance_days"))
    def order_lots(lots, *, today, tolerance_days): ...
"""

from __future__ import annotations

import functools
import hashlib
import logging
import time
from collections.abc import Callable, Sized
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

_logger = logging.getLogger("lot_kernel.engines.tracer")


def _canonical(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, Enum):
        return _canonical(value.value)
    if isinstance(value, Decimal):
        return format(value.normalize(), "f")
    if isinstance(value, (date, UUID)):
        return str(value)
    if isinstance(value, dict):
        items = sorted((str(k), _canonical(v)) for k, v in value.items())
        return "{" + ",".join(f"{k}:{v}" for k, v in items) + "}"
    if isinstance(value, (list, tuple)):
        return "[" + ",".join(_canonical(v) for v in value) + "]"
    return str(value)


def compute_input_fingerprint(
    fingerprint_fields: tuple[str, ...],
    kwargs: dict[str, Any],
) -> str:
    """16 hex chars of SHA-256 over the named keyword inputs; absent ones count as null."""
    canonical = "|".join(f"{name}={_canonical(kwargs.get(name))}" for name in fingerprint_fields)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()[:16]


def traced_engine(
    engine_name: str,
    engine_version: str,
    fingerprint_fields: tuple[str, ...] = (),
) -> Callable:
    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            started = time.monotonic()
            result = func(*args, **kwargs)
            _logger.info(
                "LOT_ENGINE_TRACE",
                extra={
                    "trace_type": "LOT_ENGINE_TRACE",
                    "engine_name": engine_name,
                    "engine_version": engine_version,
                    "input_fingerprint": (
                        compute_input_fingerprint(fingerprint_fields, kwargs)
                        if fingerprint_fields else ""
                    ),
                    # The first positional argument is the lot / line collection.
                    "input_size": len(args[0]) if args and isinstance(args[0], Sized) else None,
                    "duration_ms": round((time.monotonic() - started) * 1000, 2),
                    "function": func.__qualname__,
                },
            )
            return result

        return wrapper

    return decorator
