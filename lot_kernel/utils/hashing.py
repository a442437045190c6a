"""
Canonical JSON and SHA-256 helpers for the hash-chained audit trail.

A payload hashes the same however it was built: keys are sorted, Decimals
are normalized (``Decimal("70.000")`` and ``Decimal("70")`` agree), and
dates, UUIDs and enums have one textual form each.
"""

import hashlib
import json
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

GENESIS_MARKER = "GENESIS"


def _encode_value(value: Any) -> Any:
    if isinstance(value, Decimal):
        return format(value.normalize(), "f")
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, UUID):
        return str(value)
    if isinstance(value, Enum):
        return value.value
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def canonicalize_json(data: Any) -> str:
    """Compact, key-sorted JSON text of *data*.  Unsupported types raise TypeError."""
    return json.dumps(data, sort_keys=True, separators=(",", ":"), default=_encode_value)


def to_json_safe(data: Any) -> Any:
    """Plain JSON values (str for UUID/Decimal/date) suitable for a JSON column."""
    return json.loads(canonicalize_json(data))


def _sha256(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def hash_payload(payload: dict) -> str:
    return _sha256(canonicalize_json(payload))


def hash_audit_event(
    entity_type: str,
    entity_id: str,
    action: str,
    payload_hash: str,
    prev_hash: str | None,
) -> str:
    """
    Link hash of one audit event.

    Covers the entity, the action, the payload hash and the previous
    event's hash, so rewriting any earlier event breaks every later link.
    The first event of the chain links to ``GENESIS``.
    """
    return _sha256("|".join((entity_type, str(entity_id), action, payload_hash, prev_hash or GENESIS_MARKER)))
