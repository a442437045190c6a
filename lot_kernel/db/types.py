"""
Module: lot_kernel.db.types
Responsibility: Annotated column aliases and quantity helpers shared by the
    models and services.
Architecture position: Kernel > DB.  May be imported by models/, domain/,
    services/, and selectors/.  MUST NOT import from any of those layers.

Invariants enforced:
    - No floats for quantities or prices.  as_quantity() is the sanctioned
      coercion for values arriving from callers or from backends that hand
      back floats (SQLite).
"""

from decimal import ROUND_HALF_UP, Decimal
from typing import Annotated

from sqlalchemy import Numeric, String

# Stock quantity: fractional units are legal (detail breakdown)
Quantity = Annotated[Decimal, Numeric(38, 9)]

# Unit price / stock value
Price = Annotated[Decimal, Numeric(38, 9)]

# Tenant / catalog identifiers supplied by external services
ExternalId = Annotated[str, String(100)]

# Short status / type codes
ShortCode = Annotated[str, String(30)]

# SHA-256 hex digest
PayloadHash = Annotated[str, String(64)]

# Free text
LongText = Annotated[str, String(4000)]

QUANTITY_DECIMAL_PLACES = 9
MONEY_DECIMAL_PLACES = 2
DEFAULT_ROUNDING = ROUND_HALF_UP

_QUANTUM = Decimal(1).scaleb(-QUANTITY_DECIMAL_PLACES)


def as_quantity(value: Decimal | int | str) -> Decimal:
    """
    Coerce a caller-supplied or database-returned value to a Decimal quantity.

    Floats are rejected; strings and ints are converted exactly.  The result
    is quantized to the storage precision and normalized so that equal
    quantities compare and hash identically regardless of trailing zeros.

    Raises:
        TypeError: If value is a float or bool.
        decimal.InvalidOperation: If value is not numeric.
    """
    if isinstance(value, (float, bool)):
        raise TypeError(f"Quantities must be Decimal, int or str, got {type(value).__name__}")
    dec = value if isinstance(value, Decimal) else Decimal(value)
    normalized = dec.quantize(_QUANTUM, rounding=DEFAULT_ROUNDING).normalize()
    if normalized.as_tuple().exponent > 0:
        normalized = normalized.quantize(Decimal(1))
    return normalized


def round_money(value: Decimal, decimal_places: int = MONEY_DECIMAL_PLACES) -> Decimal:
    """Round a monetary amount (loss, benefit, stock value) for reporting."""
    return value.quantize(Decimal(1).scaleb(-decimal_places), rounding=DEFAULT_ROUNDING)
