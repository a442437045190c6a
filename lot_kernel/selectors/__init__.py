"""Read-only query selectors."""

from lot_kernel.selectors.lot_selector import LotSelector, effective_status, lot_to_view
from lot_kernel.selectors.movement_selector import MovementSelector, MovementStream

__all__ = [
    "LotSelector",
    "MovementSelector",
    "MovementStream",
    "effective_status",
    "lot_to_view",
]
