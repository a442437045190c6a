"""
Kernel invariants.

These guarantees are structural. They are enforced by the Movement Ledger,
database check constraints and the ORM immutability listeners. No tenant
configuration or FIFO rule may switch them off.
"""

from enum import Enum, unique


@unique
class KernelInvariant(str, Enum):
    """Non-configurable invariants enforced by the lot kernel."""

    LEDGER_PROJECTION = "ledger_projection"
    """A lot's remaining_quantity equals the sum of its movements' signed
    quantities. Enforced by MovementLedger, the only writer of the column."""

    QUANTITY_BOUNDS = "quantity_bounds"
    """0 <= remaining_quantity <= initial_quantity. Checked before every
    movement and backed by check constraints on ``lots``."""

    APPEND_ONLY_MOVEMENTS = "append_only_movements"
    """Movements and audit events are never updated or deleted
    (lot_kernel.db.immutability)."""

    SERIALIZED_LOT_WRITES = "serialized_lot_writes"
    """Concurrent movements on one lot serialize on the locked lot row."""

    SEQUENCE_MONOTONICITY = "sequence_monotonicity"
    """Ledger and audit sequence numbers are strictly increasing. Enforced
    by SequenceService with locked counter rows."""

    TERMINAL_SESSIONS = "terminal_sessions"
    """Completed or cancelled reconciliation sessions never change."""


ALL_KERNEL_INVARIANTS: frozenset[KernelInvariant] = frozenset(KernelInvariant)

# The kernel package may not import from these packages.
# Enforced by tests/architecture/test_layer_boundaries.py.
FORBIDDEN_KERNEL_IMPORTS: tuple[str, ...] = (
    "lot_services",
    "lot_config",
    "lot_engines",
)
