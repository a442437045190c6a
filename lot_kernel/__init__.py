"""
Lot Kernel

The persistence core of the lot inventory ledger:
- Lots with a quantity projection maintained only by the movement ledger
- Append-only, sequenced movements
- Hash-chained audit trail
- Row-locked concurrent writes
"""

__version__ = "0.1.0"
