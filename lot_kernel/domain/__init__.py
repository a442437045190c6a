"""Pure domain types for the lot kernel (no I/O)."""
