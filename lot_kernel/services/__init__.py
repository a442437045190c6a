"""Kernel services (flush-only writers)."""
