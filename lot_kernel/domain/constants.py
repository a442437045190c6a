"""Identifiers shared across the lot kernel."""

from uuid import UUID

# Tenant used when a caller does not partition its data
DEFAULT_TENANT_ID = "default"

# Actor recorded for system-initiated changes (sweeps, scheduled expiry)
SYSTEM_ACTOR_ID = UUID(int=0)
