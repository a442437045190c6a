"""
Typed Exception Hierarchy for the Lot Ledger.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Stock movements are rejected for precise reasons: a lot does not exist, an
exit would drive a lot negative, a reconciliation session was already
closed.  Callers (presentation layers, host services) must be able to react
to each reason without parsing message strings.

Every error therefore:
  1. Has a TYPED exception class (catch by type, not message)
  2. Has a CODE attribute (machine-readable, API-safe)
  3. Carries structured DATA (lot_id, requested quantity, ...)

Example:
    try:
        ledger.apply_movement(lot_id, MovementType.EXIT, Decimal("-80"))
    except QuantityOutOfBoundsError as e:
        api_response(code=e.code, lot=e.lot_id, available=e.remaining_quantity)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    LotLedgerError (base)
    |
    +-- NotFoundError
    |   +-- LotNotFoundError
    |   +-- MovementNotFoundError
    |   +-- SessionNotFoundError
    |   +-- AlertNotFoundError
    |   +-- ConfigurationNotFoundError
    |
    +-- QuantityError
    |   +-- InvalidQuantityError
    |   +-- QuantityOutOfBoundsError
    |
    +-- MovementError
    |   +-- InvalidMovementTypeError
    |   +-- InvalidTransferError
    |   +-- DuplicateLotNumberError
    |
    +-- ConfigurationError
    |   +-- NoConfigurationError
    |   +-- InvalidConfigurationScopeError
    |
    +-- StateError
    |   +-- InvalidTransitionError
    |   +-- EmptyReconciliationError
    |   +-- LotNotInSessionError
    |
    +-- AuditError
    |   +-- AuditChainBrokenError
    |
    +-- ConcurrencyError
    |   +-- OptimisticLockError
    |
    +-- ImmutabilityError
        +-- ImmutabilityViolationError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category      | Code                        | When Raised
--------------|-----------------------------|-----------------------------------------
NotFound      | LOT_NOT_FOUND               | Lot id does not exist
              | MOVEMENT_NOT_FOUND          | Movement id does not exist
              | SESSION_NOT_FOUND           | Reconciliation session does not exist
              | ALERT_NOT_FOUND             | Expiration alert does not exist
              | CONFIGURATION_NOT_FOUND     | FIFO configuration / parameter missing
--------------|-----------------------------|-----------------------------------------
Quantity      | INVALID_QUANTITY            | Zero/negative where positive required
              | QUANTITY_OUT_OF_BOUNDS      | Result leaves [0, initial_quantity]
--------------|-----------------------------|-----------------------------------------
Movement      | INVALID_MOVEMENT_TYPE       | Sign does not match movement type
              | INVALID_TRANSFER            | Transfer legs malformed
              | DUPLICATE_LOT_NUMBER        | lot_number reused for tenant+product
--------------|-----------------------------|-----------------------------------------
Configuration | NO_CONFIGURATION            | No FIFO rule applies (no global rule)
              | INVALID_CONFIGURATION_SCOPE | Both product and family set
--------------|-----------------------------|-----------------------------------------
State         | INVALID_TRANSITION          | State machine violation
              | EMPTY_RECONCILIATION        | Completion with zero discrepancies
              | LOT_NOT_IN_SESSION          | Count for a lot outside the snapshot
--------------|-----------------------------|-----------------------------------------
Audit         | AUDIT_CHAIN_BROKEN          | Hash chain validation failed
Concurrency   | OPTIMISTIC_LOCK_CONFLICT    | Stale version on lot update
Immutability  | IMMUTABILITY_VIOLATION      | Append-only / frozen record modified

Propagation: every error is scoped to one operation.  Services raise
synchronously; orchestrators roll back the transaction and re-raise.
"""


class LotLedgerError(Exception):
    """
    Base exception for all lot ledger errors.

    All subclasses must have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "LOT_LEDGER_ERROR"


# Not-found exceptions


class NotFoundError(LotLedgerError):
    """Base exception for references that do not resolve."""

    code: str = "NOT_FOUND"


class LotNotFoundError(NotFoundError):
    """Lot with given ID was not found."""

    code: str = "LOT_NOT_FOUND"

    def __init__(self, lot_id: str):
        self.lot_id = lot_id
        super().__init__(f"Lot not found: {lot_id}")


class MovementNotFoundError(NotFoundError):
    """Movement with given ID was not found."""

    code: str = "MOVEMENT_NOT_FOUND"

    def __init__(self, movement_id: str):
        self.movement_id = movement_id
        super().__init__(f"Movement not found: {movement_id}")


class SessionNotFoundError(NotFoundError):
    """Reconciliation session with given ID was not found."""

    code: str = "SESSION_NOT_FOUND"

    def __init__(self, session_id: str):
        self.session_id = session_id
        super().__init__(f"Reconciliation session not found: {session_id}")


class AlertNotFoundError(NotFoundError):
    """Expiration alert with given ID was not found."""

    code: str = "ALERT_NOT_FOUND"

    def __init__(self, alert_id: str):
        self.alert_id = alert_id
        super().__init__(f"Expiration alert not found: {alert_id}")


class ConfigurationNotFoundError(NotFoundError):
    """FIFO configuration or expiration parameter was not found."""

    code: str = "CONFIGURATION_NOT_FOUND"

    def __init__(self, config_id: str):
        self.config_id = config_id
        super().__init__(f"Configuration not found: {config_id}")


# Quantity exceptions


class QuantityError(LotLedgerError):
    """Base exception for quantity invariant violations."""

    code: str = "QUANTITY_ERROR"


class InvalidQuantityError(QuantityError):
    """Quantity is zero, negative or otherwise unusable for the operation."""

    code: str = "INVALID_QUANTITY"

    def __init__(self, quantity: str, reason: str):
        self.quantity = quantity
        self.reason = reason
        super().__init__(f"Invalid quantity {quantity}: {reason}")


class QuantityOutOfBoundsError(QuantityError):
    """
    Applying a movement would leave remaining_quantity outside
    [0, initial_quantity].  Never partially applied.
    """

    code: str = "QUANTITY_OUT_OF_BOUNDS"

    def __init__(
        self,
        lot_id: str,
        remaining_quantity: str,
        requested_delta: str,
        initial_quantity: str,
    ):
        self.lot_id = lot_id
        self.remaining_quantity = remaining_quantity
        self.requested_delta = requested_delta
        self.initial_quantity = initial_quantity
        super().__init__(
            f"Movement of {requested_delta} on lot {lot_id} would leave "
            f"remaining quantity outside [0, {initial_quantity}] "
            f"(current: {remaining_quantity})"
        )


# Movement exceptions


class MovementError(LotLedgerError):
    """Base exception for malformed movements."""

    code: str = "MOVEMENT_ERROR"


class InvalidMovementTypeError(MovementError):
    """Movement type does not accept the supplied sign or route."""

    code: str = "INVALID_MOVEMENT_TYPE"

    def __init__(self, movement_type: str, reason: str):
        self.movement_type = movement_type
        self.reason = reason
        super().__init__(f"Invalid {movement_type} movement: {reason}")


class InvalidTransferError(MovementError):
    """Transfer request cannot produce a valid pair of legs."""

    code: str = "INVALID_TRANSFER"

    def __init__(self, from_lot_id: str, reason: str):
        self.from_lot_id = from_lot_id
        self.reason = reason
        super().__init__(f"Invalid transfer from lot {from_lot_id}: {reason}")


class DuplicateLotNumberError(MovementError):
    """Lot number already used for this tenant and product."""

    code: str = "DUPLICATE_LOT_NUMBER"

    def __init__(self, tenant_id: str, product_id: str, lot_number: str):
        self.tenant_id = tenant_id
        self.product_id = product_id
        self.lot_number = lot_number
        super().__init__(
            f"Lot number {lot_number} already exists for product {product_id} "
            f"(tenant {tenant_id})"
        )


# Configuration exceptions


class ConfigurationError(LotLedgerError):
    """Base exception for FIFO / expiration configuration errors."""

    code: str = "CONFIGURATION_ERROR"


class NoConfigurationError(ConfigurationError):
    """No active FIFO configuration applies, not even a global fallback."""

    code: str = "NO_CONFIGURATION"

    def __init__(self, tenant_id: str, product_id: str, family_id: str | None = None):
        self.tenant_id = tenant_id
        self.product_id = product_id
        self.family_id = family_id
        super().__init__(
            f"No FIFO configuration applies to product {product_id} "
            f"(family {family_id}, tenant {tenant_id}); provision a global default"
        )


class InvalidConfigurationScopeError(ConfigurationError):
    """A configuration targets both a product and a family."""

    code: str = "INVALID_CONFIGURATION_SCOPE"

    def __init__(self, product_id: str | None, family_id: str | None):
        self.product_id = product_id
        self.family_id = family_id
        super().__init__(
            f"Configuration scope must target at most one of product/family "
            f"(product={product_id}, family={family_id})"
        )


# State machine exceptions


class StateError(LotLedgerError):
    """Base exception for state machine violations."""

    code: str = "STATE_ERROR"


class InvalidTransitionError(StateError):
    """Requested transition is not allowed from the current state."""

    code: str = "INVALID_TRANSITION"

    def __init__(self, entity_type: str, entity_id: str, from_status: str, to_status: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(
            f"Cannot transition {entity_type} {entity_id} "
            f"from {from_status} to {to_status}"
        )


class EmptyReconciliationError(StateError):
    """Completion attempted on a session with zero discrepancies."""

    code: str = "EMPTY_RECONCILIATION"

    def __init__(self, session_id: str):
        self.session_id = session_id
        super().__init__(
            f"Reconciliation session {session_id} has no discrepancies to complete"
        )


class LotNotInSessionError(StateError):
    """Physical count recorded for a lot absent from the session snapshot."""

    code: str = "LOT_NOT_IN_SESSION"

    def __init__(self, session_id: str, lot_id: str):
        self.session_id = session_id
        self.lot_id = lot_id
        super().__init__(f"Lot {lot_id} is not part of reconciliation session {session_id}")


# Audit exceptions


class AuditError(LotLedgerError):
    """Base exception for audit-related errors."""

    code: str = "AUDIT_ERROR"


class AuditChainBrokenError(AuditError):
    """Audit hash chain validation failed."""

    code: str = "AUDIT_CHAIN_BROKEN"

    def __init__(self, audit_event_id: str, expected_hash: str, actual_hash: str):
        self.audit_event_id = audit_event_id
        self.expected_hash = expected_hash
        self.actual_hash = actual_hash
        super().__init__(
            f"Audit chain broken at {audit_event_id}: "
            f"expected {expected_hash}, found {actual_hash}"
        )


# Concurrency exceptions


class ConcurrencyError(LotLedgerError):
    """Base exception for concurrency-related errors."""

    code: str = "CONCURRENCY_ERROR"


class OptimisticLockError(ConcurrencyError):
    """Optimistic locking conflict detected."""

    code: str = "OPTIMISTIC_LOCK_CONFLICT"

    def __init__(self, entity_type: str, entity_id: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(
            f"Optimistic lock conflict on {entity_type} {entity_id}: "
            "entity was modified by another transaction"
        )


# Immutability exceptions


class ImmutabilityError(LotLedgerError):
    """Base exception for immutability-related errors."""

    code: str = "IMMUTABILITY_ERROR"


class ImmutabilityViolationError(ImmutabilityError):
    """
    Attempted to modify or delete an immutable record.

    Movements and audit events are append-only; lot identity fields and
    terminal reconciliation sessions are frozen.
    """

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )
