"""Error taxonomy of the stock ledger.

Routers map these onto HTTP status codes; services raise them before any
mutation unless stated otherwise.
"""


class LedgerError(Exception):
    """Base class for every error raised by the ledger services."""

    code = "ledger_error"


class ValidationError(LedgerError, ValueError):
    """Bad or missing reference, malformed identifier, non-positive quantity."""

    code = "validation_error"


class InsufficientStock(ValidationError):
    code = "insufficient_stock"

    def __init__(self, message: str, available: int = 0, requested: int = 0):
        super().__init__(message)
        self.available = available
        self.requested = requested


class EntryNotFound(ValidationError):
    """An `out` movement targets a rack with no entry for the product."""

    code = "entry_not_found"


class BatchValidationError(ValidationError):
    """One or more line items of a batch failed resolution."""

    code = "batch_validation_error"

    def __init__(self, errors: list[dict]):
        super().__init__(f"Failed to process {len(errors)} items")
        self.errors = errors


class NotFound(LedgerError):
    code = "not_found"


class PermissionDenied(LedgerError):
    code = "permission_denied"


class TransitionError(LedgerError, ValueError):
    """Requested status change is not allowed from the current status."""

    code = "invalid_transition"


class PersistenceConflict(LedgerError):
    """A rack write matched zero rows after every strategy and the retry."""

    code = "persistence_conflict"


class InventoryUpdateError(LedgerError):
    """An approved adjustment could not be written; the request is now failed."""

    code = "inventory_update_failed"

    def __init__(self, message: str, request_status: str = "failed"):
        super().__init__(message)
        self.request_status = request_status


class DownstreamSideEffectFailure(LedgerError):
    """Notification, email or document delivery failed after commit."""

    code = "side_effect_failed"
