"""Exception hierarchy raised by the ledger core.

Every error carries a stable ``code`` and the HTTP status the API answers
with, so route handlers can let them propagate to the application's
exception handler instead of translating each one by hand.
"""


class LedgerError(Exception):
    """Base class for all ledger specific errors."""

    code = "ledger_error"
    status_code = 400

    def __init__(self, message: str | None = None):
        super().__init__(message or self.__class__.__doc__.strip())
        self.message = str(self)


class ValidationError(LedgerError):
    """Malformed input."""

    code = "validation_error"
    status_code = 422


class GuardError(LedgerError):
    """A child request was refused by the request guard."""

    code = "guard_error"
    status_code = 409


class DuplicatePending(GuardError):
    """A pending request for this quest already exists today."""

    code = "duplicate_pending"
    status_code = 409


class RateLimited(GuardError):
    """Too many requests, try again in a moment."""

    code = "rate_limited"
    status_code = 429


class InsufficientBalance(LedgerError):
    """Not enough spendable stars."""

    code = "insufficient_balance"
    status_code = 400


class InvalidTransition(LedgerError):
    """The entry cannot move to the requested status."""

    code = "invalid_transition"
    status_code = 409


class AlreadyReviewed(InvalidTransition):
    """The entry has already been reviewed."""

    code = "already_reviewed"
    status_code = 409


class NotFound(LedgerError):
    """Entry not found."""

    code = "not_found"
    status_code = 404


class Forbidden(LedgerError):
    """Not authorized for this family."""

    code = "forbidden"
    status_code = 403


class StorageError(LedgerError):
    """The ledger store failed to persist the change."""

    code = "storage_error"
    status_code = 503
