# coachhq/errors.py
"""
Engine error taxonomy.

Every error carries the HTTP status the thin routers answer with, so the
handlers never need to know which layer raised.
"""


class EngineError(Exception):
    """Base class for every error the engine raises on purpose."""

    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(EngineError):
    """Missing or malformed input; rejected before any write."""

    status_code = 400


class NotFoundError(EngineError):
    status_code = 404


class InvariantViolation(EngineError):
    """A write would break a stored invariant; the transaction is rolled back."""

    status_code = 409


class CapacityError(InvariantViolation):
    pass


class InvalidPaymentError(InvariantViolation):
    pass


class InvalidTransitionError(InvariantViolation):
    pass


class StorageError(EngineError):
    """The store is unreachable or failed for infrastructure reasons."""

    status_code = 503
