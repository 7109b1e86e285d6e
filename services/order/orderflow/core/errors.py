"""Error taxonomy raised by the lifecycle engine and the payment reconciler.

Each error carries the HTTP status the API layer answers with; the mapping
lives here so routes never translate errors by hand.
"""


class OrderError(Exception):
    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(OrderError):
    """Malformed input, insufficient stock or a missing mandatory field."""
    status_code = 400


class InvalidStateError(OrderError):
    """Transition attempted from a status that does not allow it."""
    status_code = 409


class NotFoundError(OrderError):
    status_code = 404


class PermissionDeniedError(OrderError):
    status_code = 403


class SecurityError(OrderError):
    """Webhook signature or trigger key mismatch."""
    status_code = 401


class ExternalDependencyError(OrderError):
    """Payment gateway or file store unreachable or answering with an error."""
    status_code = 502
