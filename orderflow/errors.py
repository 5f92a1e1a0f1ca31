"""
Order error taxonomy. Every failure the engine and query service return to a caller is one of these.
NotFound / Forbidden / InvalidTransition / ValidationError are deterministic business outcomes;
Unavailable is transient and safe to retry with the same request.
"""


class OrderError(Exception):
    """Base class. status_code is the HTTP status the API answers with."""
    status_code = 500
    kind = "error"

    def __init__(self, detail: str = ""):
        self.detail = detail or self.__class__.__name__
        super().__init__(self.detail)


class NotFound(OrderError):
    status_code = 404
    kind = "not_found"


class Forbidden(OrderError):
    status_code = 403
    kind = "forbidden"


class InvalidTransition(OrderError):
    """Actor is entitled but the order is not in a state that allows the operation."""
    status_code = 409
    kind = "invalid_transition"

    def __init__(self, detail: str = "", current_state: str | None = None):
        self.current_state = current_state
        super().__init__(detail)


class Conflict(InvalidTransition):
    """The conditional write found the record changed since it was read (lost race)."""
    kind = "conflict"


class ValidationError(OrderError):
    status_code = 422
    kind = "validation_error"


class Unavailable(OrderError):
    """Store or bus transient failure (timeout, connection lost)."""
    status_code = 503
    kind = "unavailable"
