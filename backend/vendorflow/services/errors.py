from __future__ import annotations


class OrderFlowError(ValueError):
    code = "ORDER_FLOW_ERROR"
    http_status = 400

    def __init__(self, message: str = "", *, code: str | None = None):
        super().__init__(message or self.code)
        if code:
            self.code = code

    @property
    def message(self) -> str:
        return str(self.args[0]) if self.args else self.code


class OrderNotFoundError(OrderFlowError):
    code = "ORDER_NOT_FOUND"
    http_status = 404


class OrderValidationError(OrderFlowError):
    code = "VALIDATION_ERROR"
    http_status = 400


class InvalidTransitionError(OrderFlowError):
    code = "INVALID_TRANSITION"
    http_status = 409


class TransitionForbiddenError(OrderFlowError):
    code = "TRANSITION_FORBIDDEN"
    http_status = 403


class OrderConflictError(OrderFlowError):
    """The conditional write matched no row; the caller must re-fetch."""

    code = "ORDER_CONFLICT"
    http_status = 409
