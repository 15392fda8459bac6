"""Typed failures raised by the circulation components.

Business-rule failures are expected control flow: the engine facade turns
them into OperationResult values. InvariantViolation means stock or queue
data was about to be corrupted; it is logged and re-raised.
"""

from enum import Enum
from typing import Any


class ErrorKind(str, Enum):
    OUT_OF_STOCK = "out_of_stock"
    LIMIT_EXCEEDED = "limit_exceeded"
    DUPLICATE_REQUEST = "duplicate_request"
    INVALID_STATE_TRANSITION = "invalid_state_transition"
    ALREADY_ON_HOLD = "already_on_hold"
    STOCK_AVAILABLE = "stock_available"
    NOT_FOUND = "not_found"
    INVARIANT_VIOLATION = "invariant_violation"


class CirculationError(Exception):
    kind: ErrorKind

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class OutOfStock(CirculationError):
    kind = ErrorKind.OUT_OF_STOCK


class LimitExceeded(CirculationError):
    kind = ErrorKind.LIMIT_EXCEEDED


class DuplicateRequest(CirculationError):
    kind = ErrorKind.DUPLICATE_REQUEST


class InvalidStateTransition(CirculationError):
    kind = ErrorKind.INVALID_STATE_TRANSITION


class AlreadyOnHold(CirculationError):
    kind = ErrorKind.ALREADY_ON_HOLD


class StockAvailable(CirculationError):
    kind = ErrorKind.STOCK_AVAILABLE


class NotFound(CirculationError):
    kind = ErrorKind.NOT_FOUND


class InvariantViolation(CirculationError):
    kind = ErrorKind.INVARIANT_VIOLATION
