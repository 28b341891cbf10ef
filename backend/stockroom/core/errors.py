"""Typed engine errors.

Every verb that fails aborts its unit of work and surfaces one of these to
the adapter; the FastAPI handler in ``stockroom.main`` renders them as
``{"error": kind, "code": code, "detail": message}``.
"""

from __future__ import annotations


class StockError(Exception):
    status_code: int = 400
    retryable: bool = False
    default_code: str = "stock-error"

    def __init__(self, message: str = "", *, code: str | None = None, **details):
        super().__init__(message or self.__class__.__name__)
        self.message = message or self.__class__.__name__
        self.code = code or self.default_code
        self.details = details

    @property
    def kind(self) -> str:
        return self.__class__.__name__

    def to_dict(self) -> dict:
        body = {"error": self.kind, "code": self.code, "detail": self.message}
        if self.details:
            body["details"] = self.details
        return body


class InsufficientStock(StockError):
    status_code = 409
    default_code = "insufficient-stock"


class InvariantViolation(StockError):
    """A counter would go negative or break reserved <= on_hand."""

    status_code = 500
    default_code = "invariant-violation"


class SerialUnavailable(StockError):
    status_code = 409
    default_code = "serial-unavailable"


class DomainError(StockError):
    status_code = 400
    default_code = "domain-error"

    def __init__(self, code: str, message: str = "", **details):
        super().__init__(message or code, code=code, **details)


class NotFound(StockError):
    status_code = 404
    default_code = "not-found"


class Timeout(StockError):
    status_code = 504
    retryable = True
    default_code = "timeout"


class Conflict(StockError):
    status_code = 409
    retryable = True
    default_code = "conflict"


__all__ = [
    "StockError",
    "InsufficientStock",
    "InvariantViolation",
    "SerialUnavailable",
    "DomainError",
    "NotFound",
    "Timeout",
    "Conflict",
]
