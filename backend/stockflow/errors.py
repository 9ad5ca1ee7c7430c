# Overview: Domain error taxonomy shared by services, routes and the CLI.

from __future__ import annotations


class StockError(Exception):
    """
    Base class for every recoverable domain failure.

    `details` carries structured context (e.g. per-line shortfalls) so the
    HTTP layer can return it verbatim.
    """
    status_code = 400

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        return {"error": self.message, "code": type(self).__name__, "details": self.details}


class ValidationError(StockError):
    """400-level input problem, detected before any mutation."""


class NotFound(StockError):
    status_code = 404


class InsufficientStock(StockError):
    """Requested quantity exceeds what is available at a stock key."""
    status_code = 409


class InvalidStateTransition(StockError):
    status_code = 409


class IncompletePricing(StockError):
    """A shipment cannot be confirmed while any line lacks a store price."""
    status_code = 409


class AlreadyTerminal(InvalidStateTransition):
    """The document is COMPLETED or CANCELLED and accepts no further actions."""


class AlreadyCompleted(AlreadyTerminal):
    pass
