# Overview: Error taxonomy shared by every service; carries enough context for a precise message.

from __future__ import annotations


class LedgerPosError(Exception):
    """Base class for user-correctable errors raised by the service layer."""

    status_code = 400

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        return {"error": self.message, "details": self.details}


class ValidationError(LedgerPosError):
    """Malformed input, caught before any mutation."""


class NotFoundError(LedgerPosError):
    """Referenced entity does not exist."""

    status_code = 404


class InsufficientStockError(LedgerPosError):
    """
    A sale would overdraw stock.

    details["items"] lists every offending product:
    {"product_id", "product_name", "requested_quantity", "available_quantity"}
    """

    status_code = 409


class AlreadyReceivedError(LedgerPosError):
    """A purchase has already been received (and its stock credited)."""

    status_code = 409


class NegativeStockRejectedError(LedgerPosError):
    """A movement would leave a product with negative stock."""

    status_code = 409


class InvalidPointAmountError(LedgerPosError):
    """Loyalty point amount is not a positive integer, or exceeds the balance."""
