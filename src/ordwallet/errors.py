"""
Error taxonomy for transaction construction.

Every failure the core reports is a TransactionError tagged with an ErrorKind,
so callers can tell "not enough money" apart from "indexer down" and from
"bad address" without inspecting transport-specific exceptions.
"""

from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    INSUFFICIENT_FUNDS = "insufficient_funds"
    INVALID_ADDRESS = "invalid_address"
    MALFORMED_INPUT = "malformed_input"
    NETWORK = "network"
    SERVER_ERROR = "server_error"


class TransactionError(Exception):
    """Base class for all classified transaction errors."""

    kind: ErrorKind = ErrorKind.SERVER_ERROR


class InsufficientFundsError(TransactionError):
    """Selection could not reach the required total."""

    kind = ErrorKind.INSUFFICIENT_FUNDS

    def __init__(self, required: int, available: int, message: str | None = None):
        self.required = required
        self.available = available
        super().__init__(
            message or f"Insufficient funds: need {required} sats, have {available} sats"
        )


class InvalidAddressError(TransactionError):
    """A recipient, change or ordinal address failed to parse."""

    kind = ErrorKind.INVALID_ADDRESS

    def __init__(self, address: str, reason: str = ""):
        self.address = address
        detail = f": {reason}" if reason else ""
        super().__init__(f"Invalid address {address!r}{detail}")


class MalformedInputError(TransactionError, ValueError):
    kind = ErrorKind.MALFORMED_INPUT


class SigningError(MalformedInputError):
    pass


class NetworkError(TransactionError):
    """Indexer or fee-rate service unreachable. Eligible for retry by the caller."""

    kind = ErrorKind.NETWORK


class ServerError(TransactionError):
    kind = ErrorKind.SERVER_ERROR


class RequestCancelled(Exception):
    """
    A request was superseded or abandoned.

    Not a TransactionError. Cancellation is a silent short-circuit and never
    surfaces as an error state.
    """

    def __init__(self, reason: str = "Request cancelled"):
        self.reason = reason
        super().__init__(reason)
