"""
ordwallet - transaction construction for a multi-asset Bitcoin wallet

UTXO selection, fee resolution, signing of BTC and inscription transfers, and
BRC-20 commit/reveal fee estimation.
"""

__version__ = "0.1.0"

from ordwallet.errors import (
    ErrorKind,
    InsufficientFundsError,
    InvalidAddressError,
    MalformedInputError,
    NetworkError,
    RequestCancelled,
    ServerError,
    SigningError,
    TransactionError,
)
from ordwallet.models import (
    UTXO,
    FeeRate,
    NetworkType,
    Recipient,
    SelectionResult,
    SignedTransactionResult,
    TransactionPlan,
)
from ordwallet.scripts import ScriptType

__all__ = [
    "ErrorKind",
    "FeeRate",
    "InsufficientFundsError",
    "InvalidAddressError",
    "MalformedInputError",
    "NetworkError",
    "NetworkType",
    "Recipient",
    "RequestCancelled",
    "ScriptType",
    "SelectionResult",
    "ServerError",
    "SignedTransactionResult",
    "SigningError",
    "TransactionError",
    "TransactionPlan",
    "UTXO",
]
