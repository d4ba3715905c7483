"""
Collaborator interfaces the transaction core depends on.

Implementations provide UTXO, inscription and fee-rate data; the core never
performs I/O itself and never caches what they return.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from coincurve import PrivateKey

from ordwallet.errors import MalformedInputError
from ordwallet.models import UTXO, FeeRate


class UtxoProvider(ABC):
    """Source of spendable outputs for an address."""

    @abstractmethod
    async def get_unspent_outputs(self, address: str) -> list[UTXO]:
        """Get all unspent outputs held by address"""

    @abstractmethod
    async def get_ordinal_outputs(self, address: str) -> list[UTXO]:
        """Get the unspent outputs of address that hold inscriptions"""

    async def close(self) -> None:
        """Close backend connection"""
        pass


class FeeRateProvider(ABC):
    @abstractmethod
    async def get_recommended_fee_rate(self) -> FeeRate:
        """Get recommended fee rates in sats/vbyte"""

    async def close(self) -> None:
        pass


class KeyProvider(ABC):
    """
    Hands out already-derived spending keys by account index.

    Seed handling and derivation live outside the core.
    """

    @abstractmethod
    def get_private_key(self, account_index: int) -> bytes:
        """Get the 32-byte private key for account_index"""


class StaticKeyProvider(KeyProvider):
    """Serves a single pre-derived key for account 0."""

    def __init__(self, private_key: bytes | str):
        key_bytes = bytes.fromhex(private_key) if isinstance(private_key, str) else private_key
        # Fail fast on malformed keys
        PrivateKey(key_bytes)
        self._private_key = key_bytes

    def get_private_key(self, account_index: int) -> bytes:
        if account_index != 0:
            raise MalformedInputError(f"No key for account {account_index}")
        return self._private_key
