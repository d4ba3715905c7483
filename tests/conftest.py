"""
Test configuration for ordwallet tests.
"""

from __future__ import annotations

import hashlib
import itertools
from collections.abc import Callable

import pytest
from coincurve import PrivateKey
from fakes import PAYMENT_ADDRESS

from ordwallet.backends.base import StaticKeyProvider
from ordwallet.config import Settings
from ordwallet.models import UTXO, Confirmation, NetworkType
from ordwallet.scripts import ScriptType, pubkey_to_address


@pytest.fixture
def private_key() -> PrivateKey:
    """Fixed test key (not for production use!)."""
    return PrivateKey(bytes([1] * 32))


@pytest.fixture
def key_provider(private_key: PrivateKey) -> StaticKeyProvider:
    return StaticKeyProvider(private_key.secret)


@pytest.fixture
def wallet_address(private_key: PrivateKey) -> str:
    """Wrapped segwit address controlled by private_key."""
    pubkey = private_key.public_key.format(compressed=True)
    return pubkey_to_address(pubkey, ScriptType.WRAPPED_SEGWIT, NetworkType.MAINNET)


@pytest.fixture
def make_utxo() -> Callable[..., UTXO]:
    """Factory for UTXOs with unique deterministic txids."""
    counter = itertools.count()

    def _make(
        value: int,
        confirmed: bool = True,
        address: str = PAYMENT_ADDRESS,
        vout: int = 0,
    ) -> UTXO:
        txid = hashlib.sha256(f"utxo-{next(counter)}".encode()).hexdigest()
        return UTXO(txid, vout, value, address, Confirmation(confirmed=confirmed))

    return _make


@pytest.fixture
def settings() -> Settings:
    return Settings(_env_file=None)
