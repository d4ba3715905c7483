"""
Collaborator interfaces and backend implementations.

Available backends:
- EsploraBackend: esplora REST API for UTXOs, mempool.space for fee rates,
  optional ord server for inscription outputs
"""

from ordwallet.backends.base import (
    FeeRateProvider,
    KeyProvider,
    StaticKeyProvider,
    UtxoProvider,
)
from ordwallet.backends.esplora import EsploraBackend

__all__ = [
    "EsploraBackend",
    "FeeRateProvider",
    "KeyProvider",
    "StaticKeyProvider",
    "UtxoProvider",
]
