"""
Core-node backend implementations.

Available backends:
- DashCoreBackend: Dash Core JSON-RPC (no node wallet, uses scantxoutset)
"""

from evowallet.backends.base import UTXO, CoreBackend, RawTransactionInfo
from evowallet.backends.dash_core import DashCoreBackend

__all__ = [
    "CoreBackend",
    "DashCoreBackend",
    "RawTransactionInfo",
    "UTXO",
]
