"""
Base core-node backend interface.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass


@dataclass
class UTXO:
    txid: str
    vout: int
    value: int
    address: str
    script_pubkey: str
    height: int | None = None


@dataclass
class RawTransactionInfo:
    """Finality state of a transaction as reported by the node."""

    txid: str
    chainlock: bool = False
    instantlock: bool = False
    height: int | None = None
    confirmations: int | None = None
    hex: str = ""


class CoreBackend(ABC):
    """
    Abstract Dash Core node interface.
    Implementations are safe for concurrent use from several tasks.
    """

    @abstractmethod
    async def get_raw_transaction_info(self, txid: str) -> RawTransactionInfo:
        """Get chain/instant lock status, height and confirmations for a transaction"""

    @abstractmethod
    async def send_raw_transaction(self, tx_hex: str) -> str:
        """Broadcast transaction, returns txid"""

    @abstractmethod
    async def get_utxos(self, addresses: list[str]) -> list[UTXO]:
        """Get UTXOs for given addresses"""

    @abstractmethod
    async def get_instant_locks(self, txids: list[str]) -> dict[str, bytes]:
        """Serialized instant-send locks for the given txids, where the node has one"""

    async def close(self) -> None:
        """Close backend connection"""
        pass
