"""
Test configuration for registrar tests.

The node and Platform clients are mocks. Broadcasting through the mock node
resolves the finality tracker with an instant proof, as the chain watcher
would once the node reports an instant lock.
"""

from __future__ import annotations

from collections.abc import Callable
from unittest.mock import AsyncMock, MagicMock

import pytest

from evocore.models import (
    Identity,
    InstantAssetLockProof,
    NetworkType,
    OutPoint,
    TxOut,
    txid_of,
)
from evowallet.backends.base import RawTransactionInfo
from evowallet.persistence.database import Database
from evowallet.wallet.address import address_to_script
from evowallet.wallet.bip32 import mnemonic_to_seed
from evowallet.wallet.models import Wallet, WalletUtxo
from registrar.config import Settings
from registrar.context import AppContext
from registrar.finality import FinalityTracker


@pytest.fixture
def sample_mnemonic() -> str:
    """Test mnemonic (not for production use!)."""
    return (
        "abandon abandon abandon abandon abandon abandon "
        "abandon abandon abandon abandon abandon about"
    )


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        network=NetworkType.TESTNET,
        proof_poll_interval=0.01,
        proof_timeout_sec=2,
    )


@pytest.fixture
def db() -> Database:
    database = Database("sqlite://")
    database.create_tables()
    yield database
    database.close()


@pytest.fixture
def tracker() -> FinalityTracker:
    return FinalityTracker()


@pytest.fixture
def backend(tracker: FinalityTracker) -> MagicMock:
    backend = MagicMock()

    def broadcast(tx_hex: str) -> str:
        raw = bytes.fromhex(tx_hex)
        txid = txid_of(raw)
        tracker.resolve(txid, InstantAssetLockProof(b"islock-" + raw[:4], raw, 0))
        return txid

    backend.send_raw_transaction = AsyncMock(side_effect=broadcast)
    backend.get_utxos = AsyncMock(return_value=[])
    backend.get_raw_transaction_info = AsyncMock(
        side_effect=lambda txid: RawTransactionInfo(txid=txid, instantlock=True)
    )
    backend.get_instant_locks = AsyncMock(return_value={})
    backend.close = AsyncMock()
    return backend


@pytest.fixture
def platform() -> MagicMock:
    platform = MagicMock()

    async def submit(identity: Identity, proof, private_key) -> Identity:
        return identity.model_copy(update={"balance": 99_000_000})

    platform.fetch_identity_by_id = AsyncMock(return_value=None)
    platform.submit_identity_create = AsyncMock(side_effect=submit)
    platform.get_core_chain_locked_height = AsyncMock(return_value=123_456)
    return platform


@pytest.fixture
def wallet(sample_mnemonic: str, db: Database) -> Wallet:
    wallet = Wallet(mnemonic_to_seed(sample_mnemonic), NetworkType.TESTNET, is_main=True)
    for index in range(3):
        wallet.receive_address(index)
        wallet.change_address(index)
    db.store_wallet(wallet)
    return wallet


@pytest.fixture
def context(db, backend, platform, settings, tracker, wallet) -> AppContext:
    context = AppContext(db, backend, platform, settings, tracker)
    context.add_wallet(wallet)
    return context


@pytest.fixture
def fund(wallet: Wallet, db: Database) -> Callable[..., WalletUtxo]:
    """Add a UTXO to the wallet and the database."""

    def _fund(value: int, index: int = 0, tx_number: int = 1, vout: int = 0) -> WalletUtxo:
        address = wallet.receive_address(index)
        utxo = WalletUtxo(
            OutPoint(f"{tx_number:064x}", vout),
            TxOut(value, address_to_script(address, wallet.network)),
            address,
        )
        db.insert_utxo(utxo.outpoint, address, utxo.output, wallet.network)
        wallet.add_utxo(address, utxo.outpoint, utxo.output)
        return utxo

    return _fund
