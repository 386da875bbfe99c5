"""
Test configuration for evowallet tests.
"""

from __future__ import annotations

from collections.abc import Callable

import pytest

from evocore.models import NetworkType, OutPoint, TxOut
from evowallet.persistence.database import Database
from evowallet.wallet.address import address_to_script
from evowallet.wallet.bip32 import mnemonic_to_seed
from evowallet.wallet.models import Wallet, WalletUtxo


@pytest.fixture
def sample_mnemonic() -> str:
    """Test mnemonic (not for production use!)."""
    return (
        "abandon abandon abandon abandon abandon abandon "
        "abandon abandon abandon abandon abandon about"
    )


@pytest.fixture
def wallet(sample_mnemonic: str) -> Wallet:
    wallet = Wallet(mnemonic_to_seed(sample_mnemonic), NetworkType.TESTNET, alias="test")
    for index in range(3):
        wallet.receive_address(index)
        wallet.change_address(index)
    return wallet


@pytest.fixture
def db() -> Database:
    database = Database("sqlite://")
    database.create_tables()
    yield database
    database.close()


@pytest.fixture
def make_utxo(wallet: Wallet) -> Callable[..., WalletUtxo]:
    """Build a UTXO paying to one of the wallet's receive addresses."""

    def _make(value: int, index: int = 0, tx_number: int = 1, vout: int = 0) -> WalletUtxo:
        address = wallet.receive_address(index)
        return WalletUtxo(
            OutPoint(f"{tx_number:064x}", vout),
            TxOut(value, address_to_script(address, wallet.network)),
            address,
        )

    return _make
