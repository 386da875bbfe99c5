"""
Tests for the wallet UTXO store and address registry.
"""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from evocore.models import NetworkType, OutPoint, TxOut
from evowallet.persistence.database import DatabaseError
from evowallet.wallet.bip32 import mnemonic_to_seed
from evowallet.wallet.models import (
    DerivationPathReference,
    DerivationPathType,
    InsufficientFundsError,
    UnknownAddressError,
    UtxoReservedError,
    Wallet,
)


def _add(wallet, utxo):
    wallet.add_utxo(utxo.address, utxo.outpoint, utxo.output)


class TestAddressRegistry:
    def test_testnet_addresses_start_with_y(self, wallet):
        assert wallet.receive_address(0).startswith("y")

    def test_mainnet_addresses_start_with_x(self, sample_mnemonic):
        mainnet = Wallet(mnemonic_to_seed(sample_mnemonic), NetworkType.MAINNET)
        assert mainnet.receive_address(0).startswith("X")

    def test_paths_use_coin_type(self, wallet):
        assert wallet.bip44_path(1, 4) == "m/44'/1'/0'/1/4"
        assert wallet.identity_registration_path(2) == "m/9'/1'/5'/1'/2"
        assert wallet.identity_authentication_path(3, 1) == "m/9'/1'/5'/0'/0'/3'/1'"

    def test_known_address_maps_to_path(self, wallet):
        address = wallet.receive_address(1)
        assert wallet.known_addresses[address] == "m/44'/1'/0'/0/1"
        info = wallet.watched_addresses["m/44'/1'/0'/0/1"]
        assert info.address == address
        assert info.path_reference == DerivationPathReference.BIP44

    def test_next_change_address_follows_highest_index(self, wallet):
        assert wallet.next_address_index(1) == 3
        address = wallet.next_change_address()
        assert wallet.known_addresses[address] == "m/44'/1'/0'/1/3"
        assert wallet.next_address_index(1) == 4

    def test_identity_registration_key_registers_funding_address(self, wallet):
        key = wallet.identity_registration_key(0)
        info = wallet.watched_addresses[wallet.identity_registration_path(0)]
        assert info.path_type == DerivationPathType.CREDIT_FUNDING
        assert wallet.private_key_for_address(info.address).secret == key.private_key.secret

    def test_private_key_for_unknown_address(self, wallet):
        assert wallet.private_key_for_address("yUnknownAddress") is None

    def test_seed_hash_is_stable(self, wallet, sample_mnemonic):
        other = Wallet(mnemonic_to_seed(sample_mnemonic), NetworkType.TESTNET)
        assert other.seed_hash == wallet.seed_hash
        assert len(wallet.seed_hash) == 32


class TestBalances:
    def test_unknown_address_rejected(self, wallet):
        with pytest.raises(UnknownAddressError):
            wallet.add_utxo("yNotOurs", OutPoint("00" * 32, 0), TxOut(1000, b""))

    def test_balance_is_sum_of_live_utxos(self, wallet, make_utxo):
        first = make_utxo(10_000, index=0, tx_number=1)
        second = make_utxo(5_000, index=0, tx_number=2)
        third = make_utxo(7_000, index=1, tx_number=3)
        for utxo in (first, second, third):
            _add(wallet, utxo)
        # Duplicate adds are ignored
        _add(wallet, first)

        assert wallet.balance_of(first.address) == 15_000
        assert wallet.total_balance() == 22_000

        wallet.remove_utxos(lambda u: u.outpoint == second.outpoint)
        assert wallet.balance_of(first.address) == 10_000
        for address, outpoints in wallet.utxos.items():
            assert wallet.balance_of(address) == sum(o.value for o in outpoints.values())

    def test_remove_drops_empty_address_but_keeps_it_known(self, wallet, make_utxo):
        utxo = make_utxo(10_000, index=2)
        _add(wallet, utxo)

        removed = wallet.remove_utxos(lambda u: True)

        assert removed == [utxo]
        assert utxo.address not in wallet.utxos
        assert utxo.address in wallet.known_addresses
        assert wallet.balance_of(utxo.address) == 0

    def test_replace_utxos(self, wallet, make_utxo):
        _add(wallet, make_utxo(10_000, tx_number=1))
        fresh = make_utxo(3_000, tx_number=9)
        wallet.replace_utxos([fresh])
        assert list(wallet.iter_utxos()) == [fresh]
        assert wallet.total_balance() == 3_000


class TestReservation:
    def test_reserved_utxos_are_not_selected(self, wallet, make_utxo):
        big = make_utxo(50_000, tx_number=1)
        small = make_utxo(20_000, tx_number=2)
        _add(wallet, big)
        _add(wallet, small)

        wallet.reserve([big.outpoint])

        assert wallet.select_utxos(10_000) == [small]
        with pytest.raises(InsufficientFundsError):
            wallet.select_utxos(30_000)

    def test_double_reserve_fails(self, wallet, make_utxo):
        utxo = make_utxo(50_000)
        _add(wallet, utxo)
        wallet.reserve([utxo.outpoint])
        with pytest.raises(UtxoReservedError):
            wallet.reserve([utxo.outpoint])

    def test_reserve_missing_utxo_fails(self, wallet):
        with pytest.raises(UtxoReservedError):
            wallet.reserve([OutPoint("11" * 32, 0)])

    def test_release(self, wallet, make_utxo):
        utxo = make_utxo(50_000)
        _add(wallet, utxo)
        wallet.reserve([utxo.outpoint])
        wallet.release([utxo.outpoint])
        assert not wallet.is_reserved(utxo.outpoint)
        assert wallet.select_utxos(1) == [utxo]

    def test_select_largest_first(self, wallet, make_utxo):
        utxos = [make_utxo(v, tx_number=i) for i, v in enumerate([1_000, 30_000, 5_000], 1)]
        for utxo in utxos:
            _add(wallet, utxo)
        selected = wallet.select_utxos(32_000)
        assert [u.value for u in selected] == [30_000, 5_000]

    def test_asset_lock_reservation(self, wallet):
        wallet.reserve_asset_lock("aa" * 32)
        with pytest.raises(UtxoReservedError):
            wallet.reserve_asset_lock("aa" * 32)
        wallet.release_asset_lock("aa" * 32)
        wallet.reserve_asset_lock("aa" * 32)


class TestConsume:
    def test_consume_removes_from_memory_and_database(self, wallet, make_utxo, db):
        db.store_wallet(wallet)
        spent = make_utxo(40_000, tx_number=1)
        kept = make_utxo(10_000, tx_number=2)
        for utxo in (spent, kept):
            _add(wallet, utxo)
            db.insert_utxo(utxo.outpoint, utxo.address, utxo.output, wallet.network)

        wallet.consume([spent.outpoint], db)

        assert wallet.find_utxo(spent.outpoint) is None
        assert [u.outpoint for u in db.get_utxos(wallet.network)] == [kept.outpoint]
        assert wallet.balance_of(spent.address) == 10_000

    def test_failed_delete_leaves_memory_untouched(self, wallet, make_utxo):
        utxo = make_utxo(40_000)
        _add(wallet, utxo)
        db = MagicMock()
        db.consume_utxos.side_effect = RuntimeError("disk full")

        with pytest.raises(RuntimeError):
            wallet.consume([utxo.outpoint], db)

        assert wallet.find_utxo(utxo.outpoint) == utxo
        assert wallet.total_balance() == 40_000

    def test_balance_written_with_the_delete(self, wallet, make_utxo, db):
        db.store_wallet(wallet)
        spent = make_utxo(40_000, tx_number=1)
        kept = make_utxo(10_000, tx_number=2)
        for utxo in (spent, kept):
            _add(wallet, utxo)
            db.insert_utxo(utxo.outpoint, utxo.address, utxo.output, wallet.network)

        wallet.consume([spent.outpoint], db)

        [restored] = db.get_wallets(wallet.network)
        assert restored.balance_of(spent.address) == 10_000

    def test_failed_balance_update_keeps_utxo_rows(self, wallet, make_utxo, db):
        # The wallet's addresses were never stored, so the balance update fails
        utxo = make_utxo(40_000)
        _add(wallet, utxo)
        db.insert_utxo(utxo.outpoint, utxo.address, utxo.output, wallet.network)

        with pytest.raises(DatabaseError):
            wallet.consume([utxo.outpoint], db)

        assert [u.outpoint for u in db.get_utxos(wallet.network)] == [utxo.outpoint]
        assert wallet.find_utxo(utxo.outpoint) == utxo
