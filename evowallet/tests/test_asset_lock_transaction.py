"""
Tests for asset lock transaction serialization and signing.
"""

from __future__ import annotations

import pytest
from coincurve import PrivateKey, PublicKey

from evocore.constants import ASSET_LOCK_BURN_SCRIPT, MIN_ASSET_LOCK_FEE
from evocore.models import OutPoint, TxOut
from evowallet.wallet.address import (
    address_to_script,
    is_valid_address,
    pubkey_to_p2pkh_address,
    pubkey_to_p2pkh_script,
    script_to_address,
)
from evowallet.wallet.transaction import (
    AssetLockPayload,
    SpendableInput,
    Transaction,
    TransactionError,
    TxOutput,
    build_asset_lock_transaction,
    compute_legacy_sighash,
    encode_varint,
    estimate_asset_lock_fee,
    read_varint,
)


@pytest.fixture
def input_key() -> PrivateKey:
    return PrivateKey(b"\x01" * 32)


@pytest.fixture
def credit_script() -> bytes:
    return pubkey_to_p2pkh_script(PrivateKey(b"\x02" * 32).public_key.format(compressed=True))


@pytest.fixture
def change_script() -> bytes:
    return pubkey_to_p2pkh_script(PrivateKey(b"\x03" * 32).public_key.format(compressed=True))


def _spendable(key: PrivateKey, value: int, tx_number: int = 1) -> SpendableInput:
    script = pubkey_to_p2pkh_script(key.public_key.format(compressed=True))
    return SpendableInput(OutPoint(f"{tx_number:064x}", 0), TxOut(value, script), key)


class TestVarint:
    @pytest.mark.parametrize("value", [0, 0xFC, 0xFD, 0xFFFF, 0x10000])
    def test_encode_read(self, value):
        encoded = encode_varint(value)
        assert read_varint(encoded, 0) == (value, len(encoded))


class TestAddresses:
    def test_script_address_conversion(self, input_key):
        pubkey = input_key.public_key.format(compressed=True)
        address = pubkey_to_p2pkh_address(pubkey, "testnet")
        script = address_to_script(address, "testnet")
        assert script == pubkey_to_p2pkh_script(pubkey)
        assert script_to_address(script, "testnet") == address

    def test_wrong_network_rejected(self, input_key):
        address = pubkey_to_p2pkh_address(input_key.public_key.format(compressed=True), "mainnet")
        assert is_valid_address(address, "mainnet")
        assert not is_valid_address(address, "testnet")

    def test_non_p2pkh_script_rejected(self):
        with pytest.raises(ValueError):
            script_to_address(ASSET_LOCK_BURN_SCRIPT)


class TestFees:
    def test_minimum_fee(self):
        assert estimate_asset_lock_fee(1, True, 1) == MIN_ASSET_LOCK_FEE

    def test_fee_grows_with_inputs(self):
        assert estimate_asset_lock_fee(50, True, 1) > MIN_ASSET_LOCK_FEE
        assert estimate_asset_lock_fee(50, True, 2) == 2 * estimate_asset_lock_fee(50, True, 1)


class TestBuildAssetLock:
    def test_special_transaction_layout(self, input_key, credit_script, change_script):
        tx = build_asset_lock_transaction(
            [_spendable(input_key, 200_000)], 100_000, credit_script, change_script, 3_000, 546
        )
        raw = tx.serialize()

        # version 3, type 8
        assert raw[:4] == bytes.fromhex("03000800")
        assert tx.outputs[0] == TxOutput(100_000, ASSET_LOCK_BURN_SCRIPT)
        assert tx.outputs[1] == TxOutput(97_000, change_script)

        payload = tx.asset_lock_payload
        assert payload.version == 1
        assert payload.credit_outputs == [TxOutput(100_000, credit_script)]
        assert tx.locked_amount == 100_000
        assert raw.endswith(encode_varint(len(tx.payload)) + tx.payload)

    def test_dust_change_goes_to_fee(self, input_key, credit_script, change_script):
        tx = build_asset_lock_transaction(
            [_spendable(input_key, 103_500)], 100_000, credit_script, change_script, 3_000, 546
        )
        assert len(tx.outputs) == 1

    def test_insufficient_inputs(self, input_key, credit_script, change_script):
        with pytest.raises(TransactionError):
            build_asset_lock_transaction(
                [_spendable(input_key, 100_000)], 100_000, credit_script, change_script, 3_000, 546
            )

    def test_no_inputs(self, credit_script):
        with pytest.raises(TransactionError):
            build_asset_lock_transaction([], 100_000, credit_script, None, 3_000, 546)

    def test_inputs_are_signed(self, input_key, credit_script, change_script):
        inputs = [_spendable(input_key, 60_000, 1), _spendable(input_key, 60_000, 2)]
        tx = build_asset_lock_transaction(inputs, 100_000, credit_script, change_script, 3_000, 546)

        pubkey = input_key.public_key.format(compressed=True)
        for index, tx_input in enumerate(tx.inputs):
            script_sig = tx_input.script_sig
            sig_len = script_sig[0]
            signature = script_sig[1 : 1 + sig_len]
            assert signature[-1] == 0x01
            assert script_sig[1 + sig_len] == 33
            assert script_sig[2 + sig_len :] == pubkey

            sighash = compute_legacy_sighash(tx, index, inputs[index].output.script_pubkey)
            assert PublicKey(pubkey).verify(signature[:-1], sighash, hasher=None)

    def test_deserialize(self, input_key, credit_script, change_script):
        tx = build_asset_lock_transaction(
            [_spendable(input_key, 200_000)], 100_000, credit_script, change_script, 3_000, 546
        )
        parsed = Transaction.deserialize(tx.serialize())
        assert parsed.txid == tx.txid
        assert parsed.tx_type == 8
        assert parsed.inputs[0].outpoint == OutPoint(f"{1:064x}", 0)

    def test_truncated_payload(self):
        with pytest.raises(TransactionError):
            AssetLockPayload.deserialize(b"\x01\x02")
