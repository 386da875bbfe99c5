"""
Tests for BIP32 derivation.
"""

from __future__ import annotations

import pytest

from evowallet.wallet.bip32 import HARDENED, DerivationError, HDKey, mnemonic_to_seed, parse_path

# BIP32 test vector 1
VECTOR_SEED = bytes.fromhex("000102030405060708090a0b0c0d0e0f")


class TestParsePath:
    def test_hardened_markers(self):
        assert parse_path("m/9'/1h/5'/0") == [9 + HARDENED, 1 + HARDENED, 5 + HARDENED, 0]

    def test_master(self):
        assert parse_path("m") == []

    @pytest.mark.parametrize("path", ["44'/5'/0'", "m/44'/x/0", "m//1", f"m/{HARDENED}"])
    def test_invalid_paths(self, path):
        with pytest.raises(DerivationError):
            parse_path(path)


class TestHDKey:
    def test_master_key_from_vector(self):
        master = HDKey.from_seed(VECTOR_SEED)
        assert master.get_private_key_bytes().hex() == (
            "e8f32e723decf4051aefac8e2c93c9c5b214313817cdb01a1494b917c8436b35"
        )
        assert master.fingerprint.hex() == "3442193e"

    def test_hardened_child_from_vector(self):
        child = HDKey.from_seed(VECTOR_SEED).derive("m/0'")
        assert child.depth == 1
        assert child.get_private_key_bytes().hex() == (
            "edb2e14f9ee77d26dd93b4ecede8d16ed408ce149b6cd80b0715a2d911a0afea"
        )

    def test_derive_matches_child_steps(self):
        master = HDKey.from_seed(VECTOR_SEED)
        stepwise = master.child(9 + HARDENED).child(1 + HARDENED).child(0)
        assert master.derive("m/9'/1'/0").private_key.secret == stepwise.private_key.secret


class TestMnemonicToSeed:
    def test_whitespace_is_normalized(self):
        words = "abandon " * 11 + "about"
        assert mnemonic_to_seed(f"  {words}\n") == mnemonic_to_seed(words)

    def test_passphrase_changes_seed(self):
        words = "abandon " * 11 + "about"
        assert mnemonic_to_seed(words, "TREZOR") != mnemonic_to_seed(words)
        assert len(mnemonic_to_seed(words)) == 64
