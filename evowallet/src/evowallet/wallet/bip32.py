"""
BIP32 HD key derivation for Dash wallets.

Dash wallets derive every key privately: BIP44 account keys for spendable
funds and the DIP9 feature paths (m/9'/coin'/5'/...) for identity funding
and authentication keys. Paths use ' or h for hardened levels.
"""

from __future__ import annotations

import hashlib
import hmac
from hashlib import pbkdf2_hmac

from coincurve import PrivateKey, PublicKey

from evocore.crypto import hash160

# secp256k1 curve order
SECP256K1_N = int("FFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFEBAAEDCE6AF48A03BBFD25E8CD0364141", 16)
HARDENED = 0x80000000
BIP32_SEED_KEY = b"Bitcoin seed"


class DerivationError(ValueError):
    pass


def parse_path(path: str) -> list[int]:
    """
    Child indexes of a derivation path, hardened ones offset by HARDENED.

    >>> parse_path("m/9'/1'/5'/1'/0")
    [2147483657, 2147483649, 2147483653, 2147483649, 0]
    """
    head, *levels = path.split("/")
    if head != "m":
        raise DerivationError(f"Path must start with 'm': {path}")

    indexes = []
    for level in levels:
        hardened = level[-1:] in ("'", "h")
        digits = level[:-1] if hardened else level
        if not digits.isdigit():
            raise DerivationError(f"Invalid path level {level!r} in {path}")
        index = int(digits)
        if index >= HARDENED:
            raise DerivationError(f"Index {index} out of range in {path}")
        indexes.append(index + HARDENED if hardened else index)
    return indexes


class HDKey:
    """An extended private key: secp256k1 key plus chain code."""

    def __init__(self, private_key: PrivateKey, chain_code: bytes, depth: int = 0):
        self._private_key = private_key
        self._public_key = private_key.public_key
        self.chain_code = chain_code
        self.depth = depth

    @property
    def private_key(self) -> PrivateKey:
        return self._private_key

    @property
    def public_key(self) -> PublicKey:
        return self._public_key

    @property
    def identifier(self) -> bytes:
        """HASH160 of the compressed public key, also the P2PKH payload."""
        return hash160(self.get_public_key_bytes())

    @property
    def fingerprint(self) -> bytes:
        return self.identifier[:4]

    @classmethod
    def from_seed(cls, seed: bytes) -> HDKey:
        digest = hmac.new(BIP32_SEED_KEY, seed, hashlib.sha512).digest()
        return cls(PrivateKey(digest[:32]), digest[32:])

    def derive(self, path: str) -> HDKey:
        key = self
        for index in parse_path(path):
            key = key.child(index)
        return key

    def child(self, index: int) -> HDKey:
        if index >= HARDENED:
            data = b"\x00" + self._private_key.secret
        else:
            data = self.get_public_key_bytes()
        digest = hmac.new(self.chain_code, data + index.to_bytes(4, "big"), hashlib.sha512).digest()

        tweak = int.from_bytes(digest[:32], "big")
        if tweak >= SECP256K1_N:
            raise DerivationError(f"Invalid child {index}: tweak exceeds curve order")
        child_int = (int.from_bytes(self._private_key.secret, "big") + tweak) % SECP256K1_N
        if child_int == 0:
            raise DerivationError(f"Invalid child {index}: zero key")

        return HDKey(PrivateKey(child_int.to_bytes(32, "big")), digest[32:], self.depth + 1)

    def get_private_key_bytes(self) -> bytes:
        return self._private_key.secret

    def get_public_key_bytes(self, compressed: bool = True) -> bytes:
        return self._public_key.format(compressed=compressed)

    def get_address(self, network: str = "mainnet") -> str:
        from evowallet.wallet.address import pubkey_to_p2pkh_address

        return pubkey_to_p2pkh_address(self.get_public_key_bytes(), network)


def mnemonic_to_seed(mnemonic: str, passphrase: str = "") -> bytes:
    """BIP39 seed from a mnemonic. The words are not checked against a wordlist."""
    normalized = " ".join(mnemonic.split())
    salt = ("mnemonic" + passphrase).encode("utf-8")
    return pbkdf2_hmac("sha512", normalized.encode("utf-8"), salt, 2048, dklen=64)
