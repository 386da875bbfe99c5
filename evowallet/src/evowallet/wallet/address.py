"""
Dash P2PKH address utilities.
"""

from __future__ import annotations

from evocore.crypto import CryptoError, base58check_decode, base58check_encode, hash160
from evocore.models import NetworkType

P2PKH_SCRIPT_LENGTH = 25


def _network(network: str | NetworkType) -> NetworkType:
    return network if isinstance(network, NetworkType) else NetworkType(network)


def pubkey_to_p2pkh_address(pubkey: bytes, network: str | NetworkType = "mainnet") -> str:
    """Convert a compressed public key to a base58check P2PKH address."""
    if len(pubkey) != 33:
        raise ValueError(f"Invalid compressed pubkey length: {len(pubkey)}")
    return base58check_encode(_network(network).p2pkh_version, hash160(pubkey))


def pubkey_hash_to_p2pkh_script(pubkey_hash: bytes) -> bytes:
    # OP_DUP OP_HASH160 PUSH20 <pkh> OP_EQUALVERIFY OP_CHECKSIG
    return b"\x76\xa9\x14" + pubkey_hash + b"\x88\xac"


def pubkey_to_p2pkh_script(pubkey: bytes) -> bytes:
    return pubkey_hash_to_p2pkh_script(hash160(pubkey))


def address_to_script(address: str, network: str | NetworkType = "mainnet") -> bytes:
    """Locking script for a P2PKH address of the given network."""
    try:
        version, payload = base58check_decode(address)
    except CryptoError as e:
        raise ValueError(str(e)) from e

    expected = _network(network).p2pkh_version
    if version != expected:
        raise ValueError(
            f"Address {address} has version {version:#x}, expected {expected:#x} for {network}"
        )
    if len(payload) != 20:
        raise ValueError(f"Invalid P2PKH payload length: {len(payload)}")
    return pubkey_hash_to_p2pkh_script(payload)


def script_to_address(script: bytes, network: str | NetworkType = "mainnet") -> str:
    """Address for a P2PKH locking script."""
    if (
        len(script) != P2PKH_SCRIPT_LENGTH
        or script[:3] != b"\x76\xa9\x14"
        or script[23:] != b"\x88\xac"
    ):
        raise ValueError(f"Unsupported locking script: {script.hex()}")
    return base58check_encode(_network(network).p2pkh_version, script[3:23])


def is_valid_address(address: str, network: str | NetworkType = "mainnet") -> bool:
    try:
        address_to_script(address, network)
    except ValueError:
        return False
    return True
