"""
Hashing and encoding primitives shared by the wallet and the registrar.
"""

from __future__ import annotations

import hashlib

import base58


class CryptoError(Exception):
    pass


def sha256(data: bytes) -> bytes:
    return hashlib.sha256(data).digest()


def hash256(data: bytes) -> bytes:
    """SHA256(SHA256(data))"""
    return hashlib.sha256(hashlib.sha256(data).digest()).digest()


def hash160(data: bytes) -> bytes:
    """RIPEMD160(SHA256(data))"""
    h = hashlib.new("ripemd160")
    h.update(hashlib.sha256(data).digest())
    return h.digest()


def base58check_encode(version: int, payload: bytes) -> str:
    return base58.b58encode_check(bytes([version]) + payload).decode("ascii")


def base58check_decode(encoded: str) -> tuple[int, bytes]:
    """Decode a base58check string into (version byte, payload)."""
    try:
        decoded = base58.b58decode_check(encoded)
    except ValueError as e:
        raise CryptoError(f"Invalid base58check string {encoded!r}: {e}") from e
    if not decoded:
        raise CryptoError("Empty base58check payload")
    return decoded[0], decoded[1:]


def identifier_to_string(identifier: bytes) -> str:
    """Render a 32-byte Platform identifier in base58 (no checksum)."""
    return base58.b58encode(identifier).decode("ascii")


def identifier_from_string(encoded: str) -> bytes:
    identifier = base58.b58decode(encoded)
    if len(identifier) != 32:
        raise CryptoError(f"Identifier must be 32 bytes, got {len(identifier)}")
    return identifier
