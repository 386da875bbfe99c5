"""
evocore - Shared chain and identity models for the Evo wallet components

Provides network parameters, asset lock proofs, identity records and hashing
helpers used by evowallet and registrar.
"""

__version__ = "0.9.0"

from evocore.constants import (
    CHAIN_LOCK_UPGRADE_CONFIRMATIONS,
    MIN_ASSET_LOCK_FEE,
    PROOF_POLL_INTERVAL,
    STANDARD_DUST_LIMIT,
)
from evocore.crypto import CryptoError, hash160, hash256
from evocore.models import (
    AssetLockProof,
    ChainAssetLockProof,
    Identity,
    IdentityPublicKey,
    IdentityStatus,
    InstantAssetLockProof,
    NetworkType,
    OutPoint,
    QualifiedIdentity,
    TxOut,
    create_identifier,
)

__all__ = [
    "AssetLockProof",
    "CHAIN_LOCK_UPGRADE_CONFIRMATIONS",
    "ChainAssetLockProof",
    "CryptoError",
    "Identity",
    "IdentityPublicKey",
    "IdentityStatus",
    "InstantAssetLockProof",
    "MIN_ASSET_LOCK_FEE",
    "NetworkType",
    "OutPoint",
    "PROOF_POLL_INTERVAL",
    "QualifiedIdentity",
    "STANDARD_DUST_LIMIT",
    "TxOut",
    "create_identifier",
    "hash160",
    "hash256",
]
