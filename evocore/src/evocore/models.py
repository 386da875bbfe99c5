"""
Core chain and identity models.

Outpoints, outputs and asset lock proofs are immutable dataclasses; identity
records use Pydantic for validation and serialization to the local store.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Union

from loguru import logger
from pydantic import BaseModel, Field

from evocore.crypto import hash256, identifier_to_string


class NetworkType(str, Enum):
    MAINNET = "mainnet"
    TESTNET = "testnet"
    DEVNET = "devnet"
    REGTEST = "regtest"

    @property
    def p2pkh_version(self) -> int:
        """Base58 version byte for P2PKH addresses (X... / y...)."""
        return 0x4C if self == NetworkType.MAINNET else 0x8C

    @property
    def coin_type(self) -> int:
        """BIP44 / DIP9 coin type."""
        return 5 if self == NetworkType.MAINNET else 1


@dataclass(frozen=True)
class OutPoint:
    """Reference to a transaction output. txid is in RPC (big-endian) hex."""

    txid: str
    vout: int

    def to_bytes(self) -> bytes:
        return bytes.fromhex(self.txid)[::-1] + self.vout.to_bytes(4, "little")

    @classmethod
    def from_string(cls, value: str) -> OutPoint:
        txid, _, vout = value.partition(":")
        if len(txid) != 64 or not vout:
            raise ValueError(f"Invalid outpoint: {value!r}")
        return cls(txid=txid.lower(), vout=int(vout))

    def __str__(self) -> str:
        return f"{self.txid}:{self.vout}"


@dataclass(frozen=True)
class TxOut:
    value: int
    script_pubkey: bytes


def txid_of(raw_tx: bytes) -> str:
    """Transaction id of a serialized (non-segwit) transaction."""
    return hash256(raw_tx)[::-1].hex()


@dataclass(frozen=True)
class InstantAssetLockProof:
    """Proof backed by an instant-send lock over the funding transaction."""

    instant_lock: bytes
    transaction: bytes
    output_index: int = 0

    @property
    def out_point(self) -> OutPoint:
        return OutPoint(txid_of(self.transaction), self.output_index)


@dataclass(frozen=True)
class ChainAssetLockProof:
    """Proof backed by a chain lock at or above the funding transaction's block."""

    core_chain_locked_height: int
    out_point: OutPoint


AssetLockProof = Union[InstantAssetLockProof, ChainAssetLockProof]


def proof_out_point(proof: AssetLockProof) -> OutPoint:
    if isinstance(proof, InstantAssetLockProof):
        return proof.out_point
    if isinstance(proof, ChainAssetLockProof):
        return proof.out_point
    raise TypeError(f"Unknown asset lock proof type: {type(proof).__name__}")


def create_identifier(proof: AssetLockProof) -> bytes:
    """Identity id funded by an asset lock: double SHA256 of its outpoint."""
    return hash256(proof_out_point(proof).to_bytes())


def describe_proof(proof: AssetLockProof) -> str:
    if isinstance(proof, InstantAssetLockProof):
        return f"instant({proof.out_point})"
    return f"chain({proof.out_point}@{proof.core_chain_locked_height})"


class KeyPurpose(str, Enum):
    AUTHENTICATION = "authentication"
    ENCRYPTION = "encryption"
    DECRYPTION = "decryption"
    TRANSFER = "transfer"
    VOTING = "voting"


class SecurityLevel(str, Enum):
    MASTER = "master"
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"


class KeyType(str, Enum):
    ECDSA_SECP256K1 = "ecdsa_secp256k1"
    ECDSA_HASH160 = "ecdsa_hash160"


class IdentityPublicKey(BaseModel):
    id: int = Field(..., ge=0)
    purpose: KeyPurpose = KeyPurpose.AUTHENTICATION
    security_level: SecurityLevel = SecurityLevel.HIGH
    key_type: KeyType = KeyType.ECDSA_SECP256K1
    data: str = Field(..., description="Public key bytes (hex)")
    read_only: bool = False


class Identity(BaseModel):
    id: str = Field(..., min_length=1, description="Base58 identifier")
    public_keys: dict[int, IdentityPublicKey] = Field(default_factory=dict)
    balance: int = Field(default=0, ge=0)
    revision: int = Field(default=0, ge=0)

    @classmethod
    def new_with_id_and_keys(
        cls, identifier: bytes, public_keys: dict[int, IdentityPublicKey]
    ) -> Identity:
        return cls(id=identifier_to_string(identifier), public_keys=public_keys)


class IdentityType(str, Enum):
    USER = "user"
    MASTERNODE = "masternode"
    EVONODE = "evonode"


class IdentityStatus(str, Enum):
    UNKNOWN = "unknown"
    PENDING_CREATION = "pending_creation"
    NOT_FOUND = "not_found"
    FAILED_CREATION = "failed_creation"
    ACTIVE = "active"


class KeyStorageEntry(BaseModel):
    """Where the private half of an identity key lives."""

    public_key: IdentityPublicKey
    wallet_seed_hash: str | None = None
    derivation_path: str | None = None


class QualifiedIdentity(BaseModel):
    """On-chain identity plus the local metadata this client keeps about it."""

    identity: Identity
    identity_type: IdentityType = IdentityType.USER
    alias: str | None = None
    private_keys: dict[int, KeyStorageEntry] = Field(default_factory=dict)
    associated_wallets: list[str] = Field(default_factory=list)
    wallet_index: int | None = None
    status: IdentityStatus = IdentityStatus.UNKNOWN

    @property
    def identity_id(self) -> str:
        return self.identity.id

    def update_status(self, new_status: IdentityStatus) -> IdentityStatus:
        """
        Move to a new status.

        A pending or failed creation is not overwritten by NOT_FOUND (the
        identity is expected to be missing on-chain), and a failed creation
        never goes back to PENDING_CREATION.
        """
        current = self.status
        if new_status == IdentityStatus.NOT_FOUND and current in (
            IdentityStatus.PENDING_CREATION,
            IdentityStatus.FAILED_CREATION,
        ):
            logger.debug(f"Identity {self.identity_id}: keeping {current.value} over not_found")
            return current
        if (
            current == IdentityStatus.FAILED_CREATION
            and new_status == IdentityStatus.PENDING_CREATION
        ):
            logger.warning(f"Identity {self.identity_id}: refusing to revert failed creation")
            return current
        self.status = new_status
        return new_status

    def begin_creation_attempt(self) -> None:
        """
        Start another creation attempt for an identity that was never created.

        This is the only way out of FAILED_CREATION. Identities Platform
        already knows about cannot be created again.
        """
        if self.status in (IdentityStatus.ACTIVE, IdentityStatus.UNKNOWN):
            raise ValueError(
                f"Identity {self.identity_id} is {self.status.value}, not retrying creation"
            )
        if self.status == IdentityStatus.FAILED_CREATION:
            logger.info(f"Identity {self.identity_id}: new creation attempt after failure")
        self.status = IdentityStatus.PENDING_CREATION

    def to_bytes(self) -> bytes:
        return self.model_dump_json().encode("utf-8")

    @classmethod
    def from_bytes(cls, data: bytes) -> QualifiedIdentity:
        return cls.model_validate_json(data)
