"""
Identity registration.

Registration funds an asset lock (or reuses one), derives the identity id
from the lock's outpoint and submits an identity create transition to
Platform. Every status change is written to the database before the next
step runs, so an interrupted registration can be inspected afterwards.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from loguru import logger

from evocore.constants import MASTER_KEY_ID
from evocore.crypto import identifier_to_string
from evocore.models import (
    Identity,
    IdentityPublicKey,
    IdentityStatus,
    IdentityType,
    KeyPurpose,
    KeyStorageEntry,
    QualifiedIdentity,
    SecurityLevel,
    create_identifier,
    describe_proof,
)
from evowallet.wallet.models import Wallet
from registrar.asset_lock import AssetLockBuilder, FundedAssetLock, FundingMethod
from registrar.context import AppContext
from registrar.errors import IdentityAlreadyExistsError, RegistrarError, RegistrationError
from registrar.platform import ProtocolVersionError
from registrar.retry import RetryPolicy


@dataclass
class IdentityKey:
    key_id: int
    derivation_path: str
    public_key: bytes
    purpose: KeyPurpose = KeyPurpose.AUTHENTICATION
    security_level: SecurityLevel = SecurityLevel.HIGH

    def to_public_key(self) -> IdentityPublicKey:
        return IdentityPublicKey(
            id=self.key_id,
            purpose=self.purpose,
            security_level=self.security_level,
            data=self.public_key.hex(),
        )


@dataclass
class IdentityKeys:
    keys: list[IdentityKey] = field(default_factory=list)

    @classmethod
    def derive(cls, wallet: Wallet, identity_index: int) -> IdentityKeys:
        """Default key set: a master key, a critical and a high authentication key."""
        levels = [SecurityLevel.MASTER, SecurityLevel.CRITICAL, SecurityLevel.HIGH]
        keys = []
        for key_index, level in enumerate(levels, start=MASTER_KEY_ID):
            path = wallet.identity_authentication_path(identity_index, key_index)
            hd_key = wallet.derive_key(path)
            keys.append(
                IdentityKey(
                    key_id=key_index,
                    derivation_path=path,
                    public_key=hd_key.get_public_key_bytes(),
                    security_level=level,
                )
            )
        return cls(keys)

    def to_public_keys_map(self) -> dict[int, IdentityPublicKey]:
        return {key.key_id: key.to_public_key() for key in self.keys}

    def to_key_storage(self, wallet_seed_hash: str) -> dict[int, KeyStorageEntry]:
        return {
            key.key_id: KeyStorageEntry(
                public_key=key.to_public_key(),
                wallet_seed_hash=wallet_seed_hash,
                derivation_path=key.derivation_path,
            )
            for key in self.keys
        }


@dataclass
class IdentityRegistrationInfo:
    wallet: Wallet
    wallet_identity_index: int
    funding_method: FundingMethod
    keys: IdentityKeys
    alias_input: str = ""


def describe_transition(identity: Identity, funded: FundedAssetLock) -> str:
    key_ids = ",".join(str(key_id) for key_id in sorted(identity.public_keys))
    return (
        f"IdentityCreate(id={identity.id}, proof={describe_proof(funded.proof)}, "
        f"keys=[{key_ids}])"
    )


class IdentityRegistrar:
    def __init__(self, context: AppContext, builder: AssetLockBuilder | None = None):
        self.context = context
        self.builder = builder or AssetLockBuilder(context)

    async def register_identity(self, info: IdentityRegistrationInfo) -> QualifiedIdentity:
        wallet = info.wallet
        funded = await self.builder.fund(wallet, info.funding_method)
        try:
            return await self._register_funded(info, funded)
        except Exception:
            wallet.release_asset_lock(funded.txid)
            raise

    async def _register_funded(
        self, info: IdentityRegistrationInfo, funded: FundedAssetLock
    ) -> QualifiedIdentity:
        db = self.context.db
        platform = self.context.platform
        network = self.context.network
        wallet = info.wallet
        wallet_ref = (wallet.seed_hash, info.wallet_identity_index)

        db.set_asset_lock_proof(funded.txid, funded.proof)
        wallet.set_asset_lock_proof(funded.txid, funded.proof)

        identifier = create_identifier(funded.proof)
        identity_id = identifier_to_string(identifier)

        try:
            existing = await platform.fetch_identity_by_id(identity_id)
        except Exception as e:
            raise RegistrarError(f"Error fetching identity: {e}") from e
        if existing is not None:
            raise IdentityAlreadyExistsError(identity_id)

        identity = Identity.new_with_id_and_keys(identifier, info.keys.to_public_keys_map())
        qualified_identity = QualifiedIdentity(
            identity=identity,
            identity_type=IdentityType.USER,
            alias=info.alias_input or None,
            private_keys=info.keys.to_key_storage(wallet.seed_hash_hex),
            associated_wallets=[wallet.seed_hash_hex],
            wallet_index=info.wallet_identity_index,
            status=IdentityStatus.PENDING_CREATION,
        )
        stored = db.get_identity(identity_id)
        if stored is not None:
            # A locally recorded attempt with the same asset lock
            qualified_identity.status = stored.status
            try:
                qualified_identity.begin_creation_attempt()
            except ValueError as e:
                raise IdentityAlreadyExistsError(identity_id) from e

        db.insert_local_qualified_identity(qualified_identity, wallet_ref, network)
        db.set_asset_lock_identity_id_before_confirmation(funded.txid, identity_id)
        logger.info(f"Registering identity {identity_id} with {describe_proof(funded.proof)}")

        policy = RetryPolicy(
            max_attempts=self.context.settings.protocol_retry_attempts,
            retry_on=(ProtocolVersionError,),
        )
        try:
            updated_identity = await policy.run(
                lambda: platform.submit_identity_create(identity, funded.proof, funded.private_key),
                "identity create",
            )
        except Exception as e:
            qualified_identity.update_status(IdentityStatus.FAILED_CREATION)
            db.insert_local_qualified_identity(qualified_identity, wallet_ref, network)
            logger.error(f"Identity {identity_id} creation failed: {e}")
            raise RegistrationError(identity_id, describe_transition(identity, funded), e) from e

        qualified_identity.identity = updated_identity
        # Unknown forces a status refresh from Platform
        qualified_identity.update_status(IdentityStatus.UNKNOWN)
        db.insert_local_qualified_identity(qualified_identity, wallet_ref, network)

        wallet.drop_unused_asset_lock(funded.txid)
        wallet.add_identity(info.wallet_identity_index, updated_identity)
        db.set_asset_lock_identity_id(funded.txid, identity_id)
        self.context.tracker.discard(funded.txid)

        logger.info(f"Identity {identity_id} registered")
        return qualified_identity
