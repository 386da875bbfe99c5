"""
Asset lock funding for identity registration.

Three funding methods are supported:
- UseAssetLock: an asset lock the wallet already broadcast (and maybe proved)
- FundWithWallet: select wallet UTXOs for the requested amount
- FundWithUtxo: lock a single, caller-chosen UTXO

Broadcast side effects run in a fixed order: the txid is registered with the
finality tracker, the asset lock row is persisted, the transaction is sent to
the node, then its inputs are consumed and the lock is added to the wallet.
A failed broadcast undoes the tracker entry and the stored row and releases
the reserved inputs. Once sent, the lock always ends up in the wallet.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Union

from coincurve import PrivateKey
from loguru import logger

from evocore.constants import CHAIN_LOCK_UPGRADE_CONFIRMATIONS, STANDARD_DUST_LIMIT
from evocore.models import (
    AssetLockProof,
    ChainAssetLockProof,
    InstantAssetLockProof,
    OutPoint,
    TxOut,
    describe_proof,
)
from evowallet.wallet.address import address_to_script, pubkey_to_p2pkh_script
from evowallet.wallet.models import (
    DerivationPathReference,
    DerivationPathType,
    UnusedAssetLock,
    Wallet,
    WalletError,
    WalletUtxo,
)
from evowallet.wallet.service import reload_utxos
from evowallet.wallet.transaction import (
    SpendableInput,
    Transaction,
    TransactionError,
    build_asset_lock_transaction,
    estimate_asset_lock_fee,
)
from registrar.context import AppContext
from registrar.errors import AssetLockValidationError, BroadcastError
from registrar.retry import RetryPolicy


@dataclass(frozen=True)
class UseAssetLock:
    address: str
    proof: AssetLockProof
    transaction: Transaction


@dataclass(frozen=True)
class FundWithWallet:
    amount: int
    identity_index: int


@dataclass(frozen=True)
class FundWithUtxo:
    outpoint: OutPoint
    output: TxOut
    input_address: str
    identity_index: int


FundingMethod = Union[UseAssetLock, FundWithWallet, FundWithUtxo]


@dataclass
class BuiltAssetLock:
    """A signed asset lock that has not been broadcast yet."""

    transaction: Transaction
    amount: int
    credit_address: str
    credit_key: PrivateKey
    used_utxos: list[WalletUtxo] = field(default_factory=list)

    @property
    def txid(self) -> str:
        return self.transaction.txid

    @property
    def outpoints(self) -> list[OutPoint]:
        return [utxo.outpoint for utxo in self.used_utxos]


@dataclass
class FundedAssetLock:
    """Proof and signing key for the asset lock that pays for an identity."""

    txid: str
    proof: AssetLockProof
    private_key: PrivateKey
    reused: bool = False


class AssetLockBuilder:
    def __init__(self, context: AppContext):
        self.context = context

    @property
    def fee_per_byte(self) -> int:
        return self.context.settings.fee_per_byte

    # Building

    def _credit_key(self, wallet: Wallet, identity_index: int) -> tuple[str, PrivateKey]:
        key = wallet.identity_registration_key(identity_index)
        path = wallet.identity_registration_path(identity_index)
        address = wallet.watched_addresses[path].address
        self.context.db.add_address_if_not_exists(
            wallet.seed_hash,
            address,
            path,
            DerivationPathReference.IDENTITY_REGISTRATION_FUNDING,
            DerivationPathType.CREDIT_FUNDING,
        )
        return address, key.private_key

    def _spendable(self, wallet: Wallet, utxo: WalletUtxo) -> SpendableInput:
        private_key = wallet.private_key_for_address(utxo.address)
        if private_key is None:
            raise AssetLockValidationError(f"No key for address {utxo.address}")
        return SpendableInput(utxo.outpoint, utxo.output, private_key)

    def build_for_wallet(self, wallet: Wallet, amount: int, identity_index: int) -> BuiltAssetLock:
        """
        Select and reserve wallet UTXOs for amount plus fee and sign the asset lock.

        Raises:
            InsufficientFundsError: Unreserved UTXOs do not cover amount plus fee
        """
        if amount <= 0:
            raise AssetLockValidationError("Asset lock amount must be positive")

        with wallet.lock:
            fee = estimate_asset_lock_fee(1, True, self.fee_per_byte)
            selected = wallet.select_utxos(amount + fee)
            # More inputs cost more; reselect until the estimate is stable
            while True:
                fee = estimate_asset_lock_fee(len(selected), True, self.fee_per_byte)
                if sum(u.value for u in selected) >= amount + fee:
                    break
                selected = wallet.select_utxos(amount + fee)
            wallet.reserve(u.outpoint for u in selected)

        try:
            credit_address, credit_key = self._credit_key(wallet, identity_index)
            change_address = wallet.next_change_address()
            self.context.db.add_address_if_not_exists(
                wallet.seed_hash,
                change_address,
                wallet.known_addresses[change_address],
                DerivationPathReference.BIP44,
                DerivationPathType.CLEAR_FUNDS,
            )
            tx = build_asset_lock_transaction(
                inputs=[self._spendable(wallet, u) for u in selected],
                amount=amount,
                credit_script=pubkey_to_p2pkh_script(credit_key.public_key.format(compressed=True)),
                change_script=address_to_script(change_address, wallet.network),
                fee=fee,
                dust_limit=STANDARD_DUST_LIMIT,
            )
        except Exception:
            wallet.release(u.outpoint for u in selected)
            raise

        logger.info(
            f"Built asset lock {tx.txid} for {amount} duffs "
            f"from {len(selected)} inputs (fee {fee})"
        )
        return BuiltAssetLock(tx, amount, credit_address, credit_key, selected)

    def build_for_utxo(
        self,
        wallet: Wallet,
        outpoint: OutPoint,
        output: TxOut,
        input_address: str,
        identity_index: int,
    ) -> BuiltAssetLock:
        """
        Lock the whole value of one UTXO, minus the fee, without change.

        Ownership and reservation are checked before anything is derived,
        signed or persisted.
        """
        utxo = wallet.find_utxo(outpoint)
        if utxo is None or utxo.address != input_address:
            raise AssetLockValidationError(f"UTXO {outpoint} is not owned by this wallet")
        if utxo.output != output:
            raise AssetLockValidationError(f"UTXO {outpoint} does not match the wallet's output")

        fee = estimate_asset_lock_fee(1, False, self.fee_per_byte)
        amount = output.value - fee
        if amount <= STANDARD_DUST_LIMIT:
            raise AssetLockValidationError(
                f"UTXO {outpoint} value {output.value} is too small to pay the fee ({fee})"
            )

        wallet.reserve([outpoint])
        try:
            credit_address, credit_key = self._credit_key(wallet, identity_index)
            tx = build_asset_lock_transaction(
                inputs=[self._spendable(wallet, utxo)],
                amount=amount,
                credit_script=pubkey_to_p2pkh_script(credit_key.public_key.format(compressed=True)),
                change_script=None,
                fee=fee,
                dust_limit=STANDARD_DUST_LIMIT,
            )
        except Exception:
            wallet.release([outpoint])
            raise

        logger.info(f"Built asset lock {tx.txid} for {amount} duffs from UTXO {outpoint}")
        return BuiltAssetLock(tx, amount, credit_address, credit_key, [utxo])

    # Broadcasting

    async def broadcast(self, wallet: Wallet, built: BuiltAssetLock) -> str:
        tracker = self.context.tracker
        db = self.context.db
        txid = built.txid

        tracker.register_pending(txid)
        stored = False
        try:
            db.store_asset_lock_transaction(
                built.transaction, built.amount, wallet.seed_hash, wallet.network
            )
            stored = True
            node = self.context.node()
            await node.send_raw_transaction(built.transaction.serialize().hex())
        except Exception as e:
            tracker.discard(txid)
            wallet.release(built.outpoints)
            if stored:
                db.delete_asset_lock_transaction(txid)
            logger.error(f"Broadcast of asset lock {txid} failed: {e}")
            raise BroadcastError(f"Failed to broadcast asset lock {txid}: {e}") from e

        # The transaction is on the network from here on
        spent = set(built.outpoints)
        try:
            wallet.consume(spent, db)
        except Exception as e:
            wallet.remove_utxos(lambda u: u.outpoint in spent)
            logger.error(f"Could not record spent inputs of asset lock {txid}: {e}")
            raise
        finally:
            wallet.add_unused_asset_lock(
                UnusedAssetLock(built.transaction, built.credit_address, built.amount)
            )
        logger.info(f"Asset lock {txid} broadcast, waiting for finality")
        return txid

    async def _await_proof(self, txid: str) -> AssetLockProof:
        settings = self.context.settings
        proof = await self.context.tracker.await_resolution(
            txid, poll_interval=settings.proof_poll_interval, timeout=settings.proof_timeout
        )
        logger.info(f"Asset lock {txid} proved by {describe_proof(proof)}")
        return proof

    # Funding methods

    async def upgrade_proof(self, txid: str, proof: AssetLockProof) -> AssetLockProof:
        """
        Replace an instant proof with a chain proof once the transaction is deeply chain-locked.

        Platform rejects instant locks that are too old, so a transaction with a
        chain lock and more than CHAIN_LOCK_UPGRADE_CONFIRMATIONS confirmations
        is proved by the chain lock Platform currently agrees on.
        """
        if not isinstance(proof, InstantAssetLockProof):
            return proof

        info = await self.context.node().get_raw_transaction_info(txid)
        if (
            info.chainlock
            and info.height is not None
            and info.confirmations is not None
            and info.confirmations > CHAIN_LOCK_UPGRADE_CONFIRMATIONS
        ):
            height = await self.context.platform.get_core_chain_locked_height()
            logger.info(
                f"Asset lock {txid} has {info.confirmations} confirmations, "
                f"using chain lock at height {height}"
            )
            return ChainAssetLockProof(height, OutPoint(txid, 0))
        return proof

    async def use_asset_lock(self, wallet: Wallet, method: UseAssetLock) -> FundedAssetLock:
        private_key = wallet.private_key_for_address(method.address)
        if private_key is None:
            raise AssetLockValidationError("Asset Lock not valid for wallet")

        txid = method.transaction.txid
        if wallet.find_unused_asset_lock(txid) is None:
            raise AssetLockValidationError(f"Asset lock {txid} is not unused in this wallet")
        wallet.reserve_asset_lock(txid)
        try:
            proof = await self.upgrade_proof(txid, method.proof)
        except Exception:
            wallet.release_asset_lock(txid)
            raise
        return FundedAssetLock(txid, proof, private_key, reused=True)

    async def fund_with_wallet(self, wallet: Wallet, method: FundWithWallet) -> FundedAssetLock:
        async def refresh(error: BaseException) -> None:
            logger.info(f"Refreshing wallet UTXOs after build failure: {error}")
            await reload_utxos(wallet, self.context.node(), self.context.db)

        async def build() -> BuiltAssetLock:
            return self.build_for_wallet(wallet, method.amount, method.identity_index)

        policy = RetryPolicy(
            max_attempts=2,
            retry_on=(WalletError, TransactionError),
            before_retry=refresh,
        )
        built = await policy.run(build, "asset lock build")
        txid = await self.broadcast(wallet, built)
        proof = await self._await_proof(txid)
        return FundedAssetLock(txid, proof, built.credit_key)

    async def fund_with_utxo(self, wallet: Wallet, method: FundWithUtxo) -> FundedAssetLock:
        built = self.build_for_utxo(
            wallet, method.outpoint, method.output, method.input_address, method.identity_index
        )
        txid = await self.broadcast(wallet, built)
        proof = await self._await_proof(txid)
        return FundedAssetLock(txid, proof, built.credit_key)

    async def fund(self, wallet: Wallet, method: FundingMethod) -> FundedAssetLock:
        if isinstance(method, UseAssetLock):
            return await self.use_asset_lock(wallet, method)
        if isinstance(method, FundWithWallet):
            return await self.fund_with_wallet(wallet, method)
        if isinstance(method, FundWithUtxo):
            return await self.fund_with_utxo(wallet, method)
        raise TypeError(f"Unknown funding method: {type(method).__name__}")
