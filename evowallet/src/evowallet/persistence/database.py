"""
Persistence gateway for wallets, addresses, UTXOs, asset locks and identities.

Every public method runs in its own transaction; a method either commits all
of its writes or none of them.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator
from contextlib import contextmanager

from loguru import logger
from sqlalchemy import create_engine, delete, select, update
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from evocore.models import (
    AssetLockProof,
    ChainAssetLockProof,
    InstantAssetLockProof,
    NetworkType,
    OutPoint,
    QualifiedIdentity,
    TxOut,
)
from evowallet.persistence.models import (
    AssetLockTransactionRecord,
    Base,
    IdentityRecord,
    UtxoRecord,
    WalletAddressRecord,
    WalletRecord,
)
from evowallet.wallet.address import script_to_address
from evowallet.wallet.models import (
    DerivationPathReference,
    DerivationPathType,
    UnusedAssetLock,
    Wallet,
    WalletUtxo,
)
from evowallet.wallet.transaction import Transaction


class DatabaseError(Exception):
    pass


def _net(network: NetworkType | str) -> str:
    return network.value if isinstance(network, NetworkType) else network


class Database:
    def __init__(self, url: str = "sqlite:///evo-wallet.db", echo: bool = False):
        engine_kwargs: dict = {"echo": echo}
        if url.startswith("sqlite"):
            engine_kwargs["connect_args"] = {"check_same_thread": False}
            if url in ("sqlite://", "sqlite:///:memory:"):
                # One shared connection, otherwise each session sees an empty database
                engine_kwargs["poolclass"] = StaticPool
        self.engine = create_engine(url, **engine_kwargs)
        self._session_factory = sessionmaker(bind=self.engine, expire_on_commit=False)

    @contextmanager
    def session(self) -> Iterator[Session]:
        session = self._session_factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def create_tables(self) -> None:
        Base.metadata.create_all(self.engine)

    def close(self) -> None:
        self.engine.dispose()

    # Wallets and addresses

    def store_wallet(self, wallet: Wallet) -> None:
        with self.session() as session:
            session.add(
                WalletRecord(
                    seed_hash=wallet.seed_hash,
                    seed=wallet.seed,
                    alias=wallet.alias,
                    is_main=wallet.is_main,
                    uses_password=False,
                    network=_net(wallet.network),
                )
            )
            for path, info in wallet.watched_addresses.items():
                session.add(
                    WalletAddressRecord(
                        seed_hash=wallet.seed_hash,
                        address=info.address,
                        derivation_path=path,
                        path_reference=int(info.path_reference),
                        path_type=int(info.path_type),
                        balance=wallet.address_balances.get(info.address),
                    )
                )
        logger.debug(f"Stored wallet {wallet.seed_hash.hex()[:8]}")

    def set_wallet_alias(self, seed_hash: bytes, alias: str | None) -> None:
        with self.session() as session:
            session.execute(
                update(WalletRecord).where(WalletRecord.seed_hash == seed_hash).values(alias=alias)
            )

    def add_address_if_not_exists(
        self,
        seed_hash: bytes,
        address: str,
        derivation_path: str,
        path_reference: DerivationPathReference,
        path_type: DerivationPathType,
        balance: int | None = None,
    ) -> None:
        with self.session() as session:
            existing = session.execute(
                select(WalletAddressRecord.id).where(
                    WalletAddressRecord.seed_hash == seed_hash,
                    WalletAddressRecord.address == address,
                )
            ).first()
            if existing is None:
                session.add(
                    WalletAddressRecord(
                        seed_hash=seed_hash,
                        address=address,
                        derivation_path=derivation_path,
                        path_reference=int(path_reference),
                        path_type=int(path_type),
                        balance=balance,
                    )
                )

    def update_address_balance(self, seed_hash: bytes, address: str, new_balance: int) -> None:
        with self.session() as session:
            result = session.execute(
                update(WalletAddressRecord)
                .where(
                    WalletAddressRecord.seed_hash == seed_hash,
                    WalletAddressRecord.address == address,
                )
                .values(balance=new_balance)
            )
            if result.rowcount == 0:
                raise DatabaseError(f"Address {address} not found for wallet")

    def add_to_address_balance(self, seed_hash: bytes, address: str, additional: int) -> None:
        with self.session() as session:
            record = session.execute(
                select(WalletAddressRecord).where(
                    WalletAddressRecord.seed_hash == seed_hash,
                    WalletAddressRecord.address == address,
                )
            ).scalar_one_or_none()
            if record is None:
                raise DatabaseError(f"Address {address} not found for wallet")
            record.balance = (record.balance or 0) + additional

    # UTXOs

    def insert_utxo(
        self, outpoint: OutPoint, address: str, output: TxOut, network: NetworkType | str
    ) -> None:
        with self.session() as session:
            session.merge(
                UtxoRecord(
                    txid=outpoint.txid,
                    vout=outpoint.vout,
                    network=_net(network),
                    address=address,
                    value=output.value,
                    script_pubkey=output.script_pubkey,
                )
            )

    def drop_utxo(self, outpoint: OutPoint, network: NetworkType | str) -> None:
        self.drop_utxos([outpoint], network)

    @staticmethod
    def _delete_utxos(
        session: Session, outpoints: Iterable[OutPoint], network: NetworkType | str
    ) -> None:
        for outpoint in outpoints:
            session.execute(
                delete(UtxoRecord).where(
                    UtxoRecord.txid == outpoint.txid,
                    UtxoRecord.vout == outpoint.vout,
                    UtxoRecord.network == _net(network),
                )
            )

    def drop_utxos(self, outpoints: Iterable[OutPoint], network: NetworkType | str) -> None:
        with self.session() as session:
            self._delete_utxos(session, outpoints, network)

    def consume_utxos(
        self,
        seed_hash: bytes,
        outpoints: Iterable[OutPoint],
        network: NetworkType | str,
        balances: dict[str, int],
    ) -> None:
        """
        Delete spent outpoints and write the new balances of their addresses.

        Both happen in one transaction. An address missing from the wallet
        rolls back the deletes as well.
        """
        with self.session() as session:
            self._delete_utxos(session, outpoints, network)
            for address, balance in balances.items():
                result = session.execute(
                    update(WalletAddressRecord)
                    .where(
                        WalletAddressRecord.seed_hash == seed_hash,
                        WalletAddressRecord.address == address,
                    )
                    .values(balance=balance)
                )
                if result.rowcount == 0:
                    raise DatabaseError(f"Address {address} not found for wallet")

    def replace_utxos(
        self, addresses: Iterable[str], utxos: Iterable[WalletUtxo], network: NetworkType | str
    ) -> None:
        """Replace stored UTXOs of the given addresses with a fresh node view."""
        addresses = list(addresses)
        with self.session() as session:
            session.execute(
                delete(UtxoRecord).where(
                    UtxoRecord.address.in_(addresses), UtxoRecord.network == _net(network)
                )
            )
            for utxo in utxos:
                session.merge(
                    UtxoRecord(
                        txid=utxo.outpoint.txid,
                        vout=utxo.outpoint.vout,
                        network=_net(network),
                        address=utxo.address,
                        value=utxo.output.value,
                        script_pubkey=utxo.output.script_pubkey,
                    )
                )

    def get_utxos(self, network: NetworkType | str) -> list[WalletUtxo]:
        with self.session() as session:
            rows = session.execute(
                select(UtxoRecord).where(UtxoRecord.network == _net(network))
            ).scalars()
            return [
                WalletUtxo(
                    OutPoint(row.txid, row.vout),
                    TxOut(row.value, row.script_pubkey),
                    row.address,
                )
                for row in rows
            ]

    # Asset lock transactions

    def store_asset_lock_transaction(
        self,
        transaction: Transaction,
        amount: int,
        wallet_seed_hash: bytes,
        network: NetworkType | str,
        instant_lock: bytes | None = None,
    ) -> None:
        """Record a broadcast asset lock. Storing the same transaction twice is a no-op."""
        txid = transaction.txid
        with self.session() as session:
            if session.get(AssetLockTransactionRecord, txid) is not None:
                return
            session.add(
                AssetLockTransactionRecord(
                    txid=txid,
                    wallet=wallet_seed_hash,
                    network=_net(network),
                    amount=amount,
                    transaction_data=transaction.serialize(),
                    instant_lock_data=instant_lock,
                )
            )

    def delete_asset_lock_transaction(self, txid: str) -> None:
        """Forget an asset lock that never reached the network."""
        with self.session() as session:
            session.execute(
                delete(AssetLockTransactionRecord).where(AssetLockTransactionRecord.txid == txid)
            )

    def pending_asset_lock_inputs(
        self, network: NetworkType | str, wallet_seed_hash: bytes | None = None
    ) -> set[OutPoint]:
        """
        Outpoints spent by asset locks that are not chain-locked yet.

        The node's UTXO scan only covers confirmed outputs, so until a lock
        is mined it keeps reporting these as unspent.
        """
        with self.session() as session:
            stmt = select(AssetLockTransactionRecord.transaction_data).where(
                AssetLockTransactionRecord.network == _net(network),
                AssetLockTransactionRecord.chain_locked_height.is_(None),
            )
            if wallet_seed_hash is not None:
                stmt = stmt.where(AssetLockTransactionRecord.wallet == wallet_seed_hash)
            raw_transactions = list(session.execute(stmt).scalars())
        return {
            tx_input.outpoint
            for raw in raw_transactions
            for tx_input in Transaction.deserialize(raw).inputs
        }

    def set_asset_lock_proof(self, txid: str, proof: AssetLockProof) -> None:
        if isinstance(proof, InstantAssetLockProof):
            values = {"instant_lock_data": proof.instant_lock}
        elif isinstance(proof, ChainAssetLockProof):
            values = {"chain_locked_height": proof.core_chain_locked_height}
        else:
            raise TypeError(f"Unknown asset lock proof type: {type(proof).__name__}")
        with self.session() as session:
            session.execute(
                update(AssetLockTransactionRecord)
                .where(AssetLockTransactionRecord.txid == txid)
                .values(**values)
            )

    def set_asset_lock_identity_id_before_confirmation(self, txid: str, identity_id: str) -> None:
        with self.session() as session:
            session.execute(
                update(AssetLockTransactionRecord)
                .where(AssetLockTransactionRecord.txid == txid)
                .values(identity_id_potentially_in_creation=identity_id)
            )

    def set_asset_lock_identity_id(self, txid: str, identity_id: str) -> None:
        with self.session() as session:
            session.execute(
                update(AssetLockTransactionRecord)
                .where(AssetLockTransactionRecord.txid == txid)
                .values(identity_id=identity_id, identity_id_potentially_in_creation=None)
            )

    def get_asset_lock_transactions(
        self, network: NetworkType | str, unused_only: bool = False
    ) -> list[AssetLockTransactionRecord]:
        with self.session() as session:
            stmt = select(AssetLockTransactionRecord).where(
                AssetLockTransactionRecord.network == _net(network)
            )
            if unused_only:
                stmt = stmt.where(AssetLockTransactionRecord.identity_id.is_(None))
            stmt = stmt.order_by(AssetLockTransactionRecord.created_at)
            return list(session.execute(stmt).scalars())

    # Identities

    def insert_local_qualified_identity(
        self,
        qualified_identity: QualifiedIdentity,
        wallet_and_index: tuple[bytes, int] | None,
        network: NetworkType | str,
    ) -> None:
        """Insert or replace the local record of an identity."""
        wallet, wallet_index = wallet_and_index if wallet_and_index else (None, None)
        with self.session() as session:
            session.merge(
                IdentityRecord(
                    id=qualified_identity.identity_id,
                    data=qualified_identity.to_bytes(),
                    status=qualified_identity.status.value,
                    alias=qualified_identity.alias,
                    wallet=wallet,
                    wallet_index=wallet_index,
                    network=_net(network),
                )
            )

    def get_identity(self, identity_id: str) -> QualifiedIdentity | None:
        with self.session() as session:
            record = session.get(IdentityRecord, identity_id)
            if record is None:
                return None
            return QualifiedIdentity.from_bytes(record.data)

    def get_identities(self, network: NetworkType | str) -> list[QualifiedIdentity]:
        with self.session() as session:
            rows = session.execute(
                select(IdentityRecord).where(IdentityRecord.network == _net(network))
            ).scalars()
            return [QualifiedIdentity.from_bytes(row.data) for row in rows]

    # Rehydration

    def get_wallets(self, network: NetworkType | str) -> list[Wallet]:
        """Load all wallets of a network with addresses, UTXOs, unused locks and identities."""
        network_type = NetworkType(_net(network))
        wallets: dict[bytes, Wallet] = {}
        spent = self.pending_asset_lock_inputs(network_type)

        with self.session() as session:
            logger.trace("step 1: wallets")
            for record in session.execute(
                select(WalletRecord).where(WalletRecord.network == network_type.value)
            ).scalars():
                wallets[record.seed_hash] = Wallet(
                    seed=record.seed,
                    network=network_type,
                    alias=record.alias,
                    is_main=bool(record.is_main),
                )

            logger.trace("step 2: addresses and derivation paths")
            for address_record in session.execute(
                select(WalletAddressRecord).where(
                    WalletAddressRecord.seed_hash.in_(list(wallets))
                )
            ).scalars():
                wallets[address_record.seed_hash].load_address(
                    address_record.address,
                    address_record.derivation_path,
                    DerivationPathReference(address_record.path_reference),
                    DerivationPathType(address_record.path_type),
                )

            logger.trace("step 3: UTXOs of known addresses")
            for utxo in session.execute(
                select(UtxoRecord).where(UtxoRecord.network == network_type.value)
            ).scalars():
                if OutPoint(utxo.txid, utxo.vout) in spent:
                    continue
                for wallet in wallets.values():
                    if utxo.address in wallet.known_addresses:
                        wallet.add_utxo(
                            utxo.address,
                            OutPoint(utxo.txid, utxo.vout),
                            TxOut(utxo.value, utxo.script_pubkey),
                        )

            logger.trace("step 4: unused asset locks")
            for lock_record in session.execute(
                select(AssetLockTransactionRecord).where(
                    AssetLockTransactionRecord.network == network_type.value,
                    AssetLockTransactionRecord.identity_id.is_(None),
                )
            ).scalars():
                wallet = wallets.get(lock_record.wallet)
                if wallet is None:
                    continue
                asset_lock = self._asset_lock_from_record(lock_record, network_type)
                wallet.add_unused_asset_lock(asset_lock)

            logger.trace("step 5: identities by wallet index")
            for identity_record in session.execute(
                select(IdentityRecord).where(
                    IdentityRecord.network == network_type.value,
                    IdentityRecord.wallet.is_not(None),
                    IdentityRecord.wallet_index.is_not(None),
                )
            ).scalars():
                wallet = wallets.get(identity_record.wallet)
                if wallet is None:
                    continue
                qualified = QualifiedIdentity.from_bytes(identity_record.data)
                wallet.add_identity(identity_record.wallet_index, qualified.identity)

        logger.debug(f"Loaded {len(wallets)} wallets for {network_type.value}")
        return list(wallets.values())

    @staticmethod
    def _asset_lock_from_record(
        record: AssetLockTransactionRecord, network: NetworkType
    ) -> UnusedAssetLock:
        tx = Transaction.deserialize(record.transaction_data)
        credit_output = tx.asset_lock_payload.credit_outputs[0]
        address = script_to_address(credit_output.script, network)

        proof: AssetLockProof | None = None
        if record.instant_lock_data is not None:
            proof = InstantAssetLockProof(record.instant_lock_data, record.transaction_data, 0)
        elif record.chain_locked_height is not None:
            proof = ChainAssetLockProof(record.chain_locked_height, OutPoint(record.txid, 0))

        return UnusedAssetLock(
            transaction=tx,
            address=address,
            amount=record.amount,
            instant_lock=record.instant_lock_data,
            proof=proof,
        )
