"""
Wallet data models and the in-memory UTXO store.

A Wallet owns its address registry, its unspent outputs (address -> outpoint
-> output) and a per-address balance cache. All mutations go through the
wallet lock; callers must not hold it across an await.
"""

from __future__ import annotations

import threading
from collections.abc import Callable, Iterable, Iterator
from dataclasses import dataclass
from enum import Enum, IntFlag
from typing import TYPE_CHECKING

from coincurve import PrivateKey
from loguru import logger

from evocore.crypto import sha256
from evocore.models import AssetLockProof, Identity, NetworkType, OutPoint, TxOut
from evowallet.wallet.bip32 import HDKey
from evowallet.wallet.transaction import Transaction

if TYPE_CHECKING:
    from evowallet.persistence.database import Database


class WalletError(Exception):
    pass


class InsufficientFundsError(WalletError):
    pass


class UtxoReservedError(WalletError):
    pass


class UnknownAddressError(WalletError):
    pass


class DerivationPathReference(int, Enum):
    UNKNOWN = 0
    BIP44 = 1
    BLOCKCHAIN_IDENTITIES = 2
    IDENTITY_REGISTRATION_FUNDING = 3
    IDENTITY_TOPUP_FUNDING = 4
    IDENTITY_INVITATION_FUNDING = 5


class DerivationPathType(IntFlag):
    UNKNOWN = 0
    CLEAR_FUNDS = 1
    ANONYMOUS_FUNDS = 2
    VIEW_ONLY_FUNDS = 4
    SINGLE_USER_AUTHENTICATION = 8
    CREDIT_FUNDING = 16


@dataclass
class AddressInfo:
    address: str
    path_reference: DerivationPathReference
    path_type: DerivationPathType


@dataclass(frozen=True)
class WalletUtxo:
    """A live outpoint together with the address that owns it."""

    outpoint: OutPoint
    output: TxOut
    address: str

    @property
    def value(self) -> int:
        return self.output.value


@dataclass
class UnusedAssetLock:
    """A broadcast asset lock that has not yet funded an identity."""

    transaction: Transaction
    address: str
    amount: int
    instant_lock: bytes | None = None
    proof: AssetLockProof | None = None

    @property
    def txid(self) -> str:
        return self.transaction.txid


class Wallet:
    """
    HD wallet state for one seed.

    Derivation paths:
    - m/44'/{coin}'/0'/{change}/{index}: spendable funds
    - m/9'/{coin}'/5'/1'/{index}: identity registration funding keys
    - m/9'/{coin}'/5'/0'/0'/{identity}'/{key}': identity authentication keys
    """

    def __init__(
        self,
        seed: bytes,
        network: NetworkType = NetworkType.MAINNET,
        alias: str | None = None,
        is_main: bool = False,
    ):
        self.seed = seed
        self.network = network
        self.alias = alias
        self.is_main = is_main
        self.master_key = HDKey.from_seed(seed)
        self._seed_hash = sha256(seed)

        self.lock = threading.RLock()

        self.known_addresses: dict[str, str] = {}
        self.watched_addresses: dict[str, AddressInfo] = {}
        self.address_balances: dict[str, int] = {}
        self.utxos: dict[str, dict[OutPoint, TxOut]] = {}
        self.unused_asset_locks: list[UnusedAssetLock] = []
        self.identities: dict[int, Identity] = {}

        self._reserved: set[OutPoint] = set()
        self._reserved_asset_locks: set[str] = set()
        self._key_cache: dict[str, HDKey] = {}

    @property
    def seed_hash(self) -> bytes:
        return self._seed_hash

    @property
    def seed_hash_hex(self) -> str:
        return self._seed_hash.hex()

    # Key derivation and address registry

    def bip44_path(self, change: int, index: int) -> str:
        return f"m/44'/{self.network.coin_type}'/0'/{change}/{index}"

    def identity_registration_path(self, index: int) -> str:
        return f"m/9'/{self.network.coin_type}'/5'/1'/{index}"

    def identity_authentication_path(self, identity_index: int, key_index: int) -> str:
        return f"m/9'/{self.network.coin_type}'/5'/0'/0'/{identity_index}'/{key_index}'"

    def derive_key(self, path: str) -> HDKey:
        key = self._key_cache.get(path)
        if key is None:
            key = self.master_key.derive(path)
            self._key_cache[path] = key
        return key

    def load_address(
        self,
        address: str,
        path: str,
        path_reference: DerivationPathReference = DerivationPathReference.BIP44,
        path_type: DerivationPathType = DerivationPathType.CLEAR_FUNDS,
    ) -> None:
        """Add an already-derived address to the registry."""
        with self.lock:
            self.known_addresses[address] = path
            self.watched_addresses[path] = AddressInfo(address, path_reference, path_type)

    def register_address(
        self,
        path: str,
        path_reference: DerivationPathReference = DerivationPathReference.BIP44,
        path_type: DerivationPathType = DerivationPathType.CLEAR_FUNDS,
    ) -> str:
        address = self.derive_key(path).get_address(self.network.value)
        self.load_address(address, path, path_reference, path_type)
        return address

    def receive_address(self, index: int) -> str:
        return self.register_address(self.bip44_path(0, index))

    def change_address(self, index: int) -> str:
        return self.register_address(self.bip44_path(1, index))

    def next_address_index(self, change: int) -> int:
        """Next index after the highest registered address on a BIP44 chain."""
        prefix = self.bip44_path(change, 0).rsplit("/", 1)[0] + "/"
        max_index = -1
        with self.lock:
            for path in self.watched_addresses:
                if path.startswith(prefix):
                    max_index = max(max_index, int(path[len(prefix) :]))
        return max_index + 1

    def next_change_address(self) -> str:
        return self.change_address(self.next_address_index(1))

    def identity_registration_key(self, index: int) -> HDKey:
        """One-time key that receives the credit output of an asset lock."""
        path = self.identity_registration_path(index)
        self.register_address(
            path,
            DerivationPathReference.IDENTITY_REGISTRATION_FUNDING,
            DerivationPathType.CREDIT_FUNDING,
        )
        return self.derive_key(path)

    def identity_authentication_key(self, identity_index: int, key_index: int) -> HDKey:
        return self.derive_key(self.identity_authentication_path(identity_index, key_index))

    def private_key_for_address(self, address: str) -> PrivateKey | None:
        path = self.known_addresses.get(address)
        if path is None:
            return None
        return self.derive_key(path).private_key

    # UTXO store

    def add_utxo(self, address: str, outpoint: OutPoint, output: TxOut) -> None:
        with self.lock:
            if address not in self.known_addresses:
                raise UnknownAddressError(f"Address {address} is not known to this wallet")
            outpoints = self.utxos.setdefault(address, {})
            if outpoint in outpoints:
                return
            outpoints[outpoint] = output
            self.address_balances[address] = self.address_balances.get(address, 0) + output.value

    def remove_utxos(self, predicate: Callable[[WalletUtxo], bool]) -> list[WalletUtxo]:
        """Remove every live outpoint matching predicate; returns what was removed."""
        removed: list[WalletUtxo] = []
        with self.lock:
            for address in list(self.utxos):
                outpoints = self.utxos[address]
                for outpoint, output in list(outpoints.items()):
                    utxo = WalletUtxo(outpoint, output, address)
                    if predicate(utxo):
                        del outpoints[outpoint]
                        self._reserved.discard(outpoint)
                        removed.append(utxo)
                        self.address_balances[address] -= output.value
                if not outpoints:
                    # The address stays in known_addresses
                    del self.utxos[address]
                    self.address_balances[address] = 0
        return removed

    def replace_utxos(self, utxos: Iterable[WalletUtxo]) -> None:
        """Replace the whole UTXO set with a fresh view from the node."""
        with self.lock:
            self.utxos = {}
            self.address_balances = {address: 0 for address in self.address_balances}
            for utxo in utxos:
                self.add_utxo(utxo.address, utxo.outpoint, utxo.output)
            self._reserved &= {u.outpoint for u in self.iter_utxos()}

    def balance_of(self, address: str) -> int:
        with self.lock:
            return self.address_balances.get(address, 0)

    def total_balance(self) -> int:
        with self.lock:
            return sum(self.address_balances.values())

    def iter_utxos(self) -> Iterator[WalletUtxo]:
        with self.lock:
            snapshot = [
                WalletUtxo(outpoint, output, address)
                for address, outpoints in self.utxos.items()
                for outpoint, output in outpoints.items()
            ]
        return iter(snapshot)

    def find_utxo(self, outpoint: OutPoint) -> WalletUtxo | None:
        with self.lock:
            for address, outpoints in self.utxos.items():
                output = outpoints.get(outpoint)
                if output is not None:
                    return WalletUtxo(outpoint, output, address)
        return None

    def reserve(self, outpoints: Iterable[OutPoint]) -> None:
        """Mark outpoints as spent by an in-flight build."""
        outpoints = list(outpoints)
        with self.lock:
            for outpoint in outpoints:
                if self.find_utxo(outpoint) is None:
                    raise UtxoReservedError(f"UTXO {outpoint} is not available in this wallet")
                if outpoint in self._reserved:
                    raise UtxoReservedError(f"UTXO {outpoint} is already being spent")
            self._reserved.update(outpoints)

    def release(self, outpoints: Iterable[OutPoint]) -> None:
        with self.lock:
            self._reserved.difference_update(outpoints)

    def is_reserved(self, outpoint: OutPoint) -> bool:
        with self.lock:
            return outpoint in self._reserved

    def select_utxos(self, target_amount: int) -> list[WalletUtxo]:
        """
        Select unreserved UTXOs covering target_amount.
        Uses simple greedy selection, largest first.
        """
        with self.lock:
            eligible = [u for u in self.iter_utxos() if u.outpoint not in self._reserved]

        eligible.sort(key=lambda u: u.value, reverse=True)

        selected = []
        total = 0
        for utxo in eligible:
            selected.append(utxo)
            total += utxo.value
            if total >= target_amount:
                break

        if total < target_amount:
            raise InsufficientFundsError(
                f"Insufficient funds: need {target_amount}, have {total}"
            )

        return selected

    def consume(self, outpoints: Iterable[OutPoint], db: Database) -> list[WalletUtxo]:
        """
        Remove spent outpoints from persistence and then from memory.

        The deletes and the new address balances are written in one database
        transaction while the wallet lock is held, so a failure leaves both
        views untouched.
        """
        spent = set(outpoints)
        with self.lock:
            balances: dict[str, int] = {}
            for utxo in self.iter_utxos():
                if utxo.outpoint in spent:
                    current = balances.get(utxo.address, self.balance_of(utxo.address))
                    balances[utxo.address] = current - utxo.value
            db.consume_utxos(self.seed_hash, spent, self.network, balances)
            removed = self.remove_utxos(lambda u: u.outpoint in spent)
        logger.debug(f"Consumed {len(removed)} UTXOs from wallet {self.seed_hash_hex[:8]}")
        return removed

    # Asset locks and identities

    def add_unused_asset_lock(self, asset_lock: UnusedAssetLock) -> None:
        with self.lock:
            if self.find_unused_asset_lock(asset_lock.txid) is None:
                self.unused_asset_locks.append(asset_lock)

    def find_unused_asset_lock(self, txid: str) -> UnusedAssetLock | None:
        with self.lock:
            for asset_lock in self.unused_asset_locks:
                if asset_lock.txid == txid:
                    return asset_lock
        return None

    def asset_lock_inputs(self) -> set[OutPoint]:
        """Outpoints spent by the wallet's unused asset locks."""
        with self.lock:
            return {
                tx_input.outpoint
                for asset_lock in self.unused_asset_locks
                for tx_input in asset_lock.transaction.inputs
            }

    def set_asset_lock_proof(self, txid: str, proof: AssetLockProof) -> None:
        with self.lock:
            asset_lock = self.find_unused_asset_lock(txid)
            if asset_lock is not None:
                asset_lock.proof = proof

    def drop_unused_asset_lock(self, txid: str) -> None:
        with self.lock:
            self.unused_asset_locks = [a for a in self.unused_asset_locks if a.txid != txid]
            self._reserved_asset_locks.discard(txid)

    def reserve_asset_lock(self, txid: str) -> None:
        with self.lock:
            if txid in self._reserved_asset_locks:
                raise UtxoReservedError(f"Asset lock {txid} is already being used")
            self._reserved_asset_locks.add(txid)

    def release_asset_lock(self, txid: str) -> None:
        with self.lock:
            self._reserved_asset_locks.discard(txid)

    def add_identity(self, wallet_index: int, identity: Identity) -> None:
        with self.lock:
            self.identities[wallet_index] = identity
