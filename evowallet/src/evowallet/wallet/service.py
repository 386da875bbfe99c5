"""
Wallet service: creation, address gap management and UTXO refresh from the node.
"""

from __future__ import annotations

from loguru import logger

from evocore.models import NetworkType, OutPoint, TxOut
from evowallet.backends.base import CoreBackend
from evowallet.persistence.database import Database
from evowallet.wallet.address import address_to_script
from evowallet.wallet.bip32 import mnemonic_to_seed
from evowallet.wallet.models import Wallet, WalletUtxo

DEFAULT_GAP_LIMIT = 20


def create_wallet(
    mnemonic: str,
    db: Database,
    network: NetworkType = NetworkType.MAINNET,
    passphrase: str = "",
    alias: str | None = None,
    is_main: bool = False,
    gap_limit: int = DEFAULT_GAP_LIMIT,
) -> Wallet:
    """Create a wallet from a mnemonic, pre-derive its first addresses and store it."""
    wallet = Wallet(mnemonic_to_seed(mnemonic, passphrase), network, alias=alias, is_main=is_main)
    for index in range(gap_limit):
        wallet.receive_address(index)
        wallet.change_address(index)
    db.store_wallet(wallet)
    logger.info(
        f"Created wallet {wallet.seed_hash_hex[:8]} on {network.value} "
        f"with {len(wallet.known_addresses)} addresses"
    )
    return wallet


def persist_new_addresses(wallet: Wallet, db: Database) -> None:
    """Store every registered address that the database does not know yet."""
    with wallet.lock:
        entries = list(wallet.watched_addresses.items())
    for path, info in entries:
        db.add_address_if_not_exists(
            wallet.seed_hash,
            info.address,
            path,
            info.path_reference,
            info.path_type,
            wallet.balance_of(info.address),
        )


async def reload_utxos(wallet: Wallet, backend: CoreBackend, db: Database) -> int:
    """
    Replace the wallet's UTXO set with the node's view of its known addresses.

    Outpoints spent by asset locks that are not chain-locked yet are left
    out, since the node still reports them until the lock is mined.

    Returns the new total balance in duffs.
    """
    persist_new_addresses(wallet, db)
    with wallet.lock:
        addresses = list(wallet.known_addresses)

    backend_utxos = await backend.get_utxos(addresses)

    spent = wallet.asset_lock_inputs() | db.pending_asset_lock_inputs(
        wallet.network, wallet.seed_hash
    )
    fresh: list[WalletUtxo] = []
    for utxo in backend_utxos:
        if utxo.address not in wallet.known_addresses:
            logger.warning(f"Ignoring UTXO {utxo.txid}:{utxo.vout} for unknown address")
            continue
        outpoint = OutPoint(utxo.txid, utxo.vout)
        if outpoint in spent:
            logger.debug(f"Skipping UTXO {outpoint} spent by a pending asset lock")
            continue
        script = (
            bytes.fromhex(utxo.script_pubkey)
            if utxo.script_pubkey
            else address_to_script(utxo.address, wallet.network)
        )
        fresh.append(WalletUtxo(outpoint, TxOut(utxo.value, script), utxo.address))

    with wallet.lock:
        db.replace_utxos(addresses, fresh, wallet.network)
        wallet.replace_utxos(fresh)
        balances = {address: wallet.balance_of(address) for address in addresses}

    for address, balance in balances.items():
        db.update_address_balance(wallet.seed_hash, address, balance)

    total = sum(balances.values())
    logger.info(
        f"Refreshed wallet {wallet.seed_hash_hex[:8]}: {len(fresh)} UTXOs, balance {total} duffs"
    )
    return total
