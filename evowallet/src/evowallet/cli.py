"""
Evo Wallet CLI - Create wallets, refresh UTXOs and inspect asset locks.
"""

from __future__ import annotations

import asyncio
import sys
from pathlib import Path

import typer
from loguru import logger

from evocore.models import NetworkType

app = typer.Typer(
    name="evo-wallet",
    help="Dash wallet management for identity funding",
    add_completion=False,
)


def setup_logging(level: str = "INFO") -> None:
    """Configure loguru logging."""
    logger.remove()
    logger.add(
        sys.stderr,
        level=level.upper(),
        format="<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | {message}",
    )


def _open_database(database_url: str):
    from evowallet.persistence.database import Database

    db = Database(database_url)
    db.create_tables()
    return db


def _parse_network(network: str) -> NetworkType:
    try:
        return NetworkType(network.lower())
    except ValueError:
        logger.error(f"Unknown network: {network}")
        raise typer.Exit(1)


def _find_wallet(wallets, seed_hash_prefix: str | None):
    if not wallets:
        logger.error("No wallets stored for this network")
        raise typer.Exit(1)
    if seed_hash_prefix is None:
        main_wallets = [w for w in wallets if w.is_main]
        return main_wallets[0] if main_wallets else wallets[0]
    matches = [w for w in wallets if w.seed_hash_hex.startswith(seed_hash_prefix.lower())]
    if len(matches) != 1:
        logger.error(f"Wallet prefix {seed_hash_prefix!r} matches {len(matches)} wallets")
        raise typer.Exit(1)
    return matches[0]


@app.command()
def create(
    mnemonic: str = typer.Option(None, "--mnemonic", envvar="MNEMONIC", help="BIP39 mnemonic"),
    mnemonic_file: Path | None = typer.Option(
        None, "--mnemonic-file", "-f", help="Path to mnemonic file"
    ),
    alias: str | None = typer.Option(None, "--alias", "-a"),
    main: bool = typer.Option(False, "--main", help="Mark as the main wallet"),
    network: str = typer.Option("testnet", "--network", "-n", help="Dash network"),
    database_url: str = typer.Option(
        "sqlite:///evo-wallet.db", "--database-url", envvar="DATABASE_URL"
    ),
    log_level: str = typer.Option("INFO", "--log-level", "-l"),
) -> None:
    """Import a wallet from its mnemonic and store it."""
    setup_logging(log_level)
    from evowallet.wallet.service import create_wallet

    if mnemonic_file:
        if not mnemonic_file.exists():
            logger.error(f"Mnemonic file not found: {mnemonic_file}")
            raise typer.Exit(1)
        mnemonic = mnemonic_file.read_text().strip()

    if not mnemonic:
        logger.error("Mnemonic required. Use --mnemonic, --mnemonic-file, or MNEMONIC env var")
        raise typer.Exit(1)

    db = _open_database(database_url)
    wallet = create_wallet(mnemonic, db, _parse_network(network), alias=alias, is_main=main)
    typer.echo(f"Wallet {wallet.seed_hash_hex}")
    typer.echo(f"First receive address: {wallet.receive_address(0)}")


@app.command("list")
def list_wallets(
    network: str = typer.Option("testnet", "--network", "-n"),
    database_url: str = typer.Option(
        "sqlite:///evo-wallet.db", "--database-url", envvar="DATABASE_URL"
    ),
    log_level: str = typer.Option("WARNING", "--log-level", "-l"),
) -> None:
    """List stored wallets with their cached balances."""
    setup_logging(log_level)
    db = _open_database(database_url)
    for wallet in db.get_wallets(_parse_network(network)):
        marker = "*" if wallet.is_main else " "
        balance = wallet.total_balance()
        typer.echo(
            f"{marker} {wallet.seed_hash_hex[:16]}  {wallet.alias or '-':<20} "
            f"{balance:>14,} duffs  {len(wallet.unused_asset_locks)} unused asset locks"
        )


@app.command()
def refresh(
    wallet_id: str | None = typer.Option(None, "--wallet", "-w", help="Seed hash prefix"),
    network: str = typer.Option("testnet", "--network", "-n"),
    database_url: str = typer.Option(
        "sqlite:///evo-wallet.db", "--database-url", envvar="DATABASE_URL"
    ),
    rpc_url: str = typer.Option("http://127.0.0.1:19998", "--rpc-url", envvar="CORE_RPC_URL"),
    rpc_user: str = typer.Option("", "--rpc-user", envvar="CORE_RPC_USER"),
    rpc_password: str = typer.Option("", "--rpc-password", envvar="CORE_RPC_PASSWORD"),
    log_level: str = typer.Option("INFO", "--log-level", "-l"),
) -> None:
    """Reload the wallet's UTXOs from Dash Core."""
    setup_logging(log_level)
    db = _open_database(database_url)
    wallet = _find_wallet(db.get_wallets(_parse_network(network)), wallet_id)
    asyncio.run(_refresh(wallet, db, rpc_url, rpc_user, rpc_password))


async def _refresh(wallet, db, rpc_url: str, rpc_user: str, rpc_password: str) -> None:
    from evowallet.backends.dash_core import DashCoreBackend
    from evowallet.wallet.service import reload_utxos

    backend = DashCoreBackend(rpc_url=rpc_url, rpc_user=rpc_user, rpc_password=rpc_password)
    try:
        total = await reload_utxos(wallet, backend, db)
        typer.echo(f"Balance: {total:,} duffs ({total / 1e8:.8f} DASH)")
    finally:
        await backend.close()


@app.command()
def utxos(
    wallet_id: str | None = typer.Option(None, "--wallet", "-w", help="Seed hash prefix"),
    network: str = typer.Option("testnet", "--network", "-n"),
    database_url: str = typer.Option(
        "sqlite:///evo-wallet.db", "--database-url", envvar="DATABASE_URL"
    ),
    log_level: str = typer.Option("WARNING", "--log-level", "-l"),
) -> None:
    """Show the stored UTXOs of a wallet."""
    setup_logging(log_level)
    db = _open_database(database_url)
    wallet = _find_wallet(db.get_wallets(_parse_network(network)), wallet_id)
    for utxo in sorted(wallet.iter_utxos(), key=lambda u: u.value, reverse=True):
        typer.echo(f"{utxo.outpoint}  {utxo.value:>14,}  {utxo.address}")
    typer.echo(f"Total: {wallet.total_balance():,} duffs")


@app.command()
def address(
    wallet_id: str | None = typer.Option(None, "--wallet", "-w", help="Seed hash prefix"),
    network: str = typer.Option("testnet", "--network", "-n"),
    database_url: str = typer.Option(
        "sqlite:///evo-wallet.db", "--database-url", envvar="DATABASE_URL"
    ),
    log_level: str = typer.Option("WARNING", "--log-level", "-l"),
) -> None:
    """Derive and store the next receive address."""
    setup_logging(log_level)
    from evowallet.wallet.service import persist_new_addresses

    db = _open_database(database_url)
    wallet = _find_wallet(db.get_wallets(_parse_network(network)), wallet_id)
    receive = wallet.receive_address(wallet.next_address_index(0))
    persist_new_addresses(wallet, db)
    typer.echo(receive)


@app.command("asset-locks")
def asset_locks(
    network: str = typer.Option("testnet", "--network", "-n"),
    unused: bool = typer.Option(False, "--unused", help="Only locks not yet used by an identity"),
    database_url: str = typer.Option(
        "sqlite:///evo-wallet.db", "--database-url", envvar="DATABASE_URL"
    ),
    log_level: str = typer.Option("WARNING", "--log-level", "-l"),
) -> None:
    """List asset lock transactions and their proof state."""
    setup_logging(log_level)
    db = _open_database(database_url)
    for record in db.get_asset_lock_transactions(_parse_network(network), unused_only=unused):
        if record.chain_locked_height is not None:
            proof = f"chain@{record.chain_locked_height}"
        elif record.instant_lock_data is not None:
            proof = "instant"
        else:
            proof = "pending"
        identity = record.identity_id or record.identity_id_potentially_in_creation or "-"
        typer.echo(f"{record.txid}  {record.amount:>14,}  {proof:<14} {identity}")


def main() -> None:
    """CLI entry point."""
    app()


if __name__ == "__main__":
    main()
