"""
Command-line interface for the identity registrar.
"""

from __future__ import annotations

import asyncio
import sys

import typer
from loguru import logger

from registrar.config import Settings, get_settings

app = typer.Typer(
    name="evo-registrar",
    help="Dash identity registration - inspect identities and watch asset lock finality",
    add_completion=False,
)


def setup_logging(level: str) -> None:
    """Configure loguru logging."""
    logger.remove()
    logger.add(
        sys.stderr,
        level=level.upper(),
        format="<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | {message}",
    )


def _open_database(settings: Settings):
    from evowallet.persistence.database import Database

    db = Database(settings.database_url)
    db.create_tables()
    return db


@app.command()
def identities(
    log_level: str | None = typer.Option(None, "--log-level", "-l"),
) -> None:
    """List locally known identities and their registration status."""
    settings = get_settings()
    setup_logging(log_level or settings.log_level)
    db = _open_database(settings)

    found = db.get_identities(settings.network)
    if not found:
        typer.echo("No identities")
        return
    for qualified in found:
        typer.echo(
            f"{qualified.identity_id}  {qualified.status.value:<16} "
            f"{qualified.alias or '-':<20} index={qualified.wallet_index}"
        )


@app.command("identity-status")
def identity_status(
    identity_id: str = typer.Argument(..., help="Base58 identity id"),
    log_level: str | None = typer.Option(None, "--log-level", "-l"),
) -> None:
    """Show the stored record of one identity."""
    settings = get_settings()
    setup_logging(log_level or settings.log_level)
    db = _open_database(settings)

    qualified = db.get_identity(identity_id)
    if qualified is None:
        logger.error(f"Identity {identity_id} not found")
        raise typer.Exit(1)

    typer.echo(f"Identity:  {qualified.identity_id}")
    typer.echo(f"Status:    {qualified.status.value}")
    typer.echo(f"Alias:     {qualified.alias or '-'}")
    typer.echo(f"Balance:   {qualified.identity.balance} credits")
    typer.echo(f"Revision:  {qualified.identity.revision}")
    for key_id, entry in sorted(qualified.private_keys.items()):
        typer.echo(
            f"Key {key_id}:     {entry.public_key.security_level.value:<9} {entry.derivation_path}"
        )


@app.command()
def watch(
    once: bool = typer.Option(False, "--once", help="Poll a single time and exit"),
    log_level: str | None = typer.Option(None, "--log-level", "-l"),
) -> None:
    """Watch unproved asset locks and record instant or chain lock proofs."""
    settings = get_settings()
    setup_logging(log_level or settings.log_level)
    try:
        asyncio.run(_watch(settings, once))
    except KeyboardInterrupt:
        logger.info("Interrupted")


async def _watch(settings: Settings, once: bool) -> None:
    from evowallet.backends.dash_core import DashCoreBackend

    from registrar.finality import ChainWatcher, FinalityTracker

    db = _open_database(settings)
    backend = DashCoreBackend(
        rpc_url=settings.core_rpc_url,
        rpc_user=settings.core_rpc_user,
        rpc_password=settings.core_rpc_password,
    )
    tracker = FinalityTracker()
    for record in db.get_asset_lock_transactions(settings.network, unused_only=True):
        if record.instant_lock_data is None and record.chain_locked_height is None:
            tracker.register_pending(record.txid)

    pending = tracker.pending_txids()
    logger.info(f"Watching {len(pending)} asset locks without proof")
    watcher = ChainWatcher(tracker, backend, db=db)
    try:
        if once:
            resolved = await watcher.poll_once()
            typer.echo(f"Resolved {resolved} of {len(pending)} asset locks")
        else:
            await watcher.run(settings.watch_interval)
    finally:
        await backend.close()
        db.close()


def main() -> None:
    """CLI entry point."""
    app()


if __name__ == "__main__":
    main()
