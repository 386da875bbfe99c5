"""
Application context shared by registrations and watchers.
"""

from __future__ import annotations

import threading

from loguru import logger

from evocore.models import AssetLockProof, NetworkType
from evowallet.backends.base import CoreBackend
from evowallet.persistence.database import Database
from evowallet.wallet.models import Wallet
from registrar.config import Settings
from registrar.errors import NodeUnavailableError
from registrar.finality import ChainWatcher, FinalityTracker
from registrar.platform import PlatformClient


class AppContext:
    """
    Owns the node client, Platform client, database, wallets and finality tracker.

    The node client is handed out through node(); after shutdown() it raises
    NodeUnavailableError instead.
    """

    def __init__(
        self,
        db: Database,
        backend: CoreBackend,
        platform: PlatformClient,
        settings: Settings | None = None,
        tracker: FinalityTracker | None = None,
    ):
        self.settings = settings or Settings()
        self.network: NetworkType = self.settings.network
        self.db = db
        self.platform = platform
        self.tracker = tracker or FinalityTracker()

        self._backend: CoreBackend | None = backend
        self._node_lock = threading.Lock()
        self._wallets_lock = threading.Lock()
        self._wallets: dict[bytes, Wallet] = {}

    @classmethod
    def from_settings(cls, settings: Settings, platform: PlatformClient) -> AppContext:
        from evowallet.backends.dash_core import DashCoreBackend

        db = Database(settings.database_url)
        db.create_tables()
        backend = DashCoreBackend(
            rpc_url=settings.core_rpc_url,
            rpc_user=settings.core_rpc_user,
            rpc_password=settings.core_rpc_password,
        )
        context = cls(db, backend, platform, settings)
        context.load_wallets()
        return context

    def node(self) -> CoreBackend:
        with self._node_lock:
            if self._backend is None:
                raise NodeUnavailableError("Core node client is not available")
            return self._backend

    async def shutdown(self) -> None:
        with self._node_lock:
            backend, self._backend = self._backend, None
        if backend is not None:
            await backend.close()
        self.db.close()
        logger.info("Application context shut down")

    # Wallet registry

    def load_wallets(self) -> list[Wallet]:
        wallets = self.db.get_wallets(self.network)
        with self._wallets_lock:
            for wallet in wallets:
                self._wallets[wallet.seed_hash] = wallet
        logger.info(f"Loaded {len(wallets)} wallets for {self.network.value}")
        return wallets

    def add_wallet(self, wallet: Wallet) -> None:
        with self._wallets_lock:
            self._wallets[wallet.seed_hash] = wallet

    def get_wallet(self, seed_hash: bytes) -> Wallet | None:
        with self._wallets_lock:
            return self._wallets.get(seed_hash)

    def wallets(self) -> list[Wallet]:
        with self._wallets_lock:
            return list(self._wallets.values())

    # Finality

    def record_asset_lock_proof(self, txid: str, proof: AssetLockProof) -> None:
        """Attach a proof to the matching unused asset lock of any wallet."""
        for wallet in self.wallets():
            wallet.set_asset_lock_proof(txid, proof)

    def chain_watcher(self) -> ChainWatcher:
        return ChainWatcher(
            self.tracker, self.node(), db=self.db, on_proof=self.record_asset_lock_proof
        )
