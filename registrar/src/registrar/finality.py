"""
Finality tracking for broadcast asset lock transactions.

The tracker is a txid -> proof registry. A txid is registered as pending
before broadcast and resolved once the node reports an instant lock or a
chain lock for it. Registration code waits on the tracker; the ChainWatcher
(or any other listener) resolves entries.
"""

from __future__ import annotations

import asyncio
import threading
from collections.abc import Callable

from loguru import logger

from evocore.constants import PROOF_POLL_INTERVAL
from evocore.models import (
    AssetLockProof,
    ChainAssetLockProof,
    InstantAssetLockProof,
    OutPoint,
    describe_proof,
)
from evowallet.backends.base import CoreBackend
from evowallet.persistence.database import Database
from registrar.errors import FinalityTimeoutError


class FinalityTracker:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._proofs: dict[str, AssetLockProof | None] = {}

    def register_pending(self, txid: str) -> None:
        with self._lock:
            self._proofs.setdefault(txid, None)

    def resolve(self, txid: str, proof: AssetLockProof) -> bool:
        """
        Attach a proof to a tracked transaction.

        Returns False for txids that were never registered. A resolved entry
        can be replaced by another proof but never goes back to pending.
        """
        with self._lock:
            if txid not in self._proofs:
                return False
            self._proofs[txid] = proof
        logger.debug(f"Asset lock {txid} resolved with {describe_proof(proof)}")
        return True

    def discard(self, txid: str) -> None:
        with self._lock:
            self._proofs.pop(txid, None)

    def get(self, txid: str) -> AssetLockProof | None:
        with self._lock:
            return self._proofs.get(txid)

    def is_tracked(self, txid: str) -> bool:
        with self._lock:
            return txid in self._proofs

    def pending_txids(self) -> list[str]:
        with self._lock:
            return [txid for txid, proof in self._proofs.items() if proof is None]

    async def await_resolution(
        self,
        txid: str,
        poll_interval: float = PROOF_POLL_INTERVAL,
        timeout: float | None = None,
    ) -> AssetLockProof:
        """
        Poll until the transaction has a proof.

        Raises:
            KeyError: The txid is not (or no longer) tracked
            FinalityTimeoutError: No proof arrived within timeout seconds
        """
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout if timeout else None

        while True:
            with self._lock:
                if txid not in self._proofs:
                    raise KeyError(f"Asset lock {txid} is not tracked")
                proof = self._proofs[txid]
            if proof is not None:
                return proof
            if deadline is not None and loop.time() >= deadline:
                raise FinalityTimeoutError(txid, timeout or 0)
            await asyncio.sleep(poll_interval)


class ChainWatcher:
    """
    Polls the node for every pending asset lock and resolves it.

    A chain lock with a known height wins over an instant lock. Proofs are
    recorded in the database, and on_proof (if set) is called so wallets can
    update their unused asset locks.
    """

    def __init__(
        self,
        tracker: FinalityTracker,
        backend: CoreBackend,
        db: Database | None = None,
        on_proof: Callable[[str, AssetLockProof], None] | None = None,
    ):
        self.tracker = tracker
        self.backend = backend
        self.db = db
        self.on_proof = on_proof
        self._stop = asyncio.Event()

    async def check(self, txid: str) -> AssetLockProof | None:
        info = await self.backend.get_raw_transaction_info(txid)

        if info.chainlock and info.height is not None:
            return ChainAssetLockProof(info.height, OutPoint(txid, 0))

        if info.instantlock:
            locks = await self.backend.get_instant_locks([txid])
            instant_lock = locks.get(txid)
            if instant_lock is not None and info.hex:
                return InstantAssetLockProof(instant_lock, bytes.fromhex(info.hex), 0)

        return None

    async def poll_once(self) -> int:
        """Check all pending transactions once. Returns how many were resolved."""
        resolved = 0
        for txid in self.tracker.pending_txids():
            try:
                proof = await self.check(txid)
            except Exception as e:
                logger.warning(f"Could not check finality of {txid}: {e}")
                continue
            if proof is None:
                continue
            if self.db is not None:
                self.db.set_asset_lock_proof(txid, proof)
            if self.on_proof is not None:
                self.on_proof(txid, proof)
            if self.tracker.resolve(txid, proof):
                resolved += 1
        return resolved

    async def run(self, interval: float = 1.0) -> None:
        logger.info("Chain watcher started")
        self._stop.clear()
        while not self._stop.is_set():
            await self.poll_once()
            try:
                await asyncio.wait_for(self._stop.wait(), timeout=interval)
            except asyncio.TimeoutError:
                pass
        logger.info("Chain watcher stopped")

    def stop(self) -> None:
        self._stop.set()
