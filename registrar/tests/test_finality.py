"""
Tests for the finality tracker and the chain watcher.
"""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from evocore.models import ChainAssetLockProof, InstantAssetLockProof, OutPoint
from evowallet.backends.base import RawTransactionInfo
from registrar.errors import FinalityTimeoutError
from registrar.finality import ChainWatcher, FinalityTracker

TXID = "ab" * 32


def chain_proof(height: int = 100) -> ChainAssetLockProof:
    return ChainAssetLockProof(height, OutPoint(TXID, 0))


class TestFinalityTracker:
    def test_register_and_resolve(self, tracker):
        tracker.register_pending(TXID)
        assert tracker.get(TXID) is None
        assert tracker.pending_txids() == [TXID]

        assert tracker.resolve(TXID, chain_proof())
        assert tracker.get(TXID) == chain_proof()
        assert tracker.pending_txids() == []

    def test_resolve_unknown_txid(self, tracker):
        assert not tracker.resolve(TXID, chain_proof())
        assert not tracker.is_tracked(TXID)

    def test_register_does_not_reset_resolved(self, tracker):
        tracker.register_pending(TXID)
        tracker.resolve(TXID, chain_proof())
        tracker.register_pending(TXID)
        assert tracker.get(TXID) == chain_proof()

    def test_resolve_overwrites_proof(self, tracker):
        tracker.register_pending(TXID)
        tracker.resolve(TXID, InstantAssetLockProof(b"is", b"tx"))
        tracker.resolve(TXID, chain_proof(200))
        assert tracker.get(TXID) == chain_proof(200)

    def test_discard(self, tracker):
        tracker.register_pending(TXID)
        tracker.discard(TXID)
        assert not tracker.is_tracked(TXID)

    @pytest.mark.asyncio
    async def test_await_resolution(self, tracker):
        tracker.register_pending(TXID)

        async def resolve_later():
            await asyncio.sleep(0.03)
            tracker.resolve(TXID, chain_proof())

        resolver = asyncio.create_task(resolve_later())
        proof = await tracker.await_resolution(TXID, poll_interval=0.01, timeout=1)
        await resolver
        assert proof == chain_proof()

    @pytest.mark.asyncio
    async def test_await_resolution_timeout(self, tracker):
        tracker.register_pending(TXID)
        with pytest.raises(FinalityTimeoutError):
            await tracker.await_resolution(TXID, poll_interval=0.01, timeout=0.05)
        # Still pending; a later proof can be picked up
        assert tracker.is_tracked(TXID)

    @pytest.mark.asyncio
    async def test_await_untracked(self, tracker):
        with pytest.raises(KeyError):
            await tracker.await_resolution(TXID, poll_interval=0.01)


@pytest.fixture
def watch_backend():
    backend = MagicMock()
    backend.get_raw_transaction_info = AsyncMock()
    backend.get_instant_locks = AsyncMock(return_value={})
    return backend


class TestChainWatcher:
    @pytest.mark.asyncio
    async def test_chain_lock_wins(self, tracker, watch_backend):
        watch_backend.get_raw_transaction_info.return_value = RawTransactionInfo(
            txid=TXID, chainlock=True, instantlock=True, height=900, confirmations=3, hex="00"
        )
        tracker.register_pending(TXID)
        on_proof = MagicMock()
        db = MagicMock()

        resolved = await ChainWatcher(tracker, watch_backend, db, on_proof).poll_once()

        assert resolved == 1
        assert tracker.get(TXID) == ChainAssetLockProof(900, OutPoint(TXID, 0))
        db.set_asset_lock_proof.assert_called_once_with(TXID, tracker.get(TXID))
        on_proof.assert_called_once_with(TXID, tracker.get(TXID))
        watch_backend.get_instant_locks.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_instant_lock(self, tracker, watch_backend):
        watch_backend.get_raw_transaction_info.return_value = RawTransactionInfo(
            txid=TXID, instantlock=True, hex="0300080000"
        )
        watch_backend.get_instant_locks.return_value = {TXID: b"islock"}
        tracker.register_pending(TXID)

        await ChainWatcher(tracker, watch_backend).poll_once()

        assert tracker.get(TXID) == InstantAssetLockProof(b"islock", bytes.fromhex("0300080000"))

    @pytest.mark.asyncio
    async def test_unlocked_stays_pending(self, tracker, watch_backend):
        watch_backend.get_raw_transaction_info.return_value = RawTransactionInfo(
            txid=TXID, hex="00"
        )
        tracker.register_pending(TXID)

        assert await ChainWatcher(tracker, watch_backend).poll_once() == 0
        assert tracker.pending_txids() == [TXID]

    @pytest.mark.asyncio
    async def test_node_errors_are_skipped(self, tracker, watch_backend):
        watch_backend.get_raw_transaction_info.side_effect = ValueError("not found")
        tracker.register_pending(TXID)
        assert await ChainWatcher(tracker, watch_backend).poll_once() == 0

    @pytest.mark.asyncio
    async def test_run_until_stopped(self, tracker, watch_backend):
        watch_backend.get_raw_transaction_info.return_value = RawTransactionInfo(
            txid=TXID, chainlock=True, height=5, hex="00"
        )
        tracker.register_pending(TXID)
        watcher = ChainWatcher(tracker, watch_backend)

        task = asyncio.create_task(watcher.run(interval=0.01))
        await asyncio.sleep(0.05)
        watcher.stop()
        await asyncio.wait_for(task, timeout=1)

        assert tracker.get(TXID) is not None
