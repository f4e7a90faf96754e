"""
Tests for confirmation and relay waiters.
"""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from coinforward.backends.base import UTXO
from coinforward.errors import ConfirmationAbort, RelayError
from coinforward.waiters import BroadcastHandle, BroadcastState, ConfirmationWaiter, RelayWaiter

TXID = "cc" * 32


def utxo(confirmations: int) -> UTXO:
    return UTXO(TXID, 0, 10_000, "addr", confirmations, "")


class TestConfirmationWaiter:
    @pytest.mark.asyncio
    async def test_returns_depth_when_reached(self):
        backend = MagicMock()
        backend.get_utxo = AsyncMock(side_effect=[utxo(0), utxo(0), utxo(2)])
        waiter = ConfirmationWaiter(backend, TXID, [0], required=1, poll_interval=0)
        assert await waiter.wait() == 2
        assert backend.get_utxo.await_count == 3

    @pytest.mark.asyncio
    async def test_checks_every_watched_output(self):
        backend = MagicMock()
        backend.get_utxo = AsyncMock(side_effect=[None, utxo(1)])
        waiter = ConfirmationWaiter(backend, TXID, [0, 1], required=1, poll_interval=0)
        assert await waiter.wait() == 1
        backend.get_utxo.assert_any_await(TXID, 1)

    @pytest.mark.asyncio
    async def test_aborts_when_dropped(self):
        backend = MagicMock()
        backend.get_utxo = AsyncMock(return_value=None)
        waiter = ConfirmationWaiter(
            backend, TXID, [0], required=1, poll_interval=0, miss_limit=3
        )
        with pytest.raises(ConfirmationAbort):
            await waiter.wait()
        assert backend.get_utxo.await_count == 3

    @pytest.mark.asyncio
    async def test_reappearing_output_resets_misses(self):
        backend = MagicMock()
        backend.get_utxo = AsyncMock(side_effect=[None, utxo(0), None, utxo(1)])
        waiter = ConfirmationWaiter(
            backend, TXID, [0], required=1, poll_interval=0, miss_limit=2
        )
        assert await waiter.wait() == 1

    @pytest.mark.asyncio
    async def test_backend_errors_are_retried(self):
        backend = MagicMock()
        backend.get_utxo = AsyncMock(
            side_effect=[httpx.ConnectError("down"), ValueError("rpc"), utxo(1)]
        )
        waiter = ConfirmationWaiter(backend, TXID, [0], required=1, poll_interval=0)
        assert await waiter.wait() == 1

    def test_needs_outputs(self):
        with pytest.raises(ValueError):
            ConfirmationWaiter(MagicMock(), TXID, [], required=1)


class TestRelayWaiter:
    @pytest.mark.asyncio
    async def test_unbroadcast_entry_is_not_relayed(self):
        backend = MagicMock()
        backend.get_mempool_entry = AsyncMock(return_value={"unbroadcast": True})
        assert not await RelayWaiter(backend, TXID).is_relayed()

    @pytest.mark.asyncio
    async def test_announced_entry_is_relayed(self):
        backend = MagicMock()
        backend.get_mempool_entry = AsyncMock(return_value={"unbroadcast": False})
        assert await RelayWaiter(backend, TXID).is_relayed()

    @pytest.mark.asyncio
    async def test_mined_transaction_is_relayed(self):
        backend = MagicMock()
        backend.get_mempool_entry = AsyncMock(return_value=None)
        backend.get_utxo = AsyncMock(return_value=utxo(1))
        assert await RelayWaiter(backend, TXID).is_relayed()

    @pytest.mark.asyncio
    async def test_missing_transaction_is_not_relayed(self):
        backend = MagicMock()
        backend.get_mempool_entry = AsyncMock(return_value=None)
        backend.get_utxo = AsyncMock(return_value=None)
        assert not await RelayWaiter(backend, TXID).is_relayed()

    @pytest.mark.asyncio
    async def test_mined_and_spent_transaction_is_relayed(self):
        backend = MagicMock()
        backend.get_mempool_entry = AsyncMock(side_effect=[{"unbroadcast": True}, None])
        # Destination already spent the sweep output
        backend.get_utxo = AsyncMock(return_value=None)
        waiter = RelayWaiter(backend, TXID, poll_interval=0)

        await asyncio.wait_for(waiter.wait(), timeout=1)
        assert backend.get_mempool_entry.await_count == 2


class TestBroadcastHandle:
    @pytest.fixture
    def transaction(self):
        tx = MagicMock()
        tx.txid = TXID
        return tx

    @pytest.mark.asyncio
    async def test_relayed(self, transaction):
        backend = MagicMock()
        backend.get_mempool_entry = AsyncMock(
            side_effect=[{"unbroadcast": True}, {"unbroadcast": False}]
        )
        handle = BroadcastHandle(backend, transaction, poll_interval=0)
        assert handle.state == BroadcastState.SUBMITTED

        assert await handle.await_relayed(timeout=5) is handle
        assert handle.state == BroadcastState.RELAYED
        assert handle.txid == TXID

    @pytest.mark.asyncio
    async def test_timeout(self, transaction):
        backend = MagicMock()
        backend.get_mempool_entry = AsyncMock(return_value={"unbroadcast": True})
        handle = BroadcastHandle(backend, transaction, poll_interval=0.01)

        with pytest.raises(RelayError, match=TXID):
            await handle.await_relayed(timeout=0.05)
        assert handle.state == BroadcastState.FAILED
