"""
One-shot asynchronous waits keyed to a transaction.

Both waiters poll the backend and may never resolve on their own: a deposit
can sit unconfirmed forever and a broadcast may never be relayed. Callers
bound them with a timeout or cancel the awaiting task.
"""

from __future__ import annotations

import asyncio
from enum import Enum
from typing import TYPE_CHECKING

import httpx
from loguru import logger

from coinforward.backends.base import BlockchainBackend
from coinforward.constants import DEFAULT_MISS_LIMIT, DEFAULT_POLL_INTERVAL
from coinforward.errors import ConfirmationAbort, RelayError

if TYPE_CHECKING:
    from coinforward.wallet.transaction import SweepTransaction


class ConfirmationWaiter:
    """
    Resolves with the achieved depth once a transaction reaches `required`
    confirmations.

    Depth is read from the transaction's own outputs (gettxout including the
    mempool). If none of them is visible for `miss_limit` consecutive polls
    the transaction was dropped or double-spent, and ConfirmationAbort is
    raised.
    """

    def __init__(
        self,
        backend: BlockchainBackend,
        txid: str,
        vouts: list[int],
        required: int,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        miss_limit: int = DEFAULT_MISS_LIMIT,
    ):
        if not vouts:
            raise ValueError("ConfirmationWaiter needs at least one output to watch")
        self.backend = backend
        self.txid = txid
        self.vouts = vouts
        self.required = required
        self.poll_interval = poll_interval
        self.miss_limit = miss_limit

    async def depth(self) -> int | None:
        """Current depth, or None if no watched output is visible."""
        for vout in self.vouts:
            utxo = await self.backend.get_utxo(self.txid, vout)
            if utxo is not None:
                return utxo.confirmations
        return None

    async def wait(self) -> int:
        misses = 0
        last_depth = -1
        while True:
            try:
                depth = await self.depth()
            except (ValueError, httpx.HTTPError) as e:
                logger.warning(f"Confirmation check for {self.txid} failed: {e}")
                await asyncio.sleep(self.poll_interval)
                continue

            if depth is None:
                misses += 1
                logger.debug(f"Deposit {self.txid} not visible ({misses}/{self.miss_limit})")
                if misses >= self.miss_limit:
                    raise ConfirmationAbort(
                        f"Deposit {self.txid} was dropped before reaching "
                        f"{self.required} confirmation(s)"
                    )
            else:
                misses = 0
                if depth >= self.required:
                    return depth
                if depth != last_depth:
                    logger.debug(f"Deposit {self.txid} at {depth}/{self.required} confirmations")
                    last_depth = depth

            await asyncio.sleep(self.poll_interval)


class RelayWaiter:
    """
    Resolves once the node has announced a transaction to its peers.

    Bitcoin Core flags a mempool entry `unbroadcast` until at least one peer
    has requested it. A transaction that left the mempool after being seen
    there was mined, and counts as relayed even if its output is already
    spent; so does one first found confirmed.
    """

    def __init__(
        self,
        backend: BlockchainBackend,
        txid: str,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
    ):
        self.backend = backend
        self.txid = txid
        self.poll_interval = poll_interval
        self.seen_in_mempool = False

    async def is_relayed(self) -> bool:
        entry = await self.backend.get_mempool_entry(self.txid)
        if entry is not None:
            self.seen_in_mempool = True
            return not entry.get("unbroadcast", False)

        if self.seen_in_mempool:
            return True

        mined = await self.backend.get_utxo(self.txid, 0)
        return mined is not None and mined.confirmations > 0

    async def wait(self) -> None:
        while True:
            try:
                if await self.is_relayed():
                    return
            except (ValueError, httpx.HTTPError) as e:
                logger.warning(f"Relay check for {self.txid} failed: {e}")
            await asyncio.sleep(self.poll_interval)


class BroadcastState(str, Enum):
    SUBMITTED = "submitted"
    RELAYED = "relayed"
    FAILED = "failed"


class BroadcastHandle:
    """An outgoing sweep that has been handed to the node."""

    def __init__(
        self,
        backend: BlockchainBackend,
        transaction: SweepTransaction,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
    ):
        self.backend = backend
        self.transaction = transaction
        self.poll_interval = poll_interval
        self.state = BroadcastState.SUBMITTED

    @property
    def txid(self) -> str:
        return self.transaction.txid

    async def await_relayed(self, timeout: float | None = None) -> BroadcastHandle:
        """
        Wait until peers have seen the transaction.

        Raises:
            RelayError: not relayed within `timeout` seconds
        """
        waiter = RelayWaiter(self.backend, self.txid, self.poll_interval)
        try:
            await asyncio.wait_for(waiter.wait(), timeout=timeout)
        except TimeoutError as e:
            self.state = BroadcastState.FAILED
            raise RelayError(f"Transaction {self.txid} not relayed within {timeout}s") from e

        self.state = BroadcastState.RELAYED
        return self
