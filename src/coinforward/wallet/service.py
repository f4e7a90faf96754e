"""
Wallet service: the contract the forwarding service relies on, and the
node-backed implementation used in production.
"""

from __future__ import annotations

import asyncio
import contextlib
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Protocol

import httpx
from loguru import logger

from coinforward.backends.base import UTXO, BlockchainBackend
from coinforward.constants import (
    DEFAULT_FEE_TARGET_BLOCKS,
    DEFAULT_GAP_LIMIT,
    DEFAULT_MISS_LIMIT,
    DEFAULT_POLL_INTERVAL,
    STANDARD_DUST_LIMIT,
)
from coinforward.errors import BroadcastError, ConfirmationAbort, SelectionError
from coinforward.models import Address, DepositEvent, WalletOutput
from coinforward.network import NetworkType
from coinforward.selector import CoinSelector
from coinforward.waiters import BroadcastHandle, ConfirmationWaiter
from coinforward.wallet.keys import Keychain
from coinforward.wallet.storage import WalletStorage
from coinforward.wallet.transaction import SweepInput, TransactionBuildError, build_sweep


class DepositListener(Protocol):
    """Called once for every new transaction paying the wallet."""

    def __call__(self, event: DepositEvent) -> None: ...


class WalletService(ABC):
    """Wallet operations consumed by the forwarding service."""

    @abstractmethod
    async def start(self, network: NetworkType, storage_dir: Path, file_prefix: str) -> None:
        """Open wallet files and begin synchronizing"""

    @abstractmethod
    async def stop(self) -> None:
        """Stop synchronizing and release the backend"""

    @abstractmethod
    def is_running(self) -> bool:
        """True between a successful start() and stop()"""

    @abstractmethod
    def current_receive_address(self) -> Address:
        """Address deposits should be sent to"""

    @abstractmethod
    def add_deposit_listener(self, listener: DepositListener) -> None:
        """Register a deposit callback"""

    @abstractmethod
    def remove_deposit_listener(self, listener: DepositListener) -> None:
        """Unregister a deposit callback"""

    @abstractmethod
    async def wait_for_confirmations(self, txid: str, depth: int) -> int:
        """Wait until `txid` has `depth` confirmations, return the depth reached.
        Raises ConfirmationAbort if the transaction is dropped first."""

    @abstractmethod
    async def build_and_broadcast(
        self, destination: Address, selector: CoinSelector
    ) -> BroadcastHandle:
        """Sweep the outputs chosen by `selector` to `destination` and broadcast.
        Raises SelectionError or BroadcastError."""


class WalletKit(WalletService):
    """
    Single-chain BIP84 wallet backed by a BlockchainBackend.

    A background task polls the backend for outputs paying the receive
    addresses (gap-limited) and notifies listeners of every new deposit
    transaction. A deposit is only marked delivered once at least one
    listener has received it, so nothing found before a listener is
    registered is lost. Deposits are persisted as forwarded once a sweep
    spending them is broadcast; after a restart every unspent deposit not yet
    forwarded is delivered again.
    """

    def __init__(
        self,
        backend: BlockchainBackend,
        gap_limit: int = DEFAULT_GAP_LIMIT,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        fee_rate: int | None = None,
        fee_target_blocks: int = DEFAULT_FEE_TARGET_BLOCKS,
        dust_limit: int = STANDARD_DUST_LIMIT,
        miss_limit: int = DEFAULT_MISS_LIMIT,
    ):
        self.backend = backend
        self.gap_limit = gap_limit
        self.poll_interval = poll_interval
        self.fee_rate = fee_rate
        self.fee_target_blocks = fee_target_blocks
        self.dust_limit = dust_limit
        self.miss_limit = miss_limit

        self.network: NetworkType | None = None
        self._keychain: Keychain | None = None
        self._storage: WalletStorage | None = None
        self._listeners: list[DepositListener] = []
        self._outputs: dict[tuple[str, int], WalletOutput] = {}
        # Outpoints spent by our own broadcast sweeps
        self._reserved: set[tuple[str, int]] = set()
        self._delivered: set[str] = set()
        self._forwarded: set[str] = set()
        self._own_txids: set[str] = set()
        self._next_index = 0
        self._running = False
        self._poll_task: asyncio.Task[None] | None = None

    @property
    def keychain(self) -> Keychain:
        if self._keychain is None:
            raise RuntimeError("Wallet not started")
        return self._keychain

    async def start(self, network: NetworkType, storage_dir: Path, file_prefix: str) -> None:
        if self._running:
            raise RuntimeError("Wallet already running")

        self._storage = WalletStorage(storage_dir, file_prefix)
        self._keychain = Keychain.from_mnemonic(self._storage.load_or_create_mnemonic(), network)
        self._delivered = set()
        self._forwarded = self._storage.load_forwarded_deposits()
        self.network = network

        height = await self.backend.get_block_height()
        logger.info(
            f"Wallet {file_prefix} started on {network.value} at height {height}, "
            f"{len(self._forwarded)} deposit(s) already forwarded"
        )

        self._running = True
        self._poll_task = asyncio.create_task(self._poll_loop())

    async def stop(self) -> None:
        self._running = False
        if self._poll_task is not None:
            self._poll_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._poll_task
            self._poll_task = None
        await self.backend.close()
        logger.info("Wallet stopped")

    def is_running(self) -> bool:
        return self._running

    def current_receive_address(self) -> Address:
        index = self._next_index
        return Address(
            text=self.keychain.address(index),
            network=self.keychain.network,
            kind="p2wpkh",
            script_pubkey=self.keychain.script_pubkey(index),
        )

    def add_deposit_listener(self, listener: DepositListener) -> None:
        self._listeners.append(listener)

    def remove_deposit_listener(self, listener: DepositListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def watched_addresses(self) -> list[str]:
        return [self.keychain.address(i) for i in range(self._next_index + self.gap_limit)]

    def spendable_outputs(self) -> list[WalletOutput]:
        """Known outputs not already spent by one of our sweeps, in outpoint order."""
        return [
            output
            for outpoint, output in sorted(self._outputs.items())
            if outpoint not in self._reserved
        ]

    def get_balance(self) -> int:
        return sum(output.value for output in self.spendable_outputs())

    async def _poll_loop(self) -> None:
        while self._running:
            try:
                await self.sync()
            except (ValueError, httpx.HTTPError) as e:
                logger.warning(f"Wallet sync failed: {e}")
            await asyncio.sleep(self.poll_interval)

    async def sync(self) -> list[DepositEvent]:
        """
        Refresh wallet outputs from the backend and deliver new deposits.

        Returns the deposit events delivered by this call.
        """
        addresses = self.watched_addresses()
        pending = await self.backend.get_mempool_utxos(addresses)
        confirmed = await self.backend.get_utxos(addresses)

        prev_balance = self.get_balance()
        outputs: dict[tuple[str, int], WalletOutput] = {}
        # Confirmed entries win when a transaction confirmed between the two calls
        for utxo in [*pending, *confirmed]:
            output = self._track(utxo)
            if output is not None:
                outputs[output.outpoint] = output

        # Reservations end once the spent output disappears from the backend
        self._reserved &= set(outputs)
        self._outputs = outputs

        if not self._listeners:
            return []

        known = self._delivered | self._forwarded | self._own_txids
        new_deposits: dict[str, list[WalletOutput]] = {}
        for output in self.spendable_outputs():
            if output.txid in known:
                continue
            new_deposits.setdefault(output.txid, []).append(output)

        events: list[DepositEvent] = []
        balance = prev_balance
        for txid, deposit_outputs in new_deposits.items():
            value = sum(output.value for output in deposit_outputs)
            events.append(
                DepositEvent(
                    txid=txid,
                    outputs=tuple(deposit_outputs),
                    value=value,
                    prev_balance=balance,
                    new_balance=balance + value,
                )
            )
            balance += value

        if not events:
            return events

        self._delivered.update(event.txid for event in events)

        for event in events:
            logger.info(f"Received tx for {event.value:,} sats: {event.txid}")
            for listener in list(self._listeners):
                try:
                    listener(event)
                except Exception as e:
                    logger.error(f"Deposit listener failed for {event.txid}: {e}")
        return events

    def _track(self, utxo: UTXO) -> WalletOutput | None:
        index = self.keychain.index_of(utxo.address)
        if index is None:
            return None
        # Move the receive address past any used one
        self._next_index = max(self._next_index, index + 1)
        return WalletOutput(
            txid=utxo.txid,
            vout=utxo.vout,
            value=utxo.value,
            address=utxo.address,
            script_pubkey=utxo.scriptpubkey,
            confirmations=utxo.confirmations,
        )

    async def wait_for_confirmations(self, txid: str, depth: int) -> int:
        vouts = [output.vout for output in self._outputs.values() if output.txid == txid]
        if not vouts:
            raise ConfirmationAbort(f"Deposit {txid} is no longer tracked by the wallet")

        waiter = ConfirmationWaiter(
            self.backend, txid, vouts, depth, self.poll_interval, self.miss_limit
        )
        return await waiter.wait()

    async def build_and_broadcast(
        self, destination: Address, selector: CoinSelector
    ) -> BroadcastHandle:
        fee_rate = self.fee_rate or await self.backend.estimate_fee(self.fee_target_blocks)

        selection = selector.select(None, self.spendable_outputs())
        if not selection:
            raise SelectionError("Coin selector found no spendable outputs")

        inputs = []
        for output in selection.outputs:
            key = self.keychain.key_for_address(output.address)
            if key is None:
                raise SelectionError(f"No key for selected output {output.txid}:{output.vout}")
            inputs.append(SweepInput(output.txid, output.vout, output.value, key.private_key))

        try:
            sweep = build_sweep(inputs, destination.script_pubkey, fee_rate, self.dust_limit)
        except TransactionBuildError as e:
            raise BroadcastError(str(e)) from e

        # Outputs stay reserved while the broadcast is in flight
        self._reserved.update(sweep.outpoints)
        try:
            txid = await self.backend.broadcast_transaction(sweep.raw_hex)
        except (ValueError, httpx.HTTPError) as e:
            self._reserved.difference_update(sweep.outpoints)
            raise BroadcastError(f"Broadcast of {sweep.txid} failed: {e}") from e

        if txid != sweep.txid:
            logger.warning(f"Node reported txid {txid}, expected {sweep.txid}")
        self._own_txids.add(sweep.txid)

        self._forwarded.update(output.txid for output in selection.outputs)
        if self._storage is not None:
            self._storage.save_forwarded_deposits(self._forwarded)
        return BroadcastHandle(self.backend, sweep, self.poll_interval)
