"""
Per-deposit forwarding pipeline.

Stages run strictly in order, each one awaiting the wallet:
1. wait for the deposit to reach the required depth
2. select the deposit's own outputs and build the sweep
3. sign and broadcast it
4. wait until peers acknowledge the broadcast
5. report what was forwarded

A failure ends this pipeline only. Nothing is retried: a blind retry could
forward twice or race another pending spend of the same outputs.
"""

from __future__ import annotations

import asyncio
from enum import Enum

from loguru import logger

from coinforward.constants import DEFAULT_RELAY_TIMEOUT, REQUIRED_CONFIRMATIONS
from coinforward.errors import ForwardingError
from coinforward.models import DepositEvent, ForwardingTarget, ForwardResult
from coinforward.selector import forwarding_coin_selector
from coinforward.waiters import BroadcastHandle
from coinforward.wallet.service import WalletService


class PipelineStage(str, Enum):
    DETECTED = "detected"
    CONFIRMING = "confirming"
    BROADCASTING = "broadcasting"
    RELAYING = "relaying"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class ForwardingPipeline:
    """Forwards one deposit to the target address."""

    def __init__(
        self,
        wallet: WalletService,
        deposit: DepositEvent,
        target: ForwardingTarget,
        required_confirmations: int = REQUIRED_CONFIRMATIONS,
        relay_timeout: float | None = DEFAULT_RELAY_TIMEOUT,
    ):
        self.wallet = wallet
        self.deposit = deposit
        self.target = target
        self.required_confirmations = required_confirmations
        self.relay_timeout = relay_timeout

        self.stage = PipelineStage.DETECTED
        self.error: ForwardingError | None = None
        self.result: ForwardResult | None = None

    @property
    def txid(self) -> str:
        return self.deposit.txid

    async def run(self) -> ForwardResult:
        try:
            depth = await self._await_confirmations()
            handle = await self._broadcast()
            await self._await_relay(handle)
        except ForwardingError as e:
            self.stage = PipelineStage.FAILED
            self.error = e
            logger.error(f"Forwarding deposit {self.txid} failed: {type(e).__name__}: {e}")
            raise
        except asyncio.CancelledError:
            self.stage = PipelineStage.CANCELLED
            logger.info(f"Forwarding deposit {self.txid} cancelled")
            raise

        sweep = handle.transaction
        self.result = ForwardResult(
            deposit_txid=self.txid,
            txid=handle.txid,
            amount=sweep.amount,
            fee=sweep.fee,
            input_count=len(sweep.inputs),
            confirmations=depth,
        )
        self.stage = PipelineStage.COMPLETED
        logger.info(
            f"Sent {sweep.amount:,} sats onwards and acknowledged by peers, "
            f"via transaction {handle.txid}"
        )
        return self.result

    async def _await_confirmations(self) -> int:
        self.stage = PipelineStage.CONFIRMING
        logger.info(
            f"Deposit {self.txid} ({self.deposit.value:,} sats) will be forwarded after "
            f"{self.required_confirmations} confirmation(s)"
        )
        depth = await self.wallet.wait_for_confirmations(self.txid, self.required_confirmations)
        logger.info(f"Incoming tx {self.txid} has received {depth} confirmation(s)")
        return depth

    async def _broadcast(self) -> BroadcastHandle:
        self.stage = PipelineStage.BROADCASTING
        logger.info(f"Creating outgoing transaction for {self.target.address}...")
        handle = await self.wallet.build_and_broadcast(
            self.target.address, forwarding_coin_selector(self.txid)
        )
        logger.info(
            f"Transaction {handle.txid} is signed and is being delivered to "
            f"{self.target.network.value}..."
        )
        return handle

    async def _await_relay(self, handle: BroadcastHandle) -> None:
        self.stage = PipelineStage.RELAYING
        await handle.await_relayed(self.relay_timeout)
