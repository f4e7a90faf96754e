"""
Forwarding service: owns the wallet lifecycle and spawns one pipeline per deposit.
"""

from __future__ import annotations

import asyncio

from loguru import logger

from coinforward.backends.bitcoin_core import BitcoinCoreBackend
from coinforward.config import ForwarderConfig, resolve_forwarding_target
from coinforward.errors import ForwardingError
from coinforward.models import Address, DepositEvent, ForwardingTarget, ForwardResult
from coinforward.network import NetworkRegistry, NetworkType
from coinforward.pipeline import ForwardingPipeline
from coinforward.wallet.service import WalletKit, WalletService


def get_prefix(network: NetworkType) -> str:
    return f"forwarding-service-{network.value}"


class ForwardingService:
    """
    Watches a wallet and forwards every deposit to a fixed address.

    The destination and network are resolved once at construction and never
    change. Pipelines run as independent tasks; the registry of in-flight
    pipelines lets close() cancel them before the wallet is stopped.
    """

    def __init__(
        self,
        destination: str,
        network: str | None = None,
        config: ForwarderConfig | None = None,
        wallet: WalletService | None = None,
        registry: NetworkRegistry | None = None,
    ):
        self.config = config or ForwarderConfig()
        self.target: ForwardingTarget = resolve_forwarding_target(destination, network, registry)
        self.wallet = wallet
        self.results: list[ForwardResult] = []

        self._pipelines: dict[str, tuple[ForwardingPipeline, asyncio.Task[ForwardResult]]] = {}
        self._loop: asyncio.AbstractEventLoop | None = None
        self._started = False
        self._closed = False

    @property
    def network(self) -> NetworkType:
        return self.target.network

    @property
    def forwarding_address(self) -> Address:
        return self.target.address

    def _create_wallet(self) -> WalletService:
        backend = BitcoinCoreBackend(
            rpc_url=self.config.rpc_url,
            rpc_user=self.config.rpc_user,
            rpc_password=self.config.rpc_password,
        )
        return WalletKit(
            backend,
            gap_limit=self.config.gap_limit,
            poll_interval=self.config.poll_interval,
            fee_rate=self.config.fee_rate,
            fee_target_blocks=self.config.fee_target_blocks,
            dust_limit=self.config.dust_limit,
            miss_limit=self.config.miss_limit,
        )

    async def run(self) -> Address | None:
        """
        Start the wallet and register the coin-forwarding listener.

        Returns the address deposits should be sent to.
        """
        if self._started:
            logger.warning("Forwarding service already running")
            return None

        logger.info(f"Network: {self.network.value}")
        logger.info(f"Forwarding address: {self.forwarding_address}")

        self._loop = asyncio.get_running_loop()
        if self.wallet is None:
            self.wallet = self._create_wallet()

        self._started = True
        await self.wallet.start(self.network, self.config.data_dir, get_prefix(self.network))
        self.wallet.add_deposit_listener(self._on_deposit)

        receive_address = self.wallet.current_receive_address()
        logger.info(f"Waiting to receive coins on: {receive_address}")
        return receive_address

    async def close(self) -> None:
        """
        Cancel in-flight pipelines, unregister the listener and stop the wallet.

        Safe to call repeatedly and before run(). Never raises.
        """
        if self._closed or not self._started or self.wallet is None:
            return
        self._closed = True

        tasks = [task for _, task in self._pipelines.values()]
        for task in tasks:
            task.cancel()
        if tasks:
            logger.info(f"Cancelling {len(tasks)} in-flight forward(s)")
            await asyncio.gather(*tasks, return_exceptions=True)

        try:
            if self.wallet.is_running():
                self.wallet.remove_deposit_listener(self._on_deposit)
        except Exception as e:
            logger.warning(f"Failed to remove deposit listener: {e}")

        try:
            await self.wallet.stop()
        except Exception as e:
            logger.warning(f"Failed to stop wallet: {e}")

    def active_pipelines(self) -> list[ForwardingPipeline]:
        return [pipeline for pipeline, _ in self._pipelines.values()]

    def _on_deposit(self, event: DepositEvent) -> None:
        """Deposit listener. May be called from a thread other than the service loop."""
        if self._loop is None or self._closed:
            return
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None

        if running is self._loop:
            self._spawn_pipeline(event)
        else:
            self._loop.call_soon_threadsafe(self._spawn_pipeline, event)

    def _spawn_pipeline(self, event: DepositEvent) -> ForwardingPipeline | None:
        if self._closed:
            return None
        if event.txid in self._pipelines:
            logger.debug(f"Deposit {event.txid} is already being forwarded")
            return None

        logger.debug(
            f"Wallet balance {event.prev_balance:,} -> {event.new_balance:,} sats "
            f"after deposit {event.txid}"
        )
        pipeline = ForwardingPipeline(
            wallet=self.wallet,  # type: ignore[arg-type]
            deposit=event,
            target=self.target,
            required_confirmations=self.config.required_confirmations,
            relay_timeout=self.config.relay_timeout,
        )
        task = self._loop.create_task(pipeline.run())  # type: ignore[union-attr]
        self._pipelines[event.txid] = (pipeline, task)
        task.add_done_callback(lambda t, txid=event.txid: self._pipeline_done(txid, t))
        return pipeline

    def _pipeline_done(self, txid: str, task: asyncio.Task[ForwardResult]) -> None:
        self._pipelines.pop(txid, None)
        if task.cancelled():
            return
        error = task.exception()
        if error is None:
            self.results.append(task.result())
        elif not isinstance(error, ForwardingError):
            # ForwardingErrors were already logged by the pipeline
            logger.error(f"Forwarding deposit {txid} crashed: {error!r}")
