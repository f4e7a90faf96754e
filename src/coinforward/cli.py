"""
Forwarding service CLI using Typer.
"""

from __future__ import annotations

import asyncio
import signal
import sys
from pathlib import Path
from typing import Annotated

import httpx
import typer
from loguru import logger
from pydantic import ValidationError

from coinforward.config import ForwarderConfig
from coinforward.constants import (
    DEFAULT_POLL_INTERVAL,
    DEFAULT_RELAY_TIMEOUT,
    REQUIRED_CONFIRMATIONS,
    USAGE,
)
from coinforward.errors import ConfigError, ParseError
from coinforward.service import ForwardingService

app = typer.Typer(add_completion=False)


def setup_logging(level: str = "INFO") -> None:
    """Configure loguru logging."""
    logger.remove()
    logger.add(
        sys.stderr,
        level=level.upper(),
        format="<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | {message}",
    )


def run_async(coro):  # type: ignore[no-untyped-def]
    return asyncio.run(coro)


def usage_error(message: str | None = None) -> typer.Exit:
    if message:
        logger.error(message)
    typer.echo(USAGE, err=True)
    return typer.Exit(1)


@app.command(context_settings={"allow_extra_args": True})
def forward(
    ctx: typer.Context,
    destination: Annotated[
        str | None, typer.Argument(help="Address every deposit is forwarded to")
    ] = None,
    network: Annotated[
        str | None,
        typer.Argument(help="mainnet, testnet, signet or regtest (default: from the address)"),
    ] = None,
    rpc_url: Annotated[
        str, typer.Option(envvar="BITCOIN_RPC_URL", help="Bitcoin full node RPC URL")
    ] = "http://127.0.0.1:8332",
    rpc_user: Annotated[
        str, typer.Option(envvar="BITCOIN_RPC_USER", help="Bitcoin full node RPC username")
    ] = "",
    rpc_password: Annotated[
        str, typer.Option(envvar="BITCOIN_RPC_PASSWORD", help="Bitcoin full node RPC password")
    ] = "",
    data_dir: Annotated[
        Path,
        typer.Option(envvar="COINFORWARD_DATA_DIR", help="Directory holding the wallet files"),
    ] = Path("."),
    confirmations: Annotated[
        int, typer.Option(help="Confirmations required before forwarding")
    ] = REQUIRED_CONFIRMATIONS,
    fee_rate: Annotated[
        int | None, typer.Option(help="Fee rate in sat/vB (default: node estimate)")
    ] = None,
    poll_interval: Annotated[
        float, typer.Option(help="Seconds between wallet polls")
    ] = DEFAULT_POLL_INTERVAL,
    relay_timeout: Annotated[
        float, typer.Option(help="Seconds to wait for peers to acknowledge a forward")
    ] = DEFAULT_RELAY_TIMEOUT,
    log_level: Annotated[str, typer.Option(envvar="LOG_LEVEL", help="Log level")] = "INFO",
) -> None:
    """Forward every coin received by the wallet to DESTINATION."""
    setup_logging(log_level)

    if destination is None or ctx.args:
        raise usage_error()

    try:
        config = ForwarderConfig(
            rpc_url=rpc_url,
            rpc_user=rpc_user,
            rpc_password=rpc_password,
            data_dir=data_dir,
            required_confirmations=confirmations,
            fee_rate=fee_rate,
            poll_interval=poll_interval,
            relay_timeout=relay_timeout,
        )
        service = ForwardingService(destination, network, config)
    except (ConfigError, ParseError) as e:
        raise usage_error(str(e))
    except ValidationError as e:
        raise usage_error(f"Invalid configuration: {e}")

    async def serve() -> None:
        loop = asyncio.get_running_loop()
        stop = asyncio.Event()

        def shutdown_handler() -> None:
            logger.info("Received shutdown signal")
            stop.set()

        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, shutdown_handler)

        try:
            await service.run()
            await stop.wait()
        except asyncio.CancelledError:
            logger.info("Forwarding service cancelled")
        finally:
            await service.close()

    try:
        run_async(serve())
    except KeyboardInterrupt:
        logger.info("Shutting down forwarding service...")
    except (ValueError, httpx.HTTPError) as e:
        logger.error(f"Forwarding service stopped: {e}")
        raise typer.Exit(1)


def main() -> None:  # pragma: no cover
    app()
