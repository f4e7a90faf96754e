"""
Bitcoin Core RPC blockchain backend.
Uses RPC calls but NOT wallet functionality.
"""

from __future__ import annotations

import asyncio
import json
import os
import random
from collections.abc import Sequence
from decimal import Decimal
from typing import Any

import httpx
from loguru import logger

from coinforward.backends.base import UTXO, BlockchainBackend
from coinforward.constants import FALLBACK_FEE_RATE
from coinforward.models import btc_to_sats

# Timeout for regular RPC calls (seconds)
DEFAULT_RPC_TIMEOUT = 30.0

# Timeout for scantxoutset calls - mainnet scans can take 90+ seconds
SCAN_RPC_TIMEOUT = 300.0

# Maximum retries for scantxoutset when another scan is in progress
SCAN_MAX_RETRIES = 30
SCAN_BASE_DELAY = 0.5  # Base delay in seconds for exponential backoff

# Polling interval for scan status checks
SCAN_STATUS_POLL_INTERVAL = 10.0

# RPC error code for "No such mempool or blockchain transaction"
RPC_INVALID_ADDRESS_OR_KEY = -5

# WARNING: Enabling this will log wallet addresses to the log
SENSITIVE_LOGGING = os.environ.get("SENSITIVE_LOGGING", "").lower() in ("1", "true", "yes")


class RPCError(ValueError):
    """Error object returned by the node"""

    def __init__(self, code: int | str, message: str):
        super().__init__(f"RPC error {code}: {message}")
        self.code = code
        self.message = message


class BitcoinCoreBackend(BlockchainBackend):
    """
    Blockchain backend using Bitcoin Core RPC.
    Does NOT use the Bitcoin Core wallet: confirmed outputs come from
    scantxoutset and unconfirmed ones from the mempool.
    """

    def __init__(
        self,
        rpc_url: str = "http://127.0.0.1:18443",
        rpc_user: str = "rpcuser",
        rpc_password: str = "rpcpassword",
        scan_timeout: float = SCAN_RPC_TIMEOUT,
    ):
        self.rpc_url = rpc_url.rstrip("/")
        self.rpc_user = rpc_user
        self.rpc_password = rpc_password
        self.scan_timeout = scan_timeout
        self.client = httpx.AsyncClient(timeout=DEFAULT_RPC_TIMEOUT, auth=(rpc_user, rpc_password))
        # Separate client for long-running scans
        self._scan_client = httpx.AsyncClient(timeout=scan_timeout, auth=(rpc_user, rpc_password))
        self._request_id = 0
        # Decoded outputs of mempool transactions, by txid
        self._mempool_outputs: dict[str, list[UTXO]] = {}

    async def _rpc_call(
        self,
        method: str,
        params: list | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> Any:
        """
        Make an RPC call to Bitcoin Core.

        Amounts in the response are parsed as Decimal so that conversion to
        satoshis is exact.

        Raises:
            RPCError: On RPC errors
            httpx.HTTPError: On connection/timeout errors
        """
        self._request_id += 1
        payload = {
            "jsonrpc": "2.0",
            "id": self._request_id,
            "method": method,
            "params": params or [],
        }

        use_client = client or self.client

        try:
            response = await use_client.post(self.rpc_url, json=payload)
            # Bitcoin Core answers RPC errors with HTTP 404/500 and a JSON body
            if response.status_code not in (404, 500):
                response.raise_for_status()
            data = json.loads(response.text, parse_float=Decimal)

            if "error" in data and data["error"]:
                error_info = data["error"]
                raise RPCError(
                    error_info.get("code", "unknown"), error_info.get("message", str(error_info))
                )

            return data.get("result")

        except httpx.TimeoutException as e:
            logger.error(f"RPC call timed out: {method} - {e}")
            raise
        except httpx.HTTPError as e:
            logger.error(f"RPC call failed: {method} - {e}")
            raise

    async def _scantxoutset_with_retry(self, descriptors: Sequence[str]) -> dict[str, Any] | None:
        """
        Execute scantxoutset, waiting for any scan already running.

        Bitcoin Core only allows one scantxoutset at a time.

        Returns:
            Scan result dict or None if all retries failed
        """
        for attempt in range(SCAN_MAX_RETRIES):
            try:
                status = await self._rpc_call("scantxoutset", ["status"])
                if status is not None:
                    # Bitcoin Core returns progress as 0-100
                    progress = status.get("progress", 0) / 100
                    logger.debug(
                        f"Another scan in progress ({progress:.1%}), waiting... "
                        f"(attempt {attempt + 1}/{SCAN_MAX_RETRIES})"
                    )
                    if attempt < SCAN_MAX_RETRIES - 1:
                        await asyncio.sleep(SCAN_STATUS_POLL_INTERVAL)
                        continue

                logger.debug(f"Starting UTXO scan for {len(descriptors)} descriptor(s)...")
                return await self._rpc_call(
                    "scantxoutset", ["start", list(descriptors)], client=self._scan_client
                )

            except RPCError as e:
                if "Scan already in progress" not in e.message:
                    logger.error(f"scantxoutset RPC error: {e}")
                    raise
                if attempt == SCAN_MAX_RETRIES - 1:
                    logger.warning(
                        f"Max retries ({SCAN_MAX_RETRIES}) exceeded waiting for scan slot"
                    )
                    return None
                delay = SCAN_BASE_DELAY * (2**attempt) + random.uniform(0, 0.5)
                logger.debug(f"Scan in progress, retrying in {delay:.2f}s")
                await asyncio.sleep(delay)

            except httpx.TimeoutException:
                logger.error(
                    f"scantxoutset timed out after {self.scan_timeout}s. "
                    "Try increasing scan_timeout for mainnet."
                )
                return None

        logger.warning(f"scantxoutset failed after {SCAN_MAX_RETRIES} attempts")
        return None

    async def get_utxos(self, addresses: list[str]) -> list[UTXO]:
        utxos: list[UTXO] = []
        if not addresses:
            return utxos

        tip_height = await self.get_block_height()

        # Process in batches to avoid huge RPC requests
        batch_size = 100
        for i in range(0, len(addresses), batch_size):
            chunk = addresses[i : i + batch_size]
            if SENSITIVE_LOGGING:
                logger.debug(f"Scanning addresses batch {i // batch_size + 1}: {chunk}")

            result = await self._scantxoutset_with_retry([f"addr({addr})" for addr in chunk])
            if not result or "unspents" not in result:
                raise ValueError(f"UTXO scan failed for batch starting {chunk[0]}")

            for utxo_data in result["unspents"]:
                height = utxo_data.get("height", 0)
                confirmations = tip_height - height + 1 if height > 0 else 0
                utxos.append(
                    UTXO(
                        txid=utxo_data["txid"],
                        vout=utxo_data["vout"],
                        value=btc_to_sats(utxo_data["amount"]),
                        address=_descriptor_address(utxo_data.get("desc", "")),
                        confirmations=confirmations,
                        scriptpubkey=utxo_data.get("scriptPubKey", ""),
                        height=height or None,
                    )
                )

            logger.debug(f"Scanned {len(chunk)} addresses, found {len(result['unspents'])} UTXOs")

        return utxos

    async def get_mempool_utxos(self, addresses: list[str]) -> list[UTXO]:
        """
        Find outputs paying `addresses` in unconfirmed transactions.

        Every mempool transaction is decoded once and cached until it leaves
        the mempool, so repeated polls only fetch new arrivals.
        """
        if not addresses:
            return []

        mempool_txids = await self._rpc_call("getrawmempool", [])
        current = set(mempool_txids)
        self._mempool_outputs = {
            txid: outputs for txid, outputs in self._mempool_outputs.items() if txid in current
        }

        for txid in mempool_txids:
            if txid in self._mempool_outputs:
                continue
            try:
                tx_data = await self._rpc_call("getrawtransaction", [txid, True])
            except RPCError as e:
                # Evicted or mined between the two calls
                logger.debug(f"Mempool transaction {txid} vanished: {e}")
                continue
            self._mempool_outputs[txid] = _decode_outputs(txid, tx_data)

        watched = set(addresses)
        return [
            utxo
            for outputs in self._mempool_outputs.values()
            for utxo in outputs
            if utxo.address in watched
        ]

    async def get_utxo(self, txid: str, vout: int) -> UTXO | None:
        # include_mempool=True: unconfirmed outputs report 0 confirmations,
        # outputs spent in the mempool report None
        result = await self._rpc_call("gettxout", [txid, vout, True])
        if result is None:
            return None

        confirmations = result.get("confirmations", 0)
        script_pub_key = result.get("scriptPubKey", {})
        height = None
        if confirmations > 0:
            tip_height = await self.get_block_height()
            height = tip_height - confirmations + 1

        return UTXO(
            txid=txid,
            vout=vout,
            value=btc_to_sats(result.get("value", 0)),
            address=script_pub_key.get("address", ""),
            confirmations=confirmations,
            scriptpubkey=script_pub_key.get("hex", ""),
            height=height,
        )

    async def get_mempool_entry(self, txid: str) -> dict[str, Any] | None:
        try:
            return await self._rpc_call("getmempoolentry", [txid])
        except RPCError as e:
            if e.code == RPC_INVALID_ADDRESS_OR_KEY:
                return None
            raise

    async def broadcast_transaction(self, tx_hex: str) -> str:
        try:
            txid = await self._rpc_call("sendrawtransaction", [tx_hex])
            logger.info(f"Broadcast transaction: {txid}")
            return txid

        except Exception as e:
            logger.error(f"Failed to broadcast transaction: {e}")
            raise ValueError(f"Broadcast failed: {e}") from e

    async def estimate_fee(self, target_blocks: int) -> int:
        try:
            result = await self._rpc_call("estimatesmartfee", [target_blocks])

            if "feerate" in result:
                btc_per_kvb = result["feerate"]
                sat_per_vbyte = max(1, -(-btc_to_sats(btc_per_kvb) // 1000))
                logger.debug(f"Estimated fee for {target_blocks} blocks: {sat_per_vbyte} sat/vB")
                return sat_per_vbyte

            logger.warning("Fee estimation unavailable, using fallback")
            return FALLBACK_FEE_RATE

        except (RPCError, httpx.HTTPError) as e:
            logger.warning(f"Failed to estimate fee: {e}, using fallback")
            return FALLBACK_FEE_RATE

    async def get_block_height(self) -> int:
        info = await self._rpc_call("getblockchaininfo", [])
        height = info.get("blocks", 0)
        logger.debug(f"Current block height: {height}")
        return height

    async def close(self) -> None:
        await self.client.aclose()
        await self._scan_client.aclose()


def _descriptor_address(desc: str) -> str:
    """Extract ADDRESS from "addr(ADDRESS)#checksum" """
    desc = desc.split("#")[0]
    if desc.startswith("addr(") and desc.endswith(")"):
        return desc[5:-1]
    if desc:
        logger.warning(f"Failed to parse address from descriptor: '{desc}'")
    return ""


def _decode_outputs(txid: str, tx_data: dict[str, Any]) -> list[UTXO]:
    outputs: list[UTXO] = []
    for vout_data in tx_data.get("vout", []):
        script_pub_key = vout_data.get("scriptPubKey", {})
        address = script_pub_key.get("address", "")
        if not address:
            continue
        outputs.append(
            UTXO(
                txid=txid,
                vout=vout_data["n"],
                value=btc_to_sats(vout_data.get("value", 0)),
                address=address,
                confirmations=0,
                scriptpubkey=script_pub_key.get("hex", ""),
            )
        )
    return outputs
