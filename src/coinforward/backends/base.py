"""
Base blockchain backend interface.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any


@dataclass
class UTXO:
    txid: str
    vout: int
    value: int
    address: str
    confirmations: int
    scriptpubkey: str
    height: int | None = None


class BlockchainBackend(ABC):
    """
    Abstract blockchain backend interface.

    The wallet only needs read access to the UTXO set and mempool for its
    own addresses plus a way to push transactions; it never relies on a
    node-side wallet.
    """

    @abstractmethod
    async def get_utxos(self, addresses: list[str]) -> list[UTXO]:
        """Get confirmed UTXOs for given addresses"""

    @abstractmethod
    async def get_mempool_utxos(self, addresses: list[str]) -> list[UTXO]:
        """Get unconfirmed outputs paying the given addresses"""

    @abstractmethod
    async def get_utxo(self, txid: str, vout: int) -> UTXO | None:
        """Get an unspent output, confirmed or in the mempool.
        Returns None if it does not exist or has been spent."""

    @abstractmethod
    async def get_mempool_entry(self, txid: str) -> dict[str, Any] | None:
        """Get the node's mempool entry for a transaction, None if absent"""

    @abstractmethod
    async def broadcast_transaction(self, tx_hex: str) -> str:
        """Broadcast transaction, returns txid"""

    @abstractmethod
    async def estimate_fee(self, target_blocks: int) -> int:
        """Estimate fee in sat/vbyte for target confirmation blocks"""

    @abstractmethod
    async def get_block_height(self) -> int:
        """Get current blockchain height"""

    async def close(self) -> None:
        """Close backend connection"""
        pass
