"""
Blockchain backend implementations.

Available backends:
- BitcoinCoreBackend: Full node via Bitcoin Core RPC (no wallet, uses scantxoutset)
"""

from coinforward.backends.base import UTXO, BlockchainBackend
from coinforward.backends.bitcoin_core import BitcoinCoreBackend

__all__ = [
    "BitcoinCoreBackend",
    "BlockchainBackend",
    "UTXO",
]
