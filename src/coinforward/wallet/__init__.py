"""
Forwarding wallet: keys, storage, sweep construction and the wallet service.
"""

from coinforward.wallet.service import DepositListener, WalletKit, WalletService

__all__ = [
    "DepositListener",
    "WalletKit",
    "WalletService",
]
