"""
Coin selection policies.

The forwarding service never chooses coins by value: each pipeline spends
exactly the outputs created by its own deposit transaction.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from typing import Protocol

from coinforward.models import CoinSelection, WalletOutput


class CoinSelector(Protocol):
    """Chooses which candidate outputs fund an outgoing transaction."""

    def select(self, target: int | None, candidates: Sequence[WalletOutput]) -> CoinSelection:
        """Pick outputs from `candidates`; target None means sweep."""
        ...


def select_scoped(bound_txid: str, candidates: Sequence[WalletOutput]) -> CoinSelection:
    """
    Select every candidate created by transaction `bound_txid`.

    Candidate order is preserved. No match yields an empty selection, which
    callers treat as a SelectionError.
    """
    return CoinSelection(outputs=[output for output in candidates if output.txid == bound_txid])


@dataclass(frozen=True)
class ScopedCoinSelector:
    """Coin selector restricted to the outputs of one parent transaction"""

    bound_txid: str

    def select(self, target: int | None, candidates: Sequence[WalletOutput]) -> CoinSelection:
        # The whole deposit is forwarded, so the target amount plays no part
        return select_scoped(self.bound_txid, candidates)


def forwarding_coin_selector(parent_txid: str) -> ScopedCoinSelector:
    """Create a selector that only returns outputs from `parent_txid`."""
    return ScopedCoinSelector(bound_txid=parent_txid)
