"""
Tests for the deposit-scoped coin selector.
"""

from __future__ import annotations

from coinforward.models import CoinSelection, WalletOutput
from coinforward.selector import ScopedCoinSelector, forwarding_coin_selector, select_scoped

DEPOSIT = "11" * 32
OTHER = "22" * 32


def output(txid: str, vout: int, value: int = 10_000) -> WalletOutput:
    return WalletOutput(txid=txid, vout=vout, value=value, address="addr", script_pubkey="")


class TestScopedSelection:
    def test_only_outputs_of_bound_transaction(self):
        candidates = [output(OTHER, 0), output(DEPOSIT, 1), output(OTHER, 1), output(DEPOSIT, 0)]
        selection = select_scoped(DEPOSIT, candidates)
        assert all(o.txid == DEPOSIT for o in selection.outputs)
        # Candidate order is kept
        assert [o.vout for o in selection.outputs] == [1, 0]

    def test_includes_every_matching_output(self):
        candidates = [output(DEPOSIT, i, value=1000 * (i + 1)) for i in range(3)]
        selection = select_scoped(DEPOSIT, candidates)
        assert len(selection) == 3
        assert selection.total_value == 6000

    def test_no_match_is_empty(self):
        selection = select_scoped(DEPOSIT, [output(OTHER, 0)])
        assert not selection
        assert selection.total_value == 0

    def test_empty_candidates(self):
        assert select_scoped(DEPOSIT, []) == CoinSelection()


class TestScopedCoinSelector:
    def test_target_is_ignored(self):
        selector = forwarding_coin_selector(DEPOSIT)
        candidates = [output(DEPOSIT, 0, value=50_000), output(OTHER, 0)]
        assert selector.select(1, candidates).total_value == 50_000
        assert selector.select(None, candidates).total_value == 50_000

    def test_is_a_value(self):
        assert forwarding_coin_selector(DEPOSIT) == ScopedCoinSelector(DEPOSIT)
        assert forwarding_coin_selector(DEPOSIT) != forwarding_coin_selector(OTHER)
