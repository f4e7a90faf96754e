"""
Data models shared by the wallet, the selector and the forwarding pipeline.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal

from coinforward.constants import SATS_PER_BTC
from coinforward.network import NetworkType


def btc_to_sats(amount: Decimal | int | str) -> int:
    """Convert a BTC amount as reported by the node to satoshis, exactly."""
    sats = Decimal(str(amount)) * SATS_PER_BTC
    if sats != sats.to_integral_value():
        raise ValueError(f"Amount {amount} has sub-satoshi precision")
    return int(sats)


@dataclass(frozen=True)
class Address:
    """A destination bound to exactly one network"""

    text: str
    network: NetworkType
    kind: str  # p2wpkh, p2wsh, p2tr, p2pkh, p2sh, witness_unknown
    script_pubkey: bytes

    def __str__(self) -> str:
        return self.text


@dataclass(frozen=True)
class ForwardingTarget:
    """Where forwarded coins go. Fixed for the lifetime of the service."""

    network: NetworkType
    address: Address


@dataclass(frozen=True)
class WalletOutput:
    """Spendable output owned by the wallet. `txid` is the owning transaction."""

    txid: str
    vout: int
    value: int
    address: str
    script_pubkey: str
    confirmations: int = 0

    @property
    def outpoint(self) -> tuple[str, int]:
        return (self.txid, self.vout)


@dataclass(frozen=True)
class DepositEvent:
    """
    A transaction paying the watched wallet.

    prev_balance and new_balance are the wallet balance before and after the
    deposit was seen; forwarding uses only `value`.
    """

    txid: str
    outputs: tuple[WalletOutput, ...]
    value: int
    prev_balance: int = 0
    new_balance: int = 0


@dataclass
class CoinSelection:
    """Result of coin selection"""

    outputs: list[WalletOutput] = field(default_factory=list)

    @property
    def total_value(self) -> int:
        return sum(output.value for output in self.outputs)

    def __len__(self) -> int:
        return len(self.outputs)

    def __bool__(self) -> bool:
        return bool(self.outputs)


@dataclass(frozen=True)
class ForwardResult:
    """Outcome of a completed forwarding pipeline"""

    deposit_txid: str
    txid: str
    amount: int
    fee: int
    input_count: int
    confirmations: int
