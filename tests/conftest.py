"""
Pytest configuration and fixtures for coinforward tests.
"""

from __future__ import annotations

from typing import Any

import bech32
import pytest

from coinforward.backends.base import UTXO, BlockchainBackend
from coinforward.network import NetworkType
from coinforward.wallet.keys import Keychain
from coinforward.wallet.transaction import hash256


def sweep_txid(tx_hex: str) -> str:
    """Txid of a serialized sweep (P2WPKH inputs with empty scriptSigs)."""
    raw = bytes.fromhex(tx_hex)
    assert raw[4:6] == b"\x00\x01", "expected a segwit serialization"
    pos = 6
    n_inputs = raw[pos]
    pos += 1 + n_inputs * 41
    n_outputs = raw[pos]
    pos += 1
    for _ in range(n_outputs):
        pos += 8
        pos += 1 + raw[pos]
    stripped = raw[:4] + raw[6:pos] + raw[-4:]
    return hash256(stripped)[::-1].hex()


class FakeBackend(BlockchainBackend):
    """In-memory node: a UTXO set, a mempool and a broadcast log."""

    def __init__(self, height: int = 200, fee_rate: int = 2):
        self.height = height
        self.fee_rate = fee_rate
        self.confirmed: dict[tuple[str, int], UTXO] = {}
        self.mempool: dict[tuple[str, int], UTXO] = {}
        self.mempool_entries: dict[str, dict[str, Any]] = {}
        self.broadcasts: list[str] = []
        self.broadcast_error: Exception | None = None
        self.relay_broadcasts = True
        self.closed = False

    def fund(
        self,
        address: str,
        value: int,
        txid: str = "aa" * 32,
        vout: int = 0,
        confirmations: int = 0,
    ) -> UTXO:
        utxo = UTXO(
            txid=txid,
            vout=vout,
            value=value,
            address=address,
            confirmations=confirmations,
            scriptpubkey="",
            height=self.height - confirmations + 1 if confirmations else None,
        )
        if confirmations:
            self.confirmed[(txid, vout)] = utxo
        else:
            self.mempool[(txid, vout)] = utxo
        return utxo

    def confirm(self, txid: str, confirmations: int = 1) -> None:
        for outpoint in [op for op in self.mempool if op[0] == txid]:
            self.confirmed[outpoint] = self.mempool.pop(outpoint)
        for outpoint, utxo in self.confirmed.items():
            if outpoint[0] == txid:
                utxo.confirmations = confirmations

    def drop(self, txid: str) -> None:
        self.mempool = {op: u for op, u in self.mempool.items() if op[0] != txid}
        self.confirmed = {op: u for op, u in self.confirmed.items() if op[0] != txid}

    async def get_utxos(self, addresses: list[str]) -> list[UTXO]:
        return [u for u in self.confirmed.values() if u.address in addresses]

    async def get_mempool_utxos(self, addresses: list[str]) -> list[UTXO]:
        return [u for u in self.mempool.values() if u.address in addresses]

    async def get_utxo(self, txid: str, vout: int) -> UTXO | None:
        return self.confirmed.get((txid, vout)) or self.mempool.get((txid, vout))

    async def get_mempool_entry(self, txid: str) -> dict[str, Any] | None:
        return self.mempool_entries.get(txid)

    async def broadcast_transaction(self, tx_hex: str) -> str:
        if self.broadcast_error is not None:
            raise self.broadcast_error
        self.broadcasts.append(tx_hex)
        txid = sweep_txid(tx_hex)
        self.mempool_entries[txid] = {"unbroadcast": not self.relay_broadcasts}
        return txid

    async def estimate_fee(self, target_blocks: int) -> int:
        return self.fee_rate

    async def get_block_height(self) -> int:
        return self.height

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def sample_mnemonic() -> str:
    """Test mnemonic (BIP39 test vector)"""
    return (
        "abandon abandon abandon abandon abandon abandon "
        "abandon abandon abandon abandon abandon about"
    )


@pytest.fixture
def backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
def regtest_keychain(sample_mnemonic: str) -> Keychain:
    return Keychain.from_mnemonic(sample_mnemonic, NetworkType.REGTEST)


@pytest.fixture
def regtest_destination() -> str:
    """P2WPKH regtest address outside the test wallet"""
    return bech32.encode("bcrt", 0, bytes(range(20)))


@pytest.fixture
def wallet_dir(tmp_path, sample_mnemonic: str):
    """Data directory pre-seeded with the test mnemonic for regtest"""
    (tmp_path / "forwarding-service-regtest.mnemonic").write_text(sample_mnemonic + "\n")
    return tmp_path
