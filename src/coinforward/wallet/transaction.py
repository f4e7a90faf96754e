"""
Sweep transaction construction and P2WPKH signing.

A sweep spends every selected input in full to a single output; the fee is
taken from that output. There is no change output.
"""

from __future__ import annotations

import hashlib
import struct
from dataclasses import dataclass, field

from coincurve import PrivateKey

from coinforward.address import hash160

SIGHASH_ALL = 1

# Version 2, final sequence numbers, no locktime
TX_VERSION = 2
SEQUENCE_FINAL = 0xFFFFFFFF
LOCKTIME = 0


class TransactionBuildError(ValueError):
    pass


@dataclass
class SweepInput:
    """A P2WPKH output being spent, with the key that controls it"""

    txid: str
    vout: int
    value: int
    private_key: PrivateKey

    @property
    def pubkey(self) -> bytes:
        return self.private_key.public_key.format(compressed=True)


@dataclass
class SweepTransaction:
    inputs: list[SweepInput]
    script_pubkey: bytes
    amount: int
    fee: int
    witnesses: list[list[bytes]] = field(default_factory=list)

    @property
    def input_value(self) -> int:
        return sum(inp.value for inp in self.inputs)

    @property
    def outpoints(self) -> list[tuple[str, int]]:
        return [(inp.txid, inp.vout) for inp in self.inputs]

    @property
    def txid(self) -> str:
        return hash256(self.serialize(witness=False))[::-1].hex()

    @property
    def raw_hex(self) -> str:
        return self.serialize().hex()

    def serialize(self, witness: bool = True) -> bytes:
        result = struct.pack("<I", TX_VERSION)
        if witness:
            # Marker and flag
            result += b"\x00\x01"

        result += varint(len(self.inputs))
        for inp in self.inputs:
            result += outpoint_bytes(inp.txid, inp.vout)
            result += b"\x00"  # Empty scriptSig for native segwit
            result += struct.pack("<I", SEQUENCE_FINAL)

        result += varint(1)
        result += output_bytes(self.amount, self.script_pubkey)

        if witness:
            for index in range(len(self.inputs)):
                stack = self.witnesses[index] if index < len(self.witnesses) else []
                result += varint(len(stack))
                for item in stack:
                    result += varint(len(item)) + item

        result += struct.pack("<I", LOCKTIME)
        return result


def hash256(data: bytes) -> bytes:
    return hashlib.sha256(hashlib.sha256(data).digest()).digest()


def varint(n: int) -> bytes:
    """Encode integer as Bitcoin varint."""
    if n < 0xFD:
        return bytes([n])
    if n <= 0xFFFF:
        return b"\xfd" + struct.pack("<H", n)
    if n <= 0xFFFFFFFF:
        return b"\xfe" + struct.pack("<I", n)
    return b"\xff" + struct.pack("<Q", n)


def outpoint_bytes(txid: str, vout: int) -> bytes:
    # txid is in RPC format (big-endian), raw transactions use little-endian
    return bytes.fromhex(txid)[::-1] + struct.pack("<I", vout)


def output_bytes(value: int, script_pubkey: bytes) -> bytes:
    return struct.pack("<Q", value) + varint(len(script_pubkey)) + script_pubkey


def estimate_vsize(num_inputs: int, script_pubkey: bytes) -> int:
    """
    Virtual size of a sweep with P2WPKH inputs.

    P2WPKH inputs: ~68 vbytes each
    Output: 8 (value) + 1 (script length) + script
    Overhead: ~11 vbytes
    """
    return 11 + num_inputs * 68 + 9 + len(script_pubkey)


def p2wpkh_script_code(pubkey: bytes) -> bytes:
    """BIP143 scriptCode for P2WPKH: OP_DUP OP_HASH160 <pkh> OP_EQUALVERIFY OP_CHECKSIG"""
    return b"\x76\xa9\x14" + hash160(pubkey) + b"\x88\xac"


def segwit_sighash(tx: SweepTransaction, index: int, sighash_type: int = SIGHASH_ALL) -> bytes:
    """BIP143 signature hash for input `index`."""
    hash_prevouts = hash256(b"".join(outpoint_bytes(inp.txid, inp.vout) for inp in tx.inputs))
    hash_sequence = hash256(struct.pack("<I", SEQUENCE_FINAL) * len(tx.inputs))
    hash_outputs = hash256(output_bytes(tx.amount, tx.script_pubkey))

    inp = tx.inputs[index]
    script_code = p2wpkh_script_code(inp.pubkey)
    preimage = (
        struct.pack("<I", TX_VERSION)
        + hash_prevouts
        + hash_sequence
        + outpoint_bytes(inp.txid, inp.vout)
        + varint(len(script_code))
        + script_code
        + struct.pack("<Q", inp.value)
        + struct.pack("<I", SEQUENCE_FINAL)
        + hash_outputs
        + struct.pack("<I", LOCKTIME)
        + struct.pack("<I", sighash_type)
    )
    return hash256(preimage)


def sign_sweep(tx: SweepTransaction) -> SweepTransaction:
    """Attach a [signature, pubkey] witness to every input."""
    witnesses = []
    for index, inp in enumerate(tx.inputs):
        sighash = segwit_sighash(tx, index)
        # Already SHA256d, so skip coincurve's own hashing
        signature = inp.private_key.sign(sighash, hasher=None) + bytes([SIGHASH_ALL])
        witnesses.append([signature, inp.pubkey])
    tx.witnesses = witnesses
    return tx


def build_sweep(
    inputs: list[SweepInput],
    script_pubkey: bytes,
    fee_rate: int,
    dust_limit: int,
) -> SweepTransaction:
    """
    Build and sign a transaction spending all `inputs` to `script_pubkey`.

    Raises:
        TransactionBuildError: no inputs, or nothing above dust left after the fee
    """
    if not inputs:
        raise TransactionBuildError("Sweep has no inputs")

    total = sum(inp.value for inp in inputs)
    fee = estimate_vsize(len(inputs), script_pubkey) * fee_rate
    amount = total - fee
    if amount < dust_limit:
        raise TransactionBuildError(
            f"Sweeping {total:,} sats at {fee_rate} sat/vB leaves {amount:,} sats, "
            f"below dust limit {dust_limit}"
        )

    tx = SweepTransaction(inputs=inputs, script_pubkey=script_pubkey, amount=amount, fee=fee)
    return sign_sweep(tx)
