"""
Bitcoin address parsing and generation.

Supports bech32/bech32m segwit addresses (bc1..., tb1..., bcrt1...) and
base58check P2PKH/P2SH addresses.
"""

from __future__ import annotations

import hashlib

import base58
import bech32

from coinforward.errors import ParseError
from coinforward.models import Address
from coinforward.network import NetworkRegistry, NetworkType, get_network_params


def hash160(data: bytes) -> bytes:
    """RIPEMD160(SHA256(data))"""
    h = hashlib.new("ripemd160")
    h.update(hashlib.sha256(data).digest())
    return h.digest()


def witness_script_pubkey(witver: int, witprog: bytes) -> bytes:
    """OP_n <program> for a segwit output"""
    opcode = 0x00 if witver == 0 else 0x50 + witver
    return bytes([opcode, len(witprog)]) + witprog


def pubkey_to_p2wpkh_address(pubkey: bytes, network: NetworkType) -> str:
    """Native segwit (BIP173) address for a compressed public key."""
    if len(pubkey) != 33:
        raise ValueError(f"Invalid compressed pubkey length: {len(pubkey)}")

    hrp = get_network_params(network).bech32_hrp
    address = bech32.encode(hrp, 0, hash160(pubkey))
    if address is None:
        raise ValueError(f"Failed to encode P2WPKH address for {pubkey.hex()}")
    return address


def pubkey_to_p2wpkh_script(pubkey: bytes) -> bytes:
    """P2WPKH scriptPubKey (OP_0 <20-byte-hash>)"""
    return witness_script_pubkey(0, hash160(pubkey))


class AddressParser:
    """
    Parses address text into an Address bound to one network.

    With no network given, the first network (in registry order) whose
    encoding matches is adopted.
    """

    def __init__(self, registry: NetworkRegistry | None = None):
        self.registry = registry or NetworkRegistry()

    def parse(self, text: str, network: NetworkType | None = None) -> Address:
        candidate = text.strip()
        if not candidate:
            raise ParseError("Empty address")

        matches = self._parse_segwit(candidate)
        if matches is None:
            matches = self._parse_base58(candidate)

        if network is None:
            return matches[0]

        for address in matches:
            if address.network == network:
                return address
        raise ParseError(
            f"Address {candidate} is for {matches[0].network.value}, not {network.value}"
        )

    def _parse_segwit(self, text: str) -> list[Address] | None:
        lowered = text.lower()
        matches: list[Address] = []
        for network in self.registry:
            hrp = get_network_params(network).bech32_hrp
            if not lowered.startswith(hrp + "1"):
                continue

            witver, witprog = bech32.decode(hrp, text)
            if witver is None or witprog is None:
                raise ParseError(f"Invalid bech32 address: {text}")

            program = bytes(witprog)
            matches.append(
                Address(
                    text=lowered,
                    network=network,
                    kind=_witness_kind(witver, program),
                    script_pubkey=witness_script_pubkey(witver, program),
                )
            )
        return matches or None

    def _parse_base58(self, text: str) -> list[Address]:
        try:
            decoded = base58.b58decode_check(text)
        except ValueError as e:
            raise ParseError(f"Invalid address {text}: {e}") from e

        if len(decoded) != 21:
            raise ParseError(f"Invalid address payload length: {len(decoded)}")

        version, payload = decoded[0], decoded[1:]
        matches: list[Address] = []
        for network in self.registry:
            params = get_network_params(network)
            if version == params.p2pkh_version:
                # OP_DUP OP_HASH160 <hash> OP_EQUALVERIFY OP_CHECKSIG
                script = b"\x76\xa9\x14" + payload + b"\x88\xac"
                matches.append(Address(text, network, "p2pkh", script))
            elif version == params.p2sh_version:
                # OP_HASH160 <hash> OP_EQUAL
                script = b"\xa9\x14" + payload + b"\x87"
                matches.append(Address(text, network, "p2sh", script))

        if not matches:
            raise ParseError(f"Unknown address version: {version}")
        return matches


def _witness_kind(witver: int, program: bytes) -> str:
    if witver == 0 and len(program) == 20:
        return "p2wpkh"
    if witver == 0 and len(program) == 32:
        return "p2wsh"
    if witver == 1 and len(program) == 32:
        return "p2tr"
    return "witness_unknown"
