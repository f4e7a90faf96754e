"""
BIP32/BIP84 key derivation for the forwarding wallet.

Only the external (receive) chain of account 0 is used:
m/84'/{coin_type}'/0'/0/{index}
"""

from __future__ import annotations

import hashlib
import hmac
from dataclasses import dataclass

from coincurve import PrivateKey
from mnemonic import Mnemonic

from coinforward.address import pubkey_to_p2wpkh_address, pubkey_to_p2wpkh_script
from coinforward.network import NetworkType, get_network_params

# secp256k1 curve order
SECP256K1_N = int("FFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFEBAAEDCE6AF48A03BBFD25E8CD0364141", 16)

HARDENED = 0x80000000


@dataclass(frozen=True)
class ExtendedKey:
    private_key: PrivateKey
    chain_code: bytes
    depth: int = 0

    @property
    def public_key_bytes(self) -> bytes:
        return self.private_key.public_key.format(compressed=True)


def master_key(seed: bytes) -> ExtendedKey:
    digest = hmac.new(b"Bitcoin seed", seed, hashlib.sha512).digest()
    return ExtendedKey(PrivateKey(digest[:32]), digest[32:])


def derive_child(parent: ExtendedKey, index: int) -> ExtendedKey:
    if index >= HARDENED:
        data = b"\x00" + parent.private_key.secret + index.to_bytes(4, "big")
    else:
        data = parent.public_key_bytes + index.to_bytes(4, "big")

    digest = hmac.new(parent.chain_code, data, hashlib.sha512).digest()
    tweak = int.from_bytes(digest[:32], "big")
    if tweak >= SECP256K1_N:
        raise ValueError(f"Invalid child key at index {index}")

    child = (int.from_bytes(parent.private_key.secret, "big") + tweak) % SECP256K1_N
    if child == 0:
        raise ValueError(f"Invalid child key at index {index}")

    return ExtendedKey(PrivateKey(child.to_bytes(32, "big")), digest[32:], parent.depth + 1)


def derive_path(root: ExtendedKey, path: str) -> ExtendedKey:
    """Derive along a path like "m/84'/0'/0'/0/0" (' or h marks hardened)."""
    parts = path.split("/")
    if parts[0] != "m":
        raise ValueError("Path must start with 'm'")

    key = root
    for part in parts[1:]:
        if not part:
            continue
        hardened = part[-1] in "'h"
        index = int(part.rstrip("'h"))
        key = derive_child(key, index + HARDENED if hardened else index)
    return key


def mnemonic_to_seed(words: str, passphrase: str = "") -> bytes:
    return Mnemonic.to_seed(words, passphrase)


def generate_mnemonic(strength: int = 256) -> str:
    """New BIP39 mnemonic (24 words for 256 bits of entropy)."""
    return Mnemonic("english").generate(strength=strength)


def is_valid_mnemonic(words: str) -> bool:
    return Mnemonic("english").check(words)


class Keychain:
    """Receive keys and their P2WPKH addresses, derived lazily and cached."""

    def __init__(self, seed: bytes, network: NetworkType):
        self.network = network
        coin_type = get_network_params(network).coin_type
        self.chain_path = f"m/84'/{coin_type}'/0'/0"
        self._chain = derive_path(master_key(seed), self.chain_path)
        self._keys: dict[int, ExtendedKey] = {}
        self._by_address: dict[str, int] = {}

    @classmethod
    def from_mnemonic(cls, words: str, network: NetworkType, passphrase: str = "") -> Keychain:
        return cls(mnemonic_to_seed(words, passphrase), network)

    def key(self, index: int) -> ExtendedKey:
        if index not in self._keys:
            key = derive_child(self._chain, index)
            self._keys[index] = key
            self._by_address[pubkey_to_p2wpkh_address(key.public_key_bytes, self.network)] = index
        return self._keys[index]

    def address(self, index: int) -> str:
        return pubkey_to_p2wpkh_address(self.key(index).public_key_bytes, self.network)

    def script_pubkey(self, index: int) -> bytes:
        return pubkey_to_p2wpkh_script(self.key(index).public_key_bytes)

    def index_of(self, address: str) -> int | None:
        return self._by_address.get(address)

    def key_for_address(self, address: str) -> ExtendedKey | None:
        index = self.index_of(address)
        return None if index is None else self._keys[index]
