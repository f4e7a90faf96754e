"""
Supported Bitcoin networks and their address parameters.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class NetworkType(str, Enum):
    MAINNET = "mainnet"
    TESTNET = "testnet"
    SIGNET = "signet"
    REGTEST = "regtest"


@dataclass(frozen=True)
class NetworkParams:
    """Address encoding parameters for one network"""

    network: NetworkType
    bech32_hrp: str
    p2pkh_version: int
    p2sh_version: int
    coin_type: int


NETWORK_PARAMS: dict[NetworkType, NetworkParams] = {
    NetworkType.MAINNET: NetworkParams(NetworkType.MAINNET, "bc", 0x00, 0x05, 0),
    NetworkType.TESTNET: NetworkParams(NetworkType.TESTNET, "tb", 0x6F, 0xC4, 1),
    NetworkType.SIGNET: NetworkParams(NetworkType.SIGNET, "tb", 0x6F, 0xC4, 1),
    NetworkType.REGTEST: NetworkParams(NetworkType.REGTEST, "bcrt", 0x6F, 0xC4, 1),
}


def get_network_params(network: NetworkType) -> NetworkParams:
    return NETWORK_PARAMS[network]


class NetworkRegistry:
    """
    Looks up networks by their command-line identifier.

    Iteration order is significant: when an address encoding is shared by
    several networks (tb1 for testnet and signet) the first one wins.
    """

    def __init__(self, networks: list[NetworkType] | None = None):
        self.networks = networks if networks is not None else list(NetworkType)

    def by_name(self, name: str) -> NetworkType | None:
        """Return the network named `name` (case-insensitive), or None."""
        wanted = name.strip().lower()
        for network in self.networks:
            if network.value == wanted:
                return network
        return None

    def names(self) -> list[str]:
        return [network.value for network in self.networks]

    def __iter__(self):  # type: ignore[no-untyped-def]
        return iter(self.networks)
