"""
Configuration for the forwarding service.
"""

from __future__ import annotations

from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field

from coinforward.address import AddressParser
from coinforward.constants import (
    DEFAULT_FEE_TARGET_BLOCKS,
    DEFAULT_GAP_LIMIT,
    DEFAULT_MISS_LIMIT,
    DEFAULT_POLL_INTERVAL,
    DEFAULT_RELAY_TIMEOUT,
    REQUIRED_CONFIRMATIONS,
    STANDARD_DUST_LIMIT,
)
from coinforward.errors import ConfigError, ParseError
from coinforward.models import ForwardingTarget
from coinforward.network import NetworkRegistry, NetworkType


class ForwarderConfig(BaseModel):
    """Runtime settings. The forwarding target itself is resolved separately."""

    model_config = ConfigDict(frozen=True)

    # Bitcoin Core RPC
    rpc_url: str = "http://127.0.0.1:8332"
    rpc_user: str = ""
    rpc_password: str = ""

    # Wallet files are named forwarding-service-<network>.* in this directory
    data_dir: Path = Path(".")

    required_confirmations: int = Field(default=REQUIRED_CONFIRMATIONS, ge=1)
    fee_rate: int | None = Field(
        default=None, ge=1, description="Fee rate in sat/vB, estimated by the node if unset"
    )
    fee_target_blocks: int = Field(default=DEFAULT_FEE_TARGET_BLOCKS, ge=1)
    dust_limit: int = Field(default=STANDARD_DUST_LIMIT, ge=0)

    gap_limit: int = Field(default=DEFAULT_GAP_LIMIT, ge=1)
    poll_interval: float = Field(default=DEFAULT_POLL_INTERVAL, gt=0)
    relay_timeout: float = Field(default=DEFAULT_RELAY_TIMEOUT, gt=0)
    miss_limit: int = Field(default=DEFAULT_MISS_LIMIT, ge=1)


def resolve_forwarding_target(
    address: str,
    network_name: str | None = None,
    registry: NetworkRegistry | None = None,
) -> ForwardingTarget:
    """
    Resolve the destination address and the network to run on.

    With a network name, the address must be encoded for that network.
    Without one, the network is taken from the address.

    Raises:
        ConfigError: unknown network name, or address encoded for another network
        ParseError: malformed address
    """
    registry = registry or NetworkRegistry()
    parser = AddressParser(registry)

    if network_name is None:
        parsed = parser.parse(address)
        return ForwardingTarget(network=parsed.network, address=parsed)

    network = registry.by_name(network_name)
    if network is None:
        raise ConfigError(
            f"Unknown network '{network_name}', expected one of: {', '.join(registry.names())}"
        )

    try:
        parsed = parser.parse(address, network)
    except ParseError:
        # Valid address for some other network is a configuration mistake,
        # anything else is malformed input and propagates as ParseError
        encoded_for: NetworkType = parser.parse(address).network
        raise ConfigError(
            f"Address {address} is for {encoded_for.value}, but network {network.value} was given"
        ) from None

    return ForwardingTarget(network=network, address=parsed)
