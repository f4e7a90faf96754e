"""
coinforward - Automatic coin forwarding service

Watches a BIP84 wallet on a Bitcoin Core node and forwards every deposit,
once confirmed, to a fixed destination address.
"""

__version__ = "0.1.0"

from coinforward.config import ForwarderConfig, resolve_forwarding_target
from coinforward.errors import (
    BroadcastError,
    ConfigError,
    ConfirmationAbort,
    ForwardingError,
    ParseError,
    RelayError,
    SelectionError,
)
from coinforward.models import Address, DepositEvent, ForwardingTarget, ForwardResult
from coinforward.network import NetworkRegistry, NetworkType
from coinforward.service import ForwardingService

__all__ = [
    "Address",
    "BroadcastError",
    "ConfigError",
    "ConfirmationAbort",
    "DepositEvent",
    "ForwarderConfig",
    "ForwardingError",
    "ForwardingService",
    "ForwardingTarget",
    "ForwardResult",
    "NetworkRegistry",
    "NetworkType",
    "ParseError",
    "RelayError",
    "SelectionError",
    "resolve_forwarding_target",
]
