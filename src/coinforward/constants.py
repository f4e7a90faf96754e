"""
Forwarding service constants.
"""

from __future__ import annotations

USAGE = "Usage: coinforward ADDRESS-TO-FORWARD-TO [mainnet|testnet|signet|regtest]"

# Depth a deposit must reach before it is forwarded
REQUIRED_CONFIRMATIONS = 1

SATS_PER_BTC = 100_000_000

# Standard P2PKH dust limit in Bitcoin Core
STANDARD_DUST_LIMIT = 546  # satoshis

# Used when the node cannot estimate a fee rate (sat/vB)
FALLBACK_FEE_RATE = 10

DEFAULT_FEE_TARGET_BLOCKS = 6

# Wallet polling and waiter intervals (seconds)
DEFAULT_POLL_INTERVAL = 10.0
DEFAULT_RELAY_TIMEOUT = 600.0

# Consecutive polls a deposit may be missing before it counts as dropped
DEFAULT_MISS_LIMIT = 3

# Receive addresses watched ahead of the last used one
DEFAULT_GAP_LIMIT = 20
