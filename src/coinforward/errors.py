"""
Error taxonomy for the forwarding service.

Startup errors (ConfigError, ParseError) abort the process. Pipeline errors
(SelectionError, BroadcastError, ConfirmationAbort, RelayError) only end the
pipeline of the deposit they were raised for.
"""

from __future__ import annotations


class ForwardingError(Exception):
    """Base class for all forwarding service errors."""

    pass


class ConfigError(ForwardingError):
    """Bad command line, unknown network or address/network mismatch."""

    pass


class ParseError(ForwardingError):
    """Malformed address text, or an address not valid for the requested network."""

    pass


class SelectionError(ForwardingError):
    """The scoped selector found no spendable outputs for the deposit."""

    pass


class BroadcastError(ForwardingError):
    """Building, signing or broadcasting the sweep transaction failed."""

    pass


class ConfirmationAbort(ForwardingError):
    """The deposit was dropped or double-spent before reaching the required depth."""

    pass


class RelayError(ForwardingError):
    """The sweep transaction was not acknowledged by peers in time."""

    pass
