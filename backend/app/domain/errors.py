"""Failure taxonomy shared by the scan, watchlist and trading services."""

from __future__ import annotations


class ArbitrageError(Exception):
    """Base class for conditions surfaced to callers as descriptive strings."""


class TransportError(ArbitrageError):
    """An external market, trade or email endpoint was unreachable or returned non-2xx."""


class ValidationError(ArbitrageError):
    """Malformed input rejected before any side effect."""


class DuplicateEntry(ArbitrageError):
    """A watchlist entry for the same (user, market) already exists."""


class InsufficientBalance(ArbitrageError):
    """Available balance does not cover the requested capital."""


class InvalidCredential(ArbitrageError):
    """The trade API rejected the supplied credential."""


class NotFound(ArbitrageError):
    """Requested record does not exist for the calling user."""


class InvalidTransition(ArbitrageError):
    """Attempt to mutate a scan run that already reached a terminal state."""


__all__ = [
    "ArbitrageError",
    "TransportError",
    "ValidationError",
    "DuplicateEntry",
    "InsufficientBalance",
    "InvalidCredential",
    "NotFound",
    "InvalidTransition",
]
