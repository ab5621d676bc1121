"""Exception hierarchy shared by the RaidDeck components."""
from __future__ import annotations

__all__ = [
    "RaidDeckError",
    "ConfigurationError",
    "NotFoundError",
    "ParseError",
    "RemoteError",
    "RemoteLookupError",
    "RemoteSubscriptionError",
    "RaidError",
]


class RaidDeckError(Exception):
    """Base class for all errors raised by :mod:`raiddeck`."""


class ConfigurationError(RaidDeckError):
    """Missing or invalid configuration, store path or credentials."""


class NotFoundError(RaidDeckError):
    """A file the caller asked for does not exist."""

    def __init__(self, message: str, path: object = None) -> None:
        super().__init__(message)
        self.path = path


class ParseError(RaidDeckError):
    """A persisted document could not be decoded."""


class RemoteError(RaidDeckError):
    """Failure talking to the remote channel service."""


class RemoteLookupError(RemoteError):
    """Channel state could not be fetched."""


class RemoteSubscriptionError(RemoteError):
    """A live-update subscription could not be established or removed."""


class RaidError(RemoteError):
    """The remote service rejected or failed a raid request."""
