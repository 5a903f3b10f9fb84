"""Error taxonomy shared by all rosterwatch components."""

from __future__ import annotations


class RosterError(Exception):
    """Base class for rosterwatch errors."""


class MalformedSnapshot(RosterError):
    """A snapshot could not be read or does not have the expected shape."""


class PersistenceFailure(RosterError):
    """The persisted indexes could not be read or written."""


class NotificationDeliveryFailure(RosterError):
    """A notification sink rejected or failed to receive a message."""


class ConfigError(RosterError):
    """Invalid configuration value."""
