"""Exception taxonomy for the listening pipeline."""

from __future__ import annotations


class ListenError(Exception):
    """Base class for all listening errors."""


class CapabilityError(ListenError):
    """The robot lacks the hardware or service credentials to listen."""


class ConfigurationError(ListenError):
    """A session cannot start with the given configuration.

    Terminal: the session moves to FAILED and is never retried.
    """


class TransportError(ListenError):
    """The connection to the recognition service or the device dropped.

    Recoverable: the session reconnects with a fresh source and channel.
    """


class SessionActiveError(ListenError):
    """Raised when listen() is called while a session is already open."""


class InvalidTransitionError(ListenError):
    """Raised when the session state machine is asked to take an undefined edge."""
