"""Normalized events emitted by transports.

A transport reports everything that happens on its connection through
one of these types. The state machine is the only consumer.
"""

from dataclasses import dataclass
from typing import Any, Callable, Optional, Union


@dataclass(frozen=True)
class PairingCodeIssued:
    """A new pairing code is ready to be scanned."""

    code: str


@dataclass(frozen=True)
class CredentialsUpdated:
    """Authentication state changed and should be persisted as-is."""

    state: Any


@dataclass(frozen=True)
class Connected:
    """The connection is open and authenticated."""

    pass


@dataclass(frozen=True)
class Disconnected:
    """The connection closed.

    Attributes:
        reason: Transport status code, or None when unknown.
        detail: Free-form description for diagnostics.
    """

    reason: Optional[int] = None
    detail: Optional[str] = None


TransportEvent = Union[PairingCodeIssued, CredentialsUpdated, Connected, Disconnected]

# Synchronous sink handed to each transport
EventSink = Callable[[TransportEvent], None]
