"""Protocols and enums for paird."""

from enum import Enum
from typing import Any, Optional, Protocol

from paird.events import EventSink


class SessionStatus(Enum):
    """Coarse session status reported to API callers."""

    ABSENT = "absent"
    CONNECTING = "connecting"
    AWAITING_AUTH = "awaiting_auth"
    ONLINE = "online"
    TERMINATED = "terminated"


class SendResult(Enum):
    """Outcome of an outbound send."""

    OK = "ok"
    NOT_CONNECTED = "not_connected"
    TRANSPORT_ERROR = "transport_error"


# ============================================================================
# Collaborator Protocols
# ============================================================================


class CredentialStoreProtocol(Protocol):
    """Persistence for opaque authentication state, keyed by session ID.

    Calls for different IDs may run concurrently. Calls for one ID are
    serialized by the session that owns it.
    """

    async def load(self, session_id: str) -> Optional[Any]:
        """Return stored state, or None if nothing is stored."""
        ...

    async def save(self, session_id: str, state: Any) -> None:
        """Replace stored state."""
        ...

    async def delete(self, session_id: str) -> None:
        """Erase stored state. No-op if absent."""
        ...

    async def list_ids(self) -> list[str]:
        """IDs that have stored state."""
        ...


class TransportClientProtocol(Protocol):
    """One connection attempt of the underlying messaging engine.

    Events are reported through the sink passed to the factory.
    """

    async def connect(self) -> None:
        """Open the connection. Returns once the attempt is under way."""
        ...

    async def send(self, recipient: str, payload: Any) -> None:
        """Send a message. Only valid after Connected."""
        ...

    async def close(self) -> None:
        """Close the connection without invalidating credentials."""
        ...

    async def logout(self) -> None:
        """Authenticated teardown that unlinks the device."""
        ...


class TransportFactory(Protocol):
    """Build a transport for one connection attempt."""

    def __call__(
        self,
        session_id: str,
        credentials: Optional[Any],
        emit: EventSink,
    ) -> TransportClientProtocol:
        ...


class SessionListener(Protocol):
    """Observer notified after every applied transition."""

    def __call__(self, snapshot: Any) -> None:
        ...
