"""Session record and lifecycle states."""

import re
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from paird.errors import InvalidSessionIdError
from paird.protocols import SessionStatus

# Session IDs double as directory names in the JSON credential store
SESSION_ID_PATTERN = re.compile(r"^[A-Za-z0-9_.-]{1,128}$")


def validate_session_id(session_id: str) -> str:
    """Return session_id unchanged if it is safe to use.

    Raises:
        InvalidSessionIdError: If the ID is empty, too long, contains
            characters outside [A-Za-z0-9_.-], or is "." / "..".
    """
    if (
        not isinstance(session_id, str)
        or not SESSION_ID_PATTERN.match(session_id)
        or session_id in (".", "..")
    ):
        raise InvalidSessionIdError(session_id)
    return session_id


class SessionState(Enum):
    """Session lifecycle states."""

    IDLE = "idle"
    CONNECTING = "connecting"
    AWAITING_AUTHENTICATION = "awaiting_authentication"
    ONLINE = "online"
    DISRUPTED = "disrupted"
    TERMINATED = "terminated"

    @property
    def status(self) -> SessionStatus:
        """Coarse status exposed through the API."""
        return _STATUS_BY_STATE[self]


_STATUS_BY_STATE = {
    SessionState.IDLE: SessionStatus.CONNECTING,
    SessionState.CONNECTING: SessionStatus.CONNECTING,
    SessionState.AWAITING_AUTHENTICATION: SessionStatus.AWAITING_AUTH,
    SessionState.ONLINE: SessionStatus.ONLINE,
    SessionState.DISRUPTED: SessionStatus.CONNECTING,
    SessionState.TERMINATED: SessionStatus.TERMINATED,
}


class TerminalKind(Enum):
    """Why a session ended up TERMINATED."""

    LOGGED_OUT = "logged_out"
    BLOCKED = "blocked"
    RETRIES_EXHAUSTED = "retries_exhausted"
    STOPPED = "stopped"


@dataclass
class Session:
    """Mutable session record, owned by its state machine.

    Attributes:
        session_id: Externally supplied unique ID.
        state: Current lifecycle state.
        pending_pairing_code: Latest code to scan while unauthenticated.
        reconnect_attempt: Consecutive disruptions since the last success.
        last_disconnect_reason: Status code of the latest disruption.
        last_disconnect_detail: Description of the latest disruption.
        terminal_kind: Set once state is TERMINATED.
        connected_at: Unix time of the last successful connection.
        updated_at: Unix time of the last transition.
    """

    session_id: str
    state: SessionState = SessionState.IDLE
    pending_pairing_code: Optional[str] = None
    reconnect_attempt: int = 0
    last_disconnect_reason: Optional[int] = None
    last_disconnect_detail: Optional[str] = None
    terminal_kind: Optional[TerminalKind] = None
    connected_at: Optional[float] = None
    updated_at: float = field(default_factory=time.time)

    def snapshot(self) -> "SessionSnapshot":
        """Immutable copy for readers."""
        return SessionSnapshot(
            session_id=self.session_id,
            state=self.state,
            status=self.state.status,
            pending_pairing_code=self.pending_pairing_code,
            reconnect_attempt=self.reconnect_attempt,
            last_disconnect_reason=self.last_disconnect_reason,
            last_disconnect_detail=self.last_disconnect_detail,
            terminal_kind=self.terminal_kind,
            connected_at=self.connected_at,
            updated_at=self.updated_at,
        )


@dataclass(frozen=True)
class SessionSnapshot:
    """Point-in-time view of a session."""

    session_id: str
    state: SessionState
    status: SessionStatus
    pending_pairing_code: Optional[str]
    reconnect_attempt: int
    last_disconnect_reason: Optional[int]
    last_disconnect_detail: Optional[str]
    terminal_kind: Optional[TerminalKind]
    connected_at: Optional[float]
    updated_at: float

    def to_dict(self) -> dict:
        """Convert to dict for JSON responses."""
        return {
            "session_id": self.session_id,
            "state": self.state.value,
            "status": self.status.value,
            "pending_pairing_code": self.pending_pairing_code,
            "reconnect_attempt": self.reconnect_attempt,
            "last_disconnect_reason": self.last_disconnect_reason,
            "last_disconnect_detail": self.last_disconnect_detail,
            "terminal_kind": self.terminal_kind.value if self.terminal_kind else None,
            "connected_at": self.connected_at,
            "updated_at": self.updated_at,
        }
