"""Disconnect reason codes and their classification.

Every decision about whether a dropped connection is retried lives in
one table. Transports report numeric status codes; ``DisconnectPolicy``
maps each code to a ``DisconnectClass``:

    RETRYABLE         network blips, restarts, timeouts: reconnect later
    TERMINAL_REAUTH   credentials invalid: needs a fresh pairing
    TERMINAL_BLOCKED  server rejects the connection method: needs an
                      operator reset, not just a rescan

Codes missing from the table, and unknown reasons (None), are retryable.
"""

from enum import Enum, IntEnum
from typing import Iterable, Mapping, Optional

from paird.config import DisconnectConfig


class DisconnectReason(IntEnum):
    """Status codes reported by the messaging transport."""

    LOGGED_OUT = 401
    FORBIDDEN = 403
    METHOD_NOT_ALLOWED = 405
    CONNECTION_LOST = 408
    TIMED_OUT = 408
    MULTIDEVICE_MISMATCH = 411
    CONNECTION_CLOSED = 428
    CONNECTION_REPLACED = 440
    BAD_SESSION = 500
    UNAVAILABLE_SERVICE = 503
    RESTART_REQUIRED = 515


class DisconnectClass(Enum):
    """What a disconnect means for the session."""

    RETRYABLE = "retryable"
    TERMINAL_REAUTH = "terminal_reauth"
    TERMINAL_BLOCKED = "terminal_blocked"

    @property
    def is_terminal(self) -> bool:
        return self is not DisconnectClass.RETRYABLE


DEFAULT_CLASSIFICATION: dict[int, DisconnectClass] = {
    DisconnectReason.LOGGED_OUT: DisconnectClass.TERMINAL_REAUTH,
    DisconnectReason.FORBIDDEN: DisconnectClass.TERMINAL_BLOCKED,
    DisconnectReason.METHOD_NOT_ALLOWED: DisconnectClass.TERMINAL_BLOCKED,
}


def describe_reason(reason: Optional[int]) -> str:
    """Human-readable name for a reason code."""
    if reason is None:
        return "unknown"
    try:
        return f"{DisconnectReason(reason).name.lower()} ({reason})"
    except ValueError:
        return str(reason)


class DisconnectPolicy:
    """Classification table for disconnect reason codes."""

    def __init__(self, table: Optional[Mapping[int, DisconnectClass]] = None):
        """Initialize policy.

        Args:
            table: Code -> class mapping. Defaults to DEFAULT_CLASSIFICATION.
        """
        self._table: dict[int, DisconnectClass] = dict(
            DEFAULT_CLASSIFICATION if table is None else table
        )

    @classmethod
    def from_config(cls, config: DisconnectConfig) -> "DisconnectPolicy":
        """Build the table from config lists.

        Later lists win when a code appears twice: retryable overrides
        terminal_blocked, which overrides terminal_reauth.
        """
        table: dict[int, DisconnectClass] = {}
        groups: Iterable[tuple[list[int], DisconnectClass]] = (
            (config.terminal_reauth, DisconnectClass.TERMINAL_REAUTH),
            (config.terminal_blocked, DisconnectClass.TERMINAL_BLOCKED),
            (config.retryable, DisconnectClass.RETRYABLE),
        )
        for codes, klass in groups:
            for code in codes:
                table[int(code)] = klass
        return cls(table)

    def classify(self, reason: Optional[int]) -> DisconnectClass:
        """Classify a reason code.

        Args:
            reason: Transport status code, or None if unknown.

        Returns:
            The class for the code; RETRYABLE when not in the table.
        """
        if reason is None:
            return DisconnectClass.RETRYABLE
        return self._table.get(int(reason), DisconnectClass.RETRYABLE)

    def as_dict(self) -> dict[int, DisconnectClass]:
        """Copy of the table."""
        return dict(self._table)
