"""Base exceptions for paird."""

from typing import Optional


class PairdError(Exception):
    """Base exception for all paird errors."""

    pass


class ConfigError(PairdError):
    """Configuration is invalid."""

    pass


class StorageError(PairdError):
    """Storage operation error."""

    pass


class CredentialStoreError(StorageError):
    """Credential state could not be loaded, saved or deleted."""

    pass


class TransportError(PairdError):
    """Transport operation failed.

    Transports may raise this from connect() with the status code the
    server answered with, so the failure is classified like a disconnect.
    """

    def __init__(self, message: str, reason: Optional[int] = None):
        self.reason = reason
        super().__init__(message)


class MessageError(PairdError):
    """Outbound message could not be built."""

    pass


class InvalidSessionIdError(PairdError):
    """Session ID is empty, too long or contains unsafe characters."""

    def __init__(self, session_id: str):
        self.session_id = session_id
        super().__init__(f"Invalid session ID: {session_id!r}")
