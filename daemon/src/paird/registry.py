"""Registry owning one state machine per session ID."""

import asyncio
import logging
from typing import Callable, Optional

from paird.protocols import CredentialStoreProtocol
from paird.state_machine import SessionStateMachine

logger = logging.getLogger(__name__)


MachineFactory = Callable[[str], SessionStateMachine]


class SessionRegistry:
    """Maps session IDs to their live state machines.

    At most one machine exists per ID. ensure() claims the ID under the
    registry lock before any asynchronous work, so concurrent callers for
    the same ID all get the same machine and only one transport is built.
    """

    def __init__(
        self,
        machine_factory: MachineFactory,
        credential_store: CredentialStoreProtocol,
    ):
        """Initialize empty registry.

        Args:
            machine_factory: Builds an unstarted machine for a session ID.
            credential_store: Store used to erase credentials on reset of
                sessions that are not registered.
        """
        self._machine_factory = machine_factory
        self._credential_store = credential_store
        self._machines: dict[str, SessionStateMachine] = {}
        self._lock = asyncio.Lock()

    async def ensure(self, session_id: str) -> SessionStateMachine:
        """Return the machine for session_id, creating and starting it if needed.

        Args:
            session_id: Session to look up or create.

        Returns:
            The single machine registered for session_id.
        """
        async with self._lock:
            machine = self._machines.get(session_id)
            if machine is not None:
                return machine

            machine = self._machine_factory(session_id)
            self._machines[session_id] = machine

        logger.info(f"Registered session {session_id}")
        await machine.start()
        return machine

    def get(self, session_id: str) -> Optional[SessionStateMachine]:
        """Get machine by ID, or None."""
        return self._machines.get(session_id)

    async def remove(self, session_id: str) -> bool:
        """Unregister a session and close its transport.

        Credentials are kept. Idempotent.

        Returns:
            True if a session was removed, False if none was registered.
        """
        async with self._lock:
            machine = self._machines.pop(session_id, None)

        if machine is None:
            return False

        await machine.close()
        logger.info(f"Removed session {session_id}")
        return True

    async def reset(self, session_id: str) -> None:
        """Unregister a session, log it out and erase its credentials.

        Raises:
            CredentialStoreError: If the credentials could not be deleted.
        """
        async with self._lock:
            machine = self._machines.pop(session_id, None)

        if machine is None:
            await self._credential_store.delete(session_id)
        else:
            try:
                await machine.reset()
            finally:
                await machine.close()

        logger.info(f"Reset session {session_id}")

    def list_ids(self) -> set[str]:
        """Snapshot of registered session IDs."""
        return set(self._machines)

    async def close_all(self) -> None:
        """Close every session without logging out."""
        async with self._lock:
            machines = list(self._machines.values())
            self._machines.clear()

        if machines:
            results = await asyncio.gather(
                *[machine.close() for machine in machines],
                return_exceptions=True,
            )
            for machine, result in zip(machines, results):
                if isinstance(result, Exception):
                    logger.warning(f"Error closing session {machine.session_id}: {result}")

    def __len__(self) -> int:
        return len(self._machines)

    def __contains__(self, session_id: str) -> bool:
        return session_id in self._machines
