"""Supervisor API: the boundary consumed by HTTP handlers and the CLI.

Every operation delegates to the SessionRegistry. Misuse is reported
synchronously through return values (SessionStatus, SendResult), never
by exceptions raised later from a transport.

Usage:
    supervisor = Supervisor(
        transport_factory=create_transport,
        credential_store=JsonCredentialStore(Path("~/.config/paird/sessions")),
        config=config,
    )
    await supervisor.resume_all()

    await supervisor.start_session("alice")
    code = supervisor.get_pairing_code("alice")   # render and scan
    ...
    result = await supervisor.send_text("alice", "15550100000", "hello")

    await supervisor.shutdown()
"""

import logging
from typing import Any, Optional

from paird.config import Config
from paird.disconnect import DisconnectPolicy
from paird.messages import (
    decode_media,
    media_payload,
    recipient_address,
    text_payload,
)
from paird.protocols import (
    CredentialStoreProtocol,
    SendResult,
    SessionListener,
    SessionStatus,
    TransportFactory,
)
from paird.reconnect import ReconnectScheduler
from paird.registry import SessionRegistry
from paird.session import SessionSnapshot, validate_session_id
from paird.state_machine import SessionStateMachine

logger = logging.getLogger(__name__)


class Supervisor:
    """Start, observe, use and tear down sessions."""

    def __init__(
        self,
        transport_factory: TransportFactory,
        credential_store: CredentialStoreProtocol,
        config: Optional[Config] = None,
        listener: Optional[SessionListener] = None,
        scheduler: Optional[ReconnectScheduler] = None,
    ):
        """Initialize supervisor.

        Args:
            transport_factory: Builds transports for connection attempts.
            credential_store: Persistence for authentication state.
            config: Timeouts, backoff and classification settings.
            listener: Optional observer of every session transition.
            scheduler: Override the scheduler built from config.
        """
        self._config = config or Config()
        self._transport_factory = transport_factory
        self._credential_store = credential_store
        self._listener = listener
        self._scheduler = scheduler or ReconnectScheduler(
            config=self._config.reconnect,
            policy=DisconnectPolicy.from_config(self._config.disconnect),
        )
        self.registry = SessionRegistry(
            machine_factory=self._create_machine,
            credential_store=credential_store,
        )

    def _create_machine(self, session_id: str) -> SessionStateMachine:
        return SessionStateMachine(
            session_id,
            transport_factory=self._transport_factory,
            credential_store=self._credential_store,
            scheduler=self._scheduler,
            connect_timeout=self._config.connect_timeout,
            send_timeout=self._config.send_timeout,
            listener=self._listener,
        )

    async def start_session(self, session_id: str) -> SessionStatus:
        """Start a session, or report the existing one.

        A session that is already connecting, awaiting authentication,
        online or terminated is left alone.

        Raises:
            InvalidSessionIdError: If session_id is not usable.
        """
        validate_session_id(session_id)
        machine = await self.registry.ensure(session_id)
        return machine.state.status

    def get_status(self, session_id: str) -> SessionStatus:
        machine = self.registry.get(session_id)
        if machine is None:
            return SessionStatus.ABSENT
        return machine.state.status

    def get_session(self, session_id: str) -> Optional[SessionSnapshot]:
        """Detailed snapshot for diagnostics."""
        machine = self.registry.get(session_id)
        if machine is None:
            return None
        return machine.snapshot()

    def get_pairing_code(self, session_id: str) -> Optional[str]:
        machine = self.registry.get(session_id)
        if machine is None:
            return None
        return machine.session.pending_pairing_code

    async def send_message(
        self, session_id: str, recipient: str, payload: Any
    ) -> SendResult:
        """Send an opaque payload through an online session."""
        machine = self.registry.get(session_id)
        if machine is None:
            return SendResult.NOT_CONNECTED
        return await machine.send_message(recipient, payload)

    async def send_text(self, session_id: str, phone: str, text: str) -> SendResult:
        """Send a text message to a phone number.

        Raises:
            MessageError: If the phone number or text is invalid.
        """
        recipient = recipient_address(phone, self._config.recipient_suffix)
        return await self.send_message(session_id, recipient, text_payload(text))

    async def send_media(
        self,
        session_id: str,
        phone: str,
        data_b64: str,
        mimetype: str,
        caption: Optional[str] = None,
    ) -> SendResult:
        """Send a base64-encoded image to a phone number.

        Raises:
            MessageError: If the phone number or media is invalid.
        """
        recipient = recipient_address(phone, self._config.recipient_suffix)
        payload = media_payload(decode_media(data_b64), mimetype, caption)
        return await self.send_message(session_id, recipient, payload)

    async def stop_session(self, session_id: str, logout: bool = False) -> bool:
        """Stop a session; it stays registered as TERMINATED.

        Returns:
            False if no session is registered under session_id.
        """
        machine = self.registry.get(session_id)
        if machine is None:
            return False
        await machine.stop(logout=logout)
        return True

    async def reset_session(self, session_id: str) -> None:
        """Log out, erase credentials and unregister.

        Call start_session() afterwards to pair again.
        """
        validate_session_id(session_id)
        await self.registry.reset(session_id)

    async def remove_session(self, session_id: str) -> bool:
        """Close and unregister, keeping credentials for a later start."""
        return await self.registry.remove(session_id)

    def list_session_ids(self) -> set[str]:
        return self.registry.list_ids()

    async def resume_all(self) -> list[str]:
        """Start every session that has stored credentials.

        Returns:
            IDs that were started.
        """
        session_ids = await self._credential_store.list_ids()
        logger.info(f"Resuming {len(session_ids)} stored sessions")

        started = []
        for session_id in session_ids:
            try:
                await self.registry.ensure(session_id)
                started.append(session_id)
            except Exception as e:
                logger.error(f"Failed to resume session {session_id}: {e}")
        return started

    async def shutdown(self) -> None:
        """Close all sessions without logging out."""
        logger.info(f"Closing {len(self.registry)} sessions")
        await self.registry.close_all()
