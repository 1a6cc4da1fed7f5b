"""Per-session lifecycle state machine.

Every mutation of a Session happens here, one transition at a time:

    IDLE --start()--> CONNECTING
    CONNECTING --pairing code--> AWAITING_AUTHENTICATION
    CONNECTING / AWAITING_AUTHENTICATION --connected--> ONLINE
    AWAITING_AUTHENTICATION --retryable disconnect--> CONNECTING
    ONLINE --retryable disconnect--> DISRUPTED --retry timer--> CONNECTING
    any --terminal disconnect / stop()--> TERMINATED

Transport events are posted synchronously into an inbox and applied by a
single worker task under the session lock, so they are processed in
arrival order and never interleave with a command. Each transport gets a
generation number; once a transport is released, anything it still emits
is dropped.

Usage:
    machine = SessionStateMachine(
        "alice",
        transport_factory=factory,
        credential_store=store,
        scheduler=ReconnectScheduler(),
    )
    await machine.start()
    ...
    result = await machine.send_message("123@s.whatsapp.net", {"text": "hi"})
    ...
    await machine.close()
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Optional

from paird.disconnect import DisconnectClass, describe_reason
from paird.errors import TransportError
from paird.events import (
    Connected,
    CredentialsUpdated,
    Disconnected,
    EventSink,
    PairingCodeIssued,
    TransportEvent,
)
from paird.logging import session_logger
from paird.protocols import (
    CredentialStoreProtocol,
    SendResult,
    SessionListener,
    TransportClientProtocol,
    TransportFactory,
)
from paird.reconnect import ReconnectScheduler, RetryTimer
from paird.session import Session, SessionSnapshot, SessionState, TerminalKind

logger = logging.getLogger(__name__)


VALID_TRANSITIONS: dict[SessionState, set[SessionState]] = {
    SessionState.IDLE: {SessionState.CONNECTING, SessionState.TERMINATED},
    SessionState.CONNECTING: {
        SessionState.CONNECTING,
        SessionState.AWAITING_AUTHENTICATION,
        SessionState.ONLINE,
        SessionState.TERMINATED,
    },
    SessionState.AWAITING_AUTHENTICATION: {
        SessionState.AWAITING_AUTHENTICATION,
        SessionState.CONNECTING,
        SessionState.ONLINE,
        SessionState.TERMINATED,
    },
    SessionState.ONLINE: {SessionState.DISRUPTED, SessionState.TERMINATED},
    SessionState.DISRUPTED: {SessionState.CONNECTING, SessionState.TERMINATED},
    SessionState.TERMINATED: set(),
}

# States in which a transport may be open
_UNAUTHENTICATED = (SessionState.CONNECTING, SessionState.AWAITING_AUTHENTICATION)
_LOGOUT_STATES = (SessionState.ONLINE, SessionState.AWAITING_AUTHENTICATION)


@dataclass(frozen=True)
class _RetryDue:
    """Posted by an armed retry timer when it fires."""

    timer: RetryTimer


class SessionStateMachine:
    """Owns one session: its transport, retry timer and state."""

    def __init__(
        self,
        session_id: str,
        transport_factory: TransportFactory,
        credential_store: CredentialStoreProtocol,
        scheduler: ReconnectScheduler,
        connect_timeout: float = 30.0,
        send_timeout: float = 10.0,
        listener: Optional[SessionListener] = None,
    ):
        """Initialize state machine.

        Args:
            session_id: Session this machine owns.
            transport_factory: Builds one transport per connection attempt.
            credential_store: Persistence for authentication state.
            scheduler: Shared reconnect policy.
            connect_timeout: Seconds allowed for transport.connect().
            send_timeout: Seconds allowed for transport.send().
            listener: Optional observer called with a snapshot after each
                transition.
        """
        self.session = Session(session_id=session_id)
        self._transport_factory = transport_factory
        self._credential_store = credential_store
        self._scheduler = scheduler
        self._connect_timeout = connect_timeout
        self._send_timeout = send_timeout
        self._listener = listener
        self._log = session_logger(logger, session_id)

        self._lock = asyncio.Lock()
        self._inbox: asyncio.Queue[tuple[Optional[int], Any]] = asyncio.Queue()
        self._worker: Optional[asyncio.Task] = None

        # Owned exclusively by this machine
        self._transport: Optional[TransportClientProtocol] = None
        self._generation = 0
        self._connect_task: Optional[asyncio.Task] = None
        self._retry_timer: Optional[RetryTimer] = None

    @property
    def session_id(self) -> str:
        return self.session.session_id

    @property
    def state(self) -> SessionState:
        return self.session.state

    @property
    def retry_pending(self) -> bool:
        """True while a reconnect timer is armed."""
        return self._retry_timer is not None and self._retry_timer.armed

    def snapshot(self) -> SessionSnapshot:
        return self.session.snapshot()

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Leave IDLE and open the first transport. No-op otherwise."""
        async with self._lock:
            if self.session.state is not SessionState.IDLE:
                self._log.debug(f"start() ignored in {self.session.state.value}")
                return

            self._ensure_worker()
            self._set_state(SessionState.CONNECTING)
            await self._open_transport()

    async def stop(self, logout: bool = False) -> None:
        """Tear the session down and move to TERMINATED.

        Args:
            logout: Unlink the device before closing, if the session is
                ONLINE or AWAITING_AUTHENTICATION.
        """
        # Disarm before queueing on the lock so nothing fires meanwhile
        self._cancel_retry()
        self._cancel_connect()

        async with self._lock:
            if self.session.state is SessionState.TERMINATED:
                return

            transport = self._transport
            if logout and transport is not None and self.session.state in _LOGOUT_STATES:
                try:
                    await transport.logout()
                    self._log.info("Logged out")
                except Exception as e:
                    self._log.warning(f"Logout failed, closing anyway: {e}")

            await self._release_transport()
            self._terminate(TerminalKind.STOPPED)

    async def reset(self) -> None:
        """Log out, close and erase persisted credentials.

        Raises:
            CredentialStoreError: If the credentials could not be deleted.
        """
        await self.stop(logout=True)
        await self._credential_store.delete(self.session_id)
        self._log.info("Credentials deleted")

    async def close(self) -> None:
        """Stop without logging out and shut down the inbox worker."""
        await self.stop(logout=False)

        worker = self._worker
        self._worker = None
        if worker is not None:
            worker.cancel()
            try:
                await worker
            except asyncio.CancelledError:
                pass

    async def send_message(self, recipient: str, payload: Any) -> SendResult:
        """Send through the live transport.

        Never queues: anything other than ONLINE is NOT_CONNECTED and the
        transport is not touched.
        """
        transport = self._transport
        if self.session.state is not SessionState.ONLINE or transport is None:
            return SendResult.NOT_CONNECTED

        try:
            await asyncio.wait_for(
                transport.send(recipient, payload), timeout=self._send_timeout
            )
        except asyncio.TimeoutError:
            self._log.warning(f"Send to {recipient} timed out")
            return SendResult.TRANSPORT_ERROR
        except Exception as e:
            self._log.warning(f"Send to {recipient} failed: {e}")
            return SendResult.TRANSPORT_ERROR

        return SendResult.OK

    async def wait_idle(self) -> None:
        """Wait until no connect attempt is running and the inbox is empty.

        Armed retry timers are not waited for.
        """
        while True:
            task = self._connect_task
            if task is not None and not task.done():
                await asyncio.wait({task})
                continue

            await self._inbox.join()

            task = self._connect_task
            if (task is None or task.done()) and self._inbox.empty():
                return

    # ------------------------------------------------------------------
    # Event intake
    # ------------------------------------------------------------------

    def _sink(self, generation: int) -> EventSink:
        def emit(event: TransportEvent) -> None:
            self._inbox.put_nowait((generation, event))

        return emit

    def _on_timer_fired(self, timer: RetryTimer) -> None:
        self._inbox.put_nowait((None, _RetryDue(timer)))

    def _ensure_worker(self) -> None:
        if self._worker is None:
            self._worker = asyncio.create_task(
                self._run_inbox(), name=f"paird-session-{self.session_id}"
            )

    async def _run_inbox(self) -> None:
        while True:
            generation, event = await self._inbox.get()
            try:
                async with self._lock:
                    try:
                        await self._apply(generation, event)
                    except Exception:
                        self._log.exception(f"Failed to apply {type(event).__name__}")
                        self._recover()
            finally:
                self._inbox.task_done()

    def _recover(self) -> None:
        """Put the session back on a retry path after a failed transition.

        A session that is neither connected nor waiting on a timer would
        otherwise never be touched again.
        """
        state = self.session.state
        if state is SessionState.TERMINATED or self._transport is not None or self.retry_pending:
            return

        delay = self._scheduler.config.max_delay
        try:
            if state is SessionState.ONLINE:
                self._set_state(SessionState.DISRUPTED)
            elif state is SessionState.AWAITING_AUTHENTICATION:
                self._set_state(SessionState.CONNECTING)
            self._arm_retry(delay)
        except Exception:
            self._log.exception("Recovery failed; terminating")
            self._terminate(TerminalKind.RETRIES_EXHAUSTED)
            return
        self._log.warning(f"Recovered; reconnecting in {delay:.1f}s")

    async def _apply(self, generation: Optional[int], event: Any) -> None:
        if isinstance(event, _RetryDue):
            await self._on_retry_due(event.timer)
            return

        if generation != self._generation or self.session.state is SessionState.TERMINATED:
            self._log.debug(f"Ignoring {type(event).__name__} from released transport")
            return

        if isinstance(event, PairingCodeIssued):
            self._on_pairing_code(event)
        elif isinstance(event, Connected):
            self._on_connected()
        elif isinstance(event, CredentialsUpdated):
            await self._on_credentials_updated(event)
        elif isinstance(event, Disconnected):
            await self._on_disconnected(event)
        else:
            self._log.warning(f"Unknown transport event: {event!r}")

    # ------------------------------------------------------------------
    # Transitions (lock held)
    # ------------------------------------------------------------------

    def _on_pairing_code(self, event: PairingCodeIssued) -> None:
        if self.session.state not in _UNAUTHENTICATED:
            self._log.debug(f"Pairing code ignored in {self.session.state.value}")
            return

        self.session.pending_pairing_code = event.code
        self._log.info("Pairing code issued")
        self._set_state(SessionState.AWAITING_AUTHENTICATION)

    def _on_connected(self) -> None:
        if self.session.state not in _UNAUTHENTICATED:
            self._log.debug(f"Connected ignored in {self.session.state.value}")
            return

        self.session.pending_pairing_code = None
        self.session.reconnect_attempt = 0
        self.session.last_disconnect_reason = None
        self.session.last_disconnect_detail = None
        self.session.connected_at = time.time()
        self._set_state(SessionState.ONLINE)

    async def _on_credentials_updated(self, event: CredentialsUpdated) -> None:
        try:
            await self._credential_store.save(self.session_id, event.state)
        except Exception as e:
            self._log.error(f"Failed to persist credentials: {e}")

    async def _on_disconnected(self, event: Disconnected) -> None:
        previous = self.session.state
        self.session.last_disconnect_reason = event.reason
        self.session.last_disconnect_detail = event.detail

        await self._release_transport()

        klass = self._scheduler.policy.classify(event.reason)
        reason = describe_reason(event.reason)

        if klass is DisconnectClass.TERMINAL_REAUTH:
            self._log.warning(f"Logged out ({reason}); reset and pair again")
            self._terminate(TerminalKind.LOGGED_OUT)
            return

        if klass is DisconnectClass.TERMINAL_BLOCKED:
            self._log.error(
                f"Connection rejected by server ({reason}); "
                "operator reset required, rescanning will not help"
            )
            self._terminate(TerminalKind.BLOCKED)
            return

        self.session.reconnect_attempt += 1
        attempt = self.session.reconnect_attempt
        delay = self._scheduler.delay_for(attempt, event.reason)
        if delay is None:
            self._log.error(f"Giving up after {attempt - 1} reconnect attempts ({reason})")
            self._terminate(TerminalKind.RETRIES_EXHAUSTED)
            return

        self._log.info(f"Disconnected ({reason}); reconnecting in {delay:.1f}s (attempt {attempt})")
        self._arm_retry(delay)
        if previous is SessionState.ONLINE:
            self._set_state(SessionState.DISRUPTED)
        else:
            self._set_state(SessionState.CONNECTING)

    async def _on_retry_due(self, timer: RetryTimer) -> None:
        if timer is not self._retry_timer:
            return
        self._retry_timer = None

        if (
            self.session.state not in (SessionState.DISRUPTED, SessionState.CONNECTING)
            or self._transport is not None
        ):
            return

        self._set_state(SessionState.CONNECTING)
        await self._open_transport()

    async def _open_transport(self) -> None:
        """Load credentials, build a transport and start connecting it.

        Collaborator failures are handled as a disconnect with an unknown
        reason, so the session lands in a retry or terminal state.
        """
        self._generation += 1
        generation = self._generation

        try:
            credentials = await self._credential_store.load(self.session_id)
            transport = self._transport_factory(
                self.session_id, credentials, self._sink(generation)
            )
        except Exception as e:
            self._log.warning(f"Could not open transport: {e}")
            await self._on_disconnected(Disconnected(reason=None, detail=str(e)))
            return

        self._transport = transport
        self._log.debug(
            f"Opening transport (generation {generation}, "
            f"{'resuming' if credentials is not None else 'new pairing'})"
        )
        self._connect_task = asyncio.create_task(self._connect(transport, generation))

    async def _connect(self, transport: TransportClientProtocol, generation: int) -> None:
        try:
            await asyncio.wait_for(transport.connect(), timeout=self._connect_timeout)
        except asyncio.TimeoutError:
            self._inbox.put_nowait(
                (generation, Disconnected(reason=None, detail="connect timed out"))
            )
        except asyncio.CancelledError:
            raise
        except TransportError as e:
            self._inbox.put_nowait((generation, Disconnected(reason=e.reason, detail=str(e))))
        except Exception as e:
            self._inbox.put_nowait((generation, Disconnected(reason=None, detail=str(e))))

    async def _release_transport(self) -> None:
        """Close and forget the current transport."""
        transport = self._transport
        self._transport = None
        self._generation += 1
        self._cancel_connect()

        if transport is None:
            return
        try:
            await transport.close()
        except Exception as e:
            self._log.warning(f"Error closing transport: {e}")

    def _arm_retry(self, delay: float) -> None:
        self._cancel_retry()
        self._retry_timer = self._scheduler.arm(delay, self._on_timer_fired)

    def _cancel_retry(self) -> None:
        timer = self._retry_timer
        self._retry_timer = None
        if timer is not None and timer.cancel():
            self._log.debug("Pending reconnect cancelled")

    def _cancel_connect(self) -> None:
        task = self._connect_task
        self._connect_task = None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()

    def _terminate(self, kind: TerminalKind) -> None:
        self._cancel_retry()
        self._cancel_connect()
        self.session.pending_pairing_code = None
        self.session.terminal_kind = kind
        self._set_state(SessionState.TERMINATED)

    def _set_state(self, new_state: SessionState) -> None:
        """Move to new_state, validating against VALID_TRANSITIONS.

        Raises:
            ValueError: If the transition is not allowed.
        """
        old_state = self.session.state
        if new_state not in VALID_TRANSITIONS[old_state]:
            raise ValueError(f"Invalid transition: {old_state} -> {new_state}")

        self.session.state = new_state
        self.session.updated_at = time.time()
        if old_state is not new_state:
            self._log.info(f"{old_state.value} -> {new_state.value}")

        if self._listener is not None:
            try:
                self._listener(self.session.snapshot())
            except Exception as e:
                self._log.warning(f"Session listener failed: {e}")
