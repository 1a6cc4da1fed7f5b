"""Main daemon orchestration - ties all components together."""

import asyncio
import importlib
import json
import logging
import os
import signal
from pathlib import Path
from typing import Any, Callable, Optional, Sequence

from paird.config import Config
from paird.credential_store import JsonCredentialStore
from paird.errors import ConfigError, InvalidSessionIdError
from paird.protocols import CredentialStoreProtocol, TransportFactory
from paird.qr import PairingCodeRenderer
from paird.session import SessionSnapshot, SessionState, validate_session_id
from paird.supervisor import Supervisor

logger = logging.getLogger(__name__)


class StartupError(Exception):
    """Error during daemon startup."""

    pass


def load_transport_factory(target: str) -> TransportFactory:
    """Resolve a "package.module:attribute" transport factory.

    Raises:
        StartupError: If the target is malformed or cannot be imported.
    """
    module_path, sep, attr = target.partition(":")
    if not sep or not module_path or not attr:
        raise StartupError(f"Invalid transport '{target}', expected 'module:attribute'")

    try:
        module = importlib.import_module(module_path)
    except ImportError as e:
        raise StartupError(f"Cannot import transport module {module_path}: {e}") from e

    factory = getattr(module, attr, None)
    if factory is None or not callable(factory):
        raise StartupError(f"Transport factory {target} not found or not callable")
    return factory


def write_status(path: Path, content: str) -> None:
    """Atomically replace the status file, readable by its owner only."""
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_suffix(".tmp")
    fd = os.open(str(tmp_path), os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    with os.fdopen(fd, "w") as f:
        f.write(content)
    os.replace(tmp_path, path)


def read_status(path: Path) -> Optional[dict[str, Any]]:
    """Status published by a running daemon, or None if unavailable."""
    try:
        data = json.loads(Path(path).expanduser().read_text())
    except (OSError, json.JSONDecodeError):
        return None
    return data if isinstance(data, dict) else None


class Daemon:
    """Long-running process hosting the Supervisor.

    Responsibilities:
    - Resolve the transport factory and credential store
    - Resume stored sessions and start requested new ones
    - Print pairing codes as terminal QR codes
    - Publish session snapshots to the status file
    - Handle graceful shutdown
    """

    def __init__(
        self,
        config: Config,
        transport_factory: Optional[TransportFactory] = None,
        credential_store: Optional[CredentialStoreProtocol] = None,
        pairing_output: Callable[[str], Any] = print,
        session_ids: Sequence[str] = (),
    ):
        """Initialize daemon.

        Args:
            config: Daemon configuration.
            transport_factory: Optional injected factory (for testing).
                Defaults to the one named by config.transport.
            credential_store: Optional injected store (for testing).
            pairing_output: Where rendered pairing codes are written.
            session_ids: Sessions to start after resuming stored ones.
                New IDs begin pairing; stored or running ones are left as is.
        """
        self._config = config
        self._transport_factory = transport_factory
        self._credential_store = credential_store
        self._pairing_output = pairing_output
        self._session_ids = list(session_ids)
        self._running = False
        self._shown_codes: dict[str, str] = {}
        self._snapshots: dict[str, dict[str, Any]] = {}
        self._status_path = Path(config.status_file).expanduser()
        self._status_dirty = False
        self._status_task: Optional[asyncio.Task] = None
        self.supervisor: Optional[Supervisor] = None

    async def start(self) -> None:
        """Start the daemon.

        Raises:
            StartupError: If configuration or the transport is unusable.
        """
        logger.info("Starting daemon...")

        try:
            self._config.validate()
        except ConfigError as e:
            raise StartupError(str(e)) from e

        for session_id in self._session_ids:
            try:
                validate_session_id(session_id)
            except InvalidSessionIdError as e:
                raise StartupError(str(e)) from e

        if self._transport_factory is None:
            if not self._config.transport:
                raise StartupError("No transport configured (set 'transport' in config)")
            self._transport_factory = load_transport_factory(self._config.transport)

        if self._credential_store is None:
            self._credential_store = JsonCredentialStore(Path(self._config.sessions_dir))

        self.supervisor = Supervisor(
            transport_factory=self._transport_factory,
            credential_store=self._credential_store,
            config=self._config,
            listener=self._on_session_changed,
        )

        if self._config.auto_resume:
            await self.supervisor.resume_all()

        for session_id in self._session_ids:
            status = await self.supervisor.start_session(session_id)
            logger.info(f"Session {session_id}: {status.value}")

        self._setup_signals()

        self._running = True
        logger.info("Daemon started successfully")

    async def run_forever(self) -> None:
        """Run daemon until shutdown signal."""
        if not self._running:
            await self.start()

        try:
            while self._running:
                await asyncio.sleep(1)
        except asyncio.CancelledError:
            pass
        finally:
            await self._shutdown()

    async def stop(self) -> None:
        """Stop the daemon gracefully."""
        self._running = False

    def _setup_signals(self) -> None:
        """Set up signal handlers for graceful shutdown."""
        loop = asyncio.get_running_loop()

        for sig in (signal.SIGTERM, signal.SIGINT):
            try:
                loop.add_signal_handler(
                    sig,
                    lambda: asyncio.create_task(self.stop()),
                )
            except (NotImplementedError, RuntimeError):
                # Not on the main thread or not supported on this platform
                logger.debug(f"Signal handler for {sig.name} not installed")

    def _on_session_changed(self, snapshot: SessionSnapshot) -> None:
        """Publish the snapshot and show new pairing codes once each."""
        self._snapshots[snapshot.session_id] = snapshot.to_dict()
        self._publish_status()

        code = snapshot.pending_pairing_code

        if code is None:
            self._shown_codes.pop(snapshot.session_id, None)
            return

        if (
            not self._config.show_pairing_codes
            or snapshot.state is not SessionState.AWAITING_AUTHENTICATION
            or self._shown_codes.get(snapshot.session_id) == code
        ):
            return

        self._shown_codes[snapshot.session_id] = code
        try:
            rendered = PairingCodeRenderer(code).to_terminal()
        except Exception as e:
            logger.warning(f"Could not render pairing code for {snapshot.session_id}: {e}")
            return
        self._pairing_output(f"Scan to pair session {snapshot.session_id}:\n{rendered}")

    def _publish_status(self) -> None:
        """Schedule a status file write; bursts collapse into one write."""
        self._status_dirty = True
        if self._status_task is None or self._status_task.done():
            self._status_task = asyncio.create_task(self._flush_status())

    async def _flush_status(self) -> None:
        while self._status_dirty:
            self._status_dirty = False
            registered = self.supervisor.list_session_ids() if self.supervisor else set()
            sessions = [
                snapshot
                for session_id, snapshot in sorted(self._snapshots.items())
                if session_id in registered
            ]
            content = json.dumps({"pid": os.getpid(), "sessions": sessions}, indent=2)
            try:
                await asyncio.to_thread(write_status, self._status_path, content)
            except OSError as e:
                logger.warning(f"Could not write status file {self._status_path}: {e}")

    async def _shutdown(self) -> None:
        """Perform graceful shutdown."""
        logger.info("Shutting down daemon...")

        if self.supervisor is not None:
            await self.supervisor.shutdown()

        if self._status_task is not None:
            await self._status_task
            self._status_task = None
        try:
            self._status_path.unlink()
        except FileNotFoundError:
            pass

        self._running = False
        logger.info("Daemon stopped")
