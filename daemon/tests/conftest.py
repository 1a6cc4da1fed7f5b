"""Pytest configuration and shared fixtures."""

import asyncio
import time
from typing import Any, Callable, Optional

import pytest
import pytest_asyncio

from paird.config import ReconnectConfig
from paird.credential_store import MemoryCredentialStore
from paird.events import Connected, CredentialsUpdated, Disconnected, PairingCodeIssued
from paird.reconnect import ReconnectScheduler
from paird.state_machine import SessionStateMachine

# Short enough to keep tests fast, long enough to observe the armed state
TEST_BASE_DELAY = 0.02


class FakeTransport:
    """Transport double that records calls and emits events on demand."""

    def __init__(self, session_id: str, credentials: Any, emit: Callable):
        self.session_id = session_id
        self.credentials = credentials
        self._emit = emit
        self.connect_calls = 0
        self.connect_error: Optional[Exception] = None
        self.connect_delay = 0.0
        self.send_error: Optional[Exception] = None
        self.send_delay = 0.0
        self.sent: list[tuple[str, Any]] = []
        self.closed = False
        self.logged_out = False

    async def connect(self) -> None:
        self.connect_calls += 1
        if self.connect_delay:
            await asyncio.sleep(self.connect_delay)
        if self.connect_error is not None:
            raise self.connect_error

    async def send(self, recipient: str, payload: Any) -> None:
        if self.send_delay:
            await asyncio.sleep(self.send_delay)
        if self.send_error is not None:
            raise self.send_error
        self.sent.append((recipient, payload))

    async def close(self) -> None:
        self.closed = True

    async def logout(self) -> None:
        self.logged_out = True

    # Event helpers

    def issue_code(self, code: str) -> None:
        self._emit(PairingCodeIssued(code))

    def open(self) -> None:
        self._emit(Connected())

    def drop(self, reason: Optional[int] = None, detail: Optional[str] = None) -> None:
        self._emit(Disconnected(reason=reason, detail=detail))

    def update_credentials(self, state: Any) -> None:
        self._emit(CredentialsUpdated(state))


class FakeTransportFactory:
    """Transport factory recording every transport it builds."""

    def __init__(self):
        self.transports: list[FakeTransport] = []
        self.error: Optional[Exception] = None
        self.connect_error: Optional[Exception] = None
        self.connect_delay = 0.0

    def __call__(self, session_id: str, credentials: Any, emit: Callable) -> FakeTransport:
        if self.error is not None:
            raise self.error
        transport = FakeTransport(session_id, credentials, emit)
        transport.connect_error = self.connect_error
        transport.connect_delay = self.connect_delay
        self.transports.append(transport)
        return transport

    def for_session(self, session_id: str) -> list[FakeTransport]:
        return [t for t in self.transports if t.session_id == session_id]

    @property
    def last(self) -> FakeTransport:
        return self.transports[-1]


async def _wait_until(predicate: Callable[[], bool], timeout: float = 1.0) -> None:
    """Poll predicate until true or fail after timeout."""
    deadline = time.monotonic() + timeout
    while not predicate():
        if time.monotonic() > deadline:
            raise AssertionError("Condition not met before timeout")
        await asyncio.sleep(0.005)


@pytest.fixture(autouse=True)
def reset_logging_state():
    """Reset logging state before each test."""
    from paird.logging import reset_logging

    reset_logging()
    yield
    reset_logging()


@pytest.fixture
def store():
    return MemoryCredentialStore()


@pytest.fixture
def factory():
    return FakeTransportFactory()


@pytest.fixture
def reconnect_config():
    return ReconnectConfig(base_delay=TEST_BASE_DELAY, multiplier=2.0, max_delay=0.1)


@pytest.fixture
def scheduler(reconnect_config):
    return ReconnectScheduler(config=reconnect_config)


@pytest_asyncio.fixture
async def make_machine(factory, store, scheduler):
    """Build machines that are closed automatically after the test."""
    created: list[SessionStateMachine] = []

    def _make(session_id: str = "alice", **kwargs) -> SessionStateMachine:
        kwargs.setdefault("transport_factory", factory)
        kwargs.setdefault("credential_store", store)
        kwargs.setdefault("scheduler", scheduler)
        machine = SessionStateMachine(session_id, **kwargs)
        created.append(machine)
        return machine

    yield _make

    for machine in created:
        await machine.close()


@pytest.fixture
def machine(make_machine):
    return make_machine()


@pytest.fixture
def wait_until():
    return _wait_until
