"""Tests for daemon orchestration module."""

import asyncio
import os
from pathlib import Path
from unittest.mock import Mock, patch

import pytest
import pytest_asyncio

from paird.config import Config, ReconnectConfig
from paird.credential_store import JsonCredentialStore
from paird.daemon import Daemon, StartupError, load_transport_factory, read_status
from paird.protocols import SessionStatus


@pytest.fixture
def config(tmp_path: Path) -> Config:
    """Config pointing at a temporary sessions directory."""
    return Config(
        sessions_dir=str(tmp_path / "sessions"),
        status_file=str(tmp_path / "status.json"),
    )


class TestLoadTransportFactory:
    """Tests for resolving config.transport."""

    def test_resolves_callable(self):
        from collections import OrderedDict

        assert load_transport_factory("collections:OrderedDict") is OrderedDict

    @pytest.mark.parametrize("target", ["collections", ":OrderedDict", "collections:"])
    def test_malformed(self, target):
        with pytest.raises(StartupError, match="expected 'module:attribute'"):
            load_transport_factory(target)

    def test_missing_module(self):
        with pytest.raises(StartupError, match="Cannot import"):
            load_transport_factory("no_such_module_xyz:create")

    def test_missing_or_uncallable_attribute(self):
        with pytest.raises(StartupError, match="not found or not callable"):
            load_transport_factory("collections:no_such_attr")
        with pytest.raises(StartupError, match="not found or not callable"):
            load_transport_factory("math:pi")


class TestDaemonStartup:
    """Tests for daemon startup."""

    @pytest.mark.asyncio
    async def test_no_transport_configured(self, config):
        daemon = Daemon(config)

        with pytest.raises(StartupError, match="No transport configured"):
            await daemon.start()

    @pytest.mark.asyncio
    async def test_invalid_config(self, config, factory):
        config.reconnect = ReconnectConfig(base_delay=-1)
        daemon = Daemon(config, transport_factory=factory)

        with pytest.raises(StartupError, match="base_delay"):
            await daemon.start()

    @pytest.mark.asyncio
    async def test_transport_loaded_from_config(self, config, factory):
        config.transport = "paird_test_transport:create"
        module = Mock(create=factory)

        with patch.dict("sys.modules", {"paird_test_transport": module}):
            daemon = Daemon(config)
            await daemon.start()

        try:
            await daemon.supervisor.start_session("alice")
            assert factory.last.session_id == "alice"
        finally:
            await daemon._shutdown()

    @pytest.mark.asyncio
    async def test_defaults_to_json_store(self, config, factory):
        daemon = Daemon(config, transport_factory=factory)
        await daemon.start()

        try:
            assert isinstance(daemon.supervisor._credential_store, JsonCredentialStore)
        finally:
            await daemon._shutdown()

    @pytest.mark.asyncio
    async def test_resumes_stored_sessions(self, config, factory, store):
        await store.save("alice", {"v": 1})
        daemon = Daemon(config, transport_factory=factory, credential_store=store)

        await daemon.start()

        try:
            assert daemon.supervisor.get_status("alice") is SessionStatus.CONNECTING
            assert factory.last.credentials == {"v": 1}
        finally:
            await daemon._shutdown()

    @pytest.mark.asyncio
    async def test_auto_resume_disabled(self, config, factory, store):
        await store.save("alice", {"v": 1})
        config.auto_resume = False
        daemon = Daemon(config, transport_factory=factory, credential_store=store)

        await daemon.start()

        try:
            assert factory.transports == []
        finally:
            await daemon._shutdown()


class TestPairingOutput:
    """Tests for printing pairing codes."""

    @pytest_asyncio.fixture
    async def started(self, config, factory, store):
        output = []
        daemon = Daemon(
            config,
            transport_factory=factory,
            credential_store=store,
            pairing_output=output.append,
        )
        await daemon.start()
        yield daemon, output
        await daemon._shutdown()

    @pytest.mark.asyncio
    async def test_code_printed_once(self, started, factory):
        daemon, output = started
        await daemon.supervisor.start_session("alice")

        factory.last.issue_code("CODE-1")
        factory.last.issue_code("CODE-1")
        await daemon.supervisor.registry.get("alice").wait_idle()

        assert len(output) == 1
        assert output[0].startswith("Scan to pair session alice:\n")

    @pytest.mark.asyncio
    async def test_new_code_printed_again(self, started, factory):
        daemon, output = started
        await daemon.supervisor.start_session("alice")

        factory.last.issue_code("CODE-1")
        factory.last.issue_code("CODE-2")
        await daemon.supervisor.registry.get("alice").wait_idle()

        assert len(output) == 2

    @pytest.mark.asyncio
    async def test_pairing_codes_hidden(self, config, factory, store):
        config.show_pairing_codes = False
        output = []
        daemon = Daemon(
            config, transport_factory=factory, credential_store=store, pairing_output=output.append
        )
        await daemon.start()

        try:
            await daemon.supervisor.start_session("alice")
            factory.last.issue_code("CODE-1")
            await daemon.supervisor.registry.get("alice").wait_idle()
            assert output == []
        finally:
            await daemon._shutdown()


class TestDaemonShutdown:
    """Tests for daemon shutdown."""

    @pytest.mark.asyncio
    async def test_run_forever_exits_after_stop(self, config, factory, store):
        daemon = Daemon(config, transport_factory=factory, credential_store=store)
        await daemon.start()
        await daemon.supervisor.start_session("alice")

        runner = asyncio.create_task(daemon.run_forever())
        await asyncio.sleep(0)
        await daemon.stop()
        await asyncio.wait_for(runner, timeout=3)

        assert daemon.supervisor.list_session_ids() == set()
        assert factory.last.closed
        assert not factory.last.logged_out

    @pytest.mark.asyncio
    async def test_shutdown_before_start(self, config):
        await Daemon(config)._shutdown()


class TestRequestedSessions:
    """Tests for sessions named on the command line."""

    @pytest.mark.asyncio
    async def test_new_session_starts_pairing(self, config, factory, store):
        daemon = Daemon(
            config, transport_factory=factory, credential_store=store, session_ids=["alice"]
        )

        await daemon.start()

        try:
            assert daemon.supervisor.get_status("alice") is SessionStatus.CONNECTING
            assert factory.last.credentials is None
        finally:
            await daemon._shutdown()

    @pytest.mark.asyncio
    async def test_resumed_session_not_started_twice(self, config, factory, store):
        await store.save("alice", {"v": 1})
        daemon = Daemon(
            config,
            transport_factory=factory,
            credential_store=store,
            session_ids=["alice", "bob"],
        )

        await daemon.start()

        try:
            assert [t.session_id for t in factory.transports] == ["alice", "bob"]
        finally:
            await daemon._shutdown()

    @pytest.mark.asyncio
    async def test_invalid_session_id(self, config, factory, store):
        daemon = Daemon(
            config, transport_factory=factory, credential_store=store, session_ids=["../x"]
        )

        with pytest.raises(StartupError, match="Invalid session ID"):
            await daemon.start()

        assert factory.transports == []


class TestStatusFile:
    """Tests for the published session status."""

    @pytest.mark.asyncio
    async def test_snapshots_published(self, config, factory, store, wait_until):
        daemon = Daemon(
            config, transport_factory=factory, credential_store=store, session_ids=["alice"]
        )
        await daemon.start()
        status_path = Path(config.status_file)

        def published_state():
            data = read_status(status_path)
            if not data or not data["sessions"]:
                return None
            return data["sessions"][0]["state"]

        try:
            factory.last.issue_code("CODE-1")
            await wait_until(lambda: published_state() == "awaiting_authentication")

            data = read_status(status_path)
            assert data["pid"] == os.getpid()
            assert data["sessions"][0]["session_id"] == "alice"
            assert data["sessions"][0]["pending_pairing_code"] == "CODE-1"
        finally:
            await daemon._shutdown()

    @pytest.mark.asyncio
    async def test_removed_on_shutdown(self, config, factory, store, wait_until):
        daemon = Daemon(
            config, transport_factory=factory, credential_store=store, session_ids=["alice"]
        )
        await daemon.start()
        status_path = Path(config.status_file)
        await wait_until(status_path.exists)

        await daemon._shutdown()

        assert not status_path.exists()

    def test_read_status_missing_or_garbage(self, tmp_path):
        path = tmp_path / "status.json"
        assert read_status(path) is None

        path.write_text("[1, 2]")
        assert read_status(path) is None

        path.write_text("{broken")
        assert read_status(path) is None
