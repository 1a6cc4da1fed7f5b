"""Tests for logging module."""

import logging
import re

from paird.config import Config
from paird.logging import SessionLogAdapter, session_logger, setup_logging


class TestSetupLogging:
    """Test logging setup."""

    def test_setup_logging_returns_logger(self):
        """Setup returns the package logger."""
        logger = setup_logging(Config())

        assert isinstance(logger, logging.Logger)
        assert logger.name == "paird"

    def test_setup_logging_creates_log_file(self, tmp_path):
        log_file = tmp_path / "logs" / "paird.log"

        logger = setup_logging(Config(log_file=str(log_file)))
        logger.info("test message")

        assert log_file.exists()
        assert "test message" in log_file.read_text()

    def test_log_levels_respected(self, tmp_path):
        """Only logs at configured level and above."""
        log_file = tmp_path / "test.log"

        logger = setup_logging(Config(log_file=str(log_file), log_level="WARNING"))
        logger.info("quiet")
        logger.warning("loud")

        content = log_file.read_text()
        assert "quiet" not in content
        assert "loud" in content

    def test_log_format(self, tmp_path):
        """Records look like '2025-01-27 10:30:45 [INFO] message'."""
        log_file = tmp_path / "test.log"

        logger = setup_logging(Config(log_file=str(log_file)))
        logger.info("formatted")

        line = log_file.read_text().strip()
        assert re.match(r"^\d{4}-\d{2}-\d{2} \d{2}:\d{2}:\d{2} \[INFO\] formatted$", line)

    def test_setup_is_idempotent(self):
        first = setup_logging(Config())
        second = setup_logging(Config(log_level="DEBUG"))

        assert first is second
        assert len(first.handlers) == 1

    def test_module_loggers_reach_file(self, tmp_path):
        log_file = tmp_path / "test.log"
        setup_logging(Config(log_file=str(log_file)))

        logging.getLogger("paird.state_machine").info("from module")

        assert "from module" in log_file.read_text()


class TestSessionLogger:
    """Test the per-session adapter."""

    def test_prefixes_session_id(self, caplog):
        log = session_logger(logging.getLogger("paird.test"), "alice")

        with caplog.at_level(logging.INFO):
            log.info("connecting -> online")

        assert "[session alice] connecting -> online" in caplog.text

    def test_adapter_type(self):
        log = session_logger(logging.getLogger("paird.test"), "bob")

        assert isinstance(log, SessionLogAdapter)
        assert log.extra == {"session_id": "bob"}
