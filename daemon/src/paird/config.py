"""Configuration management for paird."""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable

import yaml

from paird.errors import ConfigError


DEFAULT_TERMINAL_REAUTH = [401]
DEFAULT_TERMINAL_BLOCKED = [403, 405]


@dataclass
class ReconnectConfig:
    """Reconnect backoff configuration."""

    base_delay: float = 3.0  # seconds before the first retry
    multiplier: float = 2.0
    max_delay: float = 60.0
    max_attempts: int | None = None  # None = retry forever


@dataclass
class DisconnectConfig:
    """Overrides for the disconnect reason classification table."""

    terminal_reauth: list[int] = field(
        default_factory=lambda: DEFAULT_TERMINAL_REAUTH.copy()
    )
    terminal_blocked: list[int] = field(
        default_factory=lambda: DEFAULT_TERMINAL_BLOCKED.copy()
    )
    retryable: list[int] = field(default_factory=list)


@dataclass
class Config:
    """Daemon configuration."""

    log_level: str = "INFO"
    log_file: str | None = None
    sessions_dir: str = "~/.config/paird/sessions"
    lock_file: str = "~/.config/paird/daemon.lock"
    status_file: str = "~/.config/paird/status.json"
    transport: str | None = None  # "module:attr" transport factory
    auto_resume: bool = True
    show_pairing_codes: bool = True
    connect_timeout: float = 30.0
    send_timeout: float = 10.0
    recipient_suffix: str = "@s.whatsapp.net"
    reconnect: ReconnectConfig = field(default_factory=ReconnectConfig)
    disconnect: DisconnectConfig = field(default_factory=DisconnectConfig)

    def validate(self) -> None:
        """Check value ranges.

        Raises:
            ConfigError: If a delay or timeout is not positive.
        """
        if self.reconnect.base_delay <= 0:
            raise ConfigError("reconnect.base_delay must be positive")
        if self.reconnect.max_delay < self.reconnect.base_delay:
            raise ConfigError("reconnect.max_delay must be >= reconnect.base_delay")
        if self.reconnect.multiplier < 1.0:
            raise ConfigError("reconnect.multiplier must be >= 1.0")
        if self.reconnect.max_attempts is not None and self.reconnect.max_attempts < 1:
            raise ConfigError("reconnect.max_attempts must be at least 1")
        if self.connect_timeout <= 0:
            raise ConfigError("connect_timeout must be positive")
        if self.send_timeout <= 0:
            raise ConfigError("send_timeout must be positive")


def get_config_path(custom_path: Path | None = None) -> Path:
    """Get the configuration file path.

    Args:
        custom_path: Override path. If None, returns default.

    Returns:
        Path to config file.
    """
    if custom_path is not None:
        return custom_path
    return Path.home() / ".config" / "paird" / "config.yaml"


def _default_file_reader(path: Path) -> dict[str, Any] | None:
    """Default file reader that loads YAML from disk."""
    if not path.exists():
        return None
    try:
        content = path.read_text()
        if not content.strip():
            return None
        return yaml.safe_load(content)
    except yaml.YAMLError:
        return None


def load_config(
    path: Path | None = None,
    file_reader: Callable[[Path], dict[str, Any] | None] | None = None,
) -> Config:
    """Load configuration from file.

    Args:
        path: Path to config file. If None, uses default path.
        file_reader: Injectable file reader for testing.

    Returns:
        Config object with values from file or defaults.
    """
    config_path = get_config_path(path)
    reader = file_reader or _default_file_reader

    data = reader(config_path)

    if not isinstance(data, dict):
        return Config()

    # Parse reconnect section
    reconnect_data = data.get("reconnect") or {}
    reconnect_config = ReconnectConfig(
        base_delay=float(reconnect_data.get("base_delay", ReconnectConfig.base_delay)),
        multiplier=float(reconnect_data.get("multiplier", ReconnectConfig.multiplier)),
        max_delay=float(reconnect_data.get("max_delay", ReconnectConfig.max_delay)),
        max_attempts=reconnect_data.get("max_attempts", ReconnectConfig.max_attempts),
    )

    # Parse disconnect classification overrides
    disconnect_data = data.get("disconnect") or {}
    disconnect_config = DisconnectConfig(
        terminal_reauth=[
            int(code)
            for code in disconnect_data.get("terminal_reauth", DEFAULT_TERMINAL_REAUTH)
        ],
        terminal_blocked=[
            int(code)
            for code in disconnect_data.get("terminal_blocked", DEFAULT_TERMINAL_BLOCKED)
        ],
        retryable=[int(code) for code in disconnect_data.get("retryable", [])],
    )

    return Config(
        log_level=data.get("log_level", Config.log_level),
        log_file=data.get("log_file", Config.log_file),
        sessions_dir=data.get("sessions_dir", Config.sessions_dir),
        lock_file=data.get("lock_file", Config.lock_file),
        status_file=data.get("status_file", Config.status_file),
        transport=data.get("transport", Config.transport),
        auto_resume=data.get("auto_resume", Config.auto_resume),
        show_pairing_codes=data.get("show_pairing_codes", Config.show_pairing_codes),
        connect_timeout=float(data.get("connect_timeout", Config.connect_timeout)),
        send_timeout=float(data.get("send_timeout", Config.send_timeout)),
        recipient_suffix=data.get("recipient_suffix", Config.recipient_suffix),
        reconnect=reconnect_config,
        disconnect=disconnect_config,
    )
