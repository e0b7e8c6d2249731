"""
Configuration parser for calsync.

Handles TOML file parsing and secure password retrieval via external programs.
"""

import tomllib
import subprocess
import os
import logging
from pathlib import Path
from dataclasses import dataclass, field
from typing import Optional

from .timezone_utils import DEFAULT_TIMEZONE


logger = logging.getLogger(__name__)

REMOTE_BACKENDS = ("caldav", "memory")


class ConfigError(Exception):
    """Raised for missing or invalid configuration."""


def run_password_program(password_program: str, password_key: str) -> str:
    """
    Retrieve a secret by running `password_program password_key`.

    Raises:
        ConfigError: If the program is missing, times out or fails.
    """
    try:
        result = subprocess.run(
            [password_program, password_key],
            capture_output=True,
            text=True,
            timeout=30
        )
    except subprocess.TimeoutExpired:
        raise ConfigError(f"Password program timed out for key '{password_key}'")
    except FileNotFoundError:
        raise ConfigError(f"Password program not found: {password_program}")

    if result.returncode != 0:
        raise ConfigError(f"Password program failed for key '{password_key}': {result.stderr.strip()}")
    return result.stdout.strip()


@dataclass
class Credentials:
    """Username plus a password given inline or looked up by key."""
    username: str = ""
    password_key: str = ""
    password: str = field(default="", repr=False)

    def get_password(self, password_program: str) -> str:
        """Return the inline password, or fetch it with the password program."""
        if not self.password and self.password_key:
            self.password = run_password_program(password_program, self.password_key)
        return self.password


@dataclass
class SourceConfig(Credentials):
    """Configuration for the read-only ICS feed."""
    url: str = ""
    timeout: int = 30  # Request timeout in seconds


@dataclass
class RemoteConfig(Credentials):
    """Configuration for the remote calendar."""
    backend: str = "caldav"
    url: str = ""
    calendar: str = ""  # Calendar display name; empty means the first calendar


@dataclass
class SyncConfig:
    """Configuration for reconciliation policy and the sync window."""
    default_timezone: str = DEFAULT_TIMEZONE
    match_tolerance_minutes: int = 30   # Max start drift for a summary+time match
    update_tolerance_minutes: int = 5   # Start/end drift tolerated without an update
    window_days: int = 30               # Days ahead of the window start
    window_past_days: int = 0           # Days before today where the window starts
    dry_run: bool = False


@dataclass
class Config:
    """Main configuration container for calsync."""

    password_program: str = "/usr/bin/pass"
    log_level: str = "INFO"
    source: SourceConfig = field(default_factory=SourceConfig)
    remote: RemoteConfig = field(default_factory=RemoteConfig)
    sync: SyncConfig = field(default_factory=SyncConfig)
    timezone_aliases: dict[str, str] = field(default_factory=dict)

    @classmethod
    def get_default_config_path(cls) -> Path:
        """Get the default configuration file path."""
        xdg_config = os.environ.get('XDG_CONFIG_HOME', os.path.expanduser('~/.config'))
        return Path(xdg_config) / 'calsync' / 'calsync.toml'

    @classmethod
    def load(cls, config_path: Optional[Path] = None) -> 'Config':
        """
        Load configuration from a TOML file.

        Args:
            config_path: File to read; defaults to get_default_config_path()

        Raises:
            FileNotFoundError: If the file does not exist.
            ConfigError: If the file is not valid TOML or misses required keys.
        """
        if config_path is None:
            config_path = cls.get_default_config_path()

        if not config_path.exists():
            raise FileNotFoundError(f"Configuration file not found: {config_path}")

        with open(config_path, 'rb') as f:
            try:
                data = tomllib.load(f)
            except tomllib.TOMLDecodeError as e:
                raise ConfigError(f"Invalid TOML in {config_path}: {e}") from e

        config = cls.from_dict(data)
        logger.debug("Loaded configuration from %s", config_path)
        return config

    @classmethod
    def from_dict(cls, data: dict) -> 'Config':
        """Build a Config from parsed TOML data and validate it."""
        general = data.get('General', {})
        source_data = data.get('Source', {})
        remote_data = data.get('Remote', {})
        sync_data = data.get('Sync', {})

        source = SourceConfig(
            url=source_data.get('url', ''),
            username=source_data.get('username', ''),
            password_key=source_data.get('password_key', ''),
            password=source_data.get('password', ''),
            timeout=source_data.get('timeout', SourceConfig.timeout),
        )

        remote = RemoteConfig(
            backend=remote_data.get('backend', RemoteConfig.backend),
            url=remote_data.get('url', ''),
            username=remote_data.get('username', ''),
            password_key=remote_data.get('password_key', ''),
            password=remote_data.get('password', ''),
            calendar=remote_data.get('calendar', ''),
        )

        sync = SyncConfig(
            default_timezone=sync_data.get('default_timezone', SyncConfig.default_timezone),
            match_tolerance_minutes=sync_data.get('match_tolerance_minutes', SyncConfig.match_tolerance_minutes),
            update_tolerance_minutes=sync_data.get('update_tolerance_minutes', SyncConfig.update_tolerance_minutes),
            window_days=sync_data.get('window_days', SyncConfig.window_days),
            window_past_days=sync_data.get('window_past_days', SyncConfig.window_past_days),
            dry_run=sync_data.get('dry_run', SyncConfig.dry_run),
        )

        config = cls(
            password_program=general.get('password_program', '/usr/bin/pass'),
            log_level=general.get('log_level', 'INFO'),
            source=source,
            remote=remote,
            sync=sync,
            timezone_aliases={str(k): str(v) for k, v in data.get('Timezones', {}).items()},
        )
        config.validate()
        return config

    def validate(self) -> None:
        """
        Check required keys and value ranges.

        Raises:
            ConfigError: On the first problem found.
        """
        if not self.source.url:
            raise ConfigError("[Source] url is required")
        if self.log_level.upper() not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ConfigError(f"[General] log_level {self.log_level!r} is not a logging level")
        if self.remote.backend.lower() not in REMOTE_BACKENDS:
            raise ConfigError(
                f"[Remote] backend must be one of {', '.join(REMOTE_BACKENDS)}, got {self.remote.backend!r}"
            )
        if self.remote.backend.lower() == "caldav" and not self.remote.url:
            raise ConfigError("[Remote] url is required for the caldav backend")
        if self.sync.match_tolerance_minutes < 0 or self.sync.update_tolerance_minutes < 0:
            raise ConfigError("[Sync] tolerances must not be negative")
        if self.sync.window_days <= 0:
            raise ConfigError("[Sync] window_days must be positive")
