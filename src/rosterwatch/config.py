"""Configuration loading from environment variables and rosterwatch.toml."""

from __future__ import annotations

import os
import sys
from dataclasses import dataclass, field

if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib
from pathlib import Path

from rosterwatch.errors import ConfigError

_HOME_DIR = Path.home() / ".rosterwatch"
_CONFIG_FILENAME = "rosterwatch.toml"


@dataclass
class WatchConfig:
    """Snapshot directory settings."""

    directory: Path = Path("groups")
    extension: str = ".json"
    rescan_interval: int = 0  # seconds, 0 disables periodic rescans


@dataclass
class NotifierConfig:
    """Notification sink configuration."""

    webhook_url: str = ""
    role_to_ping: str = ""
    timeout: float = 10.0


@dataclass
class RosterConfig:
    """Top-level rosterwatch configuration."""

    watch: WatchConfig = field(default_factory=WatchConfig)
    notifier: NotifierConfig = field(default_factory=NotifierConfig)
    group_change_time: int = 5  # grace period in minutes
    state_dir: Path = _HOME_DIR / "state"
    pid_file: Path = _HOME_DIR / "rosterwatch.pid"
    log_level: str = "INFO"

    @property
    def grace_period(self) -> float:
        """Grace period in seconds."""
        return self.group_change_time * 60.0


def _to_int(name: str, value: object) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ConfigError(f"{name} must be an integer, got {value!r}")


def _to_float(name: str, value: object) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        raise ConfigError(f"{name} must be a number, got {value!r}")


def load_config(config_path: Path | None = None) -> RosterConfig:
    """Load configuration from environment variables and optional rosterwatch.toml.

    Priority: environment variables > rosterwatch.toml > defaults.
    """
    file_data: dict = {}
    if config_path and config_path.exists():
        file_data = tomllib.loads(config_path.read_text())
    else:
        # Search current dir and ~/.rosterwatch/
        for candidate in [Path.cwd() / _CONFIG_FILENAME, _HOME_DIR / _CONFIG_FILENAME]:
            if candidate.exists():
                file_data = tomllib.loads(candidate.read_text())
                break

    watch_data = file_data.get("watch", {})
    notifier_data = file_data.get("notifier", {})

    group_change_time = _to_int(
        "group_change_time",
        os.getenv("ROSTERWATCH_GROUP_CHANGE_TIME", file_data.get("group_change_time", 5)),
    )
    if group_change_time <= 0:
        raise ConfigError(f"group_change_time must be > 0, got {group_change_time}")

    rescan_interval = _to_int(
        "watch.rescan_interval",
        os.getenv("ROSTERWATCH_RESCAN", watch_data.get("rescan_interval", 0)),
    )

    config = RosterConfig(
        watch=WatchConfig(
            directory=Path(os.getenv("ROSTERWATCH_DIR", watch_data.get("directory", "groups"))),
            extension=watch_data.get("extension", ".json"),
            rescan_interval=rescan_interval,
        ),
        notifier=NotifierConfig(
            webhook_url=os.getenv("ROSTERWATCH_WEBHOOK_URL", notifier_data.get("webhook_url", "")),
            role_to_ping=str(os.getenv("ROSTERWATCH_ROLE", notifier_data.get("role_to_ping", ""))),
            timeout=_to_float("notifier.timeout", notifier_data.get("timeout", 10.0)),
        ),
        group_change_time=group_change_time,
        state_dir=Path(
            os.getenv("ROSTERWATCH_STATE_DIR", file_data.get("state_dir", str(_HOME_DIR / "state")))
        ).expanduser(),
        pid_file=Path(file_data.get("pid_file", str(_HOME_DIR / "rosterwatch.pid"))).expanduser(),
        log_level=os.getenv("ROSTERWATCH_LOG_LEVEL", file_data.get("log_level", "INFO")),
    )
    return config
