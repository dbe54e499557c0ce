"""
Runtime settings for hingectl.

Settings come from defaults in ``core``, then environment variables, then
command line flags (applied by the CLI on top of ``Settings.from_env()``).
"""

import os
import platform
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping, Optional, Tuple

from .core import DEFAULT_CONNECT_TIMEOUT, DEFAULT_SCAN_DURATION
from .errors import ConfigError

ENV_SIMULATE = "HINGECTL_SIMULATE"
ENV_CHAR_UUIDS = "HINGECTL_CHAR_UUIDS"
ENV_SERVICE_UUIDS = "HINGECTL_SERVICE_UUIDS"
ENV_CONNECT_TIMEOUT = "HINGECTL_CONNECT_TIMEOUT"
ENV_LABEL_FILE = "HINGECTL_LABEL_FILE"

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off", ""}


def default_label_file() -> Path:
    """Get the standard data file location for device labels."""
    # Check XDG_DATA_HOME first (Linux/Unix standard)
    data_dir = os.environ.get("XDG_DATA_HOME")
    if data_dir:
        return Path(data_dir) / "hingectl" / "labels.json"

    system = platform.system()
    if system == "Darwin":
        base = Path.home() / "Library" / "Application Support"
    elif system == "Windows":
        base = Path(
            os.environ.get("LOCALAPPDATA")
            or os.environ.get("APPDATA", str(Path.home() / "AppData" / "Roaming"))
        )
    else:
        base = Path.home() / ".local" / "share"
    return base / "hingectl" / "labels.json"


def _parse_bool(name: str, raw: str) -> bool:
    value = raw.strip().lower()
    if value in _TRUE_VALUES:
        return True
    if value in _FALSE_VALUES:
        return False
    raise ConfigError(f"{name} must be a boolean, got {raw!r}")


def _parse_uuids(raw: str) -> Tuple[str, ...]:
    return tuple(part.strip().lower() for part in raw.split(",") if part.strip())


def _parse_positive_float(name: str, raw: str) -> float:
    try:
        value = float(raw)
    except ValueError:
        raise ConfigError(f"{name} must be a number, got {raw!r}") from None
    if value <= 0:
        raise ConfigError(f"{name} must be positive, got {value}")
    return value


@dataclass
class Settings:
    """Configuration for building an ActuatorController and its console."""

    simulate: bool = False
    preferred_characteristics: Tuple[str, ...] = ()
    service_filter: Tuple[str, ...] = ()
    connect_timeout: float = DEFAULT_CONNECT_TIMEOUT
    scan_duration: float = DEFAULT_SCAN_DURATION
    label_file: Path = field(default_factory=default_label_file)

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Settings":
        """Build settings from environment variables.

        Args:
            environ: Mapping to read instead of ``os.environ``

        Returns:
            Settings with environment overrides applied

        Raises:
            ConfigError: If a variable holds an invalid value
        """
        env = os.environ if environ is None else environ
        settings = cls()

        if ENV_SIMULATE in env:
            settings.simulate = _parse_bool(ENV_SIMULATE, env[ENV_SIMULATE])
        if ENV_CHAR_UUIDS in env:
            settings.preferred_characteristics = _parse_uuids(env[ENV_CHAR_UUIDS])
        if ENV_SERVICE_UUIDS in env:
            settings.service_filter = _parse_uuids(env[ENV_SERVICE_UUIDS])
        if ENV_CONNECT_TIMEOUT in env:
            settings.connect_timeout = _parse_positive_float(
                ENV_CONNECT_TIMEOUT, env[ENV_CONNECT_TIMEOUT]
            )
        if env.get(ENV_LABEL_FILE):
            settings.label_file = Path(env[ENV_LABEL_FILE]).expanduser()

        return settings
