"""Exporter configuration.

Settings come from built-in defaults, then an optional TOML file, then the
environment. The panel URL and admin credentials are required.

Environment variables:
    URL                  Panel base URL (required)
    USERNAME             Admin username (required)
    PASSWORD             Admin password (required)
    UPDATE_INTERVAL      Seconds between refresh cycles (default 60)
    EXPORTER_HOST        Bind address of the scrape endpoint (default 0.0.0.0)
    EXPORTER_PORT        Port of the scrape endpoint (default 8050)
    REQUEST_TIMEOUT      Per-request timeout in seconds (default 10)
    LOG_LEVEL            Logging level (default INFO)
    MARZBAN_EXPORTER_CONFIG  Path to an optional TOML file

Example marzban-exporter.toml:
    [exporter]
    url = "https://panel.example.com"
    update_interval = 30
    port = 9101
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping

try:
    import tomllib as tomli  # Python 3.11+ stdlib
except ImportError:
    import tomli  # Backport for older Python

from marzban_exporter.errors import ConfigurationError

CONFIG_PATH_ENV = "MARZBAN_EXPORTER_CONFIG"

REQUIRED_VARIABLES = ("URL", "USERNAME", "PASSWORD")

# Environment variable -> (config field, type)
ENV_FIELDS: dict[str, tuple[str, type]] = {
    "URL": ("url", str),
    "USERNAME": ("username", str),
    "PASSWORD": ("password", str),
    "UPDATE_INTERVAL": ("update_interval", float),
    "EXPORTER_HOST": ("host", str),
    "EXPORTER_PORT": ("port", int),
    "REQUEST_TIMEOUT": ("request_timeout", float),
    "LOG_LEVEL": ("log_level", str),
}


@dataclass(frozen=True)
class ExporterConfig:
    """Settings read once at startup."""

    url: str
    username: str
    password: str
    update_interval: float = 60.0
    host: str = "0.0.0.0"
    port: int = 8050
    request_timeout: float = 10.0
    log_level: str = "INFO"

    def __repr__(self) -> str:
        # Keep the password out of logs and tracebacks
        return (
            f"ExporterConfig(url={self.url!r}, username={self.username!r}, "
            f"password='***', update_interval={self.update_interval}, "
            f"host={self.host!r}, port={self.port}, "
            f"request_timeout={self.request_timeout}, log_level={self.log_level!r})"
        )


def load_config(
    environ: Mapping[str, str] | None = None,
    config_path: Path | None = None,
) -> ExporterConfig:
    """Load configuration from an optional TOML file and the environment.

    Args:
        environ: Environment mapping. Defaults to os.environ.
        config_path: TOML file to read. Defaults to $MARZBAN_EXPORTER_CONFIG,
                     or no file.

    Returns:
        ExporterConfig with the merged values.

    Raises:
        ConfigurationError: If a required value is missing or a value
                            cannot be parsed.
    """
    if environ is None:
        environ = os.environ

    if config_path is None and environ.get(CONFIG_PATH_ENV):
        config_path = Path(environ[CONFIG_PATH_ENV])

    values: dict[str, Any] = {}
    if config_path is not None:
        values.update(_read_config_file(config_path))

    for variable, (name, kind) in ENV_FIELDS.items():
        raw = environ.get(variable)
        if raw is None or raw == "":
            continue
        values[name] = _convert(variable, raw, kind)

    for variable in REQUIRED_VARIABLES:
        name = ENV_FIELDS[variable][0]
        if not values.get(name):
            raise ConfigurationError(variable)

    config = ExporterConfig(**values)
    validate_config(config)
    return config


def _read_config_file(config_path: Path) -> dict[str, Any]:
    """Read the [exporter] table of a TOML file."""
    if not config_path.exists():
        raise ConfigurationError(
            CONFIG_PATH_ENV, f"Config file {config_path} does not exist"
        )

    try:
        with open(config_path, "rb") as f:
            data = tomli.load(f)
    except tomli.TOMLDecodeError as e:
        raise ConfigurationError(
            CONFIG_PATH_ENV, f"Config file {config_path} is not valid TOML: {e}"
        ) from e

    section = data.get("exporter", {})
    if not isinstance(section, dict):
        raise ConfigurationError(
            CONFIG_PATH_ENV, f"[exporter] in {config_path} must be a table"
        )
    known = {name: kind for name, kind in ENV_FIELDS.values()}
    values: dict[str, Any] = {}

    for key, value in section.items():
        if key not in known:
            raise ConfigurationError(key, f"Unknown setting '{key}' in {config_path}")
        values[key] = _convert(key, value, known[key])

    return values


def _convert(variable: str, raw: Any, kind: type) -> Any:
    try:
        return kind(raw)
    except (TypeError, ValueError) as e:
        raise ConfigurationError(
            variable, f"{variable} must be a valid {kind.__name__}, got {raw!r}"
        ) from e


def validate_config(config: ExporterConfig) -> None:
    """Check value ranges, raising ConfigurationError on the first violation."""
    if config.update_interval <= 0:
        raise ConfigurationError(
            "UPDATE_INTERVAL", "UPDATE_INTERVAL must be a positive number of seconds"
        )
    if config.request_timeout <= 0:
        raise ConfigurationError(
            "REQUEST_TIMEOUT", "REQUEST_TIMEOUT must be a positive number of seconds"
        )
    if not 0 < config.port < 65536:
        raise ConfigurationError("EXPORTER_PORT", f"Invalid port: {config.port}")
    if not config.url.startswith(("http://", "https://")):
        raise ConfigurationError("URL", f"URL must start with http:// or https://, got {config.url!r}")
