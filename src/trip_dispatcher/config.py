"""Dispatcher configuration loading and validation.

Reads a ``dispatcher.toml`` file, resolves ``${VAR}`` references from the
environment, and returns a validated ``DispatcherConfig`` dataclass.

Example::

    [dispatcher]
    name = "trips"
    timezone = "America/Sao_Paulo"
    sweep_cron = "* * * * * */30"

    [dispatcher.inbound]
    worker_count = 4

    [store]
    type = "postgres"
    db_name = "trips"

    [channel]
    type = "whatsapp"
    base_url = "http://localhost:3000"
    api_key = "${WHATSAPP_API_KEY}"
"""

from __future__ import annotations

import os
import re
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from croniter import croniter

from trip_dispatcher.db import validate_identifier

DEFAULT_CONFIG_PATH = Path("dispatcher.toml")
DEFAULT_TIMEZONE = "America/Sao_Paulo"
# Every 30 seconds (croniter reads a sixth field as seconds).
DEFAULT_SWEEP_CRON = "* * * * * */30"

STORE_TYPES = ("postgres", "memory")
CHANNEL_TYPES = ("whatsapp",)
LOG_FORMATS = ("text", "json")

# Pattern matching ${VAR_NAME}
_ENV_VAR_PATTERN = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)\}")


class ConfigError(Exception):
    """Raised when dispatcher configuration is missing, malformed, or invalid."""


@dataclass
class LoggingConfig:
    """Logging configuration from [dispatcher.logging] section."""

    level: str = "INFO"
    format: str = "text"  # "text" or "json"
    log_root: str | None = None


@dataclass
class InboundConfig:
    """Inbound queue configuration from [dispatcher.inbound] section."""

    queue_capacity: int = 100
    worker_count: int = 4


@dataclass
class StoreConfig:
    """Record store configuration from [store] section.

    Connection parameters for ``postgres`` come from ``DATABASE_URL`` or the
    ``POSTGRES_*`` environment variables, never from the TOML file.
    """

    type: str = "postgres"
    db_name: str = "trips"
    table: str = "trips"
    schema: str | None = None


@dataclass
class ChannelConfig:
    """Chat channel configuration from [channel] section."""

    type: str = "whatsapp"
    base_url: str = "http://localhost:3000"
    session: str = "default"
    api_key: str | None = None
    send_timeout_s: float = 30.0
    webhook_host: str = "0.0.0.0"
    webhook_port: int = 40300
    default_country_code: str = "55"


@dataclass
class DispatcherConfig:
    """Parsed and validated dispatcher configuration."""

    name: str
    timezone: str = DEFAULT_TIMEZONE
    sweep_cron: str = DEFAULT_SWEEP_CRON
    max_inflight: int = 8
    shutdown_timeout_s: float = 10.0
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    inbound: InboundConfig = field(default_factory=InboundConfig)
    store: StoreConfig = field(default_factory=StoreConfig)
    channel: ChannelConfig = field(default_factory=ChannelConfig)

    @property
    def tz(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)


def resolve_env_vars(value: Any) -> Any:
    """Recursively resolve ``${VAR_NAME}`` references in config values.

    Walks dicts, lists, and strings.  Non-string leaf values are returned
    unchanged.

    Raises
    ------
    ConfigError
        If a referenced environment variable is not set.
    """
    if isinstance(value, dict):
        return {k: resolve_env_vars(v) for k, v in value.items()}
    if isinstance(value, list):
        return [resolve_env_vars(item) for item in value]
    if isinstance(value, str):
        return _resolve_string(value)
    return value


def _resolve_string(s: str) -> str:
    missing: list[str] = []

    def _replace(match: re.Match) -> str:
        var_name = match.group(1)
        env_value = os.environ.get(var_name)
        if env_value is None:
            missing.append(var_name)
            return match.group(0)
        return env_value

    result = _ENV_VAR_PATTERN.sub(_replace, s)
    if missing:
        raise ConfigError(
            f"Unresolved environment variable(s) in config value: {', '.join(missing)} "
            f"(original: {s!r})"
        )
    return result


# ---------------------------------------------------------------------------
# Field helpers
# ---------------------------------------------------------------------------


def _table(parent: dict[str, Any], key: str, path: str) -> dict[str, Any]:
    section = parent.get(key, {})
    if not isinstance(section, dict):
        raise ConfigError(f"{path} must be a TOML table")
    return section


def _str(section: dict[str, Any], key: str, path: str, default: str | None) -> str | None:
    value = section.get(key, default)
    if value is None:
        return None
    if not isinstance(value, str) or not value.strip():
        raise ConfigError(f"{path}.{key} must be a non-empty string")
    return value.strip()


def _positive(section: dict[str, Any], key: str, path: str, default: float) -> Any:
    value = section.get(key, default)
    if isinstance(value, bool) or not isinstance(value, int | float) or value <= 0:
        raise ConfigError(f"{path}.{key} must be a positive number, got {value!r}")
    return value


def _positive_int(section: dict[str, Any], key: str, path: str, default: int) -> int:
    value = _positive(section, key, path, default)
    if not isinstance(value, int):
        raise ConfigError(f"{path}.{key} must be an integer, got {value!r}")
    return value


def _choice(
    section: dict[str, Any], key: str, path: str, default: str, choices: tuple[str, ...]
) -> str:
    value = _str(section, key, path, default)
    if value not in choices:
        raise ConfigError(f"{path}.{key} must be one of {', '.join(choices)}; got {value!r}")
    return value


# ---------------------------------------------------------------------------
# Section parsers
# ---------------------------------------------------------------------------


def _parse_logging(dispatcher: dict[str, Any]) -> LoggingConfig:
    section = _table(dispatcher, "logging", "dispatcher.logging")
    return LoggingConfig(
        level=_str(section, "level", "dispatcher.logging", "INFO").upper(),
        format=_choice(section, "format", "dispatcher.logging", "text", LOG_FORMATS),
        log_root=_str(section, "log_root", "dispatcher.logging", None),
    )


def _parse_inbound(dispatcher: dict[str, Any]) -> InboundConfig:
    section = _table(dispatcher, "inbound", "dispatcher.inbound")
    return InboundConfig(
        queue_capacity=_positive_int(section, "queue_capacity", "dispatcher.inbound", 100),
        worker_count=_positive_int(section, "worker_count", "dispatcher.inbound", 4),
    )


def _parse_store(data: dict[str, Any]) -> StoreConfig:
    section = _table(data, "store", "store")
    store = StoreConfig(
        type=_choice(section, "type", "store", "postgres", STORE_TYPES),
        db_name=_str(section, "db_name", "store", "trips"),
        table=_str(section, "table", "store", "trips"),
        schema=_str(section, "schema", "store", None),
    )
    try:
        validate_identifier(store.table, kind="store.table")
        if store.schema is not None:
            validate_identifier(store.schema, kind="store.schema")
    except ValueError as exc:
        raise ConfigError(str(exc)) from exc
    return store


def _parse_channel(data: dict[str, Any]) -> ChannelConfig:
    section = _table(data, "channel", "channel")
    country_code = str(section.get("default_country_code", "55")).strip()
    if not country_code.isdigit():
        raise ConfigError(f"channel.default_country_code must be digits, got {country_code!r}")
    port = _positive_int(section, "webhook_port", "channel", 40300)
    if port > 65535:
        raise ConfigError(f"channel.webhook_port must be a valid TCP port, got {port}")
    return ChannelConfig(
        type=_choice(section, "type", "channel", "whatsapp", CHANNEL_TYPES),
        base_url=_str(section, "base_url", "channel", "http://localhost:3000").rstrip("/"),
        session=_str(section, "session", "channel", "default"),
        api_key=section.get("api_key") or None,
        send_timeout_s=float(_positive(section, "send_timeout_s", "channel", 30.0)),
        webhook_host=_str(section, "webhook_host", "channel", "0.0.0.0"),
        webhook_port=port,
        default_country_code=country_code,
    )


def parse_config(data: dict[str, Any]) -> DispatcherConfig:
    """Validate an already-parsed TOML document."""
    data = resolve_env_vars(data)

    dispatcher = data.get("dispatcher")
    if not isinstance(dispatcher, dict):
        raise ConfigError("Missing [dispatcher] section in config")

    name = dispatcher.get("name")
    if not isinstance(name, str) or not name.strip():
        raise ConfigError("Missing required field: dispatcher.name")

    timezone = _str(dispatcher, "timezone", "dispatcher", DEFAULT_TIMEZONE)
    try:
        ZoneInfo(timezone)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise ConfigError(f"dispatcher.timezone is not a known time zone: {timezone!r}") from exc

    sweep_cron = _str(dispatcher, "sweep_cron", "dispatcher", DEFAULT_SWEEP_CRON)
    if not croniter.is_valid(sweep_cron):
        raise ConfigError(f"dispatcher.sweep_cron is not a valid cron expression: {sweep_cron!r}")

    return DispatcherConfig(
        name=name.strip(),
        timezone=timezone,
        sweep_cron=sweep_cron,
        max_inflight=_positive_int(dispatcher, "max_inflight", "dispatcher", 8),
        shutdown_timeout_s=float(
            _positive(dispatcher, "shutdown_timeout_s", "dispatcher", 10.0)
        ),
        logging=_parse_logging(dispatcher),
        inbound=_parse_inbound(dispatcher),
        store=_parse_store(data),
        channel=_parse_channel(data),
    )


def load_config(path: Path = DEFAULT_CONFIG_PATH) -> DispatcherConfig:
    """Load and validate the TOML file at *path*.

    Raises
    ------
    ConfigError
        If the file is missing, contains invalid TOML, or fails validation.
    """
    path = Path(path)
    if not path.exists():
        raise ConfigError(f"Config file not found: {path}")
    try:
        data = tomllib.loads(path.read_bytes().decode())
    except tomllib.TOMLDecodeError as exc:
        raise ConfigError(f"Invalid TOML in {path}: {exc}") from exc
    return parse_config(data)
