# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Configuration for the notification relay.

Configuration comes from one of two sources, both producing the same
immutable ``ServerConfig`` snapshot:

- Environment variables (``ServerConfig.from_env``), after ``.env`` files
  have been loaded.  This is the usual container deployment.
- A YAML file (``ServerConfig.from_yaml``), by default
  ``$XDG_CONFIG_HOME/mailalert/mailalert.yaml``.  ``!env VAR`` tags
  resolve values from the environment at load time.

Both sources are expressed as the same raw mapping and go through one
resolver, so a setting means the same thing wherever it comes from::

    server:
      bind: ":8000"
      auth_token: !env AUTH_TOKEN
    recipients:
      allowed: [alerts@example.com]
    channels:
      enabled: [telegram, ntfy]
      telegram: {bot_token: !env TELEGRAM_BOT_TOKEN, chat_id: "1234"}
      ntfy: {server: "https://ntfy.sh", topic: mail, token: !env NTFY_TOKEN}
      dingtalk: {webhook: !env DINGTALK_WEBHOOK, secret: !env DINGTALK_SECRET}
    delivery:
      max_attempts: 3
      backoff_ms: 500
      http_timeout: 5
      max_workers: 8

The snapshot is loaded once at startup and never mutated afterwards.
"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, TypeVar, overload

import yaml
from platformdirs import user_config_path

from mailalert.dotenv_loader import load_dotenv_once
from mailalert.logging import SecretFilter


logger = logging.getLogger(__name__)

#: Application name for XDG path resolution.
_APP_NAME = "mailalert"

CHANNEL_TELEGRAM = "telegram"
CHANNEL_NTFY = "ntfy"
CHANNEL_DINGTALK = "dingtalk"

#: Channel identifiers in dispatch order.
CHANNEL_IDS = (CHANNEL_TELEGRAM, CHANNEL_NTFY, CHANNEL_DINGTALK)

#: Short names accepted in the enabled-channel list.
_CHANNEL_ALIASES = {
    "tg": CHANNEL_TELEGRAM,
    "ding": CHANNEL_DINGTALK,
}

DEFAULT_NTFY_SERVER = "https://ntfy.sh"
DEFAULT_BIND_ADDR = ":8000"
DEFAULT_HOST = "0.0.0.0"
DEFAULT_PORT = 8000


def get_config_path() -> Path:
    """Return the default YAML config file path.

    Uses XDG: ``$XDG_CONFIG_HOME/mailalert/mailalert.yaml`` (typically
    ``~/.config/mailalert/mailalert.yaml``).
    """
    return user_config_path(_APP_NAME) / "mailalert.yaml"


def get_dotenv_path() -> Path:
    """Return the ``.env`` file path inside the XDG config directory."""
    return user_config_path(_APP_NAME) / ".env"


class ConfigError(Exception):
    """Base exception for configuration errors."""


# ---------------------------------------------------------------------------
# YAML tag placeholders
# ---------------------------------------------------------------------------


class _EnvVar:
    """Placeholder for an unresolved ``!env VAR_NAME`` tag."""

    def __init__(self, var_name: str) -> None:
        self.var_name = var_name


def _env_constructor(loader: yaml.SafeLoader, node: yaml.Node) -> _EnvVar:
    """Handle ``!env VAR_NAME`` in YAML."""
    value = loader.construct_scalar(node)  # type: ignore[arg-type]
    return _EnvVar(str(value))


def _make_loader() -> type[yaml.SafeLoader]:
    """Create a YAML loader that understands ``!env``."""

    class EnvLoader(yaml.SafeLoader):
        pass

    EnvLoader.add_constructor("!env", _env_constructor)
    return EnvLoader


# ---------------------------------------------------------------------------
# Value resolution
# ---------------------------------------------------------------------------


def _raw_resolve(value: object) -> str | None:
    """Resolve an ``_EnvVar`` to its string value, or stringify literals.

    Returns None if the value is None or the env var is unset or empty,
    so an empty variable falls back to the default like an unset one.
    """
    if isinstance(value, _EnvVar):
        raw = os.environ.get(value.var_name)
        if not raw:
            return None
        return raw
    if value is None:
        return None
    return str(value)


_MISSING = object()

_T = TypeVar("_T")


@overload
def _resolve(value: object, coerce: type[_T], *, default: _T) -> _T: ...


@overload
def _resolve(value: object, coerce: type[_T]) -> _T | None: ...


def _resolve(
    value: object,
    coerce: type[Any],
    *,
    default: object = _MISSING,
) -> Any:
    """Resolve a config value, handling ``!env`` tags and type coercion.

    Args:
        value: Raw value (may be ``_EnvVar``, None, or a literal already
            parsed by PyYAML).
        coerce: Target type (``str``, ``int``, ``float``).
        default: Default when the value is absent.

    Returns:
        The resolved, coerced value, or None when absent without default.

    Raises:
        ConfigError: If the value cannot be coerced to the target type.
    """
    if not isinstance(value, _EnvVar) and isinstance(value, coerce):
        return value

    resolved = _raw_resolve(value)
    if resolved is None:
        if default is not _MISSING:
            return default
        return None

    try:
        return coerce(resolved.strip())
    except ValueError as e:
        name = value.var_name if isinstance(value, _EnvVar) else repr(value)
        raise ConfigError(
            f"Cannot convert {name} to {coerce.__name__}: {resolved!r}"
        ) from e


def _resolve_string_list(value: object) -> list[str]:
    """Resolve a list of strings.

    Accepts a YAML list (elements may be ``!env`` tags) or a single
    comma-separated string, which is how lists arrive from environment
    variables.  Elements are trimmed; empty elements are dropped.

    Raises:
        ConfigError: If the value is neither a list nor a string.
    """
    if value is None:
        return []

    if isinstance(value, list):
        items = [_raw_resolve(item) for item in value]
    elif isinstance(value, (str, _EnvVar)):
        resolved = _raw_resolve(value)
        items = resolved.split(",") if resolved else []
    else:
        raise ConfigError(
            f"Expected a list or comma-separated string, "
            f"got {type(value).__name__}"
        )

    return [item.strip() for item in items if item and item.strip()]


def _section(raw: dict, name: str) -> dict:
    """Return a nested mapping, treating a missing section as empty."""
    value = raw.get(name)
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ConfigError(f"'{name}' must be a mapping")
    return value


def parse_bind_addr(value: str) -> tuple[str, int]:
    """Split a listen address into host and port.

    Accepts ``host:port``, ``:port`` (all interfaces) and a bare port.

    Args:
        value: Listen address.

    Returns:
        Tuple of (host, port).

    Raises:
        ConfigError: If the port is not a number.
    """
    host, sep, port_str = value.strip().rpartition(":")
    if not sep:
        host, port_str = "", value.strip()
    try:
        port = int(port_str)
    except ValueError as e:
        raise ConfigError(f"Invalid listen address: {value!r}") from e
    return host or DEFAULT_HOST, port


def normalize_channel_name(name: str) -> str | None:
    """Map a channel name or alias to its canonical identifier.

    Args:
        name: Channel name as written in configuration.

    Returns:
        Canonical channel identifier, or None if unknown.
    """
    key = name.strip().lower()
    key = _CHANNEL_ALIASES.get(key, key)
    if key in CHANNEL_IDS:
        return key
    return None


# ---------------------------------------------------------------------------
# Configuration snapshot
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TelegramConfig:
    """Telegram bot credentials.

    Attributes:
        bot_token: Bot API token.
        chat_id: Chat receiving the alerts.
    """

    bot_token: str = ""
    chat_id: str = ""

    def __post_init__(self) -> None:
        SecretFilter.register_secret(self.bot_token)

    @property
    def is_configured(self) -> bool:
        """Whether all required credentials are present."""
        return bool(self.bot_token and self.chat_id)


@dataclass(frozen=True)
class NtfyConfig:
    """ntfy publishing settings.

    Attributes:
        server: Base URL of the ntfy server.
        topic: Topic to publish to.
        token: Optional access token sent as a bearer token.
    """

    server: str = DEFAULT_NTFY_SERVER
    topic: str = ""
    token: str = ""

    def __post_init__(self) -> None:
        SecretFilter.register_secret(self.token)

    @property
    def is_configured(self) -> bool:
        """Whether all required settings are present."""
        return bool(self.server and self.topic)


@dataclass(frozen=True)
class DingTalkConfig:
    """DingTalk robot settings.

    Attributes:
        webhook: Robot webhook URL (includes the access token).
        secret: Optional signing secret.  When set, requests are signed.
    """

    webhook: str = ""
    secret: str = ""

    def __post_init__(self) -> None:
        SecretFilter.register_secret(self.secret)

    @property
    def is_configured(self) -> bool:
        """Whether all required settings are present."""
        return bool(self.webhook)


@dataclass(frozen=True)
class DeliveryConfig:
    """Retry and resource limits for outbound notifications.

    Attributes:
        max_attempts: Attempts per channel before giving up.
        backoff_seconds: Base delay; the wait after attempt n is
            ``n * backoff_seconds``.
        http_timeout_seconds: Timeout for each outbound HTTP request.
        max_workers: Delivery threads per channel, and hook request threads.
        shutdown_timeout_seconds: How long shutdown waits for in-flight
            deliveries.
    """

    max_attempts: int = 3
    backoff_seconds: float = 0.5
    http_timeout_seconds: float = 5.0
    max_workers: int = 8
    shutdown_timeout_seconds: float = 10.0

    def __post_init__(self) -> None:
        """Validate configuration.

        Raises:
            ValueError: If configuration is invalid.
        """
        if self.max_attempts < 1:
            raise ValueError(f"Max attempts must be >= 1: {self.max_attempts}")
        if self.backoff_seconds < 0:
            raise ValueError(
                f"Backoff must be >= 0s: {self.backoff_seconds}"
            )
        if self.http_timeout_seconds <= 0:
            raise ValueError(
                f"HTTP timeout must be > 0s: {self.http_timeout_seconds}"
            )
        if self.max_workers < 1:
            raise ValueError(f"Max workers must be >= 1: {self.max_workers}")
        if self.shutdown_timeout_seconds < 0:
            raise ValueError(
                f"Shutdown timeout must be >= 0s: "
                f"{self.shutdown_timeout_seconds}"
            )


@dataclass(frozen=True)
class ServerConfig:
    """Complete service configuration.

    Attributes:
        host: Listen host.
        port: Listen port.
        auth_token: Shared token required on hook requests.  Empty
            disables authentication.
        allowed_recipients: Lower-cased envelope recipients that trigger
            alerts.  Empty means every message triggers an alert.
        enabled_channels: Channel identifiers selected for use.  None
            means every configured channel is used.
        telegram: Telegram settings.
        ntfy: ntfy settings.
        dingtalk: DingTalk settings.
        delivery: Retry and resource limits.
    """

    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    auth_token: str = ""
    allowed_recipients: frozenset[str] = frozenset()
    enabled_channels: frozenset[str] | None = None
    telegram: TelegramConfig = field(default_factory=TelegramConfig)
    ntfy: NtfyConfig = field(default_factory=NtfyConfig)
    dingtalk: DingTalkConfig = field(default_factory=DingTalkConfig)
    delivery: DeliveryConfig = field(default_factory=DeliveryConfig)

    def __post_init__(self) -> None:
        """Validate configuration.

        Raises:
            ValueError: If the port is out of range.
            ConfigError: If no notification channel is enabled.
        """
        SecretFilter.register_secret(self.auth_token)

        if not 1 <= self.port <= 65535:
            raise ValueError(f"Port must be within 1-65535: {self.port}")

        if not self.active_channels:
            raise ConfigError(
                "At least one notification channel must be configured "
                "(telegram/ntfy/dingtalk)"
            )

    def is_channel_enabled(self, channel_id: str) -> bool:
        """Check whether a channel is both configured and selected.

        Args:
            channel_id: Canonical channel identifier.

        Returns:
            True if the channel's required settings are present and it is
            in the enabled-channel set (or no set is configured).
        """
        configured = {
            CHANNEL_TELEGRAM: self.telegram.is_configured,
            CHANNEL_NTFY: self.ntfy.is_configured,
            CHANNEL_DINGTALK: self.dingtalk.is_configured,
        }
        if not configured.get(channel_id, False):
            return False
        return self.enabled_channels is None or channel_id in self.enabled_channels

    @property
    def active_channels(self) -> list[str]:
        """Enabled channel identifiers in dispatch order."""
        return [c for c in CHANNEL_IDS if self.is_channel_enabled(c)]

    @classmethod
    def from_env(cls) -> "ServerConfig":
        """Load configuration from environment variables.

        ``.env`` files are loaded first if present.

        Returns:
            ServerConfig instance.

        Raises:
            ConfigError: If values are invalid or no channel is enabled.
        """
        load_dotenv_once()
        return cls._from_raw(_env_raw())

    @classmethod
    def from_yaml(cls, config_path: Path | None = None) -> "ServerConfig":
        """Load configuration from a YAML file.

        Values tagged with ``!env VAR_NAME`` are resolved from the
        environment at load time.  A ``.env`` file is loaded first if
        present.

        Args:
            config_path: Path to YAML config file.  Defaults to
                ``~/.config/mailalert/mailalert.yaml`` (XDG).

        Returns:
            ServerConfig instance.

        Raises:
            ConfigError: If the file is missing or values are invalid.
        """
        load_dotenv_once()

        if config_path is None:
            config_path = get_config_path()

        if not config_path.exists():
            raise ConfigError(f"Config file not found: {config_path}")

        with open(config_path) as f:
            raw = yaml.load(f, Loader=_make_loader())

        if not isinstance(raw, dict):
            raise ConfigError(
                f"Config file must be a YAML mapping: {config_path}"
            )

        return cls._from_raw(raw)

    @classmethod
    def _from_raw(cls, raw: dict) -> "ServerConfig":
        """Build config from a raw (unresolved) mapping."""
        server = _section(raw, "server")
        recipients = _section(raw, "recipients")
        channels = _section(raw, "channels")
        delivery = _section(raw, "delivery")
        telegram = _section(channels, "telegram")
        ntfy = _section(channels, "ntfy")
        dingtalk = _section(channels, "dingtalk")

        host, port = parse_bind_addr(
            _resolve(server.get("bind"), str, default=DEFAULT_BIND_ADDR)
        )

        return cls(
            host=host,
            port=port,
            auth_token=_resolve(server.get("auth_token"), str, default=""),
            allowed_recipients=frozenset(
                addr.lower()
                for addr in _resolve_string_list(recipients.get("allowed"))
            ),
            enabled_channels=_resolve_enabled_channels(channels.get("enabled")),
            telegram=TelegramConfig(
                bot_token=_resolve(telegram.get("bot_token"), str, default=""),
                chat_id=_resolve(telegram.get("chat_id"), str, default=""),
            ),
            ntfy=NtfyConfig(
                server=_resolve(
                    ntfy.get("server"), str, default=DEFAULT_NTFY_SERVER
                ),
                topic=_resolve(ntfy.get("topic"), str, default=""),
                token=_resolve(ntfy.get("token"), str, default=""),
            ),
            dingtalk=DingTalkConfig(
                webhook=_resolve(dingtalk.get("webhook"), str, default=""),
                secret=_resolve(dingtalk.get("secret"), str, default=""),
            ),
            delivery=DeliveryConfig(
                max_attempts=_resolve(
                    delivery.get("max_attempts"), int, default=3
                ),
                backoff_seconds=(
                    _resolve(delivery.get("backoff_ms"), int, default=500)
                    / 1000
                ),
                http_timeout_seconds=_resolve(
                    delivery.get("http_timeout"), float, default=5.0
                ),
                max_workers=_resolve(delivery.get("max_workers"), int, default=8),
                shutdown_timeout_seconds=_resolve(
                    delivery.get("shutdown_timeout"), float, default=10.0
                ),
            ),
        )


def _resolve_enabled_channels(value: object) -> frozenset[str] | None:
    """Resolve the enabled-channel list to canonical identifiers.

    Unknown names are logged and ignored.

    Returns:
        Frozenset of channel identifiers, or None if no list is set.
    """
    names = _resolve_string_list(value)
    if not names:
        return None

    enabled: set[str] = set()
    for name in names:
        channel_id = normalize_channel_name(name)
        if channel_id is None:
            logger.warning("Ignoring unknown channel in enabled list: %s", name)
            continue
        enabled.add(channel_id)
    return frozenset(enabled)


def _env_raw() -> dict:
    """Describe the environment variable layout as a raw config mapping."""
    return {
        "server": {
            "bind": _EnvVar("BIND_ADDR"),
            "auth_token": _EnvVar("AUTH_TOKEN"),
        },
        "recipients": {"allowed": _EnvVar("ALLOWED_RCPTS")},
        "channels": {
            "enabled": _EnvVar("ENABLED_CHANNELS"),
            "telegram": {
                "bot_token": _EnvVar("TELEGRAM_BOT_TOKEN"),
                "chat_id": _EnvVar("TELEGRAM_CHAT_ID"),
            },
            "ntfy": {
                "server": _EnvVar("NTFY_SERVER"),
                "topic": _EnvVar("NTFY_TOPIC"),
                "token": _EnvVar("NTFY_TOKEN"),
            },
            "dingtalk": {
                "webhook": _EnvVar("DINGTALK_WEBHOOK"),
                "secret": _EnvVar("DINGTALK_SECRET"),
            },
        },
        "delivery": {
            "max_attempts": _EnvVar("NOTIFY_MAX_ATTEMPTS"),
            "backoff_ms": _EnvVar("NOTIFY_BACKOFF_MS"),
            "http_timeout": _EnvVar("NOTIFY_HTTP_TIMEOUT"),
            "max_workers": _EnvVar("NOTIFY_MAX_WORKERS"),
            "shutdown_timeout": _EnvVar("NOTIFY_SHUTDOWN_TIMEOUT"),
        },
    }
