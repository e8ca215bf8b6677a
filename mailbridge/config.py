# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Configuration for the mail/IRC bridge.

Configuration is loaded once at startup from a YAML file (default
``~/.config/mailbridge/mailbridge.yaml``) with support for ``!env`` tags
that resolve values from environment variables.  The mail password is
normally supplied as ``imap_password: !env IMAP_PASSWORD`` so that no
secret lives in the file itself.

The resulting ``BridgeConfig`` is immutable and is passed explicitly into
each loop; nothing else in the package reads the environment.
"""

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml
from platformdirs import user_config_path

from mailbridge.dotenv_loader import load_dotenv_once
from mailbridge.logging import SecretFilter


logger = logging.getLogger(__name__)

_APP_NAME = "mailbridge"

#: Environment variable consulted when ``mail.imap_password`` is omitted.
DEFAULT_PASSWORD_ENV = "IMAP_PASSWORD"


class ConfigError(Exception):
    """Raised for malformed or missing configuration."""


def get_config_path() -> Path:
    """Return the default config file path (XDG config directory)."""
    return user_config_path(_APP_NAME) / "mailbridge.yaml"


def get_dotenv_path() -> Path:
    """Return the default ``.env`` path inside the XDG config directory."""
    return user_config_path(_APP_NAME) / ".env"


# ---------------------------------------------------------------------------
# YAML ``!env`` support
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


def _raw_resolve(value: object) -> str | None:
    """Resolve an ``_EnvVar`` to its string value, or stringify literals.

    Returns None if the value is None or the env var is unset/empty.
    """
    if isinstance(value, _EnvVar):
        return os.environ.get(value.var_name) or None
    if value is None:
        return None
    return str(value)


_MISSING = object()


def _resolve(
    value: object,
    coerce: type[Any],
    *,
    default: object = _MISSING,
    required: str = "",
) -> Any:
    """Resolve a YAML value, handling ``!env`` tags and type coercion.

    Args:
        value: Raw value from YAML (may be ``_EnvVar``, None, or a literal).
        coerce: Target type (``str`` or ``int``).
        default: Default when value is absent.
        required: Human-readable field name.  When set, raises
            ``ConfigError`` if the value is absent.

    Returns:
        The resolved, coerced value, or None when optional and absent.

    Raises:
        ConfigError: If a required value is missing or coercion fails.
    """
    resolved = _raw_resolve(value)

    if resolved is None:
        if required:
            if isinstance(value, _EnvVar):
                raise ConfigError(
                    f"Required config '{required}': environment variable "
                    f"'{value.var_name}' is not set"
                )
            raise ConfigError(f"Required config '{required}' is missing")
        if default is not _MISSING:
            return default
        return None

    try:
        return coerce(resolved)
    except ValueError:
        name = required or "value"
        raise ConfigError(
            f"Config '{name}' must be {coerce.__name__}, got {resolved!r}"
        ) from None


def _section(raw: dict, name: str) -> dict:
    section = raw.get(name, {})
    if section is None:
        return {}
    if not isinstance(section, dict):
        raise ConfigError(f"'{name}' must be a YAML mapping")
    return section


def parse_irc_server(value: str) -> tuple[str, int]:
    """Split an ``host:port`` IRC server address.

    Raises:
        ConfigError: If the port is missing or not a valid TCP port.
    """
    host, sep, port_str = value.rpartition(":")
    if not sep or not host:
        raise ConfigError(f"irc.server must be host:port, got {value!r}")
    try:
        port = int(port_str)
    except ValueError:
        raise ConfigError(
            f"irc.server port must be an integer, got {port_str!r}"
        ) from None
    if not 0 < port < 65536:
        raise ConfigError(f"irc.server port out of range: {port}")
    return host, port


# ---------------------------------------------------------------------------
# Bridge configuration
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class BridgeConfig:
    """Immutable bridge configuration and secrets.

    Attributes:
        from_email: Address used in the From header of relayed emails.
        imap_login: Mailbox account; also the Reply-To and To of relayed
            emails and the SMTP login.
        imap_password: Mail account password (auto-redacted in logs).
        imap_server: IMAP server hostname.
        imap_session: Mailbox name to SELECT (e.g. ``inbox``).
        imap_starting_at: Initial mailbox cursor (1-based sequence number).
        irc_server: IRC server as ``host:port``.
        irc_user: IRC username sent in USER.
        irc_nick: IRC nickname sent in NICK.
        irc_first_name: First half of the IRC realname.
        irc_last_name: Second half of the IRC realname.
        imap_port: IMAP-over-TLS port.
        smtp_server: SMTP relay hostname.  Defaults to ``imap_server``.
        smtp_port: SMTP submission port.
        display_name: Display name on From and Reply-To.
        poll_interval_seconds: Wait between polls when no new mail exists.
        imap_max_reconnect_attempts: IMAP reconnect attempts before giving up.
        irc_connect_timeout_seconds: TCP connect timeout for IRC.
        irc_max_reconnect_attempts: IRC reconnect attempts before giving up.
        irc_read_timeout_seconds: Silence on the IRC socket after which the
            connection is considered dead.
        network_timeout_seconds: Socket timeout for IMAP and SMTP.
        queue_size: Capacity of each handoff queue between the loops.
    """

    from_email: str
    imap_login: str
    imap_password: str
    imap_server: str
    imap_session: str
    imap_starting_at: int
    irc_server: str
    irc_user: str
    irc_nick: str
    irc_first_name: str
    irc_last_name: str
    imap_port: int = 993
    smtp_server: str = ""
    smtp_port: int = 587
    display_name: str = "WeRust"
    poll_interval_seconds: int = 30
    imap_max_reconnect_attempts: int = 5
    irc_connect_timeout_seconds: int = 30
    irc_max_reconnect_attempts: int = 5
    irc_read_timeout_seconds: int = 300
    network_timeout_seconds: int = 60
    queue_size: int = 100

    def __post_init__(self) -> None:
        """Validate configuration and register secrets for redaction.

        Raises:
            ConfigError: If configuration is invalid.
        """
        if self.imap_starting_at < 1:
            raise ConfigError(
                f"imap_starting_at must be >= 1: {self.imap_starting_at}"
            )
        parse_irc_server(self.irc_server)
        for name in (
            "poll_interval_seconds",
            "imap_max_reconnect_attempts",
            "irc_connect_timeout_seconds",
            "irc_max_reconnect_attempts",
            "irc_read_timeout_seconds",
            "network_timeout_seconds",
            "queue_size",
        ):
            if getattr(self, name) < 1:
                raise ConfigError(f"{name} must be >= 1: {getattr(self, name)}")
        if not self.smtp_server:
            object.__setattr__(self, "smtp_server", self.imap_server)
        SecretFilter.register_secret(self.imap_password)

    @property
    def irc_host(self) -> str:
        """IRC server hostname."""
        return parse_irc_server(self.irc_server)[0]

    @property
    def irc_port(self) -> int:
        """IRC server port."""
        return parse_irc_server(self.irc_server)[1]

    @classmethod
    def from_yaml(cls, config_path: Path | None = None) -> "BridgeConfig":
        """Load configuration from a YAML file.

        Values tagged with ``!env VAR_NAME`` are resolved from the
        environment at load time.  ``.env`` files are loaded first.

        Args:
            config_path: Path to YAML config file.  Defaults to the XDG
                location returned by ``get_config_path()``.

        Raises:
            ConfigError: If the file is missing, malformed, or required
                values are absent.
        """
        load_dotenv_once()

        if config_path is None:
            config_path = get_config_path()

        if not config_path.exists():
            raise ConfigError(f"Config file not found: {config_path}")

        try:
            with open(config_path) as f:
                raw = yaml.load(f, Loader=_make_loader())
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML in {config_path}: {e}") from e

        if not isinstance(raw, dict):
            raise ConfigError(
                f"Config file must be a YAML mapping: {config_path}"
            )

        config = cls.from_raw(raw)
        logger.debug("Loaded configuration from %s", config_path)
        return config

    @classmethod
    def from_raw(cls, raw: dict) -> "BridgeConfig":
        """Build config from a parsed (but unresolved) YAML mapping."""
        mail = _section(raw, "mail")
        irc = _section(raw, "irc")
        bridge = _section(raw, "bridge")

        password = mail.get("imap_password")
        if password is None:
            password = _EnvVar(DEFAULT_PASSWORD_ENV)

        return cls(
            from_email=_resolve(
                mail.get("from_email"), str, required="mail.from_email"
            ),
            imap_login=_resolve(
                mail.get("imap_login"), str, required="mail.imap_login"
            ),
            imap_password=_resolve(
                password, str, required="mail.imap_password"
            ),
            imap_server=_resolve(
                mail.get("imap_server"), str, required="mail.imap_server"
            ),
            imap_session=_resolve(
                mail.get("imap_session"), str, required="mail.imap_session"
            ),
            imap_starting_at=_resolve(
                mail.get("imap_starting_at"),
                int,
                required="mail.imap_starting_at",
            ),
            irc_server=_resolve(irc.get("server"), str, required="irc.server"),
            irc_user=_resolve(irc.get("user"), str, required="irc.user"),
            irc_nick=_resolve(irc.get("nick"), str, required="irc.nick"),
            irc_first_name=_resolve(
                irc.get("first_name"), str, required="irc.first_name"
            ),
            irc_last_name=_resolve(
                irc.get("last_name"), str, required="irc.last_name"
            ),
            imap_port=_resolve(mail.get("imap_port"), int, default=993),
            smtp_server=_resolve(mail.get("smtp_server"), str, default=""),
            smtp_port=_resolve(mail.get("smtp_port"), int, default=587),
            display_name=_resolve(
                mail.get("display_name"), str, default="WeRust"
            ),
            poll_interval_seconds=_resolve(
                mail.get("poll_interval_seconds"), int, default=30
            ),
            imap_max_reconnect_attempts=_resolve(
                mail.get("max_reconnect_attempts"), int, default=5
            ),
            irc_connect_timeout_seconds=_resolve(
                irc.get("connect_timeout_seconds"), int, default=30
            ),
            irc_max_reconnect_attempts=_resolve(
                irc.get("max_reconnect_attempts"), int, default=5
            ),
            irc_read_timeout_seconds=_resolve(
                irc.get("read_timeout_seconds"), int, default=300
            ),
            network_timeout_seconds=_resolve(
                bridge.get("network_timeout_seconds"), int, default=60
            ),
            queue_size=_resolve(bridge.get("queue_size"), int, default=100),
        )
