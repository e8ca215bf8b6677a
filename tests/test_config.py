# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Tests for bridge configuration."""

from pathlib import Path
from unittest.mock import patch

import pytest
import yaml

from mailbridge.config import (
    BridgeConfig,
    ConfigError,
    _EnvVar,
    _make_loader,
    _raw_resolve,
    _resolve,
    parse_irc_server,
)
from mailbridge.logging import SecretFilter


_CONFIG_YAML = """\
mail:
  from_email: radical_ed@beebop.org
  imap_login: bogusdata
  imap_password: !env TEST_IMAP_PASSWORD
  imap_server: beebop
  imap_session: inbox
  imap_starting_at: "7"
irc:
  server: utopiaplanitia.net:6667
  user: radical_ed
  nick: radical_ed
  first_name: radical
  last_name: ed
"""


def _raw(**overrides: dict) -> dict:
    raw = yaml.load(_CONFIG_YAML, Loader=_make_loader())
    for section, values in overrides.items():
        raw.setdefault(section, {}).update(values)
    return raw


class TestRawResolve:
    """Tests for _raw_resolve."""

    def test_literal_string(self) -> None:
        assert _raw_resolve("hello") == "hello"

    def test_none(self) -> None:
        assert _raw_resolve(None) is None

    def test_int(self) -> None:
        assert _raw_resolve(42) == "42"

    def test_envvar_set(self) -> None:
        with patch.dict("os.environ", {"MY_VAR": "val"}):
            assert _raw_resolve(_EnvVar("MY_VAR")) == "val"

    def test_envvar_unset(self) -> None:
        with patch.dict("os.environ", {}, clear=True):
            assert _raw_resolve(_EnvVar("MISSING")) is None

    def test_envvar_empty(self) -> None:
        with patch.dict("os.environ", {"EMPTY": ""}):
            assert _raw_resolve(_EnvVar("EMPTY")) is None


class TestResolve:
    """Tests for _resolve."""

    def test_default(self) -> None:
        assert _resolve(None, int, default=5) == 5

    def test_optional_missing(self) -> None:
        assert _resolve(None, str) is None

    def test_coerces_string_to_int(self) -> None:
        assert _resolve("12", int) == 12

    def test_required_missing(self) -> None:
        with pytest.raises(ConfigError, match="'mail.imap_login' is missing"):
            _resolve(None, str, required="mail.imap_login")

    def test_required_env_unset(self) -> None:
        with patch.dict("os.environ", {}, clear=True):
            with pytest.raises(ConfigError, match="'NOPE' is not set"):
                _resolve(_EnvVar("NOPE"), str, required="x")

    def test_bad_int(self) -> None:
        with pytest.raises(ConfigError, match="must be int"):
            _resolve("abc", int, required="mail.imap_starting_at")


class TestParseIrcServer:
    """Tests for parse_irc_server."""

    def test_host_port(self) -> None:
        assert parse_irc_server("utopiaplanitia.net:6667") == (
            "utopiaplanitia.net",
            6667,
        )

    def test_missing_port(self) -> None:
        with pytest.raises(ConfigError, match="host:port"):
            parse_irc_server("utopiaplanitia.net")

    def test_missing_host(self) -> None:
        with pytest.raises(ConfigError, match="host:port"):
            parse_irc_server(":6667")

    def test_non_numeric_port(self) -> None:
        with pytest.raises(ConfigError, match="must be an integer"):
            parse_irc_server("irc.example.net:ircd")

    def test_port_out_of_range(self) -> None:
        with pytest.raises(ConfigError, match="out of range"):
            parse_irc_server("irc.example.net:70000")


class TestBridgeConfig:
    """Tests for BridgeConfig construction and validation."""

    def test_from_raw(self) -> None:
        with patch.dict("os.environ", {"TEST_IMAP_PASSWORD": "s3cret"}):
            config = BridgeConfig.from_raw(_raw())

        assert config.from_email == "radical_ed@beebop.org"
        assert config.imap_login == "bogusdata"
        assert config.imap_password == "s3cret"
        assert config.imap_server == "beebop"
        assert config.imap_session == "inbox"
        assert config.imap_starting_at == 7
        assert config.irc_server == "utopiaplanitia.net:6667"
        assert config.irc_host == "utopiaplanitia.net"
        assert config.irc_port == 6667
        assert config.irc_user == "radical_ed"
        assert config.irc_nick == "radical_ed"
        assert config.irc_first_name == "radical"
        assert config.irc_last_name == "ed"

    def test_defaults(self) -> None:
        with patch.dict("os.environ", {"TEST_IMAP_PASSWORD": "s3cret"}):
            config = BridgeConfig.from_raw(_raw())

        assert config.imap_port == 993
        assert config.smtp_server == "beebop"
        assert config.smtp_port == 587
        assert config.display_name == "WeRust"
        assert config.poll_interval_seconds == 30
        assert config.queue_size == 100

    def test_optional_overrides(self) -> None:
        raw = _raw(
            mail={"smtp_server": "mail.gandi.net", "poll_interval_seconds": 5},
            irc={"read_timeout_seconds": 120},
            bridge={"queue_size": 3},
        )
        with patch.dict("os.environ", {"TEST_IMAP_PASSWORD": "s3cret"}):
            config = BridgeConfig.from_raw(raw)

        assert config.smtp_server == "mail.gandi.net"
        assert config.poll_interval_seconds == 5
        assert config.irc_read_timeout_seconds == 120
        assert config.queue_size == 3

    def test_password_defaults_to_imap_password_env(self) -> None:
        raw = _raw()
        del raw["mail"]["imap_password"]
        with patch.dict("os.environ", {"IMAP_PASSWORD": "from-env"}):
            config = BridgeConfig.from_raw(raw)

        assert config.imap_password == "from-env"

    def test_missing_password(self) -> None:
        with patch.dict("os.environ", {}, clear=True):
            with pytest.raises(ConfigError, match="TEST_IMAP_PASSWORD"):
                BridgeConfig.from_raw(_raw())

    def test_missing_required_key(self) -> None:
        raw = _raw()
        del raw["irc"]["nick"]
        with patch.dict("os.environ", {"TEST_IMAP_PASSWORD": "s3cret"}):
            with pytest.raises(ConfigError, match="irc.nick"):
                BridgeConfig.from_raw(raw)

    def test_starting_at_not_integer(self) -> None:
        raw = _raw(mail={"imap_starting_at": "first"})
        with patch.dict("os.environ", {"TEST_IMAP_PASSWORD": "s3cret"}):
            with pytest.raises(ConfigError, match="imap_starting_at"):
                BridgeConfig.from_raw(raw)

    def test_starting_at_below_one(self) -> None:
        raw = _raw(mail={"imap_starting_at": "0"})
        with patch.dict("os.environ", {"TEST_IMAP_PASSWORD": "s3cret"}):
            with pytest.raises(ConfigError, match=">= 1"):
                BridgeConfig.from_raw(raw)

    def test_bad_irc_server(self) -> None:
        raw = _raw(irc={"server": "utopiaplanitia.net"})
        with patch.dict("os.environ", {"TEST_IMAP_PASSWORD": "s3cret"}):
            with pytest.raises(ConfigError, match="host:port"):
                BridgeConfig.from_raw(raw)

    def test_non_positive_queue_size(self) -> None:
        raw = _raw(bridge={"queue_size": 0})
        with patch.dict("os.environ", {"TEST_IMAP_PASSWORD": "s3cret"}):
            with pytest.raises(ConfigError, match="queue_size"):
                BridgeConfig.from_raw(raw)

    def test_section_must_be_mapping(self) -> None:
        raw = _raw()
        raw["irc"] = ["not", "a", "mapping"]
        with pytest.raises(ConfigError, match="'irc' must be a YAML mapping"):
            BridgeConfig.from_raw(raw)

    def test_password_registered_for_redaction(self) -> None:
        with patch.dict("os.environ", {"TEST_IMAP_PASSWORD": "s3cret"}):
            BridgeConfig.from_raw(_raw())

        assert "s3cret" in SecretFilter._secrets

    def test_immutable(self, bridge_config: BridgeConfig) -> None:
        with pytest.raises(AttributeError):
            bridge_config.imap_starting_at = 5  # type: ignore[misc]


class TestFromYaml:
    """Tests for loading config files."""

    def test_loads_file(self, tmp_path: Path) -> None:
        path = tmp_path / "mailbridge.yaml"
        path.write_text(_CONFIG_YAML)

        with (
            patch("mailbridge.config.load_dotenv_once"),
            patch.dict("os.environ", {"TEST_IMAP_PASSWORD": "s3cret"}),
        ):
            config = BridgeConfig.from_yaml(path)

        assert config.imap_starting_at == 7
        assert config.imap_password == "s3cret"

    def test_missing_file(self, tmp_path: Path) -> None:
        with patch("mailbridge.config.load_dotenv_once"):
            with pytest.raises(ConfigError, match="Config file not found"):
                BridgeConfig.from_yaml(tmp_path / "missing.yaml")

    def test_default_path(self, tmp_path: Path) -> None:
        with (
            patch("mailbridge.config.load_dotenv_once"),
            patch(
                "mailbridge.config.get_config_path",
                return_value=tmp_path / "nope.yaml",
            ),
        ):
            with pytest.raises(ConfigError, match="nope.yaml"):
                BridgeConfig.from_yaml()

    def test_not_a_mapping(self, tmp_path: Path) -> None:
        path = tmp_path / "mailbridge.yaml"
        path.write_text("- just\n- a list\n")

        with patch("mailbridge.config.load_dotenv_once"):
            with pytest.raises(ConfigError, match="must be a YAML mapping"):
                BridgeConfig.from_yaml(path)

    def test_invalid_yaml(self, tmp_path: Path) -> None:
        path = tmp_path / "mailbridge.yaml"
        path.write_text("mail: [unclosed\n")

        with patch("mailbridge.config.load_dotenv_once"):
            with pytest.raises(ConfigError, match="Invalid YAML"):
                BridgeConfig.from_yaml(path)

    def test_example_config_is_valid(self) -> None:
        """The shipped example config loads once the password is set."""
        root = Path(__file__).parent.parent
        path = root / "config" / "mailbridge.example.yaml"

        with (
            patch("mailbridge.config.load_dotenv_once"),
            patch.dict("os.environ", {"IMAP_PASSWORD": "s3cret"}),
        ):
            config = BridgeConfig.from_yaml(path)

        assert config.irc_port == 6667
        assert config.smtp_server == "mail.gandi.net"
