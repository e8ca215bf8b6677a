# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Shared pytest fixtures used across multiple test modules."""

import pytest

from mailbridge.config import BridgeConfig
from mailbridge.logging import SecretFilter


_BOUNDARY = "----=_Part_6_139340551.1608742910254"


def make_email(subject: str, *, plain: str, html: str | None) -> str:
    """Build a multipart/alternative email as a mail client would send it."""
    lines = [
        f"Subject: {subject}",
        "MIME-Version: 1.0",
        "Content-Type: multipart/alternative; ",
        f'\tboundary="{_BOUNDARY}"',
        "X-Correlation-ID: <35fcb212-04a8-427f-afca-8ddfc2010606@beebop.lol>",
        "",
        f"--{_BOUNDARY}",
        "Content-Type: text/plain; charset=UTF-8",
        "Content-Transfer-Encoding: 7bit",
        "",
        plain,
        "",
        f"--{_BOUNDARY}",
        "Content-Type: text/html; charset=UTF-8",
    ]
    if html is not None:
        lines += [
            "Content-Transfer-Encoding: 7bit",
            "",
            html,
            f"--{_BOUNDARY}--",
        ]
    return "\r\n".join(lines) + "\r\n"


def html_skeleton(inner: str, *, attrs: str = "") -> str:
    """HTML part in the shape produced by common web mail clients."""
    return (
        f"<html{attrs}> \r\n"
        f" <head{attrs}></head> \r\n"
        f" <body{attrs}> {inner} \r\n"
        "  <br>  \r\n"
        " </body>\r\n"
        "</html>"
    )


@pytest.fixture(autouse=True)
def _clear_secrets():
    """Keep the class-level secret registry isolated between tests."""
    SecretFilter.clear_secrets()
    yield
    SecretFilter.clear_secrets()


@pytest.fixture
def bridge_config() -> BridgeConfig:
    """Test bridge configuration."""
    return BridgeConfig(
        from_email="radical_ed@beebop.org",
        imap_login="bogusdata@beebop.org",
        imap_password="test_password",
        imap_server="imap.example.com",
        imap_session="inbox",
        imap_starting_at=1,
        irc_server="irc.example.net:6667",
        irc_user="radical_ed",
        irc_nick="radical_ed",
        irc_first_name="radical",
        irc_last_name="ed",
        smtp_server="smtp.example.com",
        poll_interval_seconds=1,
        queue_size=4,
    )


@pytest.fixture
def forward_email() -> str:
    """Email marked for IRC whose HTML part carries the text "42"."""
    return make_email(
        "SendToIRC radical_ed",
        plain="Hello to beebop",
        html=html_skeleton(
            '<span style="font-family:sans-serif">42</span>',
            attrs=' x-block="true"',
        ),
    )


@pytest.fixture
def no_html_email() -> str:
    """Email marked for IRC without any HTML part."""
    return make_email("SendToIRC hello", plain="Hello to beebop", html=None)


@pytest.fixture
def unmarked_email() -> str:
    """Email whose subject carries no forward marker."""
    return make_email("hello", plain="Hello to beebop", html=None)


@pytest.fixture
def punctuation_email() -> str:
    """Email whose HTML text contains punctuation that must survive."""
    return make_email(
        "SendToIRC hello",
        plain="body :)",
        html=html_skeleton(
            '<span style="font-family:sans-serif">body :)</span>'
        ),
    )
