# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Tests for the IRC -> email dispatcher."""

import email
import logging
import queue
import smtplib
import threading
from email import policy
from unittest.mock import MagicMock, patch

import pytest

from mailbridge.dispatcher import (
    MailDispatcher,
    OutboundEmail,
    SMTPSendError,
    build_outbound_email,
)
from mailbridge.irc_session import RelayRequest


def _make_dispatcher(bridge_config):
    relay: queue.Queue[RelayRequest] = queue.Queue(maxsize=4)
    shutdown = threading.Event()
    return MailDispatcher(bridge_config, relay, shutdown), relay, shutdown


def _smtp_server(mock_smtp, *, starttls: bool = True) -> MagicMock:
    server = MagicMock()
    server.has_extn.return_value = starttls
    mock_smtp.return_value.__enter__.return_value = server
    return server


def test_build_outbound_email(bridge_config):
    outbound = build_outbound_email(
        bridge_config, RelayRequest(channel="#rust", text="hi")
    )

    assert outbound == OutboundEmail(
        from_addr="WeRust <radical_ed@beebop.org>",
        reply_to="WeRust <bogusdata@beebop.org>",
        to="bogusdata@beebop.org",
        subject="FromIRC #rust",
        body="hi",
    )


def test_body_is_verbatim(bridge_config):
    """IRC text is placed in the body without transformation."""
    text = "  <b>not html</b> :) é "
    outbound = build_outbound_email(bridge_config, RelayRequest("nick", text))

    assert outbound.body == text
    assert outbound.subject == "FromIRC nick"


def test_to_message_headers(bridge_config):
    msg = build_outbound_email(
        bridge_config, RelayRequest("#rust", "hello")
    ).to_message()

    assert msg["From"] == "WeRust <radical_ed@beebop.org>"
    assert msg["Reply-To"] == "WeRust <bogusdata@beebop.org>"
    assert msg["To"] == "bogusdata@beebop.org"
    assert msg["Subject"] == "FromIRC #rust"
    assert msg.get_content_type() == "text/plain"
    assert msg.get_content_charset() == "utf-8"
    assert msg.get_content() == "hello"


@pytest.mark.parametrize("text", ["hi", "  é 🎉 :) ", "line one\nline two"])
def test_to_message_body_exact(bridge_config, text):
    """The sent body survives serialization byte for byte."""
    msg = build_outbound_email(
        bridge_config, RelayRequest("#rust", text)
    ).to_message()

    parsed = email.message_from_bytes(msg.as_bytes(), policy=policy.default)

    assert parsed.get_content() == text


def test_send_success(bridge_config):
    """Sends via STARTTLS and authenticates with the mailbox login."""
    dispatcher, _, _ = _make_dispatcher(bridge_config)

    with patch("smtplib.SMTP") as mock_smtp:
        server = _smtp_server(mock_smtp)

        outbound = dispatcher.dispatch(RelayRequest("#rust", "hi"))

    mock_smtp.assert_called_once_with("smtp.example.com", 587, timeout=60)
    server.starttls.assert_called_once()
    assert server.ehlo.call_count == 2
    server.login.assert_called_once_with(
        "bogusdata@beebop.org", "test_password"
    )
    sent = server.send_message.call_args.args[0]
    assert sent["Subject"] == "FromIRC #rust"
    assert sent["To"] == "bogusdata@beebop.org"
    assert outbound.subject == "FromIRC #rust"


def test_send_without_starttls(bridge_config):
    dispatcher, _, _ = _make_dispatcher(bridge_config)

    with patch("smtplib.SMTP") as mock_smtp:
        server = _smtp_server(mock_smtp, starttls=False)

        dispatcher.dispatch(RelayRequest("#rust", "hi"))

    server.starttls.assert_not_called()
    server.login.assert_called_once()
    server.send_message.assert_called_once()


def test_send_auth_failure_not_retryable(bridge_config):
    dispatcher, _, _ = _make_dispatcher(bridge_config)

    with patch("smtplib.SMTP") as mock_smtp:
        server = _smtp_server(mock_smtp)
        server.login.side_effect = smtplib.SMTPAuthenticationError(
            535, b"5.7.8 Authentication failed"
        )

        with pytest.raises(SMTPSendError, match="login rejected") as e:
            dispatcher.dispatch(RelayRequest("#rust", "hi"))

    assert e.value.retryable is False
    server.send_message.assert_not_called()


def test_send_smtp_error(bridge_config):
    dispatcher, _, _ = _make_dispatcher(bridge_config)

    with patch("smtplib.SMTP") as mock_smtp:
        server = _smtp_server(mock_smtp)
        server.send_message.side_effect = smtplib.SMTPRecipientsRefused({})

        with pytest.raises(SMTPSendError, match="Failed to send email"):
            dispatcher.dispatch(RelayRequest("#rust", "hi"))


def test_send_connection_error(bridge_config):
    dispatcher, _, _ = _make_dispatcher(bridge_config)

    with patch("smtplib.SMTP", side_effect=ConnectionRefusedError("refused")):
        with pytest.raises(SMTPSendError, match="refused") as e:
            dispatcher.dispatch(RelayRequest("#rust", "hi"))

    assert e.value.retryable is True


def test_run_continues_after_failure(bridge_config):
    """A failed send is counted and the next relay is still sent."""
    dispatcher, relay, shutdown = _make_dispatcher(bridge_config)
    relay.put(RelayRequest("#a", "first"))
    relay.put(RelayRequest("#b", "second"))
    sent: list[str] = []

    def send(outbound: OutboundEmail) -> None:
        if outbound.body == "first":
            raise SMTPSendError("Failed to send email: timed out")
        sent.append(outbound.subject)
        shutdown.set()

    with patch.object(dispatcher, "send", side_effect=send):
        dispatcher.run()

    assert sent == ["FromIRC #b"]
    assert dispatcher.failed_count == 1
    assert dispatcher.sent_count == 1


def test_run_continues_after_unexpected_error(bridge_config, caplog):
    dispatcher, relay, shutdown = _make_dispatcher(bridge_config)
    relay.put(RelayRequest("#a", "first"))
    relay.put(RelayRequest("#b", "second"))
    sent: list[str] = []

    def send(outbound: OutboundEmail) -> None:
        if outbound.body == "first":
            raise RuntimeError("boom")
        sent.append(outbound.subject)
        shutdown.set()

    with (
        patch.object(dispatcher, "send", side_effect=send),
        caplog.at_level(logging.ERROR),
    ):
        dispatcher.run()

    assert sent == ["FromIRC #b"]
    assert dispatcher.failed_count == 1
    assert "Failed to dispatch message from #a: boom" in caplog.text


def test_run_exits_on_shutdown(bridge_config):
    dispatcher, relay, shutdown = _make_dispatcher(bridge_config)
    relay.put(RelayRequest("#a", "never sent"))
    shutdown.set()

    with patch.object(dispatcher, "send") as mock_send:
        dispatcher.run()

    mock_send.assert_not_called()
    assert relay.qsize() == 1


def test_thread_lifecycle(bridge_config):
    dispatcher, _, shutdown = _make_dispatcher(bridge_config)
    shutdown.set()

    dispatcher.start()
    dispatcher.join(timeout=5)

    assert dispatcher._thread is not None
    assert dispatcher._thread.name == "MailDispatcher"
    assert not dispatcher._thread.is_alive()
