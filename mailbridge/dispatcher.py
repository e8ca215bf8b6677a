# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Mail dispatcher for IRC -> email relay.

This module provides the MailDispatcher class, which turns RelayRequests
from the IRC session into plain-text emails and sends them over SMTP.
A failed send is logged and the dispatcher moves on to the next request.
"""

from __future__ import annotations

import logging
import queue
import smtplib
import threading
from dataclasses import dataclass
from email.message import EmailMessage

from mailbridge.config import BridgeConfig
from mailbridge.errors import TransportError
from mailbridge.irc_session import RelayRequest


logger = logging.getLogger(__name__)

SUBJECT_PREFIX = "FromIRC"


class SMTPSendError(TransportError):
    """Raised when an SMTP send operation fails."""


@dataclass(frozen=True)
class OutboundEmail:
    """Email representing one relayed IRC message."""

    from_addr: str
    reply_to: str
    to: str
    subject: str
    body: str

    def to_message(self) -> EmailMessage:
        """Plain-text UTF-8 message whose body is exactly ``body``."""
        msg = EmailMessage()
        msg["From"] = self.from_addr
        msg["Reply-To"] = self.reply_to
        msg["To"] = self.to
        msg["Subject"] = self.subject
        # set_content() would append a newline to the body
        msg.set_payload(self.body, charset="utf-8")
        return msg


def build_outbound_email(
    config: BridgeConfig, request: RelayRequest
) -> OutboundEmail:
    """Build the email for a relayed IRC message.

    The email comes from ``from_email``, is addressed to the bridge's own
    mailbox (``imap_login``), and replies go back to that mailbox.
    """
    return OutboundEmail(
        from_addr=f"{config.display_name} <{config.from_email}>",
        reply_to=f"{config.display_name} <{config.imap_login}>",
        to=config.imap_login,
        subject=f"{SUBJECT_PREFIX} {request.channel}",
        body=request.text,
    )


class MailDispatcher:
    """SMTP sender draining the IRC -> email handoff queue.

    Attributes:
        config: Bridge configuration.
    """

    def __init__(
        self,
        config: BridgeConfig,
        relay: queue.Queue[RelayRequest],
        shutdown: threading.Event,
    ) -> None:
        self.config = config
        self._relay = relay
        self._shutdown = shutdown
        self._thread: threading.Thread | None = None
        self._log = logging.LoggerAdapter(logger, {"component": "dispatcher"})
        self.sent_count = 0
        self.failed_count = 0

        logger.debug(
            "Initialized mail dispatcher for %s:%d",
            config.smtp_server,
            config.smtp_port,
        )

    def start(self) -> None:
        """Start the dispatcher worker thread."""
        self._thread = threading.Thread(
            target=self.run, daemon=True, name="MailDispatcher"
        )
        self._thread.start()

    def join(self, timeout: float | None = None) -> None:
        if self._thread is not None:
            self._thread.join(timeout=timeout)
            if self._thread.is_alive():
                self._log.warning("Dispatcher thread did not terminate in time")

    def run(self) -> None:
        """Send queued relays until shutdown. Failures are not fatal."""
        while not self._shutdown.is_set():
            try:
                request = self._relay.get(timeout=1.0)
            except queue.Empty:
                continue
            try:
                self.dispatch(request)
                self.sent_count += 1
            except SMTPSendError as e:
                self.failed_count += 1
                self._log.error(
                    "Could not relay message from %s: %s", request.channel, e
                )
            except Exception as e:
                self.failed_count += 1
                self._log.exception(
                    "Failed to dispatch message from %s: %s",
                    request.channel,
                    e,
                )

    def dispatch(self, request: RelayRequest) -> OutboundEmail:
        """Build and send the email for one relayed IRC message.

        Returns:
            The email that was sent.

        Raises:
            SMTPSendError: If sending fails.
        """
        outbound = build_outbound_email(self.config, request)
        self.send(outbound)
        return outbound

    def send(self, outbound: OutboundEmail) -> None:
        """Send an email through the authenticated SMTP relay.

        Raises:
            SMTPSendError: If sending fails.
        """
        try:
            with smtplib.SMTP(
                self.config.smtp_server,
                self.config.smtp_port,
                timeout=self.config.network_timeout_seconds,
            ) as server:
                server.ehlo()
                if server.has_extn("STARTTLS"):
                    server.starttls()
                    server.ehlo()  # Re-identify after TLS for AUTH
                server.login(self.config.imap_login, self.config.imap_password)
                server.send_message(outbound.to_message())
        except smtplib.SMTPAuthenticationError as e:
            raise SMTPSendError(
                f"SMTP login rejected for {self.config.imap_login}: {e}",
                retryable=False,
            ) from e
        except (smtplib.SMTPException, OSError) as e:
            raise SMTPSendError(f"Failed to send email: {e}") from e

        logger.info("Sent email to %s: %s", outbound.to, outbound.subject)
