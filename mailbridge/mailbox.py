# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Mailbox access over IMAP.

This module provides the MailboxReader class, which fetches mailbox
entries by sequence position.  The IMAP session is opened lazily and kept
across fetches; after a transport failure the connection is dropped and
the next fetch reconnects.
"""

import imaplib
import logging

from mailbridge.config import BridgeConfig
from mailbridge.errors import ProtocolError, TransportError
from mailbridge.pipeline import RawEmail


logger = logging.getLogger(__name__)


class IMAPConnectionError(TransportError):
    """Raised when an IMAP connection or operation fails."""


class MailboxReader:
    """IMAP reader addressing messages by sequence number.

    Attributes:
        config: Bridge configuration.
        connection: Active IMAP connection (None when disconnected).
    """

    def __init__(self, config: BridgeConfig) -> None:
        self.config = config
        self.connection: imaplib.IMAP4_SSL | None = None

    def connect(self) -> None:
        """Open a TLS session and log in.

        Raises:
            IMAPConnectionError: Retryable for network failures,
                non-retryable when the server rejects the credentials.
        """
        self.disconnect()
        try:
            conn = imaplib.IMAP4_SSL(
                self.config.imap_server,
                self.config.imap_port,
                timeout=self.config.network_timeout_seconds,
            )
        except (imaplib.IMAP4.error, OSError) as e:
            raise IMAPConnectionError(
                f"Failed to connect to {self.config.imap_server}: {e}"
            ) from e

        try:
            conn.login(self.config.imap_login, self.config.imap_password)
        except (imaplib.IMAP4.abort, OSError) as e:
            raise IMAPConnectionError(
                f"Connection lost during login: {e}"
            ) from e
        except imaplib.IMAP4.error as e:
            raise IMAPConnectionError(
                f"IMAP login rejected for {self.config.imap_login}: {e}",
                retryable=False,
            ) from e

        self.connection = conn
        logger.info(
            "Connected to IMAP server %s:%d",
            self.config.imap_server,
            self.config.imap_port,
        )

    def fetch(self, sequence: int) -> RawEmail | None:
        """Fetch the message at a mailbox sequence position.

        The mailbox is re-selected on every call so that the message count
        reflects newly delivered mail.

        Args:
            sequence: 1-based mailbox sequence number.

        Returns:
            The message, or None if no message exists at that position.

        Raises:
            IMAPConnectionError: On transport failure (connection dropped).
            ProtocolError: If the server rejects SELECT or answers FETCH
                with a malformed response.
        """
        if self.connection is None:
            self.connect()
        conn = self.connection
        assert conn is not None

        try:
            status, data = conn.select(self.config.imap_session)
            if status != "OK":
                raise ProtocolError(
                    f"Cannot select mailbox {self.config.imap_session!r}: "
                    f"{data!r}"
                )
            exists = _message_count(data)
            if sequence > exists:
                return None

            status, data = conn.fetch(str(sequence), "(RFC822)")
        except (imaplib.IMAP4.abort, OSError) as e:
            self.disconnect()
            raise IMAPConnectionError(f"Failed to fetch message: {e}") from e
        except imaplib.IMAP4.error as e:
            raise ProtocolError(f"IMAP command failed: {e}") from e

        # IMAP fetch returns data like [(header, body), b')']
        if status != "OK" or not data or not isinstance(data[0], tuple):
            logger.debug(
                "No message at position %d (status %s)", sequence, status
            )
            return None

        message_bytes = data[0][1]
        if not isinstance(message_bytes, bytes):
            raise ProtocolError(
                f"Unexpected message body type for position {sequence}: "
                f"{type(message_bytes).__name__}"
            )
        return RawEmail(
            sequence=sequence,
            text=message_bytes.decode("utf-8", errors="replace"),
        )

    def disconnect(self) -> None:
        """Log out and drop the connection. Errors during logout are ignored."""
        if self.connection is None:
            return
        try:
            self.connection.logout()
            logger.debug("Disconnected from IMAP server")
        except (imaplib.IMAP4.error, OSError) as e:
            logger.debug("Error during IMAP logout: %s", e)
        finally:
            self.connection = None


def _message_count(select_data: list) -> int:
    """Parse the EXISTS count from a SELECT response."""
    try:
        return int(select_data[0])
    except (IndexError, TypeError, ValueError):
        raise ProtocolError(
            f"Unexpected SELECT response: {select_data!r}"
        ) from None
