# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Mailbox poll loop.

Walks the mailbox by sequence position, starting at the configured
position.  Each message found is run through the transformation pipeline
and, when marked for IRC, handed to the IRC session as a ForwardRequest.
The cursor advances past every message that exists, forwarded or not, and
stays put while the position is still empty.
"""

from __future__ import annotations

import logging
import queue
import threading
from dataclasses import dataclass

from mailbridge.config import BridgeConfig
from mailbridge.errors import BridgeError, TransportError
from mailbridge.mailbox import MailboxReader
from mailbridge.pipeline import transform


logger = logging.getLogger(__name__)

#: Upper bound for the reconnect backoff, in seconds.
MAX_BACKOFF_SECONDS = 300


@dataclass(frozen=True)
class ForwardRequest:
    """Email content to be sent to IRC as one PRIVMSG."""

    recipient: str
    body: str


def backoff_seconds(attempt: int) -> int:
    """Exponential backoff for the given 1-based attempt (10s, 30s, ...)."""
    return min(10 * (3 ** (attempt - 1)), MAX_BACKOFF_SECONDS)


class MailboxPoller:
    """Poll loop feeding the Poll -> IRC handoff queue.

    Runs in its own thread.  Transient IMAP failures are retried with
    exponential backoff; rejected credentials, protocol errors, or
    exhausted retries end the loop, record ``error``, and set the shared
    shutdown event.  An unexpected exception ends the loop the same way,
    recorded as a ``BridgeError``.
    """

    def __init__(
        self,
        config: BridgeConfig,
        outbox: queue.Queue[ForwardRequest],
        shutdown: threading.Event,
        reader: MailboxReader | None = None,
    ) -> None:
        self._config = config
        self._outbox = outbox
        self._shutdown = shutdown
        self._reader = reader or MailboxReader(config)
        self._cursor = config.imap_starting_at
        self._thread: threading.Thread | None = None
        self._log = logging.LoggerAdapter(logger, {"component": "poller"})
        self.error: BridgeError | None = None

    @property
    def cursor(self) -> int:
        """Mailbox sequence position that will be fetched next."""
        return self._cursor

    def start(self) -> None:
        """Start the poll loop thread."""
        self._thread = threading.Thread(
            target=self.run, daemon=True, name="MailboxPoller"
        )
        self._thread.start()
        self._log.info("Mailbox poller started at position %d", self._cursor)

    def join(self, timeout: float | None = None) -> None:
        if self._thread is not None:
            self._thread.join(timeout=timeout)
            if self._thread.is_alive():
                self._log.warning("Poller thread did not terminate in time")

    def poll_once(self) -> bool:
        """Fetch and process the message at the cursor.

        A message the pipeline fails on is logged and skipped.

        Returns:
            True if a message existed at the cursor position.

        Raises:
            TransportError: If the mailbox cannot be reached.
            ProtocolError: If the server response is unusable.
        """
        email = self._reader.fetch(self._cursor)
        if email is None:
            self._log.debug("No new email at position %d", self._cursor)
            return False

        try:
            parsed = transform(email)
        except Exception as e:
            self._log.exception(
                "Failed to process message %d, skipping: %s",
                email.sequence,
                e,
            )
            self._cursor += 1
            return True

        if parsed.forward:
            assert parsed.recipient is not None
            assert parsed.body is not None
            request = ForwardRequest(
                recipient=parsed.recipient, body=parsed.body
            )
            if not self._enqueue(request):
                # Shutting down; leave the cursor on the unsent message
                return True
            self._log.info(
                "Message %d queued for IRC recipient %s",
                email.sequence,
                parsed.recipient,
            )
        elif parsed.marker_found:
            self._log.warning(
                "Message %d is marked for IRC but has no %s; skipping",
                email.sequence,
                "recipient" if parsed.recipient is None else "HTML body",
            )
        else:
            self._log.info(
                "Message %d not marked for IRC forwarding", email.sequence
            )

        self._cursor += 1
        return True

    def run(self) -> None:
        """Poll until shutdown or a fatal error."""
        attempts = 0
        try:
            while not self._shutdown.is_set():
                try:
                    present = self.poll_once()
                    attempts = 0
                except TransportError as e:
                    if not e.retryable:
                        self._fail(e)
                        return
                    attempts += 1
                    if attempts >= self._config.imap_max_reconnect_attempts:
                        self._log.critical(
                            "Mailbox unreachable after %d attempts", attempts
                        )
                        self._fail(e)
                        return
                    delay = backoff_seconds(attempts)
                    self._log.error(
                        "Mailbox error (attempt %d/%d), retrying in %ds: %s",
                        attempts,
                        self._config.imap_max_reconnect_attempts,
                        delay,
                        e,
                    )
                    self._shutdown.wait(delay)
                    continue
                except BridgeError as e:
                    self._fail(e)
                    return
                except Exception as e:
                    self._log.exception("Mailbox poller crashed: %s", e)
                    self._fail(BridgeError(f"Mailbox poller crashed: {e}"))
                    return

                if not present:
                    self._shutdown.wait(self._config.poll_interval_seconds)
        finally:
            self._reader.disconnect()
            self._log.info(
                "Mailbox poller stopped at position %d", self._cursor
            )

    def _enqueue(self, request: ForwardRequest) -> bool:
        """Block until the request is queued or shutdown is requested."""
        while not self._shutdown.is_set():
            try:
                self._outbox.put(request, timeout=1.0)
                return True
            except queue.Full:
                continue
        return False

    def _fail(self, error: BridgeError) -> None:
        self._log.critical("Mailbox poller failed: %s", error)
        self.error = error
        self._shutdown.set()
