# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""IRC session loop.

Owns the single IRC connection of the bridge.  After connecting, the
session registers (USER and NICK, without waiting for the server's
welcome) and then reads the line stream:

- PING is answered with a PONG before the next line is read.
- PRIVMSG is handed to the mail dispatcher as a RelayRequest.
- RPL_WELCOME (001) marks the connection ready for relaying.
- Everything else is ignored.

Two threads share the connection.  The reader thread runs the loop above;
the relay pump drains ForwardRequests from the mailbox poller and sends
them as PRIVMSG lines.  The pump only takes requests while the server has
welcomed the current connection, so emails wait in the queue through
connects and reconnect backoff.  Both threads write through
``IrcWriter``, which serializes writes so lines never interleave.
"""

from __future__ import annotations

import logging
import queue
import socket
import threading
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum

from mailbridge.config import BridgeConfig
from mailbridge.errors import BridgeError, ProtocolError, TransportError
from mailbridge.irc import (
    RPL_WELCOME,
    Other,
    Ping,
    PrivMsg,
    format_privmsg,
    format_pong,
    format_registration,
    parse_event,
)
from mailbridge.poller import ForwardRequest, backoff_seconds


logger = logging.getLogger(__name__)


class IRCConnectionError(TransportError):
    """Raised when the IRC connection cannot be opened, read, or written."""


class SessionState(Enum):
    """Lifecycle of the IRC session.

    Attributes:
        CONNECTING: Opening the TCP connection.
        REGISTERING: Sending USER and NICK.
        READING: Processing the server's line stream.
        CLOSED: Server ended the stream cleanly.
        FAILED: Gave up after an unrecoverable error.
    """

    CONNECTING = "connecting"
    REGISTERING = "registering"
    READING = "reading"
    CLOSED = "closed"
    FAILED = "failed"


@dataclass(frozen=True)
class RelayRequest:
    """IRC chat message to be sent out as email."""

    channel: str
    text: str


class IrcWriter:
    """Single point of serialization for writes to the IRC socket."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._sock: socket.socket | None = None

    @property
    def connected(self) -> bool:
        return self._sock is not None

    def attach(self, sock: socket.socket) -> None:
        with self._lock:
            self._sock = sock

    def detach(self) -> None:
        with self._lock:
            self._sock = None

    def send(self, line: str) -> None:
        """Write one complete line.

        Raises:
            IRCConnectionError: If not connected or the write fails.
        """
        with self._lock:
            if self._sock is None:
                raise IRCConnectionError("Not connected to IRC server")
            try:
                self._sock.sendall(line.encode("utf-8"))
            except OSError as e:
                raise IRCConnectionError(f"IRC write failed: {e}") from e


class IrcSession:
    """IRC connection with registration, keepalive, and relay in both ways.

    Attributes:
        writer: Serialized writer for the current connection.
        error: Error that ended the session, if it failed.
    """

    def __init__(
        self,
        config: BridgeConfig,
        inbox: queue.Queue[ForwardRequest],
        relay: queue.Queue[RelayRequest],
        shutdown: threading.Event,
        *,
        connect: Callable[..., socket.socket] = socket.create_connection,
    ) -> None:
        """Initialize the session.

        Args:
            config: Bridge configuration.
            inbox: Poll -> IRC queue of emails to send as PRIVMSG.
            relay: IRC -> dispatcher queue for received PRIVMSGs.
            shutdown: Shared event; set to stop, and set by the session
                when it ends.
            connect: Factory with the ``socket.create_connection``
                signature.
        """
        self._config = config
        self._inbox = inbox
        self._relay = relay
        self._shutdown = shutdown
        self._connect = connect
        self._sock: socket.socket | None = None
        self._state = SessionState.CONNECTING
        self._reader_thread: threading.Thread | None = None
        self._pump_thread: threading.Thread | None = None
        self._welcomed = threading.Event()
        self._log = logging.LoggerAdapter(logger, {"component": "irc"})
        self.writer = IrcWriter()
        self.error: BridgeError | None = None

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def welcomed(self) -> bool:
        """Whether the server has accepted registration on this connection."""
        return self._welcomed.is_set()

    def start(self) -> None:
        """Start the reader and relay pump threads."""
        self._reader_thread = threading.Thread(
            target=self.run, daemon=True, name="IrcReader"
        )
        self._pump_thread = threading.Thread(
            target=self.pump, daemon=True, name="IrcRelayPump"
        )
        self._reader_thread.start()
        self._pump_thread.start()

    def stop(self) -> None:
        """Request shutdown and unblock the reader."""
        self._shutdown.set()
        sock = self._sock
        if sock is not None:
            try:
                sock.shutdown(socket.SHUT_RDWR)
            except OSError:
                # Already closed
                pass

    def join(self, timeout: float | None = None) -> None:
        for thread in (self._reader_thread, self._pump_thread):
            if thread is not None:
                thread.join(timeout=timeout)
                if thread.is_alive():
                    self._log.warning(
                        "%s thread did not terminate in time", thread.name
                    )

    def run(self) -> None:
        """Connect, register, and read until the stream ends or fails.

        Transport errors trigger a reconnect with exponential backoff, up
        to ``irc_max_reconnect_attempts`` consecutive failures.  Any other
        exception fails the session and sets the shutdown event.
        """
        attempts = 0
        while not self._shutdown.is_set():
            try:
                self.connect_and_register()
                attempts = 0
                self.read_lines()
                self._state = SessionState.CLOSED
                if not self._shutdown.is_set():
                    self._log.info("IRC server closed the connection")
                self._shutdown.set()
                return
            except TransportError as e:
                if self._shutdown.is_set():
                    return
                attempts += 1
                if attempts >= self._config.irc_max_reconnect_attempts:
                    self._state = SessionState.FAILED
                    self.error = e
                    self._log.critical(
                        "IRC connection failed after %d attempts: %s",
                        attempts,
                        e,
                    )
                    self._shutdown.set()
                    return
                delay = backoff_seconds(attempts)
                self._log.error(
                    "IRC connection error (attempt %d/%d), "
                    "reconnecting in %ds: %s",
                    attempts,
                    self._config.irc_max_reconnect_attempts,
                    delay,
                    e,
                )
                self._shutdown.wait(delay)
            except Exception as e:
                self._state = SessionState.FAILED
                self._log.exception("IRC session crashed: %s", e)
                self.error = BridgeError(f"IRC session crashed: {e}")
                self._shutdown.set()
                return
            finally:
                self._close_socket()

    def connect_and_register(self) -> None:
        """Open the connection and send USER and NICK.

        Raises:
            IRCConnectionError: If the connection or a write fails.
        """
        config = self._config
        self._state = SessionState.CONNECTING
        self._log.info("Connecting to IRC server %s", config.irc_server)
        try:
            sock = self._connect(
                (config.irc_host, config.irc_port),
                timeout=config.irc_connect_timeout_seconds,
            )
            sock.settimeout(config.irc_read_timeout_seconds)
        except OSError as e:
            raise IRCConnectionError(
                f"Failed to connect to {config.irc_server}: {e}"
            ) from e
        self._sock = sock
        self.writer.attach(sock)

        self._state = SessionState.REGISTERING
        for line in format_registration(
            config.irc_user,
            config.irc_nick,
            config.irc_first_name,
            config.irc_last_name,
        ):
            self.writer.send(line)
        self._state = SessionState.READING
        self._log.info("Registered with IRC as %s", config.irc_nick)

    def read_lines(self) -> None:
        """Read and dispatch lines until end of stream.

        Returns normally on clean end of stream.

        Raises:
            IRCConnectionError: If a read or a PONG write fails.
        """
        assert self._sock is not None
        stream = self._sock.makefile("rb")
        try:
            while True:
                try:
                    raw = stream.readline()
                except OSError as e:
                    raise IRCConnectionError(f"IRC read failed: {e}") from e
                if not raw:
                    return
                self.handle_line(raw.decode("utf-8", errors="replace"))
        finally:
            stream.close()

    def handle_line(self, line: str) -> None:
        """Dispatch one received line.

        Raises:
            IRCConnectionError: If a PONG reply cannot be written.
        """
        line = line.rstrip("\r\n")
        if not line:
            return
        self._log.debug("<< %s", line)
        try:
            event = parse_event(line)
        except ProtocolError as e:
            self._log.warning("Ignoring malformed IRC line: %s", e)
            return

        if isinstance(event, Ping):
            self.writer.send(format_pong(event.token))
            self._log.debug("Answered PING %s", event.token)
        elif isinstance(event, Other) and event.command == RPL_WELCOME:
            self._welcomed.set()
            self._log.info("IRC server accepted registration")
        elif isinstance(event, PrivMsg):
            request = RelayRequest(channel=event.channel, text=event.text)
            try:
                self._relay.put_nowait(request)
            except queue.Full:
                self._log.warning(
                    "Relay queue full, dropping message from %s",
                    event.channel,
                )

    def pump(self) -> None:
        """Send queued ForwardRequests as PRIVMSG lines until shutdown.

        Requests are taken off the queue only while the current connection
        is welcomed.  A request whose write fails is kept and sent again
        once the session has reconnected.
        """
        pending: ForwardRequest | None = None
        while not self._shutdown.is_set():
            if not self._welcomed.wait(timeout=1.0):
                continue
            if pending is None:
                try:
                    pending = self._inbox.get(timeout=1.0)
                except queue.Empty:
                    continue
            try:
                self.send_forward(pending)
            except IRCConnectionError as e:
                self._log.warning(
                    "Holding email for IRC %s until reconnect: %s",
                    pending.recipient,
                    e,
                )
                self._shutdown.wait(1.0)
                continue
            except Exception as e:
                self._log.exception(
                    "Failed to relay email for IRC %s: %s",
                    pending.recipient,
                    e,
                )
            pending = None

    def send_forward(self, request: ForwardRequest) -> None:
        """Write one email as a PRIVMSG line.

        Emails that cannot be expressed as an IRC line are dropped with a
        warning.

        Raises:
            IRCConnectionError: If the write fails.
        """
        try:
            line = format_privmsg(request.recipient, request.body)
        except ValueError as e:
            self._log.warning(
                "Dropping email for IRC %s: %s", request.recipient, e
            )
            return
        self.writer.send(line)
        self._log.info("Relayed email to IRC %s", request.recipient)

    def _close_socket(self) -> None:
        self._welcomed.clear()
        self.writer.detach()
        sock, self._sock = self._sock, None
        if sock is not None:
            try:
                sock.close()
            except OSError:
                pass
