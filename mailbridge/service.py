# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Bridge service orchestrator.

This module contains:
- BridgeService: wires the mailbox poller, IRC session, and mail
  dispatcher together through two bounded queues
- main: CLI entry point
"""

from __future__ import annotations

import argparse
import logging
import queue
import signal
import threading
from pathlib import Path

from mailbridge.config import BridgeConfig, ConfigError
from mailbridge.dispatcher import MailDispatcher
from mailbridge.errors import BridgeError
from mailbridge.irc_session import IrcSession, RelayRequest
from mailbridge.logging import configure_logging
from mailbridge.mailbox import MailboxReader
from mailbridge.poller import ForwardRequest, MailboxPoller


logger = logging.getLogger(__name__)

#: Seconds to wait for each worker thread on shutdown.
JOIN_TIMEOUT_SECONDS = 10


class BridgeService:
    """Runs both bridge loops until shutdown or a fatal failure.

    Attributes:
        config: Bridge configuration.
        to_irc: Poll -> IRC handoff queue.
        to_mail: IRC -> dispatcher handoff queue.
    """

    def __init__(
        self,
        config: BridgeConfig,
        *,
        poller: MailboxPoller | None = None,
        session: IrcSession | None = None,
        dispatcher: MailDispatcher | None = None,
    ) -> None:
        self.config = config
        self._shutdown = threading.Event()
        self._stopped = False
        self._stop_lock = threading.Lock()
        self.to_irc: queue.Queue[ForwardRequest] = queue.Queue(
            maxsize=config.queue_size
        )
        self.to_mail: queue.Queue[RelayRequest] = queue.Queue(
            maxsize=config.queue_size
        )
        self.poller = poller or MailboxPoller(
            config, self.to_irc, self._shutdown
        )
        self.session = session or IrcSession(
            config, self.to_irc, self.to_mail, self._shutdown
        )
        self.dispatcher = dispatcher or MailDispatcher(
            config, self.to_mail, self._shutdown
        )

    @property
    def shutdown_event(self) -> threading.Event:
        return self._shutdown

    def check_mailbox(self) -> None:
        """Verify mailbox credentials before starting the loops.

        Raises:
            TransportError: If the IMAP server is unreachable or rejects
                the login.
        """
        reader = MailboxReader(self.config)
        try:
            reader.connect()
        finally:
            reader.disconnect()

    def start(self) -> None:
        """Start all workers and block until shutdown.

        Raises:
            BridgeError: The error that ended a loop, if one failed.
        """
        logger.info(
            "Bridging %s (mailbox %s) with IRC %s as %s",
            self.config.imap_login,
            self.config.imap_session,
            self.config.irc_server,
            self.config.irc_nick,
        )
        self.dispatcher.start()
        self.session.start()
        self.poller.start()

        self._shutdown.wait()
        self.stop()

        error = self.poller.error or self.session.error
        if error is not None:
            raise error

    def stop(self) -> None:
        """Stop all workers. Safe to call more than once."""
        with self._stop_lock:
            if self._stopped:
                return
            self._stopped = True

        logger.info("Stopping bridge...")
        self._shutdown.set()
        self.session.stop()
        self.poller.join(timeout=JOIN_TIMEOUT_SECONDS)
        self.session.join(timeout=JOIN_TIMEOUT_SECONDS)
        self.dispatcher.join(timeout=JOIN_TIMEOUT_SECONDS)
        logger.info(
            "Bridge stopped (mailbox position %d, %d emails sent, %d failed)",
            self.poller.cursor,
            self.dispatcher.sent_count,
            self.dispatcher.failed_count,
        )


def main(argv: list[str] | None = None) -> int:
    """Main entry point.

    Args:
        argv: Command-line arguments. If None, uses sys.argv[1:].

    Returns:
        Exit code (0=success, 1=config error, 2=startup, 3=runtime error).
    """
    parser = argparse.ArgumentParser(
        description="Bridge an email inbox with an IRC channel",
        epilog=(
            "Emails whose subject starts with 'SendToIRC <nick>' are relayed "
            "to IRC; IRC messages are relayed back as email."
        ),
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug logging",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        metavar="PATH",
        help=(
            "Path to mailbridge.yaml config file"
            " (default: ~/.config/mailbridge/mailbridge.yaml)"
        ),
    )
    args = parser.parse_args(argv)

    configure_logging(
        level=logging.DEBUG if args.debug else logging.INFO,
        add_secret_filter=True,
    )

    try:
        config = BridgeConfig.from_yaml(config_path=args.config)
    except ConfigError as e:
        logger.critical("Configuration error: %s", e)
        return 1

    service = BridgeService(config)

    try:
        service.check_mailbox()
    except BridgeError as e:
        logger.critical("Startup failed: %s", e)
        return 2

    def shutdown_handler(signum: int, frame: object) -> None:
        """Handle shutdown signals."""
        logger.info("Received signal %d, initiating shutdown...", signum)
        service.shutdown_event.set()

    signal.signal(signal.SIGINT, shutdown_handler)
    signal.signal(signal.SIGTERM, shutdown_handler)

    try:
        service.start()
        return 0
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        return 0
    except BridgeError as e:
        logger.critical("Fatal runtime error: %s", e)
        return 3
    finally:
        service.stop()
