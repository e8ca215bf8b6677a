# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Email <-> IRC bridge.

Relays emails whose subject starts with ``SendToIRC <nick>`` to IRC, and
IRC chat messages back to the mailbox as email:
- Transformation pipeline (pipeline.py)
- Mailbox poll loop (mailbox.py, poller.py)
- IRC session loop (irc.py, irc_session.py)
- Mail dispatcher (dispatcher.py)
- Configuration loading (config.py)
"""

from mailbridge.config import BridgeConfig, ConfigError
from mailbridge.dispatcher import (
    MailDispatcher,
    OutboundEmail,
    SMTPSendError,
    build_outbound_email,
)
from mailbridge.errors import (
    BridgeError,
    ParseDefect,
    ProtocolError,
    TransportError,
)
from mailbridge.irc_session import IrcSession, RelayRequest, SessionState
from mailbridge.mailbox import IMAPConnectionError, MailboxReader
from mailbridge.pipeline import ParsedMessage, RawEmail, transform
from mailbridge.poller import ForwardRequest, MailboxPoller
from mailbridge.service import BridgeService, main


__all__ = [
    "BridgeConfig",
    "BridgeError",
    "BridgeService",
    "ConfigError",
    "ForwardRequest",
    "IMAPConnectionError",
    "IrcSession",
    "MailDispatcher",
    "MailboxPoller",
    "MailboxReader",
    "OutboundEmail",
    "ParseDefect",
    "ParsedMessage",
    "ProtocolError",
    "RawEmail",
    "RelayRequest",
    "SMTPSendError",
    "SessionState",
    "TransportError",
    "build_outbound_email",
    "main",
    "transform",
]
