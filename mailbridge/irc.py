# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""IRC line parsing and formatting.

Covers the subset of RFC 1459 / IRCv3 message syntax the bridge needs::

    [@tags] [:prefix] COMMAND [param ...] [:trailing]

Incoming lines become ``IrcMessage`` values and then one of the ``IrcEvent``
variants the session loop dispatches on.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from mailbridge.errors import ProtocolError


logger = logging.getLogger(__name__)

LINE_TERMINATOR = "\n"

#: RFC 1459 line limit, terminator included.
MAX_LINE_BYTES = 512

#: Bytes left free for the source prefix a server adds when relaying.
PREFIX_RESERVE = 100

#: Numeric reply confirming registration.
RPL_WELCOME = "001"

_FORBIDDEN_CHARS = ("\r", "\n", "\0")


@dataclass(frozen=True)
class IrcMessage:
    """Generic parsed IRC message.

    Attributes:
        command: Upper-cased command or numeric reply.
        params: Parameters, with the trailing parameter (if any) last.
        prefix: Message source without the leading colon.
        tags: Raw IRCv3 tag string without the leading ``@``.
    """

    command: str
    params: tuple[str, ...] = ()
    prefix: str | None = None
    tags: str | None = None


@dataclass(frozen=True)
class Ping:
    """Server keepalive; must be answered with a PONG echoing ``token``."""

    token: str


@dataclass(frozen=True)
class PrivMsg:
    """Chat message delivered to a channel or to the bridge's nick."""

    channel: str
    text: str
    sender: str | None = field(default=None, compare=False)


@dataclass(frozen=True)
class Other:
    """Any message the bridge does not act on."""

    command: str


IrcEvent = Ping | PrivMsg | Other


def parse_line(line: str) -> IrcMessage:
    """Parse one IRC line (without its terminator).

    Raises:
        ProtocolError: If the line is empty or has no command.
    """
    rest = line.rstrip("\r\n")
    tags = None
    prefix = None

    if rest.startswith("@"):
        tags, _, rest = rest[1:].partition(" ")
        rest = rest.lstrip(" ")
    if rest.startswith(":"):
        prefix, _, rest = rest[1:].partition(" ")
        rest = rest.lstrip(" ")

    trailing = None
    if " :" in rest:
        rest, trailing = rest.split(" :", 1)
    elif rest.startswith(":"):
        raise ProtocolError(f"Missing command in IRC line: {line!r}")

    words = rest.split()
    if not words:
        raise ProtocolError(f"Missing command in IRC line: {line!r}")

    params = words[1:]
    if trailing is not None:
        params.append(trailing)

    return IrcMessage(
        command=words[0].upper(),
        params=tuple(params),
        prefix=prefix,
        tags=tags,
    )


def to_event(message: IrcMessage) -> IrcEvent:
    """Classify a parsed message.

    Raises:
        ProtocolError: If PING or PRIVMSG lack required parameters.
    """
    if message.command == "PING":
        if not message.params:
            raise ProtocolError("PING without a token")
        return Ping(token=message.params[0])
    if message.command == "PRIVMSG":
        if len(message.params) < 2:
            raise ProtocolError(
                f"PRIVMSG needs a target and text: {message.params!r}"
            )
        sender = message.prefix.split("!", 1)[0] if message.prefix else None
        return PrivMsg(
            channel=message.params[0], text=message.params[1], sender=sender
        )
    return Other(command=message.command)


def parse_event(line: str) -> IrcEvent:
    """Parse one line straight into an event."""
    return to_event(parse_line(line))


def format_line(command: str, *params: str) -> str:
    """Serialize a command and parameters into a terminated IRC line.

    The last parameter is sent as a trailing parameter (``:``-prefixed)
    when it is empty, contains a space, or starts with a colon.

    Raises:
        ValueError: If any part contains CR, LF, or NUL, or a middle
            parameter contains a space.
    """
    for part in (command, *params):
        if any(ch in part for ch in _FORBIDDEN_CHARS):
            raise ValueError(f"IRC line part contains a line break: {part!r}")

    parts = [command]
    if params:
        *middle, last = params
        for param in middle:
            if not param or " " in param or param.startswith(":"):
                raise ValueError(f"Invalid middle IRC parameter: {param!r}")
        parts.extend(middle)
        if not last or " " in last or last.startswith(":"):
            last = ":" + last
        parts.append(last)
    return " ".join(parts) + LINE_TERMINATOR


def format_pong(token: str) -> str:
    return format_line("PONG", token)


def truncate_utf8(text: str, max_bytes: int) -> str:
    """Longest prefix of ``text`` whose UTF-8 encoding fits ``max_bytes``."""
    encoded = text.encode("utf-8")
    if len(encoded) <= max_bytes:
        return text
    return encoded[:max_bytes].decode("utf-8", errors="ignore")


def format_privmsg(target: str, text: str) -> str:
    """PRIVMSG line with line breaks in ``text`` folded to spaces.

    The whole line stays within ``MAX_LINE_BYTES - PREFIX_RESERVE``.
    Longer text is cut at a character boundary and a warning is logged.

    Raises:
        ValueError: If ``target`` is not a valid parameter or leaves no
            room for text.
    """
    flat = " ".join(text.replace("\0", "").splitlines())
    overhead = len(f"PRIVMSG {target} :{LINE_TERMINATOR}".encode("utf-8"))
    budget = MAX_LINE_BYTES - PREFIX_RESERVE - overhead
    if budget <= 0:
        raise ValueError(f"IRC target too long: {target[:40]!r}...")
    fitted = truncate_utf8(flat, budget)
    if fitted != flat:
        logger.warning(
            "Truncated message for %s from %d to %d bytes",
            target,
            len(flat.encode("utf-8")),
            len(fitted.encode("utf-8")),
        )
    return format_line("PRIVMSG", target, fitted)


def format_registration(
    user: str, nick: str, first_name: str, last_name: str
) -> list[str]:
    """USER and NICK lines sent on connect."""
    return [
        format_line("USER", user, "0", "*", f"{first_name} {last_name}"),
        format_line("NICK", nick),
    ]
