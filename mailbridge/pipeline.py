# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Email-to-IRC transformation pipeline.

Turns the raw RFC 822 text of one mailbox entry into a forwarding
decision.  A message is forwarded to IRC when its subject line starts with
the ``SendToIRC`` marker, names a recipient as the second word, and carries
an HTML part from which the message text can be recovered::

    Subject: SendToIRC radical_ed
    ...
    <html>
     <head></head>
     <body> <span>42</span> <br> </body>
    </html>

relays ``42`` to ``radical_ed``.

Each stage is a pure function of its input.  ``transform`` runs them in
order and never raises: a stage that cannot produce a value leaves the
corresponding field of ``ParsedMessage`` as None.
"""

import logging
import re
from dataclasses import dataclass

from mailbridge.errors import ParseDefect
from mailbridge.html_text import parse_fragment


logger = logging.getLogger(__name__)

FORWARD_MARKER = "SendToIRC"

_SUBJECT_RE = re.compile(r"^Subject: [^\r\n]*", re.MULTILINE)
_MARKER_RE = re.compile(rf"^{FORWARD_MARKER}", re.MULTILINE)
# Spans from the first <html at line start to the last </html>
_HTML_BLOCK_RE = re.compile(r"^<html.*>.*</html>", re.MULTILINE | re.DOTALL)


@dataclass(frozen=True)
class RawEmail:
    """Full text of one mailbox entry.

    Attributes:
        sequence: Mailbox sequence number the text was fetched from.
        text: Decoded RFC 822 message.
    """

    sequence: int
    text: str


@dataclass(frozen=True)
class ParsedMessage:
    """Outcome of running the pipeline over one email.

    Attributes:
        subject: Subject text, or None if no Subject line was found.
        marker_found: Whether the subject carries the forward marker.
        recipient: IRC target (second subject word), if extractable.
        body: Text recovered from the HTML part, if any.
    """

    subject: str | None
    marker_found: bool
    recipient: str | None
    body: str | None

    @property
    def forward(self) -> bool:
        """True when the email should be relayed to IRC."""
        return (
            self.marker_found
            and self.recipient is not None
            and self.body is not None
        )


def parse_subject(text: str) -> str | None:
    """Return the subject of a raw email.

    The first ``Subject:`` line is split on colons and the second field
    is taken, so anything after a further colon in the subject is dropped
    (``Subject: SendToIRC 10:30`` gives ``SendToIRC 10``).
    """
    match = _SUBJECT_RE.search(text)
    if match is None:
        return None
    return match.group(0).split(":")[1].lstrip()


def has_forward_marker(subject: str | None) -> bool:
    """Check whether a subject line starts with the forward marker."""
    if subject is None:
        return False
    return _MARKER_RE.search(subject) is not None


def extract_recipient(subject: str) -> str:
    """Return the IRC recipient named in a subject.

    Raises:
        ParseDefect: If the subject has fewer than two words.
    """
    words = subject.split()
    if len(words) < 2:
        raise ParseDefect(
            f"Subject {subject!r} does not name a recipient"
        )
    return words[1]


def extract_body(text: str) -> str | None:
    """Recover the message text from the HTML part of a raw email.

    The HTML region is located textually, not through MIME structure.
    Within it, the text is that of the first element inside the last
    container of the document root (the ``<span>`` under ``<body>`` in the
    usual client skeleton).

    Returns:
        The flattened text, or None if there is no HTML region, the parser
        rejects the markup, or the markup does not have the expected shape.
    """
    match = _HTML_BLOCK_RE.search(text)
    if match is None:
        return None

    try:
        document = parse_fragment(match.group(0))
    except (AssertionError, ValueError) as e:
        # html.parser rejects some declarations, e.g. unknown <![...]>
        logger.debug("Unparseable HTML region: %s", e)
        return None

    root = document.first_element()
    if root is None:
        return None
    container = root.last_element()
    if container is None:
        return None
    target = container.first_element()
    if target is None:
        return None
    return target.text_content()


def transform(email: RawEmail) -> ParsedMessage:
    """Run the full pipeline over one email. Never raises."""
    subject = parse_subject(email.text)
    marker_found = has_forward_marker(subject)

    recipient = None
    if subject is not None:
        try:
            recipient = extract_recipient(subject)
        except ParseDefect as e:
            logger.debug("Message %d: %s", email.sequence, e)

    body = extract_body(email.text)

    return ParsedMessage(
        subject=subject,
        marker_found=marker_found,
        recipient=recipient,
        body=body,
    )
