# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Error taxonomy shared by the bridge loops.

Every error raised by the mailbox, IRC, and dispatcher layers derives from
``BridgeError`` and carries a ``retryable`` flag that the owning loop uses
to decide between backoff-and-retry and shutdown.
"""


class BridgeError(Exception):
    """Base class for bridge runtime errors.

    Attributes:
        retryable: Whether the operation may succeed if attempted again
            (e.g. a dropped TCP connection), as opposed to a permanent
            failure such as rejected credentials.
    """

    retryable: bool = False

    def __init__(self, message: str = "", *, retryable: bool | None = None):
        super().__init__(message)
        if retryable is not None:
            self.retryable = retryable


class TransportError(BridgeError):
    """TCP, TLS, or mail-protocol I/O failure.

    Transient by default. Authentication rejections are raised with
    ``retryable=False``.
    """

    retryable = True


class ProtocolError(BridgeError):
    """Malformed IRC line or unexpected mail-protocol response."""


class ParseDefect(BridgeError):
    """Email subject is structurally insufficient for forwarding."""
