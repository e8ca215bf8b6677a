# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Root logger setup for the bridge, with password redaction.

Modules log through ``logging.getLogger(__name__)``; only the CLI entry
point calls ``configure_logging``.  Every line passes through
``SecretFilter`` so that credentials echoed back by an IMAP or SMTP
server are masked before they reach the console.
"""

import logging
import re
from typing import ClassVar


DEFAULT_FORMAT = (
    "%(asctime)s - %(threadName)s - %(name)s - %(levelname)s - %(message)s"
)

REDACTED = "[REDACTED]"


class SecretFilter(logging.Filter):
    """Handler filter masking registered secrets.

    Secrets are held at class level, so registering one affects every
    installed filter::

        SecretFilter.register_secret("hunter2")
        logger.warning("LOGIN failed for %s", "hunter2")
        # LOGIN failed for [REDACTED]
    """

    _secrets: ClassVar[set[str]] = set()
    _pattern: ClassVar[re.Pattern[str] | None] = None

    @classmethod
    def redact(cls, text: str) -> str:
        """Return ``text`` with every registered secret masked."""
        if cls._pattern is None:
            return text
        return cls._pattern.sub(REDACTED, text)

    def filter(self, record: logging.LogRecord) -> bool:
        """Mask secrets in the message template and its string arguments.

        Returns:
            Always True; records are rewritten, never dropped.
        """
        if self._pattern is None:
            return True
        record.msg = self.redact(str(record.msg))
        if isinstance(record.args, tuple):
            record.args = tuple(
                self.redact(a) if isinstance(a, str) else a
                for a in record.args
            )
        return True

    @classmethod
    def register_secret(cls, secret: str) -> None:
        """Add a secret to mask. Empty strings are ignored."""
        if not secret:
            return
        cls._secrets.add(secret)
        cls._rebuild_pattern()

    @classmethod
    def clear_secrets(cls) -> None:
        """Forget all secrets (tests only)."""
        cls._secrets.clear()
        cls._rebuild_pattern()

    @classmethod
    def _rebuild_pattern(cls) -> None:
        if not cls._secrets:
            cls._pattern = None
            return
        # Longest first so a secret containing another is masked whole
        ordered = sorted(cls._secrets, key=len, reverse=True)
        cls._pattern = re.compile("|".join(map(re.escape, ordered)))


def configure_logging(
    level: int = logging.INFO,
    format_string: str | None = None,
    add_secret_filter: bool = True,
) -> None:
    """Send all log records to stderr through a single handler.

    Any handlers already on the root logger are replaced, so calling this
    twice does not duplicate output.

    Args:
        level: Root logger level (``logging.DEBUG`` with ``--debug``).
        format_string: Record format; defaults to ``DEFAULT_FORMAT``, which
            includes the worker thread name.
        add_secret_filter: Install ``SecretFilter`` on the handler.
    """
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter(format_string or DEFAULT_FORMAT))
    if add_secret_filter:
        handler.addFilter(SecretFilter())

    root = logging.getLogger()
    for existing in list(root.handlers):
        root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(level)
