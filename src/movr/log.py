"""Logging setup for the CLI and the API server."""
from __future__ import annotations

import logging
import re

from rich.console import Console
from rich.logging import RichHandler

_PRIVATE_KEY = re.compile(r"(ed25519-priv-)?0x[0-9a-fA-F]{64}(?![0-9a-fA-F])")
_BEARER = re.compile(r"(bearer\s+)[\w\-\.]+", re.I)


class RedactSecrets(logging.Filter):
    """Mask private keys and tokens in formatted messages.

    Addresses are also 64 hex chars, so hex values are only masked in
    messages that mention a private key.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        redacted = message
        if "priv" in message:
            redacted = _PRIVATE_KEY.sub("[REDACTED]", redacted)
        redacted = _BEARER.sub(r"\1[REDACTED]", redacted)
        if redacted != message:
            record.msg = redacted
            record.args = ()
        return True


def configure_logging(verbose: bool = False) -> None:
    """Route movr's loggers to a Rich handler on stderr.

    INFO and up with *verbose*, WARNING and up otherwise. Safe to call twice.
    """
    logger = logging.getLogger("movr")
    for handler in list(logger.handlers):
        logger.removeHandler(handler)

    handler = RichHandler(
        console=Console(stderr=True),
        show_path=verbose,
        rich_tracebacks=verbose,
        markup=False,
    )
    handler.setFormatter(logging.Formatter("%(message)s", datefmt="[%X]"))
    handler.addFilter(RedactSecrets())

    logger.addHandler(handler)
    logger.setLevel(logging.INFO if verbose else logging.WARNING)
    logger.propagate = False
