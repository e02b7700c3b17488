"""
Logging initialization with labeled level prefixes.
Every module logs through logging.getLogger(__name__); this installs the single
stdout handler those loggers propagate to.
"""

from __future__ import annotations

import logging
import sys
from typing import Optional

__all__ = [
    "setup_logging",
    "reset_logging",
]

_handler: Optional[logging.Handler] = None


class LabeledFormatter(logging.Formatter):
    """Formats records as `LABEL logger: message`."""

    LEVEL_LABELS = {
        logging.DEBUG: "DEBUG",
        logging.INFO: "INFO",
        logging.WARNING: "WARN",
        logging.ERROR: "ERROR",
        logging.CRITICAL: "CRITICAL",
    }

    def format(self, record: logging.LogRecord) -> str:
        label = self.LEVEL_LABELS.get(record.levelno, record.levelname)
        line = f"{label} {record.name}: {record.getMessage()}"
        if record.exc_info:
            line = f"{line}\n{self.formatException(record.exc_info)}"
        return line


def setup_logging(level: str = "info") -> logging.Logger:
    """Attach the labeled stdout handler to the root logger (idempotent)."""
    global _handler

    root = logging.getLogger()
    root.setLevel(getattr(logging, str(level or "info").upper(), logging.INFO))
    if _handler is not None:
        return root

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(LabeledFormatter())
    root.addHandler(handler)
    _handler = handler
    return root


def reset_logging() -> None:
    """Remove the installed handler. Mainly for tests."""
    global _handler
    if _handler is not None:
        logging.getLogger().removeHandler(_handler)
    _handler = None
