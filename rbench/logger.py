"""Coloured logging configuration for rbench.

This module provides a pre-configured logger with coloured output formatting
for status messages. Benchmark output itself is never routed through it.
"""

from __future__ import annotations

import logging
import re
from typing import ClassVar

CONTROL_CHARS = re.compile(r"[\x00-\x08\x0B\x0C\x0E-\x1F\x7F]")


class LogMessageFilter(logging.Filter):
    """A logging filter to remove problematic control characters from log messages."""

    def filter(self, record: logging.LogRecord) -> bool:
        """Filter log records, removing only problematic control characters.

        Returns:
            True if the log record should be processed, False otherwise.
        """
        if isinstance(record.msg, str):
            record.msg = CONTROL_CHARS.sub("", record.msg)
        if record.exc_text:
            record.exc_text = CONTROL_CHARS.sub("", record.exc_text)
        return True


class ColoredFormatter(logging.Formatter):
    """Custom formatter that adds colour codes to different log levels."""

    COLORS: ClassVar[dict[str, str]] = {
        "DEBUG": "\033[90m",  # Grey
        "INFO": "\033[92m",  # Green
        "WARNING": "\033[93m",  # Yellow
        "ERROR": "\033[91m",  # Red
        "CRITICAL": "\033[95m",  # Magenta
    }
    RESET: ClassVar[str] = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        """Format the log record with appropriate colours.

        Returns:
            The formatted log record with appropriate colours.
        """
        colour = self.COLORS.get(record.levelname, "")
        formatted = super().format(record)
        if colour:
            formatted = f"{colour}{formatted}{self.RESET}"
        return formatted


logger = logging.getLogger("rbench")
logger.setLevel(logging.DEBUG)

console_handler = logging.StreamHandler()
console_handler.setLevel(logging.INFO)
console_handler.setFormatter(ColoredFormatter("%(asctime)s - %(levelname)s - %(message)s"))
console_handler.addFilter(LogMessageFilter())

logger.addHandler(console_handler)

# Prevent duplicate logs from root logger
logger.propagate = False


def set_debug(debug: bool) -> None:
    """Switch the console handler between INFO and DEBUG output."""
    console_handler.setLevel(logging.DEBUG if debug else logging.INFO)
