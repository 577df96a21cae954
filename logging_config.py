#!/usr/bin/env python3
import logging
import sys

from constants import C_BLUE, C_RED, C_RESET, C_YELLOW

_LEVEL_COLORS = {
    logging.DEBUG: C_BLUE,
    logging.WARNING: C_YELLOW,
    logging.ERROR: C_RED,
    logging.CRITICAL: C_RED,
}


class ColorFormatter(logging.Formatter):
    """Console formatter that colors warnings and errors."""

    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)
        color = _LEVEL_COLORS.get(record.levelno)
        if color:
            return f"{color}{message}{C_RESET}"
        return message


def setup_logging(level: str = "INFO") -> None:
    """Configures the root logger once for console output."""
    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))
    if any(getattr(handler, "_arb_console", False) for handler in root.handlers):
        return

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(ColorFormatter(
        '[%(asctime)s] %(levelname)s %(name)s: %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S',
    ))
    handler._arb_console = True
    root.addHandler(handler)

    # ccxt and httpx are chatty at INFO
    logging.getLogger("ccxt").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
