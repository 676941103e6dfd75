"""
Logging configuration for the statement pipeline.
Masks full card numbers before records reach the handler.
"""
import logging
import os
import re
import sys
from typing import Optional

# 12-19 digits, optionally grouped by spaces or dashes
_PAN_PATTERN = re.compile(r"\b(?:\d[ -]?){11,18}(\d{4})\b")


class CardNumberFilter(logging.Filter):
    """Replace anything that looks like a full card number with its last four digits."""

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        masked = _PAN_PATTERN.sub(r"****\1", message)
        if masked != message:
            record.msg = masked
            record.args = None
        return True


def setup_logger(name: str, level: Optional[str] = None) -> logging.Logger:
    """
    Configure and return a logger instance.

    Args:
        name: Logger name (usually __name__)
        level: Log level (DEBUG, INFO, WARNING, ERROR). Defaults to env LOG_LEVEL or INFO.

    Returns:
        Configured logger instance
    """
    log_level = (level or os.getenv("LOG_LEVEL", "INFO")).upper()
    if log_level not in logging.getLevelNamesMapping():
        log_level = "INFO"

    logger = logging.getLogger(name)
    logger.setLevel(log_level)

    # Avoid duplicate handlers
    if not logger.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setLevel(log_level)
        handler.addFilter(CardNumberFilter())

        formatter = logging.Formatter(
            fmt="%(asctime)s | %(name)s | %(levelname)s | %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S"
        )
        handler.setFormatter(formatter)
        logger.addHandler(handler)

    return logger
