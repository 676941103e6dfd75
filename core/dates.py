"""
Date normalization for statement line items.
Converts the date spellings issuers print into YYYY-MM-DD.
"""
import re
import warnings
from datetime import date
from typing import Optional

import pandas as pd

from core.logger import setup_logger

logger = setup_logger(__name__)

ISO_PATTERN = re.compile(r"^(\d{4})-(\d{2})-(\d{2})$")
US_SLASH_PATTERN = re.compile(r"^(\d{1,2})/(\d{1,2})/(\d{4})$")
DAY_FIRST_HYPHEN_PATTERN = re.compile(r"^(\d{1,2})-(\d{1,2})-(\d{4})$")


def _format(year: int, month: int, day: int) -> Optional[str]:
    """Return YYYY-MM-DD if the parts form a real calendar date."""
    try:
        return date(year, month, day).isoformat()
    except ValueError:
        return None


def _calendar_parse(text: str) -> Optional[str]:
    """Fallback parse for spelled-out dates such as 'Jan 2, 2025'."""
    try:
        with warnings.catch_warnings():
            warnings.simplefilter("ignore")
            parsed = pd.to_datetime(text, errors="coerce")
    except Exception:  # noqa: BLE001
        return None
    if parsed is None or pd.isna(parsed):
        return None
    return parsed.strftime("%Y-%m-%d")


def normalize_date(raw: Optional[str]) -> str:
    """
    Normalize a raw statement date to YYYY-MM-DD.

    Patterns are tried in order: ISO, US month/day/year, day-month-year with
    hyphens, then a general calendar parse. Unrecognized input is returned
    unchanged.

    Args:
        raw: Date text as detected on the document

    Returns:
        Canonical date string, or the original text
    """
    if raw is None:
        return ""
    text = str(raw).strip()
    if not text:
        return raw

    match = ISO_PATTERN.match(text)
    if match:
        result = _format(int(match.group(1)), int(match.group(2)), int(match.group(3)))
        if result:
            return result

    match = US_SLASH_PATTERN.match(text)
    if match:
        result = _format(int(match.group(3)), int(match.group(1)), int(match.group(2)))
        if result:
            return result

    match = DAY_FIRST_HYPHEN_PATTERN.match(text)
    if match:
        result = _format(int(match.group(3)), int(match.group(2)), int(match.group(1)))
        if result:
            return result

    result = _calendar_parse(text)
    if result:
        return result

    logger.debug(f"Unrecognized date format, passing through: '{raw}'")
    return raw
