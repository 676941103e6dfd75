"""
Unit tests for date normalization.
"""
import pytest

from core.dates import normalize_date


@pytest.mark.parametrize("raw, expected", [
    ("2025-01-02", "2025-01-02"),
    ("01/02/2025", "2025-01-02"),
    ("1/2/2025", "2025-01-02"),
    ("12/31/2024", "2024-12-31"),
    ("02-01-2025", "2025-01-02"),
    ("31-12-2024", "2024-12-31"),
    (" 01/02/2025 ", "2025-01-02"),
])
def test_supported_formats(raw, expected):
    """Supported spellings become YYYY-MM-DD."""
    assert normalize_date(raw) == expected


def test_spelled_out_month():
    """Month names fall through to the calendar parse."""
    assert normalize_date("Jan 2, 2025") == "2025-01-02"


def test_idempotent():
    """Normalizing a normalized date changes nothing."""
    once = normalize_date("03/15/2025")
    assert normalize_date(once) == once


def test_unrecognized_passes_through():
    """Garbage is returned as-is."""
    assert normalize_date("PENDING") == "PENDING"


def test_impossible_date_passes_through():
    """13/45/2025 matches the US shape but is not a date."""
    assert normalize_date("13/45/2025") == "13/45/2025"


def test_empty_and_none():
    assert normalize_date("") == ""
    assert normalize_date(None) == ""
