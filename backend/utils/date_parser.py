"""Date parsing utilities for extracted document fields."""

from __future__ import annotations

from datetime import date, datetime

DATE_FORMATS = (
    "%Y-%m-%d",  # ISO 8601
    "%m/%d/%Y",  # US format
    "%m-%d-%Y",  # US format with dashes (common on state IDs)
    "%Y%m%d",  # Compact
    "%Y/%m/%d",
)


def parse_document_date(value: str | date | None) -> date | None:
    """Parse a document date from the formats OCR extraction produces.

    Supports:
    - ``date``/``datetime`` objects (returned as a ``date``)
    - ISO 8601: YYYY-MM-DD, optionally with a time part (2030-01-15T00:00:00Z)
    - US format: MM/DD/YYYY and MM-DD-YYYY
    - Compact: YYYYMMDD

    Any real calendar date is accepted; there is no year window.

    Args:
        value: Raw field value

    Returns:
        Parsed date, or None if the value is empty or cannot be parsed

    Examples:
        >>> parse_document_date("2030-01-15")
        datetime.date(2030, 1, 15)
        >>> parse_document_date("01/15/2030")
        datetime.date(2030, 1, 15)
        >>> parse_document_date("2030-02-30")  # Invalid date
        None
    """
    if value is None:
        return None

    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not isinstance(value, str):
        return None

    text = value.strip()
    if not text:
        return None

    # Drop a trailing time component ("2030-01-15T00:00:00Z", "2030-01-15 08:00")
    for separator in ("T", " "):
        if separator in text and len(text) > 10 and text[4] == "-":
            text = text.split(separator, 1)[0]
            break

    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt).date()
        except ValueError:
            # strptime raises ValueError for invalid dates like Feb 30
            continue

    return None
