from __future__ import annotations

from datetime import date, datetime
from typing import Any

DISPLAY_FORMAT = "%d/%m/%Y"


def parse_date(value: Any) -> date | None:
    """Parse ISO strings, ``dd/MM/yyyy`` strings, dates and datetimes."""

    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = str(value).strip()
    if not text:
        return None
    try:
        return datetime.fromisoformat(text.replace("Z", "+00:00")).date()
    except ValueError:
        pass
    try:
        return datetime.strptime(text, DISPLAY_FORMAT).date()
    except ValueError:
        return None


def format_date(value: Any) -> str:
    """Render a value as ``dd/MM/yyyy``; blanks become ``""``."""

    parsed = parse_date(value)
    if parsed is not None:
        return parsed.strftime(DISPLAY_FORMAT)
    if value is None:
        return ""
    return str(value).strip()
