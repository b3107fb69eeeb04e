"""Shared request/utility helpers.

parse_date:        lenient, returns None on bad input (query-string filters)
parse_date_input:  strict, raises ValueError on bad input (request bodies)
parse_id_list:     "1,2,3" or [1, 2, 3] → [1, 2, 3]
"""
import logging
from datetime import date, datetime

logger = logging.getLogger(__name__)


def parse_date(value):
    """Parse a date string (ISO or DD/MM/YYYY) to a date object.

    Returns None for empty/invalid input. Supports:
    - YYYY-MM-DD (ISO format)
    - YYYY-MM-DDTHH:MM:SS (datetime ISO → .date())
    - DD/MM/YYYY (Vietnamese document format)
    """
    try:
        return parse_date_input(value)
    except ValueError:
        return None


def parse_date_input(value):
    """Parse a date, raising ValueError on bad input.

    Same formats as parse_date(); empty input returns None.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = str(value).strip()
    try:
        return date.fromisoformat(text)
    except ValueError:
        pass
    try:
        return datetime.fromisoformat(text).date()
    except ValueError:
        pass
    try:
        return datetime.strptime(text, "%d/%m/%Y").date()
    except ValueError as exc:
        raise ValueError(
            f"Invalid date {value!r}. Use YYYY-MM-DD or DD/MM/YYYY."
        ) from exc


def parse_id_list(value) -> list[int]:
    """Accept a list of ids or a comma-separated string; raise ValueError on junk."""
    if value is None or value == "":
        return []
    items = value.split(",") if isinstance(value, str) else value
    if not isinstance(items, (list, tuple)):
        raise ValueError("ids must be a list of integers")
    ids = []
    for item in items:
        if isinstance(item, bool):
            raise ValueError(f"Invalid id: {item!r}")
        try:
            ids.append(int(str(item).strip()))
        except ValueError:
            raise ValueError(f"Invalid id: {item!r}") from None
    return ids
