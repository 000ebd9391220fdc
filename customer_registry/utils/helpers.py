"""Shared parsing helpers used by services and blueprints.

parse_date:        returns None on bad input
parse_date_input:  raises ValidationError on bad input (request bodies)
parse_bool:        query-string / JSON boolean coercion
"""
import logging
from datetime import date, datetime

from customer_registry.core.exceptions import ValidationError

logger = logging.getLogger(__name__)

_TRUE_VALUES = ("true", "1", "yes", "on")
_FALSE_VALUES = ("false", "0", "no", "off", "")


def parse_date(value):
    """Parse a date string (ISO or DD.MM.YYYY) to a date object.

    Returns None for empty/invalid input. Supports:
    - YYYY-MM-DD (ISO format)
    - YYYY-MM-DDTHH:MM:SS (datetime ISO → .date())
    - DD.MM.YYYY
    - {"year": .., "month": .., "day": ..} objects
    """
    if not value:
        return None
    if isinstance(value, date):
        return value
    if isinstance(value, dict):
        try:
            return date(int(value["year"]), int(value["month"]), int(value["day"]))
        except (KeyError, TypeError, ValueError):
            return None
    try:
        return date.fromisoformat(str(value))
    except (ValueError, TypeError):
        pass
    try:
        return datetime.fromisoformat(str(value)).date()
    except (ValueError, TypeError):
        pass
    try:
        return datetime.strptime(str(value), "%d.%m.%Y").date()
    except (ValueError, TypeError):
        return None


def parse_date_input(value, field: str):
    """Parse a date from a request body, raising ValidationError on bad input.

    Empty input returns None; callers decide whether the field is required.
    """
    if value in (None, ""):
        return None
    parsed = parse_date(value)
    if parsed is None:
        raise ValidationError(
            f"Invalid date for '{field}'. Use YYYY-MM-DD or DD.MM.YYYY.",
            details={field: "invalid date"},
        )
    return parsed


def parse_bool(value, default: bool = False) -> bool:
    """Coerce a JSON/query-string value to bool.

    Raises ValidationError for strings that are neither truthy nor falsy.
    """
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in _TRUE_VALUES:
        return True
    if text in _FALSE_VALUES:
        return False
    raise ValidationError(f"Invalid boolean value: {value!r}")
