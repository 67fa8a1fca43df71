"""Strict parsing of user-entered values.

Numbers typed into a form arrive as strings such as ``"1,234.5"``. They are
converted here or rejected with :class:`ValidationError`; nothing downstream
ever sees an unparsed string or a silently zeroed value.
"""

from __future__ import annotations

import datetime as dt
import math
from typing import Any

from .exceptions import ValidationError


def parse_number(value: Any, field: str) -> float:
    """Parse *value* into a finite float.

    Accepts ints, floats and strings with optional thousands separators.
    Booleans, empty strings and anything that does not parse are rejected.
    """
    if value is None or isinstance(value, bool):
        raise ValidationError(f"{field} is required", field=field)

    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str):
        text = value.replace(",", "").strip()
        if not text:
            raise ValidationError(f"{field} is required", field=field)
        try:
            number = float(text)
        except ValueError:
            raise ValidationError(f"{field} must be a number, got {value!r}", field=field) from None
    else:
        raise ValidationError(f"{field} must be a number, got {value!r}", field=field)

    if not math.isfinite(number):
        raise ValidationError(f"{field} must be a finite number", field=field)
    return number


def parse_positive_number(value: Any, field: str) -> float:
    """Parse *value* like :func:`parse_number` and require it to be > 0."""
    number = parse_number(value, field)
    if number <= 0:
        raise ValidationError(f"{field} must be greater than zero", field=field)
    return number


def parse_date(value: Any, field: str = "date") -> dt.date:
    """Parse an ISO ``YYYY-MM-DD`` string (or pass a ``date`` through)."""
    if isinstance(value, dt.datetime):
        return value.date()
    if isinstance(value, dt.date):
        return value
    if isinstance(value, str) and value.strip():
        try:
            return dt.date.fromisoformat(value.strip())
        except ValueError:
            raise ValidationError(f"{field} must be a YYYY-MM-DD date, got {value!r}", field=field) from None
    raise ValidationError(f"{field} is required", field=field)


def parse_text(value: Any, field: str, required: bool = False) -> str:
    """Return *value* as a stripped string; empty is rejected when *required*."""
    text = "" if value is None else str(value).strip()
    if required and not text:
        raise ValidationError(f"{field} is required", field=field)
    return text
