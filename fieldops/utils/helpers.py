"""Shared utility functions for services and blueprints.

as_utc:          SQLite returns naive datetimes; normalise before comparing
utcnow:          current time, UTC-aware
parse_bool:      query-string flags ("true", "1", "yes")
parse_datetime:  ISO-8601 strings to UTC-aware datetimes
to_decimal:      money inputs to Decimal with 2 places
check_coordinate: WGS84 latitude/longitude range check
"""
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
import math


_CENT = Decimal("0.01")
# Numeric(15, 2) leaves 13 digits before the decimal point.
_MAX_INTEGER_DIGITS = 13


def as_utc(dt):
    """Normalise a datetime to UTC-aware regardless of whether SQLite stored it naive.

    SQLite's DateTime columns return naive datetimes; PostgreSQL returns tz-aware.
    All comparisons against datetime.now(timezone.utc) must go through this helper
    so the same code works in both environments.
    """
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def utcnow():
    return datetime.now(timezone.utc)


def parse_bool(value, default=False):
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ("1", "true", "yes", "on")


def parse_datetime(value):
    """Parse an ISO-8601 string to a UTC-aware datetime.

    Raises ValueError on bad input so callers can answer 400.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return as_utc(value)
    if not isinstance(value, str):
        raise ValueError(f"Invalid datetime: {value!r}")
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        return as_utc(datetime.fromisoformat(text))
    except ValueError:
        raise ValueError(f"Invalid datetime: {value!r}") from None


def to_decimal(value):
    """Coerce a money value to ``Decimal`` rounded to cents.

    Returns None for None. Raises ValueError for unparseable, negative or
    out-of-range input.
    """
    if value is None:
        return None
    if isinstance(value, bool):
        raise ValueError(f"Invalid amount: {value!r}")
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, TypeError):
        raise ValueError(f"Invalid amount: {value!r}") from None
    if not amount.is_finite():
        raise ValueError(f"Invalid amount: {value!r}")
    if amount < 0:
        raise ValueError(f"Amount must not be negative: {value!r}")
    try:
        amount = amount.quantize(_CENT, rounding=ROUND_HALF_UP)
    except InvalidOperation:
        raise ValueError(f"Amount too large: {value!r}") from None
    if amount >= Decimal(10) ** _MAX_INTEGER_DIGITS:
        raise ValueError(f"Amount too large: {value!r}")
    return amount


_COORDINATE_BOUNDS = {"lat": 90.0, "lng": 180.0}


def check_coordinate(value, axis):
    """Return *value* as a float within WGS84 bounds for *axis* ("lat" or "lng").

    Raises ValueError when the value is not a finite number in range.
    """
    bound = _COORDINATE_BOUNDS[axis]
    if isinstance(value, bool):
        raise ValueError(f"{axis} must be a number")
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise ValueError(f"{axis} must be a number") from None
    if not math.isfinite(number) or not -bound <= number <= bound:
        raise ValueError(f"{axis} must be between -{bound:g} and {bound:g}")
    return number


def check_coordinates(lat, lng):
    return check_coordinate(lat, "lat"), check_coordinate(lng, "lng")
