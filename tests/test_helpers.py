"""
Tests: money, coordinate and datetime coercion helpers.
"""

from datetime import datetime, timezone
from decimal import Decimal

import pytest

from fieldops.utils.helpers import check_coordinate, check_coordinates, parse_datetime, to_decimal

pytestmark = pytest.mark.unit


@pytest.mark.parametrize("raw,expected", [
    (None, None),
    (10, Decimal("10.00")),
    ("2.345", Decimal("2.35")),
    (0.1, Decimal("0.10")),
    ("9999999999999.99", Decimal("9999999999999.99")),
])
def test_to_decimal(raw, expected):
    assert to_decimal(raw) == expected


@pytest.mark.parametrize("raw", [
    "abc", "NaN", "-Infinity", -0.01, True, [1], 1e30, "1e400", "99999999999999", "9999999999999.995",
])
def test_to_decimal_rejects(raw):
    with pytest.raises(ValueError):
        to_decimal(raw)


@pytest.mark.parametrize("lat,lng", [(90, 180), (-90, -180), ("-6.2", "106.8"), (0, 0)])
def test_coordinates_in_range(lat, lng):
    assert check_coordinates(lat, lng) == (float(lat), float(lng))


@pytest.mark.parametrize("value,axis", [
    (90.0001, "lat"), (-500, "lat"), (180.5, "lng"), (float("inf"), "lng"),
    (float("nan"), "lat"), ("north", "lat"), (None, "lng"), (False, "lat"),
])
def test_coordinate_rejected(value, axis):
    with pytest.raises(ValueError) as exc_info:
        check_coordinate(value, axis)
    assert str(exc_info.value).startswith(axis)


def test_parse_datetime_variants():
    expected = datetime(2026, 10, 18, 8, tzinfo=timezone.utc)
    assert parse_datetime("2026-10-18T08:00:00Z") == expected
    assert parse_datetime("2026-10-18T15:00:00+07:00") == expected
    assert parse_datetime("2026-10-18T08:00:00") == expected
    assert parse_datetime("") is None


@pytest.mark.parametrize("raw", ["yesterday", "2026-13-01", 20261018])
def test_parse_datetime_rejects(raw):
    with pytest.raises(ValueError):
        parse_datetime(raw)
