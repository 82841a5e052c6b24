from datetime import datetime

import pytest

from stockrecon.time_utils import age_seconds, parse_iso_datetime, to_utc_z


def test_bare_date_bounds_cover_the_whole_day():
    assert parse_iso_datetime("2026-10-18") == datetime(2026, 10, 18)
    assert parse_iso_datetime("2026-10-18", end_of_day=True) == datetime(2026, 10, 18, 23, 59, 59, 999999)


def test_offsets_are_normalized_to_utc():
    assert parse_iso_datetime("2026-10-18T10:00:00-03:00") == datetime(2026, 10, 18, 13, 0)
    assert parse_iso_datetime("2026-10-18T10:00:00Z") == datetime(2026, 10, 18, 10, 0)


@pytest.mark.parametrize("value", [None, "", "   "])
def test_blank_is_none(value):
    assert parse_iso_datetime(value) is None


def test_garbage_raises():
    with pytest.raises(ValueError):
        parse_iso_datetime("last week")


def test_to_utc_z():
    assert to_utc_z(datetime(2026, 10, 18, 9, 30, 5, 123456)) == "2026-10-18T09:30:05Z"
    assert to_utc_z(None) is None


def test_age_seconds():
    assert age_seconds(datetime(2026, 10, 18, 9, 0), now=datetime(2026, 10, 18, 9, 2, 30)) == 150
    assert age_seconds(None) is None
