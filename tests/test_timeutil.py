from datetime import datetime, timezone

import pytest

from tq.timeutil import format_local, format_utc, matches_date_local, parse_timestamp


def test_format_local():
    utc_str = "2026-03-17 03:00:00"
    parsed = datetime(2026, 3, 17, 3, 0, 0, tzinfo=timezone.utc)
    want = parsed.astimezone().strftime("%Y-%m-%d %H:%M:%S")
    assert format_local(utc_str) == want


def test_format_local_invalid_fallback():
    assert format_local("not-a-timestamp") == "not-a-timestamp"


def test_parse_timestamp_is_utc():
    t = parse_timestamp("2026-03-12 10:00:00")
    assert t == datetime(2026, 3, 12, 10, 0, 0, tzinfo=timezone.utc)


def test_parse_timestamp_invalid():
    with pytest.raises(ValueError):
        parse_timestamp("garbage")


def test_format_utc_round_trip():
    assert format_utc(parse_timestamp("2026-03-12 10:00:00")) == "2026-03-12 10:00:00"


def test_matches_date_local():
    utc_str = "2026-03-16 23:30:00"
    local_date = format_local(utc_str)[:10]
    assert matches_date_local(utc_str, local_date)
    assert not matches_date_local(utc_str, "1999-01-01")