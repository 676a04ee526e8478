from datetime import datetime, timedelta, timezone

import pytest

from penumbra_explorer.scalars import DateTime


def test_to_value_uses_utc_offset():
    dt = DateTime.parse("2024-01-01T00:00:00Z")
    assert dt.to_value() == "2024-01-01T00:00:00+00:00"


def test_offsets_are_converted_to_utc():
    shifted = DateTime.parse("2024-01-01T02:00:00+02:00")
    assert shifted == DateTime.parse("2024-01-01T00:00:00Z")
    assert shifted.value.utcoffset() == timedelta(0)


def test_negative_offset():
    assert DateTime.parse("2023-12-31T19:00:00-05:00") == DateTime.parse(
        "2024-01-01T00:00:00Z"
    )


@pytest.mark.parametrize("microsecond", [0, 120000, 123456, 1])
def test_round_trip(microsecond):
    original = DateTime(datetime(2024, 5, 6, 7, 8, 9, microsecond, tzinfo=timezone.utc))
    assert DateTime.parse(original.to_value()) == original


def test_nanoseconds_truncate_to_microseconds():
    assert DateTime.parse("2024-05-06T07:08:09.123456789Z") == DateTime.parse(
        "2024-05-06T07:08:09.123456Z"
    )


def test_naive_datetime_is_taken_as_utc():
    naive = datetime(2024, 5, 6, 7, 8, 9)
    assert DateTime(naive) == DateTime(naive.replace(tzinfo=timezone.utc))


def test_aware_datetime_is_normalized():
    eastern = timezone(timedelta(hours=-3))
    local = datetime(2024, 5, 6, 4, 0, tzinfo=eastern)
    assert DateTime(local).value == local.astimezone(timezone.utc)
    assert DateTime(local).value.tzinfo == timezone.utc


def test_str_matches_to_value():
    dt = DateTime.parse("2024-01-01T00:00:00Z")
    assert str(dt) == dt.to_value()


@pytest.mark.parametrize(
    "text",
    ["not a date", "2024-01-01", "2024-13-01T00:00:00Z", "2024-01-01T00:00:00"],
)
def test_invalid_strings(text):
    with pytest.raises(ValueError, match="Invalid DateTime format"):
        DateTime.parse(text)


def test_non_string_input():
    with pytest.raises(TypeError):
        DateTime.parse(123)


def test_wraps_only_datetimes():
    with pytest.raises(TypeError):
        DateTime("2024-01-01T00:00:00Z")