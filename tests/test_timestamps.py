from datetime import datetime, timedelta, timezone

import pytest

from greenhouse_sync.core.timestamps import (
    format_backend_timestamp,
    from_epoch_ms,
    normalize,
    normalize_or,
    to_epoch_ms,
)


def _utc(*fields: int) -> datetime:
    return datetime(*fields, tzinfo=timezone.utc)


def test_naive_iso_string_is_taken_as_utc() -> None:
    assert normalize("2025-07-11T09:23:35") == _utc(2025, 7, 11, 9, 23, 35)


def test_iso_string_with_offset_is_converted_to_utc() -> None:
    assert normalize("2025-07-11T12:23:35+03:00") == _utc(2025, 7, 11, 9, 23, 35)
    assert normalize("2025-07-11T09:23:35Z") == _utc(2025, 7, 11, 9, 23, 35)


def test_assume_tz_applies_only_to_naive_values() -> None:
    nairobi = timezone(timedelta(hours=3))

    assert normalize("2025-07-11T12:00:00", assume_tz=nairobi) == _utc(2025, 7, 11, 9)
    assert normalize("2025-07-11T12:00:00Z", assume_tz=nairobi) == _utc(2025, 7, 11, 12)


def test_full_field_array_keeps_millisecond_precision() -> None:
    result = normalize([2025, 7, 11, 22, 13, 36, 123456789])

    assert result == datetime(2025, 7, 11, 22, 13, 36, 123000, tzinfo=timezone.utc)
    assert result.tzinfo is timezone.utc


@pytest.mark.parametrize(
    ("fields", "expected"),
    [
        ([2025, 7, 11], _utc(2025, 7, 11)),
        ([2025, 7, 11, 22, 13], _utc(2025, 7, 11, 22, 13)),
        ((2025, 7, 11, 22, 13, 36), _utc(2025, 7, 11, 22, 13, 36)),
        ([2025.0, 7, 11], _utc(2025, 7, 11)),
    ],
)
def test_short_field_arrays_default_missing_fields_to_zero(fields, expected) -> None:
    assert normalize(fields) == expected


@pytest.mark.parametrize(
    "value",
    [
        [2025, 7],
        [2025, 7, 11, 22, 13, 36, 0, 0],
        [2025, 13, 1],
        [2025, 2, 30],
        [2025, 7, 11, 22, 13, 36, 1_000_000_000],
        [2025, 7, 11, 22, 13, 36, -1],
        [True, 7, 11],
        [2025, 7.5, 11],
        [2025, float("nan"), 11],
        ["2025", 7, 11],
        "not a timestamp",
        "",
        1752225815,
        {"year": 2025},
        None,
    ],
)
def test_unusable_values_normalize_to_none(value) -> None:
    assert normalize(value) is None


def test_normalize_or_substitutes_fallback() -> None:
    fallback = _utc(2025, 1, 1)

    assert normalize_or(None, fallback) is fallback
    assert normalize_or("garbage", fallback) is fallback
    assert normalize_or("2025-07-11T09:23:35", fallback) == _utc(2025, 7, 11, 9, 23, 35)


def test_epoch_millisecond_conversion() -> None:
    instant = datetime(2025, 7, 11, 9, 23, 35, 250000, tzinfo=timezone.utc)

    millis = to_epoch_ms(instant)

    assert millis == 1752225815250
    assert from_epoch_ms(millis) == instant


def test_backend_timestamp_is_offset_less_utc() -> None:
    instant = datetime(2025, 7, 11, 12, 23, 35, 999999, tzinfo=timezone(timedelta(hours=3)))

    assert format_backend_timestamp(instant) == "2025-07-11T09:23:35"
