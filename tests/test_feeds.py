"""Tests for sensor feeds, windows and staleness."""

from datetime import datetime, timedelta, timezone

import pytest

from greenhouse_sync.core import (
    ErrorKind,
    FeedMode,
    RequestTimeoutError,
    SensorReading,
)
from greenhouse_sync.constants import DEFAULT_SENSOR_KEYS
from greenhouse_sync.feeds import (
    SensorFeed,
    coerce_sensor_value,
    filter_window,
    parse_reading,
    parse_window,
    summarize,
)

NOW = datetime(2025, 7, 11, 10, 0, tzinfo=timezone.utc)


def _reading(minutes_ago: float, temperature: float = 20.0, reading_id=None) -> SensorReading:
    return SensorReading(
        values={"temperature": temperature},
        captured_at=NOW - timedelta(minutes=minutes_ago),
        reading_id=reading_id,
    )


def _feed(backend, mode: FeedMode, **kwargs) -> SensorFeed:
    return SensorFeed(
        mode.value,
        mode,
        backend,
        sensor_keys=DEFAULT_SENSOR_KEYS,
        clock=lambda: NOW,
        **kwargs,
    )


@pytest.mark.parametrize(
    ("value", "expected"),
    [
        ("1h", timedelta(hours=1)),
        ("24h", timedelta(hours=24)),
        ("7d", timedelta(days=7)),
        ("30D", timedelta(days=30)),
        (" 15m ", timedelta(minutes=15)),
    ],
)
def test_parse_window(value, expected) -> None:
    assert parse_window(value) == expected


@pytest.mark.parametrize("value", ["", "h", "1y", "-1h", "1.5h"])
def test_parse_window_rejects_unknown_ranges(value) -> None:
    with pytest.raises(ValueError):
        parse_window(value)


def test_filter_window_is_inclusive_and_sorted() -> None:
    boundary = _reading(60, temperature=1)
    too_old = _reading(61, temperature=2)
    recent = _reading(5, temperature=3)
    future = _reading(-5, temperature=4)

    result = filter_window([recent, too_old, future, boundary], timedelta(hours=1), NOW)

    assert result == [boundary, recent, future]


def test_filter_window_keeps_arrival_order_for_equal_timestamps() -> None:
    first = _reading(10, temperature=1)
    second = _reading(10, temperature=2)

    result = filter_window([first, second], timedelta(hours=1), NOW)

    assert [reading.value("temperature") for reading in result] == [1, 2]


def test_summarize_ignores_missing_values() -> None:
    readings = [
        _reading(3, temperature=20),
        _reading(2, temperature=26),
        SensorReading(values={"temperature": None}, captured_at=NOW),
    ]

    summary = summarize(readings, "temperature")

    assert summary.count == 2
    assert summary.mean == pytest.approx(23.0)
    assert summary.minimum == 20
    assert summary.maximum == 26
    assert summarize([], "humidity").mean is None


@pytest.mark.parametrize(
    ("value", "expected"),
    [
        (24, 24.0),
        (24.5, 24.5),
        ("45.5", 45.5),
        (" 12 ", 12.0),
        (True, None),
        (None, None),
        ("n/a", None),
        (float("inf"), None),
        ({"value": 1}, None),
    ],
)
def test_coerce_sensor_value(value, expected) -> None:
    assert coerce_sensor_value(value) == expected


def test_parse_reading_falls_back_to_poll_time() -> None:
    reading = parse_reading({"temperature": 21}, DEFAULT_SENSOR_KEYS, NOW)

    assert reading.captured_at == NOW
    assert reading.value("temperature") == 21.0
    assert reading.value("humidity") is None
    assert reading.reading_id is None


@pytest.mark.asyncio
async def test_latest_feed_tracks_newest_reading(backend) -> None:
    feed = _feed(backend, FeedMode.LATEST)

    state = await feed.poll()

    assert state.latest is not None
    assert state.latest.reading_id == 42
    assert state.latest.value("soilMoisture") == 45.5
    assert state.history == ()
    assert state.last_poll_error is None
    assert state.seconds_since_success == 0


@pytest.mark.asyncio
async def test_staleness_counts_ticks_since_last_success(backend) -> None:
    feed = _feed(backend, FeedMode.LATEST)
    feed.tick_staleness()
    assert feed.seconds_since_success is None

    await feed.poll()
    feed.tick_staleness()
    feed.tick_staleness()
    assert feed.seconds_since_success == 2

    backend.failures["latest"] = RequestTimeoutError("timed out")
    await feed.poll()
    feed.tick_staleness()
    assert feed.seconds_since_success == 3

    del backend.failures["latest"]
    await feed.poll()
    assert feed.seconds_since_success == 0


@pytest.mark.asyncio
async def test_failed_poll_keeps_existing_data(backend) -> None:
    feed = _feed(backend, FeedMode.LATEST)
    first = await feed.poll()

    backend.failures["latest"] = RequestTimeoutError("timed out")
    state = await feed.poll()

    assert state.latest == first.latest
    assert state.last_poll_error is ErrorKind.TIMEOUT
    assert state.last_poll_error_detail == "timed out"


@pytest.mark.asyncio
@pytest.mark.parametrize("payload", [None, {}, []])
async def test_empty_latest_payload_is_malformed(backend, payload) -> None:
    backend.latest = payload
    feed = _feed(backend, FeedMode.LATEST)

    state = await feed.poll()

    assert state.latest is None
    assert state.last_poll_error is ErrorKind.MALFORMED_PAYLOAD


@pytest.mark.asyncio
@pytest.mark.parametrize("payload", [[], {"id": 1}, None, ["junk", 3]])
async def test_unusable_history_payload_is_malformed(backend, payload) -> None:
    backend.history = payload
    feed = _feed(backend, FeedMode.HISTORY)

    state = await feed.poll()

    assert state.history == ()
    assert state.last_poll_error is ErrorKind.MALFORMED_PAYLOAD


@pytest.mark.asyncio
async def test_history_feed_appends_unseen_readings_only(backend) -> None:
    feed = _feed(backend, FeedMode.HISTORY)

    await feed.poll()
    backend.history = backend.history + [
        dict(backend.history[-1], id=43, temperature=25.0, timestamp="2025-07-11T09:28:35")
    ]
    state = await feed.poll()

    assert [reading.reading_id for reading in state.history] == [40, 41, 42, 43]
    assert state.latest is not None
    assert state.latest.reading_id == 43


@pytest.mark.asyncio
async def test_history_feed_skips_unreadable_entries(backend) -> None:
    backend.history = ["junk", dict(backend.history[0])]
    feed = _feed(backend, FeedMode.HISTORY)

    state = await feed.poll()

    assert [reading.reading_id for reading in state.history] == [40]
    assert state.last_poll_error is None


@pytest.mark.asyncio
async def test_history_limit_drops_oldest_readings(backend) -> None:
    feed = _feed(backend, FeedMode.HISTORY, history_limit=2)

    state = await feed.poll()

    assert [reading.reading_id for reading in state.history] == [41, 42]


@pytest.mark.asyncio
async def test_window_filters_accumulated_history(backend) -> None:
    feed = _feed(backend, FeedMode.HISTORY)
    await feed.poll()

    recent = feed.window(parse_window("45m"))

    assert [reading.reading_id for reading in recent] == [41, 42]


@pytest.mark.asyncio
async def test_closed_feed_stops_updating(backend) -> None:
    feed = _feed(backend, FeedMode.LATEST)
    feed.close()

    state = await feed.poll()
    feed.tick_staleness()

    assert state.latest is None
    assert state.seconds_since_success is None


def test_day_window_boundaries() -> None:
    day_old = _reading(25 * 60, temperature=1)
    almost_day_old = _reading(23 * 60 + 59, temperature=2)
    fresh = _reading(1, temperature=3)

    result = filter_window([fresh, day_old, almost_day_old], parse_window("24h"), NOW)

    assert result == [almost_day_old, fresh]


@pytest.mark.asyncio
async def test_staleness_tick_notifies_subscribers(backend) -> None:
    seen = []
    feed = _feed(
        backend,
        FeedMode.LATEST,
        on_change=lambda state: seen.append(state.seconds_since_success),
    )

    await feed.poll()
    feed.tick_staleness()

    assert seen == [0, 1]


@pytest.mark.asyncio
async def test_history_dedupe_keys_stay_bounded(backend) -> None:
    feed = _feed(backend, FeedMode.HISTORY, history_limit=2)
    template = dict(backend.history[-1])
    del template["timestamp"]

    for reading_id in range(100, 150):
        backend.history = [dict(template, id=reading_id)]
        await feed.poll()

    assert len(feed._seen) <= 2
    assert [reading.reading_id for reading in feed.state.history] == [148, 149]


@pytest.mark.asyncio
async def test_history_limit_does_not_reappend_evicted_rows(backend) -> None:
    feed = _feed(backend, FeedMode.HISTORY, history_limit=2)

    await feed.poll()
    state = await feed.poll()

    assert [reading.reading_id for reading in state.history] == [41, 42]


@pytest.mark.asyncio
async def test_rows_without_id_or_timestamp_are_not_duplicated(backend) -> None:
    polled_at = [NOW]
    backend.history = [
        {"temperature": 21.0, "humidity": 60.0},
        {"temperature": 22.0, "humidity": 61.0},
    ]
    feed = SensorFeed(
        "history",
        FeedMode.HISTORY,
        backend,
        sensor_keys=DEFAULT_SENSOR_KEYS,
        clock=lambda: polled_at[0],
    )

    await feed.poll()
    polled_at[0] = NOW + timedelta(seconds=15)
    state = await feed.poll()

    assert len(state.history) == 2
    assert [reading.value("temperature") for reading in state.history] == [21.0, 22.0]


@pytest.mark.asyncio
async def test_rows_without_id_are_keyed_on_backend_timestamp(backend) -> None:
    polled_at = [NOW]
    backend.history = [
        {"temperature": 21.0, "timestamp": "2025-07-11T09:00:00"},
        {"temperature": 21.0, "timestamp": "2025-07-11T09:05:00"},
    ]
    feed = SensorFeed(
        "history",
        FeedMode.HISTORY,
        backend,
        sensor_keys=DEFAULT_SENSOR_KEYS,
        clock=lambda: polled_at[0],
    )

    await feed.poll()
    polled_at[0] = NOW + timedelta(seconds=15)
    state = await feed.poll()

    assert len(state.history) == 2
