"""Polling and staleness tracking for sensor aggregates."""

from __future__ import annotations

import logging
import math
import re
from collections import deque
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import (
    Any,
    Callable,
    Deque,
    Hashable,
    Iterable,
    List,
    Mapping,
    Optional,
    Sequence,
    Tuple,
)

from .core import (
    ErrorKind,
    FeedMode,
    GreenhouseBackend,
    MalformedPayloadError,
    SensorFeedState,
    SensorReading,
    SyncError,
    normalize,
    normalize_or,
    to_epoch_ms,
    utcnow,
)

LOGGER = logging.getLogger(__name__)

FeedListener = Callable[[SensorFeedState], None]

_Entry = Tuple[Hashable, SensorReading]

_WINDOW_PATTERN = re.compile(r"^\s*(\d+)\s*([smhdw])\s*$", re.IGNORECASE)
_WINDOW_UNITS = {
    "s": "seconds",
    "m": "minutes",
    "h": "hours",
    "d": "days",
    "w": "weeks",
}


def parse_window(value: str) -> timedelta:
    """Parse a compact time range such as ``"1h"``, ``"24h"``, ``"7d"`` or ``"30d"``.

    Raises:
        ValueError: If the value is not ``<count><unit>`` with a known unit.
    """
    match = _WINDOW_PATTERN.match(value)
    if match is None:
        raise ValueError(f"Unsupported time window: {value!r}")
    amount, unit = match.groups()
    return timedelta(**{_WINDOW_UNITS[unit.lower()]: int(amount)})


def filter_window(
    readings: Iterable[SensorReading], window: timedelta, now: datetime
) -> List[SensorReading]:
    """Return readings captured at or after ``now - window``, oldest first.

    The sort is stable, so readings sharing a timestamp keep arrival order.
    There is no upper bound: readings stamped in the future are kept.
    """
    cutoff = now - window
    ordered = sorted(readings, key=lambda reading: reading.captured_at)
    return [reading for reading in ordered if reading.captured_at >= cutoff]


@dataclass(slots=True, frozen=True)
class HistorySummary:
    sensor_key: str
    count: int
    mean: Optional[float]
    minimum: Optional[float]
    maximum: Optional[float]


def summarize(readings: Iterable[SensorReading], sensor_key: str) -> HistorySummary:
    """Aggregate the numeric values of one sensor key."""
    values = [
        value
        for value in (reading.value(sensor_key) for reading in readings)
        if value is not None
    ]
    if not values:
        return HistorySummary(sensor_key, 0, None, None, None)
    return HistorySummary(
        sensor_key=sensor_key,
        count=len(values),
        mean=sum(values) / len(values),
        minimum=min(values),
        maximum=max(values),
    )


def coerce_sensor_value(value: Any) -> Optional[float]:
    """Numbers and numeric strings become floats; anything else is None."""
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str):
        try:
            number = float(value.strip())
        except ValueError:
            return None
    else:
        return None
    return number if math.isfinite(number) else None


def parse_reading(
    payload: Any, sensor_keys: Sequence[str], fallback: datetime
) -> SensorReading:
    """Decode one reading object from the sensors endpoints.

    Raises:
        MalformedPayloadError: If ``payload`` is not an object.
    """
    if not isinstance(payload, Mapping):
        raise MalformedPayloadError("Sensor reading is not an object")

    values = {key: coerce_sensor_value(payload.get(key)) for key in sensor_keys}
    return SensorReading(
        values=values,
        captured_at=normalize_or(payload.get("timestamp"), fallback),
        reading_id=payload.get("id"),
    )


def _entry_key(payload: Mapping[str, Any], reading: SensorReading) -> Hashable:
    """Identify a backend row independently of when it was polled."""
    if reading.reading_id is not None:
        return ("id", str(reading.reading_id))
    values = tuple(sorted(reading.values.items()))
    stamped = normalize(payload.get("timestamp"))
    if stamped is None:
        return ("values", values)
    return ("ts", to_epoch_ms(stamped), values)


class SensorFeed:
    """Owns polling and staleness for one sensor aggregate.

    ``LATEST`` feeds read ``/api/sensors/latest`` and only track the newest
    reading. ``HISTORY`` feeds read ``/api/sensors/all`` and additionally
    accumulate every reading they have not seen before, in arrival order.
    Failed polls never clear data that is already held.
    """

    def __init__(
        self,
        feed_id: str,
        mode: FeedMode,
        backend: GreenhouseBackend,
        *,
        sensor_keys: Sequence[str],
        history_limit: Optional[int] = None,
        clock: Callable[[], datetime] = utcnow,
        on_change: Optional[FeedListener] = None,
    ) -> None:
        if history_limit is not None and history_limit <= 0:
            raise ValueError("history_limit must be positive or None")

        self.feed_id = feed_id
        self.mode = mode
        self._backend = backend
        self._sensor_keys = tuple(sensor_keys)
        self._clock = clock
        self._on_change = on_change

        self._latest: Optional[SensorReading] = None
        self._history: Deque[SensorReading] = deque(maxlen=history_limit)
        self._history_keys: Deque[Hashable] = deque(maxlen=history_limit)
        # keys held in history plus keys of the most recent backend batch
        self._seen: set[Hashable] = set()
        self._last_error: Optional[ErrorKind] = None
        self._last_error_detail: Optional[str] = None
        self._seconds_since_success: Optional[int] = None
        self._closed = False

    @property
    def state(self) -> SensorFeedState:
        return SensorFeedState(
            feed_id=self.feed_id,
            mode=self.mode,
            latest=self._latest,
            history=tuple(self._history),
            last_poll_error=self._last_error,
            last_poll_error_detail=self._last_error_detail,
            seconds_since_success=self._seconds_since_success,
        )

    @property
    def sensor_keys(self) -> tuple[str, ...]:
        return self._sensor_keys

    @property
    def seconds_since_success(self) -> Optional[int]:
        return self._seconds_since_success

    async def poll(self) -> SensorFeedState:
        """Fetch readings and fold them into the feed; never raises for backend failures."""
        if self._closed:
            return self.state

        issued_at = self._clock()
        try:
            readings = await self._fetch(issued_at)
        except SyncError as exc:
            self._apply_failure(exc.kind, exc.detail)
        except Exception as exc:
            LOGGER.exception("Unexpected failure polling sensor feed %s", self.feed_id)
            self._apply_failure(ErrorKind.NETWORK, str(exc))
        else:
            self._apply_readings(readings)
        return self.state

    def tick_staleness(self) -> None:
        """Advance the seconds-since-success counter by one tick and notify."""
        if self._closed or self._seconds_since_success is None:
            return
        self._seconds_since_success += 1
        self._notify()

    def window(
        self, window: timedelta, now: Optional[datetime] = None
    ) -> List[SensorReading]:
        """Readings inside ``window``, oldest first."""
        return filter_window(self._history, window, now or self._clock())

    def close(self) -> None:
        self._closed = True

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------
    async def _fetch(self, issued_at: datetime) -> List[_Entry]:
        if self.mode is FeedMode.LATEST:
            payload = await self._backend.fetch_latest_reading()
            if not payload:
                raise MalformedPayloadError("Latest sensor reading is empty")
            reading = parse_reading(payload, self._sensor_keys, issued_at)
            return [(_entry_key(payload, reading), reading)]

        payload = await self._backend.fetch_all_readings()
        if not isinstance(payload, list):
            raise MalformedPayloadError("Sensor history is not a list")
        if not payload:
            raise MalformedPayloadError("Sensor history is empty")

        entries: List[_Entry] = []
        for item in payload:
            try:
                reading = parse_reading(item, self._sensor_keys, issued_at)
                entries.append((_entry_key(item, reading), reading))
            except MalformedPayloadError as exc:
                LOGGER.debug("Skipping sensor history entry: %s", exc)
        if not entries:
            raise MalformedPayloadError("Sensor history holds no readable entries")
        return entries

    def _apply_readings(self, entries: List[_Entry]) -> None:
        if self._closed:
            return

        readings = [reading for _key, reading in entries]
        if self.mode is FeedMode.HISTORY:
            self._append_unseen(entries)
            self._latest = max(readings, key=lambda reading: reading.captured_at)
        else:
            self._latest = readings[-1]

        if self._last_error is not None:
            LOGGER.info("Sensor feed %s recovered", self.feed_id)
        self._last_error = None
        self._last_error_detail = None
        self._seconds_since_success = 0
        self._notify()

    def _append_unseen(self, entries: List[_Entry]) -> None:
        batch = set()
        appended = 0
        for key, reading in entries:
            batch.add(key)
            if key in self._seen:
                continue
            self._seen.add(key)
            self._history.append(reading)
            self._history_keys.append(key)
            appended += 1

        # forget evicted rows once the backend stops returning them
        self._seen = set(self._history_keys) | batch
        if appended:
            LOGGER.debug("Feed %s appended %d readings", self.feed_id, appended)

    def _apply_failure(self, kind: ErrorKind, detail: str) -> None:
        if self._closed:
            return

        LOGGER.warning(
            "Sensor feed %s poll failed (%s): %s", self.feed_id, kind.value, detail
        )
        self._last_error = kind
        self._last_error_detail = detail
        self._notify()

    def _notify(self) -> None:
        if self._on_change is None:
            return
        try:
            self._on_change(self.state)
        except Exception:
            LOGGER.exception("Feed listener for %s failed", self.feed_id)


__all__ = [
    "FeedListener",
    "HistorySummary",
    "SensorFeed",
    "coerce_sensor_value",
    "filter_window",
    "parse_reading",
    "parse_window",
    "summarize",
]
