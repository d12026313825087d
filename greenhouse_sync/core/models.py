"""Data model for device channels, sensor feeds and system health."""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Mapping, Optional

from .errors import ErrorKind


def _isoformat(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat(timespec="milliseconds") if value is not None else None


class PowerState(str, Enum):
    ON = "on"
    OFF = "off"
    UNKNOWN = "unknown"

    @property
    def is_known(self) -> bool:
        return self is not PowerState.UNKNOWN


class AttemptState(str, Enum):
    OPTIMISTIC = "optimistic"
    CONFIRMED = "confirmed"
    ROLLED_BACK = "rolled_back"


class CommandTransitionError(RuntimeError):
    """Raised when a command is moved out of a terminal attempt state."""


@dataclass(slots=True, frozen=True)
class Command:
    """A power command and where it stands in its optimistic lifecycle.

    Commands only ever move from ``OPTIMISTIC`` to one of the two terminal
    states. Attempting any other transition raises
    :class:`CommandTransitionError`, so a command can never be confirmed after
    it was rolled back (or the reverse).
    """

    device_id: str
    desired: PowerState
    issued_at: datetime
    attempt_state: AttemptState = AttemptState.OPTIMISTIC

    def __post_init__(self) -> None:
        if not self.desired.is_known:
            raise ValueError("Commands must target ON or OFF")

    @property
    def is_pending(self) -> bool:
        return self.attempt_state is AttemptState.OPTIMISTIC

    def confirm(self) -> "Command":
        return self._resolve(AttemptState.CONFIRMED)

    def roll_back(self) -> "Command":
        return self._resolve(AttemptState.ROLLED_BACK)

    def _resolve(self, state: AttemptState) -> "Command":
        if not self.is_pending:
            raise CommandTransitionError(
                f"Command for {self.device_id} already {self.attempt_state.value}"
            )
        return dataclasses.replace(self, attempt_state=state)

    def as_dict(self) -> Dict[str, object]:
        return {
            "deviceId": self.device_id,
            "desired": self.desired.value,
            "issuedAt": _isoformat(self.issued_at),
            "attemptState": self.attempt_state.value,
        }


@dataclass(slots=True, frozen=True)
class DeviceChannelState:
    device_id: str
    reported: PowerState = PowerState.UNKNOWN
    reported_at: Optional[datetime] = None
    pending: Optional[Command] = None
    last_error: Optional[ErrorKind] = None
    last_error_detail: Optional[str] = None
    last_command: Optional[Command] = None

    @property
    def is_online(self) -> bool:
        return self.reported.is_known

    def as_dict(self) -> Dict[str, object]:
        return {
            "deviceId": self.device_id,
            "reported": self.reported.value,
            "reportedAt": _isoformat(self.reported_at),
            "pending": self.pending.as_dict() if self.pending else None,
            "lastError": self.last_error.value if self.last_error else None,
            "lastErrorDetail": self.last_error_detail,
            "lastCommand": self.last_command.as_dict() if self.last_command else None,
        }


@dataclass(slots=True, frozen=True)
class SensorReading:
    values: Mapping[str, Optional[float]]
    captured_at: datetime
    reading_id: Optional[Any] = None

    def value(self, key: str) -> Optional[float]:
        return self.values.get(key)

    def as_dict(self) -> Dict[str, object]:
        return {
            "id": self.reading_id,
            "values": dict(self.values),
            "capturedAt": _isoformat(self.captured_at),
        }


class FeedMode(str, Enum):
    LATEST = "latest"
    HISTORY = "history"


@dataclass(slots=True, frozen=True)
class SensorFeedState:
    feed_id: str
    mode: FeedMode
    latest: Optional[SensorReading] = None
    history: tuple[SensorReading, ...] = ()
    last_poll_error: Optional[ErrorKind] = None
    last_poll_error_detail: Optional[str] = None
    seconds_since_success: Optional[int] = None

    def as_dict(self) -> Dict[str, object]:
        return {
            "feedId": self.feed_id,
            "mode": self.mode.value,
            "latest": self.latest.as_dict() if self.latest else None,
            "historyLength": len(self.history),
            "lastPollError": self.last_poll_error.value if self.last_poll_error else None,
            "lastPollErrorDetail": self.last_poll_error_detail,
            "secondsSinceSuccess": self.seconds_since_success,
        }


class ProbeKind(str, Enum):
    SENSOR = "sensor"
    DEVICE = "device"


@dataclass(slots=True, frozen=True)
class ProbeResult:
    source_id: str
    ok: bool
    kind: ProbeKind = ProbeKind.SENSOR
    transport_failure: bool = False


class SystemStatus(str, Enum):
    ONLINE = "online"
    PARTIAL = "partial"
    OFFLINE = "offline"


@dataclass(slots=True, frozen=True)
class SystemHealth:
    status: SystemStatus
    active_sensor_count: int = 0
    online_device_count: int = 0
    probes: tuple[ProbeResult, ...] = field(default=(), compare=False)

    def as_dict(self) -> Dict[str, object]:
        return {
            "status": self.status.value,
            "activeSensorCount": self.active_sensor_count,
            "onlineDeviceCount": self.online_device_count,
        }


__all__ = [
    "AttemptState",
    "Command",
    "CommandTransitionError",
    "DeviceChannelState",
    "FeedMode",
    "PowerState",
    "ProbeKind",
    "ProbeResult",
    "SensorFeedState",
    "SensorReading",
    "SystemHealth",
    "SystemStatus",
]
