"""Core primitives for greenhouse-sync."""

from .errors import (
    ErrorKind,
    HttpStatusError,
    InvalidStateError,
    MalformedPayloadError,
    NetworkError,
    RequestTimeoutError,
    SyncError,
)
from .models import (
    AttemptState,
    Command,
    CommandTransitionError,
    DeviceChannelState,
    FeedMode,
    PowerState,
    ProbeKind,
    ProbeResult,
    SensorFeedState,
    SensorReading,
    SystemHealth,
    SystemStatus,
)
from .protocols import GreenhouseBackend, SnapshotListener
from .timestamps import normalize, normalize_or, to_epoch_ms, utcnow

__all__ = [
    "AttemptState",
    "Command",
    "CommandTransitionError",
    "DeviceChannelState",
    "ErrorKind",
    "FeedMode",
    "GreenhouseBackend",
    "HttpStatusError",
    "InvalidStateError",
    "MalformedPayloadError",
    "NetworkError",
    "PowerState",
    "ProbeKind",
    "ProbeResult",
    "RequestTimeoutError",
    "SensorFeedState",
    "SensorReading",
    "SnapshotListener",
    "SyncError",
    "SystemHealth",
    "SystemStatus",
    "normalize",
    "normalize_or",
    "to_epoch_ms",
    "utcnow",
]
