"""Protocol definitions for the greenhouse backend collaborator."""

from __future__ import annotations

from typing import Any, Awaitable, Callable, Protocol, runtime_checkable

from .models import PowerState


# Callback invoked after every snapshot recompute
SnapshotListener = Callable[[Any], Awaitable[None] | None]


@runtime_checkable
class GreenhouseBackend(Protocol):
    """Minimal contract for the HTTP surface the sync engine consumes.

    Implementations raise subclasses of :class:`~greenhouse_sync.core.errors.SyncError`
    for every failure so that channels and feeds can convert them into state.
    """

    async def fetch_latest_reading(self) -> Any:
        """Return the decoded body of ``GET /api/sensors/latest``."""
        ...

    async def fetch_all_readings(self) -> Any:
        """Return the decoded body of ``GET /api/sensors/all``."""
        ...

    async def fetch_actuator_status(self, device_id: str) -> Any:
        """Return the decoded body of ``GET /api/actuators/status``."""
        ...

    async def control_actuator(self, device_id: str, desired: PowerState) -> None:
        """Issue ``POST /api/actuators/control``; raise on any non-2xx outcome."""
        ...

    async def aclose(self) -> None:
        """Close any underlying resources."""
        ...
