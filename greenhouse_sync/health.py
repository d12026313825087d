"""System health aggregation and the optional ``/healthz`` endpoint."""

from __future__ import annotations

import contextlib
import logging
from typing import TYPE_CHECKING, Callable, Iterable, Mapping, Optional, Sequence

from aiohttp import web

from .core import (
    DeviceChannelState,
    ProbeKind,
    ProbeResult,
    SensorFeedState,
    SystemHealth,
    SystemStatus,
)

if TYPE_CHECKING:
    from .sync import GreenhouseSnapshot

LOGGER = logging.getLogger(__name__)


def compute_health(probes: Iterable[ProbeResult], expected_total: int) -> SystemHealth:
    """Fold probe results into a tri-state system status.

    ``ONLINE`` needs every expected probe to be ok and none of them to report
    a transport failure; ``OFFLINE`` means no probe is ok; anything in between
    is ``PARTIAL``. The fold is order independent.
    """
    results = tuple(probes)
    ok_count = sum(1 for probe in results if probe.ok)
    transport_failure = any(probe.transport_failure for probe in results)

    if ok_count == expected_total and not transport_failure:
        status = SystemStatus.ONLINE
    elif ok_count == 0:
        status = SystemStatus.OFFLINE
    else:
        status = SystemStatus.PARTIAL

    return SystemHealth(
        status=status,
        active_sensor_count=sum(
            1 for probe in results if probe.ok and probe.kind is ProbeKind.SENSOR
        ),
        online_device_count=sum(
            1 for probe in results if probe.ok and probe.kind is ProbeKind.DEVICE
        ),
        probes=results,
    )


def collect_probes(
    feed: Optional[SensorFeedState],
    channels: Iterable[DeviceChannelState],
    sensor_keys: Sequence[str],
) -> list[ProbeResult]:
    """Build one probe per sensor key of ``feed`` and one per device channel.

    A sensor probe is ok while the latest reading carries a numeric value for
    its key, even if that reading is stale; a transport failure on the feed's
    last poll is flagged on every sensor probe so the system cannot be ONLINE.
    """
    probes: list[ProbeResult] = []

    latest = feed.latest if feed is not None else None
    feed_error = feed.last_poll_error if feed is not None else None
    sensor_transport_failure = feed_error is not None and feed_error.is_transport
    for key in sensor_keys:
        probes.append(
            ProbeResult(
                source_id=f"sensor:{key}",
                ok=latest is not None and latest.value(key) is not None,
                kind=ProbeKind.SENSOR,
                transport_failure=sensor_transport_failure,
            )
        )

    for channel in channels:
        probes.append(
            ProbeResult(
                source_id=f"device:{channel.device_id}",
                ok=channel.is_online,
                kind=ProbeKind.DEVICE,
                transport_failure=(
                    channel.last_error is not None and channel.last_error.is_transport
                ),
            )
        )

    return probes


class HealthAggregator:
    """Derives :class:`SystemHealth` from the current feed and channel states."""

    def __init__(self, sensor_keys: Sequence[str], device_ids: Sequence[str]) -> None:
        self._sensor_keys = tuple(sensor_keys)
        self._device_ids = tuple(device_ids)

    @property
    def expected_total(self) -> int:
        return len(self._sensor_keys) + len(self._device_ids)

    @staticmethod
    def compute(probes: Iterable[ProbeResult], expected_total: int) -> SystemHealth:
        return compute_health(probes, expected_total)

    def evaluate(
        self,
        feed: Optional[SensorFeedState],
        channels: Mapping[str, DeviceChannelState],
    ) -> SystemHealth:
        states = [channels[device_id] for device_id in self._device_ids if device_id in channels]
        probes = collect_probes(feed, states, self._sensor_keys)
        return compute_health(probes, self.expected_total)


class HealthServer:
    """Minimal HTTP server exposing `/healthz` for status checks."""

    def __init__(
        self,
        snapshot_provider: Callable[[], "GreenhouseSnapshot"],
        host: str,
        port: int,
    ) -> None:
        self._snapshot_provider = snapshot_provider
        self._host = host
        self._port = port
        self._runner: Optional[web.AppRunner] = None
        self._site: Optional[web.TCPSite] = None

    async def start(self) -> None:
        app = web.Application()
        app.router.add_get("/healthz", self._handle_health)

        self._runner = web.AppRunner(app)
        await self._runner.setup()
        self._site = web.TCPSite(self._runner, self._host, self._port)
        await self._site.start()
        LOGGER.info(
            "Health endpoint listening on http://%s:%s/healthz", self._host, self._port
        )

    async def stop(self) -> None:
        with contextlib.suppress(Exception):
            if self._site is not None:
                await self._site.stop()
        if self._runner is not None:
            await self._runner.cleanup()
        self._site = None
        self._runner = None

    async def _handle_health(self, request: web.Request) -> web.Response:
        snapshot = self._snapshot_provider()
        status = 200 if snapshot.health.status is SystemStatus.ONLINE else 503
        return web.json_response(snapshot.as_dict(), status=status)


__all__ = [
    "HealthAggregator",
    "HealthServer",
    "collect_probes",
    "compute_health",
]
