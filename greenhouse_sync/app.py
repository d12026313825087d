"""Main application entry-point for greenhouse-sync."""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

from .config import SyncConfig, load_config
from .core import Command, GreenhouseBackend, PowerState
from .health import HealthServer
from .logging import configure_logging
from .sync import GreenhouseSnapshot, SyncCore

LOGGER = logging.getLogger(__name__)


class GreenhouseSyncApp:
    """Coordinates application startup and shutdown.

    The app owns one :class:`SyncCore` for the configured greenhouse, logs
    threshold alerts as they appear and optionally serves ``/healthz``.
    A backend can be injected for testing.
    """

    def __init__(
        self,
        config: Optional[SyncConfig] = None,
        *,
        backend: Optional[GreenhouseBackend] = None,
    ) -> None:
        self._config = config or load_config()
        self._backend = backend
        self._core: Optional[SyncCore] = None
        self._health_server: Optional[HealthServer] = None
        self._shutdown_event: Optional[asyncio.Event] = None
        self._unsubscribe = None
        self._active_alerts: frozenset[str] = frozenset()

    @property
    def core(self) -> Optional[SyncCore]:
        return self._core

    async def run(self) -> None:
        """Synchronize until :meth:`request_shutdown` is called or the task is cancelled."""

        self._shutdown_event = asyncio.Event()

        LOGGER.info("greenhouse-sync starting with config: %s", self._config.path)
        await self._start_services()

        try:
            await self._shutdown_event.wait()
        except asyncio.CancelledError:
            LOGGER.info("greenhouse-sync received shutdown signal")
            raise
        finally:
            await self._stop_services()

    def request_shutdown(self) -> None:
        if self._shutdown_event is not None:
            self._shutdown_event.set()

    @classmethod
    def start(cls, config: Optional[SyncConfig] = None) -> None:
        instance = cls(config=config)
        configure_logging(instance._config.logging)
        try:
            asyncio.run(instance.run())
        except KeyboardInterrupt:
            LOGGER.info("greenhouse-sync received shutdown signal")

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------
    async def _start_services(self) -> None:
        core = SyncCore.from_config(self._config, backend=self._backend)
        self._core = core
        self._unsubscribe = core.subscribe(self._on_snapshot)
        core.start()
        await self._start_health_server()

    async def _start_health_server(self) -> None:
        health = self._config.health
        if not health.enabled or health.port <= 0 or self._core is None:
            return

        server = HealthServer(self._core.get_snapshot, health.host, health.port)
        try:
            await server.start()
        except OSError as exc:
            LOGGER.error("Failed to start health endpoint: %s", exc)
        else:
            self._health_server = server

    async def _stop_services(self) -> None:
        if self._health_server is not None:
            await self._health_server.stop()
            self._health_server = None

        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

        if self._core is not None:
            await self._core.aclose()
            self._core = None

        if self._shutdown_event is not None:
            self._shutdown_event.set()

    def _on_snapshot(self, snapshot: GreenhouseSnapshot) -> None:
        current = {alert.sensor_key: alert for alert in snapshot.alerts}
        for key in sorted(current.keys() - self._active_alerts):
            LOGGER.warning("Threshold alert: %s", current[key].message)
        for key in sorted(self._active_alerts - current.keys()):
            LOGGER.info("Threshold alert cleared: %s back in range", key)
        self._active_alerts = frozenset(current)


async def fetch_snapshot(
    config: SyncConfig, *, backend: Optional[GreenhouseBackend] = None
) -> GreenhouseSnapshot:
    """Poll every channel and feed once and return the resulting snapshot."""

    core = SyncCore.from_config(config, backend=backend)
    try:
        return await core.refresh()
    finally:
        await core.aclose()


async def run_command(
    config: SyncConfig,
    device_id: str,
    desired: PowerState,
    *,
    backend: Optional[GreenhouseBackend] = None,
) -> Command:
    """Read the device once, issue ``desired`` and wait for the confirmation read.

    Raises:
        ValueError: If ``device_id`` is not configured.
        InvalidStateError: If the device state could not be read first.
    """

    core = SyncCore.from_config(config, backend=backend)
    try:
        channel = core.channel(device_id)
        await channel.poll()
        command = await core.send_command(device_id, desired)
        resolved = await channel.wait_for_confirmation()
        return resolved or command
    finally:
        await core.aclose()


__all__ = ["GreenhouseSyncApp", "fetch_snapshot", "run_command"]
