"""Composition root wiring channels, feeds and health for one greenhouse."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from types import TracebackType
from typing import (
    Any,
    Callable,
    Dict,
    Iterable,
    Mapping,
    Optional,
    Sequence,
    Type,
)

from . import constants
from .adapters import GreenhouseApiClient
from .channels import DeviceChannel
from .config import ConfigurationError, SyncConfig, ThresholdRange
from .core import (
    Command,
    DeviceChannelState,
    FeedMode,
    GreenhouseBackend,
    InvalidStateError,
    PowerState,
    SensorFeedState,
    SnapshotListener,
    SystemHealth,
    SystemStatus,
    utcnow,
)
from .core.timestamps import to_epoch_ms
from .feeds import SensorFeed
from .health import HealthAggregator
from .polling import PollingScheduler
from .thresholds import ThresholdBreach, evaluate_thresholds
from .topology import Greenhouse, find_greenhouse

LOGGER = logging.getLogger(__name__)

_FEED_MODES = {
    constants.FEED_LATEST: FeedMode.LATEST,
    constants.FEED_HISTORY: FeedMode.HISTORY,
}


@dataclass(slots=True, frozen=True)
class GreenhouseSnapshot:
    """Everything the presentation layer needs, captured at one instant."""

    greenhouse: Optional[Greenhouse]
    devices: Mapping[str, DeviceChannelState]
    feeds: Mapping[str, SensorFeedState]
    health: SystemHealth
    alerts: tuple[ThresholdBreach, ...]
    backend_reachable: bool
    updated_at: datetime

    def as_dict(self) -> Dict[str, object]:
        return {
            "greenhouse": (
                {
                    "id": self.greenhouse.id,
                    "name": self.greenhouse.name,
                    "farmId": self.greenhouse.farm_id,
                }
                if self.greenhouse is not None
                else None
            ),
            "health": self.health.as_dict(),
            "backendReachable": self.backend_reachable,
            "devices": {key: state.as_dict() for key, state in self.devices.items()},
            "feeds": {key: state.as_dict() for key, state in self.feeds.items()},
            "alerts": [alert.as_dict() for alert in self.alerts],
            "updatedAt": self.updated_at.isoformat(timespec="seconds"),
            "updatedAtMs": to_epoch_ms(self.updated_at),
        }


class SyncCore:
    """Owns the synchronization state for one monitored greenhouse.

    One :class:`DeviceChannel` is created per device id and one
    :class:`SensorFeed` per configured feed. :meth:`start` wires all of them
    into a :class:`PollingScheduler` at the same interval, plus a staleness
    ticker per feed. Every state change triggers a full health recompute and
    a notification to subscribers.

    Usage:
        async with SyncCore.from_config(config) as core:
            core.subscribe(render)
            await core.send_command("fan", PowerState.ON)
    """

    def __init__(
        self,
        backend: GreenhouseBackend,
        *,
        device_ids: Sequence[str] = constants.DEFAULT_DEVICE_IDS,
        sensor_keys: Sequence[str] = constants.DEFAULT_SENSOR_KEYS,
        feeds: Sequence[str] = constants.DEFAULT_FEEDS,
        greenhouse: Optional[Greenhouse] = None,
        poll_interval: float = constants.DEFAULT_POLL_INTERVAL_SECONDS,
        confirmation_delay: float = constants.DEFAULT_CONFIRMATION_DELAY_SECONDS,
        staleness_tick: float = constants.DEFAULT_STALENESS_TICK_SECONDS,
        history_limit: Optional[int] = None,
        thresholds: Optional[Mapping[str, ThresholdRange]] = None,
        clock: Callable[[], datetime] = utcnow,
        scheduler: Optional[PollingScheduler] = None,
        owns_backend: bool = False,
    ) -> None:
        self._backend = backend
        self._owns_backend = owns_backend
        self._greenhouse = greenhouse
        self._poll_interval = poll_interval
        self._staleness_tick = staleness_tick
        self._thresholds = dict(thresholds or {})
        self._clock = clock
        self._scheduler = scheduler or PollingScheduler()
        self._sensor_keys = tuple(sensor_keys)
        self._aggregator = HealthAggregator(self._sensor_keys, tuple(device_ids))

        self._channels: Dict[str, DeviceChannel] = {
            device_id: DeviceChannel(
                device_id,
                backend,
                confirmation_delay=confirmation_delay,
                clock=clock,
                on_change=self._on_source_change,
            )
            for device_id in device_ids
        }

        self._feeds: Dict[str, SensorFeed] = {}
        for feed_id in feeds:
            mode = _FEED_MODES.get(feed_id)
            if mode is None:
                raise ValueError(f"Unknown sensor feed: {feed_id!r}")
            self._feeds[feed_id] = SensorFeed(
                feed_id,
                mode,
                backend,
                sensor_keys=self._sensor_keys,
                history_limit=history_limit if mode is FeedMode.HISTORY else None,
                clock=clock,
                on_change=self._on_source_change,
            )

        self._listeners: list[SnapshotListener] = []
        self._listener_tasks: set[asyncio.Task[Any]] = set()
        self._started = False
        self._disposed = False
        self._snapshot = self._build_snapshot()

    @classmethod
    def from_config(
        cls,
        config: SyncConfig,
        *,
        backend: Optional[GreenhouseBackend] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> "SyncCore":
        """Build a core for the configured greenhouse.

        Raises:
            ConfigurationError: If the greenhouse id is not in the topology.
        """
        greenhouse = find_greenhouse(config.greenhouse.greenhouse_id)
        if greenhouse is None:
            raise ConfigurationError(
                f"Unknown greenhouse id: {config.greenhouse.greenhouse_id!r}"
            )

        owns_backend = backend is None
        return cls(
            backend if backend is not None else GreenhouseApiClient(config.backend),
            device_ids=config.greenhouse.devices,
            sensor_keys=config.greenhouse.sensor_keys,
            feeds=config.greenhouse.feeds,
            greenhouse=greenhouse,
            poll_interval=config.polling.interval_seconds,
            confirmation_delay=config.polling.confirmation_delay_seconds,
            staleness_tick=config.polling.staleness_tick_seconds,
            history_limit=config.greenhouse.history_limit,
            thresholds=config.thresholds,
            clock=clock,
            owns_backend=owns_backend,
        )

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    @property
    def greenhouse(self) -> Optional[Greenhouse]:
        return self._greenhouse

    @property
    def scheduler(self) -> PollingScheduler:
        return self._scheduler

    @property
    def disposed(self) -> bool:
        return self._disposed

    def channel(self, device_id: str) -> DeviceChannel:
        try:
            return self._channels[device_id]
        except KeyError:
            raise ValueError(f"Unknown device: {device_id!r}") from None

    def feed(self, feed_id: str) -> SensorFeed:
        try:
            return self._feeds[feed_id]
        except KeyError:
            raise ValueError(f"Unknown sensor feed: {feed_id!r}") from None

    def start(self) -> None:
        """Schedule polling for every channel and feed; requires a running loop."""
        if self._disposed:
            raise RuntimeError("SyncCore has been disposed")
        if self._started:
            return
        self._started = True

        for device_id, channel in self._channels.items():
            self._scheduler.schedule(f"device:{device_id}", self._poll_interval, channel.poll)

        for feed_id, feed in self._feeds.items():
            self._scheduler.schedule(f"feed:{feed_id}", self._poll_interval, feed.poll)
            self._scheduler.schedule(
                f"staleness:{feed_id}",
                self._staleness_tick,
                _staleness_ticker(feed),
            )

        LOGGER.info(
            "Synchronizing %s: devices=%s feeds=%s interval=%.1fs",
            self._label,
            ",".join(self._channels) or "-",
            ",".join(self._feeds) or "-",
            self._poll_interval,
        )

    def get_snapshot(self) -> GreenhouseSnapshot:
        """Return the latest snapshot without blocking."""
        return self._snapshot

    def subscribe(self, listener: SnapshotListener) -> Callable[[], None]:
        """Call ``listener`` with a fresh snapshot after every recompute.

        Returns:
            A callable that removes the listener again.
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    async def send_command(self, device_id: str, desired: PowerState) -> Command:
        """Delegate a power command to the device's channel.

        Raises:
            ValueError: If ``device_id`` is not a known device.
            InvalidStateError: If the channel cannot accept a command now.
        """
        channel = self.channel(device_id)
        if self._disposed:
            raise InvalidStateError("SyncCore has been disposed")
        return await channel.send_command(desired)

    async def refresh(self) -> GreenhouseSnapshot:
        """Poll every channel and feed once, outside the regular schedule."""
        if not self._disposed:
            await asyncio.gather(
                *(channel.poll() for channel in self._channels.values()),
                *(feed.poll() for feed in self._feeds.values()),
            )
        return self._snapshot

    def dispose(self) -> None:
        """Cancel every scheduled task and stop reacting to results; idempotent."""
        if self._disposed:
            return
        self._disposed = True
        self._scheduler.cancel_all()
        for channel in self._channels.values():
            channel.close()
        for feed in self._feeds.values():
            feed.close()
        LOGGER.info("Stopped synchronizing %s", self._label)

    async def aclose(self) -> None:
        """Dispose, wait for in-flight work to settle and release the backend."""
        self.dispose()
        await self._scheduler.aclose()
        for channel in self._channels.values():
            await channel.wait_for_confirmation()
        if self._listener_tasks:
            await asyncio.gather(*self._listener_tasks, return_exceptions=True)
        if self._owns_backend:
            await self._backend.aclose()

    async def __aenter__(self) -> "SyncCore":
        self.start()
        return self

    async def __aexit__(
        self,
        exc_type: Optional[Type[BaseException]],
        exc: Optional[BaseException],
        tb: Optional[TracebackType],
    ) -> None:
        await self.aclose()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------
    @property
    def _label(self) -> str:
        return self._greenhouse.name if self._greenhouse is not None else "greenhouse"

    def _primary_feed(self) -> Optional[SensorFeed]:
        feed = self._feeds.get(constants.FEED_LATEST)
        if feed is None:
            feed = self._feeds.get(constants.FEED_HISTORY)
        return feed

    def _build_snapshot(self) -> GreenhouseSnapshot:
        devices = {device_id: channel.state for device_id, channel in self._channels.items()}
        feeds = {feed_id: feed.state for feed_id, feed in self._feeds.items()}
        primary = self._primary_feed()
        primary_state = feeds[primary.feed_id] if primary is not None else None

        health = self._aggregator.evaluate(primary_state, devices)
        alerts = tuple(
            evaluate_thresholds(
                primary_state.latest if primary_state is not None else None,
                self._thresholds,
            )
        )

        return GreenhouseSnapshot(
            greenhouse=self._greenhouse,
            devices=devices,
            feeds=feeds,
            health=health,
            alerts=alerts,
            backend_reachable=_backend_reachable(devices.values(), feeds.values()),
            updated_at=self._clock(),
        )

    def _on_source_change(self, _state: object) -> None:
        if self._disposed:
            return
        self._recompute()

    def _recompute(self) -> None:
        previous = self._snapshot
        snapshot = self._build_snapshot()
        self._snapshot = snapshot

        if previous.health.status is not snapshot.health.status:
            log = LOGGER.info if snapshot.health.status is SystemStatus.ONLINE else LOGGER.warning
            log(
                "%s health %s -> %s (sensors=%d devices=%d)",
                self._label,
                previous.health.status.value,
                snapshot.health.status.value,
                snapshot.health.active_sensor_count,
                snapshot.health.online_device_count,
            )

        for listener in list(self._listeners):
            try:
                result = listener(snapshot)
            except Exception:
                LOGGER.exception("Snapshot listener failed")
                continue
            if asyncio.iscoroutine(result):
                task = asyncio.ensure_future(result)
                self._listener_tasks.add(task)
                task.add_done_callback(self._listener_done)

    def _listener_done(self, task: "asyncio.Future[Any]") -> None:
        self._listener_tasks.discard(task)  # type: ignore[arg-type]
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            LOGGER.error("Snapshot listener failed: %s", exc, exc_info=exc)


def _staleness_ticker(feed: SensorFeed) -> Callable[[], Any]:
    async def tick() -> None:
        feed.tick_staleness()

    return tick


def _backend_reachable(
    devices: Iterable[DeviceChannelState], feeds: Iterable[SensorFeedState]
) -> bool:
    errors = [state.last_error for state in devices]
    errors.extend(state.last_poll_error for state in feeds)
    if not errors:
        return True
    return not all(error is not None and error.is_transport for error in errors)


__all__ = ["GreenhouseSnapshot", "SyncCore"]
