"""Synchronization state for a single controllable actuator.

A :class:`DeviceChannel` owns everything the client believes about one device:
the last reported power state, the optimistic command currently in flight and
the last failure. Presentation code only ever sees the reconciled
:class:`~greenhouse_sync.core.DeviceChannelState` snapshot.

Ordering between polls and commands is serialized with an epoch counter. The
epoch advances when a command is issued and again when its write is
acknowledged; a poll remembers the epoch it was issued in and its result is
discarded if the epoch moved while the request was outstanding. Poll results
that land while a write is still unacknowledged are discarded as well, so the
optimistic value is never overwritten by data fetched before the write.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from datetime import datetime
from typing import Any, Callable, Mapping, Optional

from .core import (
    Command,
    DeviceChannelState,
    ErrorKind,
    GreenhouseBackend,
    InvalidStateError,
    MalformedPayloadError,
    PowerState,
    SyncError,
    normalize_or,
    utcnow,
)

LOGGER = logging.getLogger(__name__)

ChannelListener = Callable[[DeviceChannelState], None]

_STATUS_VALUES = {
    "on": PowerState.ON,
    "off": PowerState.OFF,
    "unknown": PowerState.UNKNOWN,
}


def parse_status_payload(
    payload: Any, fallback: datetime
) -> tuple[PowerState, Optional[datetime]]:
    """Decode an ``/api/actuators/status`` body.

    Only the ``{device, status, time}`` shape is accepted. Bodies using the
    legacy ``action`` field are rejected instead of being merged in.

    Returns:
        The reported power state and its timestamp (``fallback`` when the
        backend sent none). The timestamp is None for ``UNKNOWN``.

    Raises:
        MalformedPayloadError: If the body does not match the schema.
    """
    if not isinstance(payload, Mapping):
        raise MalformedPayloadError("Actuator status response is not an object")

    if "status" not in payload:
        if "action" in payload:
            raise MalformedPayloadError(
                "Actuator status uses the legacy 'action' field"
            )
        raise MalformedPayloadError("Actuator status response has no 'status'")

    if not isinstance(payload.get("device"), str):
        raise MalformedPayloadError("Actuator status response has no device name")

    status = payload["status"]
    if status is None:
        return PowerState.UNKNOWN, None
    if not isinstance(status, str):
        raise MalformedPayloadError(f"Unexpected actuator status {status!r}")

    state = _STATUS_VALUES.get(status.strip().lower())
    if state is None:
        raise MalformedPayloadError(f"Unexpected actuator status {status!r}")
    if state is PowerState.UNKNOWN:
        return state, None

    return state, normalize_or(payload.get("time"), fallback)


class DeviceChannel:
    """Owns polling, optimistic commands and reconciliation for one device."""

    def __init__(
        self,
        device_id: str,
        backend: GreenhouseBackend,
        *,
        confirmation_delay: float = 1.0,
        clock: Callable[[], datetime] = utcnow,
        on_change: Optional[ChannelListener] = None,
    ) -> None:
        self.device_id = device_id
        self._backend = backend
        self._confirmation_delay = max(confirmation_delay, 0.0)
        self._clock = clock
        self._on_change = on_change

        self._reported = PowerState.UNKNOWN
        self._reported_at: Optional[datetime] = None
        self._pending: Optional[Command] = None
        self._write_acknowledged = False
        self._last_command: Optional[Command] = None
        self._last_error: Optional[ErrorKind] = None
        self._last_error_detail: Optional[str] = None
        self._epoch = 0
        self._confirm_task: Optional[asyncio.Task[None]] = None
        self._closed = False

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    @property
    def state(self) -> DeviceChannelState:
        return DeviceChannelState(
            device_id=self.device_id,
            reported=self._reported,
            reported_at=self._reported_at,
            pending=self._pending,
            last_error=self._last_error,
            last_error_detail=self._last_error_detail,
            last_command=self._last_command,
        )

    @property
    def closed(self) -> bool:
        return self._closed

    async def poll(self) -> DeviceChannelState:
        """Read the device status and fold it into the channel state.

        Never raises for backend failures; they become channel state.
        """
        if self._closed:
            return self.state

        epoch = self._epoch
        issued_at = self._clock()

        try:
            payload = await self._backend.fetch_actuator_status(self.device_id)
            reported, reported_at = parse_status_payload(payload, issued_at)
        except SyncError as exc:
            self._apply_failure(epoch, exc.kind, exc.detail)
        except Exception as exc:
            LOGGER.exception("Unexpected failure polling %s", self.device_id)
            self._apply_failure(epoch, ErrorKind.NETWORK, str(exc))
        else:
            self._apply_reading(epoch, reported, reported_at)

        return self.state

    async def send_command(self, desired: PowerState) -> Command:
        """Optimistically switch the device and issue the write.

        Returns:
            The command as it stands once the write settled: ``OPTIMISTIC``
            while awaiting confirmation, or ``ROLLED_BACK`` if the write failed.

        Raises:
            InvalidStateError: If the device state is unknown, a command is
                already pending, or the channel is closed. No request is made.
            ValueError: If ``desired`` is not ON or OFF.
        """
        if not desired.is_known:
            raise ValueError("Commands must target ON or OFF")
        if self._closed:
            raise InvalidStateError(f"Channel for {self.device_id} is closed")
        if self._pending is not None:
            raise InvalidStateError(
                f"A command for {self.device_id} is already pending"
            )
        if not self._reported.is_known:
            raise InvalidStateError(
                f"Cannot command {self.device_id} while its state is unknown"
            )

        previous_reported = self._reported
        previous_reported_at = self._reported_at
        issued_at = self._clock()

        command = Command(device_id=self.device_id, desired=desired, issued_at=issued_at)
        self._epoch += 1
        self._pending = command
        self._write_acknowledged = False
        self._last_command = command
        self._reported = desired
        self._reported_at = issued_at
        LOGGER.info(
            "Command %s -> %s issued (optimistic)", self.device_id, desired.value
        )
        self._notify()

        try:
            await self._backend.control_actuator(self.device_id, desired)
        except SyncError as exc:
            return self._roll_back_write(
                command, previous_reported, previous_reported_at, exc.kind, exc.detail
            )
        except Exception as exc:
            LOGGER.exception("Unexpected failure commanding %s", self.device_id)
            return self._roll_back_write(
                command, previous_reported, previous_reported_at, ErrorKind.NETWORK, str(exc)
            )

        if self._closed or self._pending is not command:
            return command

        self._epoch += 1
        self._write_acknowledged = True
        self._confirm_task = asyncio.create_task(
            self._confirm_later(), name=f"confirm:{self.device_id}"
        )
        return command

    async def wait_for_confirmation(self) -> Optional[Command]:
        """Wait for the scheduled confirmation poll, if any, and return the last command."""
        task = self._confirm_task
        if task is not None:
            with contextlib.suppress(asyncio.CancelledError):
                await task
        return self._last_command

    def close(self) -> None:
        """Stop acting on network results; idempotent."""
        if self._closed:
            return
        self._closed = True
        if self._confirm_task is not None and not self._confirm_task.done():
            self._confirm_task.cancel()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------
    async def _confirm_later(self) -> None:
        await asyncio.sleep(self._confirmation_delay)
        if self._closed:
            return
        await self.poll()

    def _is_stale(self, epoch: int) -> bool:
        if self._closed:
            return True
        if epoch != self._epoch:
            return True
        return self._pending is not None and not self._write_acknowledged

    def _apply_reading(
        self, epoch: int, reported: PowerState, reported_at: Optional[datetime]
    ) -> None:
        if self._is_stale(epoch):
            LOGGER.debug("Discarding stale status read for %s", self.device_id)
            return

        previous = self._reported
        self._reported = reported
        self._reported_at = reported_at
        self._last_error = None
        self._last_error_detail = None

        if self._pending is not None:
            self._reconcile(reported)
        elif previous is not reported:
            LOGGER.info(
                "Device %s reported %s -> %s",
                self.device_id,
                previous.value,
                reported.value,
            )

        self._notify()

    def _apply_failure(self, epoch: int, kind: ErrorKind, detail: str) -> None:
        if self._is_stale(epoch):
            LOGGER.debug("Discarding stale status failure for %s", self.device_id)
            return

        if self._reported.is_known:
            LOGGER.warning(
                "Device %s disconnected (%s): %s", self.device_id, kind.value, detail
            )
        self._reported = PowerState.UNKNOWN
        self._reported_at = None
        self._last_error = kind
        self._last_error_detail = detail

        if self._pending is not None:
            self._reconcile(PowerState.UNKNOWN)

        self._notify()

    def _reconcile(self, reported: PowerState) -> None:
        pending = self._pending
        assert pending is not None

        if reported is pending.desired:
            resolved = pending.confirm()
            LOGGER.info(
                "Command %s -> %s confirmed", self.device_id, pending.desired.value
            )
        else:
            resolved = pending.roll_back()
            LOGGER.warning(
                "Command %s -> %s contradicted by backend (reports %s)",
                self.device_id,
                pending.desired.value,
                reported.value,
            )

        self._pending = None
        self._write_acknowledged = False
        self._last_command = resolved

    def _roll_back_write(
        self,
        command: Command,
        previous_reported: PowerState,
        previous_reported_at: Optional[datetime],
        kind: ErrorKind,
        detail: str,
    ) -> Command:
        resolved = command.roll_back()
        if self._closed or self._pending is not command:
            return resolved

        LOGGER.warning(
            "Command %s -> %s failed (%s): %s",
            self.device_id,
            command.desired.value,
            kind.value,
            detail,
        )
        self._reported = previous_reported
        self._reported_at = previous_reported_at
        self._pending = None
        self._write_acknowledged = False
        self._last_command = resolved
        self._last_error = kind
        self._last_error_detail = detail
        self._notify()
        return resolved

    def _notify(self) -> None:
        if self._on_change is None:
            return
        try:
            self._on_change(self.state)
        except Exception:
            LOGGER.exception("Channel listener for %s failed", self.device_id)


__all__ = ["ChannelListener", "DeviceChannel", "parse_status_payload"]
