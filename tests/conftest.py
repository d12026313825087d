import asyncio
from typing import Any, Dict, List, Optional, Tuple

import pytest

from greenhouse_sync.adapters import backend_device_name
from greenhouse_sync.core import PowerState


def status_payload(device_id: str, status: Optional[str], time: Any = None) -> Dict[str, Any]:
    return {
        "device": backend_device_name(device_id),
        "status": status,
        "time": time or "2025-07-11T09:23:35",
    }


LATEST_READING: Dict[str, Any] = {
    "id": 42,
    "temperature": 24.5,
    "humidity": 61.0,
    "lightIntensity": 850,
    "soilMoisture": "45.5",
    "timestamp": "2025-07-11T09:23:35",
}


class FakeBackend:
    """In-memory stand-in for the greenhouse REST backend.

    ``failures`` maps an operation name (``latest``, ``all``, ``status:<device>``,
    ``control:<device>``) to the exception raised by the next calls, and
    ``gates`` holds events a call waits on before answering.
    """

    def __init__(self) -> None:
        self.latest: Any = dict(LATEST_READING)
        self.history: Any = [
            dict(LATEST_READING, id=40, temperature=22.0, timestamp="2025-07-11T09:13:35"),
            dict(LATEST_READING, id=41, temperature=23.0, timestamp="2025-07-11T09:18:35"),
            dict(LATEST_READING),
        ]
        self.statuses: Dict[str, Any] = {
            "fan": status_payload("fan", "off"),
            "pump": status_payload("pump", "on"),
            "light": status_payload("light", "off"),
        }
        self.failures: Dict[str, BaseException] = {}
        self.gates: Dict[str, asyncio.Event] = {}
        self.apply_control = True
        self.control_calls: List[Tuple[str, PowerState]] = []
        self.status_calls: List[str] = []
        self.closed = False

    async def _checkpoint(self, name: str) -> None:
        gate = self.gates.get(name)
        if gate is not None:
            await gate.wait()
        failure = self.failures.get(name)
        if failure is not None:
            raise failure

    async def fetch_latest_reading(self) -> Any:
        payload = self.latest
        await self._checkpoint("latest")
        return payload

    async def fetch_all_readings(self) -> Any:
        payload = self.history
        await self._checkpoint("all")
        return payload

    async def fetch_actuator_status(self, device_id: str) -> Any:
        self.status_calls.append(device_id)
        # captured before any gate so a delayed answer carries the old value
        payload = self.statuses.get(device_id)
        await self._checkpoint(f"status:{device_id}")
        return payload

    async def control_actuator(self, device_id: str, desired: PowerState) -> None:
        self.control_calls.append((device_id, desired))
        await self._checkpoint(f"control:{device_id}")
        if self.apply_control:
            self.statuses[device_id] = status_payload(device_id, desired.value)

    async def aclose(self) -> None:
        self.closed = True


@pytest.fixture
def backend() -> FakeBackend:
    return FakeBackend()
