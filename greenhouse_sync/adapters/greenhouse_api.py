"""Greenhouse backend adapter providing the HTTP calls the sync engine needs."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Mapping, Optional

import aiohttp

from ..config import BackendConfig
from ..core import (
    GreenhouseBackend,
    HttpStatusError,
    MalformedPayloadError,
    NetworkError,
    PowerState,
    RequestTimeoutError,
)
from ..core.timestamps import format_backend_timestamp, utcnow

LOGGER = logging.getLogger(__name__)

_JSON_HEADERS = {"Content-Type": "application/json"}


def backend_device_name(device_id: str) -> str:
    """Capitalize an internal device id the way the backend names devices."""
    return device_id[:1].upper() + device_id[1:]


class GreenhouseApiClient(GreenhouseBackend):
    """Non-blocking client for the greenhouse REST backend.

    Every call is bounded by ``config.request_timeout_seconds`` and translates
    transport problems into the engine's error hierarchy:

    - timeouts become :class:`RequestTimeoutError`,
    - non-2xx responses become :class:`HttpStatusError`,
    - connection failures become :class:`NetworkError`,
    - undecodable bodies become :class:`MalformedPayloadError`.
    """

    def __init__(
        self,
        config: BackendConfig,
        *,
        session: Optional[aiohttp.ClientSession] = None,
    ) -> None:
        self.config = config
        self._base_url = config.url.rstrip("/")
        self._timeout = config.request_timeout_seconds
        self._session: Optional[aiohttp.ClientSession] = session
        self._owns_session = session is None

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    async def fetch_latest_reading(self) -> Any:
        return await self._request_json("GET", "/api/sensors/latest")

    async def fetch_all_readings(self) -> Any:
        return await self._request_json("GET", "/api/sensors/all")

    async def fetch_actuator_status(self, device_id: str) -> Any:
        return await self._request_json(
            "GET",
            "/api/actuators/status",
            params={"device": backend_device_name(device_id)},
        )

    async def control_actuator(self, device_id: str, desired: PowerState) -> None:
        if not desired.is_known:
            raise ValueError("Actuators can only be switched on or off")

        body = {
            "device": backend_device_name(device_id),
            "status": desired.value,
            "updatedAt": format_backend_timestamp(utcnow()),
        }
        await self._request("POST", "/api/actuators/control", payload=body)

    async def aclose(self) -> None:
        if self._owns_session and self._session is not None:
            await self._session.close()
        self._session = None

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------
    async def _ensure_session(self) -> aiohttp.ClientSession:
        if self._session is None:
            timeout = aiohttp.ClientTimeout(total=None)
            self._session = aiohttp.ClientSession(timeout=timeout)
            self._owns_session = True
        return self._session

    async def _request_json(
        self,
        method: str,
        path: str,
        *,
        params: Optional[Mapping[str, str]] = None,
    ) -> Any:
        text = await self._request(method, path, params=params)
        if not text.strip():
            return None
        try:
            return json.loads(text)
        except json.JSONDecodeError as exc:
            raise MalformedPayloadError(
                f"{method} {path} returned invalid JSON: {exc.msg}"
            ) from exc

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: Optional[Mapping[str, str]] = None,
        payload: Optional[Mapping[str, Any]] = None,
    ) -> str:
        session = await self._ensure_session()
        url = f"{self._base_url}{path}"

        try:
            async with asyncio.timeout(self._timeout):
                async with session.request(
                    method,
                    url,
                    params=params,
                    json=payload,
                    headers=_JSON_HEADERS,
                ) as response:
                    text = await response.text()
                    if response.status >= 400:
                        LOGGER.debug(
                            "Backend %s %s failed with status %d: %s",
                            method,
                            path,
                            response.status,
                            text[:200],
                        )
                        raise HttpStatusError(
                            response.status,
                            f"{method} {path} failed with status {response.status}",
                        )
                    return text
        except asyncio.TimeoutError as exc:
            LOGGER.warning(
                "Backend request timed out after %.1fs (%s %s)",
                self._timeout,
                method,
                url,
            )
            raise RequestTimeoutError(
                f"{method} {path} timed out after {self._timeout:.1f}s"
            ) from exc
        except aiohttp.ClientError as exc:
            raise NetworkError(f"{method} {path} failed: {exc}") from exc
        except OSError as exc:
            raise NetworkError(f"{method} {path} failed: {exc}") from exc


__all__ = ["GreenhouseApiClient", "backend_device_name"]
