"""Error taxonomy shared by the backend adapter, channels and feeds."""

from __future__ import annotations

from enum import Enum
from typing import Optional


class ErrorKind(str, Enum):
    NETWORK = "network"
    TIMEOUT = "timeout"
    HTTP = "http"
    MALFORMED_PAYLOAD = "malformed_payload"
    INVALID_STATE = "invalid_state"

    @property
    def is_transport(self) -> bool:
        """True for failures that happened before a usable response arrived."""
        return self in (ErrorKind.NETWORK, ErrorKind.TIMEOUT, ErrorKind.HTTP)


class SyncError(RuntimeError):
    """Base class for failures surfaced by the synchronization engine."""

    kind: ErrorKind = ErrorKind.NETWORK

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.detail = message


class NetworkError(SyncError):
    """Backend unreachable: DNS failure, refused or dropped connection."""

    kind = ErrorKind.NETWORK


class RequestTimeoutError(SyncError):
    """The per-request timeout elapsed before the backend answered."""

    kind = ErrorKind.TIMEOUT


class HttpStatusError(SyncError):
    """The backend answered with a non-2xx status."""

    kind = ErrorKind.HTTP

    def __init__(self, status: int, message: Optional[str] = None) -> None:
        super().__init__(message or f"HTTP {status}")
        self.status = status


class MalformedPayloadError(SyncError):
    """The response body did not match the expected schema."""

    kind = ErrorKind.MALFORMED_PAYLOAD


class InvalidStateError(SyncError):
    """A command was issued against a device that cannot accept one right now."""

    kind = ErrorKind.INVALID_STATE


__all__ = [
    "ErrorKind",
    "HttpStatusError",
    "InvalidStateError",
    "MalformedPayloadError",
    "NetworkError",
    "RequestTimeoutError",
    "SyncError",
]
