"""Adapter modules for external integrations."""

from .greenhouse_api import GreenhouseApiClient, backend_device_name

__all__ = ["GreenhouseApiClient", "backend_device_name"]
