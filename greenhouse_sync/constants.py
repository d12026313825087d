"""Constants used across the greenhouse-sync package."""

from __future__ import annotations

from pathlib import Path

APP_NAME = "greenhouse-sync"
DEFAULT_CONFIG_FILENAME = f"{APP_NAME}.cfg"
DEFAULT_CONFIG_PATH = Path.home() / ".config" / APP_NAME / DEFAULT_CONFIG_FILENAME

LOG_MAX_BYTES = 5 * 1024 * 1024
LOG_BACKUP_COUNT = 3

DEFAULT_BACKEND_URL = "https://smartfarm-ua4d.onrender.com"
DEFAULT_REQUEST_TIMEOUT_SECONDS = 10.0

DEFAULT_POLL_INTERVAL_SECONDS = 15.0
DEFAULT_CONFIRMATION_DELAY_SECONDS = 1.0
DEFAULT_STALENESS_TICK_SECONDS = 1.0

DEFAULT_GREENHOUSE_ID = "gh-kibg-001"
DEFAULT_DEVICE_IDS: tuple[str, ...] = ("fan", "pump", "light")
DEFAULT_SENSOR_KEYS: tuple[str, ...] = (
    "temperature",
    "humidity",
    "lightIntensity",
    "soilMoisture",
)

FEED_LATEST = "latest"
FEED_HISTORY = "history"
DEFAULT_FEEDS: tuple[str, ...] = (FEED_LATEST, FEED_HISTORY)
