"""Configuration loader for greenhouse-sync."""

from __future__ import annotations

from configparser import ConfigParser
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, List, Optional

from . import constants


class ConfigurationError(ValueError):
    """Raised when the configuration file contains unusable values."""


@dataclass(slots=True)
class BackendConfig:
    url: str = constants.DEFAULT_BACKEND_URL
    request_timeout_seconds: float = constants.DEFAULT_REQUEST_TIMEOUT_SECONDS


@dataclass(slots=True)
class PollingConfig:
    interval_seconds: float = constants.DEFAULT_POLL_INTERVAL_SECONDS
    confirmation_delay_seconds: float = constants.DEFAULT_CONFIRMATION_DELAY_SECONDS
    staleness_tick_seconds: float = constants.DEFAULT_STALENESS_TICK_SECONDS


@dataclass(slots=True)
class GreenhouseConfig:
    greenhouse_id: str = constants.DEFAULT_GREENHOUSE_ID
    devices: List[str] = field(default_factory=lambda: list(constants.DEFAULT_DEVICE_IDS))
    sensor_keys: List[str] = field(
        default_factory=lambda: list(constants.DEFAULT_SENSOR_KEYS)
    )
    feeds: List[str] = field(default_factory=lambda: list(constants.DEFAULT_FEEDS))
    history_limit: Optional[int] = None  # None keeps every reading


@dataclass(slots=True, frozen=True)
class ThresholdRange:
    minimum: float
    maximum: float


DEFAULT_THRESHOLDS: Dict[str, ThresholdRange] = {
    "temperature": ThresholdRange(18.0, 30.0),
    "humidity": ThresholdRange(40.0, 80.0),
    "lightIntensity": ThresholdRange(200.0, 2000.0),
    "soilMoisture": ThresholdRange(30.0, 70.0),
}


@dataclass(slots=True)
class LoggingConfig:
    level: str = "INFO"
    path: Optional[Path] = None
    log_network: bool = False


@dataclass(slots=True)
class HealthConfig:
    enabled: bool = False
    host: str = "127.0.0.1"
    port: int = 0


@dataclass(slots=True)
class SyncConfig:
    backend: BackendConfig
    polling: PollingConfig
    greenhouse: GreenhouseConfig
    thresholds: Dict[str, ThresholdRange]
    logging: LoggingConfig
    health: HealthConfig
    raw: ConfigParser
    path: Path


def default_config(path: Optional[Path] = None) -> SyncConfig:
    """Build a configuration from built-in defaults without touching disk."""

    return SyncConfig(
        backend=BackendConfig(),
        polling=PollingConfig(),
        greenhouse=GreenhouseConfig(),
        thresholds=dict(DEFAULT_THRESHOLDS),
        logging=LoggingConfig(),
        health=HealthConfig(),
        raw=ConfigParser(),
        path=path or constants.DEFAULT_CONFIG_PATH,
    )


def _parse_list(value: str, *, default: Iterable[str]) -> List[str]:
    if not value:
        return list(default)
    return [item.strip() for item in value.split(",") if item.strip()]


def _parse_threshold(key: str, value: str) -> ThresholdRange:
    lower, sep, upper = value.partition(":")
    if not sep:
        raise ConfigurationError(
            f"Threshold for {key!r} must look like 'min:max', got {value!r}"
        )
    try:
        minimum = float(lower)
        maximum = float(upper)
    except ValueError as exc:
        raise ConfigurationError(f"Threshold for {key!r} is not numeric: {value!r}") from exc
    if minimum > maximum:
        raise ConfigurationError(
            f"Threshold for {key!r} has min above max: {value!r}"
        )
    return ThresholdRange(minimum, maximum)


def load_config(path: Optional[Path] = None) -> SyncConfig:
    """Load configuration from disk, applying defaults where necessary."""

    config_path = path or constants.DEFAULT_CONFIG_PATH
    parser = ConfigParser()
    # sensor keys such as "lightIntensity" are case sensitive
    parser.optionxform = str  # type: ignore[assignment, method-assign]
    parser.read_dict(
        {
            "backend": {
                "url": constants.DEFAULT_BACKEND_URL,
                "request_timeout_seconds": str(constants.DEFAULT_REQUEST_TIMEOUT_SECONDS),
            },
            "polling": {
                "interval_seconds": str(constants.DEFAULT_POLL_INTERVAL_SECONDS),
                "confirmation_delay_seconds": str(
                    constants.DEFAULT_CONFIRMATION_DELAY_SECONDS
                ),
                "staleness_tick_seconds": str(constants.DEFAULT_STALENESS_TICK_SECONDS),
            },
            "greenhouse": {
                "greenhouse_id": constants.DEFAULT_GREENHOUSE_ID,
                "devices": ",".join(constants.DEFAULT_DEVICE_IDS),
                "sensor_keys": ",".join(constants.DEFAULT_SENSOR_KEYS),
                "feeds": ",".join(constants.DEFAULT_FEEDS),
                "history_limit": "0",
            },
            "thresholds": {
                key: f"{rule.minimum:g}:{rule.maximum:g}"
                for key, rule in DEFAULT_THRESHOLDS.items()
            },
            "logging": {
                "level": "INFO",
                "path": "",
                "log_network": "false",
            },
            "health": {
                "enabled": "false",
                "host": "127.0.0.1",
                "port": "0",
            },
        }
    )

    if config_path.exists():
        parser.read(config_path)

    backend = BackendConfig(
        url=parser.get("backend", "url").rstrip("/"),
        request_timeout_seconds=max(
            0.1,
            parser.getfloat(
                "backend",
                "request_timeout_seconds",
                fallback=constants.DEFAULT_REQUEST_TIMEOUT_SECONDS,
            ),
        ),
    )

    polling = PollingConfig(
        interval_seconds=max(
            0.1,
            parser.getfloat(
                "polling",
                "interval_seconds",
                fallback=constants.DEFAULT_POLL_INTERVAL_SECONDS,
            ),
        ),
        confirmation_delay_seconds=max(
            0.0,
            parser.getfloat(
                "polling",
                "confirmation_delay_seconds",
                fallback=constants.DEFAULT_CONFIRMATION_DELAY_SECONDS,
            ),
        ),
        staleness_tick_seconds=max(
            0.1,
            parser.getfloat(
                "polling",
                "staleness_tick_seconds",
                fallback=constants.DEFAULT_STALENESS_TICK_SECONDS,
            ),
        ),
    )

    history_limit = parser.getint("greenhouse", "history_limit", fallback=0)

    feeds = _parse_list(
        parser.get("greenhouse", "feeds", fallback=""),
        default=constants.DEFAULT_FEEDS,
    )
    unknown_feeds = [
        name
        for name in feeds
        if name not in (constants.FEED_LATEST, constants.FEED_HISTORY)
    ]
    if unknown_feeds:
        raise ConfigurationError(f"Unknown sensor feeds: {', '.join(unknown_feeds)}")

    greenhouse = GreenhouseConfig(
        greenhouse_id=parser.get(
            "greenhouse", "greenhouse_id", fallback=constants.DEFAULT_GREENHOUSE_ID
        ),
        devices=[
            device.lower()
            for device in _parse_list(
                parser.get("greenhouse", "devices", fallback=""),
                default=constants.DEFAULT_DEVICE_IDS,
            )
        ],
        sensor_keys=_parse_list(
            parser.get("greenhouse", "sensor_keys", fallback=""),
            default=constants.DEFAULT_SENSOR_KEYS,
        ),
        feeds=feeds,
        history_limit=history_limit if history_limit > 0 else None,
    )

    thresholds = {
        key: _parse_threshold(key, value)
        for key, value in parser.items("thresholds")
        if value.strip()
    }

    log_path_value = parser.get("logging", "path", fallback="").strip()
    logging_config = LoggingConfig(
        level=parser.get("logging", "level", fallback="INFO"),
        path=Path(log_path_value).expanduser() if log_path_value else None,
        log_network=parser.getboolean("logging", "log_network", fallback=False),
    )

    health = HealthConfig(
        enabled=parser.getboolean("health", "enabled", fallback=False),
        host=parser.get("health", "host", fallback="127.0.0.1"),
        port=parser.getint("health", "port", fallback=0),
    )

    return SyncConfig(
        backend=backend,
        polling=polling,
        greenhouse=greenhouse,
        thresholds=thresholds,
        logging=logging_config,
        health=health,
        raw=parser,
        path=config_path,
    )


def save_config(config: SyncConfig) -> None:
    """Persist the current configuration to disk."""

    config_path = config.path
    config_path.parent.mkdir(parents=True, exist_ok=True)
    with config_path.open("w", encoding="utf-8") as stream:
        config.raw.write(stream)
