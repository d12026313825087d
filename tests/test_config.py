from pathlib import Path

import pytest

from greenhouse_sync import constants
from greenhouse_sync.config import (
    DEFAULT_THRESHOLDS,
    ConfigurationError,
    ThresholdRange,
    load_config,
    save_config,
)


def test_load_config_defaults(tmp_path: Path) -> None:
    config_path = tmp_path / "greenhouse-sync.cfg"
    config = load_config(config_path)

    assert config.path == config_path
    assert config.backend.url == constants.DEFAULT_BACKEND_URL
    assert config.backend.request_timeout_seconds == 10.0
    assert config.polling.interval_seconds == 15.0
    assert config.polling.confirmation_delay_seconds == 1.0
    assert config.polling.staleness_tick_seconds == 1.0
    assert config.greenhouse.greenhouse_id == "gh-kibg-001"
    assert config.greenhouse.devices == ["fan", "pump", "light"]
    assert config.greenhouse.sensor_keys == [
        "temperature",
        "humidity",
        "lightIntensity",
        "soilMoisture",
    ]
    assert config.greenhouse.feeds == ["latest", "history"]
    assert config.greenhouse.history_limit is None
    assert config.thresholds == DEFAULT_THRESHOLDS
    assert config.logging.path is None
    assert config.health.enabled is False
    assert config.health.port == 0


def test_load_config_overrides_defaults(tmp_path: Path) -> None:
    config_file = tmp_path / "greenhouse-sync.cfg"
    config_file.write_text(
        """
[backend]
url = http://localhost:8080/
request_timeout_seconds = 2.5

[polling]
interval_seconds = 5
confirmation_delay_seconds = 0.5

[greenhouse]
greenhouse_id = gh-nak-002
devices = Fan, Pump
feeds = history
history_limit = 500

[thresholds]
temperature = 15:28
soilMoisture =

[logging]
level = DEBUG
path = {log}
log_network = true

[health]
enabled = true
port = 9090
        """.strip().format(log=tmp_path / "sync.log")
        + "\n",
        encoding="utf-8",
    )

    config = load_config(config_file)

    assert config.backend.url == "http://localhost:8080"
    assert config.backend.request_timeout_seconds == 2.5
    assert config.polling.interval_seconds == 5.0
    assert config.polling.confirmation_delay_seconds == 0.5
    assert config.greenhouse.greenhouse_id == "gh-nak-002"
    assert config.greenhouse.devices == ["fan", "pump"]
    assert config.greenhouse.feeds == ["history"]
    assert config.greenhouse.history_limit == 500
    assert config.thresholds["temperature"] == ThresholdRange(15.0, 28.0)
    assert "soilMoisture" not in config.thresholds
    assert config.thresholds["humidity"] == DEFAULT_THRESHOLDS["humidity"]
    assert config.logging.level == "DEBUG"
    assert config.logging.path == tmp_path / "sync.log"
    assert config.logging.log_network is True
    assert config.health.enabled is True
    assert config.health.port == 9090


def test_load_config_clamps_intervals(tmp_path: Path) -> None:
    config_file = tmp_path / "greenhouse-sync.cfg"
    config_file.write_text(
        "[polling]\ninterval_seconds = 0\nconfirmation_delay_seconds = -3\n",
        encoding="utf-8",
    )

    config = load_config(config_file)

    assert config.polling.interval_seconds == 0.1
    assert config.polling.confirmation_delay_seconds == 0.0


@pytest.mark.parametrize(
    "section",
    [
        "[greenhouse]\nfeeds = latest, hourly\n",
        "[thresholds]\ntemperature = 30\n",
        "[thresholds]\ntemperature = warm:hot\n",
        "[thresholds]\ntemperature = 30:10\n",
    ],
)
def test_load_config_rejects_invalid_values(tmp_path: Path, section: str) -> None:
    config_file = tmp_path / "greenhouse-sync.cfg"
    config_file.write_text(section, encoding="utf-8")

    with pytest.raises(ConfigurationError):
        load_config(config_file)


def test_save_config_round_trips_raw_values(tmp_path: Path) -> None:
    config_file = tmp_path / "nested" / "greenhouse-sync.cfg"
    config = load_config(config_file)
    config.raw.set("greenhouse", "greenhouse_id", "gh-eld-001")

    save_config(config)
    reloaded = load_config(config_file)

    assert reloaded.greenhouse.greenhouse_id == "gh-eld-001"
    assert reloaded.thresholds == DEFAULT_THRESHOLDS
