"""Threshold alerts for the latest sensor reading."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Mapping, Optional

from .config import ThresholdRange
from .core import SensorReading


class BreachDirection(str, Enum):
    BELOW = "below"
    ABOVE = "above"


@dataclass(slots=True, frozen=True)
class ThresholdBreach:
    sensor_key: str
    value: float
    minimum: float
    maximum: float
    direction: BreachDirection

    @property
    def message(self) -> str:
        bound = self.minimum if self.direction is BreachDirection.BELOW else self.maximum
        return (
            f"{self.sensor_key} {self.value:g} is {self.direction.value} "
            f"the configured limit of {bound:g}"
        )

    def as_dict(self) -> Dict[str, object]:
        return {
            "sensorKey": self.sensor_key,
            "value": self.value,
            "min": self.minimum,
            "max": self.maximum,
            "direction": self.direction.value,
            "message": self.message,
        }


def evaluate_thresholds(
    reading: Optional[SensorReading], rules: Mapping[str, ThresholdRange]
) -> List[ThresholdBreach]:
    """Return a breach for every numeric value outside its configured range.

    Missing values and keys without a rule never produce a breach.
    """
    if reading is None:
        return []

    breaches: List[ThresholdBreach] = []
    for key, rule in rules.items():
        value = reading.value(key)
        if value is None:
            continue
        if value < rule.minimum:
            direction = BreachDirection.BELOW
        elif value > rule.maximum:
            direction = BreachDirection.ABOVE
        else:
            continue
        breaches.append(
            ThresholdBreach(
                sensor_key=key,
                value=value,
                minimum=rule.minimum,
                maximum=rule.maximum,
                direction=direction,
            )
        )
    return breaches


__all__ = ["BreachDirection", "ThresholdBreach", "evaluate_thresholds"]
