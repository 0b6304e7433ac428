"""Metric identifiers and observations."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any


class Metric(str, Enum):
    """
    A tracked sensor quantity.

    The enum value is the identifier used in configuration and in the
    outbound record. Declaration order is record key order.
    """
    POSITION = "position"
    SPEED = "speed"
    HEADING = "heading"
    LOG = "log"
    DEPTH = "depth"
    WATER_TEMP = "wTemp"
    WIND_SPEED = "windSpeed"
    WIND_DIR = "windDir"
    PRESSURE = "pressure"

    @property
    def path(self) -> str:
        """Bus path this metric is read from."""
        return METRIC_PATHS[self]

    @classmethod
    def from_path(cls, path: str) -> Metric | None:
        """Reverse lookup by bus path."""
        return _PATH_INDEX.get(path)

    @classmethod
    def from_id(cls, metric_id: str) -> Metric:
        """Look up by identifier (raises ValueError if unknown)."""
        return cls(metric_id)


METRIC_PATHS: dict[Metric, str] = {
    Metric.POSITION: "navigation.position",
    Metric.SPEED: "navigation.speedOverGround",
    Metric.HEADING: "navigation.headingTrue",
    Metric.LOG: "navigation.trip.log",
    Metric.DEPTH: "environment.depth.belowTransducer",
    Metric.WATER_TEMP: "environment.water.temperature",
    Metric.WIND_SPEED: "environment.wind.speedApparent",
    Metric.WIND_DIR: "environment.wind.angleApparent",
    Metric.PRESSURE: "environment.pressure",
}

_PATH_INDEX: dict[str, Metric] = {path: metric for metric, path in METRIC_PATHS.items()}


@dataclass(frozen=True, slots=True)
class Observation:
    """Latest observed value of a metric."""
    value: Any
    unit: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {"value": self.value, "unit": self.unit}
