"""Tracked metrics and the latest-sample store."""

from .types import Metric, Observation
from .store import SampleStore

__all__ = [
    "Metric",
    "Observation",
    "SampleStore",
]
