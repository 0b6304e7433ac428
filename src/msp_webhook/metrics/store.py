"""Latest-value store for tracked metrics."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Iterable

from ..bus.base import DataBus
from ..bus.types import BusDelta
from .types import Metric, Observation


logger = logging.getLogger(__name__)


@dataclass
class SampleStore:
    """
    Holds the latest observation for each tracked metric.

    Written only by ``handle_delta`` (driven by the delta channel) and
    ``update``; read by the send tick. When no push has arrived yet for a
    metric, ``read`` falls back to a direct bus query without caching the
    answer, so the next push always wins.
    """
    bus: DataBus | None = None

    # Internal storage
    _observations: dict[Metric, Observation] = field(default_factory=dict, init=False)

    # Stats
    _updates: int = field(default=0, init=False)
    _fallback_queries: int = field(default=0, init=False)

    def update(self, metric: Metric, value: Any, unit: str | None = None) -> None:
        """Overwrite the stored observation for a metric."""
        self._observations[metric] = Observation(value=value, unit=unit)
        self._updates += 1

    def read(self, metric: Metric) -> Observation | None:
        """
        Latest observation for a metric.

        Returns None if nothing was pushed and the bus has no value.
        """
        observation = self._observations.get(metric)
        if observation is not None:
            return observation
        return self.query(metric)

    def query(self, metric: Metric) -> Observation | None:
        """Direct bus lookup, bypassing pushed observations."""
        if self.bus is None:
            return None

        self._fallback_queries += 1
        data = self.bus.get_value(metric.path)
        if data is None:
            return None
        return Observation(value=data.value, unit=data.units)

    def handle_delta(self, delta: BusDelta) -> None:
        """Apply a bus delta; values for untracked paths are ignored."""
        for item in delta.iter_values():
            metric = Metric.from_path(item.path)
            if metric is None:
                continue
            self.update(metric, item.value, self._units_for(item.path))

    def snapshot(self, metrics: Iterable[Metric]) -> dict[Metric, Observation | None]:
        """Read every metric in order."""
        return {metric: self.read(metric) for metric in metrics}

    def observed(self) -> dict[Metric, Observation]:
        """Pushed observations only (no bus queries)."""
        return dict(self._observations)

    def _units_for(self, path: str) -> str | None:
        if self.bus is None:
            return None
        data = self.bus.get_value(path)
        return data.units if data is not None else None

    @property
    def stats(self) -> dict:
        return {
            "tracked": len(self._observations),
            "updates": self._updates,
            "fallback_queries": self._fallback_queries,
        }
