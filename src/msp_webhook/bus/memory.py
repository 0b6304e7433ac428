"""In-process bus for embedding hosts and tests."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from .base import DataBus, DeltaCallback, ErrorCallback, Unsubscribe
from .types import BusDelta, BusValue, SubscriptionRequest


logger = logging.getLogger(__name__)


@dataclass
class InMemoryBus(DataBus):
    """
    Bus backed by a plain dictionary.

    The host calls ``set_value`` (or ``push``) and every subscriber whose
    request covers the path receives a delta synchronously.

    Paths listed in ``reject_paths`` make ``subscribe`` report an error for
    the whole request, which is how a real server reacts to an invalid path.
    """
    reject_paths: set[str] = field(default_factory=set)

    # Internal state
    _nodes: dict[str, BusValue] = field(default_factory=dict, init=False)
    _subscribers: list[tuple[frozenset[str], DeltaCallback]] = field(default_factory=list, init=False)

    def subscribe(
        self,
        request: SubscriptionRequest,
        on_error: ErrorCallback,
        on_delta: DeltaCallback,
    ) -> list[Unsubscribe]:
        rejected = [p for p in request.paths if p in self.reject_paths]
        if rejected:
            on_error(f"Unknown path(s): {', '.join(rejected)}")
            return []

        entry = (frozenset(request.paths), on_delta)
        self._subscribers.append(entry)
        logger.debug(f"Subscribed {len(request.paths)} path(s)")

        def unsubscribe() -> None:
            if entry in self._subscribers:
                self._subscribers.remove(entry)

        return [unsubscribe]

    def get_value(self, path: str) -> BusValue | None:
        return self._nodes.get(path)

    def set_value(self, path: str, value: Any, units: str | None = None) -> None:
        """Store a value and push it to matching subscribers."""
        meta = {"units": units} if units else {}
        self._nodes[path] = BusValue(value=value, units=units, meta=meta)
        self.push(BusDelta.single(path, value))

    def push(self, delta: BusDelta) -> None:
        """Deliver a delta to every subscriber covering one of its paths."""
        paths = {v.path for v in delta.iter_values()}
        for subscribed, callback in list(self._subscribers):
            if paths & subscribed:
                callback(delta)

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)
