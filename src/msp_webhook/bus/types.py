"""Bus message types."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True, slots=True)
class Subscription:
    """Subscription to a single bus path."""
    path: str
    period_ms: int = 1000
    policy: str = "instant"  # instant | ideal | fixed


@dataclass(frozen=True, slots=True)
class SubscriptionRequest:
    """A batch of subscriptions registered with one callback."""
    subscriptions: tuple[Subscription, ...]
    context: str = "vessels.self"

    @property
    def paths(self) -> list[str]:
        return [s.path for s in self.subscriptions]


@dataclass(frozen=True, slots=True)
class PathValue:
    """One changed value."""
    path: str
    value: Any


@dataclass(frozen=True, slots=True)
class BusUpdate:
    """A group of values reported together (one source, one timestamp)."""
    values: tuple[PathValue, ...] = ()
    timestamp: str | None = None


@dataclass(frozen=True, slots=True)
class BusDelta:
    """
    A delta message pushed by the bus.

    Mirrors the Signal K delta shape: ``updates[].values[] = {path, value}``.
    """
    updates: tuple[BusUpdate, ...] = ()
    context: str = "vessels.self"

    @classmethod
    def single(cls, path: str, value: Any) -> BusDelta:
        """Delta carrying one value."""
        return cls(updates=(BusUpdate(values=(PathValue(path, value),)),))

    def iter_values(self):
        """Iterate every PathValue across all updates."""
        for update in self.updates:
            yield from update.values


@dataclass(frozen=True, slots=True)
class BusValue:
    """Result of a direct bus query."""
    value: Any
    units: str | None = None
    meta: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_node(cls, node: dict[str, Any]) -> BusValue:
        """Build from a Signal K data node (``{value, meta: {units}}``)."""
        meta = node.get("meta") or {}
        return cls(value=node.get("value"), units=meta.get("units"), meta=meta)
