"""Base bus interface."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Callable

from .types import BusDelta, BusValue, SubscriptionRequest


DeltaCallback = Callable[[BusDelta], None]
ErrorCallback = Callable[[str], None]
Unsubscribe = Callable[[], None]


class DataBus(ABC):
    """
    Abstract base class for the host sensor-data bus.

    The exporter consumes two things from the bus: a push subscription
    that delivers deltas, and a synchronous lookup of the current value
    of a path.
    """

    @abstractmethod
    def subscribe(
        self,
        request: SubscriptionRequest,
        on_error: ErrorCallback,
        on_delta: DeltaCallback,
    ) -> list[Unsubscribe]:
        """
        Register a callback for a batch of subscriptions.

        Returns the callables that release the subscription. Failures
        are reported through ``on_error`` rather than raised.
        """
        ...

    @abstractmethod
    def get_value(self, path: str) -> BusValue | None:
        """Current value of a path, or None if the bus has none."""
        ...

    async def start(self) -> None:
        """Initialize the bus (called on startup)."""
        pass

    async def stop(self) -> None:
        """Clean up the bus (called on shutdown)."""
        pass
