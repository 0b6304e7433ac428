"""Host data bus - subscriptions, direct queries and the delta channel."""

from .types import (
    BusDelta,
    BusUpdate,
    BusValue,
    PathValue,
    Subscription,
    SubscriptionRequest,
)
from .base import DataBus, DeltaCallback, ErrorCallback, Unsubscribe
from .channel import DeltaChannel
from .memory import InMemoryBus
from .signalk import SignalKBus

__all__ = [
    "BusDelta",
    "BusUpdate",
    "BusValue",
    "PathValue",
    "Subscription",
    "SubscriptionRequest",
    "DataBus",
    "DeltaCallback",
    "ErrorCallback",
    "Unsubscribe",
    "DeltaChannel",
    "InMemoryBus",
    "SignalKBus",
]
