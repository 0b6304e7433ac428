"""Durable backlog of undelivered records."""

from .store import DrainOutcome, DurableBacklog, SendFn

__all__ = [
    "DrainOutcome",
    "DurableBacklog",
    "SendFn",
]
