"""Outbound record construction."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Callable, Iterable

from .metrics.store import SampleStore
from .metrics.types import Metric


DATETIME_FORMAT = "%Y-%m-%d %H:%M:%S"


def format_datetime(now: datetime) -> str:
    """Local wall-clock time as ``YYYY-MM-DD HH:MM:SS``."""
    return now.strftime(DATETIME_FORMAT)


def build_record(
    store: SampleStore,
    metrics: Iterable[Metric],
    clock: Callable[[], datetime] = datetime.now,
) -> dict[str, Any]:
    """
    Build one record from the current samples.

    The record has exactly one key per given metric, mapped to
    ``{"value", "unit"}`` or None when no value is known, plus ``datetime``.
    """
    record: dict[str, Any] = {}
    for metric, observation in store.snapshot(metrics).items():
        record[metric.value] = observation.to_dict() if observation is not None else None
    record["datetime"] = format_datetime(clock())
    return record
