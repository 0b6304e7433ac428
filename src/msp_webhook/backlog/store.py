"""Durable JSON backlog of records that failed delivery."""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import os
import tempfile
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Awaitable, Callable

from ..delivery.result import DeliveryResult
from ..records import DATETIME_FORMAT


logger = logging.getLogger(__name__)

SendFn = Callable[[dict[str, Any]], Awaitable[DeliveryResult]]


@dataclass(frozen=True, slots=True)
class DrainOutcome:
    """Result of one drain attempt."""
    attempted: int = 0
    delivered: int = 0
    remaining: int = 0
    written: bool = False
    evicted: int = 0

    @property
    def complete(self) -> bool:
        """True when nothing is left in the backlog."""
        return self.remaining == 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "attempted": self.attempted,
            "delivered": self.delivered,
            "remaining": self.remaining,
            "written": self.written,
            "evicted": self.evicted,
        }


@dataclass
class DurableBacklog:
    """
    Ordered queue of undelivered records persisted as one JSON list.

    Every mutation reads the whole file, changes the list and rewrites it
    atomically (temp file + rename). All read-modify-write cycles in the
    process go through one asyncio lock, so overlapping ticks cannot lose
    each other's updates.

    Storage problems never escape: a missing or corrupt file reads as an
    empty list, and a failed write leaves the previous file in place.

    Eviction (applied on every rewrite):
        max_entries: keep only the newest N entries (0 = unlimited)
        max_age_hours: drop entries whose ``datetime`` is older (0 = unlimited)
    """
    path: str = "offlineData.json"
    max_entries: int = 10000
    max_age_hours: float = 0.0
    encoding: str = "utf-8"

    # Injected clock for age eviction
    clock: Callable[[], datetime] = datetime.now

    # Internal state
    _lock: asyncio.Lock = field(default_factory=asyncio.Lock, init=False)
    _stats: dict = field(default_factory=dict, init=False)

    def __post_init__(self):
        self._stats = {
            "appends": 0,
            "drains": 0,
            "resent": 0,
            "evicted": 0,
            "read_errors": 0,
            "write_errors": 0,
        }

    def load(self) -> list[dict[str, Any]]:
        """
        Read the persisted list.

        Missing, unreadable or malformed storage yields an empty list.
        """
        file_path = Path(self.path)
        if not file_path.exists():
            return []

        try:
            with open(file_path, "r", encoding=self.encoding) as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            self._stats["read_errors"] += 1
            logger.error(f"Error loading offline data from {self.path}: {e}")
            return []

        if not isinstance(data, list):
            self._stats["read_errors"] += 1
            logger.error(f"Offline data in {self.path} is not a list, ignoring it")
            return []

        return data

    def size(self) -> int:
        return len(self.load())

    async def append(self, record: dict[str, Any]) -> bool:
        """
        Add a record to the end of the backlog.

        Returns True if the new list was written.
        """
        async with self._lock:
            entries = self.load()
            entries.append(record)
            entries = self._evict(entries)
            self._stats["appends"] += 1
            written = self._write(entries)

        if written:
            logger.info(f"Stored record in offline backlog ({len(entries)} pending)")
        return written

    async def drain_attempt(self, send_fn: SendFn) -> DrainOutcome:
        """
        Resend every backlogged record and keep only the failures.

        All sends run concurrently and independently; a failure or an
        exception for one entry does not affect the others. An entry is
        removed if and only if its resend reported success.
        """
        async with self._lock:
            entries = self.load()
            if not entries:
                return DrainOutcome()

            logger.info(f"Resending offline data ({len(entries)} stored records)...")
            self._stats["drains"] += 1

            results = await asyncio.gather(
                *(send_fn(entry) for entry in entries),
                return_exceptions=True,
            )

            failed = []
            for entry, result in zip(entries, results):
                if isinstance(result, BaseException):
                    logger.warning(f"Resend raised {type(result).__name__}: {result}")
                    failed.append(entry)
                elif not result.ok:
                    failed.append(entry)

            delivered = len(entries) - len(failed)
            self._stats["resent"] += delivered
            logger.info(
                f"Successfully resent {delivered} out of {len(entries)} stored data points"
            )

            before = len(failed)
            remaining = self._evict(failed)
            written = self._write(remaining)

        return DrainOutcome(
            attempted=len(entries),
            delivered=delivered,
            remaining=len(remaining),
            written=written,
            evicted=before - len(remaining),
        )

    async def clear(self) -> bool:
        """Drop every entry."""
        async with self._lock:
            return self._write([])

    def _evict(self, entries: list[dict[str, Any]]) -> list[dict[str, Any]]:
        evicted = 0

        if self.max_age_hours > 0:
            cutoff = self.clock() - timedelta(hours=self.max_age_hours)
            kept = [e for e in entries if not _older_than(e, cutoff)]
            evicted += len(entries) - len(kept)
            entries = kept

        if self.max_entries > 0 and len(entries) > self.max_entries:
            evicted += len(entries) - self.max_entries
            entries = entries[-self.max_entries:]

        if evicted:
            self._stats["evicted"] += evicted
            logger.warning(f"Evicted {evicted} record(s) from offline backlog")

        return entries

    def _write(self, entries: list[dict[str, Any]]) -> bool:
        file_path = Path(self.path)
        tmp_path = None
        try:
            file_path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(
                prefix=f".{file_path.name}.", suffix=".tmp", dir=str(file_path.parent)
            )
            with os.fdopen(fd, "w", encoding=self.encoding) as f:
                json.dump(entries, f, default=str)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, file_path)
            return True
        except (OSError, TypeError, ValueError) as e:
            self._stats["write_errors"] += 1
            logger.error(f"Error saving offline data to {self.path}: {e}")
            if tmp_path:
                with contextlib.suppress(OSError):
                    os.unlink(tmp_path)
            return False

    @property
    def stats(self) -> dict:
        return dict(self._stats)


def _older_than(entry: Any, cutoff: datetime) -> bool:
    if not isinstance(entry, dict):
        return False
    stamp = entry.get("datetime")
    if not isinstance(stamp, str):
        return False
    try:
        return datetime.strptime(stamp, DATETIME_FORMAT) < cutoff
    except ValueError:
        return False
