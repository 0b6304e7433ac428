"""Signal K server bus over the REST API."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field

import httpx

from .base import DataBus, DeltaCallback, ErrorCallback, Unsubscribe
from .types import BusDelta, BusValue, Subscription, SubscriptionRequest


logger = logging.getLogger(__name__)


@dataclass
class SignalKBus(DataBus):
    """
    Bus that polls a Signal K server.

    Each subscription gets its own polling task that fetches the path
    node once per subscription period and pushes a delta whenever the
    value changes. The last fetched node is cached so ``get_value`` can
    answer synchronously.

    Config:
        base_url: Server root (e.g., "http://localhost:3000")
        timeout: Request timeout in seconds
        min_period_ms: Lower bound on the polling period
    """
    base_url: str = "http://localhost:3000"
    timeout: float = 5.0
    min_period_ms: int = 1000

    # Injected transport (tests)
    transport: httpx.AsyncBaseTransport | None = None

    # Internal state
    _client: httpx.AsyncClient | None = field(default=None, init=False)
    _nodes: dict[str, BusValue] = field(default_factory=dict, init=False)
    _tasks: set[asyncio.Task] = field(default_factory=set, init=False)
    _stats: dict = field(default_factory=dict, init=False)

    def __post_init__(self):
        self._stats = {
            "polls": 0,
            "changes": 0,
            "errors": 0,
        }

    async def start(self) -> None:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                transport=self.transport,
            )
            logger.info(f"Signal K bus started ({self.base_url})")

    async def stop(self) -> None:
        for task in list(self._tasks):
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()

        if self._client:
            await self._client.aclose()
            self._client = None
        logger.info(f"Signal K bus stopped. Stats: {self._stats}")

    def subscribe(
        self,
        request: SubscriptionRequest,
        on_error: ErrorCallback,
        on_delta: DeltaCallback,
    ) -> list[Unsubscribe]:
        if self._client is None:
            on_error("Signal K bus not started")
            return []

        unsubscribes = []
        for subscription in request.subscriptions:
            task = asyncio.create_task(
                self._poll_loop(request.context, subscription, on_error, on_delta)
            )
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)
            unsubscribes.append(task.cancel)

        logger.info(f"Polling {len(request.subscriptions)} Signal K path(s)")
        return unsubscribes

    def get_value(self, path: str) -> BusValue | None:
        return self._nodes.get(path)

    def node_url(self, context: str, path: str) -> str:
        """REST URL of a data node, relative to ``base_url``."""
        return f"/signalk/v1/api/{context.replace('.', '/')}/{path.replace('.', '/')}"

    async def poll_once(
        self,
        context: str,
        path: str,
        on_error: ErrorCallback,
        on_delta: DeltaCallback,
    ) -> None:
        """Fetch one node and push a delta if its value changed."""
        self._stats["polls"] += 1
        try:
            response = await self._client.get(self.node_url(context, path))
        except httpx.HTTPError as e:
            self._stats["errors"] += 1
            on_error(f"Signal K request for {path} failed: {e}")
            return

        if response.status_code == 404:
            return
        if response.status_code >= 400:
            self._stats["errors"] += 1
            on_error(f"Signal K error for {path}: {response.status_code} - {response.text[:200]}")
            return

        try:
            node = response.json()
        except ValueError as e:
            self._stats["errors"] += 1
            on_error(f"Invalid Signal K response for {path}: {e}")
            return

        if not isinstance(node, dict) or "value" not in node:
            return

        previous = self._nodes.get(path)
        current = BusValue.from_node(node)
        self._nodes[path] = current

        if previous is None or previous.value != current.value:
            self._stats["changes"] += 1
            on_delta(BusDelta.single(path, current.value))

    async def _poll_loop(
        self,
        context: str,
        subscription: Subscription,
        on_error: ErrorCallback,
        on_delta: DeltaCallback,
    ) -> None:
        period = max(subscription.period_ms, self.min_period_ms) / 1000.0
        while True:
            try:
                await self.poll_once(context, subscription.path, on_error, on_delta)
                await asyncio.sleep(period)
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Polling error for {subscription.path}: {e}")
                self._stats["errors"] += 1
                await asyncio.sleep(period)

    @property
    def stats(self) -> dict:
        return {**self._stats, "paths": len(self._tasks)}
