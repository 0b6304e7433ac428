"""Sample, send and reconcile - the exporter service."""

from __future__ import annotations

import asyncio
import functools
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable

import httpx

from . import __version__
from .backlog.store import DrainOutcome, DurableBacklog
from .bus.base import DataBus, Unsubscribe
from .bus.channel import DeltaChannel
from .bus.types import Subscription, SubscriptionRequest
from .config import Config
from .delivery.client import WebhookClient
from .delivery.result import DeliveryResult
from .metrics.store import SampleStore
from .metrics.types import Metric
from .records import build_record
from .scheduler import IntervalScheduler


logger = logging.getLogger(__name__)


@dataclass
class ExporterContext:
    """
    Everything one run of the exporter needs.

    Created by ``start`` and discarded by ``stop``; nothing about a run
    lives at module level.
    """
    config: Config
    store: SampleStore
    channel: DeltaChannel
    backlog: DurableBacklog
    client: WebhookClient
    scheduler: IntervalScheduler | None = None

    # Outcome of the most recent delivery (advisory only)
    connected: bool = True

    unsubscribes: list[Unsubscribe] = field(default_factory=list)
    channel_task: asyncio.Task | None = None
    last_result: DeliveryResult | None = None
    last_tick_at: datetime | None = None
    started_at: datetime | None = None

    @property
    def metrics(self) -> list[Metric]:
        return self.config.exporter.enabled_metrics


@dataclass(frozen=True)
class TickOutcome:
    """What one tick did."""
    record: dict[str, Any]
    delivery: DeliveryResult
    drain: DrainOutcome | None = None
    backlogged: bool = False


class WebhookExporter:
    """
    Periodically sends the latest samples to the webhook.

    On every tick the current samples are sent. A successful send marks
    the webhook as connected and then tries to flush the offline backlog;
    a failed send marks it disconnected and stores that exact record in
    the backlog. Every tick tries to send regardless of the previous
    outcome.

    Usage:
        exporter = WebhookExporter(bus)
        await exporter.start(config)
        ...
        await exporter.stop()
    """

    def __init__(
        self,
        bus: DataBus,
        clock: Callable[[], datetime] = datetime.now,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        monotonic: Callable[[], float] | None = None,
    ):
        self.bus = bus
        self._clock = clock
        self._transport = transport
        self._sleep = sleep
        self._monotonic = monotonic
        self._context: ExporterContext | None = None

    @property
    def context(self) -> ExporterContext | None:
        return self._context

    @property
    def running(self) -> bool:
        return self._context is not None

    def create_context(self, config: Config) -> ExporterContext:
        """Build the components of a run without starting anything."""
        return ExporterContext(
            config=config,
            store=SampleStore(bus=self.bus),
            channel=DeltaChannel(max_queue_size=config.bus.channel_queue_size),
            backlog=DurableBacklog(
                path=config.backlog.path,
                max_entries=config.backlog.max_entries,
                max_age_hours=config.backlog.max_age_hours,
                clock=self._clock,
            ),
            client=WebhookClient(
                webhook_url=config.exporter.webhook_url,
                auth_key=config.exporter.auth_key,
                auth_param=config.exporter.auth_param,
                timeout=config.delivery.timeout_seconds,
                transport=self._transport,
            ),
        )

    async def start(self, config: Config, schedule: bool = True) -> ExporterContext:
        """
        Subscribe to the bus and start the send schedule.

        With ``schedule=False`` nothing fires on its own; callers drive
        ``tick`` themselves (CLI one-shot commands, tests).
        """
        if self._context is not None:
            raise RuntimeError("Exporter already running")

        config.validate()
        logger.info(f"Starting MSP Webhook exporter {__version__}")

        ctx = self.create_context(config)
        ctx.started_at = self._clock()

        await ctx.client.start()
        await self.bus.start()

        await ctx.channel.start()
        ctx.channel.add_handler(ctx.store.handle_delta)
        ctx.channel_task = asyncio.create_task(ctx.channel.process_loop())

        self._subscribe(ctx)

        if schedule:
            ctx.scheduler = IntervalScheduler(
                interval_minutes=config.exporter.send_freq_minutes,
                callback=functools.partial(self.tick, ctx),
                clock=self._clock,
                sleep=self._sleep,
                monotonic=self._monotonic,
            )
            ctx.scheduler.start()

        self._context = ctx
        logger.info(
            f"Exporter started: {len(ctx.metrics)} metric(s), "
            f"every {config.exporter.send_freq_minutes} minute(s)"
        )
        return ctx

    async def stop(self) -> None:
        """Release subscriptions, halt the schedule and discard the context."""
        ctx = self._context
        if ctx is None:
            return

        logger.info("Stopping MSP Webhook exporter...")
        self._context = None

        for unsubscribe in ctx.unsubscribes:
            try:
                unsubscribe()
            except Exception as e:
                logger.error(f"Error releasing subscription: {e}")
        ctx.unsubscribes = []

        if ctx.scheduler:
            await ctx.scheduler.stop()

        if ctx.channel_task:
            ctx.channel_task.cancel()
            try:
                await ctx.channel_task
            except asyncio.CancelledError:
                pass
        await ctx.channel.stop()

        await self.bus.stop()
        await ctx.client.stop()

        logger.info("Exporter stopped")

    def build_record(self, ctx: ExporterContext | None = None) -> dict[str, Any]:
        """Current samples for the enabled metrics plus a timestamp."""
        ctx = ctx or self._require_context()
        return build_record(ctx.store, ctx.metrics, clock=self._clock)

    async def tick(self, ctx: ExporterContext | None = None) -> TickOutcome:
        """One sample-and-send cycle."""
        ctx = ctx or self._require_context()

        record = self.build_record(ctx)
        result = await ctx.client.send(record)
        ctx.last_result = result
        ctx.last_tick_at = self._clock()

        if result.ok:
            if not ctx.connected:
                logger.info("Webhook reachable again")
            ctx.connected = True
            drain = await ctx.backlog.drain_attempt(ctx.client.send)
            return TickOutcome(record=record, delivery=result, drain=drain)

        ctx.connected = False
        backlogged = await ctx.backlog.append(record)
        return TickOutcome(record=record, delivery=result, backlogged=backlogged)

    async def flush_backlog(self) -> DrainOutcome:
        """Drain the backlog now, outside the schedule."""
        ctx = self._require_context()
        return await ctx.backlog.drain_attempt(ctx.client.send)

    def status(self) -> dict[str, Any]:
        ctx = self._context
        if ctx is None:
            return {"running": False}

        return {
            "running": True,
            "connected": ctx.connected,
            "metrics": [m.value for m in ctx.metrics],
            "backlog_size": ctx.backlog.size(),
            "last_tick_at": ctx.last_tick_at.isoformat() if ctx.last_tick_at else None,
            "last_result": ctx.last_result.to_dict() if ctx.last_result else None,
            "started_at": ctx.started_at.isoformat() if ctx.started_at else None,
            "scheduler": ctx.scheduler.stats if ctx.scheduler else None,
            "delivery": ctx.client.stats,
            "backlog": ctx.backlog.stats,
            "store": ctx.store.stats,
            "channel": ctx.channel.stats,
        }

    def _subscribe(self, ctx: ExporterContext) -> None:
        metrics = ctx.metrics
        if not metrics:
            logger.warning("No metrics enabled, records will only carry a timestamp")
            return

        period = ctx.config.exporter.subscription_period_ms
        request = SubscriptionRequest(
            subscriptions=tuple(Subscription(path=m.path, period_ms=period) for m in metrics),
        )

        try:
            ctx.unsubscribes.extend(
                self.bus.subscribe(request, self._on_subscription_error, ctx.channel.publish)
            )
        except Exception as e:
            self._on_subscription_error(str(e))

    def _on_subscription_error(self, error: str) -> None:
        logger.error(f"Subscription error: {error}")

    def _require_context(self) -> ExporterContext:
        if self._context is None:
            raise RuntimeError("Exporter not started")
        return self._context
