"""End-to-end tests for the exporter: sample, send, backlog and resend."""

import asyncio
import json
import logging

import httpx
import pytest

from msp_webhook.bus.memory import InMemoryBus
from msp_webhook.exporter import WebhookExporter
from msp_webhook.metrics.types import Metric

from conftest import WEBHOOK_URL, make_record


@pytest.fixture
def vessel_bus() -> InMemoryBus:
    bus = InMemoryBus()
    bus.set_value("navigation.speedOverGround", 2.6, units="m/s")
    bus.set_value("environment.depth.belowTransducer", 14.2, units="m")
    bus.set_value("environment.water.temperature", 288.1, units="K")
    return bus


@pytest.fixture
def exporter(vessel_bus, webhook, clock) -> WebhookExporter:
    return WebhookExporter(vessel_bus, clock=clock, transport=webhook.transport)


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_start_subscribes_and_stop_releases(self, exporter, vessel_bus, config):
        await exporter.start(config, schedule=False)
        assert exporter.running
        assert vessel_bus.subscriber_count == 1

        await exporter.stop()
        assert not exporter.running
        assert exporter.context is None
        assert vessel_bus.subscriber_count == 0

    @pytest.mark.asyncio
    async def test_stop_twice_is_harmless(self, exporter, config):
        await exporter.start(config, schedule=False)
        await exporter.stop()
        await exporter.stop()

    @pytest.mark.asyncio
    async def test_start_twice_raises(self, exporter, config):
        await exporter.start(config, schedule=False)
        with pytest.raises(RuntimeError):
            await exporter.start(config, schedule=False)
        await exporter.stop()

    @pytest.mark.asyncio
    async def test_tick_requires_start(self, exporter):
        with pytest.raises(RuntimeError):
            await exporter.tick()

    @pytest.mark.asyncio
    async def test_subscription_error_is_logged_not_fatal(self, webhook, clock, config, caplog):
        bus = InMemoryBus(reject_paths={"navigation.speedOverGround"})
        exporter = WebhookExporter(bus, clock=clock, transport=webhook.transport)

        with caplog.at_level(logging.ERROR, logger="msp_webhook.exporter"):
            await exporter.start(config, schedule=False)

        assert "Subscription error" in caplog.text
        assert exporter.running

        outcome = await exporter.tick()
        assert outcome.delivery.ok
        await exporter.stop()

    @pytest.mark.asyncio
    async def test_no_metrics_enabled(self, exporter, vessel_bus, config):
        config.exporter.metrics = {}
        await exporter.start(config, schedule=False)

        assert vessel_bus.subscriber_count == 0
        outcome = await exporter.tick()
        assert outcome.record == {"datetime": "2024-06-01 09:23:00"}
        await exporter.stop()

    @pytest.mark.asyncio
    async def test_scheduled_start_fires_ticks(self, vessel_bus, webhook, clock, config):
        parked = asyncio.Event()

        async def sleep(delay):
            if delay > 0 and parked.is_set():
                await asyncio.Event().wait()
            if delay > 0:
                parked.set()
            await asyncio.sleep(0)

        exporter = WebhookExporter(vessel_bus, clock=clock, transport=webhook.transport, sleep=sleep)
        ctx = await exporter.start(config)
        for _ in range(10):
            await asyncio.sleep(0)

        assert ctx.scheduler.stats["ticks"] >= 1
        await exporter.stop()
        assert len(webhook.requests) == ctx.scheduler.stats["ticks"]


class TestRecord:
    @pytest.mark.asyncio
    async def test_record_contains_exactly_enabled_metrics(self, exporter, webhook, config):
        await exporter.start(config, schedule=False)
        outcome = await exporter.tick()
        await exporter.stop()

        assert set(outcome.record) == {"speed", "depth", "windSpeed", "datetime"}
        assert outcome.record["speed"] == {"value": 2.6, "unit": "m/s"}
        assert outcome.record["depth"] == {"value": 14.2, "unit": "m"}
        # Enabled but never seen on the bus
        assert outcome.record["windSpeed"] is None
        # Disabled even though the bus has it
        assert "wTemp" not in outcome.record
        assert outcome.record["datetime"] == "2024-06-01 09:23:00"
        assert webhook.bodies == [outcome.record]

    @pytest.mark.asyncio
    async def test_pushed_values_reach_record(self, exporter, vessel_bus, config):
        ctx = await exporter.start(config, schedule=False)

        vessel_bus.set_value("environment.wind.speedApparent", 7.5, units="m/s")
        await ctx.channel.join()

        assert ctx.store.observed()[Metric.WIND_SPEED].value == 7.5
        outcome = await exporter.tick()
        assert outcome.record["windSpeed"] == {"value": 7.5, "unit": "m/s"}
        await exporter.stop()


class TestReconcile:
    @pytest.mark.asyncio
    async def test_failure_then_recovery(self, exporter, webhook, config, clock):
        ctx = await exporter.start(config, schedule=False)

        webhook.refuse()
        failed = await exporter.tick()

        assert not failed.delivery.ok
        assert failed.backlogged
        assert ctx.connected is False
        assert ctx.backlog.load() == [failed.record]

        webhook.succeed()
        clock.now = clock.now.replace(minute=33)
        delivered = await exporter.tick()

        assert delivered.delivery.ok
        assert ctx.connected is True
        assert delivered.drain.delivered == 1
        assert ctx.backlog.load() == []

        bodies = webhook.bodies
        assert bodies[1] == delivered.record
        assert bodies[2] == failed.record
        await exporter.stop()

    @pytest.mark.asyncio
    async def test_http_error_status_backlogs(self, exporter, webhook, config):
        ctx = await exporter.start(config, schedule=False)
        webhook.fail_with_status(503)

        await exporter.tick()
        await exporter.tick()

        assert ctx.backlog.size() == 2
        assert ctx.connected is False
        await exporter.stop()

    @pytest.mark.asyncio
    async def test_failure_does_not_attempt_drain(self, exporter, webhook, config, backlog_path):
        backlog_path.write_text(json.dumps([make_record("old")]))
        await exporter.start(config, schedule=False)
        webhook.refuse()

        await exporter.tick()

        assert len(webhook.requests) == 1
        await exporter.stop()
        assert len(json.loads(backlog_path.read_text())) == 2

    @pytest.mark.asyncio
    async def test_every_success_drains(self, exporter, webhook, config, backlog_path):
        await exporter.start(config, schedule=False)

        await exporter.tick()
        backlog_path.write_text(json.dumps([make_record("a"), make_record("b")]))
        outcome = await exporter.tick()

        assert outcome.drain.delivered == 2
        assert json.loads(backlog_path.read_text()) == []
        await exporter.stop()

    @pytest.mark.asyncio
    async def test_partial_resend_failure(self, exporter, webhook, config, backlog_path):
        backlog_path.write_text(json.dumps([make_record("A"), make_record("B"), make_record("C")]))
        await exporter.start(config, schedule=False)

        def responder(request):
            if json.loads(request.content)["speed"]["value"] == "B":
                return httpx.Response(500, text="rejected")
            return httpx.Response(200, text="ok")

        webhook.responder = responder
        outcome = await exporter.tick()

        assert outcome.delivery.ok
        assert outcome.drain.remaining == 1
        assert json.loads(backlog_path.read_text()) == [make_record("B")]
        await exporter.stop()

    @pytest.mark.asyncio
    async def test_overlapping_ticks_lose_nothing(self, exporter, webhook, config):
        ctx = await exporter.start(config, schedule=False)
        webhook.refuse()

        await asyncio.gather(*(exporter.tick() for _ in range(5)))

        assert ctx.backlog.size() == 5
        await exporter.stop()

    @pytest.mark.asyncio
    async def test_flush_backlog(self, exporter, webhook, config, backlog_path):
        backlog_path.write_text(json.dumps([make_record("a")]))
        await exporter.start(config, schedule=False)

        outcome = await exporter.flush_backlog()

        assert outcome.delivered == 1
        assert str(webhook.requests[0].url).startswith(WEBHOOK_URL)
        await exporter.stop()


class TestStatus:
    @pytest.mark.asyncio
    async def test_status(self, exporter, webhook, config):
        await exporter.start(config, schedule=False)
        webhook.refuse()
        await exporter.tick()

        status = exporter.status()
        assert status["running"] is True
        assert status["connected"] is False
        assert status["backlog_size"] == 1
        assert status["metrics"] == ["speed", "depth", "windSpeed"]
        assert status["last_result"]["ok"] is False
        assert status["scheduler"] is None

        await exporter.stop()
        assert exporter.status() == {"running": False}
