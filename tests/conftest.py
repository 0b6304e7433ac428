"""Shared test fixtures for the webhook exporter tests."""

from __future__ import annotations

import json
from datetime import datetime
from pathlib import Path
from typing import Callable

import httpx
import pytest

from msp_webhook.backlog.store import DurableBacklog
from msp_webhook.bus.memory import InMemoryBus
from msp_webhook.config import Config
from msp_webhook.delivery.result import DeliveryResult


WEBHOOK_URL = "http://hook.test/ingest"
AUTH_KEY = "s3cret"


class WebhookRecorder:
    """
    Fake webhook behind an httpx.MockTransport.

    Records every request; ``responder`` decides the response (or raises
    an httpx error to simulate a transport failure).
    """

    def __init__(self, responder: Callable[[httpx.Request], httpx.Response] | None = None):
        self.requests: list[httpx.Request] = []
        self.responder = responder or (lambda request: httpx.Response(200, text="ok"))

    def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.responder(request)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handle)

    @property
    def bodies(self) -> list[dict]:
        return [json.loads(r.content) for r in self.requests]

    def succeed(self) -> None:
        self.responder = lambda request: httpx.Response(200, text="ok")

    def fail_with_status(self, status: int = 500, text: str = "boom") -> None:
        self.responder = lambda request: httpx.Response(status, text=text)

    def refuse(self) -> None:
        def responder(request):
            raise httpx.ConnectError("Connection refused", request=request)
        self.responder = responder


class FixedClock:
    """Settable clock for code that takes a ``clock`` callable."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


def ok_result() -> DeliveryResult:
    return DeliveryResult.success(200, "ok")


def failed_result() -> DeliveryResult:
    return DeliveryResult.failure("HTTP error! status: 500", status_code=500)


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def webhook() -> WebhookRecorder:
    return WebhookRecorder()


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock(datetime(2024, 6, 1, 9, 23, 0))


@pytest.fixture
def backlog_path(tmp_path: Path) -> Path:
    return tmp_path / "offlineData.json"


@pytest.fixture
def backlog(backlog_path: Path) -> DurableBacklog:
    return DurableBacklog(path=str(backlog_path))


@pytest.fixture
def bus() -> InMemoryBus:
    return InMemoryBus()


@pytest.fixture
def config(backlog_path: Path) -> Config:
    """Config with speed, depth and wind speed enabled."""
    return Config.from_dict({
        "sendFreq": 10,
        "webhookUrl": WEBHOOK_URL,
        "authKey": AUTH_KEY,
        "speed": True,
        "depth": True,
        "windSpeed": True,
        "backlog": {"path": str(backlog_path)},
        "bus": {"type": "memory"},
    })


def make_record(label: str, stamp: str = "2024-06-01 09:00:00") -> dict:
    return {"speed": {"value": label, "unit": "m/s"}, "datetime": stamp}
