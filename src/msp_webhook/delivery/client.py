"""HTTP client that posts records to the webhook."""

from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass, field
from typing import Any

import httpx

from .result import DeliveryResult


logger = logging.getLogger(__name__)


@dataclass
class WebhookClient:
    """
    Posts one JSON record per request to the configured webhook.

    The shared secret travels as a query parameter (``auth_key`` by
    default), never as a header. Non-2xx responses and transport errors
    are both reported as a failed DeliveryResult; ``send`` never raises
    for an I/O problem.

    Config:
        webhook_url: Endpoint to POST to (may already carry a query string)
        auth_key: Shared secret
        auth_param: Query parameter name for the secret
        timeout: Request timeout in seconds
    """
    webhook_url: str
    auth_key: str = ""
    auth_param: str = "auth_key"
    timeout: float = 30.0

    # Injected transport (tests)
    transport: httpx.AsyncBaseTransport | None = None

    # Internal state
    _client: httpx.AsyncClient | None = field(default=None, init=False)
    _stats: dict = field(default_factory=dict, init=False)

    def __post_init__(self):
        self._stats = {
            "sent": 0,
            "failed": 0,
        }

    async def start(self) -> None:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout, transport=self.transport)

    async def stop(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    @property
    def target_url(self) -> httpx.URL:
        """Webhook URL with the auth key appended to any existing query."""
        return httpx.URL(self.webhook_url).copy_add_param(self.auth_param, self.auth_key)

    async def send(self, record: dict[str, Any]) -> DeliveryResult:
        """POST a record and report the outcome."""
        if self._client is None:
            await self.start()

        start = time.perf_counter()

        try:
            body = json.dumps(record, default=str)
        except (TypeError, ValueError) as e:
            self._stats["failed"] += 1
            logger.error(f"Record is not JSON serializable: {e}")
            return DeliveryResult.failure(f"serialization error: {e}")

        try:
            response = await self._client.post(
                self.target_url,
                content=body,
                headers={"Content-Type": "application/json"},
            )
            text = response.text
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            elapsed = (time.perf_counter() - start) * 1000
            self._stats["failed"] += 1
            logger.warning(f"Error sending data to webhook: {e!r}")
            return DeliveryResult.failure(str(e) or type(e).__name__, latency_ms=elapsed)

        elapsed = (time.perf_counter() - start) * 1000

        if not response.is_success:
            self._stats["failed"] += 1
            logger.warning(
                f"Failed to send data to webhook - Status: {response.status_code}, Response: {text[:500]}"
            )
            return DeliveryResult.failure(
                f"HTTP error! status: {response.status_code}",
                status_code=response.status_code,
                body=text,
                latency_ms=elapsed,
            )

        self._stats["sent"] += 1
        logger.debug(
            f"Data sent successfully - Status: {response.status_code}, Response: {text[:500]}"
        )
        return DeliveryResult.success(response.status_code, text, latency_ms=elapsed)

    @property
    def stats(self) -> dict:
        return dict(self._stats)
