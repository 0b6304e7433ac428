"""Tests for the webhook delivery client."""

import json

import httpx
import pytest

from msp_webhook.delivery.client import WebhookClient
from msp_webhook.delivery.result import DeliveryError, DeliveryResult

from conftest import AUTH_KEY, WEBHOOK_URL, WebhookRecorder, make_record


def make_client(webhook: WebhookRecorder, **kwargs) -> WebhookClient:
    return WebhookClient(
        webhook_url=kwargs.pop("webhook_url", WEBHOOK_URL),
        auth_key=AUTH_KEY,
        transport=webhook.transport,
        **kwargs,
    )


class TestWebhookClient:
    @pytest.mark.asyncio
    async def test_success(self, webhook):
        client = make_client(webhook)

        result = await client.send(make_record("a"))
        await client.stop()

        assert result.ok
        assert result.status_code == 200
        assert result.body == "ok"
        assert client.stats == {"sent": 1, "failed": 0}

    @pytest.mark.asyncio
    async def test_request_shape(self, webhook):
        client = make_client(webhook)
        record = make_record("a")

        await client.send(record)
        await client.stop()

        request = webhook.requests[0]
        assert request.method == "POST"
        assert request.url.params["auth_key"] == AUTH_KEY
        assert request.headers["content-type"] == "application/json"
        assert "authorization" not in request.headers
        assert json.loads(request.content) == record

    @pytest.mark.asyncio
    async def test_auth_added_to_existing_query(self, webhook):
        client = make_client(webhook, webhook_url=f"{WEBHOOK_URL}?boat=morvargh", auth_param="key")

        await client.send(make_record("a"))
        await client.stop()

        params = webhook.requests[0].url.params
        assert params["boat"] == "morvargh"
        assert params["key"] == AUTH_KEY

    @pytest.mark.asyncio
    async def test_existing_query_kept_in_order(self, webhook):
        client = make_client(webhook, webhook_url="http://hook.test/exec?id=abc")

        await client.send(make_record("a"))
        await client.stop()

        assert str(webhook.requests[0].url) == f"http://hook.test/exec?id=abc&auth_key={AUTH_KEY}"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", [400, 401, 404, 500, 503])
    async def test_non_2xx_is_failure(self, webhook, status):
        webhook.fail_with_status(status, text="nope")
        client = make_client(webhook)

        result = await client.send(make_record("a"))
        await client.stop()

        assert not result.ok
        assert result.status_code == status
        assert result.body == "nope"
        assert str(status) in result.error

    @pytest.mark.asyncio
    async def test_2xx_variants_are_success(self, webhook):
        webhook.responder = lambda request: httpx.Response(202, text="queued")
        client = make_client(webhook)

        result = await client.send(make_record("a"))
        await client.stop()

        assert result.ok
        assert result.body == "queued"

    @pytest.mark.asyncio
    async def test_transport_error_is_failure(self, webhook):
        webhook.refuse()
        client = make_client(webhook)

        result = await client.send(make_record("a"))
        await client.stop()

        assert not result.ok
        assert result.status_code is None
        assert "refused" in result.error
        assert client.stats["failed"] == 1

    @pytest.mark.asyncio
    async def test_timeout_is_failure(self, webhook):
        def responder(request):
            raise httpx.ReadTimeout("timed out", request=request)
        webhook.responder = responder
        client = make_client(webhook)

        result = await client.send(make_record("a"))
        await client.stop()

        assert not result.ok

    @pytest.mark.asyncio
    async def test_non_json_values_stringified(self, webhook):
        client = make_client(webhook)

        result = await client.send({"speed": {1, 2}, "datetime": "x"})
        await client.stop()

        assert result.ok
        assert json.loads(webhook.requests[0].content)["speed"] == "{1, 2}"


class TestDeliveryResult:
    def test_raise_for_failure(self):
        result = DeliveryResult.failure("HTTP error! status: 500", status_code=500, body="boom")
        with pytest.raises(DeliveryError) as exc_info:
            result.raise_for_failure()
        assert exc_info.value.status_code == 500
        assert exc_info.value.body == "boom"

    def test_success_passes_through(self):
        result = DeliveryResult.success(200, "ok")
        assert result.raise_for_failure() is result

    def test_to_dict(self):
        d = DeliveryResult.success(201, "created", latency_ms=1.5).to_dict()
        assert d == {
            "ok": True,
            "status_code": 201,
            "body": "created",
            "error": None,
            "latency_ms": 1.5,
        }
