"""
Notification Client Golden Tests

🔒 GOLDEN: retry and failure reporting of the notification HTTP client.

Requests are served by httpx.MockTransport; nothing leaves the process.
"""
import json

import httpx
import pytest
import pytest_asyncio

from microservices.billing_service.clients.notification_client import (
    TEMPLATE_INVOICE_GENERATED,
    NotificationClient,
)

pytestmark = [pytest.mark.component, pytest.mark.golden, pytest.mark.asyncio]


class ScriptedTransport:
    """Replays status codes (or exceptions) in order and records requests"""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        outcome = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        if isinstance(outcome, Exception):
            raise outcome
        return httpx.Response(outcome, json={"success": outcome < 400})


@pytest_asyncio.fixture
async def make_client():
    clients = []

    def _make(transport: ScriptedTransport) -> NotificationClient:
        client = NotificationClient(
            base_url="http://notification.test", retry_attempts=3, retry_delay_seconds=0
        )
        client.client = httpx.AsyncClient(transport=httpx.MockTransport(transport))
        clients.append(client)
        return client

    yield _make
    for client in clients:
        await client.close()


class TestNotificationClientGolden:

    async def test_sends_template_payload(self, make_client):
        transport = ScriptedTransport(200)
        client = make_client(transport)

        sent = await client.send_notification(
            TEMPLATE_INVOICE_GENERATED, "org_1", {"invoice_number": "INV-2025-000001"}, channels=["email"]
        )

        assert sent is True
        request = transport.requests[0]
        assert request.url.path == "/api/v1/notifications/send"
        assert json.loads(request.content) == {
            "template_code": TEMPLATE_INVOICE_GENERATED,
            "recipient_id": "org_1",
            "priority": "normal",
            "data": {"invoice_number": "INV-2025-000001"},
            "channels": ["email"],
        }

    async def test_server_error_retried_until_success(self, make_client):
        transport = ScriptedTransport(503, 502, 200)
        client = make_client(transport)

        assert await client.send_notification(TEMPLATE_INVOICE_GENERATED, "org_1", {}) is True
        assert len(transport.requests) == 3

    async def test_gives_up_after_retry_budget(self, make_client):
        transport = ScriptedTransport(500)
        client = make_client(transport)

        assert await client.send_notification(TEMPLATE_INVOICE_GENERATED, "org_1", {}) is False
        assert len(transport.requests) == 3

    async def test_client_error_not_retried(self, make_client):
        transport = ScriptedTransport(422)
        client = make_client(transport)

        assert await client.send_notification(TEMPLATE_INVOICE_GENERATED, "org_1", {}) is False
        assert len(transport.requests) == 1

    async def test_connection_errors_retried(self, make_client):
        transport = ScriptedTransport(httpx.ConnectError("refused"), 200)
        client = make_client(transport)

        assert await client.send_notification(TEMPLATE_INVOICE_GENERATED, "org_1", {}) is True
        assert len(transport.requests) == 2
