"""
Stripe Processor Golden Tests

🔒 GOLDEN: how Stripe responses and errors map onto processor outcomes.

The stripe library's resource calls are replaced with monkeypatch; no
network traffic.
"""
import json
import time
from decimal import Decimal

import pytest
import stripe

from microservices.payment_service.clients.stripe_processor import StripePaymentProcessor
from microservices.payment_service.models import ProcessorOutcome
from microservices.payment_service.protocols import DependencyUnavailable, ValidationError

pytestmark = [pytest.mark.component, pytest.mark.golden, pytest.mark.asyncio]


@pytest.fixture
def processor(monkeypatch):
    monkeypatch.setattr(stripe, "api_key", None)
    return StripePaymentProcessor("sk_test_dummy", webhook_secret="whsec_test", timeout_seconds=5)


def fake_create(calls, response=None, error=None):
    def _create(*args, **kwargs):
        calls.append((args, kwargs))
        if error is not None:
            raise error
        return response
    return _create


class TestChargeMappingGolden:

    async def test_succeeded_intent(self, processor, monkeypatch):
        calls = []
        monkeypatch.setattr(
            stripe.PaymentIntent, "create", fake_create(calls, {"id": "pi_1", "status": "succeeded"})
        )

        result = await processor.charge_off_session(
            "cus_1", "pm_1", Decimal("110.00"), "USD", idempotency_key="pay_1", metadata={"invoice_id": "inv_1"}
        )

        assert result.outcome == ProcessorOutcome.SUCCEEDED
        assert result.provider_payment_id == "pi_1"
        _, kwargs = calls[0]
        assert kwargs["amount"] == 11000
        assert kwargs["currency"] == "usd"
        assert kwargs["off_session"] is True and kwargs["confirm"] is True
        assert kwargs["idempotency_key"] == "pay_1"
        assert kwargs["metadata"] == {"invoice_id": "inv_1"}

    async def test_zero_decimal_currency_amount(self, processor, monkeypatch):
        calls = []
        monkeypatch.setattr(
            stripe.PaymentIntent, "create", fake_create(calls, {"id": "pi_1", "status": "succeeded"})
        )

        await processor.charge_off_session("cus_1", "pm_1", Decimal("500"), "JPY", idempotency_key="pay_1")

        assert calls[0][1]["amount"] == 500

    @pytest.mark.parametrize("status", ["requires_action", "processing"])
    async def test_pending_statuses_require_action(self, processor, monkeypatch, status):
        monkeypatch.setattr(stripe.PaymentIntent, "create", fake_create([], {"id": "pi_1", "status": status}))

        result = await processor.charge_off_session("cus_1", "pm_1", Decimal("1"), "USD", idempotency_key="k")

        assert result.outcome == ProcessorOutcome.REQUIRES_ACTION
        assert result.processor_status == status

    async def test_requires_payment_method_is_failure(self, processor, monkeypatch):
        intent = {
            "id": "pi_1",
            "status": "requires_payment_method",
            "last_payment_error": {"code": "card_declined", "decline_code": "insufficient_funds", "message": "No funds"},
        }
        monkeypatch.setattr(stripe.PaymentIntent, "create", fake_create([], intent))

        result = await processor.charge_off_session("cus_1", "pm_1", Decimal("1"), "USD", idempotency_key="k")

        assert result.outcome == ProcessorOutcome.FAILED
        assert result.failure_code == "insufficient_funds"
        assert result.failure_message == "No funds"

    async def test_card_error_is_failure(self, processor, monkeypatch):
        error = stripe.CardError("Your card was declined.", None, "card_declined")
        monkeypatch.setattr(stripe.PaymentIntent, "create", fake_create([], error=error))

        result = await processor.charge_off_session("cus_1", "pm_1", Decimal("1"), "USD", idempotency_key="k")

        assert result.outcome == ProcessorOutcome.FAILED
        assert result.failure_code == "card_declined"
        assert result.failure_message

    async def test_connection_error_is_dependency_unavailable(self, processor, monkeypatch):
        monkeypatch.setattr(
            stripe.PaymentIntent, "create", fake_create([], error=stripe.APIConnectionError("network down"))
        )

        with pytest.raises(DependencyUnavailable) as exc_info:
            await processor.charge_off_session("cus_1", "pm_1", Decimal("1"), "USD", idempotency_key="k")

        assert exc_info.value.dependency == "stripe"

    async def test_invalid_request_is_validation_error(self, processor, monkeypatch):
        monkeypatch.setattr(
            stripe.PaymentIntent, "create",
            fake_create([], error=stripe.InvalidRequestError("No such customer: cus_x", "customer")),
        )

        with pytest.raises(ValidationError):
            await processor.charge_off_session("cus_x", "pm_1", Decimal("1"), "USD", idempotency_key="k")

    async def test_timeout_is_dependency_unavailable(self, monkeypatch):
        processor = StripePaymentProcessor(None, timeout_seconds=0.01)

        def slow_create(**kwargs):
            time.sleep(0.2)
            return {"id": "pi_late", "status": "succeeded"}

        monkeypatch.setattr(stripe.PaymentIntent, "create", slow_create)

        with pytest.raises(DependencyUnavailable):
            await processor.charge_off_session("cus_1", "pm_1", Decimal("1"), "USD", idempotency_key="k")


class TestRefundsAndCustomersGolden:

    async def test_refund_maps_reason_and_amount(self, processor, monkeypatch):
        calls = []
        monkeypatch.setattr(
            stripe.Refund, "create", fake_create(calls, {"id": "re_1", "amount": 4000, "status": "succeeded"})
        )

        result = await processor.refund("pi_1", Decimal("40.00"), "USD", idempotency_key="refund-pay_1", reason="goodwill")

        assert result.amount == Decimal("40.00")
        assert result.provider_refund_id == "re_1"
        kwargs = calls[0][1]
        assert kwargs["payment_intent"] == "pi_1"
        assert kwargs["amount"] == 4000
        assert kwargs["reason"] == "requested_by_customer"
        assert kwargs["metadata"] == {"reason": "goodwill"}

    async def test_create_customer_is_idempotent_per_org(self, processor, monkeypatch):
        calls = []
        monkeypatch.setattr(stripe.Customer, "create", fake_create(calls, {"id": "cus_new"}))

        assert await processor.create_customer("org_1", "billing@acme.example", "Acme") == "cus_new"
        assert calls[0][1]["idempotency_key"] == "customer-org_1"

    async def test_attach_sets_default(self, processor, monkeypatch):
        attach_calls, modify_calls = [], []
        monkeypatch.setattr(stripe.PaymentMethod, "attach", fake_create(attach_calls, {"id": "pm_1"}))
        monkeypatch.setattr(stripe.Customer, "modify", fake_create(modify_calls, {"id": "cus_1"}))

        await processor.attach_payment_method("cus_1", "pm_1")

        assert attach_calls == [(("pm_1",), {"customer": "cus_1"})]
        assert modify_calls == [(("cus_1",), {"invoice_settings": {"default_payment_method": "pm_1"}})]


class TestWebhookVerificationGolden:

    async def test_valid_signature_returns_event(self, processor, monkeypatch):
        monkeypatch.setattr(stripe.Webhook, "construct_event", lambda payload, sig, secret: {})
        payload = json.dumps({"type": "payment_intent.succeeded", "data": {"object": {"id": "pi_1"}}}).encode()

        event = processor.construct_webhook_event(payload, "t=1,v1=abc")

        assert event["type"] == "payment_intent.succeeded"
        assert event["data"]["object"]["id"] == "pi_1"

    async def test_bad_signature_rejected(self, processor, monkeypatch):
        def reject(payload, sig, secret):
            raise stripe.SignatureVerificationError("No signatures found", sig)

        monkeypatch.setattr(stripe.Webhook, "construct_event", reject)

        with pytest.raises(ValidationError):
            processor.construct_webhook_event(b"{}", "t=1,v1=forged")

    async def test_missing_secret_rejected(self):
        with pytest.raises(ValidationError):
            StripePaymentProcessor(None).construct_webhook_event(b"{}", "t=1,v1=abc")
