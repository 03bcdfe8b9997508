"""
Payment Event Handlers Golden Tests

🔒 GOLDEN: billing.invoice.created drives automatic charging for
organizations that opted in.
"""
from decimal import Decimal

import pytest

from core.config import BillingConfig
from microservices.billing_service.models import InvoiceStatus
from microservices.payment_service.events.handlers import get_event_handlers, handle_invoice_created
from microservices.payment_service.models import PaymentStatus
from tests.component.mocks import MockEvent
from tests.contracts.payment import PaymentTestDataFactory as P

pytestmark = [pytest.mark.component, pytest.mark.golden, pytest.mark.asyncio]


def created_event(invoice, auto_pay=True, **overrides):
    data = {
        "invoice_id": invoice.invoice_id,
        "invoice_number": invoice.invoice_number,
        "organization_id": invoice.organization_id,
        "status": invoice.status.value,
        "total_amount": str(invoice.total_amount),
        "amount_due": str(invoice.amount_due),
        "currency": invoice.currency,
        "auto_pay": auto_pay,
    }
    data.update(overrides)
    return data


class TestAutoPayHandlerGolden:

    async def test_opted_in_invoice_is_charged(
        self, payment_service, open_invoice, mock_processor, mock_payment_repository
    ):
        _, invoice = open_invoice
        mock_processor.queue_charge(P.make_charge_succeeded())

        await handle_invoice_created(created_event(invoice), payment_service)

        payments = list(mock_payment_repository.payments.values())
        assert len(payments) == 1
        assert payments[0].status == PaymentStatus.SUCCEEDED

    async def test_not_opted_in(self, payment_service, open_invoice, mock_processor):
        _, invoice = open_invoice

        await handle_invoice_created(created_event(invoice, auto_pay=False), payment_service)

        assert mock_processor.charges == []

    async def test_feature_disabled(self, payment_service, open_invoice, mock_processor):
        _, invoice = open_invoice
        payment_service.config = BillingConfig(enable_auto_payment=False)

        await handle_invoice_created(created_event(invoice), payment_service)

        assert mock_processor.charges == []

    async def test_paid_or_zero_invoice_skipped(self, payment_service, open_invoice, mock_processor):
        _, invoice = open_invoice

        await handle_invoice_created(
            created_event(invoice, status=InvoiceStatus.PAID.value, amount_due="0"), payment_service
        )

        assert mock_processor.charges == []

    async def test_decline_is_swallowed(
        self, payment_service, open_invoice, mock_processor, mock_payment_repository, mock_event_bus
    ):
        _, invoice = open_invoice
        mock_processor.queue_charge(P.make_charge_declined())

        await handle_invoice_created(created_event(invoice), payment_service)

        payment = next(iter(mock_payment_repository.payments.values()))
        assert payment.status == PaymentStatus.FAILED
        mock_event_bus.assert_event_published("billing.payment.failed")

    async def test_malformed_event_ignored(self, payment_service, mock_processor):
        await handle_invoice_created({"invoice_id": "inv_1"}, payment_service)

        assert mock_processor.charges == []

    async def test_unexpected_error_not_raised_into_bus(self, payment_service, open_invoice, mock_processor):
        _, invoice = open_invoice
        mock_processor.queue_charge(RuntimeError("boom"))

        await handle_invoice_created(created_event(invoice), payment_service)

    async def test_registered_for_invoice_created(self, payment_service, open_invoice, mock_processor):
        _, invoice = open_invoice
        mock_processor.queue_charge(P.make_charge_succeeded())
        handlers = get_event_handlers(payment_service)

        assert list(handlers) == ["billing.invoice.created"]
        await handlers["billing.invoice.created"](MockEvent("billing.invoice.created", created_event(invoice)))

        assert len(mock_processor.charges) == 1
        assert mock_processor.charges[0]["amount"] == Decimal("110.00")
