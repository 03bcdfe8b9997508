"""
Billing Event Publishers

Publish events produced by billing_service. Publishing never raises: a
failure is logged and reported as False so the billing path is unaffected.
"""

import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from core.nats_client import Event, EventType, ServiceSource

from ..models import CreditApplication, Invoice, InvoiceStatus
from .models import (
    CreditAppliedEventData,
    InvoiceCreatedEventData,
    InvoiceOverdueEventData,
    InvoicePaidEventData,
    InvoiceVoidedEventData,
)

logger = logging.getLogger(__name__)


async def _publish(event_bus, event_type: EventType, data: dict, label: str) -> bool:
    if not event_bus:
        logger.warning(f"⚠️ Event bus not available, skipping {event_type.value} for {label}")
        return False

    try:
        event = Event(
            event_type=event_type,
            source=ServiceSource.BILLING_SERVICE,
            data=data,
        )
        result = await event_bus.publish_event(event)

        if result is False:
            logger.error(f"❌ Failed to publish {event_type.value} for {label}")
            return False

        logger.info(f"✅ Published {event_type.value} for {label}")
        return True

    except Exception as e:
        logger.error(f"❌ Error publishing {event_type.value} for {label}: {e}", exc_info=True)
        return False


async def publish_invoice_created(event_bus, invoice: Invoice, auto_pay: bool = False) -> bool:
    """
    Publish billing.invoice.created

    Args:
        event_bus: Event bus instance
        invoice: The persisted invoice
        auto_pay: Whether the organization wants the invoice charged automatically

    Returns:
        bool: Whether publishing succeeded
    """
    event_data = InvoiceCreatedEventData(
        invoice_id=invoice.invoice_id,
        invoice_number=invoice.invoice_number,
        organization_id=invoice.organization_id,
        subscription_id=invoice.subscription_id,
        status=invoice.status.value,
        subtotal=invoice.subtotal,
        credits_applied=invoice.credits_applied,
        tax_amount=invoice.tax_amount,
        total_amount=invoice.total_amount,
        amount_due=invoice.amount_due,
        currency=invoice.currency,
        period_start=invoice.period_start,
        period_end=invoice.period_end,
        due_date=invoice.due_date,
        auto_pay=auto_pay,
        timestamp=datetime.now(timezone.utc),
    )
    return await _publish(
        event_bus, EventType.INVOICE_CREATED, event_data.model_dump(mode="json"),
        f"invoice {invoice.invoice_number}",
    )


async def publish_invoice_paid(event_bus, invoice: Invoice, payment_id: Optional[str] = None) -> bool:
    """Publish billing.invoice.paid"""
    event_data = InvoicePaidEventData(
        invoice_id=invoice.invoice_id,
        invoice_number=invoice.invoice_number,
        organization_id=invoice.organization_id,
        amount_paid=invoice.amount_paid,
        currency=invoice.currency,
        payment_id=payment_id,
        paid_at=invoice.paid_at or datetime.now(timezone.utc),
    )
    return await _publish(
        event_bus, EventType.INVOICE_PAID, event_data.model_dump(mode="json"),
        f"invoice {invoice.invoice_number}",
    )


async def publish_invoice_voided(event_bus, invoice: Invoice, previous_status: InvoiceStatus) -> bool:
    """Publish billing.invoice.voided"""
    event_data = InvoiceVoidedEventData(
        invoice_id=invoice.invoice_id,
        invoice_number=invoice.invoice_number,
        organization_id=invoice.organization_id,
        previous_status=previous_status.value,
        voided_at=invoice.voided_at or datetime.now(timezone.utc),
    )
    return await _publish(
        event_bus, EventType.INVOICE_VOIDED, event_data.model_dump(mode="json"),
        f"invoice {invoice.invoice_number}",
    )


async def publish_invoice_overdue(event_bus, invoice: Invoice, as_of: datetime) -> bool:
    """Publish billing.invoice.overdue"""
    event_data = InvoiceOverdueEventData(
        invoice_id=invoice.invoice_id,
        invoice_number=invoice.invoice_number,
        organization_id=invoice.organization_id,
        amount_due=invoice.amount_due,
        currency=invoice.currency,
        due_date=invoice.due_date,
        days_overdue=max(0, (as_of - invoice.due_date).days),
    )
    return await _publish(
        event_bus, EventType.INVOICE_OVERDUE, event_data.model_dump(mode="json"),
        f"invoice {invoice.invoice_number}",
    )


async def publish_credit_applied(
    event_bus,
    application: CreditApplication,
    invoice: Invoice,
) -> bool:
    """Publish billing.credit.applied for one consumed credit"""
    event_data = CreditAppliedEventData(
        credit_id=application.credit_id,
        invoice_id=invoice.invoice_id,
        organization_id=invoice.organization_id,
        amount=application.amount,
        remaining_amount=application.remaining_after,
        currency=invoice.currency,
        timestamp=datetime.now(timezone.utc),
    )
    return await _publish(
        event_bus, EventType.CREDIT_APPLIED, event_data.model_dump(mode="json"),
        f"credit {application.credit_id}",
    )


__all__ = [
    "publish_invoice_created",
    "publish_invoice_paid",
    "publish_invoice_voided",
    "publish_invoice_overdue",
    "publish_credit_applied",
]
