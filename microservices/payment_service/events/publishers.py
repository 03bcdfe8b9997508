"""
Payment Service Event Publishers

Functions to publish events from payment service
"""

import logging
from datetime import datetime, timezone
from typing import Optional

from core.nats_client import Event, EventType, ServiceSource

from ..models import Payment
from .models import PaymentFailedEvent, PaymentRefundedEvent, PaymentSucceededEvent

logger = logging.getLogger(__name__)


async def publish_payment_succeeded(event_bus, payment: Payment) -> bool:
    """Publish billing.payment.succeeded event"""
    if not event_bus:
        logger.warning("Event bus not available, skipping billing.payment.succeeded event")
        return False

    try:
        event_data = PaymentSucceededEvent(
            payment_id=payment.payment_id,
            invoice_id=payment.invoice_id,
            organization_id=payment.organization_id,
            amount=payment.amount,
            currency=payment.currency,
            provider_payment_id=payment.provider_payment_id,
            succeeded_at=payment.succeeded_at or datetime.now(timezone.utc),
        )

        event = Event(
            event_type=EventType.PAYMENT_SUCCEEDED,
            source=ServiceSource.PAYMENT_SERVICE,
            data=event_data.model_dump(mode='json')
        )

        await event_bus.publish_event(event)
        logger.info(f"✅ Published billing.payment.succeeded event for payment {payment.payment_id}")
        return True

    except Exception as e:
        logger.error(f"❌ Failed to publish billing.payment.succeeded event: {e}")
        return False


async def publish_payment_failed(event_bus, payment: Payment) -> bool:
    """Publish billing.payment.failed event"""
    if not event_bus:
        logger.warning("Event bus not available, skipping billing.payment.failed event")
        return False

    try:
        event_data = PaymentFailedEvent(
            payment_id=payment.payment_id,
            invoice_id=payment.invoice_id,
            organization_id=payment.organization_id,
            amount=payment.amount,
            currency=payment.currency,
            failure_code=payment.failure_code,
            failure_message=payment.failure_message,
            failed_at=payment.failed_at or datetime.now(timezone.utc),
        )

        event = Event(
            event_type=EventType.PAYMENT_FAILED,
            source=ServiceSource.PAYMENT_SERVICE,
            data=event_data.model_dump(mode='json')
        )

        await event_bus.publish_event(event)
        logger.info(f"✅ Published billing.payment.failed event for payment {payment.payment_id}")
        return True

    except Exception as e:
        logger.error(f"❌ Failed to publish billing.payment.failed event: {e}")
        return False


async def publish_payment_refunded(event_bus, payment: Payment, reason: Optional[str] = None) -> bool:
    """Publish billing.payment.refunded event"""
    if not event_bus:
        logger.warning("Event bus not available, skipping billing.payment.refunded event")
        return False

    try:
        event_data = PaymentRefundedEvent(
            payment_id=payment.payment_id,
            invoice_id=payment.invoice_id,
            organization_id=payment.organization_id,
            refunded_amount=payment.refunded_amount,
            currency=payment.currency,
            reason=reason,
            refunded_at=payment.refunded_at or datetime.now(timezone.utc),
        )

        event = Event(
            event_type=EventType.PAYMENT_REFUNDED,
            source=ServiceSource.PAYMENT_SERVICE,
            data=event_data.model_dump(mode='json')
        )

        await event_bus.publish_event(event)
        logger.info(f"✅ Published billing.payment.refunded event for payment {payment.payment_id}")
        return True

    except Exception as e:
        logger.error(f"❌ Failed to publish billing.payment.refunded event: {e}")
        return False


__all__ = [
    "publish_payment_succeeded",
    "publish_payment_failed",
    "publish_payment_refunded",
]
