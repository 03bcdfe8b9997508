"""
Payment Service Events Module

Exports all event-related functionality for payment service
"""

from .models import (
    InvoiceCreatedNotice,
    PaymentEventType,
    PaymentFailedEvent,
    PaymentRefundedEvent,
    PaymentSubscribedEventType,
    PaymentSucceededEvent,
)

from .publishers import (
    publish_payment_failed,
    publish_payment_refunded,
    publish_payment_succeeded,
)

from .handlers import get_event_handlers, handle_invoice_created

__all__ = [
    # Event Models
    "PaymentEventType",
    "PaymentSubscribedEventType",
    "PaymentSucceededEvent",
    "PaymentFailedEvent",
    "PaymentRefundedEvent",
    "InvoiceCreatedNotice",
    # Publishers
    "publish_payment_succeeded",
    "publish_payment_failed",
    "publish_payment_refunded",
    # Handlers
    "get_event_handlers",
    "handle_invoice_created",
]
