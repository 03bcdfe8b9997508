"""
Billing Service Events

Event models and publishers for billing_service
"""

# Models
from .models import (
    BillingEventType,
    BillingStreamConfig,
    CreditAppliedEventData,
    InvoiceCreatedEventData,
    InvoiceOverdueEventData,
    InvoicePaidEventData,
    InvoiceVoidedEventData,
)

# Publishers
from .publishers import (
    publish_credit_applied,
    publish_invoice_created,
    publish_invoice_overdue,
    publish_invoice_paid,
    publish_invoice_voided,
)

__all__ = [
    # Models
    "BillingEventType",
    "BillingStreamConfig",
    "InvoiceCreatedEventData",
    "InvoicePaidEventData",
    "InvoiceVoidedEventData",
    "InvoiceOverdueEventData",
    "CreditAppliedEventData",
    # Publishers
    "publish_invoice_created",
    "publish_invoice_paid",
    "publish_invoice_voided",
    "publish_invoice_overdue",
    "publish_credit_applied",
]
