"""
Billing Service - Service Clients

Clients for the platform services billing talks to
"""

from .notification_client import (
    NotificationClient,
    TEMPLATE_INVOICE_GENERATED,
    TEMPLATE_INVOICE_OVERDUE,
    TEMPLATE_PAYMENT_FAILED,
    TEMPLATE_PAYMENT_SUCCEEDED,
)

__all__ = [
    "NotificationClient",
    "TEMPLATE_INVOICE_GENERATED",
    "TEMPLATE_INVOICE_OVERDUE",
    "TEMPLATE_PAYMENT_FAILED",
    "TEMPLATE_PAYMENT_SUCCEEDED",
]
