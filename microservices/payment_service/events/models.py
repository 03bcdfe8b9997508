"""
Payment Service Event Models

Payload definitions for payment events and the events payment_service
subscribes to.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class PaymentEventType(str, Enum):
    """Events published by payment_service"""
    PAYMENT_SUCCEEDED = "billing.payment.succeeded"
    PAYMENT_FAILED = "billing.payment.failed"
    PAYMENT_REFUNDED = "billing.payment.refunded"


class PaymentSubscribedEventType(str, Enum):
    """Events payment_service subscribes to"""
    INVOICE_CREATED = "billing.invoice.created"


class PaymentSucceededEvent(BaseModel):
    """billing.payment.succeeded"""
    payment_id: str
    invoice_id: Optional[str] = None
    organization_id: str
    amount: Decimal
    currency: str
    provider_payment_id: Optional[str] = None
    succeeded_at: datetime


class PaymentFailedEvent(BaseModel):
    """billing.payment.failed"""
    payment_id: str
    invoice_id: Optional[str] = None
    organization_id: str
    amount: Decimal
    currency: str
    failure_code: Optional[str] = None
    failure_message: Optional[str] = None
    failed_at: datetime


class PaymentRefundedEvent(BaseModel):
    """billing.payment.refunded"""
    payment_id: str
    invoice_id: Optional[str] = None
    organization_id: str
    refunded_amount: Decimal
    currency: str
    reason: Optional[str] = None
    refunded_at: datetime


class InvoiceCreatedNotice(BaseModel):
    """The part of billing.invoice.created the auto-pay handler needs"""
    invoice_id: str
    organization_id: str
    status: str
    amount_due: Decimal
    auto_pay: bool = Field(default=False)


__all__ = [
    "PaymentEventType",
    "PaymentSubscribedEventType",
    "PaymentSucceededEvent",
    "PaymentFailedEvent",
    "PaymentRefundedEvent",
    "InvoiceCreatedNotice",
]
