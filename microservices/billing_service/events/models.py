"""
Billing Event Data Models

Event payloads published by billing_service.

Event Architecture:
- BillingEventType: Events published by billing_service
- Stream: billing-stream (subjects: billing.>)

Money fields are Decimal and serialize as strings.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


# =============================================================================
# Event Type Definitions (Service-Specific)
# =============================================================================

class BillingEventType(str, Enum):
    """
    Events published by billing_service.

    These are the authoritative event types for this service.
    Other services should reference these when subscribing.
    """
    INVOICE_CREATED = "billing.invoice.created"
    INVOICE_PAID = "billing.invoice.paid"
    INVOICE_VOIDED = "billing.invoice.voided"
    INVOICE_OVERDUE = "billing.invoice.overdue"
    CREDIT_APPLIED = "billing.credit.applied"


class BillingStreamConfig:
    """Stream configuration for billing_service"""
    STREAM_NAME = "billing-stream"
    SUBJECTS = ["billing.>"]
    MAX_MESSAGES = 100000
    CONSUMER_PREFIX = "billing"


# =============================================================================
# Event Data Models
# =============================================================================

class InvoiceCreatedEventData(BaseModel):
    """billing.invoice.created"""
    invoice_id: str
    invoice_number: str
    organization_id: str
    subscription_id: Optional[str] = None
    status: str
    subtotal: Decimal
    credits_applied: Decimal
    tax_amount: Decimal
    total_amount: Decimal
    amount_due: Decimal
    currency: str
    period_start: datetime
    period_end: datetime
    due_date: datetime
    auto_pay: bool = Field(default=False, description="Organization opted into automatic charging")
    timestamp: datetime


class InvoicePaidEventData(BaseModel):
    """billing.invoice.paid"""
    invoice_id: str
    invoice_number: str
    organization_id: str
    amount_paid: Decimal
    currency: str
    payment_id: Optional[str] = None
    paid_at: datetime


class InvoiceVoidedEventData(BaseModel):
    """billing.invoice.voided"""
    invoice_id: str
    invoice_number: str
    organization_id: str
    previous_status: str
    voided_at: datetime


class InvoiceOverdueEventData(BaseModel):
    """billing.invoice.overdue"""
    invoice_id: str
    invoice_number: str
    organization_id: str
    amount_due: Decimal
    currency: str
    due_date: datetime
    days_overdue: int


class CreditAppliedEventData(BaseModel):
    """billing.credit.applied, one per consumed credit"""
    credit_id: str
    invoice_id: str
    organization_id: str
    amount: Decimal
    remaining_amount: Decimal
    currency: str
    timestamp: datetime


__all__ = [
    "BillingEventType",
    "BillingStreamConfig",
    "InvoiceCreatedEventData",
    "InvoicePaidEventData",
    "InvoiceVoidedEventData",
    "InvoiceOverdueEventData",
    "CreditAppliedEventData",
]
