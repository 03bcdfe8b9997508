"""
Payment Service Data Models

Payments against invoices, processor outcomes, and webhook reconciliation
results.
"""

from enum import Enum
from typing import Optional, Dict, Any, List
from datetime import datetime
from decimal import Decimal
from pydantic import BaseModel, Field


# ====================
# Enums
# ====================

class PaymentStatus(str, Enum):
    """Payment lifecycle state"""
    PENDING = "pending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    REFUNDED = "refunded"
    CANCELED = "canceled"


class PaymentProvider(str, Enum):
    STRIPE = "stripe"


class ProcessorOutcome(str, Enum):
    """What the processor said about an off-session charge"""
    SUCCEEDED = "succeeded"
    REQUIRES_ACTION = "requires_action"
    FAILED = "failed"


class NotificationOutcome(str, Enum):
    """What a processor notification did to local state"""
    APPLIED = "applied"
    DUPLICATE = "duplicate"
    IGNORED = "ignored"
    UNKNOWN_PAYMENT = "unknown_payment"
    UNSUPPORTED_EVENT = "unsupported_event"


# Payment state machine. failed, refunded and canceled are terminal.
PAYMENT_STATUS_TRANSITIONS: Dict[PaymentStatus, set] = {
    PaymentStatus.PENDING: {PaymentStatus.SUCCEEDED, PaymentStatus.FAILED},
    PaymentStatus.SUCCEEDED: {PaymentStatus.REFUNDED},
    PaymentStatus.FAILED: set(),
    PaymentStatus.REFUNDED: set(),
    PaymentStatus.CANCELED: set(),
}


def can_transition_payment(current: PaymentStatus, target: PaymentStatus) -> bool:
    return target in PAYMENT_STATUS_TRANSITIONS.get(current, set())


# ====================
# Core Models
# ====================

class Payment(BaseModel):
    """One attempt to collect an invoice"""
    payment_id: str = Field(..., description="Payment ID, also the processor idempotency key")
    organization_id: str
    invoice_id: Optional[str] = None
    amount: Decimal
    currency: str = "USD"
    status: PaymentStatus = PaymentStatus.PENDING

    payment_method_id: Optional[str] = None
    provider: PaymentProvider = PaymentProvider.STRIPE
    provider_payment_id: Optional[str] = None
    provider_customer_id: Optional[str] = None

    failure_code: Optional[str] = None
    failure_message: Optional[str] = None
    refunded_amount: Decimal = Decimal("0")

    attempted_at: datetime
    succeeded_at: Optional[datetime] = None
    failed_at: Optional[datetime] = None
    refunded_at: Optional[datetime] = None

    metadata: Dict[str, Any] = Field(default_factory=dict)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class ProcessorChargeResult(BaseModel):
    """Normalized response of an off-session charge"""
    outcome: ProcessorOutcome
    provider_payment_id: Optional[str] = None
    processor_status: Optional[str] = None
    failure_code: Optional[str] = None
    failure_message: Optional[str] = None


class ProcessorRefundResult(BaseModel):
    provider_refund_id: str
    amount: Decimal
    status: str


class NotificationResult(BaseModel):
    """Acknowledgement of a processor notification"""
    event_type: str
    outcome: NotificationOutcome
    payment_id: Optional[str] = None
    status: Optional[PaymentStatus] = None
    message: Optional[str] = None


# ====================
# Request/Response Models
# ====================

class RefundPaymentRequest(BaseModel):
    amount: Optional[Decimal] = Field(None, gt=0, description="Partial refund amount; full refund if omitted")
    reason: Optional[str] = None


class AttachPaymentMethodRequest(BaseModel):
    payment_method_id: str
    set_default: bool = True


class PaymentListResponse(BaseModel):
    payments: List[Payment]
    count: int
    limit: int
    offset: int


class HealthResponse(BaseModel):
    status: str
    service: str
    port: int
    version: str
    dependencies: Dict[str, str] = Field(default_factory=dict)
