"""
Payment Service Protocols

Defines interfaces for dependency injection and testing.
Following the protocol-based architecture pattern.

The exception taxonomy is shared with billing_service; payment-specific
errors extend it here.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any, AsyncContextManager, Dict, List, Optional, Protocol, runtime_checkable

from microservices.billing_service.protocols import (
    AlreadyPaidError,
    BillingServiceError,
    Conflict,
    DependencyUnavailable,
    InvoiceNotFoundError,
    NotFoundError,
    OrganizationNotFoundError,
    ValidationError,
)

from .models import (
    Payment,
    PaymentStatus,
    ProcessorChargeResult,
    ProcessorRefundResult,
)


# ====================
# Repository Protocol
# ====================


@runtime_checkable
class PaymentRepositoryProtocol(Protocol):
    """Protocol for payment data repository"""

    def transaction(self) -> AsyncContextManager[Any]:
        ...

    async def create_payment(self, payment: Payment, conn: Any = None) -> Payment:
        ...

    async def get_payment(self, payment_id: str, conn: Any = None) -> Optional[Payment]:
        ...

    async def get_payment_by_provider_id(self, provider_payment_id: str, conn: Any = None) -> Optional[Payment]:
        ...

    async def get_pending_payment_for_invoice(self, invoice_id: str, conn: Any = None) -> Optional[Payment]:
        """Most recent pending payment for the invoice, if any"""
        ...

    async def set_provider_payment_id(
        self, payment_id: str, provider_payment_id: str, conn: Any = None
    ) -> Optional[Payment]:
        """Record the processor transaction id on a pending payment"""
        ...

    async def transition_payment(
        self,
        payment_id: str,
        expected_status: PaymentStatus,
        new_status: PaymentStatus,
        updates: Optional[Dict[str, Any]] = None,
        conn: Any = None,
    ) -> Optional[Payment]:
        """
        Conditional status update (WHERE status = expected_status).

        Returns:
            Updated payment, or None if the payment was no longer in
            ``expected_status``
        """
        ...

    async def list_payments(
        self,
        organization_id: str,
        limit: int = 50,
        offset: int = 0,
    ) -> List[Payment]:
        ...


# ====================
# Processor Protocol
# ====================


@runtime_checkable
class PaymentProcessorProtocol(Protocol):
    """External card processor"""

    async def charge_off_session(
        self,
        customer_ref: str,
        method_ref: str,
        amount: Decimal,
        currency: str,
        idempotency_key: str,
        metadata: Optional[Dict[str, str]] = None,
    ) -> ProcessorChargeResult:
        """
        Create and confirm a charge without the customer present.

        Raises:
            DependencyUnavailable: processor unreachable or timed out
        """
        ...

    async def refund(
        self,
        provider_payment_id: str,
        amount: Decimal,
        currency: str,
        idempotency_key: str,
        reason: Optional[str] = None,
    ) -> ProcessorRefundResult:
        ...

    async def create_customer(self, organization_id: str, email: Optional[str], name: str) -> str:
        """Returns the processor customer id"""
        ...

    async def attach_payment_method(self, customer_ref: str, method_ref: str, set_default: bool = True) -> None:
        ...

    def construct_webhook_event(self, payload: bytes, signature: str) -> Dict[str, Any]:
        """
        Verify and parse a webhook delivery.

        Raises:
            ValidationError: signature or payload invalid
        """
        ...


# ====================
# Event Bus Protocol
# ====================


@runtime_checkable
class EventBusProtocol(Protocol):
    """Protocol for event bus"""

    async def publish_event(self, event: Any) -> None:
        ...

    async def subscribe_to_events(self, pattern: str, handler: Any, durable: Optional[str] = None) -> Any:
        ...


# ====================
# Exceptions
# ====================


class PaymentNotFoundError(NotFoundError):
    pass


class PaymentDeclined(BillingServiceError):
    """Processor declined the charge. Terminal for this attempt, not retried automatically."""

    def __init__(
        self,
        message: str,
        failure_code: Optional[str] = None,
        failure_message: Optional[str] = None,
        payment: Optional[Payment] = None,
    ):
        super().__init__(message)
        self.failure_code = failure_code
        self.failure_message = failure_message
        self.payment = payment


class InvoiceNotPayableError(Conflict):
    """Invoice is draft or void"""

    def __init__(self, message: str, current_status: Optional[str] = None):
        super().__init__(message)
        self.current_status = current_status


class InvalidPaymentTransitionError(Conflict):
    """Payment status change not allowed from the current status"""

    def __init__(self, message: str, current_status: Optional[str] = None):
        super().__init__(message)
        self.current_status = current_status


class PaymentInProgressError(Conflict):
    """A pending payment already reached the processor for this invoice"""

    def __init__(self, message: str, payment_id: Optional[str] = None):
        super().__init__(message)
        self.payment_id = payment_id


class RefundAmountExceededError(ValidationError):
    """Refund amount is not positive or exceeds what was paid"""

    def __init__(self, message: str, requested: Optional[Decimal] = None, available: Optional[Decimal] = None):
        super().__init__(message)
        self.requested = requested
        self.available = available


__all__ = [
    # Protocols
    "PaymentRepositoryProtocol",
    "PaymentProcessorProtocol",
    "EventBusProtocol",
    # Shared taxonomy
    "BillingServiceError",
    "ValidationError",
    "NotFoundError",
    "Conflict",
    "DependencyUnavailable",
    "AlreadyPaidError",
    "InvoiceNotFoundError",
    "OrganizationNotFoundError",
    # Payment errors
    "PaymentNotFoundError",
    "PaymentDeclined",
    "InvoiceNotPayableError",
    "InvalidPaymentTransitionError",
    "PaymentInProgressError",
    "RefundAmountExceededError",
]
