"""
Billing Service Protocols

Defines interfaces for dependency injection and testing.
Following the protocol-based architecture pattern.

Repository methods take an optional ``conn`` so that a caller holding a
transaction (``async with repository.transaction() as conn``) can make every
read and write in a multi-step operation part of that one transaction.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any, AsyncContextManager, Dict, List, Optional, Protocol, runtime_checkable

from .models import (
    AuditLogEntry,
    Credit,
    Invoice,
    InvoiceLineItem,
    InvoiceStatus,
    Organization,
    PricingTier,
    Subscription,
    SubscriptionPlan,
    UsageAggregation,
)


# ====================
# Repository Protocol
# ====================


@runtime_checkable
class BillingRepositoryProtocol(Protocol):
    """Protocol for billing data repository"""

    def transaction(self) -> AsyncContextManager[Any]:
        """Open a transaction; yields the connection handle to pass as ``conn``"""
        ...

    # Organizations
    async def get_organization(self, organization_id: str, conn: Any = None) -> Optional[Organization]:
        ...

    async def update_organization_payment_profile(
        self,
        organization_id: str,
        stripe_customer_id: Optional[str] = None,
        default_payment_method_id: Optional[str] = None,
        conn: Any = None,
    ) -> Optional[Organization]:
        """Set the processor customer and/or default payment method"""
        ...

    # Plans and subscriptions
    async def get_subscription(self, subscription_id: str, conn: Any = None) -> Optional[Subscription]:
        ...

    async def get_plan(self, plan_id: str, conn: Any = None) -> Optional[SubscriptionPlan]:
        ...

    async def get_pricing_tiers(self, plan_id: str, conn: Any = None) -> List[PricingTier]:
        ...

    # Credits
    async def get_active_credits(
        self,
        organization_id: str,
        as_of: datetime,
        conn: Any = None,
        for_update: bool = False,
    ) -> List[Credit]:
        """
        Credits that are active, valid at ``as_of`` and have a remaining
        balance, ordered by valid_from ascending.

        Args:
            organization_id: Organization ID
            as_of: Validity reference time
            conn: Transaction handle
            for_update: Lock the rows until the transaction ends

        Returns:
            Applicable credits, oldest validity first
        """
        ...

    async def deduct_credit(self, credit_id: str, amount: Decimal, conn: Any = None) -> Optional[Credit]:
        """
        Decrease remaining_amount by ``amount`` and mark exhausted at zero.

        Returns:
            Updated credit, or None when the remaining balance is insufficient
        """
        ...

    # Invoices
    async def count_invoices_with_prefix(self, number_prefix: str, conn: Any = None) -> int:
        ...

    async def create_invoice(self, invoice: Invoice, conn: Any = None) -> Invoice:
        """
        Insert the invoice row.

        Raises:
            InvoiceNumberConflictError: invoice_number already taken
            InvoiceAlreadyExistsError: an invoice exists for the same subscription period
        """
        ...

    async def create_line_items(
        self, invoice_id: str, line_items: List[InvoiceLineItem], conn: Any = None
    ) -> List[InvoiceLineItem]:
        ...

    async def get_invoice(self, invoice_id: str, conn: Any = None) -> Optional[Invoice]:
        """Invoice with its line items"""
        ...

    async def get_invoice_for_period(
        self,
        subscription_id: str,
        period_start: datetime,
        period_end: datetime,
        conn: Any = None,
    ) -> Optional[Invoice]:
        ...

    async def update_invoice_status(
        self,
        invoice_id: str,
        expected_statuses: List[InvoiceStatus],
        new_status: InvoiceStatus,
        updates: Optional[Dict[str, Any]] = None,
        conn: Any = None,
    ) -> Optional[Invoice]:
        """
        Conditional status update.

        Returns:
            Updated invoice, or None if the current status is not one of
            ``expected_statuses`` (someone else already moved it)
        """
        ...

    async def list_invoices(
        self,
        organization_id: str,
        status: Optional[InvoiceStatus] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> List[Invoice]:
        """Newest invoice_date first"""
        ...

    async def list_overdue_invoices(self, as_of: datetime, limit: int = 500) -> List[Invoice]:
        ...


@runtime_checkable
class UsageAggregatorProtocol(Protocol):
    """Read-only usage summary provider"""

    async def get_usage_for_period(
        self,
        organization_id: str,
        period_start: datetime,
        period_end: datetime,
    ) -> UsageAggregation:
        """
        Summed usage by metric over [period_start, period_end).

        Raises:
            DependencyUnavailable: metrics store unreachable or timed out
        """
        ...


@runtime_checkable
class AuditRepositoryProtocol(Protocol):
    """Append-only audit trail"""

    async def record(
        self,
        entity_type: str,
        entity_id: str,
        event_type: str,
        event_data: Dict[str, Any],
        actor_id: Optional[str] = None,
        actor_type: str = "system",
        conn: Any = None,
    ) -> AuditLogEntry:
        ...


# ====================
# Event Bus Protocol
# ====================


@runtime_checkable
class EventBusProtocol(Protocol):
    """Protocol for event bus"""

    async def publish_event(self, event: Any) -> None:
        """Publish an event"""
        ...


# ====================
# Client Protocols
# ====================


@runtime_checkable
class NotificationClientProtocol(Protocol):
    """Protocol for notification service client"""

    async def send_notification(
        self,
        template_code: str,
        recipient_id: str,
        data: Dict[str, Any],
        channels: Optional[List[str]] = None,
        priority: str = "normal",
    ) -> bool:
        """Send a templated notification; False if delivery ultimately failed"""
        ...


# ====================
# Exceptions
# ====================


class BillingServiceError(Exception):
    """Base exception for billing and payment errors"""

    pass


class ValidationError(BillingServiceError):
    """Malformed or inconsistent input. Never retried."""

    pass


class InvalidPricingInputError(ValidationError):
    """Plan, subscription, usage or tiers are inconsistent"""

    pass


class NotFoundError(BillingServiceError):
    """Referenced entity does not exist"""

    pass


class SubscriptionNotFoundError(NotFoundError):
    pass


class PlanNotFoundError(NotFoundError):
    pass


class OrganizationNotFoundError(NotFoundError):
    pass


class InvoiceNotFoundError(NotFoundError):
    pass


class DependencyUnavailable(BillingServiceError):
    """Usage store, credit store or payment processor unreachable. Safe to retry."""

    def __init__(self, message: str, dependency: Optional[str] = None):
        super().__init__(message)
        self.dependency = dependency


class Conflict(BillingServiceError):
    """State changed underneath the caller. Re-derive state, then retry or abort."""

    pass


class InvoiceNumberConflictError(Conflict):
    """Invoice number collided with a concurrent generation"""

    def __init__(self, message: str, invoice_number: Optional[str] = None):
        super().__init__(message)
        self.invoice_number = invoice_number


class InvoiceAlreadyExistsError(Conflict):
    """An invoice already exists for this subscription period"""

    def __init__(self, message: str, invoice_id: Optional[str] = None):
        super().__init__(message)
        self.invoice_id = invoice_id


class AlreadyPaidError(Conflict):
    """Invoice is already paid"""

    def __init__(self, message: str, invoice_id: Optional[str] = None):
        super().__init__(message)
        self.invoice_id = invoice_id


class InvalidInvoiceTransitionError(Conflict):
    """Invoice status change not allowed from the current status"""

    def __init__(self, message: str, current_status: Optional[str] = None):
        super().__init__(message)
        self.current_status = current_status


class CreditConflictError(Conflict):
    """A credit's remaining balance changed during invoice generation"""

    pass


__all__ = [
    # Protocols
    "BillingRepositoryProtocol",
    "UsageAggregatorProtocol",
    "AuditRepositoryProtocol",
    "EventBusProtocol",
    "NotificationClientProtocol",
    # Exceptions
    "BillingServiceError",
    "ValidationError",
    "InvalidPricingInputError",
    "NotFoundError",
    "SubscriptionNotFoundError",
    "PlanNotFoundError",
    "OrganizationNotFoundError",
    "InvoiceNotFoundError",
    "DependencyUnavailable",
    "Conflict",
    "InvoiceNumberConflictError",
    "InvoiceAlreadyExistsError",
    "AlreadyPaidError",
    "InvalidInvoiceTransitionError",
    "CreditConflictError",
]
