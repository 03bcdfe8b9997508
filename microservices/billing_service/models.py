"""
Billing Service Data Models

Subscriptions, plans, usage aggregation, credits, invoices and the itemized
charge calculation produced by the pricing engine.
"""

from enum import Enum
from typing import Optional, Dict, Any, List
from datetime import datetime
from decimal import Decimal
from pydantic import BaseModel, Field


# ====================
# Enums
# ====================

class BillingCycle(str, Enum):
    """Billing frequency"""
    MONTHLY = "monthly"
    ANNUAL = "annual"


class SubscriptionStatus(str, Enum):
    """Subscription lifecycle state"""
    ACTIVE = "active"
    TRIALING = "trialing"
    PAST_DUE = "past_due"
    CANCELED = "canceled"
    INCOMPLETE = "incomplete"


class OrganizationStatus(str, Enum):
    """Billing account state (soft delete only)"""
    ACTIVE = "active"
    SUSPENDED = "suspended"
    DELETED = "deleted"


class InvoiceStatus(str, Enum):
    """Invoice lifecycle state"""
    DRAFT = "draft"
    OPEN = "open"
    PAID = "paid"
    VOID = "void"
    UNCOLLECTIBLE = "uncollectible"


class CreditStatus(str, Enum):
    """Credit pool state"""
    ACTIVE = "active"
    EXHAUSTED = "exhausted"
    EXPIRED = "expired"
    VOIDED = "voided"


class MetricType(str, Enum):
    """Metered dimensions reported by the usage aggregator"""
    API_CALLS = "api_calls"
    STORAGE_GB = "storage_gb"
    TRANSFER_GB_IN = "transfer_gb_in"
    TRANSFER_GB_OUT = "transfer_gb_out"
    QUERY_SECONDS = "query_seconds"
    GRAPHQL_OPERATIONS = "graphql_operations"
    KAFKA_EVENTS = "kafka_events"
    ADAPTERS_ACTIVE = "adapters_active"


class LineItemType(str, Enum):
    """Invoice line item kind"""
    SUBSCRIPTION_BASE = "subscription_base"
    USAGE_API_CALLS = "usage_api_calls"
    USAGE_STORAGE = "usage_storage"
    USAGE_TRANSFER = "usage_transfer"
    ADDON_SEATS = "addon_seats"
    CREDIT = "credit"
    TAX = "tax"


# Invoice state machine. paid and void are terminal.
INVOICE_STATUS_TRANSITIONS: Dict[InvoiceStatus, set] = {
    InvoiceStatus.DRAFT: {InvoiceStatus.OPEN, InvoiceStatus.VOID},
    InvoiceStatus.OPEN: {InvoiceStatus.PAID, InvoiceStatus.VOID, InvoiceStatus.UNCOLLECTIBLE},
    InvoiceStatus.UNCOLLECTIBLE: {InvoiceStatus.PAID, InvoiceStatus.VOID},
    InvoiceStatus.PAID: set(),
    InvoiceStatus.VOID: set(),
}


def can_transition_invoice(current: InvoiceStatus, target: InvoiceStatus) -> bool:
    return target in INVOICE_STATUS_TRANSITIONS.get(current, set())


# ====================
# Core Models
# ====================

class Organization(BaseModel):
    """Billing account"""
    organization_id: str = Field(..., description="Organization ID")
    name: str
    billing_email: Optional[str] = None
    currency: str = "USD"
    billing_cycle: BillingCycle = BillingCycle.MONTHLY
    billing_day_of_month: int = Field(default=1, ge=1, le=28)

    # Payment
    default_payment_method_id: Optional[str] = None
    stripe_customer_id: Optional[str] = None
    auto_pay: bool = False

    status: OrganizationStatus = OrganizationStatus.ACTIVE
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class SubscriptionPlan(BaseModel):
    """Product definition. A pricing change produces a new plan row."""
    plan_id: str = Field(..., description="Plan ID")
    name: str
    slug: Optional[str] = None
    base_price: Decimal = Field(..., description="Price per seat per period")
    currency: str = "USD"
    billing_interval: BillingCycle = BillingCycle.MONTHLY

    # Included quantities
    included_api_calls: int = 0
    included_storage_gb: int = 0
    included_data_transfer_gb: int = 0
    included_seats: int = 1

    # Overage unit prices
    price_per_api_call: Decimal = Decimal("0")
    price_per_gb_storage: Decimal = Decimal("0")
    price_per_gb_transfer: Decimal = Decimal("0")
    price_per_additional_seat: Decimal = Decimal("0")

    features: Dict[str, Any] = Field(default_factory=dict)
    is_active: bool = True
    created_at: Optional[datetime] = None


class Subscription(BaseModel):
    """Binds an organization to a plan for a recurring period"""
    subscription_id: str = Field(..., description="Subscription ID")
    organization_id: str
    plan_id: str
    status: SubscriptionStatus = SubscriptionStatus.ACTIVE
    current_period_start: datetime
    current_period_end: datetime
    quantity: int = Field(default=1, description="Seat count")
    custom_pricing: Dict[str, Any] = Field(default_factory=dict, description="Plan pricing field overrides")

    cancel_at_period_end: bool = False
    canceled_at: Optional[datetime] = None
    cancellation_reason: Optional[str] = None

    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class PricingTier(BaseModel):
    """Volume band for a metric. tier_end None means unbounded."""
    tier_id: Optional[str] = None
    plan_id: Optional[str] = None
    metric_type: MetricType
    tier_start: Decimal
    tier_end: Optional[Decimal] = None
    price_per_unit: Decimal
    flat_fee: Decimal = Decimal("0")


class UsageAggregation(BaseModel):
    """Summed usage per metric for an organization over [period_start, period_end)"""
    organization_id: str
    subscription_id: Optional[str] = None
    period_start: datetime
    period_end: datetime
    metrics: Dict[MetricType, Decimal] = Field(default_factory=dict)

    def get(self, metric: MetricType) -> Decimal:
        return self.metrics.get(metric, Decimal("0"))


class Credit(BaseModel):
    """Prepaid or promotional balance"""
    credit_id: str = Field(..., description="Credit ID")
    organization_id: str
    amount: Decimal
    remaining_amount: Decimal
    currency: str = "USD"
    reason: str = "promotion"
    description: Optional[str] = None
    valid_from: datetime
    valid_until: Optional[datetime] = None
    status: CreditStatus = CreditStatus.ACTIVE
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def is_applicable(self, as_of: datetime) -> bool:
        """Active, inside its validity window, and not spent"""
        if self.status != CreditStatus.ACTIVE:
            return False
        if self.remaining_amount <= 0:
            return False
        if self.valid_from > as_of:
            return False
        if self.valid_until is not None and self.valid_until < as_of:
            return False
        return True


class InvoiceLineItem(BaseModel):
    """One priced component of an invoice"""
    line_item_id: Optional[str] = None
    invoice_id: Optional[str] = None
    description: str
    quantity: Decimal
    unit_price: Decimal
    amount: Decimal
    item_type: LineItemType
    metric_type: Optional[MetricType] = None
    period_start: Optional[datetime] = None
    period_end: Optional[datetime] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
    created_at: Optional[datetime] = None


class CreditApplication(BaseModel):
    """How much of one credit a charge consumed"""
    credit_id: str
    amount: Decimal
    remaining_after: Decimal


class ChargeCalculation(BaseModel):
    """Itemized result of the pricing engine"""
    base_charge: Decimal = Decimal("0")
    usage_charges: Dict[MetricType, Decimal] = Field(default_factory=dict)
    addon_charges: Decimal = Decimal("0")
    subtotal: Decimal = Decimal("0")
    credits_applied: Decimal = Decimal("0")
    credit_applications: List[CreditApplication] = Field(default_factory=list)
    tax_rate: Decimal = Decimal("0")
    tax_amount: Decimal = Decimal("0")
    total: Decimal = Decimal("0")
    currency: str = "USD"
    line_items: List[InvoiceLineItem] = Field(default_factory=list)


class Invoice(BaseModel):
    """Billed artifact for one subscription period"""
    invoice_id: str = Field(..., description="Invoice ID")
    invoice_number: str
    organization_id: str
    subscription_id: Optional[str] = None
    period_start: datetime
    period_end: datetime

    subtotal: Decimal
    credits_applied: Decimal = Decimal("0")
    tax_amount: Decimal = Decimal("0")
    total_amount: Decimal
    amount_due: Decimal
    amount_paid: Decimal = Decimal("0")
    currency: str = "USD"

    status: InvoiceStatus = InvoiceStatus.DRAFT
    invoice_date: datetime
    due_date: datetime
    paid_at: Optional[datetime] = None
    voided_at: Optional[datetime] = None

    line_items: List[InvoiceLineItem] = Field(default_factory=list)
    metadata: Dict[str, Any] = Field(default_factory=dict)

    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class AuditLogEntry(BaseModel):
    """Append-only record of a state-changing operation"""
    audit_id: str
    entity_type: str
    entity_id: str
    event_type: str
    event_data: Dict[str, Any] = Field(default_factory=dict)
    actor_id: Optional[str] = None
    actor_type: str = "system"
    occurred_at: datetime


# ====================
# Request/Response Models
# ====================

class GenerateInvoiceRequest(BaseModel):
    """Generate the invoice for a subscription's current period"""
    subscription_id: str = Field(..., description="Subscription ID")


class MarkInvoicePaidRequest(BaseModel):
    amount_paid: Optional[Decimal] = Field(None, ge=0)
    paid_at: Optional[datetime] = None


class InvoiceListResponse(BaseModel):
    invoices: List[Invoice]
    count: int
    limit: int
    offset: int


class HealthResponse(BaseModel):
    status: str
    service: str
    port: int
    version: str
    dependencies: Dict[str, str] = Field(default_factory=dict)
