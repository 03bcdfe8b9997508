"""
Billing Service - Data Contract

Test data factory for billing_service domain models.
Zero hardcoded IDs - all identifiers generated through factory methods;
monetary defaults are the reference plan used across the golden tests.

This module defines:
1. BillingTestDataFactory - valid and invalid domain objects
2. Request builders for the invoice API
"""

import uuid
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional

from microservices.billing_service.models import (
    Credit,
    CreditStatus,
    GenerateInvoiceRequest,
    Invoice,
    InvoiceLineItem,
    InvoiceStatus,
    LineItemType,
    MetricType,
    Organization,
    PricingTier,
    Subscription,
    SubscriptionPlan,
    SubscriptionStatus,
    UsageAggregation,
)


# Reference billing period: the whole of March 2025 (UTC)
PERIOD_START = datetime(2025, 3, 1, tzinfo=timezone.utc)
PERIOD_END = datetime(2025, 4, 1, tzinfo=timezone.utc)


# ============================================================================
# BillingTestDataFactory
# ============================================================================


class BillingTestDataFactory:
    """
    Test data factory for billing_service.

    Factory methods are prefixed with make_ for valid data and
    make_invalid_ for invalid data scenarios. Keyword overrides are applied
    on top of the defaults.
    """

    # ========================================================================
    # Identifiers
    # ========================================================================

    @staticmethod
    def make_organization_id() -> str:
        return f"org_{uuid.uuid4().hex[:16]}"

    @staticmethod
    def make_subscription_id() -> str:
        return f"sub_{uuid.uuid4().hex[:16]}"

    @staticmethod
    def make_plan_id() -> str:
        return f"plan_{uuid.uuid4().hex[:12]}"

    @staticmethod
    def make_credit_id() -> str:
        return f"cred_{uuid.uuid4().hex[:16]}"

    @staticmethod
    def make_invoice_id() -> str:
        return f"inv_{uuid.uuid4().hex[:16]}"

    @staticmethod
    def make_timestamp() -> datetime:
        return datetime.now(timezone.utc)

    # ========================================================================
    # Valid Data Generators
    # ========================================================================

    @staticmethod
    def make_organization(**overrides) -> Organization:
        """Organization with a processor customer and default card on file"""
        data: Dict[str, Any] = {
            "organization_id": BillingTestDataFactory.make_organization_id(),
            "name": "Acme Analytics",
            "billing_email": "billing@acme.example",
            "stripe_customer_id": f"cus_{uuid.uuid4().hex[:14]}",
            "default_payment_method_id": f"pm_{uuid.uuid4().hex[:14]}",
            "auto_pay": True,
        }
        data.update(overrides)
        return Organization(**data)

    @staticmethod
    def make_plan(**overrides) -> SubscriptionPlan:
        """Pro plan: 99.00 base, 1,000,000 API calls included at 0.000005 per overage call"""
        data: Dict[str, Any] = {
            "plan_id": BillingTestDataFactory.make_plan_id(),
            "name": "Pro",
            "slug": "pro",
            "base_price": Decimal("99.00"),
            "currency": "USD",
            "included_api_calls": 1_000_000,
            "included_storage_gb": 100,
            "included_data_transfer_gb": 500,
            "included_seats": 1,
            "price_per_api_call": Decimal("0.000005"),
            "price_per_gb_storage": Decimal("0.10"),
            "price_per_gb_transfer": Decimal("0.05"),
            "price_per_additional_seat": Decimal("20.00"),
        }
        data.update(overrides)
        return SubscriptionPlan(**data)

    @staticmethod
    def make_subscription(plan: Optional[SubscriptionPlan] = None, **overrides) -> Subscription:
        data: Dict[str, Any] = {
            "subscription_id": BillingTestDataFactory.make_subscription_id(),
            "organization_id": BillingTestDataFactory.make_organization_id(),
            "plan_id": plan.plan_id if plan else BillingTestDataFactory.make_plan_id(),
            "status": SubscriptionStatus.ACTIVE,
            "current_period_start": PERIOD_START,
            "current_period_end": PERIOD_END,
            "quantity": 1,
        }
        data.update(overrides)
        return Subscription(**data)

    @staticmethod
    def make_usage(
        organization_id: Optional[str] = None,
        metrics: Optional[Dict[MetricType, Any]] = None,
        period_start: datetime = PERIOD_START,
        period_end: datetime = PERIOD_END,
    ) -> UsageAggregation:
        return UsageAggregation(
            organization_id=organization_id or BillingTestDataFactory.make_organization_id(),
            period_start=period_start,
            period_end=period_end,
            metrics={metric: Decimal(str(value)) for metric, value in (metrics or {}).items()},
        )

    @staticmethod
    def make_credit(
        remaining: Any = "50.00",
        organization_id: Optional[str] = None,
        valid_from: Optional[datetime] = None,
        **overrides,
    ) -> Credit:
        remaining_amount = Decimal(str(remaining))
        data: Dict[str, Any] = {
            "credit_id": BillingTestDataFactory.make_credit_id(),
            "organization_id": organization_id or BillingTestDataFactory.make_organization_id(),
            "amount": remaining_amount,
            "remaining_amount": remaining_amount,
            "currency": "USD",
            "reason": "promotion",
            "valid_from": valid_from or PERIOD_START - timedelta(days=30),
            "valid_until": None,
            "status": CreditStatus.ACTIVE,
        }
        data.update(overrides)
        return Credit(**data)

    @staticmethod
    def make_tier(
        start: Any,
        end: Any,
        price: Any,
        metric: MetricType = MetricType.API_CALLS,
        flat_fee: Any = "0",
    ) -> PricingTier:
        return PricingTier(
            tier_id=f"tier_{uuid.uuid4().hex[:10]}",
            metric_type=metric,
            tier_start=Decimal(str(start)),
            tier_end=Decimal(str(end)) if end is not None else None,
            price_per_unit=Decimal(str(price)),
            flat_fee=Decimal(str(flat_fee)),
        )

    @staticmethod
    def make_invoice(
        status: InvoiceStatus = InvoiceStatus.OPEN,
        total: Any = "110.00",
        **overrides,
    ) -> Invoice:
        total_amount = Decimal(str(total))
        now = datetime.now(timezone.utc)
        invoice_id = overrides.pop("invoice_id", None) or BillingTestDataFactory.make_invoice_id()
        data: Dict[str, Any] = {
            "invoice_id": invoice_id,
            "invoice_number": f"INV-{now.year}-{uuid.uuid4().int % 1_000_000:06d}",
            "organization_id": BillingTestDataFactory.make_organization_id(),
            "subscription_id": BillingTestDataFactory.make_subscription_id(),
            "period_start": PERIOD_START,
            "period_end": PERIOD_END,
            "subtotal": total_amount,
            "total_amount": total_amount,
            "amount_due": Decimal("0") if status in (InvoiceStatus.PAID, InvoiceStatus.VOID) else total_amount,
            "amount_paid": total_amount if status == InvoiceStatus.PAID else Decimal("0"),
            "status": status,
            "invoice_date": now,
            "due_date": now + timedelta(days=30),
            "paid_at": now if status == InvoiceStatus.PAID else None,
            "line_items": [
                InvoiceLineItem(
                    invoice_id=invoice_id,
                    description="Pro Plan (Mar 2025)",
                    quantity=Decimal("1"),
                    unit_price=total_amount,
                    amount=total_amount,
                    item_type=LineItemType.SUBSCRIPTION_BASE,
                )
            ],
        }
        data.update(overrides)
        return Invoice(**data)

    # ========================================================================
    # Invalid Data Generators
    # ========================================================================

    @staticmethod
    def make_invalid_overlapping_tiers() -> List[PricingTier]:
        return [
            BillingTestDataFactory.make_tier(0, 1000, "0.01"),
            BillingTestDataFactory.make_tier(500, None, "0.005"),
        ]

    @staticmethod
    def make_invalid_unbounded_middle_tiers() -> List[PricingTier]:
        return [
            BillingTestDataFactory.make_tier(0, None, "0.01"),
            BillingTestDataFactory.make_tier(1000, None, "0.005"),
        ]

    @staticmethod
    def make_invalid_negative_usage(organization_id: Optional[str] = None) -> UsageAggregation:
        return BillingTestDataFactory.make_usage(organization_id, {MetricType.API_CALLS: -5})


# ============================================================================
# Request Builders
# ============================================================================


class GenerateInvoiceRequestBuilder:
    """Fluent builder for POST /api/v1/billing/invoices"""

    def __init__(self):
        self._subscription_id = BillingTestDataFactory.make_subscription_id()

    def with_subscription(self, subscription_id: str) -> "GenerateInvoiceRequestBuilder":
        self._subscription_id = subscription_id
        return self

    def build(self) -> GenerateInvoiceRequest:
        return GenerateInvoiceRequest(subscription_id=self._subscription_id)

    def build_dict(self) -> Dict[str, Any]:
        return self.build().model_dump()


__all__ = [
    "PERIOD_START",
    "PERIOD_END",
    "BillingTestDataFactory",
    "GenerateInvoiceRequestBuilder",
]
