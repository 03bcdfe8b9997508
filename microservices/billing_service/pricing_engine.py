"""
Pricing Engine

Pure charge computation: subscription + plan + aggregated usage + credits in,
itemized ChargeCalculation out. No I/O, no clock reads; the reference time is
passed in so identical inputs always produce identical charges.

Every monetary component is rounded exactly once to the currency minor unit
with ROUND_HALF_UP.
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from core.config import BillingConfig
from core.money import ZERO, round_money, to_decimal

from .models import (
    ChargeCalculation,
    Credit,
    CreditApplication,
    InvoiceLineItem,
    LineItemType,
    MetricType,
    PricingTier,
    Subscription,
    SubscriptionPlan,
    UsageAggregation,
)
from .protocols import InvalidPricingInputError


@dataclass(frozen=True)
class BilledDimension:
    """A metered dimension that can produce an overage line item"""
    metric: MetricType
    sources: Tuple[MetricType, ...]
    included_field: str
    price_field: str
    item_type: LineItemType
    unit_label: str


BILLED_DIMENSIONS: Tuple[BilledDimension, ...] = (
    BilledDimension(
        metric=MetricType.API_CALLS,
        sources=(MetricType.API_CALLS,),
        included_field="included_api_calls",
        price_field="price_per_api_call",
        item_type=LineItemType.USAGE_API_CALLS,
        unit_label="API Calls",
    ),
    BilledDimension(
        metric=MetricType.STORAGE_GB,
        sources=(MetricType.STORAGE_GB,),
        included_field="included_storage_gb",
        price_field="price_per_gb_storage",
        item_type=LineItemType.USAGE_STORAGE,
        unit_label="GB Storage",
    ),
    # Inbound and outbound transfer share one allowance
    BilledDimension(
        metric=MetricType.TRANSFER_GB_OUT,
        sources=(MetricType.TRANSFER_GB_IN, MetricType.TRANSFER_GB_OUT),
        included_field="included_data_transfer_gb",
        price_field="price_per_gb_transfer",
        item_type=LineItemType.USAGE_TRANSFER,
        unit_label="GB Data Transfer",
    ),
)

_DECIMAL_OVERRIDES = {
    "base_price",
    "price_per_api_call",
    "price_per_gb_storage",
    "price_per_gb_transfer",
    "price_per_additional_seat",
}
_INT_OVERRIDES = {
    "included_api_calls",
    "included_storage_gb",
    "included_data_transfer_gb",
    "included_seats",
}


class PricingEngine:
    """Deterministic, side-effect-free billing math"""

    def __init__(self, config: Optional[BillingConfig] = None):
        self.config = config or BillingConfig()

    # ====================
    # Full charge
    # ====================

    def calculate_charge(
        self,
        subscription: Subscription,
        plan: SubscriptionPlan,
        usage: Optional[UsageAggregation],
        credits: Sequence[Credit],
        tiers: Optional[Sequence[PricingTier]] = None,
        tax_rate: Optional[Decimal] = None,
        as_of: Optional[datetime] = None,
    ) -> ChargeCalculation:
        """
        Compute the itemized charge for one billing period.

        Args:
            subscription: Subscription being billed (period, seats, overrides)
            plan: The subscription's plan
            usage: Aggregated usage for the period (None means no metered usage)
            credits: Candidate credit balances, in any order
            tiers: Pricing tiers for the plan, any metric, any order
            tax_rate: Overrides the configured rate
            as_of: Reference time for credit validity (defaults to period end)

        Returns:
            ChargeCalculation with line items summing to ``total``

        Raises:
            InvalidPricingInputError: inputs are inconsistent
        """
        rate = self.config.tax_rate if tax_rate is None else to_decimal(tax_rate)
        self._validate(subscription, plan, usage, rate)
        plan = self.effective_plan(subscription, plan)
        self._validate_plan_prices(plan)

        currency = plan.currency.upper()
        if not self.config.enable_multi_currency and currency != self.config.default_currency.upper():
            raise InvalidPricingInputError(
                f"Plan {plan.plan_id} is priced in {currency} but multi-currency billing is disabled "
                f"(default currency {self.config.default_currency})"
            )
        as_of = as_of or subscription.current_period_end
        period_start = subscription.current_period_start
        period_end = subscription.current_period_end

        calc = ChargeCalculation(currency=currency, tax_rate=rate)
        quantity = Decimal(subscription.quantity)

        # 1. Base charge
        calc.base_charge = round_money(plan.base_price * quantity, currency)
        calc.line_items.append(InvoiceLineItem(
            description=f"{plan.name} Plan ({period_start.strftime('%b %Y')})",
            quantity=quantity,
            unit_price=plan.base_price,
            amount=calc.base_charge,
            item_type=LineItemType.SUBSCRIPTION_BASE,
            period_start=period_start,
            period_end=period_end,
        ))

        # 2-3. Metered overage, flat or tiered
        if usage is not None and self.config.enable_usage_metrics:
            tiers_by_metric = self._group_tiers(tiers) if self.config.enable_tiered_pricing else {}
            for dimension in BILLED_DIMENSIONS:
                line_item = self._usage_line_item(
                    dimension, plan, usage, tiers_by_metric.get(dimension.metric), currency,
                    period_start, period_end,
                )
                if line_item is not None:
                    calc.usage_charges[dimension.metric] = line_item.amount
                    calc.line_items.append(line_item)

        # 4. Add-on seats
        if subscription.quantity > plan.included_seats:
            additional_seats = Decimal(subscription.quantity - plan.included_seats)
            calc.addon_charges = round_money(additional_seats * plan.price_per_additional_seat, currency)
            calc.line_items.append(InvoiceLineItem(
                description=f"Additional Seats ({additional_seats})",
                quantity=additional_seats,
                unit_price=plan.price_per_additional_seat,
                amount=calc.addon_charges,
                item_type=LineItemType.ADDON_SEATS,
                period_start=period_start,
                period_end=period_end,
            ))

        # 5. Subtotal
        calc.subtotal = calc.base_charge + calc.addon_charges + sum(calc.usage_charges.values(), ZERO)

        # 6. Credits, oldest validity first
        if self.config.enable_credits:
            applied, applications = self.apply_credits(credits, calc.subtotal, as_of, currency)
            if applied > 0:
                calc.credits_applied = applied
                calc.credit_applications = applications
                calc.line_items.append(InvoiceLineItem(
                    description="Account Credit Applied",
                    quantity=Decimal("1"),
                    unit_price=-applied,
                    amount=-applied,
                    item_type=LineItemType.CREDIT,
                    metadata={"credits": [
                        {"credit_id": a.credit_id, "amount": str(a.amount)} for a in applications
                    ]},
                ))

        # 7. Tax on the post-credit amount
        taxable = max(ZERO, calc.subtotal - calc.credits_applied)
        calc.tax_amount = round_money(taxable * rate, currency)
        if calc.tax_amount > 0:
            calc.line_items.append(InvoiceLineItem(
                description=f"Tax ({(rate * 100).normalize():f}%)",
                quantity=Decimal("1"),
                unit_price=calc.tax_amount,
                amount=calc.tax_amount,
                item_type=LineItemType.TAX,
                metadata={"taxable_amount": str(taxable), "tax_rate": str(rate)},
            ))

        # 8. Total
        calc.total = calc.subtotal - calc.credits_applied + calc.tax_amount
        return calc

    # ====================
    # Components
    # ====================

    def calculate_overage_charge(
        self,
        usage: Decimal,
        included: Decimal,
        unit_price: Decimal,
        currency: str = "USD",
    ) -> Decimal:
        """(usage - included) x unit_price, rounded once; zero when within the allowance"""
        overage = usage - included
        if overage <= 0:
            return ZERO
        return round_money(overage * unit_price, currency)

    def calculate_tiered_charge(
        self,
        quantity: Decimal,
        tiers: Sequence[PricingTier],
        currency: str = "USD",
    ) -> Decimal:
        """Charge for ``quantity`` consumed through ascending tiers, rounded once"""
        total = sum((band["charge"] for band in self._tier_breakdown(quantity, tiers)), ZERO)
        return round_money(total, currency)

    def apply_credits(
        self,
        credits: Iterable[Credit],
        chargeable: Decimal,
        as_of: datetime,
        currency: Optional[str] = None,
    ) -> Tuple[Decimal, List[CreditApplication]]:
        """
        Spend credits against ``chargeable`` as a sorted fold.

        Credits are taken by valid_from ascending (credit_id breaks ties),
        skipping anything inactive, expired, not yet valid, spent, or in a
        different currency. Never applies more than a credit's remaining
        balance or more than the chargeable amount.

        Returns:
            (total applied, per-credit applications)
        """
        remaining = chargeable
        applied_total = ZERO
        applications: List[CreditApplication] = []
        if remaining <= 0:
            return applied_total, applications

        candidates = [
            c for c in credits
            if c.is_applicable(as_of) and (currency is None or c.currency.upper() == currency.upper())
        ]
        for credit in sorted(candidates, key=lambda c: (c.valid_from, c.credit_id)):
            if remaining <= 0:
                break
            applied = min(credit.remaining_amount, remaining)
            applied_total += applied
            remaining -= applied
            applications.append(CreditApplication(
                credit_id=credit.credit_id,
                amount=applied,
                remaining_after=credit.remaining_amount - applied,
            ))

        return applied_total, applications

    def calculate_proration(
        self,
        old_price: Decimal,
        new_price: Decimal,
        period_start: datetime,
        period_end: datetime,
        change_at: datetime,
        currency: str = "USD",
    ) -> Decimal:
        """
        (new - old) x remaining/total period seconds, rounded once.

        Zero when proration is disabled or the period has no positive
        duration. ``change_at`` is clamped into the period.
        """
        if not self.config.enable_proration:
            return ZERO

        total_seconds = Decimal(str((period_end - period_start).total_seconds()))
        if total_seconds <= 0:
            return ZERO

        change_at = min(max(change_at, period_start), period_end)
        remaining_seconds = Decimal(str((period_end - change_at).total_seconds()))
        return round_money((new_price - old_price) * remaining_seconds / total_seconds, currency)

    def estimate_monthly_charge(
        self,
        plan: SubscriptionPlan,
        quantity: int,
        estimated_usage: Dict[MetricType, Decimal],
    ) -> Decimal:
        """Rough pre-tax, pre-credit estimate with flat overage prices"""
        if quantity < 0:
            raise InvalidPricingInputError(f"Seat quantity cannot be negative: {quantity}")

        estimate = plan.base_price * Decimal(quantity)
        if quantity > plan.included_seats:
            estimate += Decimal(quantity - plan.included_seats) * plan.price_per_additional_seat

        if self.config.enable_usage_metrics:
            for dimension in BILLED_DIMENSIONS:
                used = sum((to_decimal(estimated_usage.get(m)) for m in dimension.sources), ZERO)
                overage = used - Decimal(getattr(plan, dimension.included_field))
                if overage > 0:
                    estimate += overage * getattr(plan, dimension.price_field)

        return round_money(estimate, plan.currency)

    def effective_plan(self, subscription: Subscription, plan: SubscriptionPlan) -> SubscriptionPlan:
        """Plan with the subscription's custom_pricing overrides applied"""
        if not subscription.custom_pricing:
            return plan

        update = {}
        for key, value in subscription.custom_pricing.items():
            try:
                if key in _DECIMAL_OVERRIDES:
                    update[key] = to_decimal(value)
                elif key in _INT_OVERRIDES:
                    update[key] = int(value)
                else:
                    raise InvalidPricingInputError(f"Unsupported custom pricing field: {key}")
            except (ArithmeticError, TypeError, ValueError) as e:
                raise InvalidPricingInputError(f"Invalid custom pricing value for {key}: {value!r}") from e
        return plan.model_copy(update=update)

    # ====================
    # Internals
    # ====================

    def _usage_line_item(
        self,
        dimension: BilledDimension,
        plan: SubscriptionPlan,
        usage: UsageAggregation,
        tiers: Optional[List[PricingTier]],
        currency: str,
        period_start: datetime,
        period_end: datetime,
    ) -> Optional[InvoiceLineItem]:
        used = sum((usage.get(m) for m in dimension.sources), ZERO)
        included = Decimal(getattr(plan, dimension.included_field))
        overage = used - included
        if overage <= 0:
            return None

        metadata = {"included": str(included), "usage": str(used), "overage": str(overage)}
        if tiers:
            breakdown = self._tier_breakdown(overage, tiers)
            amount = self.calculate_tiered_charge(overage, tiers, currency)
            unit_price = (amount / overage).quantize(Decimal("0.000001"))
            metadata["tiers"] = [
                {key: str(value) if value is not None else None for key, value in band.items()}
                for band in breakdown
            ]
        else:
            unit_price = getattr(plan, dimension.price_field)
            amount = self.calculate_overage_charge(used, included, unit_price, currency)

        if amount <= 0:
            return None

        return InvoiceLineItem(
            description=(
                f"{dimension.unit_label} - Included: {included}, "
                f"Usage: {used}, Overage: {overage}"
            ),
            quantity=overage,
            unit_price=unit_price,
            amount=amount,
            item_type=dimension.item_type,
            metric_type=dimension.metric,
            period_start=period_start,
            period_end=period_end,
            metadata=metadata,
        )

    def _tier_breakdown(self, quantity: Decimal, tiers: Sequence[PricingTier]) -> List[Dict]:
        ordered = self._validate_tiers(tiers)
        remaining = quantity
        bands = []
        for tier in ordered:
            if remaining <= 0:
                break
            capacity = remaining if tier.tier_end is None else tier.tier_end - tier.tier_start
            tier_usage = min(remaining, capacity)
            bands.append({
                "tier_start": tier.tier_start,
                "tier_end": tier.tier_end,
                "quantity": tier_usage,
                "charge": tier_usage * tier.price_per_unit + tier.flat_fee,
            })
            remaining -= tier_usage
        return bands

    def _group_tiers(self, tiers: Optional[Sequence[PricingTier]]) -> Dict[MetricType, List[PricingTier]]:
        grouped: Dict[MetricType, List[PricingTier]] = {}
        for tier in tiers or []:
            grouped.setdefault(tier.metric_type, []).append(tier)
        return grouped

    def _validate_tiers(self, tiers: Sequence[PricingTier]) -> List[PricingTier]:
        ordered = sorted(tiers, key=lambda t: t.tier_start)
        previous_end: Optional[Decimal] = None
        for index, tier in enumerate(ordered):
            if tier.tier_start < 0:
                raise InvalidPricingInputError(f"Tier start cannot be negative: {tier.tier_start}")
            if tier.tier_end is not None and tier.tier_end <= tier.tier_start:
                raise InvalidPricingInputError(
                    f"Tier end {tier.tier_end} must be greater than tier start {tier.tier_start}"
                )
            if tier.tier_end is None and index != len(ordered) - 1:
                raise InvalidPricingInputError("Only the last tier may be unbounded")
            if previous_end is not None and tier.tier_start < previous_end:
                raise InvalidPricingInputError(f"Tiers overlap at {tier.tier_start}")
            if tier.price_per_unit < 0 or tier.flat_fee < 0:
                raise InvalidPricingInputError("Tier prices cannot be negative")
            previous_end = tier.tier_end
        return ordered

    def _validate(
        self,
        subscription: Subscription,
        plan: SubscriptionPlan,
        usage: Optional[UsageAggregation],
        tax_rate: Decimal,
    ) -> None:
        if subscription.plan_id != plan.plan_id:
            raise InvalidPricingInputError(
                f"Subscription {subscription.subscription_id} references plan {subscription.plan_id}, "
                f"got plan {plan.plan_id}"
            )
        if subscription.quantity < 0:
            raise InvalidPricingInputError(f"Seat quantity cannot be negative: {subscription.quantity}")
        if subscription.current_period_end < subscription.current_period_start:
            raise InvalidPricingInputError("Subscription period ends before it starts")
        if tax_rate < 0:
            raise InvalidPricingInputError(f"Tax rate cannot be negative: {tax_rate}")
        if usage is not None:
            for metric, value in usage.metrics.items():
                if value < 0:
                    raise InvalidPricingInputError(f"Usage for {metric.value} cannot be negative: {value}")

    def _validate_plan_prices(self, plan: SubscriptionPlan) -> None:
        for field in _DECIMAL_OVERRIDES:
            if getattr(plan, field) < 0:
                raise InvalidPricingInputError(f"Plan {plan.plan_id} has negative {field}")
        for field in _INT_OVERRIDES:
            if getattr(plan, field) < 0:
                raise InvalidPricingInputError(f"Plan {plan.plan_id} has negative {field}")


__all__ = ["PricingEngine", "BilledDimension", "BILLED_DIMENSIONS"]
