"""
Invoice Service Business Logic

Invoice generation, preview, and lifecycle transitions.

generate_invoice runs load -> usage -> credits -> pricing -> numbering ->
persist inside one repository transaction. A collision on the invoice number
rolls the transaction back and the whole operation is retried.
"""

import asyncio
import logging
import uuid
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt

from core.config import BillingConfig

from .clients.notification_client import TEMPLATE_INVOICE_GENERATED, TEMPLATE_INVOICE_OVERDUE
from .events.publishers import (
    publish_credit_applied,
    publish_invoice_created,
    publish_invoice_overdue,
    publish_invoice_paid,
    publish_invoice_voided,
)
from .models import (
    ChargeCalculation,
    Invoice,
    InvoiceStatus,
    Organization,
    PricingTier,
    Subscription,
    SubscriptionPlan,
    UsageAggregation,
    can_transition_invoice,
)
from .pricing_engine import PricingEngine
from .protocols import (
    AlreadyPaidError,
    AuditRepositoryProtocol,
    BillingRepositoryProtocol,
    CreditConflictError,
    DependencyUnavailable,
    EventBusProtocol,
    InvalidInvoiceTransitionError,
    InvoiceAlreadyExistsError,
    InvoiceNotFoundError,
    InvoiceNumberConflictError,
    NotificationClientProtocol,
    OrganizationNotFoundError,
    PlanNotFoundError,
    SubscriptionNotFoundError,
    UsageAggregatorProtocol,
    ValidationError,
)

logger = logging.getLogger(__name__)

UPCOMING_INVOICE_NUMBER = "UPCOMING"


class InvoiceService:
    """Invoice generation and lifecycle"""

    def __init__(
        self,
        repository: BillingRepositoryProtocol,
        usage_aggregator: UsageAggregatorProtocol,
        pricing_engine: Optional[PricingEngine] = None,
        config: Optional[BillingConfig] = None,
        event_bus: Optional[EventBusProtocol] = None,
        notification_client: Optional[NotificationClientProtocol] = None,
        audit_repository: Optional[AuditRepositoryProtocol] = None,
    ):
        """
        Initialize invoice service with injected dependencies.

        Args:
            repository: Billing data store (invoices, credits, subscriptions)
            usage_aggregator: Usage summary provider
            pricing_engine: Charge calculator (built from config if omitted)
            config: Billing configuration
            event_bus: Event bus for billing.* events (optional)
            notification_client: Notification delivery (optional)
            audit_repository: Append-only audit trail (optional)
        """
        self.repository = repository
        self.usage_aggregator = usage_aggregator
        self.config = config or BillingConfig()
        self.pricing_engine = pricing_engine or PricingEngine(self.config)
        self.event_bus = event_bus
        self.notification_client = notification_client
        self.audit_repository = audit_repository

    # ====================
    # Generation
    # ====================

    async def generate_invoice(self, subscription_id: str, actor_id: Optional[str] = None) -> Invoice:
        """
        Generate and persist the invoice for a subscription's current period.

        Raises:
            SubscriptionNotFoundError / PlanNotFoundError / OrganizationNotFoundError
            ValidationError: pricing inputs are inconsistent
            DependencyUnavailable: usage or credit store unreachable
            InvoiceAlreadyExistsError: the period is already invoiced
            InvoiceNumberConflictError: numbering kept colliding past the retry budget
        """
        subscription, plan, organization, tiers = await self._load_billing_context(subscription_id)

        existing = await self.repository.get_invoice_for_period(
            subscription.subscription_id,
            subscription.current_period_start,
            subscription.current_period_end,
        )
        if existing:
            raise InvoiceAlreadyExistsError(
                f"Invoice {existing.invoice_number} already covers this period",
                invoice_id=existing.invoice_id,
            )

        usage = await self._fetch_usage(
            subscription, subscription.current_period_start, subscription.current_period_end
        )

        try:
            async for attempt in AsyncRetrying(
                retry=retry_if_exception_type(InvoiceNumberConflictError),
                stop=stop_after_attempt(max(1, self.config.invoice_number_max_retries)),
                reraise=True,
            ):
                with attempt:
                    if attempt.retry_state.attempt_number > 1:
                        logger.warning(
                            f"⚠️ Invoice number collision for subscription {subscription_id}, "
                            f"retry {attempt.retry_state.attempt_number}"
                        )
                    invoice, calculation = await self._persist_invoice(
                        subscription, plan, usage, tiers, actor_id
                    )
        except InvoiceNumberConflictError:
            logger.error(f"❌ Could not allocate an invoice number for subscription {subscription_id}")
            raise

        logger.info(
            f"✅ Invoice {invoice.invoice_number} generated for subscription {subscription_id}: "
            f"{invoice.total_amount} {invoice.currency} ({invoice.status.value})"
        )

        # After commit
        await publish_invoice_created(self.event_bus, invoice, auto_pay=organization.auto_pay)
        for application in calculation.credit_applications:
            await publish_credit_applied(self.event_bus, application, invoice)
        await self._notify(
            TEMPLATE_INVOICE_GENERATED,
            organization.organization_id,
            {
                "invoice_id": invoice.invoice_id,
                "invoice_number": invoice.invoice_number,
                "total_amount": str(invoice.total_amount),
                "amount_due": str(invoice.amount_due),
                "currency": invoice.currency,
                "due_date": invoice.due_date.isoformat(),
            },
        )
        return invoice

    async def get_upcoming_invoice(self, subscription_id: str, as_of: Optional[datetime] = None) -> Invoice:
        """
        Preview the invoice for the in-progress period.

        Same calculation path as generate_invoice with usage up to ``as_of``.
        Nothing is persisted and no credit is consumed.
        """
        now = as_of or datetime.now(timezone.utc)
        subscription, plan, _, tiers = await self._load_billing_context(subscription_id)

        usage_end = min(max(now, subscription.current_period_start), subscription.current_period_end)
        usage = await self._fetch_usage(subscription, subscription.current_period_start, usage_end)
        credits = []
        if self.config.enable_credits:
            credits = await self.repository.get_active_credits(subscription.organization_id, now)

        calculation = self._calculate(subscription, plan, usage, credits, tiers, now)
        return self._build_invoice(
            subscription,
            plan,
            calculation,
            invoice_id=f"upcoming_{subscription.subscription_id}",
            invoice_number=UPCOMING_INVOICE_NUMBER,
            now=now,
            status=InvoiceStatus.DRAFT,
        )

    # ====================
    # Lifecycle
    # ====================

    async def finalize_invoice(self, invoice_id: str, actor_id: Optional[str] = None) -> Invoice:
        """draft -> open"""
        return await self._transition(invoice_id, InvoiceStatus.OPEN, actor_id=actor_id)

    async def mark_paid(
        self,
        invoice_id: str,
        amount_paid: Optional[Decimal] = None,
        paid_at: Optional[datetime] = None,
        payment_id: Optional[str] = None,
        actor_id: Optional[str] = None,
    ) -> Invoice:
        """
        open/uncollectible -> paid, recording amount and timestamp.

        Raises:
            AlreadyPaidError: invoice is already paid
            InvalidInvoiceTransitionError: invoice is draft or void
        """
        invoice = await self.get_invoice(invoice_id)
        if invoice.status == InvoiceStatus.PAID:
            raise AlreadyPaidError(f"Invoice {invoice.invoice_number} is already paid", invoice_id=invoice_id)

        amount = invoice.amount_due if amount_paid is None else amount_paid
        if amount < 0:
            raise ValidationError(f"Paid amount cannot be negative: {amount}")

        updated = await self._transition(
            invoice_id,
            InvoiceStatus.PAID,
            updates={
                "amount_paid": invoice.amount_paid + amount,
                "amount_due": max(Decimal("0"), invoice.amount_due - amount),
                "paid_at": paid_at or datetime.now(timezone.utc),
            },
            actor_id=actor_id,
            current=invoice,
        )
        await publish_invoice_paid(self.event_bus, updated, payment_id=payment_id)
        return updated

    async def void_invoice(self, invoice_id: str, actor_id: Optional[str] = None) -> Invoice:
        """Any non-paid, non-void status -> void"""
        invoice = await self.get_invoice(invoice_id)
        if invoice.status == InvoiceStatus.PAID:
            raise AlreadyPaidError(f"Invoice {invoice.invoice_number} is paid and cannot be voided", invoice_id=invoice_id)

        updated = await self._transition(
            invoice_id,
            InvoiceStatus.VOID,
            updates={"voided_at": datetime.now(timezone.utc), "amount_due": Decimal("0")},
            actor_id=actor_id,
            current=invoice,
        )
        await publish_invoice_voided(self.event_bus, updated, previous_status=invoice.status)
        return updated

    async def mark_uncollectible(self, invoice_id: str, actor_id: Optional[str] = None) -> Invoice:
        """open -> uncollectible"""
        return await self._transition(invoice_id, InvoiceStatus.UNCOLLECTIBLE, actor_id=actor_id)

    async def get_invoice(self, invoice_id: str) -> Invoice:
        invoice = await self.repository.get_invoice(invoice_id)
        if not invoice:
            raise InvoiceNotFoundError(f"Invoice not found: {invoice_id}")
        return invoice

    async def list_invoices(
        self,
        organization_id: str,
        status: Optional[InvoiceStatus] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> List[Invoice]:
        """Invoices for an organization, newest first"""
        if limit <= 0 or limit > 500:
            raise ValidationError(f"limit must be between 1 and 500, got {limit}")
        if offset < 0:
            raise ValidationError(f"offset cannot be negative, got {offset}")
        return await self.repository.list_invoices(organization_id, status=status, limit=limit, offset=offset)

    async def process_overdue_invoices(self, as_of: Optional[datetime] = None) -> int:
        """
        Announce open invoices past their due date.

        Returns:
            Number of overdue invoices found
        """
        now = as_of or datetime.now(timezone.utc)
        overdue = await self.repository.list_overdue_invoices(now)

        for invoice in overdue:
            await publish_invoice_overdue(self.event_bus, invoice, as_of=now)
            await self._notify(
                TEMPLATE_INVOICE_OVERDUE,
                invoice.organization_id,
                {
                    "invoice_id": invoice.invoice_id,
                    "invoice_number": invoice.invoice_number,
                    "amount_due": str(invoice.amount_due),
                    "currency": invoice.currency,
                    "due_date": invoice.due_date.isoformat(),
                },
                priority="high",
            )

        if overdue:
            logger.info(f"Found {len(overdue)} overdue invoices as of {now.isoformat()}")
        return len(overdue)

    # ====================
    # Internals
    # ====================

    async def _load_billing_context(
        self, subscription_id: str
    ) -> Tuple[Subscription, SubscriptionPlan, Organization, List[PricingTier]]:
        subscription = await self.repository.get_subscription(subscription_id)
        if not subscription:
            raise SubscriptionNotFoundError(f"Subscription not found: {subscription_id}")

        plan = await self.repository.get_plan(subscription.plan_id)
        if not plan:
            raise PlanNotFoundError(f"Plan not found: {subscription.plan_id}")

        organization = await self.repository.get_organization(subscription.organization_id)
        if not organization:
            raise OrganizationNotFoundError(f"Organization not found: {subscription.organization_id}")

        tiers: List[PricingTier] = []
        if self.config.enable_tiered_pricing:
            tiers = await self.repository.get_pricing_tiers(plan.plan_id)

        return subscription, plan, organization, tiers

    async def _fetch_usage(
        self, subscription: Subscription, period_start: datetime, period_end: datetime
    ) -> Optional[UsageAggregation]:
        if not self.config.enable_usage_metrics:
            return None
        try:
            return await self.usage_aggregator.get_usage_for_period(
                subscription.organization_id, period_start, period_end
            )
        except DependencyUnavailable:
            raise
        except (asyncio.TimeoutError, ConnectionError, OSError) as e:
            logger.error(f"❌ Usage aggregator unavailable for {subscription.organization_id}: {e}")
            raise DependencyUnavailable(f"Usage aggregator unavailable: {e}", dependency="usage") from e

    def _calculate(
        self,
        subscription: Subscription,
        plan: SubscriptionPlan,
        usage: Optional[UsageAggregation],
        credits,
        tiers: List[PricingTier],
        as_of: datetime,
    ) -> ChargeCalculation:
        """The one calculation path shared by generation and preview"""
        return self.pricing_engine.calculate_charge(
            subscription, plan, usage, credits, tiers=tiers, as_of=as_of
        )

    async def _persist_invoice(
        self,
        subscription: Subscription,
        plan: SubscriptionPlan,
        usage: Optional[UsageAggregation],
        tiers: List[PricingTier],
        actor_id: Optional[str],
    ) -> Tuple[Invoice, ChargeCalculation]:
        now = datetime.now(timezone.utc)

        async with self.repository.transaction() as conn:
            existing = await self.repository.get_invoice_for_period(
                subscription.subscription_id,
                subscription.current_period_start,
                subscription.current_period_end,
                conn=conn,
            )
            if existing:
                raise InvoiceAlreadyExistsError(
                    f"Invoice {existing.invoice_number} already covers this period",
                    invoice_id=existing.invoice_id,
                )

            credits = []
            if self.config.enable_credits:
                credits = await self.repository.get_active_credits(
                    subscription.organization_id, now, conn=conn, for_update=True
                )

            calculation = self._calculate(subscription, plan, usage, credits, tiers, now)
            invoice_number = await self._next_invoice_number(now, conn)
            status = InvoiceStatus.PAID if calculation.total == 0 else InvoiceStatus.OPEN

            invoice = self._build_invoice(
                subscription,
                plan,
                calculation,
                invoice_id=f"inv_{uuid.uuid4().hex[:16]}",
                invoice_number=invoice_number,
                now=now,
                status=status,
            )
            created = await self.repository.create_invoice(invoice, conn=conn)
            created.line_items = await self.repository.create_line_items(
                created.invoice_id, calculation.line_items, conn=conn
            )

            for application in calculation.credit_applications:
                deducted = await self.repository.deduct_credit(application.credit_id, application.amount, conn=conn)
                if deducted is None:
                    raise CreditConflictError(
                        f"Credit {application.credit_id} no longer covers {application.amount}"
                    )

            await self._audit(
                "invoice",
                created.invoice_id,
                "invoice.generated",
                {
                    "invoice_number": created.invoice_number,
                    "subscription_id": subscription.subscription_id,
                    "status": {"from": None, "to": created.status.value},
                    "total_amount": str(created.total_amount),
                    "credits": [
                        {"credit_id": a.credit_id, "amount": str(a.amount)}
                        for a in calculation.credit_applications
                    ],
                },
                actor_id=actor_id,
                conn=conn,
            )

        return created, calculation

    async def _next_invoice_number(self, now: datetime, conn: Any) -> str:
        """{prefix}{year}-{sequence:06d}, counted inside the caller's transaction"""
        year_prefix = f"{self.config.invoice_number_prefix}{now.year}-"
        count = await self.repository.count_invoices_with_prefix(year_prefix, conn=conn)
        return f"{year_prefix}{count + 1:06d}"

    def _build_invoice(
        self,
        subscription: Subscription,
        plan: SubscriptionPlan,
        calculation: ChargeCalculation,
        invoice_id: str,
        invoice_number: str,
        now: datetime,
        status: InvoiceStatus,
    ) -> Invoice:
        paid = status == InvoiceStatus.PAID
        line_items = [item.model_copy(update={"invoice_id": invoice_id}) for item in calculation.line_items]
        return Invoice(
            invoice_id=invoice_id,
            invoice_number=invoice_number,
            organization_id=subscription.organization_id,
            subscription_id=subscription.subscription_id,
            period_start=subscription.current_period_start,
            period_end=subscription.current_period_end,
            subtotal=calculation.subtotal,
            credits_applied=calculation.credits_applied,
            tax_amount=calculation.tax_amount,
            total_amount=calculation.total,
            amount_due=Decimal("0") if paid else calculation.total,
            amount_paid=Decimal("0"),
            currency=calculation.currency,
            status=status,
            invoice_date=now,
            due_date=now + timedelta(days=self.config.invoice_due_days),
            paid_at=now if paid else None,
            line_items=line_items,
            metadata={
                "plan_id": plan.plan_id,
                "tax_rate": str(calculation.tax_rate),
                "credit_applications": [
                    {"credit_id": a.credit_id, "amount": str(a.amount), "remaining_after": str(a.remaining_after)}
                    for a in calculation.credit_applications
                ],
            },
        )

    async def _transition(
        self,
        invoice_id: str,
        target: InvoiceStatus,
        updates: Optional[Dict[str, Any]] = None,
        actor_id: Optional[str] = None,
        current: Optional[Invoice] = None,
    ) -> Invoice:
        invoice = current or await self.get_invoice(invoice_id)
        if not can_transition_invoice(invoice.status, target):
            raise InvalidInvoiceTransitionError(
                f"Invoice {invoice.invoice_number} cannot move from {invoice.status.value} to {target.value}",
                current_status=invoice.status.value,
            )

        async with self.repository.transaction() as conn:
            updated = await self.repository.update_invoice_status(
                invoice_id, [invoice.status], target, updates=updates, conn=conn
            )
            if updated is None:
                # Someone else moved it first
                latest = await self.repository.get_invoice(invoice_id, conn=conn)
                latest_status = latest.status.value if latest else "missing"
                raise InvalidInvoiceTransitionError(
                    f"Invoice {invoice.invoice_number} changed to {latest_status} concurrently",
                    current_status=latest_status,
                )
            await self._audit(
                "invoice",
                invoice_id,
                f"invoice.{target.value}",
                {"status": {"from": invoice.status.value, "to": target.value},
                 **{k: str(v) for k, v in (updates or {}).items()}},
                actor_id=actor_id,
                conn=conn,
            )

        logger.info(f"Invoice {invoice.invoice_number}: {invoice.status.value} -> {target.value}")
        updated.line_items = updated.line_items or invoice.line_items
        return updated

    async def _audit(
        self,
        entity_type: str,
        entity_id: str,
        event_type: str,
        event_data: Dict[str, Any],
        actor_id: Optional[str] = None,
        conn: Any = None,
    ) -> None:
        if not self.audit_repository:
            return
        await self.audit_repository.record(
            entity_type,
            entity_id,
            event_type,
            event_data,
            actor_id=actor_id,
            actor_type="user" if actor_id else "system",
            conn=conn,
        )

    async def _notify(
        self,
        template_code: str,
        recipient_id: str,
        data: Dict[str, Any],
        priority: str = "normal",
    ) -> bool:
        if not self.notification_client:
            logger.warning(f"⚠️ Notification client not available, skipping {template_code}")
            return False
        try:
            return await self.notification_client.send_notification(
                template_code, recipient_id, data, priority=priority
            )
        except Exception as e:
            logger.error(f"❌ Failed to send {template_code} to {recipient_id}: {e}")
            return False


__all__ = ["InvoiceService", "UPCOMING_INVOICE_NUMBER"]
