"""
Payment Service Business Logic

Charges invoices off-session, reconciles processor notifications, and
refunds payments.

Every payment status change is a conditional update on the expected current
status. Whichever of the synchronous charge result and the asynchronous
webhook arrives first performs the transition; the other observes the new
status and does nothing.
"""

import logging
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional

from core.config import BillingConfig
from core.money import ZERO, from_minor_units, round_money, to_decimal

from microservices.billing_service.clients.notification_client import (
    TEMPLATE_PAYMENT_FAILED,
    TEMPLATE_PAYMENT_SUCCEEDED,
)
from microservices.billing_service.events.publishers import publish_invoice_paid
from microservices.billing_service.models import InvoiceStatus, Organization
from microservices.billing_service.protocols import (
    AuditRepositoryProtocol,
    BillingRepositoryProtocol,
    NotificationClientProtocol,
)

from .events.publishers import (
    publish_payment_failed,
    publish_payment_refunded,
    publish_payment_succeeded,
)
from .models import (
    NotificationOutcome,
    NotificationResult,
    Payment,
    PaymentStatus,
    ProcessorOutcome,
)
from .protocols import (
    AlreadyPaidError,
    EventBusProtocol,
    InvalidPaymentTransitionError,
    InvoiceNotFoundError,
    InvoiceNotPayableError,
    OrganizationNotFoundError,
    PaymentDeclined,
    PaymentInProgressError,
    PaymentNotFoundError,
    PaymentProcessorProtocol,
    PaymentRepositoryProtocol,
    RefundAmountExceededError,
    ValidationError,
)

logger = logging.getLogger(__name__)

PAYMENT_SUCCEEDED_EVENT = "payment_intent.succeeded"
PAYMENT_FAILED_EVENT = "payment_intent.payment_failed"
CHARGE_REFUNDED_EVENT = "charge.refunded"

_PAYABLE_STATUSES = [InvoiceStatus.OPEN, InvoiceStatus.UNCOLLECTIBLE]


class PaymentService:
    """Invoice collection against the payment processor"""

    def __init__(
        self,
        repository: PaymentRepositoryProtocol,
        invoice_repository: BillingRepositoryProtocol,
        processor: PaymentProcessorProtocol,
        config: Optional[BillingConfig] = None,
        event_bus: Optional[EventBusProtocol] = None,
        notification_client: Optional[NotificationClientProtocol] = None,
        audit_repository: Optional[AuditRepositoryProtocol] = None,
    ):
        """
        Initialize payment service with injected dependencies.

        ``repository`` and ``invoice_repository`` must share one database so
        that a connection from ``repository.transaction()`` is valid for both.
        """
        self.repository = repository
        self.invoice_repository = invoice_repository
        self.processor = processor
        self.config = config or BillingConfig()
        self.event_bus = event_bus
        self.notification_client = notification_client
        self.audit_repository = audit_repository

    # ====================
    # Charging
    # ====================

    async def charge_invoice(self, invoice_id: str, actor_id: Optional[str] = None) -> Payment:
        """
        Charge an invoice against the organization's default payment method.

        Returns:
            The payment: succeeded, or pending when the processor needs
            further action and the webhook will settle it

        Raises:
            InvoiceNotFoundError
            AlreadyPaidError: invoice already paid
            InvoiceNotPayableError: invoice is draft or void
            ValidationError: organization has no processor customer or payment method
            PaymentInProgressError: a pending payment already reached the processor
            PaymentDeclined: processor declined the charge (payment marked failed)
            DependencyUnavailable: processor unreachable (payment left pending, safe to retry)
        """
        invoice = await self.invoice_repository.get_invoice(invoice_id)
        if not invoice:
            raise InvoiceNotFoundError(f"Invoice not found: {invoice_id}")
        if invoice.status == InvoiceStatus.PAID:
            raise AlreadyPaidError(f"Invoice {invoice.invoice_number} is already paid", invoice_id=invoice_id)
        if invoice.status not in _PAYABLE_STATUSES:
            raise InvoiceNotPayableError(
                f"Invoice {invoice.invoice_number} is {invoice.status.value} and cannot be charged",
                current_status=invoice.status.value,
            )
        if invoice.amount_due <= 0:
            raise InvoiceNotPayableError(
                f"Invoice {invoice.invoice_number} has nothing due", current_status=invoice.status.value
            )

        organization = await self._get_organization(invoice.organization_id)
        if not organization.stripe_customer_id or not organization.default_payment_method_id:
            raise ValidationError(
                f"Organization {organization.organization_id} has no default payment method on file"
            )

        payment = await self.repository.get_pending_payment_for_invoice(invoice_id)
        if payment and payment.provider_payment_id:
            raise PaymentInProgressError(
                f"Payment {payment.payment_id} for invoice {invoice.invoice_number} is awaiting the processor",
                payment_id=payment.payment_id,
            )
        if payment:
            logger.info(f"Retrying pending payment {payment.payment_id} for invoice {invoice.invoice_number}")
        else:
            payment = await self._create_pending_payment(invoice, organization, actor_id)

        result = await self.processor.charge_off_session(
            organization.stripe_customer_id,
            organization.default_payment_method_id,
            payment.amount,
            payment.currency,
            idempotency_key=payment.payment_id,
            metadata={
                "payment_id": payment.payment_id,
                "invoice_id": invoice.invoice_id,
                "invoice_number": invoice.invoice_number,
                "organization_id": organization.organization_id,
            },
        )

        if result.outcome == ProcessorOutcome.SUCCEEDED:
            updated = await self._apply_success(payment, result.provider_payment_id, actor_id=actor_id)
            return updated or await self._reload(payment.payment_id)

        if result.outcome == ProcessorOutcome.REQUIRES_ACTION:
            updated = None
            if result.provider_payment_id:
                updated = await self.repository.set_provider_payment_id(
                    payment.payment_id, result.provider_payment_id
                )
            logger.info(
                f"Payment {payment.payment_id} pending ({result.processor_status}), "
                f"awaiting processor notification"
            )
            return updated or await self._reload(payment.payment_id)

        failed = await self._apply_failure(
            payment,
            result.provider_payment_id,
            result.failure_code,
            result.failure_message,
            actor_id=actor_id,
        )
        failed = failed or await self._reload(payment.payment_id)
        if failed.status == PaymentStatus.SUCCEEDED:
            # A success notification won the race
            return failed
        raise PaymentDeclined(
            f"Payment for invoice {invoice.invoice_number} declined: {result.failure_message}",
            failure_code=result.failure_code,
            failure_message=result.failure_message,
            payment=failed,
        )

    # ====================
    # Processor notifications
    # ====================

    async def handle_stripe_webhook(self, payload: bytes, signature: str) -> NotificationResult:
        """Verify a Stripe webhook delivery and reconcile it"""
        event = self.processor.construct_webhook_event(payload, signature)
        event_type = event.get("type", "")
        data_object = (event.get("data") or {}).get("object") or {}
        return await self.handle_provider_notification(event_type, data_object)

    async def handle_provider_notification(self, event_type: str, payload: Dict[str, Any]) -> NotificationResult:
        """
        Apply a processor notification exactly once.

        Duplicate and out-of-order deliveries are acknowledged without
        effect. Unknown payments and unsupported event types are logged and
        acknowledged rather than raised, so the processor does not redeliver.

        Args:
            event_type: Processor event type (payment_intent.succeeded, ...)
            payload: The event's data object (a PaymentIntent or Charge)
        """
        handlers = {
            PAYMENT_SUCCEEDED_EVENT: self._on_payment_succeeded,
            PAYMENT_FAILED_EVENT: self._on_payment_failed,
            CHARGE_REFUNDED_EVENT: self._on_charge_refunded,
        }
        handler = handlers.get(event_type)
        if handler is None:
            logger.info(f"Ignoring unsupported processor event {event_type}")
            return NotificationResult(event_type=event_type, outcome=NotificationOutcome.UNSUPPORTED_EVENT)

        provider_payment_id = payload.get("payment_intent") if event_type == CHARGE_REFUNDED_EVENT else payload.get("id")
        payment = await self._find_payment(provider_payment_id, payload.get("metadata") or {})
        if not payment:
            logger.warning(f"⚠️ {event_type} for unknown processor transaction {provider_payment_id}, acknowledged")
            return NotificationResult(
                event_type=event_type,
                outcome=NotificationOutcome.UNKNOWN_PAYMENT,
                message=f"No payment for {provider_payment_id}",
            )

        return await handler(payment, provider_payment_id, payload)

    async def _on_payment_succeeded(
        self, payment: Payment, provider_payment_id: Optional[str], payload: Dict[str, Any]
    ) -> NotificationResult:
        event_type = PAYMENT_SUCCEEDED_EVENT
        if payment.status in (PaymentStatus.SUCCEEDED, PaymentStatus.REFUNDED):
            return self._duplicate(event_type, payment)
        if payment.status != PaymentStatus.PENDING:
            return self._ignored(event_type, payment)

        updated = await self._apply_success(payment, provider_payment_id)
        if updated is None:
            return self._duplicate(event_type, await self._reload(payment.payment_id))
        return NotificationResult(
            event_type=event_type, outcome=NotificationOutcome.APPLIED,
            payment_id=updated.payment_id, status=updated.status,
        )

    async def _on_payment_failed(
        self, payment: Payment, provider_payment_id: Optional[str], payload: Dict[str, Any]
    ) -> NotificationResult:
        event_type = PAYMENT_FAILED_EVENT
        if payment.status == PaymentStatus.FAILED:
            return self._duplicate(event_type, payment)
        if payment.status != PaymentStatus.PENDING:
            # Success already recorded; a late failure does not undo it
            return self._ignored(event_type, payment)

        last_error = payload.get("last_payment_error") or {}
        updated = await self._apply_failure(
            payment,
            provider_payment_id,
            last_error.get("decline_code") or last_error.get("code") or "payment_failed",
            last_error.get("message") or "Payment failed",
        )
        if updated is None:
            return self._duplicate(event_type, await self._reload(payment.payment_id))
        return NotificationResult(
            event_type=event_type, outcome=NotificationOutcome.APPLIED,
            payment_id=updated.payment_id, status=updated.status,
        )

    async def _on_charge_refunded(
        self, payment: Payment, provider_payment_id: Optional[str], payload: Dict[str, Any]
    ) -> NotificationResult:
        event_type = CHARGE_REFUNDED_EVENT
        if payment.status == PaymentStatus.REFUNDED:
            return self._duplicate(event_type, payment)
        if payment.status != PaymentStatus.SUCCEEDED:
            return self._ignored(event_type, payment)

        refunded = payment.amount
        if payload.get("amount_refunded") is not None:
            refunded = min(payment.amount, from_minor_units(int(payload["amount_refunded"]), payment.currency))

        updated = await self._apply_refund(payment, refunded, reason="processor")
        if updated is None:
            return self._duplicate(event_type, await self._reload(payment.payment_id))
        return NotificationResult(
            event_type=event_type, outcome=NotificationOutcome.APPLIED,
            payment_id=updated.payment_id, status=updated.status,
        )

    # ====================
    # Refunds
    # ====================

    async def refund_payment(
        self,
        payment_id: str,
        amount: Optional[Decimal] = None,
        reason: Optional[str] = None,
        actor_id: Optional[str] = None,
    ) -> Payment:
        """
        Refund a succeeded payment in full or in part.

        Raises:
            PaymentNotFoundError
            InvalidPaymentTransitionError: payment is not succeeded
            RefundAmountExceededError: amount not positive or larger than the payment
            DependencyUnavailable: processor unreachable
        """
        payment = await self.get_payment(payment_id)
        if payment.status != PaymentStatus.SUCCEEDED:
            raise InvalidPaymentTransitionError(
                f"Payment {payment_id} is {payment.status.value}; only succeeded payments can be refunded",
                current_status=payment.status.value,
            )

        refund_amount = payment.amount if amount is None else round_money(to_decimal(amount), payment.currency)
        if refund_amount <= ZERO or refund_amount > payment.amount:
            raise RefundAmountExceededError(
                f"Refund amount {refund_amount} must be positive and at most {payment.amount}",
                requested=refund_amount,
                available=payment.amount,
            )
        if not payment.provider_payment_id:
            raise ValidationError(f"Payment {payment_id} has no processor transaction to refund")

        await self.processor.refund(
            payment.provider_payment_id,
            refund_amount,
            payment.currency,
            idempotency_key=f"refund-{payment.payment_id}",
            reason=reason,
        )

        updated = await self._apply_refund(payment, refund_amount, reason=reason, actor_id=actor_id)
        if updated is None:
            latest = await self._reload(payment_id)
            if latest.status == PaymentStatus.REFUNDED:
                # The processor's charge.refunded notification landed first
                return latest
            raise InvalidPaymentTransitionError(
                f"Payment {payment_id} changed to {latest.status.value} during refund",
                current_status=latest.status.value,
            )
        return updated

    # ====================
    # Customers and payment methods
    # ====================

    async def create_customer(self, organization_id: str) -> Organization:
        """Create the processor customer for an organization (no-op if it exists)"""
        organization = await self._get_organization(organization_id)
        if organization.stripe_customer_id:
            return organization

        customer_id = await self.processor.create_customer(
            organization_id, organization.billing_email, organization.name
        )
        updated = await self.invoice_repository.update_organization_payment_profile(
            organization_id, stripe_customer_id=customer_id
        )
        logger.info(f"✅ Processor customer {customer_id} created for organization {organization_id}")
        return updated or organization.model_copy(update={"stripe_customer_id": customer_id})

    async def attach_payment_method(
        self,
        organization_id: str,
        payment_method_id: str,
        set_default: bool = True,
    ) -> Organization:
        """Attach a payment method to the organization's processor customer"""
        organization = await self.create_customer(organization_id)
        await self.processor.attach_payment_method(
            organization.stripe_customer_id, payment_method_id, set_default=set_default
        )
        if not set_default:
            return organization

        updated = await self.invoice_repository.update_organization_payment_profile(
            organization_id, default_payment_method_id=payment_method_id
        )
        return updated or organization.model_copy(update={"default_payment_method_id": payment_method_id})

    # ====================
    # Queries
    # ====================

    async def get_payment(self, payment_id: str) -> Payment:
        payment = await self.repository.get_payment(payment_id)
        if not payment:
            raise PaymentNotFoundError(f"Payment not found: {payment_id}")
        return payment

    async def list_payments(self, organization_id: str, limit: int = 50, offset: int = 0) -> List[Payment]:
        if limit <= 0 or limit > 500:
            raise ValidationError(f"limit must be between 1 and 500, got {limit}")
        if offset < 0:
            raise ValidationError(f"offset cannot be negative, got {offset}")
        return await self.repository.list_payments(organization_id, limit=limit, offset=offset)

    # ====================
    # Transitions
    # ====================

    async def _create_pending_payment(self, invoice, organization: Organization, actor_id: Optional[str]) -> Payment:
        payment = Payment(
            payment_id=f"pay_{uuid.uuid4().hex[:16]}",
            organization_id=invoice.organization_id,
            invoice_id=invoice.invoice_id,
            amount=invoice.amount_due,
            currency=invoice.currency,
            status=PaymentStatus.PENDING,
            payment_method_id=organization.default_payment_method_id,
            provider_customer_id=organization.stripe_customer_id,
            attempted_at=datetime.now(timezone.utc),
            metadata={"invoice_number": invoice.invoice_number},
        )
        async with self.repository.transaction() as conn:
            created = await self.repository.create_payment(payment, conn=conn)
            await self._audit(
                "payment", created.payment_id, "payment.created",
                {"status": {"from": None, "to": PaymentStatus.PENDING.value},
                 "invoice_id": invoice.invoice_id, "amount": str(created.amount)},
                actor_id=actor_id, conn=conn,
            )
        return created

    async def _apply_success(
        self,
        payment: Payment,
        provider_payment_id: Optional[str],
        actor_id: Optional[str] = None,
    ) -> Optional[Payment]:
        """pending -> succeeded, and the invoice -> paid, in one transaction. None if already moved."""
        now = datetime.now(timezone.utc)
        updates: Dict[str, Any] = {"succeeded_at": now}
        if provider_payment_id:
            updates["provider_payment_id"] = provider_payment_id

        paid_invoice = None
        async with self.repository.transaction() as conn:
            updated = await self.repository.transition_payment(
                payment.payment_id, PaymentStatus.PENDING, PaymentStatus.SUCCEEDED, updates, conn=conn
            )
            if updated is None:
                logger.info(f"Payment {payment.payment_id} already settled, success not reapplied")
                return None

            await self._audit(
                "payment", updated.payment_id, "payment.succeeded",
                {"status": {"from": PaymentStatus.PENDING.value, "to": PaymentStatus.SUCCEEDED.value},
                 "provider_payment_id": updated.provider_payment_id},
                actor_id=actor_id, conn=conn,
            )

            if updated.invoice_id:
                invoice = await self.invoice_repository.get_invoice(updated.invoice_id, conn=conn)
                if invoice:
                    paid_invoice = await self.invoice_repository.update_invoice_status(
                        invoice.invoice_id,
                        _PAYABLE_STATUSES,
                        InvoiceStatus.PAID,
                        updates={
                            "amount_paid": invoice.amount_paid + updated.amount,
                            "amount_due": max(ZERO, invoice.amount_due - updated.amount),
                            "paid_at": now,
                        },
                        conn=conn,
                    )
                    if paid_invoice is None:
                        logger.warning(
                            f"⚠️ Invoice {invoice.invoice_number} was {invoice.status.value} when "
                            f"payment {updated.payment_id} succeeded"
                        )
                    else:
                        await self._audit(
                            "invoice", invoice.invoice_id, "invoice.paid",
                            {"status": {"from": invoice.status.value, "to": InvoiceStatus.PAID.value},
                             "payment_id": updated.payment_id, "amount_paid": str(updated.amount)},
                            actor_id=actor_id, conn=conn,
                        )

        logger.info(f"✅ Payment {updated.payment_id} succeeded: {updated.amount} {updated.currency}")

        await publish_payment_succeeded(self.event_bus, updated)
        if paid_invoice:
            await publish_invoice_paid(self.event_bus, paid_invoice, payment_id=updated.payment_id)
        await self._notify(
            TEMPLATE_PAYMENT_SUCCEEDED,
            updated.organization_id,
            {
                "payment_id": updated.payment_id,
                "invoice_id": updated.invoice_id,
                "amount": str(updated.amount),
                "currency": updated.currency,
            },
        )
        return updated

    async def _apply_failure(
        self,
        payment: Payment,
        provider_payment_id: Optional[str],
        failure_code: Optional[str],
        failure_message: Optional[str],
        actor_id: Optional[str] = None,
    ) -> Optional[Payment]:
        """pending -> failed. None if already moved."""
        updates: Dict[str, Any] = {
            "failure_code": failure_code,
            "failure_message": failure_message,
            "failed_at": datetime.now(timezone.utc),
        }
        if provider_payment_id:
            updates["provider_payment_id"] = provider_payment_id

        async with self.repository.transaction() as conn:
            updated = await self.repository.transition_payment(
                payment.payment_id, PaymentStatus.PENDING, PaymentStatus.FAILED, updates, conn=conn
            )
            if updated is None:
                logger.info(f"Payment {payment.payment_id} already settled, failure not reapplied")
                return None
            await self._audit(
                "payment", updated.payment_id, "payment.failed",
                {"status": {"from": PaymentStatus.PENDING.value, "to": PaymentStatus.FAILED.value},
                 "failure_code": failure_code, "failure_message": failure_message},
                actor_id=actor_id, conn=conn,
            )

        logger.warning(f"⚠️ Payment {updated.payment_id} failed: {failure_code} {failure_message}")

        await publish_payment_failed(self.event_bus, updated)
        await self._notify(
            TEMPLATE_PAYMENT_FAILED,
            updated.organization_id,
            {
                "payment_id": updated.payment_id,
                "invoice_id": updated.invoice_id,
                "amount": str(updated.amount),
                "currency": updated.currency,
                "failure_code": failure_code,
                "failure_message": failure_message,
            },
            priority="high",
        )
        return updated

    async def _apply_refund(
        self,
        payment: Payment,
        refunded_amount: Decimal,
        reason: Optional[str] = None,
        actor_id: Optional[str] = None,
    ) -> Optional[Payment]:
        """succeeded -> refunded. None if already moved."""
        async with self.repository.transaction() as conn:
            updated = await self.repository.transition_payment(
                payment.payment_id,
                PaymentStatus.SUCCEEDED,
                PaymentStatus.REFUNDED,
                {"refunded_amount": refunded_amount, "refunded_at": datetime.now(timezone.utc)},
                conn=conn,
            )
            if updated is None:
                return None
            await self._audit(
                "payment", updated.payment_id, "payment.refunded",
                {"status": {"from": PaymentStatus.SUCCEEDED.value, "to": PaymentStatus.REFUNDED.value},
                 "refunded_amount": str(refunded_amount), "reason": reason},
                actor_id=actor_id, conn=conn,
            )

        logger.info(f"✅ Payment {updated.payment_id} refunded: {refunded_amount} {updated.currency}")
        await publish_payment_refunded(self.event_bus, updated, reason=reason)
        return updated

    # ====================
    # Helpers
    # ====================

    async def _find_payment(self, provider_payment_id: Optional[str], metadata: Dict[str, Any]) -> Optional[Payment]:
        if provider_payment_id:
            payment = await self.repository.get_payment_by_provider_id(provider_payment_id)
            if payment:
                return payment
        # The charge may have failed before the processor id was recorded
        local_id = metadata.get("payment_id")
        if local_id:
            return await self.repository.get_payment(local_id)
        return None

    async def _get_organization(self, organization_id: str) -> Organization:
        organization = await self.invoice_repository.get_organization(organization_id)
        if not organization:
            raise OrganizationNotFoundError(f"Organization not found: {organization_id}")
        return organization

    async def _reload(self, payment_id: str) -> Payment:
        return await self.get_payment(payment_id)

    def _duplicate(self, event_type: str, payment: Payment) -> NotificationResult:
        logger.info(f"Duplicate {event_type} for payment {payment.payment_id} ({payment.status.value}), no-op")
        return NotificationResult(
            event_type=event_type, outcome=NotificationOutcome.DUPLICATE,
            payment_id=payment.payment_id, status=payment.status,
        )

    def _ignored(self, event_type: str, payment: Payment) -> NotificationResult:
        logger.warning(
            f"⚠️ {event_type} does not apply to payment {payment.payment_id} in {payment.status.value}, acknowledged"
        )
        return NotificationResult(
            event_type=event_type, outcome=NotificationOutcome.IGNORED,
            payment_id=payment.payment_id, status=payment.status,
            message=f"Payment is {payment.status.value}",
        )

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
            entity_type, entity_id, event_type, event_data,
            actor_id=actor_id, actor_type="user" if actor_id else "system", conn=conn,
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


__all__ = [
    "PaymentService",
    "PAYMENT_SUCCEEDED_EVENT",
    "PAYMENT_FAILED_EVENT",
    "CHARGE_REFUNDED_EVENT",
]
