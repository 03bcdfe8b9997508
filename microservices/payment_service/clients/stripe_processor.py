"""
Stripe Payment Processor

Off-session charges, refunds, customers and webhook verification against
Stripe. The stripe library is synchronous, so calls run in a worker thread
and are bounded by ``timeout_seconds``.
"""

import asyncio
import json
import logging
from decimal import Decimal
from typing import Any, Callable, Dict, Optional

import stripe

from core.money import from_minor_units, to_minor_units

from ..models import ProcessorChargeResult, ProcessorOutcome, ProcessorRefundResult
from ..protocols import DependencyUnavailable, ValidationError

logger = logging.getLogger(__name__)

# PaymentIntent statuses that leave the payment pending for the webhook path
_PENDING_STATUSES = {"requires_action", "requires_confirmation", "requires_capture", "processing"}

# Stripe only accepts these refund reasons
_STRIPE_REFUND_REASONS = {"duplicate", "fraudulent", "requested_by_customer"}


class StripePaymentProcessor:
    """PaymentProcessorProtocol implementation backed by Stripe"""

    def __init__(
        self,
        secret_key: Optional[str],
        webhook_secret: Optional[str] = None,
        timeout_seconds: float = 30.0,
    ):
        if secret_key:
            stripe.api_key = secret_key
            mode = "test" if secret_key.startswith("sk_test_") else "live"
            logger.info(f"✅ Stripe configured ({mode} mode)")
        else:
            logger.warning("⚠️ STRIPE_SECRET_KEY not set, processor calls will fail")
        self.webhook_secret = webhook_secret
        self.timeout_seconds = timeout_seconds

    async def _call(self, operation: str, fn: Callable[..., Any], *args, **kwargs) -> Any:
        try:
            return await asyncio.wait_for(asyncio.to_thread(fn, *args, **kwargs), timeout=self.timeout_seconds)
        except asyncio.TimeoutError as e:
            logger.error(f"❌ Stripe {operation} timed out after {self.timeout_seconds}s")
            raise DependencyUnavailable(f"Stripe {operation} timed out", dependency="stripe") from e
        except stripe.CardError:
            raise
        except stripe.InvalidRequestError as e:
            logger.error(f"❌ Stripe {operation} rejected: {e.user_message or e}")
            raise ValidationError(f"Stripe rejected {operation}: {e.user_message or e}") from e
        except stripe.StripeError as e:
            logger.error(f"❌ Stripe {operation} failed: {e}")
            raise DependencyUnavailable(f"Stripe {operation} failed: {e}", dependency="stripe") from e

    async def charge_off_session(
        self,
        customer_ref: str,
        method_ref: str,
        amount: Decimal,
        currency: str,
        idempotency_key: str,
        metadata: Optional[Dict[str, str]] = None,
    ) -> ProcessorChargeResult:
        try:
            intent = await self._call(
                "charge",
                stripe.PaymentIntent.create,
                amount=to_minor_units(amount, currency),
                currency=currency.lower(),
                customer=customer_ref,
                payment_method=method_ref,
                off_session=True,
                confirm=True,
                metadata=metadata or {},
                idempotency_key=idempotency_key,
            )
        except stripe.CardError as e:
            intent_id = None
            error = getattr(e, "error", None)
            if error is not None and getattr(error, "payment_intent", None):
                intent_id = error.payment_intent.get("id")
            logger.warning(f"⚠️ Stripe declined charge {idempotency_key}: {e.code}")
            return ProcessorChargeResult(
                outcome=ProcessorOutcome.FAILED,
                provider_payment_id=intent_id,
                processor_status="declined",
                failure_code=getattr(error, "decline_code", None) or e.code or "card_declined",
                failure_message=e.user_message or str(e),
            )

        return self._intent_to_result(intent)

    def _intent_to_result(self, intent: Any) -> ProcessorChargeResult:
        status = intent["status"]
        if status == "succeeded":
            return ProcessorChargeResult(
                outcome=ProcessorOutcome.SUCCEEDED,
                provider_payment_id=intent["id"],
                processor_status=status,
            )
        if status in _PENDING_STATUSES:
            return ProcessorChargeResult(
                outcome=ProcessorOutcome.REQUIRES_ACTION,
                provider_payment_id=intent["id"],
                processor_status=status,
            )

        # requires_payment_method after confirm, or canceled
        last_error = intent.get("last_payment_error") or {}
        return ProcessorChargeResult(
            outcome=ProcessorOutcome.FAILED,
            provider_payment_id=intent["id"],
            processor_status=status,
            failure_code=last_error.get("decline_code") or last_error.get("code") or status,
            failure_message=last_error.get("message") or f"Payment {status}",
        )

    async def refund(
        self,
        provider_payment_id: str,
        amount: Decimal,
        currency: str,
        idempotency_key: str,
        reason: Optional[str] = None,
    ) -> ProcessorRefundResult:
        kwargs: Dict[str, Any] = {
            "payment_intent": provider_payment_id,
            "amount": to_minor_units(amount, currency),
            "idempotency_key": idempotency_key,
            "metadata": {"reason": reason} if reason else {},
        }
        if reason in _STRIPE_REFUND_REASONS:
            kwargs["reason"] = reason
        else:
            kwargs["reason"] = "requested_by_customer"

        refund = await self._call("refund", stripe.Refund.create, **kwargs)
        logger.info(f"Stripe refund {refund['id']} created for {provider_payment_id}")
        return ProcessorRefundResult(
            provider_refund_id=refund["id"],
            amount=from_minor_units(refund["amount"], currency),
            status=refund["status"],
        )

    async def create_customer(self, organization_id: str, email: Optional[str], name: str) -> str:
        customer = await self._call(
            "customer creation",
            stripe.Customer.create,
            name=name,
            email=email,
            metadata={"organization_id": organization_id},
            idempotency_key=f"customer-{organization_id}",
        )
        return customer["id"]

    async def attach_payment_method(self, customer_ref: str, method_ref: str, set_default: bool = True) -> None:
        await self._call("payment method attach", stripe.PaymentMethod.attach, method_ref, customer=customer_ref)
        if set_default:
            await self._call(
                "default payment method update",
                stripe.Customer.modify,
                customer_ref,
                invoice_settings={"default_payment_method": method_ref},
            )

    def construct_webhook_event(self, payload: bytes, signature: str) -> Dict[str, Any]:
        if not self.webhook_secret:
            raise ValidationError("Stripe webhook secret is not configured")
        try:
            stripe.Webhook.construct_event(payload, signature, self.webhook_secret)
        except stripe.SignatureVerificationError as e:
            logger.warning(f"⚠️ Rejected webhook with bad signature: {e}")
            raise ValidationError("Invalid webhook signature") from e
        except ValueError as e:
            raise ValidationError(f"Invalid webhook payload: {e}") from e
        return json.loads(payload)


__all__ = ["StripePaymentProcessor"]
