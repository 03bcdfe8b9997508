"""
Payment Service Event Handlers

Handlers for events from billing_service
"""

import logging
from typing import Any, Dict

from pydantic import ValidationError as PayloadValidationError

from ..protocols import BillingServiceError, Conflict, PaymentDeclined
from .models import InvoiceCreatedNotice, PaymentSubscribedEventType

logger = logging.getLogger(__name__)


async def handle_invoice_created(event_data: Dict[str, Any], payment_service) -> None:
    """
    Handle billing.invoice.created

    Charge the invoice automatically when auto-payment is enabled and the
    organization opted in. Failures are logged, never raised into the bus.
    """
    try:
        notice = InvoiceCreatedNotice.model_validate(event_data)
    except PayloadValidationError as e:
        logger.warning(f"billing.invoice.created event missing required fields: {e}")
        return

    if not payment_service.config.enable_auto_payment:
        logger.debug(f"Auto-payment disabled, not charging invoice {notice.invoice_id}")
        return
    if not notice.auto_pay:
        return
    if notice.status != "open" or notice.amount_due <= 0:
        logger.debug(f"Invoice {notice.invoice_id} is {notice.status}, nothing to auto-charge")
        return

    try:
        payment = await payment_service.charge_invoice(notice.invoice_id)
        logger.info(f"Auto-payment {payment.payment_id} for invoice {notice.invoice_id}: {payment.status.value}")
    except PaymentDeclined as e:
        logger.warning(f"⚠️ Auto-payment declined for invoice {notice.invoice_id}: {e.failure_code}")
    except Conflict as e:
        logger.info(f"Auto-payment skipped for invoice {notice.invoice_id}: {e}")
    except BillingServiceError as e:
        logger.error(f"❌ Auto-payment failed for invoice {notice.invoice_id}: {e}")
    except Exception as e:
        logger.error(f"❌ Error handling billing.invoice.created event: {e}", exc_info=True)


def get_event_handlers(payment_service) -> Dict[str, callable]:
    """
    Return a mapping of event patterns to handler functions

    Args:
        payment_service: PaymentService instance

    Returns:
        Dict mapping event patterns to handler functions
    """
    return {
        PaymentSubscribedEventType.INVOICE_CREATED.value:
            lambda event: handle_invoice_created(event.data, payment_service),
    }
