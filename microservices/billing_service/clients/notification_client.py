"""
Notification Service Client for Billing

Sends templated billing notifications (invoice generated, payment succeeded,
payment failed, invoice overdue). Transient failures are retried with
exponential backoff; a notification that still cannot be delivered is logged
and reported as False, never raised into the billing path.
"""

import logging
from typing import Any, Dict, List, Optional

import httpx
from tenacity import (
    AsyncRetrying,
    RetryError,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from core.service_client_base import BaseServiceClient

logger = logging.getLogger(__name__)

TEMPLATE_INVOICE_GENERATED = "billing_invoice_generated"
TEMPLATE_PAYMENT_SUCCEEDED = "billing_payment_succeeded"
TEMPLATE_PAYMENT_FAILED = "billing_payment_failed"
TEMPLATE_INVOICE_OVERDUE = "billing_invoice_overdue"


def _is_transient(exc: BaseException) -> bool:
    """Network errors and 5xx responses are worth another attempt"""
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code >= 500
    return isinstance(exc, httpx.TransportError)


class NotificationClient(BaseServiceClient):
    """Notification Service HTTP client"""

    service_name = "notification_service"
    default_port = 8206

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: float = 30.0,
        retry_attempts: int = 3,
        retry_delay_seconds: float = 5.0,
    ):
        super().__init__(base_url=base_url, timeout=timeout)
        self.retry_attempts = max(1, retry_attempts)
        self.retry_delay_seconds = retry_delay_seconds

    async def send_notification(
        self,
        template_code: str,
        recipient_id: str,
        data: Dict[str, Any],
        channels: Optional[List[str]] = None,
        priority: str = "normal",
    ) -> bool:
        """
        Send a templated notification

        Args:
            template_code: Template to render (e.g. billing_invoice_generated)
            recipient_id: Organization or user to notify
            data: Template variables
            channels: Delivery channels (email, push, in_app, sms)
            priority: Priority (low, normal, high, urgent)

        Returns:
            True if the notification service accepted it
        """
        payload = {
            "template_code": template_code,
            "recipient_id": recipient_id,
            "priority": priority,
            "data": data,
        }
        if channels:
            payload["channels"] = channels

        try:
            async for attempt in AsyncRetrying(
                retry=retry_if_exception(_is_transient),
                stop=stop_after_attempt(self.retry_attempts),
                wait=wait_exponential(multiplier=self.retry_delay_seconds, min=self.retry_delay_seconds),
            ):
                with attempt:
                    response = await self.post("/api/v1/notifications/send", json=payload)
                    response.raise_for_status()
            logger.info(f"✅ Notification {template_code} sent to {recipient_id}")
            return True

        except RetryError as e:
            logger.error(
                f"❌ Notification {template_code} to {recipient_id} failed after "
                f"{self.retry_attempts} attempts: {e.last_attempt.exception()}"
            )
            return False
        except httpx.HTTPStatusError as e:
            logger.error(
                f"❌ Notification {template_code} to {recipient_id} rejected: {e.response.status_code}"
            )
            return False
        except httpx.HTTPError as e:
            logger.error(f"❌ Notification {template_code} to {recipient_id} failed: {e}")
            return False


__all__ = [
    "NotificationClient",
    "TEMPLATE_INVOICE_GENERATED",
    "TEMPLATE_PAYMENT_SUCCEEDED",
    "TEMPLATE_PAYMENT_FAILED",
    "TEMPLATE_INVOICE_OVERDUE",
]
