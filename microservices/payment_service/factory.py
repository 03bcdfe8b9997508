"""
Payment Service Factory

Factory for creating PaymentService with real dependencies.
This is the ONLY module that imports concrete implementations.
"""

import logging
from typing import Optional

from core.config import BillingConfig, InfraConfig
from core.postgres_client import AsyncPostgresClient, get_postgres_client

from microservices.billing_service.audit_repository import AuditRepository
from microservices.billing_service.billing_repository import BillingRepository
from microservices.billing_service.factory import create_notification_client

from .clients import StripePaymentProcessor
from .payment_repository import PaymentRepository
from .payment_service import PaymentService

logger = logging.getLogger(__name__)


async def create_payment_service(
    config: Optional[BillingConfig] = None,
    infra_config: Optional[InfraConfig] = None,
    db: Optional[AsyncPostgresClient] = None,
    event_bus=None,
    notification_client=None,
    processor=None,
) -> PaymentService:
    """
    Create PaymentService with all real dependencies

    Payments, invoices and the audit trail share one database client so a
    payment settlement and the invoice it pays commit together.

    Args:
        config: Billing config (loaded from env if not provided)
        infra_config: Infrastructure config (loaded from env if not provided)
        db: Optional shared PostgreSQL client
        event_bus: Optional event bus for event publishing
        notification_client: Optional notification client (built from config if not provided)
        processor: Optional payment processor (Stripe from config if not provided)

    Returns:
        Fully initialized PaymentService instance
    """
    if config is None:
        config = BillingConfig.from_env()
    config.validate()

    if db is None:
        db = await get_postgres_client("payment_service", config=infra_config)

    if processor is None:
        if not config.stripe_secret_key:
            logger.warning("⚠️ STRIPE_SECRET_KEY not set, processor calls will fail")
        processor = StripePaymentProcessor(
            secret_key=config.stripe_secret_key,
            webhook_secret=config.stripe_webhook_secret,
            timeout_seconds=config.payment_processor_timeout_seconds,
        )

    if notification_client is None:
        notification_client = create_notification_client(config)

    service = PaymentService(
        repository=PaymentRepository(db),
        invoice_repository=BillingRepository(db),
        processor=processor,
        config=config,
        event_bus=event_bus,
        notification_client=notification_client,
        audit_repository=AuditRepository(db),
    )
    logger.info("✅ Payment service created")
    return service


__all__ = ["create_payment_service"]
