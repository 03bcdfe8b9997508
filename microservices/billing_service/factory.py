"""
Billing Service Factory

Factory for creating InvoiceService with real dependencies.
This is the ONLY module that imports concrete implementations.
"""

import logging
from typing import Optional

from core.config import BillingConfig, InfraConfig
from core.postgres_client import AsyncPostgresClient, get_postgres_client

from .audit_repository import AuditRepository
from .billing_repository import BillingRepository
from .clients import NotificationClient
from .invoice_service import InvoiceService
from .pricing_engine import PricingEngine
from .usage_repository import UsageRepository

logger = logging.getLogger(__name__)


def create_notification_client(config: BillingConfig) -> NotificationClient:
    return NotificationClient(
        base_url=config.notification_service_url,
        timeout=config.notification_timeout_seconds,
        retry_attempts=config.notification_retry_attempts,
        retry_delay_seconds=config.notification_retry_delay_seconds,
    )


async def create_invoice_service(
    config: Optional[BillingConfig] = None,
    infra_config: Optional[InfraConfig] = None,
    db: Optional[AsyncPostgresClient] = None,
    event_bus=None,
    notification_client=None,
) -> InvoiceService:
    """
    Create InvoiceService with all real dependencies

    Args:
        config: Billing config (loaded from env if not provided)
        infra_config: Infrastructure config (loaded from env if not provided)
        db: Optional shared PostgreSQL client
        event_bus: Optional event bus for event publishing
        notification_client: Optional notification client (built from config if not provided)

    Returns:
        Fully initialized InvoiceService instance
    """
    if config is None:
        config = BillingConfig.from_env()
    config.validate()

    if db is None:
        db = await get_postgres_client("billing_service", config=infra_config)

    if notification_client is None:
        notification_client = create_notification_client(config)

    service = InvoiceService(
        repository=BillingRepository(db),
        usage_aggregator=UsageRepository(db, timeout_seconds=config.usage_query_timeout_seconds),
        pricing_engine=PricingEngine(config),
        config=config,
        event_bus=event_bus,
        notification_client=notification_client,
        audit_repository=AuditRepository(db),
    )
    logger.info("✅ Invoice service created")
    return service


__all__ = ["create_invoice_service", "create_notification_client"]
