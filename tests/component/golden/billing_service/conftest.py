"""
Billing Service - Component Test Configuration

Service-specific fixtures with mocked dependencies.
"""
from decimal import Decimal

import pytest
import pytest_asyncio

from core.config import BillingConfig
from microservices.billing_service.models import MetricType
from tests.contracts.billing import BillingTestDataFactory

from .mocks import (
    MockAuditRepository,
    MockBillingRepository,
    MockNotificationClient,
    MockUsageAggregator,
)


@pytest.fixture
def mock_billing_repository():
    """Provide MockBillingRepository"""
    return MockBillingRepository()


@pytest.fixture
def mock_usage_aggregator():
    """Provide MockUsageAggregator"""
    return MockUsageAggregator()


@pytest.fixture
def mock_audit_repository():
    """Provide MockAuditRepository"""
    return MockAuditRepository()


@pytest.fixture
def mock_notification_client():
    """Provide MockNotificationClient"""
    return MockNotificationClient()


@pytest.fixture
def billing_config():
    """10% tax so totals match the reference scenarios"""
    return BillingConfig(tax_rate=Decimal("0.10"))


@pytest.fixture
def billing_context(mock_billing_repository, mock_usage_aggregator):
    """
    Seed the Pro plan reference subscription with 1,200,000 API calls.

    Returns:
        (organization, plan, subscription)
    """
    organization = BillingTestDataFactory.make_organization()
    plan = BillingTestDataFactory.make_plan()
    subscription = BillingTestDataFactory.make_subscription(
        plan, organization_id=organization.organization_id
    )
    mock_billing_repository.add_context(organization, plan, subscription)
    mock_usage_aggregator.set_usage(organization.organization_id, {MetricType.API_CALLS: 1_200_000})
    return organization, plan, subscription


@pytest_asyncio.fixture
async def invoice_service(
    mock_billing_repository,
    mock_usage_aggregator,
    mock_event_bus,
    mock_notification_client,
    mock_audit_repository,
    billing_config,
):
    """Create InvoiceService with mocked dependencies"""
    from microservices.billing_service.invoice_service import InvoiceService

    return InvoiceService(
        repository=mock_billing_repository,
        usage_aggregator=mock_usage_aggregator,
        config=billing_config,
        event_bus=mock_event_bus,
        notification_client=mock_notification_client,
        audit_repository=mock_audit_repository,
    )


@pytest_asyncio.fixture
async def invoice_service_no_event_bus(
    mock_billing_repository,
    mock_usage_aggregator,
    billing_config,
):
    """InvoiceService without event bus or notifications"""
    from microservices.billing_service.invoice_service import InvoiceService

    return InvoiceService(
        repository=mock_billing_repository,
        usage_aggregator=mock_usage_aggregator,
        config=billing_config,
    )
