"""
Payment Service - Component Test Configuration

Payments and invoices live in the same in-memory store: both repositories
append to one transaction log, so a rollback undoes writes on either side.
"""
from decimal import Decimal

import pytest
import pytest_asyncio

from core.config import BillingConfig
from tests.contracts.billing import BillingTestDataFactory

from .mocks import (
    MockAuditRepository,
    MockBillingRepository,
    MockNotificationClient,
    MockPaymentProcessor,
    MockPaymentRepository,
)


@pytest.fixture
def mock_invoice_repository():
    return MockBillingRepository()


@pytest.fixture
def mock_payment_repository(mock_invoice_repository):
    return MockPaymentRepository(transactions=mock_invoice_repository.transactions)


@pytest.fixture
def mock_processor():
    return MockPaymentProcessor()


@pytest.fixture
def mock_audit_repository():
    return MockAuditRepository()


@pytest.fixture
def mock_notification_client():
    return MockNotificationClient()


@pytest.fixture
def billing_config():
    return BillingConfig(tax_rate=Decimal("0.10"))


@pytest.fixture
def open_invoice(mock_invoice_repository):
    """An open 110.00 invoice for an organization with a card on file"""
    organization = BillingTestDataFactory.make_organization()
    invoice = BillingTestDataFactory.make_invoice(organization_id=organization.organization_id)
    mock_invoice_repository.organizations[organization.organization_id] = organization
    mock_invoice_repository.add_invoice(invoice)
    return organization, invoice


@pytest_asyncio.fixture
async def payment_service(
    mock_payment_repository,
    mock_invoice_repository,
    mock_processor,
    mock_event_bus,
    mock_notification_client,
    mock_audit_repository,
    billing_config,
):
    """Create PaymentService with mocked dependencies"""
    from microservices.payment_service.payment_service import PaymentService

    return PaymentService(
        repository=mock_payment_repository,
        invoice_repository=mock_invoice_repository,
        processor=mock_processor,
        config=billing_config,
        event_bus=mock_event_bus,
        notification_client=mock_notification_client,
        audit_repository=mock_audit_repository,
    )
