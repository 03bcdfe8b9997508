"""
Billing Repository Golden Tests

🔒 GOLDEN: SQL shape, parameter order and error mapping of BillingRepository
against a mocked AsyncPostgresClient.
"""
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import asyncpg
import pytest

from microservices.billing_service.billing_repository import (
    INVOICE_NUMBER_CONSTRAINT,
    INVOICE_PERIOD_CONSTRAINT,
    BillingRepository,
)
from microservices.billing_service.models import CreditStatus, InvoiceStatus, LineItemType
from microservices.billing_service.protocols import (
    DependencyUnavailable,
    InvoiceAlreadyExistsError,
    InvoiceNumberConflictError,
)
from tests.contracts.billing import PERIOD_END, PERIOD_START, BillingTestDataFactory as F

pytestmark = [pytest.mark.component, pytest.mark.golden, pytest.mark.asyncio]


@pytest.fixture
def repository(mock_db):
    return BillingRepository(mock_db)


def invoice_row(**overrides):
    now = datetime.now(timezone.utc)
    row = {
        "invoice_id": "inv_1",
        "invoice_number": "INV-2025-000001",
        "organization_id": "org_1",
        "subscription_id": "sub_1",
        "period_start": PERIOD_START,
        "period_end": PERIOD_END,
        "subtotal": Decimal("100.00"),
        "credits_applied": Decimal("0.00"),
        "tax_amount": Decimal("10.00"),
        "total_amount": Decimal("110.00"),
        "amount_due": Decimal("110.00"),
        "amount_paid": Decimal("0.00"),
        "currency": "USD",
        "status": "open",
        "invoice_date": now,
        "due_date": now + timedelta(days=30),
        "paid_at": None,
        "voided_at": None,
        "metadata": '{"plan_id": "plan_1"}',
        "created_at": now,
        "updated_at": now,
    }
    row.update(overrides)
    return row


def credit_row(**overrides):
    row = {
        "credit_id": "cred_1",
        "organization_id": "org_1",
        "amount": Decimal("50.00"),
        "remaining_amount": Decimal("20.00"),
        "currency": "USD",
        "reason": "promotion",
        "valid_from": PERIOD_START,
        "valid_until": None,
        "status": "active",
    }
    row.update(overrides)
    return row


def unique_violation(constraint: str) -> asyncpg.exceptions.UniqueViolationError:
    error = asyncpg.exceptions.UniqueViolationError("duplicate key value violates unique constraint")
    error.constraint_name = constraint
    return error


class TestBillingRepositoryReadsGolden:

    async def test_get_organization_maps_row(self, repository, mock_db):
        mock_db.set_row_response({
            "organization_id": "org_1",
            "name": "Acme",
            "billing_email": "billing@acme.example",
            "stripe_customer_id": "cus_1",
            "auto_pay": True,
            "status": "active",
        })

        org = await repository.get_organization("org_1")

        assert org.stripe_customer_id == "cus_1"
        assert org.auto_pay is True
        _, query, params, _ = mock_db.assert_query_executed("FROM billing.organizations", "query_row")
        assert params == ["org_1"]

    async def test_missing_row_returns_none(self, repository, mock_db):
        mock_db.set_row_response(None)
        assert await repository.get_subscription("sub_missing") is None

    async def test_active_credits_query_locks_when_asked(self, repository, mock_db):
        mock_db.set_rows_response([credit_row()])
        as_of = PERIOD_END

        credits = await repository.get_active_credits("org_1", as_of, conn="txn", for_update=True)

        assert credits[0].remaining_amount == Decimal("20.00")
        _, query, params, conn = mock_db.get_last_query()
        assert "FOR UPDATE" in query
        assert "ORDER BY valid_from ASC, credit_id ASC" in query
        assert params == ["org_1", "active", as_of]
        assert conn == "txn"

    async def test_active_credits_store_down_maps_to_dependency_unavailable(self, repository, mock_db):
        mock_db.set_error(OSError("connection reset"))

        with pytest.raises(DependencyUnavailable):
            await repository.get_active_credits("org_1", PERIOD_END)

    async def test_get_invoice_includes_line_items(self, repository, mock_db):
        mock_db.set_row_response(invoice_row())
        mock_db.set_rows_response([{
            "line_item_id": "li_1",
            "invoice_id": "inv_1",
            "description": "Pro Plan (Mar 2025)",
            "quantity": Decimal("1"),
            "unit_price": Decimal("99.00"),
            "amount": Decimal("99.00"),
            "item_type": "subscription_base",
            "metric_type": None,
            "metadata": None,
        }])

        invoice = await repository.get_invoice("inv_1")

        assert invoice.status == InvoiceStatus.OPEN
        assert invoice.metadata == {"plan_id": "plan_1"}
        assert invoice.line_items[0].item_type == LineItemType.SUBSCRIPTION_BASE

    async def test_count_uses_prefix_pattern(self, repository, mock_db):
        mock_db.set_row_response({"count": 7})

        assert await repository.count_invoices_with_prefix("INV-2025-") == 7
        assert mock_db.get_last_query()[2] == ["INV-2025-%"]

    async def test_list_invoices_paging_params(self, repository, mock_db):
        mock_db.set_rows_response([invoice_row()])

        await repository.list_invoices("org_1", status=InvoiceStatus.OPEN, limit=10, offset=20)

        _, query, params, _ = mock_db.get_last_query()
        assert "LIMIT $3 OFFSET $4" in query
        assert params == ["org_1", "open", 10, 20]


class TestBillingRepositoryWritesGolden:

    async def test_create_invoice_period_conflict(self, repository, mock_db):
        mock_db.set_error(unique_violation(INVOICE_PERIOD_CONSTRAINT))

        with pytest.raises(InvoiceAlreadyExistsError):
            await repository.create_invoice(F.make_invoice())

    async def test_create_invoice_number_conflict(self, repository, mock_db):
        invoice = F.make_invoice()
        mock_db.set_error(unique_violation(INVOICE_NUMBER_CONSTRAINT))

        with pytest.raises(InvoiceNumberConflictError) as exc_info:
            await repository.create_invoice(invoice)

        assert exc_info.value.invoice_number == invoice.invoice_number

    async def test_deduct_credit_is_conditional(self, repository, mock_db):
        mock_db.set_row_response(None)

        result = await repository.deduct_credit("cred_1", Decimal("30.00"), conn="txn")

        assert result is None
        _, query, params, conn = mock_db.get_last_query()
        assert "remaining_amount >= $1" in query
        assert params[0] == Decimal("30.00")
        assert params[1] == CreditStatus.EXHAUSTED.value
        assert params[3:] == ["cred_1", CreditStatus.ACTIVE.value]
        assert conn == "txn"

    async def test_update_invoice_status_guards_expected_statuses(self, repository, mock_db):
        paid_at = datetime.now(timezone.utc)
        mock_db.set_row_response(invoice_row(status="paid", amount_due=Decimal("0"), paid_at=paid_at))

        updated = await repository.update_invoice_status(
            "inv_1",
            [InvoiceStatus.OPEN, InvoiceStatus.UNCOLLECTIBLE],
            InvoiceStatus.PAID,
            {"amount_paid": Decimal("110.00"), "amount_due": Decimal("0"), "paid_at": paid_at},
        )

        assert updated.status == InvoiceStatus.PAID
        _, query, params, _ = mock_db.get_last_query()
        assert "status = ANY($7::text[])" in query
        assert params[0] == "paid"
        assert params[2:] == [Decimal("110.00"), Decimal("0"), paid_at, "inv_1", ["open", "uncollectible"]]

    async def test_update_invoice_status_lost_race_returns_none(self, repository, mock_db):
        mock_db.set_row_response(None)

        assert await repository.update_invoice_status("inv_1", [InvoiceStatus.OPEN], InvoiceStatus.VOID) is None

    async def test_update_invoice_status_rejects_unknown_fields(self, repository):
        with pytest.raises(ValueError):
            await repository.update_invoice_status(
                "inv_1", [InvoiceStatus.OPEN], InvoiceStatus.PAID, {"total_amount": Decimal("1")}
            )

    async def test_transaction_connection_loss_is_dependency_unavailable(self, repository, mock_db):
        with pytest.raises(DependencyUnavailable):
            async with repository.transaction():
                raise OSError("server closed the connection")

        assert mock_db.transactions[-1]["rolled_back"]
