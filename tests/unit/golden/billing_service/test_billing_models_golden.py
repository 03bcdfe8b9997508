"""
Billing Models Golden Tests

🔒 GOLDEN: These tests document CURRENT behavior of billing models.
   DO NOT MODIFY unless behavior intentionally changes.

Usage:
    pytest tests/unit/golden -v
"""
from datetime import timedelta
from decimal import Decimal

import pytest
from pydantic import ValidationError

from microservices.billing_service.models import (
    INVOICE_STATUS_TRANSITIONS,
    CreditStatus,
    InvoiceStatus,
    LineItemType,
    MetricType,
    MarkInvoicePaidRequest,
    Organization,
    UsageAggregation,
    can_transition_invoice,
)
from tests.contracts.billing import PERIOD_END, PERIOD_START, BillingTestDataFactory as F

pytestmark = [pytest.mark.unit, pytest.mark.golden]


# =============================================================================
# Enum Tests
# =============================================================================

class TestInvoiceStatusEnum:
    """Characterization: InvoiceStatus enum current behavior"""

    def test_all_invoice_statuses_defined(self):
        """CHAR: All expected invoice statuses are defined"""
        assert {s.value for s in InvoiceStatus} == {"draft", "open", "paid", "void", "uncollectible"}


class TestMetricTypeEnum:

    def test_all_metrics_defined(self):
        """CHAR: Metric names match the usage store's metric_type column"""
        assert {m.value for m in MetricType} == {
            "api_calls", "storage_gb", "transfer_gb_in", "transfer_gb_out",
            "query_seconds", "graphql_operations", "kafka_events", "adapters_active",
        }


class TestLineItemTypeEnum:

    def test_all_line_item_types_defined(self):
        assert {t.value for t in LineItemType} == {
            "subscription_base", "usage_api_calls", "usage_storage", "usage_transfer",
            "addon_seats", "credit", "tax",
        }


# =============================================================================
# Invoice state machine
# =============================================================================

class TestInvoiceTransitions:
    """CHAR: paid and void are terminal"""

    @pytest.mark.parametrize("current,target", [
        (InvoiceStatus.DRAFT, InvoiceStatus.OPEN),
        (InvoiceStatus.DRAFT, InvoiceStatus.VOID),
        (InvoiceStatus.OPEN, InvoiceStatus.PAID),
        (InvoiceStatus.OPEN, InvoiceStatus.VOID),
        (InvoiceStatus.OPEN, InvoiceStatus.UNCOLLECTIBLE),
        (InvoiceStatus.UNCOLLECTIBLE, InvoiceStatus.PAID),
        (InvoiceStatus.UNCOLLECTIBLE, InvoiceStatus.VOID),
    ])
    def test_allowed(self, current, target):
        assert can_transition_invoice(current, target)

    @pytest.mark.parametrize("current,target", [
        (InvoiceStatus.PAID, InvoiceStatus.VOID),
        (InvoiceStatus.PAID, InvoiceStatus.OPEN),
        (InvoiceStatus.VOID, InvoiceStatus.OPEN),
        (InvoiceStatus.DRAFT, InvoiceStatus.PAID),
        (InvoiceStatus.OPEN, InvoiceStatus.DRAFT),
    ])
    def test_forbidden(self, current, target):
        assert not can_transition_invoice(current, target)

    def test_terminal_statuses(self):
        assert INVOICE_STATUS_TRANSITIONS[InvoiceStatus.PAID] == set()
        assert INVOICE_STATUS_TRANSITIONS[InvoiceStatus.VOID] == set()


# =============================================================================
# Credit applicability
# =============================================================================

class TestCreditApplicability:

    def test_active_credit_inside_window(self):
        assert F.make_credit("10.00").is_applicable(PERIOD_END)

    def test_valid_until_is_inclusive(self):
        credit = F.make_credit("10.00", valid_until=PERIOD_END)
        assert credit.is_applicable(PERIOD_END)
        assert not credit.is_applicable(PERIOD_END + timedelta(seconds=1))

    def test_not_yet_valid(self):
        assert not F.make_credit("10.00", valid_from=PERIOD_END).is_applicable(PERIOD_START)

    def test_exhausted(self):
        assert not F.make_credit("0").is_applicable(PERIOD_END)
        assert not F.make_credit("5.00", status=CreditStatus.EXHAUSTED).is_applicable(PERIOD_END)


# =============================================================================
# Models
# =============================================================================

class TestModels:

    def test_usage_aggregation_missing_metric_is_zero(self):
        usage = UsageAggregation(organization_id="org_1", period_start=PERIOD_START, period_end=PERIOD_END)
        assert usage.get(MetricType.API_CALLS) == Decimal("0")

    def test_organization_billing_day_bounds(self):
        with pytest.raises(ValidationError):
            Organization(organization_id="org_1", name="Acme", billing_day_of_month=29)

    def test_organization_defaults(self):
        org = Organization(organization_id="org_1", name="Acme")
        assert org.currency == "USD"
        assert org.auto_pay is False

    def test_mark_paid_request_rejects_negative_amount(self):
        with pytest.raises(ValidationError):
            MarkInvoicePaidRequest(amount_paid=Decimal("-1"))

    def test_invoice_json_dump_keeps_decimal_precision(self):
        invoice = F.make_invoice(total="110.00")
        dumped = invoice.model_dump(mode="json")
        assert dumped["total_amount"] == "110.00"
        assert dumped["status"] == "open"
