"""
Billing Service Data Repository

Data access layer - PostgreSQL (asyncpg)
"""

import json
import logging
import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, AsyncIterator, Dict, List, Optional

import asyncpg

from core.postgres_client import AsyncPostgresClient

from .models import (
    BillingCycle,
    Credit,
    CreditStatus,
    Invoice,
    InvoiceLineItem,
    InvoiceStatus,
    LineItemType,
    MetricType,
    Organization,
    OrganizationStatus,
    PricingTier,
    Subscription,
    SubscriptionPlan,
    SubscriptionStatus,
)
from .protocols import (
    DependencyUnavailable,
    InvoiceAlreadyExistsError,
    InvoiceNumberConflictError,
)

logger = logging.getLogger(__name__)

INVOICE_NUMBER_CONSTRAINT = "uq_invoices_invoice_number"
INVOICE_PERIOD_CONSTRAINT = "uq_invoices_subscription_period"


def _json(value: Any) -> Any:
    """jsonb columns come back as text unless a codec is registered"""
    if isinstance(value, str):
        return json.loads(value) if value else {}
    return value or {}


class BillingRepository:
    """Billing data repository - PostgreSQL (Async)"""

    def __init__(self, db: AsyncPostgresClient, schema: str = "billing"):
        self.db = db
        self.schema = schema
        self.organizations_table = "organizations"
        self.plans_table = "subscription_plans"
        self.subscriptions_table = "subscriptions"
        self.tiers_table = "pricing_tiers"
        self.credits_table = "credits"
        self.invoices_table = "invoices"
        self.line_items_table = "invoice_line_items"

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[asyncpg.Connection]:
        """Open a transaction; the yielded connection is passed back as ``conn``"""
        try:
            async with self.db.transaction() as conn:
                yield conn
        except (OSError, asyncpg.exceptions.InterfaceError, asyncpg.exceptions.ConnectionDoesNotExistError) as e:
            raise DependencyUnavailable(f"Database unavailable: {e}", dependency="postgres") from e

    # ====================
    # Organizations
    # ====================

    async def get_organization(self, organization_id: str, conn: Any = None) -> Optional[Organization]:
        query = f'''
            SELECT * FROM {self.schema}.{self.organizations_table}
            WHERE organization_id = $1
        '''
        async with self.db:
            row = await self.db.query_row(query, params=[organization_id], conn=conn)
        return self._row_to_organization(row) if row else None

    async def update_organization_payment_profile(
        self,
        organization_id: str,
        stripe_customer_id: Optional[str] = None,
        default_payment_method_id: Optional[str] = None,
        conn: Any = None,
    ) -> Optional[Organization]:
        query = f'''
            UPDATE {self.schema}.{self.organizations_table}
            SET stripe_customer_id = COALESCE($1, stripe_customer_id),
                default_payment_method_id = COALESCE($2, default_payment_method_id),
                updated_at = $3
            WHERE organization_id = $4
            RETURNING *
        '''
        params = [stripe_customer_id, default_payment_method_id, datetime.now(timezone.utc), organization_id]
        async with self.db:
            row = await self.db.query_row(query, params=params, conn=conn)
        return self._row_to_organization(row) if row else None

    # ====================
    # Plans and subscriptions
    # ====================

    async def get_subscription(self, subscription_id: str, conn: Any = None) -> Optional[Subscription]:
        query = f'''
            SELECT * FROM {self.schema}.{self.subscriptions_table}
            WHERE subscription_id = $1
        '''
        async with self.db:
            row = await self.db.query_row(query, params=[subscription_id], conn=conn)
        return self._row_to_subscription(row) if row else None

    async def get_plan(self, plan_id: str, conn: Any = None) -> Optional[SubscriptionPlan]:
        query = f'''
            SELECT * FROM {self.schema}.{self.plans_table}
            WHERE plan_id = $1
        '''
        async with self.db:
            row = await self.db.query_row(query, params=[plan_id], conn=conn)
        return self._row_to_plan(row) if row else None

    async def get_pricing_tiers(self, plan_id: str, conn: Any = None) -> List[PricingTier]:
        query = f'''
            SELECT * FROM {self.schema}.{self.tiers_table}
            WHERE plan_id = $1
            ORDER BY metric_type, tier_start ASC
        '''
        async with self.db:
            rows = await self.db.query(query, params=[plan_id], conn=conn)
        return [self._row_to_tier(row) for row in rows]

    # ====================
    # Credits
    # ====================

    async def get_active_credits(
        self,
        organization_id: str,
        as_of: datetime,
        conn: Any = None,
        for_update: bool = False,
    ) -> List[Credit]:
        lock = " FOR UPDATE" if for_update else ""
        query = f'''
            SELECT * FROM {self.schema}.{self.credits_table}
            WHERE organization_id = $1
              AND status = $2
              AND valid_from <= $3
              AND (valid_until IS NULL OR valid_until >= $3)
              AND remaining_amount > 0
            ORDER BY valid_from ASC, credit_id ASC{lock}
        '''
        try:
            async with self.db:
                rows = await self.db.query(
                    query, params=[organization_id, CreditStatus.ACTIVE.value, as_of], conn=conn
                )
        except (OSError, asyncpg.exceptions.InterfaceError, asyncpg.exceptions.QueryCanceledError) as e:
            logger.error(f"❌ Credit lookup failed for {organization_id}: {e}")
            raise DependencyUnavailable(f"Credit store unavailable: {e}", dependency="postgres") from e
        return [self._row_to_credit(row) for row in rows]

    async def deduct_credit(self, credit_id: str, amount: Decimal, conn: Any = None) -> Optional[Credit]:
        query = f'''
            UPDATE {self.schema}.{self.credits_table}
            SET remaining_amount = remaining_amount - $1,
                status = CASE WHEN remaining_amount - $1 = 0 THEN $2 ELSE status END,
                updated_at = $3
            WHERE credit_id = $4
              AND status = $5
              AND remaining_amount >= $1
            RETURNING *
        '''
        params = [
            amount,
            CreditStatus.EXHAUSTED.value,
            datetime.now(timezone.utc),
            credit_id,
            CreditStatus.ACTIVE.value,
        ]
        async with self.db:
            row = await self.db.query_row(query, params=params, conn=conn)
        return self._row_to_credit(row) if row else None

    # ====================
    # Invoices
    # ====================

    async def count_invoices_with_prefix(self, number_prefix: str, conn: Any = None) -> int:
        query = f'''
            SELECT COUNT(*) AS count FROM {self.schema}.{self.invoices_table}
            WHERE invoice_number LIKE $1
        '''
        async with self.db:
            row = await self.db.query_row(query, params=[f"{number_prefix}%"], conn=conn)
        return int(row["count"]) if row else 0

    async def create_invoice(self, invoice: Invoice, conn: Any = None) -> Invoice:
        now = datetime.now(timezone.utc)
        query = f'''
            INSERT INTO {self.schema}.{self.invoices_table} (
                invoice_id, invoice_number, organization_id, subscription_id,
                period_start, period_end, subtotal, credits_applied, tax_amount,
                total_amount, amount_due, amount_paid, currency, status,
                invoice_date, due_date, paid_at, voided_at, metadata,
                created_at, updated_at
            ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10,
                      $11, $12, $13, $14, $15, $16, $17, $18, $19::jsonb, $20, $21)
            RETURNING *
        '''
        params = [
            invoice.invoice_id,
            invoice.invoice_number,
            invoice.organization_id,
            invoice.subscription_id,
            invoice.period_start,
            invoice.period_end,
            invoice.subtotal,
            invoice.credits_applied,
            invoice.tax_amount,
            invoice.total_amount,
            invoice.amount_due,
            invoice.amount_paid,
            invoice.currency,
            invoice.status.value,
            invoice.invoice_date,
            invoice.due_date,
            invoice.paid_at,
            invoice.voided_at,
            json.dumps(invoice.metadata, default=str),
            now,
            now,
        ]

        try:
            async with self.db:
                row = await self.db.query_row(query, params=params, conn=conn)
        except asyncpg.exceptions.UniqueViolationError as e:
            if e.constraint_name == INVOICE_PERIOD_CONSTRAINT:
                raise InvoiceAlreadyExistsError(
                    f"Invoice already exists for subscription {invoice.subscription_id} "
                    f"period {invoice.period_start.isoformat()} - {invoice.period_end.isoformat()}"
                ) from e
            raise InvoiceNumberConflictError(
                f"Invoice number {invoice.invoice_number} already taken",
                invoice_number=invoice.invoice_number,
            ) from e

        created = self._row_to_invoice(row)
        created.line_items = list(invoice.line_items)
        return created

    async def create_line_items(
        self, invoice_id: str, line_items: List[InvoiceLineItem], conn: Any = None
    ) -> List[InvoiceLineItem]:
        query = f'''
            INSERT INTO {self.schema}.{self.line_items_table} (
                line_item_id, invoice_id, description, quantity, unit_price, amount,
                item_type, metric_type, period_start, period_end, metadata, created_at
            ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11::jsonb, $12)
            RETURNING *
        '''
        now = datetime.now(timezone.utc)
        created = []
        async with self.db:
            for item in line_items:
                params = [
                    item.line_item_id or f"li_{uuid.uuid4().hex[:16]}",
                    invoice_id,
                    item.description,
                    item.quantity,
                    item.unit_price,
                    item.amount,
                    item.item_type.value,
                    item.metric_type.value if item.metric_type else None,
                    item.period_start,
                    item.period_end,
                    json.dumps(item.metadata, default=str),
                    now,
                ]
                row = await self.db.query_row(query, params=params, conn=conn)
                created.append(self._row_to_line_item(row))
        return created

    async def get_invoice(self, invoice_id: str, conn: Any = None) -> Optional[Invoice]:
        query = f'''
            SELECT * FROM {self.schema}.{self.invoices_table}
            WHERE invoice_id = $1
        '''
        async with self.db:
            row = await self.db.query_row(query, params=[invoice_id], conn=conn)
            if not row:
                return None
            invoice = self._row_to_invoice(row)
            invoice.line_items = await self._get_line_items(invoice_id, conn=conn)
        return invoice

    async def get_invoice_for_period(
        self,
        subscription_id: str,
        period_start: datetime,
        period_end: datetime,
        conn: Any = None,
    ) -> Optional[Invoice]:
        query = f'''
            SELECT * FROM {self.schema}.{self.invoices_table}
            WHERE subscription_id = $1 AND period_start = $2 AND period_end = $3
        '''
        async with self.db:
            row = await self.db.query_row(query, params=[subscription_id, period_start, period_end], conn=conn)
        return self._row_to_invoice(row) if row else None

    async def update_invoice_status(
        self,
        invoice_id: str,
        expected_statuses: List[InvoiceStatus],
        new_status: InvoiceStatus,
        updates: Optional[Dict[str, Any]] = None,
        conn: Any = None,
    ) -> Optional[Invoice]:
        updates = dict(updates or {})
        set_clauses = ["status = $1", "updated_at = $2"]
        params: List[Any] = [new_status.value, datetime.now(timezone.utc)]

        for column in ("amount_paid", "amount_due", "paid_at", "voided_at"):
            if column in updates:
                params.append(updates.pop(column))
                set_clauses.append(f"{column} = ${len(params)}")
        if updates:
            raise ValueError(f"Unsupported invoice update fields: {sorted(updates)}")

        params.append(invoice_id)
        id_param = len(params)
        params.append([s.value for s in expected_statuses])
        status_param = len(params)

        query = f'''
            UPDATE {self.schema}.{self.invoices_table}
            SET {", ".join(set_clauses)}
            WHERE invoice_id = ${id_param} AND status = ANY(${status_param}::text[])
            RETURNING *
        '''
        async with self.db:
            row = await self.db.query_row(query, params=params, conn=conn)
        return self._row_to_invoice(row) if row else None

    async def list_invoices(
        self,
        organization_id: str,
        status: Optional[InvoiceStatus] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> List[Invoice]:
        conditions = ["organization_id = $1"]
        params: List[Any] = [organization_id]
        param_count = 1

        if status:
            param_count += 1
            conditions.append(f"status = ${param_count}")
            params.append(status.value)

        where_clause = " AND ".join(conditions)
        query = f'''
            SELECT * FROM {self.schema}.{self.invoices_table}
            WHERE {where_clause}
            ORDER BY invoice_date DESC, invoice_number DESC
            LIMIT ${param_count + 1} OFFSET ${param_count + 2}
        '''
        params.extend([limit, offset])

        async with self.db:
            rows = await self.db.query(query, params=params)
        return [self._row_to_invoice(row) for row in rows]

    async def list_overdue_invoices(self, as_of: datetime, limit: int = 500) -> List[Invoice]:
        query = f'''
            SELECT * FROM {self.schema}.{self.invoices_table}
            WHERE status = $1 AND due_date < $2
            ORDER BY due_date ASC
            LIMIT $3
        '''
        async with self.db:
            rows = await self.db.query(query, params=[InvoiceStatus.OPEN.value, as_of, limit])
        return [self._row_to_invoice(row) for row in rows]

    async def _get_line_items(self, invoice_id: str, conn: Any = None) -> List[InvoiceLineItem]:
        query = f'''
            SELECT * FROM {self.schema}.{self.line_items_table}
            WHERE invoice_id = $1
            ORDER BY created_at ASC, line_item_id ASC
        '''
        rows = await self.db.query(query, params=[invoice_id], conn=conn)
        return [self._row_to_line_item(row) for row in rows]

    # ====================
    # Row mapping
    # ====================

    def _row_to_organization(self, row: Dict[str, Any]) -> Organization:
        return Organization(
            organization_id=row["organization_id"],
            name=row["name"],
            billing_email=row.get("billing_email"),
            currency=row.get("currency") or "USD",
            billing_cycle=BillingCycle(row.get("billing_cycle") or "monthly"),
            billing_day_of_month=row.get("billing_day_of_month") or 1,
            default_payment_method_id=row.get("default_payment_method_id"),
            stripe_customer_id=row.get("stripe_customer_id"),
            auto_pay=bool(row.get("auto_pay")),
            status=OrganizationStatus(row.get("status") or "active"),
            created_at=row.get("created_at"),
            updated_at=row.get("updated_at"),
        )

    def _row_to_plan(self, row: Dict[str, Any]) -> SubscriptionPlan:
        return SubscriptionPlan(
            plan_id=row["plan_id"],
            name=row["name"],
            slug=row.get("slug"),
            base_price=row["base_price"],
            currency=row.get("currency") or "USD",
            billing_interval=BillingCycle(row.get("billing_interval") or "monthly"),
            included_api_calls=row.get("included_api_calls") or 0,
            included_storage_gb=row.get("included_storage_gb") or 0,
            included_data_transfer_gb=row.get("included_data_transfer_gb") or 0,
            included_seats=row.get("included_seats") if row.get("included_seats") is not None else 1,
            price_per_api_call=row.get("price_per_api_call") or Decimal("0"),
            price_per_gb_storage=row.get("price_per_gb_storage") or Decimal("0"),
            price_per_gb_transfer=row.get("price_per_gb_transfer") or Decimal("0"),
            price_per_additional_seat=row.get("price_per_additional_seat") or Decimal("0"),
            features=_json(row.get("features")),
            is_active=row.get("is_active", True),
            created_at=row.get("created_at"),
        )

    def _row_to_subscription(self, row: Dict[str, Any]) -> Subscription:
        return Subscription(
            subscription_id=row["subscription_id"],
            organization_id=row["organization_id"],
            plan_id=row["plan_id"],
            status=SubscriptionStatus(row.get("status") or "active"),
            current_period_start=row["current_period_start"],
            current_period_end=row["current_period_end"],
            quantity=row.get("quantity") if row.get("quantity") is not None else 1,
            custom_pricing=_json(row.get("custom_pricing")),
            cancel_at_period_end=bool(row.get("cancel_at_period_end")),
            canceled_at=row.get("canceled_at"),
            cancellation_reason=row.get("cancellation_reason"),
            created_at=row.get("created_at"),
            updated_at=row.get("updated_at"),
        )

    def _row_to_tier(self, row: Dict[str, Any]) -> PricingTier:
        return PricingTier(
            tier_id=row.get("tier_id"),
            plan_id=row.get("plan_id"),
            metric_type=MetricType(row["metric_type"]),
            tier_start=row["tier_start"],
            tier_end=row.get("tier_end"),
            price_per_unit=row["price_per_unit"],
            flat_fee=row.get("flat_fee") or Decimal("0"),
        )

    def _row_to_credit(self, row: Dict[str, Any]) -> Credit:
        return Credit(
            credit_id=row["credit_id"],
            organization_id=row["organization_id"],
            amount=row["amount"],
            remaining_amount=row["remaining_amount"],
            currency=row.get("currency") or "USD",
            reason=row.get("reason") or "promotion",
            description=row.get("description"),
            valid_from=row["valid_from"],
            valid_until=row.get("valid_until"),
            status=CreditStatus(row.get("status") or "active"),
            created_at=row.get("created_at"),
            updated_at=row.get("updated_at"),
        )

    def _row_to_invoice(self, row: Dict[str, Any]) -> Invoice:
        return Invoice(
            invoice_id=row["invoice_id"],
            invoice_number=row["invoice_number"],
            organization_id=row["organization_id"],
            subscription_id=row.get("subscription_id"),
            period_start=row["period_start"],
            period_end=row["period_end"],
            subtotal=row["subtotal"],
            credits_applied=row.get("credits_applied") or Decimal("0"),
            tax_amount=row.get("tax_amount") or Decimal("0"),
            total_amount=row["total_amount"],
            amount_due=row["amount_due"],
            amount_paid=row.get("amount_paid") or Decimal("0"),
            currency=row.get("currency") or "USD",
            status=InvoiceStatus(row["status"]),
            invoice_date=row["invoice_date"],
            due_date=row["due_date"],
            paid_at=row.get("paid_at"),
            voided_at=row.get("voided_at"),
            metadata=_json(row.get("metadata")),
            created_at=row.get("created_at"),
            updated_at=row.get("updated_at"),
        )

    def _row_to_line_item(self, row: Dict[str, Any]) -> InvoiceLineItem:
        return InvoiceLineItem(
            line_item_id=row.get("line_item_id"),
            invoice_id=row.get("invoice_id"),
            description=row["description"],
            quantity=row["quantity"],
            unit_price=row["unit_price"],
            amount=row["amount"],
            item_type=LineItemType(row["item_type"]),
            metric_type=MetricType(row["metric_type"]) if row.get("metric_type") else None,
            period_start=row.get("period_start"),
            period_end=row.get("period_end"),
            metadata=_json(row.get("metadata")),
            created_at=row.get("created_at"),
        )


__all__ = ["BillingRepository", "INVOICE_NUMBER_CONSTRAINT", "INVOICE_PERIOD_CONSTRAINT"]
