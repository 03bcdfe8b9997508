"""
Payment Repository

Data access layer for payments. Status changes are conditional updates so
that the synchronous charge path and the webhook path can race safely.
"""

import json
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, AsyncIterator, Dict, List, Optional

import asyncpg

from core.postgres_client import AsyncPostgresClient

from .models import Payment, PaymentProvider, PaymentStatus
from .protocols import DependencyUnavailable, PaymentInProgressError

logger = logging.getLogger(__name__)

PENDING_PAYMENT_CONSTRAINT = "uq_payments_invoice_pending"

_UPDATABLE_COLUMNS = (
    "provider_payment_id",
    "failure_code",
    "failure_message",
    "refunded_amount",
    "succeeded_at",
    "failed_at",
    "refunded_at",
)


class PaymentRepository:
    """Payment data access repository"""

    def __init__(self, db: AsyncPostgresClient, schema: str = "billing"):
        self.db = db
        self.schema = schema
        self.payments_table = "payments"

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[asyncpg.Connection]:
        try:
            async with self.db.transaction() as conn:
                yield conn
        except (OSError, asyncpg.exceptions.InterfaceError, asyncpg.exceptions.ConnectionDoesNotExistError) as e:
            raise DependencyUnavailable(f"Database unavailable: {e}", dependency="postgres") from e

    async def create_payment(self, payment: Payment, conn: Any = None) -> Payment:
        now = datetime.now(timezone.utc)
        query = f'''
            INSERT INTO {self.schema}.{self.payments_table} (
                payment_id, organization_id, invoice_id, amount, currency, status,
                payment_method_id, provider, provider_payment_id, provider_customer_id,
                failure_code, failure_message, refunded_amount, attempted_at,
                metadata, created_at, updated_at
            ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10,
                      $11, $12, $13, $14, $15::jsonb, $16, $17)
            RETURNING *
        '''
        params = [
            payment.payment_id,
            payment.organization_id,
            payment.invoice_id,
            payment.amount,
            payment.currency,
            payment.status.value,
            payment.payment_method_id,
            payment.provider.value,
            payment.provider_payment_id,
            payment.provider_customer_id,
            payment.failure_code,
            payment.failure_message,
            payment.refunded_amount,
            payment.attempted_at,
            json.dumps(payment.metadata, default=str),
            now,
            now,
        ]
        try:
            async with self.db:
                row = await self.db.query_row(query, params=params, conn=conn)
        except asyncpg.exceptions.UniqueViolationError as e:
            if e.constraint_name == PENDING_PAYMENT_CONSTRAINT:
                raise PaymentInProgressError(
                    f"Invoice {payment.invoice_id} already has a pending payment"
                ) from e
            raise
        return self._row_to_payment(row)

    async def get_payment(self, payment_id: str, conn: Any = None) -> Optional[Payment]:
        query = f'''
            SELECT * FROM {self.schema}.{self.payments_table}
            WHERE payment_id = $1
        '''
        async with self.db:
            row = await self.db.query_row(query, params=[payment_id], conn=conn)
        return self._row_to_payment(row) if row else None

    async def get_payment_by_provider_id(self, provider_payment_id: str, conn: Any = None) -> Optional[Payment]:
        query = f'''
            SELECT * FROM {self.schema}.{self.payments_table}
            WHERE provider_payment_id = $1
        '''
        async with self.db:
            row = await self.db.query_row(query, params=[provider_payment_id], conn=conn)
        return self._row_to_payment(row) if row else None

    async def get_pending_payment_for_invoice(self, invoice_id: str, conn: Any = None) -> Optional[Payment]:
        query = f'''
            SELECT * FROM {self.schema}.{self.payments_table}
            WHERE invoice_id = $1 AND status = $2
            ORDER BY attempted_at DESC
            LIMIT 1
        '''
        async with self.db:
            row = await self.db.query_row(query, params=[invoice_id, PaymentStatus.PENDING.value], conn=conn)
        return self._row_to_payment(row) if row else None

    async def set_provider_payment_id(
        self, payment_id: str, provider_payment_id: str, conn: Any = None
    ) -> Optional[Payment]:
        query = f'''
            UPDATE {self.schema}.{self.payments_table}
            SET provider_payment_id = $1, updated_at = $2
            WHERE payment_id = $3 AND status = $4
            RETURNING *
        '''
        params = [provider_payment_id, datetime.now(timezone.utc), payment_id, PaymentStatus.PENDING.value]
        async with self.db:
            row = await self.db.query_row(query, params=params, conn=conn)
        return self._row_to_payment(row) if row else None

    async def transition_payment(
        self,
        payment_id: str,
        expected_status: PaymentStatus,
        new_status: PaymentStatus,
        updates: Optional[Dict[str, Any]] = None,
        conn: Any = None,
    ) -> Optional[Payment]:
        updates = dict(updates or {})
        set_clauses = ["status = $1", "updated_at = $2"]
        params: List[Any] = [new_status.value, datetime.now(timezone.utc)]

        for column in _UPDATABLE_COLUMNS:
            if column in updates:
                params.append(updates.pop(column))
                set_clauses.append(f"{column} = ${len(params)}")
        if updates:
            raise ValueError(f"Unsupported payment update fields: {sorted(updates)}")

        params.extend([payment_id, expected_status.value])
        query = f'''
            UPDATE {self.schema}.{self.payments_table}
            SET {", ".join(set_clauses)}
            WHERE payment_id = ${len(params) - 1} AND status = ${len(params)}
            RETURNING *
        '''
        async with self.db:
            row = await self.db.query_row(query, params=params, conn=conn)
        return self._row_to_payment(row) if row else None

    async def list_payments(self, organization_id: str, limit: int = 50, offset: int = 0) -> List[Payment]:
        query = f'''
            SELECT * FROM {self.schema}.{self.payments_table}
            WHERE organization_id = $1
            ORDER BY attempted_at DESC
            LIMIT $2 OFFSET $3
        '''
        async with self.db:
            rows = await self.db.query(query, params=[organization_id, limit, offset])
        return [self._row_to_payment(row) for row in rows]

    def _row_to_payment(self, row: Dict[str, Any]) -> Payment:
        metadata = row.get("metadata")
        if isinstance(metadata, str):
            metadata = json.loads(metadata) if metadata else {}
        return Payment(
            payment_id=row["payment_id"],
            organization_id=row["organization_id"],
            invoice_id=row.get("invoice_id"),
            amount=row["amount"],
            currency=row.get("currency") or "USD",
            status=PaymentStatus(row["status"]),
            payment_method_id=row.get("payment_method_id"),
            provider=PaymentProvider(row.get("provider") or "stripe"),
            provider_payment_id=row.get("provider_payment_id"),
            provider_customer_id=row.get("provider_customer_id"),
            failure_code=row.get("failure_code"),
            failure_message=row.get("failure_message"),
            refunded_amount=row.get("refunded_amount") or Decimal("0"),
            attempted_at=row["attempted_at"],
            succeeded_at=row.get("succeeded_at"),
            failed_at=row.get("failed_at"),
            refunded_at=row.get("refunded_at"),
            metadata=metadata or {},
            created_at=row.get("created_at"),
            updated_at=row.get("updated_at"),
        )


__all__ = ["PaymentRepository", "PENDING_PAYMENT_CONSTRAINT"]
