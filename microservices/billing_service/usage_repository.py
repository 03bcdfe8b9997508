"""
Usage Repository

Read-only aggregation over the metered usage store.
"""

import asyncio
import logging
from datetime import datetime
from decimal import Decimal
from typing import Optional

import asyncpg

from core.postgres_client import AsyncPostgresClient

from .models import MetricType, UsageAggregation
from .protocols import DependencyUnavailable

logger = logging.getLogger(__name__)


class UsageRepository:
    """Sums usage_metrics rows per metric over a half-open period"""

    def __init__(self, db: AsyncPostgresClient, timeout_seconds: float = 10.0, schema: str = "billing"):
        self.db = db
        self.timeout_seconds = timeout_seconds
        self.schema = schema
        self.usage_table = "usage_metrics"

    async def get_usage_for_period(
        self,
        organization_id: str,
        period_start: datetime,
        period_end: datetime,
        subscription_id: Optional[str] = None,
    ) -> UsageAggregation:
        query = f'''
            SELECT metric_type, SUM(metric_value) AS total
            FROM {self.schema}.{self.usage_table}
            WHERE organization_id = $1
              AND recorded_at >= $2
              AND recorded_at < $3
            GROUP BY metric_type
        '''
        try:
            async with self.db:
                rows = await asyncio.wait_for(
                    self.db.query(query, params=[organization_id, period_start, period_end]),
                    timeout=self.timeout_seconds,
                )
        except asyncio.TimeoutError as e:
            logger.error(f"❌ Usage query timed out for {organization_id} after {self.timeout_seconds}s")
            raise DependencyUnavailable("Usage aggregation timed out", dependency="usage_store") from e
        except (asyncpg.PostgresError, OSError) as e:
            logger.error(f"❌ Usage query failed for {organization_id}: {e}")
            raise DependencyUnavailable(f"Usage store unavailable: {e}", dependency="usage_store") from e

        metrics = {}
        for row in rows:
            try:
                metric = MetricType(row["metric_type"])
            except ValueError:
                logger.warning(f"⚠️ Ignoring unknown usage metric: {row['metric_type']}")
                continue
            metrics[metric] = Decimal(str(row["total"] or 0))

        return UsageAggregation(
            organization_id=organization_id,
            subscription_id=subscription_id,
            period_start=period_start,
            period_end=period_end,
            metrics=metrics,
        )


__all__ = ["UsageRepository"]
