"""
PostgreSQL Client for the Billing Engine

asyncpg connection pool with the query/query_row/execute API the repositories
use, plus transactions. Every query method accepts an optional ``conn`` so
that repository calls can join a transaction opened by the caller.

Usage:
    from core.postgres_client import get_postgres_client

    db = await get_postgres_client("billing_service")

    async with db:
        rows = await db.query("SELECT * FROM billing.invoices WHERE organization_id = $1", [org_id])

    async with db.transaction() as conn:
        await db.execute("UPDATE ...", [...], conn=conn)
        await db.execute("INSERT ...", [...], conn=conn)
"""

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, List, Optional

import asyncpg

from core.config import InfraConfig

logger = logging.getLogger(__name__)


class AsyncPostgresClient:
    """
    asyncpg pool wrapper.

    The pool is created lazily on first use (``async with db`` or any query),
    so constructing repositories never touches the network.
    """

    def __init__(
        self,
        service_name: str,
        config: Optional[InfraConfig] = None,
        dsn: Optional[str] = None,
    ):
        """
        Initialize PostgreSQL client.

        Args:
            service_name: Name of the service using this client (for logs)
            config: Infrastructure config (loaded from env if not provided)
            dsn: Optional DSN overriding host/port/db/user/password
        """
        self.service_name = service_name
        self.config = config or InfraConfig.from_env()
        self.dsn = dsn or self.config.postgres_dsn
        self._pool: Optional[asyncpg.Pool] = None

        logger.info(
            f"PostgreSQL client initialized for {service_name}: "
            f"{self.config.postgres_host}:{self.config.postgres_port}/{self.config.postgres_db}"
        )

    async def connect(self) -> asyncpg.Pool:
        """Create the connection pool if needed"""
        if self._pool is None:
            self._pool = await asyncpg.create_pool(
                dsn=self.dsn,
                min_size=self.config.postgres_min_pool_size,
                max_size=self.config.postgres_max_pool_size,
                command_timeout=self.config.postgres_command_timeout,
            )
            logger.info(f"✅ PostgreSQL pool ready for {self.service_name}")
        return self._pool

    async def __aenter__(self):
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        # Pool stays open for the lifetime of the service
        pass

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[asyncpg.Connection]:
        """
        Acquire a connection and run the block in a transaction.

        Commits on normal exit, rolls back on any exception.
        """
        pool = await self.connect()
        async with pool.acquire() as conn:
            async with conn.transaction():
                yield conn

    async def query(
        self,
        sql: str,
        params: Optional[List[Any]] = None,
        conn: Optional[asyncpg.Connection] = None,
    ) -> List[Dict[str, Any]]:
        """Execute query and return all rows as dicts"""
        if conn is not None:
            records = await conn.fetch(sql, *(params or []))
        else:
            pool = await self.connect()
            records = await pool.fetch(sql, *(params or []))
        return [dict(record) for record in records]

    async def query_row(
        self,
        sql: str,
        params: Optional[List[Any]] = None,
        conn: Optional[asyncpg.Connection] = None,
    ) -> Optional[Dict[str, Any]]:
        """Execute query and return the first row, or None"""
        if conn is not None:
            record = await conn.fetchrow(sql, *(params or []))
        else:
            pool = await self.connect()
            record = await pool.fetchrow(sql, *(params or []))
        return dict(record) if record is not None else None

    async def execute(
        self,
        sql: str,
        params: Optional[List[Any]] = None,
        conn: Optional[asyncpg.Connection] = None,
    ) -> str:
        """Execute statement and return the status tag (e.g. 'UPDATE 1')"""
        if conn is not None:
            return await conn.execute(sql, *(params or []))
        pool = await self.connect()
        return await pool.execute(sql, *(params or []))

    async def health_check(self) -> bool:
        """Check database health"""
        try:
            return await self.query_row("SELECT 1 AS ok") is not None
        except (asyncpg.PostgresError, OSError) as e:
            logger.warning(f"PostgreSQL health check failed: {e}")
            return False

    async def close(self):
        """Close the pool"""
        if self._pool is not None:
            await self._pool.close()
            self._pool = None
            logger.info(f"PostgreSQL pool closed for {self.service_name}")


# Singleton instances per service
_postgres_clients: Dict[str, AsyncPostgresClient] = {}


async def get_postgres_client(
    service_name: str,
    config: Optional[InfraConfig] = None,
    dsn: Optional[str] = None,
) -> AsyncPostgresClient:
    """
    Get or create PostgreSQL client for a service.

    Args:
        service_name: Service name
        config: Optional infrastructure config
        dsn: Optional DSN override

    Returns:
        AsyncPostgresClient instance
    """
    if service_name not in _postgres_clients:
        _postgres_clients[service_name] = AsyncPostgresClient(
            service_name=service_name,
            config=config,
            dsn=dsn,
        )

    return _postgres_clients[service_name]
