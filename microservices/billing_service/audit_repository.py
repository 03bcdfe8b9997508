"""
Audit Repository

Append-only audit trail shared by the billing and payment services. Rows are
inserted, never updated or deleted.
"""

import json
import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from core.postgres_client import AsyncPostgresClient

from .models import AuditLogEntry

logger = logging.getLogger(__name__)


class AuditRepository:

    def __init__(self, db: AsyncPostgresClient, schema: str = "billing"):
        self.db = db
        self.schema = schema
        self.table = "audit_log"

    async def record(
        self,
        entity_type: str,
        entity_id: str,
        event_type: str,
        event_data: Dict[str, Any],
        actor_id: Optional[str] = None,
        actor_type: str = "system",
        conn: Any = None,
    ) -> AuditLogEntry:
        """Insert one audit row, inside the caller's transaction when ``conn`` is given"""
        entry = AuditLogEntry(
            audit_id=f"aud_{uuid.uuid4().hex[:16]}",
            entity_type=entity_type,
            entity_id=entity_id,
            event_type=event_type,
            event_data=event_data,
            actor_id=actor_id,
            actor_type=actor_type,
            occurred_at=datetime.now(timezone.utc),
        )
        query = f'''
            INSERT INTO {self.schema}.{self.table} (
                audit_id, entity_type, entity_id, event_type, event_data,
                actor_id, actor_type, occurred_at
            ) VALUES ($1, $2, $3, $4, $5::jsonb, $6, $7, $8)
        '''
        params = [
            entry.audit_id,
            entry.entity_type,
            entry.entity_id,
            entry.event_type,
            json.dumps(entry.event_data, default=str),
            entry.actor_id,
            entry.actor_type,
            entry.occurred_at,
        ]
        async with self.db:
            await self.db.execute(query, params=params, conn=conn)

        logger.debug(f"Audit {event_type} recorded for {entity_type} {entity_id}")
        return entry


__all__ = ["AuditRepository"]
