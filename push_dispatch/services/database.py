"""
PostgreSQL persistence for notification records and device registrations.
Handles connection pooling, due-record selection, claiming and status writes.
"""

import json
import logging
from typing import List, Optional, Sequence
from uuid import UUID

import asyncpg
from pydantic import ValidationError

from push_dispatch.config import Settings
from push_dispatch.models.schemas import DeliveryStatus, DeviceRegistration, NotificationRecord

logger = logging.getLogger(__name__)


async def _init_connection(conn: asyncpg.Connection) -> None:
    """Decode json/jsonb columns into Python objects"""
    for type_name in ("json", "jsonb"):
        await conn.set_type_codec(
            type_name,
            encoder=json.dumps,
            decoder=json.loads,
            schema="pg_catalog"
        )


class DatabasePool:
    """Async PostgreSQL connection pool manager"""

    def __init__(self, settings: Settings):
        self.settings = settings
        self.pool: Optional[asyncpg.Pool] = None

    async def connect(self) -> None:
        """Initialize connection pool"""
        try:
            self.pool = await asyncpg.create_pool(
                self.settings.database_url,
                password=self.settings.database_service_key,
                min_size=1,
                max_size=10,
                command_timeout=60,
                ssl='prefer',
                init=_init_connection
            )
            logger.info("Connected to PostgreSQL")
        except Exception as e:
            logger.error(f"Failed to connect to PostgreSQL: {e}")
            raise

    async def disconnect(self) -> None:
        """Close connection pool"""
        if self.pool:
            await self.pool.close()
            self.pool = None
            logger.info("PostgreSQL connection pool closed")

    async def execute(self, query: str, *args) -> str:
        """Execute a query and return its status tag (e.g. 'UPDATE 1')"""
        async with self.pool.acquire() as conn:
            return await conn.execute(query, *args)

    async def fetch(self, query: str, *args) -> List[dict]:
        """Fetch rows from query"""
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(query, *args)
            return [dict(row) for row in rows]


def affected_rows(status: str) -> int:
    """Parse the row count out of an asyncpg status tag"""
    try:
        return int(status.rsplit(" ", 1)[-1])
    except (AttributeError, ValueError):
        return 0


async def init_db(db_pool: DatabasePool) -> None:
    """Create tables and columns this service depends on if they are missing"""
    async with db_pool.pool.acquire() as conn:
        await conn.execute("""
            CREATE TABLE IF NOT EXISTS notifications (
                id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
                user_id TEXT,
                title TEXT NOT NULL,
                message TEXT NOT NULL,
                data JSONB DEFAULT '{}'::jsonb,
                target_type VARCHAR(20),
                target_value TEXT,
                scheduled_for TIMESTAMPTZ NOT NULL DEFAULT NOW(),
                is_push_sent BOOLEAN NOT NULL DEFAULT FALSE,
                delivery_status VARCHAR(20) NOT NULL DEFAULT 'pending',
                sent_at TIMESTAMPTZ,
                created_at TIMESTAMPTZ DEFAULT NOW(),
                updated_at TIMESTAMPTZ DEFAULT NOW()
            )
        """)

        # Columns added after the table was first provisioned
        for column, ddl in (
            ("failure_reason", "TEXT"),
            ("provider_id", "TEXT"),
            ("correlation_id", "TEXT"),
        ):
            await conn.execute(
                f"ALTER TABLE notifications ADD COLUMN IF NOT EXISTS {column} {ddl}"
            )

        await conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_notifications_due
            ON notifications(delivery_status, is_push_sent, scheduled_for)
        """)
        await conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_notifications_correlation_id
            ON notifications(correlation_id)
        """)

        await conn.execute("""
            CREATE TABLE IF NOT EXISTS user_devices (
                id SERIAL PRIMARY KEY,
                user_id TEXT NOT NULL,
                device_id TEXT,
                onesignal_user_id TEXT,
                is_active BOOLEAN NOT NULL DEFAULT TRUE,
                created_at TIMESTAMPTZ DEFAULT NOW(),
                updated_at TIMESTAMPTZ DEFAULT NOW()
            )
        """)
        await conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_user_devices_user_id ON user_devices(user_id)
        """)

        logger.info("Database tables initialized")


class NotificationStore:
    """
    Queries against the notifications and user_devices tables.

    Terminal status writes are guarded by delivery_status = 'pending' so a
    record can leave the pending state exactly once.
    """

    def __init__(self, db_pool: DatabasePool):
        self.db = db_pool

    async def fetch_due(self, limit: int) -> List[NotificationRecord]:
        """Pending, unsent records whose scheduled time has passed, oldest first"""
        query = """
            SELECT * FROM notifications
            WHERE delivery_status = 'pending'
              AND is_push_sent = FALSE
              AND scheduled_for <= NOW()
            ORDER BY scheduled_for ASC
            LIMIT $1
        """
        rows = await self.db.fetch(query, limit)
        records = []
        for row in rows:
            try:
                records.append(NotificationRecord(**row))
            except ValidationError as e:
                await self._retire_malformed(row, e)
        return records

    async def _retire_malformed(self, row: dict, error: ValidationError) -> None:
        """Fail a row that cannot be parsed so it leaves the due set"""
        record_id = row.get("id")
        fields = ", ".join(".".join(str(p) for p in err["loc"]) for err in error.errors())
        reason = f"Malformed notification row: invalid {fields}"
        logger.error(f"Failing notification {record_id}: {reason}")
        if record_id is None or not await self.claim(record_id):
            return
        await self.set_terminal_status(
            record_id, DeliveryStatus.FAILED, failure_reason=reason, stamp_sent_at=False
        )

    async def claim(self, record_id: UUID) -> bool:
        """Flip is_push_sent false -> true; True only for the caller that flipped it"""
        query = """
            UPDATE notifications
            SET is_push_sent = TRUE, updated_at = NOW()
            WHERE id = $1
              AND is_push_sent = FALSE
              AND delivery_status = 'pending'
        """
        status = await self.db.execute(query, record_id)
        return affected_rows(status) == 1

    async def claim_correlated(self, correlation_id: str, user_ids: Sequence[str]) -> List[UUID]:
        """Claim every pending record created for one multi-recipient send"""
        query = """
            UPDATE notifications
            SET is_push_sent = TRUE, updated_at = NOW()
            WHERE correlation_id = $1
              AND user_id::text = ANY($2::text[])
              AND is_push_sent = FALSE
              AND delivery_status = 'pending'
            RETURNING id
        """
        rows = await self.db.fetch(query, correlation_id, list(user_ids))
        return [row["id"] for row in rows]

    async def active_external_ids(self, user_id: str) -> List[str]:
        """External ids of a user's active devices, in registration order"""
        query = """
            SELECT user_id, onesignal_user_id, is_active FROM user_devices
            WHERE user_id::text = $1
              AND is_active = TRUE
              AND onesignal_user_id IS NOT NULL
              AND onesignal_user_id <> ''
            ORDER BY id ASC
        """
        rows = await self.db.fetch(query, user_id)
        devices = [DeviceRegistration(**row) for row in rows]
        return [d.onesignal_user_id for d in devices]

    async def set_terminal_status(
        self,
        record_id: UUID,
        status: DeliveryStatus,
        provider_id: Optional[str] = None,
        failure_reason: Optional[str] = None,
        stamp_sent_at: bool = True
    ) -> bool:
        """Move a pending record to a terminal status; False if it already left pending"""
        query = """
            UPDATE notifications
            SET is_push_sent = TRUE,
                delivery_status = $2,
                provider_id = COALESCE($3, provider_id),
                failure_reason = $4,
                sent_at = CASE WHEN $5 THEN NOW() ELSE sent_at END,
                updated_at = NOW()
            WHERE id = $1
              AND delivery_status = 'pending'
        """
        status_tag = await self.db.execute(
            query,
            record_id,
            status.value,
            provider_id,
            failure_reason,
            stamp_sent_at
        )
        return affected_rows(status_tag) == 1
