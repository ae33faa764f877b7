"""
Pytest fixtures for the push dispatch service tests.
"""

import json
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional, Sequence
from unittest.mock import AsyncMock, MagicMock
from uuid import UUID, uuid4

import httpx
import pytest
import pytest_asyncio

from push_dispatch.config import Settings
from push_dispatch.models.schemas import DeliveryStatus, NotificationRecord
from push_dispatch.services.pipeline import build_pipeline


class FakeNotificationStore:
    """In-memory stand-in for NotificationStore with the same guards"""

    def __init__(self):
        self.records: Dict[UUID, NotificationRecord] = {}
        self.devices: Dict[str, List[Optional[str]]] = {}
        self.fail_status_writes = False

    def add(self, **fields) -> NotificationRecord:
        fields.setdefault("id", uuid4())
        fields.setdefault("title", "Sunday service")
        fields.setdefault("message", "Service starts at 10:00")
        fields.setdefault("scheduled_for", datetime.now(timezone.utc) - timedelta(minutes=1))
        record = NotificationRecord(**fields)
        self.records[record.id] = record
        return record

    async def fetch_due(self, limit: int) -> List[NotificationRecord]:
        now = datetime.now(timezone.utc)
        due = [
            r.model_copy() for r in self.records.values()
            if r.delivery_status == DeliveryStatus.PENDING
            and not r.is_push_sent
            and r.scheduled_for <= now
        ]
        due.sort(key=lambda r: r.scheduled_for)
        return due[:limit]

    async def claim(self, record_id: UUID) -> bool:
        record = self.records.get(record_id)
        if record is None or record.is_push_sent or record.delivery_status != DeliveryStatus.PENDING:
            return False
        record.is_push_sent = True
        return True

    async def claim_correlated(self, correlation_id: str, user_ids: Sequence[str]) -> List[UUID]:
        claimed = []
        for record in self.records.values():
            if record.correlation_id == correlation_id and record.user_id in user_ids:
                if await self.claim(record.id):
                    claimed.append(record.id)
        return claimed

    async def active_external_ids(self, user_id: str) -> List[str]:
        return [d for d in self.devices.get(user_id, []) if d]

    async def set_terminal_status(
        self,
        record_id: UUID,
        status: DeliveryStatus,
        provider_id: Optional[str] = None,
        failure_reason: Optional[str] = None,
        stamp_sent_at: bool = True
    ) -> bool:
        if self.fail_status_writes:
            raise ConnectionError("database unavailable")
        record = self.records.get(record_id)
        if record is None or record.delivery_status != DeliveryStatus.PENDING:
            return False
        record.is_push_sent = True
        record.delivery_status = status
        record.provider_id = provider_id or record.provider_id
        record.failure_reason = failure_reason
        if stamp_sent_at:
            record.sent_at = datetime.now(timezone.utc)
        return True


class FakeOneSignal:
    """Records outbound provider requests and answers with a canned response"""

    def __init__(self):
        self.requests: List[httpx.Request] = []
        self.status_code = 200
        self.body = {"id": "os-notification-1", "recipients": 1}
        self.raise_error: Optional[Exception] = None

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.raise_error is not None:
            raise self.raise_error
        return httpx.Response(self.status_code, json=self.body)

    @property
    def payloads(self) -> List[dict]:
        return [json.loads(r.content) for r in self.requests]


@pytest.fixture
def settings():
    return Settings(
        onesignal_app_id="test-app-id",
        onesignal_rest_api_key="test-rest-key",
        database_url="postgresql://postgres@localhost:5432/church",
        database_service_key="service-role-key",
        _env_file=None
    )


@pytest.fixture
def store():
    return FakeNotificationStore()


@pytest.fixture
def onesignal():
    return FakeOneSignal()


@pytest_asyncio.fixture
async def http_client(onesignal):
    client = httpx.AsyncClient(transport=httpx.MockTransport(onesignal.handler))
    yield client
    await client.aclose()


@pytest.fixture
def mock_redis_client():
    """Mock Redis client"""
    client = AsyncMock()
    client.exists = AsyncMock(return_value=0)
    client.set = AsyncMock(return_value=True)
    client.ping = AsyncMock(return_value=True)
    return client


@pytest.fixture
def pipeline(settings, store, http_client):
    return build_pipeline(settings, store, http_client)


@pytest.fixture
def mock_postgres_pool():
    """Mock asyncpg pool whose acquire() works as an async context manager"""
    conn = AsyncMock()
    conn.execute = AsyncMock(return_value="UPDATE 1")
    conn.fetch = AsyncMock(return_value=[])
    conn.fetchrow = AsyncMock(return_value=None)
    conn.fetchval = AsyncMock(return_value=1)

    acquire_ctx = MagicMock()
    acquire_ctx.__aenter__ = AsyncMock(return_value=conn)
    acquire_ctx.__aexit__ = AsyncMock(return_value=None)

    pool = MagicMock()
    pool.acquire = MagicMock(return_value=acquire_ctx)
    pool.close = AsyncMock()
    pool.conn = conn
    return pool
