"""
Status reconciliation: write dispatch outcomes back to notification records.

Every write marks the record is_push_sent = true and moves it out of pending.
Failed attempts are not retried automatically, so a record that reached the
provider once is never redelivered by this service.
"""

import logging
from typing import Iterable, List, Optional, Protocol
from uuid import UUID

from push_dispatch.models.schemas import DeliveryStatus, DispatchResult
from push_dispatch.services.push_provider import describe_failure

logger = logging.getLogger(__name__)


class StatusStore(Protocol):
    async def set_terminal_status(
        self,
        record_id: UUID,
        status: DeliveryStatus,
        provider_id: Optional[str] = None,
        failure_reason: Optional[str] = None,
        stamp_sent_at: bool = True
    ) -> bool:
        ...


class StatusReconciler:
    """Idempotent, no-throw writer of terminal delivery states"""

    def __init__(self, store: StatusStore):
        self.store = store

    async def reconcile(self, record_id: UUID, result: DispatchResult) -> bool:
        """Record the outcome of a provider call; True if the row was updated"""
        if result.ok:
            return await self._write(
                record_id,
                DeliveryStatus.SENT,
                provider_id=result.provider_id
            )
        return await self._write(
            record_id,
            DeliveryStatus.FAILED,
            provider_id=result.provider_id,
            failure_reason=describe_failure(result)
        )

    async def reconcile_many(self, record_ids: Iterable[UUID], result: DispatchResult) -> List[UUID]:
        """Reconcile every record that originated one multi-recipient call"""
        updated = []
        for record_id in record_ids:
            if await self.reconcile(record_id, result):
                updated.append(record_id)
        return updated

    async def mark_failed(self, record_id: UUID, reason: str) -> bool:
        """Attempt made but no provider response (transport error)"""
        return await self._write(record_id, DeliveryStatus.FAILED, failure_reason=reason)

    async def mark_skipped(self, record_id: UUID, reason: str) -> bool:
        """No deliverable target; the provider was never called"""
        return await self._write(
            record_id,
            DeliveryStatus.SKIPPED,
            failure_reason=reason,
            stamp_sent_at=False
        )

    async def _write(
        self,
        record_id: UUID,
        status: DeliveryStatus,
        provider_id: Optional[str] = None,
        failure_reason: Optional[str] = None,
        stamp_sent_at: bool = True
    ) -> bool:
        try:
            updated = await self.store.set_terminal_status(
                record_id,
                status,
                provider_id=provider_id,
                failure_reason=failure_reason,
                stamp_sent_at=stamp_sent_at
            )
        except Exception as e:
            logger.error(
                f"Failed to record status {status.value} for notification {record_id}: {e}",
                exc_info=True
            )
            return False

        if updated:
            logger.info(f"Notification {record_id} marked {status.value}")
        else:
            logger.info(f"Notification {record_id} already terminal, {status.value} not applied")
        return updated
