"""
Resolve -> dispatch -> reconcile pipeline shared by the drain and the
immediate-send endpoint.

Records are processed one at a time. A record is claimed (is_push_sent
flipped false -> true) before the provider is called, so two overlapping
drains can never both send it.
"""

import logging
from typing import List, Optional, Protocol, Sequence
from uuid import UUID

import httpx
from pydantic import ValidationError

from push_dispatch.config import Settings
from push_dispatch.logging_config import clear_context, set_context
from push_dispatch.models.schemas import (
    DispatchRequest,
    DrainSummary,
    ImmediateSendResult,
    NotificationRecord,
    RecordOutcome,
    SendNotificationRequest,
)
from push_dispatch.models.targets import ExplicitIds, Unresolvable
from push_dispatch.services.database import DatabasePool, NotificationStore, init_db
from push_dispatch.services.idempotency import IdempotencyGuard
from push_dispatch.services.push_provider import (
    OneSignalDispatcher,
    ProviderTransportError,
    describe_failure,
)
from push_dispatch.services.reconciler import StatusReconciler
from push_dispatch.services.target_resolver import TargetResolver

logger = logging.getLogger(__name__)


class PipelineStore(Protocol):
    async def fetch_due(self, limit: int) -> List[NotificationRecord]: ...
    async def claim(self, record_id: UUID) -> bool: ...
    async def claim_correlated(self, correlation_id: str, user_ids: Sequence[str]) -> List[UUID]: ...


class NotificationPipeline:
    def __init__(
        self,
        settings: Settings,
        store: PipelineStore,
        resolver: TargetResolver,
        dispatcher: OneSignalDispatcher,
        reconciler: StatusReconciler,
        idempotency: Optional[IdempotencyGuard] = None
    ):
        self.settings = settings
        self.store = store
        self.resolver = resolver
        self.dispatcher = dispatcher
        self.reconciler = reconciler
        self.idempotency = idempotency or IdempotencyGuard(None)

    async def drain(self) -> DrainSummary:
        """Process up to drain_batch_size due records; failures stay per record"""
        records = await self.store.fetch_due(self.settings.drain_batch_size)
        summary = DrainSummary()
        if not records:
            logger.info("No pending notifications to process")
            return summary

        logger.info(f"Found {len(records)} notifications to process")
        for record in records:
            try:
                outcome = await self.process_record(record)
            except Exception as e:
                logger.error(f"Error processing notification {record.id}: {e}", exc_info=True)
                outcome = RecordOutcome(id=record.id, status="error", reason=str(e))
            finally:
                clear_context()
            summary.results.append(outcome)

        summary.processed = len(summary.results)
        summary.sent = sum(1 for o in summary.results if o.status == "sent")
        summary.failed = sum(1 for o in summary.results if o.status in ("failed", "error"))
        summary.skipped = sum(1 for o in summary.results if o.status == "skipped")
        logger.info(
            f"Drain finished: {summary.sent} sent, {summary.failed} failed, {summary.skipped} skipped",
            extra={"processed": summary.processed}
        )
        return summary

    async def process_record(self, record: NotificationRecord) -> RecordOutcome:
        set_context(
            notification_id=str(record.id),
            correlation_id=record.correlation_id,
            user_id=record.user_id
        )

        if not await self.store.claim(record.id):
            logger.info(f"Notification {record.id} already claimed, skipping")
            return RecordOutcome(id=record.id, status="claimed_elsewhere")

        try:
            return await self._deliver(record)
        except Exception as e:
            # Claimed but never reconciled; close it out so it is not left pending
            logger.error(f"Error delivering notification {record.id}: {e}", exc_info=True)
            await self.reconciler.mark_failed(record.id, f"Processing error: {e}")
            return RecordOutcome(id=record.id, status="error", reason=str(e))

    async def _deliver(self, record: NotificationRecord) -> RecordOutcome:
        target = await self.resolver.resolve(record)
        if isinstance(target, Unresolvable):
            logger.warning(f"Skipping notification {record.id}: {target.reason}")
            await self.reconciler.mark_skipped(record.id, target.reason)
            return RecordOutcome(id=record.id, status="skipped", reason=target.reason)

        try:
            request = DispatchRequest(
                title=record.title,
                message=record.message,
                data=record.data,
                target=target
            )
        except ValidationError:
            reason = "title and message are required"
            logger.warning(f"Skipping notification {record.id}: {reason}")
            await self.reconciler.mark_skipped(record.id, reason)
            return RecordOutcome(id=record.id, status="skipped", reason=reason)

        correlation = {"notification_id": str(record.id), "correlation_id": record.correlation_id}
        try:
            result = await self.dispatcher.send(request, correlation)
        except ProviderTransportError as e:
            await self.reconciler.mark_failed(record.id, str(e))
            return RecordOutcome(id=record.id, status="failed", reason=str(e))

        await self.reconciler.reconcile(record.id, result)
        if result.ok:
            return RecordOutcome(
                id=record.id,
                status="sent",
                provider_id=result.provider_id,
                http_status=result.http_status
            )
        return RecordOutcome(
            id=record.id,
            status="failed",
            provider_id=result.provider_id,
            reason=describe_failure(result),
            http_status=result.http_status
        )

    async def send_immediate(
        self,
        request: SendNotificationRequest,
        idempotency_key: Optional[str] = None
    ) -> ImmediateSendResult:
        """
        Send one notification to an explicit list of users right away.

        With a correlation_id, the pending per-user records created for this
        send are claimed first and reconciled individually afterwards.
        """
        set_context(correlation_id=request.correlation_id, request_id=idempotency_key)

        if await self.idempotency.is_processed(idempotency_key):
            logger.info(f"Duplicate send request {idempotency_key} ignored")
            return ImmediateSendResult(
                success=True,
                duplicate=True,
                target_user_ids=request.user_ids
            )

        claimed: List[UUID] = []
        if request.correlation_id:
            claimed = await self.store.claim_correlated(request.correlation_id, request.user_ids)
            logger.info(f"Claimed {len(claimed)} records for correlation {request.correlation_id}")

        dispatch_request = DispatchRequest(
            title=request.title,
            message=request.message,
            data=request.data,
            target=ExplicitIds(ids=request.user_ids),
            send_after=request.send_after,
            delivery_time_of_day=request.delivery_time_of_day
        )

        try:
            result = await self.dispatcher.send(
                dispatch_request,
                {"correlation_id": request.correlation_id}
            )
        except ProviderTransportError as e:
            failed = [rid for rid in claimed if await self.reconciler.mark_failed(rid, str(e))]
            return ImmediateSendResult(
                success=False,
                target_user_ids=request.user_ids,
                reconciled_record_ids=failed,
                error=str(e)
            )

        reconciled = await self.reconciler.reconcile_many(claimed, result)
        if result.ok:
            await self.idempotency.mark_processed(idempotency_key)

        return ImmediateSendResult(
            success=result.ok,
            provider_id=result.provider_id,
            target_user_ids=request.user_ids,
            reconciled_record_ids=reconciled,
            http_status=result.http_status,
            provider_response=result.raw_response,
            error=None if result.ok else describe_failure(result)
        )


def build_pipeline(
    settings: Settings,
    store: NotificationStore,
    http_client: httpx.AsyncClient,
    idempotency: Optional[IdempotencyGuard] = None
) -> NotificationPipeline:
    """Wire the pipeline stages around one store and one HTTP client"""
    return NotificationPipeline(
        settings=settings,
        store=store,
        resolver=TargetResolver(
            store,
            branch_tag_key=settings.branch_tag_key,
            broadcast_segment=settings.broadcast_segment
        ),
        dispatcher=OneSignalDispatcher(settings, http_client),
        reconciler=StatusReconciler(store),
        idempotency=idempotency
    )


class PipelineResources:
    """Owns the connections a pipeline needs for the life of the process"""

    def __init__(self, settings: Settings):
        self.settings = settings
        self.db_pool = DatabasePool(settings)
        self.http_client: Optional[httpx.AsyncClient] = None
        self.idempotency: Optional[IdempotencyGuard] = None

    async def start(self) -> NotificationPipeline:
        await self.db_pool.connect()
        await init_db(self.db_pool)
        self.http_client = httpx.AsyncClient(timeout=self.settings.provider_timeout_seconds)
        self.idempotency = IdempotencyGuard.from_url(self.settings.redis_url)
        return build_pipeline(
            self.settings,
            NotificationStore(self.db_pool),
            self.http_client,
            self.idempotency
        )

    async def stop(self) -> None:
        if self.http_client is not None:
            await self.http_client.aclose()
        if self.idempotency is not None:
            await self.idempotency.close()
        await self.db_pool.disconnect()
