"""
Ingestion endpoints: scheduled drain and immediate send.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Header, Request

from push_dispatch.config import ConfigurationError
from push_dispatch.logging_config import clear_context, get_logger
from push_dispatch.models.response import error_response, success_response
from push_dispatch.models.schemas import SendNotificationRequest
from push_dispatch.services.pipeline import NotificationPipeline

router = APIRouter(prefix="/api/notifications", tags=["notifications"])
logger = get_logger(__name__)


def get_pipeline(request: Request) -> NotificationPipeline:
    """The pipeline built at startup; absent only when configuration is missing"""
    pipeline = getattr(request.app.state, "pipeline", None)
    if pipeline is None:
        raise getattr(request.app.state, "config_error", None) or ConfigurationError(
            ["pipeline"], "service not initialised"
        )
    return pipeline


@router.post("/send")
async def send_notification(
    body: SendNotificationRequest,
    idempotency_key: Optional[str] = Header(default=None, alias="Idempotency-Key"),
    pipeline: NotificationPipeline = Depends(get_pipeline)
):
    """Send a notification to an explicit list of users now (or at sendAfter)"""
    logger.info(f"Immediate send requested for {len(body.user_ids)} users")
    try:
        result = await pipeline.send_immediate(body, idempotency_key)
    finally:
        clear_context()

    if result.duplicate:
        return success_response(data=result, message="Duplicate request ignored")
    if result.success:
        return success_response(data=result, message="Notification sent successfully")
    return error_response(
        error=result.error or "Notification was not delivered",
        message="Notification was not delivered",
        data=result
    )


@router.post("/drain")
async def drain_notifications(pipeline: NotificationPipeline = Depends(get_pipeline)):
    """Process due notifications; called by the external scheduler"""
    summary = await pipeline.drain()
    if summary.processed == 0:
        return success_response(data=summary, message="No pending notifications")
    return success_response(
        data=summary,
        message=f"Processed {summary.processed} notifications"
    )
