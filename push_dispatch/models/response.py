"""
Standardized API response envelope.
Every endpoint answers with success/data/error/message.
"""

from datetime import datetime, timezone
from typing import Any, Generic, Optional, TypeVar

from pydantic import BaseModel, Field


T = TypeVar('T')


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class StandardResponse(BaseModel, Generic[T]):
    """
    Example:
        {
            "success": true,
            "data": {"provider_id": "b98881cc-1e94-4366-bbd9-db8f3429292b"},
            "error": null,
            "message": "Notification sent successfully",
            "timestamp": "2026-10-16T09:00:00+00:00"
        }
    """
    success: bool
    data: Optional[T] = None
    error: Optional[str] = None
    message: str
    timestamp: datetime = Field(default_factory=_utcnow)


def success_response(data: Any, message: str = "Success") -> StandardResponse:
    """Create a successful response"""
    return StandardResponse(success=True, data=data, error=None, message=message)


def error_response(
    error: str,
    message: str = "An error occurred",
    data: Any = None
) -> StandardResponse:
    """Create an error response"""
    return StandardResponse(success=False, data=data, error=error, message=message)
