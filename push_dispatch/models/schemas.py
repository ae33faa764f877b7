from datetime import datetime
from enum import Enum
from typing import Optional, List, Dict, Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator

from push_dispatch.models.targets import DeliverableTarget


class TargetType(str, Enum):
    USER = "user"
    BRANCH = "branch"
    GLOBAL = "global"


class DeliveryStatus(str, Enum):
    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"
    SKIPPED = "skipped"


class NotificationRecord(BaseModel):
    """
    Row of the notifications table.
    Created by application logic; only the status fields are written here.
    """
    id: UUID
    user_id: Optional[str] = None
    title: str = ""
    message: str = ""
    data: Dict[str, Any] = Field(default_factory=dict)
    # Kept as a plain string so unknown values resolve to a skip instead of a parse error
    target_type: Optional[str] = None
    target_value: Optional[str] = None
    scheduled_for: Optional[datetime] = None
    is_push_sent: bool = False
    delivery_status: DeliveryStatus = DeliveryStatus.PENDING
    failure_reason: Optional[str] = None
    provider_id: Optional[str] = None
    correlation_id: Optional[str] = None
    sent_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @field_validator("data", mode="before")
    @classmethod
    def default_data(cls, v):
        """NULL or non-object jsonb becomes an empty object"""
        return v if isinstance(v, dict) else {}

    @field_validator("user_id", "target_value", "correlation_id", mode="before")
    @classmethod
    def uuid_to_str(cls, v):
        # uuid-typed columns come back from asyncpg as UUID objects
        return str(v) if isinstance(v, UUID) else v

    @field_validator("title", "message", mode="before")
    @classmethod
    def default_text(cls, v):
        return v if v is not None else ""


class DeviceRegistration(BaseModel):
    """Row of the user_devices table (owned by the device-registration subsystem)"""
    user_id: str
    onesignal_user_id: Optional[str] = None
    is_active: bool = True

    @field_validator("user_id", mode="before")
    @classmethod
    def uuid_to_str(cls, v):
        return str(v) if isinstance(v, UUID) else v


class DispatchRequest(BaseModel):
    """Everything the dispatcher needs for one outbound provider call"""
    title: str = Field(..., min_length=1)
    message: str = Field(..., min_length=1)
    data: Dict[str, Any] = Field(default_factory=dict)
    target: DeliverableTarget
    send_after: Optional[datetime] = None
    delivery_time_of_day: Optional[str] = None

    @field_validator("title", "message")
    @classmethod
    def not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("must not be blank")
        return v

    @property
    def url(self) -> Optional[str]:
        """Deep-link URL carried in the data payload"""
        url = self.data.get("url")
        if isinstance(url, str) and url.strip():
            return url
        return None


class DispatchResult(BaseModel):
    ok: bool
    provider_id: Optional[str] = None
    raw_response: Any = None
    http_status: int


class SendNotificationRequest(BaseModel):
    """Body of the immediate-send endpoint"""
    model_config = ConfigDict(
        populate_by_name=True,
        json_schema_extra={
            "example": {
                "userIds": ["user-123", "user-456"],
                "title": "Sunday service",
                "message": "Service starts at 10:00 in the main hall",
                "data": {"url": "https://example.com/meetings/42"},
                "correlationId": "6f1c2a1e-1f0e-4f55-9d0c-0b9a3c1b6d2e"
            }
        }
    )

    user_ids: List[str] = Field(..., alias="userIds")
    title: str
    message: str
    data: Dict[str, Any] = Field(default_factory=dict)
    send_after: Optional[datetime] = Field(default=None, alias="sendAfter")
    delivery_time_of_day: Optional[str] = Field(default=None, alias="deliveryTimeOfDay")
    correlation_id: Optional[str] = Field(default=None, alias="correlationId")

    @field_validator("user_ids")
    @classmethod
    def clean_user_ids(cls, v: List[str]) -> List[str]:
        """Drop blank ids, de-duplicate preserving order; at least one must remain"""
        cleaned = list(dict.fromkeys(uid.strip() for uid in v if uid and uid.strip()))
        if not cleaned:
            raise ValueError("userIds array is required and must not be empty")
        return cleaned

    @field_validator("title", "message")
    @classmethod
    def required_text(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("title and message are required")
        return v

    @field_validator("data", mode="before")
    @classmethod
    def default_data(cls, v):
        return v if v is not None else {}


class RecordOutcome(BaseModel):
    """Per-record result reported by the drain"""
    id: UUID
    status: str  # sent, failed, skipped, claimed_elsewhere, error
    provider_id: Optional[str] = None
    reason: Optional[str] = None
    http_status: Optional[int] = None


class DrainSummary(BaseModel):
    processed: int = 0
    sent: int = 0
    failed: int = 0
    skipped: int = 0
    results: List[RecordOutcome] = Field(default_factory=list)


class ImmediateSendResult(BaseModel):
    success: bool
    provider_id: Optional[str] = None
    target_user_ids: List[str] = Field(default_factory=list)
    reconciled_record_ids: List[UUID] = Field(default_factory=list)
    http_status: Optional[int] = None
    provider_response: Any = None
    error: Optional[str] = None
    duplicate: bool = False
