"""
Data models and schemas for push dispatch
"""

from .schemas import (
    DeliveryStatus,
    DeviceRegistration,
    DispatchRequest,
    DispatchResult,
    NotificationRecord,
    SendNotificationRequest,
    TargetType,
)
from .targets import Broadcast, ExplicitIds, TagFilter, TargetSpec, Unresolvable

__all__ = [
    "Broadcast",
    "DeliveryStatus",
    "DeviceRegistration",
    "DispatchRequest",
    "DispatchResult",
    "ExplicitIds",
    "NotificationRecord",
    "SendNotificationRequest",
    "TagFilter",
    "TargetSpec",
    "TargetType",
    "Unresolvable",
]
