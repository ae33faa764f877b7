"""
Target resolution: decide who a notification record is addressed to.
"""

import logging
from typing import Iterable, List, Protocol

from push_dispatch.models.schemas import NotificationRecord, TargetType
from push_dispatch.models.targets import Broadcast, ExplicitIds, TagFilter, TargetSpec, Unresolvable

logger = logging.getLogger(__name__)


class DeviceDirectory(Protocol):
    async def active_external_ids(self, user_id: str) -> List[str]:
        ...


def dedupe_ids(ids: Iterable[str]) -> List[str]:
    """Drop empty ids and repeats, keeping first-seen order"""
    return list(dict.fromkeys(i for i in ids if i))


class TargetResolver:
    """
    Maps a NotificationRecord to a TargetSpec.

    A record with a user_id always goes to that user's devices, falling back
    to the raw user_id as the external id when no active device is registered.
    Branch records become a tag filter and global records a segment broadcast.
    Anything else is Unresolvable and must not be dispatched.
    """

    def __init__(
        self,
        devices: DeviceDirectory,
        branch_tag_key: str = "branch_id",
        broadcast_segment: str = "Subscribed Users"
    ):
        self.devices = devices
        self.branch_tag_key = branch_tag_key
        self.broadcast_segment = broadcast_segment

    async def resolve(self, record: NotificationRecord) -> TargetSpec:
        if record.user_id:
            external_ids = dedupe_ids(await self.devices.active_external_ids(record.user_id))
            if external_ids:
                return ExplicitIds(ids=external_ids)
            logger.info(
                f"No active devices for user {record.user_id}, using user id as external id"
            )
            return ExplicitIds(ids=[record.user_id])

        target_type = (record.target_type or "").strip().lower()

        if target_type == TargetType.BRANCH.value:
            if not record.target_value:
                return Unresolvable(reason="branch notification without target_value")
            return TagFilter(key=self.branch_tag_key, value=record.target_value)

        if target_type == TargetType.GLOBAL.value:
            return Broadcast(segment=self.broadcast_segment)

        return Unresolvable(
            reason=f"no user_id and unsupported target_type {record.target_type!r}"
        )
