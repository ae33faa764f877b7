"""
Resolved addressing modes for one dispatch attempt.
"""

from typing import List, Literal, Union
from pydantic import BaseModel, ConfigDict, Field


class ExplicitIds(BaseModel):
    """Address specific audience members by external user id"""
    model_config = ConfigDict(frozen=True)

    kind: Literal["explicit_ids"] = "explicit_ids"
    ids: List[str] = Field(..., min_length=1)


class TagFilter(BaseModel):
    """Address every audience member tagged key=value"""
    model_config = ConfigDict(frozen=True)

    kind: Literal["tag_filter"] = "tag_filter"
    key: str
    value: str


class Broadcast(BaseModel):
    """Address every subscribed audience member"""
    model_config = ConfigDict(frozen=True)

    kind: Literal["broadcast"] = "broadcast"
    segment: str


class Unresolvable(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["unresolvable"] = "unresolvable"
    reason: str


DeliverableTarget = Union[ExplicitIds, TagFilter, Broadcast]
TargetSpec = Union[ExplicitIds, TagFilter, Broadcast, Unresolvable]
