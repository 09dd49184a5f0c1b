# file: reliefsync/models/request.py

from datetime import datetime
from typing import List, Literal, Optional

from pydantic import Field, field_validator

from reliefsync.models.common import (
    Location,
    ResourceType,
    Timestamped,
    Urgency,
    WireModel,
    coerce_ref,
    id_field,
    wire_field,
)

RequestStatus = Literal["pending", "matched", "accepted", "fulfilled", "cancelled"]


class ResourceRequest(Timestamped):
    id: str = id_field()
    user_id: Optional[str] = wire_field("userId", "requestedBy", "user_id")
    request_type: ResourceType = wire_field("requestType", "resourceType", "request_type", default="other")
    title: str = ""
    description: str = ""
    quantity: int = Field(default=1, ge=1)
    urgency: Urgency = "medium"
    location: Optional[Location] = None
    additional_info: str = wire_field("additionalInfo", "additional_info", default="")
    status: RequestStatus = "pending"
    required_by: Optional[datetime] = wire_field("requiredBy", "required_by")
    match_ids: List[str] = wire_field("matchIds", "match_ids", default_factory=list)

    @field_validator("user_id", mode="before")
    def validate_user_id(cls, v):
        return coerce_ref(v)

    @property
    def display_title(self) -> str:
        return self.title or self.request_type


class RequestCreate(WireModel):
    request_type: ResourceType = wire_field("requestType", "request_type", default=...)
    title: str = ""
    description: str
    quantity: int = Field(default=1, gt=0)
    urgency: Urgency = "medium"
    location: Location
    additional_info: Optional[str] = wire_field("additionalInfo", "additional_info")
    required_by: Optional[datetime] = wire_field("requiredBy", "required_by")

    @field_validator("title")
    def default_title(cls, v):
        return v.strip()


class RequestUpdate(WireModel):
    request_type: Optional[ResourceType] = wire_field("requestType", "request_type")
    title: Optional[str] = None
    description: Optional[str] = None
    quantity: Optional[int] = Field(default=None, gt=0)
    urgency: Optional[Urgency] = None
    location: Optional[Location] = None
    additional_info: Optional[str] = wire_field("additionalInfo", "additional_info")
    required_by: Optional[datetime] = wire_field("requiredBy", "required_by")
