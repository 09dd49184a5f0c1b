# file: reliefsync/models/offer.py

from datetime import datetime, timedelta, timezone
from typing import List, Literal, Optional

from pydantic import Field, field_validator

from reliefsync.models.common import (
    Location,
    ResourceType,
    Timestamped,
    WireModel,
    coerce_ref,
    id_field,
    wire_field,
)

OfferStatus = Literal["pending", "matched", "fulfilled", "expired"]

MIN_EXPIRY_HOURS = 1
MAX_EXPIRY_HOURS = 168

# Older backend builds report availability instead of the lifecycle status.
STATUS_ALIASES = {
    "available": "pending",
    "partially_matched": "matched",
    "fully_matched": "matched",
}


def _aware(value: datetime) -> datetime:
    return value if value.tzinfo is not None else value.replace(tzinfo=timezone.utc)


def normalize_offer_status(value):
    if isinstance(value, str):
        return STATUS_ALIASES.get(value, value)
    return value


class ResourceOffer(Timestamped):
    id: str = id_field()
    user_id: Optional[str] = wire_field("userId", "offeredBy", "user_id")
    resource_type: ResourceType = wire_field("resourceType", "type", "resource_type", default="other")
    title: str = ""
    description: str = ""
    quantity: int = Field(default=1, ge=1)
    expires_in: Optional[int] = wire_field(
        "expiresIn", "expires_in", ge=MIN_EXPIRY_HOURS, le=MAX_EXPIRY_HOURS
    )
    available_from: Optional[datetime] = wire_field("availableFrom", "available_from")
    available_until: Optional[datetime] = wire_field("availableUntil", "validUntil", "available_until")
    location: Optional[Location] = None
    additional_info: str = wire_field("additionalInfo", "additional_info", default="")
    status: OfferStatus = "pending"
    match_ids: List[str] = wire_field("matchIds", "match_ids", default_factory=list)

    @field_validator("user_id", mode="before")
    def validate_user_id(cls, v):
        return coerce_ref(v)

    @field_validator("status", mode="before")
    def validate_status(cls, v):
        return normalize_offer_status(v)

    def is_past_window(self, now: datetime) -> bool:
        if self.available_until is not None:
            return now >= _aware(self.available_until)
        if self.expires_in and self.created_at is not None:
            return now >= _aware(self.created_at) + timedelta(hours=self.expires_in)
        return False


class OfferCreate(WireModel):
    resource_type: ResourceType = wire_field("resourceType", "type", "resource_type", default=...)
    title: str = ""
    description: str
    quantity: int = Field(gt=0)
    expires_in: int = wire_field(
        "expiresIn", "expires_in", default=24, ge=MIN_EXPIRY_HOURS, le=MAX_EXPIRY_HOURS
    )
    location: Location
    additional_info: Optional[str] = wire_field("additionalInfo", "additional_info")


class OfferUpdate(WireModel):
    resource_type: Optional[ResourceType] = wire_field("resourceType", "type", "resource_type")
    title: Optional[str] = None
    description: Optional[str] = None
    quantity: Optional[int] = Field(default=None, gt=0)
    expires_in: Optional[int] = wire_field(
        "expiresIn", "expires_in", ge=MIN_EXPIRY_HOURS, le=MAX_EXPIRY_HOURS
    )
    location: Optional[Location] = None
    additional_info: Optional[str] = wire_field("additionalInfo", "additional_info")
