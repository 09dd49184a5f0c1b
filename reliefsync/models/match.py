# file: reliefsync/models/match.py

from datetime import datetime
from typing import Literal, Optional

from pydantic import field_validator, model_validator

from reliefsync.models.common import WireModel, coerce_ref, id_field, wire_field

MatchStatus = Literal["pending", "accepted", "rejected", "fulfilled"]


def pair_key(request_id: str, offer_id: str) -> str:
    return f"{request_id}:{offer_id}"


class Match(WireModel):
    id: str = id_field(default="")
    request_id: str = wire_field("requestId", "resourceRequestId", "request", "request_id", default=...)
    offer_id: str = wire_field("offerId", "resourceOfferId", "offer", "offer_id", default=...)
    status: MatchStatus = "pending"
    matched_by: Literal["system", "manual"] = wire_field("matchedBy", "matched_by", default="system")
    matched_at: Optional[datetime] = wire_field("matchedAt", "createdAt", "matched_at")
    quantity_allocated: Optional[int] = wire_field("quantityAllocated", "quantity_allocated")
    updated_at: Optional[datetime] = wire_field("updatedAt", "updated_at")

    @field_validator("request_id", "offer_id", mode="before")
    def validate_refs(cls, v):
        return coerce_ref(v)

    @model_validator(mode="after")
    def fill_synthetic_id(self):
        # Embedded records from older payloads carry no id of their own
        if not self.id:
            self.id = pair_key(self.request_id, self.offer_id)
        return self

    @property
    def pair(self) -> str:
        return pair_key(self.request_id, self.offer_id)

    @property
    def has_synthetic_id(self) -> bool:
        return self.id == self.pair
