# file: reliefsync/models/notification.py

from datetime import datetime
from typing import Literal, Optional

from pydantic import field_validator, model_validator

from reliefsync.models.common import WireModel, id_field, wire_field

NotificationType = Literal["generic", "system_alert", "emergency_dispatch", "emergency_contact"]

KNOWN_TYPES = ("generic", "system_alert", "emergency_dispatch", "emergency_contact")


class Notification(WireModel):
    id: str = id_field()
    type: NotificationType = "generic"
    title: str = ""
    message: str = ""
    priority: Literal["low", "medium", "high", "urgent"] = "medium"
    read: bool = False
    created_at: Optional[datetime] = wire_field("createdAt", "created_at")
    link: Optional[str] = None
    related_resource: Optional[dict] = wire_field("relatedResource", "related_resource")

    @field_validator("type", mode="before")
    def normalize_type(cls, v):
        # request_matched, offer_accepted, ... are all plain inbox items
        return v if v in KNOWN_TYPES else "generic"

    @model_validator(mode="after")
    def derive_link(self):
        if self.link is None and self.related_resource:
            kind = self.related_resource.get("resourceType")
            resource_id = self.related_resource.get("resourceId")
            if kind in ("request", "offer") and resource_id:
                self.link = f"/{kind}s/{resource_id}"
        return self

    @property
    def is_emergency(self) -> bool:
        return self.type in ("system_alert", "emergency_dispatch", "emergency_contact")
