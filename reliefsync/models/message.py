# file: reliefsync/models/message.py

from datetime import datetime
from typing import Optional

from pydantic import field_validator

from reliefsync.models.common import WireModel, coerce_ref, id_field, wire_field


class Message(WireModel):
    id: str = id_field()
    sender: Optional[str] = None
    recipient: Optional[str] = None
    subject: str = ""
    content: str = ""
    read: bool = False
    created_at: Optional[datetime] = wire_field("createdAt", "created_at")

    @field_validator("sender", "recipient", mode="before")
    def validate_refs(cls, v):
        return coerce_ref(v)


class MessageCreate(WireModel):
    recipient: str
    subject: str = ""
    content: str

    @field_validator("content")
    def validate_content(cls, v):
        if not v.strip():
            raise ValueError("Message content cannot be empty")
        return v.strip()
