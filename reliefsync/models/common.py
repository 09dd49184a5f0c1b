# file: reliefsync/models/common.py

from datetime import datetime
from typing import Any, List, Literal, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

ResourceType = Literal["food", "shelter", "medical", "transport", "other"]
Urgency = Literal["low", "medium", "high", "critical"]

RESOURCE_TYPES = ("food", "shelter", "medical", "transport", "other")


def id_field(*aliases: str, default: Any = ...) -> Any:
    """Mongo-style `_id` on the wire, `id` in Python."""
    return Field(
        default=default,
        validation_alias=AliasChoices("_id", "id", *aliases),
        serialization_alias="_id",
    )


def wire_field(alias: str, *extra_aliases: str, default: Any = None, **kwargs) -> Any:
    if "default_factory" not in kwargs:
        kwargs["default"] = default
    return Field(
        validation_alias=AliasChoices(alias, *extra_aliases),
        serialization_alias=alias,
        **kwargs,
    )


def coerce_ref(value: Any) -> Any:
    # Populated references arrive as {"_id": ..., "name": ...}
    if isinstance(value, dict):
        return value.get("_id") or value.get("id")
    if value is None:
        return None
    return str(value)


class WireModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    def to_wire(self) -> dict:
        return self.model_dump(by_alias=True, mode="json", exclude_none=True)


class Location(WireModel):
    type: Literal["Point"] = "Point"
    coordinates: List[float] = Field(default_factory=list)
    address: str = ""

    @field_validator("coordinates")
    def validate_coordinates(cls, v):
        if v and len(v) != 2:
            raise ValueError("Coordinates must be [longitude, latitude]")
        return v

    @property
    def longitude(self) -> Optional[float]:
        return self.coordinates[0] if self.coordinates else None

    @property
    def latitude(self) -> Optional[float]:
        return self.coordinates[1] if self.coordinates else None


class Timestamped(WireModel):
    created_at: Optional[datetime] = wire_field("createdAt", "created_at")
    updated_at: Optional[datetime] = wire_field("updatedAt", "updated_at")
