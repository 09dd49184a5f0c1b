# file: reliefsync/utils/merge.py

import json
import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional, TypeVar

from pydantic import TypeAdapter, ValidationError

from reliefsync.services.lifecycle import Lifecycle

logger = logging.getLogger(__name__)

STATUS_FIELD = "status"
STAMP_FIELD = "updatedAt"
ID_FIELD = "_id"

_datetime_adapter = TypeAdapter(datetime)

T = TypeVar("T")


def parse_stamp(value: Any) -> Optional[datetime]:
    if value is None:
        return None
    try:
        stamp = _datetime_adapter.validate_python(value)
    except ValidationError:
        return None
    if stamp.tzinfo is None:
        stamp = stamp.replace(tzinfo=timezone.utc)
    return stamp


def _value_key(value: Any) -> str:
    return json.dumps(value, sort_keys=True, default=str)


def _wins(stamp: Optional[datetime], value: Any, held_stamp: Optional[datetime], held_value: Any) -> bool:
    # Unstamped writes apply in arrival order. Between stamped writes the newer
    # stamp wins, and equal stamps settle on the value so either arrival order
    # ends the same.
    if stamp is None or held_stamp is None:
        return True
    if stamp != held_stamp:
        return stamp > held_stamp
    return _value_key(value) > _value_key(held_value)


class VersionedRecord:
    """A wire-format record plus the version stamp each field was last written at."""

    def __init__(self, data: Dict[str, Any]):
        self.data: Dict[str, Any] = dict(data)
        stamp = parse_stamp(self.data.get(STAMP_FIELD))
        self.versions: Dict[str, Optional[datetime]] = {key: stamp for key in self.data}

    @property
    def id(self) -> Optional[str]:
        return self.data.get(ID_FIELD)

    @property
    def stamp(self) -> Optional[datetime]:
        return parse_stamp(self.data.get(STAMP_FIELD))

    @property
    def status(self) -> Optional[str]:
        return self.data.get(STATUS_FIELD)

    def __repr__(self):
        return f"<VersionedRecord {self.id} {self.status}>"


def apply_patch(record: VersionedRecord, patch: Dict[str, Any], lifecycle: Optional[Lifecycle] = None) -> bool:
    """
    Merges a pushed partial update into `record` field by field.

    Each field keeps whichever write carries the newest `updatedAt`; equal
    stamps fall back to a stable ordering of the values. A patch without a
    stamp is applied as the latest write but does not lower the field's
    version, so an older stamped replay still loses to the held copy. `status`
    is settled by the lifecycle instead. Returns True when anything changed.
    """
    stamp = parse_stamp(patch.get(STAMP_FIELD))
    changed = False

    for key, value in patch.items():
        if key == ID_FIELD:
            continue
        current = record.data.get(key)

        if key == STATUS_FIELD and lifecycle is not None:
            resolved = lifecycle.resolve(current, value)
            if resolved != current:
                record.data[key] = resolved
                record.versions[key] = stamp
                changed = True
            elif value != current:
                logger.warning(f"Ignoring {lifecycle.name} status {value} for {record.id}: record is {current}")
            continue

        held_stamp = record.versions.get(key)
        if key not in record.data or _wins(stamp, value, held_stamp, current):
            if current != value or key not in record.data:
                changed = True
            record.data[key] = value
            record.versions[key] = stamp if stamp is not None else held_stamp

    return changed


def replace(record: VersionedRecord, incoming: Dict[str, Any], lifecycle: Optional[Lifecycle] = None) -> bool:
    """
    Applies an authoritative (REST) copy of the record.

    A copy older than the one already held is a stale response that lost a
    race with a newer write and is skipped. A terminal status is kept even if
    the incoming copy disagrees.
    """
    incoming_stamp = parse_stamp(incoming.get(STAMP_FIELD))
    current_stamp = record.stamp
    if incoming_stamp is not None and current_stamp is not None and incoming_stamp < current_stamp:
        logger.info(f"Skipping stale copy of {record.id} ({incoming_stamp} < {current_stamp})")
        return False

    data = dict(incoming)
    current_status = record.status
    if lifecycle is not None and current_status is not None and lifecycle.is_terminal(current_status):
        if data.get(STATUS_FIELD) != current_status:
            logger.warning(
                f"Keeping terminal {lifecycle.name} status {current_status} for {record.id} "
                f"over {data.get(STATUS_FIELD)}"
            )
            data[STATUS_FIELD] = current_status

    record.data = data
    record.versions = {key: incoming_stamp for key in data}
    return True


def prepend_unique(existing: List[T], incoming: Iterable[T], key: Callable[[T], Any]) -> List[T]:
    """Prepends the incoming items whose key is not already present, keeping their order."""
    seen = {key(item) for item in existing}
    fresh = []
    for item in incoming:
        item_key = key(item)
        if item_key in seen:
            continue
        seen.add(item_key)
        fresh.append(item)
    return fresh + list(existing)

