# file: reliefsync/stores/base.py

import logging
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Tuple, Type, TypeVar

from pydantic import BaseModel, ValidationError

from reliefsync.models.user import CurrentUser
from reliefsync.services.api_client import ApiClient, ApiError
from reliefsync.services.lifecycle import Lifecycle, TransitionError
from reliefsync.services.match_registry import MatchRegistry
from reliefsync.services.transport import Handler, Transport
from reliefsync.utils.merge import ID_FIELD, VersionedRecord, apply_patch, prepend_unique, replace

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)

ROLE_PLURALS = {
    "victim": "victims",
    "ngo": "NGOs",
    "volunteer": "volunteers",
    "government": "government agencies",
    "admin": "admins",
}


def _validation_message(e: ValidationError) -> str:
    first = e.errors()[0]
    where = ".".join(str(part) for part in first.get("loc", ()))
    return f"{where}: {first['msg']}" if where else first["msg"]


class BaseStore:
    """
    Client-side mirror of one kind of backend record.

    Records are held in wire format as VersionedRecords, in display order.
    REST responses replace records (authoritative); push events are merged
    field by field. Every public operation clears `error` before it starts
    and sets it, instead of raising, when it fails.
    """

    kind: str = "record"
    model: Type[BaseModel] = BaseModel
    lifecycle: Optional[Lifecycle] = None
    role: Optional[str] = None

    def __init__(
            self,
            api: ApiClient,
            transport: Transport,
            user: CurrentUser,
            registry: Optional[MatchRegistry] = None,
    ):
        self.api = api
        self.transport = transport
        self.user = user
        self.registry = registry if registry is not None else MatchRegistry()
        self.loading = False
        self.error: Optional[str] = None
        self.started = False
        self._records: Dict[str, VersionedRecord] = {}
        self._order: List[str] = []
        self._current_id: Optional[str] = None
        self._subscriptions: List[Tuple[str, Handler]] = []
        self._rooms: List[str] = []
        self._listeners: List[Callable[["BaseStore"], None]] = []

    # --- state ---

    def add_listener(self, listener: Callable[["BaseStore"], None]) -> None:
        self._listeners.append(listener)

    def _changed(self) -> None:
        for listener in list(self._listeners):
            listener(self)

    def _to_model(self, record: VersionedRecord) -> Optional[Any]:
        try:
            return self.model.model_validate(record.data)
        except ValidationError as e:
            logger.warning(f"Skipping unreadable {self.kind} {record.id}: {_validation_message(e)}")
            return None

    def _items(self) -> List[Any]:
        items = []
        for record_id in self._order:
            item = self._to_model(self._records[record_id])
            if item is not None:
                items.append(item)
        return items

    def _current(self) -> Optional[Any]:
        if self._current_id is None or self._current_id not in self._records:
            return None
        return self._to_model(self._records[self._current_id])

    def get(self, record_id: str) -> Optional[Any]:
        record = self._records.get(record_id)
        return self._to_model(record) if record is not None else None

    def __contains__(self, record_id: str) -> bool:
        return record_id in self._records

    def __len__(self):
        return len(self._order)

    def _normalize(self, data: Dict[str, Any]) -> Dict[str, Any]:
        """Hook for lifting embedded sub-records out of a payload before it is stored."""
        return dict(data)

    def _store(self, data: Dict[str, Any], front: bool = False) -> Optional[str]:
        """Applies an authoritative copy. Returns the record id, or None if the payload has none."""
        if not isinstance(data, dict) or not data.get(ID_FIELD):
            logger.warning(f"Ignoring {self.kind} payload without an id: {data!r}")
            return None
        data = self._normalize(data)
        record_id = data[ID_FIELD]
        record = self._records.get(record_id)
        if record is None:
            self._records[record_id] = VersionedRecord(data)
            if front:
                self._order = prepend_unique(self._order, [record_id], key=lambda i: i)
            else:
                self._order.append(record_id)
        else:
            replace(record, data, self.lifecycle)
        self._changed()
        return record_id

    def _store_all(self, payloads: Iterable[Dict[str, Any]]) -> List[str]:
        ids = []
        for data in payloads or []:
            record_id = self._store(data)
            if record_id is not None and record_id not in ids:
                ids.append(record_id)
        for stale in [i for i in self._order if i not in ids]:
            self._drop(stale)
        self._order = ids
        return ids

    def _merge(self, record_id: str, patch: Dict[str, Any]) -> bool:
        """Merges a pushed partial update into a known record."""
        record = self._records.get(record_id)
        if record is None:
            return False
        changed = apply_patch(record, self._normalize(patch), self.lifecycle)
        if changed:
            self._changed()
        return changed

    def _insert_pushed(self, data: Dict[str, Any]) -> bool:
        """Inserts a pushed new record unless a copy with the same id is already held."""
        record_id = data.get(ID_FIELD) if isinstance(data, dict) else None
        if not record_id:
            return False
        if record_id in self._records:
            return self._merge(record_id, data)
        try:
            self.model.model_validate(data)
        except ValidationError as e:
            logger.warning(f"Dropping malformed {self.kind} push {record_id}: {_validation_message(e)}")
            return False
        self._store(data, front=True)
        return True

    def _drop(self, record_id: str) -> None:
        self._records.pop(record_id, None)
        if record_id in self._order:
            self._order.remove(record_id)
        if self._current_id == record_id:
            self._current_id = None

    def _remove(self, record_id: str) -> None:
        self._drop(record_id)
        self._changed()

    def status_of(self, record_id: str) -> Optional[str]:
        record = self._records.get(record_id)
        return record.status if record is not None else None

    def _check(self, action: str, record_id: str) -> None:
        """Runs the lifecycle guard against the locally known status, if there is one."""
        status = self.status_of(record_id)
        if self.lifecycle is None or status is None:
            return
        if action == "delete":
            self.lifecycle.check_delete(status)
        else:
            self.lifecycle.check(action, status)

    # --- errors ---

    def clear_error(self) -> None:
        self.error = None

    def _fail(self, message: str) -> None:
        logger.error(f"{type(self).__name__}: {message}")
        self.error = message

    def _allowed(self, verb: str, role: Optional[str] = None) -> bool:
        role = role or self.role
        if role is None or self.user.role == role:
            return True
        self._fail(f"Access denied. Only {ROLE_PLURALS.get(role, role)} can {verb} {self.kind}s.")
        return False

    async def _run(self, failure: str, operation: Callable[[], Awaitable[Any]], default: Any = None) -> Any:
        self.loading = True
        self.error = None
        try:
            return await operation()
        except ApiError as e:
            self._fail(e.message or failure)
        except TransitionError as e:
            self._fail(str(e))
        except ValidationError as e:
            self._fail(f"{failure}: {_validation_message(e)}")
        finally:
            self.loading = False
        return default

    def _payload(self, data: Any, model: Type[M]) -> Dict[str, Any]:
        if not isinstance(data, model):
            data = model.model_validate(data)
        return data.to_wire()

    # --- push side ---

    def events(self) -> Dict[str, Handler]:
        return {}

    def rooms(self) -> List[str]:
        return []

    def should_listen(self) -> bool:
        return self.role is None or self.user.role == self.role

    async def start(self) -> None:
        if self.started or not self.should_listen():
            return
        await self.transport.connect()
        for room in self.rooms():
            if room == self.user.user_room:
                await self.transport.join_user_room(room)
            else:
                await self.transport.join_room(room)
            self._rooms.append(room)
        for event, handler in self.events().items():
            await self.transport.on(event, handler)
            self._subscriptions.append((event, handler))
        self.started = True
        logger.info(f"{type(self).__name__} listening in rooms {self._rooms}")
        await self.load()

    async def load(self) -> None:
        """Initial fetch run once the store is listening."""

    async def stop(self) -> None:
        if not self.started:
            return
        for event, handler in self._subscriptions:
            self.transport.off(event, handler)
        self._subscriptions = []
        for room in self._rooms:
            # The per-user room is shared by every store of the session
            if room != self.user.user_room:
                await self.transport.leave_room(room)
        self._rooms = []
        self.started = False
