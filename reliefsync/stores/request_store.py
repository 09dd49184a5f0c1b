# file: reliefsync/stores/request_store.py

import logging
from typing import Any, Dict, List, Optional, Tuple

from pydantic import ValidationError

from reliefsync.models.match import Match
from reliefsync.models.offer import ResourceOffer
from reliefsync.models.request import RequestCreate, RequestUpdate, ResourceRequest
from reliefsync.services.api_client import ApiError
from reliefsync.services.lifecycle import MATCH_LIFECYCLE, REQUEST_LIFECYCLE
from reliefsync.stores.base import BaseStore
from reliefsync.utils.merge import ID_FIELD, STAMP_FIELD

logger = logging.getLogger(__name__)

PUSH_ENVELOPE_KEYS = ("requestId", "userId", "request")


def _unpack(data: Any) -> Tuple[Optional[str], Optional[Dict[str, Any]]]:
    """
    Splits a request push payload into (request id, fields to merge).
    Payloads that only name the request are invalidation hints and carry no
    fields.
    """
    if not isinstance(data, dict):
        return None, None
    if isinstance(data.get("request"), dict):
        request = data["request"]
        return data.get("requestId") or request.get(ID_FIELD), request
    if data.get(ID_FIELD):
        return data[ID_FIELD], data
    request_id = data.get("requestId")
    fields = {k: v for k, v in data.items() if k not in PUSH_ENVELOPE_KEYS}
    return request_id, fields or None


class RequestStore(BaseStore):
    kind = "request"
    model = ResourceRequest
    lifecycle = REQUEST_LIFECYCLE
    role = "victim"

    @property
    def requests(self) -> List[ResourceRequest]:
        return self._items()

    @property
    def current_request(self) -> Optional[ResourceRequest]:
        return self._current()

    def clear_current_request(self) -> None:
        self._current_id = None

    def matches_for(self, request_id: str) -> List[Match]:
        return self.registry.for_request(request_id)

    def get_user_matches(self) -> List[Dict[str, Any]]:
        """Every match of the user's requests, flattened with the request summary."""
        return self.registry.flatten(self.requests)

    def embedded_matches(self, request_id: str) -> List[Dict[str, Any]]:
        return self.registry.embedded_view(request_id)

    def _normalize(self, data: Dict[str, Any]) -> Dict[str, Any]:
        data = dict(data)
        matched_with = data.pop("matchedWith", None)
        request_id = data.get(ID_FIELD)
        if matched_with is not None and request_id:
            matches = self.registry.ingest_embedded(request_id, matched_with)
            data["matchIds"] = [m.id for m in matches]
        return data

    def _apply_match_body(self, body: Any) -> Optional[str]:
        """Stores the `{request, offer}` body the matching endpoints answer with."""
        if not isinstance(body, dict):
            return None
        offer = body.get("offer")
        if isinstance(offer, dict) and offer.get(ID_FIELD):
            self.registry.ingest_offer_embedded(offer[ID_FIELD], offer.get("matchedWith") or [])
        request = body.get("request", body)
        if isinstance(request, dict) and request.get(ID_FIELD):
            return self._store(request)
        return None

    async def _announce(self, event: str, request_id: str) -> None:
        record = self._records.get(request_id)
        await self.transport.emit(event, {
            "requestId": request_id,
            "userId": self.user.id,
            "request": record.data if record is not None else None,
        })

    # --- queries ---

    async def fetch_requests(self) -> List[ResourceRequest]:
        if not self._allowed("view"):
            return []

        async def operation():
            data = await self.api.requests.list_mine()
            self._store_all(data)
            logger.info(f"Loaded {len(self._order)} requests for user {self.user.id}")
            return self.requests

        return await self._run("Failed to fetch requests", operation, [])

    async def fetch_request(self, request_id: str) -> Optional[ResourceRequest]:
        if not request_id or not self._allowed("view"):
            return None

        async def operation():
            record_id = self._store(await self.api.requests.get(request_id))
            self._current_id = record_id
            return self.get(record_id)

        return await self._run("Failed to fetch request", operation)

    async def fetch_request_view(self, request_id: str) -> Optional[ResourceRequest]:
        """Read-only view of someone else's request (used by NGOs and volunteers)."""
        if not request_id:
            return None

        async def operation():
            return ResourceRequest.model_validate(await self.api.requests.view(request_id))

        return await self._run("Failed to fetch request", operation)

    async def fetch_public_requests(self) -> List[ResourceRequest]:
        async def operation():
            return [ResourceRequest.model_validate(r) for r in await self.api.requests.list_map()]

        return await self._run("Failed to fetch requests", operation, [])

    async def fetch_nearby(self, longitude: float, latitude: float, radius_km: float = 10) -> List[ResourceRequest]:
        async def operation():
            data = await self.api.requests.list_nearby(longitude, latitude, radius_km)
            return [ResourceRequest.model_validate(r) for r in data]

        return await self._run("Failed to fetch nearby requests", operation, [])

    async def fetch_accepted_for_ngo(self) -> List[ResourceRequest]:
        if not self._allowed("view accepted", role="ngo"):
            return []

        async def operation():
            data = await self.api.requests.list_accepted_for_ngo()
            return [ResourceRequest.model_validate(r) for r in data]

        return await self._run("Failed to fetch accepted requests", operation, [])

    async def get_request_matches(self, request_id: str) -> List[ResourceOffer]:
        """Candidate offers for a request. Does not touch the request itself."""
        if not request_id:
            return []

        async def operation():
            data = await self.api.requests.potential_matches(request_id)
            return [ResourceOffer.model_validate(o) for o in data]

        return await self._run("Failed to fetch matches", operation, [])

    # --- mutations ---

    async def create_request(self, data: Any) -> Optional[ResourceRequest]:
        if not self._allowed("create"):
            return None

        async def operation():
            payload = self._payload(data, RequestCreate)
            record_id = self._store(await self.api.requests.create(payload), front=True)
            await self._announce("new_request", record_id)
            return self.get(record_id)

        return await self._run("Failed to create request", operation)

    async def update_request(self, request_id: str, data: Any) -> Optional[ResourceRequest]:
        if not request_id or not self._allowed("update"):
            return None

        async def operation():
            self._check("edit", request_id)
            payload = self._payload(data, RequestUpdate)
            record_id = self._store(await self.api.requests.update(request_id, payload))
            await self._announce("request_updated", record_id)
            return self.get(record_id)

        return await self._run("Failed to update request", operation)

    async def delete_request(self, request_id: str) -> bool:
        if not request_id or not self._allowed("delete"):
            return False

        async def operation():
            self._check("delete", request_id)
            await self.api.requests.delete(request_id)
            self._remove(request_id)
            self.registry.remove_request(request_id)
            return True

        return await self._run("Failed to delete request", operation, False)

    async def cancel_request(self, request_id: str) -> Optional[ResourceRequest]:
        if not request_id or not self._allowed("cancel"):
            return None

        async def operation():
            self._check("cancel", request_id)
            record_id = self._store(await self.api.requests.cancel(request_id))
            await self._announce("request_updated", record_id)
            return self.get(record_id)

        return await self._run("Failed to cancel request", operation)

    async def match_request_with_offer(self, request_id: str, offer_id: str) -> Optional[ResourceRequest]:
        """
        Links a request with an offer. Matching a pair that is already linked
        is a no-op that returns the request as held, without a second POST.
        """
        if not request_id or not offer_id or not self._allowed("match"):
            return None

        async def operation():
            if self.registry.find(request_id, offer_id) is not None:
                logger.info(f"Request {request_id} is already matched with offer {offer_id}")
                return self.get(request_id)
            self._check("match", request_id)
            record_id = self._apply_match_body(await self.api.requests.match(request_id, offer_id))
            await self._announce("request_updated", record_id or request_id)
            return self.get(record_id or request_id)

        return await self._run("Failed to match with offer", operation)

    async def _match_action(self, action: str, request_id: str, offer_id: str, failure: str):
        if not request_id or not offer_id or not self._allowed(action):
            return None

        async def operation():
            self._check(action, request_id)
            match = self.registry.find(request_id, offer_id)
            if match is not None:
                MATCH_LIFECYCLE.check(action, match.status)
            call = getattr(self.api.requests, action)
            record_id = self._apply_match_body(await call(request_id, offer_id))
            if record_id is None:
                # Bodies like {"msg": "Match rejected"} carry no record
                if match is not None:
                    self.registry.transition(match.id, action)
                await self._refresh(request_id)
            await self._announce("request_updated", request_id)
            return self.get(request_id)

        return await self._run(failure, operation)

    async def accept_offer(self, request_id: str, offer_id: str) -> Optional[ResourceRequest]:
        """
        Accepts an offer already matched with the request. Without a prior
        match the backend answers 404 "Match not found"; that surfaces as
        `error` and leaves local state untouched.
        """
        return await self._match_action("accept", request_id, offer_id, "Failed to accept offer")

    async def reject_offer(self, request_id: str, offer_id: str) -> Optional[ResourceRequest]:
        return await self._match_action("reject", request_id, offer_id, "Failed to reject offer")

    async def fulfill_request(self, request_id: str, offer_id: str) -> Optional[ResourceRequest]:
        return await self._match_action("fulfill", request_id, offer_id, "Failed to fulfill request")

    # --- push side ---

    def rooms(self) -> List[str]:
        return [self.user.user_room]

    def events(self):
        return {
            "request_updated": self._on_request_updated,
            "requestUpdated": self._on_request_updated,
            "request_status_changed": self._on_request_updated,
            "new_request": self._on_new_request,
            "newRequest": self._on_new_request,
            "requestMatched": self._on_request_matched,
        }

    async def load(self) -> None:
        await self.fetch_requests()

    async def _refresh(self, request_id: str) -> None:
        try:
            self._store(await self.api.requests.get(request_id))
        except ApiError as e:
            if e.is_not_found:
                logger.info(f"Request {request_id} no longer exists; dropping it")
                self._remove(request_id)
                self.registry.remove_request(request_id)
                return
            logger.warning(f"Could not refresh request {request_id}: {e}")

    async def _on_request_updated(self, data):
        request_id, fields = _unpack(data)
        if request_id is None or request_id not in self._records:
            return
        if fields and set(fields) - {STAMP_FIELD}:
            self._merge(request_id, fields)
        else:
            await self._refresh(request_id)

    async def _on_new_request(self, data):
        request_id, fields = _unpack(data)
        if not fields or not fields.get(ID_FIELD):
            return
        try:
            request = ResourceRequest.model_validate(fields)
        except ValidationError as e:
            logger.warning(f"Dropping malformed new_request push: {e}")
            return
        if request.user_id != self.user.id:
            return
        self._insert_pushed(fields)

    async def _on_request_matched(self, data):
        request_id = data.get("requestId") if isinstance(data, dict) else None
        if request_id not in self._records:
            return
        await self._refresh(request_id)
