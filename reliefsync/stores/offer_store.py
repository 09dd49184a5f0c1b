# file: reliefsync/stores/offer_store.py

import logging
from typing import Any, Dict, List, Optional

from reliefsync.models.offer import OfferCreate, OfferUpdate, ResourceOffer, normalize_offer_status
from reliefsync.models.request import ResourceRequest
from reliefsync.services.api_client import ApiError
from reliefsync.services.lifecycle import OFFER_LIFECYCLE
from reliefsync.stores.base import BaseStore
from reliefsync.utils.merge import ID_FIELD, STAMP_FIELD
from reliefsync.utils.stats import count_by_status

logger = logging.getLogger(__name__)

OFFER_STATUSES = ("pending", "matched", "fulfilled", "expired")

PUSH_ENVELOPE_KEYS = ("offerId", "ngoId", "offer")


class OfferStore(BaseStore):
    kind = "offer"
    model = ResourceOffer
    lifecycle = OFFER_LIFECYCLE
    role = "ngo"

    @property
    def offers(self) -> List[ResourceOffer]:
        return self._items()

    @property
    def current_offer(self) -> Optional[ResourceOffer]:
        return self._current()

    def clear_current_offer(self) -> None:
        self._current_id = None

    def calculate_stats(self, offers: Optional[List[Any]] = None) -> Dict[str, int]:
        return count_by_status(self.offers if offers is None else offers, OFFER_STATUSES)

    def _normalize(self, data: Dict[str, Any]) -> Dict[str, Any]:
        data = dict(data)
        if "status" in data:
            data["status"] = normalize_offer_status(data["status"])
        matched_with = data.pop("matchedWith", None)
        offer_id = data.get(ID_FIELD)
        if matched_with is not None and offer_id:
            matches = self.registry.ingest_offer_embedded(offer_id, matched_with)
            data["matchIds"] = [m.id for m in matches]
        return data

    async def _announce(self, event: str, offer_id: str, include_offer: bool = True) -> None:
        payload = {"offerId": offer_id, "ngoId": self.user.id}
        record = self._records.get(offer_id)
        if include_offer and record is not None:
            payload["offer"] = record.data
        await self.transport.emit(event, payload)

    async def fetch_offers(self) -> List[ResourceOffer]:
        if not self._allowed("view"):
            return []

        async def operation():
            self._store_all(await self.api.offers.list_mine())
            logger.info(f"Loaded {len(self._order)} offers for NGO {self.user.id}")
            return self.offers

        return await self._run("Failed to fetch offers", operation, [])

    async def fetch_offer(self, offer_id: str) -> Optional[ResourceOffer]:
        if not offer_id or not self._allowed("view"):
            return None

        async def operation():
            record_id = self._store(await self.api.offers.get(offer_id))
            self._current_id = record_id
            return self.get(record_id)

        return await self._run("Failed to fetch offer details", operation)

    async def fetch_map_offers(self) -> List[ResourceOffer]:
        async def operation():
            return [ResourceOffer.model_validate(o) for o in await self.api.offers.list_map()]

        return await self._run("Failed to fetch offers", operation, [])

    async def get_offer_matches(self, offer_id: str) -> List[ResourceRequest]:
        """Requests the offer could serve. Read-only."""
        if not offer_id:
            return []

        async def operation():
            data = await self.api.offers.potential_matches(offer_id)
            return [ResourceRequest.model_validate(r) for r in data]

        return await self._run("Failed to fetch matches", operation, [])

    async def create_offer(self, data: Any) -> Optional[ResourceOffer]:
        if not self._allowed("create"):
            return None

        async def operation():
            payload = self._payload(data, OfferCreate)
            record_id = self._store(await self.api.offers.create(payload), front=True)
            await self._announce("new_offer", record_id)
            return self.get(record_id)

        return await self._run("Failed to create offer", operation)

    async def update_offer(self, offer_id: str, data: Any) -> Optional[ResourceOffer]:
        if not offer_id or not self._allowed("update"):
            return None

        async def operation():
            self._check("edit", offer_id)
            payload = self._payload(data, OfferUpdate)
            record_id = self._store(await self.api.offers.update(offer_id, payload))
            await self._announce("offer_updated", record_id)
            return self.get(record_id)

        return await self._run("Failed to update offer", operation)

    async def delete_offer(self, offer_id: str) -> bool:
        if not offer_id or not self._allowed("delete"):
            return False

        async def operation():
            self._check("delete", offer_id)
            await self.api.offers.delete(offer_id)
            self._remove(offer_id)
            self.registry.remove_offer(offer_id)
            return True

        return await self._run("Failed to delete offer", operation, False)

    async def expire_offer(self, offer_id: str) -> Optional[ResourceOffer]:
        if not offer_id or not self._allowed("expire"):
            return None

        async def operation():
            self._check("expire", offer_id)
            record_id = self._store(await self.api.offers.expire(offer_id))
            await self._announce("offer_expired", record_id, include_offer=False)
            return self.get(record_id)

        return await self._run("Failed to expire offer", operation)

    async def fulfill_offer(self, offer_id: str) -> Optional[ResourceOffer]:
        """
        Marks a matched offer fulfilled. The backend fulfils every request
        accepted against it; the same cascade is applied to the session's
        matches here, and the victims' sessions learn of it by push.
        """
        if not offer_id or not self._allowed("fulfill"):
            return None

        async def operation():
            self._check("fulfill", offer_id)
            record_id = self._store(await self.api.offers.fulfill(offer_id))
            fulfilled = self.registry.mark_offer_fulfilled(offer_id)
            logger.info(f"Offer {offer_id} fulfilled; {len(fulfilled)} matches completed")
            await self._announce("offer_fulfilled", record_id, include_offer=False)
            return self.get(record_id)

        return await self._run("Failed to fulfill offer", operation)

    async def match_offer_with_request(self, offer_id: str, request_id: str) -> Optional[ResourceOffer]:
        if not offer_id or not request_id or not self._allowed("match"):
            return None

        async def operation():
            if self.registry.find(request_id, offer_id) is not None:
                logger.info(f"Offer {offer_id} is already matched with request {request_id}")
                return self.get(offer_id)
            self._check("match", offer_id)
            body = await self.api.offers.match(offer_id, request_id)
            request = body.get("request") if isinstance(body, dict) else None
            if isinstance(request, dict) and request.get(ID_FIELD):
                self.registry.ingest_embedded(request[ID_FIELD], request.get("matchedWith") or [])
            record_id = self._store(body.get("offer", body))
            await self._announce("offer_updated", record_id)
            return self.get(record_id)

        return await self._run("Failed to match with request", operation)

    # --- push side ---

    def rooms(self) -> List[str]:
        return [self.user.role_room]

    def events(self):
        return {
            "offer_matched": self._on_offer_changed,
            "offer_updated": self._on_offer_changed,
            "offer_status_changed": self._on_offer_changed,
            "offer_expired": self._on_offer_expired,
            "offer_fulfilled": self._on_offer_fulfilled,
            "new_offer": self._on_new_offer,
        }

    async def load(self) -> None:
        await self.fetch_offers()

    async def _refresh(self, offer_id: str) -> None:
        try:
            self._store(await self.api.offers.get(offer_id))
        except ApiError as e:
            if e.is_not_found:
                logger.info(f"Offer {offer_id} no longer exists; dropping it")
                self._remove(offer_id)
                self.registry.remove_offer(offer_id)
                return
            logger.warning(f"Could not refresh offer {offer_id}: {e}")

    def _fields(self, data: Dict[str, Any]) -> Dict[str, Any]:
        # `{...offer, ...pushedFields}`: top-level fields sit beside the envelope keys
        fields = dict(data.get("offer") or {})
        fields.update({k: v for k, v in data.items() if k not in PUSH_ENVELOPE_KEYS})
        return fields

    async def _on_offer_changed(self, data):
        offer_id = data.get("offerId") if isinstance(data, dict) else None
        if offer_id not in self._records:
            return
        fields = self._fields(data)
        if set(fields) - {STAMP_FIELD, ID_FIELD}:
            self._merge(offer_id, fields)
        else:
            await self._refresh(offer_id)

    async def _on_offer_expired(self, data):
        offer_id = data.get("offerId") if isinstance(data, dict) else None
        if offer_id in self._records:
            self._merge(offer_id, {**self._fields(data), "status": "expired"})

    async def _on_offer_fulfilled(self, data):
        offer_id = data.get("offerId") if isinstance(data, dict) else None
        if offer_id in self._records:
            self._merge(offer_id, {**self._fields(data), "status": "fulfilled"})
            self.registry.mark_offer_fulfilled(offer_id)

    async def _on_new_offer(self, data):
        if not isinstance(data, dict) or data.get("ngoId") != self.user.id:
            return
        offer = data.get("offer")
        if isinstance(offer, dict):
            self._insert_pushed(self._normalize(offer))
