# file: reliefsync/stores/matching_store.py

import logging
from typing import Any, Dict, List, Optional, Tuple

from pydantic import ValidationError

from reliefsync.models.match import Match
from reliefsync.models.offer import ResourceOffer
from reliefsync.services.lifecycle import MATCH_LIFECYCLE
from reliefsync.stores.base import BaseStore
from reliefsync.utils.stats import count_by_status

logger = logging.getLogger(__name__)

MATCH_STATUSES = ("pending", "accepted", "rejected", "fulfilled")

STATUS_EVENTS = {
    "accept": "match_accepted",
    "reject": "match_rejected",
    "fulfill": "match_fulfilled",
}


class MatchingStore(BaseStore):
    """
    Match operations by match id. Holds no list of its own: `matches` and
    `current_matches` are read from the session's MatchRegistry, so they
    always agree with the matches the request and offer stores see.
    """

    kind = "match"
    model = Match
    lifecycle = MATCH_LIFECYCLE

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self._focus: Optional[Tuple[str, str]] = None

    @property
    def matches(self) -> List[Match]:
        return self.registry.all()

    @property
    def current_matches(self) -> List[Match]:
        if self._focus is None:
            return []
        kind, key = self._focus
        if kind == "request":
            return self.registry.for_request(key)
        return self.registry.for_offer(key)

    def calculate_stats(self, matches: Optional[List[Any]] = None) -> Dict[str, int]:
        return count_by_status(self.matches if matches is None else matches, MATCH_STATUSES)

    async def _announce(self, event: str, match: Match) -> None:
        payload = {"matchId": match.id, "match": match.to_wire()}
        if event == "match_created":
            payload.update(requestId=match.request_id, offerId=match.offer_id)
        await self.transport.emit(event, payload)

    async def find_matches(self, request_id: str) -> List[ResourceOffer]:
        """Candidate offers for a request; nothing is linked until one is chosen."""
        if not request_id:
            return []

        async def operation():
            data = await self.api.matching.find(request_id)
            return [ResourceOffer.model_validate(o) for o in data]

        return await self._run("Failed to find matches", operation, [])

    async def match_request_offer(self, request_id: str, offer_id: str) -> Optional[Match]:
        if not request_id or not offer_id:
            return None

        async def operation():
            existing = self.registry.find(request_id, offer_id)
            if existing is not None:
                return existing
            body = await self.api.matching.create(request_id, offer_id)
            match = self.registry.upsert(Match.model_validate(body))
            await self._announce("match_created", match)
            return match

        return await self._run("Failed to create match", operation)

    async def _transition(self, action: str, match_id: str, failure: str) -> Optional[Match]:
        if not match_id:
            return None

        async def operation():
            match = self.registry.get(match_id)
            if match is not None:
                MATCH_LIFECYCLE.check(action, match.status)
            call = getattr(self.api.matching, action)
            stored = self.registry.upsert(Match.model_validate(await call(match_id)))
            await self._announce(STATUS_EVENTS[action], stored)
            return stored

        return await self._run(failure, operation)

    async def accept_match(self, match_id: str) -> Optional[Match]:
        return await self._transition("accept", match_id, "Failed to accept match")

    async def reject_match(self, match_id: str) -> Optional[Match]:
        return await self._transition("reject", match_id, "Failed to reject match")

    async def fulfill_match(self, match_id: str) -> Optional[Match]:
        return await self._transition("fulfill", match_id, "Failed to fulfill match")

    async def fetch_matches_by_request(self, request_id: str) -> List[Match]:
        if not request_id:
            return []

        async def operation():
            self.registry.ingest(await self.api.matching.by_request(request_id), requestId=request_id)
            self._focus = ("request", request_id)
            return self.current_matches

        return await self._run("Failed to fetch matches for request", operation, [])

    async def fetch_matches_by_offer(self, offer_id: str) -> List[Match]:
        if not offer_id:
            return []

        async def operation():
            self.registry.ingest(await self.api.matching.by_offer(offer_id), offerId=offer_id)
            self._focus = ("offer", offer_id)
            return self.current_matches

        return await self._run("Failed to fetch matches for offer", operation, [])

    async def fetch_my_matches(self) -> List[Match]:
        async def operation():
            self.registry.ingest(await self.api.matching.mine())
            return self.matches

        return await self._run("Failed to fetch matches", operation, [])

    # --- push side ---

    def should_listen(self) -> bool:
        return self.user.role_room is not None

    def rooms(self) -> List[str]:
        return [self.user.role_room]

    def events(self):
        return {
            "match_created": self._on_match_created,
            "match_accepted": self._on_status("accepted"),
            "match_rejected": self._on_status("rejected"),
            "match_fulfilled": self._on_status("fulfilled"),
        }

    async def load(self) -> None:
        await self.fetch_my_matches()

    def _ingest_pushed(self, data: Any) -> Optional[Match]:
        payload = data.get("match") if isinstance(data, dict) and "match" in data else data
        if not isinstance(payload, dict):
            return None
        try:
            return self.registry.upsert(Match.model_validate(payload))
        except ValidationError as e:
            logger.warning(f"Dropping malformed match push: {e}")
            return None

    async def _on_match_created(self, data):
        self._ingest_pushed(data)

    def _on_status(self, status: str):
        async def handler(data):
            if not isinstance(data, dict):
                return
            if isinstance(data.get("match"), dict):
                self._ingest_pushed(data)
            match_id = data.get("matchId")
            if match_id and self.registry.set_status(match_id, status) is None:
                logger.info(f"Ignoring {status} push for unknown match {match_id}")

        handler.__name__ = f"on_match_{status}"
        return handler
