# file: reliefsync/services/match_registry.py

import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional

from pydantic import ValidationError

from reliefsync.models.match import Match, pair_key
from reliefsync.models.request import ResourceRequest
from reliefsync.services.lifecycle import MATCH_LIFECYCLE

logger = logging.getLogger(__name__)

_OLDEST = datetime.min.replace(tzinfo=timezone.utc)


def _sort_key(match: Match):
    matched_at = match.matched_at
    if matched_at is not None and matched_at.tzinfo is None:
        matched_at = matched_at.replace(tzinfo=timezone.utc)
    return matched_at or _OLDEST


class MatchRegistry:
    """
    The one place a session keeps match records.

    Matches are keyed by their (request, offer) pair, so the copy embedded in
    a request, the copy embedded in an offer and the record returned by the
    matching endpoints all collapse into a single entry. Every id seen for a
    pair is indexed, so lookups work with whichever id a payload carried.
    """

    def __init__(self):
        self._by_pair: Dict[str, Match] = {}
        self._pair_by_id: Dict[str, str] = {}
        self._listeners: List[Callable[[Match], None]] = []

    def add_listener(self, listener: Callable[[Match], None]) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: Callable[[Match], None]) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _store(self, match: Match) -> Match:
        previous = self._by_pair.get(match.pair)
        self._by_pair[match.pair] = match
        if previous != match:
            for listener in list(self._listeners):
                listener(match)
        return match

    def __len__(self):
        return len(self._by_pair)

    def __contains__(self, match_id: str) -> bool:
        return match_id in self._pair_by_id or match_id in self._by_pair

    def upsert(self, match: Match) -> Match:
        existing = self._by_pair.get(match.pair)
        if existing is None:
            stored = match
        else:
            stored = self._merge(existing, match)
        self._store(stored)
        self._pair_by_id[match.id] = stored.pair
        self._pair_by_id[stored.id] = stored.pair
        return stored

    def _merge(self, existing: Match, incoming: Match) -> Match:
        update: Dict[str, Any] = {
            field: value
            for field, value in incoming.model_dump(exclude={"id", "status"}).items()
            if value is not None and field in incoming.model_fields_set
        }
        update["status"] = MATCH_LIFECYCLE.resolve(existing.status, incoming.status)
        if existing.has_synthetic_id and not incoming.has_synthetic_id:
            update["id"] = incoming.id
        return existing.model_copy(update=update)

    def ingest(self, payloads: Iterable[Dict[str, Any]], **defaults) -> List[Match]:
        stored = []
        for payload in payloads or []:
            try:
                match = Match.model_validate({**defaults, **payload})
            except ValidationError as e:
                logger.warning(f"Dropping malformed match payload {payload}: {e}")
                continue
            stored.append(self.upsert(match))
        return stored

    def ingest_embedded(self, request_id: str, matched_with: Iterable[Dict[str, Any]]) -> List[Match]:
        """Lifts a request's `matchedWith` entries (which reference offers) into the registry."""
        return self.ingest(matched_with, requestId=request_id)

    def ingest_offer_embedded(self, offer_id: str, matched_with: Iterable[Dict[str, Any]]) -> List[Match]:
        return self.ingest(matched_with, offerId=offer_id)

    def get(self, match_id: str) -> Optional[Match]:
        pair = self._pair_by_id.get(match_id, match_id)
        return self._by_pair.get(pair)

    def find(self, request_id: str, offer_id: str) -> Optional[Match]:
        return self._by_pair.get(pair_key(request_id, offer_id))

    def all(self) -> List[Match]:
        return sorted(self._by_pair.values(), key=_sort_key, reverse=True)

    def for_request(self, request_id: str) -> List[Match]:
        return [m for m in self.all() if m.request_id == request_id]

    def for_offer(self, offer_id: str) -> List[Match]:
        return [m for m in self.all() if m.offer_id == offer_id]

    def set_status(self, match_id: str, status: str) -> Optional[Match]:
        """Applies a pushed status (by match id or pair key), letting the lifecycle settle conflicts."""
        match = self.get(match_id)
        if match is None:
            return None
        resolved = MATCH_LIFECYCLE.resolve(match.status, status)
        if resolved == match.status:
            return match
        return self._store(match.model_copy(update={"status": resolved}))

    def transition(self, match_id: str, action: str) -> Match:
        """Applies a client action; raises TransitionError if it is not allowed."""
        match = self.get(match_id)
        if match is None:
            raise KeyError(match_id)
        return self._store(match.model_copy(update={"status": MATCH_LIFECYCLE.next_status(action, match.status)}))

    def mark_offer_fulfilled(self, offer_id: str) -> List[Match]:
        fulfilled = []
        for match in self.for_offer(offer_id):
            if MATCH_LIFECYCLE.can("fulfill", match.status):
                fulfilled.append(self.transition(match.id, "fulfill"))
        return fulfilled

    def _drop(self, matches: List[Match]) -> None:
        for match in matches:
            self._by_pair.pop(match.pair, None)
        self._pair_by_id = {i: p for i, p in self._pair_by_id.items() if p in self._by_pair}

    def remove_request(self, request_id: str) -> None:
        self._drop(self.for_request(request_id))

    def remove_offer(self, offer_id: str) -> None:
        self._drop(self.for_offer(offer_id))

    def clear(self) -> None:
        self._by_pair.clear()
        self._pair_by_id.clear()

    def embedded_view(self, request_id: str) -> List[Dict[str, Any]]:
        """The `matchedWith` shape screens built from request payloads expect."""
        return [
            {
                "_id": m.id,
                "resourceOfferId": m.offer_id,
                "status": m.status,
                "matchedBy": m.matched_by,
                "matchedAt": m.matched_at.isoformat() if m.matched_at else None,
            }
            for m in self.for_request(request_id)
        ]

    def flatten(self, requests: Iterable[ResourceRequest]) -> List[Dict[str, Any]]:
        """Every match of the given requests, each annotated with its request's summary."""
        flattened = []
        for request in requests:
            for match in self.for_request(request.id):
                flattened.append({
                    **match.to_wire(),
                    "requestId": request.id,
                    "requestType": request.request_type,
                    "requestTitle": request.display_title,
                    "requestDescription": request.description,
                    "requestLocation": request.location.to_wire() if request.location else None,
                    "requestCreatedAt": request.created_at.isoformat() if request.created_at else None,
                })
        return flattened
