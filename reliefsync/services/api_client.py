# file: reliefsync/services/api_client.py

import logging
from typing import Any, Dict, List, Optional

import httpx

from reliefsync.config import Settings

logger = logging.getLogger(__name__)


class ApiError(Exception):
    def __init__(self, message: str, status_code: Optional[int] = None, payload: Any = None):
        self.message = message
        self.status_code = status_code
        self.payload = payload
        super().__init__(message)

    @property
    def is_not_found(self) -> bool:
        return self.status_code == 404


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict):
        for key in ("msg", "message", "error", "detail"):
            if isinstance(body.get(key), str) and body[key]:
                return body[key]
    text = response.text.strip()
    return text or f"HTTP {response.status_code}"


def unwrap(body: Any, *keys: str) -> Any:
    """
    Strips the envelopes the backend wraps some resources in:
    `{"success": true, "data": ...}` and composite bodies such as
    `{"request": ..., "offer": ...}` (pick the first of `keys` present).
    """
    if not isinstance(body, dict):
        return body
    if "data" in body and ("success" in body or len(body) == 1):
        return body["data"]
    for key in keys:
        if isinstance(body.get(key), (dict, list)):
            return body[key]
    return body


class ApiClient:
    """
    Thin async wrapper around the relief platform's REST API.

    Non-2xx responses and connection failures are raised as ApiError; callers
    (the stores) decide how to surface them. The auth token travels as a
    default header on every call.
    """

    def __init__(
            self,
            settings: Settings,
            token: Optional[str] = None,
            transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.settings = settings
        self._client = httpx.AsyncClient(
            base_url=settings.api_url,
            timeout=settings.http_timeout,
            transport=transport,
        )
        self.auth = AuthApi(self)
        self.requests = RequestsApi(self)
        self.offers = OffersApi(self)
        self.matching = MatchingApi(self)
        self.notifications = NotificationsApi(self)
        self.messages = MessagesApi(self)
        token = token or settings.api_token
        if token:
            self.set_token(token)

    @property
    def token(self) -> Optional[str]:
        return self._client.headers.get(self.settings.auth_header)

    def set_token(self, token: str) -> None:
        self._client.headers[self.settings.auth_header] = token

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.aclose()

    async def request(self, method: str, path: str, **kwargs) -> Any:
        try:
            response = await self._client.request(method, path, **kwargs)
        except httpx.RequestError as e:
            logger.error(f"{method} {path} failed: {e}")
            raise ApiError(f"Could not reach the relief service: {e}") from e

        if response.is_error:
            message = _error_message(response)
            logger.error(f"{method} {path} -> {response.status_code}: {message}")
            payload = None
            try:
                payload = response.json()
            except ValueError:
                pass
            raise ApiError(message, response.status_code, payload)

        if not response.content:
            return None
        try:
            return response.json()
        except ValueError:
            return response.text

    async def get(self, path: str, **kwargs) -> Any:
        return await self.request("GET", path, **kwargs)

    async def post(self, path: str, **kwargs) -> Any:
        return await self.request("POST", path, **kwargs)

    async def put(self, path: str, **kwargs) -> Any:
        return await self.request("PUT", path, **kwargs)

    async def delete(self, path: str, **kwargs) -> Any:
        return await self.request("DELETE", path, **kwargs)


class _Endpoints:
    def __init__(self, client: ApiClient):
        self.client = client


class AuthApi(_Endpoints):
    async def login(self, email: str, password: str) -> str:
        body = await self.client.post("/auth/login", json={"email": email, "password": password})
        return body["token"]

    async def register(self, data: Dict[str, Any]) -> str:
        body = await self.client.post("/auth/register", json=data)
        return body["token"]

    async def current_user(self) -> Dict[str, Any]:
        return await self.client.get("/auth/user")


class RequestsApi(_Endpoints):
    async def list_mine(self) -> List[Dict[str, Any]]:
        return unwrap(await self.client.get("/requests"))

    async def list_map(self) -> List[Dict[str, Any]]:
        return unwrap(await self.client.get("/requests/map"))

    async def list_nearby(self, longitude: float, latitude: float, radius_km: float) -> List[Dict[str, Any]]:
        params = {"longitude": longitude, "latitude": latitude, "maxDistance": radius_km}
        return unwrap(await self.client.get("/requests/nearby", params=params))

    async def list_accepted_for_ngo(self) -> List[Dict[str, Any]]:
        return unwrap(await self.client.get("/requests/accepted-for-ngo"))

    async def get(self, request_id: str) -> Dict[str, Any]:
        return unwrap(await self.client.get(f"/requests/{request_id}"), "request")

    async def view(self, request_id: str) -> Dict[str, Any]:
        return unwrap(await self.client.get(f"/requests/view/{request_id}"), "request")

    async def create(self, data: Dict[str, Any]) -> Dict[str, Any]:
        return unwrap(await self.client.post("/requests", json=data), "request")

    async def update(self, request_id: str, data: Dict[str, Any]) -> Dict[str, Any]:
        return unwrap(await self.client.put(f"/requests/{request_id}", json=data), "request")

    async def delete(self, request_id: str) -> Any:
        return await self.client.delete(f"/requests/{request_id}")

    async def cancel(self, request_id: str) -> Dict[str, Any]:
        return unwrap(await self.client.put(f"/requests/{request_id}/cancel"), "request")

    async def potential_matches(self, request_id: str) -> List[Dict[str, Any]]:
        return unwrap(await self.client.get(f"/matching/requests/{request_id}/matches"))

    async def match(self, request_id: str, offer_id: str) -> Dict[str, Any]:
        return await self.client.post(f"/matching/requests/{request_id}/match/{offer_id}")

    async def accept(self, request_id: str, offer_id: str) -> Dict[str, Any]:
        return await self.client.put(f"/matching/requests/{request_id}/accept/{offer_id}")

    async def reject(self, request_id: str, offer_id: str) -> Dict[str, Any]:
        return await self.client.put(f"/matching/requests/{request_id}/reject/{offer_id}")

    async def fulfill(self, request_id: str, offer_id: str) -> Dict[str, Any]:
        return await self.client.put(f"/matching/requests/{request_id}/fulfill/{offer_id}")


class OffersApi(_Endpoints):
    async def list_mine(self) -> List[Dict[str, Any]]:
        return unwrap(await self.client.get("/offers"))

    async def list_map(self) -> List[Dict[str, Any]]:
        return unwrap(await self.client.get("/offers/map"))

    async def get(self, offer_id: str) -> Dict[str, Any]:
        return unwrap(await self.client.get(f"/offers/{offer_id}"), "offer")

    async def create(self, data: Dict[str, Any]) -> Dict[str, Any]:
        return unwrap(await self.client.post("/offers", json=data), "offer")

    async def update(self, offer_id: str, data: Dict[str, Any]) -> Dict[str, Any]:
        return unwrap(await self.client.put(f"/offers/{offer_id}", json=data), "offer")

    async def delete(self, offer_id: str) -> Any:
        return await self.client.delete(f"/offers/{offer_id}")

    async def expire(self, offer_id: str) -> Dict[str, Any]:
        return unwrap(await self.client.put(f"/offers/{offer_id}/expire"), "offer")

    async def fulfill(self, offer_id: str) -> Dict[str, Any]:
        return unwrap(await self.client.put(f"/offers/{offer_id}/fulfill"), "offer")

    async def potential_matches(self, offer_id: str) -> List[Dict[str, Any]]:
        return unwrap(await self.client.get(f"/matching/offers/{offer_id}/matches"))

    async def match(self, offer_id: str, request_id: str) -> Dict[str, Any]:
        return await self.client.post(f"/matching/offers/{offer_id}/match/{request_id}")


class MatchingApi(_Endpoints):
    async def find(self, request_id: str) -> List[Dict[str, Any]]:
        return unwrap(await self.client.get(f"/matching/find/{request_id}"))

    async def create(self, request_id: str, offer_id: str) -> Dict[str, Any]:
        body = await self.client.post("/matching/match", json={"requestId": request_id, "offerId": offer_id})
        return unwrap(body, "match")

    async def accept(self, match_id: str) -> Dict[str, Any]:
        return unwrap(await self.client.put(f"/matching/accept/{match_id}"), "match")

    async def reject(self, match_id: str) -> Dict[str, Any]:
        return unwrap(await self.client.put(f"/matching/reject/{match_id}"), "match")

    async def fulfill(self, match_id: str) -> Dict[str, Any]:
        return unwrap(await self.client.put(f"/matching/fulfill/{match_id}"), "match")

    async def by_request(self, request_id: str) -> List[Dict[str, Any]]:
        return unwrap(await self.client.get(f"/matching/request/{request_id}"))

    async def by_offer(self, offer_id: str) -> List[Dict[str, Any]]:
        return unwrap(await self.client.get(f"/matching/offer/{offer_id}"))

    async def mine(self) -> List[Dict[str, Any]]:
        return unwrap(await self.client.get("/matching/my-matches"))


class NotificationsApi(_Endpoints):
    async def list(self) -> List[Dict[str, Any]]:
        return unwrap(await self.client.get("/notifications"))

    async def unread(self) -> List[Dict[str, Any]]:
        return unwrap(await self.client.get("/notifications/unread"))

    async def mark_read(self, notification_id: str) -> Any:
        return await self.client.put(f"/notifications/{notification_id}/read")

    async def mark_all_read(self) -> Any:
        return await self.client.put("/notifications/read-all")

    async def delete(self, notification_id: str) -> Any:
        return await self.client.delete(f"/notifications/{notification_id}")


class MessagesApi(_Endpoints):
    async def list(self) -> List[Dict[str, Any]]:
        return unwrap(await self.client.get("/messages"))

    async def sent(self) -> List[Dict[str, Any]]:
        return unwrap(await self.client.get("/messages/sent"))

    async def received(self) -> List[Dict[str, Any]]:
        return unwrap(await self.client.get("/messages/received"))

    async def send(self, data: Dict[str, Any]) -> Dict[str, Any]:
        return unwrap(await self.client.post("/messages", json=data), "message")

    async def mark_read(self, message_id: str) -> Dict[str, Any]:
        return unwrap(await self.client.put(f"/messages/{message_id}/read"), "message")

    async def delete(self, message_id: str) -> Any:
        return await self.client.delete(f"/messages/{message_id}")
