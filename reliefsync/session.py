# file: reliefsync/session.py

import logging
from typing import List, Optional

import httpx

from reliefsync.config import Settings, get_settings
from reliefsync.models.user import CurrentUser
from reliefsync.services.api_client import ApiClient
from reliefsync.services.match_registry import MatchRegistry
from reliefsync.services.transport import SocketIOTransport, Transport
from reliefsync.stores.base import BaseStore
from reliefsync.stores.matching_store import MatchingStore
from reliefsync.stores.message_store import MessageStore
from reliefsync.stores.notification_store import NotificationStore
from reliefsync.stores.offer_store import OfferStore
from reliefsync.stores.request_store import RequestStore

logger = logging.getLogger(__name__)


class ReliefSession:
    """
    Everything one signed-in user needs: the REST client, the push transport,
    a single MatchRegistry and the stores built on them. Stores only listen
    for pushes meant for the user's role.
    """

    def __init__(self, settings: Settings, user: CurrentUser, api: ApiClient, transport: Transport):
        self.settings = settings
        self.user = user
        self.api = api
        self.transport = transport
        self.registry = MatchRegistry()

        shared = dict(api=api, transport=transport, user=user, registry=self.registry)
        self.requests = RequestStore(**shared)
        self.offers = OfferStore(**shared)
        self.matching = MatchingStore(**shared)
        self.notifications = NotificationStore(**shared)
        self.messages = MessageStore(**shared)

    @property
    def stores(self) -> List[BaseStore]:
        return [self.requests, self.offers, self.matching, self.notifications, self.messages]

    @classmethod
    async def login(
            cls,
            email: str,
            password: str,
            settings: Optional[Settings] = None,
            http_transport: Optional[httpx.AsyncBaseTransport] = None,
            transport: Optional[Transport] = None,
    ) -> "ReliefSession":
        settings = settings or get_settings()
        api = ApiClient(settings, transport=http_transport)
        try:
            token = await api.auth.login(email, password)
            api.set_token(token)
            user = CurrentUser.model_validate(await api.auth.current_user())
        except Exception:
            await api.aclose()
            raise
        logger.info(f"Logged in as {user.email} ({user.role})")
        if transport is None:
            transport = SocketIOTransport(settings.socket_url, headers={settings.auth_header: token})
        return cls(settings, user, api, transport)

    async def start(self) -> None:
        await self.transport.connect()
        await self.transport.join_user_room(self.user.user_room)
        for store in self.stores:
            await store.start()

    async def stop(self) -> None:
        for store in self.stores:
            await store.stop()
        await self.transport.disconnect()

    async def close(self) -> None:
        await self.stop()
        await self.api.aclose()

    async def __aenter__(self):
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()
