# file: reliefsync/stores/message_store.py

import logging
from typing import Any, List, Optional

from reliefsync.models.message import Message, MessageCreate
from reliefsync.stores.base import BaseStore

logger = logging.getLogger(__name__)


class MessageStore(BaseStore):
    kind = "message"
    model = Message

    @property
    def messages(self) -> List[Message]:
        return self._items()

    @property
    def sent(self) -> List[Message]:
        return [m for m in self.messages if m.sender == self.user.id]

    @property
    def received(self) -> List[Message]:
        return [m for m in self.messages if m.recipient == self.user.id]

    @property
    def unread_count(self) -> int:
        return sum(1 for m in self.received if not m.read)

    async def fetch_messages(self) -> List[Message]:
        async def operation():
            self._store_all(await self.api.messages.list())
            return self.messages

        return await self._run("Failed to fetch messages", operation, [])

    async def fetch_sent(self) -> List[Message]:
        async def operation():
            for data in await self.api.messages.sent():
                self._store(data)
            return self.sent

        return await self._run("Failed to fetch sent messages", operation, [])

    async def fetch_received(self) -> List[Message]:
        async def operation():
            for data in await self.api.messages.received():
                self._store(data)
            return self.received

        return await self._run("Failed to fetch received messages", operation, [])

    async def send_message(self, data: Any) -> Optional[Message]:
        async def operation():
            payload = self._payload(data, MessageCreate)
            record_id = self._store(await self.api.messages.send(payload), front=True)
            logger.info(f"Message {record_id} sent to {payload['recipient']}")
            return self.get(record_id)

        return await self._run("Failed to send message", operation)

    async def mark_as_read(self, message_id: str) -> Optional[Message]:
        if not message_id:
            return None

        async def operation():
            return self.get(self._store(await self.api.messages.mark_read(message_id)))

        return await self._run("Failed to mark message as read", operation)

    async def delete_message(self, message_id: str) -> bool:
        if not message_id:
            return False

        async def operation():
            await self.api.messages.delete(message_id)
            self._remove(message_id)
            return True

        return await self._run("Failed to delete message", operation, False)

    async def load(self) -> None:
        await self.fetch_messages()
