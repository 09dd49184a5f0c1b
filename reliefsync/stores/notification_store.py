# file: reliefsync/stores/notification_store.py

import logging
from typing import Any, List

from reliefsync.models.notification import Notification
from reliefsync.stores.base import BaseStore
from reliefsync.utils.merge import ID_FIELD

logger = logging.getLogger(__name__)


class NotificationStore(BaseStore):
    kind = "notification"
    model = Notification

    @property
    def notifications(self) -> List[Notification]:
        return self._items()

    @property
    def unread_count(self) -> int:
        # Always derived from the list, never kept as a separate counter
        return sum(1 for n in self.notifications if not n.read)

    @property
    def emergencies(self) -> List[Notification]:
        return [n for n in self.notifications if n.is_emergency]

    def _mark_read(self, notification_id: str) -> None:
        record = self._records.get(notification_id)
        if record is not None and not record.data.get("read"):
            record.data["read"] = True
            self._changed()

    async def fetch_notifications(self) -> List[Notification]:
        async def operation():
            self._store_all(await self.api.notifications.list())
            return self.notifications

        return await self._run("Failed to fetch notifications", operation, [])

    async def fetch_unread_notifications(self) -> List[Notification]:
        """Adds unread notifications not already held; existing entries are left as they are."""
        async def operation():
            unread = await self.api.notifications.unread()
            for data in reversed(unread or []):
                if isinstance(data, dict) and data.get(ID_FIELD) not in self._records:
                    self._insert_pushed(data)
            return [n for n in self.notifications if not n.read]

        return await self._run("Failed to fetch unread notifications", operation, [])

    async def mark_as_read(self, notification_id: str) -> bool:
        if not notification_id:
            return False

        async def operation():
            await self.api.notifications.mark_read(notification_id)
            self._mark_read(notification_id)
            return True

        return await self._run("Failed to mark notification as read", operation, False)

    async def mark_all_as_read(self) -> bool:
        async def operation():
            await self.api.notifications.mark_all_read()
            for notification_id in list(self._order):
                self._mark_read(notification_id)
            return True

        return await self._run("Failed to mark all notifications as read", operation, False)

    async def delete_notification(self, notification_id: str) -> bool:
        if not notification_id:
            return False

        async def operation():
            await self.api.notifications.delete(notification_id)
            self._remove(notification_id)
            return True

        return await self._run("Failed to delete notification", operation, False)

    # --- push side ---

    def rooms(self) -> List[str]:
        return [self.user.user_room]

    def events(self):
        return {
            "notification": self._on_notification,
            "system_alert": self._on_system_alert,
            "emergency_dispatch": self._on_emergency_dispatch,
        }

    async def load(self) -> None:
        await self.fetch_notifications()

    async def _on_notification(self, data: Any):
        notification = data.get("notification", data) if isinstance(data, dict) else None
        if not self._insert_pushed(notification):
            logger.info(f"Notification push not added: {data!r}")

    async def _on_system_alert(self, data: Any):
        alerts = data.get("alerts") if isinstance(data, dict) else None
        if not isinstance(alerts, list):
            await self.fetch_notifications()
            return
        logger.warning(f"Emergency alert received with {len(alerts)} alerts")
        for alert in reversed(alerts):
            self._insert_pushed(alert)

    async def _on_emergency_dispatch(self, data: Any):
        logger.warning(f"Emergency dispatch received: {data!r}")
        await self.fetch_notifications()
