"""
Notification Manager

Per-user notification records (achievement, reminder, new_feature,
system_message) and the inbox's optimistic read-state updates.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)

NOTIFICATION_TYPES = ("achievement", "reminder", "new_feature", "system_message")
NOTIFICATION_LIMIT = 50


def notification_row(
    user_id: str,
    notification_type: str,
    title: str,
    message: str,
    link: Optional[str] = None,
) -> Dict[str, Any]:
    """Insert payload for one unread notification."""
    if notification_type not in NOTIFICATION_TYPES:
        raise ValueError(f"Unknown notification type '{notification_type}'")
    return {
        "user_id": user_id,
        "type": notification_type,
        "title": title,
        "message": message,
        "link": link,
        "is_read": False,
        "created_at": datetime.now(timezone.utc).isoformat(),
    }


@dataclass
class Notification:
    id: str
    type: str
    title: str
    message: str
    is_read: bool = False
    link: Optional[str] = None
    created_at: Optional[str] = None

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "Notification":
        return cls(
            id=str(row["id"]),
            type=row.get("type", "system_message"),
            title=row.get("title", ""),
            message=row.get("message", ""),
            is_read=bool(row.get("is_read", False)),
            link=row.get("link"),
            created_at=row.get("created_at"),
        )

    def as_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type,
            "title": self.title,
            "message": self.message,
            "isRead": self.is_read,
            "link": self.link,
            "createdAt": self.created_at,
        }


class NotificationManager:
    """Reads and writes the notifications table."""

    def __init__(self, supabase_client):
        """
        Args:
            supabase_client: Supabase client instance
        """
        self.supabase = supabase_client

    async def list_notifications(self, user_id: str, limit: int = NOTIFICATION_LIMIT) -> List[Notification]:
        """Most recent notifications for the user, newest first."""
        result = self.supabase.table('notifications') \
            .select('*') \
            .eq('user_id', user_id) \
            .order('created_at', desc=True) \
            .limit(limit) \
            .execute()
        return [Notification.from_row(row) for row in (result.data or [])]

    async def create_notification(
        self,
        user_id: str,
        notification_type: str,
        title: str,
        message: str,
        link: Optional[str] = None,
    ) -> Dict[str, Any]:
        row = notification_row(user_id, notification_type, title, message, link)
        result = self.supabase.table('notifications').insert(row).execute()
        logger.info(f"🔔 [NotificationManager] Created {notification_type} notification for user {user_id[:20]}...")
        return result.data[0] if result.data else row

    async def mark_read(self, user_id: str, notification_id: str) -> bool:
        """
        Mark one of the user's notifications as read.

        Returns:
            True if a row was updated, False if the user has no such notification
        """
        result = self.supabase.table('notifications') \
            .update({'is_read': True}) \
            .eq('id', notification_id) \
            .eq('user_id', user_id) \
            .execute()
        return bool(result.data)

    async def mark_all_read(self, user_id: str) -> int:
        result = self.supabase.table('notifications') \
            .update({'is_read': True}) \
            .eq('user_id', user_id) \
            .eq('is_read', False) \
            .execute()
        return len(result.data or [])


@dataclass
class ReadStateChange:
    """
    Read-flag transition over a set of notifications.

    Remembers the previous flags so the transition can be replayed in reverse.
    """
    ids: List[str]
    previous: Dict[str, bool] = field(default_factory=dict)

    def apply(self, notifications: Dict[str, Notification]):
        for notification_id in self.ids:
            notification = notifications.get(notification_id)
            if notification is None:
                continue
            self.previous[notification_id] = notification.is_read
            notification.is_read = True

    def revert(self, notifications: Dict[str, Notification]):
        for notification_id, was_read in self.previous.items():
            if notification_id in notifications:
                notifications[notification_id].is_read = was_read


class NotificationInbox:
    """
    One user's inbox with optimistic read-state updates.

    The read flag changes locally first; if the remote write fails the
    change is reverted and the error re-raised.
    """

    def __init__(self, manager: NotificationManager, user_id: str):
        self.manager = manager
        self.user_id = user_id
        self._items: Dict[str, Notification] = {}
        self._order: List[str] = []

    async def refresh(self) -> List[Notification]:
        notifications = await self.manager.list_notifications(self.user_id)
        self._items = {n.id: n for n in notifications}
        self._order = [n.id for n in notifications]
        return self.notifications

    @property
    def notifications(self) -> List[Notification]:
        return [self._items[nid] for nid in self._order]

    @property
    def unread_count(self) -> int:
        return sum(1 for n in self._items.values() if not n.is_read)

    async def mark_read(self, notification_id: str) -> bool:
        """
        Returns:
            False if the notification is unknown or the backend updated nothing
        """
        notification = self._items.get(notification_id)
        if notification is None:
            return False
        if notification.is_read:
            return True

        change = ReadStateChange(ids=[notification_id])
        change.apply(self._items)
        try:
            updated = await self.manager.mark_read(self.user_id, notification_id)
        except Exception as e:
            change.revert(self._items)
            logger.error(f"❌ [NotificationInbox] Failed to mark {notification_id} read, reverted: {e}")
            raise

        if not updated:
            change.revert(self._items)
            logger.warning(f"⚠️ [NotificationInbox] Notification {notification_id} not updated, reverted")
        return updated

    async def mark_all_read(self) -> int:
        """Mark every unread notification read. Returns how many were unread locally."""
        unread = [nid for nid in self._order if not self._items[nid].is_read]
        if not unread:
            return 0

        change = ReadStateChange(ids=unread)
        change.apply(self._items)
        try:
            await self.manager.mark_all_read(self.user_id)
        except Exception as e:
            change.revert(self._items)
            logger.error(f"❌ [NotificationInbox] Failed to mark all read, reverted {len(unread)} notifications: {e}")
            raise
        return len(unread)

    def as_dict(self) -> Dict[str, Any]:
        return {
            "notifications": [n.as_dict() for n in self.notifications],
            "unreadCount": self.unread_count,
        }
