"""
Unit Tests for Notification Manager

Tests listing, user-scoped read updates and the inbox's optimistic
read-state with rollback.
"""

import pytest
import sys
import os

# Add project root to path
project_root = os.path.abspath(os.path.join(os.path.dirname(__file__), "../.."))
sys.path.insert(0, os.path.join(project_root, "medanna_simulator", "src"))

from medanna_simulator.notification_manager import (
    NotificationInbox,
    NotificationManager,
    notification_row,
)

USER = "user-1"


@pytest.fixture
def db(supabase_factory):
    rows = [
        {"id": str(i), "user_id": USER, "type": "reminder", "title": f"n{i}", "message": "m",
         "is_read": i == 1, "link": None, "created_at": f"2024-06-{i:02d}T10:00:00+00:00"}
        for i in range(1, 4)
    ]
    rows.append({"id": "99", "user_id": "someone-else", "type": "system_message", "title": "theirs",
                 "message": "m", "is_read": False, "link": None, "created_at": "2024-06-05T10:00:00+00:00"})
    return supabase_factory({"notifications": rows})


class FlakyManager(NotificationManager):
    """Lists normally, fails every read-state write."""

    async def mark_read(self, user_id, notification_id):
        raise RuntimeError("network down")

    async def mark_all_read(self, user_id):
        raise RuntimeError("network down")


class TestNotificationManager:
    """Test suite for NotificationManager."""

    def test_notification_row(self):
        row = notification_row(USER, "achievement", "Well done", "You scored 9/10.", link="#dashboard")
        assert row["is_read"] is False
        assert row["link"] == "#dashboard"

    def test_unknown_type_rejected(self):
        with pytest.raises(ValueError):
            notification_row(USER, "spam", "t", "m")

    @pytest.mark.asyncio
    async def test_list_is_newest_first_and_user_scoped(self, db):
        notifications = await NotificationManager(db).list_notifications(USER)
        assert [n.title for n in notifications] == ["n3", "n2", "n1"]

    @pytest.mark.asyncio
    async def test_mark_read_scoped_to_owner(self, db):
        manager = NotificationManager(db)
        assert await manager.mark_read(USER, "99") is False
        assert await manager.mark_read(USER, "2") is True
        assert {r["id"]: r["is_read"] for r in db.rows("notifications")}["99"] is False

    @pytest.mark.asyncio
    async def test_create_notification(self, fake_supabase):
        created = await NotificationManager(fake_supabase).create_notification(
            USER, "new_feature", "SOAP notes", "Download a SOAP note after each case."
        )
        assert created["id"]
        assert fake_supabase.rows("notifications")[0]["type"] == "new_feature"


class TestNotificationInbox:
    """Test suite for NotificationInbox."""

    @pytest.mark.asyncio
    async def test_mark_read_updates_unread_count(self, db):
        inbox = NotificationInbox(NotificationManager(db), USER)
        await inbox.refresh()
        assert inbox.unread_count == 2

        assert await inbox.mark_read("3") is True
        assert inbox.unread_count == 1
        assert inbox.as_dict()["notifications"][0]["isRead"] is True

    @pytest.mark.asyncio
    async def test_failed_write_rolls_back(self, db):
        inbox = NotificationInbox(FlakyManager(db), USER)
        await inbox.refresh()

        with pytest.raises(RuntimeError):
            await inbox.mark_read("3")

        assert inbox.unread_count == 2
        assert inbox.notifications[0].is_read is False

    @pytest.mark.asyncio
    async def test_failed_mark_all_restores_previous_flags(self, db):
        inbox = NotificationInbox(FlakyManager(db), USER)
        await inbox.refresh()

        with pytest.raises(RuntimeError):
            await inbox.mark_all_read()

        assert {n.id: n.is_read for n in inbox.notifications} == {"3": False, "2": False, "1": True}

    @pytest.mark.asyncio
    async def test_mark_all_read(self, db):
        inbox = NotificationInbox(NotificationManager(db), USER)
        await inbox.refresh()

        assert await inbox.mark_all_read() == 2
        assert inbox.unread_count == 0
        assert all(r["is_read"] for r in db.rows("notifications") if r["user_id"] == USER)

    @pytest.mark.asyncio
    async def test_unknown_notification(self, db):
        inbox = NotificationInbox(NotificationManager(db), USER)
        await inbox.refresh()
        assert await inbox.mark_read("99") is False
