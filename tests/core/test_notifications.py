"""通知协作方测试"""

import aiosqlite
import pytest
from ticketflow.core.models import RelatedEntityType, UserRole
from ticketflow.core.notifications import (
    comment_mention_message,
    status_change_message,
)


class TestMentions:
    def test_extract_mentions(self, notifier):
        assert notifier.extract_mentions("ping @JaneDoe and @john_smith, thanks") == [
            "JaneDoe",
            "john_smith",
        ]
        assert notifier.extract_mentions("") == []
        assert notifier.extract_mentions("mail me at a@") == []

    async def test_find_users_by_first_last_name(self, notifier, make_user):
        jane = await make_user("Jane", "Doe", UserRole.DEVELOPER)
        await make_user("John", "Smith", UserRole.DEVELOPER)
        assert await notifier.find_users_by_mentions(["JaneDoe", "JaneDoe", "Nobody"]) == [
            jane.user_id
        ]

    async def test_process_mentions(self, notifier, make_user):
        jane = await make_user("Jane", "Doe", UserRole.DEVELOPER)
        await notifier.process_mentions(
            "@JaneDoe please review", "Paula Manager", "ticket-1", RelatedEntityType.TICKET
        )
        [notification] = await notifier.list_notifications(jane.user_id)
        assert notification.message == "Paula Manager mentioned you in a ticket"
        assert notification.related_id == "ticket-1"
        assert notification.related_type == RelatedEntityType.TICKET


class TestDispatch:
    async def test_recipients_deduplicated(self, notifier, make_user):
        dev = await make_user("Dana", "Dev", UserRole.DEVELOPER)
        await notifier.create_notifications(
            [dev.user_id, dev.user_id], "hello", "task-1", RelatedEntityType.TASK
        )
        assert len(await notifier.list_notifications(dev.user_id)) == 1

    async def test_assignment_message(self, notifier, make_user):
        dev = await make_user("Dana", "Dev", UserRole.DEVELOPER)
        await notifier.notify_task_assignment(dev.user_id, "task-1", "Payment form", "Gus Lead")
        [notification] = await notifier.list_notifications(dev.user_id)
        assert notification.message == "Gus Lead assigned you to task: Payment form"

    async def test_assignment_to_unknown_user_is_skipped(self, notifier, store_group):
        await notifier.notify_task_assignment("ghost", "task-1", "Payment form", "Gus Lead")
        assert await store_group.notification_store.list_for_user("ghost") == []

    async def test_status_change_reaches_assignees_and_admins(
        self, notifier, make_user, make_task
    ):
        admin = await make_user("Ada", "Admin", UserRole.ADMIN)
        admin_dev = await make_user("Adam", "Both", UserRole.ADMIN)
        gl = await make_user("Gus", "Lead", UserRole.GROUP_LEADER)
        dev = await make_user("Dana", "Dev", UserRole.DEVELOPER)
        task = await make_task(gl, name="Payment form", assigned_to=[dev.user_id, admin_dev.user_id])

        await notifier.notify_status_change(task, "ToDo", "InProgress", "Dana Dev")

        expected = status_change_message("Dana Dev", "Payment form", "ToDo", "InProgress")
        assert expected == 'Dana Dev changed the status of task "Payment form" from ToDo to InProgress'
        for user in (admin, admin_dev, dev):
            notifications = await notifier.list_notifications(user.user_id)
            assert [n.message for n in notifications] == [expected]
        # 创建者既非 assignee 也非 admin
        assert await notifier.list_notifications(gl.user_id) == []

    async def test_mark_read(self, notifier, make_user):
        dev = await make_user("Dana", "Dev", UserRole.DEVELOPER)
        other = await make_user("Omar", "Other", UserRole.DEVELOPER)
        await notifier.create_notifications(
            [dev.user_id], comment_mention_message("Gus Lead", "T"), "t", RelatedEntityType.TASK
        )
        [notification] = await notifier.list_notifications(dev.user_id)
        assert await notifier.mark_read(other.user_id, notification.notification_id) is False
        assert await notifier.mark_read(dev.user_id, notification.notification_id) is True
        assert await notifier.list_notifications(dev.user_id) == []
        assert len(await notifier.list_notifications(dev.user_id, unread_only=False)) == 1

    async def test_storage_failure_is_logged_not_raised(
        self, notifier, store_group, make_user, monkeypatch: pytest.MonkeyPatch
    ):
        dev = await make_user("Dana", "Dev", UserRole.DEVELOPER)

        async def broken(notifications):
            raise aiosqlite.OperationalError("database is locked")

        monkeypatch.setattr(store_group.notification_store, "add_notifications", broken)
        await notifier.create_notifications(
            [dev.user_id], "hello", "task-1", RelatedEntityType.TASK
        )
