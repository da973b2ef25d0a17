"""CommentService 测试

测试内容：
1. 文本 @提及 + 显式提及合并去重：一条 mention、一条通知
2. 评论作者显示名回填、commented 记录
3. 错误顺序：NotFound → Authorization → Validation
4. 附带文件写入附件存储；校验失败或回滚时不留下文件
"""

import aiosqlite
import pytest
import pytest_asyncio
from ticketflow.core.exceptions import (
    AuthorizationError,
    NotFoundError,
    PersistenceError,
    ValidationError,
)
from ticketflow.core.models import HistoryAction, TaskCreate, TaskKind, UserRole
from ticketflow.gateway.services.uploads import UploadedFile


@pytest_asyncio.fixture
async def team(make_user):
    pm = await make_user("Paula", "Manager", UserRole.PROJECT_MANAGER)
    dev = await make_user("Dana", "Dev", UserRole.DEVELOPER)
    tester = await make_user("Tom", "Tester", UserRole.TESTER)
    return pm, dev, tester


@pytest_asyncio.fixture
async def task(task_service, team):
    pm, dev, _ = team
    return await task_service.create_task(
        TaskKind.TASK,
        TaskCreate(name="Checkout", description="Cart checkout flow", assigned_to=[dev.user_id]),
        pm.as_actor(),
    )


class TestMentions:
    async def test_inline_and_explicit_mention_deduplicated(
        self, comment_service, notifier, task, team
    ):
        pm, dev, _ = team

        updated = await comment_service.add_comment(
            TaskKind.TASK,
            task.task_id,
            pm.as_actor(),
            "@DanaDev please review",
            explicit_mentions=[dev.user_id],
        )

        comment = updated.comments[-1]
        assert [(m.user_id, m.notified) for m in comment.mentions] == [(dev.user_id, True)]
        mention_notices = [
            n
            for n in await notifier.list_notifications(dev.user_id)
            if "mentioned you" in n.message
        ]
        assert [n.message for n in mention_notices] == [
            "Paula Manager mentioned you in a comment on task: Checkout"
        ]

    async def test_unknown_explicit_mentions_dropped(self, comment_service, task, team):
        pm, _, tester = team

        updated = await comment_service.add_comment(
            TaskKind.TASK,
            task.task_id,
            pm.as_actor(),
            "FYI @Nobody",
            explicit_mentions=["01NOSUCHUSER", tester.user_id],
        )

        assert [m.user_id for m in updated.comments[-1].mentions] == [tester.user_id]

    async def test_resolve_mentions_unique(self, comment_service, team):
        _, dev, tester = team
        ids = await comment_service.resolve_mentions("@TomTester @DanaDev", [dev.user_id])
        assert sorted(ids) == sorted([tester.user_id, dev.user_id])


class TestAddComment:
    async def test_comment_recorded_with_author_name(self, comment_service, task, team):
        _, dev, _ = team

        updated = await comment_service.add_comment(
            TaskKind.TASK, task.task_id, dev.as_actor(), "Started on it"
        )

        [comment] = updated.comments
        assert comment.author == dev.user_id
        assert comment.author_name == "Dana Dev"
        entry = updated.history[-1]
        assert entry.action == HistoryAction.COMMENTED
        assert entry.details["commentId"] == comment.comment_id

    async def test_comment_files_stored(self, comment_service, store_group, task, team):
        pm, _, _ = team

        updated = await comment_service.add_comment(
            TaskKind.TASK,
            task.task_id,
            pm.as_actor(),
            "Logs attached",
            files=[UploadedFile("trace.log", b"line 1\nline 2\n")],
        )

        [descriptor] = updated.comments[-1].files
        assert descriptor.name == "trace.log"
        assert store_group.attachment_store.get(descriptor.storage_ref) == b"line 1\nline 2\n"

    async def test_rejected_comment_writes_no_files(
        self, comment_service, store_group, task, team
    ):
        _, _, tester = team

        with pytest.raises(AuthorizationError):
            await comment_service.add_comment(
                TaskKind.TASK,
                task.task_id,
                tester.as_actor(),
                "Logs attached",
                files=[UploadedFile("trace.log", b"line 1\n")],
            )

        assert [p for p in store_group.attachment_store.root.rglob("*") if p.is_file()] == []

    async def test_rolled_back_comment_removes_files(
        self, comment_service, store_group, task, team, monkeypatch: pytest.MonkeyPatch
    ):
        pm, _, _ = team

        async def broken_append(entry):
            raise aiosqlite.OperationalError("disk I/O error")

        monkeypatch.setattr(store_group.history_store, "append_entry", broken_append)
        with pytest.raises(PersistenceError):
            await comment_service.add_comment(
                TaskKind.TASK,
                task.task_id,
                pm.as_actor(),
                "Logs attached",
                files=[UploadedFile("trace.log", b"line 1\n")],
            )
        monkeypatch.undo()

        assert [p for p in store_group.attachment_store.root.rglob("*") if p.is_file()] == []

    async def test_privileged_role_bypasses_guard(self, comment_service, task, make_user):
        rt = await make_user("Rita", "Tester", UserRole.RESPONSIBLE_TESTER)
        updated = await comment_service.add_comment(
            TaskKind.TASK, task.task_id, rt.as_actor(), "Test plan ready"
        )
        assert updated.comments[-1].author_name == "Rita Tester"

    async def test_missing_task(self, comment_service, team):
        pm, _, _ = team
        with pytest.raises(NotFoundError):
            await comment_service.add_comment(TaskKind.TASK, "01NOSUCHTASK", pm.as_actor(), "")

    async def test_unrelated_user_forbidden(self, comment_service, task, team):
        _, _, tester = team
        with pytest.raises(AuthorizationError):
            await comment_service.add_comment(TaskKind.TASK, task.task_id, tester.as_actor(), "")

    async def test_blank_text_rejected(self, comment_service, task, team):
        pm, _, _ = team
        with pytest.raises(ValidationError):
            await comment_service.add_comment(TaskKind.TASK, task.task_id, pm.as_actor(), "  ")

    async def test_test_task_comment(self, comment_service, task_service, notifier, make_user):
        rt = await make_user("Rita", "Tester", UserRole.RESPONSIBLE_TESTER)
        tester = await make_user("Tom", "Tester", UserRole.TESTER)
        test_task = await task_service.create_task(
            TaskKind.TEST_TASK,
            TaskCreate(name="Regression", description="Full regression suite"),
            rt.as_actor(),
        )

        await comment_service.add_comment(
            TaskKind.TEST_TASK, test_task.task_id, rt.as_actor(), "@TomTester take this one"
        )

        [notification] = await notifier.list_notifications(tester.user_id)
        assert notification.related_type == "TestTask"
        assert notification.related_id == test_task.task_id
