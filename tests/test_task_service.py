import unittest
import uuid
from datetime import datetime, timedelta, timezone

from app.models import (
    ChangeType,
    Notification,
    NotificationType,
    Task,
    TaskChangeLog,
    ensure_aware,
)

from helpers import BOB, START, ServiceTestCase

PLUS_FIVE = timezone(timedelta(hours=5))


class TaskLifecycleTests(ServiceTestCase):
    async def create(self, **fields):
        payload = {"title": "Write report", **fields}
        return self.unwrap(await self.services.tasks.create(payload))

    async def status_id(self, name: str) -> int:
        return await self.services.reference.status_id_by_name(name)

    def assertCompletionTriple(self, task) -> None:
        flags = {
            task.is_completed,
            task.completed_at is not None,
            task.completed_date_id is not None,
        }
        self.assertEqual(len(flags), 1, task)

    async def test_create_defaults_and_enrichment(self) -> None:
        task = await self.create(priority=3)

        self.assertEqual(task.title, "Write report")
        self.assertFalse(task.is_completed)
        self.assertEqual(task.status.status_name, "Pending")
        self.assertEqual(task.created_date.date, START.date())
        self.assertIsNone(task.completed_date)
        self.assertEqual(task.created_at, START)

    async def test_create_emits_a_creation_notification_with_due_date(self) -> None:
        task = await self.create(due_date=START + timedelta(days=2, hours=6))
        await self.effects.drain()

        rows = await self.rows(Notification, Notification.task_id == task.task_id)
        self.assertEqual(len(rows), 1)
        self.assertEqual(rows[0].type, NotificationType.REMINDER.value)
        self.assertIn("Jan 10, 2024, 03:00 PM", rows[0].message)

    async def test_blank_title_is_rejected(self) -> None:
        envelope = await self.services.tasks.create({"title": "   "})
        self.assertFails(envelope, "VALIDATION_ERROR")

    async def test_unknown_status_is_rejected(self) -> None:
        envelope = await self.services.tasks.create({"title": "x", "status_id": 999})
        self.assertFails(envelope, "VALIDATION_ERROR")

    async def test_completion_sets_and_clears_all_three_fields(self) -> None:
        task = await self.create()
        self.assertCompletionTriple(task)

        self.clock.advance(hours=10)
        done = self.unwrap(
            await self.services.tasks.update(task.task_id, {"is_completed": True})
        )
        self.assertCompletionTriple(done)
        self.assertTrue(done.is_completed)
        self.assertEqual(done.completed_at, START + timedelta(hours=10))
        self.assertEqual(done.completed_date.date, START.date())

        undone = self.unwrap(
            await self.services.tasks.update(task.task_id, {"is_completed": False})
        )
        self.assertCompletionTriple(undone)
        self.assertFalse(undone.is_completed)

        edited = self.unwrap(
            await self.services.tasks.update(task.task_id, {"description": "more"})
        )
        self.assertCompletionTriple(edited)

    async def test_completion_logs_and_notifies_once(self) -> None:
        task = await self.create()
        await self.services.tasks.update(task.task_id, {"is_completed": True})
        self.clock.advance(days=1)
        await self.services.tasks.update(task.task_id, {"is_completed": True})
        await self.effects.drain()

        logs = await self.rows(TaskChangeLog, TaskChangeLog.task_id == task.task_id)
        kinds = sorted(log.change_type for log in logs)
        self.assertEqual(kinds, [ChangeType.COMPLETED.value, ChangeType.DATE_CHANGED.value])

        completed = await self.rows(
            Notification,
            Notification.task_id == task.task_id,
            Notification.type == NotificationType.COMPLETED.value,
        )
        self.assertEqual(len(completed), 1)
        self.assertIn("Great job!", completed[0].message)

    async def test_uncomplete_keeps_status_and_logs(self) -> None:
        completed_status = await self.status_id("Completed")
        task = await self.create()
        await self.services.tasks.update(
            task.task_id, {"is_completed": True, "status_id": completed_status}
        )
        undone = self.unwrap(
            await self.services.tasks.update(task.task_id, {"is_completed": False})
        )
        await self.effects.drain()

        self.assertEqual(undone.status_id, completed_status)
        history = self.unwrap(await self.services.tasks.history(task.task_id))
        kinds = [entry.change_type for entry in history]
        self.assertIn(ChangeType.UNCOMPLETED.value, kinds)
        self.assertIn(ChangeType.STATUS_CHANGED.value, kinds)

    async def test_status_change_records_old_and_new(self) -> None:
        pending = await self.status_id("Pending")
        in_progress = await self.status_id("In Progress")
        task = await self.create()
        await self.services.tasks.update(task.task_id, {"status_id": in_progress})
        await self.effects.drain()

        logs = await self.rows(TaskChangeLog, TaskChangeLog.task_id == task.task_id)
        self.assertEqual(len(logs), 1)
        self.assertEqual(logs[0].change_type, ChangeType.STATUS_CHANGED.value)
        self.assertEqual((logs[0].old_value, logs[0].new_value), (str(pending), str(in_progress)))

    async def test_get_distinguishes_missing_from_foreign(self) -> None:
        task = await self.create()
        bob = self.make_services(BOB)

        self.assertFails(await bob.tasks.get(task.task_id), "FORBIDDEN")
        self.assertFails(await bob.tasks.get(uuid.uuid4()), "NOT_FOUND")
        self.assertFails(await bob.tasks.get("not-a-uuid"), "VALIDATION_ERROR")

    async def test_list_paginates_newest_first(self) -> None:
        for title in ("first", "second", "third"):
            await self.create(title=title)
            self.clock.advance(minutes=5)

        page = self.unwrap(
            await self.services.tasks.list_tasks(pagination={"page": 1, "limit": 2})
        )
        self.assertEqual([t.title for t in page.items], ["third", "second"])
        self.assertEqual(page.total, 3)
        self.assertTrue(page.has_more)

        last = self.unwrap(
            await self.services.tasks.list_tasks(pagination={"page": 2, "limit": 2})
        )
        self.assertEqual([t.title for t in last.items], ["first"])
        self.assertFalse(last.has_more)

    async def test_list_filters(self) -> None:
        await self.create(title="low", priority=1)
        high = await self.create(title="high", priority=5)
        await self.services.tasks.update(high.task_id, {"is_completed": True})

        page = self.unwrap(await self.services.tasks.list_tasks({"priority": 5}))
        self.assertEqual([t.title for t in page.items], ["high"])
        page = self.unwrap(await self.services.tasks.list_tasks({"is_completed": False}))
        self.assertEqual([t.title for t in page.items], ["low"])

    async def test_list_cache_is_invalidated_by_mutations(self) -> None:
        await self.create(title="one")
        self.assertEqual(self.unwrap(await self.services.tasks.list_tasks()).total, 1)
        await self.create(title="two")
        self.assertEqual(self.unwrap(await self.services.tasks.list_tasks()).total, 2)

    async def test_delete_keeps_history(self) -> None:
        task = await self.create()
        await self.services.tasks.update(task.task_id, {"is_completed": True})
        self.unwrap(await self.services.tasks.delete(task.task_id))
        await self.effects.drain()

        self.assertFails(await self.services.tasks.get(task.task_id), "NOT_FOUND")
        history = self.unwrap(await self.services.tasks.history(task.task_id))
        self.assertEqual([h.change_type for h in history], [ChangeType.COMPLETED.value])

    async def test_delete_of_foreign_task_is_refused(self) -> None:
        task = await self.create()
        bob = self.make_services(BOB)
        self.assertFails(await bob.tasks.delete(task.task_id), "FORBIDDEN")

    async def test_offset_due_date_is_stored_as_the_same_instant(self) -> None:
        due = datetime(2024, 1, 8, 14, 0, tzinfo=PLUS_FIVE)
        task = await self.create(due_date=due)

        self.assertEqual(task.due_date, due)
        self.assertEqual(task.due_date.utcoffset(), timedelta(0))
        self.assertEqual(task.due_date.hour, 9)
        row = (await self.rows(Task))[0]
        self.assertEqual(ensure_aware(row.due_date), due)

    async def test_date_range_filters_accept_offsets(self) -> None:
        await self.create(title="created at start")
        just_before = START.astimezone(PLUS_FIVE) - timedelta(minutes=1)

        page = self.unwrap(await self.services.tasks.list_tasks({"date_from": just_before}))
        self.assertEqual([t.title for t in page.items], ["created at start"])

    async def test_recorder_swallows_unknown_change_kinds(self) -> None:
        await self.services.change_log.record(uuid.uuid4(), uuid.uuid4(), "renamed")
        self.assertEqual(await self.rows(TaskChangeLog), [])


class ReconcileOverdueTests(ServiceTestCase):
    async def overdue_notifications(self) -> list:
        await self.effects.drain()
        return await self.rows(
            Notification, Notification.type == NotificationType.OVERDUE.value
        )

    async def test_second_run_creates_no_new_notifications(self) -> None:
        self.unwrap(
            await self.services.tasks.create(
                {"title": "Pay rent", "due_date": START + timedelta(hours=1)}
            )
        )
        self.clock.advance(hours=2)

        first = self.unwrap(await self.services.tasks.reconcile_overdue())
        self.assertEqual(first, {"updated_count": 1})
        self.assertEqual(len(await self.overdue_notifications()), 1)

        second = self.unwrap(await self.services.tasks.reconcile_overdue())
        self.assertEqual(second, {"updated_count": 0})
        self.assertEqual(len(await self.overdue_notifications()), 1)

    async def test_completed_and_future_tasks_are_left_alone(self) -> None:
        done = self.unwrap(
            await self.services.tasks.create(
                {"title": "done", "due_date": START + timedelta(hours=1)}
            )
        )
        await self.services.tasks.update(done.task_id, {"is_completed": True})
        self.unwrap(
            await self.services.tasks.create(
                {"title": "later", "due_date": START + timedelta(days=3)}
            )
        )
        self.clock.advance(hours=2)

        self.assertEqual(
            self.unwrap(await self.services.tasks.reconcile_overdue()), {"updated_count": 0}
        )

    async def test_list_reconciles_first(self) -> None:
        self.unwrap(
            await self.services.tasks.create(
                {"title": "late", "due_date": START + timedelta(minutes=30)}
            )
        )
        self.clock.advance(hours=1)

        page = self.unwrap(await self.services.tasks.list_tasks())
        self.assertEqual(page.items[0].status.status_name, "Overdue")

    async def test_reconcile_is_scoped_to_the_caller(self) -> None:
        bob = self.make_services(BOB)
        self.unwrap(
            await bob.tasks.create({"title": "bob's", "due_date": START + timedelta(hours=1)})
        )
        self.clock.advance(hours=2)

        self.assertEqual(
            self.unwrap(await self.services.tasks.reconcile_overdue()), {"updated_count": 0}
        )
        rows = await self.rows(Task)
        self.assertEqual(rows[0].status_id, await bob.reference.status_id_by_name("Pending"))

    async def test_offset_due_date_becomes_overdue_at_the_right_instant(self) -> None:
        # 16:00 at +05:00 is 11:00 UTC
        self.unwrap(
            await self.services.tasks.create(
                {"title": "call", "due_date": datetime(2024, 1, 8, 16, 0, tzinfo=PLUS_FIVE)}
            )
        )
        self.clock.advance(hours=1)
        self.assertEqual(
            self.unwrap(await self.services.tasks.reconcile_overdue()), {"updated_count": 0}
        )
        self.clock.advance(hours=2)
        self.assertEqual(
            self.unwrap(await self.services.tasks.reconcile_overdue()), {"updated_count": 1}
        )


if __name__ == "__main__":
    unittest.main()
