import unittest
from datetime import datetime, timedelta, timezone

from app.models import Notification, NotificationType, Task
from app.services.notification_service import days_until, effective_due, format_due

from helpers import BOB, START, ServiceTestCase


class DueDateTests(unittest.TestCase):
    def make_task(self, **fields) -> Task:
        return Task(
            user_id=None,
            status_id=1,
            created_date_id=1,
            title="t",
            created_at=START,
            **fields,
        )

    def test_effective_due_prefers_explicit_date(self) -> None:
        due = START + timedelta(days=2)
        self.assertEqual(effective_due(self.make_task(due_date=due, estimated_hours=1)), due)

    def test_effective_due_falls_back_to_estimate_then_a_week(self) -> None:
        self.assertEqual(
            effective_due(self.make_task(estimated_hours=5)), START + timedelta(hours=5)
        )
        self.assertEqual(effective_due(self.make_task()), START + timedelta(days=7))

    def test_days_until_rounds_up(self) -> None:
        self.assertEqual(days_until(START + timedelta(hours=2), START), 1)
        self.assertEqual(days_until(START, START), 0)
        self.assertEqual(days_until(START - timedelta(hours=30), START), -1)

    def test_format_due(self) -> None:
        value = datetime(2024, 3, 5, 7, 30, tzinfo=timezone.utc)
        self.assertEqual(format_due(value), "Mar 5, 2024, 07:30 AM UTC")


class NotificationServiceTests(ServiceTestCase):
    async def create_task(self, **fields):
        return self.unwrap(await self.services.tasks.create({"title": "task", **fields}))

    async def notifications_of(self, kind: NotificationType) -> list:
        await self.effects.drain()
        return await self.rows(Notification, Notification.type == kind.value)

    async def add_notification(self, user_id, task_id, kind, is_read=False, age=timedelta()):
        async with self.session_factory() as session:
            session.add(
                Notification(
                    user_id=user_id,
                    task_id=task_id,
                    type=kind.value,
                    title="t",
                    message="m",
                    is_read=is_read,
                    created_at=self.clock() - age,
                )
            )
            await session.commit()

    async def test_scan_twice_yields_one_overdue_notification(self) -> None:
        await self.create_task(due_date=START - timedelta(days=3))

        self.assertEqual(self.unwrap(await self.services.notifications.scan()), 1)
        self.assertEqual(self.unwrap(await self.services.notifications.scan()), 0)
        self.assertEqual(len(await self.notifications_of(NotificationType.OVERDUE)), 1)

    async def test_scan_classifies_upcoming_and_skips_distant(self) -> None:
        await self.create_task(title="soon", due_date=START + timedelta(hours=12))
        await self.create_task(title="default window")
        await self.create_task(title="done", due_date=START + timedelta(hours=3))
        page = self.unwrap(await self.services.tasks.list_tasks({"is_completed": False}))
        done = next(t for t in page.items if t.title == "done")
        await self.services.tasks.update(done.task_id, {"is_completed": True})

        self.assertEqual(self.unwrap(await self.services.notifications.scan()), 1)
        upcoming = await self.notifications_of(NotificationType.UPCOMING)
        self.assertEqual(len(upcoming), 1)
        self.assertIn("due tomorrow", upcoming[0].message)

    async def test_scan_notifies_again_after_the_window(self) -> None:
        await self.create_task(due_date=START - timedelta(days=3))
        await self.services.notifications.scan()
        self.clock.advance(hours=25)
        self.assertEqual(self.unwrap(await self.services.notifications.scan()), 1)

    async def test_mark_read_checks_ownership(self) -> None:
        await self.create_task()
        await self.effects.drain()
        mine = self.unwrap(await self.services.notifications.list_notifications())
        self.assertEqual(len(mine), 1)

        bob = self.make_services(BOB)
        self.assertFails(await bob.notifications.mark_read(mine[0].notification_id), "FORBIDDEN")

        read = self.unwrap(await self.services.notifications.mark_read(mine[0].notification_id))
        self.assertTrue(read.is_read)
        self.assertEqual(self.unwrap(await self.services.notifications.unread_count()), 0)

    async def test_mark_all_read(self) -> None:
        await self.create_task(title="a")
        await self.create_task(title="b")
        await self.effects.drain()

        result = self.unwrap(await self.services.notifications.mark_all_read())
        self.assertEqual(result, {"updated_count": 2})
        unread = self.unwrap(
            await self.services.notifications.list_notifications(unread_only=True)
        )
        self.assertEqual(unread, [])

    async def test_remove_duplicates_keeps_one_unread_per_task_and_type(self) -> None:
        task = await self.create_task()
        await self.effects.drain()
        user_id = task.user_id
        for minutes in (1, 2, 3):
            await self.add_notification(
                user_id, task.task_id, NotificationType.OVERDUE, age=timedelta(minutes=minutes)
            )
        await self.add_notification(
            user_id, task.task_id, NotificationType.OVERDUE, is_read=True
        )

        result = self.unwrap(await self.services.notifications.remove_duplicates())
        self.assertEqual(result, {"removed_count": 2})

        overdue = await self.notifications_of(NotificationType.OVERDUE)
        unread = [n for n in overdue if not n.is_read]
        self.assertEqual(len(unread), 1)
        self.assertEqual(len(overdue), 2)

    async def test_reminder_lists(self) -> None:
        await self.create_task(title="late", due_date=START - timedelta(days=1))
        await self.create_task(title="week", estimated_hours=48)
        await self.create_task(title="far", due_date=START + timedelta(days=30))

        upcoming = self.unwrap(await self.services.notifications.upcoming_reminders(7))
        self.assertEqual([r.title for r in upcoming], ["week"])
        self.assertEqual(upcoming[0].days_until_due, 2)
        self.assertFalse(upcoming[0].is_overdue)

        overdue = self.unwrap(await self.services.notifications.overdue_tasks())
        self.assertEqual([r.title for r in overdue], ["late"])
        self.assertTrue(overdue[0].is_overdue)

    async def test_anonymous_caller_is_unauthorized(self) -> None:
        anonymous = self.make_services(None)
        self.assertFails(await anonymous.notifications.scan(), "UNAUTHORIZED")


if __name__ == "__main__":
    unittest.main()
