import unittest
from datetime import timedelta

from helpers import START, ServiceTestCase


class AnalyticsServiceTests(ServiceTestCase):
    async def make_category(self, name: str) -> int:
        category = self.unwrap(
            await self.services.reference.create_category({"category_name": name})
        )
        return category.category_id

    async def complete_after(self, hours: float, **fields):
        self.clock.current = START
        task = self.unwrap(await self.services.tasks.create({"title": "t", **fields}))
        self.clock.advance(hours=hours)
        self.unwrap(await self.services.tasks.update(task.task_id, {"is_completed": True}))
        await self.effects.drain()
        return task

    async def test_on_time_scenarios(self) -> None:
        await self.complete_after(10)
        await self.complete_after(5, estimated_hours=2)

        stats = self.unwrap(await self.services.analytics.on_time_completion_stats())
        self.assertEqual(stats["total_completed"], 2)
        self.assertEqual(stats["on_time_count"], 1)
        self.assertEqual(stats["late_count"], 1)
        self.assertEqual(stats["on_time_percentage"], 50.0)

    async def test_completion_stats_for_new_user(self) -> None:
        stats = self.unwrap(await self.services.analytics.completion_stats())
        self.assertEqual(stats["total"], 0)
        self.assertEqual(stats["completion_rate"], 0)

    async def test_completion_stats_are_cached_until_a_mutation(self) -> None:
        await self.services.tasks.create({"title": "a"})
        first = self.unwrap(await self.services.analytics.completion_stats())
        self.assertEqual(first["total"], 1)
        self.assertEqual(first["pending"], 1)

        await self.services.tasks.create({"title": "b"})
        second = self.unwrap(await self.services.analytics.completion_stats())
        self.assertEqual(second["total"], 2)

    async def test_day_of_week_uses_completion_date(self) -> None:
        # Created Monday, completed on Sunday
        await self.complete_after(6 * 24)

        rows = self.unwrap(await self.services.analytics.completion_by_day_of_week())
        counts = {r["day_name"]: r["count"] for r in rows}
        self.assertEqual(counts["Sunday"], 1)
        self.assertEqual(counts["Monday"], 0)
        self.assertEqual(len(rows), 7)

    async def test_category_completion_time(self) -> None:
        work = await self.make_category("work")
        home = await self.make_category("home")
        await self.complete_after(3, category_id=work)
        await self.complete_after(12, category_id=home)

        rows = self.unwrap(await self.services.analytics.category_completion_time())
        self.assertEqual([r["category_name"] for r in rows], ["HOME", "WORK"])
        self.assertEqual(rows[1]["avg_completion_hours"], 3)

    async def test_productivity_defaults_to_last_thirty_days(self) -> None:
        await self.complete_after(2)
        result = self.unwrap(await self.services.analytics.productivity_metrics())

        self.assertEqual(result["avg_completion_time_hours"], 2.0)
        self.assertEqual(result["most_productive_day"], "Monday")
        self.assertEqual(result["peak_hours"], [11])

    async def test_time_series_rejects_unknown_granularity(self) -> None:
        envelope = await self.services.analytics.time_series(granularity="hour")
        self.assertFails(envelope, "VALIDATION_ERROR")

    async def test_inverted_range_is_rejected(self) -> None:
        envelope = await self.services.analytics.completion_stats(
            START, START - timedelta(days=1)
        )
        self.assertFails(envelope, "VALIDATION_ERROR")

    async def test_report_bundles_everything(self) -> None:
        await self.complete_after(1, priority=2)
        report = self.unwrap(
            await self.services.analytics.report(START - timedelta(days=1), START + timedelta(days=1))
        )
        self.assertEqual(report["completion_stats"]["completed"], 1)
        self.assertEqual(report["priority_stats"][0]["priority"], 2)
        self.assertEqual(report["time_series"][0]["date"], "2024-01-08")
        self.assertEqual(report["time_series"][0]["completed"], 1)

        logs = self.unwrap(await self.services.analytics.completion_logs())
        self.assertEqual(len(logs), 1)
        self.assertEqual(logs[0].day_name, "Monday")

    async def test_rate_limit_is_reported_in_the_envelope(self) -> None:
        limit = self.settings.rate_limit_analytics
        for _ in range(limit):
            self.unwrap(await self.services.analytics.completion_stats())
        envelope = await self.services.analytics.completion_stats()
        self.assertFails(envelope, "RATE_LIMIT_EXCEEDED")
        self.assertEqual(envelope.error.details["remaining"], 0)


if __name__ == "__main__":
    unittest.main()
