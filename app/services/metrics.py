"""
Aggregations over task and completion-log rows.

Everything here is a pure function of the rows handed in; fetching,
range filtering and caching are the analytics service's job.
"""

import math
from collections import Counter, defaultdict
from datetime import date, datetime
from typing import Iterable, Sequence

from app.models import Task, TaskLogEntry, ensure_aware
from app.services.calendar import DAY_NAMES

DEFAULT_WINDOW_HOURS = 7 * 24


def completion_rate(completed: int, total: int) -> float:
    return completed / total * 100 if total > 0 else 0.0


def hours_between(start: datetime, end: datetime) -> float:
    return (ensure_aware(end) - ensure_aware(start)).total_seconds() / 3600


def completed_tasks(tasks: Iterable[Task]) -> list[Task]:
    return [t for t in tasks if t.is_completed and t.completed_at is not None]


def completion_stats(
    tasks: Sequence[Task],
    pending_status_id: int | None = None,
    in_progress_status_id: int | None = None,
) -> dict:
    total = completed = pending = in_progress = 0
    for task in tasks:
        total += 1
        if task.is_completed:
            completed += 1
        if task.status_id == pending_status_id:
            pending += 1
        elif task.status_id == in_progress_status_id:
            in_progress += 1
    return {
        "total": total,
        "completed": completed,
        "pending": pending,
        "in_progress": in_progress,
        "completion_rate": completion_rate(completed, total),
    }


def latest_per_task(entries: Iterable[TaskLogEntry]) -> list[TaskLogEntry]:
    """The most recently written completion entry for each task."""
    latest: dict = {}
    for entry in entries:
        current = latest.get(entry.task_id)
        if current is None or ensure_aware(entry.created_at) > ensure_aware(current.created_at):
            latest[entry.task_id] = entry
    return list(latest.values())


def completion_by_day_of_week(entries: Iterable[TaskLogEntry]) -> list[dict]:
    """Completions per weekday, Monday (1) through Sunday (7), zero-filled."""
    counts = Counter(e.day_of_week for e in latest_per_task(entries) if e.day_of_week)
    return [
        {"day_of_week": number, "day_name": name, "count": counts.get(number, 0)}
        for number, name in enumerate(DAY_NAMES, start=1)
    ]


def on_time_stats(
    tasks: Iterable[Task], default_window_hours: float = DEFAULT_WINDOW_HOURS
) -> dict:
    """
    A completed task is on time when it took no longer than its estimate,
    or than ``default_window_hours`` when it has no estimate.
    """
    done = completed_tasks(tasks)
    on_time = 0
    for task in done:
        window = task.estimated_hours or default_window_hours
        if hours_between(task.created_at, task.completed_at) <= window:
            on_time += 1

    total = len(done)
    return {
        "total_completed": total,
        "on_time_count": on_time,
        "late_count": total - on_time,
        "on_time_percentage": round(on_time / total * 100, 2) if total else 0.0,
    }


def category_completion_time(
    tasks: Iterable[Task], category_names: dict[int, str]
) -> list[dict]:
    durations = defaultdict(list)
    for task in completed_tasks(tasks):
        if task.category_id is None:
            continue
        durations[task.category_id].append(hours_between(task.created_at, task.completed_at))

    rows = []
    for category_id, hours in durations.items():
        avg_hours = sum(hours) / len(hours)
        rows.append(
            {
                "category_id": category_id,
                "category_name": category_names.get(category_id, "Unknown"),
                "avg_completion_hours": avg_hours,
                "avg_completion_days": avg_hours / 24,
                "task_count": len(hours),
            }
        )
    rows.sort(key=lambda r: r["avg_completion_hours"], reverse=True)
    return rows


def _mode(values: Iterable[str]) -> str:
    ranked = Counter(v for v in values if v).most_common(1)
    return ranked[0][0] if ranked else ""


def productivity(
    tasks: Sequence[Task],
    entries: Sequence[TaskLogEntry],
    start: datetime,
    end: datetime,
) -> dict:
    days = max(1, math.ceil((ensure_aware(end) - ensure_aware(start)).total_seconds() / 86400))

    durations = [
        hours
        for hours in (hours_between(t.created_at, t.completed_at) for t in completed_tasks(tasks))
        if hours > 0
    ]
    avg_hours = round(sum(durations) / len(durations), 2) if durations else None

    # most_common keeps first-seen order among equal counts
    hours = Counter(ensure_aware(e.completed_at).hour for e in entries if e.completed_at)
    return {
        "tasks_per_day": round(len(tasks) / days, 2),
        "avg_completion_time_hours": avg_hours,
        "most_productive_day": _mode(e.day_name for e in entries),
        "most_productive_month": _mode(e.month_name for e in entries),
        "peak_hours": [hour for hour, _ in hours.most_common(3)],
    }


def bucket(day: date, granularity: str) -> str:
    if granularity == "week":
        year, week, _ = day.isocalendar()
        return f"{year}-W{week:02d}"
    if granularity == "month":
        return f"{day.year}-{day.month:02d}"
    return day.isoformat()


def time_series(
    tasks: Iterable[Task],
    entries: Iterable[TaskLogEntry],
    granularity: str = "day",
    in_progress_status_id: int | None = None,
) -> list[dict]:
    grouped = defaultdict(lambda: {"created": 0, "completed": 0, "in_progress": 0})

    for task in tasks:
        stats = grouped[bucket(ensure_aware(task.created_at).date(), granularity)]
        stats["created"] += 1
        if task.status_id == in_progress_status_id:
            stats["in_progress"] += 1

    for entry in entries:
        if entry.completed_date is None:
            continue
        grouped[bucket(entry.completed_date, granularity)]["completed"] += 1

    return [{"date": key, **grouped[key]} for key in sorted(grouped)]


def category_stats(tasks: Iterable[Task], category_names: dict[int, str]) -> list[dict]:
    grouped = defaultdict(lambda: {"total": 0, "completed": 0, "hours": []})
    for task in tasks:
        if task.category_id is None:
            continue
        stats = grouped[task.category_id]
        stats["total"] += 1
        if task.is_completed:
            stats["completed"] += 1
        if task.actual_hours:
            stats["hours"].append(task.actual_hours)

    return [
        {
            "category_id": category_id,
            "category_name": category_names.get(category_id, "Unknown"),
            "total_tasks": stats["total"],
            "completed_tasks": stats["completed"],
            "completion_rate": completion_rate(stats["completed"], stats["total"]),
            "avg_hours": sum(stats["hours"]) / len(stats["hours"]) if stats["hours"] else None,
        }
        for category_id, stats in sorted(grouped.items())
    ]


def priority_stats(tasks: Iterable[Task]) -> list[dict]:
    grouped = defaultdict(lambda: [0, 0])
    for task in tasks:
        if task.priority is None:
            continue
        grouped[task.priority][0] += 1
        if task.is_completed:
            grouped[task.priority][1] += 1

    return [
        {
            "priority": priority,
            "total_tasks": total,
            "completed_tasks": completed,
            "completion_rate": completion_rate(completed, total),
        }
        for priority, (total, completed) in sorted(grouped.items())
    ]
