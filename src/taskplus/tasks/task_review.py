# src/taskplus/tasks/task_review.py

from __future__ import annotations

"""
Daily and weekly review numbers.

Pure functions over a task sequence and an injected `now`; the caller decides
which clock and timezone "today" means. Days start at local midnight in
now's timezone, weeks start on Sunday (same numbering as the weekly review
trigger).

"Completed at" is a Done task's updated_at, the moment it last changed.
"""

from collections import Counter
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import date, datetime, timedelta

from .task_models import Category, Task, TaskPriority, TaskStatus
from .task_query import category_label


@dataclass(slots=True, frozen=True)
class PriorityCounts:
    high: int = 0
    normal: int = 0
    low: int = 0

    @property
    def total(self) -> int:
        return self.high + self.normal + self.low


@dataclass(slots=True, frozen=True)
class DailyReview:
    day: date
    completed: int
    incomplete: int  # open tasks due today
    tomorrow: int
    tomorrow_priorities: PriorityCounts


@dataclass(slots=True, frozen=True)
class CategoryProgress:
    name: str
    total: int
    completed: int

    @property
    def rate(self) -> float:
        return self.completed / self.total if self.total else 0.0


@dataclass(slots=True, frozen=True)
class WeekProgress:
    week_start: date
    total: int
    completed: int

    @property
    def rate(self) -> float:
        return self.completed / self.total if self.total else 0.0


@dataclass(slots=True, frozen=True)
class WeeklyReview:
    week_start: date
    completed: int
    created: int
    last_week_completed: int
    trend_percent: float | None  # None when last week had nothing to compare with
    completed_per_day: tuple[int, ...]  # Sunday .. Saturday
    completed_by_category: dict[str, int]
    category_progress: list[CategoryProgress]
    recent_weeks: list[WeekProgress]  # oldest first, current week last
    next_week: int
    next_week_priorities: PriorityCounts
    monthly_completion_rate: float  # percent of this month's dated tasks that are done


# ---- calendar bounds ----


def day_start(now: datetime) -> datetime:
    return now.replace(hour=0, minute=0, second=0, microsecond=0)


def week_start(now: datetime) -> datetime:
    """Midnight of the Sunday that starts now's week."""
    start = day_start(now)
    return start - timedelta(days=(start.weekday() + 1) % 7)


def month_bounds(now: datetime) -> tuple[datetime, datetime]:
    start = day_start(now).replace(day=1)
    if start.month == 12:
        return start, start.replace(year=start.year + 1, month=1)
    return start, start.replace(month=start.month + 1)


def _within(dt: datetime | None, start: datetime, end: datetime) -> bool:
    return dt is not None and start <= dt < end


def _completed_between(tasks: Iterable[Task], start: datetime, end: datetime) -> list[Task]:
    return [t for t in tasks if t.status == TaskStatus.DONE and _within(t.updated_at, start, end)]


def _open_due_between(tasks: Iterable[Task], start: datetime, end: datetime) -> list[Task]:
    return [t for t in tasks if t.status != TaskStatus.DONE and _within(t.due, start, end)]


def priority_counts(tasks: Iterable[Task]) -> PriorityCounts:
    counts = Counter(t.priority for t in tasks)
    return PriorityCounts(
        high=counts[TaskPriority.HIGH],
        normal=counts[TaskPriority.NORMAL],
        low=counts[TaskPriority.LOW],
    )


# ---- reviews ----


def daily_review(tasks: Iterable[Task], now: datetime) -> DailyReview:
    tasks = list(tasks)
    today = day_start(now)
    tomorrow = today + timedelta(days=1)
    upcoming = _open_due_between(tasks, tomorrow, tomorrow + timedelta(days=1))

    return DailyReview(
        day=today.date(),
        completed=len(_completed_between(tasks, today, tomorrow)),
        incomplete=len(_open_due_between(tasks, today, tomorrow)),
        tomorrow=len(upcoming),
        tomorrow_priorities=priority_counts(upcoming),
    )


def weekly_review(tasks: Iterable[Task], categories: Iterable[Category], now: datetime) -> WeeklyReview:
    """
    Numbers for the weekly review screen.

    - completed / created: inside the current Sunday-based week
    - trend: percent change of completed against the previous calendar week
    - category progress: done / total of tasks due this week, best rate first
    - recent weeks: the same ratio for the last four weeks
    - next week: open tasks due in [now + 7 days, now + 14 days)
    """
    tasks = list(tasks)
    categories = list(categories)
    names = {c.id: c.name for c in categories}

    start = week_start(now)
    end = start + timedelta(days=7)
    done_this_week = _completed_between(tasks, start, end)
    last_week = len(_completed_between(tasks, start - timedelta(days=7), start))
    trend = round((len(done_this_week) - last_week) / last_week * 100) if last_week else None

    per_day = tuple(
        len(_completed_between(done_this_week, start + timedelta(days=i), start + timedelta(days=i + 1)))
        for i in range(7)
    )
    by_category = Counter(category_label(t, names) for t in done_this_week)

    due_this_week = [t for t in tasks if _within(t.due, start, end)]
    progress = [
        CategoryProgress(
            name=c.name,
            total=sum(1 for t in due_this_week if t.category_id == c.id),
            completed=sum(1 for t in due_this_week if t.category_id == c.id and t.status == TaskStatus.DONE),
        )
        for c in categories
    ]
    progress.sort(key=lambda p: p.rate, reverse=True)

    recent: list[WeekProgress] = []
    for weeks_back in (3, 2, 1, 0):
        ws = start - timedelta(days=7 * weeks_back)
        due = [t for t in tasks if _within(t.due, ws, ws + timedelta(days=7))]
        recent.append(
            WeekProgress(
                week_start=ws.date(),
                total=len(due),
                completed=sum(1 for t in due if t.status == TaskStatus.DONE),
            )
        )

    upcoming = _open_due_between(tasks, now + timedelta(days=7), now + timedelta(days=14))

    month_start, month_end = month_bounds(now)
    month_tasks = [t for t in tasks if _within(t.due, month_start, month_end)]
    month_done = sum(1 for t in month_tasks if t.status == TaskStatus.DONE)

    return WeeklyReview(
        week_start=start.date(),
        completed=len(done_this_week),
        created=sum(1 for t in tasks if _within(t.created_at, start, end)),
        last_week_completed=last_week,
        trend_percent=float(trend) if trend is not None else None,
        completed_per_day=per_day,
        completed_by_category=dict(sorted(by_category.items())),
        category_progress=progress,
        recent_weeks=recent,
        next_week=len(upcoming),
        next_week_priorities=priority_counts(upcoming),
        monthly_completion_rate=(month_done / len(month_tasks) * 100.0) if month_tasks else 0.0,
    )

