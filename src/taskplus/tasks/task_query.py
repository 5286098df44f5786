# src/taskplus/tasks/task_query.py

from __future__ import annotations

"""
Read-only task views: filter, sort, group.

Everything here works on plain task sequences (usually from a StoreSnapshot),
never on the live store, so views can be computed from any thread.

Sort rules:
- every key breaks ties by ascending sort_order, and Python's sort is stable,
  so sorting an already sorted list changes nothing
- only the priority key honours the direction toggle; created_at is always
  newest first
"""

import logging
from collections.abc import Callable, Iterable, Mapping
from enum import StrEnum
from typing import Any

from .task_models import Category, StoreSnapshot, Task, TaskStatus

logger = logging.getLogger(__name__)

UNCATEGORIZED = "Uncategorized"


class SortKey(StrEnum):
    MANUAL = "manual"
    PRIORITY = "priority"
    DUE_DATE = "due_date"
    CATEGORY = "category"
    CREATED_AT = "created_at"
    TITLE = "title"


class SortDirection(StrEnum):
    ASCENDING = "ascending"
    DESCENDING = "descending"


CategoryLookup = Mapping[str, str] | Iterable[Category] | None


def _category_names(categories: CategoryLookup) -> dict[str, str]:
    if categories is None:
        return {}
    if isinstance(categories, Mapping):
        return dict(categories)
    return {c.id: c.name for c in categories}


def category_label(task: Task, names: Mapping[str, str]) -> str:
    """Display name of the task's category, or UNCATEGORIZED."""
    if task.category_id is None:
        return UNCATEGORIZED
    return names.get(task.category_id, UNCATEGORIZED)


def _timestamp(value) -> float:
    return value.timestamp() if value is not None else float("-inf")


def _sort_key(
    key: SortKey,
    direction: SortDirection,
    names: Mapping[str, str],
) -> Callable[[Task], tuple[Any, ...]]:
    if key == SortKey.PRIORITY:
        sign = -1 if direction == SortDirection.DESCENDING else 1
        return lambda t: (sign * t.priority.rank, t.sort_order)
    if key == SortKey.DUE_DATE:
        # no due date = infinitely late
        return lambda t: (t.due is None, _timestamp(t.due), t.sort_order)
    if key == SortKey.CATEGORY:
        return lambda t: (category_label(t, names), t.sort_order)
    if key == SortKey.CREATED_AT:
        return lambda t: (-_timestamp(t.created_at), t.sort_order)
    if key == SortKey.TITLE:
        return lambda t: (t.title.casefold(), t.sort_order)
    return lambda t: (t.sort_order,)


def filter_tasks(
    tasks: Iterable[Task],
    *,
    tag_filter: Iterable[str] = (),
    hide_completed: bool = False,
) -> list[Task]:
    wanted = set(tag_filter)
    out: list[Task] = []
    for t in tasks:
        if hide_completed and t.status == TaskStatus.DONE:
            continue
        if wanted and wanted.isdisjoint(t.tags):
            continue
        out.append(t)
    return out


def sort_tasks(
    tasks: Iterable[Task],
    sort_key: SortKey = SortKey.MANUAL,
    sort_direction: SortDirection = SortDirection.DESCENDING,
    categories: CategoryLookup = None,
) -> list[Task]:
    return sorted(tasks, key=_sort_key(SortKey(sort_key), SortDirection(sort_direction), _category_names(categories)))


def view(
    tasks: Iterable[Task],
    sort_key: SortKey = SortKey.MANUAL,
    sort_direction: SortDirection = SortDirection.DESCENDING,
    tag_filter: Iterable[str] = (),
    hide_completed: bool = False,
    categories: CategoryLookup = None,
) -> list[Task]:
    """Filter then sort. `categories` resolves names for the category key."""
    kept = filter_tasks(tasks, tag_filter=tag_filter, hide_completed=hide_completed)
    return sort_tasks(kept, sort_key, sort_direction, categories)


def group_by_category(tasks: Iterable[Task], categories: CategoryLookup = None) -> dict[str, list[Task]]:
    """
    Partition an already ordered sequence by category name.

    Member order is preserved; keys come back in lexicographic order.
    """
    names = _category_names(categories)
    groups: dict[str, list[Task]] = {}
    for t in tasks:
        groups.setdefault(category_label(t, names), []).append(t)
    return {name: groups[name] for name in sorted(groups)}


def inbox_view_tasks(snapshot: StoreSnapshot) -> list[Task]:
    """Inbox tasks followed by tasks that were completed from Inbox (the Inbox screen's list)."""
    inbox = [t for t in snapshot.tasks if t.status == TaskStatus.INBOX]
    done_here = [
        t for t in snapshot.tasks if t.status == TaskStatus.DONE and t.original_status == TaskStatus.INBOX
    ]
    return sort_tasks(inbox) + sort_tasks(done_here)
