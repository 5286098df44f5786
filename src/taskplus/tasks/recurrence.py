# src/taskplus/tasks/recurrence.py

from __future__ import annotations

import calendar
import logging
from datetime import datetime, timedelta
from typing import TYPE_CHECKING

from ..core.errors import TransitionError, ValidationError
from .task_models import RecurrenceRule, RecurrenceUnit, Task, TaskStatus

if TYPE_CHECKING:
    from .task_store import TaskStore

logger = logging.getLogger(__name__)


def _add_months(dt: datetime, months: int) -> datetime:
    # Jan 31 + 1 month -> Feb 28/29
    total = dt.month - 1 + months
    year = dt.year + total // 12
    month = total % 12 + 1
    day = min(dt.day, calendar.monthrange(year, month)[1])
    return dt.replace(year=year, month=month, day=day)


def next_due(rule: RecurrenceRule, due: datetime) -> datetime | None:
    """
    Next occurrence after `due`, or None when the rule is disabled or the
    next occurrence falls after rule.end_date.
    """
    rule.validate()
    if not rule.enabled:
        return None

    step = int(rule.interval)
    if rule.unit == RecurrenceUnit.DAILY:
        nxt = due + timedelta(days=step)
    elif rule.unit == RecurrenceUnit.WEEKLY:
        nxt = due + timedelta(weeks=step)
    elif rule.unit == RecurrenceUnit.MONTHLY:
        nxt = _add_months(due, step)
    else:
        nxt = _add_months(due, 12 * step)

    if rule.end_date is not None and nxt > rule.end_date:
        return None
    return nxt


def expand_completed(store: TaskStore, task_id: str) -> Task | None:
    """
    Create the next instance of a completed recurring task through store.add.

    Returns the new task, or None when the rule has run out.
    Raises TransitionError if the task is not Done, ValidationError if it has
    no recurrence or no due date.
    """
    task = store.get(task_id)
    if task.status != TaskStatus.DONE:
        raise TransitionError(f"Task {task_id} must be done before its next occurrence is created.")
    if task.recurrence is None:
        raise ValidationError(f"Task {task_id} has no recurrence rule.")
    if task.due is None:
        raise ValidationError(f"Recurring task {task_id} has no due date to advance.")

    nxt = next_due(task.recurrence, task.due)
    if nxt is None:
        logger.info("Recurrence of task %s has ended", task_id)
        return None

    shift = nxt - task.due
    successor = Task(
        title=task.title,
        notes=task.notes,
        due=nxt,
        priority=task.priority,
        context=task.context,
        category_id=task.category_id,
        tags=task.tags,
        notification_enabled=task.notification_enabled,
        notification_time=task.notification_time + shift if task.notification_time is not None else None,
        recurrence=task.recurrence,
    )
    created = store.add(successor)
    logger.info("Recurring task %s -> next instance %s due=%s", task_id, created.id, nxt.isoformat())
    return created
