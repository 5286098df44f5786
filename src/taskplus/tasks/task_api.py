# src/taskplus/tasks/task_api.py

from __future__ import annotations

import logging
from datetime import date, datetime, time, timedelta

from ..core.errors import NotFoundError, ValidationError
from ..core.state import AppState
from .task_models import Category, Task, TaskContext, TaskPriority

logger = logging.getLogger(__name__)

# Time used when a date is given without a time of day.
DEFAULT_TIME_OF_DAY = time(9, 0)
MIN_ID_PREFIX = 4


def parse_when(raw: str, now: datetime) -> datetime:
    """
    Parse a user-typed moment in now's timezone.

    Accepts "today", "tomorrow", "YYYY-MM-DD" (at 09:00) and
    "YYYY-MM-DDTHH:MM[:SS]" (with or without offset).
    """
    text = raw.strip().lower()
    if text in ("today", "tomorrow"):
        day = now.date() + timedelta(days=1 if text == "tomorrow" else 0)
        return datetime.combine(day, DEFAULT_TIME_OF_DAY, tzinfo=now.tzinfo)
    try:
        if "t" not in text and " " not in text:
            return datetime.combine(date.fromisoformat(text), DEFAULT_TIME_OF_DAY, tzinfo=now.tzinfo)
        dt = datetime.fromisoformat(raw.strip())
    except ValueError as e:
        raise ValidationError(f"Cannot read date {raw!r} (use YYYY-MM-DD or YYYY-MM-DDTHH:MM).") from e
    return dt if dt.tzinfo is not None else dt.replace(tzinfo=now.tzinfo)


def find_category(state: AppState, ref: str) -> Category:
    """Look a category up by id or by case-insensitive name."""
    wanted = ref.strip()
    for c in state.store.categories:
        if c.id == wanted or c.name.casefold() == wanted.casefold():
            return c
    raise NotFoundError(f"Category {ref!r} not found.")


def resolve_task(state: AppState, ref: str) -> Task:
    """
    Resolve a full task id or an unambiguous id prefix (at least 4 chars).
    """
    ref = ref.strip()
    task = state.store.find(ref)
    if task is not None:
        return task
    if len(ref) < MIN_ID_PREFIX:
        raise NotFoundError(f"Task {ref!r} not found.")
    matches = [t for t in state.store.all_tasks() if t.id.startswith(ref)]
    if not matches:
        raise NotFoundError(f"Task {ref!r} not found.")
    if len(matches) > 1:
        raise ValidationError(f"Task id prefix {ref!r} is ambiguous ({len(matches)} matches).")
    return matches[0]


def quick_add(state: AppState, line: str) -> Task:
    """
    Convenience helper: add a task from one line of text.

    Tokens:
      #tag            add a tag
      !low|!normal|!high  priority
      @category       category by name
      due:<when>      due date
      remind:<when>   explicit reminder time
      ctx:<context>   GTD context (home, work, call, errand)
    Everything else is the title.
    """
    now = state.clock.now()
    words: list[str] = []
    tags: list[str] = []
    priority = TaskPriority.NORMAL
    category_id: str | None = None
    due: datetime | None = None
    remind: datetime | None = None
    context = TaskContext.NONE

    for token in line.split():
        low = token.lower()
        if token.startswith("#") and len(token) > 1:
            tags.append(token)
        elif token.startswith("!") and low[1:] in {p.value for p in TaskPriority}:
            priority = TaskPriority(low[1:])
        elif token.startswith("@") and len(token) > 1:
            category_id = find_category(state, token[1:]).id
        elif low.startswith("due:"):
            due = parse_when(token[4:], now)
        elif low.startswith("remind:"):
            remind = parse_when(token[7:], now)
        elif low.startswith("ctx:"):
            try:
                context = TaskContext(low[4:])
            except ValueError as e:
                choices = ", ".join(c.value for c in TaskContext)
                raise ValidationError(f"Unknown context {token[4:]!r} (expected one of: {choices}).") from e
        else:
            words.append(token)

    task = Task(
        title=" ".join(words),
        due=due,
        priority=priority,
        context=context,
        category_id=category_id,
        tags=tuple(tags),
        notification_time=remind,
    )
    with state.lock:
        stored = state.store.add(task)
    logger.debug("quick_add task_id=%s", stored.id)
    return stored
