# src/taskplus/tasks/task_models.py

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, time
from enum import StrEnum
from typing import Any

from ..core.errors import ValidationError


class TaskStatus(StrEnum):
    """
    Lifecycle status, one value per bucket.

    The string values are the wire values used by the export document.
    """

    INBOX = "inbox"
    TODAY = "today"
    DONE = "done"


class TaskPriority(StrEnum):
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"

    @property
    def rank(self) -> int:
        return _PRIORITY_RANK[self]


_PRIORITY_RANK = {
    TaskPriority.LOW: 1,
    TaskPriority.NORMAL: 2,
    TaskPriority.HIGH: 3,
}


class TaskContext(StrEnum):
    """GTD context: where or how the task can be done."""

    NONE = "none"
    HOME = "home"
    WORK = "work"
    CALL = "call"
    ERRAND = "errand"


class RecurrenceUnit(StrEnum):
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    YEARLY = "yearly"


class CategoryIcon(StrEnum):
    FOLDER = "folder"
    BRIEFCASE = "briefcase"
    BOOK = "book"
    GRADUATIONCAP = "graduationcap"
    HOUSE = "house"
    CAR = "car"
    GAMECONTROLLER = "gamecontroller"
    HEART = "heart"
    STAR = "star"
    LEAF = "leaf"
    FLAME = "flame"
    DROP = "drop"
    BOLT = "bolt"
    CLOUD = "cloud"


class CategoryColor(StrEnum):
    BLUE = "blue"
    GREEN = "green"
    ORANGE = "orange"
    RED = "red"
    PURPLE = "purple"
    PINK = "pink"
    YELLOW = "yellow"
    CYAN = "cyan"
    TEAL = "teal"
    INDIGO = "indigo"
    BROWN = "brown"


def new_id() -> str:
    return str(uuid.uuid4())


def normalize_tag(raw: str) -> str:
    """Trim and ensure the canonical "#" prefix. Empty input stays empty."""
    tag = (raw or "").strip()
    if not tag:
        return ""
    return tag if tag.startswith("#") else f"#{tag}"


@dataclass(slots=True, frozen=True)
class RecurrenceRule:
    """
    Descriptive repeat settings carried by a task.

    Expansion into concrete future tasks lives in tasks/recurrence.py.
    """

    unit: RecurrenceUnit = RecurrenceUnit.DAILY
    interval: int = 1
    enabled: bool = True
    end_date: datetime | None = None

    def validate(self) -> None:
        if int(self.interval) < 1:
            raise ValidationError(f"Recurrence interval must be >= 1 (got {self.interval}).")


@dataclass(slots=True, frozen=True)
class Task:
    """
    A single task.

    Value object: the store swaps whole instances (dataclasses.replace) on
    every mutation, so a Task you hold never changes under you.

    Notes:
    - status mirrors bucket membership; only store transitions change it.
    - sort_order is the manual position inside the bucket (not required unique).
    - original_status is the bucket the task was completed from, used by restore.
    - custom_fields is an open extension map carried through import/export.
    """

    title: str
    id: str = field(default_factory=new_id)
    notes: str | None = None
    due: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    status: TaskStatus = TaskStatus.INBOX
    priority: TaskPriority = TaskPriority.NORMAL
    context: TaskContext = TaskContext.NONE
    category_id: str | None = None
    tags: tuple[str, ...] = ()
    sort_order: int = 0
    notification_enabled: bool = True
    notification_time: datetime | None = None
    original_status: TaskStatus | None = None
    recurrence: RecurrenceRule | None = None
    custom_fields: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True, frozen=True)
class Category:
    name: str
    id: str = field(default_factory=new_id)
    icon: CategoryIcon = CategoryIcon.BRIEFCASE
    color: CategoryColor = CategoryColor.BLUE
    created_at: datetime | None = None
    updated_at: datetime | None = None
    custom_fields: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True, frozen=True)
class FocusSession:
    start_time: datetime
    id: str = field(default_factory=new_id)
    end_time: datetime | None = None
    duration: int | None = None  # minutes
    focus_mode: str = "pomodoro"  # pomodoro | deep_work | custom
    notes: str | None = None
    interruptions: int = 0
    energy_level: int | None = None  # 1-10
    productivity: int | None = None  # 1-10


@dataclass(slots=True, frozen=True)
class NotificationSettings:
    """Global notification preferences (persisted in the document's settings map)."""

    task_reminders_enabled: bool = True
    reminder_lead_minutes: int = 30

    daily_summary_enabled: bool = True
    daily_summary_time: time = time(9, 0)

    weekly_review_enabled: bool = True
    weekly_review_day: int = 1  # 0=Sunday ... 6=Saturday
    weekly_review_time: time = time(20, 0)

    focus_session_enabled: bool = True

    quiet_hours_enabled: bool = False
    quiet_hours_start: time = time(22, 0)
    quiet_hours_end: time = time(7, 0)


@dataclass(slots=True, frozen=True)
class StoreSnapshot:
    """
    Immutable view of the whole store.

    Passed to the query engine and the codec; never reaches back into the
    live store, so readers cannot race with mutations.
    """

    tasks: tuple[Task, ...] = ()
    categories: tuple[Category, ...] = ()
    tags: tuple[str, ...] = ()
    notification_settings: NotificationSettings = field(default_factory=NotificationSettings)
    settings: dict[str, str] = field(default_factory=dict)
    metadata: dict[str, Any] = field(default_factory=dict)

    def category_names(self) -> dict[str, str]:
        return {c.id: c.name for c in self.categories}


def default_categories(now: datetime) -> list[Category]:
    """Starter categories for a fresh store."""
    return [
        Category(name="Work", icon=CategoryIcon.BRIEFCASE, color=CategoryColor.BLUE, created_at=now, updated_at=now),
        Category(name="Personal", icon=CategoryIcon.HEART, color=CategoryColor.PINK, created_at=now, updated_at=now),
        Category(name="Study", icon=CategoryIcon.BOOK, color=CategoryColor.GREEN, created_at=now, updated_at=now),
        Category(name="Chores", icon=CategoryIcon.HOUSE, color=CategoryColor.ORANGE, created_at=now, updated_at=now),
    ]
