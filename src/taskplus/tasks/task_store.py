# src/taskplus/tasks/task_store.py

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from enum import StrEnum
from typing import Any

from ..core.errors import NotFoundError, TransitionError, ValidationError
from ..core.ports import Clock
from ..notifications.notification_scheduler import NotificationScheduler
from .task_codec import (
    ImportReport,
    decode_document,
    encode_document,
    focus_session_from_dict,
    focus_session_to_dict,
)
from .task_models import (
    Category,
    FocusSession,
    NotificationSettings,
    StoreSnapshot,
    Task,
    TaskStatus,
    normalize_tag,
)

logger = logging.getLogger(__name__)

FOCUS_SESSIONS_FIELD = "focusSessions"


class StoreEventKind(StrEnum):
    TASK_ADDED = "task_added"
    TASK_UPDATED = "task_updated"
    TASK_MOVED = "task_moved"
    TASK_COMPLETED = "task_completed"
    TASK_RESTORED = "task_restored"
    TASK_DELETED = "task_deleted"
    TASKS_REORDERED = "tasks_reordered"
    CATEGORY_ADDED = "category_added"
    CATEGORY_UPDATED = "category_updated"
    CATEGORY_DELETED = "category_deleted"
    TAG_ADDED = "tag_added"
    TAG_RENAMED = "tag_renamed"
    TAG_REMOVED = "tag_removed"
    SETTINGS_UPDATED = "settings_updated"
    STORE_REPLACED = "store_replaced"
    SCHEDULING_FAILED = "scheduling_failed"


@dataclass(slots=True, frozen=True)
class StoreEvent:
    """
    Emitted after a successful mutation.

    The presentation layer (haptics, redraws, badge counts) subscribes to
    these instead of the store calling into UI code.
    """

    kind: StoreEventKind
    task_id: str | None = None
    category_id: str | None = None
    tag: str | None = None
    status: TaskStatus | None = None
    detail: str | None = None


StoreListener = Callable[[StoreEvent], None]

# Fields whose change requires re-deriving a task's notifications.
_NOTIFICATION_FIELDS = ("due", "notification_time", "notification_enabled", "title", "status")


def _custom_minutes(task: Task, key: str) -> int:
    raw = task.custom_fields.get(key)
    try:
        return int(raw or 0)
    except (TypeError, ValueError, OverflowError):
        logger.warning("Ignoring non-numeric %s=%r on task %s", key, raw, task.id)
        return 0


class TaskStore:
    """
    In-memory task store: the single owner of tasks, categories and tags.

    Bucket model:
    - one dict of tasks keyed by id; `status` is the only record of which
      bucket a task is in, so a task cannot sit in two buckets
    - bucket order is `sort_order` ascending (stable on insertion order)

    Every public mutation validates first and raises ValidationError /
    NotFoundError / TransitionError before touching state. Notification
    side effects go through the NotificationScheduler, which never raises.

    Thread-safety:
    - not thread-safe; all mutations are expected from one thread of control.
    """

    def __init__(
        self,
        *,
        clock: Clock,
        scheduler: NotificationScheduler | None = None,
        snapshot: StoreSnapshot | None = None,
    ) -> None:
        self._clock = clock
        self._scheduler = scheduler
        self._tasks: dict[str, Task] = {}
        self._categories: dict[str, Category] = {}
        self._tags: dict[str, None] = {}  # ordered set
        self._notification_settings = scheduler.settings if scheduler else NotificationSettings()
        self._settings: dict[str, str] = {}
        self._metadata: dict[str, Any] = {}
        self._listeners: list[StoreListener] = []

        if scheduler is not None and scheduler.on_error is None:
            scheduler.on_error = lambda err: self._emit(
                StoreEvent(StoreEventKind.SCHEDULING_FAILED, detail=str(err))
            )

        if snapshot is not None:
            self.load_snapshot(snapshot)
        logger.info("TaskStore ready tasks=%d categories=%d", len(self._tasks), len(self._categories))

    # ---- events ----

    def subscribe(self, listener: StoreListener) -> Callable[[], None]:
        """Register a listener; returns a function that unsubscribes it."""
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def _emit(self, event: StoreEvent) -> None:
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception("Store listener failed for event %s", event.kind.value)

    # ---- low-level helpers ----

    def _now(self) -> datetime:
        return self._clock.now()

    @staticmethod
    def _validate_title(title: str) -> str:
        clean = (title or "").strip()
        if not clean:
            raise ValidationError("Task title must not be empty.")
        return clean

    @staticmethod
    def _require_aware(task: Task) -> None:
        end_date = task.recurrence.end_date if task.recurrence is not None else None
        for what, value in (
            ("due", task.due),
            ("notification_time", task.notification_time),
            ("recurrence end date", end_date),
        ):
            if value is not None and value.utcoffset() is None:
                raise ValidationError(f"Task {what} must carry a timezone (got {value.isoformat()}).")

    def _validate_task_fields(self, task: Task) -> tuple[str, tuple[str, ...]]:
        title = self._validate_title(task.title)
        self._require_aware(task)
        if task.recurrence is not None:
            task.recurrence.validate()
        if task.category_id is not None and task.category_id not in self._categories:
            raise NotFoundError(f"Category {task.category_id} not found.")
        tags: list[str] = []
        for raw in task.tags:
            tag = normalize_tag(raw)
            if tag and tag not in tags:
                tags.append(tag)
        return title, tuple(tags)

    def _register_tags(self, tags: Iterable[str]) -> None:
        for tag in tags:
            self._tags.setdefault(tag, None)

    def _append_position(self, status: TaskStatus) -> int:
        return max((t.sort_order for t in self._tasks.values() if t.status == status), default=-1) + 1

    def _reschedule(self, task: Task) -> None:
        if self._scheduler is not None:
            self._scheduler.schedule_for(task)

    def _cancel_notifications(self, task_id: str) -> None:
        if self._scheduler is not None:
            self._scheduler.cancel(task_id)

    def _transition(
        self,
        task_id: str,
        *,
        allowed: Iterable[TaskStatus],
        target: TaskStatus,
        verb: str,
        **changes: Any,
    ) -> tuple[Task, Task]:
        current = self.get(task_id)
        allowed = tuple(allowed)
        if current.status not in allowed:
            raise TransitionError(
                f"Cannot {verb} task {task_id}: it is in {current.status.value}, "
                f"expected {' or '.join(s.value for s in allowed)}."
            )
        moved = replace(
            current,
            status=target,
            sort_order=self._append_position(target),
            updated_at=self._now(),
            **changes,
        )
        self._tasks[task_id] = moved
        logger.info("Task %s %s -> %s", task_id, current.status.value, target.value)
        return current, moved

    # ---- read API ----

    def find(self, task_id: str) -> Task | None:
        return self._tasks.get(task_id)

    def get(self, task_id: str) -> Task:
        task = self._tasks.get(task_id)
        if task is None:
            raise NotFoundError(f"Task {task_id} not found.")
        return task

    def bucket(self, status: TaskStatus) -> list[Task]:
        """Tasks of one bucket in manual order."""
        return sorted((t for t in self._tasks.values() if t.status == status), key=lambda t: t.sort_order)

    @property
    def inbox_tasks(self) -> list[Task]:
        return self.bucket(TaskStatus.INBOX)

    @property
    def today_tasks(self) -> list[Task]:
        return self.bucket(TaskStatus.TODAY)

    @property
    def done_tasks(self) -> list[Task]:
        return self.bucket(TaskStatus.DONE)

    def all_tasks(self) -> list[Task]:
        return self.inbox_tasks + self.today_tasks + self.done_tasks

    def count_tasks(self) -> int:
        return len(self._tasks)

    @property
    def categories(self) -> list[Category]:
        return list(self._categories.values())

    def get_category(self, category_id: str) -> Category:
        category = self._categories.get(category_id)
        if category is None:
            raise NotFoundError(f"Category {category_id} not found.")
        return category

    @property
    def tags(self) -> list[str]:
        return list(self._tags)

    @property
    def notification_settings(self) -> NotificationSettings:
        return self._notification_settings

    def snapshot(self) -> StoreSnapshot:
        return StoreSnapshot(
            tasks=tuple(self.all_tasks()),
            categories=tuple(self._categories.values()),
            tags=tuple(self._tags),
            notification_settings=self._notification_settings,
            settings=dict(self._settings),
            metadata=dict(self._metadata),
        )

    def today_progress(self) -> float:
        """Share of today's work that is done: completed-from-Today / (Today + completed-from-Today)."""
        completed = self.today_completed_count()
        total = len(self.today_tasks) + completed
        if total == 0:
            return 0.0
        return completed / total

    def today_completed_count(self) -> int:
        return sum(
            1
            for t in self._tasks.values()
            if t.status == TaskStatus.DONE and t.original_status == TaskStatus.TODAY
        )

    # ---- task mutations ----

    def add(self, task: Task) -> Task:
        """Insert a new task at the end of Inbox. Returns the stored version."""
        if task.id in self._tasks:
            raise ValidationError(f"Task {task.id} already exists.")
        title, tags = self._validate_task_fields(task)

        now = self._now()
        stored = replace(
            task,
            title=title,
            tags=tags,
            status=TaskStatus.INBOX,
            original_status=None,
            sort_order=len(self.inbox_tasks),
            created_at=now,
            updated_at=now,
        )
        self._tasks[stored.id] = stored
        self._register_tags(tags)
        logger.info("Task added id=%s due=%s", stored.id, stored.due)

        if stored.notification_enabled:
            self._reschedule(stored)

        self._emit(StoreEvent(StoreEventKind.TASK_ADDED, task_id=stored.id, status=stored.status))
        return stored

    def update(self, task: Task) -> Task:
        """
        Replace a task's editable fields in place.

        Bucket membership, manual position, creation time and the recorded
        pre-completion status are kept from the stored version. A differing
        status is rejected: use the transition operations for that.
        """
        current = self.get(task.id)
        if task.status != current.status:
            raise TransitionError(
                f"Task {task.id} is in {current.status.value}; "
                "status changes go through move/complete/restore."
            )
        title, tags = self._validate_task_fields(task)

        stored = replace(
            task,
            title=title,
            tags=tags,
            status=current.status,
            sort_order=current.sort_order,
            created_at=current.created_at,
            original_status=current.original_status,
            updated_at=self._now(),
        )
        self._tasks[stored.id] = stored
        self._register_tags(tags)
        logger.debug("Task updated id=%s", stored.id)

        if any(getattr(current, f) != getattr(stored, f) for f in _NOTIFICATION_FIELDS):
            self._reschedule(stored)

        self._emit(StoreEvent(StoreEventKind.TASK_UPDATED, task_id=stored.id, status=stored.status))
        return stored

    def move_to_today(self, task_id: str) -> Task:
        _, moved = self._transition(
            task_id, allowed=(TaskStatus.INBOX,), target=TaskStatus.TODAY, verb="move to Today"
        )
        self._emit(StoreEvent(StoreEventKind.TASK_MOVED, task_id=task_id, status=moved.status))
        return moved

    def send_to_inbox(self, task_id: str) -> Task:
        _, moved = self._transition(
            task_id, allowed=(TaskStatus.TODAY,), target=TaskStatus.INBOX, verb="send back to Inbox"
        )
        self._emit(StoreEvent(StoreEventKind.TASK_MOVED, task_id=task_id, status=moved.status))
        return moved

    def complete(self, task_id: str) -> Task:
        """Move to Done, remembering the source bucket for restore()."""
        current = self.get(task_id)
        _, done = self._transition(
            task_id,
            allowed=(TaskStatus.INBOX, TaskStatus.TODAY),
            target=TaskStatus.DONE,
            verb="complete",
            original_status=current.status,
        )
        self._cancel_notifications(task_id)
        self._emit(StoreEvent(StoreEventKind.TASK_COMPLETED, task_id=task_id, status=done.status))
        return done

    def restore(self, task_id: str) -> Task:
        """Send a Done task back to the bucket it was completed from (Inbox if unknown)."""
        current = self.get(task_id)
        target = current.original_status
        if target not in (TaskStatus.INBOX, TaskStatus.TODAY):
            target = TaskStatus.INBOX
        _, restored = self._transition(
            task_id,
            allowed=(TaskStatus.DONE,),
            target=target,
            verb="restore",
            original_status=None,
        )
        if restored.notification_enabled:
            self._reschedule(restored)
        self._emit(StoreEvent(StoreEventKind.TASK_RESTORED, task_id=task_id, status=restored.status))
        return restored

    def snooze_one_day(self, task_id: str) -> Task:
        """Push a Today task's due date to this time tomorrow."""
        current = self.get(task_id)
        if current.status != TaskStatus.TODAY:
            raise TransitionError(f"Only Today tasks can be snoozed (task {task_id} is in {current.status.value}).")
        now = self._now()
        snoozed = replace(current, due=now + timedelta(days=1), updated_at=now)
        self._tasks[task_id] = snoozed
        logger.info("Task %s snoozed to %s", task_id, snoozed.due)
        self._reschedule(snoozed)
        self._emit(StoreEvent(StoreEventKind.TASK_UPDATED, task_id=task_id, status=snoozed.status))
        return snoozed

    def delete(self, task_id: str) -> Task:
        """Remove a task from whichever bucket holds it and cancel its notifications."""
        task = self.get(task_id)
        del self._tasks[task_id]
        self._cancel_notifications(task_id)
        logger.info("Task deleted id=%s (was %s)", task_id, task.status.value)
        self._emit(StoreEvent(StoreEventKind.TASK_DELETED, task_id=task_id, status=task.status))
        return task

    def reorder(self, status: TaskStatus, from_indices: Iterable[int], to_index: int) -> list[Task]:
        """
        Move the tasks at `from_indices` so they land before the element that
        was at `to_index` (list-move semantics), then renumber the bucket's
        sort_order 0..n-1. Other buckets are untouched.
        """
        ordered = self.bucket(status)
        n = len(ordered)
        picked = sorted(set(int(i) for i in from_indices))
        if not picked:
            raise ValidationError("reorder needs at least one source index.")
        if picked[0] < 0 or picked[-1] >= n:
            raise ValidationError(f"Source index out of range for {status.value} ({n} tasks).")
        if not 0 <= int(to_index) <= n:
            raise ValidationError(f"Destination {to_index} out of range for {status.value} ({n} tasks).")

        picked_set = set(picked)
        moving = [ordered[i] for i in picked]
        remaining = [t for i, t in enumerate(ordered) if i not in picked_set]
        insert_at = int(to_index) - sum(1 for i in picked if i < int(to_index))
        new_order = remaining[:insert_at] + moving + remaining[insert_at:]

        now = self._now()
        result: list[Task] = []
        for pos, task in enumerate(new_order):
            if task.sort_order != pos:
                task = replace(task, sort_order=pos, updated_at=now)
                self._tasks[task.id] = task
            result.append(task)

        logger.debug("Reordered %s: %s", status.value, [t.id for t in result])
        self._emit(StoreEvent(StoreEventKind.TASKS_REORDERED, status=status))
        return result

    # ---- focus sessions ----

    def add_focus_session(self, task_id: str, session: FocusSession) -> Task:
        current = self.get(task_id)
        if current.status == TaskStatus.DONE:
            raise TransitionError(f"Task {task_id} is done; focus sessions go on open tasks.")
        sessions = list(current.custom_fields.get(FOCUS_SESSIONS_FIELD) or [])
        sessions.append(focus_session_to_dict(session))
        custom = dict(current.custom_fields)
        custom[FOCUS_SESSIONS_FIELD] = sessions
        stored = replace(current, custom_fields=custom, updated_at=self._now())
        self._tasks[task_id] = stored
        self._emit(StoreEvent(StoreEventKind.TASK_UPDATED, task_id=task_id, status=stored.status))
        return stored

    def focus_sessions(self, task_id: str) -> list[FocusSession]:
        out: list[FocusSession] = []
        for raw in self.get(task_id).custom_fields.get(FOCUS_SESSIONS_FIELD) or []:
            if not isinstance(raw, dict):
                continue
            try:
                out.append(focus_session_from_dict(raw))
            except ValueError:
                logger.warning("Skipping malformed focus session on task %s", task_id)
        return out

    def task_analytics(self, task_id: str) -> dict[str, int]:
        task = self.get(task_id)
        sessions = self.focus_sessions(task_id)
        rated = [s.productivity for s in sessions if s.productivity is not None]
        return {
            "totalFocusTime": sum(s.duration or 0 for s in sessions),
            "averageProductivity": sum(rated) // max(len(sessions), 1),
            "totalInterruptions": sum(s.interruptions for s in sessions),
            "focusSessionsCount": len(sessions),
            "estimatedTime": _custom_minutes(task, "estimatedTime"),
            "actualTime": _custom_minutes(task, "actualTime"),
        }

    # ---- categories ----

    @staticmethod
    def _validate_category_name(name: str) -> str:
        clean = (name or "").strip()
        if not clean:
            raise ValidationError("Category name must not be empty.")
        return clean

    def add_category(self, category: Category) -> Category:
        if category.id in self._categories:
            raise ValidationError(f"Category {category.id} already exists.")
        name = self._validate_category_name(category.name)
        now = self._now()
        stored = replace(category, name=name, created_at=now, updated_at=now)
        self._categories[stored.id] = stored
        logger.info("Category added id=%s name=%s", stored.id, stored.name)
        self._emit(StoreEvent(StoreEventKind.CATEGORY_ADDED, category_id=stored.id))
        return stored

    def update_category(self, category: Category) -> Category:
        current = self.get_category(category.id)
        name = self._validate_category_name(category.name)
        stored = replace(category, name=name, created_at=current.created_at, updated_at=self._now())
        self._categories[stored.id] = stored
        self._emit(StoreEvent(StoreEventKind.CATEGORY_UPDATED, category_id=stored.id))
        return stored

    def delete_category(self, category_id: str) -> int:
        """Delete a category and clear it on every task. Returns how many tasks were touched."""
        self.get_category(category_id)
        del self._categories[category_id]

        now = self._now()
        touched = 0
        for task in list(self._tasks.values()):
            if task.category_id == category_id:
                self._tasks[task.id] = replace(task, category_id=None, updated_at=now)
                touched += 1

        logger.info("Category deleted id=%s (cleared on %d task(s))", category_id, touched)
        self._emit(StoreEvent(StoreEventKind.CATEGORY_DELETED, category_id=category_id))
        return touched

    # ---- tags ----

    def _require_tag(self, raw: str) -> str:
        tag = normalize_tag(raw)
        if not tag:
            raise ValidationError("Tag must not be empty.")
        if tag not in self._tags:
            raise NotFoundError(f"Tag {tag} not found.")
        return tag

    def add_tag(self, raw: str) -> str:
        tag = normalize_tag(raw)
        if not tag:
            raise ValidationError("Tag must not be empty.")
        if tag not in self._tags:
            self._tags[tag] = None
            self._emit(StoreEvent(StoreEventKind.TAG_ADDED, tag=tag))
        return tag

    def update_tag(self, old: str, new: str) -> str:
        """Rename a tag everywhere. Renaming onto an existing tag merges the two."""
        old_tag = self._require_tag(old)
        new_tag = normalize_tag(new)
        if not new_tag:
            raise ValidationError("Tag must not be empty.")
        if new_tag == old_tag:
            return new_tag

        self._tags = {(new_tag if t == old_tag else t): None for t in self._tags}

        now = self._now()
        touched = 0
        for task in list(self._tasks.values()):
            if old_tag not in task.tags:
                continue
            renamed: list[str] = []
            for t in task.tags:
                t = new_tag if t == old_tag else t
                if t not in renamed:
                    renamed.append(t)
            self._tasks[task.id] = replace(task, tags=tuple(renamed), updated_at=now)
            touched += 1

        logger.info("Tag renamed %s -> %s on %d task(s)", old_tag, new_tag, touched)
        self._emit(StoreEvent(StoreEventKind.TAG_RENAMED, tag=new_tag, detail=old_tag))
        return new_tag

    def remove_tag(self, raw: str) -> int:
        """Drop a tag from the registry and from every task. Returns how many tasks were touched."""
        tag = self._require_tag(raw)
        del self._tags[tag]

        now = self._now()
        touched = 0
        for task in list(self._tasks.values()):
            if tag in task.tags:
                self._tasks[task.id] = replace(
                    task, tags=tuple(t for t in task.tags if t != tag), updated_at=now
                )
                touched += 1

        logger.info("Tag removed %s from %d task(s)", tag, touched)
        self._emit(StoreEvent(StoreEventKind.TAG_REMOVED, tag=tag))
        return touched

    # ---- settings ----

    def update_notification_settings(self, settings: NotificationSettings) -> None:
        if int(settings.reminder_lead_minutes) < 0:
            raise ValidationError("Reminder lead time must not be negative.")
        if not 0 <= int(settings.weekly_review_day) <= 6:
            raise ValidationError("Weekly review day must be 0 (Sunday) .. 6 (Saturday).")

        self._notification_settings = settings
        if self._scheduler is not None:
            self._scheduler.update_settings(settings)
            for task in self._tasks.values():
                if task.status != TaskStatus.DONE:
                    self._scheduler.schedule_for(task)
        self._emit(StoreEvent(StoreEventKind.SETTINGS_UPDATED))

    # ---- snapshot / documents ----

    def load_snapshot(self, snapshot: StoreSnapshot) -> None:
        """Replace the whole store with `snapshot` and re-derive every notification."""
        for task_id in list(self._tasks):
            self._cancel_notifications(task_id)

        self._tasks = {t.id: t for t in snapshot.tasks}
        self._categories = {c.id: c for c in snapshot.categories}
        self._tags = {}
        self._register_tags(snapshot.tags)
        for task in snapshot.tasks:
            self._register_tags(task.tags)
        self._settings = dict(snapshot.settings)
        self._metadata = dict(snapshot.metadata)
        self._notification_settings = snapshot.notification_settings

        if self._scheduler is not None:
            self._scheduler.update_settings(snapshot.notification_settings)
            for task in self._tasks.values():
                if task.status != TaskStatus.DONE and task.notification_enabled:
                    self._scheduler.schedule_for(task)

        self._emit(StoreEvent(StoreEventKind.STORE_REPLACED))

    def export_document(self) -> str:
        return encode_document(self.snapshot(), self._now())

    def import_document(self, text: str | bytes) -> ImportReport:
        """
        Replace everything with the document's contents.

        DocumentImportError (malformed document) leaves the store untouched.
        """
        snapshot, report = decode_document(text)
        self.load_snapshot(snapshot)
        logger.info("Import finished: %s", report.summary())
        return report
