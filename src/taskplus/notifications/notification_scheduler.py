# src/taskplus/notifications/notification_scheduler.py

from __future__ import annotations

"""
Notification scheduling policy.

Two layers:
- pure derivation: task fields + global settings + "now" -> trigger descriptors,
- NotificationScheduler: pushes those descriptors into a TriggerRegistry,
  always cancel-then-schedule so triggers never stack.

Registry failures are logged and reported through on_error; they never reach
the caller, so a failed schedule cannot roll back the task mutation that caused it.
"""

import logging
import uuid
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, time, timedelta
from enum import StrEnum

from ..core.errors import SchedulingError
from ..core.ports import Clock, TriggerRegistry
from ..tasks.task_models import NotificationSettings, Task, TaskStatus

logger = logging.getLogger(__name__)


class NotificationKind(StrEnum):
    REMINDER = "reminder"  # due-date reminder
    CUSTOM = "custom"  # explicit notification_time
    DAILY_SUMMARY = "daily_summary"
    WEEKLY_REVIEW = "weekly_review"
    FOCUS_SESSION = "focus_session"

    @property
    def action_category(self) -> str:
        return _ACTION_CATEGORY[self]


_ACTION_CATEGORY = {
    NotificationKind.REMINDER: "TASK_REMINDER",
    NotificationKind.CUSTOM: "TASK_REMINDER",
    NotificationKind.DAILY_SUMMARY: "DAILY_REVIEW",
    NotificationKind.WEEKLY_REVIEW: "WEEKLY_REVIEW",
    NotificationKind.FOCUS_SESSION: "FOCUS_SESSION",
}

DAILY_REVIEW_ID = "daily_review"
WEEKLY_REVIEW_ID = "weekly_review"


@dataclass(slots=True, frozen=True)
class NotificationSpec:
    """
    A trigger descriptor, abstracted from any OS notification center.

    identifier is deterministic for task triggers (task id + kind), so
    scheduling the same descriptor twice replaces the first one.
    Repeating triggers carry their calendar match (hour/minute/weekday) and
    fire_at holds the next occurrence.
    """

    identifier: str
    kind: NotificationKind
    fire_at: datetime
    title: str
    body: str
    task_id: str | None = None
    repeats: bool = False
    hour: int | None = None
    minute: int | None = None
    weekday: int | None = None  # 0=Sunday ... 6=Saturday

    @property
    def action_category(self) -> str:
        return self.kind.action_category


def task_reminder_id(task_id: str) -> str:
    return f"task_{task_id}"


def custom_reminder_id(task_id: str) -> str:
    return f"custom_task_{task_id}"


def task_identifiers(task_id: str) -> tuple[str, ...]:
    """Every identifier a task's triggers may use."""
    return (task_reminder_id(task_id), custom_reminder_id(task_id))


# ---- calendar helpers ----


def _sunday_based_weekday(dt: datetime) -> int:
    # datetime.weekday(): Monday=0 ... Sunday=6
    return (dt.weekday() + 1) % 7


def next_calendar_occurrence(
    after: datetime,
    *,
    hour: int,
    minute: int,
    weekday: int | None = None,
) -> datetime:
    """
    First datetime strictly after `after` matching hour:minute (and weekday,
    Sunday=0, when given), in after's timezone.
    """
    candidate = after.replace(hour=hour, minute=minute, second=0, microsecond=0)
    if weekday is not None:
        candidate += timedelta(days=(weekday - _sunday_based_weekday(after)) % 7)
        if candidate <= after:
            candidate += timedelta(days=7)
        return candidate
    if candidate <= after:
        candidate += timedelta(days=1)
    return candidate


def _in_window(t: time, start: time, end: time) -> bool:
    if start == end:
        return False
    if start < end:
        return start <= t < end
    # wraps midnight (22:00 -> 07:00)
    return t >= start or t < end


def apply_quiet_hours(
    fire_at: datetime,
    settings: NotificationSettings,
    now: datetime,
) -> datetime | None:
    """
    Move a fire time that falls inside quiet hours back to the window start.

    Returns None if the adjusted time is no longer in the future.
    """
    if not settings.quiet_hours_enabled:
        return fire_at

    local = fire_at.astimezone(now.tzinfo) if now.tzinfo is not None else fire_at
    start, end = settings.quiet_hours_start, settings.quiet_hours_end
    if not _in_window(local.time(), start, end):
        return fire_at

    window_start = local.replace(hour=start.hour, minute=start.minute, second=0, microsecond=0)
    if start > end and local.time() < end:
        # early-morning part of a window that began the previous evening
        window_start -= timedelta(days=1)

    if window_start <= now:
        return None
    return window_start


# ---- pure derivation ----


def derive_task_notifications(
    task: Task,
    settings: NotificationSettings,
    now: datetime,
) -> list[NotificationSpec]:
    """
    Triggers that should exist for `task` right now.

    - due reminder at due - lead, if due is set and reminders are on
    - custom reminder exactly at notification_time, if set
    Both may coexist. Done tasks and disabled tasks derive nothing.
    """
    if task.status == TaskStatus.DONE or not task.notification_enabled:
        return []

    out: list[NotificationSpec] = []

    if task.due is not None and settings.task_reminders_enabled:
        lead = max(0, int(settings.reminder_lead_minutes))
        fire_at = apply_quiet_hours(task.due - timedelta(minutes=lead), settings, now)
        if fire_at is not None and fire_at > now:
            out.append(
                NotificationSpec(
                    identifier=task_reminder_id(task.id),
                    kind=NotificationKind.REMINDER,
                    fire_at=fire_at,
                    title="Task due soon",
                    body=task.title,
                    task_id=task.id,
                )
            )

    if task.notification_time is not None:
        fire_at = apply_quiet_hours(task.notification_time, settings, now)
        if fire_at is not None and fire_at > now:
            out.append(
                NotificationSpec(
                    identifier=custom_reminder_id(task.id),
                    kind=NotificationKind.CUSTOM,
                    fire_at=fire_at,
                    title="Task reminder",
                    body=task.title,
                    task_id=task.id,
                )
            )

    return out


def derive_daily_summary(settings: NotificationSettings, now: datetime) -> NotificationSpec | None:
    if not settings.daily_summary_enabled:
        return None
    t = settings.daily_summary_time
    return NotificationSpec(
        identifier=DAILY_REVIEW_ID,
        kind=NotificationKind.DAILY_SUMMARY,
        fire_at=next_calendar_occurrence(now, hour=t.hour, minute=t.minute),
        title="Daily review",
        body="Look back on today's tasks and plan tomorrow.",
        repeats=True,
        hour=t.hour,
        minute=t.minute,
    )


def derive_weekly_review(settings: NotificationSettings, now: datetime) -> NotificationSpec | None:
    if not settings.weekly_review_enabled:
        return None
    t = settings.weekly_review_time
    day = int(settings.weekly_review_day) % 7
    return NotificationSpec(
        identifier=WEEKLY_REVIEW_ID,
        kind=NotificationKind.WEEKLY_REVIEW,
        fire_at=next_calendar_occurrence(now, hour=t.hour, minute=t.minute, weekday=day),
        title="Weekly review",
        body="Look back on this week and plan the next one.",
        repeats=True,
        hour=t.hour,
        minute=t.minute,
        weekday=day,
    )


def derive_focus_session(
    duration: timedelta,
    task_title: str,
    settings: NotificationSettings,
    now: datetime,
) -> NotificationSpec | None:
    if not settings.focus_session_enabled:
        return None
    return NotificationSpec(
        identifier=f"focus_session_{uuid.uuid4()}",
        kind=NotificationKind.FOCUS_SESSION,
        fire_at=now + duration,
        title="Focus session complete",
        body=f"Focus time for {task_title} is over.",
    )


# ---- scheduler service ----


SchedulingErrorHandler = Callable[[SchedulingError], None]


class NotificationScheduler:
    """
    Keeps a TriggerRegistry in line with task state.

    schedule_for() is idempotent: it cancels every trigger of the task first,
    then schedules whatever derivation says should exist.
    """

    def __init__(
        self,
        registry: TriggerRegistry,
        clock: Clock,
        settings: NotificationSettings | None = None,
        *,
        on_error: SchedulingErrorHandler | None = None,
    ) -> None:
        self._registry = registry
        self._clock = clock
        self._settings = settings or NotificationSettings()
        self.on_error = on_error

    @property
    def settings(self) -> NotificationSettings:
        return self._settings

    def update_settings(self, settings: NotificationSettings) -> None:
        self._settings = settings
        self.refresh_periodic()

    def _guard(self, action: str, fn: Callable[[], None]) -> bool:
        try:
            fn()
            return True
        except Exception as e:
            err = e if isinstance(e, SchedulingError) else SchedulingError(f"{action} failed: {e}")
            logger.error("Notification %s failed: %s", action, err, exc_info=True)
            if self.on_error is not None:
                try:
                    self.on_error(err)
                except Exception:
                    logger.exception("Scheduling error handler failed")
            return False

    def schedule_for(self, task: Task) -> list[NotificationSpec]:
        """Cancel-then-schedule all triggers for `task`. Returns what was scheduled."""
        specs: list[NotificationSpec] = []
        derived = self._guard(
            f"derive({task.id})",
            lambda: specs.extend(derive_task_notifications(task, self._settings, self._clock.now())),
        )

        if not self._guard(f"cancel_all({task.id})", lambda: self._registry.cancel_all(task.id)):
            # Scheduling on top of triggers we failed to clear could stack duplicates.
            return []
        if not derived:
            # stale triggers are gone; nothing trustworthy to put back
            return []

        scheduled: list[NotificationSpec] = []
        for spec in specs:
            if self._guard(f"schedule({spec.identifier})", lambda s=spec: self._registry.schedule(s)):
                scheduled.append(spec)

        if scheduled:
            logger.debug(
                "Scheduled %d trigger(s) for task %s: %s",
                len(scheduled),
                task.id,
                ", ".join(s.identifier for s in scheduled),
            )
        return scheduled

    def cancel(self, task_id: str) -> None:
        self._guard(f"cancel_all({task_id})", lambda: self._registry.cancel_all(task_id))

    def refresh_periodic(self) -> None:
        """Re-arm (or remove) the daily summary and weekly review triggers."""
        now = self._clock.now()
        for identifier, spec in (
            (DAILY_REVIEW_ID, derive_daily_summary(self._settings, now)),
            (WEEKLY_REVIEW_ID, derive_weekly_review(self._settings, now)),
        ):
            self._guard(f"cancel({identifier})", lambda i=identifier: self._registry.cancel(i))
            if spec is not None:
                self._guard(f"schedule({identifier})", lambda s=spec: self._registry.schedule(s))

    def schedule_focus_session(self, duration: timedelta, task_title: str) -> NotificationSpec | None:
        spec = derive_focus_session(duration, task_title, self._settings, self._clock.now())
        if spec is None:
            return None
        if not self._guard(f"schedule({spec.identifier})", lambda: self._registry.schedule(spec)):
            return None
        return spec
