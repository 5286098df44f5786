# src/taskplus/notifications/trigger_registry.py

from __future__ import annotations

import logging
import threading
from dataclasses import replace
from datetime import datetime, timedelta

from .notification_scheduler import NotificationSpec, next_calendar_occurrence

logger = logging.getLogger(__name__)


class InMemoryTriggerRegistry:
    """
    Pending-trigger table standing in for an OS notification center.

    Thread-safety:
    - the store schedules from the main thread while the delivery loop drains
      from a background thread, so every method takes the same lock.
    """

    def __init__(self) -> None:
        self._pending: dict[str, NotificationSpec] = {}
        self._lock = threading.Lock()

    def schedule(self, spec: NotificationSpec) -> None:
        with self._lock:
            replaced = spec.identifier in self._pending
            self._pending[spec.identifier] = spec
        logger.debug(
            "Trigger %s %s fire_at=%s",
            spec.identifier,
            "replaced" if replaced else "scheduled",
            spec.fire_at.isoformat(),
        )

    def cancel(self, identifier: str) -> None:
        with self._lock:
            self._pending.pop(identifier, None)

    def cancel_all(self, task_id: str) -> None:
        with self._lock:
            doomed = [k for k, s in self._pending.items() if s.task_id == task_id]
            for k in doomed:
                del self._pending[k]
        if doomed:
            logger.debug("Cancelled %d trigger(s) for task %s", len(doomed), task_id)

    def clear(self) -> None:
        with self._lock:
            self._pending.clear()

    def get(self, identifier: str) -> NotificationSpec | None:
        with self._lock:
            return self._pending.get(identifier)

    def pending(self) -> list[NotificationSpec]:
        """Pending triggers ordered by fire time."""
        with self._lock:
            out = list(self._pending.values())
        out.sort(key=lambda s: (s.fire_at, s.identifier))
        return out

    def identifiers(self) -> set[str]:
        with self._lock:
            return set(self._pending)

    def pop_due(self, now: datetime) -> list[NotificationSpec]:
        """
        Take every trigger with fire_at <= now.

        One-shot triggers are removed; repeating ones are re-armed to their
        next calendar occurrence after `now`.
        """
        due: list[NotificationSpec] = []
        with self._lock:
            for identifier, spec in list(self._pending.items()):
                if spec.fire_at > now:
                    continue
                due.append(spec)
                if spec.repeats and spec.hour is not None and spec.minute is not None:
                    local_now = now.astimezone(spec.fire_at.tzinfo) if spec.fire_at.tzinfo else now
                    self._pending[identifier] = replace(
                        spec,
                        fire_at=next_calendar_occurrence(
                            local_now, hour=spec.hour, minute=spec.minute, weekday=spec.weekday
                        ),
                    )
                else:
                    del self._pending[identifier]
        due.sort(key=lambda s: s.fire_at)
        return due

    def rearm(self, spec: NotificationSpec, delay: timedelta, now: datetime) -> None:
        """Put a trigger back with fire_at = now + delay (retry after a failed delivery)."""
        with self._lock:
            # A newer schedule (or a re-armed repeating trigger) wins over the retry.
            if spec.identifier in self._pending:
                return
            self._pending[spec.identifier] = replace(spec, fire_at=now + delay)
