# src/taskplus/core/state.py

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import Any

from ..notifications.notification_scheduler import NotificationScheduler
from ..notifications.trigger_registry import InMemoryTriggerRegistry
from ..tasks.task_store import TaskStore
from .clock import SystemClock


@dataclass
class AppState:
    # Store Settings on the state for easy access in other modules later.
    settings: Any

    clock: SystemClock
    registry: InMemoryTriggerRegistry
    scheduler: NotificationScheduler
    store: TaskStore

    # Serializes store access between the console and anything else holding the state.
    lock: threading.RLock = field(default_factory=threading.RLock)
