# tests/conftest.py

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path
from types import SimpleNamespace

import pytest

from taskplus.core.state import AppState
from taskplus.notifications.notification_scheduler import NotificationScheduler
from taskplus.notifications.trigger_registry import InMemoryTriggerRegistry
from taskplus.tasks.task_store import TaskStore

from .fakes import FakeClock

# A Tuesday, so weekly-review math has something to chew on.
NOW = datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc)


@pytest.fixture()
def settings(tmp_path: Path) -> SimpleNamespace:
    """
    Minimal settings object compatible with AppState and the CLI.

    We intentionally use a SimpleNamespace rather than importing real config,
    to keep unit tests isolated and deterministic.
    """
    return SimpleNamespace(
        app_name="taskplus-test",
        log_level="DEBUG",
        data_dir=tmp_path,
        document_path=tmp_path / "taskplus.json",
        timezone="UTC",
        reminder_lead_minutes=30,
        seed_default_categories=False,
        delivery_interval_seconds=0.01,
        delivery_retry_seconds=0.01,
    )


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock(NOW)


@pytest.fixture()
def registry() -> InMemoryTriggerRegistry:
    return InMemoryTriggerRegistry()


@pytest.fixture()
def scheduler(registry: InMemoryTriggerRegistry, clock: FakeClock) -> NotificationScheduler:
    return NotificationScheduler(registry, clock)


@pytest.fixture()
def store(clock: FakeClock, scheduler: NotificationScheduler) -> TaskStore:
    return TaskStore(clock=clock, scheduler=scheduler)


@pytest.fixture()
def state(
    settings: SimpleNamespace,
    clock: FakeClock,
    registry: InMemoryTriggerRegistry,
    scheduler: NotificationScheduler,
    store: TaskStore,
) -> AppState:
    """AppState wired with a fake clock and the real in-memory registry."""
    return AppState(
        settings=settings,
        clock=clock,
        registry=registry,
        scheduler=scheduler,
        store=store,
    )
