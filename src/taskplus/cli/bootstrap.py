# src/taskplus/cli/bootstrap.py

"""
CLI bootstrap helpers.

This module is the "composition root":
- loads settings once,
- ensures local (gitignored) directories exist,
- wires clock, trigger registry, scheduler and store into AppState,
- loads the task document at start and writes it back atomically.
"""

from __future__ import annotations

import contextlib
import logging
import os
from pathlib import Path

from ..config import get_settings
from ..core.clock import SystemClock, resolve_timezone
from ..core.state import AppState
from ..notifications.notification_scheduler import NotificationScheduler
from ..notifications.trigger_registry import InMemoryTriggerRegistry
from ..tasks.task_codec import decode_document
from ..tasks.task_models import NotificationSettings, StoreSnapshot, default_categories
from ..tasks.task_store import TaskStore

logger = logging.getLogger(__name__)


def _ensure_local_dirs(settings) -> None:
    settings.data_dir.mkdir(parents=True, exist_ok=True)
    settings.document_path.parent.mkdir(parents=True, exist_ok=True)


def load_document(path: str | Path) -> StoreSnapshot | None:
    """
    Read a previously saved document. Returns None if there is none yet.

    A malformed file raises DocumentImportError instead of starting empty,
    so the next save cannot overwrite the user's data.
    """
    path = Path(path)
    if not path.exists():
        return None
    snapshot, report = decode_document(path.read_bytes())
    logger.info("Loaded %s: %s", path, report.summary())
    return snapshot


def create_initial_state(*, settings=None, clock: SystemClock | None = None) -> AppState:
    """
    Create AppState from the provided settings.

    Keeping settings injectable makes the app easier to test and avoids hidden global config reads.
    If settings is None, falls back to get_settings().
    """
    if settings is None:
        settings = get_settings()

    _ensure_local_dirs(settings)

    if clock is None:
        clock = SystemClock(resolve_timezone(settings.timezone))

    registry = InMemoryTriggerRegistry()
    scheduler = NotificationScheduler(
        registry,
        clock,
        NotificationSettings(reminder_lead_minutes=settings.reminder_lead_minutes),
    )

    snapshot = load_document(settings.document_path)
    store = TaskStore(clock=clock, scheduler=scheduler, snapshot=snapshot)

    if snapshot is None:
        scheduler.refresh_periodic()
        if settings.seed_default_categories:
            for category in default_categories(clock.now()):
                store.add_category(category)
            logger.info("Seeded %d default categories", len(store.categories))

    return AppState(
        settings=settings,
        clock=clock,
        registry=registry,
        scheduler=scheduler,
        store=store,
    )


def save_document(state: AppState) -> bool:
    """Write the store to settings.document_path (tmp file + atomic replace). Returns success."""
    path = Path(state.settings.document_path)
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        with state.lock:
            text = state.store.export_document()
        tmp = path.with_suffix(".tmp")
        tmp.write_text(text, "utf-8")
        os.replace(tmp, path)
        with contextlib.suppress(OSError):
            # Task notes can be personal; keep the file private on disk.
            os.chmod(path, 0o600)
        logger.info("Saved %d task(s) to %s", state.store.count_tasks(), path)
        return True
    except OSError:
        logger.exception("Failed to save tasks to %s", path)
        return False
