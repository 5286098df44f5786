# src/taskplus/tasks/task_codec.py

from __future__ import annotations

"""
Export/import document codec.

The single encode/decode boundary between the in-memory model and the portable
JSON document:

    {
      "version": "1.0.0",
      "lastModified": "<ISO-8601>",
      "tasks": [...],
      "categories": [...],
      "settings": {"<key>": "<str>"},
      "metadata": {...}
    }

Decoding is all-or-nothing at the document level (bad JSON / wrong shape ->
DocumentImportError) and permissive at the record level (bad records are
skipped and counted).
"""

import json
import logging
from dataclasses import dataclass, fields, replace
from datetime import datetime, time, timezone
from typing import Any

from ..core.errors import DocumentImportError
from .task_models import (
    Category,
    CategoryColor,
    CategoryIcon,
    FocusSession,
    NotificationSettings,
    RecurrenceRule,
    RecurrenceUnit,
    StoreSnapshot,
    Task,
    TaskContext,
    TaskPriority,
    TaskStatus,
    new_id,
    normalize_tag,
)

logger = logging.getLogger(__name__)

DOCUMENT_VERSION = "1.0.0"
TAG_REGISTRY_KEY = "tagRegistry"

_TOP_LEVEL_KEYS = {"version", "lastModified", "tasks", "categories", "settings", "metadata"}
_TASK_KEYS = {
    "id",
    "title",
    "notes",
    "due",
    "createdAt",
    "updatedAt",
    "status",
    "priority",
    "context",
    "categoryId",
    "tags",
    "sortOrder",
    "notificationEnabled",
    "notificationTime",
    "originalStatus",
    "recurrence",
    "customFields",
}
_CATEGORY_KEYS = {"id", "name", "icon", "color", "createdAt", "updatedAt", "customFields"}


class _RecordError(ValueError):
    """A single record cannot be decoded; the record is skipped."""


@dataclass(slots=True)
class ImportReport:
    tasks_imported: int = 0
    tasks_skipped: int = 0
    categories_imported: int = 0
    categories_skipped: int = 0
    dangling_category_refs: int = 0

    def summary(self) -> str:
        return (
            f"tasks: {self.tasks_imported} imported, {self.tasks_skipped} skipped; "
            f"categories: {self.categories_imported} imported, {self.categories_skipped} skipped"
        )


# ---- scalars ----


def format_datetime(dt: datetime | None) -> str | None:
    return dt.isoformat() if dt is not None else None


def parse_datetime(raw: Any) -> datetime | None:
    """ISO-8601 -> aware datetime. Naive input is taken as UTC."""
    if raw is None or raw == "":
        return None
    if not isinstance(raw, str):
        raise _RecordError(f"expected ISO-8601 string, got {type(raw).__name__}")
    try:
        dt = datetime.fromisoformat(raw)
    except ValueError as e:
        raise _RecordError(f"bad timestamp {raw!r}") from e
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def _enum(enum_cls, raw: Any, what: str):
    try:
        return enum_cls(raw)
    except ValueError as e:
        raise _RecordError(f"unknown {what} {raw!r}") from e


def _int(raw: Any, what: str) -> int:
    # JSON allows Infinity and NaN, which int() rejects with OverflowError / ValueError
    try:
        return int(raw)
    except (TypeError, ValueError, OverflowError) as e:
        raise _RecordError(f"bad {what} {raw!r}") from e


def _opt_int(raw: Any, what: str) -> int | None:
    return None if raw is None else _int(raw, what)


def _opt_str(raw: Any) -> str | None:
    if raw is None:
        return None
    return str(raw)


def _dict(raw: Any) -> dict[str, Any]:
    return dict(raw) if isinstance(raw, dict) else {}


# ---- focus sessions (stored inside customFields) ----


def focus_session_to_dict(s: FocusSession) -> dict[str, Any]:
    return {
        "id": s.id,
        "startTime": format_datetime(s.start_time),
        "endTime": format_datetime(s.end_time),
        "duration": s.duration,
        "focusMode": s.focus_mode,
        "notes": s.notes,
        "interruptions": s.interruptions,
        "energyLevel": s.energy_level,
        "productivity": s.productivity,
    }


def focus_session_from_dict(raw: dict[str, Any]) -> FocusSession:
    start = parse_datetime(raw.get("startTime"))
    if start is None:
        raise _RecordError("focus session without startTime")
    return FocusSession(
        id=str(raw.get("id") or new_id()),
        start_time=start,
        end_time=parse_datetime(raw.get("endTime")),
        duration=_opt_int(raw.get("duration"), "focus duration"),
        focus_mode=str(raw.get("focusMode") or "pomodoro"),
        notes=_opt_str(raw.get("notes")),
        interruptions=_int(raw.get("interruptions") or 0, "interruptions"),
        energy_level=_opt_int(raw.get("energyLevel"), "energy level"),
        productivity=_opt_int(raw.get("productivity"), "productivity"),
    )


# ---- recurrence ----


def recurrence_to_dict(rule: RecurrenceRule | None) -> dict[str, Any] | None:
    if rule is None:
        return None
    return {
        "enabled": rule.enabled,
        "unit": rule.unit.value,
        "interval": rule.interval,
        "endDate": format_datetime(rule.end_date),
    }


def recurrence_from_dict(raw: Any) -> RecurrenceRule | None:
    if raw is None:
        return None
    if not isinstance(raw, dict):
        raise _RecordError("recurrence must be an object")
    interval = _int(raw.get("interval", 1), "recurrence interval")
    if interval < 1:
        raise _RecordError(f"recurrence interval must be >= 1 (got {interval})")
    return RecurrenceRule(
        unit=_enum(RecurrenceUnit, raw.get("unit", "daily"), "recurrence unit"),
        interval=interval,
        enabled=bool(raw.get("enabled", True)),
        end_date=parse_datetime(raw.get("endDate")),
    )


# ---- tasks ----


def task_to_dict(task: Task) -> dict[str, Any]:
    return {
        "id": task.id,
        "title": task.title,
        "notes": task.notes,
        "due": format_datetime(task.due),
        "createdAt": format_datetime(task.created_at),
        "updatedAt": format_datetime(task.updated_at),
        "status": task.status.value,
        "priority": task.priority.value,
        "context": task.context.value,
        "categoryId": task.category_id,
        "tags": list(task.tags),
        "sortOrder": task.sort_order,
        "notificationEnabled": task.notification_enabled,
        "notificationTime": format_datetime(task.notification_time),
        "originalStatus": task.original_status.value if task.original_status else None,
        "recurrence": recurrence_to_dict(task.recurrence),
        "customFields": dict(task.custom_fields),
    }


def task_from_dict(raw: Any) -> Task:
    if not isinstance(raw, dict):
        raise _RecordError("task record must be an object")

    task_id = raw.get("id")
    if not isinstance(task_id, str) or not task_id.strip():
        raise _RecordError("task record without id")

    title = str(raw.get("title") or "").strip()
    if not title:
        raise _RecordError(f"task {task_id} has an empty title")

    raw_tags = raw.get("tags") or []
    if not isinstance(raw_tags, list):
        raise _RecordError(f"task {task_id}: tags must be a list")
    tags: list[str] = []
    for t in raw_tags:
        tag = normalize_tag(str(t))
        if tag and tag not in tags:
            tags.append(tag)

    original = raw.get("originalStatus")

    sort_order = _int(raw.get("sortOrder") or 0, f"task {task_id} sortOrder")

    custom = {k: v for k, v in raw.items() if k not in _TASK_KEYS}
    custom.update(_dict(raw.get("customFields")))

    return Task(
        id=task_id,
        title=title,
        notes=_opt_str(raw.get("notes")),
        due=parse_datetime(raw.get("due")),
        created_at=parse_datetime(raw.get("createdAt")),
        updated_at=parse_datetime(raw.get("updatedAt")),
        status=_enum(TaskStatus, raw.get("status"), "status"),
        priority=_enum(TaskPriority, raw.get("priority", "normal"), "priority"),
        context=_enum(TaskContext, raw.get("context") or "none", "context"),
        category_id=_opt_str(raw.get("categoryId")) or None,
        tags=tuple(tags),
        sort_order=sort_order,
        notification_enabled=bool(raw.get("notificationEnabled", True)),
        notification_time=parse_datetime(raw.get("notificationTime")),
        original_status=_enum(TaskStatus, original, "original status") if original else None,
        recurrence=recurrence_from_dict(raw.get("recurrence")),
        custom_fields=custom,
    )


# ---- categories ----


def category_to_dict(category: Category) -> dict[str, Any]:
    return {
        "id": category.id,
        "name": category.name,
        "icon": category.icon.value,
        "color": category.color.value,
        "createdAt": format_datetime(category.created_at),
        "updatedAt": format_datetime(category.updated_at),
        "customFields": dict(category.custom_fields),
    }


def category_from_dict(raw: Any) -> Category:
    if not isinstance(raw, dict):
        raise _RecordError("category record must be an object")
    cat_id = raw.get("id")
    if not isinstance(cat_id, str) or not cat_id.strip():
        raise _RecordError("category record without id")
    name = str(raw.get("name") or "").strip()
    if not name:
        raise _RecordError(f"category {cat_id} has an empty name")

    custom = {k: v for k, v in raw.items() if k not in _CATEGORY_KEYS}
    custom.update(_dict(raw.get("customFields")))

    return Category(
        id=cat_id,
        name=name,
        icon=_enum(CategoryIcon, raw.get("icon", "folder"), "category icon"),
        color=_enum(CategoryColor, raw.get("color", "blue"), "category color"),
        created_at=parse_datetime(raw.get("createdAt")),
        updated_at=parse_datetime(raw.get("updatedAt")),
        custom_fields=custom,
    )


# ---- notification settings <-> settings map ----

_SETTINGS_PREFIX = "notifications."


def _camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(p.capitalize() for p in rest)


def settings_to_map(settings: NotificationSettings) -> dict[str, str]:
    out: dict[str, str] = {}
    for f in fields(settings):
        val = getattr(settings, f.name)
        if isinstance(val, bool):
            s = "true" if val else "false"
        elif isinstance(val, time):
            s = val.strftime("%H:%M")
        else:
            s = str(val)
        out[_SETTINGS_PREFIX + _camel(f.name)] = s
    return out


def settings_from_map(raw: dict[str, str]) -> NotificationSettings:
    """Lenient: a missing or unparseable key keeps its default."""
    defaults = NotificationSettings()
    values: dict[str, Any] = {}
    for f in fields(defaults):
        key = _SETTINGS_PREFIX + _camel(f.name)
        if key not in raw:
            continue
        text = str(raw[key]).strip()
        default = getattr(defaults, f.name)
        try:
            if isinstance(default, bool):
                values[f.name] = text.lower() in {"1", "true", "yes", "on"}
            elif isinstance(default, time):
                values[f.name] = time.fromisoformat(text)
            elif isinstance(default, int):
                values[f.name] = int(text)
        except ValueError:
            logger.warning("Ignoring bad setting %s=%r", key, text)
    return replace(defaults, **values)


# ---- documents ----


def snapshot_to_document(snapshot: StoreSnapshot, now: datetime) -> dict[str, Any]:
    settings = dict(snapshot.settings)
    settings.update(settings_to_map(snapshot.notification_settings))
    metadata = dict(snapshot.metadata)
    metadata[TAG_REGISTRY_KEY] = sorted(snapshot.tags)
    return {
        "version": DOCUMENT_VERSION,
        "lastModified": format_datetime(now),
        "tasks": [task_to_dict(t) for t in snapshot.tasks],
        "categories": [category_to_dict(c) for c in snapshot.categories],
        "settings": settings,
        "metadata": metadata,
    }


def encode_document(snapshot: StoreSnapshot, now: datetime) -> str:
    return json.dumps(snapshot_to_document(snapshot, now), ensure_ascii=False, indent=2)


def decode_document(text: str | bytes) -> tuple[StoreSnapshot, ImportReport]:
    """
    Parse a document into a snapshot.

    Raises DocumentImportError when the document as a whole is unusable.
    """
    try:
        data = json.loads(text)
    except (TypeError, ValueError) as e:
        raise DocumentImportError(f"Malformed document: {e}") from e
    return document_to_snapshot(data)


def document_to_snapshot(data: Any) -> tuple[StoreSnapshot, ImportReport]:
    if not isinstance(data, dict):
        raise DocumentImportError("Malformed document: root must be an object.")

    raw_tasks = data.get("tasks", [])
    raw_categories = data.get("categories", [])
    raw_settings = data.get("settings", {})
    raw_metadata = data.get("metadata", {})
    if not isinstance(raw_tasks, list):
        raise DocumentImportError("Malformed document: 'tasks' must be a list.")
    if not isinstance(raw_categories, list):
        raise DocumentImportError("Malformed document: 'categories' must be a list.")
    if not isinstance(raw_settings, dict):
        raise DocumentImportError("Malformed document: 'settings' must be an object.")
    if not isinstance(raw_metadata, dict):
        raise DocumentImportError("Malformed document: 'metadata' must be an object.")

    report = ImportReport()

    categories: list[Category] = []
    seen_categories: set[str] = set()
    for raw in raw_categories:
        try:
            category = category_from_dict(raw)
        except _RecordError as e:
            report.categories_skipped += 1
            logger.warning("Skipping category record: %s", e)
            continue
        if category.id in seen_categories:
            report.categories_skipped += 1
            logger.warning("Skipping duplicate category id=%s", category.id)
            continue
        seen_categories.add(category.id)
        categories.append(category)
    report.categories_imported = len(categories)

    tasks: list[Task] = []
    seen_tasks: set[str] = set()
    for raw in raw_tasks:
        try:
            task = task_from_dict(raw)
        except _RecordError as e:
            report.tasks_skipped += 1
            logger.warning("Skipping task record: %s", e)
            continue
        if task.id in seen_tasks:
            report.tasks_skipped += 1
            logger.warning("Skipping duplicate task id=%s", task.id)
            continue
        if task.category_id is not None and task.category_id not in seen_categories:
            # Weak reference to a category that did not survive: clear it.
            report.dangling_category_refs += 1
            task = replace(task, category_id=None)
        seen_tasks.add(task.id)
        tasks.append(task)
    report.tasks_imported = len(tasks)

    metadata = dict(raw_metadata)
    raw_registry = metadata.pop(TAG_REGISTRY_KEY, [])
    tags: list[str] = []
    for t in list(raw_registry if isinstance(raw_registry, list) else []) + [
        tag for task in tasks for tag in task.tags
    ]:
        tag = normalize_tag(str(t))
        if tag and tag not in tags:
            tags.append(tag)

    for key, value in data.items():
        if key not in _TOP_LEVEL_KEYS and key not in metadata:
            metadata[key] = value

    settings_map = {str(k): str(v) for k, v in raw_settings.items()}
    notification_settings = settings_from_map(settings_map)
    plain_settings = {k: v for k, v in settings_map.items() if not k.startswith(_SETTINGS_PREFIX)}

    snapshot = StoreSnapshot(
        tasks=tuple(tasks),
        categories=tuple(categories),
        tags=tuple(sorted(tags)),
        notification_settings=notification_settings,
        settings=plain_settings,
        metadata=metadata,
    )
    logger.info("Decoded document version=%s (%s)", data.get("version"), report.summary())
    return snapshot, report
