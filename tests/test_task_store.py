# tests/test_task_store.py

from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timedelta

import pytest

from taskplus.core.errors import NotFoundError, TransitionError, ValidationError
from taskplus.notifications.notification_scheduler import NotificationScheduler
from taskplus.tasks.task_models import (
    Category,
    FocusSession,
    NotificationSettings,
    RecurrenceRule,
    Task,
    TaskPriority,
    TaskStatus,
)
from taskplus.tasks.task_store import StoreEventKind, TaskStore

from .conftest import NOW
from .fakes import FailingTriggerRegistry, RecordingTriggerRegistry


def _bucket_ids(store: TaskStore) -> list[set[str]]:
    return [{t.id for t in b} for b in (store.inbox_tasks, store.today_tasks, store.done_tasks)]


def _assert_exclusive(store: TaskStore) -> None:
    buckets = _bucket_ids(store)
    for task in store.all_tasks():
        assert sum(task.id in b for b in buckets) == 1


# ---- add ----


def test_add_task_without_dates_lands_in_inbox_unscheduled(store, registry) -> None:
    task = store.add(Task(title="Buy milk"))

    assert task.status == TaskStatus.INBOX
    assert task.sort_order == 0
    assert store.inbox_tasks == [task]
    assert registry.pending() == []


def test_add_task_with_due_schedules_reminder_lead_before(store, registry) -> None:
    due = (NOW + timedelta(days=1)).replace(hour=9, minute=0)
    task = store.add(Task(title="Pay rent", due=due, notification_enabled=True))

    pending = registry.pending()
    assert [s.identifier for s in pending] == [f"task_{task.id}"]
    assert pending[0].fire_at == due - timedelta(minutes=30)
    assert pending[0].body == "Pay rent"


def test_add_assigns_sort_order_and_timestamps(store) -> None:
    a = store.add(Task(title="a"))
    b = store.add(Task(title="  b  "))

    assert (a.sort_order, b.sort_order) == (0, 1)
    assert b.title == "b"
    assert a.created_at == NOW and a.updated_at == NOW


def test_add_normalizes_and_registers_tags(store) -> None:
    task = store.add(Task(title="x", tags=("work", "#work", " home ")))

    assert task.tags == ("#work", "#home")
    assert set(store.tags) == {"#work", "#home"}


@pytest.mark.parametrize("title", ["", "   ", "\n\t"])
def test_add_rejects_empty_title_without_mutation(store, registry, title) -> None:
    with pytest.raises(ValidationError):
        store.add(Task(title=title, due=NOW + timedelta(days=1)))

    assert store.count_tasks() == 0
    assert registry.pending() == []


def test_add_rejects_bad_recurrence_and_unknown_category(store) -> None:
    with pytest.raises(ValidationError):
        store.add(Task(title="x", recurrence=RecurrenceRule(interval=0)))
    with pytest.raises(NotFoundError):
        store.add(Task(title="x", category_id="missing"))
    assert store.count_tasks() == 0


@pytest.mark.parametrize("field", ["due", "notification_time"])
def test_add_rejects_naive_datetimes_without_mutation(store, registry, field) -> None:
    events = []
    store.subscribe(events.append)

    with pytest.raises(ValidationError):
        store.add(Task(title="Pay rent", **{field: datetime(2026, 3, 11, 9, 0)}))

    assert store.count_tasks() == 0
    assert registry.pending() == []
    assert events == []


def test_naive_recurrence_end_and_naive_update_are_rejected(store) -> None:
    with pytest.raises(ValidationError):
        store.add(Task(title="x", recurrence=RecurrenceRule(end_date=datetime(2026, 4, 1))))

    task = store.add(Task(title="x", due=NOW + timedelta(days=1)))
    with pytest.raises(ValidationError):
        store.update(replace(task, due=datetime(2026, 3, 12, 9, 0)))

    assert store.get(task.id).due == NOW + timedelta(days=1)


def test_add_rejects_duplicate_id(store) -> None:
    task = store.add(Task(title="x"))
    with pytest.raises(ValidationError):
        store.add(Task(title="y", id=task.id))


# ---- transitions ----


def test_move_complete_restore_keep_bucket_exclusivity(store) -> None:
    a = store.add(Task(title="a"))
    b = store.add(Task(title="b"))
    _assert_exclusive(store)

    store.move_to_today(a.id)
    _assert_exclusive(store)
    store.complete(a.id)
    store.complete(b.id)
    _assert_exclusive(store)
    store.restore(a.id)
    _assert_exclusive(store)

    assert [t.id for t in store.today_tasks] == [a.id]
    assert [t.id for t in store.done_tasks] == [b.id]


def test_restore_returns_to_bucket_completed_from(store) -> None:
    from_inbox = store.add(Task(title="inbox one"))
    from_today = store.add(Task(title="today one"))
    store.move_to_today(from_today.id)

    store.complete(from_inbox.id)
    done = store.complete(from_today.id)
    assert done.original_status == TaskStatus.TODAY

    assert store.restore(from_inbox.id).status == TaskStatus.INBOX
    restored = store.restore(from_today.id)
    assert restored.status == TaskStatus.TODAY
    assert restored.original_status is None


def test_restore_defaults_to_inbox_when_origin_unknown(clock, scheduler) -> None:
    from taskplus.tasks.task_models import StoreSnapshot

    orphan = Task(title="old", status=TaskStatus.DONE, original_status=None)
    store = TaskStore(clock=clock, scheduler=scheduler, snapshot=StoreSnapshot(tasks=(orphan,)))

    assert store.restore(orphan.id).status == TaskStatus.INBOX


def test_complete_then_restore_is_inverse(store) -> None:
    original = store.add(
        Task(
            title="Write report",
            notes="draft first",
            priority=TaskPriority.HIGH,
            due=NOW + timedelta(days=2),
            tags=("#work",),
        )
    )
    store.complete(original.id)
    back = store.restore(original.id)

    assert back.id == original.id
    assert back.status == TaskStatus.INBOX
    assert (back.title, back.notes, back.priority, back.due, back.tags) == (
        original.title,
        original.notes,
        original.priority,
        original.due,
        original.tags,
    )


def test_transitions_append_to_end_of_target_bucket(store) -> None:
    a = store.add(Task(title="a"))
    b = store.add(Task(title="b"))
    c = store.add(Task(title="c"))
    store.move_to_today(b.id)
    store.move_to_today(a.id)
    store.restore(store.complete(c.id).id)

    assert [t.title for t in store.today_tasks] == ["b", "a"]
    assert store.inbox_tasks[-1].id == c.id


@pytest.mark.parametrize(
    ("setup", "op"),
    [
        ("today", "move_to_today"),
        ("done", "move_to_today"),
        ("done", "complete"),
        ("inbox", "restore"),
        ("today", "restore"),
        ("inbox", "send_to_inbox"),
        ("inbox", "snooze_one_day"),
        ("done", "snooze_one_day"),
    ],
)
def test_invalid_transitions_raise_and_change_nothing(store, setup, op) -> None:
    task = store.add(Task(title="t"))
    if setup in ("today", "done"):
        store.move_to_today(task.id)
    if setup == "done":
        store.complete(task.id)
    before = store.get(task.id)

    with pytest.raises(TransitionError):
        getattr(store, op)(task.id)

    assert store.get(task.id) == before


def test_unknown_id_raises_not_found(store) -> None:
    for op in ("move_to_today", "complete", "restore", "delete", "send_to_inbox", "snooze_one_day"):
        with pytest.raises(NotFoundError):
            getattr(store, op)("nope")


def test_send_to_inbox_moves_today_task_back(store) -> None:
    task = store.add(Task(title="t"))
    store.move_to_today(task.id)

    moved = store.send_to_inbox(task.id)

    assert moved.status == TaskStatus.INBOX
    assert store.today_tasks == []


def test_snooze_pushes_due_one_day_from_now(store, registry) -> None:
    task = store.add(Task(title="t", due=NOW + timedelta(hours=1)))
    store.move_to_today(task.id)

    snoozed = store.snooze_one_day(task.id)

    assert snoozed.due == NOW + timedelta(days=1)
    assert registry.get(f"task_{task.id}").fire_at == NOW + timedelta(days=1) - timedelta(minutes=30)


# ---- update ----


def test_update_keeps_bucket_position_and_creation(store, clock) -> None:
    a = store.add(Task(title="a"))
    store.add(Task(title="b"))
    clock.advance(timedelta(minutes=5))

    edited = store.update(replace(a, title="a2", sort_order=99, created_at=None))

    assert edited.title == "a2"
    assert edited.sort_order == 0
    assert edited.created_at == NOW
    assert edited.updated_at == NOW + timedelta(minutes=5)
    assert store.inbox_tasks[0].title == "a2"


def test_update_rejects_status_change(store) -> None:
    task = store.add(Task(title="t"))
    with pytest.raises(TransitionError):
        store.update(replace(task, status=TaskStatus.DONE))
    assert store.get(task.id).status == TaskStatus.INBOX


def test_update_rejects_empty_title_and_unknown_id(store) -> None:
    task = store.add(Task(title="t"))
    with pytest.raises(ValidationError):
        store.update(replace(task, title=" "))
    with pytest.raises(NotFoundError):
        store.update(Task(title="ghost"))
    assert store.get(task.id).title == "t"


def test_update_reschedules_cancel_first_without_stacking(clock) -> None:
    recording = RecordingTriggerRegistry()
    store = TaskStore(clock=clock, scheduler=NotificationScheduler(recording, clock))
    task = store.add(Task(title="t", due=NOW + timedelta(days=1)))
    recording.calls.clear()

    store.update(replace(task, due=NOW + timedelta(days=2)))

    assert recording.calls[0] == ("cancel_all", task.id)
    assert list(recording.pending) == [f"task_{task.id}"]
    assert recording.pending[f"task_{task.id}"].fire_at == NOW + timedelta(days=2, minutes=-30)


def test_update_of_unrelated_fields_does_not_touch_triggers(clock) -> None:
    recording = RecordingTriggerRegistry()
    store = TaskStore(clock=clock, scheduler=NotificationScheduler(recording, clock))
    task = store.add(Task(title="t", due=NOW + timedelta(days=1)))
    recording.calls.clear()

    store.update(replace(task, notes="more detail", priority=TaskPriority.HIGH))

    assert recording.calls == []


def test_disabling_notifications_cancels_triggers(store, registry) -> None:
    task = store.add(Task(title="t", due=NOW + timedelta(days=1), notification_time=NOW + timedelta(hours=3)))
    assert len(registry.pending()) == 2

    store.update(replace(task, notification_enabled=False))

    assert registry.pending() == []


# ---- notifications around lifecycle ----


def test_complete_cancels_and_restore_reschedules(store, registry) -> None:
    task = store.add(Task(title="t", due=NOW + timedelta(days=1)))

    store.complete(task.id)
    assert registry.pending() == []

    store.restore(task.id)
    assert registry.identifiers() == {f"task_{task.id}"}


def test_delete_removes_done_task_and_cancels(store, registry) -> None:
    task = store.add(Task(title="t", notification_time=NOW + timedelta(hours=2)))
    other = store.add(Task(title="o", due=NOW + timedelta(days=1)))

    removed = store.delete(task.id)

    assert removed.id == task.id
    assert store.find(task.id) is None
    assert registry.identifiers() == {f"task_{other.id}"}

    store.complete(other.id)
    store.delete(other.id)
    assert store.count_tasks() == 0


def test_scheduling_failure_does_not_fail_mutation(clock) -> None:
    store = TaskStore(clock=clock, scheduler=NotificationScheduler(FailingTriggerRegistry(), clock))
    events = []
    store.subscribe(events.append)

    task = store.add(Task(title="t", due=NOW + timedelta(days=1)))
    store.complete(task.id)

    assert store.get(task.id).status == TaskStatus.DONE
    kinds = [e.kind for e in events]
    assert StoreEventKind.SCHEDULING_FAILED in kinds
    assert StoreEventKind.TASK_ADDED in kinds
    assert StoreEventKind.TASK_COMPLETED in kinds


def test_store_without_scheduler_still_works(clock) -> None:
    store = TaskStore(clock=clock)
    task = store.add(Task(title="t", due=NOW + timedelta(days=1)))
    store.complete(task.id)
    assert store.done_tasks[0].id == task.id


# ---- reorder ----


def test_reorder_moves_last_to_front(store) -> None:
    a = store.add(Task(title="A"))
    b = store.add(Task(title="B"))
    c = store.add(Task(title="C"))

    store.reorder(TaskStatus.INBOX, [2], 0)

    orders = {t.id: t.sort_order for t in store.inbox_tasks}
    assert orders == {c.id: 0, a.id: 1, b.id: 2}


def test_reorder_multiple_indices_list_move_semantics(store) -> None:
    for title in "ABCDE":
        store.add(Task(title=title))

    result = store.reorder(TaskStatus.INBOX, [0, 2], 4)

    assert [t.title for t in result] == ["B", "D", "A", "C", "E"]
    assert [t.sort_order for t in store.inbox_tasks] == [0, 1, 2, 3, 4]


def test_reorder_does_not_touch_other_buckets(store) -> None:
    t1 = store.add(Task(title="t1"))
    t2 = store.add(Task(title="t2"))
    store.move_to_today(t1.id)
    store.move_to_today(t2.id)
    i1 = store.add(Task(title="i1"))
    store.add(Task(title="i2"))
    today_before = store.today_tasks

    store.reorder(TaskStatus.INBOX, [1], 0)

    assert store.today_tasks == today_before
    assert store.inbox_tasks[1].id == i1.id


@pytest.mark.parametrize(("src", "dst"), [([3], 0), ([-1], 0), ([0], 4), ([], 0)])
def test_reorder_rejects_out_of_range(store, src, dst) -> None:
    for title in "ABC":
        store.add(Task(title=title))
    before = store.inbox_tasks

    with pytest.raises(ValidationError):
        store.reorder(TaskStatus.INBOX, src, dst)

    assert store.inbox_tasks == before


# ---- categories ----


def test_delete_category_nulls_references_everywhere(store) -> None:
    cat = store.add_category(Category(name="Work"))
    a = store.add(Task(title="a", category_id=cat.id))
    b = store.add(Task(title="b", category_id=cat.id))
    c = store.add(Task(title="c", category_id=cat.id))
    store.move_to_today(b.id)
    store.complete(c.id)

    touched = store.delete_category(cat.id)

    assert touched == 3
    assert store.categories == []
    assert store.count_tasks() == 3
    assert all(store.get(t.id).category_id is None for t in (a, b, c))


def test_category_validation_and_update(store, clock) -> None:
    with pytest.raises(ValidationError):
        store.add_category(Category(name="  "))
    with pytest.raises(NotFoundError):
        store.delete_category("missing")

    cat = store.add_category(Category(name="Home"))
    clock.advance(timedelta(minutes=1))
    renamed = store.update_category(replace(cat, name="House"))

    assert renamed.name == "House"
    assert renamed.created_at == cat.created_at
    assert renamed.updated_at == NOW + timedelta(minutes=1)


# ---- tags ----


def test_rename_tag_rewrites_every_task(store) -> None:
    a = store.add(Task(title="a", tags=("#work",)))
    b = store.add(Task(title="b", tags=("#home", "#work")))
    store.complete(b.id)

    store.update_tag("#work", "#job")

    assert store.get(a.id).tags == ("#job",)
    assert store.get(b.id).tags == ("#home", "#job")
    assert all("#work" not in t.tags for t in store.all_tasks())
    assert "#work" not in store.tags and "#job" in store.tags


def test_rename_tag_onto_existing_merges(store) -> None:
    task = store.add(Task(title="a", tags=("#a", "#b")))

    store.update_tag("a", "b")

    assert store.get(task.id).tags == ("#b",)
    assert store.tags.count("#b") == 1


def test_remove_tag_filters_everywhere(store) -> None:
    a = store.add(Task(title="a", tags=("#x", "#y")))
    b = store.add(Task(title="b", tags=("#x",)))

    assert store.remove_tag("#x") == 2

    assert store.get(a.id).tags == ("#y",)
    assert store.get(b.id).tags == ()
    assert "#x" not in store.tags


def test_tag_errors(store) -> None:
    with pytest.raises(ValidationError):
        store.add_tag("   ")
    with pytest.raises(NotFoundError):
        store.remove_tag("#ghost")
    with pytest.raises(NotFoundError):
        store.update_tag("#ghost", "#x")
    store.add_tag("real")
    with pytest.raises(ValidationError):
        store.update_tag("#real", "")


# ---- events ----


def test_subscribe_receives_events_and_can_unsubscribe(store) -> None:
    events = []
    unsubscribe = store.subscribe(events.append)

    task = store.add(Task(title="t"))
    store.move_to_today(task.id)
    unsubscribe()
    store.complete(task.id)

    assert [e.kind for e in events] == [StoreEventKind.TASK_ADDED, StoreEventKind.TASK_MOVED]
    assert events[1].status == TaskStatus.TODAY


def test_listener_failure_is_not_propagated(store) -> None:
    def boom(event) -> None:
        raise RuntimeError("ui went away")

    store.subscribe(boom)
    task = store.add(Task(title="t"))

    assert store.get(task.id).title == "t"


# ---- focus sessions / progress / settings ----


def test_focus_sessions_and_analytics(store) -> None:
    task = store.add(Task(title="deep work", custom_fields={"estimatedTime": 60}))
    store.add_focus_session(task.id, FocusSession(start_time=NOW, duration=25, productivity=8, interruptions=1))
    store.add_focus_session(task.id, FocusSession(start_time=NOW, duration=15, productivity=6, interruptions=2))

    stats = store.task_analytics(task.id)

    assert stats == {
        "totalFocusTime": 40,
        "averageProductivity": 7,
        "totalInterruptions": 3,
        "focusSessionsCount": 2,
        "estimatedTime": 60,
        "actualTime": 0,
    }
    assert len(store.focus_sessions(task.id)) == 2


def test_malformed_focus_data_is_ignored(store) -> None:
    sessions = [
        {"startTime": NOW.isoformat(), "interruptions": float("inf")},
        {"startTime": NOW.isoformat(), "duration": 20},
    ]
    task = store.add(Task(title="t", custom_fields={"focusSessions": sessions, "estimatedTime": float("nan")}))

    stats = store.task_analytics(task.id)

    assert stats["focusSessionsCount"] == 1
    assert stats["totalFocusTime"] == 20
    assert stats["estimatedTime"] == 0


def test_focus_session_rejected_on_done_task(store) -> None:
    task = store.add(Task(title="t"))
    store.complete(task.id)
    with pytest.raises(TransitionError):
        store.add_focus_session(task.id, FocusSession(start_time=NOW))


def test_today_progress(store) -> None:
    assert store.today_progress() == 0.0
    a = store.add(Task(title="a"))
    b = store.add(Task(title="b"))
    store.move_to_today(a.id)
    store.move_to_today(b.id)
    store.complete(a.id)

    assert store.today_progress() == 0.5


def test_update_notification_settings_rederives(store, registry) -> None:
    task = store.add(Task(title="t", due=NOW + timedelta(days=1)))

    store.update_notification_settings(NotificationSettings(reminder_lead_minutes=60))

    assert registry.get(f"task_{task.id}").fire_at == NOW + timedelta(days=1, minutes=-60)
    assert registry.get("daily_review") is not None
    assert registry.get("weekly_review") is not None

    with pytest.raises(ValidationError):
        store.update_notification_settings(NotificationSettings(reminder_lead_minutes=-1))
    assert store.notification_settings.reminder_lead_minutes == 60


# ---- documents ----


def test_export_import_round_trip(store, clock, scheduler) -> None:
    cat = store.add_category(Category(name="Work"))
    a = store.add(Task(title="a", category_id=cat.id, tags=("#x",), due=NOW + timedelta(days=1)))
    b = store.add(
        Task(
            title="b",
            recurrence=RecurrenceRule(interval=2),
            custom_fields={"estimatedTime": 30, "nested": {"k": [1, 2]}},
        )
    )
    store.move_to_today(a.id)
    store.complete(b.id)
    store.add_tag("#lonely")

    other = TaskStore(clock=clock, scheduler=scheduler)
    report = other.import_document(store.export_document())

    assert report.tasks_imported == 2 and report.tasks_skipped == 0
    assert {t.id: t for t in other.all_tasks()} == {t.id: t for t in store.all_tasks()}
    assert other.categories == store.categories
    assert set(other.tags) == set(store.tags)


def test_import_malformed_leaves_store_untouched(store) -> None:
    from taskplus.core.errors import DocumentImportError

    task = store.add(Task(title="keep me"))
    with pytest.raises(DocumentImportError):
        store.import_document("{not json")

    assert store.get(task.id).title == "keep me"


def test_import_replaces_everything_and_rederives(store, registry, clock, scheduler) -> None:
    store.add(Task(title="old", due=NOW + timedelta(days=1)))

    source = TaskStore(clock=clock)
    fresh = source.add(Task(title="new", notification_time=NOW + timedelta(hours=1)))

    store.import_document(source.export_document())

    assert [t.title for t in store.all_tasks()] == ["new"]
    task_ids = {s.identifier for s in registry.pending() if s.task_id is not None}
    assert task_ids == {f"custom_task_{fresh.id}"}
