# tests/test_delivery_loop.py

from __future__ import annotations

import asyncio
from datetime import timedelta

import pytest

from taskplus.connectors.console_connector import ConsoleSink
from taskplus.notifications.delivery_loop import deliver_due, run_delivery_loop
from taskplus.notifications.notification_scheduler import NotificationScheduler
from taskplus.notifications.trigger_registry import InMemoryTriggerRegistry
from taskplus.tasks.task_models import Task

from .conftest import NOW
from .fakes import RecordingSink


def _registry_with_reminder(clock) -> InMemoryTriggerRegistry:
    registry = InMemoryTriggerRegistry()
    NotificationScheduler(registry, clock).schedule_for(
        Task(title="ping", id="t1", notification_time=NOW + timedelta(minutes=5))
    )
    return registry


@pytest.mark.asyncio
async def test_deliver_due_only_delivers_when_due(clock) -> None:
    registry = _registry_with_reminder(clock)
    sink = RecordingSink()

    assert await deliver_due(registry, sink, clock) == 0
    assert sink.delivered == []

    clock.advance(timedelta(minutes=5))
    assert await deliver_due(registry, sink, clock) == 1
    assert [s.identifier for s in sink.delivered] == ["custom_task_t1"]
    assert registry.pending() == []


@pytest.mark.asyncio
async def test_failed_delivery_is_rearmed(clock) -> None:
    registry = _registry_with_reminder(clock)
    sink = RecordingSink(fail_times=1)
    clock.advance(timedelta(minutes=10))

    assert await deliver_due(registry, sink, clock, retry_delay_seconds=30) == 0
    retry = registry.get("custom_task_t1")
    assert retry is not None
    assert retry.fire_at == clock.now() + timedelta(seconds=30)

    clock.advance(timedelta(seconds=30))
    assert await deliver_due(registry, sink, clock, retry_delay_seconds=30) == 1
    assert len(sink.delivered) == 1


@pytest.mark.asyncio
async def test_loop_dispatches_due_trigger_once(clock) -> None:
    registry = _registry_with_reminder(clock)
    clock.advance(timedelta(minutes=5))
    sink = RecordingSink()

    runner = asyncio.create_task(
        run_delivery_loop(registry, sink, clock, interval_seconds=0.01, retry_delay_seconds=0.01)
    )

    await asyncio.sleep(0.05)
    runner.cancel()
    with pytest.raises(asyncio.CancelledError):
        await runner

    assert [s.identifier for s in sink.delivered] == ["custom_task_t1"]


@pytest.mark.asyncio
async def test_console_sink_prints_action_category(clock, capsys) -> None:
    registry = _registry_with_reminder(clock)
    clock.advance(timedelta(minutes=5))

    await deliver_due(registry, ConsoleSink(), clock)

    out = capsys.readouterr().out
    assert "[TASK_REMINDER] Task reminder: ping" in out
