# src/taskplus/notifications/delivery_loop.py

from __future__ import annotations

"""
Trigger delivery loop.

A small polling loop that:
- takes due triggers from the registry,
- hands them to an injected NotificationSink,
- re-arms a trigger after a delay when delivery fails.

How a notification looks and where it goes belongs to the sink, not the loop.
"""

import asyncio
import logging
from datetime import timedelta

from ..core.ports import Clock, NotificationSink
from .trigger_registry import InMemoryTriggerRegistry

logger = logging.getLogger(__name__)


async def deliver_due(
    registry: InMemoryTriggerRegistry,
    sink: NotificationSink,
    clock: Clock,
    *,
    retry_delay_seconds: float = 60.0,
) -> int:
    """Deliver every trigger due at clock.now(). Returns the number delivered."""
    now = clock.now()
    try:
        due = registry.pop_due(now)
    except Exception:
        logger.exception("pop_due failed")
        return 0

    delivered = 0
    for spec in due:
        try:
            await sink.deliver(spec)
            delivered += 1
            logger.info("Delivered %s (%s)", spec.identifier, spec.kind.value)
        except Exception:
            logger.exception("Delivery failed identifier=%s; retrying later", spec.identifier)
            try:
                registry.rearm(spec, timedelta(seconds=max(1.0, float(retry_delay_seconds))), now)
            except Exception:
                logger.exception("rearm failed identifier=%s", spec.identifier)
    return delivered


async def run_delivery_loop(
    registry: InMemoryTriggerRegistry,
    sink: NotificationSink,
    clock: Clock,
    *,
    interval_seconds: float = 15.0,
    retry_delay_seconds: float = 60.0,
) -> None:
    """
    Every interval_seconds: deliver due triggers.

    To stop the loop, cancel the coroutine/task.
    """
    sleep_s = max(0.01, float(interval_seconds))

    while True:
        await deliver_due(registry, sink, clock, retry_delay_seconds=retry_delay_seconds)
        await asyncio.sleep(sleep_s)
