# src/taskplus/core/ports.py

from __future__ import annotations

"""
Ports (interfaces) used by the core.

The store and the scheduler depend on Protocols instead of concrete
implementations, so the OS notification center, the clock and the delivery
channel stay swappable and tests can inject fakes.
"""

from collections.abc import Awaitable
from datetime import datetime
from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from ..notifications.notification_scheduler import NotificationSpec


class Clock(Protocol):
    """Source of "now" as a timezone-aware datetime."""

    def now(self) -> datetime: ...


class TriggerRegistry(Protocol):
    """
    Notification boundary: where pending triggers live.

    Scheduling a descriptor whose identifier already exists replaces it.
    cancel_all() removes every descriptor derived from the given task id,
    regardless of kind.
    """

    def schedule(self, spec: NotificationSpec) -> None: ...
    def cancel(self, identifier: str) -> None: ...
    def cancel_all(self, task_id: str) -> None: ...


class NotificationSink(Protocol):
    """
    Delivery-side port: how a fired trigger reaches the user.

    The sink decides formatting and transport (console line, desktop popup, ...).
    """

    def deliver(self, spec: NotificationSpec) -> Awaitable[None]: ...
