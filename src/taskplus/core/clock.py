# src/taskplus/core/clock.py

from __future__ import annotations

import logging
from datetime import datetime, timezone, tzinfo
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

logger = logging.getLogger(__name__)


def resolve_timezone(name: str | None) -> tzinfo:
    """
    Resolve an IANA timezone name.

    Empty name -> the machine's local timezone. Unknown name -> UTC (logged).
    """
    if not name or not name.strip():
        local = datetime.now().astimezone().tzinfo
        return local if local is not None else timezone.utc
    try:
        return ZoneInfo(name.strip())
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning("Unknown timezone %r; falling back to UTC", name)
        return timezone.utc


class SystemClock:
    """Wall clock in a fixed user timezone."""

    def __init__(self, tz: tzinfo | None = None) -> None:
        self._tz = tz if tz is not None else resolve_timezone(None)

    @property
    def tz(self) -> tzinfo:
        return self._tz

    def now(self) -> datetime:
        return datetime.now(self._tz)
