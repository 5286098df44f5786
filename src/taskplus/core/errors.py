# src/taskplus/core/errors.py

from __future__ import annotations

"""
Error taxonomy for the task store.

Every error carries a message that can be shown to the user as-is.
Store operations raise these before touching any state, so a caught error
always means "nothing changed".
"""


class TaskPlusError(Exception):
    """Base class for all recoverable taskplus errors."""


class ValidationError(TaskPlusError):
    """Structurally invalid input (empty title, bad recurrence interval, ...)."""


class NotFoundError(TaskPlusError):
    """A task / category / tag id that is not present in the store."""


class TransitionError(TaskPlusError):
    """A status transition requested from a state that does not allow it."""


class SchedulingError(TaskPlusError):
    """
    The notification subsystem failed.

    Never propagated out of a store operation: the scheduler logs it and the
    task mutation that triggered it stays committed.
    """


class DocumentImportError(TaskPlusError):
    """The import document is malformed as a whole (bad JSON, wrong shape)."""
