# src/taskplus/cli/commands.py

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path

from ..core.errors import TaskPlusError
from ..core.state import AppState
from ..tasks.recurrence import expand_completed
from ..tasks.task_api import find_category, quick_add, resolve_task
from ..tasks.task_models import Category, CategoryColor, CategoryIcon, Task, TaskContext, TaskStatus, normalize_tag
from ..tasks.task_query import (
    SortDirection,
    SortKey,
    filter_tasks,
    group_by_category,
    inbox_view_tasks,
    view,
)
from ..tasks.task_review import PriorityCounts, daily_review, weekly_review

CommandHandler = Callable[[AppState, list[str]], str]

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_USAGE = 2


class UsageError(Exception):
    """Bad command line (unknown command, missing or malformed arguments)."""


@dataclass(slots=True, frozen=True)
class CommandResult:
    text: str
    exit_code: int = EXIT_OK
    mutated: bool = False


class CommandRegistry:
    """Command registry shared by the one-shot CLI and the interactive console."""

    def __init__(self) -> None:
        self._handlers: dict[str, CommandHandler] = {}
        self._help: dict[str, str] = {}
        self._mutating: set[str] = set()

    def register(
        self,
        name: str,
        handler: CommandHandler,
        help_text: str,
        aliases: list[str] | None = None,
        *,
        mutates: bool = False,
    ) -> None:
        aliases = aliases or []
        key = name.lower()
        self._handlers[key] = handler
        self._help[key] = help_text
        for alias in [key, *(a.lower() for a in aliases)]:
            self._handlers[alias] = handler
            if mutates:
                self._mutating.add(alias)

    def run(self, state: AppState, argv: list[str]) -> CommandResult:
        """
        Run one command given as an argument vector.

        TaskPlusError and OSError -> exit 1, UsageError -> exit 2. Anything else propagates.
        """
        if not argv:
            return CommandResult("Empty command. Use help to list available commands.", EXIT_USAGE)

        name = argv[0].lstrip("/").lower()
        handler = self._handlers.get(name)
        if not handler:
            return CommandResult(f"Unknown command: {name}. Use help to list available commands.", EXIT_USAGE)

        try:
            with state.lock:
                text = handler(state, argv[1:])
        except UsageError as e:
            return CommandResult(f"Usage: {e}", EXIT_USAGE)
        except TaskPlusError as e:
            logger.info("Command %s failed: %s", name, e)
            return CommandResult(f"Error: {e}", EXIT_ERROR)
        except OSError as e:
            logger.warning("Command %s hit a file error: %s", name, e)
            return CommandResult(f"Error: {e}", EXIT_ERROR)

        return CommandResult(text, EXIT_OK, mutated=name in self._mutating)

    def handle(self, state: AppState, line: str) -> CommandResult | None:
        """Handle one console line ("add Buy milk #home", "/list today"). None for a blank line."""
        parts = line.strip().split()
        if not parts:
            return None
        return self.run(state, parts)

    def build_help(self) -> str:
        lines = ["Available commands:"]
        for name, help_text in self._help.items():
            lines.append(f"  {name} - {help_text}")
        return "\n".join(lines)


registry = CommandRegistry()


# ---- formatting ----


def _short(task_id: str) -> str:
    return task_id[:8]


def _fmt_when(dt) -> str:
    return dt.strftime("%Y-%m-%d %H:%M")


def format_task(task: Task, names: dict[str, str], position: int | None = None) -> str:
    head = f"{position:>3}. " if position is not None else ""
    mark = "x" if task.status == TaskStatus.DONE else " "
    parts = [f"{head}[{mark}] {_short(task.id)} {task.title}"]
    if task.priority.rank != 2:
        parts.append(f"!{task.priority.value}")
    if task.due is not None:
        parts.append(f"due {_fmt_when(task.due)}")
    if task.notification_time is not None:
        parts.append(f"remind {_fmt_when(task.notification_time)}")
    if task.context != TaskContext.NONE:
        parts.append(f"ctx:{task.context.value}")
    if task.category_id is not None and task.category_id in names:
        parts.append(f"@{names[task.category_id]}")
    if task.tags:
        parts.append(" ".join(task.tags))
    if task.recurrence is not None and task.recurrence.enabled:
        parts.append(f"(every {task.recurrence.interval} {task.recurrence.unit.value})")
    return "  ".join(parts)


# ---- argument helpers ----


def _need(args: list[str], count: int, usage: str) -> None:
    if len(args) < count:
        raise UsageError(usage)


def _position(raw: str, usage: str) -> int:
    """1-based position on the command line -> 0-based index."""
    try:
        value = int(raw)
    except ValueError as e:
        raise UsageError(usage) from e
    return value - 1


def _status(raw: str, usage: str) -> TaskStatus:
    try:
        return TaskStatus(raw.lower())
    except ValueError as e:
        raise UsageError(usage) from e


# ---- commands ----


def cmd_help(state: AppState, args: list[str]) -> str:
    return registry.build_help()


def cmd_add(state: AppState, args: list[str]) -> str:
    """
    add <title words> [#tag ...] [!high] [@Category] [due:<when>] [remind:<when>]
    """
    _need(args, 1, "add <title> [#tag] [!low|!normal|!high] [@category] [due:YYYY-MM-DD[THH:MM]] [remind:...]")
    task = quick_add(state, " ".join(args))
    return f"Added {_short(task.id)}: {task.title}"


_LIST_USAGE = (
    "list [inbox|today|done|all] [--sort manual|priority|due_date|category|created_at|title] "
    "[--asc|--desc] [--tag #tag]... [--hide-done] [--grouped]"
)


def cmd_list(state: AppState, args: list[str]) -> str:
    scope = "inbox"
    sort_key = SortKey.MANUAL
    direction = SortDirection.DESCENDING
    tags: list[str] = []
    hide_done = False
    grouped = False

    it = iter(args)
    for arg in it:
        low = arg.lower()
        if low in ("inbox", "today", "done", "all"):
            scope = low
        elif low == "--sort":
            try:
                sort_key = SortKey(next(it).lower())
            except (StopIteration, ValueError) as e:
                raise UsageError(_LIST_USAGE) from e
        elif low == "--asc":
            direction = SortDirection.ASCENDING
        elif low == "--desc":
            direction = SortDirection.DESCENDING
        elif low == "--tag":
            try:
                tags.append(normalize_tag(next(it)))
            except StopIteration as e:
                raise UsageError(_LIST_USAGE) from e
        elif low == "--hide-done":
            hide_done = True
        elif low == "--grouped":
            grouped = True
        else:
            raise UsageError(_LIST_USAGE)

    snapshot = state.store.snapshot()
    if scope == "inbox":
        tasks = inbox_view_tasks(snapshot)
    elif scope == "all":
        tasks = list(snapshot.tasks)
    else:
        tasks = [t for t in snapshot.tasks if t.status == TaskStatus(scope)]

    names = snapshot.category_names()
    if sort_key == SortKey.MANUAL and scope in ("inbox", "all"):
        # already in bucket order; a flat sort_order sort would interleave buckets
        ordered = filter_tasks(tasks, tag_filter=tags, hide_completed=hide_done)
    else:
        ordered = view(
            tasks,
            sort_key=sort_key,
            sort_direction=direction,
            tag_filter=tags,
            hide_completed=hide_done,
            categories=names,
        )
    if not ordered:
        return f"No tasks in {scope}."

    if grouped:
        lines: list[str] = []
        for name, members in group_by_category(ordered, names).items():
            lines.append(f"{name}:")
            lines.extend(format_task(t, names, i) for i, t in enumerate(members, start=1))
        return "\n".join(lines)

    return "\n".join(format_task(t, names, i) for i, t in enumerate(ordered, start=1))


def cmd_show(state: AppState, args: list[str]) -> str:
    _need(args, 1, "show <task-id>")
    task = resolve_task(state, args[0])
    names = state.store.snapshot().category_names()
    lines = [
        format_task(task, names),
        f"  id:      {task.id}",
        f"  status:  {task.status.value}",
        f"  created: {_fmt_when(task.created_at)}" if task.created_at else "  created: -",
    ]
    if task.notes:
        lines.append(f"  notes:   {task.notes}")
    stats = state.store.task_analytics(task.id)
    if stats["focusSessionsCount"]:
        lines.append(
            f"  focus:   {stats['focusSessionsCount']} session(s), {stats['totalFocusTime']} min, "
            f"{stats['totalInterruptions']} interruption(s)"
        )
    return "\n".join(lines)


def cmd_today(state: AppState, args: list[str]) -> str:
    _need(args, 1, "today <task-id>")
    task = state.store.move_to_today(resolve_task(state, args[0]).id)
    return f"Moved to Today: {task.title}"


def cmd_inbox(state: AppState, args: list[str]) -> str:
    _need(args, 1, "inbox <task-id>")
    task = state.store.send_to_inbox(resolve_task(state, args[0]).id)
    return f"Sent back to Inbox: {task.title}"


def cmd_complete(state: AppState, args: list[str]) -> str:
    _need(args, 1, "complete <task-id>")
    task = state.store.complete(resolve_task(state, args[0]).id)
    out = f"Completed: {task.title}"
    if task.recurrence is not None and task.recurrence.enabled and task.due is not None:
        nxt = expand_completed(state.store, task.id)
        if nxt is not None and nxt.due is not None:
            out += f"\nNext occurrence {_short(nxt.id)} due {_fmt_when(nxt.due)}"
    return out


def cmd_restore(state: AppState, args: list[str]) -> str:
    _need(args, 1, "restore <task-id>")
    task = state.store.restore(resolve_task(state, args[0]).id)
    return f"Restored to {task.status.value}: {task.title}"


def cmd_delete(state: AppState, args: list[str]) -> str:
    _need(args, 1, "delete <task-id>")
    task = state.store.delete(resolve_task(state, args[0]).id)
    return f"Deleted: {task.title}"


def cmd_snooze(state: AppState, args: list[str]) -> str:
    _need(args, 1, "snooze <task-id>")
    task = state.store.snooze_one_day(resolve_task(state, args[0]).id)
    return f"Snoozed until {_fmt_when(task.due)}: {task.title}"


def cmd_move(state: AppState, args: list[str]) -> str:
    """
    move <inbox|today|done> <from> <to>

    Positions are 1-based, as printed by `list`.
    """
    usage = "move <inbox|today|done> <from-position> <to-position>"
    _need(args, 3, usage)
    status = _status(args[0], usage)
    src = _position(args[1], usage)
    dst = _position(args[2], usage)
    # "move 3 1" means "item 3 ends up first": list-move wants the slot
    # before which it is inserted, which is one further when moving down.
    to_index = dst + 1 if dst > src else dst
    ordered = state.store.reorder(status, [src], to_index)
    return f"{status.value}: " + ", ".join(t.title for t in ordered)


_TAG_USAGE = "tag list | tag add <tag> | tag rename <old> <new> | tag remove <tag>"


def cmd_tag(state: AppState, args: list[str]) -> str:
    sub = args[0].lower() if args else "list"
    if sub == "list":
        tags = state.store.tags
        return "Tags: " + (", ".join(tags) if tags else "(none)")
    if sub == "add":
        _need(args, 2, _TAG_USAGE)
        return f"Tag {state.store.add_tag(args[1])} added."
    if sub == "rename":
        _need(args, 3, _TAG_USAGE)
        new = state.store.update_tag(args[1], args[2])
        return f"Tag renamed to {new}."
    if sub in ("remove", "rm", "delete"):
        _need(args, 2, _TAG_USAGE)
        touched = state.store.remove_tag(args[1])
        return f"Tag removed ({touched} task(s) updated)."
    raise UsageError(_TAG_USAGE)


_CATEGORY_USAGE = (
    "category list | category add <name> [icon] [color] | "
    "category rename <name|id> <new-name> | category delete <name|id>"
)


def cmd_category(state: AppState, args: list[str]) -> str:
    sub = args[0].lower() if args else "list"
    if sub == "list":
        cats = state.store.categories
        if not cats:
            return "No categories."
        return "\n".join(f"  {_short(c.id)} {c.name} ({c.icon.value}, {c.color.value})" for c in cats)
    if sub == "add":
        _need(args, 2, _CATEGORY_USAGE)
        try:
            icon = CategoryIcon(args[2].lower()) if len(args) > 2 else CategoryIcon.FOLDER
            color = CategoryColor(args[3].lower()) if len(args) > 3 else CategoryColor.BLUE
        except ValueError as e:
            raise UsageError(_CATEGORY_USAGE) from e
        cat = state.store.add_category(Category(name=args[1], icon=icon, color=color))
        return f"Category {cat.name} added ({_short(cat.id)})."
    if sub == "rename":
        _need(args, 3, _CATEGORY_USAGE)
        current = find_category(state, args[1])
        cat = state.store.update_category(
            Category(
                name=" ".join(args[2:]),
                id=current.id,
                icon=current.icon,
                color=current.color,
                custom_fields=current.custom_fields,
            )
        )
        return f"Category renamed to {cat.name}."
    if sub in ("delete", "rm", "remove"):
        _need(args, 2, _CATEGORY_USAGE)
        current = find_category(state, args[1])
        touched = state.store.delete_category(current.id)
        return f"Category {current.name} deleted ({touched} task(s) uncategorized)."
    raise UsageError(_CATEGORY_USAGE)


def cmd_progress(state: AppState, args: list[str]) -> str:
    store = state.store
    ratio = store.today_progress()
    return (
        f"Today: {store.today_completed_count()} done, {len(store.today_tasks)} open "
        f"({ratio:.0%}). Inbox: {len(store.inbox_tasks)}."
    )


_REVIEW_USAGE = "review [daily|weekly]"
_WEEKDAYS = ("Sun", "Mon", "Tue", "Wed", "Thu", "Fri", "Sat")


def _fmt_priorities(p: PriorityCounts) -> str:
    return f"high {p.high}, normal {p.normal}, low {p.low}"


def cmd_review(state: AppState, args: list[str]) -> str:
    kind = args[0].lower() if args else "daily"
    tasks = state.store.all_tasks()
    now = state.clock.now()

    if kind == "daily":
        d = daily_review(tasks, now)
        return "\n".join(
            [
                f"Daily review {d.day.isoformat()}",
                f"  Completed today: {d.completed}",
                f"  Still due today: {d.incomplete}",
                f"  Due tomorrow: {d.tomorrow} ({_fmt_priorities(d.tomorrow_priorities)})",
            ]
        )

    if kind == "weekly":
        w = weekly_review(tasks, state.store.categories, now)
        trend = "n/a" if w.trend_percent is None else f"{w.trend_percent:+.0f}%"
        by_category = ", ".join(f"{name} {n}" for name, n in w.completed_by_category.items()) or "none"
        lines = [
            f"Weekly review (week of {w.week_start.isoformat()})",
            f"  Completed: {w.completed} (last week {w.last_week_completed}, trend {trend})",
            f"  Created: {w.created}",
            "  Per day: " + "  ".join(f"{day} {n}" for day, n in zip(_WEEKDAYS, w.completed_per_day)),
            f"  By category: {by_category}",
        ]
        if w.category_progress:
            lines.append("  Category progress:")
            lines.extend(f"    {p.name}: {p.completed}/{p.total} ({p.rate:.0%})" for p in w.category_progress)
        lines.append("  Last four weeks:")
        lines.extend(f"    {p.week_start.isoformat()}: {p.completed}/{p.total} ({p.rate:.0%})" for p in w.recent_weeks)
        lines.append(f"  Next week: {w.next_week} ({_fmt_priorities(w.next_week_priorities)})")
        lines.append(f"  Monthly completion: {w.monthly_completion_rate:.0f}%")
        return "\n".join(lines)

    raise UsageError(_REVIEW_USAGE)


def cmd_pending(state: AppState, args: list[str]) -> str:
    pending = state.registry.pending()
    if not pending:
        return "No pending notifications."
    return "\n".join(f"  {_fmt_when(s.fire_at)}  {s.identifier}  {s.title}: {s.body}" for s in pending)


def cmd_export(state: AppState, args: list[str]) -> str:
    text = state.store.export_document()
    if not args:
        return text
    path = Path(args[0]).expanduser()
    path.write_text(text, "utf-8")
    return f"Exported {state.store.count_tasks()} task(s) to {path}."


def cmd_import(state: AppState, args: list[str]) -> str:
    _need(args, 1, "import <path>")
    path = Path(args[0]).expanduser()
    # bytes: json detects the encoding; undecodable input becomes DocumentImportError
    report = state.store.import_document(path.read_bytes())
    return f"Imported from {path}: {report.summary()}"


registry.register("help", cmd_help, help_text="Show available commands.", aliases=["h", "?"])
registry.register("add", cmd_add, help_text="Add a task to Inbox: add Buy milk #home !high due:tomorrow.", mutates=True)
registry.register("list", cmd_list, help_text=_LIST_USAGE, aliases=["ls"])
registry.register("show", cmd_show, help_text="Show one task: show <task-id>.")
registry.register("today", cmd_today, help_text="Move an Inbox task to Today.", mutates=True)
registry.register("inbox", cmd_inbox, help_text="Send a Today task back to Inbox.", mutates=True)
registry.register("complete", cmd_complete, help_text="Complete a task.", aliases=["done"], mutates=True)
registry.register("restore", cmd_restore, help_text="Restore a completed task.", mutates=True)
registry.register("delete", cmd_delete, help_text="Delete a task.", aliases=["rm"], mutates=True)
registry.register("snooze", cmd_snooze, help_text="Push a Today task's due date by one day.", mutates=True)
registry.register("move", cmd_move, help_text="Reorder within a bucket: move inbox 3 1.", mutates=True)
registry.register("tag", cmd_tag, help_text=_TAG_USAGE, mutates=True)
registry.register("category", cmd_category, help_text=_CATEGORY_USAGE, aliases=["cat"], mutates=True)
registry.register("progress", cmd_progress, help_text="Show today's progress.")
registry.register("review", cmd_review, help_text="Daily or weekly review numbers: review [daily|weekly].")
registry.register("pending", cmd_pending, help_text="List pending notifications.")
registry.register("export", cmd_export, help_text="Export all data: export [path].")
registry.register("import", cmd_import, help_text="Replace all data from a document: import <path>.", mutates=True)
