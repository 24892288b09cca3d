# src/habit_tracker/cli/commands.py

from __future__ import annotations

import contextlib
import inspect
import logging
from collections.abc import Callable
from datetime import date
from typing import cast

from ..core.errors import EngineError, ValidationError
from ..core.state import AppState
from ..tasks import task_api
from ..tasks.periods import format_date
from ..tasks.task_models import ProgressEvent, Task, TaskKind

CommandEmitter = Callable[[str], None]
CommandHandler2 = Callable[[AppState, list[str]], str]
CommandHandler3 = Callable[[AppState, list[str], CommandEmitter | None], str]
CommandHandler = CommandHandler2 | CommandHandler3

logger = logging.getLogger(__name__)


class CommandRegistry:
    """Simple slash-command registry used by the console (/help, /task, /log, ...)."""

    def __init__(self) -> None:
        self._handlers: dict[str, CommandHandler] = {}
        self._help: dict[str, str] = {}

    def register(
        self,
        name: str,
        handler: CommandHandler,
        help_text: str,
        aliases: list[str] | None = None,
    ) -> None:
        aliases = aliases or []
        key = name.lower()
        self._handlers[key] = handler
        self._help[key] = help_text
        for alias in aliases:
            self._handlers[alias.lower()] = handler

    def handle(
        self,
        state: AppState,
        line: str,
        emit: CommandEmitter | None = None,
    ) -> str | None:
        """
        Handle a string like "/command args".
        Returns a reply string or None if not a command.
        Engine errors become a reply tagged with their kind.
        """
        if not line.startswith("/"):
            return None

        parts = line[1:].split()
        if not parts:
            return "Empty command. Use /help to list available commands."

        name = parts[0].lower()
        args = parts[1:]

        handler = self._handlers.get(name)
        if not handler:
            return f"Unknown command: /{name}. Use /help to list available commands."

        try:
            nparams = len(inspect.signature(handler).parameters)
        except (TypeError, ValueError):
            nparams = 3

        try:
            if nparams >= 3:
                h3 = cast(CommandHandler3, handler)
                return h3(state, args, emit)
            h2 = cast(CommandHandler2, handler)
            return h2(state, args)
        except EngineError as e:
            logger.info("/%s rejected (%s): %s", name, e.kind, e.message)
            return f"Error [{e.kind}]: {e.message}"

    def build_help(self) -> str:
        lines = ["Available commands:"]
        for name, help_text in self._help.items():
            lines.append(f"  /{name} - {help_text}")
        return "\n".join(lines)


registry = CommandRegistry()


def _int_arg(raw: str, what: str) -> int:
    try:
        return int(raw)
    except ValueError:
        raise ValidationError(f"{what} must be a number, got {raw!r}", field=what) from None


def _date_style(state: AppState) -> str:
    return str(getattr(state.settings, "date_format", "iso"))


def _fmt_amount(task: Task, amount: int) -> str:
    return task_api.format_duration(amount) if task.kind is TaskKind.TIME_BASED else str(amount)


def _fmt_task(state: AppState, task: Task) -> str:
    style = _date_style(state)
    mark = "x" if task.is_completed else " "
    role = "template" if task.is_template else f"from #{task.parent_task_id}"
    return (
        f"[{mark}] #{task.id} {task.name} ({task.kind.value}, {task.frequency.value}, {role}) "
        f"{_fmt_amount(task, task.completed_count)}/{_fmt_amount(task, task.goal)} "
        f"[{format_date(task.period.start, style)} .. {format_date(task.period.end, style)})"
    )


def _fmt_event(state: AppState, ev: ProgressEvent, running: int | None = None) -> str:
    line = f"  {ev.id} {format_date(ev.date, _date_style(state))} {ev.status.value} +{ev.magnitude}"
    if running is not None:
        line += f" (total {running})"
    if ev.remaining is not None:
        line += f" remaining={ev.remaining}"
    return line


def cmd_help(state: AppState, args: list[str]) -> str:
    return registry.build_help()


def cmd_cat(state: AppState, args: list[str]) -> str:
    """
    /cat list
    /cat add <#color> <name...>
    /cat rename <id> <name...>
    /cat archive <id>
    """
    sub = args[0].lower() if args else "list"

    if sub == "list":
        cats = task_api.list_categories(state)
        if not cats:
            return "No categories yet. Use /cat add <#color> <name>."
        return "\n".join(f"#{c.id} {c.name} {c.color}" for c in cats)

    if sub == "add" and len(args) >= 3:
        cat = task_api.create_category(state, name=" ".join(args[2:]), color=args[1])
        return f"Category #{cat.id} created: {cat.name}"

    if sub == "rename" and len(args) >= 3:
        cat = state.engine.update_category(_int_arg(args[1], "category_id"), name=" ".join(args[2:]))
        return f"Category #{cat.id} renamed to {cat.name}"

    if sub == "archive" and len(args) == 2:
        task_api.archive_category(state, _int_arg(args[1], "category_id"))
        return "Category archived."

    return "Usage: /cat list | /cat add <#color> <name> | /cat rename <id> <name> | /cat archive <id>"


def cmd_task(state: AppState, args: list[str]) -> str:
    """
    /task list [search...]
    /task add <kind> <frequency> <goal> <category_id> <start_date> <name...>
    /task show <id>
    /task goal <id> <goal>
    /task archive <id>
    """
    sub = args[0].lower() if args else "list"

    if sub == "list":
        search = " ".join(args[1:]) or None
        tasks = task_api.list_tasks(state, search=search)
        if not tasks:
            return "No tasks."
        return "\n".join(_fmt_task(state, t) for t in tasks)

    if sub == "add" and len(args) >= 7:
        task = task_api.create_task_instance(
            state,
            kind=args[1],
            frequency=args[2],
            goal=_int_arg(args[3], "goal"),
            category_id=_int_arg(args[4], "category_id"),
            start_date=args[5],
            name=" ".join(args[6:]),
        )
        return f"Created {_fmt_task(state, task)}"

    if sub == "show" and len(args) == 2:
        task = task_api.get_task(state, _int_arg(args[1], "task_id"))
        lines = [_fmt_task(state, task)]
        for ev, running in task_api.period_history(state, task.id):
            lines.append(_fmt_event(state, ev, running))
        for succ in task_api.list_successors(state, task.id):
            lines.append(f"  -> successor {_fmt_task(state, succ)}")
        return "\n".join(lines)

    if sub == "goal" and len(args) == 3:
        task = state.engine.update_task(
            _int_arg(args[1], "task_id"), goal=_int_arg(args[2], "goal")
        )
        return f"Updated {_fmt_task(state, task)}"

    if sub == "archive" and len(args) == 2:
        task_api.archive_task(state, _int_arg(args[1], "task_id"))
        return "Task archived."

    return (
        "Usage: /task list [search] | /task show <id> | /task goal <id> <goal> | /task archive <id>\n"
        "       /task add <TIME_BASED|YES_NO> <DAILY|WEEKLY|MONTHLY> <goal> <category_id> "
        "<start_date> <name>"
    )


def cmd_log(
    state: AppState,
    args: list[str],
    emit: CommandEmitter | None = None,
) -> str:
    """
    /log <task_id> <amount> [date] [status]
    """
    if len(args) < 2:
        return "Usage: /log <task_id> <minutes|count> [date] [IN_PROGRESS|COMPLETED|CANCELLED]"

    task_id = _int_arg(args[0], "task_id")
    result = task_api.record_progress(
        state,
        task_id,
        on_date=args[2] if len(args) > 2 else date.today(),
        magnitude=_int_arg(args[1], "amount"),
        status=args[3] if len(args) > 3 else "COMPLETED",
    )
    if result.replayed:
        return "Already recorded."

    reply = _fmt_task(state, result.task)
    if result.spawned_successor_id is not None:
        if emit:
            with contextlib.suppress(Exception):
                emit(f"Period complete for #{task_id}.")
        reply += f"\nNext period scheduled as task #{result.spawned_successor_id}."
    return reply


def cmd_done(state: AppState, args: list[str]) -> str:
    """
    /done <task_id> [increment]
    """
    if not args:
        return "Usage: /done <task_id> [increment]"
    increment = _int_arg(args[1], "increment") if len(args) > 1 else None
    result = state.engine.mark_completion(_int_arg(args[0], "task_id"), increment=increment)
    reply = _fmt_task(state, result.task)
    if result.spawned_successor_id is not None:
        reply += f"\nNext period scheduled as task #{result.spawned_successor_id}."
    return reply


def cmd_event(state: AppState, args: list[str]) -> str:
    """
    /event edit <event_id> <amount> [status]
    /event rm <event_id>
    """
    sub = args[0].lower() if args else ""

    if sub == "edit" and len(args) >= 3:
        result = state.engine.update_progress(
            args[1],
            magnitude=_int_arg(args[2], "amount"),
            status=args[3] if len(args) > 3 else None,
        )
        return f"Updated {_fmt_task(state, result.task)}"

    if sub == "rm" and len(args) == 2:
        task = state.engine.remove_progress(args[1])
        return f"Removed. {_fmt_task(state, task)}"

    return "Usage: /event edit <event_id> <amount> [status] | /event rm <event_id>"


def cmd_summary(state: AppState, args: list[str]) -> str:
    tasks = task_api.list_tasks(state, limit=500)
    summary = task_api.summarize(tasks)
    return f"Completed {summary.completed}/{summary.total} ({summary.percentage:.0f}%)"


registry.register("help", cmd_help, help_text="Show available commands.", aliases=["h", "?"])
registry.register("cat", cmd_cat, help_text="Categories: /cat list | add | rename | archive.")
registry.register("task", cmd_task, help_text="Tasks: /task list | add | show | goal | archive.")
registry.register("log", cmd_log, help_text="Record progress: /log <task_id> <amount> [date] [status].")
registry.register("done", cmd_done, help_text="Mark a task done for its period: /done <task_id> [n].")
registry.register("event", cmd_event, help_text="Correct progress: /event edit | /event rm.")
registry.register("summary", cmd_summary, help_text="Show completed/total for listed tasks.")
