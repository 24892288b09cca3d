# src/habit_tracker/tasks/task_api.py

"""
External contracts of the engine.

Thin helpers over AppState for whatever sits in front of the engine
(console, HTTP layer, ...). They convert loose caller input into the typed
engine calls and engine objects back into plain dicts.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from typing import Any

from ..core.errors import NotFoundError
from ..core.state import AppState
from . import periods
from .progress import running_totals
from .task_models import (
    Category,
    Frequency,
    Period,
    ProgressEvent,
    ProgressInput,
    ProgressResult,
    SessionStatus,
    Task,
    TaskKind,
    TaskSpec,
)

logger = logging.getLogger(__name__)


def compute_period(state: AppState, frequency: Frequency | str, start_date: date | str) -> Period:
    strict = bool(getattr(state.settings, "strict_frequency", True))
    freq = Frequency.parse(frequency, strict=strict)
    return periods.compute_period(freq, periods.parse_date(start_date, field="start_date"))


def create_category(state: AppState, *, name: str, color: str) -> Category:
    return state.engine.create_category(name, color)


def create_task_instance(
    state: AppState,
    *,
    name: str,
    kind: TaskKind | str,
    frequency: Frequency | str,
    goal: int,
    category_id: int,
    start_date: date | str,
    end_date: date | str | None = None,
) -> Task:
    return state.engine.create_task(
        TaskSpec(
            name=name,
            kind=kind,
            frequency=frequency,
            goal=goal,
            category_id=category_id,
            start_date=start_date,
            end_date=end_date,
        )
    )


def record_progress(
    state: AppState,
    task_id: int,
    *,
    on_date: date | str,
    magnitude: int | None = None,
    status: SessionStatus | str = SessionStatus.COMPLETED,
    event_id: str | None = None,
) -> ProgressResult:
    return state.engine.record_progress(
        task_id,
        ProgressInput(date=on_date, magnitude=magnitude, status=status, event_id=event_id),
    )


def archive_task(state: AppState, task_id: int) -> None:
    state.engine.archive_task(task_id)


def archive_category(state: AppState, category_id: int) -> None:
    state.engine.archive_category(category_id)


# ---- queries ----


def get_task(state: AppState, task_id: int) -> Task:
    task = state.task_store.get_task(task_id)
    if task is None:
        raise NotFoundError(f"task {task_id} not found", task_id=task_id)
    return task


def list_tasks(state: AppState, **filters: Any) -> list[Task]:
    with state.task_store.reading() as s:
        return s.list_tasks(**filters)


def list_categories(state: AppState, *, include_archived: bool = False) -> list[Category]:
    with state.task_store.reading() as s:
        return s.list_categories(include_archived=include_archived)


def get_progress(state: AppState, event_id: str) -> ProgressEvent:
    event = state.task_store.get_event(event_id)
    if event is None:
        raise NotFoundError(f"progress event {event_id} not found", event_id=event_id)
    return event


def list_progress(
    state: AppState,
    *,
    task_id: int | None = None,
    on_date: date | str | None = None,
    limit: int = 100,
) -> list[ProgressEvent]:
    day = periods.parse_date(on_date) if on_date is not None else None
    with state.task_store.reading() as s:
        return s.list_events(task_id=task_id, on_date=day, limit=limit)


def list_successors(state: AppState, task_id: int) -> list[Task]:
    with state.task_store.reading() as s:
        return s.list_successors(task_id)


def period_history(state: AppState, task_id: int) -> list[tuple[ProgressEvent, int]]:
    """Events of the task's current period with the running total after each."""
    task = get_task(state, task_id)
    with state.task_store.reading() as s:
        return running_totals(s.list_period_events(task.id, task.period_id))


# ---- presentation helpers ----


@dataclass(slots=True, frozen=True)
class ProgressSummary:
    completed: int
    total: int

    @property
    def percentage(self) -> float:
        return (self.completed / self.total) * 100 if self.total else 0.0


def summarize(tasks: list[Task]) -> ProgressSummary:
    return ProgressSummary(completed=sum(1 for t in tasks if t.is_completed), total=len(tasks))


def format_duration(minutes: int) -> str:
    if minutes < 60:
        return f"{minutes}m"
    hours, rest = divmod(minutes, 60)
    return f"{hours}h" if rest == 0 else f"{hours}h {rest}m"


def task_to_dict(task: Task) -> dict[str, Any]:
    return {
        "id": task.id,
        "name": task.name,
        "kind": task.kind.value,
        "frequency": task.frequency.value,
        "goal": task.goal,
        "category_id": task.category_id,
        "start_date": task.start_date.isoformat(),
        "period_start": task.period.start.isoformat(),
        "period_end": task.period.end.isoformat(),
        "accumulated_count": task.completed_count,
        "is_completed": task.is_completed,
        "is_template": task.is_template,
        "parent_task_id": task.parent_task_id,
        "end_date": task.end_date.isoformat() if task.end_date else None,
        "status": task.status.value,
    }


def event_to_dict(event: ProgressEvent) -> dict[str, Any]:
    return {
        "id": event.id,
        "task_id": event.task_id,
        "date": event.date.isoformat(),
        "status": event.status.value,
        "magnitude": event.magnitude,
        "remaining_snapshot": event.remaining,
        "period_completed_snapshot": event.period_completed,
        "period_id": event.period_id,
    }
