# src/habit_tracker/tasks/progress.py

"""
Progress accumulator.

Completion is decided by re-summing every counting event of the task's period
(the new or edited one included) instead of incrementing the cached counter.
That keeps the result stable under retried or out-of-order delivery and under
edits of an already recorded event.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass

from ..core.errors import ValidationError
from .task_models import ProgressEvent, SessionStatus, Task, TaskKind


@dataclass(slots=True, frozen=True)
class Accumulation:
    total: int
    goal_reached: bool
    remaining: int | None  # TIME_BASED only


def ordered(events: Iterable[ProgressEvent]) -> list[ProgressEvent]:
    """Write order: created_at, then ledger sequence."""
    return sorted(events, key=lambda e: (e.created_at, e.seq))


def running_totals(events: Iterable[ProgressEvent]) -> list[tuple[ProgressEvent, int]]:
    out: list[tuple[ProgressEvent, int]] = []
    total = 0
    for ev in ordered(events):
        if ev.status.counts:
            total += ev.magnitude
        out.append((ev, total))
    return out


def normalize_magnitude(task: Task, magnitude: int | None, *, default_target: int = 1) -> int:
    if magnitude is None:
        if task.kind is TaskKind.YES_NO:
            return max(1, int(default_target))
        raise ValidationError("minutes are required for a TIME_BASED task", field="magnitude")
    try:
        value = int(magnitude)
    except (TypeError, ValueError):
        raise ValidationError(f"invalid magnitude: {magnitude!r}", field="magnitude") from None
    if value < 0:
        raise ValidationError("magnitude must not be negative", field="magnitude")
    return value


def accumulate(
    task: Task,
    period_events: Iterable[ProgressEvent],
    *,
    magnitude: int = 0,
    status: SessionStatus = SessionStatus.COMPLETED,
    exclude_event_id: str | None = None,
) -> Accumulation:
    """
    Sum the period's counting events plus one pending contribution.

    `exclude_event_id` drops a stored row from the sum so an edited event can be
    re-included with its new value (pass the new value as `magnitude`).
    """
    total = 0
    for ev in period_events:
        if ev.id == exclude_event_id or ev.period_id != task.period_id:
            continue
        if ev.status.counts:
            total += ev.magnitude

    if status.counts:
        total += magnitude

    reached = total >= task.goal
    remaining = max(0, task.goal - total) if task.kind is TaskKind.TIME_BASED else None
    return Accumulation(total=total, goal_reached=reached, remaining=remaining)


def remaining_for(task: Task, period_events: Iterable[ProgressEvent]) -> int:
    """What is still missing in the current period (minutes or count)."""
    return max(0, task.goal - accumulate(task, period_events).total)
