# src/habit_tracker/tasks/lifecycle.py

"""
Task lifecycle manager.

Owns every write the engine performs:
- creating categories and template tasks,
- recording / editing / removing progress events,
- the one-way OPEN -> COMPLETE transition and the successor it spawns,
- soft archiving.

Each write runs under a per-task in-process lock and inside one store
transaction, so the cached counter on the task row, the ledger row and a
spawned successor are committed together or not at all.
"""

from __future__ import annotations

import contextlib
import logging
import re
import sqlite3
import threading
import uuid
import weakref
from collections.abc import Callable, Iterator
from datetime import date
from typing import Any, TypeVar

from ..core.errors import ConcurrencyError, ConflictError, NotFoundError, ValidationError
from ..core.ports import EventLedger, TaskRepo
from .periods import compute_period, next_period, parse_date
from .progress import accumulate, normalize_magnitude, remaining_for
from .task_models import (
    Category,
    Frequency,
    ProgressEvent,
    ProgressInput,
    ProgressResult,
    RecordStatus,
    SessionStatus,
    Task,
    TaskKind,
    TaskSpec,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

_HEX_COLOR = re.compile(r"^#(?:[0-9a-fA-F]{3}){1,2}$")


def _is_locked(exc: sqlite3.OperationalError) -> bool:
    msg = str(exc).lower()
    return "locked" in msg or "busy" in msg


def _positive_goal(raw: Any) -> int:
    if isinstance(raw, bool) or (isinstance(raw, float) and not raw.is_integer()):
        raise ValidationError("goal must be a positive integer", field="goal")
    try:
        goal = int(raw)
    except (TypeError, ValueError):
        raise ValidationError(f"invalid goal: {raw!r}", field="goal") from None
    if goal <= 0:
        raise ValidationError("goal must be a positive integer", field="goal")
    return goal


def _clean_name(raw: Any, *, field: str = "name", min_len: int = 1) -> str:
    name = str(raw or "").strip()
    if len(name) < min_len:
        if min_len <= 1:
            raise ValidationError(f"{field} is required", field=field)
        raise ValidationError(f"{field} must be at least {min_len} characters", field=field)
    return name


def _checked_end_date(start: date, end: date | None) -> date | None:
    if end is not None and end < start:
        raise ValidationError("end_date must not be before start_date", field="end_date")
    return end


def _clean_color(raw: Any) -> str:
    color = str(raw or "").strip()
    if not _HEX_COLOR.match(color):
        raise ValidationError(f"invalid color {color!r}; use #RGB or #RRGGBB", field="color")
    return color.upper()


class TaskLifecycleManager:
    def __init__(
        self,
        store: TaskRepo,
        *,
        strict_frequency: bool = True,
        default_target: int = 1,
    ) -> None:
        self._store = store
        self._strict_frequency = strict_frequency
        self._default_target = max(1, int(default_target))

        # Entries disappear once no caller holds or waits on the lock.
        self._locks: weakref.WeakValueDictionary[int, threading.Lock] = (
            weakref.WeakValueDictionary()
        )
        self._locks_guard = threading.Lock()

    # ---- plumbing ----

    @contextlib.contextmanager
    def _task_lock(self, task_id: int) -> Iterator[None]:
        with self._locks_guard:
            lock = self._locks.get(int(task_id))
            if lock is None:
                lock = threading.Lock()
                self._locks[int(task_id)] = lock
        with lock:
            yield

    def _write(self, op: Callable[[EventLedger], T], *, what: str) -> T:
        """Run `op` in one transaction; a locked database is retried once."""
        try:
            with self._store.transaction() as s:
                return op(s)
        except sqlite3.OperationalError as e:
            if not _is_locked(e):
                raise
            logger.warning("%s: database locked, retrying once", what)

        try:
            with self._store.transaction() as s:
                return op(s)
        except sqlite3.OperationalError as e:
            if not _is_locked(e):
                raise
            raise ConcurrencyError(f"{what}: store is busy, try again", operation=what) from e

    @staticmethod
    def _require_task(s: EventLedger, task_id: int) -> Task:
        task = s.get_task(task_id)
        if task is None:
            raise NotFoundError(f"task {task_id} not found", task_id=task_id)
        return task

    @staticmethod
    def _require_category(s: EventLedger, category_id: int) -> Category:
        category = s.get_category(category_id)
        if category is None:
            raise NotFoundError(f"category {category_id} not found", category_id=category_id)
        return category

    @staticmethod
    def _require_writable(s: EventLedger, task: Task) -> None:
        if task.is_archived:
            raise ConflictError(f"task {task.id} is archived", task_id=task.id)
        category = s.get_category(task.category_id)
        if category is not None and category.is_archived:
            raise ConflictError(
                f"category {task.category_id} of task {task.id} is archived",
                task_id=task.id,
                category_id=task.category_id,
            )

    def _spawn_successor(self, s: EventLedger, task: Task) -> int:
        period = next_period(task.frequency, task.period)
        successor_id = s.insert_task(
            name=task.name,
            kind=task.kind,
            frequency=task.frequency,
            goal=task.goal,
            category_id=task.category_id,
            start_date=period.start,
            period=period,
            parent_task_id=task.id,
            status=task.status,
            end_date=task.end_date,
        )
        logger.info(
            "Spawned successor id=%s of task id=%s period=[%s, %s)",
            successor_id,
            task.id,
            period.start,
            period.end,
        )
        return successor_id

    def _apply_progress(
        self,
        s: EventLedger,
        task: Task,
        *,
        total: int,
        goal_reached: bool,
    ) -> int | None:
        """
        Raise the cached counter to `total`; fire OPEN -> COMPLETE at most once.

        The counter is a high-water mark of the period sum: it never goes down,
        so `is_completed` always matches `completed_count >= goal`.
        """
        count = max(task.completed_count, total)
        reached = goal_reached or count >= task.goal
        completes_now = reached and not task.is_completed
        if count != task.completed_count or completes_now:
            s.update_task_fields(
                task.id,
                completed_count=count,
                is_completed=task.is_completed or reached,
            )
        if not completes_now:
            return None

        logger.info(
            "Task id=%s completed period %s (%s/%s)", task.id, task.period_id, count, task.goal
        )
        if task.is_template:
            return self._spawn_successor(s, task)
        return None

    # ---- categories ----

    def create_category(self, name: str, color: str) -> Category:
        clean_name = _clean_name(name, min_len=2)
        clean_color = _clean_color(color)

        def op(s: EventLedger) -> Category:
            category_id = s.insert_category(name=clean_name, color=clean_color)
            return self._require_category(s, category_id)

        category = self._write(op, what="create_category")
        logger.info("Category created id=%s name=%s", category.id, category.name)
        return category

    def update_category(
        self,
        category_id: int,
        *,
        name: str | None = None,
        color: str | None = None,
    ) -> Category:
        clean_name = _clean_name(name, min_len=2) if name is not None else None
        clean_color = _clean_color(color) if color is not None else None

        def op(s: EventLedger) -> Category:
            category = self._require_category(s, category_id)
            if category.is_archived:
                raise ConflictError(f"category {category_id} is archived", category_id=category_id)
            s.update_category_fields(category_id, name=clean_name, color=clean_color)
            return self._require_category(s, category_id)

        return self._write(op, what="update_category")

    def archive_category(self, category_id: int) -> None:
        def op(s: EventLedger) -> None:
            category = self._require_category(s, category_id)
            if category.is_archived:
                logger.debug("Category id=%s already archived", category_id)
                return
            s.update_category_fields(category_id, status=RecordStatus.ARCHIVED)
            logger.info("Category archived id=%s", category_id)

        self._write(op, what="archive_category")

    # ---- tasks ----

    def create_task(self, spec: TaskSpec) -> Task:
        """
        Create a recurring template task in OPEN state with zero progress.

        All fields are validated before anything is written.
        """
        name = _clean_name(spec.name)
        kind = TaskKind.parse(spec.kind)
        frequency = Frequency.parse(spec.frequency, strict=self._strict_frequency)
        goal = _positive_goal(spec.goal)
        start = parse_date(spec.start_date, field="start_date")
        end = _checked_end_date(
            start,
            parse_date(spec.end_date, field="end_date") if spec.end_date is not None else None,
        )
        period = compute_period(frequency, start)

        def op(s: EventLedger) -> Task:
            category = s.get_category(spec.category_id)
            if category is None:
                raise ValidationError(
                    f"unknown category {spec.category_id}", field="category_id"
                )
            if category.is_archived:
                raise ConflictError(
                    f"category {spec.category_id} is archived", category_id=spec.category_id
                )
            task_id = s.insert_task(
                name=name,
                kind=kind,
                frequency=frequency,
                goal=goal,
                category_id=category.id,
                start_date=start,
                period=period,
                end_date=end,
            )
            return self._require_task(s, task_id)

        task = self._write(op, what="create_task")
        logger.info(
            "Task created id=%s name=%s kind=%s frequency=%s goal=%s period=[%s, %s)",
            task.id,
            task.name,
            task.kind,
            task.frequency,
            task.goal,
            task.period.start,
            task.period.end,
        )
        return task

    def update_task(
        self,
        task_id: int,
        *,
        name: str | None = None,
        goal: int | None = None,
        frequency: Frequency | str | None = None,
        start_date: date | str | None = None,
        category_id: int | None = None,
        end_date: date | str | None = None,
    ) -> Task:
        """
        Edit an OPEN task. Changing frequency or start date recomputes its period.
        """
        changes: dict[str, Any] = {}
        if name is not None:
            changes["name"] = _clean_name(name)
        if goal is not None:
            changes["goal"] = _positive_goal(goal)
        new_frequency = (
            Frequency.parse(frequency, strict=self._strict_frequency)
            if frequency is not None
            else None
        )
        new_start = parse_date(start_date, field="start_date") if start_date is not None else None
        new_end = parse_date(end_date, field="end_date") if end_date is not None else None

        def op(s: EventLedger) -> Task:
            task = self._require_task(s, task_id)
            self._require_writable(s, task)
            if task.is_completed:
                raise ConflictError(f"task {task_id} is already complete", task_id=task_id)

            if category_id is not None:
                category = s.get_category(category_id)
                if category is None:
                    raise ValidationError(f"unknown category {category_id}", field="category_id")
                if category.is_archived:
                    raise ConflictError(
                        f"category {category_id} is archived", category_id=category_id
                    )
                changes["category_id"] = category.id

            if new_frequency is not None or new_start is not None:
                if s.list_period_events(task.id, task.period_id):
                    raise ConflictError(
                        f"period of task {task_id} cannot change after progress was recorded",
                        task_id=task_id,
                    )
                freq = new_frequency or task.frequency
                start = new_start or task.start_date
                period = compute_period(freq, start)
                changes.update(
                    frequency=freq,
                    start_date=start,
                    period_start=period.start,
                    period_end=period.end,
                )

            if new_end is not None or "start_date" in changes:
                changes["end_date"] = _checked_end_date(
                    changes.get("start_date", task.start_date),
                    new_end if new_end is not None else task.end_date,
                )

            s.update_task_fields(task_id, **changes)
            updated = self._require_task(s, task_id)

            # A lowered goal may already be met by the recorded progress.
            acc = accumulate(updated, s.list_period_events(updated.id, updated.period_id))
            self._apply_progress(s, updated, total=acc.total, goal_reached=acc.goal_reached)
            return self._require_task(s, task_id)

        with self._task_lock(task_id):
            return self._write(op, what="update_task")

    def archive_task(self, task_id: int) -> None:
        def op(s: EventLedger) -> None:
            task = self._require_task(s, task_id)
            if task.is_archived:
                logger.debug("Task id=%s already archived", task_id)
                return
            s.update_task_fields(task_id, status=RecordStatus.ARCHIVED)
            logger.info("Task archived id=%s", task_id)

        with self._task_lock(task_id):
            self._write(op, what="archive_task")

    # ---- progress ----

    def record_progress(self, task_id: int, event: ProgressInput) -> ProgressResult:
        """
        Append one progress event and re-evaluate the task's period.

        Replaying an event id already stored for this task writes nothing and
        returns the current state with replayed=True.
        """
        return self._record(task_id, event, fill_remaining=False)

    def _record(
        self, task_id: int, event: ProgressInput, *, fill_remaining: bool
    ) -> ProgressResult:
        on_date = parse_date(event.date)
        status = SessionStatus.parse(event.status)
        event_id = (event.event_id or "").strip() or uuid.uuid4().hex

        def op(s: EventLedger) -> ProgressResult:
            task = self._require_task(s, task_id)

            existing = s.get_event(event_id)
            if existing is not None:
                return self._replay(s, task, existing)

            self._require_writable(s, task)
            if task.is_completed and not task.is_template:
                raise ConflictError(
                    f"task {task_id} already completed its period", task_id=task_id
                )

            period_events = s.list_period_events(task.id, task.period_id)
            if fill_remaining and event.magnitude is None and task.kind is TaskKind.TIME_BASED:
                magnitude = remaining_for(task, period_events)
            else:
                magnitude = normalize_magnitude(
                    task, event.magnitude, default_target=self._default_target
                )
            acc = accumulate(task, period_events, magnitude=magnitude, status=status)
            stored = s.insert_event(
                event_id=event_id,
                task_id=task.id,
                on_date=on_date,
                status=status,
                magnitude=magnitude,
                remaining=acc.remaining,
                period_completed=acc.goal_reached,
                period_id=task.period_id,
            )
            logger.debug(
                "Progress recorded task=%s event=%s status=%s magnitude=%s total=%s/%s",
                task.id,
                event_id,
                status,
                magnitude,
                acc.total,
                task.goal,
            )
            successor_id = self._apply_progress(
                s, task, total=acc.total, goal_reached=acc.goal_reached
            )
            return ProgressResult(
                task=self._require_task(s, task.id),
                event=stored,
                spawned_successor_id=successor_id,
            )

        with self._task_lock(task_id):
            return self._write(op, what="record_progress")

    def _replay(self, s: EventLedger, task: Task, existing: ProgressEvent) -> ProgressResult:
        if existing.task_id != task.id:
            raise ConflictError(
                f"event {existing.id} belongs to task {existing.task_id}",
                event_id=existing.id,
                task_id=task.id,
            )
        logger.warning("Replayed progress event %s for task %s ignored", existing.id, task.id)
        successor_id = None
        if existing.period_completed and task.is_template:
            successors = s.list_successors(task.id)
            successor_id = successors[0].id if successors else None
        return ProgressResult(
            task=task, event=existing, spawned_successor_id=successor_id, replayed=True
        )

    def mark_completion(
        self,
        task_id: int,
        *,
        increment: int | None = None,
        on_date: date | str | None = None,
        event_id: str | None = None,
    ) -> ProgressResult:
        """
        Record a COMPLETED event without a timer.

        Default increment: the configured target step for YES_NO tasks, the
        minutes still missing for TIME_BASED tasks, both read inside the
        same locked transaction that records the event.
        """
        return self._record(
            task_id,
            ProgressInput(
                date=on_date if on_date is not None else date.today(),
                magnitude=increment,
                status=SessionStatus.COMPLETED,
                event_id=event_id,
            ),
            fill_remaining=True,
        )

    def update_progress(
        self,
        event_id: str,
        *,
        magnitude: int | None = None,
        status: SessionStatus | str | None = None,
        on_date: date | str | None = None,
    ) -> ProgressResult:
        """
        Edit a recorded event and re-run the completion check.

        The period is re-summed without the edited row, then with its new value.
        A higher sum raises the cached counter; a lower one only refreshes the
        edited row's snapshots, and a complete task stays complete.
        """
        new_status = SessionStatus.parse(status) if status is not None else None
        new_date = parse_date(on_date) if on_date is not None else None

        current = self._store.get_event(event_id)
        if current is None:
            raise NotFoundError(f"progress event {event_id} not found", event_id=event_id)

        def op(s: EventLedger) -> ProgressResult:
            ev = s.get_event(event_id)
            if ev is None:
                raise NotFoundError(f"progress event {event_id} not found", event_id=event_id)
            task = self._require_task(s, ev.task_id)
            self._require_writable(s, task)

            eff_status = new_status or ev.status
            eff_magnitude = (
                normalize_magnitude(task, magnitude, default_target=self._default_target)
                if magnitude is not None
                else ev.magnitude
            )
            acc = accumulate(
                task,
                s.list_period_events(task.id, ev.period_id),
                magnitude=eff_magnitude,
                status=eff_status,
                exclude_event_id=ev.id,
            )
            s.update_event_fields(
                ev.id,
                date=new_date or ev.date,
                status=eff_status,
                magnitude=eff_magnitude,
                remaining=acc.remaining,
                period_completed=acc.goal_reached,
            )
            successor_id = None
            if ev.period_id == task.period_id:
                successor_id = self._apply_progress(
                    s, task, total=acc.total, goal_reached=acc.goal_reached
                )
            return ProgressResult(
                task=self._require_task(s, task.id),
                event=s.get_event(ev.id) or ev,
                spawned_successor_id=successor_id,
            )

        with self._task_lock(current.task_id):
            return self._write(op, what="update_progress")

    def remove_progress(self, event_id: str) -> Task:
        """
        Delete a ledger row.

        The cached counter and completion are left as they are: the counter is
        a high-water mark and a removal never un-completes a task.
        """
        current = self._store.get_event(event_id)
        if current is None:
            raise NotFoundError(f"progress event {event_id} not found", event_id=event_id)

        def op(s: EventLedger) -> Task:
            ev = s.get_event(event_id)
            if ev is None:
                raise NotFoundError(f"progress event {event_id} not found", event_id=event_id)
            task = self._require_task(s, ev.task_id)
            self._require_writable(s, task)

            s.delete_event(ev.id)
            logger.info("Progress event %s removed from task %s", ev.id, task.id)
            return self._require_task(s, task.id)

        with self._task_lock(current.task_id):
            return self._write(op, what="remove_progress")
