# src/habit_tracker/tasks/task_models.py

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from enum import StrEnum

from ..core.errors import ValidationError

logger = logging.getLogger(__name__)


class TaskKind(StrEnum):
    """How progress is measured: minutes spent or a count of completions."""

    TIME_BASED = "TIME_BASED"
    YES_NO = "YES_NO"

    @classmethod
    def parse(cls, raw: str | TaskKind) -> TaskKind:
        try:
            return cls(str(raw).strip().upper())
        except ValueError:
            raise ValidationError(f"invalid task kind: {raw!r}", field="kind") from None


class Frequency(StrEnum):
    """
    Length of one period.

    Notes:
    - parse() is the strict input-boundary conversion.
    - from_db() is lenient: rows written by older versions may carry anything,
      and an unreadable value falls back to DAILY.
    """

    DAILY = "DAILY"
    WEEKLY = "WEEKLY"
    MONTHLY = "MONTHLY"

    @classmethod
    def parse(cls, raw: str | Frequency, *, strict: bool = True) -> Frequency:
        try:
            return cls(str(raw).strip().upper())
        except ValueError:
            if strict:
                raise ValidationError(f"invalid frequency: {raw!r}", field="frequency") from None
            logger.warning("Unknown frequency %r, falling back to DAILY", raw)
            return cls.DAILY

    @classmethod
    def from_db(cls, raw: str | None) -> Frequency:
        if not raw:
            return cls.DAILY
        try:
            return cls(raw)
        except ValueError:
            logger.warning("Stored frequency %r is not recognised, using DAILY", raw)
            return cls.DAILY


class RecordStatus(StrEnum):
    """Soft-delete flag shared by tasks and categories."""

    ACTIVE = "ACTIVE"
    ARCHIVED = "ARCHIVED"

    @classmethod
    def from_db(cls, raw: str | None) -> RecordStatus:
        # The original schema also knew INACTIVE; treat anything but ARCHIVED as live.
        return cls.ARCHIVED if raw == cls.ARCHIVED.value else cls.ACTIVE


class SessionStatus(StrEnum):
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"

    @classmethod
    def parse(cls, raw: str | SessionStatus) -> SessionStatus:
        try:
            return cls(str(raw).strip().upper())
        except ValueError:
            raise ValidationError(f"invalid session status: {raw!r}", field="status") from None

    @property
    def counts(self) -> bool:
        return self is not SessionStatus.CANCELLED


@dataclass(slots=True, frozen=True)
class Period:
    """Half-open interval [start, end)."""

    start: date
    end: date

    def __contains__(self, day: object) -> bool:
        return isinstance(day, date) and self.start <= day < self.end


@dataclass(slots=True, frozen=True)
class Template:
    """The recurring definition; completing it spawns one successor."""


@dataclass(slots=True, frozen=True)
class Instance:
    """A spawned occurrence; parent_task_id points at the task it was spawned from."""

    parent_task_id: int


Lineage = Template | Instance


@dataclass(slots=True)
class Category:
    id: int
    name: str
    color: str
    status: RecordStatus
    created_at: float
    updated_at: float

    @property
    def is_archived(self) -> bool:
        return self.status is RecordStatus.ARCHIVED


@dataclass(slots=True)
class Task:
    id: int
    name: str
    kind: TaskKind
    frequency: Frequency
    goal: int  # minutes for TIME_BASED, count for YES_NO
    category_id: int
    start_date: date
    period: Period

    lineage: Lineage
    status: RecordStatus = RecordStatus.ACTIVE
    completed_count: int = 0
    is_completed: bool = False
    end_date: date | None = None  # optional last day the habit runs; copied to successors

    created_at: float = 0.0
    updated_at: float = 0.0

    @property
    def is_template(self) -> bool:
        return isinstance(self.lineage, Template)

    @property
    def parent_task_id(self) -> int | None:
        return self.lineage.parent_task_id if isinstance(self.lineage, Instance) else None

    @property
    def period_id(self) -> str:
        return f"{self.id}_{self.period.start.isoformat()}"

    @property
    def is_archived(self) -> bool:
        return self.status is RecordStatus.ARCHIVED


@dataclass(slots=True)
class ProgressEvent:
    id: str
    seq: int
    task_id: int
    date: date
    status: SessionStatus
    magnitude: int
    remaining: int | None
    period_completed: bool
    period_id: str
    created_at: float
    updated_at: float


@dataclass(slots=True, frozen=True)
class TaskSpec:
    """Input for creating a template task."""

    name: str
    kind: TaskKind | str
    frequency: Frequency | str
    goal: int
    category_id: int
    start_date: date | str
    end_date: date | str | None = None


@dataclass(slots=True, frozen=True)
class ProgressInput:
    """One progress action as received from a caller."""

    date: date | str
    magnitude: int | None = None
    status: SessionStatus | str = SessionStatus.COMPLETED
    event_id: str | None = None


@dataclass(slots=True, frozen=True)
class ProgressResult:
    task: Task
    event: ProgressEvent
    spawned_successor_id: int | None = None
    replayed: bool = False
