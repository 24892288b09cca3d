# src/habit_tracker/core/ports.py

from __future__ import annotations

"""
Ports (interfaces) used by the engine.

The lifecycle manager depends on these Protocols instead of the SQLite store,
so another storage technology only has to provide the same row-level calls
inside an atomic unit of work.
"""

from contextlib import AbstractContextManager
from datetime import date
from typing import Any, Protocol


class EventLedger(Protocol):
    """Row-level operations available inside one unit of work."""

    def get_category(self, category_id: int) -> Any | None: ...
    def list_categories(self, *, include_archived: bool = False) -> list[Any]: ...
    def insert_category(self, *, name: str, color: str) -> int: ...
    def update_category_fields(self, category_id: int, **changes: Any) -> None: ...

    def get_task(self, task_id: int) -> Any | None: ...
    def insert_task(
            self,
            *,
            name: str,
            kind: Any,
            frequency: Any,
            goal: int,
            category_id: int,
            start_date: date,
            period: Any,
            parent_task_id: int | None = None,
            status: Any = None,
            end_date: date | None = None,
    ) -> int: ...
    def update_task_fields(self, task_id: int, **changes: Any) -> None: ...
    def list_tasks(self, **filters: Any) -> list[Any]: ...
    def list_successors(self, task_id: int) -> list[Any]: ...

    # Progress event store: append-mostly, one row per progress action.
    def get_event(self, event_id: str) -> Any | None: ...
    def list_period_events(self, task_id: int, period_id: str) -> list[Any]: ...
    def list_events(
            self,
            *,
            task_id: int | None = None,
            on_date: date | None = None,
            limit: int = 100,
    ) -> list[Any]: ...
    def insert_event(
            self,
            *,
            event_id: str,
            task_id: int,
            on_date: date,
            status: Any,
            magnitude: int,
            remaining: int | None,
            period_completed: bool,
            period_id: str,
    ) -> Any: ...
    def update_event_fields(self, event_id: str, **changes: Any) -> None: ...
    def delete_event(self, event_id: str) -> None: ...


class TaskRepo(Protocol):
    def transaction(self) -> AbstractContextManager[EventLedger]: ...
    def reading(self) -> AbstractContextManager[EventLedger]: ...

    def count_tasks(self) -> int: ...
    def get_task(self, task_id: int) -> Any | None: ...
    def get_category(self, category_id: int) -> Any | None: ...
    def get_event(self, event_id: str) -> Any | None: ...
