# src/habit_tracker/tasks/task_store.py

from __future__ import annotations

import contextlib
import logging
import sqlite3
import time
from collections.abc import Iterator
from datetime import date
from pathlib import Path
from typing import Any

from .task_models import (
    Category,
    Frequency,
    Instance,
    Period,
    ProgressEvent,
    RecordStatus,
    SessionStatus,
    Task,
    TaskKind,
    Template,
)

logger = logging.getLogger(__name__)

_TASK_UPDATABLE = frozenset(
    {
        "name",
        "kind",
        "frequency",
        "goal",
        "category_id",
        "start_date",
        "status",
        "period_start",
        "period_end",
        "completed_count",
        "is_completed",
        "end_date",
    }
)
_EVENT_UPDATABLE = frozenset(
    {"date", "status", "magnitude", "remaining", "period_completed", "period_id"}
)


def _iso(d: date | None) -> str | None:
    return d.isoformat() if d is not None else None


def _to_db(value: Any) -> Any:
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, (RecordStatus, SessionStatus, Frequency, TaskKind)):
        return value.value
    return value


def _row_to_category(row: sqlite3.Row) -> Category:
    return Category(
        id=int(row["id"]),
        name=str(row["name"] or ""),
        color=str(row["color"] or ""),
        status=RecordStatus.from_db(row["status"]),
        created_at=float(row["created_at"] or 0.0),
        updated_at=float(row["updated_at"] or 0.0),
    )


def _row_to_task(row: sqlite3.Row) -> Task:
    start = date.fromisoformat(row["start_date"])
    period_start = date.fromisoformat(row["period_start"]) if row["period_start"] else start
    period_end = date.fromisoformat(row["period_end"])
    lineage = (
        Template()
        if int(row["is_template"] or 0)
        else Instance(parent_task_id=int(row["parent_task_id"]))
    )
    return Task(
        id=int(row["id"]),
        name=str(row["name"] or ""),
        kind=TaskKind(row["kind"]),
        frequency=Frequency.from_db(row["frequency"]),
        goal=int(row["goal"] or 0),
        category_id=int(row["category_id"]),
        start_date=start,
        period=Period(start=period_start, end=period_end),
        lineage=lineage,
        status=RecordStatus.from_db(row["status"]),
        completed_count=int(row["completed_count"] or 0),
        is_completed=bool(row["is_completed"]),
        end_date=date.fromisoformat(row["end_date"]) if row["end_date"] else None,
        created_at=float(row["created_at"] or 0.0),
        updated_at=float(row["updated_at"] or 0.0),
    )


def _row_to_event(row: sqlite3.Row) -> ProgressEvent:
    return ProgressEvent(
        id=str(row["id"]),
        seq=int(row["seq"]),
        task_id=int(row["task_id"]),
        date=date.fromisoformat(row["date"]),
        status=SessionStatus(row["status"]),
        magnitude=int(row["magnitude"] or 0),
        remaining=int(row["remaining"]) if row["remaining"] is not None else None,
        period_completed=bool(row["period_completed"]),
        period_id=str(row["period_id"]),
        created_at=float(row["created_at"] or 0.0),
        updated_at=float(row["updated_at"] or 0.0),
    )


class LedgerSession:
    """
    Row-level operations bound to one open transaction.

    Obtained from TaskStore.transaction() (writes) or TaskStore.reading() (reads).
    Nothing here commits; the owning context manager does.
    """

    def __init__(self, conn: sqlite3.Connection) -> None:
        self._conn = conn

    # ---- categories ----

    def get_category(self, category_id: int) -> Category | None:
        row = self._conn.execute(
            "SELECT * FROM categories WHERE id = ?", (int(category_id),)
        ).fetchone()
        return _row_to_category(row) if row else None

    def list_categories(self, *, include_archived: bool = False) -> list[Category]:
        sql = "SELECT * FROM categories"
        if not include_archived:
            sql += " WHERE status != 'ARCHIVED'"
        sql += " ORDER BY created_at DESC, id DESC"
        return [_row_to_category(r) for r in self._conn.execute(sql).fetchall()]

    def insert_category(self, *, name: str, color: str) -> int:
        now = time.time()
        cur = self._conn.execute(
            """
            INSERT INTO categories(name, color, status, created_at, updated_at)
            VALUES (?, ?, 'ACTIVE', ?, ?)
            """,
            (name, color, now, now),
        )
        rowid = cur.lastrowid
        if rowid is None:
            raise RuntimeError("SQLite did not return lastrowid for categories insert")
        return int(rowid)

    def update_category_fields(self, category_id: int, **changes: Any) -> None:
        allowed = {"name", "color", "status"}
        fields = {k: v for k, v in changes.items() if k in allowed and v is not None}
        if not fields:
            return
        assignments = ", ".join(f"{k} = ?" for k in fields)
        params = [_to_db(v) for v in fields.values()]
        self._conn.execute(
            f"UPDATE categories SET {assignments}, updated_at = ? WHERE id = ?",
            (*params, time.time(), int(category_id)),
        )

    # ---- tasks ----

    def get_task(self, task_id: int) -> Task | None:
        row = self._conn.execute("SELECT * FROM tasks WHERE id = ?", (int(task_id),)).fetchone()
        return _row_to_task(row) if row else None

    def insert_task(
        self,
        *,
        name: str,
        kind: TaskKind,
        frequency: Frequency,
        goal: int,
        category_id: int,
        start_date: date,
        period: Period,
        parent_task_id: int | None = None,
        status: RecordStatus = RecordStatus.ACTIVE,
        end_date: date | None = None,
    ) -> int:
        now = time.time()
        cur = self._conn.execute(
            """
            INSERT INTO tasks(
                name, kind, frequency, goal, category_id, start_date,
                status, is_template, parent_task_id,
                period_start, period_end, completed_count, is_completed, end_date,
                created_at, updated_at
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, 0, 0, ?, ?, ?)
            """,
            (
                name,
                kind.value,
                frequency.value,
                int(goal),
                int(category_id),
                _iso(start_date),
                status.value,
                0 if parent_task_id is not None else 1,
                parent_task_id,
                _iso(period.start),
                _iso(period.end),
                _iso(end_date),
                now,
                now,
            ),
        )
        rowid = cur.lastrowid
        if rowid is None:
            raise RuntimeError("SQLite did not return lastrowid for tasks insert")
        return int(rowid)

    def update_task_fields(self, task_id: int, **changes: Any) -> None:
        unknown = set(changes) - _TASK_UPDATABLE
        if unknown:
            raise ValueError(f"not updatable: {sorted(unknown)}")
        if not changes:
            return
        assignments = ", ".join(f"{k} = ?" for k in changes)
        params = [_to_db(v) for v in changes.values()]
        self._conn.execute(
            f"UPDATE tasks SET {assignments}, updated_at = ? WHERE id = ?",
            (*params, time.time(), int(task_id)),
        )

    def list_tasks(
        self,
        *,
        category_id: int | None = None,
        kind: TaskKind | None = None,
        frequency: Frequency | None = None,
        period_start: date | None = None,
        search: str | None = None,
        include_archived: bool = False,
        limit: int = 50,
        offset: int = 0,
    ) -> list[Task]:
        wheres: list[str] = []
        params: list[Any] = []
        if not include_archived:
            wheres.append("status != 'ARCHIVED'")
        if category_id is not None:
            wheres.append("category_id = ?")
            params.append(int(category_id))
        if kind is not None:
            wheres.append("kind = ?")
            params.append(kind.value)
        if frequency is not None:
            wheres.append("frequency = ?")
            params.append(frequency.value)
        if period_start is not None:
            wheres.append("period_start = ?")
            params.append(_iso(period_start))
        if search:
            wheres.append("name LIKE ?")
            params.append(f"%{search.strip()}%")

        sql = "SELECT * FROM tasks"
        if wheres:
            sql += " WHERE " + " AND ".join(wheres)
        sql += " ORDER BY created_at DESC, id DESC LIMIT ? OFFSET ?"
        params.extend([int(limit), max(0, int(offset))])
        return [_row_to_task(r) for r in self._conn.execute(sql, params).fetchall()]

    def list_successors(self, task_id: int) -> list[Task]:
        rows = self._conn.execute(
            "SELECT * FROM tasks WHERE parent_task_id = ? ORDER BY id ASC", (int(task_id),)
        ).fetchall()
        return [_row_to_task(r) for r in rows]

    # ---- progress events (append-mostly ledger) ----

    def get_event(self, event_id: str) -> ProgressEvent | None:
        row = self._conn.execute(
            "SELECT * FROM progress_events WHERE id = ?", (event_id,)
        ).fetchone()
        return _row_to_event(row) if row else None

    def list_period_events(self, task_id: int, period_id: str) -> list[ProgressEvent]:
        rows = self._conn.execute(
            """
            SELECT *
            FROM progress_events
            WHERE task_id = ? AND period_id = ?
            ORDER BY created_at ASC, seq ASC
            """,
            (int(task_id), period_id),
        ).fetchall()
        return [_row_to_event(r) for r in rows]

    def list_events(
        self,
        *,
        task_id: int | None = None,
        on_date: date | None = None,
        limit: int = 100,
    ) -> list[ProgressEvent]:
        wheres: list[str] = []
        params: list[Any] = []
        if task_id is not None:
            wheres.append("task_id = ?")
            params.append(int(task_id))
        if on_date is not None:
            wheres.append("date = ?")
            params.append(_iso(on_date))
        sql = "SELECT * FROM progress_events"
        if wheres:
            sql += " WHERE " + " AND ".join(wheres)
        sql += " ORDER BY created_at DESC, seq DESC LIMIT ?"
        params.append(int(limit))
        return [_row_to_event(r) for r in self._conn.execute(sql, params).fetchall()]

    def insert_event(
        self,
        *,
        event_id: str,
        task_id: int,
        on_date: date,
        status: SessionStatus,
        magnitude: int,
        remaining: int | None,
        period_completed: bool,
        period_id: str,
    ) -> ProgressEvent:
        now = time.time()
        cur = self._conn.execute(
            """
            INSERT INTO progress_events(
                id, task_id, date, status, magnitude, remaining,
                period_completed, period_id, created_at, updated_at
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                event_id,
                int(task_id),
                _iso(on_date),
                status.value,
                int(magnitude),
                remaining,
                int(period_completed),
                period_id,
                now,
                now,
            ),
        )
        seq = cur.lastrowid
        if seq is None:
            raise RuntimeError("SQLite did not return lastrowid for progress_events insert")
        return ProgressEvent(
            id=event_id,
            seq=int(seq),
            task_id=int(task_id),
            date=on_date,
            status=status,
            magnitude=int(magnitude),
            remaining=remaining,
            period_completed=period_completed,
            period_id=period_id,
            created_at=now,
            updated_at=now,
        )

    def update_event_fields(self, event_id: str, **changes: Any) -> None:
        unknown = set(changes) - _EVENT_UPDATABLE
        if unknown:
            raise ValueError(f"not updatable: {sorted(unknown)}")
        if not changes:
            return
        assignments = ", ".join(f"{k} = ?" for k in changes)
        params = [_to_db(v) for v in changes.values()]
        self._conn.execute(
            f"UPDATE progress_events SET {assignments}, updated_at = ? WHERE id = ?",
            (*params, time.time(), event_id),
        )

    def delete_event(self, event_id: str) -> None:
        self._conn.execute("DELETE FROM progress_events WHERE id = ?", (event_id,))


class TaskStore:
    """
    SQLite store for categories, tasks and the progress-event ledger.

    Migration-safe schema:
    - create tables if missing
    - use PRAGMA table_info to detect missing columns
    - add columns with ALTER TABLE only when needed

    Transactions:
    - every method opens its own short-lived connection
    - transaction() runs BEGIN IMMEDIATE, which takes the database write lock up front,
      so two writers can never both read the same cached counter and then both write it
    """

    def __init__(self, db_path: str | Path = "tasks.sqlite3", *, busy_timeout: float = 30.0) -> None:
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._busy_timeout = float(busy_timeout)
        self._ensure_schema()
        try:
            total = self.count_tasks()
        except sqlite3.Error:
            total = -1
        logger.info("TaskStore ready db=%s total=%s", self._db_path, total)

    def close(self) -> None:
        """Compatibility hook for shutdown (no persistent connections to close)."""
        return

    @property
    def db_path(self) -> Path:
        return self._db_path

    # ---- low-level helpers ----

    def _get_conn(self) -> sqlite3.Connection:
        # Autocommit mode: transaction boundaries are issued explicitly below.
        conn = sqlite3.connect(str(self._db_path), timeout=self._busy_timeout, isolation_level=None)
        conn.row_factory = sqlite3.Row
        self._configure_conn(conn)
        return conn

    @staticmethod
    def _configure_conn(conn: sqlite3.Connection) -> None:
        with contextlib.suppress(sqlite3.Error):
            conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA foreign_keys=ON")

    def _ensure_schema(self) -> None:
        conn = self._get_conn()
        try:
            conn.execute("BEGIN")
            cur = conn.cursor()

            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS categories (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    name TEXT NOT NULL,
                    color TEXT NOT NULL,
                    status TEXT NOT NULL DEFAULT 'ACTIVE',
                    created_at REAL NOT NULL,
                    updated_at REAL NOT NULL
                )
                """
            )
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS tasks (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    name TEXT NOT NULL,
                    kind TEXT NOT NULL,
                    frequency TEXT NOT NULL,
                    goal INTEGER NOT NULL,
                    category_id INTEGER NOT NULL REFERENCES categories(id),
                    start_date TEXT NOT NULL,
                    status TEXT NOT NULL DEFAULT 'ACTIVE',
                    is_template INTEGER NOT NULL DEFAULT 1,
                    parent_task_id INTEGER REFERENCES tasks(id),
                    period_start TEXT,
                    period_end TEXT NOT NULL,
                    completed_count INTEGER NOT NULL DEFAULT 0,
                    is_completed INTEGER NOT NULL DEFAULT 0,
                    end_date TEXT,
                    created_at REAL NOT NULL,
                    updated_at REAL NOT NULL
                )
                """
            )
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS progress_events (
                    seq INTEGER PRIMARY KEY AUTOINCREMENT,
                    id TEXT NOT NULL UNIQUE,
                    task_id INTEGER NOT NULL REFERENCES tasks(id),
                    date TEXT NOT NULL,
                    status TEXT NOT NULL,
                    magnitude INTEGER NOT NULL DEFAULT 0,
                    remaining INTEGER,
                    period_completed INTEGER NOT NULL DEFAULT 0,
                    period_id TEXT NOT NULL,
                    created_at REAL NOT NULL,
                    updated_at REAL NOT NULL
                )
                """
            )

            # Migrations (safe): add missing columns.
            cur.execute("PRAGMA table_info(tasks)")
            cols = {row["name"] for row in cur.fetchall()}

            def add_col(name: str, decl: str) -> None:
                if name in cols:
                    return
                cur.execute(f"ALTER TABLE tasks ADD COLUMN {name} {decl}")
                logger.info("TaskStore migration: added column tasks.%s", name)

            add_col("status", "TEXT NOT NULL DEFAULT 'ACTIVE'")
            add_col("is_template", "INTEGER NOT NULL DEFAULT 1")
            add_col("parent_task_id", "INTEGER")
            add_col("period_start", "TEXT")
            add_col("completed_count", "INTEGER NOT NULL DEFAULT 0")
            add_col("is_completed", "INTEGER NOT NULL DEFAULT 0")
            add_col("end_date", "TEXT")

            cur.execute("CREATE INDEX IF NOT EXISTS idx_tasks_category ON tasks(category_id, status)")
            cur.execute("CREATE INDEX IF NOT EXISTS idx_tasks_parent ON tasks(parent_task_id)")
            cur.execute(
                "CREATE INDEX IF NOT EXISTS idx_events_period "
                "ON progress_events(task_id, period_id, created_at, seq)"
            )
            cur.execute("CREATE INDEX IF NOT EXISTS idx_events_date ON progress_events(date)")

            conn.execute("COMMIT")
        except BaseException:
            conn.execute("ROLLBACK")
            raise
        finally:
            conn.close()

    # ---- sessions ----

    @contextlib.contextmanager
    def transaction(self) -> Iterator[LedgerSession]:
        """
        One atomic unit of work: commits on normal exit, rolls back on any exception.

        Raises sqlite3.OperationalError("database is locked") if the write lock
        cannot be obtained within the busy timeout.
        """
        conn = self._get_conn()
        try:
            conn.execute("BEGIN IMMEDIATE")
            try:
                yield LedgerSession(conn)
            except BaseException:
                conn.execute("ROLLBACK")
                raise
            conn.execute("COMMIT")
        finally:
            conn.close()

    @contextlib.contextmanager
    def reading(self) -> Iterator[LedgerSession]:
        conn = self._get_conn()
        try:
            yield LedgerSession(conn)
        finally:
            conn.close()

    # ---- public read API ----

    def count_tasks(self) -> int:
        conn = self._get_conn()
        try:
            (n,) = conn.execute("SELECT COUNT(*) FROM tasks").fetchone()
            return int(n)
        finally:
            conn.close()

    def get_task(self, task_id: int) -> Task | None:
        with self.reading() as s:
            return s.get_task(task_id)

    def get_category(self, category_id: int) -> Category | None:
        with self.reading() as s:
            return s.get_category(category_id)

    def get_event(self, event_id: str) -> ProgressEvent | None:
        with self.reading() as s:
            return s.get_event(event_id)
