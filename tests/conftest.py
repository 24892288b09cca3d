# tests/conftest.py

from __future__ import annotations

from pathlib import Path
from types import SimpleNamespace

import pytest

from habit_tracker.core.state import AppState
from habit_tracker.tasks.lifecycle import TaskLifecycleManager
from habit_tracker.tasks.task_models import Category
from habit_tracker.tasks.task_store import TaskStore


@pytest.fixture()
def settings(tmp_path: Path) -> SimpleNamespace:
    """
    Minimal settings object compatible with AppState and the engine.

    We intentionally use a SimpleNamespace rather than importing real config,
    to keep unit tests isolated and deterministic.
    """
    return SimpleNamespace(
        app_name="habit-tracker-test",
        log_level="DEBUG",
        console_enabled=False,
        data_dir=tmp_path,
        tasks_db_path=tmp_path / "tasks.sqlite3",
        strict_frequency=True,
        default_target=1,
        lock_timeout_seconds=30,
        date_format="iso",
    )


@pytest.fixture()
def store(settings: SimpleNamespace) -> TaskStore:
    return TaskStore(settings.tasks_db_path)


@pytest.fixture()
def engine(store: TaskStore) -> TaskLifecycleManager:
    return TaskLifecycleManager(store)


@pytest.fixture()
def state(settings: SimpleNamespace, store: TaskStore, engine: TaskLifecycleManager) -> AppState:
    """
    AppState wired with a real SQLite store: its transactional behaviour is
    part of what we want to test.
    """
    return AppState(settings=settings, task_store=store, engine=engine)


@pytest.fixture()
def category(engine: TaskLifecycleManager) -> Category:
    return engine.create_category("Health", "#22C55E")
