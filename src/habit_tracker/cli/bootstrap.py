# src/habit_tracker/cli/bootstrap.py

"""
CLI bootstrap helpers.

This module is the "composition root":
- loads settings once,
- ensures local (gitignored) directories exist,
- wires the SQLite store and the lifecycle manager into AppState.
"""

from __future__ import annotations

import logging

from ..config import get_settings
from ..core.state import AppState
from ..tasks.lifecycle import TaskLifecycleManager
from ..tasks.task_store import TaskStore

logger = logging.getLogger(__name__)


def _ensure_local_dirs(settings) -> None:
    settings.data_dir.mkdir(parents=True, exist_ok=True)
    settings.tasks_db_path.parent.mkdir(parents=True, exist_ok=True)


def create_initial_state(*, settings=None) -> AppState:
    """
    Create AppState from the provided settings.

    Keeping settings injectable makes the app easier to test and avoids hidden global config reads.
    If settings is None, falls back to get_settings().
    """
    if settings is None:
        settings = get_settings()

    _ensure_local_dirs(settings)

    store = TaskStore(
        settings.tasks_db_path,
        busy_timeout=float(getattr(settings, "lock_timeout_seconds", 30)),
    )
    engine = TaskLifecycleManager(
        store,
        strict_frequency=bool(getattr(settings, "strict_frequency", True)),
        default_target=int(getattr(settings, "default_target", 1)),
    )
    logger.debug("State wired db=%s", settings.tasks_db_path)
    return AppState(settings=settings, task_store=store, engine=engine)
